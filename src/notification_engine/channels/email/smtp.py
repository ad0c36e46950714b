"""SMTP email adapter."""

from __future__ import annotations

import email.message
import email.policy
import email.utils
import errno
import logging
from typing import TYPE_CHECKING, Any

from email_validator import EmailNotValidError, validate_email

from ...delivery import Channel
from ...exceptions import DeliveryError, InvalidContactError
from ..base import BaseChannelAdapter

if TYPE_CHECKING:
    from ...delivery import RenderedContent
    from ...ratelimit.limiter import FixedWindowRateLimiter

logger = logging.getLogger(__name__)

# Socket-level failures worth another attempt.
RETRYABLE_ERRNOS = frozenset(
    {errno.ECONNREFUSED, errno.ETIMEDOUT, errno.ENETUNREACH, errno.ECONNRESET}
)


def is_retryable_smtp_error(exc: BaseException) -> bool:
    """Classify an SMTP failure.

    Connection problems, timeouts and 4xx replies are transient; 5xx replies
    (unknown mailbox, policy rejection) are permanent.
    """
    import aiosmtplib

    if isinstance(
        exc,
        (
            aiosmtplib.SMTPConnectError,
            aiosmtplib.SMTPTimeoutError,
            aiosmtplib.SMTPServerDisconnected,
        ),
    ):
        return True
    if isinstance(exc, aiosmtplib.SMTPRecipientsRefused):
        return all(400 <= r.code < 500 for r in exc.recipients)
    if isinstance(exc, aiosmtplib.SMTPResponseException):
        return 400 <= exc.code < 500
    if isinstance(exc, OSError):
        # socket.gaierror (ENOTFOUND) carries resolver codes, not errno values
        return exc.errno in RETRYABLE_ERRNOS or exc.errno is None or exc.errno < 0
    return False


class SmtpEmailAdapter(BaseChannelAdapter):
    """
    Async SMTP email adapter using aiosmtplib.

    Sends multipart text/HTML when the rendered content carries HTML.
    """

    channel = Channel.EMAIL

    def __init__(
        self,
        host: str,
        port: int = 587,
        username: str | None = None,
        password: str | None = None,
        use_tls: bool = True,
        timeout: float = 10.0,
        from_email: str | None = None,
        *,
        rate_limiter: FixedWindowRateLimiter | None = None,
    ):
        super().__init__(rate_limiter=rate_limiter, timeout=timeout)
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.from_email = from_email

    def normalize_contact(self, contact: str) -> str:
        try:
            result = validate_email(contact.strip(), check_deliverability=False)
        except EmailNotValidError as e:
            logger.debug("Rejected email address %r: %s", contact, e)
            raise InvalidContactError(
                self.channel.value, contact, "invalid email address"
            ) from e
        return result.normalized

    def build_message(
        self,
        recipient: str,
        content: RenderedContent,
        options: dict[str, Any],
    ) -> email.message.EmailMessage:
        from_addr = options.get("from_email") or self.from_email
        if not from_addr:
            raise ValueError("Sender email (from_email) is required.")

        message = email.message.EmailMessage(policy=email.policy.default)
        message["To"] = recipient
        message["From"] = from_addr
        message["Message-ID"] = email.utils.make_msgid()
        if content.subject:
            message["Subject"] = content.subject
        unsubscribe_url = options.get("unsubscribe_url")
        if unsubscribe_url:
            message["List-Unsubscribe"] = f"<{unsubscribe_url}>"

        if content.body_html:
            message.set_content(content.body_text, subtype="plain", charset="utf-8")
            message.add_alternative(content.body_html, subtype="html", charset="utf-8")
        else:
            message.set_content(content.body_text, charset="utf-8")
        return message

    async def _deliver(
        self,
        contact: str,
        content: RenderedContent,
        options: dict[str, Any],
    ) -> str | None:
        # Lazy import of aiosmtplib
        import aiosmtplib

        message = self.build_message(contact, content, options)
        try:
            async with aiosmtplib.SMTP(
                hostname=self.host,
                port=self.port,
                timeout=self.timeout,
            ) as smtp:
                if self.use_tls:
                    await smtp.starttls()
                if self.username and self.password:
                    await smtp.login(self.username, self.password)
                await smtp.send_message(message)
        except (aiosmtplib.SMTPException, OSError) as e:
            raise DeliveryError(
                self.channel.value,
                contact,
                str(e),
                retryable=is_retryable_smtp_error(e),
            ) from e

        logger.info(f"Email sent to {contact} via SMTP")
        return str(message["Message-ID"])
