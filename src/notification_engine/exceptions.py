"""Exception hierarchy for the notification engine."""

from __future__ import annotations


class NotificationEngineError(Exception):
    """Root exception for the entire notification engine."""


class InvalidRequestError(NotificationEngineError):
    """Raised when a notification request is structurally invalid.

    Carries structured errors: ``{field: [messages]}``.
    """

    def __init__(self, errors: dict[str, list[str]] | str | None = None) -> None:
        if isinstance(errors, str):
            self.errors: dict[str, list[str]] = {"__root__": [errors]}
        elif errors is None:
            self.errors = {}
        else:
            self.errors = errors
        super().__init__(str(self.errors))


class InfrastructureError(NotificationEngineError):
    """Base class for all infrastructure-related errors."""


class PreferenceStoreError(InfrastructureError):
    """Raised when the preference store cannot be reached or is corrupt."""


class TemplateError(NotificationEngineError):
    """Base class for template lookup and rendering failures (always terminal)."""


class TemplateNotFoundError(TemplateError):
    """Raised when no template exists for name/language (after fallback)."""

    def __init__(self, name: str, language: str, channel: str | None = None) -> None:
        self.name = name
        self.language = language
        self.channel = channel
        target = f"{name}/{language}" if channel is None else f"{name}/{language}/{channel}"
        super().__init__(f"No template for {target}")


class TemplateRenderError(TemplateError):
    """Raised when a template renders with unresolved or missing variables."""

    def __init__(self, name: str, missing: list[str]) -> None:
        self.name = name
        self.missing = missing
        super().__init__(f"Template {name} has unresolved variables: {', '.join(missing)}")


class DeliveryError(InfrastructureError):
    """Raised when a channel provider rejects or fails a delivery."""

    def __init__(
        self,
        channel: str,
        recipient: str,
        reason: str,
        *,
        retryable: bool = False,
    ) -> None:
        self.channel = channel
        self.recipient = recipient
        self.reason = reason
        self.retryable = retryable
        super().__init__(f"Failed to deliver via {channel} to {recipient}: {reason}")


class InvalidContactError(DeliveryError):
    """Raised when a recipient contact address fails validation."""

    def __init__(self, channel: str, recipient: str, reason: str = "invalid address") -> None:
        super().__init__(channel, recipient, reason, retryable=False)


class RateLimitExceededError(NotificationEngineError):
    """Raised when a per-recipient, per-channel rate limit is exceeded."""

    def __init__(self, key: str, limit: int) -> None:
        self.key = key
        self.limit = limit
        super().__init__(f"Rate limit of {limit}/window exceeded for {key}")


class QueueError(InfrastructureError):
    """Base class for delivery queue failures."""


class JobStateError(QueueError):
    """Raised when a delivery job state transition is invalid."""


class DeadLetterError(QueueError):
    """Raised when a job is routed to the dead-letter set after max attempts."""

    def __init__(self, message: str, job_id: str | None = None) -> None:
        self.job_id = job_id
        super().__init__(message)


class RealtimeError(NotificationEngineError):
    """Base class for realtime fan-out errors."""


class AuthenticationError(RealtimeError):
    """Raised when a realtime connection presents an invalid token."""


class ConnectionStateError(RealtimeError):
    """Raised when a connection state transition is invalid."""
