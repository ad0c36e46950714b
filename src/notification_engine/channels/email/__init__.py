from .smtp import SmtpEmailAdapter, is_retryable_smtp_error

__all__ = ["SmtpEmailAdapter", "is_retryable_smtp_error"]
