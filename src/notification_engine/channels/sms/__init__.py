from .phone import normalize_phone
from .twilio import TwilioSmsAdapter, is_retryable_twilio_error

__all__ = ["TwilioSmsAdapter", "is_retryable_twilio_error", "normalize_phone"]
