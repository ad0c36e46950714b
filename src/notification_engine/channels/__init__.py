from .base import RATE_LIMITED, TIMEOUT, BaseChannelAdapter
from .email import SmtpEmailAdapter
from .inapp import InAppAdapter
from .memory import InMemoryChannelAdapter, SentMessage
from .push import FcmPushAdapter
from .sms import TwilioSmsAdapter, normalize_phone

__all__ = [
    "RATE_LIMITED",
    "TIMEOUT",
    "BaseChannelAdapter",
    "FcmPushAdapter",
    "InAppAdapter",
    "InMemoryChannelAdapter",
    "SentMessage",
    "SmtpEmailAdapter",
    "TwilioSmsAdapter",
    "normalize_phone",
]
