from .model import (
    DEFAULT_CATEGORIES,
    ChannelPreference,
    DigestPeriod,
    Preferences,
    QuietHours,
)
from .resolver import ChannelDecision, Decision, PreferenceResolver

__all__ = [
    "DEFAULT_CATEGORIES",
    "ChannelDecision",
    "ChannelPreference",
    "Decision",
    "DigestPeriod",
    "PreferenceResolver",
    "Preferences",
    "QuietHours",
]
