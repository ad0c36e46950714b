"""Phone number normalization for SMS delivery."""

from __future__ import annotations

import re

_NON_DIGITS = re.compile(r"\D")

# E.164 allows at most 15 digits; shorter than 8 is never a routable mobile.
MIN_DIGITS = 8
MAX_DIGITS = 15


def normalize_phone(raw: str, default_country_code: str = "1") -> str | None:
    """Return the E.164 form of ``raw`` or None when it cannot be one.

    Ten-digit numbers are North American numbers without a country code and
    get ``+<default_country_code>``; anything else is taken as already
    carrying its country code.
    """
    digits = _NON_DIGITS.sub("", raw)
    if len(digits) == 10:
        digits = default_country_code + digits
    if not MIN_DIGITS <= len(digits) <= MAX_DIGITS:
        return None
    return f"+{digits}"
