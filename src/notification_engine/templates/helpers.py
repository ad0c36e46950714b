"""Locale-aware template helpers (dates, numbers, greetings)."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any

_MONTHS: dict[str, tuple[str, ...]] = {
    "en": (
        "January", "February", "March", "April", "May", "June",
        "July", "August", "September", "October", "November", "December",
    ),
    "fr": (
        "janvier", "février", "mars", "avril", "mai", "juin",
        "juillet", "août", "septembre", "octobre", "novembre", "décembre",
    ),
}

GREETINGS: dict[str, str] = {
    "en": "Hello",
    "fr": "Bonjour",
    "ojibwe": "Boozhoo",
    "cree": "Tansi",
    "inuktitut": "ᐊᐃ",
    "mikmaq": "Kwe'",
    "mohawk": "Shé:kon",
}

CLOSINGS: dict[str, str] = {
    "en": "Thank you",
    "fr": "Merci",
    "ojibwe": "Migwech",
    "cree": "Ekosi",
    "inuktitut": "Qujannamiik",
    "mikmaq": "Wela'lin",
    "mohawk": "Niá:wen",
}


def _as_date(value: Any) -> date | None:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00")).date()
        except ValueError:
            return None
    return None


def format_date(value: Any, language: str = "en") -> str:
    """``March 5, 2026`` in English, ``5 mars 2026`` in French."""
    day = _as_date(value)
    if day is None:
        return str(value)
    if language == "fr":
        return f"{day.day} {_MONTHS['fr'][day.month - 1]} {day.year}"
    return f"{_MONTHS['en'][day.month - 1]} {day.day}, {day.year}"


def format_number(value: Any, language: str = "en", places: int = 2) -> str:
    """Group thousands with the locale's separators."""
    try:
        number = Decimal(str(value))
    except InvalidOperation:
        return str(value)
    text = f"{number:,.{places}f}"
    if language == "fr":
        # French groups with a narrow no-break space and uses a decimal comma.
        return text.replace(",", "\u202f").replace(".", ",")
    return text


def format_currency(value: Any, language: str = "en") -> str:
    amount = format_number(value, language)
    return f"{amount} $" if language == "fr" else f"${amount}"


def greeting(language: str = "en") -> str:
    return GREETINGS.get(language, GREETINGS["en"])


def closing(language: str = "en") -> str:
    return CLOSINGS.get(language, CLOSINGS["en"])


def _first(args: list[Any]) -> Any:
    return args[0] if args else ""


DEFAULT_HELPERS = {
    "formatDate": lambda args, lang: format_date(_first(args), lang),
    "formatNumber": lambda args, lang: format_number(_first(args), lang),
    "formatCurrency": lambda args, lang: format_currency(_first(args), lang),
    "greeting": lambda args, lang: greeting(lang),
    "closing": lambda args, lang: closing(lang),
}
