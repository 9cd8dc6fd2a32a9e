"""Heuristic language detection for survey display names."""
import re

CYRILLIC_LANGUAGE = "ru"
LATIN_LANGUAGE = "uz"
DEFAULT_LANGUAGE = "ru"

_CYRILLIC_RE = re.compile(r"[а-яё]", re.IGNORECASE)
_LATIN_RE = re.compile(r"[a-z]", re.IGNORECASE)


def has_cyrillic(text: str | None) -> bool:
    """Return True when the text contains at least one Cyrillic letter."""
    return bool(text) and bool(_CYRILLIC_RE.search(text))


def has_latin(text: str | None) -> bool:
    """Return True when the text contains at least one Latin letter."""
    return bool(text) and bool(_LATIN_RE.search(text))


def detect_language(text: str | None, default: str = DEFAULT_LANGUAGE) -> str:
    """Detect the language family of a survey display name.

    Any Cyrillic letter means ``ru``; Latin letters without Cyrillic mean
    ``uz``. Empty, non-string or letterless names fall back to ``default``.
    """
    if not text or not isinstance(text, str):
        return default

    name = text.strip()
    if has_cyrillic(name):
        return CYRILLIC_LANGUAGE
    if has_latin(name):
        return LATIN_LANGUAGE
    return default


def resolve_survey_language(explicit: str | None, display_name: str | None, default: str = DEFAULT_LANGUAGE) -> str:
    """Prefer an explicit language tag, falling back to name detection."""
    if explicit and isinstance(explicit, str) and explicit.strip():
        return explicit.strip().lower()
    return detect_language(display_name, default=default)
