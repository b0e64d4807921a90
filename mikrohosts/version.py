"""Application version."""

from __future__ import annotations

_RAW_VERSION = "v0.0.0@undefined"


def normalize_version(value: str) -> str:
    """Trim spaces and drop a leading ``v``/``V`` that precedes a digit."""
    text = value.strip()
    if len(text) > 1 and text[0] in "vV" and "0" <= text[1] <= "9":
        return text[1:]
    return text


def version() -> str:
    """Return the application version without the ``v`` prefix."""
    return normalize_version(_RAW_VERSION)