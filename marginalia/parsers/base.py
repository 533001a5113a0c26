"""Shared helpers for format parsers."""

from __future__ import annotations

from typing import Iterable, List, Optional


class FormatParseError(Exception):
    """Raised when a book container cannot be decoded."""


def clean_text(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = " ".join(value.split())
    return value or None


def dedupe(values: Iterable[Optional[str]]) -> List[str]:
    """Strip, drop empties and keep the first occurrence of each value."""
    seen = set()
    result = []
    for value in values:
        value = clean_text(value)
        if value and value not in seen:
            seen.add(value)
            result.append(value)
    return result
