"""Logical-day handling for reading statistics.

A logical day starts at ``day_start_minutes`` after local midnight in the
configured timezone. Sessions before that time count toward the previous day.
"""

from __future__ import annotations

import dataclasses
from datetime import date, datetime, timedelta, timezone, tzinfo
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


def _local_timezone() -> tzinfo:
    return datetime.now().astimezone().tzinfo or timezone.utc


def parse_day_start(value: str) -> int:
    """Parse ``"HH:MM"`` (or ``"H"``) into minutes after midnight."""
    text = value.strip()
    hours_text, _, minutes_text = text.partition(":")
    try:
        hours = int(hours_text)
        minutes = int(minutes_text) if minutes_text else 0
    except ValueError:
        raise ValueError(f"Invalid day start time: {value!r} (expected HH:MM)") from None
    if not (0 <= hours <= 23 and 0 <= minutes <= 59):
        raise ValueError(f"Invalid day start time: {value!r} (expected HH:MM)")
    return hours * 60 + minutes


@dataclasses.dataclass(frozen=True)
class TimeConfig:
    timezone: tzinfo = dataclasses.field(default_factory=_local_timezone)
    day_start_minutes: int = 0

    @classmethod
    def from_strings(cls, tz_name: Optional[str] = None, day_start: Optional[str] = None) -> "TimeConfig":
        if tz_name:
            try:
                tz: tzinfo = ZoneInfo(tz_name)
            except (ZoneInfoNotFoundError, ValueError):
                raise ValueError(f"Unknown timezone: {tz_name!r}") from None
        else:
            tz = _local_timezone()
        minutes = parse_day_start(day_start) if day_start else 0
        return cls(timezone=tz, day_start_minutes=minutes)

    def local_datetime(self, timestamp: int) -> datetime:
        return datetime.fromtimestamp(timestamp, tz=self.timezone)

    def logical_date(self, timestamp: int) -> date:
        """Calendar date of the logical day containing ``timestamp``."""
        shifted = self.local_datetime(timestamp) - timedelta(minutes=self.day_start_minutes)
        return shifted.date()
