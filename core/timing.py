"""Wall-clock helpers: minute-of-day arithmetic, the target randomizer and quiet hours."""

from __future__ import annotations

import random
import re
from datetime import datetime
from typing import Optional, Tuple

from core.errors import ConfigurationError

MINUTES_PER_DAY = 24 * 60

_WINDOW_RE = re.compile(
    r"^\s*(?P<start_hour>\d{1,2}):(?P<start_minute>\d{2})\s*-\s*(?P<end_hour>\d{1,2}):(?P<end_minute>\d{2})\s*$"
)


def minutes_from_midnight(hour: int, minute: int) -> int:
    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        raise ConfigurationError(f"Invalid wall-clock time {hour:02d}:{minute:02d}")
    return hour * 60 + minute


def minutes_to_time(total_minutes: int) -> str:
    """Format minutes-since-midnight as HH:MM."""
    hours, minutes = divmod(total_minutes, 60)
    return f"{hours:02d}:{minutes:02d}"


def minute_of_day(now: datetime) -> int:
    return now.hour * 60 + now.minute


def day_key(now: datetime) -> str:
    """Calendar day used for rollover and persisted snapshots."""
    return now.strftime("%Y-%m-%d")


def is_weekend(now: datetime) -> bool:
    return now.weekday() >= 5


def pick_target_minute(start: int, end: int, rng: Optional[random.Random] = None) -> int:
    """Pick a uniformly distributed minute in [start, end)."""
    if start >= end:
        raise ConfigurationError(f"Window start {start} must be before end {end}")
    chooser = rng if rng is not None else random
    return chooser.randrange(start, end)


def parse_quiet_hours(raw: str) -> Tuple[int, int]:
    """Parse an HH:MM-HH:MM band into (start, end) minutes. The band may wrap midnight."""
    match = _WINDOW_RE.fullmatch(raw or "")
    if match is None:
        raise ConfigurationError(f"Invalid quiet hours '{raw}'. Expected HH:MM-HH:MM (24-hour clock).")
    start = minutes_from_midnight(int(match.group("start_hour")), int(match.group("start_minute")))
    end = minutes_from_midnight(int(match.group("end_hour")), int(match.group("end_minute")))
    return start, end


def in_quiet_hours(minute: int, band: Tuple[int, int]) -> bool:
    start, end = band
    if start == end:
        return False
    if start < end:
        return start <= minute < end
    return minute >= start or minute < end
