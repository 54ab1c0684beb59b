"""Countdown to the next anniversary."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import date, datetime

from src.config import settings


@dataclass
class TimeLeft:
    """Whole units between now and the target, plus day flags."""

    days: int
    hours: int
    minutes: int
    seconds: int
    is_past: bool
    is_anniversary_day: bool

    def to_dict(self) -> dict:
        return asdict(self)


def _occurrence(year: int, month: int, day: int, now: datetime) -> datetime:
    try:
        return datetime(year, month, day, tzinfo=now.tzinfo)
    except ValueError:
        # Feb 29 outside a leap year
        return datetime(year, 3, 1, tzinfo=now.tzinfo)


def next_anniversary(now: datetime | None = None) -> datetime:
    """Midnight of the next anniversary; this year's until it has passed.

    A Feb 29 anniversary falls on Mar 1 in non-leap years.
    """
    now = now or datetime.now()
    month, day = settings.get_anniversary()
    target = _occurrence(now.year, month, day, now)
    if now > target:
        target = _occurrence(now.year + 1, month, day, now)
    return target


def time_left(target: datetime, now: datetime | None = None) -> TimeLeft:
    """Break the distance to *target* into days/hours/minutes/seconds.

    The distance is absolute; ``is_past`` tells which side of *target* we're on.
    """
    now = now or datetime.now(target.tzinfo)
    difference = target - now
    is_past = difference.total_seconds() < 0
    remaining = int(abs(difference.total_seconds()))

    days, remaining = divmod(remaining, 86400)
    hours, remaining = divmod(remaining, 3600)
    minutes, seconds = divmod(remaining, 60)

    return TimeLeft(
        days=days,
        hours=hours,
        minutes=minutes,
        seconds=seconds,
        is_past=is_past,
        is_anniversary_day=(now.month, now.day) == (target.month, target.day),
    )


def format_date(value: date | datetime) -> str:
    """``2026-05-20`` -> ``May 20, 2026``."""
    return f"{value:%B} {value.day}, {value.year}"
