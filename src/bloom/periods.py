"""Calendar helpers for daily claims and monthly leaderboard periods.

All days are UTC calendar days. Leaderboard periods are 'YYYY-MM'.
"""

from __future__ import annotations

import re
from datetime import datetime, timezone

_PERIOD_RE = re.compile(r"^\d{4}-(0[1-9]|1[0-2])$")


def _now(now: datetime | None) -> datetime:
    if now is None:
        return datetime.now(timezone.utc)
    return now.astimezone(timezone.utc)


def day_string(now: datetime | None = None) -> str:
    """Get the UTC calendar day e.g. '2026-03-14'."""
    return _now(now).date().isoformat()


def leaderboard_period(now: datetime | None = None) -> str:
    """Get the leaderboard period for ``now`` e.g. '2026-03'."""
    return _now(now).strftime("%Y-%m")


def is_valid_period(period: str) -> bool:
    return bool(_PERIOD_RE.match(period))


def previous_periods(count: int, now: datetime | None = None) -> list[str]:
    """Current period followed by the ``count - 1`` before it, newest first."""
    current = _now(now).date().replace(day=1)
    periods: list[str] = []
    year, month = current.year, current.month
    for _ in range(count):
        periods.append(f"{year:04d}-{month:02d}")
        month -= 1
        if month == 0:
            year -= 1
            month = 12
    return periods


def to_epoch_ms(dt: datetime | None) -> int | None:
    if dt is None:
        return None
    return int(dt.timestamp() * 1000)


def from_epoch_ms(ms: int) -> datetime:
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc)
