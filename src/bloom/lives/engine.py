"""Lives regeneration math.

Lives regenerate one per period up to a cap. The regeneration clock only ever
advances by whole periods that were actually turned into lives, so partial
progress toward the next life survives any number of reads.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from bloom.config import Settings


@dataclass(frozen=True)
class LivesPolicy:
    max_lives: int = 5
    regen_period: timedelta = timedelta(hours=6)

    @classmethod
    def from_settings(cls, settings: Settings) -> LivesPolicy:
        return cls(
            max_lives=settings.max_lives,
            regen_period=timedelta(hours=settings.life_regen_hours),
        )


@dataclass(frozen=True)
class Regeneration:
    lives: int
    last_regenerated_at: datetime
    changed: bool


def regenerate(
    lives: int,
    last_regenerated_at: datetime,
    now: datetime,
    policy: LivesPolicy,
) -> Regeneration:
    """Derive the current lives count from the stored one.

    At the cap the clock is left untouched. Below it, ``floor(elapsed / period)``
    lives are added (capped) and the clock moves forward by exactly the periods
    used. A clock in the future (clock skew) yields no lives.
    """
    clamped = max(0, min(lives, policy.max_lives))
    if clamped >= policy.max_lives:
        return Regeneration(policy.max_lives, last_regenerated_at, changed=clamped != lives)

    elapsed = now - last_regenerated_at
    periods = elapsed // policy.regen_period if elapsed > timedelta(0) else 0
    applied = min(periods, policy.max_lives - clamped)
    if applied <= 0:
        return Regeneration(clamped, last_regenerated_at, changed=clamped != lives)

    return Regeneration(
        clamped + applied,
        last_regenerated_at + policy.regen_period * applied,
        changed=True,
    )


def next_life_at(lives: int, last_regenerated_at: datetime, policy: LivesPolicy) -> datetime | None:
    """When the next life lands, or None at the cap."""
    if lives >= policy.max_lives:
        return None
    return last_regenerated_at + policy.regen_period


def ms_until(moment: datetime | None, now: datetime) -> int:
    if moment is None:
        return 0
    return max(0, int((moment - now).total_seconds() * 1000))
