"""Daily login streak and bonus amounts.

Streak days run 1..7 and wrap. Claiming on consecutive calendar days
advances the streak, any gap restarts it at day 1, and day 7 pays the
jackpot.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta

from bloom.config import Settings
from bloom.errors import AlreadyClaimed

STREAK_LENGTH = 7


@dataclass(frozen=True)
class BonusPolicy:
    daily_amount: int = 200 * 10**18
    jackpot_multiplier: int = 10
    cooldown: timedelta = timedelta(hours=24)

    @classmethod
    def from_settings(cls, settings: Settings) -> BonusPolicy:
        return cls(
            daily_amount=int(settings.daily_bonus_amount),
            jackpot_multiplier=settings.daily_bonus_jackpot_multiplier,
            cooldown=timedelta(hours=settings.daily_claim_cooldown_hours),
        )


def next_streak_day(last_claim_date: str | None, current_streak: int, today: str) -> int:
    """The streak day a claim made on ``today`` would earn.

    Raises:
        AlreadyClaimed: ``last_claim_date`` is ``today``.
    """
    if last_claim_date is None:
        return 1
    if last_claim_date == today:
        raise AlreadyClaimed()
    yesterday = (date.fromisoformat(today) - timedelta(days=1)).isoformat()
    if last_claim_date == yesterday:
        return (max(current_streak, 0) % STREAK_LENGTH) + 1
    return 1


def reward_for_day(day: int, policy: BonusPolicy) -> int:
    """Flat daily amount, multiplied on the last day of the streak."""
    if not 1 <= day <= STREAK_LENGTH:
        msg = f"Streak day must be 1..{STREAK_LENGTH}, got {day}"
        raise ValueError(msg)
    if day == STREAK_LENGTH:
        return policy.daily_amount * policy.jackpot_multiplier
    return policy.daily_amount
