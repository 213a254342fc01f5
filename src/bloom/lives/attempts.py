"""Bounded-attempts mode: attempts, cooldown and play pass rules.

These helpers mutate a ``ResourceState`` row in memory and report whether
anything changed; persistence is the caller's job. Cooldown expiry is
evaluated lazily whenever state is touched.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from bloom.config import Settings
from bloom.db.models import ResourceState
from bloom.errors import CooldownActive
from bloom.lives.engine import ms_until
from bloom.periods import day_string


@dataclass(frozen=True)
class AttemptsPolicy:
    max_attempts: int = 10
    cooldown: timedelta = timedelta(hours=24)
    play_pass_duration: timedelta = timedelta(hours=1)

    @classmethod
    def from_settings(cls, settings: Settings) -> AttemptsPolicy:
        return cls(
            max_attempts=settings.max_attempts,
            cooldown=timedelta(hours=settings.attempts_cooldown_hours),
            play_pass_duration=timedelta(minutes=settings.play_pass_duration_minutes),
        )


def pass_active(state: ResourceState, now: datetime) -> bool:
    return state.play_pass_expires_at is not None and state.play_pass_expires_at > now


def cooldown_active(state: ResourceState, now: datetime) -> bool:
    """True while a cooldown is running and no play pass overrides it."""
    if pass_active(state, now):
        return False
    return state.cooldown_ends_at is not None and state.cooldown_ends_at > now


def cooldown_remaining_ms(state: ResourceState, now: datetime) -> int:
    if not cooldown_active(state, now):
        return 0
    return ms_until(state.cooldown_ends_at, now)


def expire_cooldown(state: ResourceState, now: datetime, policy: AttemptsPolicy) -> bool:
    """Reset attempts and daily counters once a cooldown has run out."""
    if state.cooldown_ends_at is None or state.cooldown_ends_at > now:
        return False
    state.attempts_remaining = policy.max_attempts
    state.cooldown_started_at = None
    state.cooldown_ends_at = None
    state.coins_won_today = 0
    state.matches_found_today = 0
    state.free_game_used = False
    return True


def _start_cooldown(state: ResourceState, now: datetime, policy: AttemptsPolicy) -> None:
    state.cooldown_started_at = now
    state.cooldown_ends_at = now + policy.cooldown


def record_attempt(
    state: ResourceState,
    now: datetime,
    policy: AttemptsPolicy,
    *,
    coins_won: int = 0,
    match_found: bool = False,
) -> None:
    """Spend one attempt. The last attempt starts the cooldown.

    With an active play pass nothing is spent; only the daily counters move.
    """
    expire_cooldown(state, now, policy)
    if cooldown_active(state, now):
        raise CooldownActive(cooldown_remaining_ms(state, now), "No attempts left. Wait for cooldown or purchase a Play Pass.")

    state.coins_won_today += max(0, coins_won)
    if match_found:
        state.matches_found_today += 1
    state.has_active_game = True
    state.last_played_date = day_string(now)

    if pass_active(state, now):
        return

    state.attempts_remaining = max(0, state.attempts_remaining - 1)
    if state.attempts_remaining == 0:
        _start_cooldown(state, now, policy)


def use_free_game(state: ResourceState, now: datetime, policy: AttemptsPolicy) -> bool:
    """Start the one free game of a cooldown cycle.

    Returns False when a play pass already covers play (nothing to do).
    """
    expire_cooldown(state, now, policy)
    if pass_active(state, now):
        return False
    if state.free_game_used and cooldown_active(state, now):
        raise CooldownActive(
            cooldown_remaining_ms(state, now),
            "Free game already used. Wait for cooldown or purchase Play Pass.",
            error_code="free_game_used",
        )
    state.free_game_used = True
    state.has_active_game = True
    state.last_played_date = day_string(now)
    _start_cooldown(state, now, policy)
    return True


def grant_play_pass(state: ResourceState, now: datetime, policy: AttemptsPolicy) -> datetime:
    """Activate a play pass from ``now`` and clear any cooldown."""
    expires_at = now + policy.play_pass_duration
    state.play_pass_purchased_at = now
    state.play_pass_expires_at = expires_at
    state.cooldown_started_at = None
    state.cooldown_ends_at = None
    state.attempts_remaining = policy.max_attempts
    state.free_game_used = False
    state.has_active_game = False
    return expires_at
