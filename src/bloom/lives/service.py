"""Lives and barn attempts business logic.

Every read re-derives regeneration and cooldown expiry; rows are only
written when the derived state differs from what is stored.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from bloom.config import get_settings
from bloom.db.models import ResourceState
from bloom.errors import NoLivesRemaining
from bloom.lives import attempts
from bloom.lives.attempts import AttemptsPolicy
from bloom.lives.engine import LivesPolicy, ms_until, next_life_at, regenerate
from bloom.periods import day_string, to_epoch_ms

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = structlog.get_logger()


@dataclass(frozen=True)
class LivesStatus:
    lives: int
    max_lives: int
    next_life_at: datetime | None
    next_life_in_ms: int
    can_play: bool


@dataclass(frozen=True)
class ConsumeResult:
    lives_remaining: int
    next_life_at: datetime | None


@dataclass(frozen=True)
class FullStatus:
    lives: LivesStatus
    has_active_pass: bool
    play_pass_expires_at: datetime | None
    play_pass_remaining_ms: int
    is_in_cooldown: bool
    cooldown_ends_at: datetime | None
    cooldown_remaining_ms: int
    attempts_remaining: int
    max_attempts: int
    free_game_available: bool
    has_active_game: bool
    can_play: bool


def _policies() -> tuple[LivesPolicy, AttemptsPolicy]:
    settings = get_settings()
    return LivesPolicy.from_settings(settings), AttemptsPolicy.from_settings(settings)


def _now(now: datetime | None) -> datetime:
    return now or datetime.now(timezone.utc)


async def _select_state(db: AsyncSession, user_id: int, *, for_update: bool = False) -> ResourceState | None:
    stmt = select(ResourceState).where(ResourceState.user_id == user_id)
    if for_update:
        stmt = stmt.with_for_update()
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def get_or_create_state(
    db: AsyncSession,
    user_id: int,
    *,
    now: datetime | None = None,
    for_update: bool = False,
) -> ResourceState:
    """Fetch the user's resource row, creating it with full lives if missing."""
    state = await _select_state(db, user_id, for_update=for_update)
    if state is not None:
        return state

    lives_policy, attempts_policy = _policies()
    state = ResourceState(
        user_id=user_id,
        lives=lives_policy.max_lives,
        lives_last_regenerated_at=_now(now),
        attempts_remaining=attempts_policy.max_attempts,
    )
    db.add(state)
    try:
        await db.flush()
    except IntegrityError:
        # Another request created it first
        await db.rollback()
        state = await _select_state(db, user_id, for_update=for_update)
        if state is None:
            raise
    return state


def _refresh(state: ResourceState, now: datetime, lives_policy: LivesPolicy, attempts_policy: AttemptsPolicy) -> bool:
    regen = regenerate(state.lives, state.lives_last_regenerated_at, now, lives_policy)
    changed = regen.changed
    if regen.changed:
        state.lives = regen.lives
        state.lives_last_regenerated_at = regen.last_regenerated_at
    if attempts.expire_cooldown(state, now, attempts_policy):
        changed = True
    return changed


def _lives_status(state: ResourceState, now: datetime, policy: LivesPolicy) -> LivesStatus:
    next_at = next_life_at(state.lives, state.lives_last_regenerated_at, policy)
    return LivesStatus(
        lives=state.lives,
        max_lives=policy.max_lives,
        next_life_at=next_at,
        next_life_in_ms=ms_until(next_at, now),
        can_play=state.lives > 0,
    )


async def _load(db: AsyncSession, user_id: int, now: datetime, *, for_update: bool) -> ResourceState:
    lives_policy, attempts_policy = _policies()
    state = await get_or_create_state(db, user_id, now=now, for_update=for_update)
    _refresh(state, now, lives_policy, attempts_policy)
    return state


async def get_status(db: AsyncSession, user_id: int, *, now: datetime | None = None) -> LivesStatus:
    """Current lives with regeneration applied (and persisted if it moved)."""
    now = _now(now)
    lives_policy, _ = _policies()
    state = await _load(db, user_id, now, for_update=False)
    await db.commit()
    return _lives_status(state, now, lives_policy)


async def consume(db: AsyncSession, user_id: int, *, now: datetime | None = None) -> ConsumeResult:
    """Spend one life to start a game.

    Raises:
        NoLivesRemaining: The user has no lives after regeneration.
    """
    now = _now(now)
    lives_policy, _ = _policies()
    state = await _load(db, user_id, now, for_update=True)

    if state.lives <= 0:
        await db.commit()
        status = _lives_status(state, now, lives_policy)
        raise NoLivesRemaining(
            f"No lives remaining. Lives regenerate every {lives_policy.regen_period.total_seconds() / 3600:g} hours.",
            data={
                "livesRemaining": 0,
                "nextLifeAt": to_epoch_ms(status.next_life_at),
                "nextLifeInMs": status.next_life_in_ms,
            },
        )

    if state.lives >= lives_policy.max_lives:
        # The regeneration clock is idle at the cap; it starts with this life
        state.lives_last_regenerated_at = now
    state.lives -= 1
    state.has_active_game = True
    state.last_played_date = day_string(now)
    await db.commit()

    logger.info("life_consumed", user_id=user_id, lives_remaining=state.lives)
    return ConsumeResult(
        lives_remaining=state.lives,
        next_life_at=next_life_at(state.lives, state.lives_last_regenerated_at, lives_policy),
    )


async def grant(db: AsyncSession, user_id: int, amount: int, *, now: datetime | None = None) -> LivesStatus:
    """Add lives (purchases, rewards), capped at the maximum."""
    now = _now(now)
    lives_policy, _ = _policies()
    state = await _load(db, user_id, now, for_update=True)
    new_lives = min(state.lives + max(0, amount), lives_policy.max_lives)
    if new_lives != state.lives:
        state.lives = new_lives
        logger.info("lives_granted", user_id=user_id, amount=amount, lives=new_lives)
    await db.commit()
    return _lives_status(state, now, lives_policy)


async def end_game(db: AsyncSession, user_id: int, *, now: datetime | None = None) -> None:
    """Clear the active-game flag."""
    state = await _load(db, user_id, _now(now), for_update=True)
    if state.has_active_game:
        state.has_active_game = False
    await db.commit()


async def record_attempt(
    db: AsyncSession,
    user_id: int,
    *,
    coins_won: int = 0,
    match_found: bool = False,
    now: datetime | None = None,
) -> FullStatus:
    """Spend one barn attempt; raises CooldownActive while blocked."""
    now = _now(now)
    _, attempts_policy = _policies()
    state = await _load(db, user_id, now, for_update=True)
    try:
        attempts.record_attempt(state, now, attempts_policy, coins_won=coins_won, match_found=match_found)
    finally:
        await db.commit()
    return _full_status(state, now)


async def use_free_game(db: AsyncSession, user_id: int, *, now: datetime | None = None) -> FullStatus:
    """Start the free game of this cooldown cycle."""
    now = _now(now)
    _, attempts_policy = _policies()
    state = await _load(db, user_id, now, for_update=True)
    try:
        started = attempts.use_free_game(state, now, attempts_policy)
    finally:
        await db.commit()
    if started:
        logger.info("free_game_started", user_id=user_id, cooldown_ends_at=state.cooldown_ends_at)
    return _full_status(state, now)


def _full_status(state: ResourceState, now: datetime) -> FullStatus:
    lives_policy, attempts_policy = _policies()
    lives = _lives_status(state, now, lives_policy)
    has_pass = attempts.pass_active(state, now)
    in_cooldown = attempts.cooldown_active(state, now)
    return FullStatus(
        lives=lives,
        has_active_pass=has_pass,
        play_pass_expires_at=state.play_pass_expires_at,
        play_pass_remaining_ms=ms_until(state.play_pass_expires_at, now) if has_pass else 0,
        is_in_cooldown=in_cooldown,
        cooldown_ends_at=state.cooldown_ends_at if in_cooldown else None,
        cooldown_remaining_ms=attempts.cooldown_remaining_ms(state, now),
        attempts_remaining=state.attempts_remaining,
        max_attempts=attempts_policy.max_attempts,
        free_game_available=not state.free_game_used,
        has_active_game=state.has_active_game,
        can_play=lives.lives > 0 and (has_pass or not in_cooldown),
    )


async def get_full_status(db: AsyncSession, user_id: int, *, now: datetime | None = None) -> FullStatus:
    """Lives merged with play pass, cooldown and attempts state."""
    now = _now(now)
    state = await _load(db, user_id, now, for_update=False)
    await db.commit()
    return _full_status(state, now)
