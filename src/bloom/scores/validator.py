"""Score anti-cheat checks.

All checks run independently and every failure is reported as a flag; a
submission is accepted only with no flags. The first flag supplies the
human-readable reason.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from bloom.scores.rules import GameRules
from bloom.scores.schemas import CardMatchValidation, HarvestValidation

_MESSAGES = {
    "unknown_game_type": "Unknown game type",
    "score_out_of_range": "Invalid score",
    "profit_out_of_range": "Invalid monthly profit",
    "invalid_timing": "Game end must be after game start",
    "duration_too_short": "Invalid game time",
    "duration_too_long": "Invalid game time",
    "score_rate_exceeded": "Score rate exceeds what the game allows",
    "missing_validation_data": "Validation data is required for this game",
    "validation_type_mismatch": "Validation data does not match the game type",
    "pairs_exceed_total": "Matched pairs exceed total pairs",
    "moves_below_pairs": "Fewer moves than matched pairs",
    "harvest_exceeds_planted": "More plots harvested than seeds planted",
    "profit_exceeds_coins": "Profit exceeds coins earned",
}


@dataclass(frozen=True)
class ScoreSubmission:
    game_type: str
    score: int
    monthly_profit: int
    started_at: datetime
    ended_at: datetime
    validation: CardMatchValidation | HarvestValidation | None = None

    @property
    def duration_seconds(self) -> float:
        return (self.ended_at - self.started_at).total_seconds()


@dataclass(frozen=True)
class ValidationResult:
    accepted: bool
    reason: str | None = None
    flags: tuple[str, ...] = field(default_factory=tuple)


def _card_match_flags(sub: ScoreSubmission, data: CardMatchValidation) -> list[str]:
    flags = []
    if data.pairs_matched > data.total_pairs:
        flags.append("pairs_exceed_total")
    if data.moves < data.pairs_matched:
        flags.append("moves_below_pairs")
    return flags


def _harvest_flags(sub: ScoreSubmission, data: HarvestValidation) -> list[str]:
    flags = []
    if data.plots_harvested > data.seeds_planted:
        flags.append("harvest_exceeds_planted")
    if sub.monthly_profit > data.coins_earned:
        flags.append("profit_exceeds_coins")
    return flags


_PAYLOAD_CHECKS: dict[str, Callable[[ScoreSubmission, Any], list[str]]] = {
    "card_match": _card_match_flags,
    "harvest": _harvest_flags,
}


def validate_submission(sub: ScoreSubmission, rules: Mapping[str, GameRules]) -> ValidationResult:
    """Run every check for ``sub`` against its game's bounds."""
    rule = rules.get(sub.game_type)
    if rule is None:
        return ValidationResult(False, _MESSAGES["unknown_game_type"], ("unknown_game_type",))

    flags: list[str] = []
    if not 0 <= sub.score <= rule.max_score:
        flags.append("score_out_of_range")
    if not 0 <= sub.monthly_profit <= rule.max_monthly_profit:
        flags.append("profit_out_of_range")

    duration = sub.duration_seconds
    if duration <= 0:
        flags.append("invalid_timing")
    else:
        if duration < rule.min_duration_seconds:
            flags.append("duration_too_short")
        if duration > rule.max_duration_seconds:
            flags.append("duration_too_long")
        if sub.score / duration > rule.max_score_per_second:
            flags.append("score_rate_exceeded")

    data = sub.validation
    if data is None:
        if rule.requires_validation_data:
            flags.append("missing_validation_data")
    elif data.game_type != sub.game_type:
        flags.append("validation_type_mismatch")
    else:
        check = _PAYLOAD_CHECKS.get(data.game_type)
        if check is not None:
            flags.extend(check(sub, data))

    if flags:
        return ValidationResult(False, _MESSAGES[flags[0]], tuple(flags))
    return ValidationResult(True)
