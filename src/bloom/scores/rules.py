"""Per-game acceptance bounds.

Bounds are data: a new game type is a new entry here or in the
``BLOOM_GAME_RULES`` setting, which is merged over these defaults.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, replace
from typing import Any

from bloom.config import Settings


@dataclass(frozen=True)
class GameRules:
    max_score: int
    max_monthly_profit: int = 10_000_000
    min_duration_seconds: int = 10
    max_duration_seconds: int = 3600
    max_score_per_second: float = 100.0
    requires_validation_data: bool = False


DEFAULT_GAME_RULES: dict[str, GameRules] = {
    "card_match": GameRules(
        max_score=10_000,
        max_monthly_profit=10_000_000,
        min_duration_seconds=10,
        max_duration_seconds=3600,
        max_score_per_second=100.0,
        requires_validation_data=True,
    ),
    "harvest": GameRules(
        max_score=100_000,
        max_monthly_profit=10_000_000,
        min_duration_seconds=10,
        max_duration_seconds=7200,
        max_score_per_second=250.0,
    ),
}


def load_rules(settings: Settings) -> dict[str, GameRules]:
    """Defaults overlaid with configured overrides (partial overrides allowed)."""
    rules = dict(DEFAULT_GAME_RULES)
    overrides: Mapping[str, Mapping[str, Any]] = settings.game_rules
    for game_type, fields in overrides.items():
        base = rules.get(game_type)
        rules[game_type] = replace(base, **fields) if base else GameRules(**fields)
    return rules
