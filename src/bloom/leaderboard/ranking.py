"""Deterministic leaderboard ranking.

Each game mode ranks with an explicit rule. A player's rank is one plus the
number of players strictly better under that rule, so ties share a rank
(1, 2, 2, 4). Within a tie the list order falls back to user id, which keeps
pages stable across requests.

The ``profit`` rule orders by monthly profit, highest first, then by total
score, lowest first: a player who reached the same profit with fewer points
places higher.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class PlayerAggregate:
    """A player's validated results summed over one period."""

    user_id: int
    wallet_address: str
    total_profit: int
    total_score: int
    games_played: int
    best_moves: int | None = None
    best_time: int | None = None


@dataclass(frozen=True)
class RankedEntry:
    rank: int
    player: PlayerAggregate


@dataclass(frozen=True)
class RankingRule:
    name: str
    # Smaller key == better placement
    key: Callable[[PlayerAggregate], tuple[Any, ...]]


def _profit_key(p: PlayerAggregate) -> tuple[Any, ...]:
    # Highest profit first; equal profit goes to the lower total score
    return (-p.total_profit, p.total_score)


def _moves_time_key(p: PlayerAggregate) -> tuple[Any, ...]:
    # Players without move data sort after everyone who has it
    return (
        p.best_moves is None,
        p.best_moves if p.best_moves is not None else 0,
        p.best_time is None,
        p.best_time if p.best_time is not None else 0,
    )


PROFIT = RankingRule("profit", _profit_key)
MOVES_TIME = RankingRule("moves_time", _moves_time_key)

RULES: dict[str, RankingRule] = {PROFIT.name: PROFIT, MOVES_TIME.name: MOVES_TIME}


def rule_for(game_type: str | None, rules_by_game: Mapping[str, str], default: str = "profit") -> RankingRule:
    """Look up the configured rule for a game mode (None = overall board)."""
    name = rules_by_game.get(game_type, default) if game_type else default
    try:
        return RULES[name]
    except KeyError:
        msg = f"Unknown ranking rule {name!r} for game type {game_type!r}"
        raise ValueError(msg) from None


def rank_players(players: Iterable[PlayerAggregate], rule: RankingRule) -> list[RankedEntry]:
    """Sort players and assign competition ranks."""
    ordered = sorted(players, key=lambda p: (rule.key(p), p.user_id))
    ranked: list[RankedEntry] = []
    previous_key: tuple[Any, ...] | None = None
    rank = 0
    for index, player in enumerate(ordered, start=1):
        key = rule.key(player)
        if key != previous_key:
            rank = index
            previous_key = key
        ranked.append(RankedEntry(rank=rank, player=player))
    return ranked
