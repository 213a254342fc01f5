"""Score anti-cheat validation."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from bloom.scores.rules import DEFAULT_GAME_RULES, GameRules
from bloom.scores.schemas import CardMatchValidation, HarvestValidation
from bloom.scores.validator import ScoreSubmission, validate_submission

START = datetime(2026, 3, 14, 12, 0, tzinfo=timezone.utc)


def card_match(score=500, seconds=120, pairs=8, total=8, moves=20, **kw) -> ScoreSubmission:
    fields = dict(
        game_type="card_match",
        score=score,
        monthly_profit=100,
        started_at=START,
        ended_at=START + timedelta(seconds=seconds),
        validation=CardMatchValidation(game_type="card_match", pairs_matched=pairs, total_pairs=total, moves=moves),
    )
    fields.update(kw)
    return ScoreSubmission(**fields)


class TestAccepted:
    def test_plausible_card_match(self):
        result = validate_submission(card_match(), DEFAULT_GAME_RULES)
        assert result.accepted
        assert result.flags == ()

    def test_harvest_without_payload(self):
        sub = ScoreSubmission("harvest", 1000, 50, START, START + timedelta(minutes=5))
        assert validate_submission(sub, DEFAULT_GAME_RULES).accepted


class TestRejected:
    def test_unknown_game(self):
        sub = ScoreSubmission("poker", 1, 0, START, START + timedelta(minutes=1))
        result = validate_submission(sub, DEFAULT_GAME_RULES)
        assert not result.accepted
        assert result.flags == ("unknown_game_type",)

    def test_too_fast(self):
        result = validate_submission(card_match(seconds=5), DEFAULT_GAME_RULES)
        assert "duration_too_short" in result.flags
        assert result.reason == "Invalid game time"

    def test_score_rate(self):
        result = validate_submission(card_match(score=9000, seconds=60), DEFAULT_GAME_RULES)
        assert result.flags == ("score_rate_exceeded",)

    def test_collects_every_failure(self):
        result = validate_submission(card_match(score=20_000, seconds=5, pairs=9, moves=3), DEFAULT_GAME_RULES)
        assert set(result.flags) >= {
            "score_out_of_range",
            "duration_too_short",
            "score_rate_exceeded",
            "pairs_exceed_total",
            "moves_below_pairs",
        }
        assert result.reason == "Invalid score"

    def test_missing_required_payload(self):
        result = validate_submission(card_match(validation=None), DEFAULT_GAME_RULES)
        assert result.flags == ("missing_validation_data",)

    def test_payload_for_other_game(self):
        payload = HarvestValidation(game_type="harvest", seeds_planted=1, plots_harvested=1, coins_earned=1)
        result = validate_submission(card_match(validation=payload), DEFAULT_GAME_RULES)
        assert result.flags == ("validation_type_mismatch",)

    def test_harvest_profit_above_coins(self):
        sub = ScoreSubmission(
            "harvest", 1000, 500, START, START + timedelta(minutes=5),
            HarvestValidation(game_type="harvest", seeds_planted=10, plots_harvested=12, coins_earned=100),
        )
        result = validate_submission(sub, DEFAULT_GAME_RULES)
        assert result.flags == ("harvest_exceeds_planted", "profit_exceeds_coins")

    def test_ended_before_start(self):
        result = validate_submission(card_match(seconds=-1), DEFAULT_GAME_RULES)
        assert result.flags[0] == "invalid_timing"


def test_custom_rules_apply():
    rules = {"card_match": GameRules(max_score=100, requires_validation_data=False)}
    result = validate_submission(card_match(score=150, validation=None), rules)
    assert result.flags == ("score_out_of_range",)
