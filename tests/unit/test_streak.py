"""Daily bonus streak arithmetic."""

from __future__ import annotations

import pytest

from bloom.bonus.streak import STREAK_LENGTH, BonusPolicy, next_streak_day, reward_for_day
from bloom.errors import AlreadyClaimed

POLICY = BonusPolicy(daily_amount=200, jackpot_multiplier=10)


class TestNextStreakDay:
    def test_first_claim(self):
        assert next_streak_day(None, 0, "2026-03-14") == 1

    def test_consecutive_day_advances(self):
        assert next_streak_day("2026-03-13", 3, "2026-03-14") == 4

    def test_gap_resets(self):
        assert next_streak_day("2026-03-12", 5, "2026-03-14") == 1

    def test_wraps_after_jackpot(self):
        assert next_streak_day("2026-03-13", STREAK_LENGTH, "2026-03-14") == 1

    def test_crosses_month(self):
        assert next_streak_day("2026-02-28", 2, "2026-03-01") == 3

    def test_same_day_raises(self):
        with pytest.raises(AlreadyClaimed):
            next_streak_day("2026-03-14", 2, "2026-03-14")


class TestReward:
    @pytest.mark.parametrize("day", range(1, STREAK_LENGTH))
    def test_regular_days(self, day):
        assert reward_for_day(day, POLICY) == 200

    def test_jackpot(self):
        assert reward_for_day(7, POLICY) == 2000

    def test_out_of_range(self):
        with pytest.raises(ValueError):
            reward_for_day(8, POLICY)
