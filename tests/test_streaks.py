"""tests/test_streaks.py

Unit tests for streak bookkeeping (coach/streaks.py).
"""

from __future__ import annotations

# Standard Library
from datetime import date, datetime, timedelta

# Third-Party Libraries
import pytest

# Local Modules
from coach.store import InMemoryRecordStore
from coach.streaks import next_streak, recalculate_streak

USER = "user-1"


class TestNextStreak:
    """Pure streak arithmetic."""

    TODAY = date(2026, 3, 15)

    def test_first_check_in(self) -> None:
        assert next_streak(0, None, self.TODAY) == 1

    def test_same_day_unchanged(self) -> None:
        assert next_streak(4, self.TODAY, self.TODAY) == 4

    def test_same_day_with_zero_streak(self) -> None:
        assert next_streak(0, self.TODAY, self.TODAY) == 1

    def test_consecutive_day_increments(self) -> None:
        assert next_streak(4, self.TODAY - timedelta(days=1), self.TODAY) == 5

    @pytest.mark.parametrize("gap", [2, 3, 30])
    def test_gap_resets(self, gap: int) -> None:
        assert next_streak(9, self.TODAY - timedelta(days=gap), self.TODAY) == 1


class TestRecalculateStreak:
    """Profile updates against the record store."""

    def test_consecutive_days_then_gap(self, store: InMemoryRecordStore, fixed_now: datetime) -> None:
        assert recalculate_streak(store, USER, fixed_now) == {"current_streak": 1, "longest_streak": 1}
        assert recalculate_streak(store, USER, fixed_now + timedelta(days=1)) == {
            "current_streak": 2,
            "longest_streak": 2,
        }
        # Second check-in on the same day
        assert recalculate_streak(store, USER, fixed_now + timedelta(days=1, hours=3)) == {
            "current_streak": 2,
            "longest_streak": 2,
        }
        # Missed a day: streak restarts, longest is kept
        assert recalculate_streak(store, USER, fixed_now + timedelta(days=4)) == {
            "current_streak": 1,
            "longest_streak": 2,
        }

        profile = store.get_profile(USER)
        assert profile is not None
        assert profile["last_check_in"] == (fixed_now + timedelta(days=4)).isoformat()

    def test_missing_profile(self, store: InMemoryRecordStore, fixed_now: datetime) -> None:
        assert recalculate_streak(store, "nobody", fixed_now) is None

    def test_other_users_untouched(self, store: InMemoryRecordStore, fixed_now: datetime) -> None:
        recalculate_streak(store, USER, fixed_now)
        other = store.get_profile("user-2")
        assert other is not None
        assert other["current_streak"] == 4
