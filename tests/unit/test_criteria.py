"""Criteria evaluation: extraction, operators, check order and reason codes."""

from __future__ import annotations

import operator
from datetime import datetime, timedelta, timezone

import pytest
from hypothesis import given
from hypothesis import strategies as st

from rewards.errors import ConfigurationError
from rewards.gamification.criteria import (
    CRITERIA_FIELDS,
    THRESHOLD_OPERATORS,
    evaluate,
    evaluate_threshold,
    extract_value,
    progress_percent,
)
from rewards.gamification.schemas import BadgeDefinition, ReasonCode, SeasonalWindow, StatsSnapshot

NOW = datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)


def badge(**overrides) -> BadgeDefinition:
    fields = {
        "badge_id": "sharer_10",
        "name": "Ten Shares",
        "criteria_type": "shares_count",
        "threshold_value": 10,
        "xp_reward": 50,
        "points_reward": 5,
    }
    fields.update(overrides)
    return BadgeDefinition(**fields)


def snapshot(**overrides) -> StatsSnapshot:
    return StatsSnapshot(user_id="u1", **overrides)


class TestExtraction:
    """Test the criteria_type -> snapshot field table."""

    def test_table_has_twelve_entries(self):
        assert len(CRITERIA_FIELDS) == 12

    def test_consecutive_days_reads_streak(self):
        stats = snapshot(sharing_streak_days=7)
        assert extract_value(stats, "consecutive_days") == 7
        assert extract_value(stats, "streak_days") == 7

    def test_badge_count_reads_total_badges(self):
        assert extract_value(snapshot(total_badges_earned=4), "badge_count") == 4

    def test_unknown_type_reads_zero(self):
        assert extract_value(snapshot(current_xp=900), "moon_phase") == 0


class TestThresholdOperators:
    """evaluate_threshold matches Python's comparison semantics."""

    @given(
        op=st.sampled_from(sorted(THRESHOLD_OPERATORS)),
        current=st.integers(min_value=-10_000, max_value=10_000),
        threshold=st.integers(min_value=-10_000, max_value=10_000),
    )
    def test_matches_standard_comparison(self, op, current, threshold):
        expected = {
            ">=": operator.ge, "==": operator.eq, "<=": operator.le,
            ">": operator.gt, "<": operator.lt, "!=": operator.ne,
        }[op](current, threshold)
        assert evaluate_threshold(op, current, threshold) is expected

    def test_unknown_operator_raises(self):
        with pytest.raises(ConfigurationError):
            evaluate_threshold("=>", 1, 1)


class TestProgressPercent:
    def test_clamped_at_100(self):
        assert progress_percent(25, 10) == 100.0

    def test_non_positive_threshold_is_zero(self):
        assert progress_percent(5, 0) == 0.0

    @given(current=st.floats(min_value=-1e6, max_value=1e6), threshold=st.floats(min_value=-1e6, max_value=1e6))
    def test_always_within_bounds(self, current, threshold):
        assert 0.0 <= progress_percent(current, threshold) <= 100.0


class TestEvaluate:
    """Check order and reason codes."""

    def test_ten_shares_is_eligible(self):
        result = evaluate(badge(), frozenset(), snapshot(total_apps_shared=10), now=NOW)
        assert result.eligible is True
        assert result.reason == ReasonCode.ELIGIBLE
        assert result.progress_percent == 100.0

    def test_nine_shares_is_ninety_percent(self):
        result = evaluate(badge(), frozenset(), snapshot(total_apps_shared=9), now=NOW)
        assert result.eligible is False
        assert result.reason == ReasonCode.THRESHOLD_NOT_MET
        assert result.progress_percent == 90.0

    def test_inactive_badge_reads_not_found(self):
        result = evaluate(badge(is_active=False), frozenset(), snapshot(total_apps_shared=10), now=NOW)
        assert result.reason == ReasonCode.BADGE_NOT_FOUND

    def test_already_earned(self):
        result = evaluate(badge(), {"sharer_10"}, snapshot(total_apps_shared=50), now=NOW)
        assert result.reason == ReasonCode.ALREADY_EARNED

    def test_repeatable_badge_ignores_earned_set(self):
        result = evaluate(badge(is_repeatable=True), {"sharer_10"}, snapshot(total_apps_shared=10), now=NOW)
        assert result.eligible is True

    def test_repeatable_badge_cooling_down(self):
        result = evaluate(
            badge(is_repeatable=True, cooldown_days=7),
            frozenset(),
            snapshot(total_apps_shared=10),
            now=NOW,
            last_earned_at=NOW - timedelta(days=3),
        )
        assert result.reason == ReasonCode.COOLDOWN_ACTIVE

    def test_repeatable_badge_after_cooldown(self):
        result = evaluate(
            badge(is_repeatable=True, cooldown_days=7),
            frozenset(),
            snapshot(total_apps_shared=10),
            now=NOW,
            last_earned_at=NOW - timedelta(days=7),
        )
        assert result.eligible is True

    def test_outside_seasonal_window(self):
        window = SeasonalWindow(start=NOW + timedelta(days=1), end=NOW + timedelta(days=30))
        result = evaluate(badge(seasonal_window=window), frozenset(), snapshot(total_apps_shared=10), now=NOW)
        assert result.reason == ReasonCode.OUTSIDE_SEASONAL_PERIOD

    def test_prerequisite_missing(self):
        result = evaluate(
            badge(prerequisite_badges=frozenset({"first_share", "sharer_5"})),
            {"first_share"},
            snapshot(total_apps_shared=10),
            now=NOW,
        )
        assert result.reason == ReasonCode.PREREQUISITE_MISSING

    def test_exclusive_conflict(self):
        result = evaluate(
            badge(exclusive_with=frozenset({"lone_wolf"})),
            {"lone_wolf"},
            snapshot(total_apps_shared=10),
            now=NOW,
        )
        assert result.reason == ReasonCode.EXCLUSIVE_CONFLICT

    def test_already_earned_checked_before_season(self):
        window = SeasonalWindow(start=NOW + timedelta(days=1), end=NOW + timedelta(days=30))
        result = evaluate(badge(seasonal_window=window), {"sharer_10"}, snapshot(), now=NOW)
        assert result.reason == ReasonCode.ALREADY_EARNED

    def test_zero_threshold_is_invalid_configuration(self):
        result = evaluate(badge(threshold_value=0), frozenset(), snapshot(total_apps_shared=10), now=NOW)
        assert result.eligible is False
        assert result.reason == ReasonCode.INVALID_CONFIGURATION
        assert result.progress_percent == 0.0

    def test_unknown_criteria_type_is_invalid_configuration(self):
        result = evaluate(badge(criteria_type="moon_phase"), frozenset(), snapshot(), now=NOW)
        assert result.reason == ReasonCode.INVALID_CONFIGURATION
        assert result.current_value == 0

    def test_unknown_operator_is_invalid_configuration(self):
        result = evaluate(badge(threshold_operator="=>"), frozenset(), snapshot(total_apps_shared=10), now=NOW)
        assert result.reason == ReasonCode.INVALID_CONFIGURATION

    def test_not_equal_operator(self):
        result = evaluate(
            badge(criteria_type="level_reached", threshold_operator="!=", threshold_value=1),
            frozenset(),
            snapshot(user_level=3),
            now=NOW,
        )
        assert result.eligible is True
