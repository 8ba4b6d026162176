"""
Tests for the RecoveryTracker and its pure helpers.

Covers:
- Theil-Sen slope and the minimum-effect gate
- Habit formation windows
- Setback vs relapse vs unresolved spikes
- Lazy, idempotent week finalization with empty-week catch-up
- Relapse warnings and the sensitivity feedback factor
"""

from __future__ import annotations

from datetime import date, timedelta

import pytest

from crisis_engine.models.assessment import CrisisAssessment, DetectedSignal
from crisis_engine.models.snapshot import SessionPatterns, WeekActivity, WeeklySnapshot
from crisis_engine.services.recovery_tracker import (
    InterventionTier,
    RecoveryTracker,
    RegressionType,
    TrendDirection,
    classify_regression,
    find_habit,
    find_spike_runs,
    theil_sen_slope,
    trend_direction,
)

FIRST_WEEK = date(2026, 1, 5)  # Monday


def _weeks(n):
    return [FIRST_WEEK + timedelta(days=7 * i) for i in range(n)]


def _snapshot(week, crises=0, entries=5, sessions=3, severity=0.7):
    return WeeklySnapshot(
        week=week,
        entries_logged=entries,
        crisis_events=tuple(
            CrisisAssessment(detected_crisis="panic_attack", confidence=severity) for _ in range(crises)
        ),
        session_patterns=SessionPatterns(sessions=sessions, active_minutes=30.0),
    )


def _history(counts):
    return [_snapshot(w, c) for w, c in zip(_weeks(len(counts)), counts, strict=True)]


# =============================================================================
# Trends
# =============================================================================


class TestTrends:
    def test_theil_sen_ignores_single_outlier(self):
        assert theil_sen_slope([1, 2, 30, 4, 5]) == pytest.approx(1.0)

    def test_theil_sen_degenerate(self):
        assert theil_sen_slope([5]) == 0.0
        assert theil_sen_slope([]) == 0.0

    def test_decreasing(self):
        result = trend_direction("crisis_frequency", [4, 3, 2, 1])
        assert result.direction == TrendDirection.DECREASING
        assert result.slope == pytest.approx(-1.0)
        assert result.weeks == 4

    def test_too_few_weeks_is_flat(self):
        result = trend_direction("crisis_frequency", [1, 5, 9])
        assert result.direction == TrendDirection.FLAT
        assert result.weeks == 3

    def test_small_slope_is_gated(self):
        result = trend_direction("severity", [0.5, 0.51, 0.52, 0.53])
        assert result.direction == TrendDirection.FLAT

    def test_only_trailing_window_counts(self):
        result = trend_direction("crisis_frequency", [9, 8, 7, 6, 1, 1, 1, 1], window=4)
        assert result.direction == TrendDirection.FLAT


# =============================================================================
# Habits
# =============================================================================


class TestHabits:
    def test_formation_week_is_end_of_first_stable_window(self):
        weeks = _weeks(6)
        status = find_habit("entries_logged", weeks, [0, 1, 4, 5, 4, 5])
        assert status.formed is True
        assert status.formation_week == weeks[5]
        assert status.holding is True

    def test_low_mean_is_not_a_habit(self):
        status = find_habit("entries_logged", _weeks(5), [1, 1, 1, 1, 1])
        assert status.formed is False
        assert status.formation_week is None

    def test_formed_habit_can_stop_holding(self):
        weeks = _weeks(6)
        status = find_habit("sessions", weeks, [5, 5, 5, 5, 0, 0])
        assert status.formation_week == weeks[3]
        assert status.holding is False

    def test_tracker_habits(self):
        tracker = RecoveryTracker(history=_history([0, 0, 0, 0]))
        habits = tracker.habits()
        assert habits["entries_logged"].formed is True
        assert habits["sessions"].formed is True


# =============================================================================
# Regression Classification
# =============================================================================


class TestRegression:
    def test_single_week_spike_is_setback(self):
        counts = [1, 1, 1, 1, 6, 1]
        result = classify_regression(_weeks(6), counts, [0.7] * 6)
        assert result.kind == RegressionType.SETBACK
        assert result.confidence == pytest.approx(0.9)
        assert result.weeks_elevated == 1
        assert result.weeks_since_end == 1
        assert result.spike_week == _weeks(6)[4]
        assert result.tier == InterventionTier.SUPPORT_OFFER

    def test_sustained_elevation_is_relapse(self):
        counts = [1, 1, 1, 1, 6, 6, 6, 6]
        result = classify_regression(_weeks(8), counts, [0.7] * 8)
        assert result.kind == RegressionType.RELAPSE
        assert result.confidence == pytest.approx(0.7)
        assert result.weeks_elevated == 4
        assert result.tier == InterventionTier.CRISIS_SUPPORT_MODE

    def test_relapse_baseline_stays_fixed(self):
        (run,) = find_spike_runs([1, 1, 1, 1, 6, 6, 6, 6, 6, 6])
        assert run.baseline == 1
        assert run.length == 6
        assert run.resolved is False

    def test_ongoing_short_spike_is_unresolved(self):
        result = classify_regression(_weeks(6), [1, 1, 1, 1, 6, 6])
        assert result.kind == RegressionType.UNRESOLVED
        assert result.weeks_since_end == 0

    def test_resolved_three_week_spike_is_weak_setback(self):
        result = classify_regression(_weeks(8), [1, 1, 1, 1, 6, 6, 6, 1])
        assert result.kind == RegressionType.SETBACK
        assert result.confidence == pytest.approx(0.6)

    def test_small_bumps_are_not_spikes(self):
        assert classify_regression(_weeks(6), [2, 2, 3, 4, 2, 3]).kind == RegressionType.NONE

    def test_low_severity_setback_gets_reminder(self):
        result = classify_regression(_weeks(6), [0, 0, 0, 0, 3, 0], [0.0] * 6)
        assert result.kind == RegressionType.SETBACK
        assert result.tier == InterventionTier.GENTLE_REMINDER


# =============================================================================
# Finalization
# =============================================================================


class TestFinalization:
    def test_finalize_is_idempotent(self):
        tracker = RecoveryTracker()
        first = tracker.finalize_week(WeekActivity(week=FIRST_WEEK, entries_logged=3))
        second = tracker.finalize_week(WeekActivity(week=FIRST_WEEK, entries_logged=99))
        assert second is first
        assert tracker.get(FIRST_WEEK + timedelta(days=3)).entries_logged == 3

    def test_catch_up_fills_empty_weeks(self):
        tracker = RecoveryTracker()
        pending = WeekActivity(week=FIRST_WEEK, entries_logged=4)
        today = FIRST_WEEK + timedelta(days=7 * 3 + 2)
        finalized, current = tracker.catch_up(pending, today)
        assert [s.week for s in finalized] == _weeks(3)
        assert finalized[0].entries_logged == 4
        assert finalized[1] == WeeklySnapshot.empty(_weeks(3)[1])
        assert current.week == _weeks(4)[3]
        assert current.entries_logged == 0

    def test_catch_up_twice_finalizes_nothing_new(self):
        tracker = RecoveryTracker()
        today = FIRST_WEEK + timedelta(days=14)
        _, current = tracker.catch_up(WeekActivity(week=FIRST_WEEK), today)
        finalized, again = tracker.catch_up(current, today)
        assert finalized == []
        assert again is current

    def test_catch_up_without_pending_continues_history(self):
        tracker = RecoveryTracker(history=_history([0, 0]))
        today = FIRST_WEEK + timedelta(days=7 * 4)
        finalized, current = tracker.catch_up(None, today)
        assert [s.week for s in finalized] == _weeks(4)[2:]
        assert current.week == today

    def test_fresh_tracker_starts_current_week(self):
        finalized, current = RecoveryTracker().catch_up(None, FIRST_WEEK + timedelta(days=2))
        assert finalized == []
        assert current.week == FIRST_WEEK

    def test_duplicate_history_keeps_first(self):
        a = _snapshot(FIRST_WEEK, crises=1)
        b = _snapshot(FIRST_WEEK, crises=5)
        assert RecoveryTracker(history=[a, b]).history == (a,)

    def test_history_limit(self):
        tracker = RecoveryTracker(history=_history([0] * 10), history_limit=4)
        assert [s.week for s in tracker.history] == _weeks(10)[6:]

    def test_finalized_crises_lose_details(self):
        assessment = CrisisAssessment(
            detected_crisis="panic_attack",
            confidence=0.8,
            signals=(DetectedSignal(name="forced_exit", confidence=0.8, details={"seconds_before_close": 1.6}),),
        )
        snapshot = RecoveryTracker().finalize_week(
            WeekActivity(week=FIRST_WEEK, crisis_events=[assessment])
        )
        assert snapshot.crisis_events[0].signals[0].details == {}


# =============================================================================
# Warnings and Feedback
# =============================================================================


class TestWarnings:
    def test_no_history_no_warning(self):
        assert RecoveryTracker().relapse_warning() is None

    def test_stable_history_no_warning(self):
        assert RecoveryTracker(history=_history([1] * 6)).relapse_warning() is None

    def test_relapse_warning(self):
        tracker = RecoveryTracker(history=_history([1, 1, 1, 1, 6, 6, 6, 6]))
        warning = tracker.relapse_warning()
        assert warning is not None
        assert warning.week == _weeks(8)[-1]
        assert "sustained_elevation_4w" in warning.signals
        assert "crisis_frequency_increasing" in warning.signals
        assert warning.trend == "increasing"
        assert warning.recommended_action == InterventionTier.CRISIS_SUPPORT_MODE.value
        assert warning.confidence == pytest.approx(0.9)

    def test_resolved_setback_does_not_warn(self):
        tracker = RecoveryTracker(history=_history([1, 1, 1, 1, 6, 1, 1, 1, 1, 1]))
        assert tracker.regression().kind == RegressionType.SETBACK
        assert tracker.relapse_warning() is None

    def test_elevated_weeks(self):
        tracker = RecoveryTracker(history=_history([1, 1, 1, 1, 6, 1]))
        assert tracker.elevated_weeks() == frozenset({_weeks(6)[4]})

    @pytest.mark.parametrize(
        ("counts", "expected"),
        [
            ([1, 1, 1, 1], 1.0),
            ([1, 1, 1, 1, 6, 1], 0.95),
            ([1, 1, 1, 1, 6, 6], 0.95),
            ([1, 1, 1, 1, 6, 6, 6, 6], 0.9),
            ([1, 1, 1, 1, 6, 1, 1, 1, 1, 1, 1], 1.0),  # setback ended 6 weeks ago
        ],
    )
    def test_sensitivity_factor(self, counts, expected):
        assert RecoveryTracker(history=_history(counts)).sensitivity_factor() == expected
