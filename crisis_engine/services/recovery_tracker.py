"""
Longitudinal Recovery Tracker.

Aggregates finalized WeeklySnapshots into:
- trend directions for crisis frequency, severity, recovery time and
  engagement breadth (Theil-Sen slope with a minimum-effect gate)
- habit formation (low variance, useful mean over 4-week windows)
- setback vs relapse classification of weekly crisis-count spikes
- on-demand relapse warnings
- a sensitivity factor fed back into personalization

Finalization is lazy and idempotent: the engine calls catch_up() on open,
missing weeks become zero-activity snapshots, and finalizing a week that
already has a snapshot returns the stored one unchanged.

Recovery is non-monotonic, so every rule here looks at runs of weeks,
never at a single week-over-week delta.
"""

from __future__ import annotations

import logging
import statistics
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from datetime import date, timedelta
from enum import StrEnum
from typing import Any

from crisis_engine.models.snapshot import RelapseWarning, WeekActivity, WeeklySnapshot, week_start

logger = logging.getLogger(__name__)


# =============================================================================
# Enums
# =============================================================================


class TrendDirection(StrEnum):
    INCREASING = "increasing"
    DECREASING = "decreasing"
    FLAT = "flat"


class RegressionType(StrEnum):
    """Classification of the most recent crisis-count spike."""

    NONE = "none"
    SETBACK = "setback"        # Transient spike that resolved
    RELAPSE = "relapse"        # Elevated for 4+ consecutive weeks
    UNRESOLVED = "unresolved"  # Still elevated, too early to tell


class InterventionTier(StrEnum):
    """Recommended support level, scaled by severity."""

    NONE = "none"
    GENTLE_REMINDER = "gentle_reminder"
    SUPPORT_OFFER = "support_offer"
    CRISIS_SUPPORT_MODE = "crisis_support_mode"


# =============================================================================
# Constants
# =============================================================================

MIN_TREND_WEEKS = 4

# Minimum |slope| per week before a trend is reported
MIN_EFFECT: dict[str, float] = {
    "crisis_frequency": 0.25,
    "severity": 0.03,
    "recovery_time": 1.0,
    "engagement_breadth": 0.25,
}

HABIT_WINDOW_WEEKS = 4
HABIT_VARIANCE_BOUND = 2.0
HABIT_MEAN_FLOOR = 3.0

BASELINE_WEEKS = 4
SPIKE_MIN_EXCESS = 2.0
SPIKE_RELATIVE_EXCESS = 0.5
RELAPSE_WEEKS = 4
SETBACK_RESOLVE_WEEKS = 2

# Weeks after a spike ends during which it still tightens thresholds
FEEDBACK_HORIZON_WEEKS = 4
RELAPSE_FEEDBACK = 0.9
SETBACK_FEEDBACK = 0.95


# =============================================================================
# Result Types
# =============================================================================


@dataclass(frozen=True)
class TrendResult:
    """Direction of one weekly series over the trailing window."""

    series: str
    direction: TrendDirection
    slope: float
    weeks: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "series": self.series,
            "direction": self.direction.value,
            "slope": self.slope,
            "weeks": self.weeks,
        }


@dataclass(frozen=True)
class HabitStatus:
    """Whether a weekly behavior has settled into a habit."""

    behavior: str
    formed: bool
    formation_week: date | None = None
    holding: bool = False  # Latest window still satisfies the rule

    def to_dict(self) -> dict[str, Any]:
        return {
            "behavior": self.behavior,
            "formed": self.formed,
            "formation_week": self.formation_week.isoformat() if self.formation_week else None,
            "holding": self.holding,
        }


@dataclass(frozen=True)
class SpikeRun:
    """A run of consecutive weeks with elevated crisis counts."""

    start: int           # Index of first elevated week
    length: int          # Number of elevated weeks
    baseline: float      # Pre-spike median weekly count
    threshold: float     # Count above which a week is elevated
    resolved: bool       # A non-elevated week followed the run

    @property
    def end(self) -> int:
        """Index of the last elevated week."""
        return self.start + self.length - 1


@dataclass(frozen=True)
class RegressionAssessment:
    """Setback/relapse classification of the latest spike."""

    kind: RegressionType
    confidence: float = 0.0
    severity: float = 0.0
    tier: InterventionTier = InterventionTier.NONE
    spike_week: date | None = None
    weeks_elevated: int = 0
    weeks_since_end: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "confidence": self.confidence,
            "severity": self.severity,
            "tier": self.tier.value,
            "spike_week": self.spike_week.isoformat() if self.spike_week else None,
            "weeks_elevated": self.weeks_elevated,
            "weeks_since_end": self.weeks_since_end,
        }


NO_REGRESSION = RegressionAssessment(kind=RegressionType.NONE)


# =============================================================================
# Pure Functions
# =============================================================================


def theil_sen_slope(values: Sequence[float]) -> float:
    """Median of pairwise slopes, robust to single-week outliers."""
    slopes = [
        (values[j] - values[i]) / (j - i)
        for i in range(len(values))
        for j in range(i + 1, len(values))
    ]
    return statistics.median(slopes) if slopes else 0.0


def trend_direction(series: str, values: Sequence[float], window: int = 6) -> TrendResult:
    """Trend over the trailing `window` values (FLAT below MIN_TREND_WEEKS)."""
    recent = list(values)[-window:]
    if len(recent) < MIN_TREND_WEEKS:
        return TrendResult(series=series, direction=TrendDirection.FLAT, slope=0.0, weeks=len(recent))

    slope = round(theil_sen_slope(recent), 4)
    gate = MIN_EFFECT.get(series, 0.0)
    if slope > gate:
        direction = TrendDirection.INCREASING
    elif slope < -gate:
        direction = TrendDirection.DECREASING
    else:
        direction = TrendDirection.FLAT
    return TrendResult(series=series, direction=direction, slope=slope, weeks=len(recent))


def find_habit(
    behavior: str,
    weeks: Sequence[date],
    counts: Sequence[float],
    variance_bound: float = HABIT_VARIANCE_BOUND,
    mean_floor: float = HABIT_MEAN_FLOOR,
) -> HabitStatus:
    """Earliest 4-week window with low variance and a useful mean.

    The formation week is the last week of that window, the first week
    at which the habit could be observed as formed.
    """
    formation: date | None = None
    holding = False
    for end in range(HABIT_WINDOW_WEEKS, len(counts) + 1):
        sample = counts[end - HABIT_WINDOW_WEEKS:end]
        ok = statistics.pvariance(sample) <= variance_bound and statistics.fmean(sample) >= mean_floor
        if ok and formation is None:
            formation = weeks[end - 1]
        holding = ok
    return HabitStatus(
        behavior=behavior,
        formed=formation is not None,
        formation_week=formation,
        holding=holding,
    )


def spike_threshold(baseline: float) -> float:
    return baseline + max(SPIKE_MIN_EXCESS, SPIKE_RELATIVE_EXCESS * baseline)


def find_spike_runs(counts: Sequence[float]) -> list[SpikeRun]:
    """Runs of weeks elevated above the pre-spike baseline.

    The baseline is the median of up to four weeks before the run starts
    and stays fixed for the run, so a long elevation cannot drag its own
    baseline upward.
    """
    runs: list[SpikeRun] = []
    i = 1
    while i < len(counts):
        baseline = statistics.median(counts[max(0, i - BASELINE_WEEKS):i])
        threshold = spike_threshold(baseline)
        if counts[i] <= threshold:
            i += 1
            continue
        j = i
        while j < len(counts) and counts[j] > threshold:
            j += 1
        runs.append(SpikeRun(
            start=i,
            length=j - i,
            baseline=baseline,
            threshold=threshold,
            resolved=j < len(counts),
        ))
        i = j + 1
    return runs


def elevated_weeks(counts: Sequence[float]) -> frozenset[int]:
    """Indices of every week that belongs to a spike run."""
    return frozenset(
        index
        for run in find_spike_runs(counts)
        for index in range(run.start, run.end + 1)
    )


def classify_regression(
    weeks: Sequence[date],
    counts: Sequence[float],
    severities: Sequence[float] | None = None,
) -> RegressionAssessment:
    """Classify the most recent spike as setback, relapse or unresolved."""
    runs = find_spike_runs(counts)
    if not runs:
        return NO_REGRESSION

    run = runs[-1]
    elevated = counts[run.start:run.end + 1]
    excess = (statistics.fmean(elevated) - run.baseline) / max(run.threshold, 1.0)
    mean_severity = statistics.fmean(severities[run.start:run.end + 1]) if severities else 0.0
    severity = round(min(1.0, 0.5 * min(1.0, excess) + 0.5 * mean_severity), 4)
    weeks_since_end = len(counts) - 1 - run.end

    if run.length >= RELAPSE_WEEKS:
        kind = RegressionType.RELAPSE
        confidence = min(1.0, 0.6 + 0.1 * (run.length - RELAPSE_WEEKS + 1))
        tier = InterventionTier.CRISIS_SUPPORT_MODE if severity >= 0.5 else InterventionTier.SUPPORT_OFFER
    elif run.resolved:
        kind = RegressionType.SETBACK
        confidence = 0.9 if run.length <= SETBACK_RESOLVE_WEEKS else 0.6
        tier = InterventionTier.SUPPORT_OFFER if severity >= 0.7 else InterventionTier.GENTLE_REMINDER
    else:
        kind = RegressionType.UNRESOLVED
        confidence = 0.5
        tier = InterventionTier.SUPPORT_OFFER if severity >= 0.5 else InterventionTier.GENTLE_REMINDER

    return RegressionAssessment(
        kind=kind,
        confidence=round(confidence, 4),
        severity=severity,
        tier=tier,
        spike_week=weeks[run.start],
        weeks_elevated=run.length,
        weeks_since_end=weeks_since_end,
    )


# =============================================================================
# Tracker
# =============================================================================

_SERIES: dict[str, Callable[[WeeklySnapshot], float | None]] = {
    "crisis_frequency": lambda s: float(s.crisis_count),
    "severity": lambda s: s.mean_severity,
    "recovery_time": lambda s: s.mean_recovery_minutes,
    "engagement_breadth": lambda s: float(s.engagement_breadth),
}

# Direction that means things are getting worse, per series
_WORSENING: dict[str, TrendDirection] = {
    "crisis_frequency": TrendDirection.INCREASING,
    "severity": TrendDirection.INCREASING,
    "recovery_time": TrendDirection.INCREASING,
    "engagement_breadth": TrendDirection.DECREASING,
}

_HABITS: dict[str, Callable[[WeeklySnapshot], float]] = {
    "entries_logged": lambda s: float(s.entries_logged),
    "sessions": lambda s: float(s.session_patterns.sessions),
}


class RecoveryTracker:
    """
    Holds finalized weekly history and derives recovery signals from it.

    Usage:
        tracker = RecoveryTracker(history=storage.load_snapshots())
        new_snapshots, pending = tracker.catch_up(pending, today)
        regression = tracker.regression()
    """

    def __init__(
        self,
        history: Iterable[WeeklySnapshot] = (),
        trend_window_weeks: int = 6,
        history_limit: int = 104,
    ) -> None:
        self.trend_window_weeks = max(MIN_TREND_WEEKS, trend_window_weeks)
        self.history_limit = history_limit
        self._snapshots: dict[date, WeeklySnapshot] = {}
        for snapshot in history:
            self._snapshots.setdefault(snapshot.week, snapshot)
        self._trim()

    @property
    def history(self) -> tuple[WeeklySnapshot, ...]:
        """Finalized snapshots, oldest first."""
        return tuple(self._snapshots[w] for w in sorted(self._snapshots))

    def get(self, week: date) -> WeeklySnapshot | None:
        return self._snapshots.get(week_start(week))

    # -------------------------------------------------------------------------
    # Finalization
    # -------------------------------------------------------------------------

    def finalize_week(self, activity: WeekActivity) -> WeeklySnapshot:
        """Freeze a week's activity. Re-finalizing returns the stored snapshot."""
        existing = self._snapshots.get(activity.week)
        if existing is not None:
            logger.debug("week_already_finalized week=%s", activity.week.isoformat())
            return existing
        snapshot = activity.freeze()
        self._snapshots[snapshot.week] = snapshot
        self._trim()
        logger.info(
            "week_finalized week=%s entries=%d crises=%d",
            snapshot.week.isoformat(),
            snapshot.entries_logged,
            snapshot.crisis_count,
        )
        return snapshot

    def catch_up(
        self,
        pending: WeekActivity | None,
        today: date,
    ) -> tuple[list[WeeklySnapshot], WeekActivity]:
        """Finalize every week that ended before `today`.

        Returns:
            (snapshots newly finalized, activity for the current week).
            Weeks with no activity at all are synthesized as empty snapshots.
        """
        current = week_start(today)
        finalized: list[WeeklySnapshot] = []

        if pending is not None and pending.week >= current:
            return finalized, pending

        if pending is not None:
            finalized.append(self.finalize_week(pending))
            cursor = pending.week + timedelta(days=7)
        elif self._snapshots:
            cursor = max(self._snapshots) + timedelta(days=7)
        else:
            cursor = current

        while cursor < current:
            if cursor not in self._snapshots:
                finalized.append(self.finalize_week(WeekActivity(week=cursor)))
            cursor += timedelta(days=7)

        if finalized:
            logger.info("weeks_caught_up count=%d current=%s", len(finalized), current.isoformat())
        return finalized, WeekActivity(week=current)

    # -------------------------------------------------------------------------
    # Analysis
    # -------------------------------------------------------------------------

    def trends(self) -> dict[str, TrendResult]:
        history = self.history
        results: dict[str, TrendResult] = {}
        for series, extract in _SERIES.items():
            values = [v for v in (extract(s) for s in history) if v is not None]
            results[series] = trend_direction(series, values, self.trend_window_weeks)
        return results

    def habits(self) -> dict[str, HabitStatus]:
        history = self.history
        weeks = [s.week for s in history]
        return {
            behavior: find_habit(behavior, weeks, [extract(s) for s in history])
            for behavior, extract in _HABITS.items()
        }

    def regression(self) -> RegressionAssessment:
        history = self.history
        return classify_regression(
            [s.week for s in history],
            [float(s.crisis_count) for s in history],
            [s.mean_severity for s in history],
        )

    def elevated_weeks(self) -> frozenset[date]:
        history = self.history
        indices = elevated_weeks([float(s.crisis_count) for s in history])
        return frozenset(history[i].week for i in indices)

    def relapse_warning(self) -> RelapseWarning | None:
        """Warning for the latest week, or None when nothing is worsening.

        Recomputed on every call; never persisted.
        """
        history = self.history
        if not history:
            return None

        trends = self.trends()
        regression = self.regression()
        worsening = sorted(
            f"{series}_{result.direction.value}"
            for series, result in trends.items()
            if result.direction == _WORSENING[series]
        )
        active_regression = regression.kind in (RegressionType.RELAPSE, RegressionType.UNRESOLVED)
        if not worsening and not active_regression:
            return None

        signals = list(worsening)
        if active_regression:
            signals.append(f"sustained_elevation_{regression.weeks_elevated}w")

        confidence = min(1.0, 0.2 * len(worsening) + (regression.confidence if active_regression else 0.0))
        tier = regression.tier if active_regression else InterventionTier.GENTLE_REMINDER
        warning = RelapseWarning(
            week=history[-1].week,
            signals=tuple(signals),
            trend=trends["crisis_frequency"].direction.value,
            confidence=round(confidence, 4),
            recommended_action=tier.value,
        )
        logger.info(
            "relapse_warning week=%s signals=%d action=%s",
            warning.week.isoformat(),
            len(warning.signals),
            warning.recommended_action,
        )
        return warning

    def sensitivity_factor(self) -> float:
        """Category-threshold factor for personalization (<1 means more sensitive)."""
        regression = self.regression()
        if regression.kind == RegressionType.NONE:
            return 1.0
        if regression.weeks_since_end is not None and regression.weeks_since_end > FEEDBACK_HORIZON_WEEKS:
            return 1.0
        if regression.kind == RegressionType.RELAPSE:
            return RELAPSE_FEEDBACK
        return SETBACK_FEEDBACK

    def _trim(self) -> None:
        while len(self._snapshots) > self.history_limit:
            del self._snapshots[min(self._snapshots)]


__all__ = [
    "TrendDirection",
    "RegressionType",
    "InterventionTier",
    "TrendResult",
    "HabitStatus",
    "SpikeRun",
    "RegressionAssessment",
    "RecoveryTracker",
    "theil_sen_slope",
    "trend_direction",
    "find_habit",
    "find_spike_runs",
    "elevated_weeks",
    "classify_regression",
    "spike_threshold",
]
