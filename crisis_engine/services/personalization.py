"""
Personalization Layer.

A pure transform from an immutable UserCrisisProfile to a ThresholdTable.
Nothing is cached between assessments: thresholds are recomputed from the
profile snapshot the engine holds at tick time, so a profile edit takes
effect on the next tick and never mid-tick.

Threshold composition for a signal s:
    threshold(s) = default x product(condition multipliers for s)
                           x sensitivity multiplier for s
                           x baseline multiplier (navigation entropy only)

Category thresholds scale by the weight-averaged multiplier of their
markers, then by the recovery feedback factor.
"""

from __future__ import annotations

import logging
import math
import statistics
from collections.abc import Iterable
from dataclasses import dataclass, field

from crisis_engine.models.assessment import DetectedSignal, SignalSource
from crisis_engine.models.events import EventType, Window
from crisis_engine.models.profile import (
    SENSITIVITY_MULTIPLIERS,
    BaselineBehavior,
    SensitivityLevel,
    UserCrisisProfile,
)
from crisis_engine.services.collectors.base import of_types
from crisis_engine.services.collectors.navigation import NAVIGATION_ENTROPY, navigation_intervals
from crisis_engine.services.signatures import SignatureRegistry

logger = logging.getLogger(__name__)

# Minimum confidence a computed signal needs to count for a classifier pass
DEFAULT_SIGNAL_THRESHOLD = 0.2

# Population mean seconds between navigations
POPULATION_NAVIGATION_INTERVAL = 8.0

# Baseline must be at least this much faster than the population to matter
BASELINE_SPEEDUP_THRESHOLD = 0.2
BASELINE_MULTIPLIER_CAP = 2.0
MIN_BASELINE_SAMPLES = 20

# Injected signals from matched custom indicators
SELF_REPORTED_CONFIDENCE = 0.9
INDICATOR_MATCH_CONFIDENCE = 0.3

# Intervals longer than this are pauses, not navigation pace
_MAX_PACE_INTERVAL_SECONDS = 60.0


@dataclass(frozen=True)
class ThresholdTable:
    """Effective thresholds for one assessment.

    Attributes:
        signal_thresholds: Minimum confidence per signal name
        category_thresholds: Detection threshold per crisis category
        disabled_signals: Signals switched off by the user
        default_signal_threshold: Threshold for signals not in the table
    """

    signal_thresholds: dict[str, float] = field(default_factory=dict, hash=False)
    category_thresholds: dict[str, float] = field(default_factory=dict, hash=False)
    disabled_signals: frozenset[str] = frozenset()
    default_signal_threshold: float = DEFAULT_SIGNAL_THRESHOLD

    def signal_threshold(self, name: str) -> float:
        if name in self.disabled_signals:
            return math.inf
        return self.signal_thresholds.get(name, self.default_signal_threshold)

    def category_threshold(self, category: str) -> float:
        return self.category_thresholds[category]

    def is_enabled(self, name: str) -> bool:
        return name not in self.disabled_signals


class PersonalizationLayer:
    """
    Turns a profile into thresholds and self-reported signals.

    Usage:
        layer = PersonalizationLayer(registry)
        table = layer.thresholds(profile, feedback_factor=0.95)
        extra = layer.inject_custom_indicators(profile, signals)
    """

    def __init__(
        self,
        registry: SignatureRegistry,
        default_signal_threshold: float = DEFAULT_SIGNAL_THRESHOLD,
        population_navigation_interval: float = POPULATION_NAVIGATION_INTERVAL,
    ) -> None:
        self.registry = registry
        self.default_signal_threshold = default_signal_threshold
        self.population_navigation_interval = population_navigation_interval

    # -------------------------------------------------------------------------
    # Thresholds
    # -------------------------------------------------------------------------

    def population_thresholds(self) -> ThresholdTable:
        """Thresholds with no personalization applied."""
        return self.thresholds(UserCrisisProfile())

    def thresholds(self, profile: UserCrisisProfile, feedback_factor: float = 1.0) -> ThresholdTable:
        """Effective threshold table for a profile snapshot."""
        signals = self.registry.marker_names() | set(profile.behavior_sensitivity)
        for condition in profile.conditions:
            signals |= set(condition.signal_multipliers)

        disabled = frozenset(
            s for s, level in profile.behavior_sensitivity.items() if level == SensitivityLevel.OFF
        )
        multipliers = {s: self.signal_multiplier(profile, s) for s in signals}

        signal_thresholds = {
            s: round(min(1.0, self.default_signal_threshold * m), 4)
            for s, m in multipliers.items()
        }

        category_thresholds: dict[str, float] = {}
        for signature in self.registry:
            total_weight = sum(m.weight for m in signature.markers)
            weighted = sum(m.weight * multipliers.get(m.signal, 1.0) for m in signature.markers)
            scale = weighted / total_weight if total_weight else 1.0
            category_thresholds[signature.category] = round(
                min(1.0, signature.threshold * scale * feedback_factor), 4
            )

        return ThresholdTable(
            signal_thresholds=signal_thresholds,
            category_thresholds=category_thresholds,
            disabled_signals=disabled,
            default_signal_threshold=self.default_signal_threshold,
        )

    def signal_multiplier(self, profile: UserCrisisProfile, signal: str) -> float:
        """Combined threshold multiplier for one signal (1.0 = population)."""
        multiplier = 1.0
        for condition in profile.conditions:
            multiplier *= condition.signal_multipliers.get(signal, 1.0)

        level = profile.behavior_sensitivity.get(signal, SensitivityLevel.STANDARD)
        multiplier *= SENSITIVITY_MULTIPLIERS.get(level, 1.0)

        if signal == NAVIGATION_ENTROPY:
            multiplier *= self.baseline_multiplier(profile.baseline)
        return multiplier

    def baseline_multiplier(self, baseline: BaselineBehavior) -> float:
        """Raise the navigation-entropy bar for users who are naturally fast.

        Applies only when the user's own mean interval is at least 20%
        faster than the population's, scaled proportionally and capped.
        """
        interval = baseline.mean_navigation_interval
        if interval is None or interval <= 0 or baseline.navigation_samples < MIN_BASELINE_SAMPLES:
            return 1.0
        population = self.population_navigation_interval
        if interval > population * (1.0 - BASELINE_SPEEDUP_THRESHOLD):
            return 1.0
        return min(BASELINE_MULTIPLIER_CAP, population / interval)

    # -------------------------------------------------------------------------
    # Custom indicators
    # -------------------------------------------------------------------------

    def inject_custom_indicators(
        self,
        profile: UserCrisisProfile,
        signals: Iterable[DetectedSignal],
    ) -> tuple[DetectedSignal, ...]:
        """Self-reported signals for every custom indicator whose tags all match.

        A tag matches when a signal of that name is present with at least
        INDICATOR_MATCH_CONFIDENCE. Each tag of a matched indicator is
        re-emitted as a self_reported signal at SELF_REPORTED_CONFIDENCE.
        """
        present = {
            s.name
            for s in signals
            if s.confidence >= INDICATOR_MATCH_CONFIDENCE
            and profile.behavior_sensitivity.get(s.name) != SensitivityLevel.OFF
        }
        injected: dict[str, DetectedSignal] = {}
        for index, indicator in enumerate(profile.custom_indicators):
            tags = indicator.trigger_behaviors
            if not tags or not set(tags) <= present:
                continue
            for tag in tags:
                injected.setdefault(tag, DetectedSignal(
                    name=tag,
                    confidence=SELF_REPORTED_CONFIDENCE,
                    source=SignalSource.SELF_REPORTED,
                    details={"indicator": index},
                ))
        if injected:
            logger.debug("custom_indicators_matched signals=%s", ",".join(sorted(injected)))
        return tuple(injected.values())

    # -------------------------------------------------------------------------
    # Baseline re-estimation
    # -------------------------------------------------------------------------

    def reestimate_baseline(
        self,
        profile: UserCrisisProfile,
        crisis_free_sessions: Iterable[Window],
    ) -> UserCrisisProfile:
        """New profile with the baseline folded forward from crisis-free sessions.

        Only sessions with no detected crisis may be passed in. Existing
        statistics are combined with the new ones as a sample-weighted mean.
        Returns the same profile object when there is nothing to learn from.
        """
        intervals: list[float] = []
        preference_counts: list[int] = []
        for window in crisis_free_sessions:
            if not window:
                continue
            intervals.extend(
                i for i in navigation_intervals(window, last_n=len(window))
                if 0 < i <= _MAX_PACE_INTERVAL_SECONDS
            )
            preference_counts.append(len(of_types(window, EventType.PREFERENCE_CHANGE)))

        if not preference_counts:
            return profile

        old = profile.baseline
        nav_samples = old.navigation_samples + len(intervals)
        if intervals:
            new_mean = statistics.fmean(intervals)
            if old.mean_navigation_interval is None or old.navigation_samples == 0:
                nav_interval = new_mean
            else:
                nav_interval = (
                    old.mean_navigation_interval * old.navigation_samples
                    + new_mean * len(intervals)
                ) / nav_samples
        else:
            nav_interval = old.mean_navigation_interval

        sessions = old.sessions_observed + len(preference_counts)
        new_pref_mean = statistics.fmean(preference_counts)
        if old.mean_preference_changes is None or old.sessions_observed == 0:
            pref_mean = new_pref_mean
        else:
            pref_mean = (
                old.mean_preference_changes * old.sessions_observed
                + new_pref_mean * len(preference_counts)
            ) / sessions

        baseline = BaselineBehavior(
            mean_navigation_interval=round(nav_interval, 4) if nav_interval is not None else None,
            navigation_samples=nav_samples,
            mean_preference_changes=round(pref_mean, 4),
            sessions_observed=sessions,
        )
        logger.info(
            "baseline_reestimated sessions=%d navigation_samples=%d",
            sessions,
            nav_samples,
        )
        return profile.with_baseline(baseline)


__all__ = [
    "ThresholdTable",
    "PersonalizationLayer",
    "DEFAULT_SIGNAL_THRESHOLD",
    "POPULATION_NAVIGATION_INTERVAL",
    "SELF_REPORTED_CONFIDENCE",
]
