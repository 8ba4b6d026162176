"""
Progressive feature exposure.

Gates interface complexity behind demonstrated recovery stability. The
exposure level is replayed from weekly history each time it is asked
for, so it cannot drift from the snapshots it is derived from.

Rules:
- The milestone table maps cumulative stable weeks to a maximum level
- The level advances at most one step per week and never above that maximum
- A regression week (part of a crisis-count spike) retreats one level
- No advancement during the week after a regression week
- Weeks with no activity at all neither count as stable nor retreat
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Any

from crisis_engine.models.snapshot import WeeklySnapshot
from crisis_engine.services.recovery_tracker import elevated_weeks

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Milestone:
    """Unlock rule: after `stable_weeks` stable weeks, `level` is allowed."""

    stable_weeks: int
    level: int
    features: frozenset[str]


MILESTONES: tuple[Milestone, ...] = (
    Milestone(0, 0, frozenset({"quick_log", "pain_entry", "mood_checkin", "crisis_resources"})),
    Milestone(2, 1, frozenset({"history", "daily_ritual"})),
    Milestone(4, 2, frozenset({"insights", "custom_indicators"})),
    Milestone(8, 3, frozenset({"trend_analysis", "goals", "reports"})),
    Milestone(12, 4, frozenset({"advanced_settings", "data_export", "correlations"})),
)


@dataclass(frozen=True)
class ExposureState:
    """Current exposure after replaying the weekly history."""

    level: int = 0
    max_level: int = 0
    stable_weeks: int = 0
    hold_through: date | None = None   # No advancement up to and including this week
    features: frozenset[str] = frozenset()

    def is_holding(self, week: date) -> bool:
        return self.hold_through is not None and week <= self.hold_through

    def to_dict(self) -> dict[str, Any]:
        return {
            "level": self.level,
            "max_level": self.max_level,
            "stable_weeks": self.stable_weeks,
            "hold_through": self.hold_through.isoformat() if self.hold_through else None,
            "features": sorted(self.features),
        }


class ProgressiveExposure:
    """
    Computes the feature-exposure level from weekly snapshots.

    Usage:
        exposure = ProgressiveExposure()
        state = exposure.evaluate(tracker.history)
        if "insights" in state.features: ...
    """

    def __init__(self, milestones: Sequence[Milestone] = MILESTONES) -> None:
        ordered = tuple(sorted(milestones, key=lambda m: m.stable_weeks))
        if not ordered or ordered[0].stable_weeks != 0:
            raise ValueError("milestones must start at zero stable weeks")
        if any(b.level < a.level for a, b in zip(ordered, ordered[1:], strict=False)):
            raise ValueError("milestone levels must not decrease")
        self.milestones = ordered

    def max_level_for(self, stable_weeks: int) -> int:
        level = 0
        for milestone in self.milestones:
            if stable_weeks >= milestone.stable_weeks:
                level = milestone.level
        return level

    def features_for(self, level: int) -> frozenset[str]:
        """Features unlocked at `level` (cumulative)."""
        unlocked: set[str] = set()
        for milestone in self.milestones:
            if milestone.level <= level:
                unlocked |= milestone.features
        return frozenset(unlocked)

    def evaluate(self, history: Sequence[WeeklySnapshot]) -> ExposureState:
        """Replay the history week by week."""
        snapshots = sorted(history, key=lambda s: s.week)
        regression = elevated_weeks([float(s.crisis_count) for s in snapshots])

        level = 0
        stable = 0
        hold_through: date | None = None
        for index, snapshot in enumerate(snapshots):
            week = snapshot.week
            if index in regression:
                if level > 0:
                    logger.info("exposure_retreat week=%s level=%d", week.isoformat(), level - 1)
                level = max(0, level - 1)
                hold_through = week + timedelta(days=7)
                continue

            if not _was_active(snapshot):
                continue

            stable += 1
            allowed = self.max_level_for(stable)
            if level < allowed and (hold_through is None or week > hold_through):
                level += 1

        return ExposureState(
            level=level,
            max_level=self.max_level_for(stable),
            stable_weeks=stable,
            hold_through=hold_through,
            features=self.features_for(level),
        )


def _was_active(snapshot: WeeklySnapshot) -> bool:
    return snapshot.entries_logged > 0 or snapshot.session_patterns.sessions > 0


__all__ = ["Milestone", "MILESTONES", "ExposureState", "ProgressiveExposure"]
