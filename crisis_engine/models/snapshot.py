"""
Weekly snapshots and the pending-week activity they are built from.

A WeeklySnapshot is immutable after week-end finalization and is the only
long-term record of behavior: counts, feature names, category labels and
scores. Crisis assessments inside it are privacy-safe copies, so history
stays stable even if live detection logic changes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any

from crisis_engine.models.assessment import CrisisAssessment
from crisis_engine.models.schemas import WeeklySnapshotPayload


def week_start(moment: date | datetime) -> date:
    """Monday of the ISO week containing the given moment."""
    day = moment.date() if isinstance(moment, datetime) else moment
    return day - timedelta(days=day.weekday())


@dataclass(frozen=True)
class SessionPatterns:
    """Aggregated session shape for a week."""

    sessions: int = 0
    active_minutes: float = 0.0
    recovery_minutes: tuple[float, ...] = ()  # Intervening entry -> Cooldown exit

    @property
    def mean_session_minutes(self) -> float:
        return self.active_minutes / self.sessions if self.sessions else 0.0


@dataclass(frozen=True)
class WeeklySnapshot:
    """Per-week aggregate, the substrate for trend and relapse analysis."""

    week: date
    entries_logged: int = 0
    crisis_events: tuple[CrisisAssessment, ...] = ()
    features_used: frozenset[str] = frozenset()
    preference_changes: int = 0
    session_patterns: SessionPatterns = field(default_factory=SessionPatterns)

    @property
    def crisis_count(self) -> int:
        return len(self.crisis_events)

    @property
    def mean_severity(self) -> float:
        if not self.crisis_events:
            return 0.0
        return sum(a.confidence for a in self.crisis_events) / len(self.crisis_events)

    @property
    def mean_recovery_minutes(self) -> float | None:
        latencies = self.session_patterns.recovery_minutes
        return sum(latencies) / len(latencies) if latencies else None

    @property
    def engagement_breadth(self) -> int:
        return len(self.features_used)

    @classmethod
    def empty(cls, week: date) -> WeeklySnapshot:
        """Zero-activity snapshot used to fill weeks the app was not opened."""
        return cls(week=week)

    def to_dict(self) -> dict[str, Any]:
        return {
            "week": self.week.isoformat(),
            "entries_logged": self.entries_logged,
            "crisis_events": [a.to_dict() for a in self.crisis_events],
            "features_used": sorted(self.features_used),
            "preference_changes": self.preference_changes,
            "session_patterns": {
                "sessions": self.session_patterns.sessions,
                "active_minutes": self.session_patterns.active_minutes,
                "recovery_minutes": list(self.session_patterns.recovery_minutes),
            },
        }

    @classmethod
    def from_dict(cls, data: Any) -> WeeklySnapshot:
        payload = WeeklySnapshotPayload.model_validate(data)
        return cls(
            week=payload.week,
            entries_logged=payload.entries_logged,
            crisis_events=tuple(CrisisAssessment.from_dict(a) for a in payload.crisis_events),
            features_used=frozenset(payload.features_used),
            preference_changes=payload.preference_changes,
            session_patterns=SessionPatterns(
                sessions=payload.session_patterns.sessions,
                active_minutes=payload.session_patterns.active_minutes,
                recovery_minutes=tuple(payload.session_patterns.recovery_minutes),
            ),
        )


@dataclass
class WeekActivity:
    """
    Mutable accumulator for the week in progress.

    Owned by the engine; only derived aggregates go in here, never raw
    events. Frozen into a WeeklySnapshot at finalization.
    """

    week: date
    entries_logged: int = 0
    crisis_events: list[CrisisAssessment] = field(default_factory=list)
    features_used: set[str] = field(default_factory=set)
    preference_changes: int = 0
    sessions: int = 0
    active_minutes: float = 0.0
    recovery_minutes: list[float] = field(default_factory=list)

    def freeze(self) -> WeeklySnapshot:
        return WeeklySnapshot(
            week=self.week,
            entries_logged=self.entries_logged,
            crisis_events=tuple(a.summary() for a in self.crisis_events),
            features_used=frozenset(self.features_used),
            preference_changes=self.preference_changes,
            session_patterns=SessionPatterns(
                sessions=self.sessions,
                active_minutes=round(self.active_minutes, 3),
                recovery_minutes=tuple(self.recovery_minutes),
            ),
        )

    def to_dict(self) -> dict[str, Any]:
        return self.freeze().to_dict()

    @classmethod
    def from_dict(cls, data: Any) -> WeekActivity:
        snapshot = WeeklySnapshot.from_dict(data)
        return cls(
            week=snapshot.week,
            entries_logged=snapshot.entries_logged,
            crisis_events=list(snapshot.crisis_events),
            features_used=set(snapshot.features_used),
            preference_changes=snapshot.preference_changes,
            sessions=snapshot.session_patterns.sessions,
            active_minutes=snapshot.session_patterns.active_minutes,
            recovery_minutes=list(snapshot.session_patterns.recovery_minutes),
        )


@dataclass(frozen=True)
class RelapseWarning:
    """Derived warning, recomputed on demand from snapshot history."""

    week: date
    signals: tuple[str, ...]
    trend: str
    confidence: float
    recommended_action: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "week": self.week.isoformat(),
            "signals": list(self.signals),
            "trend": self.trend,
            "confidence": self.confidence,
            "recommended_action": self.recommended_action,
        }


__all__ = [
    "week_start",
    "SessionPatterns",
    "WeeklySnapshot",
    "WeekActivity",
    "RelapseWarning",
]
