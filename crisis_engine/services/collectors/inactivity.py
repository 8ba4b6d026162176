"""
Unexplained-inactivity collector.

A gap between consecutive events is "explained" only when the app told us
it was leaving (background/close) before the gap and returning
(foreground/open) after it. Unexplained gaps beyond the dissociation
threshold are marked likely_dissociation.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from crisis_engine.models.events import LEAVING_EVENTS, RETURNING_EVENTS, Window
from crisis_engine.services.collectors.base import (
    NO_DATA,
    CollectorReading,
    clamp,
    make_signal,
    reading,
)

UNEXPLAINED_INACTIVITY = "unexplained_inactivity"


@dataclass(frozen=True)
class InactivityGap:
    """An unexplained gap between two events."""

    started_at: datetime
    minutes: float
    likely_dissociation: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "started_at": self.started_at.isoformat(),
            "minutes": self.minutes,
            "likely_dissociation": self.likely_dissociation,
        }


class InactivityCollector:
    """Finds idle gaps the app lifecycle does not account for."""

    name = "inactivity"
    produces = (UNEXPLAINED_INACTIVITY,)

    GAP_MINUTES = 5.0
    DISSOCIATION_MINUTES = 10.0
    # Minutes past the dissociation threshold at which confidence saturates
    SATURATION_MINUTES = 20.0

    def find_gaps(self, window: Window) -> list[InactivityGap]:
        gaps: list[InactivityGap] = []
        for before, after in zip(window, window[1:], strict=False):
            minutes = (after.timestamp - before.timestamp).total_seconds() / 60.0
            if minutes <= self.GAP_MINUTES:
                continue
            if before.type in LEAVING_EVENTS and after.type in RETURNING_EVENTS:
                continue
            gaps.append(InactivityGap(
                started_at=before.timestamp,
                minutes=round(minutes, 3),
                likely_dissociation=minutes > self.DISSOCIATION_MINUTES,
            ))
        return gaps

    def gap_confidence(self, minutes: float) -> float:
        if minutes <= self.GAP_MINUTES:
            return 0.0
        if minutes <= self.DISSOCIATION_MINUTES:
            # 0.4 just past 5 min, rising to 0.6 at 10 min
            return 0.4 + 0.2 * (minutes - self.GAP_MINUTES) / (self.DISSOCIATION_MINUTES - self.GAP_MINUTES)
        excess = (minutes - self.DISSOCIATION_MINUTES) / self.SATURATION_MINUTES
        return 0.7 + 0.3 * clamp(excess)

    def collect(self, window: Window) -> CollectorReading:
        if len(window) < 2:
            return NO_DATA

        gaps = self.find_gaps(window)
        if not gaps:
            # A window shorter than one gap cannot show its absence
            span = (window[-1].timestamp - window[0].timestamp).total_seconds() / 60.0
            return CollectorReading(has_data=span > self.GAP_MINUTES)

        longest = max(gaps, key=lambda g: g.minutes)
        return reading([
            make_signal(
                UNEXPLAINED_INACTIVITY,
                self.gap_confidence(longest.minutes),
                longest_minutes=longest.minutes,
                likely_dissociation=longest.likely_dissociation,
                gaps=[g.to_dict() for g in gaps],
            )
        ])


__all__ = ["InactivityCollector", "InactivityGap", "UNEXPLAINED_INACTIVITY"]
