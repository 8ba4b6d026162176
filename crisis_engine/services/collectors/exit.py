"""
Forced-exit collector.

Flags an app closure that follows the previous interaction almost
immediately, the "slam the app shut" end of a panicked trace. Only the
most recent closure counts, and only while it is still recent.
"""

from __future__ import annotations

from crisis_engine.models.events import EventType, Window
from crisis_engine.services.collectors.base import (
    NO_DATA,
    CollectorReading,
    make_signal,
    reading,
)

FORCED_EXIT = "forced_exit"


class ForcedExitCollector:
    """Detects abrupt app closure."""

    name = "forced_exit"
    produces = (FORCED_EXIT,)

    FORCED_EXIT_SECONDS = 4.0
    # Any close inside FORCED_EXIT_SECONDS is abrupt; faster closes only add to it
    MIN_CONFIDENCE = 0.8
    # A closure older than this (relative to the newest event) is history
    RECENCY_SECONDS = 120.0

    def collect(self, window: Window) -> CollectorReading:
        close_index = next(
            (i for i in range(len(window) - 1, -1, -1) if window[i].type == EventType.APP_CLOSE),
            None,
        )
        if close_index is None or close_index == 0:
            return NO_DATA

        closed = window[close_index]
        age = (window[-1].timestamp - closed.timestamp).total_seconds()
        if age > self.RECENCY_SECONDS:
            return CollectorReading(has_data=True)

        gap = (closed.timestamp - window[close_index - 1].timestamp).total_seconds()
        if gap > self.FORCED_EXIT_SECONDS:
            return CollectorReading(has_data=True)

        confidence = max(self.MIN_CONFIDENCE, 1.0 - gap / (2 * self.FORCED_EXIT_SECONDS))
        return reading([make_signal(FORCED_EXIT, confidence, seconds_before_close=round(gap, 3))])


__all__ = ["ForcedExitCollector", "FORCED_EXIT"]
