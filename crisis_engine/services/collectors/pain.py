"""
Pain-spike and help-seeking collectors.

Both read what the user explicitly did: logged a high pain score, or
reached for help. They are the least ambiguous inputs the engine has.
"""

from __future__ import annotations

import statistics
from datetime import timedelta

from crisis_engine.models.events import EventType, Window
from crisis_engine.services.collectors.base import (
    NO_DATA,
    CollectorReading,
    make_signal,
    of_types,
    reading,
    trailing,
)

PAIN_SPIKE = "pain_spike"
HELP_SEEKING = "help_seeking"


def _pain_levels(window: Window) -> list[float]:
    levels: list[float] = []
    for event in of_types(window, EventType.PAIN_ENTRY):
        try:
            levels.append(float(event.value))  # type: ignore[arg-type]
        except (TypeError, ValueError):
            continue
    return levels


class PainSpikeCollector:
    """High self-logged pain, boosted when it jumped from the recent level."""

    name = "pain"
    produces = (PAIN_SPIKE,)

    SPIKE_LEVEL = 7.0     # On a 0-10 scale
    JUMP_DELTA = 2.0
    JUMP_BONUS = 0.1

    def collect(self, window: Window) -> CollectorReading:
        levels = _pain_levels(window)
        if not levels:
            return NO_DATA

        latest = max(0.0, min(10.0, levels[-1]))
        if latest < self.SPIKE_LEVEL:
            return CollectorReading(has_data=True)

        previous = levels[:-1]
        jump = latest - statistics.fmean(previous) if previous else 0.0
        confidence = latest / 10.0 + (self.JUMP_BONUS if jump >= self.JUMP_DELTA else 0.0)
        return reading([
            make_signal(PAIN_SPIKE, confidence, level=latest, jump=round(jump, 2))
        ])


class HelpSeekingCollector:
    """Help requests in a short trailing window."""

    name = "help_seeking"
    produces = (HELP_SEEKING,)

    TRAILING_MINUTES = 5
    PER_REQUEST = 0.3

    def collect(self, window: Window) -> CollectorReading:
        if not window:
            return NO_DATA

        recent = trailing(window, timedelta(minutes=self.TRAILING_MINUTES))
        requests = len(of_types(recent, EventType.HELP_REQUEST))
        if not requests:
            return NO_DATA
        return reading([make_signal(HELP_SEEKING, self.PER_REQUEST * requests, requests=requests)])


__all__ = ["PainSpikeCollector", "HelpSeekingCollector", "PAIN_SPIKE", "HELP_SEEKING"]
