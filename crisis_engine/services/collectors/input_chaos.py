"""
Input-chaos collector.

Measures how much of what is typed gets deleted again, how many forms are
abandoned instead of submitted, and how often validation rejects input.
"""

from __future__ import annotations

from crisis_engine.models.events import EventType, Window
from crisis_engine.services.collectors.base import (
    NO_DATA,
    CollectorReading,
    clamp,
    make_signal,
    of_types,
    reading,
)

INPUT_CHAOS = "input_chaos"

_FIELD_EVENTS = (
    EventType.INPUT,
    EventType.DELETION,
    EventType.FORM_SUBMIT,
    EventType.FORM_ABANDON,
    EventType.VALIDATION_ERROR,
)


class InputChaosCollector:
    """Deletion ratio, abandonment rate and validation errors on form fields."""

    name = "input_chaos"
    produces = (INPUT_CHAOS,)

    WINDOW_EVENTS = 40
    MIN_FIELD_EVENTS = 3
    # Validation errors at which the error component saturates
    SATURATION_ERRORS = 5

    WEIGHT_DELETION = 0.5
    WEIGHT_ABANDONMENT = 0.35
    WEIGHT_ERRORS = 0.15

    def collect(self, window: Window) -> CollectorReading:
        events = of_types(window, *_FIELD_EVENTS)[-self.WINDOW_EVENTS:]
        if len(events) < self.MIN_FIELD_EVENTS:
            return NO_DATA

        entries = sum(1 for e in events if e.type == EventType.INPUT)
        deletions = sum(1 for e in events if e.type == EventType.DELETION)
        submits = sum(1 for e in events if e.type == EventType.FORM_SUBMIT)
        abandons = sum(1 for e in events if e.type == EventType.FORM_ABANDON)
        errors = sum(1 for e in events if e.type == EventType.VALIDATION_ERROR)

        deletion_ratio = clamp(deletions / max(entries, 1))
        attempts = submits + abandons
        abandonment_rate = abandons / attempts if attempts else 0.0
        error_rate = clamp(errors / self.SATURATION_ERRORS)

        chaos = (
            self.WEIGHT_DELETION * deletion_ratio
            + self.WEIGHT_ABANDONMENT * abandonment_rate
            + self.WEIGHT_ERRORS * error_rate
        )
        return reading([
            make_signal(
                INPUT_CHAOS,
                chaos,
                deletion_ratio=round(deletion_ratio, 4),
                abandonment_rate=round(abandonment_rate, 4),
                validation_errors=errors,
            )
        ])


__all__ = ["InputChaosCollector", "INPUT_CHAOS"]
