"""
Collector protocol and shared helpers.

A collector turns a window of raw events into zero or more named signals.
Collectors are pull-based (the classifier asks) and pure: the same window
always yields the same reading. Trailing time windows are measured back
from the newest event in the window, never from the wall clock.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Protocol, runtime_checkable

from crisis_engine.models.assessment import DetectedSignal, SignalSource
from crisis_engine.models.events import EventType, InteractionEvent, Window


@dataclass(frozen=True)
class CollectorReading:
    """Result of one collector pass.

    Attributes:
        signals: Signals with non-zero confidence
        has_data: Whether the window held enough events to judge at all
    """

    signals: tuple[DetectedSignal, ...] = ()
    has_data: bool = False


NO_DATA = CollectorReading()


@runtime_checkable
class SignalCollector(Protocol):
    """Interface every signal collector implements."""

    name: str
    produces: tuple[str, ...]

    def collect(self, window: Window) -> CollectorReading:
        """Compute signals from the given window."""
        ...


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


def make_signal(name: str, confidence: float, **details: Any) -> DetectedSignal:
    """Build a computed signal with a clamped, rounded confidence."""
    return DetectedSignal(
        name=name,
        confidence=round(clamp(confidence), 4),
        source=SignalSource.COMPUTED,
        details=details,
    )


def of_types(window: Iterable[InteractionEvent], *types: EventType) -> list[InteractionEvent]:
    wanted = set(types)
    return [e for e in window if e.type in wanted]


def trailing(window: Window, span: timedelta) -> Window:
    """Events within `span` of the newest event in the window."""
    if not window:
        return window
    cutoff = window[-1].timestamp - span
    return tuple(e for e in window if e.timestamp >= cutoff)


def reading(signals: Iterable[DetectedSignal], has_data: bool = True) -> CollectorReading:
    return CollectorReading(
        signals=tuple(s for s in signals if s.confidence > 0.0),
        has_data=has_data,
    )


__all__ = [
    "CollectorReading",
    "NO_DATA",
    "SignalCollector",
    "clamp",
    "make_signal",
    "of_types",
    "trailing",
    "reading",
]
