"""
Interaction events and the bounded event buffer.

Raw events are the only place behavioral content lives. They are held in
a ring buffer bounded both by count and by age, are never written to
storage, and are never logged.
"""

from __future__ import annotations

from collections import deque
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import StrEnum

# =============================================================================
# Event Types
# =============================================================================


class EventType(StrEnum):
    """Kinds of interaction telemetry emitted by the host UI."""

    NAVIGATION = "navigation"
    INPUT = "input"
    DELETION = "deletion"
    FORM_SUBMIT = "form_submit"
    FORM_ABANDON = "form_abandon"
    VALIDATION_ERROR = "validation_error"
    HELP_REQUEST = "help_request"
    PREFERENCE_CHANGE = "preference_change"
    PAIN_ENTRY = "pain_entry"
    MOOD_ENTRY = "mood_entry"
    APP_OPEN = "app_open"
    APP_BACKGROUND = "app_background"
    APP_FOREGROUND = "app_foreground"
    APP_CLOSE = "app_close"


# Events after which an analysis tick is worth running immediately
HIGH_SIGNAL_EVENTS: frozenset[EventType] = frozenset({
    EventType.NAVIGATION,
    EventType.FORM_ABANDON,
    EventType.APP_CLOSE,
})

# Lifecycle events: a gap is "explained" when it sits between a
# leaving event and a returning event
LEAVING_EVENTS: frozenset[EventType] = frozenset({
    EventType.APP_BACKGROUND,
    EventType.APP_CLOSE,
})
RETURNING_EVENTS: frozenset[EventType] = frozenset({
    EventType.APP_FOREGROUND,
    EventType.APP_OPEN,
})


@dataclass(frozen=True)
class InteractionEvent:
    """An atomic, immutable unit of interaction telemetry.

    Attributes:
        type: What happened
        timestamp: When it happened (timezone-aware)
        page: Route or screen identifier for navigation events
        field: Field, preference key or flow step the event concerns
        value: New value, pain level, etc.
    """

    type: EventType
    timestamp: datetime
    page: str | None = None
    field: str | None = None
    value: str | float | None = None

    @property
    def step_key(self) -> str | None:
        """Identifier used to match this event against flow steps."""
        return self.page or self.field


Window = tuple[InteractionEvent, ...]


# =============================================================================
# Event Buffer
# =============================================================================


class EventBuffer:
    """
    Bounded ring buffer of recent interaction events.

    Bounded by count (deque maxlen) and by age relative to the newest event.
    Events are kept in timestamp order; an out-of-order event is inserted
    at its sorted position.

    Usage:
        buffer = EventBuffer(max_events=500, retention=timedelta(minutes=60))
        buffer.append(event)
        window = buffer.snapshot()
    """

    def __init__(self, max_events: int = 500, retention: timedelta = timedelta(minutes=60)):
        self._events: deque[InteractionEvent] = deque(maxlen=max_events)
        self._retention = retention

    def __len__(self) -> int:
        return len(self._events)

    @property
    def newest(self) -> InteractionEvent | None:
        return self._events[-1] if self._events else None

    def append(self, event: InteractionEvent) -> None:
        """Add an event and evict anything outside the retention window."""
        if self._events and event.timestamp < self._events[-1].timestamp:
            ordered = sorted([*self._events, event], key=lambda e: e.timestamp)
            self._events.clear()
            self._events.extend(ordered)  # maxlen keeps the newest
        else:
            self._events.append(event)
        self._evict_expired()

    def extend(self, events: Iterable[InteractionEvent]) -> None:
        for event in events:
            self.append(event)

    def snapshot(self) -> Window:
        """Immutable copy of the current window, oldest first."""
        return tuple(self._events)

    def clear(self) -> None:
        self._events.clear()

    def _evict_expired(self) -> None:
        if not self._events:
            return
        cutoff = self._events[-1].timestamp - self._retention
        while self._events and self._events[0].timestamp < cutoff:
            self._events.popleft()


__all__ = [
    "EventType",
    "InteractionEvent",
    "EventBuffer",
    "Window",
    "HIGH_SIGNAL_EVENTS",
    "LEAVING_EVENTS",
    "RETURNING_EVENTS",
]
