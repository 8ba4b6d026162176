"""
Repetition collector.

Looks for the same short sequence of input actions being performed again
and again (re-submitting the same form), or for one value being entered
several times in a row.
Navigation and preference changes are left out: circling between pages is
navigation entropy, and toggling settings is preference churn.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass

from crisis_engine.models.events import EventType, InteractionEvent, Window
from crisis_engine.services.collectors.base import (
    NO_DATA,
    CollectorReading,
    make_signal,
    reading,
)

REPETITIVE_INPUT = "repetitive_input"

_EXCLUDED_TYPES = frozenset({
    EventType.NAVIGATION,
    EventType.PREFERENCE_CHANGE,
    EventType.APP_OPEN,
    EventType.APP_BACKGROUND,
    EventType.APP_FOREGROUND,
    EventType.APP_CLOSE,
})


@dataclass(frozen=True)
class RepeatedPattern:
    """A subsequence of action tokens and how often it repeats."""

    tokens: tuple[str, ...]
    count: int


def _token(event: InteractionEvent) -> str:
    return f"{event.type.value}:{event.field or ''}"


def _value_token(event: InteractionEvent) -> str | None:
    if event.value is None:
        return None
    return f"{_token(event)}={event.value}"


def count_non_overlapping(tokens: list[str], pattern: tuple[str, ...]) -> int:
    """Non-overlapping occurrences of `pattern` in `tokens`."""
    n = len(pattern)
    count = 0
    i = 0
    while i <= len(tokens) - n:
        if tuple(tokens[i:i + n]) == pattern:
            count += 1
            i += n
        else:
            i += 1
    return count


class RepetitionCollector:
    """Counts repeated action subsequences of length 2-5 and runs of one repeated value."""

    name = "repetition"
    produces = (REPETITIVE_INPUT,)

    WINDOW_EVENTS = 30
    MIN_LENGTH = 2
    MAX_LENGTH = 5
    MIN_REPEATS = 3

    def find_patterns(self, window: Window) -> list[RepeatedPattern]:
        """Reportable patterns, most repeated first."""
        actions = [e for e in window if e.type not in _EXCLUDED_TYPES][-self.WINDOW_EVENTS:]
        tokens = [_token(e) for e in actions]

        found: dict[tuple[str, ...], int] = {}
        for n in range(self.MIN_LENGTH, self.MAX_LENGTH + 1):
            candidates = Counter(tuple(tokens[i:i + n]) for i in range(len(tokens) - n + 1))
            for pattern, overlapping in candidates.items():
                if overlapping < self.MIN_REPEATS:
                    continue
                count = count_non_overlapping(tokens, pattern)
                if count >= self.MIN_REPEATS:
                    found[pattern] = count

        for token, run in self._value_runs(actions):
            if run >= self.MIN_REPEATS:
                found[(token,)] = max(run, found.get((token,), 0))

        return sorted(
            (RepeatedPattern(tokens=p, count=c) for p, c in found.items()),
            key=lambda r: (-r.count, len(r.tokens), r.tokens),
        )

    def _value_runs(self, actions: list[InteractionEvent]) -> list[tuple[str, int]]:
        """Consecutive runs of the same action carrying the same value."""
        runs: list[tuple[str, int]] = []
        previous: str | None = None
        for event in actions:
            token = _value_token(event)
            if token is not None and token == previous:
                runs[-1] = (token, runs[-1][1] + 1)
            elif token is not None:
                runs.append((token, 1))
            previous = token
        return runs

    def concern(self, repeats: int) -> float:
        """Concern level scaled by repeat count: 3 -> 0.6, 6+ -> 0.9 and up."""
        if repeats < self.MIN_REPEATS:
            return 0.0
        return min(0.95, 0.3 + 0.1 * repeats)

    def collect(self, window: Window) -> CollectorReading:
        actions = [e for e in window if e.type not in _EXCLUDED_TYPES]
        if len(actions) < self.MIN_REPEATS:
            return NO_DATA

        patterns = self.find_patterns(window)
        if not patterns:
            return CollectorReading(has_data=True)

        top = patterns[0]
        return reading([
            make_signal(
                REPETITIVE_INPUT,
                self.concern(top.count),
                repeats=top.count,
                pattern_length=len(top.tokens),
                patterns_found=len(patterns),
            )
        ])


__all__ = ["RepetitionCollector", "RepeatedPattern", "REPETITIVE_INPUT", "count_non_overlapping"]
