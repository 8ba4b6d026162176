"""
Tests for NavigationEntropyCollector.

Covers:
- Insufficient data (< 3 navigations) yields no signal
- Rapid circling navigation scores high
- Slow, distinct navigation scores low
- Component weighting
"""

from __future__ import annotations

import pytest

from crisis_engine.models.events import EventType
from crisis_engine.services.collectors.navigation import (
    NAVIGATION_ENTROPY,
    NavigationEntropyCollector,
    navigation_intervals,
)


@pytest.fixture
def collector():
    return NavigationEntropyCollector()


# =============================================================================
# Insufficient Data
# =============================================================================


def test_empty_window_has_no_data(collector):
    reading = collector.collect(())
    assert reading.has_data is False
    assert reading.signals == ()


def test_two_navigations_is_not_enough(collector, nav):
    reading = collector.collect((nav(0, "a"), nav(0.5, "b")))
    assert reading.has_data is False
    assert reading.signals == ()
    assert collector.entropy((nav(0, "a"), nav(0.5, "b"))) == 0.0


def test_non_navigation_events_are_ignored(collector, ev, nav):
    window = (
        nav(0, "a"),
        ev(EventType.INPUT, 0.2, field="x"),
        ev(EventType.INPUT, 0.3, field="x"),
        nav(0.5, "b"),
    )
    assert collector.collect(window).has_data is False


# =============================================================================
# Scoring
# =============================================================================


def test_panic_trace_scores_high(collector, panic_trace):
    reading = collector.collect(panic_trace)
    assert reading.has_data is True
    (signal,) = reading.signals
    assert signal.name == NAVIGATION_ENTROPY
    assert signal.confidence == pytest.approx(0.756, abs=0.01)
    assert signal.details["speed"] == 1.0
    assert signal.details["circling"] == pytest.approx(0.625)


def test_methodical_navigation_scores_low(collector, methodical_trace):
    value = collector.entropy(methodical_trace)
    # 15 s apart, perfectly regular, never revisiting a page
    assert value == pytest.approx(0.4 * 2.0 / 15.0, abs=0.001)


def test_circling_raises_entropy(collector, nav):
    distinct = tuple(nav(i * 3.0, f"page{i}") for i in range(6))
    circling = tuple(nav(i * 3.0, "a" if i % 2 else "b") for i in range(6))
    assert collector.entropy(circling) > collector.entropy(distinct)


def test_simultaneous_navigations_saturate_speed(collector, nav):
    window = tuple(nav(0.0, p) for p in ("a", "b", "c"))
    speed, erraticism, circling = collector._components(window)
    assert speed == 1.0
    assert erraticism == 0.0
    assert circling == 0.0


def test_only_last_twenty_navigations_count(collector, nav):
    slow_history = tuple(nav(i * 60.0, f"old{i}") for i in range(30))
    fast_tail = tuple(nav(1800 + i * 1.0, "a" if i % 2 else "b") for i in range(20))
    assert collector.entropy(slow_history + fast_tail) == collector.entropy(fast_tail)


def test_navigation_intervals(nav):
    window = (nav(0, "a"), nav(1.5, "b"), nav(4.0, "c"))
    assert navigation_intervals(window) == [1.5, 2.5]
