"""
Tests for InteractionEvent and EventBuffer.

Covers:
- Count bound keeps the newest events
- Age bound is measured from the newest event, not the wall clock
- Out-of-order events are inserted at their sorted position
"""

from __future__ import annotations

from datetime import timedelta

import pytest

from crisis_engine.models.events import (
    HIGH_SIGNAL_EVENTS,
    LEAVING_EVENTS,
    RETURNING_EVENTS,
    EventBuffer,
    EventType,
)


@pytest.fixture
def buffer():
    return EventBuffer(max_events=10, retention=timedelta(minutes=5))


def test_step_key_prefers_page(ev):
    assert ev(EventType.NAVIGATION, page="pain_log", field="x").step_key == "pain_log"
    assert ev(EventType.INPUT, field="pain_level").step_key == "pain_level"
    assert ev(EventType.APP_OPEN).step_key is None


def test_lifecycle_sets_are_disjoint():
    assert not LEAVING_EVENTS & RETURNING_EVENTS
    assert EventType.APP_CLOSE in HIGH_SIGNAL_EVENTS
    assert EventType.INPUT not in HIGH_SIGNAL_EVENTS


def test_empty_buffer(buffer):
    assert len(buffer) == 0
    assert buffer.newest is None
    assert buffer.snapshot() == ()


def test_count_bound_keeps_newest(buffer, nav):
    buffer.extend(nav(i, f"page_{i}") for i in range(12))
    window = buffer.snapshot()
    assert len(window) == 10
    assert window[0].page == "page_2"
    assert buffer.newest.page == "page_11"


def test_age_bound_is_relative_to_newest(buffer, nav):
    buffer.append(nav(0, "dashboard"))
    buffer.append(nav(200, "pain_log"))
    assert len(buffer) == 2

    buffer.append(nav(301, "settings"))
    assert [e.page for e in buffer.snapshot()] == ["pain_log", "settings"]


def test_event_exactly_at_cutoff_is_kept(buffer, nav):
    buffer.append(nav(0, "dashboard"))
    buffer.append(nav(300, "pain_log"))
    assert len(buffer) == 2


def test_out_of_order_event_is_sorted(buffer, nav):
    buffer.extend([nav(0, "a"), nav(10, "c")])
    buffer.append(nav(5, "b"))
    assert [e.page for e in buffer.snapshot()] == ["a", "b", "c"]


def test_out_of_order_into_full_buffer_drops_oldest(buffer, nav):
    buffer.extend(nav(i * 2, f"page_{i}") for i in range(10))
    buffer.append(nav(3, "late"))
    pages = [e.page for e in buffer.snapshot()]
    assert len(pages) == 10
    assert pages[0] == "page_1"
    assert pages[1] == "late"


def test_snapshot_is_detached(buffer, nav):
    buffer.append(nav(0, "dashboard"))
    window = buffer.snapshot()
    buffer.append(nav(1, "pain_log"))
    buffer.clear()
    assert len(window) == 1
    assert len(buffer) == 0
