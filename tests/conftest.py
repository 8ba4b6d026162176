"""
Shared test fixtures for the crisis detection engine.

This module provides common fixtures used across all test modules:
- Database session (in-memory SQLite)
- Signature registry loaded from the packaged catalog
- Event builders anchored at a fixed timestamp
- The four reference traces (panic, dissociation, sensory overload,
  methodical first session)

Usage:
    All fixtures are automatically available to any test in the tests/ directory.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from crisis_engine.models.events import EventType, InteractionEvent
from crisis_engine.models.records import Base
from crisis_engine.services.signatures import SignatureRegistry

# Monday, so week arithmetic in tests is easy to follow
T0 = datetime(2026, 3, 2, 9, 0, 0, tzinfo=UTC)


# ---------------------------------------------------------------------------
# 1. db_session -- in-memory SQLite session for storage tests
# ---------------------------------------------------------------------------

@pytest.fixture()
def db_session():
    """
    Provide a SQLAlchemy session backed by an in-memory SQLite database.

    A fresh database is created for every test that requests this fixture.
    """
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    TestingSession = sessionmaker(bind=engine)
    session = TestingSession()

    yield session

    session.close()
    engine.dispose()


# ---------------------------------------------------------------------------
# 2. registry -- the packaged signature catalog
# ---------------------------------------------------------------------------

@pytest.fixture(scope="session")
def registry():
    return SignatureRegistry.load()


# ---------------------------------------------------------------------------
# 3. Event builders
# ---------------------------------------------------------------------------

@pytest.fixture()
def t0():
    return T0


@pytest.fixture()
def ev():
    """Build an event `seconds` after T0."""

    def _build(
        event_type: EventType,
        seconds: float = 0.0,
        page: str | None = None,
        field: str | None = None,
        value: str | float | None = None,
    ) -> InteractionEvent:
        return InteractionEvent(
            type=event_type,
            timestamp=T0 + timedelta(seconds=seconds),
            page=page,
            field=field,
            value=value,
        )

    return _build


@pytest.fixture()
def nav(ev):
    """Build a navigation event."""

    def _build(seconds: float, page: str) -> InteractionEvent:
        return ev(EventType.NAVIGATION, seconds, page=page)

    return _build


# ---------------------------------------------------------------------------
# 4. Reference traces
# ---------------------------------------------------------------------------

@pytest.fixture()
def panic_trace(ev, nav):
    """Rapid, circling navigation ending in app closure 1.6 s after the last tap."""
    pages = [
        (0.0, "dashboard"),
        (0.6, "pain_log"),
        (0.9, "dashboard"),
        (2.1, "settings"),
        (2.4, "dashboard"),
        (3.4, "pain_log"),
        (3.7, "dashboard"),
        (4.9, "pain_log"),
    ]
    return (
        ev(EventType.APP_OPEN, -5.0),
        *(nav(s, p) for s, p in pages),
        ev(EventType.APP_CLOSE, 6.5),
    )


@pytest.fixture()
def dissociation_trace(ev, nav):
    """A 15-minute unexplained gap, then the same entry repeated three times."""
    events = [
        ev(EventType.APP_OPEN, 0.0),
        nav(5.0, "dashboard"),
        nav(20.0, "pain_log"),
    ]
    resume = 20.0 + 15 * 60
    for i in range(3):
        base = resume + i * 20.0
        events.append(ev(EventType.INPUT, base, field="pain_level", value=6))
        events.append(ev(EventType.FORM_SUBMIT, base + 5.0, field="pain_entry"))
    return tuple(events)


@pytest.fixture()
def sensory_trace(ev):
    """Nine preference changes in about three minutes, theme toggled three times."""
    keys = [
        "theme",
        "font_size",
        "theme",
        "contrast",
        "font_size",
        "reduced_motion",
        "contrast",
        "brightness",
        "theme",
    ]
    events = [ev(EventType.APP_OPEN, 0.0)]
    events.extend(
        ev(EventType.PREFERENCE_CHANGE, 10.0 + i * 20.0, field=key, value="toggled")
        for i, key in enumerate(keys)
    )
    return tuple(events)


@pytest.fixture()
def methodical_trace(ev, nav):
    """First session: nine distinct settings pages, 15 s apart, three one-off preference edits."""
    pages = [
        "settings",
        "settings/profile",
        "settings/notifications",
        "settings/display",
        "settings/privacy",
        "settings/accessibility",
        "settings/reminders",
        "settings/data",
        "settings/about",
    ]
    events = [ev(EventType.APP_OPEN, 0.0)]
    for i, page in enumerate(pages):
        events.append(nav(i * 15.0, page))
    events.append(ev(EventType.PREFERENCE_CHANGE, 50.0, field="font_size", value="large"))
    events.append(ev(EventType.PREFERENCE_CHANGE, 65.0, field="reminder_time", value="09:00"))
    events.append(ev(EventType.PREFERENCE_CHANGE, 95.0, field="language", value="en"))
    return tuple(sorted(events, key=lambda e: e.timestamp))
