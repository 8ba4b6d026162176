"""
Storage collaborators for the profile and weekly snapshots.

The engine only specifies the shape of what it stores (JSON-compatible
dicts) through the CrisisStorage protocol. Two implementations ship:

- InMemoryStorage: for tests and hosts that persist elsewhere
- SqlStorage: SQLAlchemy session on a local (SQLite) database

Both only ever see derived aggregates. Snapshots are write-once: saving a
week that already exists keeps the stored payload.
"""

from __future__ import annotations

import json
import logging
from datetime import date
from typing import Any, Protocol, runtime_checkable

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from crisis_engine.lib.exceptions import StorageError
from crisis_engine.lib.serialization import dumps
from crisis_engine.models.records import PendingWeekRecord, ProfileRecord, SnapshotRecord

logger = logging.getLogger(__name__)

DEFAULT_PROFILE_KEY = "local"


@runtime_checkable
class CrisisStorage(Protocol):
    """Injected persistence for engine aggregates.

    Implementations raise StorageError on failure.
    """

    def load_profile(self) -> dict[str, Any] | None: ...

    def save_profile(self, payload: dict[str, Any]) -> None: ...

    def load_snapshots(self) -> list[dict[str, Any]]: ...

    def save_snapshot(self, week: date, payload: dict[str, Any]) -> bool:
        """Store a finalized week. Returns False if the week already existed."""
        ...

    def load_pending_week(self) -> dict[str, Any] | None: ...

    def save_pending_week(self, payload: dict[str, Any]) -> None: ...


def _decode(raw: str, what: str) -> Any:
    try:
        return json.loads(raw)
    except json.JSONDecodeError as e:
        raise StorageError(f"stored {what} is not valid JSON") from e


# =============================================================================
# In-memory
# =============================================================================


class InMemoryStorage:
    """Keeps JSON-encoded payloads in memory (round-trips like a real store)."""

    def __init__(self) -> None:
        self._profile: str | None = None
        self._snapshots: dict[date, str] = {}
        self._pending: str | None = None

    def load_profile(self) -> dict[str, Any] | None:
        return _decode(self._profile, "profile") if self._profile is not None else None

    def save_profile(self, payload: dict[str, Any]) -> None:
        self._profile = dumps(payload)

    def load_snapshots(self) -> list[dict[str, Any]]:
        return [_decode(self._snapshots[w], "snapshot") for w in sorted(self._snapshots)]

    def save_snapshot(self, week: date, payload: dict[str, Any]) -> bool:
        if week in self._snapshots:
            return False
        self._snapshots[week] = dumps(payload)
        return True

    def load_pending_week(self) -> dict[str, Any] | None:
        return _decode(self._pending, "pending week") if self._pending is not None else None

    def save_pending_week(self, payload: dict[str, Any]) -> None:
        self._pending = dumps(payload)


# =============================================================================
# SQLAlchemy
# =============================================================================


class SqlStorage:
    """
    SQLAlchemy-backed storage on a local database.

    Usage:
        engine = create_engine("sqlite:///crisis.db")
        Base.metadata.create_all(engine)
        storage = SqlStorage(sessionmaker(bind=engine)())
    """

    def __init__(self, session: Session, profile_key: str = DEFAULT_PROFILE_KEY) -> None:
        self.session = session
        self.profile_key = profile_key

    def load_profile(self) -> dict[str, Any] | None:
        try:
            record = self.session.get(ProfileRecord, self.profile_key)
        except SQLAlchemyError as e:
            raise StorageError("failed to read profile") from e
        return _decode(record.payload, "profile") if record is not None else None

    def save_profile(self, payload: dict[str, Any]) -> None:
        try:
            record = self.session.get(ProfileRecord, self.profile_key)
            if record is None:
                self.session.add(ProfileRecord(profile_key=self.profile_key, payload=dumps(payload)))
            else:
                record.payload = dumps(payload)
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            raise StorageError("failed to write profile") from e

    def load_snapshots(self) -> list[dict[str, Any]]:
        try:
            records = self.session.execute(
                select(SnapshotRecord).order_by(SnapshotRecord.week)
            ).scalars().all()
        except SQLAlchemyError as e:
            raise StorageError("failed to read weekly snapshots") from e
        return [_decode(r.payload, "snapshot") for r in records]

    def save_snapshot(self, week: date, payload: dict[str, Any]) -> bool:
        try:
            existing = self.session.execute(
                select(SnapshotRecord.id).where(SnapshotRecord.week == week)
            ).first()
            if existing is not None:
                return False
            self.session.add(SnapshotRecord(week=week, payload=dumps(payload)))
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            raise StorageError(f"failed to write snapshot for {week.isoformat()}") from e
        logger.debug("snapshot_stored week=%s", week.isoformat())
        return True

    def load_pending_week(self) -> dict[str, Any] | None:
        try:
            record = self.session.get(PendingWeekRecord, 1)
        except SQLAlchemyError as e:
            raise StorageError("failed to read pending week") from e
        return _decode(record.payload, "pending week") if record is not None else None

    def save_pending_week(self, payload: dict[str, Any]) -> None:
        try:
            record = self.session.get(PendingWeekRecord, 1)
            week = date.fromisoformat(payload["week"])
            if record is None:
                self.session.add(PendingWeekRecord(id=1, week=week, payload=dumps(payload)))
            else:
                record.week = week
                record.payload = dumps(payload)
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            raise StorageError("failed to write pending week") from e


__all__ = ["CrisisStorage", "InMemoryStorage", "SqlStorage", "DEFAULT_PROFILE_KEY"]
