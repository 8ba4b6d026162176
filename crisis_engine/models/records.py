"""
SQLAlchemy tables for the local store.

Payloads are JSON documents validated on the way back in (see schemas.py).
Only derived aggregates are stored: the profile, finalized weekly
snapshots and the pending week's running totals. No table holds raw
interaction events.
"""

from datetime import UTC, datetime

from sqlalchemy import Column, Date, DateTime, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Declarative base for all engine tables."""


class ProfileRecord(Base):
    """The local user's crisis profile (single row keyed by profile_key)."""

    __tablename__ = "crisis_profiles"

    profile_key = Column(String(64), primary_key=True)
    payload = Column(Text, nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<ProfileRecord(profile_key={self.profile_key})>"


class SnapshotRecord(Base):
    """A finalized WeeklySnapshot. Written once per week, never updated."""

    __tablename__ = "weekly_snapshots"

    id = Column(Integer, primary_key=True, autoincrement=True)
    week = Column(Date, nullable=False, unique=True, index=True)
    payload = Column(Text, nullable=False)
    finalized_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<SnapshotRecord(week={self.week})>"


class PendingWeekRecord(Base):
    """Running totals for the week in progress (single row)."""

    __tablename__ = "pending_week"

    id = Column(Integer, primary_key=True)
    week = Column(Date, nullable=False)
    payload = Column(Text, nullable=False)


__all__ = ["Base", "ProfileRecord", "SnapshotRecord", "PendingWeekRecord"]
