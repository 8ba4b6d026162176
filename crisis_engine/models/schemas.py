"""
Pydantic schemas for payloads read back from local storage.

Stored payloads are untrusted: they may be from an older version, hand
edited, or truncated. Everything is validated here before it is turned
into the engine's frozen dataclasses.
"""

from __future__ import annotations

from datetime import date, datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

# =============================================================================
# Profile Schemas
# =============================================================================


class DeclaredConditionPayload(BaseModel):
    """A declared condition with per-signal threshold multipliers."""

    model_config = ConfigDict(extra="ignore")

    name: str = Field(..., min_length=1, max_length=100)
    signal_multipliers: dict[str, float] = Field(default_factory=dict)

    @field_validator("signal_multipliers")
    @classmethod
    def multipliers_in_range(cls, v: dict[str, float]) -> dict[str, float]:
        for signal, factor in v.items():
            if not 0.1 <= factor <= 5.0:
                raise ValueError(f"multiplier for {signal} must be within [0.1, 5.0]")
        return v


class BaselinePayload(BaseModel):
    """Learned baseline behavior."""

    model_config = ConfigDict(extra="ignore")

    mean_navigation_interval: float | None = Field(None, gt=0)
    navigation_samples: int = Field(0, ge=0)
    mean_preference_changes: float | None = Field(None, ge=0)
    sessions_observed: int = Field(0, ge=0)


class CustomIndicatorPayload(BaseModel):
    """User-authored free-text indicator with trigger-behavior tags."""

    model_config = ConfigDict(extra="ignore")

    description: str = Field(..., max_length=500)
    trigger_behaviors: list[str] = Field(default_factory=list)


class ProfilePayload(BaseModel):
    """Stored UserCrisisProfile."""

    model_config = ConfigDict(extra="ignore")

    version: int = 1
    conditions: list[DeclaredConditionPayload] = Field(default_factory=list)
    baseline: BaselinePayload = Field(default_factory=BaselinePayload)
    custom_indicators: list[CustomIndicatorPayload] = Field(default_factory=list)
    preferred_response: str | None = None
    behavior_sensitivity: dict[str, str] = Field(default_factory=dict)
    updated_at: datetime | None = None

    @field_validator("preferred_response")
    @classmethod
    def known_response_mode(cls, v: str | None) -> str | None:
        from crisis_engine.models.profile import ResponseMode

        if v is not None and v not in {m.value for m in ResponseMode}:
            raise ValueError(f"unknown response mode: {v}")
        return v

    @field_validator("behavior_sensitivity")
    @classmethod
    def known_sensitivity(cls, v: dict[str, str]) -> dict[str, str]:
        from crisis_engine.models.profile import SensitivityLevel

        allowed = {level.value for level in SensitivityLevel}
        for signal, level in v.items():
            if level not in allowed:
                raise ValueError(f"unknown sensitivity for {signal}: {level}")
        return v


# =============================================================================
# Snapshot Schemas
# =============================================================================


class SessionPatternsPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    sessions: int = Field(0, ge=0)
    active_minutes: float = Field(0.0, ge=0)
    recovery_minutes: list[float] = Field(default_factory=list)


class WeeklySnapshotPayload(BaseModel):
    """Stored WeeklySnapshot. Assessments are validated by CrisisAssessment.from_dict."""

    model_config = ConfigDict(extra="ignore")

    week: date
    entries_logged: int = Field(0, ge=0)
    crisis_events: list[dict] = Field(default_factory=list)
    features_used: list[str] = Field(default_factory=list)
    preference_changes: int = Field(0, ge=0)
    session_patterns: SessionPatternsPayload = Field(default_factory=SessionPatternsPayload)


__all__ = [
    "DeclaredConditionPayload",
    "BaselinePayload",
    "CustomIndicatorPayload",
    "ProfilePayload",
    "SessionPatternsPayload",
    "WeeklySnapshotPayload",
]
