"""
User crisis profile.

The profile is the only mutable, multiply-read state in the engine, so it
is modelled as a frozen dataclass: every edit returns a new profile and the
engine swaps its reference in one assignment. A collector or classifier
that grabbed the old reference keeps seeing a consistent profile.

Lifecycle:
- Created on first configuration (or defaulted)
- Changed only by explicit user edits or baseline re-estimation
- Stored locally through the injected storage collaborator
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import ValidationError

from crisis_engine.lib.exceptions import ProfileValidationError
from crisis_engine.models.schemas import ProfilePayload


# =============================================================================
# Enums
# =============================================================================


class ResponseMode(StrEnum):
    """How the user prefers the app to respond when a crisis is detected."""

    GENTLE_PROMPT = "gentle_prompt"                # Non-blocking, dismissible suggestion
    SHOW_RESOURCES = "show_resources"              # Passive display, no navigation change
    SIMPLIFY_IMMEDIATELY = "simplify_immediately"  # Hard switch to reduced complexity
    DO_NOTHING = "do_nothing"                      # Log only


class SensitivityLevel(StrEnum):
    """Per-behavior sensitivity toggle exposed in settings."""

    OFF = "off"
    LOW = "low"
    STANDARD = "standard"
    HIGH = "high"


# Threshold multipliers per sensitivity level (OFF removes the signal entirely)
SENSITIVITY_MULTIPLIERS: dict[SensitivityLevel, float] = {
    SensitivityLevel.LOW: 1.3,
    SensitivityLevel.STANDARD: 1.0,
    SensitivityLevel.HIGH: 0.8,
}

# Preset signal multipliers for conditions users commonly declare.
# >1 raises the bar for behavior that is erratic-but-benign for that condition.
CONDITION_PRESETS: dict[str, dict[str, float]] = {
    "adhd": {"navigation_entropy": 1.4, "preference_churn": 1.2, "abandoned_flow": 1.2},
    "autism": {"display_toggling": 1.25, "repetitive_input": 1.3},
    "chronic_pain": {"pain_spike": 1.2, "input_chaos": 1.15},
    "fibromyalgia": {"input_chaos": 1.3, "abandoned_flow": 1.2, "unexplained_inactivity": 1.2},
    "migraine": {"display_toggling": 1.3, "preference_churn": 1.2},
    "anxiety": {"navigation_entropy": 0.9, "forced_exit": 0.9},
    "ptsd": {"forced_exit": 0.9, "unexplained_inactivity": 0.9},
}

# Keywords used to derive trigger-behavior tags from free-text indicators
TRIGGER_KEYWORDS: dict[str, tuple[str, ...]] = {
    "navigation_entropy": ("jump around", "jumping between", "click around", "clicking around",
                           "go back and forth", "can't find", "lost in the app"),
    "forced_exit": ("close the app", "closing the app", "quit the app", "shut it"),
    "abandoned_flow": ("can't finish", "give up on", "leave entries", "half-finished", "unfinished"),
    "unexplained_inactivity": ("zone out", "zoning out", "lose time", "losing time", "blank", "stare"),
    "repetitive_input": ("same thing over", "over and over", "again and again", "repeat"),
    "preference_churn": ("change settings", "changing settings", "fiddle with settings"),
    "display_toggling": ("dark mode", "brightness", "theme", "contrast", "too bright", "font size"),
    "input_chaos": ("typos", "keep deleting", "delete everything", "can't type"),
    "pain_spike": ("pain spikes", "flare", "pain jumps"),
    "help_seeking": ("help button", "look for help", "keep asking for help"),
}


# =============================================================================
# Profile Components
# =============================================================================


@dataclass(frozen=True)
class DeclaredCondition:
    """A condition the user declared, with per-signal threshold multipliers."""

    name: str
    signal_multipliers: dict[str, float] = field(default_factory=dict, hash=False)

    @classmethod
    def from_preset(cls, name: str) -> DeclaredCondition:
        """Build a condition from CONDITION_PRESETS (unknown names get no multipliers)."""
        key = name.strip().lower()
        return cls(name=key, signal_multipliers=dict(CONDITION_PRESETS.get(key, {})))


@dataclass(frozen=True)
class BaselineBehavior:
    """Rolling statistics of the user's own "normal"."""

    mean_navigation_interval: float | None = None  # seconds
    navigation_samples: int = 0
    mean_preference_changes: float | None = None   # per session
    sessions_observed: int = 0


@dataclass(frozen=True)
class CustomIndicator:
    """User-authored indicator: free text plus trigger-behavior tags."""

    description: str
    trigger_behaviors: tuple[str, ...] = ()

    @classmethod
    def from_text(cls, description: str, extra_tags: tuple[str, ...] = ()) -> CustomIndicator:
        """Derive trigger tags from the description, plus any explicit tags."""
        tags = list(dict.fromkeys([*derive_trigger_tags(description), *extra_tags]))
        return cls(description=description.strip(), trigger_behaviors=tuple(tags))


def derive_trigger_tags(text: str) -> tuple[str, ...]:
    """Map free text onto signal names via TRIGGER_KEYWORDS."""
    normalized = re.sub(r"\s+", " ", text.lower())
    return tuple(
        signal
        for signal, keywords in TRIGGER_KEYWORDS.items()
        if any(keyword in normalized for keyword in keywords)
    )


# =============================================================================
# Profile
# =============================================================================


@dataclass(frozen=True)
class UserCrisisProfile:
    """
    Per-user personalization, persisted locally and never synchronized.

    All with_* methods return a new profile (copy-on-write).
    """

    conditions: tuple[DeclaredCondition, ...] = ()
    baseline: BaselineBehavior = field(default_factory=BaselineBehavior)
    custom_indicators: tuple[CustomIndicator, ...] = ()
    preferred_response: ResponseMode | None = None
    behavior_sensitivity: dict[str, SensitivityLevel] = field(default_factory=dict, hash=False)
    updated_at: datetime | None = None

    # -------------------------------------------------------------------------
    # Copy-on-write edits
    # -------------------------------------------------------------------------

    def with_condition(self, condition: DeclaredCondition) -> UserCrisisProfile:
        """Add or replace a declared condition (matched by name)."""
        kept = tuple(c for c in self.conditions if c.name != condition.name)
        return self._edited(conditions=(*kept, condition))

    def without_condition(self, name: str) -> UserCrisisProfile:
        return self._edited(conditions=tuple(c for c in self.conditions if c.name != name))

    def with_custom_indicator(self, indicator: CustomIndicator) -> UserCrisisProfile:
        return self._edited(custom_indicators=(*self.custom_indicators, indicator))

    def without_custom_indicator(self, description: str) -> UserCrisisProfile:
        return self._edited(custom_indicators=tuple(
            i for i in self.custom_indicators if i.description != description
        ))

    def with_preferred_response(self, mode: ResponseMode | None) -> UserCrisisProfile:
        return self._edited(preferred_response=mode)

    def with_sensitivity(self, signal: str, level: SensitivityLevel) -> UserCrisisProfile:
        updated = dict(self.behavior_sensitivity)
        if level == SensitivityLevel.STANDARD:
            updated.pop(signal, None)
        else:
            updated[signal] = level
        return self._edited(behavior_sensitivity=updated)

    def with_baseline(self, baseline: BaselineBehavior) -> UserCrisisProfile:
        return self._edited(baseline=baseline)

    def _edited(self, **changes: Any) -> UserCrisisProfile:
        return replace(self, updated_at=datetime.now(UTC), **changes)

    # -------------------------------------------------------------------------
    # Serialization
    # -------------------------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": 1,
            "conditions": [
                {"name": c.name, "signal_multipliers": dict(c.signal_multipliers)}
                for c in self.conditions
            ],
            "baseline": {
                "mean_navigation_interval": self.baseline.mean_navigation_interval,
                "navigation_samples": self.baseline.navigation_samples,
                "mean_preference_changes": self.baseline.mean_preference_changes,
                "sessions_observed": self.baseline.sessions_observed,
            },
            "custom_indicators": [
                {"description": i.description, "trigger_behaviors": list(i.trigger_behaviors)}
                for i in self.custom_indicators
            ],
            "preferred_response": self.preferred_response.value if self.preferred_response else None,
            "behavior_sensitivity": {k: v.value for k, v in self.behavior_sensitivity.items()},
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    @classmethod
    def from_dict(cls, data: Any) -> UserCrisisProfile:
        """Parse a stored payload.

        Raises:
            ProfileValidationError: If the payload is malformed.
        """
        try:
            payload = ProfilePayload.model_validate(data)
        except ValidationError as e:
            raise ProfileValidationError(
                f"stored profile failed validation ({e.error_count()} errors)"
            ) from e

        return cls(
            conditions=tuple(
                DeclaredCondition(name=c.name, signal_multipliers=dict(c.signal_multipliers))
                for c in payload.conditions
            ),
            baseline=BaselineBehavior(
                mean_navigation_interval=payload.baseline.mean_navigation_interval,
                navigation_samples=payload.baseline.navigation_samples,
                mean_preference_changes=payload.baseline.mean_preference_changes,
                sessions_observed=payload.baseline.sessions_observed,
            ),
            custom_indicators=tuple(
                CustomIndicator(description=i.description, trigger_behaviors=tuple(i.trigger_behaviors))
                for i in payload.custom_indicators
            ),
            preferred_response=(
                ResponseMode(payload.preferred_response) if payload.preferred_response else None
            ),
            behavior_sensitivity={
                k: SensitivityLevel(v) for k, v in payload.behavior_sensitivity.items()
            },
            updated_at=payload.updated_at,
        )


__all__ = [
    "ResponseMode",
    "SensitivityLevel",
    "SENSITIVITY_MULTIPLIERS",
    "CONDITION_PRESETS",
    "TRIGGER_KEYWORDS",
    "DeclaredCondition",
    "BaselineBehavior",
    "CustomIndicator",
    "UserCrisisProfile",
    "derive_trigger_tags",
]
