"""
Response Controller.

State machine translating assessments into bounded, reversible UI
adaptations:

    IDLE -> MONITORING -> INTERVENING -> COOLDOWN -> IDLE

- IDLE -> MONITORING on the first tick with sufficient data
- MONITORING -> IDLE when data becomes insufficient again
- MONITORING -> INTERVENING when a crisis is detected
- INTERVENING -> COOLDOWN once the triggering category has stayed below its
  threshold for release_seconds, or the user dismisses a dismissible
  adaptation
- COOLDOWN -> IDLE after cooldown_seconds; detections are ignored meanwhile

A tick is planned without touching controller state (plan()) and applied
in one assignment (commit()), so a cancelled tick leaves nothing behind.
Every transition is kept in a local log for "why did the app change?".
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from enum import StrEnum
from typing import Any

from crisis_engine.lib.exceptions import StateError
from crisis_engine.models.assessment import CrisisAssessment
from crisis_engine.models.profile import ResponseMode
from crisis_engine.services.personalization import ThresholdTable
from crisis_engine.services.signatures import InterventionUrgency, SignatureRegistry

logger = logging.getLogger(__name__)


# =============================================================================
# Enums
# =============================================================================


class ControllerState(StrEnum):
    """Response controller states."""

    IDLE = "idle"
    MONITORING = "monitoring"
    INTERVENING = "intervening"
    COOLDOWN = "cooldown"


class AdaptationMode(StrEnum):
    """What the host UI should render."""

    NONE = "none"                                  # Restore the normal interface
    GENTLE_PROMPT = "gentle_prompt"
    SHOW_RESOURCES = "show_resources"
    SIMPLIFY_IMMEDIATELY = "simplify_immediately"


# Default adaptation when the user has not chosen one
URGENCY_RESPONSE: dict[InterventionUrgency, ResponseMode] = {
    InterventionUrgency.IMMEDIATE: ResponseMode.SIMPLIFY_IMMEDIATELY,
    InterventionUrgency.GENTLE: ResponseMode.GENTLE_PROMPT,
    InterventionUrgency.DELAYED: ResponseMode.SHOW_RESOURCES,
}

_DISMISSIBLE_MODES = frozenset({AdaptationMode.GENTLE_PROMPT, AdaptationMode.SHOW_RESOURCES})


# =============================================================================
# Value Types
# =============================================================================


@dataclass(frozen=True)
class AdaptationDirective:
    """Instruction for the host UI. The engine never touches the UI itself."""

    mode: AdaptationMode
    reason_category: str | None = None
    dismissible: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "mode": self.mode.value,
            "reason_category": self.reason_category,
            "dismissible": self.dismissible,
        }


@dataclass(frozen=True)
class TransitionRecord:
    """One entry of the local transparency log."""

    from_state: ControllerState
    to_state: ControllerState
    category: str | None
    timestamp: datetime
    action: str
    reason: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "from_state": self.from_state.value,
            "to_state": self.to_state.value,
            "category": self.category,
            "timestamp": self.timestamp.isoformat(),
            "action": self.action,
            "reason": self.reason,
        }


@dataclass(frozen=True)
class ControllerSnapshot:
    """Complete controller state. Replaced, never mutated."""

    state: ControllerState = ControllerState.IDLE
    category: str | None = None
    mode: ResponseMode | None = None
    intervening_since: datetime | None = None
    below_threshold_since: datetime | None = None
    cooldown_since: datetime | None = None

    @property
    def active_directive(self) -> AdaptationDirective | None:
        """The directive currently shown by the host, if any."""
        if self.state != ControllerState.INTERVENING or self.mode in (None, ResponseMode.DO_NOTHING):
            return None
        mode = AdaptationMode(self.mode.value)
        return AdaptationDirective(
            mode=mode,
            reason_category=self.category,
            dismissible=mode in _DISMISSIBLE_MODES,
        )


@dataclass(frozen=True)
class ControllerOutcome:
    """Result of planning one tick, applied atomically by commit()."""

    previous: ControllerSnapshot
    snapshot: ControllerSnapshot
    transitions: tuple[TransitionRecord, ...] = ()
    directives: tuple[AdaptationDirective, ...] = ()
    recovery_minutes: float | None = None  # Set when an episode closes

    @property
    def changed(self) -> bool:
        return bool(self.transitions)


# =============================================================================
# Controller
# =============================================================================


class ResponseController:
    """
    Drives adaptation from assessments.

    Usage:
        controller = ResponseController(registry)
        outcome = controller.plan(assessment, thresholds, now, preferred_response)
        controller.commit(outcome)
    """

    LOG_LIMIT = 200

    def __init__(
        self,
        registry: SignatureRegistry,
        release_seconds: float = 30.0,
        cooldown_seconds: float = 300.0,
    ) -> None:
        self.registry = registry
        self.release = timedelta(seconds=release_seconds)
        self.cooldown = timedelta(seconds=cooldown_seconds)
        self._snapshot = ControllerSnapshot()
        self._log: deque[TransitionRecord] = deque(maxlen=self.LOG_LIMIT)

    @property
    def state(self) -> ControllerState:
        return self._snapshot.state

    @property
    def snapshot(self) -> ControllerSnapshot:
        return self._snapshot

    @property
    def transition_log(self) -> tuple[TransitionRecord, ...]:
        return tuple(self._log)

    # -------------------------------------------------------------------------
    # Planning
    # -------------------------------------------------------------------------

    def plan(
        self,
        assessment: CrisisAssessment,
        thresholds: ThresholdTable,
        now: datetime,
        preferred_response: ResponseMode | None = None,
    ) -> ControllerOutcome:
        """Work out the next state for this tick without changing anything."""
        start = self._snapshot
        snap = start
        transitions: list[TransitionRecord] = []
        directives: list[AdaptationDirective] = []
        recovery: float | None = None

        if snap.state == ControllerState.IDLE and not assessment.insufficient_data:
            snap, record = self._move(snap, ControllerState.MONITORING, now, "observe", "sufficient_data")
            transitions.append(record)

        if snap.state == ControllerState.MONITORING:
            if assessment.insufficient_data:
                snap, record = self._move(snap, ControllerState.IDLE, now, "stand_down", "insufficient_data")
                transitions.append(record)
            elif assessment.detected_crisis is not None:
                snap, record, directive = self._intervene(snap, assessment, now, preferred_response)
                transitions.append(record)
                if directive is not None:
                    directives.append(directive)

        elif snap.state == ControllerState.INTERVENING:
            snap, record, directive = self._check_release(snap, assessment, thresholds, now)
            if record is not None:
                transitions.append(record)
            if directive is not None:
                directives.append(directive)

        elif snap.state == ControllerState.COOLDOWN:
            if snap.cooldown_since is not None and now - snap.cooldown_since >= self.cooldown:
                if snap.intervening_since is not None:
                    recovery = round((now - snap.intervening_since).total_seconds() / 60.0, 3)
                snap, record = self._move(snap, ControllerState.IDLE, now, "resume", "cooldown_elapsed")
                snap = ControllerSnapshot()
                transitions.append(record)
            elif assessment.detected_crisis is not None:
                logger.debug("detection_ignored_in_cooldown category=%s", assessment.detected_crisis)

        return ControllerOutcome(
            previous=start,
            snapshot=snap,
            transitions=tuple(transitions),
            directives=tuple(directives),
            recovery_minutes=recovery,
        )

    def commit(self, outcome: ControllerOutcome) -> None:
        """Apply a planned outcome.

        Raises:
            StateError: If the controller moved on since the outcome was planned.
        """
        if outcome.previous != self._snapshot:
            raise StateError("controller state changed since this tick was planned")
        self._snapshot = outcome.snapshot
        self._log.extend(outcome.transitions)
        for record in outcome.transitions:
            logger.info(
                "controller_transition from=%s to=%s category=%s action=%s reason=%s",
                record.from_state,
                record.to_state,
                record.category,
                record.action,
                record.reason,
            )

    def step(
        self,
        assessment: CrisisAssessment,
        thresholds: ThresholdTable,
        now: datetime,
        preferred_response: ResponseMode | None = None,
    ) -> ControllerOutcome:
        """plan() and commit() in one call."""
        outcome = self.plan(assessment, thresholds, now, preferred_response)
        self.commit(outcome)
        return outcome

    # -------------------------------------------------------------------------
    # User actions
    # -------------------------------------------------------------------------

    def dismiss(self, now: datetime) -> ControllerOutcome:
        """User dismissed the current adaptation: go straight to cooldown.

        Raises:
            StateError: If nothing dismissible is being shown.
        """
        current = self._snapshot.active_directive
        if current is None or not current.dismissible:
            raise StateError("no dismissible adaptation is active")

        snap, record = self._move(
            self._snapshot, ControllerState.COOLDOWN, now, "restore", "dismissed_by_user"
        )
        snap = replace(snap, cooldown_since=now, below_threshold_since=None)
        outcome = ControllerOutcome(
            previous=self._snapshot,
            snapshot=snap,
            transitions=(record,),
            directives=(AdaptationDirective(mode=AdaptationMode.NONE, reason_category=record.category),),
        )
        self.commit(outcome)
        return outcome

    def reset(self) -> None:
        """Back to IDLE without logging (engine shutdown or degraded mode)."""
        self._snapshot = ControllerSnapshot()

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def response_for(self, category: str, preferred: ResponseMode | None) -> ResponseMode:
        if preferred is not None:
            return preferred
        return URGENCY_RESPONSE[self.registry.get(category).urgency]

    def _intervene(
        self,
        snap: ControllerSnapshot,
        assessment: CrisisAssessment,
        now: datetime,
        preferred: ResponseMode | None,
    ) -> tuple[ControllerSnapshot, TransitionRecord, AdaptationDirective | None]:
        category = assessment.detected_crisis
        if category is None:
            raise StateError("cannot intervene without a detected category")
        mode = self.response_for(category, preferred)
        snap = replace(snap, category=category, mode=mode, intervening_since=now, below_threshold_since=None)
        snap, record = self._move(snap, ControllerState.INTERVENING, now, mode.value, "crisis_detected")
        return snap, record, snap.active_directive

    def _check_release(
        self,
        snap: ControllerSnapshot,
        assessment: CrisisAssessment,
        thresholds: ThresholdTable,
        now: datetime,
    ) -> tuple[ControllerSnapshot, TransitionRecord | None, AdaptationDirective | None]:
        category = snap.category
        if category is None:
            raise StateError("intervening without a triggering category")
        score = assessment.score_for(category)
        if score >= thresholds.category_threshold(category):
            if snap.below_threshold_since is not None:
                snap = replace(snap, below_threshold_since=None)
            return snap, None, None

        below_since = snap.below_threshold_since or now
        if now - below_since < self.release:
            return replace(snap, below_threshold_since=below_since), None, None

        shown = snap.active_directive
        snap, record = self._move(snap, ControllerState.COOLDOWN, now, "restore", "below_threshold")
        snap = replace(snap, cooldown_since=now, below_threshold_since=None)
        restore = None
        if shown is not None:
            restore = AdaptationDirective(mode=AdaptationMode.NONE, reason_category=category)
        return snap, record, restore

    @staticmethod
    def _move(
        snap: ControllerSnapshot,
        to_state: ControllerState,
        now: datetime,
        action: str,
        reason: str,
    ) -> tuple[ControllerSnapshot, TransitionRecord]:
        record = TransitionRecord(
            from_state=snap.state,
            to_state=to_state,
            category=snap.category,
            timestamp=now,
            action=action,
            reason=reason,
        )
        return replace(snap, state=to_state), record


__all__ = [
    "ControllerState",
    "AdaptationMode",
    "AdaptationDirective",
    "TransitionRecord",
    "ControllerSnapshot",
    "ControllerOutcome",
    "ResponseController",
    "URGENCY_RESPONSE",
]
