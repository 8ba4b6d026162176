"""
Tests for the ResponseController state machine.

Covers:
- Idle -> Monitoring -> Intervening -> Cooldown -> Idle
- Urgency defaults and user-preferred response modes
- Release only after the category stays below threshold long enough
- Detections ignored during cooldown
- Dismissal rules
- plan() never mutates state; stale outcomes are rejected
"""

from __future__ import annotations

from datetime import timedelta

import pytest

from crisis_engine.lib.exceptions import StateError
from crisis_engine.models.assessment import CategoryScore, CrisisAssessment
from crisis_engine.models.profile import ResponseMode
from crisis_engine.services.personalization import PersonalizationLayer
from crisis_engine.services.response_controller import (
    AdaptationMode,
    ControllerState,
    ResponseController,
)


@pytest.fixture
def controller(registry):
    return ResponseController(registry, release_seconds=30, cooldown_seconds=300)


@pytest.fixture
def thresholds(registry):
    return PersonalizationLayer(registry).population_thresholds()


def _assessment(detected=None, score=0.0, insufficient=False, **others):
    alternatives = tuple(CategoryScore(c, s) for c, s in others.items())
    if detected is None:
        return CrisisAssessment(
            detected_crisis=None,
            confidence=0.0 if insufficient else 1.0 - score,
            alternative_hypotheses=alternatives,
            insufficient_data=insufficient,
        )
    return CrisisAssessment(detected_crisis=detected, confidence=score, alternative_hypotheses=alternatives)


QUIET = _assessment(panic_attack=0.1)
PANIC = _assessment("panic_attack", 0.8)
NO_DATA = _assessment(insufficient=True)


def _intervene(controller, thresholds, t0, preferred=None, assessment=PANIC):
    return controller.step(assessment, thresholds, t0, preferred)


# =============================================================================
# Idle and Monitoring
# =============================================================================


class TestMonitoring:
    def test_starts_idle(self, controller):
        assert controller.state == ControllerState.IDLE
        assert controller.snapshot.active_directive is None

    def test_insufficient_data_stays_idle(self, controller, thresholds, t0):
        outcome = controller.step(NO_DATA, thresholds, t0)
        assert controller.state == ControllerState.IDLE
        assert outcome.changed is False

    def test_data_starts_monitoring(self, controller, thresholds, t0):
        controller.step(QUIET, thresholds, t0)
        assert controller.state == ControllerState.MONITORING
        (record,) = controller.transition_log
        assert record.reason == "sufficient_data"

    def test_losing_data_returns_to_idle(self, controller, thresholds, t0):
        controller.step(QUIET, thresholds, t0)
        controller.step(NO_DATA, thresholds, t0 + timedelta(seconds=5))
        assert controller.state == ControllerState.IDLE


# =============================================================================
# Intervening
# =============================================================================


class TestIntervening:
    def test_detection_from_idle_intervenes_in_one_tick(self, controller, thresholds, t0):
        outcome = _intervene(controller, thresholds, t0)
        assert controller.state == ControllerState.INTERVENING
        assert [r.to_state for r in outcome.transitions] == [
            ControllerState.MONITORING,
            ControllerState.INTERVENING,
        ]
        (directive,) = outcome.directives
        assert directive.mode == AdaptationMode.SIMPLIFY_IMMEDIATELY
        assert directive.reason_category == "panic_attack"
        assert directive.dismissible is False

    @pytest.mark.parametrize(
        ("category", "mode"),
        [
            ("dissociation", AdaptationMode.GENTLE_PROMPT),
            ("pain_flare", AdaptationMode.SHOW_RESOURCES),
            ("sensory_overload", AdaptationMode.SIMPLIFY_IMMEDIATELY),
        ],
    )
    def test_urgency_defaults(self, controller, thresholds, t0, category, mode):
        outcome = _intervene(controller, thresholds, t0, assessment=_assessment(category, 0.9))
        assert outcome.directives[0].mode == mode

    def test_preferred_response_wins(self, controller, thresholds, t0):
        outcome = _intervene(controller, thresholds, t0, preferred=ResponseMode.GENTLE_PROMPT)
        (directive,) = outcome.directives
        assert directive.mode == AdaptationMode.GENTLE_PROMPT
        assert directive.dismissible is True

    def test_do_nothing_logs_only(self, controller, thresholds, t0):
        outcome = _intervene(controller, thresholds, t0, preferred=ResponseMode.DO_NOTHING)
        assert controller.state == ControllerState.INTERVENING
        assert outcome.directives == ()
        assert controller.transition_log[-1].action == "do_nothing"

    def test_other_category_while_intervening_is_ignored(self, controller, thresholds, t0):
        _intervene(controller, thresholds, t0)
        outcome = controller.step(
            _assessment("sensory_overload", 0.9, panic_attack=0.7), thresholds, t0 + timedelta(seconds=5)
        )
        assert controller.snapshot.category == "panic_attack"
        assert outcome.changed is False
        assert outcome.directives == ()


# =============================================================================
# Release and Cooldown
# =============================================================================


class TestRelease:
    def test_release_waits_for_release_period(self, controller, thresholds, t0):
        _intervene(controller, thresholds, t0)
        controller.step(QUIET, thresholds, t0 + timedelta(seconds=10))
        controller.step(QUIET, thresholds, t0 + timedelta(seconds=39))
        assert controller.state == ControllerState.INTERVENING

        outcome = controller.step(QUIET, thresholds, t0 + timedelta(seconds=40))
        assert controller.state == ControllerState.COOLDOWN
        (directive,) = outcome.directives
        assert directive.mode == AdaptationMode.NONE
        assert outcome.transitions[0].reason == "below_threshold"

    def test_recurrence_resets_release_clock(self, controller, thresholds, t0):
        _intervene(controller, thresholds, t0)
        controller.step(QUIET, thresholds, t0 + timedelta(seconds=10))
        controller.step(PANIC, thresholds, t0 + timedelta(seconds=20))
        controller.step(QUIET, thresholds, t0 + timedelta(seconds=45))
        assert controller.state == ControllerState.INTERVENING
        assert controller.snapshot.below_threshold_since == t0 + timedelta(seconds=45)

    def test_silent_release_for_do_nothing(self, controller, thresholds, t0):
        _intervene(controller, thresholds, t0, preferred=ResponseMode.DO_NOTHING)
        controller.step(QUIET, thresholds, t0 + timedelta(seconds=1))
        outcome = controller.step(QUIET, thresholds, t0 + timedelta(seconds=31))
        assert controller.state == ControllerState.COOLDOWN
        assert outcome.directives == ()

    def test_cooldown_ignores_detections_then_resumes(self, controller, thresholds, t0):
        _intervene(controller, thresholds, t0)
        controller.step(QUIET, thresholds, t0 + timedelta(seconds=1))
        controller.step(QUIET, thresholds, t0 + timedelta(seconds=31))
        cooled = t0 + timedelta(seconds=31)

        outcome = controller.step(PANIC, thresholds, cooled + timedelta(seconds=60))
        assert controller.state == ControllerState.COOLDOWN
        assert outcome.directives == ()

        outcome = controller.step(QUIET, thresholds, cooled + timedelta(seconds=300))
        assert controller.state == ControllerState.IDLE
        assert outcome.recovery_minutes == pytest.approx(331 / 60, abs=0.001)
        assert controller.snapshot.category is None

    def test_full_cycle_log(self, controller, thresholds, t0):
        _intervene(controller, thresholds, t0)
        controller.step(QUIET, thresholds, t0 + timedelta(seconds=1))
        controller.step(QUIET, thresholds, t0 + timedelta(seconds=31))
        controller.step(QUIET, thresholds, t0 + timedelta(seconds=331))
        states = [(r.from_state, r.to_state) for r in controller.transition_log]
        assert states == [
            (ControllerState.IDLE, ControllerState.MONITORING),
            (ControllerState.MONITORING, ControllerState.INTERVENING),
            (ControllerState.INTERVENING, ControllerState.COOLDOWN),
            (ControllerState.COOLDOWN, ControllerState.IDLE),
        ]
        assert controller.transition_log[1].to_dict()["category"] == "panic_attack"


# =============================================================================
# Dismissal
# =============================================================================


class TestDismiss:
    def test_dismiss_gentle_prompt(self, controller, thresholds, t0):
        _intervene(controller, thresholds, t0, preferred=ResponseMode.GENTLE_PROMPT)
        outcome = controller.dismiss(t0 + timedelta(seconds=5))
        assert controller.state == ControllerState.COOLDOWN
        assert outcome.directives[0].mode == AdaptationMode.NONE
        assert outcome.transitions[0].reason == "dismissed_by_user"

    def test_simplify_is_not_dismissible(self, controller, thresholds, t0):
        _intervene(controller, thresholds, t0)
        with pytest.raises(StateError):
            controller.dismiss(t0)
        assert controller.state == ControllerState.INTERVENING

    def test_nothing_to_dismiss(self, controller, t0):
        with pytest.raises(StateError):
            controller.dismiss(t0)


# =============================================================================
# Plan / Commit
# =============================================================================


class TestPlanCommit:
    def test_plan_does_not_mutate(self, controller, thresholds, t0):
        outcome = controller.plan(PANIC, thresholds, t0)
        assert outcome.snapshot.state == ControllerState.INTERVENING
        assert controller.state == ControllerState.IDLE
        assert controller.transition_log == ()

    def test_stale_outcome_is_rejected(self, controller, thresholds, t0):
        stale = controller.plan(PANIC, thresholds, t0)
        controller.step(QUIET, thresholds, t0)
        with pytest.raises(StateError):
            controller.commit(stale)
        assert controller.state == ControllerState.MONITORING

    def test_reset(self, controller, thresholds, t0):
        _intervene(controller, thresholds, t0)
        controller.reset()
        assert controller.state == ControllerState.IDLE
        assert controller.snapshot.active_directive is None
