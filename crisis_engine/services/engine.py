"""
Crisis Detection Engine.

Wires the pipeline together and owns the only mutable runtime state:

    record_event() -> EventBuffer -> tick() -> CrisisClassifier
        -> ResponseController -> on_adaptation_change(directive)
    weekly activity -> RecoveryTracker -> feedback factor -> thresholds

Concurrency model: single event loop, cooperative. tick() is a coroutine
guarded by an asyncio.Lock used as a re-entrancy guard: a tick that
arrives while another runs is dropped (and logged), never queued or run
concurrently. A tick plans everything first, yields once, then commits in
one step; if it is cancelled or the engine shuts down in between, nothing
is applied.

Failure model: the engine is advisory. Storage failures put it in
degraded mode (no adaptation, and the host is told to restore the normal
interface if an adaptation was showing); a malformed stored profile falls back to
population defaults. Only a misconfigured signature registry is fatal,
and only at construction time.

Usage:
    engine = CrisisDetectionEngine(storage=SqlStorage(session),
                                   on_adaptation_change=ui.apply)
    engine.open()
    engine.record_event(InteractionEvent(EventType.NAVIGATION, now, page="dashboard"))
    await engine.tick()
    await engine.shutdown()
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable, Sequence
from datetime import UTC, date, datetime

from pydantic import ValidationError

from crisis_engine.config.settings import EngineConfig
from crisis_engine.lib.exceptions import ProfileValidationError, StateError, StorageError
from crisis_engine.models.assessment import CrisisAssessment
from crisis_engine.models.events import HIGH_SIGNAL_EVENTS, EventBuffer, EventType, InteractionEvent
from crisis_engine.models.profile import (
    CustomIndicator,
    DeclaredCondition,
    ResponseMode,
    SensitivityLevel,
    UserCrisisProfile,
)
from crisis_engine.models.snapshot import RelapseWarning, WeekActivity, WeeklySnapshot, week_start
from crisis_engine.services.classifier import CrisisClassifier
from crisis_engine.services.collectors import SignalCollector
from crisis_engine.services.exposure import ExposureState, ProgressiveExposure
from crisis_engine.services.personalization import PersonalizationLayer
from crisis_engine.services.recovery_tracker import RecoveryTracker
from crisis_engine.services.response_controller import (
    AdaptationDirective,
    AdaptationMode,
    ControllerState,
    ResponseController,
    TransitionRecord,
)
from crisis_engine.services.signatures import SignatureRegistry
from crisis_engine.services.storage import CrisisStorage, InMemoryStorage

logger = logging.getLogger(__name__)

AdaptationCallback = Callable[[AdaptationDirective], None]

_ENTRY_EVENTS = frozenset({EventType.PAIN_ENTRY, EventType.MOOD_ENTRY})
_SESSION_END_EVENTS = frozenset({EventType.APP_BACKGROUND, EventType.APP_CLOSE})
_SESSION_RESUME_EVENTS = frozenset({EventType.APP_OPEN, EventType.APP_FOREGROUND})


def _utcnow() -> datetime:
    return datetime.now(UTC)


class CrisisDetectionEngine:
    """
    Local-only behavioral crisis detection with adaptive response.

    Construction validates the signature registry against the collectors
    and raises RegistryValidationError on a mismatch. Everything after
    that degrades instead of raising into the host.
    """

    def __init__(
        self,
        storage: CrisisStorage | None = None,
        config: EngineConfig | None = None,
        registry: SignatureRegistry | None = None,
        collectors: Sequence[SignalCollector] | None = None,
        on_adaptation_change: AdaptationCallback | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.config = config or EngineConfig()
        self.storage: CrisisStorage = storage if storage is not None else InMemoryStorage()
        self.registry = registry or SignatureRegistry.load()
        self.personalization = PersonalizationLayer(self.registry)
        self.classifier = CrisisClassifier(
            self.registry,
            collectors=collectors,
            personalization=self.personalization,
            tie_epsilon=self.config.tie_epsilon,
        )
        self.controller = ResponseController(
            self.registry,
            release_seconds=self.config.release_seconds,
            cooldown_seconds=self.config.cooldown_seconds,
        )
        self.tracker = RecoveryTracker(
            trend_window_weeks=self.config.trend_window_weeks,
            history_limit=self.config.history_weeks_limit,
        )
        self.exposure = ProgressiveExposure()
        self.buffer = EventBuffer(
            max_events=self.config.buffer_max_events,
            retention=self.config.buffer_retention,
        )
        self.on_adaptation_change = on_adaptation_change
        self._clock = clock

        self._profile = UserCrisisProfile()
        self._feedback_factor = 1.0
        self._pending: WeekActivity | None = None
        self._closed_weeks: list[WeekActivity] = []
        self._session_started_at: datetime | None = None
        self._crisis_this_session = False
        self._last_assessment: CrisisAssessment | None = None

        self._tick_guard = asyncio.Lock()
        self._generation = 0
        self._degraded = False
        self._closed = False
        self._monitor_task: asyncio.Task[None] | None = None
        self._scheduled: set[asyncio.Task[CrisisAssessment | None]] = set()

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def profile(self) -> UserCrisisProfile:
        return self._profile

    @property
    def state(self) -> ControllerState:
        return self.controller.state

    @property
    def degraded(self) -> bool:
        """True when storage failed and adaptation is switched off."""
        return self._degraded

    @property
    def feedback_factor(self) -> float:
        return self._feedback_factor

    @property
    def last_assessment(self) -> CrisisAssessment | None:
        return self._last_assessment

    @property
    def transition_log(self) -> tuple[TransitionRecord, ...]:
        return self.controller.transition_log

    @property
    def pending_week(self) -> WeekActivity | None:
        return self._pending

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def open(self, today: date | None = None) -> None:
        """Load persisted state and finalize any weeks that ended meanwhile.

        Never raises into the host: storage failure means degraded mode.
        """
        today = today or self._clock().date()
        try:
            self._profile = self._load_profile()
            history = self._load_history()
            pending = self._load_pending()
        except StorageError as e:
            self._degraded = True
            logger.warning("storage_unavailable adaptation=disabled error=%s", type(e.__cause__ or e).__name__)
            return

        self.tracker = RecoveryTracker(
            history=history,
            trend_window_weeks=self.config.trend_window_weeks,
            history_limit=self.config.history_weeks_limit,
        )
        if pending is not None:
            self._pending = pending
        self.finalize_due_weeks(today)
        logger.info(
            "crisis_engine_opened weeks=%d feedback=%.2f",
            len(self.tracker.history),
            self._feedback_factor,
        )

    def finalize_due_weeks(self, today: date | None = None) -> list[WeeklySnapshot]:
        """Finalize completed weeks (idempotent) and persist them.

        Returns:
            Snapshots finalized by this call.
        """
        today = today or self._clock().date()
        current = week_start(today)
        finalized: list[WeeklySnapshot] = []

        due = list(self._closed_weeks)
        self._closed_weeks = []
        if self._pending is not None and self._pending.week < current:
            due.append(self._pending)
            self._pending = None

        # Each due week is finalized up to the next week we have activity for
        boundaries = [a.week for a in due[1:]]
        if due:
            boundaries.append(self._pending.week if self._pending is not None else current)
        for activity, until in zip(due, boundaries, strict=True):
            snapshots, _ = self.tracker.catch_up(activity, until)
            finalized.extend(snapshots)

        if self._pending is None:
            snapshots, self._pending = self.tracker.catch_up(None, today)
            finalized.extend(snapshots)

        try:
            for snapshot in finalized:
                self.storage.save_snapshot(snapshot.week, snapshot.to_dict())
            self.storage.save_pending_week(self._pending.to_dict())
        except StorageError as e:
            self._enter_degraded("snapshot_save", e)

        self._feedback_factor = self.tracker.sensitivity_factor()
        return finalized

    def flush(self) -> None:
        """Persist the running totals of the current week."""
        if self._pending is None or self._degraded:
            return
        try:
            self.storage.save_pending_week(self._pending.to_dict())
        except StorageError as e:
            self._enter_degraded("pending_week_save", e)

    def start_monitoring(self) -> asyncio.Task[None]:
        """Run tick() every tick_interval_seconds on the running loop."""
        if self._monitor_task is None or self._monitor_task.done():
            self._monitor_task = asyncio.get_running_loop().create_task(self._monitor())
            logger.info("monitoring_started interval=%.1fs", self.config.tick_interval_seconds)
        return self._monitor_task

    async def shutdown(self) -> None:
        """Stop ticking, discard in-flight results, persist aggregates, drop raw events."""
        if self._closed:
            return
        self._closed = True
        self._generation += 1

        tasks = [t for t in (self._monitor_task, *self._scheduled) if t is not None and not t.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._scheduled.clear()
        self._monitor_task = None

        self.flush()
        self._stand_down()
        self.buffer.clear()
        logger.info("crisis_engine_shutdown cancelled_tasks=%d", len(tasks))

    # -------------------------------------------------------------------------
    # Ingestion
    # -------------------------------------------------------------------------

    def record_event(self, event: InteractionEvent) -> None:
        """Buffer an event. Fire-and-forget: never blocks, never raises."""
        if self._closed:
            return
        self.buffer.append(event)
        self._note_activity(event)

        if self.config.tick_on_high_signal and event.type in HIGH_SIGNAL_EVENTS:
            self._schedule_tick()

    def record_events(self, events: Iterable[InteractionEvent]) -> None:
        for event in events:
            self.record_event(event)

    # -------------------------------------------------------------------------
    # Analysis
    # -------------------------------------------------------------------------

    async def tick(self) -> CrisisAssessment | None:
        """Run one analysis pass.

        Returns:
            The assessment, or None if the tick was dropped or discarded.
        """
        if self._closed or self._degraded:
            return None
        if self._tick_guard.locked():
            logger.info("tick_dropped reason=tick_in_progress")
            return None

        async with self._tick_guard:
            generation = self._generation
            now = self._clock()
            window = self.buffer.snapshot()
            profile = self._profile
            factor = self._feedback_factor

            assessment = self.classifier.classify(
                window, profile=profile, feedback_factor=factor, assessed_at=now
            )
            thresholds = self.personalization.thresholds(profile, factor)
            outcome = self.controller.plan(assessment, thresholds, now, profile.preferred_response)

            # Yield to the host loop; shutdown or cancellation here discards everything above
            await asyncio.sleep(0)
            if generation != self._generation or self._closed:
                logger.info("tick_discarded reason=shutdown")
                return None
            if self._degraded:
                logger.info("tick_discarded reason=degraded")
                return None

            try:
                self.controller.commit(outcome)
            except StateError:
                logger.warning("tick_discarded reason=state_changed")
                return None

            self._last_assessment = assessment
            entered = (
                outcome.previous.state != ControllerState.INTERVENING
                and outcome.snapshot.state == ControllerState.INTERVENING
            )
            if entered:
                self._crisis_this_session = True
                if self._pending is not None:
                    self._pending.crisis_events.append(assessment.summary())
            if outcome.recovery_minutes is not None and self._pending is not None:
                self._pending.recovery_minutes.append(outcome.recovery_minutes)

            for directive in outcome.directives:
                self._emit(directive)
            return assessment

    def dismiss_adaptation(self) -> bool:
        """The user dismissed the current adaptation. Returns False if nothing was dismissible."""
        try:
            outcome = self.controller.dismiss(self._clock())
        except StateError:
            logger.debug("dismiss_ignored state=%s", self.controller.state)
            return False
        for directive in outcome.directives:
            self._emit(directive)
        return True

    # -------------------------------------------------------------------------
    # Profile configuration (copy-on-write)
    # -------------------------------------------------------------------------

    def declare_condition(self, name: str, signal_multipliers: dict[str, float] | None = None) -> UserCrisisProfile:
        """Declare a condition, from its preset unless multipliers are given."""
        if signal_multipliers is None:
            condition = DeclaredCondition.from_preset(name)
        else:
            condition = DeclaredCondition(name=name.strip().lower(), signal_multipliers=dict(signal_multipliers))
        return self._update_profile(self._profile.with_condition(condition))

    def remove_condition(self, name: str) -> UserCrisisProfile:
        return self._update_profile(self._profile.without_condition(name.strip().lower()))

    def set_sensitivity(self, signal: str, level: SensitivityLevel) -> UserCrisisProfile:
        return self._update_profile(self._profile.with_sensitivity(signal, level))

    def add_custom_indicator(self, description: str, tags: Iterable[str] = ()) -> UserCrisisProfile:
        indicator = CustomIndicator.from_text(description, extra_tags=tuple(tags))
        return self._update_profile(self._profile.with_custom_indicator(indicator))

    def remove_custom_indicator(self, description: str) -> UserCrisisProfile:
        return self._update_profile(self._profile.without_custom_indicator(description))

    def set_preferred_response(self, mode: ResponseMode | None) -> UserCrisisProfile:
        return self._update_profile(self._profile.with_preferred_response(mode))

    def reestimate_baseline(self) -> bool:
        """Fold the current session into the baseline if it was crisis-free."""
        if self._crisis_this_session:
            logger.info("baseline_skipped reason=crisis_in_session")
            return False
        window = self.buffer.snapshot()
        updated = self.personalization.reestimate_baseline(self._profile, [window])
        if updated is self._profile:
            return False
        self._update_profile(updated)
        return True

    # -------------------------------------------------------------------------
    # Recovery views (recomputed on demand)
    # -------------------------------------------------------------------------

    def relapse_warning(self) -> RelapseWarning | None:
        return self.tracker.relapse_warning()

    def exposure_state(self) -> ExposureState:
        return self.exposure.evaluate(self.tracker.history)

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _load_profile(self) -> UserCrisisProfile:
        payload = self.storage.load_profile()
        if payload is None:
            return UserCrisisProfile()
        try:
            return UserCrisisProfile.from_dict(payload)
        except ProfileValidationError as e:
            logger.warning("personalization_reset reason=%s", e)
            return UserCrisisProfile()

    def _load_history(self) -> list[WeeklySnapshot]:
        history: list[WeeklySnapshot] = []
        for payload in self.storage.load_snapshots():
            try:
                history.append(WeeklySnapshot.from_dict(payload))
            except (ValidationError, KeyError, TypeError, ValueError):
                logger.warning("snapshot_skipped reason=invalid_payload")
        return history

    def _load_pending(self) -> WeekActivity | None:
        payload = self.storage.load_pending_week()
        if payload is None:
            return None
        try:
            return WeekActivity.from_dict(payload)
        except (ValidationError, KeyError, TypeError, ValueError):
            logger.warning("pending_week_reset reason=invalid_payload")
            return None

    def _update_profile(self, profile: UserCrisisProfile) -> UserCrisisProfile:
        # Single reference swap: a running tick keeps the snapshot it started with
        self._profile = profile
        if not self._degraded:
            try:
                self.storage.save_profile(profile.to_dict())
            except StorageError as e:
                logger.warning("profile_save_failed error=%s", type(e.__cause__ or e).__name__)
        return profile

    def _note_activity(self, event: InteractionEvent) -> None:
        week = week_start(event.timestamp)
        if self._pending is None:
            self._pending = WeekActivity(week=week)
        elif week > self._pending.week:
            self._closed_weeks.append(self._pending)
            self._pending = WeekActivity(week=week)

        activity = self._pending
        if event.type in _ENTRY_EVENTS:
            activity.entries_logged += 1
        elif event.type == EventType.NAVIGATION and event.page:
            activity.features_used.add(event.page.split("/", 1)[0])
        elif event.type == EventType.PREFERENCE_CHANGE:
            activity.preference_changes += 1

        if event.type == EventType.APP_OPEN:
            activity.sessions += 1
            self._crisis_this_session = False
        if event.type in _SESSION_RESUME_EVENTS:
            self._session_started_at = event.timestamp
        elif event.type in _SESSION_END_EVENTS and self._session_started_at is not None:
            minutes = (event.timestamp - self._session_started_at).total_seconds() / 60.0
            activity.active_minutes += max(0.0, minutes)
            self._session_started_at = None

    def _schedule_tick(self) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return  # No loop: the host drives ticks itself
        task = loop.create_task(self.tick())
        self._scheduled.add(task)
        task.add_done_callback(self._scheduled.discard)

    async def _monitor(self) -> None:
        while not self._closed:
            await asyncio.sleep(self.config.tick_interval_seconds)
            await self.tick()

    def _emit(self, directive: AdaptationDirective) -> None:
        logger.info(
            "adaptation_changed mode=%s category=%s dismissible=%s",
            directive.mode,
            directive.reason_category,
            directive.dismissible,
        )
        if self.on_adaptation_change is None:
            return
        try:
            self.on_adaptation_change(directive)
        except Exception:
            logger.exception("adaptation_callback_failed mode=%s", directive.mode)

    def _stand_down(self) -> None:
        """Reset the controller, telling the host to restore any adaptation it shows."""
        shown = self.controller.snapshot.active_directive
        self.controller.reset()
        if shown is not None:
            self._emit(
                AdaptationDirective(mode=AdaptationMode.NONE, reason_category=shown.reason_category)
            )

    def _enter_degraded(self, operation: str, error: StorageError) -> None:
        self._degraded = True
        self._stand_down()
        logger.warning(
            "storage_unavailable operation=%s adaptation=disabled error=%s",
            operation,
            type(error.__cause__ or error).__name__,
        )


__all__ = ["CrisisDetectionEngine", "AdaptationCallback"]
