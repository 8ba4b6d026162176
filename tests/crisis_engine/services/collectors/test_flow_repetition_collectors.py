"""
Tests for AbandonedFlowCollector and RepetitionCollector.

Covers:
- Flows abandoned by breaking events or by timeout
- Completed and in-progress flows are not flagged
- Repeated action subsequences and concern scaling
- Runs of one value entered again and again
- Navigation never counts as repetition
"""

from __future__ import annotations

import pytest

from crisis_engine.models.events import EventType
from crisis_engine.services.collectors.flows import (
    ABANDONED_FLOW,
    AbandonedFlowCollector,
    FlowDefinition,
)
from crisis_engine.services.collectors.repetition import (
    REPETITIVE_INPUT,
    RepetitionCollector,
    count_non_overlapping,
)

PAIN_FLOW = FlowDefinition(
    name="pain_entry",
    steps=("pain_entry/location", "pain_entry/intensity", "pain_entry/details", "pain_entry/save"),
    timeout_seconds=180.0,
)
MOOD_FLOW = FlowDefinition(
    name="mood_checkin",
    steps=("mood/start", "mood/rating", "mood/save"),
    timeout_seconds=120.0,
)


# =============================================================================
# Abandoned Flows
# =============================================================================


class TestAbandonedFlows:
    @pytest.fixture
    def collector(self):
        return AbandonedFlowCollector(flows=(PAIN_FLOW, MOOD_FLOW))

    def test_no_catalog_means_no_data(self, nav):
        assert AbandonedFlowCollector().collect((nav(0, "pain_entry/location"),)).has_data is False

    def test_no_flow_started_means_no_data(self, collector, nav):
        reading = collector.collect((nav(0, "dashboard"), nav(400, "settings")))
        assert reading.has_data is False

    def test_single_step_flow_is_rejected(self):
        with pytest.raises(ValueError, match="at least two steps"):
            FlowDefinition(name="tiny", steps=("only",))

    def test_background_breaks_flow(self, collector, nav, ev):
        window = (
            nav(0, "pain_entry/location"),
            nav(10, "pain_entry/intensity"),
            ev(EventType.APP_BACKGROUND, 12),
        )
        (abandoned,) = collector.find_abandoned(window)
        assert abandoned.flow_name == "pain_entry"
        assert abandoned.completed_steps == 2
        assert abandoned.total_steps == 4
        assert abandoned.abandoned_at == "pain_entry/intensity"
        assert abandoned.time_in_flow == pytest.approx(10.0)

    def test_completed_flow_is_not_flagged(self, collector, nav, ev):
        window = (
            nav(0, "mood/start"),
            nav(5, "mood/rating"),
            nav(9, "mood/save"),
            ev(EventType.APP_CLOSE, 10),
        )
        assert collector.find_abandoned(window) == []

    def test_in_progress_flow_is_not_flagged(self, collector, nav, ev):
        window = (
            nav(0, "pain_entry/location"),
            ev(EventType.INPUT, 60, field="pain_level", value=5),
        )
        reading = collector.collect(window)
        assert reading.has_data is True
        assert reading.signals == ()

    def test_stale_flow_times_out(self, collector, nav):
        window = (nav(0, "pain_entry/location"), nav(200, "dashboard"))
        reading = collector.collect(window)
        (signal,) = reading.signals
        assert signal.name == ABANDONED_FLOW
        assert signal.confidence == pytest.approx(0.6)
        assert signal.details["flows"][0]["completed_steps"] == 1

    def test_flow_steps_can_come_from_fields(self, collector, ev):
        window = (
            ev(EventType.INPUT, 0, field="mood/start"),
            ev(EventType.FORM_ABANDON, 3, field="mood/start"),
        )
        (abandoned,) = collector.find_abandoned(window)
        assert abandoned.flow_name == "mood_checkin"

    def test_two_abandoned_flows_raise_confidence(self, collector, nav, ev):
        window = (
            nav(0, "pain_entry/location"),
            nav(5, "mood/start"),
            ev(EventType.APP_CLOSE, 8),
        )
        (signal,) = collector.collect(window).signals
        assert signal.confidence == pytest.approx(0.75)
        assert [f["flow_name"] for f in signal.details["flows"]] == ["pain_entry", "mood_checkin"]

    def test_restarted_flow_uses_latest_start(self, collector, nav):
        window = (
            nav(0, "mood/start"),
            nav(300, "mood/start"),
            nav(305, "mood/rating"),
            nav(310, "mood/save"),
        )
        assert collector.find_abandoned(window) == []


# =============================================================================
# Repetition
# =============================================================================


class TestRepetition:
    @pytest.fixture
    def collector(self):
        return RepetitionCollector()

    def test_count_non_overlapping(self):
        assert count_non_overlapping(["a", "a", "a", "a"], ("a", "a")) == 2
        assert count_non_overlapping(["a", "b", "a", "b", "a"], ("a", "b")) == 2
        assert count_non_overlapping(["a"], ("a", "b")) == 0

    def test_too_few_actions_means_no_data(self, collector, ev):
        window = tuple(ev(EventType.INPUT, i, field="x") for i in range(2))
        assert collector.collect(window).has_data is False

    def test_dissociation_trace_repeats_entry(self, collector, dissociation_trace):
        (signal,) = collector.collect(dissociation_trace).signals
        assert signal.name == REPETITIVE_INPUT
        assert signal.details["repeats"] == 3
        assert signal.details["pattern_length"] == 2
        assert signal.confidence == pytest.approx(0.6)

    def test_navigation_is_not_repetition(self, collector, nav):
        window = tuple(nav(i, "a" if i % 2 else "b") for i in range(12))
        assert collector.collect(window).has_data is False

    def test_varied_input_has_no_pattern(self, collector, ev):
        fields = ["name", "age", "notes", "pain_level", "location", "duration"]
        window = tuple(ev(EventType.INPUT, i, field=f) for i, f in enumerate(fields))
        reading = collector.collect(window)
        assert reading.has_data is True
        assert reading.signals == ()

    def test_most_repeated_pattern_wins(self, collector, ev):
        window = []
        for i in range(6):
            window.append(ev(EventType.INPUT, i * 2, field="pain_level"))
            window.append(ev(EventType.DELETION, i * 2 + 1, field="pain_level"))
        patterns = collector.find_patterns(tuple(window))
        assert patterns[0].count == 6
        assert patterns[0].tokens == ("input:pain_level", "deletion:pain_level")

    def test_same_value_entered_three_times(self, collector, ev):
        window = tuple(ev(EventType.INPUT, i * 20, field="pain_level", value=6) for i in range(3))
        (signal,) = collector.collect(window).signals
        assert signal.details["repeats"] == 3
        assert signal.details["pattern_length"] == 1
        assert signal.confidence == pytest.approx(0.6)

    def test_longest_run_counts(self, collector, ev):
        window = tuple(ev(EventType.INPUT, i, field="pain_level", value=4) for i in range(5))
        (pattern,) = collector.find_patterns(window)
        assert pattern.tokens == ("input:pain_level=4",)
        assert pattern.count == 5

    @pytest.mark.parametrize(
        "values",
        [(6, 6, 7), (6, 7, 6), (None, None, None)],
        ids=["changed_value", "interleaved_value", "no_value"],
    )
    def test_runs_need_the_same_value(self, collector, ev, values):
        window = tuple(ev(EventType.INPUT, i, field="pain_level", value=v) for i, v in enumerate(values))
        reading = collector.collect(window)
        assert reading.has_data is True
        assert reading.signals == ()

    def test_run_broken_by_other_action(self, collector, ev):
        window = (
            ev(EventType.INPUT, 0, field="pain_level", value=6),
            ev(EventType.INPUT, 1, field="pain_level", value=6),
            ev(EventType.DELETION, 2, field="pain_level"),
            ev(EventType.INPUT, 3, field="pain_level", value=6),
        )
        assert collector.find_patterns(window) == []

    @pytest.mark.parametrize(("repeats", "expected"), [(2, 0.0), (3, 0.6), (6, 0.9), (10, 0.95)])
    def test_concern_scaling(self, collector, repeats, expected):
        assert collector.concern(repeats) == pytest.approx(expected)
