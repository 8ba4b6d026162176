"""
Abandoned-flow collector.

Given a catalog of expected multi-step flows (e.g. logging a pain entry),
flags flows that were started, progressed through a strict prefix of their
steps, and then went stale: no further step within the flow's timeout, or
an explicit abandon/background/close right after the last step.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from crisis_engine.models.events import EventType, Window
from crisis_engine.services.collectors.base import (
    NO_DATA,
    CollectorReading,
    make_signal,
    reading,
)

ABANDONED_FLOW = "abandoned_flow"

# Events that end a flow on the spot
_BREAKING_EVENTS = frozenset({
    EventType.FORM_ABANDON,
    EventType.APP_BACKGROUND,
    EventType.APP_CLOSE,
})


@dataclass(frozen=True)
class FlowDefinition:
    """A named, ordered multi-step flow."""

    name: str
    steps: tuple[str, ...]
    timeout_seconds: float = 120.0

    def __post_init__(self) -> None:
        if len(self.steps) < 2:
            raise ValueError(f"flow {self.name} needs at least two steps")


@dataclass(frozen=True)
class AbandonedFlow:
    """A flow left part-way through."""

    flow_name: str
    completed_steps: int
    total_steps: int
    abandoned_at: str        # Last completed step
    time_in_flow: float      # Seconds from first to last completed step

    def to_dict(self) -> dict[str, Any]:
        return {
            "flow_name": self.flow_name,
            "completed_steps": self.completed_steps,
            "total_steps": self.total_steps,
            "abandoned_at": self.abandoned_at,
            "time_in_flow": self.time_in_flow,
        }


class AbandonedFlowCollector:
    """Detects multi-step flows that were started but not finished.

    Usage:
        collector = AbandonedFlowCollector(flows=registry.flows)
        abandoned = collector.find_abandoned(window)
    """

    name = "abandoned_flow"
    produces = (ABANDONED_FLOW,)

    BASE_CONFIDENCE = 0.6
    PER_EXTRA_FLOW = 0.15

    def __init__(self, flows: tuple[FlowDefinition, ...] = ()):
        self.flows = tuple(flows)
        self._first_steps = frozenset(flow.steps[0] for flow in self.flows)

    def find_abandoned(self, window: Window) -> list[AbandonedFlow]:
        """All abandoned flows in the window, in catalog order."""
        if not window:
            return []
        found: list[AbandonedFlow] = []
        for flow in self.flows:
            abandoned = self._check_flow(flow, window)
            if abandoned is not None:
                found.append(abandoned)
        return found

    def collect(self, window: Window) -> CollectorReading:
        # No flow was ever started in this window
        if not any(e.step_key in self._first_steps for e in window):
            return NO_DATA

        abandoned = self.find_abandoned(window)
        if not abandoned:
            return CollectorReading(has_data=True)

        confidence = self.BASE_CONFIDENCE + self.PER_EXTRA_FLOW * (len(abandoned) - 1)
        return reading([
            make_signal(
                ABANDONED_FLOW,
                confidence,
                flows=[a.to_dict() for a in abandoned],
            )
        ])

    def _check_flow(self, flow: FlowDefinition, window: Window) -> AbandonedFlow | None:
        first_step = flow.steps[0]
        start = next(
            (i for i in range(len(window) - 1, -1, -1) if window[i].step_key == first_step),
            None,
        )
        if start is None:
            return None

        completed = 1
        last_step_at = window[start].timestamp
        broken = False
        for event in window[start + 1:]:
            if event.type in _BREAKING_EVENTS:
                broken = True
                break
            if completed < len(flow.steps) and event.step_key == flow.steps[completed]:
                completed += 1
                last_step_at = event.timestamp
                if completed == len(flow.steps):
                    return None

        idle = (window[-1].timestamp - last_step_at).total_seconds()
        if not broken and idle <= flow.timeout_seconds:
            return None

        return AbandonedFlow(
            flow_name=flow.name,
            completed_steps=completed,
            total_steps=len(flow.steps),
            abandoned_at=flow.steps[completed - 1],
            time_in_flow=round((last_step_at - window[start].timestamp).total_seconds(), 3),
        )


__all__ = ["AbandonedFlowCollector", "AbandonedFlow", "FlowDefinition", "ABANDONED_FLOW"]
