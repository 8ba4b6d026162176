"""
Signal collectors.

Each collector is a pure function of an event window. The classifier pulls
readings from all of them on every tick; collect_signals() merges the
readings into one signal tuple plus the set of signal names whose
collector had enough data to judge.
"""

from __future__ import annotations

from collections.abc import Iterable

from crisis_engine.models.assessment import DetectedSignal
from crisis_engine.models.events import Window
from crisis_engine.services.collectors.base import (
    NO_DATA,
    CollectorReading,
    SignalCollector,
    make_signal,
)
from crisis_engine.services.collectors.exit import FORCED_EXIT, ForcedExitCollector
from crisis_engine.services.collectors.flows import (
    ABANDONED_FLOW,
    AbandonedFlow,
    AbandonedFlowCollector,
    FlowDefinition,
)
from crisis_engine.services.collectors.inactivity import (
    UNEXPLAINED_INACTIVITY,
    InactivityCollector,
    InactivityGap,
)
from crisis_engine.services.collectors.input_chaos import INPUT_CHAOS, InputChaosCollector
from crisis_engine.services.collectors.navigation import (
    NAVIGATION_ENTROPY,
    NavigationEntropyCollector,
    navigation_intervals,
)
from crisis_engine.services.collectors.pain import (
    HELP_SEEKING,
    PAIN_SPIKE,
    HelpSeekingCollector,
    PainSpikeCollector,
)
from crisis_engine.services.collectors.preferences import (
    DISPLAY_TOGGLING,
    PREFERENCE_CHURN,
    PreferenceChurnCollector,
)
from crisis_engine.services.collectors.repetition import REPETITIVE_INPUT, RepetitionCollector


def default_collectors(flows: Iterable[FlowDefinition] = ()) -> tuple[SignalCollector, ...]:
    """The standard collector set, with the given flow catalog."""
    return (
        NavigationEntropyCollector(),
        ForcedExitCollector(),
        AbandonedFlowCollector(flows=tuple(flows)),
        InactivityCollector(),
        RepetitionCollector(),
        PreferenceChurnCollector(),
        InputChaosCollector(),
        PainSpikeCollector(),
        HelpSeekingCollector(),
    )


def produced_signals(collectors: Iterable[SignalCollector]) -> dict[str, str]:
    """Signal name -> name of the collector producing it."""
    produced: dict[str, str] = {}
    for collector in collectors:
        for signal in collector.produces:
            produced.setdefault(signal, collector.name)
    return produced


def collect_signals(
    window: Window,
    collectors: Iterable[SignalCollector],
) -> tuple[tuple[DetectedSignal, ...], frozenset[str]]:
    """Run every collector over the window.

    Returns:
        (signals, judged): all signals in collector order, and the names of
        the signals produced by collectors that had enough data to judge.
    """
    signals: list[DetectedSignal] = []
    judged: set[str] = set()
    for collector in collectors:
        result = collector.collect(window)
        if result.has_data:
            judged.update(collector.produces)
        signals.extend(result.signals)
    return tuple(signals), frozenset(judged)


__all__ = [
    "SignalCollector",
    "CollectorReading",
    "NO_DATA",
    "make_signal",
    "default_collectors",
    "produced_signals",
    "collect_signals",
    # Collectors
    "NavigationEntropyCollector",
    "ForcedExitCollector",
    "AbandonedFlowCollector",
    "InactivityCollector",
    "RepetitionCollector",
    "PreferenceChurnCollector",
    "InputChaosCollector",
    "PainSpikeCollector",
    "HelpSeekingCollector",
    # Supporting types
    "FlowDefinition",
    "AbandonedFlow",
    "InactivityGap",
    "navigation_intervals",
    # Signal names
    "NAVIGATION_ENTROPY",
    "FORCED_EXIT",
    "ABANDONED_FLOW",
    "UNEXPLAINED_INACTIVITY",
    "REPETITIVE_INPUT",
    "PREFERENCE_CHURN",
    "DISPLAY_TOGGLING",
    "INPUT_CHAOS",
    "PAIN_SPIKE",
    "HELP_SEEKING",
]
