"""
Preference-churn and display-toggling collector.

Sensory-seeking behavior shows up as settings being flipped back and
forth: the same display key changed twice or more within a few minutes,
or a high aggregate number of changes across keys.
"""

from __future__ import annotations

from collections import Counter
from datetime import timedelta

from crisis_engine.models.events import EventType, Window
from crisis_engine.services.collectors.base import (
    NO_DATA,
    CollectorReading,
    clamp,
    make_signal,
    of_types,
    reading,
    trailing,
)

PREFERENCE_CHURN = "preference_churn"
DISPLAY_TOGGLING = "display_toggling"

# Preference keys that change what the screen looks like
DISPLAY_KEYS = frozenset({
    "theme",
    "dark_mode",
    "contrast",
    "high_contrast",
    "font_size",
    "brightness",
    "color_scheme",
    "reduced_motion",
    "animations",
})


class PreferenceChurnCollector:
    """Counts preference changes in a short trailing window."""

    name = "preferences"
    produces = (PREFERENCE_CHURN, DISPLAY_TOGGLING)

    TRAILING_MINUTES = 5
    # Aggregate change count at which churn saturates
    SATURATION_CHANGES = 8
    MIN_SAME_KEY_CHANGES = 2

    def change_counts(self, window: Window) -> Counter[str]:
        recent = trailing(window, timedelta(minutes=self.TRAILING_MINUTES))
        return Counter(
            (e.field or "unknown") for e in of_types(recent, EventType.PREFERENCE_CHANGE)
        )

    def collect(self, window: Window) -> CollectorReading:
        counts = self.change_counts(window)
        total = sum(counts.values())
        if total == 0:
            return NO_DATA

        repeated_keys = sorted(k for k, c in counts.items() if c >= self.MIN_SAME_KEY_CHANGES)
        display_toggles = max(
            (c for k, c in counts.items() if k in DISPLAY_KEYS and c >= self.MIN_SAME_KEY_CHANGES),
            default=0,
        )

        churn = make_signal(
            PREFERENCE_CHURN,
            total / self.SATURATION_CHANGES,
            changes=total,
            keys_changed=len(counts),
            repeated_keys=len(repeated_keys),
        )
        toggling = make_signal(
            DISPLAY_TOGGLING,
            clamp(0.4 + 0.15 * display_toggles) if display_toggles else 0.0,
            max_toggles=display_toggles,
        )
        return reading([churn, toggling])


__all__ = ["PreferenceChurnCollector", "PREFERENCE_CHURN", "DISPLAY_TOGGLING", "DISPLAY_KEYS"]
