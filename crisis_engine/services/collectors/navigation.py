"""
Navigation entropy collector.

Combines three views of the recent navigation trace:
- speed: inverse mean time between navigations
- erraticism: coefficient of variation of those intervals
- circling: 1 - unique-page ratio (revisiting the same few pages)

Fewer than three navigations is "no signal", never a false positive.
"""

from __future__ import annotations

import statistics

from crisis_engine.models.events import EventType, Window
from crisis_engine.services.collectors.base import (
    NO_DATA,
    CollectorReading,
    clamp,
    make_signal,
    of_types,
    reading,
)

NAVIGATION_ENTROPY = "navigation_entropy"


def navigation_intervals(window: Window, last_n: int = 20) -> list[float]:
    """Seconds between consecutive navigations among the last `last_n`."""
    navs = of_types(window, EventType.NAVIGATION)[-last_n:]
    return [
        (b.timestamp - a.timestamp).total_seconds()
        for a, b in zip(navs, navs[1:], strict=False)
    ]


class NavigationEntropyCollector:
    """Scores how fast, erratic and circular recent navigation is.

    Usage:
        collector = NavigationEntropyCollector()
        result = collector.collect(window)
    """

    name = "navigation"
    produces = (NAVIGATION_ENTROPY,)

    MIN_NAVIGATIONS = 3
    WINDOW_NAVIGATIONS = 20
    # Mean interval at or below which speed saturates at 1.0
    FAST_INTERVAL_SECONDS = 2.0

    WEIGHT_SPEED = 0.4
    WEIGHT_ERRATICISM = 0.3
    WEIGHT_CIRCLING = 0.3

    def entropy(self, window: Window) -> float:
        """Navigation entropy in [0, 1] (0.0 with insufficient data)."""
        navs = of_types(window, EventType.NAVIGATION)[-self.WINDOW_NAVIGATIONS:]
        if len(navs) < self.MIN_NAVIGATIONS:
            return 0.0
        speed, erraticism, circling = self._components(window)
        return round(
            self.WEIGHT_SPEED * speed
            + self.WEIGHT_ERRATICISM * erraticism
            + self.WEIGHT_CIRCLING * circling,
            4,
        )

    def collect(self, window: Window) -> CollectorReading:
        navs = of_types(window, EventType.NAVIGATION)[-self.WINDOW_NAVIGATIONS:]
        if len(navs) < self.MIN_NAVIGATIONS:
            return NO_DATA

        speed, erraticism, circling = self._components(window)
        value = self.entropy(window)
        return reading([
            make_signal(
                NAVIGATION_ENTROPY,
                value,
                speed=round(speed, 4),
                erraticism=round(erraticism, 4),
                circling=round(circling, 4),
                navigations=len(navs),
            )
        ])

    def _components(self, window: Window) -> tuple[float, float, float]:
        navs = of_types(window, EventType.NAVIGATION)[-self.WINDOW_NAVIGATIONS:]
        intervals = navigation_intervals(window, self.WINDOW_NAVIGATIONS)
        mean_interval = statistics.fmean(intervals)

        if mean_interval <= 0:
            # Several navigations in the same instant
            speed = 1.0
            erraticism = 0.0
        else:
            speed = clamp(self.FAST_INTERVAL_SECONDS / mean_interval)
            erraticism = clamp(statistics.pstdev(intervals) / mean_interval)

        pages = [e.page or "" for e in navs]
        circling = 1.0 - len(set(pages)) / len(pages)
        return speed, erraticism, circling


__all__ = ["NavigationEntropyCollector", "NAVIGATION_ENTROPY", "navigation_intervals"]
