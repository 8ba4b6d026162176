"""
Engine configuration.

All knobs have population defaults. Hosts override them either by
constructing EngineConfig directly or through CRISIS_ENGINE_* environment
variables via EngineConfig.from_env().

Example:
    CRISIS_ENGINE_BUFFER_MAX_EVENTS=300
    CRISIS_ENGINE_COOLDOWN_SECONDS=600
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, fields, replace
from datetime import timedelta

from crisis_engine.lib.exceptions import ConfigurationError

ENV_PREFIX = "CRISIS_ENGINE_"


@dataclass(frozen=True)
class EngineConfig:
    """Tunable engine parameters.

    Attributes:
        buffer_max_events: Ring buffer capacity for raw events.
        buffer_retention_minutes: Raw events older than this (relative to the
            newest event) are dropped from the buffer.
        tick_interval_seconds: Period of the optional monitoring loop.
        tick_on_high_signal: Schedule a tick on navigation/abandon/close events.
        release_seconds: How long the triggering category must stay below its
            threshold before Intervening hands over to Cooldown.
        cooldown_seconds: Minimum dwell in Cooldown before returning to Idle.
        tie_epsilon: Score distance treated as a tie by the classifier.
        trend_window_weeks: Trailing weeks used for trend slopes (>= 4).
        history_weeks_limit: Weekly snapshots kept in memory for analysis.
    """

    buffer_max_events: int = 500
    buffer_retention_minutes: int = 60
    tick_interval_seconds: float = 5.0
    tick_on_high_signal: bool = True
    release_seconds: float = 30.0
    cooldown_seconds: float = 300.0
    tie_epsilon: float = 0.05
    trend_window_weeks: int = 6
    history_weeks_limit: int = 104

    def __post_init__(self) -> None:
        if self.buffer_max_events < 10:
            raise ConfigurationError("buffer_max_events must be at least 10")
        if self.buffer_retention_minutes < 1:
            raise ConfigurationError("buffer_retention_minutes must be positive")
        if self.tick_interval_seconds <= 0:
            raise ConfigurationError("tick_interval_seconds must be positive")
        if self.release_seconds < 0 or self.cooldown_seconds < 0:
            raise ConfigurationError("release/cooldown durations cannot be negative")
        if not 0.0 <= self.tie_epsilon < 0.5:
            raise ConfigurationError("tie_epsilon must be in [0, 0.5)")
        if self.trend_window_weeks < 4:
            raise ConfigurationError("trend_window_weeks must be at least 4")

    @property
    def buffer_retention(self) -> timedelta:
        return timedelta(minutes=self.buffer_retention_minutes)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> EngineConfig:
        """Build a config from CRISIS_ENGINE_* variables, falling back to defaults.

        Raises:
            ConfigurationError: If a variable cannot be parsed.
        """
        env = os.environ if environ is None else environ
        overrides: dict[str, object] = {}
        for f in fields(cls):
            raw = env.get(ENV_PREFIX + f.name.upper())
            if raw is None or raw == "":
                continue
            overrides[f.name] = _parse(f.name, raw, type(getattr(_DEFAULTS, f.name)))
        return replace(_DEFAULTS, **overrides)


def _parse(name: str, raw: str, kind: type) -> object:
    try:
        if kind is bool:
            lowered = raw.strip().lower()
            if lowered in ("1", "true", "yes", "on"):
                return True
            if lowered in ("0", "false", "no", "off"):
                return False
            raise ValueError(raw)
        return kind(raw)
    except ValueError as e:
        raise ConfigurationError(
            f"Invalid value for {ENV_PREFIX}{name.upper()}: {raw!r}"
        ) from e


_DEFAULTS = EngineConfig()


__all__ = ["EngineConfig", "ENV_PREFIX"]
