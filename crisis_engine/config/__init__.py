"""Engine configuration."""

from crisis_engine.config.settings import ENV_PREFIX, EngineConfig

__all__ = ["EngineConfig", "ENV_PREFIX"]
