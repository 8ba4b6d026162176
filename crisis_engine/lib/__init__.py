"""Shared library code: exceptions, logging setup, JSON encoding."""

from crisis_engine.lib.exceptions import (
    ConfigurationError,
    CrisisEngineError,
    ProfileValidationError,
    RegistryValidationError,
    StateError,
    StorageError,
)
from crisis_engine.lib.logging import setup_logging
from crisis_engine.lib.serialization import EngineJSONEncoder, dumps

__all__ = [
    "CrisisEngineError",
    "ConfigurationError",
    "RegistryValidationError",
    "ProfileValidationError",
    "StorageError",
    "StateError",
    "setup_logging",
    "EngineJSONEncoder",
    "dumps",
]
