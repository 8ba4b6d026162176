"""
Custom exception hierarchy for the crisis detection engine.

All exceptions inherit from CrisisEngineError, enabling a catch-all
for engine errors while keeping the ability to catch specific types.

Only startup-time failures (configuration, signature registry) are meant
to escape to the host. Runtime failures inside an analysis tick degrade
to "no adaptation" instead.
"""

from __future__ import annotations


class CrisisEngineError(Exception):
    """Base exception for all crisis engine errors."""


class ConfigurationError(CrisisEngineError):
    """Invalid configuration values or environment variables."""


class RegistryValidationError(ConfigurationError):
    """Signature registry references markers no collector produces, or is malformed."""


class ProfileValidationError(CrisisEngineError):
    """A stored UserCrisisProfile payload could not be parsed."""


class StorageError(CrisisEngineError):
    """The injected storage collaborator failed to read or write."""


class StateError(CrisisEngineError):
    """Invalid response controller state or transition."""


__all__ = [
    "CrisisEngineError",
    "ConfigurationError",
    "RegistryValidationError",
    "ProfileValidationError",
    "StorageError",
    "StateError",
]
