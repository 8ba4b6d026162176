"""
Behavioral crisis detection and adaptive-response engine.

Observes local interaction telemetry, classifies crisis states and emits
bounded, reversible UI adaptation directives. Nothing leaves the device:
there is no network code in this package.
"""

from crisis_engine.config import EngineConfig
from crisis_engine.lib.exceptions import CrisisEngineError
from crisis_engine.models import (
    CrisisAssessment,
    EventType,
    InteractionEvent,
    ResponseMode,
    SensitivityLevel,
    UserCrisisProfile,
)
from crisis_engine.services import (
    AdaptationDirective,
    AdaptationMode,
    CrisisDetectionEngine,
    InMemoryStorage,
    SqlStorage,
)

__version__ = "0.1.0"

__all__ = [
    "CrisisDetectionEngine",
    "EngineConfig",
    "CrisisEngineError",
    "InteractionEvent",
    "EventType",
    "CrisisAssessment",
    "UserCrisisProfile",
    "ResponseMode",
    "SensitivityLevel",
    "AdaptationDirective",
    "AdaptationMode",
    "InMemoryStorage",
    "SqlStorage",
]
