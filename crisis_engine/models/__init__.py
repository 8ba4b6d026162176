"""
Value types for the crisis detection engine.

Everything crossing a component boundary is one of these immutable types.
The only mutable aggregate, WeekActivity, is owned by the engine.
"""

from crisis_engine.models.assessment import (
    CategoryScore,
    CrisisAssessment,
    DetectedSignal,
    SignalSource,
)
from crisis_engine.models.events import (
    HIGH_SIGNAL_EVENTS,
    EventBuffer,
    EventType,
    InteractionEvent,
    Window,
)
from crisis_engine.models.profile import (
    CONDITION_PRESETS,
    BaselineBehavior,
    CustomIndicator,
    DeclaredCondition,
    ResponseMode,
    SensitivityLevel,
    UserCrisisProfile,
    derive_trigger_tags,
)
from crisis_engine.models.snapshot import (
    RelapseWarning,
    SessionPatterns,
    WeekActivity,
    WeeklySnapshot,
    week_start,
)

__all__ = [
    # Events
    "EventType",
    "InteractionEvent",
    "EventBuffer",
    "Window",
    "HIGH_SIGNAL_EVENTS",
    # Assessment
    "SignalSource",
    "DetectedSignal",
    "CategoryScore",
    "CrisisAssessment",
    # Profile
    "ResponseMode",
    "SensitivityLevel",
    "CONDITION_PRESETS",
    "DeclaredCondition",
    "BaselineBehavior",
    "CustomIndicator",
    "UserCrisisProfile",
    "derive_trigger_tags",
    # Snapshots
    "SessionPatterns",
    "WeeklySnapshot",
    "WeekActivity",
    "RelapseWarning",
    "week_start",
]
