"""
Crisis detection services.

Leaf-first: collectors -> signatures -> personalization -> classifier
-> response controller -> recovery tracker / exposure, wired together
by CrisisDetectionEngine.
"""

from crisis_engine.services.classifier import CrisisClassifier
from crisis_engine.services.engine import CrisisDetectionEngine
from crisis_engine.services.exposure import ExposureState, Milestone, ProgressiveExposure
from crisis_engine.services.personalization import PersonalizationLayer, ThresholdTable
from crisis_engine.services.recovery_tracker import (
    InterventionTier,
    RecoveryTracker,
    RegressionAssessment,
    RegressionType,
    TrendDirection,
)
from crisis_engine.services.response_controller import (
    AdaptationDirective,
    AdaptationMode,
    ControllerState,
    ResponseController,
    TransitionRecord,
)
from crisis_engine.services.signatures import (
    CrisisSignature,
    InterventionUrgency,
    SignatureRegistry,
    TemporalPattern,
)
from crisis_engine.services.storage import CrisisStorage, InMemoryStorage, SqlStorage

__all__ = [
    "CrisisDetectionEngine",
    "CrisisClassifier",
    "PersonalizationLayer",
    "ThresholdTable",
    "ResponseController",
    "ControllerState",
    "AdaptationMode",
    "AdaptationDirective",
    "TransitionRecord",
    "RecoveryTracker",
    "RegressionType",
    "RegressionAssessment",
    "InterventionTier",
    "TrendDirection",
    "ProgressiveExposure",
    "ExposureState",
    "Milestone",
    "SignatureRegistry",
    "CrisisSignature",
    "InterventionUrgency",
    "TemporalPattern",
    "CrisisStorage",
    "InMemoryStorage",
    "SqlStorage",
]
