"""
Signals and assessments produced by one analysis pass.

Both types are immutable once created. Assessments are copied by value
into weekly snapshots via summary(), which drops per-signal details so
nothing derived from raw events beyond names and scores is persisted.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any


class SignalSource(StrEnum):
    """Where a signal came from."""

    COMPUTED = "computed"            # Derived by a signal collector
    SELF_REPORTED = "self_reported"  # Injected from a user-authored custom indicator


@dataclass(frozen=True)
class DetectedSignal:
    """A named, confidence-scored observation.

    Attributes:
        name: Signal identifier (matches signature marker ids)
        confidence: 0.0 - 1.0
        source: computed or self_reported
        details: Collector-specific numbers backing the confidence
    """

    name: str
    confidence: float
    source: SignalSource = SignalSource.COMPUTED
    details: dict[str, Any] = field(default_factory=dict, compare=True, hash=False)

    def __post_init__(self) -> None:
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"confidence out of range for {self.name}: {self.confidence}")

    def without_details(self) -> DetectedSignal:
        return DetectedSignal(name=self.name, confidence=self.confidence, source=self.source)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "confidence": self.confidence,
            "source": self.source.value,
            "details": dict(self.details),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DetectedSignal:
        return cls(
            name=str(data["name"]),
            confidence=float(data["confidence"]),
            source=SignalSource(data.get("source", SignalSource.COMPUTED.value)),
            details=dict(data.get("details") or {}),
        )


@dataclass(frozen=True)
class CategoryScore:
    """Score for one crisis category in a classification pass."""

    category: str
    confidence: float

    def to_dict(self) -> dict[str, Any]:
        return {"category": self.category, "confidence": self.confidence}


@dataclass(frozen=True)
class CrisisAssessment:
    """Output of one classification pass.

    Attributes:
        detected_crisis: Winning category, or None
        confidence: Top score of the pass when a crisis is detected (the
            group score after a tie-break); confidence in "no crisis"
            otherwise (0.0 when data was insufficient)
        signals: Every signal that fed the pass
        alternative_hypotheses: All other categories, highest score first
        insufficient_data: True when no category had data behind its markers
        assessed_at: Timestamp of the tick that produced the assessment
        detected_score: The winner's own score; below confidence only when
            a more urgent category won a tie-break
    """

    detected_crisis: str | None
    confidence: float
    signals: tuple[DetectedSignal, ...] = ()
    alternative_hypotheses: tuple[CategoryScore, ...] = ()
    insufficient_data: bool = False
    assessed_at: datetime | None = None
    detected_score: float | None = None

    @property
    def is_crisis(self) -> bool:
        return self.detected_crisis is not None

    def score_for(self, category: str) -> float:
        """Score of a category in this pass (winner or alternative)."""
        if category == self.detected_crisis:
            return self.confidence if self.detected_score is None else self.detected_score
        for alt in self.alternative_hypotheses:
            if alt.category == category:
                return alt.confidence
        return 0.0

    def summary(self) -> CrisisAssessment:
        """Privacy-safe copy for persistence: signal details dropped."""
        return CrisisAssessment(
            detected_crisis=self.detected_crisis,
            confidence=self.confidence,
            signals=tuple(s.without_details() for s in self.signals),
            alternative_hypotheses=self.alternative_hypotheses,
            insufficient_data=self.insufficient_data,
            assessed_at=self.assessed_at,
            detected_score=self.detected_score,
        )

    def log_fields(self) -> str:
        """Compact category/score rendering for log lines."""
        ranked = " ".join(
            f"{alt.category}={alt.confidence:.2f}" for alt in self.alternative_hypotheses
        )
        return (
            f"detected={self.detected_crisis or 'none'} "
            f"confidence={self.confidence:.2f} alternatives=[{ranked}]"
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "detected_crisis": self.detected_crisis,
            "confidence": self.confidence,
            "signals": [s.to_dict() for s in self.signals],
            "alternative_hypotheses": [a.to_dict() for a in self.alternative_hypotheses],
            "insufficient_data": self.insufficient_data,
            "assessed_at": self.assessed_at.isoformat() if self.assessed_at else None,
            "detected_score": self.detected_score,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CrisisAssessment:
        assessed_at = data.get("assessed_at")
        detected_score = data.get("detected_score")
        return cls(
            detected_crisis=data.get("detected_crisis"),
            confidence=float(data.get("confidence", 0.0)),
            signals=tuple(DetectedSignal.from_dict(s) for s in data.get("signals", [])),
            alternative_hypotheses=tuple(
                CategoryScore(category=str(a["category"]), confidence=float(a["confidence"]))
                for a in data.get("alternative_hypotheses", [])
            ),
            insufficient_data=bool(data.get("insufficient_data", False)),
            assessed_at=datetime.fromisoformat(assessed_at) if assessed_at else None,
            detected_score=float(detected_score) if detected_score is not None else None,
        )


__all__ = ["SignalSource", "DetectedSignal", "CategoryScore", "CrisisAssessment"]
