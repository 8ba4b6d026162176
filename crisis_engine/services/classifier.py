"""
Crisis Classifier.

Scores every category in the signature registry against the current
signals and picks at most one winner.

Scoring per category:
    1. Per marker, take the highest confidence among signals of that name
       (computed and self-reported alike)
    2. Drop markers below their effective signal threshold
    3. score = min(1, sum(weight * confidence))

Decision:
    - The top-scoring category is detected if it reaches its effective
      threshold.
    - Tie-break: over-threshold categories within epsilon of the top score
      are resolved by urgency (immediate > gentle > delayed). The winner
      reports the group's top score as its confidence, so no alternative
      ever exceeds it; its own score is kept as detected_score.
    - A category can be judged only when a collector behind one of its
      markers had enough data. With no judgeable category the result is
      flagged insufficient_data with confidence 0.0, never a confident
      "no crisis".

Logs carry category names and scores only.
"""

from __future__ import annotations

import logging
from collections.abc import Collection, Iterable, Sequence
from datetime import datetime

from crisis_engine.models.assessment import CategoryScore, CrisisAssessment, DetectedSignal
from crisis_engine.models.events import Window
from crisis_engine.models.profile import UserCrisisProfile
from crisis_engine.services.collectors import (
    SignalCollector,
    collect_signals,
    default_collectors,
    produced_signals,
)
from crisis_engine.services.personalization import PersonalizationLayer, ThresholdTable
from crisis_engine.services.signatures import SignatureRegistry

logger = logging.getLogger(__name__)

DEFAULT_TIE_EPSILON = 0.05


class CrisisClassifier:
    """
    Multi-class crisis classifier over a signature registry.

    Usage:
        classifier = CrisisClassifier(registry)
        assessment = classifier.classify(window, profile=profile)
    """

    def __init__(
        self,
        registry: SignatureRegistry,
        collectors: Sequence[SignalCollector] | None = None,
        personalization: PersonalizationLayer | None = None,
        tie_epsilon: float = DEFAULT_TIE_EPSILON,
    ) -> None:
        """
        Raises:
            RegistryValidationError: If a signature marker has no producing collector.
        """
        self.registry = registry
        self.collectors = tuple(collectors) if collectors is not None else default_collectors(registry.flows)
        self.personalization = personalization or PersonalizationLayer(registry)
        self.tie_epsilon = tie_epsilon
        registry.validate(produced_signals(self.collectors))

    def classify(
        self,
        window: Window,
        profile: UserCrisisProfile | None = None,
        feedback_factor: float = 1.0,
        assessed_at: datetime | None = None,
    ) -> CrisisAssessment:
        """Collect signals from the window and classify them."""
        signals, judged = collect_signals(window, self.collectors)
        profile = profile or UserCrisisProfile()
        signals = (*signals, *self.personalization.inject_custom_indicators(profile, signals))
        table = self.personalization.thresholds(profile, feedback_factor)
        when = assessed_at or (window[-1].timestamp if window else None)
        return self.assess(signals, table, judged=judged, assessed_at=when)

    def category_scores(
        self,
        signals: Iterable[DetectedSignal],
        table: ThresholdTable,
    ) -> dict[str, float]:
        """Score for every registered category."""
        confidences = self._marker_confidences(signals, table)
        return {signature.category: signature.score(confidences) for signature in self.registry}

    def assess(
        self,
        signals: Sequence[DetectedSignal],
        table: ThresholdTable,
        judged: Collection[str] | None = None,
        assessed_at: datetime | None = None,
    ) -> CrisisAssessment:
        """Classify an already-collected signal set.

        Args:
            judged: Signal names whose collector had enough data. None
                treats every marker as judgeable.
        """
        scores = self.category_scores(signals, table)
        ranked = sorted(
            scores.items(),
            key=lambda item: (-item[1], -self.registry.get(item[0]).urgency.rank, item[0]),
        )

        if not self.judgeable_categories(judged):
            logger.debug("crisis_assessment_insufficient_data categories=%d", len(ranked))
            return CrisisAssessment(
                detected_crisis=None,
                confidence=0.0,
                signals=tuple(signals),
                alternative_hypotheses=tuple(CategoryScore(c, s) for c, s in ranked),
                insufficient_data=True,
                assessed_at=assessed_at,
            )

        top_category, top_score = ranked[0]
        detected: str | None = None
        if top_score > 0 and top_score >= table.category_threshold(top_category):
            contenders = [
                category
                for category, score in ranked
                if top_score - score <= self.tie_epsilon
                and score >= table.category_threshold(category)
            ]
            # contenders are in ranked order, max() keeps the first of equal urgency
            detected = max(contenders, key=lambda c: self.registry.get(c).urgency.rank)

        alternatives = tuple(CategoryScore(c, s) for c, s in ranked if c != detected)

        if detected is None:
            assessment = CrisisAssessment(
                detected_crisis=None,
                confidence=round(1.0 - top_score, 4),
                signals=tuple(signals),
                alternative_hypotheses=alternatives,
                assessed_at=assessed_at,
            )
            logger.debug("crisis_assessed %s", assessment.log_fields())
            return assessment

        assessment = CrisisAssessment(
            detected_crisis=detected,
            confidence=top_score,
            signals=tuple(signals),
            alternative_hypotheses=alternatives,
            assessed_at=assessed_at,
            detected_score=scores[detected],
        )
        if detected != top_category:
            logger.info(
                "crisis_tie_broken winner=%s over=%s epsilon=%.3f",
                detected,
                top_category,
                self.tie_epsilon,
            )
        logger.info("crisis_detected %s", assessment.log_fields())
        return assessment

    def judgeable_categories(self, judged: Collection[str] | None) -> list[str]:
        """Categories with at least one marker backed by data."""
        return [
            signature.category
            for signature in self.registry
            if judged is None or not set(judged).isdisjoint(signature.marker_names)
        ]

    def _marker_confidences(
        self,
        signals: Iterable[DetectedSignal],
        table: ThresholdTable,
    ) -> dict[str, float]:
        best: dict[str, float] = {}
        for signal in signals:
            if signal.confidence < table.signal_threshold(signal.name):
                continue
            if signal.confidence > best.get(signal.name, 0.0):
                best[signal.name] = signal.confidence
        return best


__all__ = ["CrisisClassifier", "DEFAULT_TIE_EPSILON"]
