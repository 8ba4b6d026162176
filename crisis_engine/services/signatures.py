"""
Crisis Signature Registry.

Loads crisis signatures and the expected-flow catalog from
data/signatures.yaml. Signatures are tagged data records, so a new
category is added by inserting a record (and, if needed, a collector),
never by branching in the classifier.

Usage:
    registry = SignatureRegistry.load()
    registry.validate(produced_signals(collectors))
    panic = registry.get("panic_attack")
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from typing import Any

import yaml

from crisis_engine.lib.exceptions import RegistryValidationError
from crisis_engine.services.collectors.flows import FlowDefinition

logger = logging.getLogger(__name__)

DEFAULT_REGISTRY_PATH = Path(__file__).resolve().parent.parent / "data" / "signatures.yaml"


# =============================================================================
# Enums
# =============================================================================


class TemporalPattern(StrEnum):
    """How a crisis typically unfolds over time."""

    RAPID = "rapid"
    GRADUAL = "gradual"
    SUDDEN = "sudden"
    CYCLICAL = "cyclical"


class InterventionUrgency(StrEnum):
    """How quickly the app should respond to a detected crisis."""

    IMMEDIATE = "immediate"
    GENTLE = "gentle"
    DELAYED = "delayed"

    @property
    def rank(self) -> int:
        """Higher is more urgent."""
        return _URGENCY_RANK[self]


_URGENCY_RANK = {
    InterventionUrgency.IMMEDIATE: 3,
    InterventionUrgency.GENTLE: 2,
    InterventionUrgency.DELAYED: 1,
}


# =============================================================================
# Signature Records
# =============================================================================


@dataclass(frozen=True)
class MarkerWeight:
    """A behavioral marker and its weight in the category score."""

    signal: str
    weight: float


@dataclass(frozen=True)
class CrisisSignature:
    """Static description of one crisis category.

    Attributes:
        category: Category id, e.g. "panic_attack"
        markers: Ordered markers with weights
        temporal_patterns: Typical onset patterns
        min_duration_minutes / max_duration_minutes: Typical episode length
        urgency: How quickly to respond
        threshold: Base score threshold for detection
        false_positive_causes: Known benign look-alikes (documentation/tests only)
    """

    category: str
    markers: tuple[MarkerWeight, ...]
    temporal_patterns: tuple[TemporalPattern, ...]
    min_duration_minutes: float
    max_duration_minutes: float
    urgency: InterventionUrgency
    threshold: float
    false_positive_causes: tuple[str, ...] = field(default=(), compare=False)

    @property
    def marker_names(self) -> tuple[str, ...]:
        return tuple(m.signal for m in self.markers)

    def weight_for(self, signal: str) -> float:
        for marker in self.markers:
            if marker.signal == signal:
                return marker.weight
        return 0.0

    def score(self, confidences: Mapping[str, float]) -> float:
        """min(1, sum(weight * confidence)) over this signature's markers."""
        total = sum(m.weight * confidences.get(m.signal, 0.0) for m in self.markers)
        return round(min(1.0, total), 4)


# =============================================================================
# Registry
# =============================================================================


class SignatureRegistry:
    """Immutable catalog of crisis signatures and expected flows."""

    def __init__(
        self,
        signatures: Iterable[CrisisSignature],
        flows: Iterable[FlowDefinition] = (),
    ) -> None:
        self._signatures: dict[str, CrisisSignature] = {}
        for signature in signatures:
            if signature.category in self._signatures:
                raise RegistryValidationError(f"duplicate signature: {signature.category}")
            self._signatures[signature.category] = signature
        self.flows: tuple[FlowDefinition, ...] = tuple(flows)

    def __len__(self) -> int:
        return len(self._signatures)

    def __iter__(self):
        return iter(self._signatures.values())

    def __contains__(self, category: object) -> bool:
        return category in self._signatures

    @property
    def categories(self) -> tuple[str, ...]:
        return tuple(self._signatures)

    def get(self, category: str) -> CrisisSignature:
        try:
            return self._signatures[category]
        except KeyError:
            raise KeyError(f"unknown crisis category: {category}") from None

    def marker_names(self) -> frozenset[str]:
        """Every signal referenced by any signature."""
        return frozenset(name for s in self for name in s.marker_names)

    def validate(self, produced: Iterable[str]) -> None:
        """Check every marker resolves to a collector output.

        Raises:
            RegistryValidationError: If any marker has no producing collector.
        """
        available = set(produced)
        missing = {
            s.category: sorted(set(s.marker_names) - available)
            for s in self
            if set(s.marker_names) - available
        }
        if missing:
            detail = "; ".join(f"{cat}: {', '.join(names)}" for cat, names in sorted(missing.items()))
            raise RegistryValidationError(f"markers without a producing collector ({detail})")
        logger.debug("signature_registry_validated categories=%d", len(self))

    # -------------------------------------------------------------------------
    # Loading
    # -------------------------------------------------------------------------

    @classmethod
    def load(cls, path: str | Path | None = None) -> SignatureRegistry:
        """Load the registry from a YAML file (the packaged catalog by default).

        Raises:
            RegistryValidationError: If the file is missing or malformed.
        """
        registry_path = Path(path) if path is not None else DEFAULT_REGISTRY_PATH
        if not registry_path.exists():
            raise RegistryValidationError(f"signature registry not found: {registry_path}")

        with open(registry_path, encoding="utf-8") as f:
            try:
                data = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise RegistryValidationError(f"signature registry is not valid YAML: {e}") from e

        registry = cls.from_dict(data)
        logger.info(
            "signature_registry_loaded categories=%d flows=%d",
            len(registry),
            len(registry.flows),
        )
        return registry

    @classmethod
    def from_dict(cls, data: Any) -> SignatureRegistry:
        """Build a registry from a mapping shaped like the YAML file.

        Raises:
            RegistryValidationError: If the structure is malformed.
        """
        if not isinstance(data, dict):
            raise RegistryValidationError("signature registry must be a mapping at the root level")

        signatures_data = data.get("signatures") or {}
        if not isinstance(signatures_data, dict) or not signatures_data:
            raise RegistryValidationError("signature registry defines no signatures")

        signatures = [_parse_signature(name, body) for name, body in signatures_data.items()]
        flows = [_parse_flow(name, body) for name, body in (data.get("flows") or {}).items()]
        return cls(signatures, flows)


def _parse_signature(category: str, body: Any) -> CrisisSignature:
    if not isinstance(body, dict):
        raise RegistryValidationError(f"signature {category} must be a mapping")

    try:
        markers = tuple(
            MarkerWeight(signal=str(m["signal"]), weight=float(m["weight"]))
            for m in body["markers"]
        )
        patterns = body.get("temporal_pattern") or []
        if isinstance(patterns, str):
            patterns = [patterns]
        duration = body.get("duration_minutes") or {}
        signature = CrisisSignature(
            category=str(category),
            markers=markers,
            temporal_patterns=tuple(TemporalPattern(p) for p in patterns),
            min_duration_minutes=float(duration.get("min", 0)),
            max_duration_minutes=float(duration.get("max", 0)),
            urgency=InterventionUrgency(body["urgency"]),
            threshold=float(body["threshold"]),
            false_positive_causes=tuple(str(c) for c in body.get("false_positive_causes") or ()),
        )
    except (KeyError, TypeError, ValueError) as e:
        raise RegistryValidationError(f"signature {category} is malformed: {e}") from e

    if not signature.markers:
        raise RegistryValidationError(f"signature {category} has no markers")
    if len(set(signature.marker_names)) != len(signature.markers):
        raise RegistryValidationError(f"signature {category} lists a marker twice")
    if any(m.weight <= 0 for m in signature.markers):
        raise RegistryValidationError(f"signature {category} has a non-positive marker weight")
    if not 0.0 < signature.threshold <= 1.0:
        raise RegistryValidationError(f"signature {category} threshold must be in (0, 1]")
    if signature.max_duration_minutes < signature.min_duration_minutes:
        raise RegistryValidationError(f"signature {category} duration bounds are inverted")
    return signature


def _parse_flow(name: str, body: Any) -> FlowDefinition:
    try:
        return FlowDefinition(
            name=str(name),
            steps=tuple(str(s) for s in body["steps"]),
            timeout_seconds=float(body.get("timeout_seconds", 120)),
        )
    except (KeyError, TypeError, ValueError) as e:
        raise RegistryValidationError(f"flow {name} is malformed: {e}") from e


__all__ = [
    "TemporalPattern",
    "InterventionUrgency",
    "MarkerWeight",
    "CrisisSignature",
    "SignatureRegistry",
    "DEFAULT_REGISTRY_PATH",
]
