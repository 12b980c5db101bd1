"""
Response shape variants and the normalized structure handlers produce.

The provider returns self-organizing JSON. Each observed top-level layout is
a separate variant; downstream code only ever sees ``NormalizedResponse``.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar, Dict, List, Optional, Union

from ..models import MeasurementObservation


class ShapeKind(Enum):
    """Tag of a response shape variant."""

    AGGREGATED = "aggregated"
    PER_IMAGE = "per_image"
    MIXED = "mixed"


@dataclass
class AggregatedShape:
    """Consolidated object with an aggregate section and no per-image list."""

    kind: ClassVar[ShapeKind] = ShapeKind.AGGREGATED

    aggregate: Dict[str, Any]
    primary_hint: Dict[str, Any] = field(default_factory=dict)
    extras: Dict[str, Any] = field(default_factory=dict)


@dataclass
class PerImageShape:
    """Array of per-image analyses, no aggregate section."""

    kind: ClassVar[ShapeKind] = ShapeKind.PER_IMAGE

    images: List[Dict[str, Any]]
    primary_hint: Dict[str, Any] = field(default_factory=dict)
    extras: Dict[str, Any] = field(default_factory=dict)
    matched: bool = True


@dataclass
class MixedShape:
    """Both an aggregate section and per-image analyses."""

    kind: ClassVar[ShapeKind] = ShapeKind.MIXED

    aggregate: Dict[str, Any]
    images: List[Dict[str, Any]]
    primary_hint: Dict[str, Any] = field(default_factory=dict)
    extras: Dict[str, Any] = field(default_factory=dict)


ResponseShape = Union[AggregatedShape, PerImageShape, MixedShape]


@dataclass
class ImageEntry:
    """What the model reported about one image."""

    image_index: int
    classification: Optional[str] = None
    confidence: Optional[float] = None
    texts: List[str] = field(default_factory=list)
    quality_scores: Dict[str, Any] = field(default_factory=dict)
    disqualified: bool = False
    gauge_readings: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "image_index": self.image_index,
            "classification": self.classification,
            "confidence": self.confidence,
            "texts": self.texts,
            "quality_scores": self.quality_scores,
            "disqualified": self.disqualified,
            "gauge_readings": self.gauge_readings,
        }


@dataclass
class NormalizedResponse:
    """Shape-independent view of one provider response."""

    kind: ShapeKind
    observations: List[MeasurementObservation] = field(default_factory=list)
    images: List[ImageEntry] = field(default_factory=list)
    primary_hint: Dict[str, Any] = field(default_factory=dict)
    extras: Dict[str, Any] = field(default_factory=dict)

    def image(self, image_index: int) -> Optional[ImageEntry]:
        for entry in self.images:
            if entry.image_index == image_index:
                return entry
        return None

    def free_texts(self) -> List[tuple]:
        """(image_index, text, entry_confidence) in image order."""
        texts = []
        for entry in sorted(self.images, key=lambda e: e.image_index):
            for text in entry.texts:
                texts.append((entry.image_index, text, entry.confidence))
        return texts

    def gauge_readings(self) -> List[Dict[str, Any]]:
        readings = []
        for entry in self.images:
            for reading in entry.gauge_readings:
                readings.append({"image_index": entry.image_index, **reading})
        return readings

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "observations": [obs.to_dict() for obs in self.observations],
            "images": [entry.to_dict() for entry in self.images],
            "primary_hint": self.primary_hint,
            "extra_keys": sorted(self.extras),
        }


@dataclass
class NormalizationResult:
    """Outcome of normalizing one response body."""

    response: Optional[NormalizedResponse] = None
    failure_reason: Optional[str] = None
    document: Optional[Dict[str, Any]] = None

    @property
    def ok(self) -> bool:
        return self.response is not None and self.failure_reason is None

    @property
    def status(self) -> str:
        return "ok" if self.ok else "failed"
