"""
Domain objects for one item's analysis.

Items and image assets come from the catalog store; observations, extracted
fields and the primary image selection are produced by a single analysis run
and owned by it.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

# Attribute name -> manual catalog column. Derived columns carry the "ai_" prefix.
ATTRIBUTE_FIELDS: Dict[str, str] = {
    "weight": "weight_carats",
    "length": "length_mm",
    "width": "width_mm",
    "depth": "depth_mm",
    "color": "color",
    "cut": "cut",
    "clarity": "clarity",
}

ATTRIBUTES = tuple(ATTRIBUTE_FIELDS)
NUMERIC_ATTRIBUTES = ("weight", "length", "width", "depth")
CATEGORICAL_ATTRIBUTES = ("color", "cut", "clarity")


def manual_field_name(attribute: str) -> str:
    """Catalog column holding the human-entered value."""
    return ATTRIBUTE_FIELDS[attribute]


def derived_field_name(attribute: str) -> str:
    """Catalog column holding the AI-sourced value."""
    return f"ai_{ATTRIBUTE_FIELDS[attribute]}"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RunStatus(Enum):
    """Lifecycle of one item within a batch."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    PARTIALLY_EXTRACTED = "partially_extracted"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (
            RunStatus.SUCCEEDED,
            RunStatus.PARTIALLY_EXTRACTED,
            RunStatus.FAILED,
        )


class ExtractionMethod(Enum):
    """How an observation was obtained, in tie-break preference order."""

    INSTRUMENT_READING = "instrument-reading"
    DIRECT_FIELD = "direct-field"
    FREE_TEXT_REGEX = "free-text-regex"

    @property
    def priority(self) -> int:
        """Lower is preferred."""
        return _METHOD_PRIORITY[self]


_METHOD_PRIORITY = {
    ExtractionMethod.INSTRUMENT_READING: 0,
    ExtractionMethod.DIRECT_FIELD: 1,
    ExtractionMethod.FREE_TEXT_REGEX: 2,
}


@dataclass(frozen=True)
class ImageAsset:
    """A stored photo of an item. Never replaced by the pipeline."""

    id: str
    location: Optional[str]
    ordinal: int
    is_primary: bool = False


@dataclass
class Item:
    """A physical item with its photos and two parallel field sets."""

    id: str
    images: List[ImageAsset] = field(default_factory=list)
    manual_fields: Dict[str, Any] = field(default_factory=dict)
    derived_fields: Dict[str, Any] = field(default_factory=dict)

    @property
    def ordered_images(self) -> List[ImageAsset]:
        return sorted(self.images, key=lambda image: image.ordinal)


@dataclass(frozen=True)
class MeasurementObservation:
    """One reported value for one attribute from one image or the aggregate."""

    attribute: str
    value: Any
    confidence: float
    method: ExtractionMethod
    image_index: Optional[int] = None
    unit: Optional[str] = None
    source: Optional[str] = None

    def sort_key(self):
        """Best first: confidence desc, method priority, earliest image."""
        image_order = self.image_index if self.image_index is not None else float("inf")
        return (-self.confidence, self.method.priority, image_order)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "attribute": self.attribute,
            "value": self.value,
            "confidence": self.confidence,
            "method": self.method.value,
            "image_index": self.image_index,
            "unit": self.unit,
            "source": self.source,
        }


@dataclass
class ExtractedField:
    """Resolved value for one attribute with provenance."""

    attribute: str
    value: Any
    confidence: float
    provenance: List[MeasurementObservation] = field(default_factory=list)
    via_fallback: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "attribute": self.attribute,
            "value": self.value,
            "confidence": self.confidence,
            "via_fallback": self.via_fallback,
            "provenance": [obs.to_dict() for obs in self.provenance],
        }


@dataclass
class PrimaryImageSelection:
    """Winning display image with its composite and named sub-scores."""

    image_index: int
    composite_score: float
    sub_scores: Dict[str, float] = field(default_factory=dict)
    image_id: Optional[str] = None
    reasoning: str = ""
    fallback_reason: Optional[str] = None
    disqualified: List[int] = field(default_factory=list)
    # Per-image composite scores and exclusion reasons, keyed by image index
    scores: Dict[int, float] = field(default_factory=dict)
    disqualify_reasons: Dict[int, str] = field(default_factory=dict)
    asset_ids: Dict[int, str] = field(default_factory=dict)

    def annotation_for(self, image_index: int) -> Optional[str]:
        """Reasoning stored on an image asset after selection."""
        if image_index == self.image_index:
            return self.reasoning or self.fallback_reason
        if image_index in self.disqualify_reasons:
            return f"disqualified: {self.disqualify_reasons[image_index]}"
        return f"not selected (image {self.image_index} scored higher)"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "image_index": self.image_index,
            "image_id": self.image_id,
            "composite_score": self.composite_score,
            "sub_scores": self.sub_scores,
            "reasoning": self.reasoning,
            "fallback_reason": self.fallback_reason,
            "disqualified": self.disqualified,
            "scores": {str(k): v for k, v in self.scores.items()},
            "disqualify_reasons": {str(k): v for k, v in self.disqualify_reasons.items()},
        }


@dataclass
class AnalysisRun:
    """
    One pipeline execution for one item.

    Every extracted field is kept here for audit, including the ones the
    merge policy declined to write into the item.
    """

    item_id: str
    model: str
    status: RunStatus = RunStatus.RUNNING
    failure_reason: Optional[str] = None

    raw_response: Optional[str] = None
    normalized: Optional[Dict[str, Any]] = None
    observations: List[MeasurementObservation] = field(default_factory=list)
    fields: Dict[str, ExtractedField] = field(default_factory=dict)
    written_fields: List[str] = field(default_factory=list)
    skipped_fields: Dict[str, str] = field(default_factory=dict)
    primary_image: Optional[PrimaryImageSelection] = None

    validation_issues: List[str] = field(default_factory=list)
    validation_warnings: List[str] = field(default_factory=list)

    input_tokens: int = 0
    output_tokens: int = 0
    cost_usd: float = 0.0
    duration_ms: int = 0
    created_at: datetime = field(default_factory=_utcnow)
    run_id: Optional[int] = None

    def fail(self, reason: str) -> None:
        """Mark the run failed with a human-readable reason."""
        self.status = RunStatus.FAILED
        self.failure_reason = reason

    def add_usage(self, input_tokens: int, output_tokens: int, cost: float) -> None:
        self.input_tokens += input_tokens
        self.output_tokens += output_tokens
        self.cost_usd += cost

    @property
    def is_failed(self) -> bool:
        return self.status == RunStatus.FAILED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "item_id": self.item_id,
            "model": self.model,
            "status": self.status.value,
            "failure_reason": self.failure_reason,
            "fields": {name: f.to_dict() for name, f in self.fields.items()},
            "written_fields": self.written_fields,
            "skipped_fields": self.skipped_fields,
            "primary_image": self.primary_image.to_dict() if self.primary_image else None,
            "validation_issues": self.validation_issues,
            "validation_warnings": self.validation_warnings,
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
            "cost_usd": self.cost_usd,
            "duration_ms": self.duration_ms,
            "created_at": self.created_at.isoformat(),
        }

    def __repr__(self) -> str:
        return (
            f"AnalysisRun(item_id={self.item_id}, status={self.status.value.upper()}, "
            f"fields={len(self.fields)}, cost=${self.cost_usd:.4f})"
        )
