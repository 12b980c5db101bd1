"""
Normalize provider responses into one internal structure.

Parses the body (with recovery for fenced or truncated-prefix JSON),
classifies the document into a shape variant and routes it to the
registered handler.
"""

import logging
from typing import Any, Dict, Optional, Tuple

from ..errors import UnparseableResponseError
from .handlers import ShapeHandlerRegistry
from .parsing import parse_response_text
from .shapes import (
    AggregatedShape,
    MixedShape,
    NormalizationResult,
    PerImageShape,
    ResponseShape,
)

logger = logging.getLogger(__name__)

AGGREGATE_KEYS = (
    "aggregated_data",
    "consolidated_data",
    "aggregate_extraction",
    "aggregate_inferences",
    "aggregate_analysis",
    "overall_summary",
    "summary",
)
PER_IMAGE_KEYS = ("individual_analyses", "images", "per_image_analysis")
PRIMARY_HINT_KEYS = ("primary_image", "best_image", "primary_image_selection")


def _first_section(document: Dict[str, Any], keys, expected_type) -> Tuple[Optional[str], Any]:
    for key in keys:
        value = document.get(key)
        if isinstance(value, expected_type) and value:
            return key, value
    return None, None


def _primary_hint(document: Dict[str, Any], aggregate: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    for container in (document, aggregate or {}):
        for key in PRIMARY_HINT_KEYS:
            value = container.get(key)
            if isinstance(value, dict):
                return value
            if isinstance(value, int) and not isinstance(value, bool):
                return {"image_index": value}
    return {}


def classify_document(document: Dict[str, Any]) -> ResponseShape:
    """
    Classify a parsed document into a shape variant by its top-level keys.

    A document matching no known layout becomes an empty ``PerImageShape``
    flagged ``matched=False``.
    """
    aggregate_key, aggregate = _first_section(document, AGGREGATE_KEYS, dict)
    images_key, images = _first_section(document, PER_IMAGE_KEYS, list)

    used = {k for k in (aggregate_key, images_key) if k} | set(PRIMARY_HINT_KEYS)
    extras = {k: v for k, v in document.items() if k not in used}
    primary_hint = _primary_hint(document, aggregate)

    if aggregate is not None and images is not None:
        return MixedShape(aggregate=aggregate, images=images, primary_hint=primary_hint, extras=extras)
    if aggregate is not None:
        return AggregatedShape(aggregate=aggregate, primary_hint=primary_hint, extras=extras)
    if images is not None:
        return PerImageShape(images=images, primary_hint=primary_hint, extras=extras)

    logger.warning(f"Response matched no known shape; top-level keys: {sorted(document)[:10]}")
    return PerImageShape(images=[], primary_hint=primary_hint, extras=extras, matched=False)


class ResponseNormalizer:
    """Turn a raw response body into a ``NormalizationResult``. Never raises."""

    def normalize(self, text: Optional[str]) -> NormalizationResult:
        try:
            document = parse_response_text(text)
        except UnparseableResponseError as e:
            return NormalizationResult(failure_reason=e.reason)

        shape = classify_document(document)
        response = ShapeHandlerRegistry.handle(shape)

        logger.info(
            f"Normalized {shape.kind.value} response: "
            f"{len(response.images)} images, {len(response.observations)} observations"
        )
        return NormalizationResult(response=response, document=document)
