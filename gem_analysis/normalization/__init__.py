"""
Response normalization.

Parses provider output, classifies it into a shape variant and converts it
into a ``NormalizedResponse`` of observations and per-image entries.
"""

from .handlers import ShapeHandlerRegistry, register_shape_handler
from .parsing import extract_largest_brace_span, parse_response_text
from .response_normalizer import ResponseNormalizer, classify_document
from .shapes import (
    AggregatedShape,
    ImageEntry,
    MixedShape,
    NormalizationResult,
    NormalizedResponse,
    PerImageShape,
    ResponseShape,
    ShapeKind,
)
from .validation import ValidationResult, validate_completeness

__all__ = [
    "AggregatedShape",
    "ImageEntry",
    "MixedShape",
    "NormalizationResult",
    "NormalizedResponse",
    "PerImageShape",
    "ResponseNormalizer",
    "ResponseShape",
    "ShapeHandlerRegistry",
    "ShapeKind",
    "ValidationResult",
    "classify_document",
    "extract_largest_brace_span",
    "parse_response_text",
    "register_shape_handler",
    "validate_completeness",
]
