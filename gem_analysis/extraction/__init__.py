"""
Field extraction and primary image selection from normalized responses.
"""

from .aggregator import MeasurementAggregator, best_observation
from .primary_image import (
    ImageCandidate,
    PrimaryImageSelector,
    candidates_from_response,
    normalize_sub_scores,
)
from .vocabulary import match_term

__all__ = [
    "ImageCandidate",
    "MeasurementAggregator",
    "PrimaryImageSelector",
    "best_observation",
    "candidates_from_response",
    "match_term",
    "normalize_sub_scores",
]
