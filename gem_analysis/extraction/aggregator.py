"""
Resolve one value per attribute from all observations of a response.

Reduction is confidence-weighted over an explicit observation list: the
highest confidence wins, ties go to the better extraction method and then
the earliest image. Categorical attributes with no structured observation
fall back to a vocabulary search over the free-text notes, at a discount.
"""

import logging
from typing import Dict, Iterable, List, Optional, Tuple

from config.constants import DEFAULT_OBSERVATION_CONFIDENCE, FREE_TEXT_CONFIDENCE_DISCOUNT

from ..models import (
    ATTRIBUTES,
    CATEGORICAL_ATTRIBUTES,
    ExtractedField,
    ExtractionMethod,
    MeasurementObservation,
)
from ..normalization import NormalizedResponse
from .vocabulary import match_term

logger = logging.getLogger(__name__)


def _same_value(a, b) -> bool:
    if isinstance(a, str) and isinstance(b, str):
        return a.strip().lower() == b.strip().lower()
    if isinstance(a, (int, float)) and isinstance(b, (int, float)):
        return abs(float(a) - float(b)) < 1e-9
    return a == b


def best_observation(observations: Iterable[MeasurementObservation]) -> Optional[MeasurementObservation]:
    """Highest confidence, then method priority, then earliest image."""
    observations = list(observations)
    if not observations:
        return None
    return min(observations, key=lambda obs: obs.sort_key())


class MeasurementAggregator:
    """Reduce observations into extracted fields."""

    def __init__(self, free_text_discount: float = FREE_TEXT_CONFIDENCE_DISCOUNT):
        self.free_text_discount = free_text_discount

    def reduce(self, observations: List[MeasurementObservation]) -> Dict[str, ExtractedField]:
        """Resolve structured observations. Attributes with none are absent."""
        by_attribute: Dict[str, List[MeasurementObservation]] = {}
        for obs in observations:
            by_attribute.setdefault(obs.attribute, []).append(obs)

        fields: Dict[str, ExtractedField] = {}
        for attribute in ATTRIBUTES:
            candidates = by_attribute.get(attribute)
            if not candidates:
                continue
            winner = best_observation(candidates)
            agreeing = [
                obs for obs in sorted(candidates, key=lambda o: o.sort_key())
                if obs is not winner and _same_value(obs.value, winner.value)
            ]
            fields[attribute] = ExtractedField(
                attribute=attribute,
                value=winner.value,
                confidence=winner.confidence,
                provenance=[winner] + agreeing,
            )
            if len(candidates) > 1:
                logger.debug(
                    f"{attribute}: {len(candidates)} observations, "
                    f"chose {winner.value!r} ({winner.confidence:.2f}, {winner.method.value})"
                )
        return fields

    def fallback_observations(
        self,
        free_texts: List[Tuple[int, str, Optional[float]]],
        attributes: Iterable[str],
    ) -> List[MeasurementObservation]:
        """
        Search free-text notes for categorical terms.

        Texts are scanned in image order; within a text the first vocabulary
        term wins. One observation per attribute at most.
        """
        found = []
        for attribute in attributes:
            for image_index, text, entry_confidence in free_texts:
                term = match_term(attribute, text)
                if term is None:
                    continue
                confidence = (
                    entry_confidence if entry_confidence is not None else DEFAULT_OBSERVATION_CONFIDENCE
                )
                found.append(
                    MeasurementObservation(
                        attribute=attribute,
                        value=term,
                        confidence=confidence,
                        method=ExtractionMethod.FREE_TEXT_REGEX,
                        image_index=image_index,
                        source=f"image[{image_index}].text",
                    )
                )
                break
        return found

    def aggregate(self, response: NormalizedResponse) -> Tuple[Dict[str, ExtractedField], List[MeasurementObservation]]:
        """
        Resolve every attribute of a normalized response.

        Returns:
            Tuple of (fields by attribute, all observations considered
            including free-text fallbacks)
        """
        observations = list(response.observations)
        fields = self.reduce(observations)

        missing = [a for a in CATEGORICAL_ATTRIBUTES if a not in fields]
        fallbacks = self.fallback_observations(response.free_texts(), missing) if missing else []
        for obs in fallbacks:
            fields[obs.attribute] = ExtractedField(
                attribute=obs.attribute,
                value=obs.value,
                confidence=obs.confidence * self.free_text_discount,
                provenance=[obs],
                via_fallback=True,
            )
            logger.info(
                f"{obs.attribute} from free text: {obs.value!r} "
                f"({obs.confidence:.2f} -> {obs.confidence * self.free_text_discount:.2f})"
            )

        return fields, observations + fallbacks
