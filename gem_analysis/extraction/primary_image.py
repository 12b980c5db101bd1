"""
Primary display image selection.

Each eligible image gets a composite of five quality sub-scores. Images the
model classified as instrument shots, label shots or out of focus are
excluded before scoring.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from config.constants import DEFAULT_SUB_SCORE, DEFAULT_SUB_SCORE_WEIGHTS

from ..models import PrimaryImageSelection
from ..normalization import NormalizedResponse
from ..normalization.observations import coerce_number

logger = logging.getLogger(__name__)

SUB_SCORES = ("focus", "lighting", "background", "color_fidelity", "visibility")

SUB_SCORE_ALIASES = {
    "sharpness": "focus",
    "focus_quality": "focus",
    "lighting_quality": "lighting",
    "background_quality": "background",
    "color": "color_fidelity",
    "color_accuracy": "color_fidelity",
    "composition": "visibility",
    "stone_visibility": "visibility",
}

# Points each sub-score is worth when the model answers on the prompt's
# 100-point scale instead of [0, 1]
SUB_SCORE_POINTS = {
    "focus": 25.0,
    "lighting": 25.0,
    "background": 20.0,
    "color_fidelity": 20.0,
    "visibility": 10.0,
}

DISQUALIFYING_CLASSIFICATIONS = {
    "instrument",
    "measurement_tool",
    "measuring_tool",
    "gauge",
    "scale",
    "label",
    "label_only",
    "out_of_focus",
    "blurry",
}


def _normalize_label(value: Optional[str]) -> str:
    if not value:
        return ""
    return "_".join(value.strip().lower().replace("-", " ").split())


def normalize_sub_scores(raw: Dict[str, Any]) -> Dict[str, float]:
    """Map aliases to canonical names and scale every value into [0, 1]."""
    scores: Dict[str, float] = {}
    for key, value in raw.items():
        name = SUB_SCORE_ALIASES.get(key, key)
        if name not in SUB_SCORE_POINTS or name in scores:
            continue
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            try:
                number = float(value)
            except OverflowError:
                continue
        else:
            number = coerce_number(value)
            if number is None:
                continue
        if not math.isfinite(number):
            continue
        if number > 1.0:
            number = number / SUB_SCORE_POINTS[name]
        scores[name] = max(0.0, min(1.0, number))
    return scores


@dataclass
class ImageCandidate:
    """One image as seen by the selector."""

    image_index: int
    sub_scores: Dict[str, float] = field(default_factory=dict)
    disqualified: bool = False
    disqualify_reason: Optional[str] = None


def _hinted_disqualifications(primary_hint: Dict[str, Any]) -> List[int]:
    listed = primary_hint.get("disqualified_images") or []
    indices = []
    if isinstance(listed, list):
        for item in listed:
            value = item.get("image_index") if isinstance(item, dict) else item
            if isinstance(value, int) and not isinstance(value, bool):
                indices.append(value)
    return indices


def candidates_from_response(response: NormalizedResponse, image_count: int) -> List[ImageCandidate]:
    """Build one candidate per image sent, in ordinal order."""
    hint = response.primary_hint or {}
    hinted_index = hint.get("image_index")
    hinted_scores = hint.get("sub_scores") or hint.get("quality_scores") or {}
    hinted_out = set(_hinted_disqualifications(hint))

    candidates = []
    for image_index in range(1, image_count + 1):
        entry = response.image(image_index)
        raw_scores: Dict[str, Any] = dict(entry.quality_scores) if entry else {}
        if not raw_scores and hinted_index == image_index and isinstance(hinted_scores, dict):
            raw_scores = dict(hinted_scores)

        candidate = ImageCandidate(image_index=image_index, sub_scores=normalize_sub_scores(raw_scores))

        label = _normalize_label(entry.classification if entry else None)
        if entry is not None and entry.disqualified:
            candidate.disqualified, candidate.disqualify_reason = True, "flagged by model"
        elif label in DISQUALIFYING_CLASSIFICATIONS:
            candidate.disqualified, candidate.disqualify_reason = True, f"classified as {label}"
        elif image_index in hinted_out:
            candidate.disqualified, candidate.disqualify_reason = True, "listed in disqualified_images"

        candidates.append(candidate)
    return candidates


class PrimaryImageSelector:
    """Pick the best eligible image by weighted composite score."""

    def __init__(self, weights: Optional[Dict[str, float]] = None, default_sub_score: float = DEFAULT_SUB_SCORE):
        raw = dict(DEFAULT_SUB_SCORE_WEIGHTS)
        if weights:
            raw.update({SUB_SCORE_ALIASES.get(k, k): v for k, v in weights.items()})
        raw = {name: max(0.0, float(raw.get(name, 0.0))) for name in SUB_SCORES}
        total = sum(raw.values())
        if total <= 0:
            raw = {name: 1.0 for name in SUB_SCORES}
            total = float(len(SUB_SCORES))
        self.weights = {name: value / total for name, value in raw.items()}
        self.default_sub_score = default_sub_score

    def composite(self, sub_scores: Dict[str, float]) -> float:
        return sum(
            self.weights[name] * sub_scores.get(name, self.default_sub_score)
            for name in SUB_SCORES
        )

    def select(
        self,
        candidates: List[ImageCandidate],
        reasoning: str = "",
    ) -> Optional[PrimaryImageSelection]:
        """
        Choose the primary image.

        Returns:
            The selection, or None when there are no candidates at all
        """
        if not candidates:
            return None

        ordered = sorted(candidates, key=lambda c: c.image_index)
        disqualified = [c.image_index for c in ordered if c.disqualified]
        eligible = [c for c in ordered if not c.disqualified]
        scores = {c.image_index: round(self.composite(c.sub_scores), 4) for c in ordered}
        reasons = {c.image_index: c.disqualify_reason or "disqualified" for c in ordered if c.disqualified}

        if not eligible:
            first = ordered[0]
            filled = {name: first.sub_scores.get(name, self.default_sub_score) for name in SUB_SCORES}
            logger.warning(f"All {len(ordered)} images disqualified, falling back to image {first.image_index}")
            return PrimaryImageSelection(
                image_index=first.image_index,
                composite_score=round(self.composite(first.sub_scores), 4),
                sub_scores=filled,
                reasoning=reasoning,
                fallback_reason="all images disqualified; defaulted to first image",
                disqualified=disqualified,
                scores=scores,
                disqualify_reasons=reasons,
            )

        # max() keeps the first maximal element, i.e. the lowest ordinal
        best = max(eligible, key=lambda c: self.composite(c.sub_scores))
        filled = {name: best.sub_scores.get(name, self.default_sub_score) for name in SUB_SCORES}
        return PrimaryImageSelection(
            image_index=best.image_index,
            composite_score=round(self.composite(best.sub_scores), 4),
            sub_scores=filled,
            reasoning=reasoning,
            disqualified=disqualified,
            scores=scores,
            disqualify_reasons=reasons,
        )

    def select_from_response(self, response: NormalizedResponse, image_count: int) -> Optional[PrimaryImageSelection]:
        candidates = candidates_from_response(response, image_count)
        hint = response.primary_hint or {}
        reasoning = hint.get("reasoning") or hint.get("reason") or ""
        selection = self.select(candidates, reasoning=reasoning if isinstance(reasoning, str) else "")
        if selection and hint.get("image_index") not in (None, selection.image_index):
            selection.reasoning = ""
        return selection
