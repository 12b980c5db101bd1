"""Completeness checks of a normalized response against the images sent."""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List

from .shapes import NormalizedResponse, ShapeKind

logger = logging.getLogger(__name__)

LOW_CONFIDENCE_FLOOR = 0.1


@dataclass
class ValidationResult:
    issues: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return not self.issues

    def to_dict(self) -> Dict[str, Any]:
        return {"passed": self.passed, "issues": self.issues, "warnings": self.warnings}


def validate_completeness(response: NormalizedResponse, expected_images: int) -> ValidationResult:
    """
    Compare what the model analysed with what it was sent.

    Issues mean the response is incomplete (missing per-image analyses);
    warnings flag weak spots worth a human look. Neither fails the run.
    """
    result = ValidationResult()

    self_report = response.extras.get("validation")
    if isinstance(self_report, dict):
        reported = self_report.get("total_images_analyzed")
        if isinstance(reported, int) and reported != expected_images:
            result.issues.append(
                f"Model reported analyzing {reported} images but {expected_images} were provided"
            )
        if self_report.get("analysis_complete") is False:
            result.issues.append("Model marked analysis as incomplete")
        missing = self_report.get("missing_images")
        if isinstance(missing, list) and missing:
            result.issues.append(f"Model reported missing images: {', '.join(str(m) for m in missing)}")

    if response.kind == ShapeKind.AGGREGATED:
        result.warnings.append("No per-image analyses returned")
    else:
        analysed = len(response.images)
        if analysed != expected_images:
            result.issues.append(
                f"Expected {expected_images} per-image analyses, got {analysed}"
            )

        indices = {entry.image_index for entry in response.images}
        missing_indices = [i for i in range(1, expected_images + 1) if i not in indices]
        if missing_indices:
            result.issues.append(
                f"Missing analysis for image indices: {', '.join(str(i) for i in missing_indices)}"
            )

        for entry in response.images:
            if not entry.classification:
                result.warnings.append(f"Image {entry.image_index} missing classification")
            if entry.confidence is None or entry.confidence < LOW_CONFIDENCE_FLOOR:
                result.warnings.append(f"Image {entry.image_index} has very low confidence")

    if not response.gauge_readings():
        result.warnings.append("No measurement gauge readings found")

    if not response.primary_hint:
        result.warnings.append("No primary image selection in response")

    if result.issues:
        logger.warning(f"Response validation issues: {'; '.join(result.issues)}")
    return result
