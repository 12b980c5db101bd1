"""
Merge policy between AI-derived values and curated manual data.

An ``ai_*`` column is written only when the manual column is empty and the
resolved confidence meets the write threshold. The manual value is re-read
inside the write transaction, so a manual edit that lands mid-run wins.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from config.constants import DEFAULT_WRITE_THRESHOLD

from ..models import (
    ATTRIBUTES,
    ExtractedField,
    PrimaryImageSelection,
    derived_field_name,
    manual_field_name,
)
from .database import Database, ImageAssetRecord, ItemRecord

logger = logging.getLogger(__name__)

SKIP_MANUAL_PRESENT = "manual_value_present"
SKIP_BELOW_THRESHOLD = "below_threshold"
SKIP_ITEM_MISSING = "item_missing"


def is_empty(value: Any) -> bool:
    """None or a blank string counts as no manual value."""
    if value is None:
        return True
    if isinstance(value, str) and not value.strip():
        return True
    return False


@dataclass
class MergeReport:
    written: List[str] = field(default_factory=list)
    skipped: Dict[str, str] = field(default_factory=dict)
    primary_image_id: Optional[str] = None


class PersistenceGuard:
    """Write permitted AI fields and the primary image pointer."""

    def __init__(self, database: Database, threshold: float = DEFAULT_WRITE_THRESHOLD):
        if not 0.0 <= threshold <= 1.0:
            raise ValueError(f"threshold must be within [0, 1], got {threshold}")
        self.database = database
        self.threshold = threshold

    def should_write(self, manual_value: Any, confidence: float) -> bool:
        return is_empty(manual_value) and confidence >= self.threshold

    def merge(
        self,
        item_id: str,
        fields: Dict[str, ExtractedField],
        selection: Optional[PrimaryImageSelection] = None,
    ) -> MergeReport:
        """
        Apply the merge policy for one item in a single transaction.

        Fields that are not written are reported with a reason; nothing here
        raises for a declined write.
        """
        report = MergeReport()

        with self.database.session_scope() as session:
            record = session.get(ItemRecord, item_id, with_for_update=True)
            if record is None:
                logger.warning(f"Item {item_id} not found; nothing merged")
                report.skipped = {name: SKIP_ITEM_MISSING for name in fields}
                return report

            confidences = dict(record.ai_confidences or {})
            for attribute in ATTRIBUTES:
                extracted = fields.get(attribute)
                if extracted is None:
                    continue

                manual_value = getattr(record, manual_field_name(attribute))
                if not is_empty(manual_value):
                    report.skipped[attribute] = SKIP_MANUAL_PRESENT
                    logger.info(
                        f"{item_id}: kept manual {manual_field_name(attribute)}={manual_value!r}, "
                        f"AI value {extracted.value!r} recorded only"
                    )
                    continue
                if extracted.confidence < self.threshold:
                    report.skipped[attribute] = SKIP_BELOW_THRESHOLD
                    continue

                setattr(record, derived_field_name(attribute), extracted.value)
                confidences[attribute] = round(extracted.confidence, 4)
                report.written.append(attribute)

            if report.written:
                record.ai_confidences = confidences
                record.ai_extracted_at = datetime.now(timezone.utc).replace(tzinfo=None)

            if selection is not None and selection.image_id:
                image = session.get(ImageAssetRecord, selection.image_id)
                if image is not None and image.item_id == item_id:
                    record.primary_image_id = image.id
                    report.primary_image_id = image.id
                else:
                    logger.warning(f"{item_id}: selected image {selection.image_id} not found")

                asset_ids = dict(selection.asset_ids) or {selection.image_index: selection.image_id}
                for image_index, asset_id in asset_ids.items():
                    annotated = session.get(ImageAssetRecord, asset_id)
                    if annotated is None or annotated.item_id != item_id:
                        continue
                    annotated.ai_score = selection.scores.get(
                        image_index, selection.composite_score if image_index == selection.image_index else None
                    )
                    annotated.ai_reasoning = selection.annotation_for(image_index)

        logger.info(
            f"{item_id}: wrote {report.written or 'no fields'}, skipped {len(report.skipped)}"
        )
        return report

    def count_data_sources(self, item_id: str) -> Dict[str, int]:
        """Per-attribute source breakdown: manual, ai_only, both, empty."""
        counts = {"manual": 0, "ai_only": 0, "both": 0, "empty": 0}
        with self.database.session_scope() as session:
            record = session.get(ItemRecord, item_id)
            if record is None:
                return counts
            for attribute in ATTRIBUTES:
                has_manual = not is_empty(getattr(record, manual_field_name(attribute)))
                has_ai = not is_empty(getattr(record, derived_field_name(attribute)))
                if has_manual and has_ai:
                    counts["both"] += 1
                elif has_manual:
                    counts["manual"] += 1
                elif has_ai:
                    counts["ai_only"] += 1
                else:
                    counts["empty"] += 1
        return counts
