"""Read items and record analysis runs."""

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import select

from ..models import (
    ATTRIBUTES,
    AnalysisRun,
    ImageAsset,
    Item,
    derived_field_name,
    manual_field_name,
)
from .database import (
    AnalysisRunRecord,
    Database,
    ImageAssetRecord,
    ItemRecord,
    MeasurementObservationRecord,
)

logger = logging.getLogger(__name__)


def _to_item(record: ItemRecord) -> Item:
    return Item(
        id=record.id,
        images=[
            ImageAsset(
                id=image.id,
                location=image.location,
                ordinal=image.ordinal,
                is_primary=bool(image.is_primary),
            )
            for image in record.images
        ],
        manual_fields={manual_field_name(a): getattr(record, manual_field_name(a)) for a in ATTRIBUTES},
        derived_fields={derived_field_name(a): getattr(record, derived_field_name(a)) for a in ATTRIBUTES},
    )


class ItemRepository:
    """Catalog access used by the pipeline and the CLI."""

    def __init__(self, database: Database):
        self.database = database

    def add_item(self, item: Item) -> None:
        """Insert or replace an item with its image assets and manual fields."""
        with self.database.session_scope() as session:
            record = session.get(ItemRecord, item.id)
            if record is None:
                record = ItemRecord(id=item.id)
                session.add(record)

            for name, value in item.manual_fields.items():
                if name not in {manual_field_name(a) for a in ATTRIBUTES}:
                    raise ValueError(f"Unknown manual field: {name}")
                setattr(record, name, value)

            existing = {image.id: image for image in record.images}
            images = []
            for image in item.images:
                image_record = existing.get(image.id) or ImageAssetRecord(id=image.id)
                image_record.location = image.location
                image_record.ordinal = image.ordinal
                image_record.is_primary = image.is_primary
                images.append(image_record)
            record.images = images

    def get_item(self, item_id: str) -> Optional[Item]:
        with self.database.session_scope() as session:
            record = session.get(ItemRecord, item_id)
            if record is None:
                return None
            return _to_item(record)

    def list_item_ids(self) -> List[str]:
        with self.database.session_scope() as session:
            return list(session.scalars(select(ItemRecord.id).order_by(ItemRecord.id)))

    def save_run(self, run: AnalysisRun) -> int:
        """Persist a run with its observations. Returns the run id."""
        with self.database.session_scope() as session:
            record = AnalysisRunRecord(
                item_id=run.item_id,
                model=run.model,
                status=run.status,
                failure_reason=run.failure_reason,
                raw_response=run.raw_response,
                normalized=run.normalized,
                fields={name: f.to_dict() for name, f in run.fields.items()},
                written_fields=list(run.written_fields),
                skipped_fields=dict(run.skipped_fields),
                primary_image=run.primary_image.to_dict() if run.primary_image else None,
                validation_issues=list(run.validation_issues),
                validation_warnings=list(run.validation_warnings),
                input_tokens=run.input_tokens,
                output_tokens=run.output_tokens,
                cost_usd=run.cost_usd,
                duration_ms=run.duration_ms,
                created_at=run.created_at.replace(tzinfo=None),
            )
            record.observations = [
                MeasurementObservationRecord(
                    attribute=obs.attribute,
                    value=obs.value,
                    confidence=obs.confidence,
                    method=obs.method,
                    image_index=obs.image_index,
                    unit=obs.unit,
                    source=obs.source,
                )
                for obs in run.observations
            ]
            session.add(record)

            item = session.get(ItemRecord, run.item_id)
            if item is not None:
                item.analysis_status = run.status.value

            session.flush()
            run.run_id = record.id

        logger.debug(f"Saved {run!r} as run {run.run_id}")
        return run.run_id

    def list_runs(self, item_id: str) -> List[Dict[str, Any]]:
        """All runs of an item, newest first."""
        with self.database.session_scope() as session:
            records = session.scalars(
                select(AnalysisRunRecord)
                .where(AnalysisRunRecord.item_id == item_id)
                .order_by(AnalysisRunRecord.created_at.desc(), AnalysisRunRecord.id.desc())
            )
            return [
                {
                    "run_id": r.id,
                    "model": r.model,
                    "status": r.status.value,
                    "failure_reason": r.failure_reason,
                    "fields": r.fields,
                    "written_fields": r.written_fields,
                    "skipped_fields": r.skipped_fields,
                    "primary_image": r.primary_image,
                    "validation_issues": r.validation_issues,
                    "validation_warnings": r.validation_warnings,
                    "cost_usd": r.cost_usd,
                    "observation_count": len(r.observations),
                }
                for r in records
            ]

    def latest_run(self, item_id: str) -> Optional[Dict[str, Any]]:
        runs = self.list_runs(item_id)
        return runs[0] if runs else None
