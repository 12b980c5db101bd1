"""
Catalog storage, the manual-data merge policy and batch progress.
"""

from .database import (
    AnalysisRunRecord,
    Base,
    Database,
    ImageAssetRecord,
    ItemRecord,
    MeasurementObservationRecord,
)
from .guard import MergeReport, PersistenceGuard, is_empty
from .repository import ItemRepository
from .worklist import ProgressStore

__all__ = [
    "AnalysisRunRecord",
    "Base",
    "Database",
    "ImageAssetRecord",
    "ItemRecord",
    "ItemRepository",
    "MeasurementObservationRecord",
    "MergeReport",
    "PersistenceGuard",
    "ProgressStore",
    "is_empty",
]
