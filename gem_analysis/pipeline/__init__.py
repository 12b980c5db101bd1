"""
Per-item analysis and batch orchestration.
"""

from .analyzer import ItemAnalyzer
from .factory import Pipeline, build_pipeline, build_store
from .orchestrator import BatchOrchestrator, BatchSummary

__all__ = [
    "BatchOrchestrator",
    "BatchSummary",
    "ItemAnalyzer",
    "Pipeline",
    "build_pipeline",
    "build_store",
]
