"""
Wire the pipeline from settings.

All configuration problems (missing credentials, unknown model, missing
prompts) surface here as ``ConfigurationError`` before any worker starts.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Any, Optional

from ..errors import ConfigurationError
from ..extraction import MeasurementAggregator, PrimaryImageSelector
from ..normalization import ResponseNormalizer
from ..persistence import Database, ItemRepository, PersistenceGuard, ProgressStore
from ..settings import Settings
from ..vision import (
    CostAccountant,
    ImageDownloader,
    ImagePreprocessor,
    ModelTable,
    VisionClient,
    VisionRequestBuilder,
    load_prompts,
)
from .analyzer import ItemAnalyzer
from .orchestrator import BatchOrchestrator

logger = logging.getLogger(__name__)


@dataclass
class Pipeline:
    """Everything a batch run needs, already validated."""

    settings: Settings
    database: Database
    repository: ItemRepository
    progress: ProgressStore
    guard: PersistenceGuard
    cost_accountant: CostAccountant
    analyzer: ItemAnalyzer
    orchestrator: BatchOrchestrator


def build_store(settings: Settings):
    """Database, repository and progress store without the vision stack."""
    database = Database(settings.database_url)
    database.init_db()
    return database, ItemRepository(database), ProgressStore(settings.progress_file)


def build_pipeline(
    settings: Settings,
    client: Optional[Any] = None,
    downloader: Optional[ImageDownloader] = None,
    stop_event: Optional[threading.Event] = None,
) -> Pipeline:
    """
    Build a ready-to-run pipeline.

    Args:
        settings: Pipeline settings
        client: Preconfigured provider client (default: OpenAI client from
            ``settings.openai_api_key``)
        downloader: Image downloader override
        stop_event: Event shared with signal handlers for cooperative stop

    Raises:
        ConfigurationError: On missing credentials, unknown model or
            missing prompt configuration
    """
    if client is None and not settings.openai_api_key:
        raise ConfigurationError(
            "OPENAI_API_KEY is not set",
            suggestions=["Set OPENAI_API_KEY in the environment or .env file"],
        )

    model_table = ModelTable.load(settings.models_table_path)
    model = model_table.get(settings.vision_model)
    prompts = load_prompts(settings.prompts_path)

    database, repository, progress = build_store(settings)
    guard = PersistenceGuard(database, threshold=settings.write_threshold)
    cost_accountant = CostAccountant(model_table, daily_budget=settings.daily_budget)

    vision_client = VisionClient(
        api_key=settings.openai_api_key,
        client=client,
        max_attempts=settings.max_attempts,
        backoff_delays=settings.backoff_delays,
    )
    analyzer = ItemAnalyzer(
        model=model,
        downloader=downloader or ImageDownloader(
            timeout=settings.image_download_timeout,
            max_attempts=settings.max_attempts,
            backoff_delays=settings.backoff_delays,
        ),
        preprocessor=ImagePreprocessor(max_edge=settings.image_max_edge, quality=settings.image_quality),
        request_builder=VisionRequestBuilder(prompts),
        client=vision_client,
        cost_accountant=cost_accountant,
        guard=guard,
        repository=repository,
        normalizer=ResponseNormalizer(),
        aggregator=MeasurementAggregator(),
        selector=PrimaryImageSelector(settings.sub_score_weights),
    )
    orchestrator = BatchOrchestrator(
        analyzer=analyzer,
        repository=repository,
        progress=progress,
        pool_width=settings.pool_width,
        batch_delay=settings.batch_delay_seconds,
        cost_accountant=cost_accountant,
        stop_event=stop_event,
    )

    logger.info(
        f"Pipeline ready: model={model.name}, threshold={settings.write_threshold}, "
        f"pool_width={settings.pool_width}"
    )
    return Pipeline(
        settings=settings,
        database=database,
        repository=repository,
        progress=progress,
        guard=guard,
        cost_accountant=cost_accountant,
        analyzer=analyzer,
        orchestrator=orchestrator,
    )
