"""
Per-item analysis: one item end-to-end, from image download to merge.

Every call returns an ``AnalysisRun`` in a terminal state and persists it,
whatever happened along the way.
"""

import logging
import time
from typing import List

from config.constants import MANDATORY_ATTRIBUTES, UNPARSEABLE_REISSUE_LIMIT

from ..errors import ImageDownloadError, PipelineError
from ..extraction import MeasurementAggregator, PrimaryImageSelector
from ..models import AnalysisRun, Item, RunStatus
from ..normalization import ResponseNormalizer, validate_completeness
from ..persistence import ItemRepository, PersistenceGuard
from ..vision import (
    CostAccountant,
    ImageDownloader,
    ImagePreprocessor,
    ModelConfig,
    PreprocessedImage,
    VisionClient,
    VisionRequestBuilder,
)

logger = logging.getLogger(__name__)


class ItemAnalyzer:
    """Run the analysis pipeline for a single item."""

    def __init__(
        self,
        model: ModelConfig,
        downloader: ImageDownloader,
        preprocessor: ImagePreprocessor,
        request_builder: VisionRequestBuilder,
        client: VisionClient,
        cost_accountant: CostAccountant,
        guard: PersistenceGuard,
        repository: ItemRepository,
        normalizer: ResponseNormalizer = None,
        aggregator: MeasurementAggregator = None,
        selector: PrimaryImageSelector = None,
        reissue_limit: int = UNPARSEABLE_REISSUE_LIMIT,
    ):
        self.model = model
        self.downloader = downloader
        self.preprocessor = preprocessor
        self.request_builder = request_builder
        self.client = client
        self.cost_accountant = cost_accountant
        self.guard = guard
        self.repository = repository
        self.normalizer = normalizer or ResponseNormalizer()
        self.aggregator = aggregator or MeasurementAggregator()
        self.selector = selector or PrimaryImageSelector()
        self.reissue_limit = reissue_limit

    @property
    def model_name(self) -> str:
        return self.model.name

    def prepare_images(self, item: Item) -> List[PreprocessedImage]:
        """
        Download and preprocess an item's images in ordinal order.

        Images without a location, with a permanent download error or that
        cannot be decoded are skipped.

        Raises:
            ImageDownloadError: When a transient download failure outlasts
                its retries
        """
        prepared = []
        for asset in item.ordered_images:
            if not asset.location:
                logger.warning(f"{item.id}: image {asset.id} has no location, skipped")
                continue
            try:
                raw = self.downloader.fetch(asset.location)
            except ImageDownloadError as e:
                if e.transient:
                    raise
                logger.warning(f"{item.id}: image {asset.id} skipped: {e}")
                continue

            processed = self.preprocessor.preprocess_asset(asset, raw)
            if processed is not None:
                prepared.append(processed)
        return prepared

    def analyze(self, item: Item) -> AnalysisRun:
        """Analyse one item. Errors become a failed run that keeps the cost already spent."""
        start = time.monotonic()
        run = AnalysisRun(item_id=item.id, model=self.model.name)

        try:
            self._analyze(item, run)
        except PipelineError as e:
            logger.error(f"{item.id}: analysis failed", extra=e.to_dict())
            run.fail(f"{e.reason}: {e}")
        except Exception as e:
            logger.error(f"{item.id}: unexpected error: {e}", exc_info=True)
            run.fail(f"unexpected_error: {e}")
        finally:
            run.duration_ms = int((time.monotonic() - start) * 1000)
            self.repository.save_run(run)

        logger.info(f"{item.id}: {run!r} in {run.duration_ms}ms")
        return run

    def _analyze(self, item: Item, run: AnalysisRun) -> None:
        images = self.prepare_images(item)
        if not images:
            run.fail("no_usable_images")
            return

        request = self.request_builder.build(images, self.model)

        result = None
        for attempt in range(1 + self.reissue_limit):
            response = self.client.complete(request)
            cost = self.cost_accountant.record(self.model.name, response.input_tokens, response.output_tokens)
            run.add_usage(response.input_tokens, response.output_tokens, cost)
            run.raw_response = response.text

            result = self.normalizer.normalize(response.text)
            if result.ok:
                break
            logger.warning(
                f"{item.id}: unparseable response (attempt {attempt + 1}/{1 + self.reissue_limit}, "
                f"finish_reason={response.finish_reason})"
            )

        if not result.ok:
            run.fail(result.failure_reason)
            return

        normalized = result.response
        run.normalized = normalized.to_dict()

        fields, observations = self.aggregator.aggregate(normalized)
        run.fields = fields
        run.observations = observations

        selection = self.selector.select_from_response(normalized, len(images))
        if selection is not None:
            selection.asset_ids = {position: image.asset_id for position, image in enumerate(images, start=1)}
            selection.image_id = selection.asset_ids[selection.image_index]
        run.primary_image = selection

        validation = validate_completeness(normalized, len(images))
        run.validation_issues = validation.issues
        run.validation_warnings = validation.warnings

        report = self.guard.merge(item.id, fields, selection)
        run.written_fields = report.written
        run.skipped_fields = report.skipped

        mandatory_resolved = all(
            name in fields and fields[name].confidence >= self.guard.threshold
            for name in MANDATORY_ATTRIBUTES
        )
        run.status = RunStatus.SUCCEEDED if mandatory_resolved else RunStatus.PARTIALLY_EXTRACTED
