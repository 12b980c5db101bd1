"""
Batch orchestration over the item worklist.

Items are claimed in waves of ``pool_width`` and analysed on a bounded
thread pool, one item per worker. Progress is checkpointed after every
item so a restarted batch skips everything already terminal.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from config.constants import DEFAULT_BATCH_DELAY_SECONDS, DEFAULT_POOL_WIDTH

from ..models import AnalysisRun, RunStatus
from ..persistence import ItemRepository, ProgressStore
from ..vision import CostAccountant
from .analyzer import ItemAnalyzer

logger = logging.getLogger(__name__)


@dataclass
class BatchSummary:
    """Totals for one batch invocation."""

    processed: int = 0
    succeeded: int = 0
    partially_extracted: int = 0
    failed: int = 0
    skipped: int = 0
    total_cost_usd: float = 0.0
    total_duration_ms: int = 0
    stop_reason: Optional[str] = None
    failures: Dict[str, str] = field(default_factory=dict)
    spend: Dict[str, Any] = field(default_factory=dict)

    def record(self, run: AnalysisRun) -> None:
        self.processed += 1
        self.total_cost_usd += run.cost_usd
        self.total_duration_ms += run.duration_ms
        if run.status == RunStatus.SUCCEEDED:
            self.succeeded += 1
        elif run.status == RunStatus.PARTIALLY_EXTRACTED:
            self.partially_extracted += 1
        else:
            self.failed += 1
            self.failures[run.item_id] = run.failure_reason or "unknown"

    @property
    def average_cost_usd(self) -> float:
        return self.total_cost_usd / self.processed if self.processed else 0.0

    @property
    def average_duration_ms(self) -> float:
        return self.total_duration_ms / self.processed if self.processed else 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "processed": self.processed,
            "succeeded": self.succeeded,
            "partially_extracted": self.partially_extracted,
            "failed": self.failed,
            "skipped": self.skipped,
            "total_cost_usd": round(self.total_cost_usd, 6),
            "average_cost_usd": round(self.average_cost_usd, 6),
            "average_duration_ms": round(self.average_duration_ms, 1),
            "stop_reason": self.stop_reason,
            "failures": self.failures,
            "spend": self.spend,
        }


class BatchOrchestrator:
    """Drive ``ItemAnalyzer`` over every pending item."""

    def __init__(
        self,
        analyzer: ItemAnalyzer,
        repository: ItemRepository,
        progress: ProgressStore,
        pool_width: int = DEFAULT_POOL_WIDTH,
        batch_delay: float = DEFAULT_BATCH_DELAY_SECONDS,
        cost_accountant: Optional[CostAccountant] = None,
        stop_event: Optional[threading.Event] = None,
    ):
        if pool_width < 1:
            raise ValueError(f"pool_width must be >= 1, got {pool_width}")
        self.analyzer = analyzer
        self.repository = repository
        self.progress = progress
        self.pool_width = pool_width
        self.batch_delay = batch_delay
        self.cost_accountant = cost_accountant
        self.stop_event = stop_event or threading.Event()

    def request_stop(self) -> None:
        """Finish in-flight items and claim no new ones."""
        logger.info("Stop requested; waiting for in-flight items")
        self.stop_event.set()

    def pending_items(self, limit: Optional[int] = None) -> List[str]:
        terminal = set(self.progress.terminal_ids())
        pending = [item_id for item_id in self.repository.list_item_ids() if item_id not in terminal]
        return pending[:limit] if limit is not None else pending

    def _should_stop(self, summary: BatchSummary) -> bool:
        if self.stop_event.is_set():
            summary.stop_reason = "stop_requested"
            return True
        if self.cost_accountant is not None and self.cost_accountant.is_over_budget():
            summary.stop_reason = "daily_budget_exceeded"
            logger.warning("Daily budget exceeded; no new items will be claimed")
            return True
        return False

    def run(self, item_ids: Optional[List[str]] = None, limit: Optional[int] = None) -> BatchSummary:
        """
        Process pending items.

        Args:
            item_ids: Restrict the batch to these items (terminal ones are
                still skipped)
            limit: Maximum number of items to process

        Returns:
            BatchSummary for this invocation
        """
        summary = BatchSummary()
        if item_ids is None:
            queue = self.pending_items(limit)
        else:
            queue = [i for i in item_ids if not self.progress.is_terminal(i)]
            summary.skipped = len(item_ids) - len(queue)
            if limit is not None:
                queue = queue[:limit]

        waves = [queue[i:i + self.pool_width] for i in range(0, len(queue), self.pool_width)]
        logger.info(
            f"Starting batch: {len(queue)} items in {len(waves)} waves "
            f"(pool width {self.pool_width}, delay {self.batch_delay}s)"
        )

        with ThreadPoolExecutor(max_workers=self.pool_width, thread_name_prefix="gem-worker") as executor:
            for wave_number, wave in enumerate(waves, start=1):
                if self._should_stop(summary):
                    break

                futures = {executor.submit(self._process, item_id): item_id for item_id in wave}
                for future in as_completed(futures):
                    run = future.result()
                    if run is None:
                        summary.skipped += 1
                    else:
                        summary.record(run)

                logger.info(
                    f"Wave {wave_number}/{len(waves)} done: "
                    f"{summary.processed} processed, ${summary.total_cost_usd:.4f} spent"
                )

                if wave_number < len(waves) and self.batch_delay > 0:
                    if self.stop_event.wait(self.batch_delay):
                        summary.stop_reason = "stop_requested"
                        break

        if self.cost_accountant is not None:
            summary.spend = self.cost_accountant.report()
        logger.info(f"Batch finished: {summary.to_dict()}")
        return summary

    def _process(self, item_id: str) -> Optional[AnalysisRun]:
        """Worker body. Never raises; errors become a failed run."""
        if not self.progress.claim(item_id):
            logger.debug(f"{item_id}: already terminal, skipped")
            return None

        try:
            item = self.repository.get_item(item_id)
            if item is None:
                run = AnalysisRun(item_id=item_id, model=self.analyzer.model_name)
                run.fail("item_not_found")
            else:
                run = self.analyzer.analyze(item)
        except Exception as e:
            logger.error(f"{item_id}: worker error: {e}", exc_info=True)
            run = AnalysisRun(item_id=item_id, model=self.analyzer.model_name)
            run.fail(f"unexpected_error: {e}")

        self.progress.complete(item_id, run.status, run.cost_usd, run.failure_reason)
        return run
