"""
Durable batch progress store.

A JSON file mapping item id to its latest status, cost and failure reason.
Every update rewrites the file through a temp file and ``os.replace`` so a
crash mid-write never leaves a truncated checkpoint.
"""

import json
import logging
import os
import tempfile
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

from ..models import RunStatus

logger = logging.getLogger(__name__)


class ProgressStore:
    """Item id -> status/cost checkpoint shared by all workers."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self._lock = threading.Lock()
        self._entries: Dict[str, Dict[str, Any]] = self._load()

    def _load(self) -> Dict[str, Dict[str, Any]]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise ValueError(f"Corrupt progress file {self.path}: {e}") from e

        entries = data.get("items", {}) if isinstance(data, dict) else {}
        logger.info(f"Loaded progress for {len(entries)} items from {self.path}")
        return entries

    def _save(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = {
            "updated_at": datetime.now(timezone.utc).isoformat(),
            "items": self._entries,
        }
        fd, tmp_path = tempfile.mkstemp(prefix=f".{self.path.name}.", dir=str(self.path.parent))
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(payload, f, indent=2, ensure_ascii=False)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    def _set(self, item_id: str, **values: Any) -> None:
        entry = dict(self._entries.get(item_id, {}))
        entry.update(values)
        entry["updated_at"] = datetime.now(timezone.utc).isoformat()
        self._entries[item_id] = entry
        self._save()

    def status_of(self, item_id: str) -> RunStatus:
        with self._lock:
            entry = self._entries.get(item_id)
        if not entry:
            return RunStatus.PENDING
        return RunStatus(entry["status"])

    def is_terminal(self, item_id: str) -> bool:
        return self.status_of(item_id).is_terminal

    def terminal_ids(self) -> List[str]:
        with self._lock:
            return [
                item_id for item_id, entry in self._entries.items()
                if RunStatus(entry["status"]).is_terminal
            ]

    def claim(self, item_id: str) -> bool:
        """Mark an item running. Returns False if it is already terminal."""
        with self._lock:
            entry = self._entries.get(item_id)
            if entry and RunStatus(entry["status"]).is_terminal:
                return False
            self._set(item_id, status=RunStatus.RUNNING.value)
            return True

    def complete(
        self,
        item_id: str,
        status: RunStatus,
        cost_usd: float = 0.0,
        reason: Optional[str] = None,
    ) -> None:
        """Record a terminal status. Cost adds to what earlier attempts spent."""
        if not status.is_terminal:
            raise ValueError(f"Not a terminal status: {status.value}")
        with self._lock:
            spent = self._entries.get(item_id, {}).get("cost_usd") or 0.0
            self._set(item_id, status=status.value, cost_usd=round(spent + cost_usd, 6), reason=reason)

    def reset(self, item_ids: Optional[Iterable[str]] = None, only_failed: bool = False) -> int:
        """
        Return items to pending so the next run picks them up again.

        Args:
            item_ids: Items to reset (default: every tracked item)
            only_failed: Reset only items whose status is failed

        Returns:
            Number of items reset
        """
        with self._lock:
            targets = list(item_ids) if item_ids is not None else list(self._entries)
            reset = 0
            for item_id in targets:
                entry = self._entries.get(item_id)
                if entry is None:
                    continue
                if only_failed and entry["status"] != RunStatus.FAILED.value:
                    continue
                entry["status"] = RunStatus.PENDING.value
                entry["reason"] = None
                reset += 1
            if reset:
                self._save()
        logger.info(f"Reset {reset} items to pending")
        return reset

    def summary(self) -> Dict[str, Any]:
        with self._lock:
            entries = list(self._entries.values())
        counts = {status.value: 0 for status in RunStatus}
        total_cost = 0.0
        for entry in entries:
            counts[entry["status"]] = counts.get(entry["status"], 0) + 1
            total_cost += entry.get("cost_usd") or 0.0
        return {
            "tracked": len(entries),
            "by_status": counts,
            "total_cost_usd": round(total_cost, 6),
        }
