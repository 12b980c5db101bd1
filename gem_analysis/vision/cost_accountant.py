"""Compute vision API spend from provider-reported usage and enforce budgets."""

import logging
import threading
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

import yaml

from config.constants import MODELS_TABLE_PATH

from ..errors import ConfigurationError, UnknownModelError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ModelConfig:
    """Price and request limits for one vision model."""

    name: str
    input_per_1k: float
    output_per_1k: float
    max_output_tokens: int
    reasoning_effort: Optional[str] = None
    capabilities: Tuple[str, ...] = field(default_factory=tuple)
    notes: str = ""


class ModelTable:
    """Per-model price table. Unknown models fail closed."""

    def __init__(self, models: Dict[str, ModelConfig]):
        self._models = dict(models)

    @classmethod
    def from_dict(cls, data: Dict[str, Dict[str, Any]]) -> "ModelTable":
        models = {}
        for name, spec in data.items():
            try:
                models[name] = ModelConfig(
                    name=name,
                    input_per_1k=float(spec["input_per_1k"]),
                    output_per_1k=float(spec["output_per_1k"]),
                    max_output_tokens=int(spec.get("max_output_tokens", 4000)),
                    reasoning_effort=spec.get("reasoning_effort"),
                    capabilities=tuple(spec.get("capabilities") or ()),
                    notes=spec.get("notes", ""),
                )
            except (KeyError, TypeError, ValueError) as e:
                raise ConfigurationError(f"Invalid price data for model '{name}': {e}")
        return cls(models)

    @classmethod
    def load(cls, path: Optional[Union[str, Path]] = None) -> "ModelTable":
        """Load the table from YAML (default: config/models.yaml)."""
        yaml_path = Path(path) if path else MODELS_TABLE_PATH
        if not yaml_path.exists():
            raise ConfigurationError(f"Model table not found at {yaml_path}")
        try:
            with open(yaml_path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Failed to parse model table {yaml_path}: {e}")

        table = cls.from_dict(data.get("models") or {})
        logger.info(f"Loaded {len(table.names())} model(s) from {yaml_path}")
        return table

    def get(self, model: str) -> ModelConfig:
        """
        Look up a model.

        Raises:
            UnknownModelError: If the model has no price entry
        """
        config = self._models.get(model)
        if config is None:
            raise UnknownModelError(model, available=self.names())
        return config

    def names(self) -> List[str]:
        return sorted(self._models)

    def __contains__(self, model: str) -> bool:
        return model in self._models


@dataclass
class ModelSpend:
    """Running usage for one model."""

    requests: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    cost_usd: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "requests": self.requests,
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
            "cost_usd": round(self.cost_usd, 6),
        }


class CostAccountant:
    """Price provider calls and keep today's spend against an optional budget."""

    def __init__(self, model_table: ModelTable, daily_budget: Optional[float] = None):
        """
        Args:
            model_table: Per-model price table
            daily_budget: Daily budget in USD (None = unlimited)
        """
        self.model_table = model_table
        self.daily_budget = daily_budget
        self._daily: Dict[date, float] = {}
        self._by_model: Dict[str, ModelSpend] = {}
        self._lock = threading.Lock()
        logger.info(f"CostAccountant initialized (daily budget: ${daily_budget})")

    def compute_cost(self, model: str, input_tokens: int, output_tokens: int) -> float:
        """
        Cost in USD from provider-reported token counts.

        Raises:
            UnknownModelError: If the model has no price entry
        """
        config = self.model_table.get(model)
        return (
            (input_tokens / 1000 * config.input_per_1k) +
            (output_tokens / 1000 * config.output_per_1k)
        )

    def record(self, model: str, input_tokens: int, output_tokens: int) -> float:
        """Price one provider call and add it to today's and the model's totals."""
        cost = self.compute_cost(model, input_tokens, output_tokens)
        with self._lock:
            today = date.today()
            self._daily[today] = self._daily.get(today, 0.0) + cost
            spend = self._by_model.setdefault(model, ModelSpend())
            spend.requests += 1
            spend.input_tokens += input_tokens
            spend.output_tokens += output_tokens
            spend.cost_usd += cost
            today_total = self._daily[today]

        logger.debug(f"{model}: ${cost:.6f} ({input_tokens} in / {output_tokens} out), today ${today_total:.4f}")
        if self.daily_budget and today_total >= self.daily_budget:
            logger.warning(f"Daily budget reached: ${today_total:.4f} / ${self.daily_budget:.2f}")
        return cost

    def today_spend(self) -> float:
        with self._lock:
            return self._daily.get(date.today(), 0.0)

    def is_over_budget(self) -> bool:
        """True once today's spend reaches the daily budget."""
        if not self.daily_budget:
            return False
        return self.today_spend() >= self.daily_budget

    def report(self) -> Dict[str, Any]:
        """Today's spend, remaining budget and per-model usage."""
        today = self.today_spend()
        with self._lock:
            by_model = {name: spend.to_dict() for name, spend in self._by_model.items()}
        return {
            "today_usd": round(today, 6),
            "daily_budget_usd": self.daily_budget,
            "remaining_usd": round(max(0.0, self.daily_budget - today), 6) if self.daily_budget else None,
            "by_model": by_model,
        }
