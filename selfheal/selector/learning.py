"""Strategy outcome history for success-weighted strategy ranking."""

import json
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from types import MappingProxyType
from typing import Any, Deque, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from loguru import logger

from selfheal.constants import Learning, Recovery
from selfheal.core.keyed_lock import KeyedLock
from selfheal.models.recovery import StrategyStatsView


@dataclass
class StrategyStats:
    """Mutable counters for one (key, strategy) pair."""

    successes: int = 0
    attempts: int = 0
    last_success: Optional[str] = None
    samples: Deque[Dict[str, Any]] = field(
        default_factory=lambda: deque(maxlen=Learning.MAX_ELEMENT_SAMPLES)
    )

    @property
    def success_rate(self) -> float:
        return self.successes / self.attempts if self.attempts else 0.0

    def view(self) -> StrategyStatsView:
        return StrategyStatsView(
            successes=self.successes, attempts=self.attempts, last_success=self.last_success
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "successes": self.successes,
            "attempts": self.attempts,
            "last_success": self.last_success,
            "samples": list(self.samples),
        }


class StrategyOutcomeHistory:
    """
    Track per-(key, strategy) outcomes and re-rank strategies from them.

    The same history feeds locator ordering (key = selector) and recovery
    ordering (key = failure context signature). Ranking lowers a strategy's
    static priority by at most ``success_weight`` and only reaches the full
    weight after ``min_sample_size`` attempts, so a small sample cannot
    permanently displace a higher-priority strategy.
    """

    def __init__(
        self,
        history_file: Optional[Union[str, Path]] = None,
        success_weight: float = Recovery.SUCCESS_WEIGHT,
        min_sample_size: int = Recovery.MIN_SAMPLE_SIZE,
        max_element_samples: int = Learning.MAX_ELEMENT_SAMPLES,
    ):
        """
        Initialize strategy outcome history.

        Args:
            history_file: JSON file to persist outcomes to; in-memory when None
            success_weight: Maximum priority reduction from a perfect record
            min_sample_size: Attempts before the weight applies in full
            max_element_samples: Element characteristics kept per pair
        """
        self.history_file = Path(history_file) if history_file else None
        self.success_weight = success_weight
        self.min_sample_size = max(1, min_sample_size)
        self.max_element_samples = max_element_samples
        self._stats: Dict[str, Dict[str, StrategyStats]] = {}
        self._locks = KeyedLock()
        self._load()

    def _new_stats(self) -> StrategyStats:
        return StrategyStats(samples=deque(maxlen=self.max_element_samples))

    def _load(self) -> None:
        """Load outcomes from the JSON file if one is configured."""
        if self.history_file is None or not self.history_file.exists():
            return
        try:
            with open(self.history_file, "r", encoding="utf-8") as f:
                self.import_data(json.load(f))
            logger.debug(f"Loaded strategy history from {self.history_file}")
        except (OSError, ValueError) as e:
            logger.error(f"Failed to load strategy history: {e}")
            self._stats = {}

    def _save(self) -> None:
        """Persist outcomes to the JSON file if one is configured."""
        if self.history_file is None:
            return
        try:
            self.history_file.parent.mkdir(parents=True, exist_ok=True)
            with open(self.history_file, "w", encoding="utf-8") as f:
                json.dump(self.export_data(), f, indent=2)
        except OSError as e:
            logger.error(f"Failed to save strategy history: {e}")

    async def record(
        self,
        key: str,
        strategy: str,
        success: bool,
        element_info: Optional[Mapping[str, Any]] = None,
    ) -> StrategyStatsView:
        """
        Record one strategy outcome.

        Args:
            key: Selector key or failure context signature
            strategy: Strategy name
            success: Whether the strategy succeeded
            element_info: Characteristics of the element found, kept on success

        Returns:
            Updated read-only stats
        """
        async with self._locks.hold(key):
            stats = self._stats.setdefault(key, {}).setdefault(strategy, self._new_stats())
            stats.attempts += 1
            if success:
                stats.successes += 1
                stats.last_success = datetime.now(timezone.utc).isoformat()
                if element_info:
                    stats.samples.append(dict(element_info))
            view = stats.view()
        self._save()
        return view

    def stats(self, key: str, strategy: str) -> StrategyStatsView:
        stats = self._stats.get(key, {}).get(strategy)
        return stats.view() if stats else StrategyStatsView()

    def snapshot(self, key: str) -> Mapping[str, StrategyStatsView]:
        """Read-only copy of every strategy's stats for ``key``."""
        return MappingProxyType({name: s.view() for name, s in self._stats.get(key, {}).items()})

    def element_samples(self, key: str, strategy: str) -> List[Dict[str, Any]]:
        stats = self._stats.get(key, {}).get(strategy)
        return list(stats.samples) if stats else []

    def effective_priority(self, key: str, strategy: str, priority: float) -> float:
        """``priority - weight * success_rate * min(1, attempts / min_sample_size)``."""
        stats = self._stats.get(key, {}).get(strategy)
        if stats is None or stats.attempts == 0:
            return priority
        confidence = min(1.0, stats.attempts / self.min_sample_size)
        return priority - self.success_weight * stats.success_rate * confidence

    def rank(self, key: str, candidates: Sequence[Tuple[str, float]]) -> List[str]:
        """
        Order strategy names by effective priority, lowest first.

        Ties keep the input order.
        """
        indexed = [
            (self.effective_priority(key, name, priority), index, name)
            for index, (name, priority) in enumerate(candidates)
        ]
        return [name for _, _, name in sorted(indexed)]

    def get_stats_summary(self) -> Dict[str, Any]:
        """Aggregate counts for diagnostics."""
        by_strategy: Dict[str, Dict[str, int]] = {}
        for strategies in self._stats.values():
            for name, stats in strategies.items():
                entry = by_strategy.setdefault(name, {"successes": 0, "attempts": 0})
                entry["successes"] += stats.successes
                entry["attempts"] += stats.attempts
        return {
            "tracked_keys": len(self._stats),
            "strategies": {
                name: {
                    **counts,
                    "success_rate": counts["successes"] / counts["attempts"] if counts["attempts"] else 0.0,
                }
                for name, counts in by_strategy.items()
            },
        }

    def export_data(self) -> Dict[str, Any]:
        return {
            key: {name: stats.to_dict() for name, stats in strategies.items()}
            for key, strategies in self._stats.items()
        }

    def import_data(self, data: Mapping[str, Any]) -> None:
        """Replace current outcomes with previously exported data."""
        imported: Dict[str, Dict[str, StrategyStats]] = {}
        for key, strategies in data.items():
            for name, raw in (strategies or {}).items():
                stats = self._new_stats()
                stats.successes = int(raw.get("successes", 0))
                stats.attempts = int(raw.get("attempts", 0))
                stats.last_success = raw.get("last_success")
                stats.samples.extend(raw.get("samples") or [])
                imported.setdefault(key, {})[name] = stats
        self._stats = imported

    def clear(self) -> None:
        self._stats.clear()
        self._save()

    def __len__(self) -> int:
        return len(self._stats)
