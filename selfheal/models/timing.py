"""Timing profile records."""

import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, List, Tuple

from selfheal.constants.timing import History
from selfheal.core.enums import WaitStrategy


@dataclass(frozen=True)
class NetworkConditions:
    """Last network probe result."""

    latency_ms: float = 0.0
    connection_class: str = "unknown"
    online: bool = True
    last_check: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "latency_ms": self.latency_ms,
            "connection_class": self.connection_class,
            "online": self.online,
            "last_check": self.last_check,
        }


@dataclass(frozen=True)
class PageComplexity:
    """Last page complexity scan."""

    dom_size: int = 0
    script_count: int = 0
    style_count: int = 0
    image_count: int = 0
    dynamic_content: bool = False
    active_ajax: int = 0
    last_analysis: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "dom_size": self.dom_size,
            "script_count": self.script_count,
            "style_count": self.style_count,
            "image_count": self.image_count,
            "dynamic_content": self.dynamic_content,
            "active_ajax": self.active_ajax,
            "last_analysis": self.last_analysis,
        }


@dataclass(frozen=True)
class TimingSample:
    """One recorded action duration."""

    duration_ms: float
    success: bool
    timestamp: float
    timeout_ms: float = 0.0


@dataclass
class TimingHistory:
    """Rolling outcome history for one (action, target, host) key."""

    attempts: int = 0
    successes: int = 0
    samples: Deque[TimingSample] = field(default_factory=lambda: deque(maxlen=History.MAX_SAMPLES))
    last_update: float = field(default_factory=time.time)

    @property
    def success_rate(self) -> float:
        return self.successes / self.attempts if self.attempts else 0.0

    @property
    def average_duration_ms(self) -> float:
        durations = [s.duration_ms for s in self.samples if s.success]
        return sum(durations) / len(durations) if durations else 0.0

    def record(self, sample: TimingSample) -> None:
        self.attempts += 1
        if sample.success:
            self.successes += 1
        self.samples.append(sample)
        self.last_update = sample.timestamp

    def to_dict(self) -> Dict[str, Any]:
        return {
            "attempts": self.attempts,
            "successes": self.successes,
            "samples": [
                {
                    "duration_ms": s.duration_ms,
                    "success": s.success,
                    "timestamp": s.timestamp,
                    "timeout_ms": s.timeout_ms,
                }
                for s in self.samples
            ],
            "last_update": self.last_update,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TimingHistory":
        history = cls(
            attempts=int(data.get("attempts", 0)),
            successes=int(data.get("successes", 0)),
            last_update=float(data.get("last_update", time.time())),
        )
        for s in data.get("samples") or []:
            history.samples.append(
                TimingSample(
                    duration_ms=float(s.get("duration_ms", 0.0)),
                    success=bool(s.get("success", False)),
                    timestamp=float(s.get("timestamp", history.last_update)),
                    timeout_ms=float(s.get("timeout_ms", 0.0)),
                )
            )
        return history


@dataclass(frozen=True)
class TimeoutDecision:
    """Predicted timeout and wait strategy for an upcoming action."""

    timeout_ms: int
    strategy: WaitStrategy
    fallback_strategies: Tuple[WaitStrategy, ...] = ()
    factors: Dict[str, float] = field(default_factory=dict)
    reasoning: Tuple[str, ...] = ()

    @property
    def timeout_seconds(self) -> float:
        return self.timeout_ms / 1000.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timeout_ms": self.timeout_ms,
            "strategy": self.strategy.value,
            "fallback_strategies": [s.value for s in self.fallback_strategies],
            "factors": dict(self.factors),
            "reasoning": list(self.reasoning),
        }


@dataclass
class TimingProfile:
    """Current timing signals plus per-action history."""

    network: NetworkConditions = field(default_factory=NetworkConditions)
    complexity: PageComplexity = field(default_factory=PageComplexity)
    history: Dict[str, TimingHistory] = field(default_factory=dict)

    def history_keys(self) -> List[str]:
        return list(self.history)
