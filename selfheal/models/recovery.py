"""Recovery execution records."""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple

from selfheal.core.enums import RecoveryAction
from selfheal.models.classification import ErrorClassification
from selfheal.models.selector import SelectorDescriptor


def _empty() -> Mapping[str, Any]:
    return MappingProxyType({})


@dataclass(frozen=True)
class StrategyStatsView:
    """Read-only view of one strategy's recorded outcomes."""

    successes: int = 0
    attempts: int = 0
    last_success: Optional[str] = None

    @property
    def success_rate(self) -> float:
        return self.successes / self.attempts if self.attempts else 0.0


@dataclass(frozen=True)
class RecoveryContext:
    """
    Immutable input handed to every recovery strategy.

    ``context`` is a read-only snapshot of the caller's working context and
    ``history`` a read-only snapshot of the strategy statistics for this
    failure's context signature. ``driver`` is the browser driver of the failing
    call, when the caller supplied one. Strategies request changes through
    ``RecoveryOutcome.context_updates`` instead of mutating shared state.
    """

    error: BaseException
    classification: ErrorClassification
    context: Mapping[str, Any] = field(default_factory=_empty)
    attempt: int = 1
    descriptor: Optional[SelectorDescriptor] = None
    history: Mapping[str, StrategyStatsView] = field(default_factory=_empty)
    signature: str = ""
    driver: Any = None

    def get(self, key: str, default: Any = None) -> Any:
        return self.context.get(key, default)


@dataclass(frozen=True)
class RecoveryOutcome:
    """Result of a recovery strategy, or of the whole executor scan."""

    success: bool
    action: RecoveryAction
    data: Dict[str, Any] = field(default_factory=dict)
    reason: Optional[str] = None
    strategy: Optional[str] = None
    context_updates: Dict[str, Any] = field(default_factory=dict)
    strategies_attempted: Tuple[str, ...] = ()

    @property
    def circuit_broken(self) -> bool:
        return self.action is RecoveryAction.CIRCUIT_BREAK

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "action": self.action.value,
            "data": dict(self.data),
            "reason": self.reason,
            "strategy": self.strategy,
            "context_updates": dict(self.context_updates),
            "strategies_attempted": list(self.strategies_attempted),
        }
