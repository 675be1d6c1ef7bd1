"""Recovery strategy executor with success-weighted strategy ordering."""

from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional
from urllib.parse import urlparse

from loguru import logger

from selfheal.core.enums import ErrorCategory, EventType, RecoveryAction
from selfheal.core.events import EventDispatcher
from selfheal.models.classification import ErrorClassification
from selfheal.models.recovery import RecoveryContext, RecoveryOutcome
from selfheal.models.selector import SelectorDescriptor
from selfheal.resilience.strategies import RecoveryStrategy, StrategyRegistry, build_default_registry
from selfheal.selector.learning import StrategyOutcomeHistory
from selfheal.utils.keys import normalize_keys


def context_signature(classification: ErrorClassification, context: Mapping[str, Any]) -> str:
    """History key for recovery ordering: error type, host and action."""
    host = urlparse(str(context.get("url") or "")).hostname or "*"
    return f"{classification.type.value}|{host}|{context.get('action') or '*'}"


def descriptor_from_context(context: Mapping[str, Any]) -> Optional[SelectorDescriptor]:
    """Derive a selector descriptor from ``descriptor`` or ``selector`` context keys."""
    descriptor = context.get("descriptor")
    if isinstance(descriptor, SelectorDescriptor):
        return descriptor
    if isinstance(descriptor, Mapping):
        return SelectorDescriptor.from_mapping(descriptor)
    if context.get("selector"):
        return SelectorDescriptor.from_mapping(
            {
                "selector": context["selector"],
                "alternative_selectors": context.get("alternative_selectors") or (),
                "xpath": context.get("xpath") or (),
                "visual_fingerprint": context.get("visual_fingerprint"),
            }
        )
    return None


class RecoveryExecutor:
    """
    Run recovery strategies for a classified failure.

    Strategies for the failure's type run sequentially in effective priority
    order; the first success wins. Outcomes feed the shared outcome history,
    so strategies that keep working for a context signature move forward.
    """

    def __init__(
        self,
        registry: Optional[StrategyRegistry] = None,
        history: Optional[StrategyOutcomeHistory] = None,
        circuit_breaker: Any = None,
        events: Optional[EventDispatcher] = None,
    ):
        """
        Initialize recovery executor.

        Args:
            registry: Strategies per error type; the built-in set when None
            history: Outcome history for ranking; in-memory when None
            circuit_breaker: KeyedCircuitBreaker consulted for network failures
            events: Dispatcher for strategy-stats-updated events
        """
        self.registry = (
            registry if registry is not None else build_default_registry(circuit_breaker=circuit_breaker)
        )
        self.history = history if history is not None else StrategyOutcomeHistory()
        self.circuit_breaker = circuit_breaker
        self.events = events or EventDispatcher()
        self._stats: Dict[str, Dict[str, Any]] = {}

    def ordered_strategies(
        self, classification: ErrorClassification, signature: str
    ) -> List[RecoveryStrategy]:
        strategies = self.registry.strategies_for(classification.type)
        by_name = {s.name: s for s in strategies}
        ranked = self.history.rank(signature, [(s.name, s.priority) for s in strategies])
        return [by_name[name] for name in ranked]

    async def execute(
        self,
        error: BaseException,
        classification: ErrorClassification,
        context: Optional[Mapping[str, Any]] = None,
        attempt: int = 1,
        descriptor: Optional[SelectorDescriptor] = None,
        driver: Any = None,
    ) -> RecoveryOutcome:
        """
        Attempt recovery from a classified failure.

        Args:
            error: The failure being recovered from
            classification: Its classification
            context: Caller's working context
            attempt: 1-based attempt number that failed
            descriptor: Selector descriptor; derived from the context when None
            driver: Browser driver of the failing call, if any

        Returns:
            Outcome of the first successful strategy; a ``circuit-break``
            outcome when the circuit is open; otherwise an ``escalate`` outcome
        """
        ctx = normalize_keys(context or {})
        outcome = await self._execute(error, classification, ctx, attempt, descriptor, driver)
        self._update_stats(classification, outcome)
        return outcome

    async def _execute(
        self,
        error: BaseException,
        classification: ErrorClassification,
        ctx: Dict[str, Any],
        attempt: int,
        descriptor: Optional[SelectorDescriptor],
        driver: Any,
    ) -> RecoveryOutcome:
        if not classification.recoverable:
            logger.warning(f"Non-recoverable {classification.type.value} error, escalating")
            return RecoveryOutcome(
                success=False,
                action=RecoveryAction.ESCALATE,
                reason=f"Non-recoverable error: {classification.type.value}",
            )

        if classification.category is ErrorCategory.NETWORK and self.circuit_breaker is not None:
            key = self.circuit_breaker.key_for(ctx)
            if await self.circuit_breaker.is_open(key):
                logger.warning(f"Circuit open for {key}, not attempting recovery")
                return RecoveryOutcome(
                    success=False,
                    action=RecoveryAction.CIRCUIT_BREAK,
                    reason="Too many consecutive failures",
                    data={"key": key},
                )

        signature = context_signature(classification, ctx)
        strategies = self.ordered_strategies(classification, signature)
        recovery_ctx = RecoveryContext(
            error=error,
            classification=classification,
            context=MappingProxyType(dict(ctx)),
            attempt=attempt,
            descriptor=descriptor or descriptor_from_context(ctx),
            history=self.history.snapshot(signature),
            signature=signature,
            driver=driver,
        )

        attempted: List[str] = []
        for strategy in strategies:
            attempted.append(strategy.name)
            try:
                outcome = await strategy.execute(recovery_ctx)
            except Exception as e:
                logger.warning(f"Recovery strategy {strategy.name} failed: {e}")
                outcome = RecoveryOutcome(success=False, action=RecoveryAction.ESCALATE, reason=str(e))

            view = await self.history.record(signature, strategy.name, outcome.success)
            await self.events.emit(
                EventType.STRATEGY_STATS_UPDATED,
                {
                    "key": signature,
                    "strategy": strategy.name,
                    "success": outcome.success,
                    "successes": view.successes,
                    "attempts": view.attempts,
                    "success_rate": view.success_rate,
                },
            )

            if outcome.success or outcome.circuit_broken:
                logger.info(
                    f"Recovery strategy {strategy.name} -> {outcome.action.value} "
                    f"for {classification.type.value}"
                )
                return RecoveryOutcome(
                    success=outcome.success,
                    action=outcome.action,
                    data=dict(outcome.data),
                    reason=outcome.reason,
                    strategy=strategy.name,
                    context_updates=dict(outcome.context_updates),
                    strategies_attempted=tuple(attempted),
                )
            logger.debug(f"Recovery strategy {strategy.name} did not recover: {outcome.reason}")

        return RecoveryOutcome(
            success=False,
            action=RecoveryAction.ESCALATE,
            reason="All recovery strategies failed",
            strategies_attempted=tuple(attempted),
        )

    def _update_stats(self, classification: ErrorClassification, outcome: RecoveryOutcome) -> None:
        stats = self._stats.setdefault(
            classification.type.value, {"total": 0, "successful": 0, "failed": 0, "strategies": {}}
        )
        stats["total"] += 1
        if outcome.success:
            stats["successful"] += 1
            used = stats["strategies"].setdefault(outcome.strategy, {"used": 0, "successful": 0})
            used["used"] += 1
            used["successful"] += 1
        else:
            stats["failed"] += 1

    def get_recovery_statistics(self) -> Dict[str, Any]:
        """Per error type totals, overall success rate and the most common types."""
        overall = {
            error_type: {
                **stats,
                "strategies": {k: dict(v) for k, v in stats["strategies"].items()},
                "success_rate": stats["successful"] / stats["total"] if stats["total"] else 0.0,
            }
            for error_type, stats in self._stats.items()
        }
        total = sum(s["total"] for s in overall.values())
        successful = sum(s["successful"] for s in overall.values())
        most_common = sorted(overall.items(), key=lambda item: item[1]["total"], reverse=True)[:5]
        return {
            "overall": overall,
            "total_errors": total,
            "overall_success_rate": successful / total if total else 0.0,
            "most_common_errors": [
                {"type": t, "count": s["total"], "success_rate": s["success_rate"]}
                for t, s in most_common
            ],
        }

    def reset_statistics(self) -> None:
        self._stats.clear()
