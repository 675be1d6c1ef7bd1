"""Built-in recovery strategies and the registry that maps error types to them."""

import asyncio
import gc
from abc import ABC, abstractmethod
from types import MappingProxyType
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from loguru import logger

from selfheal.constants import Recovery
from selfheal.core.enums import ErrorType, RecoveryAction
from selfheal.core.exceptions import ConfigurationError, DriverTimeoutError
from selfheal.models.recovery import RecoveryContext, RecoveryOutcome
from selfheal.resilience.backoff import RetryPolicy

Sleep = Callable[[float], Awaitable[Any]]


def _failed(reason: str, action: RecoveryAction = RecoveryAction.ESCALATE) -> RecoveryOutcome:
    return RecoveryOutcome(success=False, action=action, reason=reason)


class RecoveryStrategy(ABC):
    """One way of recovering from a classified failure. Lower priority runs first."""

    name: str = ""
    priority: float = 1

    @abstractmethod
    async def execute(self, ctx: RecoveryContext) -> RecoveryOutcome:
        """Attempt recovery and describe what the caller should do next."""

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "priority": self.priority}

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, priority={self.priority})"


class _SleepingStrategy(RecoveryStrategy):
    def __init__(self, sleep: Optional[Sleep] = None):
        self._sleep = sleep or asyncio.sleep

    async def _wait_ms(self, delay_ms: float) -> None:
        if delay_ms > 0:
            await self._sleep(delay_ms / 1000)


# ----------------------------------------------------------------------
# element-not-found
# ----------------------------------------------------------------------


class WaitAndRetryStrategy(_SleepingStrategy):
    """Wait a fixed delay, then check whether the element has appeared."""

    name = "wait-and-retry"
    priority = 1

    def __init__(
        self,
        locator: Any = None,
        delay_ms: float = Recovery.WAIT_AND_RETRY_DELAY_MS,
        sleep: Optional[Sleep] = None,
    ):
        super().__init__(sleep)
        self.locator = locator
        self.delay_ms = delay_ms

    async def execute(self, ctx: RecoveryContext) -> RecoveryOutcome:
        delay_ms = ctx.get("retry_delay")
        if delay_ms is None:
            delay_ms = self.delay_ms
        await self._wait_ms(float(delay_ms))
        if self.locator is not None and ctx.descriptor is not None:
            if not await self.locator.probe(ctx.driver, ctx.descriptor, ctx.context):
                return _failed(f"Element still not found after {delay_ms}ms: {ctx.descriptor.key}")
        return RecoveryOutcome(success=True, action=RecoveryAction.RETRY, data={"delay_ms": delay_ms})


class AlternativeSelectorStrategy(RecoveryStrategy):
    """Swap in the next alternative selector that has not been tried yet."""

    name = "alternative-selector"
    priority = 2

    async def execute(self, ctx: RecoveryContext) -> RecoveryOutcome:
        current = ctx.get("selector") or (ctx.descriptor.primary if ctx.descriptor else None)
        used = tuple(ctx.get("used_selectors") or ())
        if current:
            used = used + (current,)

        candidates: List[str] = list(ctx.descriptor.css) if ctx.descriptor else []
        candidates.extend(s for s in ctx.get("alternative_selectors") or () if s not in candidates)
        selector = next((s for s in candidates if s not in used), None)
        if selector is None:
            return _failed("No alternative selectors available")

        return RecoveryOutcome(
            success=True,
            action=RecoveryAction.USE_ALTERNATIVE,
            data={"selector": selector},
            context_updates={"selector": selector, "used_selectors": list(dict.fromkeys(used))},
        )


class VisualMatchingStrategy(RecoveryStrategy):
    """Relocate the element through the locator's visual similarity search."""

    name = "visual-matching"
    priority = 3

    def __init__(self, locator: Any = None):
        self.locator = locator

    async def execute(self, ctx: RecoveryContext) -> RecoveryOutcome:
        if self.locator is None or ctx.descriptor is None:
            return _failed("No visual matcher available")
        result = await self.locator.find_visual_match(ctx.driver, ctx.descriptor, ctx.context)
        if result is None:
            return _failed("No visually similar element found")
        return RecoveryOutcome(
            success=True,
            action=RecoveryAction.VISUAL_MATCH,
            data={"element": result.element, "confidence": result.confidence},
        )


# ----------------------------------------------------------------------
# timeout
# ----------------------------------------------------------------------


class IncreaseTimeoutStrategy(RecoveryStrategy):
    """Grow the operation timeout by a fixed factor, up to a cap."""

    name = "increase-timeout"
    priority = 1

    def __init__(
        self,
        multiplier: float = Recovery.TIMEOUT_MULTIPLIER,
        max_timeout_ms: float = Recovery.MAX_TIMEOUT_MS,
        default_timeout_ms: float = Recovery.DEFAULT_TIMEOUT_MS,
    ):
        self.multiplier = multiplier
        self.max_timeout_ms = max_timeout_ms
        self.default_timeout_ms = default_timeout_ms

    async def execute(self, ctx: RecoveryContext) -> RecoveryOutcome:
        current = float(ctx.get("current_timeout") or ctx.get("timeout") or self.default_timeout_ms)
        if current >= self.max_timeout_ms:
            return _failed(f"Timeout already at maximum ({self.max_timeout_ms:.0f}ms)")
        timeout = min(current * self.multiplier, self.max_timeout_ms)
        return RecoveryOutcome(
            success=True,
            action=RecoveryAction.INCREASE_TIMEOUT,
            data={"timeout": timeout},
            context_updates={"current_timeout": timeout},
        )


class WaitForStabilityStrategy(_SleepingStrategy):
    """Wait for the DOM to settle before retrying."""

    name = "wait-for-stability"
    priority = 2

    def __init__(
        self,
        timing: Any = None,
        fallback_wait_ms: float = Recovery.STABILITY_WAIT_MS,
        sleep: Optional[Sleep] = None,
    ):
        super().__init__(sleep)
        self.timing = timing
        self.fallback_wait_ms = fallback_wait_ms

    async def execute(self, ctx: RecoveryContext) -> RecoveryOutcome:
        if self.timing is not None and ctx.driver is not None:
            stable = await self.timing.wait_for_dom_stability(ctx.driver)
            return RecoveryOutcome(success=True, action=RecoveryAction.RETRY, data={"stable": stable})
        await self._wait_ms(self.fallback_wait_ms)
        return RecoveryOutcome(
            success=True, action=RecoveryAction.RETRY, data={"delay_ms": self.fallback_wait_ms}
        )


# ----------------------------------------------------------------------
# network-error
# ----------------------------------------------------------------------


class ExponentialBackoffStrategy(_SleepingStrategy):
    """Wait the policy's un-jittered backoff delay for this attempt."""

    name = "exponential-backoff"
    priority = 1

    def __init__(self, policy: Optional[RetryPolicy] = None, sleep: Optional[Sleep] = None):
        super().__init__(sleep)
        self.policy = policy or RetryPolicy()

    async def execute(self, ctx: RecoveryContext) -> RecoveryOutcome:
        delay_ms = self.policy.base_delay(ctx.attempt)
        await self._wait_ms(delay_ms)
        return RecoveryOutcome(success=True, action=RecoveryAction.RETRY, data={"delay_ms": delay_ms})


class CircuitBreakerStrategy(RecoveryStrategy):
    """Stop the sequence when the (target, action) circuit is open."""

    name = "circuit-breaker"
    priority = 2

    def __init__(self, circuit_breaker: Any = None):
        self.circuit_breaker = circuit_breaker

    async def execute(self, ctx: RecoveryContext) -> RecoveryOutcome:
        if self.circuit_breaker is None:
            return RecoveryOutcome(success=True, action=RecoveryAction.RETRY)
        key = self.circuit_breaker.key_for(ctx.context)
        if await self.circuit_breaker.is_open(key):
            return _failed("Too many consecutive failures", RecoveryAction.CIRCUIT_BREAK)
        return RecoveryOutcome(success=True, action=RecoveryAction.RETRY)


# ----------------------------------------------------------------------
# page-error
# ----------------------------------------------------------------------


class RefreshPageStrategy(RecoveryStrategy):
    name = "refresh-page"
    priority = 1

    async def execute(self, ctx: RecoveryContext) -> RecoveryOutcome:
        reloaded = False
        if ctx.driver is not None:
            try:
                await ctx.driver.reload()
            except DriverTimeoutError as e:
                return _failed(str(e), RecoveryAction.REFRESH_PAGE)
            reloaded = True
        return RecoveryOutcome(
            success=True, action=RecoveryAction.REFRESH_PAGE, data={"reloaded": reloaded}
        )


class RestartBrowserStrategy(RecoveryStrategy):
    """Signal that the browser must be restarted by the caller."""

    name = "restart-browser"
    priority = 2

    async def execute(self, ctx: RecoveryContext) -> RecoveryOutcome:
        return RecoveryOutcome(
            success=True, action=RecoveryAction.RESTART_BROWSER, data={"restart_browser": True}
        )


# ----------------------------------------------------------------------
# data-error
# ----------------------------------------------------------------------


class DataTransformationStrategy(RecoveryStrategy):
    name = "data-transformation"
    priority = 1

    async def execute(self, ctx: RecoveryContext) -> RecoveryOutcome:
        return RecoveryOutcome(
            success=True, action=RecoveryAction.TRANSFORM_DATA, data={"transformation": "auto-detect"}
        )


class FallbackDataStrategy(RecoveryStrategy):
    """Use the caller-supplied ``fallback_data``."""

    name = "fallback-data"
    priority = 2

    async def execute(self, ctx: RecoveryContext) -> RecoveryOutcome:
        fallback = ctx.get("fallback_data")
        if not fallback:
            return _failed("No fallback data available")
        data = dict(fallback) if isinstance(fallback, Mapping) else {"fallback_data": fallback}
        return RecoveryOutcome(success=True, action=RecoveryAction.USE_FALLBACK, data=data)


# ----------------------------------------------------------------------
# resource-error / unknown
# ----------------------------------------------------------------------


class ReleaseResourcesStrategy(ExponentialBackoffStrategy):
    """Collect garbage and wait the backoff delay before retrying."""

    name = "release-resources"
    priority = 1

    async def execute(self, ctx: RecoveryContext) -> RecoveryOutcome:
        collected = gc.collect()
        outcome = await super().execute(ctx)
        return RecoveryOutcome(
            success=True, action=outcome.action, data={**outcome.data, "collected": collected}
        )


class GenericRetryStrategy(ExponentialBackoffStrategy):
    name = "generic-retry"
    priority = 1


# ----------------------------------------------------------------------
# Registry
# ----------------------------------------------------------------------


class StrategyRegistry:
    """
    Immutable mapping from error type to recovery strategies.

    Types without their own strategies fall back to the ``unknown`` set,
    which must not be empty.
    """

    def __init__(self, strategies: Mapping[ErrorType, Iterable[RecoveryStrategy]]):
        """
        Initialize strategy registry.

        Raises:
            ConfigurationError: If no fallback strategies are registered for ``unknown``
        """
        frozen = {ErrorType(k): tuple(v) for k, v in strategies.items()}
        if not frozen.get(ErrorType.UNKNOWN):
            raise ConfigurationError("At least one strategy must be registered for 'unknown'")
        self._strategies: Mapping[ErrorType, Tuple[RecoveryStrategy, ...]] = MappingProxyType(frozen)

    def strategies_for(self, error_type: ErrorType) -> Tuple[RecoveryStrategy, ...]:
        return self._strategies.get(error_type) or self._strategies[ErrorType.UNKNOWN]

    def registered_types(self) -> Tuple[ErrorType, ...]:
        return tuple(self._strategies)

    def with_strategy(self, error_type: ErrorType, strategy: RecoveryStrategy) -> "StrategyRegistry":
        """Return a new registry with ``strategy`` added, replacing one of the same name."""
        error_type = ErrorType(error_type)
        current = [s for s in self._strategies.get(error_type, ()) if s.name != strategy.name]
        logger.debug(f"Registering recovery strategy {strategy.name} for {error_type.value}")
        return StrategyRegistry({**self._strategies, error_type: (*current, strategy)})

    def to_dict(self) -> Dict[str, List[Dict[str, Any]]]:
        return {t.value: [s.to_dict() for s in strategies] for t, strategies in self._strategies.items()}


def build_default_registry(
    policy: Optional[RetryPolicy] = None,
    locator: Any = None,
    timing: Any = None,
    circuit_breaker: Any = None,
    sleep: Optional[Sleep] = None,
) -> StrategyRegistry:
    """
    Build the built-in strategy set wired to the given collaborators.

    Args:
        policy: Retry policy used by the backoff strategies
        locator: SelfHealingLocator for probing and visual matching
        timing: AdaptiveTimingController for DOM stability waits
        circuit_breaker: KeyedCircuitBreaker consulted by the circuit-breaker strategy
        sleep: Async sleep taking seconds; ``asyncio.sleep`` when None
    """
    policy = policy or RetryPolicy()
    return StrategyRegistry(
        {
            ErrorType.ELEMENT_NOT_FOUND: (
                WaitAndRetryStrategy(locator, sleep=sleep),
                AlternativeSelectorStrategy(),
                VisualMatchingStrategy(locator),
            ),
            ErrorType.TIMEOUT: (
                IncreaseTimeoutStrategy(),
                WaitForStabilityStrategy(timing, sleep=sleep),
            ),
            ErrorType.NETWORK_ERROR: (
                ExponentialBackoffStrategy(policy, sleep=sleep),
                CircuitBreakerStrategy(circuit_breaker),
            ),
            ErrorType.PAGE_ERROR: (RefreshPageStrategy(), RestartBrowserStrategy()),
            ErrorType.DATA_ERROR: (DataTransformationStrategy(), FallbackDataStrategy()),
            ErrorType.RESOURCE_ERROR: (ReleaseResourcesStrategy(policy, sleep=sleep),),
            ErrorType.UNKNOWN: (GenericRetryStrategy(policy, sleep=sleep),),
        }
    )
