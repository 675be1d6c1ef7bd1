"""Self-healing element locator."""

import time
from dataclasses import replace
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from loguru import logger

from selfheal.constants import Timeouts
from selfheal.core.enums import EventType, LocatorStrategy
from selfheal.core.events import EventDispatcher
from selfheal.core.exceptions import ConfigurationError, DriverTimeoutError, ElementNotFoundError
from selfheal.driver import guard_driver
from selfheal.models.selector import LocateResult, SelectorDescriptor, StrategyAttempt
from selfheal.selector.learning import StrategyOutcomeHistory
from selfheal.selector.registry import SelectorRegistry
from selfheal.selector.strategies import (
    CssStrategy,
    LocatorStrategyBase,
    LookupContext,
    VisualStrategy,
    default_strategies,
)
from selfheal.utils.keys import normalize_keys

Target = Union[SelectorDescriptor, str, Mapping[str, Any]]


class SelfHealingLocator:
    """
    Find elements through an ordered set of strategies that adapts to outcomes.

    Strategies run from the lowest effective priority upwards. The effective
    priority comes from the per-selector outcome history, so a strategy that
    keeps winning for a selector is tried earlier next time.
    """

    def __init__(
        self,
        history: Optional[StrategyOutcomeHistory] = None,
        registry: Optional[SelectorRegistry] = None,
        visual_matcher: Any = None,
        semantic_analyzer: Any = None,
        timing: Any = None,
        events: Optional[EventDispatcher] = None,
        strategies: Optional[Sequence[LocatorStrategyBase]] = None,
        driver_call_timeout_ms: float = Timeouts.DRIVER_CALL,
        visual_threshold: Optional[float] = None,
        semantic_threshold: Optional[float] = None,
        confidence_threshold: Optional[float] = None,
        capture_fingerprints: bool = False,
    ):
        """
        Initialize self-healing locator.

        Args:
            history: Outcome history used for ranking; a fresh in-memory one when None
            registry: Registry for resolving named selectors
            visual_matcher: VisualSimilarityMatcher for the visual strategy
            semantic_analyzer: SemanticContextAnalyzer for the semantic strategy
            timing: AdaptiveTimingController providing driver call timeouts
            events: Event dispatcher for element-found / element-not-found
            strategies: Strategy set to use instead of the built-in one
            driver_call_timeout_ms: Guard timeout when no timing controller is wired
            visual_threshold: Override for the visual matcher threshold
            semantic_threshold: Override for the semantic analyzer threshold
            confidence_threshold: Minimum match score for the fuzzy strategy, and for
                the semantic strategy when ``semantic_threshold`` is None
            capture_fingerprints: Cache a visual fingerprint of every element found
        """
        self.history = history if history is not None else StrategyOutcomeHistory()
        self.registry = registry or SelectorRegistry()
        self.visual_matcher = visual_matcher
        self.semantic_analyzer = semantic_analyzer
        self.timing = timing
        self.events = events or EventDispatcher()
        self.strategies: Tuple[LocatorStrategyBase, ...] = tuple(strategies or default_strategies())
        self.driver_call_timeout_ms = driver_call_timeout_ms
        self.visual_threshold = visual_threshold
        self.semantic_threshold = semantic_threshold
        self.confidence_threshold = confidence_threshold
        self.capture_fingerprints = capture_fingerprints
        self._by_name: Dict[str, LocatorStrategyBase] = {s.kind.value: s for s in self.strategies}

    def _guard_timeout(self) -> Union[float, Callable[[str], float]]:
        if self.timing is not None:
            return self.timing.driver_call_timeout
        return self.driver_call_timeout_ms

    def _guard(self, driver: Any) -> Any:
        return guard_driver(driver, self._guard_timeout())

    def resolve(self, target: Target, context: Optional[Mapping[str, Any]] = None) -> SelectorDescriptor:
        """
        Build a descriptor from a target, falling back to the caller context.

        A context carrying ``selector`` and ``alternative_selectors`` adds
        those alternatives to a plain string target.
        """
        descriptor = self.registry.resolve(target)
        if context:
            ctx = normalize_keys(context)
            extra = [s for s in ctx.get("alternative_selectors") or () if s not in descriptor.css]
            if extra and isinstance(target, str):
                descriptor = replace(descriptor, css=descriptor.css + tuple(extra))
        return descriptor

    def ordered_strategies(self, descriptor: SelectorDescriptor) -> List[LocatorStrategyBase]:
        """Applicable strategies ranked by outcome history for this selector."""
        applicable = [s for s in self.strategies if s.applicable(descriptor)]
        ranked = self.history.rank(descriptor.key, [(s.kind.value, s.priority) for s in applicable])
        return [self._by_name[name] for name in ranked]

    def _lookup(self, driver: Any, descriptor: SelectorDescriptor, variables: Mapping[str, Any]) -> LookupContext:
        return LookupContext(
            driver=driver,
            descriptor=descriptor,
            variables=variables,
            visual_matcher=self.visual_matcher,
            semantic_analyzer=self.semantic_analyzer,
            visual_threshold=self.visual_threshold,
            semantic_threshold=self.semantic_threshold,
            confidence_threshold=self.confidence_threshold,
        )

    async def find_element(
        self,
        driver: Any,
        target: Target,
        context: Optional[Mapping[str, Any]] = None,
    ) -> LocateResult:
        """
        Locate an interactable element.

        Args:
            driver: BrowserDriver to search through
            target: Registered name, CSS selector, mapping or descriptor
            context: Caller context; also the source of ``{{name}}`` values

        Returns:
            LocateResult for the first strategy that produced a visible,
            enabled element

        Raises:
            ElementNotFoundError: If every applicable strategy failed
            ConfigurationError: If the target cannot be turned into a descriptor
        """
        variables = normalize_keys(context or {})
        descriptor = self.resolve(target, variables)
        guarded = self._guard(driver)
        lookup = self._lookup(guarded, descriptor, variables)
        started = time.monotonic()
        attempts: List[StrategyAttempt] = []

        for strategy in self.ordered_strategies(descriptor):
            strategy_started = time.monotonic()
            try:
                hit = await strategy.find(lookup)
                error = "; ".join(hit.notes) or None
            except DriverTimeoutError as e:
                hit, error = None, str(e)
            except Exception as e:
                logger.warning(f"Locator strategy {strategy.kind.value} failed: {e}")
                hit, error = None, str(e)
            duration_ms = (time.monotonic() - strategy_started) * 1000

            if hit is not None and hit.found:
                attempts.append(
                    StrategyAttempt(strategy.kind, True, duration_ms, selector=hit.selector)
                )
                result = LocateResult(
                    element=hit.element,
                    strategy=strategy.kind,
                    selector=hit.selector,
                    confidence=strategy.confidence,
                    duration_ms=(time.monotonic() - started) * 1000,
                    attempts=tuple(attempts),
                )
                await self._learn(guarded, descriptor, result)
                return result

            attempts.append(StrategyAttempt(strategy.kind, False, duration_ms, error=error))
            logger.debug(f"Strategy {strategy.kind.value} missed for {descriptor.key}: {error}")

        trace = [a.to_dict() for a in attempts]
        for attempt in attempts:
            await self.history.record(descriptor.key, attempt.strategy.value, False)
        await self.events.emit(
            EventType.ELEMENT_NOT_FOUND,
            {"selector": descriptor.key, "attempts": trace},
        )
        logger.warning(f"Element not found for {descriptor.key} after {len(attempts)} strategies")
        raise ElementNotFoundError(descriptor.key, trace)

    async def _learn(self, driver: Any, descriptor: SelectorDescriptor, result: LocateResult) -> None:
        """Record the winner and every strategy that missed before it."""
        element_info: Optional[Dict[str, Any]] = None
        try:
            snapshot = await driver.describe(result.element)
            element_info = snapshot.characteristics()
        except Exception as e:
            logger.debug(f"Could not describe located element: {e}")

        for attempt in result.attempts[:-1]:
            await self.history.record(descriptor.key, attempt.strategy.value, False)
        view = await self.history.record(
            descriptor.key, result.strategy.value, True, element_info
        )

        if self.capture_fingerprints and self.visual_matcher is not None:
            try:
                fingerprint = await self.visual_matcher.create_fingerprint(
                    driver, result.element, selector=descriptor.key
                )
                self.visual_matcher.cache_fingerprint(descriptor.key, fingerprint)
            except Exception as e:
                logger.debug(f"Could not fingerprint located element: {e}")

        await self.events.emit(
            EventType.ELEMENT_FOUND,
            {"selector": descriptor.key, **result.to_dict()},
        )
        await self.events.emit(
            EventType.STRATEGY_STATS_UPDATED,
            {
                "key": descriptor.key,
                "strategy": result.strategy.value,
                "successes": view.successes,
                "attempts": view.attempts,
                "success_rate": view.success_rate,
            },
        )
        logger.info(
            f"Element {descriptor.key} found via {result.strategy.value} "
            f"in {result.duration_ms:.0f}ms"
        )

    async def probe(
        self,
        driver: Any,
        target: Target,
        context: Optional[Mapping[str, Any]] = None,
    ) -> bool:
        """
        Check whether the primary selector resolves to an interactable element.

        Nothing is recorded into the outcome history.
        """
        variables = normalize_keys(context or {})
        try:
            descriptor = self.resolve(target, variables)
        except ConfigurationError:
            return False
        if not descriptor.primary or driver is None:
            return False
        guarded = self._guard(driver)
        try:
            hit = await CssStrategy().find(self._lookup(guarded, descriptor, variables))
        except DriverTimeoutError:
            return False
        return hit.found

    async def find_visual_match(
        self,
        driver: Any,
        target: Target,
        context: Optional[Mapping[str, Any]] = None,
    ) -> Optional[LocateResult]:
        """Run only the visual strategy; None when it finds nothing."""
        if driver is None:
            return None
        variables = normalize_keys(context or {})
        descriptor = self.resolve(target, variables)
        strategy = self._by_name.get(LocatorStrategy.VISUAL.value) or VisualStrategy()
        started = time.monotonic()
        try:
            hit = await strategy.find(self._lookup(self._guard(driver), descriptor, variables))
        except DriverTimeoutError as e:
            logger.debug(f"Visual match timed out: {e}")
            return None
        if not hit.found:
            return None
        duration_ms = (time.monotonic() - started) * 1000
        return LocateResult(
            element=hit.element,
            strategy=strategy.kind,
            selector=hit.selector,
            confidence=strategy.confidence,
            duration_ms=duration_ms,
            attempts=(StrategyAttempt(strategy.kind, True, duration_ms),),
        )

    def get_learning_stats(self) -> Dict[str, Any]:
        return self.history.get_stats_summary()

    def export_learning_data(self) -> Dict[str, Any]:
        return self.history.export_data()

    def import_learning_data(self, data: Mapping[str, Any]) -> None:
        self.history.import_data(data)
        logger.info(f"Imported locator learning data for {len(self.history)} selectors")

    def clear_learning_data(self) -> None:
        self.history.clear()
