"""
Resilience engine facade.

Wires classifier, recovery executor, retry controller, self-healing locator
and adaptive timing together behind one object. Components are grouped in an
``EngineComponents`` context built by ``EngineComponents.create`` so tests can
swap any of them.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Union

from loguru import logger

from selfheal.core.config import EngineSettings
from selfheal.core.enums import ErrorType, EventType
from selfheal.core.exceptions import ConfigurationError
from selfheal.core.events import EventDispatcher, Observer
from selfheal.matching.semantic import SemanticContextAnalyzer
from selfheal.matching.visual import VisualSimilarityMatcher
from selfheal.models.classification import ErrorClassification, FailureInfo
from selfheal.models.recovery import RecoveryOutcome
from selfheal.models.selector import LocateResult, SelectorDescriptor
from selfheal.models.timing import TimeoutDecision
from selfheal.resilience.backoff import RetryPolicy
from selfheal.resilience.circuit_breaker import KeyedCircuitBreaker
from selfheal.resilience.classifier import ClassificationCatalog, ErrorClassifier, Failure
from selfheal.resilience.diagnostics import DiagnosticsRecorder
from selfheal.resilience.executor import RecoveryExecutor
from selfheal.resilience.retry import OnRetry, Operation, RetryController
from selfheal.resilience.strategies import Sleep, StrategyRegistry, build_default_registry
from selfheal.selector.learning import StrategyOutcomeHistory
from selfheal.selector.locator import SelfHealingLocator
from selfheal.selector.registry import SelectorRegistry
from selfheal.timing.adaptive import AdaptiveTimingController
from selfheal.utils.keys import normalize_keys


@dataclass(frozen=True)
class ErrorHandlingResult:
    """Everything ``handle_error`` learned about one failure."""

    success: bool
    classification: ErrorClassification
    recovery: RecoveryOutcome
    diagnostics: Dict[str, Any] = field(default_factory=dict)
    duration_ms: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "classification": self.classification.to_dict(),
            "recovery": self.recovery.to_dict(),
            "error_id": self.diagnostics.get("error_id"),
            "duration_ms": round(self.duration_ms, 2),
        }


@dataclass(frozen=True)
class EngineComponents:
    """
    Engine collaborators.

    Attributes:
        events: Dispatcher shared by every component
        history: Strategy outcome history for locator and recovery ranking
        circuit_breaker: Keyed sliding-window circuit breaker
        classifier: Error classifier
        diagnostics: Diagnostic report window
        timing: Adaptive timing controller
        visual_matcher: Visual similarity matcher
        semantic_analyzer: Semantic context analyzer
        locator: Self-healing locator
        executor: Recovery strategy executor
    """

    events: EventDispatcher
    history: StrategyOutcomeHistory
    circuit_breaker: KeyedCircuitBreaker
    classifier: ErrorClassifier
    diagnostics: DiagnosticsRecorder
    timing: AdaptiveTimingController
    visual_matcher: VisualSimilarityMatcher
    semantic_analyzer: SemanticContextAnalyzer
    locator: SelfHealingLocator
    executor: RecoveryExecutor

    @classmethod
    def create(
        cls,
        settings: EngineSettings,
        catalog: Optional[ClassificationCatalog] = None,
        registry: Optional[StrategyRegistry] = None,
        selectors: Optional[SelectorRegistry] = None,
        locator: Optional[SelfHealingLocator] = None,
        timing: Optional[AdaptiveTimingController] = None,
        sleep: Optional[Sleep] = None,
        clock: Optional[Callable[[], float]] = None,
    ) -> "EngineComponents":
        """
        Build the component set from settings.

        Args:
            settings: Engine settings
            catalog: Classification catalog; the built-in one when None
            registry: Recovery strategy registry; built-in strategies when None
            selectors: Named selector registry for the locator
            locator: Locator to use instead of building one
            timing: Timing controller to use instead of building one
            sleep: Async sleep taking seconds, shared by every waiting component
            clock: Wall clock in seconds for the circuit breaker and timing
        """
        events = EventDispatcher()
        history = StrategyOutcomeHistory(history_file=settings.history_file or None)
        circuit_breaker = KeyedCircuitBreaker(
            failure_threshold=settings.circuit_breaker_threshold,
            window_seconds=settings.circuit_breaker_window_seconds,
            clock=clock or time.time,
        )
        if timing is None:
            timing_kwargs: Dict[str, Any] = {"events": events}
            if clock is not None:
                timing_kwargs["clock"] = clock
            if sleep is not None:
                timing_kwargs["sleep"] = sleep
            timing = AdaptiveTimingController(
                base_timeout_ms=settings.base_timeout_ms,
                min_timeout_ms=settings.min_timeout_ms,
                max_timeout_ms=settings.max_timeout_ms,
                network_check_interval_ms=settings.network_check_interval_ms,
                complexity_analysis_interval_ms=settings.complexity_analysis_interval_ms,
                history_retention_days=settings.history_retention_days,
                driver_call_timeout_ms=settings.driver_call_timeout_ms,
                **timing_kwargs,
            )
        visual_matcher = VisualSimilarityMatcher(
            threshold=settings.visual_similarity_threshold,
            max_candidates=settings.max_visual_candidates,
            cache_size=settings.fingerprint_cache_size,
            cache_ttl_seconds=settings.fingerprint_cache_ttl_seconds,
        )
        semantic_analyzer = SemanticContextAnalyzer(
            threshold=settings.semantic_similarity_threshold,
            cache_size=settings.semantic_cache_size,
        )
        if locator is None:
            locator = SelfHealingLocator(
                history=history,
                registry=selectors,
                visual_matcher=visual_matcher,
                semantic_analyzer=semantic_analyzer,
                timing=timing,
                events=events,
                driver_call_timeout_ms=settings.driver_call_timeout_ms,
                semantic_threshold=settings.semantic_similarity_threshold,
                confidence_threshold=settings.confidence_threshold,
            )
        if registry is None:
            registry = build_default_registry(
                policy=RetryPolicy.from_settings(settings),
                locator=locator,
                timing=timing,
                circuit_breaker=circuit_breaker,
                sleep=sleep,
            )
        return cls(
            events=events,
            history=history,
            circuit_breaker=circuit_breaker,
            classifier=ErrorClassifier(catalog),
            diagnostics=DiagnosticsRecorder(max_reports=settings.diagnostics_retention),
            timing=timing,
            visual_matcher=visual_matcher,
            semantic_analyzer=semantic_analyzer,
            locator=locator,
            executor=RecoveryExecutor(registry, history, circuit_breaker, events),
        )


class ResilienceEngine:
    """
    Classify, recover from and retry failures of browser automation steps.

    Example:
        ```python
        engine = ResilienceEngine.from_options({"maxRetryAttempts": 3})

        async def click_submit(attempt, context):
            element = await engine.find_element(driver, context["selector"], context)
            ...

        await engine.execute_with_recovery(
            click_submit,
            {"selector": ".submit-button", "alternativeSelectors": ["#submit"]},
            driver=driver,
        )
        ```
    """

    def __init__(
        self,
        settings: Optional[EngineSettings] = None,
        components: Optional[EngineComponents] = None,
        sleep: Optional[Sleep] = None,
        rng: Optional[Callable[[], float]] = None,
        **component_overrides: Any,
    ):
        """
        Initialize resilience engine.

        Args:
            settings: Engine settings; defaults (and ``SELFHEAL_`` env vars) when None
            components: Prebuilt component set
            sleep: Async sleep taking seconds, injectable for tests
            rng: Uniform [0, 1) source for retry jitter
            **component_overrides: Passed to ``EngineComponents.create``
                (catalog, registry, selectors, locator, timing, clock)
        """
        self.settings = settings or EngineSettings()
        self.components = components or EngineComponents.create(
            self.settings, sleep=sleep, **component_overrides
        )
        self.policy = RetryPolicy.from_settings(self.settings)
        self.retry = RetryController(
            policy=self.policy,
            recovery_handler=self._recover,
            circuit_breaker=self.components.circuit_breaker,
            events=self.components.events,
            sleep=sleep,
            rng=rng,
            enable_recovery=self.settings.enable_recovery,
        )
        logger.info(
            f"Resilience engine ready (max attempts {self.policy.max_attempts}, "
            f"recovery {'on' if self.settings.enable_recovery else 'off'})"
        )

    @classmethod
    def from_options(cls, options: Mapping[str, Any], **kwargs: Any) -> "ResilienceEngine":
        """Build an engine from a recognised-options map (camelCase or snake_case)."""
        return cls(EngineSettings.from_options(options), **kwargs)

    # ------------------------------------------------------------------
    # Component shortcuts
    # ------------------------------------------------------------------

    @property
    def events(self) -> EventDispatcher:
        return self.components.events

    @property
    def classifier(self) -> ErrorClassifier:
        return self.components.classifier

    @property
    def executor(self) -> RecoveryExecutor:
        return self.components.executor

    @property
    def locator(self) -> SelfHealingLocator:
        return self.components.locator

    @property
    def timing(self) -> AdaptiveTimingController:
        return self.components.timing

    @property
    def circuit_breaker(self) -> KeyedCircuitBreaker:
        return self.components.circuit_breaker

    def subscribe(self, observer: Observer) -> Callable[[], None]:
        """Register an event observer; returns a function that removes it."""
        return self.components.events.subscribe(observer)

    # ------------------------------------------------------------------
    # Error handling
    # ------------------------------------------------------------------

    def classify_error(
        self, error: Failure, context: Optional[Mapping[str, Any]] = None
    ) -> ErrorClassification:
        return self.components.classifier.classify(error, context)

    async def handle_error(
        self,
        error: BaseException,
        context: Optional[Mapping[str, Any]] = None,
        attempt: int = 1,
        driver: Any = None,
        descriptor: Optional[SelectorDescriptor] = None,
    ) -> ErrorHandlingResult:
        """
        Classify a failure, record diagnostics and run recovery.

        Args:
            error: The failure
            context: Caller context (camelCase keys accepted)
            attempt: 1-based attempt number that failed
            driver: Browser driver of the failing call, if any
            descriptor: Selector descriptor; derived from the context when None

        Returns:
            Classification, recovery outcome and the diagnostic report
        """
        started = time.monotonic()
        ctx = normalize_keys(context or {})
        classifier = self.components.classifier

        classification = classifier.classify(error, ctx)
        diagnostics = self.components.diagnostics.record(
            FailureInfo.from_exception(error),
            classification,
            ctx,
            history_count=classifier.history_count(classification.type),
        )
        recovery = await self.components.executor.execute(
            error,
            classification,
            ctx,
            attempt=attempt,
            descriptor=descriptor,
            driver=self.components.timing.guard(driver),
        )
        result = ErrorHandlingResult(
            success=recovery.success,
            classification=classification,
            recovery=recovery,
            diagnostics=diagnostics,
            duration_ms=(time.monotonic() - started) * 1000,
        )
        await self.components.events.emit(
            EventType.ERROR_HANDLED,
            {**result.to_dict(), "attempt": attempt, "context": diagnostics["context"]},
        )
        return result

    async def _recover(
        self, error: BaseException, context: Mapping[str, Any], attempt: int, driver: Any
    ) -> Tuple[ErrorClassification, RecoveryOutcome]:
        result = await self.handle_error(error, context, attempt=attempt, driver=driver)
        return result.classification, result.recovery

    # ------------------------------------------------------------------
    # Retry
    # ------------------------------------------------------------------

    async def execute_with_recovery(
        self,
        operation: Operation,
        context: Optional[Mapping[str, Any]] = None,
        options: Optional[Mapping[str, Any]] = None,
        on_retry: Optional[OnRetry] = None,
        cancel_event: Optional[asyncio.Event] = None,
        driver: Any = None,
    ) -> Any:
        """
        Run ``operation`` with recovery between attempts.

        Raises:
            RetryExhaustedError: When attempts run out or recovery stops the sequence
            OperationCancelledError: When ``cancel_event`` is set
        """
        return await self.retry.execute_with_recovery(
            operation, context, options, on_retry, cancel_event, driver
        )

    async def retry_with_backoff(
        self,
        operation: Operation,
        options: Optional[Mapping[str, Any]] = None,
        on_retry: Optional[OnRetry] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> Any:
        """Run ``operation`` with plain backoff; the last error is re-raised unchanged."""
        return await self.retry.retry_with_backoff(operation, options, on_retry, cancel_event)

    # ------------------------------------------------------------------
    # Locator and timing
    # ------------------------------------------------------------------

    async def find_element(
        self,
        driver: Any,
        target: Union[SelectorDescriptor, str, Mapping[str, Any]],
        context: Optional[Mapping[str, Any]] = None,
    ) -> LocateResult:
        return await self.components.locator.find_element(driver, target, context)

    async def calculate_optimal_timeout(
        self,
        action: Any,
        context: Optional[Mapping[str, Any]] = None,
        driver: Any = None,
    ) -> TimeoutDecision:
        return await self.components.timing.calculate_optimal_timeout(action, context, driver)

    async def record_timing_result(
        self,
        action: Any,
        context: Optional[Mapping[str, Any]],
        duration_ms: float,
        success: bool,
        timeout_ms: float = 0.0,
    ) -> None:
        await self.components.timing.record_timing_result(
            action, context, duration_ms, success, timeout_ms
        )

    # ------------------------------------------------------------------
    # Diagnostics and statistics
    # ------------------------------------------------------------------

    def get_diagnostic_report(self, error_id: str) -> Optional[Dict[str, Any]]:
        return self.components.diagnostics.get(error_id)

    def get_recent_diagnostics(self, limit: int = 10) -> List[Dict[str, Any]]:
        return self.components.diagnostics.recent(limit)

    def get_error_history(self, error_type: Union[ErrorType, str]) -> List[Dict[str, Any]]:
        return self.components.classifier.get_error_history(error_type)

    def get_recovery_statistics(self) -> Dict[str, Any]:
        stats = self.components.executor.get_recovery_statistics()
        stats["retry"] = self.retry.get_retry_stats()
        stats["diagnostic_reports"] = len(self.components.diagnostics)
        return stats

    def get_statistics(self) -> Dict[str, Any]:
        """Combined statistics of every component."""
        return {
            "recovery": self.get_recovery_statistics(),
            "circuit_breaker": self.components.circuit_breaker.get_stats(),
            "learning": self.components.history.get_stats_summary(),
            "timing": self.components.timing.get_timing_stats(),
            "visual_cache": self.components.visual_matcher.get_cache_stats(),
            "semantic_cache": self.components.semantic_analyzer.get_cache_stats(),
        }

    async def reset_circuit_breaker(self, key: Optional[str] = None) -> None:
        await self.components.circuit_breaker.reset(key)

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def export_configuration(self) -> Dict[str, Any]:
        """Settings, classification catalog and strategy orderings as plain data."""
        return {
            "options": self.settings.to_options(),
            "error_classifications": self.components.classifier.catalog.to_dict(),
            "recovery_strategies": self.components.executor.registry.to_dict(),
            "locator_strategies": [
                {"name": s.kind.value, "priority": s.priority}
                for s in self.components.locator.strategies
            ],
        }

    def import_configuration(self, config: Mapping[str, Any]) -> None:
        """
        Apply exported options and classification rules.

        Options update the retry policy, recovery switch, circuit breaker
        bounds and locator match thresholds. Recovery strategies are code and are not imported.

        Raises:
            ConfigurationError: If an option value is invalid
        """
        options = config.get("options")
        if options:
            self.settings = EngineSettings.from_options({**self.settings.to_options(), **options})
            self.policy = RetryPolicy.from_settings(self.settings)
            self.retry.policy = self.policy
            self.retry.enable_recovery = self.settings.enable_recovery
            breaker = self.components.circuit_breaker
            breaker.failure_threshold = self.settings.circuit_breaker_threshold
            breaker.window_seconds = self.settings.circuit_breaker_window_seconds
            locator = self.components.locator
            locator.confidence_threshold = self.settings.confidence_threshold
            locator.semantic_threshold = self.settings.semantic_similarity_threshold

        classifications = config.get("error_classifications")
        if classifications:
            try:
                catalog = ClassificationCatalog.from_dict(classifications)
            except (ValueError, TypeError, AttributeError) as e:
                raise ConfigurationError(
                    f"Invalid error classifications: {e}", field="error_classifications"
                ) from e
            self.components.classifier.catalog = catalog
        logger.info("Engine configuration imported")
