"""Tests for the built-in recovery strategies and their registry."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from selfheal.core.enums import ErrorCategory, ErrorType, RecoveryAction, Severity
from selfheal.core.exceptions import ConfigurationError
from selfheal.driver import GuardedDriver
from selfheal.models.classification import ErrorClassification
from selfheal.models.recovery import RecoveryContext, RecoveryOutcome
from selfheal.models.selector import SelectorDescriptor
from selfheal.resilience.backoff import RetryPolicy
from selfheal.resilience.circuit_breaker import KeyedCircuitBreaker
from selfheal.resilience.strategies import (
    AlternativeSelectorStrategy,
    CircuitBreakerStrategy,
    DataTransformationStrategy,
    ExponentialBackoffStrategy,
    FallbackDataStrategy,
    GenericRetryStrategy,
    IncreaseTimeoutStrategy,
    RecoveryStrategy,
    RefreshPageStrategy,
    ReleaseResourcesStrategy,
    RestartBrowserStrategy,
    StrategyRegistry,
    VisualMatchingStrategy,
    WaitAndRetryStrategy,
    WaitForStabilityStrategy,
    build_default_registry,
)
from selfheal.timing.adaptive import AdaptiveTimingController


def recovery_context(context=None, descriptor=None, attempt=1, driver=None, error_type=None):
    return RecoveryContext(
        error=RuntimeError("failure"),
        classification=ErrorClassification(
            type=error_type or ErrorType.ELEMENT_NOT_FOUND,
            category=ErrorCategory.ELEMENT,
            severity=Severity.MEDIUM,
            recoverable=True,
            confidence=0.9,
        ),
        context=context or {},
        attempt=attempt,
        descriptor=descriptor,
        driver=driver,
    )


class StubStrategy(RecoveryStrategy):
    def __init__(self, name, priority=1):
        self.name = name
        self.priority = priority

    async def execute(self, ctx):
        return RecoveryOutcome(success=True, action=RecoveryAction.RETRY)


class TestElementStrategies:
    """Tests for element-not-found strategies."""

    @pytest.mark.asyncio
    async def test_wait_and_retry_waits_default_delay(self, instant_sleep):
        strategy = WaitAndRetryStrategy(sleep=instant_sleep)

        outcome = await strategy.execute(recovery_context())

        assert outcome.success
        assert outcome.action is RecoveryAction.RETRY
        instant_sleep.assert_awaited_once_with(2.0)

    @pytest.mark.asyncio
    async def test_wait_and_retry_honours_context_delay(self, instant_sleep):
        strategy = WaitAndRetryStrategy(sleep=instant_sleep)

        outcome = await strategy.execute(recovery_context({"retry_delay": 500}))

        assert outcome.data == {"delay_ms": 500}
        instant_sleep.assert_awaited_once_with(0.5)

    @pytest.mark.asyncio
    async def test_wait_and_retry_fails_when_probe_misses(self, instant_sleep):
        locator = MagicMock()
        locator.probe = AsyncMock(return_value=False)
        strategy = WaitAndRetryStrategy(locator, sleep=instant_sleep)

        outcome = await strategy.execute(
            recovery_context(descriptor=SelectorDescriptor(primary=".submit-button"))
        )

        assert not outcome.success
        assert "still not found" in outcome.reason
        locator.probe.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_alternative_selector_picks_first_unused(self):
        descriptor = SelectorDescriptor.from_mapping(
            {"selector": ".submit-button", "alternative_selectors": ["#submit", "button[type=submit]"]}
        )

        outcome = await AlternativeSelectorStrategy().execute(
            recovery_context({"selector": ".submit-button"}, descriptor)
        )

        assert outcome.success
        assert outcome.action is RecoveryAction.USE_ALTERNATIVE
        assert outcome.data == {"selector": "#submit"}
        assert outcome.context_updates == {
            "selector": "#submit",
            "used_selectors": [".submit-button"],
        }

    @pytest.mark.asyncio
    async def test_alternative_selector_skips_used(self):
        descriptor = SelectorDescriptor.from_mapping(
            {"selector": "#submit", "alternative_selectors": ["#submit", "button[type=submit]"]}
        )
        ctx = recovery_context(
            {"selector": "#submit", "used_selectors": [".submit-button"]}, descriptor
        )

        outcome = await AlternativeSelectorStrategy().execute(ctx)

        assert outcome.data == {"selector": "button[type=submit]"}
        assert outcome.context_updates["used_selectors"] == [".submit-button", "#submit"]

    @pytest.mark.asyncio
    async def test_alternative_selector_exhausted(self):
        outcome = await AlternativeSelectorStrategy().execute(
            recovery_context({"selector": "#a", "alternative_selectors": ["#a"]})
        )

        assert not outcome.success
        assert outcome.action is RecoveryAction.ESCALATE

    @pytest.mark.asyncio
    async def test_visual_matching_without_locator(self):
        outcome = await VisualMatchingStrategy().execute(recovery_context())

        assert not outcome.success

    @pytest.mark.asyncio
    async def test_visual_matching_returns_element(self):
        locator = MagicMock()
        locator.find_visual_match = AsyncMock(return_value=MagicMock(element="el", confidence=0.75))

        outcome = await VisualMatchingStrategy(locator).execute(
            recovery_context(descriptor=SelectorDescriptor(primary="#logo"))
        )

        assert outcome.action is RecoveryAction.VISUAL_MATCH
        assert outcome.data == {"element": "el", "confidence": 0.75}


class TestTimeoutStrategies:
    """Tests for timeout strategies."""

    @pytest.mark.asyncio
    async def test_increase_timeout_from_default(self):
        outcome = await IncreaseTimeoutStrategy().execute(recovery_context())

        assert outcome.data == {"timeout": 45000.0}
        assert outcome.context_updates == {"current_timeout": 45000.0}

    @pytest.mark.asyncio
    async def test_increase_timeout_caps(self):
        outcome = await IncreaseTimeoutStrategy().execute(
            recovery_context({"current_timeout": 100000})
        )

        assert outcome.data["timeout"] == 120000

    @pytest.mark.asyncio
    async def test_increase_timeout_fails_at_cap(self):
        outcome = await IncreaseTimeoutStrategy().execute(
            recovery_context({"current_timeout": 120000})
        )

        assert not outcome.success

    @pytest.mark.asyncio
    async def test_stability_uses_timing_controller(self, driver_factory):
        timing = MagicMock()
        timing.wait_for_dom_stability = AsyncMock(return_value=True)

        outcome = await WaitForStabilityStrategy(timing).execute(
            recovery_context(driver=driver_factory())
        )

        assert outcome.data == {"stable": True}
        timing.wait_for_dom_stability.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_stability_without_driver_sleeps(self, instant_sleep):
        outcome = await WaitForStabilityStrategy(sleep=instant_sleep).execute(recovery_context())

        assert outcome.success
        instant_sleep.assert_awaited_once_with(5.0)

    @pytest.mark.asyncio
    async def test_stability_with_hung_driver_reports_unstable(
        self, clock, instant_sleep, driver_factory
    ):
        timing = AdaptiveTimingController(
            clock=clock, sleep=instant_sleep, driver_call_timeout_ms=20
        )

        outcome = await asyncio.wait_for(
            WaitForStabilityStrategy(timing).execute(
                recovery_context(driver=driver_factory(hang_on=["evaluate"]))
            ),
            timeout=2,
        )

        assert outcome.success
        assert outcome.data == {"stable": False}


class TestNetworkStrategies:
    """Tests for network-error strategies."""

    @pytest.mark.asyncio
    async def test_backoff_waits_unjittered_delay(self, instant_sleep):
        strategy = ExponentialBackoffStrategy(RetryPolicy(), sleep=instant_sleep)

        outcome = await strategy.execute(recovery_context(attempt=3))

        assert outcome.data == {"delay_ms": 4000.0}
        instant_sleep.assert_awaited_once_with(4.0)

    @pytest.mark.asyncio
    async def test_circuit_breaker_open(self, clock):
        breaker = KeyedCircuitBreaker(failure_threshold=1, clock=clock)
        context = {"url": "https://example.com", "action": "navigate"}
        await breaker.record_failure(breaker.key_for(context))

        outcome = await CircuitBreakerStrategy(breaker).execute(recovery_context(context))

        assert not outcome.success
        assert outcome.circuit_broken

    @pytest.mark.asyncio
    async def test_circuit_breaker_closed(self, clock):
        breaker = KeyedCircuitBreaker(failure_threshold=5, clock=clock)

        outcome = await CircuitBreakerStrategy(breaker).execute(recovery_context({"url": "x"}))

        assert outcome.success
        assert outcome.action is RecoveryAction.RETRY


class TestPageAndDataStrategies:
    """Tests for page, data and resource strategies."""

    @pytest.mark.asyncio
    async def test_refresh_page_reloads(self, driver_factory):
        driver = driver_factory()

        outcome = await RefreshPageStrategy().execute(recovery_context(driver=driver))

        assert outcome.data == {"reloaded": True}
        assert driver.reloads == 1

    @pytest.mark.asyncio
    async def test_refresh_page_with_hung_reload_fails(self, driver_factory):
        driver = GuardedDriver(driver_factory(hang_on=["reload"]), timeout=20)

        outcome = await asyncio.wait_for(
            RefreshPageStrategy().execute(recovery_context(driver=driver)), timeout=2
        )

        assert not outcome.success
        assert outcome.action is RecoveryAction.REFRESH_PAGE
        assert "reload" in outcome.reason

    @pytest.mark.asyncio
    async def test_restart_browser_is_a_signal(self):
        outcome = await RestartBrowserStrategy().execute(recovery_context())

        assert outcome.success
        assert outcome.action is RecoveryAction.RESTART_BROWSER

    @pytest.mark.asyncio
    async def test_data_transformation(self):
        outcome = await DataTransformationStrategy().execute(recovery_context())

        assert outcome.action is RecoveryAction.TRANSFORM_DATA

    @pytest.mark.asyncio
    async def test_fallback_data(self):
        outcome = await FallbackDataStrategy().execute(
            recovery_context({"fallback_data": {"date": "2024-01-01"}})
        )

        assert outcome.action is RecoveryAction.USE_FALLBACK
        assert outcome.data == {"date": "2024-01-01"}

    @pytest.mark.asyncio
    async def test_fallback_data_missing(self):
        outcome = await FallbackDataStrategy().execute(recovery_context())

        assert not outcome.success

    @pytest.mark.asyncio
    async def test_release_resources(self, instant_sleep):
        outcome = await ReleaseResourcesStrategy(sleep=instant_sleep).execute(recovery_context())

        assert outcome.success
        assert isinstance(outcome.data["collected"], int)
        assert outcome.data["delay_ms"] == 1000.0


class TestStrategyRegistry:
    """Tests for StrategyRegistry."""

    def test_default_registry_order(self):
        registry = build_default_registry()

        names = [s.name for s in registry.strategies_for(ErrorType.ELEMENT_NOT_FOUND)]
        assert names == ["wait-and-retry", "alternative-selector", "visual-matching"]
        assert [s.name for s in registry.strategies_for(ErrorType.NETWORK_ERROR)] == [
            "exponential-backoff",
            "circuit-breaker",
        ]

    def test_unregistered_type_uses_unknown(self):
        registry = StrategyRegistry({ErrorType.UNKNOWN: [GenericRetryStrategy()]})

        strategies = registry.strategies_for(ErrorType.PAGE_ERROR)

        assert [s.name for s in strategies] == ["generic-retry"]

    def test_requires_unknown_strategies(self):
        with pytest.raises(ConfigurationError):
            StrategyRegistry({ErrorType.TIMEOUT: [IncreaseTimeoutStrategy()]})

    def test_with_strategy_returns_new_registry(self):
        registry = build_default_registry()

        extended = registry.with_strategy(ErrorType.TIMEOUT, StubStrategy("custom", 0.5))

        assert [s.name for s in extended.strategies_for(ErrorType.TIMEOUT)][-1] == "custom"
        assert "custom" not in [s.name for s in registry.strategies_for(ErrorType.TIMEOUT)]

    def test_with_strategy_replaces_same_name(self):
        registry = build_default_registry()

        replaced = registry.with_strategy(ErrorType.PAGE_ERROR, StubStrategy("refresh-page", 9))

        strategies = replaced.strategies_for(ErrorType.PAGE_ERROR)
        assert [s.name for s in strategies] == ["restart-browser", "refresh-page"]
        assert strategies[-1].priority == 9

    def test_to_dict(self):
        data = build_default_registry().to_dict()

        assert data["timeout"] == [
            {"name": "increase-timeout", "priority": 1},
            {"name": "wait-for-stability", "priority": 2},
        ]
        assert set(data) == set(ErrorType.values()) - {ErrorType.PERMISSION_DENIED.value}
