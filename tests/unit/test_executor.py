"""Tests for the recovery executor."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from selfheal.core.enums import ErrorCategory, ErrorType, EventType, RecoveryAction
from selfheal.core.events import EventDispatcher
from selfheal.models.recovery import RecoveryOutcome
from selfheal.resilience.circuit_breaker import KeyedCircuitBreaker
from selfheal.resilience.executor import RecoveryExecutor, context_signature, descriptor_from_context
from selfheal.resilience.strategies import (
    GenericRetryStrategy,
    RecoveryStrategy,
    StrategyRegistry,
    build_default_registry,
)
from selfheal.selector.learning import StrategyOutcomeHistory

SUBMIT_CONTEXT = {
    "selector": ".submit-button",
    "alternativeSelectors": ["#submit", "button[type=submit]"],
}


class StubStrategy(RecoveryStrategy):
    """Strategy with a fixed result that counts its runs."""

    def __init__(self, name, priority, succeed=True, raises=False):
        self.name = name
        self.priority = priority
        self.succeed = succeed
        self.raises = raises
        self.runs = 0

    async def execute(self, ctx):
        self.runs += 1
        if self.raises:
            raise RuntimeError(f"{self.name} exploded")
        if self.succeed:
            return RecoveryOutcome(success=True, action=RecoveryAction.RETRY)
        return RecoveryOutcome(success=False, action=RecoveryAction.ESCALATE, reason="no luck")


def stub_registry(*strategies):
    return StrategyRegistry(
        {
            ErrorType.ELEMENT_NOT_FOUND: strategies,
            ErrorType.UNKNOWN: (GenericRetryStrategy(sleep=AsyncMock()),),
        }
    )


@pytest.fixture
def missing_probe_locator():
    locator = MagicMock()
    locator.probe = AsyncMock(return_value=False)
    return locator


class TestExecute:
    """Tests for RecoveryExecutor.execute."""

    @pytest.mark.asyncio
    async def test_missing_element_falls_through_to_alternative(
        self, classification_factory, missing_probe_locator, instant_sleep
    ):
        executor = RecoveryExecutor(
            registry=build_default_registry(locator=missing_probe_locator, sleep=instant_sleep)
        )
        classification = classification_factory(ErrorType.ELEMENT_NOT_FOUND, ErrorCategory.ELEMENT)

        outcome = await executor.execute(
            RuntimeError("Element not found: .submit-button"), classification, SUBMIT_CONTEXT
        )

        assert outcome.success
        assert outcome.strategy == "alternative-selector"
        assert outcome.action is RecoveryAction.USE_ALTERNATIVE
        assert outcome.data == {"selector": "#submit"}
        assert outcome.strategies_attempted == ("wait-and-retry", "alternative-selector")

    @pytest.mark.asyncio
    async def test_non_recoverable_escalates_without_strategies(self, classification_factory):
        strategy = StubStrategy("only", 1)
        executor = RecoveryExecutor(registry=stub_registry(strategy))
        classification = classification_factory(
            ErrorType.PERMISSION_DENIED, ErrorCategory.SECURITY, recoverable=False
        )

        outcome = await executor.execute(PermissionError("denied"), classification)

        assert not outcome.success
        assert outcome.action is RecoveryAction.ESCALATE
        assert outcome.strategies_attempted == ()
        assert strategy.runs == 0

    @pytest.mark.asyncio
    async def test_open_circuit_short_circuits_network_recovery(self, classification_factory, clock):
        breaker = KeyedCircuitBreaker(failure_threshold=2, clock=clock)
        context = {"url": "https://example.com", "action": "navigate"}
        for _ in range(2):
            await breaker.record_failure(breaker.key_for(context))
        executor = RecoveryExecutor(circuit_breaker=breaker)

        outcome = await executor.execute(
            ConnectionError("ECONNREFUSED"),
            classification_factory(ErrorType.NETWORK_ERROR, ErrorCategory.NETWORK),
            context,
        )

        assert outcome.action is RecoveryAction.CIRCUIT_BREAK
        assert outcome.data == {"key": "https://example.com::navigate"}

    @pytest.mark.asyncio
    async def test_all_strategies_fail(self, classification_factory):
        executor = RecoveryExecutor(
            registry=stub_registry(StubStrategy("a", 1, False), StubStrategy("b", 2, False))
        )

        outcome = await executor.execute(
            RuntimeError("x"), classification_factory(ErrorType.ELEMENT_NOT_FOUND)
        )

        assert outcome.action is RecoveryAction.ESCALATE
        assert outcome.strategies_attempted == ("a", "b")

    @pytest.mark.asyncio
    async def test_raising_strategy_counts_as_failure(self, classification_factory):
        history = StrategyOutcomeHistory()
        executor = RecoveryExecutor(
            registry=stub_registry(StubStrategy("boom", 1, raises=True), StubStrategy("ok", 2)),
            history=history,
        )
        classification = classification_factory(ErrorType.ELEMENT_NOT_FOUND)

        outcome = await executor.execute(RuntimeError("x"), classification)

        assert outcome.strategy == "ok"
        signature = context_signature(classification, {})
        assert history.stats(signature, "boom").attempts == 1
        assert history.stats(signature, "boom").successes == 0

    @pytest.mark.asyncio
    async def test_strategy_sees_read_only_context(self, classification_factory):
        seen = {}

        class Inspecting(RecoveryStrategy):
            name = "inspect"
            priority = 1

            async def execute(self, ctx):
                seen["ctx"] = ctx
                return RecoveryOutcome(success=True, action=RecoveryAction.RETRY)

        executor = RecoveryExecutor(registry=stub_registry(Inspecting()))

        await executor.execute(
            RuntimeError("x"), classification_factory(ErrorType.ELEMENT_NOT_FOUND), SUBMIT_CONTEXT
        )

        ctx = seen["ctx"]
        assert ctx.descriptor.primary == ".submit-button"
        with pytest.raises(TypeError):
            ctx.context["selector"] = "#other"


class TestLearning:
    """Tests for success-weighted ordering."""

    @pytest.mark.asyncio
    async def test_successful_strategy_moves_first(self, classification_factory):
        first = StubStrategy("first", 1, succeed=False)
        second = StubStrategy("second", 2, succeed=True)
        executor = RecoveryExecutor(registry=stub_registry(first, second))
        classification = classification_factory(ErrorType.ELEMENT_NOT_FOUND)
        context = {"url": "https://example.com/form", "action": "click"}

        for _ in range(4):
            outcome = await executor.execute(RuntimeError("x"), classification, context)
            assert outcome.strategies_attempted == ("first", "second")

        outcome = await executor.execute(RuntimeError("x"), classification, context)

        assert outcome.strategies_attempted == ("second",)
        assert first.runs == 4

    @pytest.mark.asyncio
    async def test_injected_empty_history_is_the_one_recorded_into(self, classification_factory):
        history = StrategyOutcomeHistory()
        executor = RecoveryExecutor(registry=stub_registry(StubStrategy("ok", 1)), history=history)
        classification = classification_factory(ErrorType.ELEMENT_NOT_FOUND)

        await executor.execute(RuntimeError("x"), classification)

        assert executor.history is history
        assert len(history) == 1

    @pytest.mark.asyncio
    async def test_history_is_per_signature(self, classification_factory):
        first = StubStrategy("first", 1, succeed=False)
        second = StubStrategy("second", 2, succeed=True)
        executor = RecoveryExecutor(registry=stub_registry(first, second))
        classification = classification_factory(ErrorType.ELEMENT_NOT_FOUND)

        for _ in range(5):
            await executor.execute(RuntimeError("x"), classification, {"url": "https://a.test"})
        outcome = await executor.execute(RuntimeError("x"), classification, {"url": "https://b.test"})

        assert outcome.strategies_attempted == ("first", "second")

    def test_context_signature(self, classification_factory):
        classification = classification_factory(ErrorType.TIMEOUT)

        assert context_signature(classification, {}) == "timeout|*|*"
        assert (
            context_signature(classification, {"url": "https://shop.test/cart", "action": "click"})
            == "timeout|shop.test|click"
        )


class TestStatisticsAndEvents:
    """Tests for recovery statistics and emitted events."""

    @pytest.mark.asyncio
    async def test_statistics(self, classification_factory):
        executor = RecoveryExecutor(registry=stub_registry(StubStrategy("ok", 1)))
        classification = classification_factory(ErrorType.ELEMENT_NOT_FOUND)

        await executor.execute(RuntimeError("x"), classification)
        await executor.execute(RuntimeError("x"), classification_factory(recoverable=False))

        stats = executor.get_recovery_statistics()
        assert stats["total_errors"] == 2
        assert stats["overall_success_rate"] == 0.5
        assert stats["overall"]["element-not-found"]["strategies"]["ok"]["successful"] == 1

        executor.reset_statistics()
        assert executor.get_recovery_statistics()["total_errors"] == 0

    @pytest.mark.asyncio
    async def test_stats_updated_event_per_strategy(self, classification_factory):
        events = EventDispatcher()
        received = []
        events.subscribe(received.append)
        executor = RecoveryExecutor(
            registry=stub_registry(StubStrategy("a", 1, False), StubStrategy("b", 2)), events=events
        )

        await executor.execute(RuntimeError("x"), classification_factory(ErrorType.ELEMENT_NOT_FOUND))

        assert [e.type for e in received] == [EventType.STRATEGY_STATS_UPDATED] * 2
        assert [(e.data["strategy"], e.data["success"]) for e in received] == [("a", False), ("b", True)]


class TestDescriptorFromContext:
    """Tests for descriptor derivation."""

    def test_from_selector_keys(self):
        descriptor = descriptor_from_context(
            {"selector": ".submit-button", "alternative_selectors": ["#submit"]}
        )

        assert descriptor.primary == ".submit-button"
        assert descriptor.css == ("#submit",)

    def test_without_selector(self):
        assert descriptor_from_context({"url": "https://example.com"}) is None
