"""Tests for the keyed sliding-window circuit breaker."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from selfheal.core.exceptions import CircuitBreakerOpenError
from selfheal.resilience.circuit_breaker import CircuitState, KeyedCircuitBreaker

KEY = "https://example.com::navigate"


@pytest.fixture
def breaker(clock):
    return KeyedCircuitBreaker(failure_threshold=3, window_seconds=60, clock=clock)


class TestWindow:
    """Tests for the failure window."""

    @pytest.mark.asyncio
    async def test_opens_at_threshold(self, breaker):
        assert await breaker.record_failure(KEY) is CircuitState.CLOSED
        assert await breaker.record_failure(KEY) is CircuitState.CLOSED
        assert await breaker.record_failure(KEY) is CircuitState.OPEN
        assert await breaker.is_open(KEY)
        assert not await breaker.can_execute(KEY)

    @pytest.mark.asyncio
    async def test_closes_when_failures_age_out(self, breaker, clock):
        for _ in range(3):
            await breaker.record_failure(KEY)

        clock.advance(61)

        assert await breaker.state(KEY) is CircuitState.CLOSED
        assert await breaker.recent_failures(KEY) == 0

    @pytest.mark.asyncio
    async def test_only_failures_inside_window_count(self, breaker, clock):
        await breaker.record_failure(KEY)
        clock.advance(40)
        await breaker.record_failure(KEY)
        clock.advance(30)

        # First failure is now 70s old
        assert await breaker.record_failure(KEY) is CircuitState.CLOSED
        assert await breaker.recent_failures(KEY) == 2

    @pytest.mark.asyncio
    async def test_keys_are_independent(self, breaker):
        for _ in range(3):
            await breaker.record_failure(KEY)

        assert await breaker.can_execute("https://example.com::click")

    @pytest.mark.asyncio
    async def test_times_opened_counts_transitions(self, breaker, clock):
        for _ in range(5):
            await breaker.record_failure(KEY)
        assert breaker.get_stats()["times_opened"] == 1

        clock.advance(120)
        for _ in range(3):
            await breaker.record_failure(KEY)

        stats = breaker.get_stats()
        assert stats["times_opened"] == 2
        assert stats["open_circuits"] == [KEY]
        assert stats["failures_in_window"][KEY] == 3

    @pytest.mark.asyncio
    async def test_concurrent_failures_all_counted(self, clock):
        breaker = KeyedCircuitBreaker(failure_threshold=100, clock=clock)

        await asyncio.gather(*(breaker.record_failure(KEY) for _ in range(30)))

        assert await breaker.recent_failures(KEY) == 30


class TestCall:
    """Tests for calling through the breaker."""

    @pytest.mark.asyncio
    async def test_success_passes_result(self, breaker):
        func = AsyncMock(return_value="ok")

        assert await breaker.call(KEY, func, 1, flag=True) == "ok"
        func.assert_awaited_once_with(1, flag=True)

    @pytest.mark.asyncio
    async def test_failure_is_recorded_and_reraised(self, breaker):
        func = AsyncMock(side_effect=ConnectionError("refused"))

        with pytest.raises(ConnectionError):
            await breaker.call(KEY, func)

        assert await breaker.recent_failures(KEY) == 1

    @pytest.mark.asyncio
    async def test_open_circuit_rejects_call(self, breaker):
        for _ in range(3):
            await breaker.record_failure(KEY)
        func = AsyncMock()

        with pytest.raises(CircuitBreakerOpenError) as exc_info:
            await breaker.call(KEY, func)

        assert exc_info.value.details["key"] == KEY
        func.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_reset_single_key(self, breaker):
        for _ in range(3):
            await breaker.record_failure(KEY)
        await breaker.record_failure("other::click")

        await breaker.reset(KEY)

        assert await breaker.can_execute(KEY)
        assert await breaker.recent_failures("other::click") == 1

    @pytest.mark.asyncio
    async def test_reset_all(self, breaker):
        await breaker.record_failure(KEY)
        await breaker.record_failure("other::click")

        await breaker.reset()

        assert breaker.get_stats()["tracked_keys"] == 0


class TestKeyFor:
    """Tests for circuit key derivation."""

    def test_url_and_action(self):
        assert KeyedCircuitBreaker.key_for({"url": "https://a.test", "action": "click"}) == (
            "https://a.test::click"
        )

    def test_falls_back_to_target_then_selector(self):
        assert KeyedCircuitBreaker.key_for({"target": "api"}) == "api::unknown"
        assert KeyedCircuitBreaker.key_for({"selector": "#go", "action": "click"}) == "#go::click"

    def test_empty_context(self):
        assert KeyedCircuitBreaker.key_for({}) == "unknown::unknown"
