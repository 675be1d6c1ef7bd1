"""Tests for the adaptive timing controller."""

import asyncio
import itertools
from datetime import datetime
from unittest.mock import AsyncMock, MagicMock

import pytest

from selfheal.core.enums import EventType, WaitStrategy
from selfheal.core.events import EventDispatcher
from selfheal.models.timing import NetworkConditions, PageComplexity
from selfheal.timing.adaptive import AdaptiveTimingController, TimedAction

OFF_PEAK = datetime(2024, 1, 15, 3, 0)
PEAK = datetime(2024, 1, 15, 12, 0)


@pytest.fixture
def timing(clock, instant_sleep):
    return AdaptiveTimingController(clock=clock, local_time=lambda: OFF_PEAK, sleep=instant_sleep)


class TestEstimateTimeout:
    """Tests for timeout prediction."""

    def test_click_without_signals(self, timing):
        decision = timing.estimate_timeout("click")

        # 2000ms baseline times 1.5 for an unknown connection
        assert decision.timeout_ms == 3000
        assert decision.factors["network"] == 1.5
        assert decision.factors["complexity"] == 1.0

    def test_peak_hours(self, clock):
        timing = AdaptiveTimingController(clock=clock, local_time=lambda: PEAK)

        assert timing.estimate_timeout("click").timeout_ms == 3600

    def test_clamped_to_maximum(self, timing):
        timing.profile.network = NetworkConditions(connection_class="slow-2g", online=False)
        timing.profile.complexity = PageComplexity(
            dom_size=6000, script_count=25, dynamic_content=True, active_ajax=2
        )

        decision = timing.estimate_timeout("navigation")

        assert decision.factors["network"] == 5.0
        assert decision.factors["complexity"] == 3.0
        assert decision.timeout_ms == 60000

    @pytest.mark.asyncio
    async def test_clamped_to_minimum(self, timing):
        timing.profile.network = NetworkConditions(connection_class="wifi")
        context = {"url": "https://example.com/form"}
        for _ in range(3):
            await timing.record_timing_result("type", context, duration_ms=100, success=True)

        decision = timing.estimate_timeout("type", context)

        assert decision.factors["history"] == pytest.approx(0.72)
        assert decision.timeout_ms == 1000

    def test_custom_bounds(self, clock):
        timing = AdaptiveTimingController(
            clock=clock, local_time=lambda: OFF_PEAK, min_timeout_ms=500, max_timeout_ms=2000
        )

        assert timing.estimate_timeout("navigation").timeout_ms == 2000

    def test_action_mapping(self, timing):
        decision = timing.estimate_timeout({"type": "click", "target": "button.submit"})

        assert decision.strategy is WaitStrategy.ELEMENT_STABLE

    def test_driver_call_timeout(self, timing):
        assert timing.driver_call_timeout("navigate") == 15000.0
        assert timing.driver_call_timeout("query") == 4500.0

    def test_driver_call_timeout_capped(self, clock):
        timing = AdaptiveTimingController(
            clock=clock, local_time=lambda: OFF_PEAK, driver_call_timeout_ms=200
        )

        assert timing.driver_call_timeout("navigate") == 200.0
        assert timing.driver_call_timeout("query") == 200.0


class TestMultipliers:
    """Tests for the individual multipliers."""

    @pytest.mark.asyncio
    async def test_history_slow_and_unreliable(self, timing):
        action = TimedAction("click")
        for success in (True, False, False):
            await timing.record_timing_result(action, {}, duration_ms=4000, success=success)

        assert timing.history_multiplier(action, {}) == pytest.approx(1.95)

    @pytest.mark.asyncio
    async def test_history_needs_minimum_samples(self, timing):
        action = TimedAction("click")
        for _ in range(2):
            await timing.record_timing_result(action, {}, duration_ms=9000, success=False)

        assert timing.history_multiplier(action, {}) == 1.0

    @pytest.mark.asyncio
    async def test_history_keyed_by_target_and_host(self, timing):
        action = TimedAction("click", target="#go")
        for _ in range(3):
            await timing.record_timing_result(action, {"url": "https://a.test"}, 9000, False)

        assert timing.history_multiplier(action, {"url": "https://b.test"}) == 1.0
        assert timing.history_key(action, {"url": "https://a.test"}) == "click|#go|a.test"

    def test_context_multiplier_clamped(self, clock):
        timing = AdaptiveTimingController(clock=clock, local_time=lambda: PEAK)

        assert timing.context_multiplier({"browser": "Safari", "device": "mobile"}) == 1.5

    def test_network_latency_tiers(self, timing):
        assert timing.network_multiplier(NetworkConditions(connection_class="wifi", latency_ms=1200)) == 2.0
        assert timing.network_multiplier(
            NetworkConditions(connection_class="4g", latency_ms=300)
        ) == pytest.approx(1.44)

    def test_complexity_tiers(self, timing):
        complexity = PageComplexity(dom_size=2500, script_count=12)

        assert timing.complexity_multiplier(complexity) == pytest.approx(1.82)


class TestCalculateOptimalTimeout:
    """Tests for the signal-refreshing entry point."""

    @pytest.mark.asyncio
    async def test_falls_back_to_base_on_failure(self, timing):
        timing.estimate_timeout = MagicMock(side_effect=RuntimeError("bad signal"))

        decision = await timing.calculate_optimal_timeout("click")

        assert decision.timeout_ms == 5000
        assert decision.strategy is WaitStrategy.ELEMENT_VISIBLE
        assert decision.fallback_strategies == (WaitStrategy.FIXED_TIMEOUT,)

    @pytest.mark.asyncio
    async def test_emits_timeout_calculated(self, clock):
        events = EventDispatcher()
        received = []
        events.subscribe(received.append)
        timing = AdaptiveTimingController(clock=clock, local_time=lambda: OFF_PEAK, events=events)

        await timing.calculate_optimal_timeout({"type": "navigation"})

        assert received[0].type is EventType.TIMEOUT_CALCULATED
        assert received[0].data["action"] == "navigation"
        assert received[0].data["decision"]["timeout_ms"] == 15000

    @pytest.mark.asyncio
    async def test_reads_page_complexity_from_driver(self, timing, driver_factory):
        driver = driver_factory()
        driver.evaluate_result = {"dom_size": 2500, "script_count": 12}

        decision = await timing.calculate_optimal_timeout("click", driver=driver)

        assert timing.profile.complexity.dom_size == 2500
        assert decision.factors["complexity"] == pytest.approx(1.82)

    @pytest.mark.asyncio
    async def test_network_probe_rate_limited(self, clock, instant_sleep):
        probe = AsyncMock(return_value={"connection_class": "4g", "latency_ms": 300})
        timing = AdaptiveTimingController(
            clock=clock, local_time=lambda: OFF_PEAK, network_probe=probe
        )

        await timing.calculate_optimal_timeout("click")
        await timing.calculate_optimal_timeout("click")
        assert probe.await_count == 1

        clock.advance(6)
        await timing.calculate_optimal_timeout("click")
        assert probe.await_count == 2
        assert timing.profile.network.connection_class == "4g"

    @pytest.mark.asyncio
    async def test_failed_probe_keeps_previous_conditions(self, clock):
        probe = AsyncMock(side_effect=ConnectionError("offline"))
        timing = AdaptiveTimingController(clock=clock, network_probe=probe)

        conditions = await timing.update_network_conditions()

        assert conditions == NetworkConditions()


class TestWaitStrategies:
    """Tests for wait strategy selection."""

    @pytest.mark.parametrize(
        "action,context,expected",
        [
            (TimedAction("navigation"), {}, WaitStrategy.DOM_CONTENT_LOADED),
            (TimedAction("navigation"), {"has_ajax": True}, WaitStrategy.NETWORK_IDLE),
            (TimedAction("click", target="button.buy"), {}, WaitStrategy.ELEMENT_STABLE),
            (TimedAction("click", target="#link"), {}, WaitStrategy.ELEMENT_VISIBLE),
            (TimedAction("click"), {"has_ajax": True}, WaitStrategy.NETWORK_IDLE),
            (TimedAction("type"), {}, WaitStrategy.ELEMENT_STABLE),
            (TimedAction("wait", wait_for="element"), {}, WaitStrategy.ELEMENT_VISIBLE),
            (TimedAction("wait", wait_for="ajax"), {}, WaitStrategy.NETWORK_IDLE),
            (TimedAction("wait"), {}, WaitStrategy.FIXED_TIMEOUT),
            (TimedAction("extraction"), {}, WaitStrategy.ELEMENT_VISIBLE),
        ],
    )
    def test_select_wait_strategy(self, timing, action, context, expected):
        assert timing.select_wait_strategy(action, context) is expected

    def test_fallbacks_exclude_primary(self, timing):
        action = TimedAction("click", target="#link")

        fallbacks = timing.fallback_strategies(action, {})

        assert fallbacks == (WaitStrategy.FIXED_TIMEOUT, WaitStrategy.DOM_CONTENT_LOADED)

    def test_fallbacks_limited_to_three(self, timing):
        action = TimedAction("click", target="#link")

        fallbacks = timing.fallback_strategies(action, {"has_ajax": True})

        assert fallbacks == (
            WaitStrategy.FIXED_TIMEOUT,
            WaitStrategy.ELEMENT_VISIBLE,
            WaitStrategy.DOM_CONTENT_LOADED,
        )


class TestDomStability:
    """Tests for wait_for_dom_stability."""

    @pytest.mark.asyncio
    async def test_stable_dom(self, timing, driver_factory, instant_sleep):
        driver = driver_factory()
        driver.evaluate_result = 120

        assert await timing.wait_for_dom_stability(driver) is True
        assert instant_sleep.await_count == 5

    @pytest.mark.asyncio
    async def test_changing_dom_gives_up(self, timing, instant_sleep):
        driver = MagicMock()
        driver.evaluate = AsyncMock(side_effect=itertools.count())

        assert await timing.wait_for_dom_stability(driver, max_checks=10) is False
        assert driver.evaluate.await_count == 10

    @pytest.mark.asyncio
    async def test_driver_failure(self, timing):
        driver = MagicMock()
        driver.evaluate = AsyncMock(side_effect=RuntimeError("page closed"))

        assert await timing.wait_for_dom_stability(driver) is False


class TestHistoryMaintenance:
    """Tests for history retention and persistence."""

    @pytest.mark.asyncio
    async def test_clean_old_history(self, timing, clock):
        await timing.record_timing_result("click", {}, 500, True)
        clock.advance(31 * 86_400)

        assert timing.clean_old_history() == 1
        assert timing.profile.history == {}

    @pytest.mark.asyncio
    async def test_export_import(self, timing, clock):
        await timing.record_timing_result("click", {"url": "https://a.test"}, 500, True, 3000)
        exported = timing.export_timing_history()

        restored = AdaptiveTimingController(clock=clock)
        restored.import_timing_history(exported)

        history = restored.profile.history["click|no-target|a.test"]
        assert history.attempts == 1
        assert history.samples[0].timeout_ms == 3000

    @pytest.mark.asyncio
    async def test_stats(self, timing):
        await timing.record_timing_result("click", {}, 500, True)
        await timing.record_timing_result("click", {}, 500, False)

        stats = timing.get_timing_stats()

        assert stats["total_attempts"] == 2
        assert stats["average_success_rate"] == 0.5


class TestBoundedDriverCalls:
    """Hung driver calls made by the controller give up after the guard timeout."""

    @pytest.fixture
    def bounded(self, clock, instant_sleep):
        return AdaptiveTimingController(
            clock=clock, local_time=lambda: OFF_PEAK, sleep=instant_sleep, driver_call_timeout_ms=20
        )

    @pytest.mark.asyncio
    async def test_dom_stability_with_hung_evaluate(self, bounded, driver_factory):
        driver = driver_factory(hang_on=["evaluate"])

        stable = await asyncio.wait_for(bounded.wait_for_dom_stability(driver), timeout=2)

        assert stable is False

    @pytest.mark.asyncio
    async def test_complexity_scan_with_hung_evaluate(self, bounded, driver_factory):
        driver = driver_factory(hang_on=["evaluate"])

        complexity = await asyncio.wait_for(bounded.analyze_page_complexity(driver), timeout=2)

        assert complexity == PageComplexity()

    @pytest.mark.asyncio
    async def test_network_check_with_hung_evaluate(self, bounded, driver_factory):
        driver = driver_factory(hang_on=["evaluate"])

        conditions = await asyncio.wait_for(bounded.update_network_conditions(driver), timeout=2)

        assert conditions == NetworkConditions()

    @pytest.mark.asyncio
    async def test_hung_network_callable(self, clock):
        async def stalled():
            await asyncio.sleep(3600)

        timing = AdaptiveTimingController(
            clock=clock, network_probe=stalled, driver_call_timeout_ms=20
        )

        conditions = await asyncio.wait_for(timing.update_network_conditions(), timeout=2)

        assert conditions == NetworkConditions()

    @pytest.mark.asyncio
    async def test_calculate_optimal_timeout_with_hung_driver(self, bounded, driver_factory):
        driver = driver_factory(hang_on=["evaluate"])

        decision = await asyncio.wait_for(
            bounded.calculate_optimal_timeout("click", driver=driver), timeout=2
        )

        assert decision.timeout_ms == 3000
