"""Adaptive timing controller.

Predicts how long to wait for an action before declaring failure, from
network conditions, page complexity, recorded history and the runtime
context, and picks the wait strategy to use.
"""

import asyncio
import time
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Tuple, Union
from urllib.parse import urlparse

from loguru import logger

from selfheal.constants import History, Intervals, Stability, Timeouts
from selfheal.constants import timing as tc
from selfheal.core.enums import EventType, WaitStrategy
from selfheal.core.events import EventDispatcher
from selfheal.core.keyed_lock import KeyedLock
from selfheal.driver import call_with_timeout, guard_driver
from selfheal.models.timing import (
    NetworkConditions,
    PageComplexity,
    TimeoutDecision,
    TimingHistory,
    TimingProfile,
    TimingSample,
)

NetworkProbe = Callable[[], Awaitable[Union[NetworkConditions, Mapping[str, Any]]]]

_NETWORK_SCRIPT = """
() => {
    const c = navigator.connection || {};
    return {
        connection_class: c.type === 'wifi' ? 'wifi' : (c.effectiveType || 'unknown'),
        latency_ms: typeof c.rtt === 'number' ? c.rtt : 0,
        online: navigator.onLine !== false
    };
}
"""

_COMPLEXITY_SCRIPT = """
() => {
    const q = s => document.querySelectorAll(s).length;
    const dynamic = [
        q('[data-react-root], [data-reactroot]') > 0,
        q('[ng-app], [data-ng-app]') > 0,
        q('[data-vue-root]') > 0,
        window.jQuery !== undefined,
        window.React !== undefined,
        window.Vue !== undefined,
        window.angular !== undefined
    ].some(Boolean);
    const nav = performance.getEntriesByType('navigation')[0];
    return {
        dom_size: q('*'),
        script_count: q('script'),
        style_count: q('link[rel="stylesheet"], style'),
        image_count: q('img'),
        dynamic_content: dynamic,
        active_ajax: nav && nav.loadEventEnd === 0 ? 1 : 0
    };
}
"""

_DOM_SIZE_SCRIPT = "() => document.querySelectorAll('*').length"

# Driver operations mapped to the action type whose prediction guards them
_OPERATION_ACTIONS: Dict[str, str] = {
    "navigate": "navigation",
    "reload": "navigation",
    "screenshot": "extraction",
    "describe": "extraction",
    "evaluate": "extraction",
    "query_all": "extraction",
    "query_all_visible": "extraction",
}


@dataclass(frozen=True)
class TimedAction:
    """An upcoming action to predict a timeout for."""

    type: str
    target: str = ""
    wait_for: Optional[str] = None

    @classmethod
    def coerce(cls, value: Union["TimedAction", str, Mapping[str, Any]]) -> "TimedAction":
        if isinstance(value, TimedAction):
            return value
        if isinstance(value, str):
            return cls(type=value)
        return cls(
            type=str(value.get("type") or tc.DEFAULT_ACTION_TYPE),
            target=str(value.get("target") or value.get("selector") or ""),
            wait_for=value.get("wait_for") or value.get("waitFor"),
        )


def _clamp(value: float, bounds: Tuple[float, float]) -> float:
    low, high = bounds
    return max(low, min(value, high))


def _tier(value: float, tiers: Tuple[Tuple[int, float], ...]) -> float:
    for threshold, multiplier in tiers:
        if value > threshold:
            return multiplier
    return 1.0


class AdaptiveTimingController:
    """Compute timeouts and wait strategies from live signals and history."""

    def __init__(
        self,
        base_timeout_ms: int = Timeouts.BASE,
        min_timeout_ms: int = Timeouts.MIN,
        max_timeout_ms: int = Timeouts.MAX,
        network_check_interval_ms: int = Intervals.NETWORK_CHECK,
        complexity_analysis_interval_ms: int = Intervals.COMPLEXITY_ANALYSIS,
        history_retention_days: int = Intervals.HISTORY_RETENTION_DAYS,
        network_probe: Optional[NetworkProbe] = None,
        events: Optional[EventDispatcher] = None,
        clock: Callable[[], float] = time.time,
        local_time: Callable[[], datetime] = datetime.now,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        driver_call_timeout_ms: Optional[float] = None,
    ):
        """
        Initialize adaptive timing controller.

        Args:
            base_timeout_ms: Fallback timeout when prediction fails
            min_timeout_ms: Lower bound of any prediction
            max_timeout_ms: Upper bound of any prediction
            network_check_interval_ms: Minimum interval between network probes
            complexity_analysis_interval_ms: Minimum interval between page scans
            history_retention_days: History entries idle longer than this are pruned
            network_probe: Async callable returning current network conditions;
                defaults to reading ``navigator.connection`` through the driver
            events: Dispatcher receiving ``timeout-calculated`` events
            clock: Wall clock in seconds, injectable for tests
            local_time: Local datetime source for time-of-day adjustments
            sleep: Async sleep used by the DOM stability wait
            driver_call_timeout_ms: Upper bound on the guard of any single driver
                call; the prediction alone when None
        """
        self.base_timeout_ms = base_timeout_ms
        self.min_timeout_ms = min_timeout_ms
        self.max_timeout_ms = max_timeout_ms
        self.network_check_interval_ms = network_check_interval_ms
        self.complexity_analysis_interval_ms = complexity_analysis_interval_ms
        self.history_retention_days = history_retention_days
        self.network_probe = network_probe
        self.events = events
        self._clock = clock
        self._local_time = local_time
        self._sleep = sleep
        self.driver_call_timeout_ms = driver_call_timeout_ms

        self.profile = TimingProfile()
        self._locks = KeyedLock()

    # ------------------------------------------------------------------
    # Signal refresh
    # ------------------------------------------------------------------

    async def update_network_conditions(self, driver: Any = None) -> NetworkConditions:
        """Probe the network unless the last probe is still fresh."""
        async with self._locks.hold("network"):
            now = self._clock()
            current = self.profile.network
            if (now - current.last_check) * 1000 < self.network_check_interval_ms:
                return current
            if self.network_probe is None and driver is None:
                return current

            try:
                if self.network_probe is not None:
                    result = await call_with_timeout(
                        self.network_probe(), "network_check", self.driver_call_timeout("evaluate")
                    )
                else:
                    result = await self.guard(driver).evaluate(_NETWORK_SCRIPT)
            except Exception as e:
                logger.warning(f"Network condition check failed: {e}")
                return current

            if isinstance(result, NetworkConditions):
                conditions = replace(result, last_check=now)
            else:
                data = result or {}
                conditions = NetworkConditions(
                    latency_ms=float(data.get("latency_ms", 0.0) or 0.0),
                    connection_class=str(data.get("connection_class") or "unknown"),
                    online=bool(data.get("online", True)),
                    last_check=now,
                )
            self.profile.network = conditions
            return conditions

    async def analyze_page_complexity(self, driver: Any = None) -> PageComplexity:
        """Scan the page unless the last scan is within the analysis interval."""
        if driver is None:
            return self.profile.complexity
        async with self._locks.hold("complexity"):
            now = self._clock()
            current = self.profile.complexity
            if (now - current.last_analysis) * 1000 < self.complexity_analysis_interval_ms:
                return current
            try:
                data = await self.guard(driver).evaluate(_COMPLEXITY_SCRIPT) or {}
            except Exception as e:
                logger.warning(f"Page complexity analysis failed: {e}")
                return current

            complexity = PageComplexity(
                dom_size=int(data.get("dom_size", 0)),
                script_count=int(data.get("script_count", 0)),
                style_count=int(data.get("style_count", 0)),
                image_count=int(data.get("image_count", 0)),
                dynamic_content=bool(data.get("dynamic_content", False)),
                active_ajax=int(data.get("active_ajax", 0)),
                last_analysis=now,
            )
            self.profile.complexity = complexity
            return complexity

    # ------------------------------------------------------------------
    # Multipliers
    # ------------------------------------------------------------------

    def network_multiplier(self, conditions: Optional[NetworkConditions] = None) -> float:
        conditions = conditions or self.profile.network
        multiplier = tc.CONNECTION_MULTIPLIERS.get(
            conditions.connection_class, tc.DEFAULT_CONNECTION_MULTIPLIER
        )
        multiplier *= _tier(conditions.latency_ms, tc.LATENCY_TIERS)
        if not conditions.online:
            multiplier *= tc.OFFLINE_MULTIPLIER
        return _clamp(multiplier, tc.NETWORK_CLAMP)

    def complexity_multiplier(self, complexity: Optional[PageComplexity] = None) -> float:
        complexity = complexity or self.profile.complexity
        multiplier = _tier(complexity.dom_size, tc.DOM_SIZE_TIERS)
        multiplier *= _tier(complexity.script_count, tc.SCRIPT_COUNT_TIERS)
        if complexity.dynamic_content:
            multiplier *= tc.DYNAMIC_CONTENT_MULTIPLIER
        if complexity.active_ajax > 0:
            multiplier *= tc.ACTIVE_AJAX_MULTIPLIER
        return _clamp(multiplier, tc.COMPLEXITY_CLAMP)

    def history_multiplier(self, action: TimedAction, context: Mapping[str, Any]) -> float:
        """Compare recorded success rate and mean duration against the baseline."""
        history = self.profile.history.get(self.history_key(action, context))
        if history is None or len(history.samples) < History.MIN_SAMPLES:
            return 1.0

        base = tc.ACTION_BASELINES.get(action.type, self.base_timeout_ms)
        average = sum(s.duration_ms for s in history.samples) / len(history.samples)

        multiplier = 1.0
        if history.success_rate < 0.7:
            multiplier *= 1.5
        elif history.success_rate > 0.95:
            multiplier *= 0.9

        if average > base * 1.5:
            multiplier *= 1.3
        elif average < base * 0.5:
            multiplier *= 0.8
        return _clamp(multiplier, tc.HISTORY_CLAMP)

    def context_multiplier(self, context: Mapping[str, Any]) -> float:
        multiplier = 1.0
        start, end = tc.PEAK_HOURS
        if start <= self._local_time().hour <= end:
            multiplier *= tc.PEAK_HOURS_MULTIPLIER
        browser = str(context.get("browser") or "").lower()
        multiplier *= tc.BROWSER_MULTIPLIERS.get(browser, 1.0)
        device = str(context.get("device") or "").lower()
        multiplier *= tc.DEVICE_MULTIPLIERS.get(device, 1.0)
        return _clamp(multiplier, tc.CONTEXT_CLAMP)

    # ------------------------------------------------------------------
    # Strategy selection
    # ------------------------------------------------------------------

    def _has_ajax(self, context: Mapping[str, Any]) -> bool:
        return bool(context.get("has_ajax")) or self.profile.complexity.active_ajax > 0

    def select_wait_strategy(self, action: TimedAction, context: Mapping[str, Any]) -> WaitStrategy:
        has_ajax = self._has_ajax(context)
        if action.type == "navigation":
            if has_ajax or self.profile.complexity.dynamic_content:
                return WaitStrategy.NETWORK_IDLE
            return WaitStrategy.DOM_CONTENT_LOADED
        if action.type == "click":
            if has_ajax:
                return WaitStrategy.NETWORK_IDLE
            if "button" in action.target:
                return WaitStrategy.ELEMENT_STABLE
            return WaitStrategy.ELEMENT_VISIBLE
        if action.type == "type":
            return WaitStrategy.ELEMENT_STABLE
        if action.type == "wait":
            if action.wait_for == "element":
                return WaitStrategy.ELEMENT_VISIBLE
            if action.wait_for == "ajax":
                return WaitStrategy.NETWORK_IDLE
            return WaitStrategy.FIXED_TIMEOUT
        return WaitStrategy.ELEMENT_VISIBLE

    def fallback_strategies(
        self, action: TimedAction, context: Mapping[str, Any], primary: Optional[WaitStrategy] = None
    ) -> Tuple[WaitStrategy, ...]:
        """Up to three complementary strategies, never repeating the primary."""
        primary = primary or self.select_wait_strategy(action, context)
        fallbacks: List[WaitStrategy] = []
        if primary is not WaitStrategy.FIXED_TIMEOUT:
            fallbacks.append(WaitStrategy.FIXED_TIMEOUT)
        if primary is not WaitStrategy.ELEMENT_VISIBLE and action.target:
            fallbacks.append(WaitStrategy.ELEMENT_VISIBLE)
        if primary is not WaitStrategy.NETWORK_IDLE and self._has_ajax(context):
            fallbacks.append(WaitStrategy.NETWORK_IDLE)
        if primary is not WaitStrategy.DOM_CONTENT_LOADED:
            fallbacks.append(WaitStrategy.DOM_CONTENT_LOADED)
        return tuple(fallbacks[:3])

    # ------------------------------------------------------------------
    # Prediction
    # ------------------------------------------------------------------

    def estimate_timeout(
        self,
        action: Union[TimedAction, str, Mapping[str, Any]],
        context: Optional[Mapping[str, Any]] = None,
    ) -> TimeoutDecision:
        """
        Predict a timeout from the signals already measured.

        Does not touch the driver. ``calculate_optimal_timeout`` refreshes the
        signals first and then delegates here.
        """
        action = TimedAction.coerce(action)
        context = context or {}
        base = tc.ACTION_BASELINES.get(action.type, tc.ACTION_BASELINES[tc.DEFAULT_ACTION_TYPE])
        factors = {
            "base": float(base),
            "network": self.network_multiplier(),
            "complexity": self.complexity_multiplier(),
            "history": self.history_multiplier(action, context),
            "context": self.context_multiplier(context),
        }
        timeout = base
        for name in ("network", "complexity", "history", "context"):
            timeout *= factors[name]
        timeout = max(self.min_timeout_ms, min(timeout, self.max_timeout_ms))

        strategy = self.select_wait_strategy(action, context)
        return TimeoutDecision(
            timeout_ms=int(round(timeout)),
            strategy=strategy,
            fallback_strategies=self.fallback_strategies(action, context, strategy),
            factors=factors,
        )

    async def calculate_optimal_timeout(
        self,
        action: Union[TimedAction, str, Mapping[str, Any]],
        context: Optional[Mapping[str, Any]] = None,
        driver: Any = None,
    ) -> TimeoutDecision:
        """
        Predict timeout and wait strategy for an upcoming action.

        Args:
            action: Action type name, ``TimedAction`` or mapping with
                ``type``/``target``/``wait_for``
            context: Runtime context (``url``, ``browser``, ``device``, ``has_ajax``)
            driver: Optional ``BrowserDriver`` used to refresh network and page signals

        Returns:
            Timeout decision; on internal failure the base timeout with
            ``element-visible`` and a ``fixed-timeout`` fallback
        """
        context = context or {}
        try:
            await self.update_network_conditions(driver)
            await self.analyze_page_complexity(driver)
            decision = self.estimate_timeout(action, context)
        except Exception as e:
            logger.warning(f"Timeout calculation failed, using default: {e}")
            decision = TimeoutDecision(
                timeout_ms=self.base_timeout_ms,
                strategy=WaitStrategy.ELEMENT_VISIBLE,
                fallback_strategies=(WaitStrategy.FIXED_TIMEOUT,),
                reasoning=(f"calculation failed: {e}",),
            )

        if self.events is not None:
            await self.events.emit(
                EventType.TIMEOUT_CALCULATED,
                {"action": TimedAction.coerce(action).type, "decision": decision.to_dict()},
            )
        return decision

    def driver_call_timeout(self, operation: str) -> float:
        """Guard timeout in ms for a single driver call, from current signals."""
        action = _OPERATION_ACTIONS.get(operation, "wait")
        timeout_ms = float(self.estimate_timeout(action).timeout_ms)
        if self.driver_call_timeout_ms is not None:
            timeout_ms = min(timeout_ms, float(self.driver_call_timeout_ms))
        return timeout_ms

    def guard(self, driver: Any) -> Any:
        """Bound every call on ``driver`` by ``driver_call_timeout``."""
        return guard_driver(driver, self.driver_call_timeout)

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    def history_key(self, action: TimedAction, context: Mapping[str, Any]) -> str:
        target = action.target[: History.TARGET_KEY_LENGTH] if action.target else "no-target"
        host = urlparse(str(context.get("url") or "")).hostname or "unknown-host"
        return f"{action.type}|{target}|{host}"

    async def record_timing_result(
        self,
        action: Union[TimedAction, str, Mapping[str, Any]],
        context: Optional[Mapping[str, Any]],
        duration_ms: float,
        success: bool,
        timeout_ms: float = 0.0,
    ) -> None:
        """Record an action outcome for future history multipliers."""
        action = TimedAction.coerce(action)
        context = context or {}
        key = self.history_key(action, context)
        async with self._locks.hold(key):
            history = self.profile.history.setdefault(key, TimingHistory())
            history.record(
                TimingSample(
                    duration_ms=duration_ms,
                    success=success,
                    timestamp=self._clock(),
                    timeout_ms=timeout_ms,
                )
            )
        self.clean_old_history()

    def clean_old_history(self) -> int:
        """Drop entries idle beyond the retention window. Returns the count removed."""
        cutoff = self._clock() - self.history_retention_days * 86_400
        stale = [k for k, h in self.profile.history.items() if h.last_update < cutoff]
        for key in stale:
            del self.profile.history[key]
        if stale:
            logger.debug(f"Pruned {len(stale)} stale timing history entries")
        return len(stale)

    # ------------------------------------------------------------------
    # Readiness
    # ------------------------------------------------------------------

    async def wait_for_dom_stability(
        self,
        driver: Any,
        check_interval_ms: int = Intervals.STABILITY_POLL,
        stability_threshold_ms: int = Stability.THRESHOLD_MS,
        max_checks: int = Stability.MAX_CHECKS,
    ) -> bool:
        """
        Poll the DOM node count until it stops changing.

        Returns:
            True once the count has been unchanged for ``stability_threshold_ms``;
            False after ``max_checks`` polls or if the driver call fails
        """
        driver = self.guard(driver)
        required = max(1, stability_threshold_ms // max(check_interval_ms, 1))
        last_size: Optional[int] = None
        stable = 0
        for _ in range(max_checks):
            try:
                size = int(await driver.evaluate(_DOM_SIZE_SCRIPT))
            except Exception as e:
                logger.debug(f"DOM stability check failed: {e}")
                return False
            if size == last_size:
                stable += 1
                if stable >= required:
                    return True
            else:
                stable = 0
                last_size = size
            await self._sleep(check_interval_ms / 1000.0)
        return False

    # ------------------------------------------------------------------
    # Stats and persistence
    # ------------------------------------------------------------------

    def get_timing_stats(self) -> Dict[str, Any]:
        total_attempts = sum(h.attempts for h in self.profile.history.values())
        total_successes = sum(h.successes for h in self.profile.history.values())
        return {
            "history_entries": len(self.profile.history),
            "total_attempts": total_attempts,
            "total_successes": total_successes,
            "average_success_rate": total_successes / total_attempts if total_attempts else 0.0,
            "network_conditions": self.profile.network.to_dict(),
            "page_complexity": self.profile.complexity.to_dict(),
        }

    def export_timing_history(self) -> Dict[str, Any]:
        return {
            "history": {k: h.to_dict() for k, h in self.profile.history.items()},
            "network_conditions": self.profile.network.to_dict(),
            "page_complexity": self.profile.complexity.to_dict(),
            "timestamp": self._clock(),
        }

    def import_timing_history(self, data: Mapping[str, Any]) -> None:
        if data.get("history") is not None:
            self.profile.history = {
                k: TimingHistory.from_dict(v) for k, v in data["history"].items()
            }
        if data.get("network_conditions"):
            self.profile.network = NetworkConditions(**data["network_conditions"])
        if data.get("page_complexity"):
            self.profile.complexity = PageComplexity(**data["page_complexity"])
        logger.info(f"Imported timing history ({len(self.profile.history)} entries)")

    def clear_timing_data(self) -> None:
        self.profile.history.clear()
