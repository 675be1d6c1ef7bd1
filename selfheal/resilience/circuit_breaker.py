"""
Keyed sliding-window circuit breaker.

Each (target, action) key keeps a bounded deque of failure timestamps. The
circuit for a key is OPEN while the number of failures inside the trailing
window reaches the threshold, and CLOSED again once old failures age out.

Example:
    ```python
    breaker = KeyedCircuitBreaker(failure_threshold=5, window_seconds=600)
    key = breaker.key_for({"url": "https://example.com", "action": "click"})

    if await breaker.can_execute(key):
        try:
            await do_work()
        except Exception:
            await breaker.record_failure(key)
            raise
    ```
"""

import time
from collections import deque
from enum import Enum
from typing import Any, Awaitable, Callable, Deque, Dict, Mapping, Optional, TypeVar

from loguru import logger

from selfheal.constants import CircuitBreakerConfig
from selfheal.core.exceptions import CircuitBreakerOpenError
from selfheal.core.keyed_lock import KeyedLock

T = TypeVar("T")


class CircuitState(Enum):
    """Circuit breaker states."""

    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Failures inside the window reached the threshold


class KeyedCircuitBreaker:
    """Sliding-window failure counter per (target, action) key."""

    def __init__(
        self,
        failure_threshold: int = CircuitBreakerConfig.FAIL_THRESHOLD,
        window_seconds: float = CircuitBreakerConfig.WINDOW_SECONDS,
        max_tracked_failures: int = CircuitBreakerConfig.MAX_TRACKED_FAILURES,
        clock: Callable[[], float] = time.time,
        name: Optional[str] = None,
    ):
        """
        Initialize circuit breaker.

        Args:
            failure_threshold: Failures inside the window that open a circuit
            window_seconds: Length of the trailing window
            max_tracked_failures: Timestamps kept per key
            clock: Time source in seconds
            name: Optional name for logging
        """
        self.failure_threshold = failure_threshold
        self.window_seconds = window_seconds
        self.max_tracked_failures = max(max_tracked_failures, failure_threshold)
        self.name = name or "CircuitBreaker"
        self._clock = clock
        self._failures: Dict[str, Deque[float]] = {}
        self._locks = KeyedLock()
        self._trips = 0

    @staticmethod
    def key_for(context: Mapping[str, Any]) -> str:
        """Circuit key for a caller context: ``<url|target|selector>::<action>``."""
        subject = (
            context.get("url") or context.get("target") or context.get("selector") or "unknown"
        )
        return f"{subject}::{context.get('action') or 'unknown'}"

    def _prune(self, key: str) -> int:
        """Drop failures older than the window. Must be called with the key lock held."""
        failures = self._failures.get(key)
        if not failures:
            return 0
        cutoff = self._clock() - self.window_seconds
        while failures and failures[0] < cutoff:
            failures.popleft()
        if not failures:
            del self._failures[key]
            return 0
        return len(failures)

    async def record_failure(self, key: str) -> CircuitState:
        """Record a failure and return the resulting state."""
        async with self._locks.hold(key):
            was_open = self._prune(key) >= self.failure_threshold
            failures = self._failures.setdefault(key, deque(maxlen=self.max_tracked_failures))
            failures.append(self._clock())
            count = len(failures)
        if count >= self.failure_threshold:
            if not was_open:
                self._trips += 1
                logger.warning(f"{self.name}: Circuit opened for {key} after {count} failures")
            return CircuitState.OPEN
        return CircuitState.CLOSED

    async def state(self, key: str) -> CircuitState:
        async with self._locks.hold(key):
            count = self._prune(key)
        return CircuitState.OPEN if count >= self.failure_threshold else CircuitState.CLOSED

    async def is_open(self, key: str) -> bool:
        return await self.state(key) is CircuitState.OPEN

    async def can_execute(self, key: str) -> bool:
        return await self.state(key) is CircuitState.CLOSED

    async def recent_failures(self, key: str) -> int:
        async with self._locks.hold(key):
            return self._prune(key)

    async def call(self, key: str, func: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        """
        Call a function through the circuit for ``key``.

        Raises:
            CircuitBreakerOpenError: If the circuit is open
            Exception: Original exception from func, after it was counted
        """
        if not await self.can_execute(key):
            raise CircuitBreakerOpenError(key, await self.recent_failures(key))
        try:
            return await func(*args, **kwargs)
        except Exception:
            await self.record_failure(key)
            raise

    async def reset(self, key: Optional[str] = None) -> None:
        """Forget failures for one key, or for every key."""
        if key is None:
            self._failures.clear()
            logger.info(f"{self.name}: All circuits manually reset")
            return
        async with self._locks.hold(key):
            self._failures.pop(key, None)
        logger.info(f"{self.name}: Circuit for {key} manually reset")

    def get_stats(self) -> Dict[str, Any]:
        """
        Get current circuit breaker statistics.

        Returns:
            Dictionary with per-key failure counts and open circuits
        """
        cutoff = self._clock() - self.window_seconds
        counts = {
            key: sum(1 for ts in failures if ts >= cutoff) for key, failures in self._failures.items()
        }
        return {
            "name": self.name,
            "failure_threshold": self.failure_threshold,
            "window_seconds": self.window_seconds,
            "tracked_keys": len(counts),
            "open_circuits": sorted(k for k, c in counts.items() if c >= self.failure_threshold),
            "failures_in_window": counts,
            "times_opened": self._trips,
        }
