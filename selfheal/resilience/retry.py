"""Retry controller built on tenacity.

Attempts of one logical call run strictly in sequence. Between attempts the
controller classifies the failure and runs recovery; a successful recovery
feeds its context changes into the next attempt without an extra delay, a
failed one falls back to the policy's jittered backoff.
"""

import asyncio
import inspect
import uuid
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Tuple, TypeVar

from loguru import logger
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt

from selfheal.core.enums import EventType, RecoveryAction
from selfheal.core.events import EventDispatcher
from selfheal.core.exceptions import OperationCancelledError, RetryExhaustedError
from selfheal.core.logger import operation_id_ctx
from selfheal.models.classification import ErrorClassification
from selfheal.models.recovery import RecoveryOutcome
from selfheal.resilience.backoff import RetryPolicy
from selfheal.utils.keys import normalize_keys

T = TypeVar("T")

Operation = Callable[[int, Mapping[str, Any]], Awaitable[T]]
OnRetry = Callable[[BaseException, int, float], Any]
RecoveryHandler = Callable[
    [BaseException, Mapping[str, Any], int, Any],
    Awaitable[Tuple[ErrorClassification, RecoveryOutcome]],
]
Sleep = Callable[[float], Awaitable[Any]]


@dataclass
class RetryState:
    """Mutable bookkeeping for one logical call."""

    context: Dict[str, Any]
    attempts: int = 0
    recovery_attempts: int = 0
    next_delay_ms: float = 0.0
    stop: bool = False
    circuit_breaker_engaged: bool = False
    classification: Optional[ErrorClassification] = None
    last_error: Optional[BaseException] = None
    trace: List[Dict[str, Any]] = field(default_factory=list)

    def snapshot(self) -> Mapping[str, Any]:
        return MappingProxyType(dict(self.context))


def _is_retryable(error: BaseException) -> bool:
    return isinstance(error, Exception) and not isinstance(error, OperationCancelledError)


class RetryController:
    """Run an async operation under a retry policy with recovery between attempts."""

    def __init__(
        self,
        policy: Optional[RetryPolicy] = None,
        recovery_handler: Optional[RecoveryHandler] = None,
        circuit_breaker: Any = None,
        events: Optional[EventDispatcher] = None,
        sleep: Optional[Sleep] = None,
        rng: Optional[Callable[[], float]] = None,
        enable_recovery: bool = True,
    ):
        """
        Initialize retry controller.

        Args:
            policy: Default retry policy
            recovery_handler: Async ``(error, context, attempt, driver)`` returning
                the classification and recovery outcome for a failure
            circuit_breaker: KeyedCircuitBreaker that records every failure
            events: Dispatcher for retry-attempt events
            sleep: Async sleep taking seconds; ``asyncio.sleep`` when None
            rng: Uniform [0, 1) source for jitter
            enable_recovery: Run recovery between attempts by default
        """
        self.policy = policy or RetryPolicy()
        self.recovery_handler = recovery_handler
        self.circuit_breaker = circuit_breaker
        self.events = events or EventDispatcher()
        self.enable_recovery = enable_recovery
        self._sleep = sleep or asyncio.sleep
        self._rng = rng
        self._stats = {"total": 0, "successful": 0, "failed": 0, "average_attempts": 0.0}

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def retry_with_backoff(
        self,
        operation: Operation,
        options: Optional[Mapping[str, Any]] = None,
        on_retry: Optional[OnRetry] = None,
        cancel_event: Optional[asyncio.Event] = None,
        context: Optional[Mapping[str, Any]] = None,
    ) -> Any:
        """
        Retry without recovery.

        Args:
            operation: Async ``(attempt, context)`` callable
            options: Per-call policy overrides (``maxAttempts``, ``baseDelay``...)
            on_retry: Called with ``(error, attempt, delay_ms)`` before each retry
            cancel_event: Setting it stops further attempts
            context: Context snapshot passed to the operation

        Returns:
            The operation's result

        Raises:
            Exception: The last error, unchanged, once attempts run out
            OperationCancelledError: If ``cancel_event`` was set
        """
        state = RetryState(context=normalize_keys(context or {}))
        return await self._run(
            operation, state, self.policy.with_overrides(options), on_retry, cancel_event, False, None
        )

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
        Retry with classification and recovery between attempts.

        Raises:
            RetryExhaustedError: Chained from the last error once attempts run
                out or recovery stops the sequence
            OperationCancelledError: If ``cancel_event`` was set
        """
        state = RetryState(context=normalize_keys(context or {}))
        token = operation_id_ctx.set(str(state.context.get("operation_id") or uuid.uuid4().hex[:12]))
        try:
            return await self._run(
                operation,
                state,
                self.policy.with_overrides(options),
                on_retry,
                cancel_event,
                self.enable_recovery,
                driver,
            )
        except OperationCancelledError:
            raise
        except Exception as e:
            raise RetryExhaustedError(
                e,
                attempts=state.attempts,
                recovery_attempts=state.recovery_attempts,
                classification=state.classification,
                circuit_breaker_engaged=state.circuit_breaker_engaged,
                trace=state.trace,
            ) from e
        finally:
            operation_id_ctx.reset(token)

    async def run(
        self,
        operation: Operation,
        context: Optional[Mapping[str, Any]] = None,
        policy: Optional[RetryPolicy] = None,
        on_retry: Optional[OnRetry] = None,
        cancel_event: Optional[asyncio.Event] = None,
        recover: Optional[bool] = None,
        driver: Any = None,
    ) -> Any:
        """Run ``operation`` and re-raise its last error unchanged on exhaustion."""
        state = RetryState(context=normalize_keys(context or {}))
        recover = self.enable_recovery if recover is None else recover
        return await self._run(
            operation, state, policy or self.policy, on_retry, cancel_event, recover, driver
        )

    def get_retry_stats(self) -> Dict[str, Any]:
        stats = dict(self._stats)
        stats["success_rate"] = stats["successful"] / stats["total"] if stats["total"] else 0.0
        return stats

    def reset_stats(self) -> None:
        self._stats = {"total": 0, "successful": 0, "failed": 0, "average_attempts": 0.0}

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _cancellable_sleep(self, cancel_event: Optional[asyncio.Event], state: RetryState) -> Sleep:
        async def sleep(seconds: float) -> None:
            if cancel_event is None:
                await self._sleep(seconds)
                return
            if cancel_event.is_set():
                raise OperationCancelledError(state.attempts)
            sleeper = asyncio.ensure_future(self._sleep(seconds))
            waiter = asyncio.ensure_future(cancel_event.wait())
            try:
                await asyncio.wait({sleeper, waiter}, return_when=asyncio.FIRST_COMPLETED)
            finally:
                for task in (sleeper, waiter):
                    if not task.done():
                        task.cancel()
            if cancel_event.is_set():
                raise OperationCancelledError(state.attempts)

        return sleep

    @staticmethod
    def _log_before_sleep(retry_state: RetryCallState) -> None:
        outcome = retry_state.outcome
        error = outcome.exception() if outcome is not None else None
        action = retry_state.next_action
        delay = action.sleep if action is not None else 0.0
        logger.warning(
            f"Attempt {retry_state.attempt_number} failed ({type(error).__name__}: {error}), "
            f"retrying in {delay:.2f}s"
        )

    async def _run(
        self,
        operation: Operation,
        state: RetryState,
        policy: RetryPolicy,
        on_retry: Optional[OnRetry],
        cancel_event: Optional[asyncio.Event],
        recover: bool,
        driver: Any,
    ) -> Any:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(policy.max_attempts) | (lambda _: state.stop),
            wait=lambda _: state.next_delay_ms / 1000,
            retry=retry_if_exception(_is_retryable),
            sleep=self._cancellable_sleep(cancel_event, state),
            before_sleep=self._log_before_sleep,
            reraise=True,
        )

        try:
            async for attempt in retrying:
                with attempt:
                    state.attempts = attempt.retry_state.attempt_number
                    if cancel_event is not None and cancel_event.is_set():
                        raise OperationCancelledError(state.attempts - 1)
                    try:
                        result = await operation(state.attempts, state.snapshot())
                    except Exception as e:
                        await self._handle_failure(
                            e, state, policy, on_retry, recover, driver
                        )
                        raise
        except OperationCancelledError:
            logger.info(f"Operation cancelled after {state.attempts} attempts")
            raise
        except Exception:
            self._update_stats(False, state.attempts)
            raise

        self._update_stats(True, state.attempts)
        return result

    async def _handle_failure(
        self,
        error: Exception,
        state: RetryState,
        policy: RetryPolicy,
        on_retry: Optional[OnRetry],
        recover: bool,
        driver: Any,
    ) -> None:
        attempt = state.attempts
        state.last_error = error
        entry: Dict[str, Any] = {"attempt": attempt, "error": f"{type(error).__name__}: {error}"}

        if self.circuit_breaker is not None:
            await self.circuit_breaker.record_failure(self.circuit_breaker.key_for(state.context))

        if attempt >= policy.max_attempts:
            state.trace.append(entry)
            return

        delay_ms: Optional[float] = None
        if recover and self.recovery_handler is not None:
            state.recovery_attempts += 1
            classification, outcome = await self.recovery_handler(
                error, state.snapshot(), attempt, driver
            )
            state.classification = classification
            entry.update(
                {
                    "classification": classification.type.value,
                    "recovery_strategy": outcome.strategy,
                    "recovery_action": outcome.action.value,
                    "recovered": outcome.success,
                }
            )
            if outcome.success:
                state.context.update(outcome.context_updates)
                if outcome.data:
                    state.context["recovery"] = dict(outcome.data)
                delay_ms = 0.0
            elif outcome.circuit_broken or (
                outcome.action is RecoveryAction.ESCALATE and not classification.recoverable
            ):
                state.stop = True
                state.circuit_breaker_engaged = outcome.circuit_broken
                entry["stopped"] = outcome.reason
                state.trace.append(entry)
                logger.warning(f"Retry sequence stopped after attempt {attempt}: {outcome.reason}")
                return

        if delay_ms is None:
            delay_ms = policy.compute_delay(attempt, self._rng)
        state.next_delay_ms = delay_ms
        entry["delay_ms"] = round(delay_ms, 2)
        state.trace.append(entry)

        if on_retry is not None:
            result = on_retry(error, attempt, delay_ms)
            if inspect.isawaitable(result):
                await result
        await self.events.emit(
            EventType.RETRY_ATTEMPT,
            {
                "attempt": attempt,
                "max_attempts": policy.max_attempts,
                "delay_ms": delay_ms,
                "error": str(error),
            },
        )

    def _update_stats(self, success: bool, attempts: int) -> None:
        stats = self._stats
        stats["total"] += 1
        stats["successful" if success else "failed"] += 1
        stats["average_attempts"] = (
            stats["average_attempts"] * (stats["total"] - 1) + attempts
        ) / stats["total"]
