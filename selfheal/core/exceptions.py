"""Custom exception classes for the resilience engine."""

from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Dict, List, Optional

if TYPE_CHECKING:
    from selfheal.models.classification import ErrorClassification


class ResilienceError(Exception):
    """Base exception for the resilience engine."""

    def __init__(
        self, message: str, recoverable: bool = True, details: Optional[Dict[str, Any]] = None
    ):
        """
        Initialize resilience error.

        Args:
            message: Error message
            recoverable: Whether the error is recoverable with retry
            details: Additional error details
        """
        self.message = message
        self.recoverable = recoverable
        self.details = details or {}
        self.timestamp = datetime.now(timezone.utc).isoformat()
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary."""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "recoverable": self.recoverable,
            "details": self.details,
            "timestamp": self.timestamp,
        }


class ConfigurationError(ResilienceError):
    """Invalid engine configuration."""

    def __init__(self, message: str = "Invalid configuration", field: Optional[str] = None):
        details = {"field": field} if field else {}
        super().__init__(message, recoverable=False, details=details)


class ElementNotFoundError(ResilienceError):
    """Every locator strategy failed to produce an interactable element."""

    def __init__(self, selector_name: str, attempts: Optional[List[Dict[str, Any]]] = None):
        """
        Initialize element not found error.

        Args:
            selector_name: Primary selector or descriptor name that was searched for
            attempts: Per-strategy trace (strategy, duration_ms, success, error)
        """
        self.selector_name = selector_name
        self.attempts = attempts or []
        message = (
            f"Element not found after trying {len(self.attempts)} strategies "
            f"for selector: {selector_name}"
        )
        super().__init__(
            message,
            recoverable=True,
            details={"selector": selector_name, "attempts": self.attempts},
        )


class DriverTimeoutError(ResilienceError):
    """A driver call exceeded its guard timeout."""

    def __init__(self, operation: str, timeout_ms: float):
        self.operation = operation
        self.timeout_ms = timeout_ms
        super().__init__(
            f"Timeout: driver call '{operation}' exceeded {timeout_ms:.0f}ms",
            recoverable=True,
            details={"operation": operation, "timeout_ms": timeout_ms},
        )


class CircuitBreakerOpenError(ResilienceError):
    """Circuit breaker is open for a (target, action) key."""

    def __init__(self, key: str, failures: int = 0):
        self.key = key
        self.failures = failures
        super().__init__(
            f"Circuit breaker open for {key} ({failures} recent failures)",
            recoverable=False,
            details={"key": key, "failures": failures},
        )


class OperationCancelledError(ResilienceError):
    """The caller cancelled a recovery-wrapped operation."""

    def __init__(self, attempts: int = 0, message: str = "Operation cancelled by caller"):
        self.attempts = attempts
        super().__init__(message, recoverable=False, details={"attempts": attempts})


class RetryExhaustedError(ResilienceError):
    """All attempts and recovery strategies were exhausted."""

    def __init__(
        self,
        original_error: BaseException,
        attempts: int,
        recovery_attempts: int,
        classification: Optional["ErrorClassification"] = None,
        circuit_breaker_engaged: bool = False,
        trace: Optional[List[Dict[str, Any]]] = None,
    ):
        """
        Initialize retry exhausted error.

        Args:
            original_error: Last error raised by the wrapped operation
            attempts: Number of times the operation was invoked
            recovery_attempts: Number of attempts that invoked recovery
            classification: Classification of the last error, if computed
            circuit_breaker_engaged: Whether a circuit breaker stopped the sequence
            trace: Per-attempt trace for post-mortem use
        """
        self.original_error = original_error
        self.attempts = attempts
        self.recovery_attempts = recovery_attempts
        self.classification = classification
        self.circuit_breaker_engaged = circuit_breaker_engaged
        self.trace = trace or []
        message = (
            f"Operation failed after {attempts} attempts "
            f"({recovery_attempts} with recovery): {original_error}"
        )
        if circuit_breaker_engaged:
            message += " [circuit breaker engaged]"
        super().__init__(
            message,
            recoverable=False,
            details={
                "original_error": f"{type(original_error).__name__}: {original_error}",
                "classification": classification.to_dict() if classification else None,
                "attempts": attempts,
                "recovery_attempts": recovery_attempts,
                "circuit_breaker_engaged": circuit_breaker_engaged,
                "trace": self.trace,
            },
        )
