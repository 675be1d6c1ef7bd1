"""Core infrastructure module."""

from .config import EngineSettings
from .enums import (
    ErrorCategory,
    ErrorType,
    EventType,
    LocatorStrategy,
    RecoveryAction,
    Severity,
    WaitStrategy,
)
from .events import EngineEvent, EngineObserver, EventDispatcher
from .exceptions import (
    # Base exception
    ResilienceError,
    # Configuration
    ConfigurationError,
    # Locator
    ElementNotFoundError,
    DriverTimeoutError,
    # Circuit breaker
    CircuitBreakerOpenError,
    # Retry
    OperationCancelledError,
    RetryExhaustedError,
)
from .keyed_lock import KeyedLock
from .logger import setup_logging

__all__ = [
    "EngineSettings",
    "ErrorCategory",
    "ErrorType",
    "EventType",
    "LocatorStrategy",
    "RecoveryAction",
    "Severity",
    "WaitStrategy",
    "EngineEvent",
    "EngineObserver",
    "EventDispatcher",
    "ResilienceError",
    "ConfigurationError",
    "ElementNotFoundError",
    "DriverTimeoutError",
    "CircuitBreakerOpenError",
    "OperationCancelledError",
    "RetryExhaustedError",
    "KeyedLock",
    "setup_logging",
]
