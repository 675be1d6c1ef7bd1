"""Centralized enum definitions for the resilience engine."""

from enum import Enum


class ErrorType(str, Enum):
    """Closed set of failure kinds produced by the classifier."""

    ELEMENT_NOT_FOUND = "element-not-found"
    TIMEOUT = "timeout"
    NETWORK_ERROR = "network-error"
    PERMISSION_DENIED = "permission-denied"
    PAGE_ERROR = "page-error"
    DATA_ERROR = "data-error"
    RESOURCE_ERROR = "resource-error"
    UNKNOWN = "unknown"

    @classmethod
    def values(cls) -> list:
        """Return list of all enum values."""
        return [e.value for e in cls]


class ErrorCategory(str, Enum):
    """Error taxonomy. Security is never recoverable."""

    ELEMENT = "element"
    TIMING = "timing"
    NETWORK = "network"
    SECURITY = "security"
    BROWSER = "browser"
    DATA = "data"
    SYSTEM = "system"
    UNKNOWN = "unknown"

    @property
    def recoverable(self) -> bool:
        return self is not ErrorCategory.SECURITY

    @classmethod
    def values(cls) -> list:
        """Return list of all enum values."""
        return [e.value for e in cls]


class Severity(str, Enum):
    """Severity of a classified failure."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @classmethod
    def values(cls) -> list:
        """Return list of all enum values."""
        return [e.value for e in cls]


class RecoveryAction(str, Enum):
    """What a recovery outcome asks the caller to do next."""

    RETRY = "retry"
    USE_ALTERNATIVE = "use-alternative"
    INCREASE_TIMEOUT = "increase-timeout"
    REFRESH_PAGE = "refresh-page"
    RESTART_BROWSER = "restart-browser"
    VISUAL_MATCH = "visual-match"
    TRANSFORM_DATA = "transform-data"
    USE_FALLBACK = "use-fallback"
    CIRCUIT_BREAK = "circuit-break"
    ESCALATE = "escalate"

    @classmethod
    def values(cls) -> list:
        """Return list of all enum values."""
        return [e.value for e in cls]


class LocatorStrategy(str, Enum):
    """Element location strategies."""

    CSS = "css"
    ALTERNATIVE_SELECTOR = "alternative-selector"
    XPATH = "xpath"
    ACCESSIBILITY = "accessibility"
    VISUAL = "visual"
    SEMANTIC = "semantic"
    FUZZY = "fuzzy"

    @classmethod
    def values(cls) -> list:
        """Return list of all enum values."""
        return [e.value for e in cls]


class WaitStrategy(str, Enum):
    """Readiness conditions an action may wait for."""

    NETWORK_IDLE = "network-idle"
    DOM_CONTENT_LOADED = "dom-content-loaded"
    ELEMENT_VISIBLE = "element-visible"
    ELEMENT_STABLE = "element-stable"
    FIXED_TIMEOUT = "fixed-timeout"

    @classmethod
    def values(cls) -> list:
        """Return list of all enum values."""
        return [e.value for e in cls]


class EventType(str, Enum):
    """Discrete events emitted to observers."""

    ERROR_HANDLED = "error-handled"
    RETRY_ATTEMPT = "retry-attempt"
    ELEMENT_FOUND = "element-found"
    ELEMENT_NOT_FOUND = "element-not-found"
    STRATEGY_STATS_UPDATED = "strategy-stats-updated"
    TIMEOUT_CALCULATED = "timeout-calculated"

    @classmethod
    def values(cls) -> list:
        """Return list of all enum values."""
        return [e.value for e in cls]
