"""Constants for the resilience engine.

All classes can be imported directly from this package:
    from selfheal.constants import Retries, Timeouts, VisualMatching
"""

from .matching import Learning, LocatorPriorities, SemanticMatching, VisualMatching
from .resilience import CircuitBreakerConfig, Classification, Diagnostics, Recovery, Retries
from .timing import History, Intervals, Stability, Timeouts

__all__ = [
    "CircuitBreakerConfig",
    "Classification",
    "Diagnostics",
    "History",
    "Intervals",
    "Learning",
    "LocatorPriorities",
    "Recovery",
    "Retries",
    "SemanticMatching",
    "Stability",
    "Timeouts",
    "VisualMatching",
]
