"""Timing-related constants. All values in MILLISECONDS unless noted."""

from typing import Dict, Final, Tuple


class Timeouts:
    """Adaptive timeout bounds."""

    BASE: Final[int] = 5_000
    MIN: Final[int] = 1_000
    MAX: Final[int] = 60_000
    # Guard applied to a single driver call when no prediction is available
    DRIVER_CALL: Final[int] = 10_000


class Intervals:
    """Measurement refresh intervals."""

    NETWORK_CHECK: Final[int] = 5_000
    COMPLEXITY_ANALYSIS: Final[int] = 2_000
    HISTORY_RETENTION_DAYS: Final[int] = 30
    STABILITY_POLL: Final[int] = 100


class Stability:
    """DOM stability wait parameters."""

    THRESHOLD_MS: Final[int] = 500
    MAX_CHECKS: Final[int] = 50


class History:
    """Timing history limits."""

    MAX_SAMPLES: Final[int] = 50
    MIN_SAMPLES: Final[int] = 3
    TARGET_KEY_LENGTH: Final[int] = 50


# Baseline timeout per action type
ACTION_BASELINES: Final[Dict[str, int]] = {
    "navigation": 10_000,
    "click": 2_000,
    "type": 1_000,
    "wait": 3_000,
    "extraction": 2_000,
    "ajax": 5_000,
}
DEFAULT_ACTION_TYPE: Final[str] = "click"

CONNECTION_MULTIPLIERS: Final[Dict[str, float]] = {
    "slow-2g": 3.0,
    "2g": 2.5,
    "3g": 1.8,
    "4g": 1.2,
    "wifi": 1.0,
}
DEFAULT_CONNECTION_MULTIPLIER: Final[float] = 1.5

# (latency threshold ms, multiplier), checked in order
LATENCY_TIERS: Final[Tuple[Tuple[int, float], ...]] = ((1_000, 2.0), (500, 1.5), (200, 1.2))
OFFLINE_MULTIPLIER: Final[float] = 5.0

DOM_SIZE_TIERS: Final[Tuple[Tuple[int, float], ...]] = ((5_000, 1.8), (2_000, 1.4), (1_000, 1.2))
SCRIPT_COUNT_TIERS: Final[Tuple[Tuple[int, float], ...]] = ((20, 1.5), (10, 1.3), (5, 1.1))
DYNAMIC_CONTENT_MULTIPLIER: Final[float] = 1.4
ACTIVE_AJAX_MULTIPLIER: Final[float] = 1.3

BROWSER_MULTIPLIERS: Final[Dict[str, float]] = {"firefox": 1.1, "safari": 1.2, "edge": 1.1}
DEVICE_MULTIPLIERS: Final[Dict[str, float]] = {"mobile": 1.3, "tablet": 1.1}
PEAK_HOURS: Final[Tuple[int, int]] = (9, 17)
PEAK_HOURS_MULTIPLIER: Final[float] = 1.2

NETWORK_CLAMP: Final[Tuple[float, float]] = (0.5, 5.0)
COMPLEXITY_CLAMP: Final[Tuple[float, float]] = (0.8, 3.0)
HISTORY_CLAMP: Final[Tuple[float, float]] = (0.5, 2.0)
CONTEXT_CLAMP: Final[Tuple[float, float]] = (0.8, 1.5)
