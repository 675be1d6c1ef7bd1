"""Resilience-related constants (retries, circuit breaker, recovery, diagnostics)."""

from typing import Final


class Retries:
    """Retry configuration. Delays in MILLISECONDS."""

    MAX_ATTEMPTS: Final[int] = 5
    BASE_DELAY_MS: Final[int] = 1_000
    MAX_DELAY_MS: Final[int] = 30_000
    BACKOFF_FACTOR: Final[float] = 2.0
    JITTER_FRACTION: Final[float] = 0.1


class CircuitBreakerConfig:
    """Circuit breaker configuration."""

    FAIL_THRESHOLD: Final[int] = 5
    WINDOW_SECONDS: Final[float] = 600.0  # 10 minutes
    MAX_TRACKED_FAILURES: Final[int] = 100


class Recovery:
    """Built-in recovery strategy parameters. Delays in MILLISECONDS."""

    WAIT_AND_RETRY_DELAY_MS: Final[int] = 2_000
    TIMEOUT_MULTIPLIER: Final[float] = 1.5
    MAX_TIMEOUT_MS: Final[int] = 120_000
    DEFAULT_TIMEOUT_MS: Final[int] = 30_000
    STABILITY_WAIT_MS: Final[int] = 5_000

    # Rank weight applied to a strategy's historical success rate
    SUCCESS_WEIGHT: Final[float] = 1.5
    # Attempts needed before the success weight applies in full
    MIN_SAMPLE_SIZE: Final[int] = 5


class Classification:
    """Error classifier confidence scoring."""

    BASE_CONFIDENCE: Final[float] = 0.7
    FALLBACK_CONFIDENCE: Final[float] = 0.5
    MESSAGE_MATCH_BONUS: Final[float] = 0.1
    CONTEXT_BONUS: Final[float] = 0.1
    HISTORY_PER_TYPE: Final[int] = 100


class Diagnostics:
    """Diagnostic report retention and sanitisation."""

    MAX_REPORTS: Final[int] = 1_000
    MAX_STRING_LENGTH: Final[int] = 1_000
    REPEAT_THRESHOLD: Final[int] = 3
    SENSITIVE_KEYS: Final[frozenset] = frozenset(
        {"password", "passwd", "token", "apikey", "credentials", "secret", "authorization"}
    )
