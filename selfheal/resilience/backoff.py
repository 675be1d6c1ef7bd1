"""Retry policy and backoff delay math."""

import random
from typing import Any, Callable, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from selfheal.constants import Retries
from selfheal.utils.keys import normalize_keys

# Option names accepted by RetryPolicy.from_options besides the field names
_POLICY_ALIASES = {
    "max_retry_attempts": "max_attempts",
    "base_delay": "base_delay_ms",
    "base_retry_delay": "base_delay_ms",
    "base_retry_delay_ms": "base_delay_ms",
    "max_delay": "max_delay_ms",
    "max_retry_delay": "max_delay_ms",
    "max_retry_delay_ms": "max_delay_ms",
    "factor": "backoff_factor",
    "exponential_backoff_factor": "backoff_factor",
}


class RetryPolicy(BaseModel):
    """Immutable retry policy. Delays in MILLISECONDS."""

    model_config = ConfigDict(frozen=True)

    max_attempts: int = Field(default=Retries.MAX_ATTEMPTS, ge=1)
    base_delay_ms: float = Field(default=Retries.BASE_DELAY_MS, ge=0)
    max_delay_ms: float = Field(default=Retries.MAX_DELAY_MS, ge=0)
    backoff_factor: float = Field(default=Retries.BACKOFF_FACTOR, ge=1.0)
    jitter_fraction: float = Field(default=Retries.JITTER_FRACTION, ge=0.0, le=1.0)

    @model_validator(mode="after")
    def validate_bounds(self) -> "RetryPolicy":
        """Ensure the first delay does not exceed the cap."""
        if self.base_delay_ms > self.max_delay_ms:
            raise ValueError("base_delay_ms must not exceed max_delay_ms")
        return self

    @classmethod
    def from_settings(cls, settings: Any) -> "RetryPolicy":
        return cls(
            max_attempts=settings.max_retry_attempts,
            base_delay_ms=settings.base_retry_delay_ms,
            max_delay_ms=settings.max_retry_delay_ms,
            backoff_factor=settings.backoff_factor,
            jitter_fraction=settings.jitter_fraction,
        )

    def with_overrides(self, options: Optional[Mapping[str, Any]] = None) -> "RetryPolicy":
        """
        Copy with per-call overrides applied.

        Accepts field names, their camelCase spellings and the legacy option
        names (``maxAttempts``, ``baseDelay``, ``maxDelay``, ``factor``).
        Unknown keys are ignored.
        """
        if not options:
            return self
        updates = {}
        for key, value in normalize_keys(options).items():
            name = _POLICY_ALIASES.get(key, key)
            if name in type(self).model_fields and value is not None:
                updates[name] = value
        if not updates:
            return self
        return type(self).model_validate({**self.model_dump(), **updates})

    def base_delay(self, attempt: int) -> float:
        """``clamp(base * factor^(attempt-1), 0, max)`` for a 1-based attempt."""
        exponent = max(attempt, 1) - 1
        try:
            delay = self.base_delay_ms * (self.backoff_factor ** exponent)
        except OverflowError:
            delay = self.max_delay_ms
        return min(max(delay, 0.0), self.max_delay_ms)

    def compute_delay(self, attempt: int, rng: Optional[Callable[[], float]] = None) -> float:
        """
        Jittered delay for a 1-based attempt.

        Args:
            attempt: Attempt that just failed
            rng: Source of uniform values in [0, 1); ``random.random`` when None

        Returns:
            ``base_delay(attempt) * (1 + U(0, jitter_fraction))``
        """
        draw = (rng or random.random)()
        return self.base_delay(attempt) * (1 + draw * self.jitter_fraction)

    @property
    def max_jittered_delay_ms(self) -> float:
        return self.max_delay_ms * (1 + self.jitter_fraction)
