"""Tests for retry policy delay math."""

import random

import pytest
from pydantic import ValidationError

from selfheal.core.config import EngineSettings
from selfheal.resilience.backoff import RetryPolicy


class TestBaseDelay:
    """Tests for the un-jittered exponential delay."""

    def test_grows_by_factor(self):
        policy = RetryPolicy(base_delay_ms=1000, max_delay_ms=30000, backoff_factor=2.0)

        assert [policy.base_delay(n) for n in range(1, 5)] == [1000, 2000, 4000, 8000]

    def test_clamped_to_max(self):
        policy = RetryPolicy(base_delay_ms=1000, max_delay_ms=30000, backoff_factor=2.0)

        assert policy.base_delay(6) == 30000
        assert policy.base_delay(50) == 30000

    def test_huge_attempt_does_not_overflow(self):
        policy = RetryPolicy(base_delay_ms=1000, max_delay_ms=5000, backoff_factor=10.0)

        assert policy.base_delay(10_000) == 5000

    def test_attempt_below_one_uses_base(self):
        policy = RetryPolicy(base_delay_ms=250, max_delay_ms=1000)

        assert policy.base_delay(0) == 250


class TestComputeDelay:
    """Tests for jittered delays."""

    def test_zero_draw_is_base_delay(self):
        policy = RetryPolicy(base_delay_ms=1000, max_delay_ms=30000)

        assert policy.compute_delay(3, rng=lambda: 0.0) == 4000

    def test_jitter_stays_within_fraction(self):
        policy = RetryPolicy(base_delay_ms=1000, max_delay_ms=30000, jitter_fraction=0.1)

        delay = policy.compute_delay(1, rng=lambda: 0.999)

        assert 1000 <= delay <= 1100

    def test_every_delay_within_bounds(self):
        policy = RetryPolicy(base_delay_ms=100, max_delay_ms=2000, backoff_factor=3.0, jitter_fraction=0.25)
        rng = random.Random(7).random

        for attempt in range(1, 30):
            delay = policy.compute_delay(attempt, rng=rng)
            assert 0 <= delay <= policy.max_jittered_delay_ms


class TestPolicyConstruction:
    """Tests for validation, overrides and settings."""

    def test_base_above_max_rejected(self):
        with pytest.raises(ValidationError):
            RetryPolicy(base_delay_ms=5000, max_delay_ms=1000)

    def test_policy_is_frozen(self):
        policy = RetryPolicy()

        with pytest.raises(ValidationError):
            policy.max_attempts = 10

    def test_with_overrides_accepts_legacy_names(self):
        policy = RetryPolicy(max_attempts=5, base_delay_ms=1000)

        updated = policy.with_overrides({"maxAttempts": 2, "baseDelay": 10, "unrelated": True})

        assert updated.max_attempts == 2
        assert updated.base_delay_ms == 10
        assert policy.max_attempts == 5

    def test_with_overrides_without_options_returns_same_policy(self):
        policy = RetryPolicy()

        assert policy.with_overrides(None) is policy
        assert policy.with_overrides({"unrelated": 1}) is policy

    def test_from_settings(self):
        settings = EngineSettings(max_retry_attempts=3, base_retry_delay_ms=200, max_retry_delay_ms=800)

        policy = RetryPolicy.from_settings(settings)

        assert policy.max_attempts == 3
        assert policy.base_delay_ms == 200
        assert policy.max_delay_ms == 800
