"""Engine settings with Pydantic validation."""

from pathlib import Path
from typing import Any, Dict, Mapping, Union

import yaml
from pydantic import Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from selfheal.constants import (
    CircuitBreakerConfig,
    Classification,
    Diagnostics,
    Intervals,
    Retries,
    SemanticMatching,
    Timeouts,
    VisualMatching,
)
from selfheal.core.exceptions import ConfigurationError
from selfheal.utils.keys import to_snake_case

# Recognised option names as callers spell them, mapped to settings fields
OPTION_ALIASES: Dict[str, str] = {
    "baseRetryDelay": "base_retry_delay_ms",
    "maxRetryDelay": "max_retry_delay_ms",
    "circuitBreakerThreshold": "circuit_breaker_threshold",
    "circuitBreakerWindow": "circuit_breaker_window_seconds",
    "baseTimeout": "base_timeout_ms",
    "minTimeout": "min_timeout_ms",
    "maxTimeout": "max_timeout_ms",
    "networkCheckInterval": "network_check_interval_ms",
    "complexityAnalysisTimeout": "complexity_analysis_interval_ms",
    "historyRetentionDays": "history_retention_days",
    "diagnosticsRetention": "diagnostics_retention",
}


class EngineSettings(BaseSettings):
    """Resilience engine settings with environment variable support."""

    # Retry / backoff
    max_retry_attempts: int = Field(
        default=Retries.MAX_ATTEMPTS, ge=1, le=100, description="Maximum attempts per operation"
    )
    base_retry_delay_ms: int = Field(
        default=Retries.BASE_DELAY_MS, ge=0, description="Delay before the first retry"
    )
    max_retry_delay_ms: int = Field(
        default=Retries.MAX_DELAY_MS, ge=0, description="Upper bound for the un-jittered delay"
    )
    backoff_factor: float = Field(
        default=Retries.BACKOFF_FACTOR, ge=1.0, description="Exponential growth per attempt"
    )
    jitter_fraction: float = Field(
        default=Retries.JITTER_FRACTION, ge=0.0, le=1.0, description="Maximum relative jitter"
    )
    enable_recovery: bool = Field(default=True, description="Run recovery between attempts")

    # Scoring thresholds
    confidence_threshold: float = Field(
        default=Classification.BASE_CONFIDENCE, ge=0.0, le=1.0,
        description="Minimum locator/semantic match confidence",
    )
    visual_similarity_threshold: float = Field(
        default=VisualMatching.THRESHOLD, ge=0.0, le=1.0,
        description="Minimum visual similarity for a candidate",
    )
    semantic_similarity_threshold: float = Field(
        default=SemanticMatching.THRESHOLD, ge=0.0, le=1.0,
        description="Minimum semantic similarity for a candidate",
    )

    # Circuit breaker
    circuit_breaker_threshold: int = Field(
        default=CircuitBreakerConfig.FAIL_THRESHOLD, ge=1,
        description="Failures inside the window that trip the breaker",
    )
    circuit_breaker_window_seconds: float = Field(
        default=CircuitBreakerConfig.WINDOW_SECONDS, gt=0,
        description="Trailing failure window",
    )

    # Caches and retention
    fingerprint_cache_size: int = Field(default=VisualMatching.CACHE_SIZE, ge=1)
    fingerprint_cache_ttl_seconds: float = Field(default=VisualMatching.CACHE_TTL_SECONDS, gt=0)
    semantic_cache_size: int = Field(default=SemanticMatching.CACHE_SIZE, ge=1)
    max_visual_candidates: int = Field(default=VisualMatching.MAX_CANDIDATES, ge=1)
    diagnostics_retention: int = Field(default=Diagnostics.MAX_REPORTS, ge=1)
    history_retention_days: int = Field(default=Intervals.HISTORY_RETENTION_DAYS, ge=1)

    # Adaptive timing
    base_timeout_ms: int = Field(default=Timeouts.BASE, ge=1)
    min_timeout_ms: int = Field(default=Timeouts.MIN, ge=1)
    max_timeout_ms: int = Field(default=Timeouts.MAX, ge=1)
    network_check_interval_ms: int = Field(default=Intervals.NETWORK_CHECK, ge=0)
    complexity_analysis_interval_ms: int = Field(default=Intervals.COMPLEXITY_ANALYSIS, ge=0)
    driver_call_timeout_ms: int = Field(
        default=Timeouts.DRIVER_CALL,
        ge=1,
        description="Upper bound on the guard of any single driver call",
    )

    # Learning persistence
    history_file: str = Field(
        default="", description="JSON file for strategy outcome history; in-memory when empty"
    )

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")

    model_config = SettingsConfigDict(
        env_prefix="SELFHEAL_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        allowed = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in allowed:
            raise ValueError(f'LOG_LEVEL must be one of: {", ".join(allowed)}')
        return v_upper

    @model_validator(mode="after")
    def validate_bounds(self) -> "EngineSettings":
        """Ensure lower bounds do not exceed upper bounds."""
        if self.base_retry_delay_ms > self.max_retry_delay_ms:
            raise ValueError("base_retry_delay_ms must not exceed max_retry_delay_ms")
        if self.min_timeout_ms > self.max_timeout_ms:
            raise ValueError("min_timeout_ms must not exceed max_timeout_ms")
        return self

    @classmethod
    def from_options(cls, options: Mapping[str, Any]) -> "EngineSettings":
        """
        Build settings from a recognised-options map.

        Accepts camelCase option names (``maxRetryAttempts``, ``baseRetryDelay``)
        as well as the snake_case field names. Unknown options are ignored.

        Args:
            options: Caller supplied option map

        Returns:
            Validated settings

        Raises:
            ConfigurationError: If an option value is invalid
        """
        data: Dict[str, Any] = {}
        for key, value in options.items():
            field = OPTION_ALIASES.get(key) or to_snake_case(key)
            if field in cls.model_fields:
                data[field] = value
        try:
            return cls(**data)
        except ValidationError as e:
            first = e.errors()[0]
            field_name = ".".join(str(p) for p in first.get("loc", ())) or None
            raise ConfigurationError(f"Invalid engine option: {first['msg']}", field=field_name) from e

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "EngineSettings":
        """
        Load settings from a YAML file of recognised options.

        Raises:
            ConfigurationError: If the file is missing, unreadable or invalid
        """
        config_path = Path(path)
        if not config_path.exists():
            raise ConfigurationError(f"Configuration file not found: {config_path}")
        with open(config_path, "r", encoding="utf-8") as f:
            try:
                data = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigurationError(f"Invalid YAML in {config_path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigurationError(f"Expected a mapping in {config_path}")
        return cls.from_options(data)

    def to_options(self) -> Dict[str, Any]:
        """Export settings as a plain dictionary."""
        return self.model_dump()
