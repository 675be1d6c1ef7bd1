"""Failure handling for browser automation steps.

This module provides:
- ErrorClassifier: Regex catalog turning raw failures into typed classifications
- RecoveryExecutor: Runs recovery strategies in success-weighted order
- RetryController: Tenacity-based retry loop with recovery between attempts
- KeyedCircuitBreaker: Sliding-window breaker per (target, action)
- DiagnosticsRecorder: Sanitised diagnostic reports by error id
- ResilienceEngine: Facade wiring every component together
"""

from selfheal.resilience.backoff import RetryPolicy
from selfheal.resilience.circuit_breaker import CircuitState, KeyedCircuitBreaker
from selfheal.resilience.classifier import (
    DEFAULT_RULES,
    ClassificationCatalog,
    ClassificationRule,
    ErrorClassifier,
)
from selfheal.resilience.diagnostics import DiagnosticsRecorder, generate_recommendations
from selfheal.resilience.executor import RecoveryExecutor, context_signature
from selfheal.resilience.manager import EngineComponents, ErrorHandlingResult, ResilienceEngine
from selfheal.resilience.retry import RetryController, RetryState
from selfheal.resilience.strategies import (
    RecoveryStrategy,
    StrategyRegistry,
    build_default_registry,
)

__all__ = [
    "ResilienceEngine",
    "EngineComponents",
    "ErrorHandlingResult",
    "ErrorClassifier",
    "ClassificationCatalog",
    "ClassificationRule",
    "DEFAULT_RULES",
    "RecoveryExecutor",
    "RecoveryStrategy",
    "StrategyRegistry",
    "build_default_registry",
    "context_signature",
    "RetryController",
    "RetryState",
    "RetryPolicy",
    "KeyedCircuitBreaker",
    "CircuitState",
    "DiagnosticsRecorder",
    "generate_recommendations",
]
