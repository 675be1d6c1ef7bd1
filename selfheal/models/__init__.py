"""Data records shared across the engine."""

from .classification import ErrorClassification, FailureInfo
from .element import BoundingBox, ElementSnapshot, NodeDescriptor
from .fingerprint import SurroundingContext, VisualFeatures, VisualFingerprint
from .recovery import RecoveryContext, RecoveryOutcome, StrategyStatsView
from .selector import (
    AccessibilityHints,
    LocateResult,
    SelectorDescriptor,
    StrategyAttempt,
)
from .semantic import BusinessContext, ContentAnalysis, ElementPurpose, SemanticProfile
from .timing import (
    NetworkConditions,
    PageComplexity,
    TimeoutDecision,
    TimingHistory,
    TimingProfile,
    TimingSample,
)

__all__ = [
    "AccessibilityHints",
    "BoundingBox",
    "BusinessContext",
    "ContentAnalysis",
    "ElementPurpose",
    "ElementSnapshot",
    "ErrorClassification",
    "FailureInfo",
    "LocateResult",
    "NetworkConditions",
    "NodeDescriptor",
    "PageComplexity",
    "RecoveryContext",
    "RecoveryOutcome",
    "SelectorDescriptor",
    "SemanticProfile",
    "StrategyAttempt",
    "StrategyStatsView",
    "SurroundingContext",
    "TimeoutDecision",
    "TimingHistory",
    "TimingProfile",
    "TimingSample",
    "VisualFeatures",
    "VisualFingerprint",
]
