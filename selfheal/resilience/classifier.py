"""Error classification.

Raw failures are matched against an ordered catalog of regular expression
groups. The first group whose pattern matches the message or the stack text
decides the error type; ``unknown`` is the fallback and is never scanned.
"""

import re
from collections import deque
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Deque, Dict, Iterable, List, Mapping, Optional, Pattern, Tuple, Union

from loguru import logger

from selfheal.constants import Classification
from selfheal.core.enums import ErrorCategory, ErrorType, Severity
from selfheal.models.classification import ErrorClassification, FailureInfo
from selfheal.utils.keys import normalize_keys

Failure = Union[BaseException, FailureInfo, str]


def _compile(patterns: Iterable[Union[str, Pattern[str]]]) -> Tuple[Pattern[str], ...]:
    return tuple(p if isinstance(p, re.Pattern) else re.compile(p, re.IGNORECASE) for p in patterns)


@dataclass(frozen=True)
class ClassificationRule:
    """Pattern group and metadata for one error type."""

    type: ErrorType
    category: ErrorCategory
    severity: Severity
    priority: int
    patterns: Tuple[Pattern[str], ...] = ()
    common_causes: Tuple[str, ...] = ()
    suggested_actions: Tuple[str, ...] = ()

    @property
    def recoverable(self) -> bool:
        return self.category.recoverable

    def matches(self, text: str) -> bool:
        return bool(text) and any(p.search(text) for p in self.patterns)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category": self.category.value,
            "severity": self.severity.value,
            "recoverable": self.recoverable,
            "priority": self.priority,
            "patterns": [p.pattern for p in self.patterns],
            "common_causes": list(self.common_causes),
            "suggested_actions": list(self.suggested_actions),
        }


DEFAULT_RULES: Tuple[ClassificationRule, ...] = (
    ClassificationRule(
        type=ErrorType.ELEMENT_NOT_FOUND,
        category=ErrorCategory.ELEMENT,
        severity=Severity.MEDIUM,
        priority=2,
        patterns=_compile(
            [
                r"element.*not.*found",
                r"no.*element.*matches",
                r"selector.*not.*found",
                r"element.*does.*not.*exist",
                r"cannot.*find.*element",
                r"element.*is.*not.*attached",
            ]
        ),
        common_causes=("DOM changes", "timing issues", "selector specificity", "dynamic content loading"),
        suggested_actions=(
            "retry with delay",
            "use alternative selector",
            "wait for DOM stability",
            "check element visibility",
        ),
    ),
    ClassificationRule(
        type=ErrorType.TIMEOUT,
        category=ErrorCategory.TIMING,
        severity=Severity.MEDIUM,
        priority=2,
        patterns=_compile(
            [
                r"timeout",
                r"timed.*out",
                r"exceeded.*timeout",
                r"operation.*timeout",
                r"wait.*timeout",
                r"navigation.*timeout",
            ]
        ),
        common_causes=("slow network", "heavy page load", "server delays", "resource loading"),
        suggested_actions=(
            "increase timeout",
            "retry with exponential backoff",
            "check network conditions",
            "optimize wait strategy",
        ),
    ),
    ClassificationRule(
        type=ErrorType.NETWORK_ERROR,
        category=ErrorCategory.NETWORK,
        severity=Severity.HIGH,
        priority=1,
        patterns=_compile(
            [
                r"network.*error",
                r"connection.*refused",
                r"connection.*reset",
                r"dns.*resolution.*failed",
                r"net::ERR_",
                r"fetch.*failed",
                r"request.*failed",
            ]
        ),
        common_causes=("network connectivity", "server downtime", "DNS issues", "firewall blocking"),
        suggested_actions=(
            "retry with exponential backoff",
            "check network connectivity",
            "use alternative endpoint",
            "implement circuit breaker",
        ),
    ),
    ClassificationRule(
        type=ErrorType.PERMISSION_DENIED,
        category=ErrorCategory.SECURITY,
        severity=Severity.HIGH,
        priority=1,
        patterns=_compile(
            [
                r"permission.*denied",
                r"access.*denied",
                r"unauthorized",
                r"forbidden",
                r"authentication.*failed",
                r"invalid.*credentials",
            ]
        ),
        common_causes=(
            "expired credentials",
            "insufficient permissions",
            "authentication failure",
            "security policy changes",
        ),
        suggested_actions=(
            "refresh credentials",
            "check permissions",
            "contact administrator",
            "update authentication",
        ),
    ),
    ClassificationRule(
        type=ErrorType.PAGE_ERROR,
        category=ErrorCategory.BROWSER,
        severity=Severity.HIGH,
        priority=1,
        patterns=_compile(
            [
                r"page.*crashed",
                r"page.*not.*responding",
                r"browser.*crashed",
                r"navigation.*failed",
                r"page.*load.*failed",
                r"script.*error",
            ]
        ),
        common_causes=("browser instability", "memory issues", "JavaScript errors", "resource conflicts"),
        suggested_actions=("restart browser", "clear cache", "reduce memory usage", "update browser"),
    ),
    ClassificationRule(
        type=ErrorType.DATA_ERROR,
        category=ErrorCategory.DATA,
        severity=Severity.MEDIUM,
        priority=2,
        patterns=_compile(
            [
                r"validation.*failed",
                r"invalid.*data",
                r"data.*format.*error",
                r"parsing.*error",
                r"serialization.*error",
                r"type.*error",
            ]
        ),
        common_causes=("data format changes", "validation rule updates", "type mismatches", "encoding issues"),
        suggested_actions=("validate data format", "update validation rules", "transform data", "check encoding"),
    ),
    ClassificationRule(
        type=ErrorType.RESOURCE_ERROR,
        category=ErrorCategory.SYSTEM,
        severity=Severity.HIGH,
        priority=1,
        patterns=_compile(
            [
                r"out.*of.*memory",
                r"resource.*exhausted",
                r"disk.*full",
                r"file.*not.*found",
                r"permission.*error",
                r"system.*error",
            ]
        ),
        common_causes=("resource exhaustion", "file system issues", "memory leaks", "disk space"),
        suggested_actions=("free resources", "restart process", "clean temporary files", "increase limits"),
    ),
)

UNKNOWN_RULE = ClassificationRule(
    type=ErrorType.UNKNOWN,
    category=ErrorCategory.UNKNOWN,
    severity=Severity.MEDIUM,
    priority=3,
    common_causes=("unexpected conditions", "new error types", "system changes"),
    suggested_actions=("retry with delay", "collect more diagnostics", "escalate to support"),
)


class ClassificationCatalog:
    """
    Immutable ordered set of classification rules.

    Derive a variant with ``with_pattern`` or ``with_rule``; the source
    catalog is left unchanged and may be shared between engines.
    """

    def __init__(
        self,
        rules: Iterable[ClassificationRule] = DEFAULT_RULES,
        fallback: ClassificationRule = UNKNOWN_RULE,
    ):
        self._rules: Tuple[ClassificationRule, ...] = tuple(rules)
        self._fallback = fallback

    @property
    def rules(self) -> Tuple[ClassificationRule, ...]:
        return self._rules

    @property
    def fallback(self) -> ClassificationRule:
        return self._fallback

    def get(self, error_type: ErrorType) -> ClassificationRule:
        for rule in self._rules:
            if rule.type is error_type:
                return rule
        return self._fallback

    def match(self, message: str, stack: str = "") -> Optional[ClassificationRule]:
        """First rule whose patterns match the message or the stack text."""
        for rule in self._rules:
            if rule.matches(message) or rule.matches(stack):
                return rule
        return None

    def with_pattern(
        self, error_type: ErrorType, pattern: Union[str, Pattern[str]]
    ) -> "ClassificationCatalog":
        """
        Return a new catalog with ``pattern`` appended to ``error_type``'s group.

        Raises:
            ValueError: For ``unknown``, which is never scanned
        """
        if error_type is ErrorType.UNKNOWN:
            raise ValueError("The unknown classification has no patterns")
        rules = tuple(
            replace(rule, patterns=rule.patterns + _compile([pattern])) if rule.type is error_type else rule
            for rule in self._rules
        )
        return ClassificationCatalog(rules, self._fallback)

    def with_rule(self, rule: ClassificationRule, before: Optional[ErrorType] = None) -> "ClassificationCatalog":
        """Return a new catalog with ``rule`` replacing, or inserted ahead of ``before``."""
        rules = [r for r in self._rules if r.type is not rule.type]
        index = next((i for i, r in enumerate(rules) if r.type is before), len(rules))
        rules.insert(index, rule)
        return ClassificationCatalog(rules, self._fallback)

    def to_dict(self) -> Dict[str, Any]:
        exported = {rule.type.value: rule.to_dict() for rule in self._rules}
        exported[self._fallback.type.value] = self._fallback.to_dict()
        return exported

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ClassificationCatalog":
        """
        Rebuild a catalog from ``to_dict`` output, keeping the given order.

        Raises:
            ValueError: On an unknown error type, category or severity
        """
        rules: List[ClassificationRule] = []
        fallback = UNKNOWN_RULE
        for type_name, raw in data.items():
            rule = ClassificationRule(
                type=ErrorType(type_name),
                category=ErrorCategory(raw.get("category", ErrorCategory.UNKNOWN.value)),
                severity=Severity(raw.get("severity", Severity.MEDIUM.value)),
                priority=int(raw.get("priority", 3)),
                patterns=_compile(raw.get("patterns") or ()),
                common_causes=tuple(raw.get("common_causes") or ()),
                suggested_actions=tuple(raw.get("suggested_actions") or ()),
            )
            if rule.type is ErrorType.UNKNOWN:
                fallback = replace(rule, patterns=())
            else:
                rules.append(rule)
        return cls(rules, fallback)

    def __len__(self) -> int:
        return len(self._rules)


@dataclass
class _HistoryEntry:
    timestamp: str
    message: str
    details: Dict[str, Any] = field(default_factory=dict)


class ErrorClassifier:
    """Turn raw failures into typed, confidence-scored classifications."""

    def __init__(
        self,
        catalog: Optional[ClassificationCatalog] = None,
        history_per_type: int = Classification.HISTORY_PER_TYPE,
    ):
        """
        Initialize error classifier.

        Args:
            catalog: Rules to classify with; the built-in catalog when None
            history_per_type: Classified failures remembered per error type
        """
        self.catalog = catalog if catalog is not None else ClassificationCatalog()
        self.history_per_type = history_per_type
        self._history: Dict[ErrorType, Deque[_HistoryEntry]] = {}

    @staticmethod
    def _failure_info(error: Failure) -> FailureInfo:
        if isinstance(error, FailureInfo):
            return error
        if isinstance(error, BaseException):
            return FailureInfo.from_exception(error)
        return FailureInfo(message=str(error))

    @staticmethod
    def calculate_confidence(
        rule: ClassificationRule, message: str, context: Mapping[str, Any]
    ) -> float:
        """
        Confidence in a pattern match.

        Starts at the base confidence, adds a bonus when the message itself
        matched (not just the stack), one when an element failure carries
        both ``selector`` and ``action``, and one when a network failure
        carries a ``url``. Never exceeds 1.0.
        """
        confidence = Classification.BASE_CONFIDENCE
        if rule.matches(message):
            confidence += Classification.MESSAGE_MATCH_BONUS
        if rule.category is ErrorCategory.ELEMENT and context.get("action") and context.get("selector"):
            confidence += Classification.CONTEXT_BONUS
        if rule.category is ErrorCategory.NETWORK and context.get("url"):
            confidence += Classification.CONTEXT_BONUS
        return min(confidence, 1.0)

    def classify(
        self, error: Failure, context: Optional[Mapping[str, Any]] = None
    ) -> ErrorClassification:
        """
        Classify a failure.

        Args:
            error: Exception, FailureInfo or bare message
            context: Caller context; camelCase keys are accepted

        Returns:
            Immutable classification. Unmatched failures classify as
            ``unknown`` with the fallback confidence.
        """
        info = self._failure_info(error)
        ctx = normalize_keys(context or {})

        rule = self.catalog.match(info.message, info.stack)
        if rule is None:
            rule = self.catalog.fallback
            confidence = Classification.FALLBACK_CONFIDENCE
        else:
            confidence = self.calculate_confidence(rule, info.message, ctx)

        classification = ErrorClassification(
            type=rule.type,
            category=rule.category,
            severity=rule.severity,
            recoverable=rule.recoverable,
            confidence=confidence,
            common_causes=rule.common_causes,
            suggested_actions=rule.suggested_actions,
            priority=rule.priority,
            error_message=info.message,
        )
        self._remember(classification, info, ctx)
        logger.debug(
            f"Classified {info.error_name} as {rule.type.value} "
            f"(confidence {confidence:.2f}): {info.message[:200]}"
        )
        return classification

    def _remember(
        self, classification: ErrorClassification, info: FailureInfo, context: Mapping[str, Any]
    ) -> None:
        history = self._history.get(classification.type)
        if history is None:
            history = deque(maxlen=self.history_per_type)
            self._history[classification.type] = history
        history.append(
            _HistoryEntry(
                timestamp=datetime.now(timezone.utc).isoformat(),
                message=info.message,
                details={k: context[k] for k in ("url", "selector", "action") if context.get(k)},
            )
        )

    def get_error_history(self, error_type: Union[ErrorType, str]) -> List[Dict[str, Any]]:
        """Recent classified failures of one type, oldest first."""
        history = self._history.get(ErrorType(error_type), ())
        return [{"timestamp": e.timestamp, "message": e.message, **e.details} for e in history]

    def history_count(self, error_type: Union[ErrorType, str]) -> int:
        return len(self._history.get(ErrorType(error_type), ()))

    def clear_history(self) -> None:
        self._history.clear()
