"""Error classification records."""

import traceback
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

from selfheal.core.enums import ErrorCategory, ErrorType, Severity


@dataclass(frozen=True)
class FailureInfo:
    """Raw failure as seen by the classifier."""

    message: str
    stack: str = ""
    code: Optional[str] = None
    error_name: str = "Error"

    @classmethod
    def from_exception(cls, error: BaseException) -> "FailureInfo":
        """
        Capture message, exception-only stack text and code from an exception.

        The stack text covers the exception and its ``__cause__`` /
        ``__context__`` chain as ``Type: message`` lines, never source lines.
        """
        lines = []
        seen = set()
        current: Optional[BaseException] = error
        while current is not None and id(current) not in seen:
            seen.add(id(current))
            lines.extend(traceback.format_exception_only(type(current), current))
            current = current.__cause__ or current.__context__
        message = str(error) or type(error).__name__
        code = getattr(error, "code", None)
        return cls(
            message=message,
            stack="".join(lines).strip(),
            code=str(code) if code is not None else None,
            error_name=type(error).__name__,
        )


@dataclass(frozen=True)
class ErrorClassification:
    """Typed, confidence-scored diagnosis of a raw failure."""

    type: ErrorType
    category: ErrorCategory
    severity: Severity
    recoverable: bool
    confidence: float
    common_causes: Tuple[str, ...] = ()
    suggested_actions: Tuple[str, ...] = ()
    priority: int = 5
    error_message: str = ""
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> Dict[str, Any]:
        """Convert classification to dictionary."""
        return {
            "type": self.type.value,
            "category": self.category.value,
            "severity": self.severity.value,
            "recoverable": self.recoverable,
            "confidence": round(self.confidence, 4),
            "common_causes": list(self.common_causes),
            "suggested_actions": list(self.suggested_actions),
            "priority": self.priority,
            "error_message": self.error_message,
            "timestamp": self.timestamp,
        }
