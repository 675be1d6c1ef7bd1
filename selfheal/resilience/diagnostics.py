"""Diagnostic reports for handled failures."""

import secrets
import time
from collections import OrderedDict
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional

from loguru import logger

from selfheal.constants import Diagnostics
from selfheal.core.enums import ErrorCategory
from selfheal.models.classification import ErrorClassification, FailureInfo
from selfheal.utils.masking import sanitize_context


def generate_error_id() -> str:
    return f"err_{int(time.time() * 1000)}_{secrets.token_hex(5)}"


def generate_recommendations(
    classification: ErrorClassification,
    context: Mapping[str, Any],
    history_count: int,
    repeat_threshold: int = Diagnostics.REPEAT_THRESHOLD,
) -> List[Dict[str, Any]]:
    """
    Build prioritised recommendations for one failure.

    Args:
        classification: Classification of the failure
        context: Normalised caller context
        history_count: Failures of the same type seen so far
        repeat_threshold: Count above which the failure is flagged as recurring

    Returns:
        Recommendation dicts (type, action, priority, source)
    """
    recommendations: List[Dict[str, Any]] = [
        {"type": "immediate", "action": action, "priority": "high", "source": "classification"}
        for action in classification.suggested_actions
    ]

    if context.get("selector") and classification.category is ErrorCategory.ELEMENT:
        recommendations.append(
            {
                "type": "optimization",
                "action": "Consider using more robust selectors (data attributes, accessibility labels)",
                "priority": "medium",
                "source": "context-analysis",
            }
        )

    if context.get("url") and classification.category is ErrorCategory.NETWORK:
        recommendations.append(
            {
                "type": "monitoring",
                "action": "Monitor network connectivity and server response times",
                "priority": "medium",
                "source": "context-analysis",
            }
        )

    if history_count > repeat_threshold:
        recommendations.append(
            {
                "type": "pattern",
                "action": "Frequent occurrence detected - consider systematic fix",
                "priority": "high",
                "source": "historical-analysis",
                "data": {"frequency": history_count},
            }
        )

    return recommendations


class DiagnosticsRecorder:
    """
    Keep a rolling window of diagnostic reports, retrievable by error id.

    Reports never contain secrets: the caller context is sanitised before
    it is stored.
    """

    def __init__(
        self,
        max_reports: int = Diagnostics.MAX_REPORTS,
        max_string_length: int = Diagnostics.MAX_STRING_LENGTH,
        repeat_threshold: int = Diagnostics.REPEAT_THRESHOLD,
    ):
        self.max_reports = max_reports
        self.max_string_length = max_string_length
        self.repeat_threshold = repeat_threshold
        self._reports: "OrderedDict[str, Dict[str, Any]]" = OrderedDict()

    def record(
        self,
        failure: FailureInfo,
        classification: ErrorClassification,
        context: Mapping[str, Any],
        history_count: int = 0,
    ) -> Dict[str, Any]:
        """
        Build and store a diagnostic report.

        Args:
            failure: Raw failure details
            classification: Classification of the failure
            context: Normalised caller context
            history_count: Failures of the same type seen so far

        Returns:
            The stored report
        """
        report = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "error_id": generate_error_id(),
            "classification": classification.to_dict(),
            "error": {
                "name": failure.error_name,
                "message": failure.message,
                "stack": failure.stack,
                "code": failure.code,
            },
            "context": sanitize_context(context, self.max_string_length),
            "analysis": {
                "possible_causes": list(classification.common_causes),
                "suggested_actions": list(classification.suggested_actions),
                "severity": classification.severity.value,
                "recoverable": classification.recoverable,
                "priority": classification.priority,
            },
            "history": history_count,
            "recommendations": generate_recommendations(
                classification, context, history_count, self.repeat_threshold
            ),
        }

        self._reports[report["error_id"]] = report
        while len(self._reports) > self.max_reports:
            self._reports.popitem(last=False)
        logger.debug(f"Diagnostic report {report['error_id']} stored ({classification.type.value})")
        return report

    def get(self, error_id: str) -> Optional[Dict[str, Any]]:
        return self._reports.get(error_id)

    def recent(self, limit: int = 10) -> List[Dict[str, Any]]:
        """Most recent reports, newest first."""
        if limit <= 0:
            return []
        return list(reversed(list(self._reports.values())[-limit:]))

    def clear(self) -> None:
        self._reports.clear()

    def __len__(self) -> int:
        return len(self._reports)
