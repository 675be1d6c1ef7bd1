"""Utility functions for masking sensitive data in diagnostics and logs."""

from typing import Any, FrozenSet, Mapping, Optional

from selfheal.constants import Diagnostics


def _normalise_key(key: str) -> str:
    return key.replace("_", "").replace("-", "").lower()


def is_sensitive_key(key: str, sensitive_keys: Optional[FrozenSet[str]] = None) -> bool:
    """
    Check whether a context key names a secret.

    Matching ignores case, underscores and dashes, so ``apiKey``, ``api_key``
    and ``API-KEY`` are all caught.

    Args:
        key: Context key
        sensitive_keys: Normalised key names to treat as secrets

    Returns:
        True if the value under ``key`` must never be emitted
    """
    keys = sensitive_keys if sensitive_keys is not None else Diagnostics.SENSITIVE_KEYS
    return _normalise_key(key) in keys


def sanitize_context(
    context: Mapping[str, Any],
    max_string_length: int = Diagnostics.MAX_STRING_LENGTH,
    sensitive_keys: Optional[FrozenSet[str]] = None,
) -> dict:
    """
    Copy a context map with secrets removed and long strings truncated.

    Sensitive keys are dropped entirely (not masked) at any nesting depth;
    every other value is preserved verbatim apart from strings longer than
    ``max_string_length``.

    Args:
        context: Free-form caller context
        max_string_length: Longest string kept before truncation
        sensitive_keys: Normalised key names to strip

    Returns:
        Sanitised copy safe to export

    Examples:
        >>> sanitize_context({"password": "x", "selector": "#a"})
        {'selector': '#a'}
    """
    return {
        key: _sanitize_value(value, max_string_length, sensitive_keys)
        for key, value in context.items()
        if not is_sensitive_key(str(key), sensitive_keys)
    }


def _sanitize_value(value: Any, max_len: int, sensitive_keys: Optional[FrozenSet[str]]) -> Any:
    if isinstance(value, Mapping):
        return sanitize_context(value, max_len, sensitive_keys)
    if isinstance(value, (list, tuple)):
        return [_sanitize_value(v, max_len, sensitive_keys) for v in value]
    if isinstance(value, str) and len(value) > max_len:
        return value[:max_len] + "...[truncated]"
    return value

