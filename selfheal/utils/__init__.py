"""Utility helpers."""

from .keys import normalize_keys, to_snake_case
from .masking import is_sensitive_key, sanitize_context

__all__ = ["is_sensitive_key", "normalize_keys", "sanitize_context", "to_snake_case"]
