"""Key normalisation for caller-supplied option and context maps."""

import re
from typing import Any, Dict, Mapping

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")


def to_snake_case(name: str) -> str:
    """
    Convert a camelCase or kebab-case key to snake_case.

    Args:
        name: Key as supplied by the caller

    Returns:
        snake_case key (``alternativeSelectors`` -> ``alternative_selectors``)
    """
    return _CAMEL_BOUNDARY.sub("_", name).replace("-", "_").lower()


def normalize_keys(data: Mapping[str, Any]) -> Dict[str, Any]:
    """Return a shallow copy of ``data`` with snake_case top-level keys."""
    return {to_snake_case(str(key)): value for key, value in data.items()}
