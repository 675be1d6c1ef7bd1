"""Locator and similarity-matcher constants."""

from typing import Dict, Final


class LocatorPriorities:
    """Static strategy priorities, lower is tried first."""

    CSS: Final[float] = 1.0
    ALTERNATIVE_SELECTOR: Final[float] = 1.5
    XPATH: Final[float] = 2.0
    ACCESSIBILITY: Final[float] = 3.0
    VISUAL: Final[float] = 4.0
    SEMANTIC: Final[float] = 5.0
    FUZZY: Final[float] = 6.0


class Learning:
    """Strategy outcome history limits."""

    MAX_ELEMENT_SAMPLES: Final[int] = 10


class VisualMatching:
    """Visual similarity matcher parameters."""

    THRESHOLD: Final[float] = 0.8
    MAX_CANDIDATES: Final[int] = 10
    CACHE_SIZE: Final[int] = 100
    CACHE_TTL_SECONDS: Final[float] = 300.0
    HASH_SIZE: Final[int] = 8

    WEIGHTS: Final[Dict[str, float]] = {
        "hash": 0.4,
        "bounding_box": 0.2,
        "features": 0.3,
        "context": 0.1,
    }


class SemanticMatching:
    """Semantic context analyzer parameters."""

    THRESHOLD: Final[float] = 0.7
    CACHE_SIZE: Final[int] = 100
    BASE_PURPOSE_CONFIDENCE: Final[float] = 0.5
    MAX_KEYWORDS: Final[int] = 10

    WEIGHTS: Final[Dict[str, float]] = {
        "type": 0.3,
        "purpose": 0.3,
        "content": 0.2,
        "business": 0.2,
    }

    INTERACTIVE_SELECTOR: Final[str] = (
        'button, input, select, textarea, a[href], [role="button"], [onclick], [tabindex]'
    )
