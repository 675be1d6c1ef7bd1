"""selfheal - Resilience engine for unattended browser automation."""

import importlib as _importlib
from typing import TYPE_CHECKING, Any

__version__ = "0.1.0"

if TYPE_CHECKING:
    from .core.config import EngineSettings as EngineSettings
    from .core.exceptions import ElementNotFoundError as ElementNotFoundError
    from .core.exceptions import RetryExhaustedError as RetryExhaustedError
    from .core.logger import setup_logging as setup_logging
    from .driver import GuardedDriver as GuardedDriver
    from .driver import PlaywrightDriver as PlaywrightDriver
    from .matching import SemanticContextAnalyzer as SemanticContextAnalyzer
    from .matching import VisualSimilarityMatcher as VisualSimilarityMatcher
    from .resilience import ErrorClassifier as ErrorClassifier
    from .resilience import ResilienceEngine as ResilienceEngine
    from .selector import SelfHealingLocator as SelfHealingLocator
    from .timing import AdaptiveTimingController as AdaptiveTimingController

# Explicit lazy-loading map: name -> (module_path, attribute_name)
_LAZY_MODULE_MAP = {
    # Core
    "EngineSettings": ("selfheal.core.config", "EngineSettings"),
    "ElementNotFoundError": ("selfheal.core.exceptions", "ElementNotFoundError"),
    "RetryExhaustedError": ("selfheal.core.exceptions", "RetryExhaustedError"),
    "setup_logging": ("selfheal.core.logger", "setup_logging"),
    # Driver
    "GuardedDriver": ("selfheal.driver", "GuardedDriver"),
    "PlaywrightDriver": ("selfheal.driver", "PlaywrightDriver"),
    # Engine
    "ResilienceEngine": ("selfheal.resilience", "ResilienceEngine"),
    "ErrorClassifier": ("selfheal.resilience", "ErrorClassifier"),
    "SelfHealingLocator": ("selfheal.selector", "SelfHealingLocator"),
    "AdaptiveTimingController": ("selfheal.timing", "AdaptiveTimingController"),
    # Matching
    "VisualSimilarityMatcher": ("selfheal.matching", "VisualSimilarityMatcher"),
    "SemanticContextAnalyzer": ("selfheal.matching", "SemanticContextAnalyzer"),
}

__all__ = list(_LAZY_MODULE_MAP.keys())


def __getattr__(name: str) -> Any:
    """Lazy import with explicit mapping - importlib based."""
    if name in _LAZY_MODULE_MAP:
        module_path, attr_name = _LAZY_MODULE_MAP[name]
        module = _importlib.import_module(module_path)
        attr = getattr(module, attr_name)
        globals()[name] = attr
        return attr
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
