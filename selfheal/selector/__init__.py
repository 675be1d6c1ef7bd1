"""Selector management and self-healing element location."""

from .learning import StrategyOutcomeHistory, StrategyStats
from .locator import SelfHealingLocator
from .registry import SelectorRegistry
from .strategies import (
    LocatorStrategyBase,
    LookupContext,
    StrategyHit,
    default_strategies,
    generate_fuzzy_selectors,
    substitute_variables,
)

__all__ = [
    "LocatorStrategyBase",
    "LookupContext",
    "SelectorRegistry",
    "SelfHealingLocator",
    "StrategyHit",
    "StrategyOutcomeHistory",
    "StrategyStats",
    "default_strategies",
    "generate_fuzzy_selectors",
    "substitute_variables",
]
