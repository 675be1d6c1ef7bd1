"""Element location strategies used by the self-healing locator."""

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from difflib import SequenceMatcher
from typing import Any, Awaitable, Callable, List, Mapping, Optional, Sequence, Tuple

from loguru import logger

from selfheal.constants import LocatorPriorities
from selfheal.core.enums import LocatorStrategy
from selfheal.core.exceptions import DriverTimeoutError
from selfheal.models.selector import SelectorDescriptor

_VARIABLE = re.compile(r"\{\{([^}]+)\}\}")


def substitute_variables(selector: str, variables: Mapping[str, Any]) -> str:
    """
    Replace ``{{name}}`` placeholders with values from ``variables``.

    Unknown placeholders are left in place.
    """
    if not selector or "{{" not in selector:
        return selector

    def replace(match: "re.Match[str]") -> str:
        value = variables.get(match.group(1).strip())
        return match.group(0) if value is None else str(value)

    return _VARIABLE.sub(replace, selector)


def generate_fuzzy_selectors(selector: str) -> List[str]:
    """
    Loosened variants of a CSS selector, most specific first.

    Drops positional indices, class parts, id parts and attribute filters,
    then tries the selector without its first and without its last part.
    """
    if not selector:
        return []
    variants = [
        re.sub(r"\[\d+\]", "", selector),
        re.sub(r"\.[a-zA-Z0-9_-]+", "", selector),
        re.sub(r"#[a-zA-Z0-9_-]+", "", selector),
        re.sub(r"\[[^\]]*\]", "", selector),
    ]
    parts = selector.split()
    if len(parts) > 1:
        variants.append(" ".join(parts[1:]))
        variants.append(" ".join(parts[:-1]))

    seen = set()
    result = []
    for variant in (v.strip() for v in variants):
        if variant and variant != selector and variant not in seen:
            seen.add(variant)
            result.append(variant)
    return result


def selector_similarity(original: str, variant: str) -> float:
    """Character-level similarity of a loosened selector to the original, 0..1."""
    if not original or not variant:
        return 0.0
    return SequenceMatcher(None, original, variant).ratio()


@dataclass(frozen=True)
class StrategyHit:
    """Outcome of one strategy run."""

    element: Any = None
    selector: Optional[str] = None
    notes: Tuple[str, ...] = ()

    @property
    def found(self) -> bool:
        return self.element is not None


@dataclass
class LookupContext:
    """Everything a strategy may use during one lookup."""

    driver: Any
    descriptor: SelectorDescriptor
    variables: Mapping[str, Any] = field(default_factory=dict)
    is_interactable: Optional[Callable[[Any], Awaitable[bool]]] = None
    visual_matcher: Any = None
    semantic_analyzer: Any = None
    visual_threshold: Optional[float] = None
    semantic_threshold: Optional[float] = None
    confidence_threshold: Optional[float] = None

    async def interactable(self, element: Any) -> bool:
        if self.is_interactable is not None:
            return await self.is_interactable(element)
        return await self.driver.is_visible(element) and await self.driver.is_enabled(element)


class LocatorStrategyBase(ABC):
    """One way of relocating an element."""

    kind: LocatorStrategy
    priority: float
    confidence: float

    def applicable(self, descriptor: SelectorDescriptor) -> bool:
        return True

    @abstractmethod
    async def find(self, lookup: LookupContext) -> StrategyHit:
        """Return the first interactable element this strategy can reach."""

    async def _first_interactable(
        self,
        lookup: LookupContext,
        selectors: Sequence[str],
        query: Callable[[str], Awaitable[Any]],
    ) -> StrategyHit:
        notes: List[str] = []
        for raw in selectors:
            selector = substitute_variables(raw, lookup.variables)
            try:
                element = await query(selector)
            except DriverTimeoutError:
                raise
            except Exception as e:
                notes.append(f"{selector}: {e}")
                continue
            if element is None:
                notes.append(f"{selector}: no match")
                continue
            if await lookup.interactable(element):
                return StrategyHit(element=element, selector=selector, notes=tuple(notes))
            notes.append(f"{selector}: found but not interactable")
        return StrategyHit(notes=tuple(notes))


class CssStrategy(LocatorStrategyBase):
    kind = LocatorStrategy.CSS
    priority = LocatorPriorities.CSS
    confidence = 0.9

    def applicable(self, descriptor: SelectorDescriptor) -> bool:
        return bool(descriptor.primary)

    async def find(self, lookup: LookupContext) -> StrategyHit:
        return await self._first_interactable(
            lookup, [lookup.descriptor.primary], lookup.driver.query
        )


class AlternativeSelectorStrategy(LocatorStrategyBase):
    kind = LocatorStrategy.ALTERNATIVE_SELECTOR
    priority = LocatorPriorities.ALTERNATIVE_SELECTOR
    confidence = 0.85

    def applicable(self, descriptor: SelectorDescriptor) -> bool:
        return bool(descriptor.css)

    async def find(self, lookup: LookupContext) -> StrategyHit:
        return await self._first_interactable(lookup, lookup.descriptor.css, lookup.driver.query)


class XPathStrategy(LocatorStrategyBase):
    kind = LocatorStrategy.XPATH
    priority = LocatorPriorities.XPATH
    confidence = 0.85

    def applicable(self, descriptor: SelectorDescriptor) -> bool:
        return bool(descriptor.xpath)

    async def find(self, lookup: LookupContext) -> StrategyHit:
        return await self._first_interactable(
            lookup, lookup.descriptor.xpath, lookup.driver.query_xpath
        )


class AccessibilityStrategy(LocatorStrategyBase):
    kind = LocatorStrategy.ACCESSIBILITY
    priority = LocatorPriorities.ACCESSIBILITY
    confidence = 0.8

    def applicable(self, descriptor: SelectorDescriptor) -> bool:
        return bool(descriptor.accessibility)

    @staticmethod
    def build_selectors(descriptor: SelectorDescriptor) -> List[str]:
        hints = descriptor.accessibility
        attribute_selector = ""
        if hints.role:
            attribute_selector += f'[role="{hints.role}"]'
        if hints.label:
            attribute_selector += f'[aria-label*="{hints.label}"]'
        if hints.labelled_by:
            attribute_selector += f'[aria-labelledby="{hints.labelled_by}"]'
        if hints.described_by:
            attribute_selector += f'[aria-describedby="{hints.described_by}"]'
        selectors = [attribute_selector] if attribute_selector else []
        if hints.text:
            selectors.append(f"text={hints.text}")
        return selectors

    async def find(self, lookup: LookupContext) -> StrategyHit:
        return await self._first_interactable(
            lookup, self.build_selectors(lookup.descriptor), lookup.driver.query
        )


class VisualStrategy(LocatorStrategyBase):
    kind = LocatorStrategy.VISUAL
    priority = LocatorPriorities.VISUAL
    confidence = 0.75

    def applicable(self, descriptor: SelectorDescriptor) -> bool:
        return descriptor.visual_fingerprint is not None or bool(descriptor.primary)

    async def find(self, lookup: LookupContext) -> StrategyHit:
        matcher = lookup.visual_matcher
        if matcher is None:
            return StrategyHit(notes=("no visual matcher configured",))

        fingerprint = lookup.descriptor.visual_fingerprint
        if fingerprint is None:
            url = await lookup.driver.current_url()
            fingerprint = matcher.get_cached_fingerprint(lookup.descriptor.key, url)
        if fingerprint is None:
            return StrategyHit(notes=("no visual fingerprint available",))

        matches = await matcher.find_by_similarity(
            lookup.driver, fingerprint, threshold=lookup.visual_threshold
        )
        for match in matches:
            if await lookup.interactable(match.element):
                return StrategyHit(element=match.element, notes=(f"similarity={match.similarity:.3f}",))
        return StrategyHit(notes=(f"{len(matches)} visual candidates, none interactable",))


class SemanticStrategy(LocatorStrategyBase):
    kind = LocatorStrategy.SEMANTIC
    priority = LocatorPriorities.SEMANTIC
    confidence = 0.7

    def applicable(self, descriptor: SelectorDescriptor) -> bool:
        return descriptor.semantic_context is not None

    async def find(self, lookup: LookupContext) -> StrategyHit:
        analyzer = lookup.semantic_analyzer
        if analyzer is None:
            return StrategyHit(notes=("no semantic analyzer configured",))
        matches = await analyzer.find_by_semantic_context(
            lookup.driver,
            lookup.descriptor.semantic_context,
            threshold=(
                lookup.semantic_threshold
                if lookup.semantic_threshold is not None
                else lookup.confidence_threshold
            ),
            context=lookup.variables,
        )
        for match in matches:
            if await lookup.interactable(match.element):
                return StrategyHit(element=match.element, notes=(f"similarity={match.similarity:.3f}",))
        return StrategyHit(notes=(f"{len(matches)} semantic candidates, none interactable",))


class FuzzyStrategy(LocatorStrategyBase):
    kind = LocatorStrategy.FUZZY
    priority = LocatorPriorities.FUZZY
    confidence = 0.6

    def applicable(self, descriptor: SelectorDescriptor) -> bool:
        return bool(descriptor.primary)

    async def find(self, lookup: LookupContext) -> StrategyHit:
        primary = substitute_variables(lookup.descriptor.primary, lookup.variables)
        variants = generate_fuzzy_selectors(primary)
        if not variants:
            return StrategyHit(notes=("no fuzzy variants",))
        threshold = lookup.confidence_threshold
        if threshold is not None:
            variants = [v for v in variants if selector_similarity(primary, v) >= threshold]
            if not variants:
                return StrategyHit(notes=(f"no fuzzy variant reaches similarity {threshold:.2f}",))
        logger.debug(f"Fuzzy variants for {primary}: {variants}")
        return await self._first_interactable(lookup, variants, lookup.driver.query)


def default_strategies() -> Tuple[LocatorStrategyBase, ...]:
    return (
        CssStrategy(),
        AlternativeSelectorStrategy(),
        XPathStrategy(),
        AccessibilityStrategy(),
        VisualStrategy(),
        SemanticStrategy(),
        FuzzyStrategy(),
    )
