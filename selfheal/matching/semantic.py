"""Semantic context analysis for intelligent element matching."""

import re
import threading
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Pattern, Sequence, Tuple

from loguru import logger

from selfheal.constants import SemanticMatching
from selfheal.models.element import ElementSnapshot
from selfheal.models.semantic import (
    BusinessContext,
    ContentAnalysis,
    ElementPurpose,
    SemanticProfile,
)

_INPUT_TYPE_ROLES: Dict[str, str] = {
    "button": "button",
    "submit": "button",
    "reset": "button",
    "checkbox": "checkbox",
    "radio": "radio",
    "file": "file-input",
}

_TAG_ROLES: Dict[str, str] = {
    "button": "button",
    "select": "dropdown",
    "textarea": "text-area",
    "a": "link",
}

_ARIA_ROLES: Dict[str, str] = {
    "button": "button",
    "textbox": "text-input",
    "searchbox": "text-input",
    "combobox": "dropdown",
    "listbox": "dropdown",
    "checkbox": "checkbox",
    "radio": "radio",
    "link": "link",
}

# Checked in order against the lower-cased class attribute
_CLASS_HINTS: Tuple[Tuple[Tuple[str, ...], str], ...] = (
    (("btn", "button"), "button"),
    (("input", "field"), "text-input"),
    (("select", "dropdown"), "dropdown"),
    (("checkbox",), "checkbox"),
    (("radio",), "radio"),
    (("link",), "link"),
)

_BUTTON_TEXT: Tuple[Pattern[str], ...] = tuple(
    re.compile(p, re.IGNORECASE)
    for p in (r"submit", r"save", r"continue", r"next", r"cancel", r"\bok\b")
)

INTERACTION_TYPES: Dict[str, str] = {
    "button": "click",
    "text-input": "type",
    "text-area": "type",
    "dropdown": "select",
    "checkbox": "check",
    "radio": "check",
    "link": "navigate",
    "file-input": "upload",
}

STOP_WORDS = frozenset({"the", "and", "or", "but", "in", "on", "at", "to", "for", "of", "with", "by"})

ACTION_WORDS = frozenset(
    {
        "click", "submit", "save", "send", "search", "find", "create", "delete", "edit",
        "update", "cancel", "continue", "next", "previous", "back",
    }
)

POSITIVE_WORDS = frozenset({"save", "submit", "continue", "next", "ok", "yes", "accept", "agree"})
NEGATIVE_WORDS = frozenset({"cancel", "delete", "remove", "no", "reject", "decline"})

_WORD_SPLIT = re.compile(r"[^\w]+")


@dataclass(frozen=True)
class SemanticMatch:
    """Candidate element scored against a semantic target."""

    element: Any
    similarity: float
    confidence: float
    profile: SemanticProfile

    @property
    def score(self) -> float:
        return (self.similarity + self.confidence) / 2


def classify_element_type(snapshot: ElementSnapshot) -> str:
    """
    Classify an element's role.

    Precedence: tag, then ARIA role, then class-name hints, then text patterns.
    """
    tag = snapshot.tag
    if tag == "input":
        return _INPUT_TYPE_ROLES.get(snapshot.attr("type").lower(), "text-input")
    if tag in _TAG_ROLES:
        return _TAG_ROLES[tag]

    role = snapshot.role.lower()
    if role in _ARIA_ROLES:
        return _ARIA_ROLES[role]

    class_name = snapshot.class_name.lower()
    if class_name:
        for needles, element_type in _CLASS_HINTS:
            if any(n in class_name for n in needles):
                return element_type

    if snapshot.text and any(p.search(snapshot.text) for p in _BUTTON_TEXT):
        return "button"
    return "unknown"


def interaction_type_for(element_type: str) -> str:
    return INTERACTION_TYPES.get(element_type, "click")


def extract_keywords(text: str) -> List[str]:
    words = [w for w in _WORD_SPLIT.split(text.lower()) if len(w) > 2]
    return [w for w in words if w not in STOP_WORDS]


def extract_action_words(text: str) -> List[str]:
    return [w for w in text.lower().split() if w in ACTION_WORDS]


def analyze_sentiment(text: str) -> str:
    words = text.lower().split()
    positive = sum(1 for w in words if w in POSITIVE_WORDS)
    negative = sum(1 for w in words if w in NEGATIVE_WORDS)
    if positive > negative:
        return "positive"
    if negative > positive:
        return "negative"
    return "neutral"


def analyze_content(snapshot: ElementSnapshot) -> ContentAnalysis:
    parts = [
        snapshot.text,
        snapshot.attr("placeholder"),
        snapshot.attr("aria-label"),
        snapshot.attr("title"),
        snapshot.attr("alt"),
    ]
    all_text = " ".join(p.strip() for p in parts if p and p.strip()).lower()
    return ContentAnalysis(
        has_text=bool(all_text),
        text_length=len(all_text),
        keywords=tuple(extract_keywords(all_text)),
        action_words=tuple(extract_action_words(all_text)),
        sentiment=analyze_sentiment(all_text),
    )


def accessibility_score(snapshot: ElementSnapshot) -> float:
    score = 0.0
    if snapshot.role:
        score += 0.25
    if snapshot.attr("aria-label"):
        score += 0.25
    if snapshot.attr("aria-labelledby"):
        score += 0.25
    if snapshot.attr("title") or snapshot.attr("alt"):
        score += 0.25
    return score


def determine_purpose(
    element_type: str, content: ContentAnalysis, parent_tag: str = ""
) -> ElementPurpose:
    """
    Rule-based purpose estimate with additive confidence.

    Base 0.5; +0.2 action-trigger, +0.1 search, +0.1 form-submission,
    +0.1 form-element. Capped at 1.0.
    """
    secondary: List[str] = []
    confidence = SemanticMatching.BASE_PURPOSE_CONFIDENCE
    if content.action_words:
        secondary.append("action-trigger")
        confidence += 0.2
    if any(k in ("search", "find", "query") for k in content.keywords):
        secondary.append("search")
        confidence += 0.1
    if any(k in ("save", "submit", "send") for k in content.keywords):
        secondary.append("form-submission")
        confidence += 0.1
    if parent_tag == "form":
        secondary.append("form-element")
        confidence += 0.1
    return ElementPurpose(primary=element_type, secondary=tuple(secondary), confidence=min(confidence, 1.0))


def _overlap(a: Sequence[str], b: Sequence[str]) -> float:
    common = [x for x in a if x in b]
    return len(common) / max(len(a), len(b), 1)


def compare_purposes(p1: ElementPurpose, p2: ElementPurpose) -> float:
    if p1.primary == p2.primary:
        return 1.0
    return _overlap(p1.secondary, p2.secondary)


def compare_content(c1: ContentAnalysis, c2: ContentAnalysis) -> float:
    return (_overlap(c1.keywords, c2.keywords) + _overlap(c1.action_words, c2.action_words)) / 2


def compare_business_context(b1: BusinessContext, b2: BusinessContext) -> float:
    return ((b1.domain == b2.domain) + (b1.workflow == b2.workflow)) / 2


class SemanticContextAnalyzer:
    """Understand element purpose from DOM signals and match by meaning."""

    def __init__(
        self,
        threshold: float = SemanticMatching.THRESHOLD,
        max_candidates: int = 10,
        cache_size: int = SemanticMatching.CACHE_SIZE,
        weights: Optional[Dict[str, float]] = None,
    ):
        """
        Initialize semantic context analyzer.

        Args:
            threshold: Minimum similarity for a candidate to be returned
            max_candidates: Maximum number of candidates returned
            cache_size: Maximum cached analyses (keyed by element snapshot)
            weights: Component weights (type, purpose, content, business)
        """
        self.threshold = threshold
        self.max_candidates = max_candidates
        self.cache_size = cache_size
        self.weights = dict(weights or SemanticMatching.WEIGHTS)
        self._cache: "OrderedDict[Tuple[Any, ...], SemanticProfile]" = OrderedDict()
        self._lock = threading.Lock()

    def analyze_snapshot(
        self, snapshot: ElementSnapshot, context: Optional[Mapping[str, Any]] = None
    ) -> SemanticProfile:
        """
        Build the semantic profile of an element snapshot.

        Args:
            snapshot: Element state read from the driver
            context: Optional ``business_domain``, ``workflow`` and ``step``

        Returns:
            Fully populated profile
        """
        context = context or {}
        cache_key = self._cache_key(snapshot, context)
        with self._lock:
            cached = self._cache.get(cache_key)
            if cached is not None:
                self._cache.move_to_end(cache_key)
                return cached

        element_type = classify_element_type(snapshot)
        content = analyze_content(snapshot)
        parent_tag = snapshot.parent.tag if snapshot.parent else ""
        purpose = determine_purpose(element_type, content, parent_tag)
        a11y = accessibility_score(snapshot)
        box = snapshot.bounding_box

        structural: Dict[str, Any] = {
            "parent_type": parent_tag,
            "parent_class": snapshot.parent.class_name if snapshot.parent else "",
            "sibling_count": len(snapshot.siblings),
            "sibling_types": [s.tag for s in snapshot.siblings],
        }
        visual: Dict[str, Any] = {"visible": snapshot.visible, "enabled": snapshot.enabled}
        if box is not None:
            structural["position"] = {
                "is_top_level": box.y < 200,
                "is_left_aligned": box.x < 100,
                "is_right_aligned": box.x > 800,
                "is_centered": 300 < box.x < 700,
            }
            visual.update(
                size=box.area,
                aspect_ratio=box.aspect_ratio,
                is_large=box.width > 200 or box.height > 50,
                is_small=box.width < 50 and box.height < 30,
            )

        business = BusinessContext(
            domain=str(context.get("business_domain") or "general"),
            workflow=str(context.get("workflow") or "unknown"),
            step=str(context.get("step") or "unknown"),
            custom_attributes={
                k: v for k, v in snapshot.attributes.items() if k.startswith("data-")
            },
        )

        confidence = 0.5
        if element_type != "unknown":
            confidence += 0.2
        if content.has_text:
            confidence += 0.1
        if a11y > 0.5:
            confidence += 0.1
        if purpose.confidence > 0.7:
            confidence += 0.1

        profile = SemanticProfile(
            element_type=element_type,
            interaction_type=interaction_type_for(element_type),
            purpose=purpose,
            content=content,
            business_context=business,
            accessibility_score=a11y,
            structural=structural,
            visual=visual,
            confidence=min(confidence, 1.0),
        )

        with self._lock:
            self._cache[cache_key] = profile
            while len(self._cache) > self.cache_size:
                self._cache.popitem(last=False)
        return profile

    async def analyze_element(
        self, driver: Any, element: Any, context: Optional[Mapping[str, Any]] = None
    ) -> SemanticProfile:
        snapshot = await driver.describe(element)
        return self.analyze_snapshot(snapshot, context)

    def calculate_similarity(self, target: SemanticProfile, candidate: SemanticProfile) -> float:
        """
        Blend type, purpose, content and business-context agreement.

        Only the parts present on both sides contribute; the result is
        normalised over their weights.
        """
        score = 0.0
        weight_sum = 0.0
        if target.element_type and candidate.element_type:
            score += self.weights["type"] * (target.element_type == candidate.element_type)
            weight_sum += self.weights["type"]
        if target.purpose and candidate.purpose:
            score += self.weights["purpose"] * compare_purposes(target.purpose, candidate.purpose)
            weight_sum += self.weights["purpose"]
        if target.content and candidate.content:
            score += self.weights["content"] * compare_content(target.content, candidate.content)
            weight_sum += self.weights["content"]
        if target.business_context and candidate.business_context:
            score += self.weights["business"] * compare_business_context(
                target.business_context, candidate.business_context
            )
            weight_sum += self.weights["business"]
        return score / weight_sum if weight_sum > 0 else 0.0

    async def find_by_semantic_context(
        self,
        driver: Any,
        target: SemanticProfile,
        threshold: Optional[float] = None,
        max_candidates: Optional[int] = None,
        context: Optional[Mapping[str, Any]] = None,
    ) -> List[SemanticMatch]:
        """
        Rank interactive elements by semantic similarity to ``target``.

        Returns:
            Matches at or above the threshold ordered by the mean of
            similarity and analysis confidence, capped
        """
        threshold = self.threshold if threshold is None else threshold
        limit = max_candidates or self.max_candidates

        candidates = await driver.query_all(SemanticMatching.INTERACTIVE_SELECTOR)
        matches: List[SemanticMatch] = []
        for candidate in candidates:
            try:
                profile = await self.analyze_element(driver, candidate, context)
            except (ValueError, KeyError, TypeError) as e:
                logger.debug(f"Skipping semantic candidate: {e}")
                continue
            similarity = self.calculate_similarity(target, profile)
            if similarity >= threshold:
                matches.append(SemanticMatch(candidate, similarity, profile.confidence, profile))

        matches.sort(key=lambda m: m.score, reverse=True)
        return matches[:limit]

    @staticmethod
    def _cache_key(snapshot: ElementSnapshot, context: Mapping[str, Any]) -> Tuple[Any, ...]:
        return (
            snapshot.tag,
            snapshot.id,
            snapshot.class_name,
            snapshot.text,
            snapshot.role,
            tuple(sorted(snapshot.attributes.items())),
            snapshot.parent.tag if snapshot.parent else "",
            snapshot.bounding_box,
            snapshot.visible,
            snapshot.enabled,
            context.get("business_domain"),
            context.get("workflow"),
            context.get("step"),
        )

    def clear_cache(self) -> None:
        with self._lock:
            self._cache.clear()

    def get_cache_stats(self) -> Dict[str, Any]:
        with self._lock:
            return {"cache_size": len(self._cache), "max_size": self.cache_size}
