"""Selector descriptors and locator results."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from selfheal.core.enums import LocatorStrategy
from selfheal.models.fingerprint import VisualFingerprint
from selfheal.models.semantic import SemanticProfile


def _as_tuple(value: Any) -> Tuple[str, ...]:
    if not value:
        return ()
    if isinstance(value, str):
        return (value,)
    return tuple(str(v) for v in value if v)


@dataclass(frozen=True)
class AccessibilityHints:
    """ARIA-level hints for relocating an element."""

    role: str = ""
    label: str = ""
    labelled_by: str = ""
    described_by: str = ""
    text: str = ""

    def __bool__(self) -> bool:
        return any((self.role, self.label, self.labelled_by, self.described_by, self.text))

    def to_dict(self) -> Dict[str, str]:
        return {
            "role": self.role,
            "label": self.label,
            "labelled_by": self.labelled_by,
            "described_by": self.described_by,
            "text": self.text,
        }

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "AccessibilityHints":
        if not data:
            return cls()
        return cls(
            role=str(data.get("role", "") or ""),
            label=str(data.get("label", data.get("aria_label", data.get("ariaLabel", ""))) or ""),
            labelled_by=str(data.get("labelled_by", data.get("ariaLabelledBy", "")) or ""),
            described_by=str(data.get("described_by", data.get("ariaDescribedBy", "")) or ""),
            text=str(data.get("text", "") or ""),
        )


@dataclass(frozen=True)
class SelectorDescriptor:
    """
    Every known way to relocate one logical element.

    ``css`` holds alternative CSS selectors tried after ``primary``; strategies
    consume only the parts they understand.
    """

    primary: str = ""
    css: Tuple[str, ...] = ()
    xpath: Tuple[str, ...] = ()
    accessibility: AccessibilityHints = field(default_factory=AccessibilityHints)
    visual_fingerprint: Optional[VisualFingerprint] = None
    semantic_context: Optional[SemanticProfile] = None
    name: str = ""

    @property
    def key(self) -> str:
        """Stable identity used for learning history."""
        return self.name or self.primary or (self.xpath[0] if self.xpath else "") or "anonymous"

    @property
    def all_css(self) -> Tuple[str, ...]:
        return ((self.primary,) if self.primary else ()) + self.css

    def next_alternative(self, used: Tuple[str, ...] = ()) -> Optional[str]:
        """Return the first alternative CSS selector not in ``used``."""
        for selector in self.css:
            if selector != self.primary and selector not in used:
                return selector
        return None

    def with_primary(self, selector: str) -> "SelectorDescriptor":
        """Copy with ``selector`` promoted to primary."""
        rest = tuple(s for s in self.all_css if s != selector)
        return SelectorDescriptor(
            primary=selector,
            css=rest,
            xpath=self.xpath,
            accessibility=self.accessibility,
            visual_fingerprint=self.visual_fingerprint,
            semantic_context=self.semantic_context,
            name=self.name or self.primary,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "primary": self.primary,
            "css": list(self.css),
            "xpath": list(self.xpath),
            "accessibility": self.accessibility.to_dict(),
            "visual_fingerprint": self.visual_fingerprint.to_dict() if self.visual_fingerprint else None,
            "semantic_context": self.semantic_context.to_dict() if self.semantic_context else None,
        }

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any], name: str = "") -> "SelectorDescriptor":
        """
        Build a descriptor from a mapping.

        Recognised keys: ``primary`` or ``selector``; ``css``, ``fallbacks`` or
        ``alternative_selectors``; ``xpath``; ``accessibility`` (or top-level
        ``role``/``aria_label``/``text``); ``visual_fingerprint``;
        ``semantic_context`` (or ``semantic``).
        """
        primary = str(data.get("primary") or data.get("selector") or "")
        alternatives: List[str] = []
        for key in ("css", "fallbacks", "alternative_selectors", "alternativeSelectors"):
            alternatives.extend(s for s in _as_tuple(data.get(key)) if s not in alternatives)
        if not primary and alternatives:
            primary = alternatives.pop(0)

        hints = data.get("accessibility")
        if not isinstance(hints, Mapping):
            hints = {k: data[k] for k in ("role", "aria_label", "ariaLabel", "text") if data.get(k)}

        fingerprint = data.get("visual_fingerprint")
        if isinstance(fingerprint, Mapping):
            fingerprint = VisualFingerprint.from_dict(fingerprint)

        semantic = data.get("semantic_context", data.get("semantic"))
        if isinstance(semantic, Mapping):
            semantic = SemanticProfile.from_dict(semantic)

        return cls(
            primary=primary,
            css=tuple(s for s in alternatives if s != primary),
            xpath=_as_tuple(data.get("xpath")),
            accessibility=AccessibilityHints.from_dict(hints),
            visual_fingerprint=fingerprint if isinstance(fingerprint, VisualFingerprint) else None,
            semantic_context=semantic if isinstance(semantic, SemanticProfile) else None,
            name=str(data.get("name") or name or ""),
        )

    @classmethod
    def coerce(
        cls, value: Union["SelectorDescriptor", str, Mapping[str, Any], None]
    ) -> Optional["SelectorDescriptor"]:
        """Accept a descriptor, a plain selector string or a mapping."""
        if value is None or isinstance(value, SelectorDescriptor):
            return value
        if isinstance(value, str):
            return cls(primary=value) if value else None
        return cls.from_mapping(value)


@dataclass(frozen=True)
class StrategyAttempt:
    """One locator strategy attempt, kept for diagnostics."""

    strategy: LocatorStrategy
    success: bool
    duration_ms: float
    selector: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "strategy": self.strategy.value,
            "success": self.success,
            "duration_ms": round(self.duration_ms, 2),
            "selector": self.selector,
            "error": self.error,
        }


@dataclass(frozen=True)
class LocateResult:
    """Successful lookup."""

    element: Any
    strategy: LocatorStrategy
    selector: Optional[str]
    confidence: float
    duration_ms: float
    attempts: Tuple[StrategyAttempt, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "strategy": self.strategy.value,
            "selector": self.selector,
            "confidence": self.confidence,
            "duration_ms": round(self.duration_ms, 2),
            "attempts": [a.to_dict() for a in self.attempts],
        }
