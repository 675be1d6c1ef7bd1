"""Semantic analysis records."""

from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Tuple


@dataclass(frozen=True)
class ContentAnalysis:
    """Keyword-level reading of an element's visible and accessible text."""

    has_text: bool = False
    text_length: int = 0
    keywords: Tuple[str, ...] = ()
    action_words: Tuple[str, ...] = ()
    sentiment: str = "neutral"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "has_text": self.has_text,
            "text_length": self.text_length,
            "keywords": list(self.keywords),
            "action_words": list(self.action_words),
            "sentiment": self.sentiment,
        }


@dataclass(frozen=True)
class ElementPurpose:
    """Primary role plus secondary purpose tags."""

    primary: str
    secondary: Tuple[str, ...] = ()
    confidence: float = 0.5

    def to_dict(self) -> Dict[str, Any]:
        return {
            "primary": self.primary,
            "secondary": list(self.secondary),
            "confidence": round(self.confidence, 4),
        }


@dataclass(frozen=True)
class BusinessContext:
    """Caller-supplied workflow position of an element."""

    domain: str = "general"
    workflow: str = "unknown"
    step: str = "unknown"
    custom_attributes: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "domain": self.domain,
            "workflow": self.workflow,
            "step": self.step,
            "custom_attributes": dict(self.custom_attributes),
        }


@dataclass(frozen=True)
class SemanticProfile:
    """
    Semantic identity of an element.

    Used both for analysed candidates (every part filled in) and as a search
    target, where any part may be left as ``None`` and is then ignored by
    similarity scoring.
    """

    element_type: Optional[str] = None
    interaction_type: Optional[str] = None
    purpose: Optional[ElementPurpose] = None
    content: Optional[ContentAnalysis] = None
    business_context: Optional[BusinessContext] = None
    accessibility_score: float = 0.0
    structural: Dict[str, Any] = field(default_factory=dict)
    visual: Dict[str, Any] = field(default_factory=dict)
    confidence: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "element_type": self.element_type,
            "interaction_type": self.interaction_type,
            "purpose": self.purpose.to_dict() if self.purpose else None,
            "content": self.content.to_dict() if self.content else None,
            "business_context": self.business_context.to_dict() if self.business_context else None,
            "accessibility_score": self.accessibility_score,
            "structural": dict(self.structural),
            "visual": dict(self.visual),
            "confidence": round(self.confidence, 4),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SemanticProfile":
        """
        Build a profile (usually a search target) from a plain mapping.

        Accepts ``purpose`` either as a role string or as a mapping with
        ``primary``/``secondary``, and ``keywords``/``action_words`` either at the
        top level or under ``content``.
        """
        purpose_data = data.get("purpose")
        purpose: Optional[ElementPurpose] = None
        if isinstance(purpose_data, str):
            purpose = ElementPurpose(primary=purpose_data)
        elif isinstance(purpose_data, Mapping):
            purpose = ElementPurpose(
                primary=str(purpose_data.get("primary", "unknown")),
                secondary=tuple(purpose_data.get("secondary") or ()),
                confidence=float(purpose_data.get("confidence", 0.5)),
            )

        content_data = data.get("content")
        if not isinstance(content_data, Mapping):
            content_data = data
        content: Optional[ContentAnalysis] = None
        if "keywords" in content_data or "action_words" in content_data:
            keywords = tuple(str(k).lower() for k in content_data.get("keywords") or ())
            content = ContentAnalysis(
                has_text=bool(keywords),
                text_length=sum(len(k) for k in keywords),
                keywords=keywords,
                action_words=tuple(str(a).lower() for a in content_data.get("action_words") or ()),
            )

        business_data = data.get("business_context")
        business: Optional[BusinessContext] = None
        if isinstance(business_data, Mapping):
            business = BusinessContext(
                domain=str(business_data.get("domain", "general")),
                workflow=str(business_data.get("workflow", "unknown")),
                step=str(business_data.get("step", "unknown")),
            )

        return cls(
            element_type=data.get("element_type"),
            interaction_type=data.get("interaction_type"),
            purpose=purpose,
            content=content,
            business_context=business,
        )
