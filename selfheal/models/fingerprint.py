"""Visual fingerprint records."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional, Tuple

from selfheal.models.element import BoundingBox, NodeDescriptor


@dataclass(frozen=True)
class VisualFeatures:
    """Coarse feature vector of an element."""

    width: float = 0.0
    height: float = 0.0
    aspect_ratio: float = 0.0
    area: float = 0.0
    mean_luminance: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "width": self.width,
            "height": self.height,
            "aspect_ratio": self.aspect_ratio,
            "area": self.area,
            "mean_luminance": self.mean_luminance,
        }


@dataclass(frozen=True)
class SurroundingContext:
    """Parent and sibling descriptors of an element."""

    parent: Optional[NodeDescriptor] = None
    siblings: Tuple[NodeDescriptor, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "parent": self.parent.to_dict() if self.parent else None,
            "siblings": [s.to_dict() for s in self.siblings],
        }


@dataclass(frozen=True)
class VisualFingerprint:
    """Compact, comparable descriptor of an element's visual identity."""

    perceptual_hash: str = ""
    bounding_box: Optional[BoundingBox] = None
    features: VisualFeatures = field(default_factory=VisualFeatures)
    surrounding_context: SurroundingContext = field(default_factory=SurroundingContext)
    captured_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    page_url: str = ""
    viewport: Optional[Tuple[int, int]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "perceptual_hash": self.perceptual_hash,
            "bounding_box": self.bounding_box.to_dict() if self.bounding_box else None,
            "features": self.features.to_dict(),
            "surrounding_context": self.surrounding_context.to_dict(),
            "captured_at": self.captured_at,
            "page_url": self.page_url,
            "viewport": list(self.viewport) if self.viewport else None,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "VisualFingerprint":
        features = data.get("features") or {}
        context = data.get("surrounding_context") or {}
        siblings = tuple(
            node for node in (NodeDescriptor.from_dict(s) for s in context.get("siblings") or [])
            if node is not None
        )
        viewport = data.get("viewport")
        return cls(
            perceptual_hash=str(data.get("perceptual_hash", "")),
            bounding_box=BoundingBox.from_dict(data.get("bounding_box")),
            features=VisualFeatures(
                width=float(features.get("width", 0.0)),
                height=float(features.get("height", 0.0)),
                aspect_ratio=float(features.get("aspect_ratio", 0.0)),
                area=float(features.get("area", 0.0)),
                mean_luminance=features.get("mean_luminance"),
            ),
            surrounding_context=SurroundingContext(
                parent=NodeDescriptor.from_dict(context.get("parent")), siblings=siblings
            ),
            captured_at=str(data.get("captured_at") or datetime.now(timezone.utc).isoformat()),
            page_url=str(data.get("page_url", "")),
            viewport=(int(viewport[0]), int(viewport[1])) if viewport else None,
        )
