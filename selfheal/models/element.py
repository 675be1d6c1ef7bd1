"""Element snapshots read from the browser driver."""

from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Tuple


@dataclass(frozen=True)
class BoundingBox:
    """Element rectangle in CSS pixels."""

    x: float
    y: float
    width: float
    height: float

    @property
    def area(self) -> float:
        return max(self.width, 0.0) * max(self.height, 0.0)

    @property
    def aspect_ratio(self) -> float:
        return self.width / self.height if self.height > 0 else 0.0

    def intersection_area(self, other: "BoundingBox") -> float:
        left = max(self.x, other.x)
        top = max(self.y, other.y)
        right = min(self.x + self.width, other.x + other.width)
        bottom = min(self.y + self.height, other.y + other.height)
        if right <= left or bottom <= top:
            return 0.0
        return (right - left) * (bottom - top)

    def to_dict(self) -> Dict[str, float]:
        return {"x": self.x, "y": self.y, "width": self.width, "height": self.height}

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> Optional["BoundingBox"]:
        if not data:
            return None
        return cls(
            x=float(data.get("x", 0.0)),
            y=float(data.get("y", 0.0)),
            width=float(data.get("width", 0.0)),
            height=float(data.get("height", 0.0)),
        )


@dataclass(frozen=True)
class NodeDescriptor:
    """Compact description of a parent or sibling node."""

    tag: str = ""
    id: str = ""
    class_name: str = ""
    text: str = ""

    def to_dict(self) -> Dict[str, str]:
        return {"tag": self.tag, "id": self.id, "class_name": self.class_name, "text": self.text}

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> Optional["NodeDescriptor"]:
        if not data:
            return None
        return cls(
            tag=str(data.get("tag", "") or "").lower(),
            id=str(data.get("id", "") or ""),
            class_name=str(data.get("class_name", data.get("className", "")) or ""),
            text=str(data.get("text", "") or "")[:100],
        )


@dataclass(frozen=True)
class ElementSnapshot:
    """Structured read of one element's DOM state."""

    tag: str
    id: str = ""
    class_name: str = ""
    text: str = ""
    role: str = ""
    attributes: Dict[str, str] = field(default_factory=dict)
    bounding_box: Optional[BoundingBox] = None
    parent: Optional[NodeDescriptor] = None
    siblings: Tuple[NodeDescriptor, ...] = ()
    visible: bool = True
    enabled: bool = True
    in_form: bool = False
    form_action: str = ""

    def attr(self, name: str, default: str = "") -> str:
        return self.attributes.get(name, default) or default

    @property
    def classes(self) -> Tuple[str, ...]:
        return tuple(c for c in self.class_name.split() if c)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ElementSnapshot":
        """Build a snapshot from the driver's ``describe`` payload."""
        attributes = {str(k): str(v) for k, v in (data.get("attributes") or {}).items()}
        siblings = tuple(
            node for node in (NodeDescriptor.from_dict(s) for s in data.get("siblings") or [])
            if node is not None
        )
        return cls(
            tag=str(data.get("tag", "") or "").lower(),
            id=str(data.get("id", "") or attributes.get("id", "")),
            class_name=str(data.get("class_name", data.get("className", "")) or ""),
            text=str(data.get("text", "") or "").strip(),
            role=str(data.get("role", "") or attributes.get("role", "")),
            attributes=attributes,
            bounding_box=BoundingBox.from_dict(data.get("bounding_box")),
            parent=NodeDescriptor.from_dict(data.get("parent")),
            siblings=siblings,
            visible=bool(data.get("visible", True)),
            enabled=bool(data.get("enabled", True)),
            in_form=bool(data.get("in_form", False)),
            form_action=str(data.get("form_action", "") or ""),
        )

    def characteristics(self) -> Dict[str, Any]:
        """Summary stored by the learning history after a successful lookup."""
        return {
            "tag": self.tag,
            "id": self.id,
            "class_name": self.class_name,
            "text": self.text[:100],
            "role": self.role,
            "bounding_box": self.bounding_box.to_dict() if self.bounding_box else None,
        }
