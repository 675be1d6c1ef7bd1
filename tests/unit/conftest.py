"""Fixtures for unit tests: an in-memory browser driver and controllable time."""

import asyncio
import io
from typing import Any, Dict, List, Optional, Sequence, Tuple
from unittest.mock import AsyncMock

import pytest
from PIL import Image, ImageDraw

from selfheal.core.enums import ErrorCategory, ErrorType, Severity
from selfheal.models.classification import ErrorClassification
from selfheal.models.element import BoundingBox, ElementSnapshot


class FakeClock:
    """Manually advanced clock returning seconds."""

    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeElement:
    """Opaque element handle with the state FakeDriver reports for it."""

    def __init__(
        self,
        name: str,
        visible: bool = True,
        enabled: bool = True,
        box: Optional[BoundingBox] = None,
        image: bytes = b"",
        snapshot: Optional[ElementSnapshot] = None,
    ):
        self.name = name
        self.visible = visible
        self.enabled = enabled
        self.box = box
        self.image = image
        self.snapshot = snapshot or ElementSnapshot(tag="div", id=name)

    def __repr__(self) -> str:
        return f"FakeElement({self.name!r})"


class FakeDriver:
    """In-memory ``BrowserDriver``."""

    def __init__(
        self,
        elements: Optional[Dict[str, FakeElement]] = None,
        xpaths: Optional[Dict[str, FakeElement]] = None,
        candidates: Optional[List[FakeElement]] = None,
        url: str = "https://example.com/form",
        hang: bool = False,
        hang_on: Sequence[str] = (),
    ):
        self.elements = dict(elements or {})
        self.xpaths = dict(xpaths or {})
        self.candidates = list(candidates or [])
        self.url = url
        self.hang = hang
        self.hang_on = set(hang_on)
        self.queries: List[str] = []
        self.evaluate_result: Any = None
        self.reloads = 0

    async def _stall(self, operation: str) -> None:
        if operation in self.hang_on:
            await asyncio.sleep(3600)

    async def query(self, selector: str) -> Optional[FakeElement]:
        self.queries.append(selector)
        if self.hang:
            await asyncio.sleep(10)
        return self.elements.get(selector)

    async def query_xpath(self, xpath: str) -> Optional[FakeElement]:
        self.queries.append(xpath)
        return self.xpaths.get(xpath)

    async def query_all(self, selector: str) -> List[FakeElement]:
        return list(self.candidates)

    async def query_all_visible(self, selector: str = "*") -> List[FakeElement]:
        return [e for e in self.candidates if e.visible]

    async def is_visible(self, handle: FakeElement) -> bool:
        return handle.visible

    async def is_enabled(self, handle: FakeElement) -> bool:
        return handle.enabled

    async def bounding_box(self, handle: FakeElement) -> Optional[BoundingBox]:
        return handle.box

    async def screenshot(self, handle: Optional[FakeElement] = None) -> bytes:
        return handle.image if handle is not None else b""

    async def describe(self, handle: FakeElement) -> ElementSnapshot:
        return handle.snapshot

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        await self._stall("evaluate")
        return self.evaluate_result

    async def navigate(self, url: str) -> None:
        self.url = url

    async def reload(self) -> None:
        await self._stall("reload")
        self.reloads += 1

    async def current_url(self) -> str:
        return self.url

    async def viewport(self) -> Optional[Tuple[int, int]]:
        return (1280, 720)


def render_image(pattern: str = "stripes", size: Tuple[int, int] = (64, 32)) -> bytes:
    """PNG bytes with a simple structured pattern."""
    image = Image.new("RGB", size, "white")
    draw = ImageDraw.Draw(image)
    width, height = size
    if pattern == "stripes":
        for x in range(0, width, 8):
            draw.rectangle([x, 0, x + 3, height], fill="black")
    elif pattern == "checker":
        for x in range(0, width, 8):
            for y in range(0, height, 8):
                if (x // 8 + y // 8) % 2 == 0:
                    draw.rectangle([x, y, x + 7, y + 7], fill="navy")
    else:
        draw.ellipse([4, 4, width - 4, height - 4], fill="darkred")
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()


def make_classification(
    error_type: ErrorType = ErrorType.UNKNOWN,
    category: ErrorCategory = ErrorCategory.UNKNOWN,
    recoverable: bool = True,
) -> ErrorClassification:
    return ErrorClassification(
        type=error_type,
        category=category,
        severity=Severity.MEDIUM,
        recoverable=recoverable,
        confidence=0.8,
    )


@pytest.fixture
def clock():
    """Manually advanced clock."""
    return FakeClock()


@pytest.fixture
def instant_sleep():
    """Async sleep that returns immediately and records requested durations."""
    return AsyncMock(return_value=None)


@pytest.fixture
def element_factory():
    """Build FakeElement instances."""
    return FakeElement


@pytest.fixture
def driver_factory():
    """Build FakeDriver instances."""
    return FakeDriver


@pytest.fixture
def classification_factory():
    """Build ErrorClassification instances."""
    return make_classification


@pytest.fixture
def image_factory():
    """Render PNG bytes."""
    return render_image
