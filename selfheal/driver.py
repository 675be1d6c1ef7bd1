"""Browser driver boundary.

The engine talks to the browser only through ``BrowserDriver``. Element
handles are opaque to the engine. ``PlaywrightDriver`` adapts a Playwright
``Page``; ``GuardedDriver`` wraps any driver so that every call is bounded by
a timeout and a hung call cannot block a worker indefinitely.
"""

import asyncio
from typing import Any, Awaitable, Callable, List, Optional, Protocol, Tuple, TypeVar, Union

from loguru import logger
from playwright.async_api import ElementHandle, Page

from selfheal.constants import Timeouts
from selfheal.core.exceptions import DriverTimeoutError
from selfheal.models.element import BoundingBox, ElementSnapshot

T = TypeVar("T")

TimeoutSource = Union[float, Callable[[str], float]]

_DESCRIBE_SCRIPT = """
el => {
    const rect = el.getBoundingClientRect();
    const attrs = {};
    for (const a of Array.from(el.attributes)) { attrs[a.name] = a.value; }
    const node = n => n ? {
        tag: n.tagName.toLowerCase(),
        id: n.id || '',
        class_name: typeof n.className === 'string' ? n.className : '',
        text: (n.textContent || '').trim().substring(0, 50)
    } : null;
    const parent = el.parentElement;
    const siblings = parent
        ? Array.from(parent.children).filter(c => c !== el).slice(0, 5).map(node)
        : [];
    const style = window.getComputedStyle(el);
    const form = el.closest('form');
    return {
        tag: el.tagName.toLowerCase(),
        id: el.id || '',
        class_name: typeof el.className === 'string' ? el.className : '',
        text: (el.innerText || el.textContent || '').trim().substring(0, 500),
        role: el.getAttribute('role') || '',
        attributes: attrs,
        bounding_box: {x: rect.left, y: rect.top, width: rect.width, height: rect.height},
        parent: node(parent),
        siblings: siblings,
        visible: rect.width > 0 && rect.height > 0
            && style.visibility !== 'hidden' && style.display !== 'none',
        enabled: !el.disabled,
        in_form: !!form,
        form_action: form ? (form.getAttribute('action') || '') : ''
    };
}
"""


class BrowserDriver(Protocol):
    """Primitives the engine consumes from the browser."""

    async def query(self, selector: str) -> Optional[Any]: ...

    async def query_xpath(self, xpath: str) -> Optional[Any]: ...

    async def query_all(self, selector: str) -> List[Any]: ...

    async def query_all_visible(self, selector: str = "*") -> List[Any]: ...

    async def is_visible(self, handle: Any) -> bool: ...

    async def is_enabled(self, handle: Any) -> bool: ...

    async def bounding_box(self, handle: Any) -> Optional[BoundingBox]: ...

    async def screenshot(self, handle: Any = None) -> bytes: ...

    async def describe(self, handle: Any) -> ElementSnapshot: ...

    async def evaluate(self, script: str, arg: Any = None) -> Any: ...

    async def navigate(self, url: str) -> None: ...

    async def reload(self) -> None: ...

    async def current_url(self) -> str: ...

    async def viewport(self) -> Optional[Tuple[int, int]]: ...


async def call_with_timeout(awaitable: Awaitable[T], operation: str, timeout_ms: float) -> T:
    """
    Await a driver call under a timeout.

    Args:
        awaitable: Pending driver call
        operation: Name used in logs and in the raised error
        timeout_ms: Guard in milliseconds

    Returns:
        The call's result

    Raises:
        DriverTimeoutError: If the call did not finish in time
    """
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout_ms / 1000.0)
    except asyncio.TimeoutError as e:
        logger.warning(f"Driver call '{operation}' timed out after {timeout_ms:.0f}ms")
        raise DriverTimeoutError(operation, timeout_ms) from e


class PlaywrightDriver:
    """``BrowserDriver`` backed by a Playwright page."""

    def __init__(self, page: Page):
        """
        Initialize Playwright driver.

        Args:
            page: Playwright page object
        """
        self.page = page

    async def query(self, selector: str) -> Optional[ElementHandle]:
        return await self.page.query_selector(selector)

    async def query_xpath(self, xpath: str) -> Optional[ElementHandle]:
        return await self.page.query_selector(f"xpath={xpath}")

    async def query_all(self, selector: str) -> List[ElementHandle]:
        return await self.page.query_selector_all(selector)

    async def query_all_visible(self, selector: str = "*") -> List[ElementHandle]:
        handles = await self.page.query_selector_all(selector)
        visible = []
        for handle in handles:
            if await handle.is_visible():
                visible.append(handle)
        return visible

    async def is_visible(self, handle: ElementHandle) -> bool:
        return await handle.is_visible()

    async def is_enabled(self, handle: ElementHandle) -> bool:
        return await handle.is_enabled()

    async def bounding_box(self, handle: ElementHandle) -> Optional[BoundingBox]:
        box = await handle.bounding_box()
        return BoundingBox.from_dict(box) if box else None

    async def screenshot(self, handle: Optional[ElementHandle] = None) -> bytes:
        if handle is None:
            return await self.page.screenshot()
        return await handle.screenshot()

    async def describe(self, handle: ElementHandle) -> ElementSnapshot:
        data = await handle.evaluate(_DESCRIBE_SCRIPT)
        return ElementSnapshot.from_dict(data or {})

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        return await self.page.evaluate(script, arg)

    async def navigate(self, url: str) -> None:
        await self.page.goto(url)

    async def reload(self) -> None:
        await self.page.reload()

    async def current_url(self) -> str:
        return self.page.url

    async def viewport(self) -> Optional[Tuple[int, int]]:
        size = self.page.viewport_size
        return (size["width"], size["height"]) if size else None


class GuardedDriver:
    """
    Wrap a driver so every call runs under ``asyncio.wait_for``.

    The timeout is either a fixed number of milliseconds or a callable
    receiving the operation name, typically backed by the adaptive timing
    controller's latest prediction.
    """

    def __init__(self, driver: BrowserDriver, timeout: TimeoutSource = Timeouts.DRIVER_CALL):
        self.driver = driver
        self._timeout = timeout

    def timeout_for(self, operation: str) -> float:
        if callable(self._timeout):
            return float(self._timeout(operation))
        return float(self._timeout)

    async def _guard(self, operation: str, awaitable: Awaitable[T]) -> T:
        return await call_with_timeout(awaitable, operation, self.timeout_for(operation))

    async def query(self, selector: str) -> Optional[Any]:
        return await self._guard("query", self.driver.query(selector))

    async def query_xpath(self, xpath: str) -> Optional[Any]:
        return await self._guard("query_xpath", self.driver.query_xpath(xpath))

    async def query_all(self, selector: str) -> List[Any]:
        return await self._guard("query_all", self.driver.query_all(selector))

    async def query_all_visible(self, selector: str = "*") -> List[Any]:
        return await self._guard("query_all_visible", self.driver.query_all_visible(selector))

    async def is_visible(self, handle: Any) -> bool:
        return await self._guard("is_visible", self.driver.is_visible(handle))

    async def is_enabled(self, handle: Any) -> bool:
        return await self._guard("is_enabled", self.driver.is_enabled(handle))

    async def bounding_box(self, handle: Any) -> Optional[BoundingBox]:
        return await self._guard("bounding_box", self.driver.bounding_box(handle))

    async def screenshot(self, handle: Any = None) -> bytes:
        return await self._guard("screenshot", self.driver.screenshot(handle))

    async def describe(self, handle: Any) -> ElementSnapshot:
        return await self._guard("describe", self.driver.describe(handle))

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        return await self._guard("evaluate", self.driver.evaluate(script, arg))

    async def navigate(self, url: str) -> None:
        await self._guard("navigate", self.driver.navigate(url))

    async def reload(self) -> None:
        await self._guard("reload", self.driver.reload())

    async def current_url(self) -> str:
        return await self._guard("current_url", self.driver.current_url())

    async def viewport(self) -> Optional[Tuple[int, int]]:
        return await self._guard("viewport", self.driver.viewport())


def guard_driver(
    driver: Optional[Any], timeout: TimeoutSource = Timeouts.DRIVER_CALL
) -> Optional[Any]:
    """Wrap ``driver`` in a ``GuardedDriver`` unless it is None or already guarded."""
    if driver is None or isinstance(driver, GuardedDriver):
        return driver
    return GuardedDriver(driver, timeout)
