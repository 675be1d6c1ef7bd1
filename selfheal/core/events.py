"""Observer interface for engine events."""

import inspect
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Protocol, Union, runtime_checkable

from loguru import logger

from selfheal.core.enums import EventType


@dataclass(frozen=True)
class EngineEvent:
    """A discrete engine event delivered to observers."""

    type: EventType
    data: Dict[str, Any] = field(default_factory=dict)
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type.value, "data": self.data, "timestamp": self.timestamp}


@runtime_checkable
class EngineObserver(Protocol):
    """Object-style observer."""

    def on_event(self, event: EngineEvent) -> Union[None, Awaitable[None]]: ...


ObserverCallback = Callable[[EngineEvent], Union[None, Awaitable[None]]]
Observer = Union[EngineObserver, ObserverCallback]


class EventDispatcher:
    """
    Deliver engine events to registered observers.

    Observers may be plain callables or objects with an ``on_event`` method,
    synchronous or asynchronous. A failing observer is logged and skipped;
    the engine never depends on whether anyone is listening.
    """

    def __init__(self) -> None:
        self._observers: List[Observer] = []

    def subscribe(self, observer: Observer) -> Callable[[], None]:
        """
        Register an observer.

        Args:
            observer: Callable or ``EngineObserver``

        Returns:
            Function that removes the observer again
        """
        self._observers.append(observer)

        def unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return unsubscribe

    @property
    def observer_count(self) -> int:
        return len(self._observers)

    async def emit(self, event_type: EventType, data: Dict[str, Any]) -> EngineEvent:
        """
        Emit an event to every observer in registration order.

        Args:
            event_type: Kind of event
            data: Structured payload

        Returns:
            The delivered event
        """
        event = EngineEvent(type=event_type, data=data)
        for observer in list(self._observers):
            handler = observer.on_event if isinstance(observer, EngineObserver) else observer
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.warning(f"Observer failed for {event_type.value}: {e}")
        return event
