"""Minimal observer list used in place of implicit property observation."""

from collections.abc import Callable
from logging import getLogger
from typing import Generic, TypeVar

logger = getLogger(__name__)

T = TypeVar("T")


class EventEmitter(Generic[T]):
    """Deliver values to subscribed callbacks in subscription order.

    A failing listener is logged and does not prevent delivery to the others.
    """

    def __init__(self, name: str = "event") -> None:
        self.name = name
        self._listeners: list[Callable[[T], None]] = []

    def subscribe(self, callback: Callable[[T], None]) -> Callable[[], None]:
        """Register ``callback`` and return a function that unregisters it."""
        self._listeners.append(callback)

        def unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    def emit(self, value: T) -> None:
        for listener in list(self._listeners):
            try:
                listener(value)
            except Exception:
                logger.exception(f"Listener for {self.name} failed")

    def __len__(self) -> int:
        return len(self._listeners)
