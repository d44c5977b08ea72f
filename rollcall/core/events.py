"""
Observer subscriptions with explicit cancellation handles.

Each publisher owns its own Observable; there is no global listener registry.
"""

import logging
from typing import Callable, Generic, List, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Subscription:
    """Handle returned by subscribe(); call unsubscribe() to stop receiving updates."""

    def __init__(self, cancel: Callable[[], None]) -> None:
        self._cancel = cancel
        self.active = True

    def unsubscribe(self) -> None:
        if self.active:
            self.active = False
            self._cancel()


class Observable(Generic[T]):
    def __init__(self) -> None:
        self._callbacks: List[Callable[[T], None]] = []

    def subscribe(self, callback: Callable[[T], None]) -> Subscription:
        self._callbacks.append(callback)

        def cancel() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return Subscription(cancel)

    def publish(self, value: T) -> None:
        for callback in list(self._callbacks):
            try:
                callback(value)
            except Exception:
                # One failing observer must not starve the others
                logger.exception("Observer %r raised while handling %r", callback, value)

    def __len__(self) -> int:
        return len(self._callbacks)
