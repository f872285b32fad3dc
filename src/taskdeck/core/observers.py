# src/taskdeck/core/observers.py

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any, Generic, TypeVar

logger = logging.getLogger(__name__)

L = TypeVar("L", bound=Callable[..., Any])


class Subscription:
    """Handle returned by a registry; unsubscribe() is idempotent."""

    def __init__(self, release: Callable[[], None]) -> None:
        self._release: Callable[[], None] | None = release

    @property
    def active(self) -> bool:
        return self._release is not None

    def unsubscribe(self) -> None:
        release, self._release = self._release, None
        if release is not None:
            release()

    def __enter__(self) -> Subscription:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.unsubscribe()


class ListenerRegistry(Generic[L]):
    """
    Ordered observer list.

    Listeners fire in registration order. A listener that raises is logged and
    skipped; the rest still receive the notification.
    """

    def __init__(self, name: str) -> None:
        self._name = name
        self._listeners: dict[int, L] = {}
        self._next_key = 0

    def __len__(self) -> int:
        return len(self._listeners)

    def add(self, listener: L) -> Subscription:
        key = self._next_key
        self._next_key += 1
        self._listeners[key] = listener
        return Subscription(lambda: self._listeners.pop(key, None))

    def emit(self, *args: Any) -> None:
        # Snapshot: listeners may unsubscribe (or subscribe) while being notified.
        for listener in list(self._listeners.values()):
            try:
                listener(*args)
            except Exception:
                logger.exception("%s listener %r failed", self._name, listener)

    def clear(self) -> None:
        self._listeners.clear()
