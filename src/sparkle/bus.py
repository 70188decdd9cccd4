"""Notification bus — one registry of callbacks fired on every cell change.

Cells call ``changed()`` whenever their observable state moves. Blocked
cells use it to know when to retry; hosts (render schedulers) use it to
know when to re-render. Delivery walks a snapshot, so callbacks may
subscribe or unsubscribe freely while it runs.
"""

from __future__ import annotations

import itertools
from typing import Callable

Callback = Callable[[], None]
Disposer = Callable[[], None]


class NotificationBus:
    """Insertion-ordered registry of change callbacks."""

    __slots__ = ("_subscribers", "_ids")

    def __init__(self) -> None:
        self._subscribers: dict[int, Callback] = {}
        self._ids = itertools.count(1)

    def subscribe(self, callback: Callback) -> Disposer:
        """Register a callback. Returns a function that removes it."""
        sub_id = next(self._ids)
        self._subscribers[sub_id] = callback

        def _unsubscribe() -> None:
            self._subscribers.pop(sub_id, None)

        return _unsubscribe

    def subscribe_once(self, callback: Callback) -> Disposer:
        """Register a callback that is removed right before its first call."""
        unsubscribe: Disposer

        def _once() -> None:
            unsubscribe()
            callback()

        unsubscribe = self.subscribe(_once)
        return unsubscribe

    def changed(self) -> None:
        """Invoke every registered callback."""
        # Snapshot: callbacks may (un)subscribe during delivery.
        for sub_id, callback in list(self._subscribers.items()):
            if sub_id in self._subscribers:
                callback()

    def clear_all_subscriptions(self) -> None:
        self._subscribers.clear()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def __repr__(self) -> str:
        return f"NotificationBus(subscribers={len(self._subscribers)})"
