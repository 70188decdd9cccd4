"""Runtime — the context object every cell is bound to.

Bundles the notification bus, the identity resolver and the event loop
deferred computations run on. A process-wide default exists for top-level
convenience; independent render passes can each build their own and pass
it to ``cell(..., runtime=...)`` without interfering.
"""

from __future__ import annotations

import asyncio
import inspect
from typing import Any, Awaitable

from sparkle.bus import Callback, Disposer, NotificationBus
from sparkle.errors import SparkleError
from sparkle.scope import ScopeResolver


class Runtime:
    """Shared coordination state for a family of cells."""

    __slots__ = ("bus", "resolver", "loop")

    def __init__(
        self,
        *,
        bus: NotificationBus | None = None,
        resolver: ScopeResolver | None = None,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        self.bus = bus if bus is not None else NotificationBus()
        self.resolver = resolver if resolver is not None else ScopeResolver()
        self.loop = loop

    def schedule(self, awaitable: Awaitable[Any]) -> asyncio.Future:
        """Run a deferred value on the configured loop, or the running one.

        Must be called inside the evaluating cell's capture region: the
        task copies the current context, tracking slot included.
        """
        loop = self.loop
        if loop is None:
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                if inspect.iscoroutine(awaitable):
                    awaitable.close()
                raise SparkleError(
                    "deferred computation needs a running event loop "
                    "or Runtime(loop=...)"
                ) from None
        return asyncio.ensure_future(awaitable, loop=loop)

    def __repr__(self) -> str:
        return f"Runtime({self.bus!r}, {self.resolver!r})"


_default = Runtime()


def get_runtime() -> Runtime:
    return _default


def set_runtime(runtime: Runtime) -> Runtime:
    """Install a new default runtime. Returns the one it replaced."""
    global _default
    previous, _default = _default, runtime
    return previous


def subscribe(callback: Callback) -> Disposer:
    """Subscribe to the default runtime's bus. Returns an unsubscribe function."""
    return _default.bus.subscribe(callback)


def clear_all_subscriptions() -> None:
    _default.bus.clear_all_subscriptions()
