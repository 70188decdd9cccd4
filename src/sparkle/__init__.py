"""Sparkle: lazily evaluated, dependency-tracked async cells for render passes."""

from importlib.metadata import version as _version

__version__ = _version("sparkle")

from sparkle.errors import (
    SparkleError,
    InvariantError,
    CycleError,
    DisposedError,
    NotReady,
)
from sparkle.result import Ready, Unready, Failed
from sparkle.bus import NotificationBus
from sparkle.scope import ScopeResolver
from sparkle.runtime import (
    Runtime,
    get_runtime,
    set_runtime,
    subscribe,
    clear_all_subscriptions,
)
from sparkle.cell import Cell, CellState, Operation, cell
# textual NOT auto-imported: opt-in only

__all__ = [
    "Cell",
    "CellState",
    "Operation",
    "cell",
    "NotificationBus",
    "ScopeResolver",
    "Runtime",
    "get_runtime",
    "set_runtime",
    "subscribe",
    "clear_all_subscriptions",
    "Ready",
    "Unready",
    "Failed",
    "SparkleError",
    "InvariantError",
    "CycleError",
    "DisposedError",
    "NotReady",
]
