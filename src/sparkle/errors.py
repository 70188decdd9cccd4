"""Sparkle error hierarchy.

All sparkle-specific errors inherit from SparkleError for easy catching.
NotReady is the exception: it is a control signal, not an error, and
deliberately sits outside the Exception tree.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from sparkle.cell import CellState


class SparkleError(Exception):
    """Base error for all sparkle operations."""


class InvariantError(SparkleError):
    """A cell reached a state its own bookkeeping says is impossible."""


class CycleError(SparkleError):
    """A cell read its own value while evaluating."""


class DisposedError(SparkleError):
    """Operation on a cell that was pruned by its resolver."""


class NotReady(BaseException):
    """A cell was read before it had a value to give.

    Raised by ``Cell.value`` and caught by the evaluation of whichever cell
    performed the read, which then blocks and retries. Derives from
    BaseException so ``except Exception`` in a computation body never
    mistakes it for an application failure.
    """

    def __init__(self, state: CellState, *, loading: bool = False) -> None:
        super().__init__(state)
        self.state = state
        self.loading = loading

    def __repr__(self) -> str:
        return f"NotReady({self.state.name}, loading={self.loading})"
