"""Dependency tracking — who is evaluating right now.

Uses a contextvar to remember which cell is running its computation. Any
``Cell.value`` read performed while the slot is set records the evaluating
cell as a dependent of the cell being read, building the graph
automatically. Tasks spawned for deferred computations copy the context,
so reads after an ``await`` still land on the right cell.

Alongside the slot sits the chain of nested evaluations that led to it. A
cell found on that chain is reading itself, which is a cycle.
"""

from __future__ import annotations

import contextvars
from contextlib import contextmanager
from typing import TYPE_CHECKING, Iterator

if TYPE_CHECKING:
    from sparkle.cell import Cell

# The cell whose computation is currently running, if any.
current_cell: contextvars.ContextVar[Cell | None] = contextvars.ContextVar(
    "current_cell", default=None
)

# Outermost first; current_cell is the last entry.
_chain: contextvars.ContextVar[tuple[Cell, ...]] = contextvars.ContextVar(
    "evaluation_chain", default=()
)


@contextmanager
def evaluating(cell: Cell) -> Iterator[None]:
    """Make ``cell`` the evaluating cell for the duration of the block."""
    token = current_cell.set(cell)
    chain_token = _chain.set((*_chain.get(), cell))
    try:
        yield
    finally:
        _chain.reset(chain_token)
        current_cell.reset(token)


@contextmanager
def detached() -> Iterator[None]:
    """Run the block outside any evaluation.

    Notifications and refreshes fired from inside a computation start their
    own evaluations; those are not reads made by the running cell.
    """
    token = current_cell.set(None)
    chain_token = _chain.set(())
    try:
        yield
    finally:
        _chain.reset(chain_token)
        current_cell.reset(token)


def on_chain(cell: Cell) -> bool:
    """Is ``cell`` one of the evaluations leading to the current read?"""
    return cell in _chain.get()


def track_read(cell: Cell) -> None:
    """Record that the evaluating cell (if any) depends on ``cell``."""
    reader = current_cell.get()
    if reader is not None and reader is not cell:
        cell._dependents.add(reader)
