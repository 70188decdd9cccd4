"""Identity resolver — stable keys for cells across render generations.

A render pass runs inside ``generation()``. Every cell requested during the
pass is looked up by key: a key seen in the previous generation hands back
the same cell (state, cache and queue intact); an unseen key builds a new
one. When the generation ends, previous-generation cells nobody asked for
are disposed.

Default keys come from the scope path plus a per-scope ordinal, so the
n-th cell created inside ``scope("App")`` is ``"App/<n>"`` on every pass as
long as the component makes its cells in the same order.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from types import MappingProxyType
from typing import TYPE_CHECKING, Callable, Iterator, Mapping, TypeVar

from sparkle.errors import SparkleError

if TYPE_CHECKING:
    from sparkle.cell import Cell

logger = logging.getLogger("sparkle.scope")

R = TypeVar("R")


class ScopeResolver:
    """Assigns keys to cells and keeps them alive between generations."""

    def __init__(self) -> None:
        self._live: dict[str, Cell] = {}
        self._previous: dict[str, Cell] = {}
        self._path: list[str] = []
        self._ordinal = 0
        self._in_generation = False

    @property
    def cells(self) -> Mapping[str, Cell]:
        """Cells requested in the current (or last completed) generation."""
        return MappingProxyType(self._live)

    @property
    def path(self) -> tuple[str, ...]:
        return tuple(self._path)

    @contextmanager
    def generation(self) -> Iterator[ScopeResolver]:
        """Run one render pass. Unrequested cells are pruned on exit."""
        if self._in_generation:
            raise SparkleError("generations do not nest")
        self._in_generation = True
        self._previous = self._live
        self._live = {}
        saved_path, saved_ordinal = self._path, self._ordinal
        self._path, self._ordinal = [], 0
        try:
            yield self
        finally:
            self._prune()
            self._path, self._ordinal = saved_path, saved_ordinal
            self._in_generation = False

    def begin_generation(self, body: Callable[[], R]) -> R:
        with self.generation():
            return body()

    @contextmanager
    def scope(self, name: str) -> Iterator[None]:
        """Push a naming segment with its own ordinal counter."""
        saved = self._ordinal
        self._path.append(name)
        self._ordinal = 0
        try:
            yield
        finally:
            self._path.pop()
            self._ordinal = saved

    def enter_scope(self, name: str, body: Callable[[], R]) -> R:
        with self.scope(name):
            return body()

    def next_key(self) -> str:
        """Synthesize the default key for the next cell in this scope."""
        key = "/".join([*self._path, str(self._ordinal)])
        self._ordinal += 1
        return key

    def resolve(self, key: str, factory: Callable[[], Cell]) -> Cell:
        """Return the cell for ``key``, reusing the previous generation's."""
        if key in self._live:
            return self._live[key]
        if key in self._previous:
            found = self._previous[key]
        else:
            found = factory()
            logger.debug("Created cell %r", key)
        self._live[key] = found
        return found

    def _prune(self) -> None:
        dropped = [c for key, c in self._previous.items() if key not in self._live]
        self._previous = {}
        for c in dropped:
            c.dispose()
        if dropped:
            logger.info("Pruned %d cells", len(dropped))

    def __repr__(self) -> str:
        return f"ScopeResolver(live={len(self._live)}, path={'/'.join(self._path)!r})"
