"""Tagged read results.

``Cell.read()`` never raises: it returns one of these three shapes, so a
host can tell "not ready yet" from "failed" without catching anything.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Generic, TypeVar, Union

if TYPE_CHECKING:
    from sparkle.cell import CellState

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class Ready(Generic[T]):
    value: T


@dataclass(frozen=True, slots=True)
class Unready:
    state: CellState
    loading: bool = False


@dataclass(frozen=True, slots=True)
class Failed:
    error: BaseException


ReadResult = Union[Ready, Unready, Failed]
