"""Cells — lazily evaluated, cached async values with automatic dependencies.

A Cell wraps a computation: a literal, or a function that may return an
awaitable. Reading ``.value`` evaluates it on first use and caches the
result. Any other cell read during that evaluation records this cell as a
dependent, and is refreshed whenever this cell settles again.

Updates are queued: ``update(op)`` appends an operation that receives the
previous value, and the queue drains strictly in submission order with at
most one evaluation in flight. While an update is pending the old value
stays readable (stale-while-revalidating).

Reading a cell that has nothing to give yet raises NotReady, which the
reading cell's own evaluation catches: it blocks, and retries on the next
bus notification. ``read()`` is the non-raising form for hosts.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import enum
import functools
import inspect
import logging
import weakref
from collections import deque
from typing import Any, Callable, Generic, TypeVar

from sparkle import _tracking
from sparkle.errors import (
    CycleError,
    DisposedError,
    InvariantError,
    NotReady,
    SparkleError,
)
from sparkle.result import Failed, Ready, ReadResult, Unready
from sparkle.runtime import Runtime, get_runtime

logger = logging.getLogger("sparkle.cell")

T = TypeVar("T")

_UNSET = object()


class CellState(enum.Enum):
    UNINITIALIZED = "uninitialized"
    PENDING = "pending"
    BLOCKED = "blocked"
    FULFILLED = "fulfilled"
    REJECTED = "rejected"
    STALE = "stale"


_EVALUABLE = frozenset({CellState.UNINITIALIZED, CellState.BLOCKED, CellState.STALE})
_SETTLED = frozenset({CellState.FULFILLED, CellState.REJECTED})
_NO_VALUE = frozenset({CellState.UNINITIALIZED, CellState.BLOCKED})


class Operation:
    """One entry in a cell's update queue.

    The computation is applied to the value the cell held when the entry
    first ran, so re-running a completed entry (``refresh()``) does not
    apply it twice.
    """

    __slots__ = ("computation", "future", "_takes_previous", "_base")

    def __init__(
        self,
        computation: Any,
        *,
        takes_previous: bool,
        future: concurrent.futures.Future | None = None,
    ) -> None:
        self.computation = computation
        self.future = future
        self._takes_previous = takes_previous
        self._base = _UNSET

    @classmethod
    def initial(cls, computation: Any) -> Operation:
        """The cell's own computation: a literal or a zero-argument callable."""
        return cls(computation, takes_previous=False)

    @classmethod
    def update(cls, computation: Any) -> Operation:
        """A submitted update: a literal or a callable of the previous value."""
        return cls(computation, takes_previous=True, future=concurrent.futures.Future())

    def apply(self, previous: Any) -> Any:
        if self._base is _UNSET:
            self._base = previous
        if not callable(self.computation):
            return self.computation
        if self._takes_previous:
            return self.computation(self._base)
        return self.computation()

    def resolve(self, value: Any) -> None:
        if self.future is not None and not self.future.done():
            self.future.set_result(value)

    def fail(self, error: BaseException) -> None:
        if self.future is not None and not self.future.done():
            self.future.set_exception(error)

    def cancel(self) -> None:
        if self.future is not None:
            self.future.cancel()

    def __repr__(self) -> str:
        return f"Operation({self.computation!r})"


class Cell(Generic[T]):
    """A reactive async value with a cache, a state and an update queue."""

    __slots__ = (
        "_key",
        "_runtime",
        "_state",
        "_value",
        "_has_value",
        "_error",
        "_error_tb",
        "_queue",
        "_dependents",
        "_run_id",
        "_in_flight",
        "_evaluating",
        "_blocked_loading",
        "_retry",
        "_disposed",
        "__weakref__",
    )

    def __init__(
        self,
        computation: T | Callable[[], Any],
        *,
        key: str | None = None,
        runtime: Runtime | None = None,
    ) -> None:
        self._key = key
        self._runtime = runtime if runtime is not None else get_runtime()
        self._state = CellState.UNINITIALIZED
        self._value: Any = None
        self._has_value = False
        self._error: BaseException | None = None
        self._error_tb = None
        self._queue: deque[Operation] = deque([Operation.initial(computation)])
        self._dependents: weakref.WeakSet[Cell] = weakref.WeakSet()
        self._run_id = 0
        self._in_flight: asyncio.Future | None = None
        self._evaluating = False
        self._blocked_loading = False
        self._retry: Callable[[], None] | None = None
        self._disposed = False

    # --- Introspection ---

    @property
    def key(self) -> str | None:
        return self._key

    @property
    def runtime(self) -> Runtime:
        return self._runtime

    @property
    def state(self) -> CellState:
        return self._state

    @property
    def disposed(self) -> bool:
        return self._disposed

    @property
    def dependents(self) -> frozenset[Cell]:
        return frozenset(self._dependents)

    @property
    def pending_operations(self) -> int:
        """Queue entries not yet applied, the active one included."""
        return len(self._queue) - (1 if self._state in _SETTLED else 0)

    # --- Reads ---

    @property
    def value(self) -> T:
        """The cached value, evaluating first if needed.

        Raises the cached error when rejected, and NotReady when there is
        no value yet.
        """
        result = self.read()
        if isinstance(result, Ready):
            return result.value
        if isinstance(result, Failed):
            if result.error is self._error:
                # restart from the traceback captured at rejection
                raise result.error.with_traceback(self._error_tb)
            raise result.error
        raise NotReady(result.state, loading=result.loading)

    def read(self) -> ReadResult:
        """Tagged form of ``value``: Ready, Unready or Failed, never raises."""
        if _tracking.on_chain(self):
            return Failed(CycleError(f"cell {self._key!r} read itself while evaluating"))
        self._maybe_evaluate()
        _tracking.track_read(self)
        result = self.peek()
        if self._evaluating and isinstance(result, Unready):
            # re-entered from a notification fired inside its own computation
            return Unready(CellState.BLOCKED, loading=result.loading)
        return result

    def peek(self) -> ReadResult:
        """Current result without evaluating or recording a dependency."""
        if self._state is CellState.REJECTED:
            return Failed(self._error)
        if self._state in (CellState.FULFILLED, CellState.STALE) and self._has_value:
            return Ready(self._value)
        return Unready(self._state, loading=self._is_loading())

    @property
    def loading(self) -> bool:
        """True while waiting on a deferred value, this cell's or a dependency's."""
        self._maybe_evaluate()
        return self._is_loading()

    def _is_loading(self) -> bool:
        if self._state is CellState.PENDING:
            return True
        return self._state is CellState.BLOCKED and self._blocked_loading

    # --- Mutations ---

    def update(self, operation: Any) -> concurrent.futures.Future:
        """Queue ``operation`` (a value, or a function of the previous value).

        Returns a future settled when this operation has been applied.
        """
        if self._disposed:
            raise DisposedError(f"cell {self._key!r} was disposed")
        if self._state in _SETTLED:
            self._queue.popleft()
        entry = Operation.update(operation)
        self._queue.append(entry)
        if self._has_value:
            self._set_state(CellState.STALE)
        elif self._state is CellState.REJECTED:
            self._set_state(CellState.UNINITIALIZED)
        self._retry_on_change()
        self._notify()
        return entry.future

    def refresh(self) -> None:
        """Re-run the active operation, dropping any evaluation in flight."""
        if self._disposed or self._evaluating:
            return
        self._run_id += 1
        self._in_flight = None
        self._set_state(CellState.UNINITIALIZED)
        self._maybe_evaluate()

    def dispose(self) -> None:
        """Retire the cell. Unfinished update futures are cancelled."""
        if self._disposed:
            return
        self._disposed = True
        self._run_id += 1
        self._in_flight = None
        if self._retry is not None:
            self._retry()
            self._retry = None
        for entry in self._queue:
            entry.cancel()
        self._dependents.clear()
        logger.debug("Disposed cell %r", self._key)

    # --- Settlement callbacks ---

    def on_settled(
        self,
        on_success: Callable[[T], Any],
        on_failure: Callable[[BaseException], Any] | None = None,
    ) -> None:
        """Call ``on_success(value)`` or ``on_failure(error)`` once settled."""
        self._maybe_evaluate()
        if self._state is CellState.FULFILLED:
            if not self._has_value:
                raise InvariantError(f"cell {self._key!r} is fulfilled without a value")
            on_success(self._value)
        elif self._state is CellState.REJECTED:
            if on_failure is not None:
                on_failure(self._error)
        elif self._disposed:
            if on_failure is not None:
                on_failure(DisposedError(f"cell {self._key!r} was disposed"))
        else:
            self._runtime.bus.subscribe_once(
                lambda: self.on_settled(on_success, on_failure)
            )

    async def settled(self) -> T:
        """Wait until the cell settles; return its value or raise its error."""
        waiter = asyncio.get_running_loop().create_future()

        def _success(value: T) -> None:
            if not waiter.done():
                waiter.set_result(value)

        def _failure(error: BaseException) -> None:
            if not waiter.done():
                waiter.set_exception(error)

        self.on_settled(_success, _failure)
        return await waiter

    # --- Evaluation ---

    def _maybe_evaluate(self) -> None:
        if (
            self._disposed
            or self._evaluating
            or self._in_flight is not None
            or self._state not in _EVALUABLE
        ):
            return

        self._run_id += 1
        run_id = self._run_id
        operation = self._queue[0]
        deferred = False
        error: BaseException | None = None
        result: Any = None

        self._evaluating = True
        try:
            with _tracking.evaluating(self):
                result = operation.apply(self._value)
                if inspect.isawaitable(result):
                    result = self._runtime.schedule(result)
                    deferred = True
        except NotReady as signal:
            error = signal
        except Exception as exc:
            error = exc
        finally:
            self._evaluating = False

        if error is not None:
            self._fail(error)
        elif deferred:
            self._await(run_id, result)
        else:
            self._fulfill(result)

    def _await(self, run_id: int, task: asyncio.Future) -> None:
        self._in_flight = task
        if self._state in _NO_VALUE:
            self._set_state(CellState.PENDING)
            self._notify()
        task.add_done_callback(functools.partial(self._on_deferred_done, run_id))

    def _on_deferred_done(self, run_id: int, task: asyncio.Future) -> None:
        with _tracking.detached():
            self._settle_deferred(run_id, task)

    def _settle_deferred(self, run_id: int, task: asyncio.Future) -> None:
        if task.cancelled():
            error: BaseException | None = SparkleError(
                f"deferred computation of cell {self._key!r} was cancelled"
            )
        else:
            error = task.exception()
        if run_id != self._run_id or self._disposed:
            logger.debug("Discarding superseded result for cell %r", self._key)
            return
        self._in_flight = None
        if error is not None:
            self._fail(error)
        else:
            self._fulfill(task.result())

    def _fail(self, error: BaseException) -> None:
        if isinstance(error, NotReady):
            self._block(error)
        else:
            self._reject(error)

    def _block(self, signal: NotReady) -> None:
        self._blocked_loading = signal.loading
        if self._state is not CellState.BLOCKED:
            self._set_state(CellState.BLOCKED)
            self._notify()
        self._retry_on_change()

    def _fulfill(self, value: Any) -> None:
        self._value = value
        self._has_value = True
        self._error = self._error_tb = None
        self._set_state(CellState.FULFILLED)
        self._queue[0].resolve(value)
        self._advance()

    def _reject(self, error: BaseException) -> None:
        self._error = error
        self._error_tb = error.__traceback__
        self._set_state(CellState.REJECTED)
        self._queue[0].fail(error)
        self._advance()

    def _advance(self) -> None:
        """Finish a settlement: pop the entry if more are queued, then propagate."""
        more = len(self._queue) > 1
        if more:
            self._queue.popleft()
            self._set_state(
                CellState.STALE if self._has_value else CellState.UNINITIALIZED
            )
        with _tracking.detached():
            for dependent in list(self._dependents):
                dependent.refresh()
        self._notify()
        if more:
            self._maybe_evaluate()

    def _retry_on_change(self) -> None:
        if self._retry is None:
            self._retry = self._runtime.bus.subscribe_once(self._on_retry)

    def _on_retry(self) -> None:
        self._retry = None
        self._maybe_evaluate()

    def _set_state(self, state: CellState) -> None:
        if state is not self._state:
            logger.debug("Cell %r: %s -> %s", self._key, self._state.name, state.name)
            self._state = state

    def _notify(self) -> None:
        with _tracking.detached():
            self._runtime.bus.changed()

    def __repr__(self) -> str:
        if self._state is CellState.REJECTED:
            detail = f"error={self._error!r}"
        elif self._has_value:
            detail = f"value={self._value!r}"
        else:
            detail = "no value"
        return f"Cell({self._key!r}, {self._state.name}, {detail})"


def cell(
    computation: T | Callable[[], Any],
    key: str | None = None,
    *,
    runtime: Runtime | None = None,
) -> Cell[T]:
    """Get the cell for ``key`` from the resolver, creating it if new.

    Without an explicit key, one is synthesized from the current scope path
    and the number of cells already made in that scope. A reused cell keeps
    its original computation.

    Usage:
        greeting = cell("Hello")
        message = cell(lambda: greeting.value + "!")
        message.value  # "Hello!"
    """
    rt = runtime if runtime is not None else get_runtime()
    if key is None:
        key = rt.resolver.next_key()
    return rt.resolver.resolve(key, lambda: Cell(computation, key=key, runtime=rt))
