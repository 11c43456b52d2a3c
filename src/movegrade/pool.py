"""Bounded pool of long-lived engine processes.

Handles are issued one caller at a time.  ``acquire`` blocks up to a timeout
and raises :class:`AcquireTimeout` on expiry; it never retries on the
caller's behalf.  ``release`` resets the handle for a new game (python-chess
sends ``ucinewgame`` before the next search) and pings the process.  A dead
process is discarded rather than re-pooled.

Slot lifecycle::

    start ──> idle ──acquire──> busy ──release──> idle
                │                 │
                └──── discard <───┘   (dead process or failed reset)

Engine options change only on idle processes.  :meth:`EnginePool.configure`
applies them to idle slots under the pool lock, so no acquisition can
interleave.  Held slots, and slots mid-reset, pick them up on release.  Options
the first idle engine rejects are refused with nothing changed.
"""

from __future__ import annotations

import sys
import threading
import time
from collections import deque
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator, Mapping

import chess
import chess.engine

from .config import validate_engine_options
from .engine import Engine, _p
from .errors import AcquireTimeout, EngineStartError, PoolClosedError, UnknownHandleError
from .models import EngineEvaluation
from .uci import decode_evaluation

# Failures that mean the engine process itself is unusable.
_PROCESS_ERRORS = (
    FileNotFoundError,
    OSError,
    TimeoutError,
    chess.engine.EngineError,
    chess.engine.EngineTerminatedError,
)


@dataclass(eq=False)
class EngineHandle:
    """One pooled engine process.  Only valid between acquire and release."""

    slot_id: int
    engine: Engine
    game: object = field(default_factory=object)
    pending_options: dict[str, object] = field(default_factory=dict)


@dataclass
class PoolStats:
    capacity: int     # slots requested at start-up
    live: int         # slots still backed by a running process
    idle: int
    busy: int
    discarded: int


class EnginePool:
    """Fixed-size set of engine processes shared between threads."""

    def __init__(
        self,
        size: int = 4,
        engine_path: Path | None = None,
        options: Mapping[str, object] | None = None,
        acquire_timeout: float = 30.0,
        verbose: bool = True,
    ) -> None:
        if size < 1:
            raise ValueError(f"pool size must be at least 1, got {size}")
        self._size = size
        self._engine_path = engine_path
        self._options: dict[str, object] = dict(options or {})
        self._acquire_timeout = acquire_timeout
        self._verbose = verbose

        self._cond = threading.Condition()
        self._slots: dict[int, EngineHandle] = {}
        self._idle: deque[EngineHandle] = deque()
        self._busy: set[int] = set()
        self._resetting: set[int] = set()
        self._discarded = 0
        self._started = False
        self._ready = False
        self._closed = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> "EnginePool":
        """Launch every slot.  Slots that fail to start are dropped, not retried.

        Raises :class:`EngineStartError` only when no slot could be started.
        """
        validate_engine_options(self._options)
        with self._cond:
            if self._started:
                return self
            self._started = True

        last_error: BaseException | None = None
        for slot_id in range(self._size):
            try:
                engine = Engine(self._engine_path, self._options)
            except _PROCESS_ERRORS as exc:
                last_error = exc
                with self._cond:
                    self._discarded += 1
                _p(f"[pool]  Warning: engine slot {slot_id} failed to start – {exc}", file=sys.stderr)
                continue
            handle = EngineHandle(slot_id=slot_id, engine=engine)
            with self._cond:
                self._slots[slot_id] = handle
                self._idle.append(handle)
                self._cond.notify()

        with self._cond:
            self._ready = True
            live = len(self._slots)
            self._cond.notify_all()
        if live == 0:
            raise EngineStartError(f"none of {self._size} engine processes started: {last_error}")
        if live < self._size:
            _p(f"[pool]  Running at reduced capacity: {live}/{self._size} engines", file=sys.stderr)
        elif self._verbose:
            _p(f"[pool]  {live} engine(s) ready")
        return self

    def close(self) -> None:
        """Quit idle engines now; busy ones are quit when released."""
        with self._cond:
            self._closed = True
            idle = list(self._idle)
            self._idle.clear()
            for handle in idle:
                self._slots.pop(handle.slot_id, None)
            self._cond.notify_all()
        for handle in idle:
            _quit(handle)

    def __enter__(self) -> "EnginePool":
        return self.start()

    def __exit__(self, *_: object) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Acquire / release
    # ------------------------------------------------------------------

    def acquire(self, timeout: float | None = None) -> EngineHandle:
        """Take an idle handle, waiting up to *timeout* seconds for one."""
        wait_for = self._acquire_timeout if timeout is None else timeout
        deadline = time.monotonic() + wait_for
        with self._cond:
            while True:
                if self._closed:
                    raise PoolClosedError("engine pool is closed")
                if self._idle:
                    handle = self._idle.popleft()
                    self._busy.add(handle.slot_id)
                    return handle
                if self._ready and not self._slots:
                    raise EngineStartError("no live engine processes remain in the pool")
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise AcquireTimeout(f"no engine became free within {wait_for:.1f}s")
                self._cond.wait(remaining)

    def release(self, handle: EngineHandle) -> None:
        """Return *handle* ready for a new game, or discard it if it is dead."""
        with self._cond:
            self._check_held(handle)
            # Leave _busy first so a second release of the same handle fails.
            self._busy.discard(handle.slot_id)
            self._resetting.add(handle.slot_id)
            pending, handle.pending_options = handle.pending_options, {}

        try:
            while True:
                if pending:
                    self._apply_pending(handle, pending)
                handle.engine.ping()
                with self._cond:
                    # configure() may have queued more options during the reset.
                    pending, handle.pending_options = handle.pending_options, {}
                    if pending:
                        continue
                    self._resetting.discard(handle.slot_id)
                    handle.game = object()
                    if self._closed:
                        self._slots.pop(handle.slot_id, None)
                        closing = True
                    else:
                        self._idle.append(handle)
                        self._cond.notify()
                        closing = False
                    break
        except _PROCESS_ERRORS as exc:
            _p(f"[pool]  Warning: engine slot {handle.slot_id} failed reset – {exc}", file=sys.stderr)
            with self._cond:
                self._resetting.discard(handle.slot_id)
                live = self._drop(handle)
            _quit(handle)
            _p(f"[pool]  Discarded engine slot {handle.slot_id}; {live}/{self._size} remain", file=sys.stderr)
            return

        if closing:
            _quit(handle)

    def discard(self, handle: EngineHandle) -> None:
        """Drop a held handle whose process can no longer be trusted."""
        with self._cond:
            self._check_held(handle)
            self._busy.discard(handle.slot_id)
            live = self._drop(handle)
        _quit(handle)
        _p(f"[pool]  Discarded engine slot {handle.slot_id}; {live}/{self._size} remain", file=sys.stderr)

    def holds(self, handle: EngineHandle) -> bool:
        """True while *handle* is issued and not yet released or discarded."""
        with self._cond:
            return self._slots.get(handle.slot_id) is handle and handle.slot_id in self._busy

    @contextmanager
    def session(self, timeout: float | None = None) -> Iterator[EngineHandle]:
        """Acquire a handle for the duration of a ``with`` block."""
        handle = self.acquire(timeout)
        try:
            yield handle
        finally:
            if self.holds(handle):
                self.release(handle)

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    def evaluate(
        self,
        handle: EngineHandle,
        board: chess.Board,
        depth: int,
        time_ms: int | None = None,
        lines: int = 1,
        cancel: threading.Event | None = None,
    ) -> EngineEvaluation | None:
        """Run one search on a held handle.

        Returns ``None`` when the engine produced no usable score.  Engine
        failures propagate: :class:`chess.engine.EngineTerminatedError` means
        the caller should :meth:`discard` the handle.
        """
        with self._cond:
            self._check_held(handle)
        infos, best = handle.engine.analyse_lines(
            board, depth, time_ms, lines=lines, game=handle.game, cancel=cancel
        )
        return decode_evaluation(infos, best)

    def evaluate_position(
        self,
        board: chess.Board,
        depth: int,
        time_ms: int | None = None,
        lines: int = 1,
        timeout: float | None = None,
        cancel: threading.Event | None = None,
    ) -> EngineEvaluation | None:
        """Acquire, search once, release."""
        with self.session(timeout) as handle:
            try:
                return self.evaluate(handle, board, depth, time_ms, lines=lines, cancel=cancel)
            except chess.engine.EngineTerminatedError:
                self.discard(handle)
                raise

    # ------------------------------------------------------------------
    # Configuration / health
    # ------------------------------------------------------------------

    def configure(self, options: Mapping[str, object]) -> None:
        """Apply engine options to idle slots now and to held slots on release.

        If the first idle engine rejects the options nothing changes and
        :class:`ValueError` is raised.  An engine that rejects options
        another engine already took is discarded.
        """
        validate_engine_options(options)
        dead: list[EngineHandle] = []
        rejected: chess.engine.EngineError | None = None
        with self._cond:
            applied = 0
            for handle in list(self._idle):
                try:
                    handle.engine.configure(options)
                except chess.engine.EngineTerminatedError:
                    dead.append(handle)
                except chess.engine.EngineError as exc:
                    if not applied:
                        rejected = exc
                        break
                    dead.append(handle)
                else:
                    applied += 1
            if rejected is None:
                self._options.update(options)
                for slot_id in self._busy | self._resetting:
                    self._slots[slot_id].pending_options.update(options)
            for handle in dead:
                self._idle.remove(handle)
                self._drop(handle)
        for handle in dead:
            _quit(handle)
            _p(f"[pool]  Discarded engine slot {handle.slot_id} during configure", file=sys.stderr)
        if rejected is not None:
            raise ValueError(f"engine rejected options {sorted(options)}: {rejected}") from rejected

    def stats(self) -> PoolStats:
        with self._cond:
            return PoolStats(
                capacity=self._size,
                live=len(self._slots),
                idle=len(self._idle),
                busy=len(self._busy) + len(self._resetting),
                discarded=self._discarded,
            )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _apply_pending(self, handle: EngineHandle, pending: Mapping[str, object]) -> None:
        # A rejected option leaves the process usable; a dead process propagates.
        try:
            handle.engine.configure(pending)
        except chess.engine.EngineTerminatedError:
            raise
        except chess.engine.EngineError as exc:
            _p(f"[pool]  Warning: engine slot {handle.slot_id} rejected {sorted(pending)} – {exc}",
               file=sys.stderr)

    def _drop(self, handle: EngineHandle) -> int:
        # Caller holds self._cond.  Returns the number of live slots left.
        self._slots.pop(handle.slot_id, None)
        self._discarded += 1
        self._cond.notify_all()
        return len(self._slots)

    def _check_held(self, handle: EngineHandle) -> None:
        # Caller holds self._cond.
        if self._slots.get(handle.slot_id) is not handle or handle.slot_id not in self._busy:
            raise UnknownHandleError(f"engine slot {handle.slot_id} is not held by this caller")


def _quit(handle: EngineHandle) -> None:
    try:
        handle.engine.close()
    except _PROCESS_ERRORS:
        pass  # process already gone
