"""Shared test doubles: an in-process stand-in for the engine pool."""

from __future__ import annotations

import threading
from typing import Callable

import chess
import pytest

from movegrade.errors import UnknownHandleError
from movegrade.models import EngineEvaluation

Scorer = Callable[[chess.Board], "EngineEvaluation | None"]


class FakeHandle:
    def __init__(self, slot_id: int) -> None:
        self.slot_id = slot_id


class FakePool:
    """Pool double whose evaluations come from a callable keyed on the board.

    The scorer may return an EngineEvaluation, None (no score) or raise.
    """

    def __init__(self, scorer: Scorer) -> None:
        self._scorer = scorer
        self._lock = threading.Lock()
        self._next_id = 0
        self.held: set[int] = set()
        self.acquired = 0
        self.released = 0
        self.discarded = 0
        self.evaluated: list[str] = []

    def acquire(self, timeout: float | None = None) -> FakeHandle:
        with self._lock:
            handle = FakeHandle(self._next_id)
            self._next_id += 1
            self.held.add(handle.slot_id)
            self.acquired += 1
            return handle

    def holds(self, handle: FakeHandle) -> bool:
        with self._lock:
            return handle.slot_id in self.held

    def release(self, handle: FakeHandle) -> None:
        with self._lock:
            if handle.slot_id not in self.held:
                raise UnknownHandleError("not held")
            self.held.discard(handle.slot_id)
            self.released += 1

    def discard(self, handle: FakeHandle) -> None:
        with self._lock:
            self.held.discard(handle.slot_id)
            self.discarded += 1

    def evaluate(self, handle, board, depth, time_ms=None, lines=1, cancel=None):
        assert self.holds(handle)
        with self._lock:
            self.evaluated.append(board.fen())
        return self._scorer(board)

    def evaluate_position(self, board, depth, time_ms=None, lines=1, timeout=None, cancel=None):
        handle = self.acquire(timeout)
        try:
            return self.evaluate(handle, board, depth, time_ms, lines, cancel)
        finally:
            self.release(handle)


@pytest.fixture
def fake_pool() -> Callable[[Scorer], FakePool]:
    return FakePool
