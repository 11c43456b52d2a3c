"""Opening-book lookups: "is this move theory in this position?"."""

from __future__ import annotations

from pathlib import Path
from typing import Protocol

import chess
import chess.polyglot


class OpeningBook(Protocol):
    def is_book(self, board: chess.Board, move: chess.Move) -> bool: ...


class NoBook:
    """Book that knows no theory; every move is out of book."""

    def is_book(self, board: chess.Board, move: chess.Move) -> bool:
        return False


class PolyglotBook:
    """Book backed by a Polyglot ``.bin`` file.

    The file is opened per lookup, so one instance can be shared between
    threads.
    """

    def __init__(self, path: Path, min_weight: int = 1) -> None:
        if not path.is_file():
            raise FileNotFoundError(f"opening book {path} does not exist")
        self._path = path
        self._min_weight = min_weight

    def is_book(self, board: chess.Board, move: chess.Move) -> bool:
        with chess.polyglot.open_reader(self._path) as reader:
            for entry in reader.find_all(board, minimum_weight=self._min_weight):
                if entry.move == move:
                    return True
        return False


def load_book(path: Path | None) -> OpeningBook:
    """PolyglotBook for *path*, or NoBook when no path is configured."""
    if path is None:
        return NoBook()
    return PolyglotBook(path)
