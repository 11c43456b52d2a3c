"""Tests for opening-book lookups."""

from __future__ import annotations

import struct
from pathlib import Path

import chess
import chess.polyglot
import pytest

from movegrade.book import NoBook, PolyglotBook, load_book


def _polyglot_move(move: chess.Move) -> int:
    return (
        chess.square_file(move.to_square)
        | chess.square_rank(move.to_square) << 3
        | chess.square_file(move.from_square) << 6
        | chess.square_rank(move.from_square) << 9
    )


def _write_book(path: Path, board: chess.Board, moves: list[tuple[str, int]]) -> None:
    key = chess.polyglot.zobrist_hash(board)
    with open(path, "wb") as fh:
        for uci, weight in moves:
            fh.write(struct.pack(">QHHI", key, _polyglot_move(chess.Move.from_uci(uci)), weight, 0))


def test_polyglot_book_knows_its_moves(tmp_path: Path) -> None:
    path = tmp_path / "book.bin"
    board = chess.Board()
    _write_book(path, board, [("d2d4", 20), ("e2e4", 10)])

    book = load_book(path)
    assert isinstance(book, PolyglotBook)
    assert book.is_book(board, chess.Move.from_uci("e2e4"))
    assert book.is_book(board, chess.Move.from_uci("d2d4"))
    assert not book.is_book(board, chess.Move.from_uci("g1f3"))


def test_min_weight_filters_rare_moves(tmp_path: Path) -> None:
    path = tmp_path / "book.bin"
    board = chess.Board()
    _write_book(path, board, [("e2e4", 50), ("a2a3", 1)])

    book = PolyglotBook(path, min_weight=5)
    assert book.is_book(board, chess.Move.from_uci("e2e4"))
    assert not book.is_book(board, chess.Move.from_uci("a2a3"))


def test_unknown_position_is_out_of_book(tmp_path: Path) -> None:
    path = tmp_path / "book.bin"
    _write_book(path, chess.Board(), [("e2e4", 10)])
    board = chess.Board()
    board.push_san("e4")
    assert not PolyglotBook(path).is_book(board, chess.Move.from_uci("e7e5"))


def test_missing_book_file(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        PolyglotBook(tmp_path / "missing.bin")


def test_no_book() -> None:
    book = load_book(None)
    assert isinstance(book, NoBook)
    assert not book.is_book(chess.Board(), chess.Move.from_uci("e2e4"))
