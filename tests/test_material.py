"""Tests for material counting, sacrifice thresholds and game phase."""

from __future__ import annotations

import chess
import pytest

from movegrade.material import (
    ENDGAME,
    MIDDLEGAME,
    OPENING,
    game_phase,
    material_balance,
    material_change,
    sacrifice_threshold,
)


def test_start_position_is_balanced() -> None:
    board = chess.Board()
    assert material_balance(board, chess.WHITE) == 0
    assert material_balance(board, chess.BLACK) == 0


def test_recaptured_pawn_nets_out() -> None:
    board = chess.Board()
    board.push_san("e4")
    board.push_san("d5")
    capture = board.parse_san("exd5")
    recapture = chess.Move.from_uci("d8d5")
    assert material_change(board, capture) == 100
    assert material_change(board, capture, recapture) == 0


def test_queen_left_en_prise_is_a_loss() -> None:
    board = chess.Board("4k3/4r3/8/8/8/8/8/4QK2 w - - 0 30")
    move = chess.Move.from_uci("e1e5")
    reply = chess.Move.from_uci("e7e5")
    assert material_change(board, move, reply) == -900


def test_illegal_reply_is_ignored() -> None:
    board = chess.Board()
    move = chess.Move.from_uci("e2e4")
    assert material_change(board, move, chess.Move.from_uci("e2e4")) == 0


def test_material_change_does_not_touch_the_board() -> None:
    board = chess.Board()
    material_change(board, chess.Move.from_uci("g1f3"), chess.Move.from_uci("g8f6"))
    assert board.fen() == chess.STARTING_FEN


@pytest.mark.parametrize(
    ("rating", "threshold"),
    [(800, 200), (1200, 200), (1201, 250), (1600, 250), (1601, 300), (2000, 300), (2600, 300)],
)
def test_sacrifice_threshold_by_rating(rating: int, threshold: int) -> None:
    assert sacrifice_threshold(rating) == threshold


def test_game_phase() -> None:
    assert game_phase(chess.Board()) == OPENING
    assert game_phase(chess.Board("r1bqkbnr/pppppppp/2n5/8/8/2N5/PPPPPPPP/R1BQKBNR w KQkq - 4 20")) == MIDDLEGAME
    assert game_phase(chess.Board("4k3/4r3/8/8/8/8/8/4QK2 w - - 0 30")) == ENDGAME
