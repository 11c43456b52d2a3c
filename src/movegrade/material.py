"""Material counting, sacrifice detection and game-phase tagging."""

from __future__ import annotations

import chess

from .models import RatingBucket

# Centipawn piece values for material balance.
PIECE_VALUES: dict[int, int] = {
    chess.PAWN:   100,
    chess.KNIGHT: 320,
    chess.BISHOP: 330,
    chess.ROOK:   500,
    chess.QUEEN:  900,
}

# Minimum material surrendered (cp) for a move to count as a sacrifice.
# Weaker players get credit for giving up less.
SACRIFICE_THRESHOLDS: dict[RatingBucket, int] = {
    RatingBucket.UP_TO_1200:        200,
    RatingBucket.FROM_1201_TO_1600: 250,
    RatingBucket.FROM_1601_TO_2000: 300,
    RatingBucket.FROM_2001:         300,
}

# Non-pawn material values (pawn units) for phase detection.
_PHASE_VALUES: dict[int, int] = {
    chess.QUEEN:  9,
    chess.ROOK:   5,
    chess.BISHOP: 3,
    chess.KNIGHT: 3,
}

# Combined non-pawn material (both sides) at or below this → endgame.
_ENDGAME_THRESHOLD = 20
# Moves up to and including this full-move number are the opening.
OPENING_MOVES = 15

OPENING = "opening"
MIDDLEGAME = "middlegame"
ENDGAME = "endgame"


def material_balance(board: chess.Board, side: chess.Color) -> int:
    """*side*'s material minus the opponent's, in centipawns."""
    total = 0
    for piece_type, value in PIECE_VALUES.items():
        total += len(board.pieces(piece_type, side)) * value
        total -= len(board.pieces(piece_type, not side)) * value
    return total


def material_change(
    board: chess.Board,
    move: chess.Move,
    reply: chess.Move | None = None,
) -> int:
    """Change in the mover's material balance over *move* and the expected *reply*.

    Negative means the mover gave material away.  A capture that is simply
    recaptured nets out close to zero; a piece left hanging to the engine's
    reply shows up as a loss.  An illegal *reply* is ignored.
    """
    mover = board.turn
    start = material_balance(board, mover)
    after = board.copy(stack=False)
    after.push(move)
    if reply is not None and reply in after.legal_moves:
        after.push(reply)
    return material_balance(after, mover) - start


def sacrifice_threshold(rating: int) -> int:
    return SACRIFICE_THRESHOLDS[RatingBucket.for_rating(rating)]


def _non_pawn_material(board: chess.Board) -> int:
    total = 0
    for piece_type, value in _PHASE_VALUES.items():
        total += len(board.pieces(piece_type, chess.WHITE)) * value
        total += len(board.pieces(piece_type, chess.BLACK)) * value
    return total


def game_phase(board: chess.Board) -> str:
    """Phase of the position *before* the move about to be played."""
    if board.fullmove_number <= OPENING_MOVES:
        return OPENING
    if _non_pawn_material(board) <= _ENDGAME_THRESHOLD:
        return ENDGAME
    return MIDDLEGAME
