"""Decode python-chess UCI search output into :class:`EngineEvaluation`.

python-chess speaks the wire protocol and merges successive ``info`` lines
per MultiPV slot, so the dicts handed to this module already hold the latest,
authoritative value of each field.  The rules applied here:

* ``score cp`` and ``score mate`` stay distinct: a mate is never turned into
  centipawns by the decoder.
* ``mate 0`` (the side to move is already mated) carries no sign, so it is
  stored as mate-in-1 for the side that delivered it.
* Fields this module does not use (``hashfull``, ``tbhits``, ``currmove`` …)
  are ignored.
* An info dict without a score is dropped.  If no line survives, decoding
  yields ``None`` and the caller treats the position as unevaluated.
* A missing best move decodes to ``best_move=None``.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Iterable

import chess
import chess.engine

from .models import MATE_CP, EngineEvaluation


def build_limit(depth: int, time_ms: int | None) -> chess.engine.Limit:
    """Search limit: stop at *depth* or after *time_ms*, whichever comes first."""
    if time_ms is not None:
        return chess.engine.Limit(depth=depth, time=time_ms / 1000.0)
    return chess.engine.Limit(depth=depth)


def decode_info(info: chess.engine.InfoDict) -> EngineEvaluation | None:
    """Decode one MultiPV line; ``None`` when it carries no score."""
    pov = info.get("score")
    if pov is None:
        return None

    white = pov.white()
    cp_white: int | None = None
    mate_white: int | None = None
    if white.is_mate():
        mate_white = white.mate()
        if mate_white == 0:
            mate_white = 1 if (white.score(mate_score=MATE_CP) or 0) > 0 else -1
    else:
        cp_white = white.score()

    pv = tuple(move.uci() for move in info.get("pv", []))
    return EngineEvaluation(
        depth=int(info.get("depth", 0)),
        cp_white=cp_white,
        mate_white=mate_white,
        best_move=pv[0] if pv else None,
        pv=pv,
        nodes=int(info.get("nodes", 0)),
        time_ms=int(round(info.get("time", 0.0) * 1000)),
        multipv=int(info.get("multipv", 1)),
    )


def decode_evaluation(
    infos: Iterable[chess.engine.InfoDict],
    best_move: chess.Move | None = None,
) -> EngineEvaluation | None:
    """Decode a finished search into the primary line plus alternatives.

    *best_move* is the move from the terminating ``bestmove`` reply when the
    caller has it; otherwise the head of the first line's PV stands in.
    """
    lines = [ev for ev in (decode_info(info) for info in infos) if ev is not None]
    if not lines:
        return None
    lines.sort(key=lambda ev: ev.multipv)

    primary, rest = lines[0], lines[1:]
    best = best_move.uci() if best_move else primary.best_move
    return replace(primary, best_move=best, alternatives=tuple(rest))


def terminal_evaluation(board: chess.Board) -> EngineEvaluation | None:
    """Evaluation of a finished game without consulting an engine.

    Returns ``None`` while the game is still in progress.
    """
    outcome = board.outcome(claim_draw=False)
    if outcome is None:
        return None
    if outcome.winner is None:
        return EngineEvaluation(depth=0, cp_white=0, mate_white=None)
    return EngineEvaluation(
        depth=0,
        cp_white=None,
        mate_white=1 if outcome.winner == chess.WHITE else -1,
    )
