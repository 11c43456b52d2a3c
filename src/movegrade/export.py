"""Write analysed games back out as annotated PGN or plain JSON.

PGN annotations per move
------------------------
* NAG for the tier: ``$3`` (!!) brilliant, ``$1`` (!) great, ``$6`` (?!)
  inaccuracy, ``$2`` (?) mistake / miss, ``$4`` (??) blunder.
* Comment: ``[%eval ±N.NN]`` (or ``[%eval #±N]``) for the position after the
  move, then the tier and its rationale.  Readers such as ChessBase and
  Lichess draw their evaluation graph from the ``[%eval]`` tags.
* For mistakes, misses and blunders the engine's line from the position
  before the move is added as a variation.
* Flagged moves carry the error text instead of a tier.
"""

from __future__ import annotations

from dataclasses import asdict
from pathlib import Path
from typing import Any

import chess
import chess.pgn

from .models import EngineEvaluation, GameAnalysis, MoveAnalysis, MoveClassification

_VARIATION_TIERS = {
    MoveClassification.MISTAKE,
    MoveClassification.MISS,
    MoveClassification.BLUNDER,
}
# Engine moves shown in a suggested variation.
_VARIATION_PLIES = 6


def export_annotated_pgn(analysis: GameAnalysis, out_path: Path, annotator: str = "movegrade") -> None:
    """Write *analysis* to *out_path* as a single annotated PGN game."""
    out_path.parent.mkdir(parents=True, exist_ok=True)
    game = build_annotated_game(analysis, annotator)
    with open(out_path, "w", encoding="utf-8") as fh:
        exporter = chess.pgn.FileExporter(fh)
        game.accept(exporter)
        fh.write("\n")


def build_annotated_game(analysis: GameAnalysis, annotator: str = "movegrade") -> chess.pgn.Game:
    game = chess.pgn.Game()
    for key, value in analysis.headers.items():
        game.headers[key] = value
    game.headers["Annotator"] = annotator
    game.setup(chess.Board(analysis.start_fen))

    game.comment = (
        f"White accuracy {_pct(analysis.white.accuracy)} | "
        f"Black accuracy {_pct(analysis.black.accuracy)}"
    )

    node: chess.pgn.GameNode = game
    for record in analysis.moves:
        board = node.board()
        move = chess.Move.from_uci(record.uci)
        if record.classification is not None and record.classification.classification in _VARIATION_TIERS:
            _add_engine_line(node, board, record)
        node = node.add_main_variation(move)
        tier = record.classification.classification if record.classification else None
        if tier is not None and tier.nag is not None:
            node.nags.add(tier.nag)
        node.comment = _move_comment(record)

    return game


def analysis_to_dict(analysis: GameAnalysis) -> dict[str, Any]:
    """JSON-ready representation of a game analysis."""
    return {
        "headers": analysis.headers,
        "start_fen": analysis.start_fen,
        "white": asdict(analysis.white),
        "black": asdict(analysis.black),
        "moves": [_move_dict(r) for r in analysis.moves],
        "critical_moments": [asdict(m) for m in analysis.critical_moments],
        "smoothed_probabilities": analysis.smoothed_probabilities,
    }


# ---------------------------------------------------------------------------
# Internals
# ---------------------------------------------------------------------------


def _move_dict(record: MoveAnalysis) -> dict[str, Any]:
    cls = record.classification
    ep = record.expected_points
    return {
        "ply": record.ply,
        "move_number": record.move_number,
        "color": record.color,
        "san": record.san,
        "uci": record.uci,
        "rating": record.rating,
        "phase": record.game_phase,
        "in_book": record.in_book,
        "best_move": record.best_move,
        "eval_before": record.before.display() if record.before else None,
        "eval_after": record.after.display() if record.after else None,
        "ep_before": ep.before if ep else None,
        "ep_after": ep.after if ep else None,
        "ep_loss": ep.loss if ep else None,
        "accuracy": ep.accuracy if ep else None,
        "material_change": record.material_change,
        "classification": cls.classification.value if cls else None,
        "rationale": cls.rationale if cls else None,
        "confidence": cls.confidence if cls else None,
        "display": asdict(record.display) if record.display else None,
        "error": record.error,
    }


def _move_comment(record: MoveAnalysis) -> str:
    parts: list[str] = []
    if record.after is not None:
        parts.append(_eval_annotation(record.after))
    if record.classification is not None:
        parts.append(f"{record.classification.classification.value}: {record.classification.rationale}")
    if record.error is not None:
        parts.append(f"not classified: {record.error}")
    return " ".join(parts)


def _add_engine_line(node: chess.pgn.GameNode, board: chess.Board, record: MoveAnalysis) -> None:
    if record.before is None or not record.before.pv or record.before.pv[0] == record.uci:
        return
    variation: chess.pgn.GameNode = node
    board = board.copy()
    for uci in record.before.pv[:_VARIATION_PLIES]:
        move = chess.Move.from_uci(uci)
        if move not in board.legal_moves:
            break
        variation = variation.add_variation(move)
        board.push(move)
    if variation is not node:
        variation.comment = _eval_annotation(record.before)


def _eval_annotation(ev: EngineEvaluation) -> str:
    if ev.mate_white is not None:
        sign = "+" if ev.mate_white > 0 else "-"
        return f"[%eval #{sign}{abs(ev.mate_white)}]"
    return f"[%eval {(ev.cp_white or 0) / 100:+.2f}]"


def _pct(value: float | None) -> str:
    return "n/a" if value is None else f"{value:.1f}%"
