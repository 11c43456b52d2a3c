"""Full-game and single-position analysis.

Game walk
---------
For a game of N moves the N + 1 positions are evaluated in order.  The
evaluation after move k is also the evaluation before move k + 1, so every
position is searched once.  One engine handle is held for the whole game.
If its process dies, the handle is discarded and the walk continues on a
freshly acquired one.

Each move then gets:

* expected points before / after from the mover's side (rating-aware model),
* material change over the move and the engine's expected reply,
* a classification against the mover's bucket thresholds,
* a display frame from the population model.

Failure policy
--------------
* An invalid FEN or move list is rejected by :class:`GameInput` before any
  engine work is scheduled.
* Engine errors, acquire timeouts and missing scores are attached to the
  affected moves (``MoveAnalysis.error``); the walk goes on.
* A cancel request stops the running search, releases the handle and raises
  :class:`AnalysisCancelled` carrying the moves finished so far.
"""

from __future__ import annotations

import io
import statistics
import sys
import threading
from dataclasses import dataclass, field
from typing import Callable, Sequence

import chess
import chess.engine
import chess.pgn

from .book import NoBook, OpeningBook
from .calibration import ThresholdStore
from .classifier import ClassifierConfig, MoveFacts, ONLY_MOVE_MARGIN, classify, is_bad, is_winning
from .corpus import game_ratings
from .engine import _p
from .errors import (
    AcquireTimeout,
    AnalysisCancelled,
    EngineStartError,
    EvaluationError,
    InvalidGameError,
    InvalidPositionError,
)
from .expected_points import expected_points_for, move_expected_points
from .material import game_phase, material_change
from .models import (
    CriticalMoment,
    EngineEvaluation,
    EPThresholds,
    GameAnalysis,
    MoveAnalysis,
    MoveClassification,
    PlayerStats,
    PositionAnalysis,
    RatingBucket,
)
from .pool import EngineHandle, EnginePool
from .smoothing import ceil_score, display_for, population_move_accuracy, smooth_history, windowed_resmooth
from .uci import terminal_evaluation

DEFAULT_RATING = 1500

# A move is a critical moment above either of these.
CRITICAL_EP_LOSS = 0.15
CRITICAL_SWING_CP = 150

ProgressCallback = Callable[[int, int], None]


@dataclass
class AnalysisOptions:
    depth: int = 18
    time_ms: int = 1000
    lines: int = 2                       # the second line feeds the only-move test
    acquire_timeout: float | None = None  # None → pool default
    acquire_retries: int = 2
    verbose: bool = False


# ---------------------------------------------------------------------------
# Input
# ---------------------------------------------------------------------------


@dataclass
class GameInput:
    """A validated move list with its starting position and player ratings."""

    start_fen: str
    moves: list[chess.Move]
    white_rating: int = DEFAULT_RATING
    black_rating: int = DEFAULT_RATING
    headers: dict[str, str] = field(default_factory=dict)

    def rating_for(self, color: chess.Color) -> int:
        return self.white_rating if color == chess.WHITE else self.black_rating

    def positions(self) -> list[chess.Board]:
        """Boards before each move plus the final position (N + 1 entries)."""
        board = chess.Board(self.start_fen)
        boards = [board.copy()]
        for move in self.moves:
            board.push(move)
            boards.append(board.copy())
        return boards

    @classmethod
    def from_moves(
        cls,
        moves: Sequence[str | chess.Move],
        fen: str = chess.STARTING_FEN,
        white_rating: int | None = None,
        black_rating: int | None = None,
        headers: dict[str, str] | None = None,
    ) -> "GameInput":
        """Replay *moves* (UCI, SAN or Move objects) from *fen*, rejecting illegal ones."""
        board = parse_fen(fen)
        parsed: list[chess.Move] = []
        for ply, raw in enumerate(moves):
            move = _parse_move(board, raw)
            if move is None:
                raise InvalidGameError(
                    f"illegal or unparseable move {str(raw)!r} at ply {ply + 1} ({board.fen()})"
                )
            parsed.append(move)
            board.push(move)
        return cls(
            start_fen=fen,
            moves=parsed,
            white_rating=white_rating or DEFAULT_RATING,
            black_rating=black_rating or DEFAULT_RATING,
            headers=dict(headers or {}),
        )

    @classmethod
    def from_pgn_game(
        cls,
        game: chess.pgn.Game,
        white_rating: int | None = None,
        black_rating: int | None = None,
    ) -> "GameInput":
        """Main line of a parsed PGN game; explicit ratings override the Elo tags."""
        if game.errors:
            raise InvalidGameError(f"PGN could not be replayed: {game.errors[0]}")
        tag_white, tag_black = game_ratings(game)
        try:
            fen = game.board().fen()
        except ValueError as exc:
            raise InvalidPositionError(f"invalid FEN header: {exc}") from exc
        return cls.from_moves(
            list(game.mainline_moves()),
            fen=fen,
            white_rating=white_rating or tag_white,
            black_rating=black_rating or tag_black,
            headers=dict(game.headers),
        )


def parse_fen(fen: str) -> chess.Board:
    """Board for *fen*; raises :class:`InvalidPositionError` if malformed or illegal."""
    try:
        board = chess.Board(fen)
    except ValueError as exc:
        raise InvalidPositionError(f"invalid FEN {fen!r}: {exc}") from exc
    if not board.is_valid():
        raise InvalidPositionError(f"illegal position {fen!r}: {board.status()!r}")
    return board


def parse_game(pgn_text: str, index: int = 0) -> GameInput:
    """The *index*-th game (0-based) of a PGN string."""
    buf = io.StringIO(pgn_text)
    for _ in range(index):
        if chess.pgn.read_game(buf) is None:
            raise InvalidGameError(f"PGN holds fewer than {index + 1} games")
    game = chess.pgn.read_game(buf)
    if game is None:
        raise InvalidGameError(f"PGN holds fewer than {index + 1} games")
    return GameInput.from_pgn_game(game)


def _parse_move(board: chess.Board, raw: str | chess.Move) -> chess.Move | None:
    if isinstance(raw, chess.Move):
        return raw if raw in board.legal_moves else None
    try:
        move = chess.Move.from_uci(raw)
        if move in board.legal_moves:
            return move
    except ValueError:
        pass  # not UCI; try SAN
    try:
        return board.parse_san(raw)
    except ValueError:
        return None


# ---------------------------------------------------------------------------
# Analyzer
# ---------------------------------------------------------------------------


class Analyzer:
    """Runs games and positions through an :class:`EnginePool`.

    Thread-safe: concurrent :meth:`analyze_game` calls each hold their own
    handle.
    """

    def __init__(
        self,
        pool: EnginePool,
        thresholds: ThresholdStore | None = None,
        book: OpeningBook | None = None,
        classifier_config: ClassifierConfig | None = None,
    ) -> None:
        self._pool = pool
        self._thresholds = thresholds or ThresholdStore(path=None)
        self._book = book or NoBook()
        self._classifier_config = classifier_config or ClassifierConfig()

    # ------------------------------------------------------------------
    # Game
    # ------------------------------------------------------------------

    def analyze_game(
        self,
        game: GameInput,
        options: AnalysisOptions | None = None,
        progress: ProgressCallback | None = None,
        cancel: threading.Event | None = None,
    ) -> GameAnalysis:
        opts = options or AnalysisOptions()
        if opts.depth < 1 or opts.time_ms < 1 or opts.lines < 1:
            raise ValueError("depth, time_ms and lines must all be positive")
        if opts.acquire_retries < 0:
            raise ValueError(f"acquire_retries must not be negative, got {opts.acquire_retries}")
        thresholds = self._thresholds.snapshot()
        positions = game.positions()
        total = len(game.moves)

        if opts.verbose:
            _p(f"[analyze] {total} moves at depth {opts.depth} ({opts.time_ms} ms cap), "
               f"ratings {game.white_rating}/{game.black_rating}")

        evals: list[EngineEvaluation | None] = []
        errors: list[str | None] = []
        records: list[MoveAnalysis] = []
        session = _EngineSession(self._pool, opts)
        try:
            for idx, board in enumerate(positions):
                if cancel is not None and cancel.is_set():
                    raise AnalysisCancelled(partial=records)
                try:
                    ev, err = session.evaluate(board, cancel)
                except AnalysisCancelled:
                    raise AnalysisCancelled(partial=records) from None
                evals.append(ev)
                errors.append(err)
                if idx == 0:
                    continue
                records.append(self._move_record(
                    game, positions[idx - 1], game.moves[idx - 1], idx - 1,
                    evals[idx - 1], ev, errors[idx - 1] or err, thresholds,
                ))
                if progress is not None:
                    progress(idx, total)
                if opts.verbose:
                    _p(f"[progress:analyze] {idx}/{total}")
        finally:
            session.close()

        frames = smooth_history(evals[1:])
        for record, frame in zip(records, frames):
            record.display = frame

        return GameAnalysis(
            moves=records,
            white=_player_stats(records, chess.WHITE, game.white_rating),
            black=_player_stats(records, chess.BLACK, game.black_rating),
            critical_moments=_critical_moments(records),
            display_history=frames,
            smoothed_probabilities=windowed_resmooth([f.win_probability for f in frames]),
            headers=dict(game.headers),
            start_fen=game.start_fen,
        )

    # ------------------------------------------------------------------
    # Position
    # ------------------------------------------------------------------

    def analyze_position(
        self,
        fen: str,
        depth: int = 15,
        time_ms: int = 5000,
        lines: int = 1,
        timeout: float | None = None,
        cancel: threading.Event | None = None,
    ) -> PositionAnalysis:
        """Evaluate one position; *lines* > 1 adds alternatives."""
        if depth < 1 or time_ms < 1 or lines < 1:
            raise ValueError("depth, time_ms and lines must all be positive")
        board = parse_fen(fen)
        evaluation = terminal_evaluation(board)
        if evaluation is None:
            evaluation = self._pool.evaluate_position(
                board, depth, time_ms, lines=lines, timeout=timeout, cancel=cancel
            )
        if evaluation is None:
            raise EvaluationError(f"engine returned no score for {fen}")
        return PositionAnalysis(fen=board.fen(), evaluation=evaluation, display=display_for(evaluation))

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _move_record(
        self,
        game: GameInput,
        board: chess.Board,
        move: chess.Move,
        ply: int,
        before: EngineEvaluation | None,
        after: EngineEvaluation | None,
        error: str | None,
        thresholds: dict[RatingBucket, EPThresholds],
    ) -> MoveAnalysis:
        mover = board.turn
        rating = game.rating_for(mover)
        move_number = board.fullmove_number
        in_book = (
            move_number <= self._classifier_config.opening_moves
            and self._book.is_book(board, move)
        )
        record = MoveAnalysis(
            ply=ply,
            move_number=move_number,
            color="white" if mover == chess.WHITE else "black",
            san=board.san(move),
            uci=move.uci(),
            fen_before=board.fen(),
            rating=rating,
            game_phase=game_phase(board),
            in_book=in_book,
            before=before,
            after=after,
        )

        if before is None or after is None:
            record.error = error or "position was not evaluated"
            return record
        if before.best_move is None:
            record.error = "engine reported no best move"
            return record

        reply = chess.Move.from_uci(after.best_move) if after.best_move else None
        record.material_change = material_change(board, move, reply)
        record.expected_points = move_expected_points(before, after, mover, rating)

        facts = MoveFacts(
            ep_loss=record.expected_points.loss,
            is_best=move.uci() == before.best_move,
            material_change=record.material_change,
            winning_before=is_winning(before.cp_pov(mover), before.mate_pov(mover)),
            losing_after=is_bad(after.cp_pov(mover), after.mate_pov(mover)),
            move_number=move_number,
            rating=rating,
            in_book=in_book,
            only_move=_only_move(board, before, mover, rating),
        )
        record.classification = classify(
            facts, thresholds[RatingBucket.for_rating(rating)], self._classifier_config
        )
        return record


class _EngineSession:
    """One game's hold on the pool: a handle plus the retry policy."""

    def __init__(self, pool: EnginePool, options: AnalysisOptions) -> None:
        self._pool = pool
        self._opts = options
        self._handle: EngineHandle | None = None

    def evaluate(
        self,
        board: chess.Board,
        cancel: threading.Event | None,
    ) -> tuple[EngineEvaluation | None, str | None]:
        """(evaluation, error); exactly one is None, except on a cancel."""
        terminal = terminal_evaluation(board)
        if terminal is not None:
            return terminal, None
        try:
            if self._handle is None:
                self._handle = self._acquire()
            ev = self._pool.evaluate(
                self._handle, board, self._opts.depth, self._opts.time_ms,
                lines=self._opts.lines, cancel=cancel,
            )
        except (AcquireTimeout, EngineStartError) as exc:
            return None, f"no engine available: {exc}"
        except chess.engine.EngineTerminatedError as exc:
            self._pool.discard(self._handle)
            self._handle = None
            return None, f"engine terminated: {exc}"
        except chess.engine.EngineError as exc:
            return None, f"engine error: {exc}"
        if ev is None:
            return None, "engine returned no score"
        return ev, None

    def close(self) -> None:
        if self._handle is not None and self._pool.holds(self._handle):
            self._pool.release(self._handle)
        self._handle = None

    def _acquire(self) -> EngineHandle:
        retries = 0
        while True:
            try:
                return self._pool.acquire(self._opts.acquire_timeout)
            except AcquireTimeout as exc:
                retries += 1
                if retries > self._opts.acquire_retries:
                    raise
                _p(f"[analyze] Warning: {exc}; retry {retries}/{self._opts.acquire_retries}",
                   file=sys.stderr)


# ---------------------------------------------------------------------------
# Aggregation
# ---------------------------------------------------------------------------


def _only_move(
    board: chess.Board,
    before: EngineEvaluation,
    mover: chess.Color,
    rating: int,
) -> bool | None:
    """True when every alternative line trails the best by ONLY_MOVE_MARGIN EP.

    A forced move has no alternative to outshine, so it is never an only-move.
    """
    if board.legal_moves.count() == 1:
        return False
    if not before.alternatives:
        return None
    best = expected_points_for(before, mover, rating)
    return all(
        best - expected_points_for(alt, mover, rating) >= ONLY_MOVE_MARGIN
        for alt in before.alternatives
    )


def _mean(values: list[float]) -> float | None:
    return statistics.fmean(values) if values else None


def _player_stats(records: list[MoveAnalysis], color: chess.Color, rating: int) -> PlayerStats:
    name = "white" if color == chess.WHITE else "black"
    mine = [r for r in records if r.color == name]
    counts = {tier.value: 0 for tier in MoveClassification}
    scored: list[MoveAnalysis] = []
    for r in mine:
        if r.classification is None:
            continue
        counts[r.classification.classification.value] += 1
        if r.classification.classification is not MoveClassification.BOOK:
            scored.append(r)

    phase_accuracy: dict[str, float | None] = {}
    for phase in ("opening", "middlegame", "endgame"):
        phase_accuracy[phase] = _mean(
            [r.expected_points.accuracy for r in scored if r.game_phase == phase]
        )

    return PlayerStats(
        color=name,
        rating=rating,
        moves=len(mine),
        accuracy=_mean([r.expected_points.accuracy for r in scored]),
        population_accuracy=_mean(
            [population_move_accuracy(r.before, r.after, color) for r in scored]
        ),
        average_loss=_mean([max(0.0, r.expected_points.loss) for r in scored]),
        counts=counts,
        phase_accuracy=phase_accuracy,
        flagged=sum(1 for r in mine if r.flagged),
    )


def _critical_moments(records: list[MoveAnalysis]) -> list[CriticalMoment]:
    moments: list[CriticalMoment] = []
    for r in records:
        if r.classification is None:
            continue
        before_cp = ceil_score(r.before.cp_white, r.before.mate_white)
        after_cp = ceil_score(r.after.cp_white, r.after.mate_white)
        loss = r.expected_points.loss
        swing = after_cp - before_cp
        if loss <= CRITICAL_EP_LOSS and abs(swing) <= CRITICAL_SWING_CP:
            continue
        moments.append(CriticalMoment(
            ply=r.ply,
            move_number=r.move_number,
            color=r.color,
            san=r.san,
            classification=r.classification.classification.value,
            ep_loss=loss,
            eval_before_cp=before_cp,
            eval_after_cp=after_cp,
            description=_describe(r, swing),
        ))
    return moments


def _describe(record: MoveAnalysis, swing: int) -> str:
    side = record.color.capitalize()
    tier = record.classification.classification
    if tier is MoveClassification.BLUNDER:
        return f"{side} blundered with {record.san}"
    if tier is MoveClassification.MISS:
        return f"{side} missed a much stronger continuation than {record.san}"
    if tier is MoveClassification.MISTAKE:
        return f"{side} made a mistake with {record.san}"
    if tier is MoveClassification.BRILLIANT:
        return f"{side} found a brilliant resource: {record.san}"
    if tier is MoveClassification.GREAT:
        return f"{side} found the only good move {record.san}"
    return f"Evaluation swung {swing:+d}cp after {record.san}"
