"""Empirical EP-loss thresholds per rating bucket.

Calibration replays a corpus of rated games through the engine pool.  Every
half-move by a rated player is evaluated before and after at a fixed,
moderate depth.  Its EP loss (rating-aware model, clamped at zero as in
classification) becomes a :class:`MoveStat` sample in the mover's bucket.
When the corpus is exhausted, the P1 … P90 percentiles of each bucket become
that bucket's :class:`EPThresholds`.

Percentiles use linear interpolation between order statistics::

    idx = p / 100 × (n − 1)
    P   = v[⌊idx⌋] + (idx − ⌊idx⌋) × (v[⌈idx⌉] − v[⌊idx⌋])

A bucket with fewer than ``min_samples`` samples is reported as
uncalibrated and keeps its default thresholds.

The result is a JSON artifact (``data/thresholds.json``) that
:class:`ThresholdStore` can reload while the pool keeps running.
"""

from __future__ import annotations

import json
import math
import sys
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Mapping, Sequence

import chess
import chess.engine
import chess.pgn

from .config import DEFAULT_THRESHOLDS_PATH
from .corpus import game_ratings
from .engine import _p
from .errors import AcquireTimeout, AnalysisCancelled, CalibrationError
from .expected_points import move_expected_points
from .material import game_phase, material_change
from .models import PERCENTILES, EngineEvaluation, EPThresholds, MoveStat, RatingBucket
from .pool import EngineHandle, EnginePool
from .uci import terminal_evaluation

_ARTIFACT_VERSION = 1

DEFAULT_THRESHOLDS: dict[RatingBucket, EPThresholds] = {
    RatingBucket.UP_TO_1200:        EPThresholds(0.002, 0.008, 0.015, 0.040, 0.080, 0.150, 0.250),
    RatingBucket.FROM_1201_TO_1600: EPThresholds(0.001, 0.005, 0.012, 0.030, 0.060, 0.120, 0.200),
    RatingBucket.FROM_1601_TO_2000: EPThresholds(0.001, 0.003, 0.008, 0.020, 0.045, 0.090, 0.150),
    RatingBucket.FROM_2001:         EPThresholds(0.000, 0.002, 0.005, 0.015, 0.035, 0.070, 0.120),
}

MIN_SAMPLES = 100

# Tier each percentile bounds, for reports.
PERCENTILE_LABELS: dict[int, str] = {
    1: "Brilliant",
    5: "Great",
    10: "Excellent",
    25: "Good",
    50: "Inaccuracy",
    75: "Mistake",
    90: "Miss",
}


# ---------------------------------------------------------------------------
# Statistics
# ---------------------------------------------------------------------------


def percentile(sorted_values: Sequence[float], p: float) -> float:
    """The *p*-th percentile (0–100) of already-sorted values."""
    if not sorted_values:
        raise ValueError("percentile of an empty sequence")
    if not 0 <= p <= 100:
        raise ValueError(f"percentile rank must be within 0–100, got {p}")
    idx = p / 100.0 * (len(sorted_values) - 1)
    lo = math.floor(idx)
    hi = math.ceil(idx)
    if lo == hi:
        return sorted_values[lo]
    return sorted_values[lo] + (idx - lo) * (sorted_values[hi] - sorted_values[lo])


@dataclass
class CalibrationReport:
    thresholds: dict[RatingBucket, EPThresholds]
    sample_counts: dict[RatingBucket, int]
    calibrated: dict[RatingBucket, bool]
    games_used: int = 0
    games_skipped: int = 0
    moves_flagged: int = 0


def compute_thresholds(
    samples: Iterable[MoveStat],
    defaults: Mapping[RatingBucket, EPThresholds] = DEFAULT_THRESHOLDS,
    min_samples: int = MIN_SAMPLES,
    verbose: bool = True,
) -> CalibrationReport:
    """Percentile thresholds per bucket; thin buckets keep *defaults*."""
    by_bucket: dict[RatingBucket, list[float]] = {bucket: [] for bucket in RatingBucket}
    for stat in samples:
        by_bucket[RatingBucket.for_rating(stat.rating)].append(stat.ep_loss)

    thresholds: dict[RatingBucket, EPThresholds] = {}
    counts: dict[RatingBucket, int] = {}
    calibrated: dict[RatingBucket, bool] = {}
    for bucket, losses in by_bucket.items():
        counts[bucket] = len(losses)
        if len(losses) < min_samples:
            thresholds[bucket] = defaults[bucket]
            calibrated[bucket] = False
            if verbose:
                _p(
                    f"[calibrate] Warning: bucket {bucket.value} has {len(losses)} samples "
                    f"(< {min_samples}); keeping default thresholds",
                    file=sys.stderr,
                )
            continue
        losses.sort()
        thresholds[bucket] = EPThresholds.from_sequence([percentile(losses, p) for p in PERCENTILES])
        calibrated[bucket] = True

    return CalibrationReport(thresholds=thresholds, sample_counts=counts, calibrated=calibrated)


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------


def save_thresholds(report: CalibrationReport, path: Path = DEFAULT_THRESHOLDS_PATH) -> None:
    """Write the report's thresholds as the JSON calibration artifact."""
    payload = {
        "version": _ARTIFACT_VERSION,
        "generated_at": datetime.now(timezone.utc).isoformat(timespec="seconds"),
        "buckets": {
            bucket.value: {
                **report.thresholds[bucket].to_dict(),
                "samples": report.sample_counts.get(bucket, 0),
                "calibrated": report.calibrated.get(bucket, False),
            }
            for bucket in RatingBucket
        },
    }
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(json.dumps(payload, indent=2), encoding="utf-8")
    tmp.replace(path)


def load_thresholds(
    path: Path = DEFAULT_THRESHOLDS_PATH,
    defaults: Mapping[RatingBucket, EPThresholds] = DEFAULT_THRESHOLDS,
) -> dict[RatingBucket, EPThresholds]:
    """Thresholds from the artifact at *path*; defaults when it does not exist.

    Buckets absent from the file, or stored as uncalibrated, use *defaults*.
    A malformed file raises ``ValueError``.
    """
    table = dict(defaults)
    if not path.exists():
        return table
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
        buckets = payload["buckets"]
        for bucket in RatingBucket:
            entry = buckets.get(bucket.value)
            if entry is None or not entry.get("calibrated", True):
                continue
            table[bucket] = EPThresholds.from_dict(entry)
    except (KeyError, TypeError, AttributeError, json.JSONDecodeError) as exc:
        raise ValueError(f"malformed thresholds file {path}: {exc}") from exc
    return table


class ThresholdStore:
    """Thread-safe, reloadable view of the active thresholds."""

    def __init__(
        self,
        path: Path | None = DEFAULT_THRESHOLDS_PATH,
        defaults: Mapping[RatingBucket, EPThresholds] = DEFAULT_THRESHOLDS,
    ) -> None:
        self._path = path
        self._defaults = dict(defaults)
        self._lock = threading.Lock()
        self._table: dict[RatingBucket, EPThresholds] = dict(defaults)
        if path is not None:
            self.reload()

    def reload(self) -> dict[RatingBucket, EPThresholds]:
        """Re-read the artifact.  A malformed file raises and leaves the active table alone."""
        if self._path is None:
            return self.snapshot()
        table = load_thresholds(self._path, self._defaults)
        with self._lock:
            self._table = table
        return dict(table)

    def get(self, bucket: RatingBucket) -> EPThresholds:
        with self._lock:
            return self._table[bucket]

    def for_rating(self, rating: int) -> EPThresholds:
        return self.get(RatingBucket.for_rating(rating))

    def snapshot(self) -> dict[RatingBucket, EPThresholds]:
        with self._lock:
            return dict(self._table)


def format_report(
    thresholds: Mapping[RatingBucket, EPThresholds],
    calibrated: Mapping[RatingBucket, bool] | None = None,
    sample_counts: Mapping[RatingBucket, int] | None = None,
) -> str:
    """Plain-text table of thresholds, one row per bucket."""
    header = f"{'Bucket':<11}" + "".join(
        f"{f'P{p}({PERCENTILE_LABELS[p]})':>17}" for p in PERCENTILES
    ) + f"{'Samples':>9}  Source"
    rows = [header, "-" * len(header)]
    for bucket in RatingBucket:
        values = "".join(f"{v:>17.4f}" for v in thresholds[bucket].as_tuple())
        samples = sample_counts.get(bucket, 0) if sample_counts is not None else "-"
        source = "calibrated" if calibrated and calibrated.get(bucket) else "default"
        rows.append(f"{bucket.value:<11}{values}{samples:>9}  {source}")
    return "\n".join(rows)


# ---------------------------------------------------------------------------
# Corpus replay
# ---------------------------------------------------------------------------


@dataclass
class CalibrationConfig:
    depth: int = 12
    time_ms: int = 1000
    min_samples: int = MIN_SAMPLES
    max_workers: int = 2
    acquire_timeout: float | None = None  # None → pool default
    verbose: bool = True
    defaults: dict[RatingBucket, EPThresholds] = field(
        default_factory=lambda: dict(DEFAULT_THRESHOLDS)
    )


@dataclass
class _GameSamples:
    samples: list[MoveStat]
    skipped: bool = False
    flagged: int = 0


class Calibrator:
    """Replays games on a pool reserved for calibration.

    Give it its own :class:`EnginePool`: a long calibration run would
    otherwise starve interactive analysis.
    """

    def __init__(self, pool: EnginePool, config: CalibrationConfig | None = None) -> None:
        self._pool = pool
        self._config = config or CalibrationConfig()

    def run(
        self,
        games: Iterable[chess.pgn.Game],
        cancel: threading.Event | None = None,
    ) -> CalibrationReport:
        """Collect samples from *games* and derive thresholds."""
        cfg = self._config
        game_list = list(games)
        total = len(game_list)
        if total == 0:
            raise CalibrationError("calibration corpus contains no games")

        workers = max(1, min(cfg.max_workers, total))
        if cfg.verbose:
            _p(f"[calibrate] Replaying {total} games at depth {cfg.depth} "
               f"({cfg.time_ms} ms cap, {workers} workers)")

        samples: list[MoveStat] = []
        skipped = 0
        flagged = 0
        done = 0
        with ThreadPoolExecutor(max_workers=workers) as executor:
            futures = {
                executor.submit(self._game_samples, game, cancel): i
                for i, game in enumerate(game_list)
            }
            for future in as_completed(futures):
                result = future.result()
                samples.extend(result.samples)
                skipped += int(result.skipped)
                flagged += result.flagged
                done += 1
                if cfg.verbose:
                    _p(f"[progress:calibrate] {done}/{total}")

        if cancel is not None and cancel.is_set():
            raise AnalysisCancelled("calibration cancelled", partial=samples)
        if not samples:
            raise CalibrationError(
                f"no rated moves could be sampled from {total} games ({skipped} skipped)"
            )

        report = compute_thresholds(samples, cfg.defaults, cfg.min_samples, verbose=cfg.verbose)
        report.games_used = total - skipped
        report.games_skipped = skipped
        report.moves_flagged = flagged
        if cfg.verbose:
            _p(f"[calibrate] {len(samples)} samples from {report.games_used} games "
               f"({skipped} skipped, {flagged} moves unevaluated)")
        return report

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _game_samples(self, game: chess.pgn.Game, cancel: threading.Event | None) -> _GameSamples:
        white_rating, black_rating = game_ratings(game)
        if white_rating is None and black_rating is None:
            return _GameSamples(samples=[], skipped=True)
        if cancel is not None and cancel.is_set():
            return _GameSamples(samples=[], skipped=True)

        site = game.headers.get("Site", "?")
        try:
            handle = self._pool.acquire(self._config.acquire_timeout)
        except AcquireTimeout as exc:
            _p(f"[calibrate] Warning: skipping game {site} – {exc}", file=sys.stderr)
            return _GameSamples(samples=[], skipped=True)

        result = _GameSamples(samples=[])
        try:
            self._replay(handle, game, white_rating, black_rating, result, cancel)
        except AnalysisCancelled:
            pass
        except chess.engine.EngineTerminatedError as exc:
            _p(f"[calibrate] Warning: engine died during game {site} – {exc}", file=sys.stderr)
            self._pool.discard(handle)
            return result
        if self._pool.holds(handle):
            self._pool.release(handle)
        return result

    def _replay(
        self,
        handle: EngineHandle,
        game: chess.pgn.Game,
        white_rating: int | None,
        black_rating: int | None,
        result: _GameSamples,
        cancel: threading.Event | None,
    ) -> None:
        board = game.board()
        before = self._evaluate(handle, board, cancel)
        for move in game.mainline_moves():
            mover = board.turn
            rating = white_rating if mover == chess.WHITE else black_rating
            move_number = board.fullmove_number
            phase = game_phase(board)
            position = board.copy(stack=False)

            board.push(move)
            after = self._evaluate(handle, board, cancel)

            if rating is not None:
                if before is None or after is None:
                    result.flagged += 1
                else:
                    ep = move_expected_points(before, after, mover, rating)
                    reply = chess.Move.from_uci(after.best_move) if after.best_move else None
                    result.samples.append(MoveStat(
                        rating=rating,
                        ep_loss=max(0.0, ep.loss),
                        material_change=material_change(position, move, reply),
                        played_move=move.uci(),
                        best_move=before.best_move,
                        move_number=move_number,
                        game_phase=phase,
                    ))
            before = after

    def _evaluate(
        self,
        handle: EngineHandle,
        board: chess.Board,
        cancel: threading.Event | None,
    ) -> EngineEvaluation | None:
        terminal = terminal_evaluation(board)
        if terminal is not None:
            return terminal
        if cancel is not None and cancel.is_set():
            raise AnalysisCancelled()
        try:
            return self._pool.evaluate(
                handle, board, self._config.depth, self._config.time_ms, lines=1, cancel=cancel
            )
        except chess.engine.EngineTerminatedError:
            raise
        except chess.engine.EngineError as exc:
            _p(f"[calibrate] Warning: engine error at {board.fen()} – {exc}", file=sys.stderr)
            return None
