"""Tests for percentile thresholds, the threshold artifact and corpus replay."""

from __future__ import annotations

import io
import json
import threading
from pathlib import Path

import chess
import chess.engine
import chess.pgn
import pytest

from movegrade.calibration import (
    DEFAULT_THRESHOLDS,
    CalibrationConfig,
    Calibrator,
    ThresholdStore,
    compute_thresholds,
    format_report,
    load_thresholds,
    percentile,
    save_thresholds,
)
from movegrade.errors import AnalysisCancelled, CalibrationError
from movegrade.models import EngineEvaluation, EPThresholds, MoveStat, RatingBucket

MID = RatingBucket.FROM_1601_TO_2000


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _stat(rating: int, loss: float) -> MoveStat:
    return MoveStat(
        rating=rating, ep_loss=loss, material_change=0, played_move="e2e4",
        best_move="e2e4", move_number=10, game_phase="opening",
    )


def _game(white_elo: str = "1800", black_elo: str = "?", moves: str = "1. e4 e5 2. Nf3 Nc6 *") -> chess.pgn.Game:
    pgn = (
        f'[Event "Rated blitz game"]\n[Site "https://lichess.org/abc"]\n'
        f'[WhiteElo "{white_elo}"]\n[BlackElo "{black_elo}"]\n\n{moves}\n'
    )
    return chess.pgn.read_game(io.StringIO(pgn))


def _level(_board: chess.Board) -> EngineEvaluation:
    return EngineEvaluation(depth=12, cp_white=20, mate_white=None, best_move="a2a3")


def _config(**kwargs) -> CalibrationConfig:
    return CalibrationConfig(min_samples=1, max_workers=1, verbose=False, **kwargs)


# ---------------------------------------------------------------------------
# Percentiles
# ---------------------------------------------------------------------------


def test_percentile_interpolates() -> None:
    values = [1.0, 2.0, 3.0, 4.0]
    assert percentile(values, 0) == 1.0
    assert percentile(values, 50) == pytest.approx(2.5)
    assert percentile(values, 100) == 4.0
    assert percentile([0.7], 90) == 0.7


def test_percentile_rejects_bad_input() -> None:
    with pytest.raises(ValueError):
        percentile([], 50)
    with pytest.raises(ValueError):
        percentile([1.0], 101)


def test_compute_thresholds_per_bucket() -> None:
    samples = [_stat(1800, i / 1000) for i in range(200)]
    report = compute_thresholds(samples, min_samples=100, verbose=False)

    assert report.calibrated[MID]
    assert report.sample_counts[MID] == 200
    assert report.thresholds[MID].p50 == pytest.approx(0.0995)
    assert report.thresholds[MID].p90 == pytest.approx(0.1791)
    assert not report.calibrated[RatingBucket.UP_TO_1200]
    assert report.thresholds[RatingBucket.UP_TO_1200] == DEFAULT_THRESHOLDS[RatingBucket.UP_TO_1200]


def test_thin_bucket_keeps_defaults() -> None:
    report = compute_thresholds([_stat(2100, 0.5)] * 5, min_samples=100, verbose=False)
    assert report.thresholds[RatingBucket.FROM_2001] == DEFAULT_THRESHOLDS[RatingBucket.FROM_2001]
    assert report.sample_counts[RatingBucket.FROM_2001] == 5


def test_thresholds_must_be_non_decreasing() -> None:
    with pytest.raises(ValueError):
        EPThresholds(0.1, 0.05, 0.2, 0.3, 0.4, 0.5, 0.6)


# ---------------------------------------------------------------------------
# Artifact
# ---------------------------------------------------------------------------


def test_saved_thresholds_are_loaded_back(tmp_path: Path) -> None:
    report = compute_thresholds([_stat(1800, i / 100) for i in range(10)], min_samples=5, verbose=False)
    path = tmp_path / "thresholds.json"
    save_thresholds(report, path)

    payload = json.loads(path.read_text())
    assert payload["buckets"]["1601-2000"]["calibrated"] is True
    assert payload["buckets"]["0-1200"]["calibrated"] is False

    table = load_thresholds(path)
    assert table[MID] == report.thresholds[MID]
    assert table[RatingBucket.UP_TO_1200] == DEFAULT_THRESHOLDS[RatingBucket.UP_TO_1200]


def test_missing_file_gives_defaults(tmp_path: Path) -> None:
    assert load_thresholds(tmp_path / "nope.json") == DEFAULT_THRESHOLDS


@pytest.mark.parametrize("content", ["{not json", '{"buckets": {"1601-2000": {"p1": 0.1}}}', "[]"])
def test_malformed_file_raises(tmp_path: Path, content: str) -> None:
    path = tmp_path / "thresholds.json"
    path.write_text(content)
    with pytest.raises(ValueError):
        load_thresholds(path)


def test_store_reload_picks_up_new_artifact(tmp_path: Path) -> None:
    path = tmp_path / "thresholds.json"
    store = ThresholdStore(path)
    assert store.for_rating(1800) == DEFAULT_THRESHOLDS[MID]

    report = compute_thresholds([_stat(1800, 0.25)] * 3, min_samples=1, verbose=False)
    save_thresholds(report, path)
    store.reload()
    assert store.for_rating(1800).p50 == pytest.approx(0.25)


def test_store_keeps_table_when_reload_fails(tmp_path: Path) -> None:
    path = tmp_path / "thresholds.json"
    save_thresholds(compute_thresholds([_stat(1800, 0.25)] * 3, min_samples=1, verbose=False), path)
    store = ThresholdStore(path)
    path.write_text("{broken")
    with pytest.raises(ValueError):
        store.reload()
    assert store.get(MID).p90 == pytest.approx(0.25)


def test_store_without_path_uses_defaults() -> None:
    assert ThresholdStore(path=None).snapshot() == DEFAULT_THRESHOLDS


def test_format_report_lists_every_bucket() -> None:
    text = format_report(DEFAULT_THRESHOLDS)
    for bucket in RatingBucket:
        assert bucket.value in text
    assert "P50(Inaccuracy)" in text
    assert "default" in text


# ---------------------------------------------------------------------------
# Corpus replay
# ---------------------------------------------------------------------------


def test_calibrator_samples_rated_moves_only(fake_pool) -> None:
    pool = fake_pool(_level)
    report = Calibrator(pool, _config()).run([_game(), _game(white_elo="?", black_elo="?")])

    assert report.sample_counts[MID] == 2
    assert report.calibrated[MID]
    assert report.thresholds[MID].p90 == 0.0
    assert report.games_used == 1
    assert report.games_skipped == 1
    assert pool.acquired == pool.released == 1


def test_calibrator_counts_unevaluated_moves(fake_pool) -> None:
    def scorer(board: chess.Board) -> EngineEvaluation:
        if len(board.move_stack) == 1:
            raise chess.engine.EngineError("bad info line")
        return _level(board)

    report = Calibrator(fake_pool(scorer), _config()).run([_game()])
    assert report.moves_flagged == 1
    assert report.sample_counts[MID] == 1


def test_calibrator_discards_dead_engine(fake_pool) -> None:
    def scorer(board: chess.Board) -> EngineEvaluation:
        raise chess.engine.EngineTerminatedError("engine process died")

    pool = fake_pool(scorer)
    with pytest.raises(CalibrationError):
        Calibrator(pool, _config()).run([_game()])
    assert pool.discarded == 1
    assert pool.released == 0


def test_empty_corpus_is_an_error(fake_pool) -> None:
    with pytest.raises(CalibrationError):
        Calibrator(fake_pool(_level), _config()).run([])


def test_cancelled_calibration(fake_pool) -> None:
    cancel = threading.Event()
    cancel.set()
    with pytest.raises(AnalysisCancelled):
        Calibrator(fake_pool(_level), _config()).run([_game()], cancel=cancel)
