"""Tests for the click command-line interface."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import MagicMock, patch

import chess
import chess.engine
from click.testing import CliRunner

from movegrade.calibration import DEFAULT_THRESHOLDS, compute_thresholds, save_thresholds
from movegrade.cli import main
from movegrade.models import MoveStat, RatingBucket


def test_thresholds_shows_defaults_when_file_missing(tmp_path: Path) -> None:
    result = CliRunner().invoke(main, ["thresholds", "--path", str(tmp_path / "none.json")])
    assert result.exit_code == 0
    assert "missing; defaults" in result.output
    for bucket in RatingBucket:
        assert bucket.value in result.output


def test_thresholds_marks_calibrated_buckets(tmp_path: Path) -> None:
    path = tmp_path / "thresholds.json"
    stats = [MoveStat(1800, 0.3, 0, "e2e4", "e2e4", 10, "opening")] * 3
    save_thresholds(compute_thresholds(stats, DEFAULT_THRESHOLDS, min_samples=1, verbose=False), path)

    result = CliRunner().invoke(main, ["thresholds", "--path", str(path)])
    assert result.exit_code == 0
    assert "calibrated" in result.output


def test_malformed_thresholds_file_fails_cleanly(tmp_path: Path) -> None:
    path = tmp_path / "thresholds.json"
    path.write_text("{oops")
    result = CliRunner().invoke(main, ["thresholds", "--path", str(path)])
    assert result.exit_code == 1
    assert "Error:" in result.output


def test_analyze_rejects_empty_pgn(tmp_path: Path) -> None:
    pgn = tmp_path / "empty.pgn"
    pgn.write_text("")
    result = CliRunner().invoke(main, ["analyze", str(pgn)])
    assert result.exit_code == 1
    assert "fewer than 1 games" in result.output


def test_fetch_corpus_reports_download_failure(tmp_path: Path) -> None:
    with patch("movegrade.cli.download_corpus", side_effect=RuntimeError("Failed to download games for x")):
        result = CliRunner().invoke(main, ["fetch-corpus", "--username", "x", "--out", str(tmp_path / "c.pgn")])
    assert result.exit_code == 1
    assert "Failed to download" in result.output


def test_position_prints_engine_line() -> None:
    mock = MagicMock()
    mock.analyse.return_value = [{
        "score": chess.engine.PovScore(chess.engine.Cp(34), chess.WHITE),
        "pv": [chess.Move.from_uci("e2e4"), chess.Move.from_uci("e7e5")],
        "depth": 15,
        "nodes": 12345,
    }]

    with patch("chess.engine.SimpleEngine.popen_uci", return_value=mock):
        result = CliRunner().invoke(
            main, ["position", chess.STARTING_FEN, "--depth", "15"],
            env={"MOVEGRADE_STOCKFISH_PATH": "/fake/stockfish"},
        )

    assert result.exit_code == 0, result.output
    assert "Best move:   e2e4" in result.output
    assert "+0.34" in result.output
    mock.quit.assert_called_once()


def test_position_rejects_bad_fen() -> None:
    mock = MagicMock()
    with patch("chess.engine.SimpleEngine.popen_uci", return_value=mock):
        result = CliRunner().invoke(
            main, ["position", "not/a/fen"],
            env={"MOVEGRADE_STOCKFISH_PATH": "/fake/stockfish"},
        )
    assert result.exit_code == 1
    assert "invalid FEN" in result.output
