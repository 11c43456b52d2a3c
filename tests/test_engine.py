"""Tests for the engine wrapper (no real Stockfish required)."""

from __future__ import annotations

import threading
from pathlib import Path
from unittest.mock import MagicMock, patch

import chess
import chess.engine
import pytest

from movegrade.engine import Engine, find_stockfish
from movegrade.errors import AnalysisCancelled


# ---------------------------------------------------------------------------
# find_stockfish
# ---------------------------------------------------------------------------


def test_find_stockfish_env_var(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    fake = tmp_path / "stockfish"
    fake.touch()
    monkeypatch.setenv("MOVEGRADE_STOCKFISH_PATH", str(fake))
    assert find_stockfish() == fake


def test_find_stockfish_env_var_missing_file(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("MOVEGRADE_STOCKFISH_PATH", "/nonexistent/stockfish")
    with pytest.raises(FileNotFoundError, match="MOVEGRADE_STOCKFISH_PATH"):
        find_stockfish()


def test_find_stockfish_via_which(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("MOVEGRADE_STOCKFISH_PATH", raising=False)
    with patch("movegrade.engine.shutil.which", return_value="/usr/bin/stockfish"):
        result = find_stockfish()
    assert result == Path("/usr/bin/stockfish")


def test_find_stockfish_not_found(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("MOVEGRADE_STOCKFISH_PATH", raising=False)
    with patch("movegrade.engine.shutil.which", return_value=None):
        with pytest.raises(FileNotFoundError, match="stockfish not found"):
            find_stockfish()


# ---------------------------------------------------------------------------
# Engine wrapper
# ---------------------------------------------------------------------------


def _mock_engine_returning(info) -> MagicMock:
    """Return a mock SimpleEngine whose analyse() returns *info*."""
    mock = MagicMock()
    mock.analyse.return_value = info
    return mock


def _make_info(cp: int = 50, uci: str = "e2e4") -> dict:
    return {
        "score": chess.engine.PovScore(chess.engine.Cp(cp), chess.WHITE),
        "pv": [chess.Move.from_uci(uci)],
        "depth": 10,
    }


def _mock_streaming_engine(infos: list[dict], best: str = "e2e4") -> tuple[MagicMock, MagicMock]:
    """Mock SimpleEngine whose analysis() streams *infos* then reports *best*."""
    search = MagicMock()
    search.__enter__.return_value = search
    search.__iter__.return_value = iter(infos)
    search.wait.return_value = chess.engine.BestMove(chess.Move.from_uci(best), None)
    search.multipv = infos[-1:]
    mock = MagicMock()
    mock.analysis.return_value = search
    return mock, search


def test_analyse_lines_wraps_single_dict() -> None:
    """analyse_lines should always return a list even if engine gives one dict."""
    mock = _mock_engine_returning(_make_info())
    with patch("chess.engine.SimpleEngine.popen_uci", return_value=mock):
        eng = Engine(Path("/fake/sf"))
        infos, best = eng.analyse_lines(chess.Board(), depth=10)
        eng.close()

    assert isinstance(infos, list)
    assert len(infos) == 1
    assert best is None


def test_analyse_lines_preserves_list_and_passes_game() -> None:
    mock = _mock_engine_returning([_make_info(), _make_info(20, "d2d4")])
    token = object()
    with patch("chess.engine.SimpleEngine.popen_uci", return_value=mock):
        eng = Engine(Path("/fake/sf"))
        infos, _ = eng.analyse_lines(chess.Board(), depth=10, time_ms=500, lines=2, game=token)
        eng.close()

    assert len(infos) == 2
    _, kwargs = mock.analyse.call_args
    assert kwargs["multipv"] == 2
    assert kwargs["game"] is token
    limit = mock.analyse.call_args.args[1]
    assert limit.depth == 10
    assert limit.time == pytest.approx(0.5)


def test_engine_configures_options_at_start() -> None:
    mock = _mock_engine_returning(_make_info())
    with patch("chess.engine.SimpleEngine.popen_uci", return_value=mock):
        Engine(Path("/fake/sf"), options={"Threads": 2, "Hash": 64})
    mock.configure.assert_called_once_with({"Threads": 2, "Hash": 64})


def test_engine_rejects_invalid_options_and_quits() -> None:
    mock = _mock_engine_returning(_make_info())
    with patch("chess.engine.SimpleEngine.popen_uci", return_value=mock):
        with pytest.raises(ValueError, match="ENGINE_THREADS"):
            Engine(Path("/fake/sf"), options={"Threads": 64})
    mock.quit.assert_called_once()


def test_streamed_search_returns_latest_lines_and_bestmove() -> None:
    infos = [_make_info(10), _make_info(35)]
    mock, search = _mock_streaming_engine(infos, best="e2e4")
    with patch("chess.engine.SimpleEngine.popen_uci", return_value=mock):
        eng = Engine(Path("/fake/sf"))
        lines, best = eng.analyse_lines(chess.Board(), depth=10, cancel=threading.Event())

    assert lines == infos[-1:]
    assert best == chess.Move.from_uci("e2e4")
    search.stop.assert_not_called()


def test_cancelled_search_is_stopped_before_raising() -> None:
    mock, search = _mock_streaming_engine([_make_info(10), _make_info(20)])
    cancel = threading.Event()
    cancel.set()
    with patch("chess.engine.SimpleEngine.popen_uci", return_value=mock):
        eng = Engine(Path("/fake/sf"))
        with pytest.raises(AnalysisCancelled):
            eng.analyse_lines(chess.Board(), depth=30, cancel=cancel)

    search.stop.assert_called_once()
    search.wait.assert_called_once()


def test_engine_context_manager_calls_quit() -> None:
    """Engine.__exit__ must call engine.quit()."""
    mock = _mock_engine_returning(_make_info())
    with patch("chess.engine.SimpleEngine.popen_uci", return_value=mock):
        with Engine(Path("/fake/sf")):
            pass
    mock.quit.assert_called_once()
