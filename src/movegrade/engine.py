"""Stockfish UCI wrapper built on python-chess SimpleEngine."""

from __future__ import annotations

import os
import shutil
import threading
from pathlib import Path
from typing import Mapping

import chess
import chess.engine

from .config import validate_engine_options
from .errors import AnalysisCancelled
from .uci import build_limit

# Thread-safe printing, shared by every module that reports from worker threads.
_PRINT_LOCK = threading.Lock()


def _p(*args: object, **kwargs: object) -> None:
    """Print with flush=True and a thread-safe lock."""
    with _PRINT_LOCK:
        print(*args, **kwargs, flush=True)


def find_stockfish() -> Path:
    """Return the path to the Stockfish binary.

    Resolution order:
    1. ``MOVEGRADE_STOCKFISH_PATH`` environment variable
    2. ``which stockfish`` on ``$PATH``
    """
    env_val = os.environ.get("MOVEGRADE_STOCKFISH_PATH")
    if env_val:
        candidate = Path(env_val)
        if candidate.is_file():
            return candidate
        raise FileNotFoundError(
            f"MOVEGRADE_STOCKFISH_PATH={env_val!r} does not point to an existing file"
        )

    which_result = shutil.which("stockfish")
    if which_result:
        return Path(which_result)

    raise FileNotFoundError(
        "stockfish not found in PATH. "
        "Install it (e.g. apt install stockfish) or set MOVEGRADE_STOCKFISH_PATH."
    )


class Engine:
    """Thin, context-manager-aware wrapper around chess.engine.SimpleEngine.

    Not thread-safe: at most one caller may drive an Engine at a time.  The
    pool enforces that by handing each Engine to a single holder.
    """

    def __init__(
        self,
        path: Path | None = None,
        options: Mapping[str, object] | None = None,
    ) -> None:
        self._path = path or find_stockfish()
        self._engine = chess.engine.SimpleEngine.popen_uci(str(self._path))
        if options:
            try:
                self.configure(options)
            except Exception:
                self._engine.quit()
                raise

    @property
    def path(self) -> Path:
        return self._path

    def configure(self, options: Mapping[str, object]) -> None:
        """Send ``setoption`` for each entry; must only be called while idle."""
        validate_engine_options(options)
        self._engine.configure(dict(options))

    def ping(self) -> None:
        """Round-trip ``isready``; raises if the process is gone."""
        self._engine.ping()

    # ------------------------------------------------------------------
    # Public analysis API
    # ------------------------------------------------------------------

    def analyse_lines(
        self,
        board: chess.Board,
        depth: int,
        time_ms: int | None = None,
        lines: int = 1,
        game: object = None,
        cancel: threading.Event | None = None,
    ) -> tuple[list[chess.engine.InfoDict], chess.Move | None]:
        """Search *board* and return (latest info per line, best move).

        A change of *game* makes python-chess send ``ucinewgame`` first.
        When *cancel* is given the search is streamed and stopped as soon as
        the event is set; :class:`AnalysisCancelled` is raised once the
        engine has answered the ``stop`` with its ``bestmove``.
        """
        limit = build_limit(depth, time_ms)

        if cancel is None:
            result = self._engine.analyse(board, limit, multipv=lines, game=game)
            infos = result if isinstance(result, list) else [result]
            return infos, None

        stopped = False
        with self._engine.analysis(board, limit, multipv=lines, game=game) as search:
            for _info in search:
                if cancel.is_set():
                    search.stop()
                    stopped = True
                    break
            best = search.wait()
            infos = list(search.multipv)

        if stopped:
            raise AnalysisCancelled("search stopped by cancel request")
        return infos, best.move if best is not None else None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def close(self) -> None:
        self._engine.quit()

    def __enter__(self) -> "Engine":
        return self

    def __exit__(self, *_: object) -> None:
        self.close()
