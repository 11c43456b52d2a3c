"""Rated-game corpora for calibration: reading PGN files and downloading them.

``movegrade fetch-corpus`` pulls rated games for a Lichess user through the
games export API (``GET /api/games/user/{username}``) and writes them to a
PGN file.  ``movegrade calibrate`` then reads that file with
:func:`iter_games`.
"""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Any, Iterator

import chess
import chess.pgn
import requests

_LICHESS_GAMES_URL = "https://lichess.org/api/games/user/{username}"
DEFAULT_CORPUS = Path("data/corpus.pgn")
_HEADERS = {
    "Accept": "application/x-chess-pgn",
    "User-Agent": "movegrade/0.1.0",
}


# ---------------------------------------------------------------------------
# Reading
# ---------------------------------------------------------------------------


def iter_games(path: Path, max_games: int | None = None) -> Iterator[chess.pgn.Game]:
    """Yield games from a PGN file, skipping ones python-chess cannot parse."""
    count = 0
    with open(path, encoding="utf-8", errors="replace") as fh:
        while max_games is None or count < max_games:
            game = chess.pgn.read_game(fh)
            if game is None:
                break
            if game.errors:
                print(
                    f"[corpus] Warning: skipping unparseable game "
                    f"({game.headers.get('Site', '?')}): {game.errors[0]}",
                    file=sys.stderr, flush=True,
                )
                continue
            count += 1
            yield game


def parse_rating(value: str | None) -> int | None:
    """Integer rating from a PGN Elo tag; None for '?', '-', '' or junk."""
    if value is None:
        return None
    value = value.strip()
    if not value.isdigit():
        return None
    rating = int(value)
    return rating if rating > 0 else None


def game_ratings(game: chess.pgn.Game) -> tuple[int | None, int | None]:
    """(white, black) ratings from the WhiteElo / BlackElo tags."""
    return (
        parse_rating(game.headers.get("WhiteElo")),
        parse_rating(game.headers.get("BlackElo")),
    )


# ---------------------------------------------------------------------------
# Download
# ---------------------------------------------------------------------------


def download_corpus(
    username: str,
    out_path: Path = DEFAULT_CORPUS,
    max_games: int = 1000,
    speeds: str = "blitz,rapid,classical",
    verbose: bool = True,
) -> int:
    """Download rated games for *username* into *out_path*; returns games written."""
    if verbose:
        print(
            f"[fetch] Downloading up to {max_games} rated games for {username} ({speeds}) …",
            flush=True,
        )

    pgn_text = _download_pgn(username, speeds, max_games)
    games = pgn_text.count("[Event ")

    out_path.parent.mkdir(parents=True, exist_ok=True)
    out_path.write_text(pgn_text, encoding="utf-8")

    if verbose:
        print(f"[fetch] Wrote {games} games to {out_path}", flush=True)
    return games


def _download_pgn(username: str, speeds: str, max_games: int) -> str:
    session = requests.Session()
    session.headers.update(_HEADERS)

    params: dict[str, Any] = {
        "perfType": speeds,
        "rated": "true",
        "max": max_games,
        "evals": "false",
        "opening": "false",
        "clocks": "false",
        "moves": "true",
    }

    url = _LICHESS_GAMES_URL.format(username=username)
    try:
        resp = session.get(url, params=params, timeout=180)
        if resp.status_code == 404:
            raise RuntimeError(f"Lichess user '{username}' not found (404).")
        resp.raise_for_status()
        return resp.text
    except requests.RequestException as exc:
        raise RuntimeError(f"Failed to download games for {username}: {exc}") from exc
    finally:
        session.close()
