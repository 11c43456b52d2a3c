"""Command-line entry-point for movegrade.

Usage
-----
  movegrade analyze game.pgn --white-rating 1650 ...   (classify every move)
  movegrade position "<FEN>" --lines 3                  (evaluate one position)
  movegrade fetch-corpus --username <U> ...             (download rated games)
  movegrade calibrate data/corpus.pgn ...               (derive thresholds)
  movegrade thresholds                                  (show active thresholds)

Engine and pool settings come from ``MOVEGRADE_*`` environment variables
(see :mod:`movegrade.config`); command options override them.

Run ``movegrade <command> --help`` for full option listings.
"""

from __future__ import annotations

import json
import sys
import time
from pathlib import Path
from typing import NoReturn

import click

from .analysis import AnalysisOptions, Analyzer, GameInput, parse_game
from .book import load_book
from .calibration import (
    DEFAULT_THRESHOLDS,
    CalibrationConfig,
    Calibrator,
    ThresholdStore,
    format_report,
    save_thresholds,
)
from .classifier import ClassifierConfig
from .config import Settings
from .corpus import DEFAULT_CORPUS, download_corpus, iter_games
from .engine import find_stockfish
from .errors import MovegradeError
from .export import analysis_to_dict, export_annotated_pgn
from .models import MoveAnalysis, PositionAnalysis, RatingBucket
from .pool import EnginePool


@click.group()
def main() -> None:
    """movegrade – rating-aware move-quality analysis.

    \b
    Commands:
      analyze       Classify every move of a PGN game.
      position      Evaluate a single FEN position.
      fetch-corpus  Download rated Lichess games for calibration.
      calibrate     Derive per-rating thresholds from a game corpus.
      thresholds    Show the thresholds currently in effect.
    """


# ---------------------------------------------------------------------------
# analyze
# ---------------------------------------------------------------------------


@main.command("analyze")
@click.argument("pgn_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--game-index", "game_index", default=0, show_default=True,
              help="0-based index of the game to analyse in a multi-game PGN.")
@click.option("--depth", default=18, show_default=True, help="Search depth per position.")
@click.option("--time-ms", "time_ms", default=1000, show_default=True,
              help="Per-position time cap (ms).")
@click.option("--white-rating", "white_rating", type=int, default=None,
              help="Override White's rating (default: WhiteElo tag, else 1500).")
@click.option("--black-rating", "black_rating", type=int, default=None,
              help="Override Black's rating (default: BlackElo tag, else 1500).")
@click.option("--thresholds", "thresholds_path", type=click.Path(path_type=Path), default=None,
              help="Calibrated thresholds JSON (default: MOVEGRADE_THRESHOLDS_PATH).")
@click.option("--book", "book_path", type=click.Path(exists=True, dir_okay=False, path_type=Path),
              default=None, help="Polyglot opening book (default: MOVEGRADE_BOOK_PATH).")
@click.option("--no-only-move", "no_only_move", is_flag=True, default=False,
              help="Award 'great' to any best move within P5, without the only-move test.")
@click.option("--json-out", "json_out", type=click.Path(path_type=Path), default=None,
              help="Write the full analysis as JSON.")
@click.option("--pgn-out", "pgn_out", type=click.Path(path_type=Path), default=None,
              help="Write an annotated PGN.")
def analyze_cmd(
    pgn_file: Path,
    game_index: int,
    depth: int,
    time_ms: int,
    white_rating: int | None,
    black_rating: int | None,
    thresholds_path: Path | None,
    book_path: Path | None,
    no_only_move: bool,
    json_out: Path | None,
    pgn_out: Path | None,
) -> None:
    """Classify every move of a game in PGN_FILE."""
    settings = _settings()
    depth, time_ms = settings.clamp_search(depth, time_ms)

    try:
        game = parse_game(pgn_file.read_text(encoding="utf-8"), game_index)
    except MovegradeError as exc:
        _fail(exc)
    if white_rating or black_rating:
        game = GameInput(
            start_fen=game.start_fen,
            moves=game.moves,
            white_rating=white_rating or game.white_rating,
            black_rating=black_rating or game.black_rating,
            headers=game.headers,
        )

    store = _threshold_store(thresholds_path or settings.thresholds_path)
    try:
        book = load_book(book_path or settings.book_path)
    except FileNotFoundError as exc:
        _fail(exc)

    click.echo("[movegrade] Configuration")
    click.echo(f"  Game:        {game.headers.get('White', '?')} – {game.headers.get('Black', '?')} "
               f"({len(game.moves)} plies)")
    click.echo(f"  Ratings:     {game.white_rating} / {game.black_rating}")
    click.echo(f"  Depth:       {depth} ({time_ms} ms cap)")

    started = time.monotonic()
    with _pool(settings, size=1) as pool:
        analyzer = Analyzer(pool, store, book, ClassifierConfig(great_requires_only_move=not no_only_move))
        try:
            analysis = analyzer.analyze_game(
                game, AnalysisOptions(depth=depth, time_ms=time_ms, verbose=True)
            )
        except MovegradeError as exc:
            _fail(exc)

    click.echo(f"\n[movegrade] Done in {time.monotonic() - started:.1f}s\n")
    for record in analysis.moves:
        click.echo(_move_line(record))

    click.echo("")
    for stats in (analysis.white, analysis.black):
        acc = f"{stats.accuracy:.1f}%" if stats.accuracy is not None else "n/a"
        counts = ", ".join(f"{k} {v}" for k, v in stats.counts.items() if v)
        click.echo(f"  {stats.color.capitalize():<6} ({stats.rating}): accuracy {acc}  [{counts}]")
    if analysis.critical_moments:
        click.echo("\n  Critical moments:")
        for moment in analysis.critical_moments:
            click.echo(f"    {moment.move_number}. {moment.description}")

    if json_out is not None:
        json_out.parent.mkdir(parents=True, exist_ok=True)
        json_out.write_text(json.dumps(analysis_to_dict(analysis), indent=2), encoding="utf-8")
        click.echo(f"\n[movegrade] JSON written to {json_out}")
    if pgn_out is not None:
        export_annotated_pgn(analysis, pgn_out)
        click.echo(f"[movegrade] Annotated PGN written to {pgn_out}")


# ---------------------------------------------------------------------------
# position
# ---------------------------------------------------------------------------


@main.command("position")
@click.argument("fen")
@click.option("--depth", default=15, show_default=True, help="Search depth.")
@click.option("--time-ms", "time_ms", default=5000, show_default=True, help="Time cap (ms).")
@click.option("--lines", default=1, show_default=True, help="Number of engine lines (MultiPV).")
def position_cmd(fen: str, depth: int, time_ms: int, lines: int) -> None:
    """Evaluate a single position given as FEN."""
    settings = _settings()
    depth, time_ms = settings.clamp_search(depth, time_ms)
    with _pool(settings, size=1) as pool:
        try:
            result = Analyzer(pool).analyze_position(fen, depth, time_ms, lines)
        except (MovegradeError, ValueError) as exc:
            _fail(exc)
    click.echo(_position_text(result))


# ---------------------------------------------------------------------------
# fetch-corpus
# ---------------------------------------------------------------------------


@main.command("fetch-corpus")
@click.option("--username", required=True, help="Lichess username whose rated games to download.")
@click.option("--out", "out_path", type=click.Path(path_type=Path), default=DEFAULT_CORPUS,
              show_default=True, help="Output PGN file.")
@click.option("--max-games", "max_games", default=1000, show_default=True,
              help="Maximum games to download.")
@click.option("--speeds", default="blitz,rapid,classical", show_default=True,
              help="Comma-separated Lichess time controls.")
def fetch_corpus_cmd(username: str, out_path: Path, max_games: int, speeds: str) -> None:
    """Download rated games for calibration."""
    try:
        download_corpus(username, out_path, max_games=max_games, speeds=speeds)
    except RuntimeError as exc:
        _fail(exc)


# ---------------------------------------------------------------------------
# calibrate
# ---------------------------------------------------------------------------


@main.command("calibrate")
@click.argument("corpus", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--output", "output", type=click.Path(path_type=Path), default=None,
              help="Thresholds JSON to write (default: MOVEGRADE_THRESHOLDS_PATH).")
@click.option("--max-games", "max_games", type=int, default=None, help="Stop after this many games.")
@click.option("--workers", default=2, show_default=True,
              help="Engine processes dedicated to calibration.")
@click.option("--depth", default=12, show_default=True, help="Fixed search depth.")
@click.option("--time-ms", "time_ms", default=1000, show_default=True, help="Per-position time cap (ms).")
@click.option("--min-samples", "min_samples", default=100, show_default=True,
              help="Buckets with fewer samples keep their default thresholds.")
@click.option("-v", "--verbose", is_flag=True, default=False, help="Print per-game progress.")
def calibrate_cmd(
    corpus: Path,
    output: Path | None,
    max_games: int | None,
    workers: int,
    depth: int,
    time_ms: int,
    min_samples: int,
    verbose: bool,
) -> None:
    """Derive per-rating-bucket EP-loss thresholds from CORPUS (PGN)."""
    settings = _settings()
    output = output or settings.thresholds_path
    games = list(iter_games(corpus, max_games))
    click.echo(f"[calibrate] {len(games)} games loaded from {corpus}")

    config = CalibrationConfig(
        depth=depth,
        time_ms=time_ms,
        min_samples=min_samples,
        max_workers=workers,
        verbose=verbose,
    )
    started = time.monotonic()
    # A pool of its own so calibration never competes with interactive analysis.
    with _pool(settings, size=workers) as pool:
        try:
            report = Calibrator(pool, config).run(games)
        except MovegradeError as exc:
            _fail(exc)

    save_thresholds(report, output)
    click.echo(f"\n[calibrate] Done in {time.monotonic() - started:.1f}s – "
               f"{report.games_used} games used, {report.games_skipped} skipped\n")
    click.echo(format_report(report.thresholds, report.calibrated, report.sample_counts))
    click.echo(f"\n[calibrate] Thresholds written to {output}")


# ---------------------------------------------------------------------------
# thresholds
# ---------------------------------------------------------------------------


@main.command("thresholds")
@click.option("--path", "path", type=click.Path(path_type=Path), default=None,
              help="Thresholds JSON (default: MOVEGRADE_THRESHOLDS_PATH).")
def thresholds_cmd(path: Path | None) -> None:
    """Show the thresholds in effect (calibrated where available)."""
    path = path or _settings().thresholds_path
    table = _threshold_store(path).snapshot()
    calibrated = {bucket: table[bucket] != DEFAULT_THRESHOLDS[bucket] for bucket in RatingBucket}
    click.echo(f"[movegrade] Thresholds from {path}" + ("" if path.exists() else " (missing; defaults)"))
    click.echo(format_report(table, calibrated))


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _fail(exc: BaseException) -> NoReturn:
    click.echo(f"Error: {exc}", err=True)
    sys.exit(1)


def _settings() -> Settings:
    try:
        return Settings.from_env()
    except ValueError as exc:
        _fail(exc)


def _threshold_store(path: Path) -> ThresholdStore:
    try:
        return ThresholdStore(path)
    except ValueError as exc:
        _fail(exc)


def _pool(settings: Settings, size: int) -> EnginePool:
    try:
        engine_path = settings.stockfish_path or find_stockfish()
    except FileNotFoundError as exc:
        _fail(exc)
    click.echo(f"  Engine:      {engine_path}")
    pool = EnginePool(
        size=size,
        engine_path=engine_path,
        options=settings.engine_options(),
        acquire_timeout=settings.acquire_timeout,
    )
    try:
        return pool.start()
    except MovegradeError as exc:
        _fail(exc)


def _move_line(record: MoveAnalysis) -> str:
    prefix = f"{record.move_number}." if record.color == "white" else f"{record.move_number}..."
    if record.classification is None:
        return f"  {prefix:<6} {record.san:<8} (not classified: {record.error})"
    tier = record.classification.classification
    ep = record.expected_points
    best = f"  best {record.best_move}" if record.best_move and record.best_move != record.uci else ""
    return (
        f"  {prefix:<6} {record.san + tier.symbol:<10} {tier.value:<11} "
        f"loss {max(0.0, ep.loss):.3f}  eval {record.after.display():>7}{best}"
    )


def _position_text(result: PositionAnalysis) -> str:
    ev = result.evaluation
    disp = result.display
    lines = [
        f"[movegrade] {result.fen}",
        f"  Eval:        {ev.display()} (depth {ev.depth}, {ev.nodes} nodes)",
        f"  Best move:   {ev.best_move or '-'}",
        f"  PV:          {' '.join(ev.pv[:10])}",
        f"  Win prob.:   {disp.win_probability:.3f} ({disp.assessment}), bar {disp.evaluation_bar:+.2f}",
    ]
    for alt in result.alternatives:
        lines.append(f"  Line {alt.multipv}:      {alt.display()}  {' '.join(alt.pv[:10])}")
    return "\n".join(lines)
