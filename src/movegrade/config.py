"""Runtime settings resolved from ``MOVEGRADE_*`` environment variables.

==============================  ========================  =======
Variable                        Meaning                   Default
==============================  ========================  =======
MOVEGRADE_STOCKFISH_PATH        engine binary             $PATH
MOVEGRADE_POOL_SIZE             engine processes          4
MOVEGRADE_ENGINE_THREADS        Threads per process       1
MOVEGRADE_ENGINE_HASH_MB        Hash per process (MB)     128
MOVEGRADE_DEFAULT_DEPTH         search depth              15
MOVEGRADE_DEFAULT_TIME_MS       search time cap (ms)      1000
MOVEGRADE_MAX_DEPTH             upper bound for depth     24
MOVEGRADE_MAX_TIME_MS           upper bound for time      30000
MOVEGRADE_ACQUIRE_TIMEOUT       acquire timeout (s)       30
MOVEGRADE_THRESHOLDS_PATH       calibrated thresholds     data/thresholds.json
MOVEGRADE_BOOK_PATH             Polyglot opening book     (none)
==============================  ========================  =======
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping

_PREFIX = "MOVEGRADE_"

DEFAULT_THRESHOLDS_PATH = Path("data/thresholds.json")

_THREADS_RANGE = (1, 8)
_HASH_RANGE = (1, 2048)


@dataclass
class Settings:
    stockfish_path: Path | None = None
    pool_size: int = 4
    threads: int = 1
    hash_mb: int = 128
    default_depth: int = 15
    default_time_ms: int = 1000
    max_depth: int = 24
    max_time_ms: int = 30_000
    acquire_timeout: float = 30.0
    thresholds_path: Path = DEFAULT_THRESHOLDS_PATH
    book_path: Path | None = None

    def __post_init__(self) -> None:
        self.validate()

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "Settings":
        env = os.environ if environ is None else environ

        def _path(name: str) -> Path | None:
            val = env.get(_PREFIX + name)
            return Path(val) if val else None

        defaults = cls()
        return cls(
            stockfish_path=_path("STOCKFISH_PATH"),
            pool_size=_int(env, "POOL_SIZE", defaults.pool_size),
            threads=_int(env, "ENGINE_THREADS", defaults.threads),
            hash_mb=_int(env, "ENGINE_HASH_MB", defaults.hash_mb),
            default_depth=_int(env, "DEFAULT_DEPTH", defaults.default_depth),
            default_time_ms=_int(env, "DEFAULT_TIME_MS", defaults.default_time_ms),
            max_depth=_int(env, "MAX_DEPTH", defaults.max_depth),
            max_time_ms=_int(env, "MAX_TIME_MS", defaults.max_time_ms),
            acquire_timeout=_float(env, "ACQUIRE_TIMEOUT", defaults.acquire_timeout),
            thresholds_path=_path("THRESHOLDS_PATH") or defaults.thresholds_path,
            book_path=_path("BOOK_PATH"),
        )

    def validate(self) -> None:
        if self.pool_size < 1:
            raise ValueError(f"{_PREFIX}POOL_SIZE must be at least 1, got {self.pool_size}")
        _check_range("ENGINE_THREADS", self.threads, _THREADS_RANGE)
        _check_range("ENGINE_HASH_MB", self.hash_mb, _HASH_RANGE)
        if not 1 <= self.default_depth <= self.max_depth:
            raise ValueError(
                f"{_PREFIX}DEFAULT_DEPTH must be between 1 and {_PREFIX}MAX_DEPTH "
                f"({self.max_depth}), got {self.default_depth}"
            )
        if not 1 <= self.default_time_ms <= self.max_time_ms:
            raise ValueError(
                f"{_PREFIX}DEFAULT_TIME_MS must be between 1 and {_PREFIX}MAX_TIME_MS "
                f"({self.max_time_ms}), got {self.default_time_ms}"
            )
        if self.acquire_timeout <= 0:
            raise ValueError(f"{_PREFIX}ACQUIRE_TIMEOUT must be positive, got {self.acquire_timeout}")

    def engine_options(self) -> dict[str, int]:
        """UCI options sent to every pooled engine at start-up."""
        return {"Threads": self.threads, "Hash": self.hash_mb}

    def clamp_search(self, depth: int, time_ms: int) -> tuple[int, int]:
        """Bound a requested depth / time budget by the configured maxima."""
        return (
            max(1, min(depth, self.max_depth)),
            max(1, min(time_ms, self.max_time_ms)),
        )


def validate_engine_options(options: Mapping[str, object]) -> None:
    """Range-check the engine options this project sets itself.

    Other option names pass through; python-chess rejects any the engine does
    not advertise.
    """
    if "Threads" in options:
        _check_range("ENGINE_THREADS", _as_int("Threads", options["Threads"]), _THREADS_RANGE)
    if "Hash" in options:
        _check_range("ENGINE_HASH_MB", _as_int("Hash", options["Hash"]), _HASH_RANGE)
    if "MultiPV" in options and _as_int("MultiPV", options["MultiPV"]) < 1:
        raise ValueError(f"MultiPV must be at least 1, got {options['MultiPV']}")


# ---------------------------------------------------------------------------
# Internals
# ---------------------------------------------------------------------------


def _int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(_PREFIX + name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{_PREFIX}{name}={raw!r} is not an integer") from None


def _float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(_PREFIX + name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{_PREFIX}{name}={raw!r} is not a number") from None


def _as_int(name: str, value: object) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{name} must be an integer, got {value!r}")
    return value


def _check_range(name: str, value: int, bounds: tuple[int, int]) -> None:
    lo, hi = bounds
    if not lo <= value <= hi:
        raise ValueError(f"{_PREFIX}{name} must be between {lo} and {hi}, got {value}")
