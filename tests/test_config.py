"""Tests for environment-driven settings."""

from __future__ import annotations

from pathlib import Path

import pytest

from movegrade.config import Settings, validate_engine_options


def test_defaults() -> None:
    settings = Settings.from_env({})
    assert settings.pool_size == 4
    assert settings.engine_options() == {"Threads": 1, "Hash": 128}
    assert settings.thresholds_path == Path("data/thresholds.json")
    assert settings.book_path is None


def test_environment_overrides() -> None:
    settings = Settings.from_env({
        "MOVEGRADE_POOL_SIZE": "2",
        "MOVEGRADE_ENGINE_HASH_MB": "256",
        "MOVEGRADE_ACQUIRE_TIMEOUT": "2.5",
        "MOVEGRADE_BOOK_PATH": "books/gm.bin",
        "MOVEGRADE_DEFAULT_DEPTH": "",
    })
    assert settings.pool_size == 2
    assert settings.hash_mb == 256
    assert settings.acquire_timeout == 2.5
    assert settings.book_path == Path("books/gm.bin")
    assert settings.default_depth == 15


@pytest.mark.parametrize(
    "env",
    [
        {"MOVEGRADE_POOL_SIZE": "zero"},
        {"MOVEGRADE_POOL_SIZE": "0"},
        {"MOVEGRADE_ENGINE_THREADS": "9"},
        {"MOVEGRADE_ENGINE_HASH_MB": "4096"},
        {"MOVEGRADE_DEFAULT_DEPTH": "30"},
        {"MOVEGRADE_ACQUIRE_TIMEOUT": "-1"},
    ],
)
def test_invalid_values_are_rejected(env: dict[str, str]) -> None:
    with pytest.raises(ValueError):
        Settings.from_env(env)


def test_clamp_search() -> None:
    settings = Settings()
    assert settings.clamp_search(99, 10**6) == (24, 30_000)
    assert settings.clamp_search(0, 0) == (1, 1)
    assert settings.clamp_search(18, 2000) == (18, 2000)


def test_validate_engine_options() -> None:
    validate_engine_options({"Threads": 4, "Hash": 64, "MultiPV": 3, "Skill Level": 10})
    with pytest.raises(ValueError):
        validate_engine_options({"Threads": 0})
    with pytest.raises(ValueError):
        validate_engine_options({"Hash": "big"})
    with pytest.raises(ValueError):
        validate_engine_options({"MultiPV": 0})
