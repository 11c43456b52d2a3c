"""Tests for the rating-aware expected-points model."""

from __future__ import annotations

import chess
import pytest

from movegrade.expected_points import (
    MATE_LOSS,
    MATE_WIN,
    expected_points,
    expected_points_for,
    expected_points_loss,
    move_expected_points,
    rating_factor,
)
from movegrade.models import EngineEvaluation


def test_level_position_is_half_a_point_at_any_rating() -> None:
    for rating in (400, 1200, 1800, 2800):
        assert expected_points(0, rating) == pytest.approx(0.5)


def test_rating_factor_is_clamped() -> None:
    assert rating_factor(1200) == pytest.approx(1.0)
    assert rating_factor(1600) == pytest.approx(1.2)
    assert rating_factor(-5000) == 0.5
    assert rating_factor(9000) == 2.0


def test_known_values_for_1600() -> None:
    assert expected_points(150, 1600) == pytest.approx(0.858149, abs=1e-6)
    assert expected_points(100, 1600) == pytest.approx(0.768525, abs=1e-6)
    assert expected_points_loss(150, 100, 1600) == pytest.approx(0.089624, abs=1e-5)


def test_monotone_in_centipawns() -> None:
    values = [expected_points(cp, 1500) for cp in range(-800, 801, 50)]
    assert values == sorted(values)
    assert all(0.0 < v < 1.0 for v in values)


def test_stronger_player_converts_more() -> None:
    assert expected_points(200, 2200) > expected_points(200, 1000)
    assert expected_points(-200, 2200) < expected_points(-200, 1000)


def test_extreme_scores_stay_strictly_inside_unit_interval() -> None:
    assert 0.0 < expected_points(-10_000_000, 3000) < 1e-6
    assert 1.0 - 1e-6 < expected_points(10_000_000, 3000) < 1.0


def test_mate_saturates_instead_of_using_the_sigmoid() -> None:
    white_mates = EngineEvaluation(depth=20, cp_white=None, mate_white=3)
    assert expected_points_for(white_mates, chess.WHITE, 1500) == MATE_WIN
    assert expected_points_for(white_mates, chess.BLACK, 1500) == MATE_LOSS


def test_improving_move_has_negative_loss() -> None:
    before = EngineEvaluation(depth=18, cp_white=-50, mate_white=None)
    after = EngineEvaluation(depth=18, cp_white=80, mate_white=None)
    ep = move_expected_points(before, after, chess.WHITE, 1500)
    assert ep.loss < 0
    assert ep.accuracy == 100.0


def test_black_mover_sees_flipped_scores() -> None:
    before = EngineEvaluation(depth=18, cp_white=-150, mate_white=None)
    after = EngineEvaluation(depth=18, cp_white=-100, mate_white=None)
    ep = move_expected_points(before, after, chess.BLACK, 1600)
    assert ep.before == pytest.approx(0.858149, abs=1e-6)
    assert ep.loss == pytest.approx(0.089624, abs=1e-5)
    assert ep.accuracy == pytest.approx(91.04, abs=0.01)
