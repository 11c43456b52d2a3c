"""Rating-aware win-expectancy model used for move classification.

A centipawn evaluation becomes an expected score for the player to move::

    f(r)  = clamp((r - 1200) / 2000 + 1, 0.5, 2.0)
    EP    = 1 / (1 + exp(-(cp / 100) * f(r)))

A stronger player converts the same advantage more reliably, so ``f`` grows
with rating.  Forced mates bypass the sigmoid and saturate at
``MATE_WIN`` / ``MATE_LOSS``.

This is the only model that feeds classification.  The population model in
:mod:`movegrade.smoothing` drives the evaluation bar and is never used here.
"""

from __future__ import annotations

import math

import chess

from .models import EngineEvaluation, ExpectedPoints

RATING_ANCHOR = 1200
RATING_SPAN = 2000
MIN_RATING_FACTOR = 0.5
MAX_RATING_FACTOR = 2.0

MATE_WIN = 0.999
MATE_LOSS = 0.001

# Keeps exp() finite; results stay strictly inside (0, 1).
_MAX_EXPONENT = 700.0
_EPSILON = 1e-12


def rating_factor(rating: float) -> float:
    """How sharply *rating* converts centipawns into winning chances."""
    factor = (rating - RATING_ANCHOR) / RATING_SPAN + 1.0
    return min(MAX_RATING_FACTOR, max(MIN_RATING_FACTOR, factor))


def expected_points(centipawns: float, rating: float) -> float:
    """Expected score in (0, 1) for the side *centipawns* is relative to."""
    exponent = -(centipawns / 100.0) * rating_factor(rating)
    exponent = max(-_MAX_EXPONENT, min(_MAX_EXPONENT, exponent))
    ep = 1.0 / (1.0 + math.exp(exponent))
    return min(1.0 - _EPSILON, max(_EPSILON, ep))


def expected_points_for(evaluation: EngineEvaluation, side: chess.Color, rating: float) -> float:
    """EP for *side*, applying the mate saturation rule before the sigmoid."""
    mate = evaluation.mate_pov(side)
    if mate is not None:
        return MATE_WIN if mate > 0 else MATE_LOSS
    return expected_points(evaluation.cp_pov(side), rating)


def expected_points_loss(before: float, after: float, rating: float) -> float:
    """Signed EP lost between two mover-relative centipawn evaluations.

    Negative when the move improved the position.  Classification clamps the
    result at zero; diagnostics keep the sign.
    """
    return expected_points(before, rating) - expected_points(after, rating)


def move_expected_points(
    before: EngineEvaluation,
    after: EngineEvaluation,
    mover: chess.Color,
    rating: float,
) -> ExpectedPoints:
    """EP before and after a move, both from the mover's point of view."""
    return ExpectedPoints(
        before=expected_points_for(before, mover, rating),
        after=expected_points_for(after, mover, rating),
    )
