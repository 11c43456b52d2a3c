"""Display-side evaluation smoothing.

Raw engine scores jump around from move to move.  The evaluation bar shown to
a user is driven by a separate, population-calibrated model and damped so it
does not flicker.

Per frame (first pass):

1. Ceiling – mate-in-N becomes ``100 × (21 − min(10, N))`` cp, then every
   score is clamped to ±1000.
2. Probability – ``1 / (1 + exp(−0.00368208 × cp))``.
3. Blend with the previous frame.  The weight of the new value grows with
   the size of the change: a small wobble is mostly ignored and a real
   swing comes through.
4. The displayed centipawn score is blended the same way with its own,
   tighter weights.
5. Bar – a sub-linear curve that stays near zero until roughly 55 %.
6. Label from fixed probability bands.
7. Stable when the probability moved by less than 5 points.

An exactly level evaluation is always shown as level: 50 % and a centred bar,
whatever came before.

Whole game (second pass):

    window  = clamp(len // 10, 2, 8)
    σ_i     = clamp(pstdev(window around i, in %), 0.5, 12)
    p'_i    = (p_i / σ_i + mean_i) / (1 / σ_i + 1)

Volatile stretches lean on the window mean; calm ones keep their own value.
Positions without a full window either side keep their first-pass value.

None of this feeds move classification; see :mod:`movegrade.expected_points`.
"""

from __future__ import annotations

import math
import statistics
from dataclasses import replace
from typing import Sequence

import chess

from .models import DisplayEvaluation, EngineEvaluation

# --- population model -------------------------------------------------------
POPULATION_COEFFICIENT: float = -0.00368208
_PROB_FLOOR: float = 0.001
_PROB_CEIL: float = 0.999

_ACCURACY_SCALE: float = 103.1668
_ACCURACY_DECAY: float = -0.04354
_ACCURACY_OFFSET: float = -3.1669

# --- ceiling ----------------------------------------------------------------
SCORE_CEILING: int = 1000
_MATE_BASE: int = 21
_MATE_MAX_DISTANCE: int = 10

# --- blending ---------------------------------------------------------------
_PROB_SMALL_CHANGE: float = 0.05
_PROB_LARGE_CHANGE: float = 0.15
_PROB_WEIGHTS: tuple[float, float, float] = (0.10, 0.25, 0.40)  # small, medium, large

_SCORE_SMALL_CHANGE: int = 50
_SCORE_LARGE_CHANGE: int = 200
_SCORE_WEIGHTS: tuple[float, float, float] = (0.10, 0.25, 0.35)

STABILITY_TOLERANCE: float = 0.05

# --- bar ----------------------------------------------------------------------
_BAR_DEADBAND: float = 0.001
_BAR_KNEE: float = 0.10        # advantage (2·|p − ½|) where the curve starts
_BAR_KNEE_VALUE: float = 0.03  # bar deflection at the knee
_BAR_EXPONENT: float = 0.6

# --- labels -------------------------------------------------------------------
_ASSESSMENT_BANDS: tuple[tuple[float, str], ...] = (
    (0.90, "winning"),
    (0.75, "much_better"),
    (0.60, "slightly_better"),
)
_ASSESSMENT_BANDS_LOW: tuple[tuple[float, str], ...] = (
    (0.10, "losing"),
    (0.25, "much_worse"),
    (0.40, "slightly_worse"),
)

# --- trend / second pass --------------------------------------------------------
_TREND_SPAN: int = 3
_TREND_THRESHOLD: float = 0.10

_MIN_WINDOW: int = 2
_MAX_WINDOW: int = 8
_MIN_VOLATILITY: float = 0.5
_MAX_VOLATILITY: float = 12.0


# ---------------------------------------------------------------------------
# Population model
# ---------------------------------------------------------------------------


def ceil_score(cp_white: int | None, mate_white: int | None = None) -> int:
    """White-relative score clamped to ±SCORE_CEILING, mates converted first."""
    if mate_white is not None:
        distance = min(_MATE_MAX_DISTANCE, abs(mate_white))
        cp = 100 * (_MATE_BASE - distance)
        cp = cp if mate_white > 0 else -cp
    else:
        cp = cp_white or 0
    return max(-SCORE_CEILING, min(SCORE_CEILING, cp))


def population_win_probability(cp: float) -> float:
    """Win probability for the side *cp* is relative to, population-calibrated."""
    p = 1.0 / (1.0 + math.exp(POPULATION_COEFFICIENT * cp))
    return min(_PROB_CEIL, max(_PROB_FLOOR, p))


def population_accuracy(win_pct_before: float, win_pct_after: float) -> float:
    """Accuracy 0–100 from the mover's win percentage before and after a move."""
    delta = max(0.0, win_pct_before - win_pct_after)
    acc = _ACCURACY_SCALE * math.exp(_ACCURACY_DECAY * delta) + _ACCURACY_OFFSET
    return min(100.0, max(0.0, acc))


def population_move_accuracy(
    before: EngineEvaluation,
    after: EngineEvaluation,
    mover: chess.Color,
) -> float:
    """Display-model accuracy of one move (never used to classify)."""
    sign = 1 if mover == chess.WHITE else -1
    p_before = population_win_probability(sign * ceil_score(before.cp_white, before.mate_white))
    p_after = population_win_probability(sign * ceil_score(after.cp_white, after.mate_white))
    return population_accuracy(p_before * 100.0, p_after * 100.0)


# ---------------------------------------------------------------------------
# Per-frame smoothing
# ---------------------------------------------------------------------------


def display_evaluation(
    cp_white: int | None,
    mate_white: int | None = None,
    prior: DisplayEvaluation | None = None,
) -> DisplayEvaluation:
    """Next display frame for a raw White-relative evaluation."""
    capped = ceil_score(cp_white, mate_white)
    target = population_win_probability(capped)

    if prior is None or capped == 0:
        probability = target
        display_score = capped
    else:
        probability = _blend(
            prior.win_probability, target,
            _adaptive_weight(abs(target - prior.win_probability),
                             _PROB_SMALL_CHANGE, _PROB_LARGE_CHANGE, _PROB_WEIGHTS),
        )
        display_score = round(_blend(
            prior.display_score, capped,
            _adaptive_weight(abs(capped - prior.display_score),
                             _SCORE_SMALL_CHANGE, _SCORE_LARGE_CHANGE, _SCORE_WEIGHTS),
        ))

    stable = prior is not None and abs(probability - prior.win_probability) < STABILITY_TOLERANCE
    return DisplayEvaluation(
        win_probability=probability,
        capped_score=capped,
        display_score=display_score,
        evaluation_bar=evaluation_bar(probability),
        assessment=assessment_label(probability),
        is_stable=stable,
    )


def display_for(evaluation: EngineEvaluation, prior: DisplayEvaluation | None = None) -> DisplayEvaluation:
    return display_evaluation(evaluation.cp_white, evaluation.mate_white, prior)


def evaluation_bar(probability: float) -> float:
    """Bar position in [-1, 1]; 0 is level, positive favours White."""
    edge = probability - 0.5
    if abs(edge) < _BAR_DEADBAND:
        return 0.0
    advantage = min(1.0, abs(edge) * 2.0)
    if advantage < _BAR_KNEE:
        magnitude = advantage * (_BAR_KNEE_VALUE / _BAR_KNEE)
    else:
        span = (advantage - _BAR_KNEE) / (1.0 - _BAR_KNEE)
        magnitude = _BAR_KNEE_VALUE + (1.0 - _BAR_KNEE_VALUE) * span ** _BAR_EXPONENT
    return math.copysign(min(1.0, magnitude), edge)


def assessment_label(probability: float) -> str:
    """Fixed-band verbal assessment, White-relative."""
    for bound, label in _ASSESSMENT_BANDS:
        if probability >= bound:
            return label
    for bound, label in _ASSESSMENT_BANDS_LOW:
        if probability <= bound:
            return label
    return "equal"


def trend(probabilities: Sequence[float]) -> str:
    """'improving' / 'declining' / 'stable' over the last few frames (White view)."""
    if len(probabilities) < _TREND_SPAN:
        return "stable"
    change = probabilities[-1] - probabilities[-_TREND_SPAN]
    if change > _TREND_THRESHOLD:
        return "improving"
    if change < -_TREND_THRESHOLD:
        return "declining"
    return "stable"


def smooth_history(evaluations: Sequence[EngineEvaluation | None]) -> list[DisplayEvaluation]:
    """First-pass frames for a game.  A missing evaluation repeats the last frame."""
    frames: list[DisplayEvaluation] = []
    probabilities: list[float] = []
    prior: DisplayEvaluation | None = None
    for ev in evaluations:
        if ev is None:
            frame = prior if prior is not None else display_evaluation(0)
        else:
            frame = display_for(ev, prior)
        probabilities.append(frame.win_probability)
        frame = replace(frame, trend=trend(probabilities))
        frames.append(frame)
        prior = frame
    return frames


# ---------------------------------------------------------------------------
# Whole-game pass
# ---------------------------------------------------------------------------


def window_size(length: int) -> int:
    return max(_MIN_WINDOW, min(_MAX_WINDOW, length // 10))


def windowed_resmooth(probabilities: Sequence[float]) -> list[float]:
    """Volatility-weighted sliding-window pass over first-pass probabilities."""
    n = len(probabilities)
    window = window_size(n)
    result = list(probabilities)
    if n < 2 * window + 1:
        return result

    percent = [p * 100.0 for p in probabilities]
    for i in range(window, n - window):
        segment = percent[i - window:i + window + 1]
        volatility = min(_MAX_VOLATILITY, max(_MIN_VOLATILITY, statistics.pstdev(segment)))
        weight = 1.0 / volatility
        mean = statistics.fmean(segment)
        result[i] = (weight * percent[i] + mean) / (weight + 1.0) / 100.0
    return result


# ---------------------------------------------------------------------------
# Internals
# ---------------------------------------------------------------------------


def _adaptive_weight(
    change: float,
    small: float,
    large: float,
    weights: tuple[float, float, float],
) -> float:
    if change > large:
        return weights[2]
    if change > small:
        return weights[1]
    return weights[0]


def _blend(old: float, new: float, weight: float) -> float:
    return old + weight * (new - old)
