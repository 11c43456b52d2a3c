"""Move-quality classification.

One ordered decision procedure; the first matching rule wins:

 1. Book        – move ≤ 15 and the book knows the move here
 2. Brilliant   – engine's best, loss ≤ P1, a real sacrifice, the mover was
                  not already winning big, and is not worse afterwards
 3. Great       – engine's best, loss ≤ P5, and (by default) the only good
                  move: every alternative line is ≥ 0.05 EP worse
 4. Best        – engine's best
 5. Excellent   – loss ≤ P10
 6. Good        – loss ≤ P25
 7. Inaccuracy  – loss ≤ P50
 8. Mistake     – loss ≤ P75
 9. Miss        – loss ≤ P90
10. Blunder     – everything else

P1 … P90 are the EP-loss thresholds of the mover's rating bucket.  The loss
is clamped at zero before comparison.  "Involves a sacrifice" stands in for
"hard to find"; it is the only difficulty signal used.

The result is a pure function of :class:`MoveFacts` and the thresholds
passed in.  Rationale and confidence are diagnostics only.
"""

from __future__ import annotations

from dataclasses import dataclass

from .material import OPENING_MOVES, sacrifice_threshold
from .models import ClassificationResult, EPThresholds, MoveClassification, RatingBucket

# Mover's eval (cp) above which the position already counts as won.
WINNING_CP = 300
# Mover's eval (cp) below which the position after a move counts as bad.
BAD_AFTER_CP = -50

# Alternatives must trail the best line by this much EP for an only-move.
ONLY_MOVE_MARGIN = 0.05

_CLEAR_BEST_LOSS = 0.001
_CLEAR_BLUNDER_LOSS = 0.5
_BOUNDARY_MARGIN = 0.01

_CONFIDENCE_HIGH = 0.95
_CONFIDENCE_BASE = 0.8
_CONFIDENCE_LOW = 0.6


@dataclass(frozen=True)
class MoveFacts:
    """Everything the classifier looks at for one move."""

    ep_loss: float             # signed; clamped here
    is_best: bool              # played move equals the engine's best move
    material_change: int       # mover's material over move + reply, cp
    winning_before: bool       # mover was > WINNING_CP or had a forced mate
    losing_after: bool         # mover is < BAD_AFTER_CP or faces a forced mate
    move_number: int           # full-move number
    rating: int
    in_book: bool = False
    only_move: bool | None = None  # None when no alternative line was searched


@dataclass(frozen=True)
class ClassifierConfig:
    great_requires_only_move: bool = True
    opening_moves: int = OPENING_MOVES


def classify(
    facts: MoveFacts,
    thresholds: EPThresholds,
    config: ClassifierConfig = ClassifierConfig(),
) -> ClassificationResult:
    """Classify one move against its bucket's *thresholds*."""
    loss = max(0.0, facts.ep_loss)
    bucket = RatingBucket.for_rating(facts.rating).value

    if facts.in_book and facts.move_number <= config.opening_moves:
        return ClassificationResult(
            MoveClassification.BOOK,
            f"known theory on move {facts.move_number}",
            _CONFIDENCE_HIGH,
        )

    if facts.is_best:
        sacrificed = -facts.material_change
        if (
            loss <= thresholds.p1
            and sacrificed >= sacrifice_threshold(facts.rating)
            and not facts.winning_before
            and not facts.losing_after
        ):
            return ClassificationResult(
                MoveClassification.BRILLIANT,
                f"best move sacrificing {sacrificed}cp with EP loss {loss:.4f} "
                f"≤ P1 {thresholds.p1:.4f} ({bucket})",
                _confidence(loss, thresholds, MoveClassification.BRILLIANT),
            )

        only_move_ok = facts.only_move is True or not config.great_requires_only_move
        if loss <= thresholds.p5 and only_move_ok:
            detail = "only good move, " if facts.only_move else ""
            return ClassificationResult(
                MoveClassification.GREAT,
                f"best move, {detail}EP loss {loss:.4f} ≤ P5 {thresholds.p5:.4f} ({bucket})",
                _confidence(loss, thresholds, MoveClassification.GREAT),
            )

        return ClassificationResult(
            MoveClassification.BEST,
            f"matches engine best move, EP loss {loss:.4f}",
            _confidence(loss, thresholds, MoveClassification.BEST),
        )

    for tier, bound, name in (
        (MoveClassification.EXCELLENT, thresholds.p10, "P10"),
        (MoveClassification.GOOD, thresholds.p25, "P25"),
        (MoveClassification.INACCURACY, thresholds.p50, "P50"),
        (MoveClassification.MISTAKE, thresholds.p75, "P75"),
        (MoveClassification.MISS, thresholds.p90, "P90"),
    ):
        if loss <= bound:
            return ClassificationResult(
                tier,
                f"EP loss {loss:.4f} ≤ {name} {bound:.4f} ({bucket})",
                _confidence(loss, thresholds, tier),
            )

    return ClassificationResult(
        MoveClassification.BLUNDER,
        f"EP loss {loss:.4f} > P90 {thresholds.p90:.4f} ({bucket})",
        _confidence(loss, thresholds, MoveClassification.BLUNDER),
    )


def is_winning(cp_pov: int, mate_pov: int | None) -> bool:
    """Mover already clearly winning: big eval or a forced mate."""
    if mate_pov is not None:
        return mate_pov > 0
    return cp_pov > WINNING_CP


def is_bad(cp_pov: int, mate_pov: int | None) -> bool:
    """Mover worse than roughly equal, or getting mated."""
    if mate_pov is not None:
        return mate_pov < 0
    return cp_pov < BAD_AFTER_CP


def _confidence(loss: float, thresholds: EPThresholds, tier: MoveClassification) -> float:
    if tier is MoveClassification.BEST and loss < _CLEAR_BEST_LOSS:
        return _CONFIDENCE_HIGH
    if tier is MoveClassification.BLUNDER and loss > _CLEAR_BLUNDER_LOSS:
        return _CONFIDENCE_HIGH
    nearest = min(abs(loss - bound) for bound in thresholds.as_tuple())
    if nearest < _BOUNDARY_MARGIN:
        return _CONFIDENCE_LOW
    return _CONFIDENCE_BASE
