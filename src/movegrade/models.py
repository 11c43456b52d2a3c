"""Shared data-model types used across all modules."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field

import chess

# Percentile ranks stored for every rating bucket, lowest first.
PERCENTILES: tuple[int, ...] = (1, 5, 10, 25, 50, 75, 90)

# Centipawn stand-in for a forced mate when a single number is needed.
MATE_CP = 10_000


# ---------------------------------------------------------------------------
# Engine evaluation
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EngineEvaluation:
    """One engine line for a position, White-relative.

    Exactly one of ``cp_white`` / ``mate_white`` is set.  A mate score is kept
    as a mate; converting it to centipawns is always an explicit call
    (:meth:`cp_pov`, :func:`movegrade.smoothing.ceil_score`).
    """

    depth: int
    cp_white: int | None    # centipawns from white's perspective; None when mate
    mate_white: int | None  # mate-in-N from white's perspective; None when cp
    best_move: str | None = None      # UCI; None when the engine gave no move
    pv: tuple[str, ...] = ()
    nodes: int = 0
    time_ms: int = 0
    multipv: int = 1
    alternatives: tuple["EngineEvaluation", ...] = ()

    def __post_init__(self) -> None:
        if (self.cp_white is None) == (self.mate_white is None):
            raise ValueError("exactly one of cp_white / mate_white must be set")

    @property
    def is_mate(self) -> bool:
        return self.mate_white is not None

    def cp_pov(self, side: chess.Color, mate_cp: int = MATE_CP) -> int:
        """Centipawns from *side*'s perspective, a mate counting as ±*mate_cp*."""
        if self.cp_white is None:
            mate = self.mate_white or 0
            white_val = mate_cp if mate > 0 else -mate_cp
            return white_val if side else -white_val
        return self.cp_white if side else -self.cp_white

    def mate_pov(self, side: chess.Color) -> int | None:
        """Mate distance from *side*'s perspective, or None for a cp score."""
        if self.mate_white is None:
            return None
        return self.mate_white if side else -self.mate_white

    def display(self) -> str:
        """Human-readable evaluation string."""
        if self.mate_white is not None:
            sign = "+" if self.mate_white > 0 else "-"
            return f"M{sign}{abs(self.mate_white)}"
        cp = self.cp_white or 0
        return f"{cp / 100:+.2f}"


@dataclass(frozen=True)
class ExpectedPoints:
    """Rating-adjusted expected points before and after one move, mover's view."""

    before: float
    after: float

    @property
    def loss(self) -> float:
        """Signed EP loss; negative when the move improved on the prior estimate."""
        return self.before - self.after

    @property
    def accuracy(self) -> float:
        return min(100.0, max(0.0, (1.0 - self.loss) * 100.0))


# ---------------------------------------------------------------------------
# Rating buckets and thresholds
# ---------------------------------------------------------------------------


class RatingBucket(enum.Enum):
    """Fixed, disjoint rating ranges used to select quality thresholds."""

    UP_TO_1200 = "0-1200"
    FROM_1201_TO_1600 = "1201-1600"
    FROM_1601_TO_2000 = "1601-2000"
    FROM_2001 = "2001+"

    @classmethod
    def for_rating(cls, rating: int) -> "RatingBucket":
        if rating <= 1200:
            return cls.UP_TO_1200
        if rating <= 1600:
            return cls.FROM_1201_TO_1600
        if rating <= 2000:
            return cls.FROM_1601_TO_2000
        return cls.FROM_2001


@dataclass(frozen=True)
class EPThresholds:
    """EP-loss percentiles for one rating bucket (P1 … P90)."""

    p1: float
    p5: float
    p10: float
    p25: float
    p50: float
    p75: float
    p90: float

    def __post_init__(self) -> None:
        values = self.as_tuple()
        for lo, hi in zip(values, values[1:]):
            if hi < lo:
                raise ValueError(f"thresholds must be non-decreasing, got {values}")

    def as_tuple(self) -> tuple[float, ...]:
        return (self.p1, self.p5, self.p10, self.p25, self.p50, self.p75, self.p90)

    @classmethod
    def from_sequence(cls, values: "list[float] | tuple[float, ...]") -> "EPThresholds":
        if len(values) != len(PERCENTILES):
            raise ValueError(f"expected {len(PERCENTILES)} percentile values, got {len(values)}")
        return cls(*(float(v) for v in values))

    def to_dict(self) -> dict[str, float]:
        return {f"p{p}": v for p, v in zip(PERCENTILES, self.as_tuple())}

    @classmethod
    def from_dict(cls, data: dict[str, float]) -> "EPThresholds":
        return cls.from_sequence([data[f"p{p}"] for p in PERCENTILES])


@dataclass
class MoveStat:
    """One calibration sample; lives only for the duration of a calibration run."""

    rating: int
    ep_loss: float
    material_change: int
    played_move: str
    best_move: str | None
    move_number: int
    game_phase: str


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------


class MoveClassification(enum.Enum):
    """Move-quality tiers, best to worst (Book sits outside the scale)."""

    BOOK = "book"
    BRILLIANT = "brilliant"
    GREAT = "great"
    BEST = "best"
    EXCELLENT = "excellent"
    GOOD = "good"
    INACCURACY = "inaccuracy"
    MISTAKE = "mistake"
    MISS = "miss"
    BLUNDER = "blunder"

    @property
    def nag(self) -> int | None:
        """PGN numeric annotation glyph for this tier, if any."""
        return _NAGS.get(self)

    @property
    def symbol(self) -> str:
        return _SYMBOLS.get(self, "")


_NAGS: dict[MoveClassification, int] = {
    MoveClassification.BRILLIANT: 3,   # !!
    MoveClassification.GREAT: 1,       # !
    MoveClassification.INACCURACY: 6,  # ?!
    MoveClassification.MISTAKE: 2,     # ?
    MoveClassification.MISS: 2,        # ?
    MoveClassification.BLUNDER: 4,     # ??
}

_SYMBOLS: dict[MoveClassification, str] = {
    MoveClassification.BRILLIANT: "!!",
    MoveClassification.GREAT: "!",
    MoveClassification.INACCURACY: "?!",
    MoveClassification.MISTAKE: "?",
    MoveClassification.MISS: "?",
    MoveClassification.BLUNDER: "??",
}


@dataclass(frozen=True)
class ClassificationResult:
    """A tier plus diagnostics.  Rationale and confidence never feed back in."""

    classification: MoveClassification
    rationale: str
    confidence: float


# ---------------------------------------------------------------------------
# Display
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DisplayEvaluation:
    """One display frame, derived from a raw evaluation and the previous frame."""

    win_probability: float  # smoothed, White-relative, population model
    capped_score: int       # raw White-relative cp after the ±1000 ceiling
    display_score: int      # smoothed capped score shown next to the bar
    evaluation_bar: float   # -1 (Black winning) … +1 (White winning)
    assessment: str
    is_stable: bool
    trend: str = "stable"


# ---------------------------------------------------------------------------
# Analysis results
# ---------------------------------------------------------------------------


@dataclass
class MoveAnalysis:
    """Everything computed for one played move.  ``error`` marks a flagged move."""

    ply: int                 # 0-indexed half-move
    move_number: int         # full-move number the move was played on
    color: str               # 'white' or 'black'
    san: str
    uci: str
    fen_before: str
    rating: int
    game_phase: str
    in_book: bool = False
    material_change: int = 0
    before: EngineEvaluation | None = None
    after: EngineEvaluation | None = None
    expected_points: ExpectedPoints | None = None
    classification: ClassificationResult | None = None
    display: DisplayEvaluation | None = None
    error: str | None = None

    @property
    def flagged(self) -> bool:
        return self.error is not None

    @property
    def best_move(self) -> str | None:
        return self.before.best_move if self.before is not None else None


@dataclass
class PlayerStats:
    color: str
    rating: int
    moves: int = 0
    accuracy: float | None = None             # mean EP accuracy, book moves excluded
    population_accuracy: float | None = None  # display-model accuracy, never used to classify
    average_loss: float | None = None
    counts: dict[str, int] = field(default_factory=dict)
    phase_accuracy: dict[str, float | None] = field(default_factory=dict)
    flagged: int = 0


@dataclass
class CriticalMoment:
    ply: int
    move_number: int
    color: str
    san: str
    classification: str
    ep_loss: float
    eval_before_cp: int   # White-relative, ceiled to ±1000
    eval_after_cp: int
    description: str


@dataclass
class GameAnalysis:
    moves: list[MoveAnalysis]
    white: PlayerStats
    black: PlayerStats
    critical_moments: list[CriticalMoment]
    display_history: list[DisplayEvaluation] = field(default_factory=list)
    smoothed_probabilities: list[float] = field(default_factory=list)
    headers: dict[str, str] = field(default_factory=dict)
    start_fen: str = chess.STARTING_FEN


@dataclass
class PositionAnalysis:
    fen: str
    evaluation: EngineEvaluation
    display: DisplayEvaluation

    @property
    def alternatives(self) -> tuple[EngineEvaluation, ...]:
        return self.evaluation.alternatives
