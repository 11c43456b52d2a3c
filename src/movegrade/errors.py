"""Exception types raised by movegrade.

Engine-start, acquire and input-validation failures propagate to the caller.
Data-quality problems during a game walk never raise; they are attached to the
affected move instead (see :mod:`movegrade.analysis`).
"""

from __future__ import annotations


class MovegradeError(Exception):
    """Base class for all movegrade errors."""


class EngineStartError(MovegradeError):
    """No engine process in the pool could be started."""


class AcquireTimeout(MovegradeError, TimeoutError):
    """No engine handle became free within the acquire timeout."""


class PoolClosedError(MovegradeError):
    """The pool has been closed; no further handles are issued."""


class UnknownHandleError(MovegradeError):
    """A handle was released or used that the pool has not issued to the caller."""


class AnalysisCancelled(MovegradeError):
    """Analysis was stopped through its cancel event.

    ``partial`` holds whatever results were complete when the cancel was
    observed (a list of per-move records for a game, ``None`` otherwise).
    """

    def __init__(self, message: str = "analysis cancelled", partial: object = None) -> None:
        super().__init__(message)
        self.partial = partial


class InvalidGameError(MovegradeError, ValueError):
    """The move list could not be replayed from its starting position."""


class InvalidPositionError(MovegradeError, ValueError):
    """A FEN string is malformed or describes an illegal position."""


class CalibrationError(MovegradeError):
    """The calibration corpus yielded nothing to calibrate from."""


class EvaluationError(MovegradeError):
    """The engine finished a search without a usable score."""
