"""Errors raised by torch-rts.

Only one numerical failure exists: a covariance that should be positive definite could not be factorized.
Shape errors are caller programming errors and are reported as early as possible.
Missing observations are *not* errors (see :meth:`torch_rts.KalmanFilter.step`).
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .state import StateAndCovariance


class KalmanError(Exception):
    """Base class of all torch-rts errors."""


class CovarianceNotPositiveSemiDefinite(KalmanError):
    """A Cholesky factorization failed.

    Raised by the measurement update when the innovation covariance ``S = H P Hᵀ + R`` is not
    (numerically) positive definite, and by the RTS smoother when a re-predicted covariance is not.
    Either the state covariance drifted away from positive semi-definiteness or ``R`` is not
    positive definite. This is never a transient condition: fix the model or the initial covariance.

    Attributes:
        index (int | None): Time index of the failing step in a whole-series pass.
            ``None`` for a single update or step.
        completed (list[StateAndCovariance]): Estimates computed before the failure.
            For a forward filter pass, these are the posteriors of steps ``0 .. index - 1``.
            Always empty for the smoother, whose pass is all-or-nothing.
    """

    def __init__(self, message="Covariance is not positive definite (Cholesky factorization failed)") -> None:
        super().__init__(message)
        self.index: int | None = None
        self.completed: list[StateAndCovariance] = []


class DimensionMismatch(KalmanError, ValueError):
    """A vector or matrix does not have the shape required by the models."""
