"""Torch-RTS: Kalman filtering and Rauch-Tung-Striebel smoothing in PyTorch.

torch-rts provides a compact implementation of the discrete-time linear Kalman filter and of the
Rauch-Tung-Striebel (RTS) backward smoother, for state estimation from noisy and possibly missing observations
(tracking, sensor fusion, ...). It focuses on numerical robustness for a single time series at a time:
covariances are only ever inverted through Cholesky factorizations, and the covariance update formula can be
selected (Joseph form by default).

Key features
------------
- **Filtering and RTS smoothing**: single step, whole-series forward pass, and backward pass.
- **Missing data**: observations containing a NaN are skipped (the prediction is kept).
- **Pluggable models**: any object implementing :class:`~torch_rts.TransitionModel` /
  :class:`~torch_rts.ObservationModel` (e.g. a non-linear sensor linearized at each step).
- **Explicit failures**: a non positive definite covariance raises
  :class:`~torch_rts.CovarianceNotPositiveSemiDefinite` and never yields silently wrong values.

Getting started
---------------
The core API consists of:
- :class:`~torch_rts.StateAndCovariance` to represent a Gaussian belief (state vector + covariance).
- :class:`~torch_rts.LinearTransitionModel` and :class:`~torch_rts.LinearObservationModel` to hold
  ``F, Q`` and ``H, R``. The :mod:`torch_rts.motion` module builds them for constant velocity/acceleration models.
- :class:`~torch_rts.KalmanFilter` with :meth:`~torch_rts.KalmanFilter.step`,
  :meth:`~torch_rts.KalmanFilter.filter`, :meth:`~torch_rts.KalmanFilter.smooth` and
  :meth:`~torch_rts.KalmanFilter.smooth_from_filtered`.

Notes on shapes
---------------
torch-rts uses column vectors. State and observation vectors must have shape ``(dim, 1)``.

Logging
-------
torch-rts logs with loguru but is silent by default. Use ``logger.enable("torch_rts")`` to see debug messages
and, at ``TRACE`` level, every intermediate matrix of the update and smoothing steps.
"""

from loguru import logger

from . import debug
from .errors import CovarianceNotPositiveSemiDefinite, DimensionMismatch, KalmanError
from .kalman_filter import KalmanFilter
from .models import (
    CovarianceUpdateMethod,
    LinearObservationModel,
    LinearTransitionModel,
    ObservationModel,
    TransitionModel,
)
from .state import StateAndCovariance, stack

logger.disable(__name__)

__all__ = [
    "CovarianceNotPositiveSemiDefinite",
    "CovarianceUpdateMethod",
    "DimensionMismatch",
    "KalmanError",
    "KalmanFilter",
    "LinearObservationModel",
    "LinearTransitionModel",
    "ObservationModel",
    "StateAndCovariance",
    "TransitionModel",
    "debug",
    "stack",
]
__version__ = "0.1.0"
