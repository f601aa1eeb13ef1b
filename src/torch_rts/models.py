"""Process and observation models.

The filter is agnostic of how ``F, Q, H, R`` are built. An application provides them through two interfaces:

- :class:`TransitionModel`: linear dynamics without control inputs, ``x_k = F x_{k-1} + w_k,  w_k ~ N(0, Q)``.
- :class:`ObservationModel`: observation of the state, ``z_k = H x_k + v_k,  v_k ~ N(0, R)``.

:class:`LinearTransitionModel` and :class:`LinearObservationModel` wrap constant matrices and cover most use cases.
Time-varying or non-linear models can implement the interfaces directly and be rebuilt at each step
(non-linear models must be linearized by the caller around the current estimate).
"""

from __future__ import annotations

import abc
import enum
from typing import overload

import torch
import torch.linalg
from loguru import logger

from . import debug
from ._format import pretty
from .errors import CovarianceNotPositiveSemiDefinite, DimensionMismatch
from .state import StateAndCovariance


def check_estimate(estimate: StateAndCovariance, state_dim: int, name="estimate") -> None:
    """Check that an estimate has a ``(state_dim, 1)`` state and a ``(state_dim, state_dim)`` covariance."""
    if estimate.state.shape != (state_dim, 1):
        raise DimensionMismatch(
            f"{name} state should have shape ({state_dim}, 1). Found {tuple(estimate.state.shape)}"
        )
    if estimate.covariance.shape != (state_dim, state_dim):
        raise DimensionMismatch(
            f"{name} covariance should have shape ({state_dim}, {state_dim}). "
            f"Found {tuple(estimate.covariance.shape)}"
        )


def check_matrix(matrix: torch.Tensor, shape: tuple[int, int], name: str) -> None:
    """Check that a model matrix has the expected shape."""
    if matrix.shape != shape:
        raise DimensionMismatch(f"{name} should have shape {shape}. Found {tuple(matrix.shape)}")


def cholesky_inverse(matrix: torch.Tensor) -> torch.Tensor:
    """Invert a symmetric positive definite matrix through its Cholesky factorization.

    Args:
        matrix (torch.Tensor): Symmetric positive definite matrix.
            Shape: ``(dim, dim)``

    Returns:
        torch.Tensor: The inverse of ``matrix``.
            Shape: ``(dim, dim)``

    Raises:
        CovarianceNotPositiveSemiDefinite: If the factorization fails.
    """
    chol_decomposition, info = torch.linalg.cholesky_ex(matrix)
    if info.item() != 0:
        raise CovarianceNotPositiveSemiDefinite()
    return torch.cholesky_inverse(chol_decomposition)


class CovarianceUpdateMethod(enum.Enum):
    """Formula used to compute the posterior covariance in the update step.

    It does not affect the posterior mean.
    """

    OPTIMAL_KALMAN = "optimal_kalman"
    """P' = (I - K H) P. Assumes an optimal gain. May lose symmetry because of floating point errors."""

    OPTIMAL_KALMAN_FORCED_SYMMETRIC = "optimal_kalman_forced_symmetric"
    """P' = (I - K H) P, then replaced by (P' + P'ᵀ) / 2 to enforce symmetry."""

    JOSEPH_FORM = "joseph_form"
    """P' = (I - K H) P (I - K H)ᵀ + K R Kᵀ. Keeps the covariance symmetric and positive semi-definite."""


class TransitionModel(abc.ABC):
    """Linear model of the process dynamics, with no control inputs.

    Implementations expose ``F`` (and its transpose) and ``Q``. They must keep fixed shapes for the whole
    filtering run. The model may be shared across all time steps (time-invariant dynamics) or rebuilt per step.
    """

    @property
    @abc.abstractmethod
    def state_dim(self) -> int:
        """Dimension of the state variable."""

    @property
    @abc.abstractmethod
    def F(self) -> torch.Tensor:  # noqa: N802
        """State transition matrix ``F``. Shape: ``(dim_x, dim_x)``."""

    @property
    @abc.abstractmethod
    def FT(self) -> torch.Tensor:  # noqa: N802
        """Transpose of ``F``. Shape: ``(dim_x, dim_x)``."""

    @property
    @abc.abstractmethod
    def Q(self) -> torch.Tensor:  # noqa: N802
        """Process noise covariance ``Q``. Shape: ``(dim_x, dim_x)``."""

    def predict(self, previous_estimate: StateAndCovariance) -> StateAndCovariance:
        """Compute the predicted (prior) estimate on the next time step.

        From x_{k-1} ~ N(mu_{k-1}, P_{k-1}), it applies the process model and returns x_k ~ N(mu_k, P_k) with:

            mu_k = F mu_{k-1}
            P_k = F P_{k-1} Fᵀ + Q

        Args:
            previous_estimate (StateAndCovariance): Posterior estimate at time k-1.

        Returns:
            StateAndCovariance: Prior estimate at time k.

        Raises:
            DimensionMismatch: If the estimate or the model matrices do not match `state_dim`.
        """
        check_estimate(previous_estimate, self.state_dim, "previous_estimate")

        transition = self.F
        transition_t = self.FT
        process_noise = self.Q
        shape = (self.state_dim, self.state_dim)
        check_matrix(transition, shape, "F")
        check_matrix(transition_t, shape, "FT")
        check_matrix(process_noise, shape, "Q")

        state = transition @ previous_estimate.state
        covariance = transition @ previous_estimate.covariance @ transition_t + process_noise
        return StateAndCovariance(state, covariance)


class ObservationModel(abc.ABC):
    """Model of the observations, potentially non-linear.

    Implementations expose ``H`` (and its transpose) and ``R``. ``R`` must be positive definite.

    A non-linear observation model has to be linearized around the prior estimate (``H`` is then the jacobian)
    and must override :meth:`predict_observation` with the true (non-linear) observation function.
    """

    @property
    @abc.abstractmethod
    def H(self) -> torch.Tensor:  # noqa: N802
        """Observation matrix ``H``. Shape: ``(dim_z, dim_x)``."""

    @property
    @abc.abstractmethod
    def HT(self) -> torch.Tensor:  # noqa: N802
        """Transpose of ``H``. Shape: ``(dim_x, dim_z)``."""

    @property
    @abc.abstractmethod
    def R(self) -> torch.Tensor:  # noqa: N802
        """Observation noise covariance ``R``. Shape: ``(dim_z, dim_z)``."""

    @property
    @abc.abstractmethod
    def state_dim(self) -> int:
        """Dimension of the state variable."""

    @property
    @abc.abstractmethod
    def obs_dim(self) -> int:
        """Dimension of the observed variable."""

    def predict_observation(self, state: torch.Tensor) -> torch.Tensor:
        """Predict the observation of a given state.

        The default implementation is linear: ``y = H x``.

        Non-linear models should override it with their true observation function.

        Args:
            state (torch.Tensor): State vector.
                Shape: ``(dim_x, 1)``

        Returns:
            torch.Tensor: Predicted observation.
                Shape: ``(dim_z, 1)``
        """
        return self.H @ state

    def update(
        self,
        prior: StateAndCovariance,
        observation: torch.Tensor,
        covariance_method=CovarianceUpdateMethod.JOSEPH_FORM,
    ) -> StateAndCovariance:
        """Compute the posterior estimate given a new observation.

        Given a prior x_k ~ N(mu_k, P_k) and an observation z_k, it computes:
        1. The innovation covariance: S_k = H P_k Hᵀ + R
        2. The Kalman gain: K = P_k Hᵀ S_k^{-1}, inverting S_k from its Cholesky factorization
        3. The posterior mean: mu'_k = mu_k + K (z_k - y_k) where y_k is the predicted observation
        4. The posterior covariance with the selected `covariance_method`

        The observation is expected to be valid (without NaN). Missing observations are handled by the filter.

        Args:
            prior (StateAndCovariance): Prior estimate, typically the result of `predict`.
            observation (torch.Tensor): Observation z_k (column vector).
                Shape: ``(dim_z, 1)``
            covariance_method (CovarianceUpdateMethod): Formula for the posterior covariance.
                Default: JOSEPH_FORM

        Returns:
            StateAndCovariance: Posterior estimate.

        Raises:
            CovarianceNotPositiveSemiDefinite: If S_k is not positive definite. Either P_k lost its positive
                semi-definiteness or R is not positive definite.
            DimensionMismatch: If the prior, the observation, the model matrices or the predicted observation
                have inconsistent shapes.
            ValueError: If `covariance_method` is not a CovarianceUpdateMethod.
        """
        if not isinstance(covariance_method, CovarianceUpdateMethod):
            raise ValueError(f"Unknown covariance update method: {covariance_method}")

        check_estimate(prior, self.state_dim, "prior")
        if observation.shape != (self.obs_dim, 1):
            raise DimensionMismatch(
                f"observation should have shape ({self.obs_dim}, 1). Found {tuple(observation.shape)}"
            )

        measurement_matrix = self.H
        measurement_matrix_t = self.HT
        measurement_noise = self.R
        check_matrix(measurement_matrix, (self.obs_dim, self.state_dim), "H")
        check_matrix(measurement_matrix_t, (self.state_dim, self.obs_dim), "HT")
        check_matrix(measurement_noise, (self.obs_dim, self.obs_dim), "R")

        predicted = self.predict_observation(prior.state)
        check_matrix(predicted, (self.obs_dim, 1), "predicted observation")

        covariance = prior.covariance

        if debug.symmetry_checks_enabled():
            debug.assert_symmetric(covariance, "prior covariance")

        logger.opt(lazy=True).trace("H = {}", lambda: pretty(measurement_matrix))
        logger.opt(lazy=True).trace("P = {}", lambda: pretty(covariance))
        logger.opt(lazy=True).trace("R = {}", lambda: pretty(measurement_noise))

        # If P is positive semi-definite, H P Hᵀ is too, and S is positive definite as long as R is.
        innovation_covariance = measurement_matrix @ covariance @ measurement_matrix_t + measurement_noise
        logger.opt(lazy=True).trace("innovation covariance S = {}", lambda: pretty(innovation_covariance))

        precision = cholesky_inverse(innovation_covariance)
        kalman_gain = covariance @ measurement_matrix_t @ precision
        logger.opt(lazy=True).trace("K = {}", lambda: pretty(kalman_gain))

        innovation = observation - predicted
        logger.opt(lazy=True).trace("predicted observation = {}", lambda: pretty(predicted))
        logger.opt(lazy=True).trace("innovation = {}", lambda: pretty(innovation))

        state = prior.state + kalman_gain @ innovation

        factor = (
            torch.eye(prior.state_dim, dtype=covariance.dtype, device=covariance.device)
            - kalman_gain @ measurement_matrix
        )
        if covariance_method == CovarianceUpdateMethod.JOSEPH_FORM:
            covariance = factor @ covariance @ factor.mT + kalman_gain @ measurement_noise @ kalman_gain.mT
        elif covariance_method == CovarianceUpdateMethod.OPTIMAL_KALMAN:
            covariance = factor @ covariance
        else:  # OPTIMAL_KALMAN_FORCED_SYMMETRIC
            covariance = factor @ covariance
            covariance = (covariance + covariance.mT) / 2

        logger.opt(lazy=True).trace("posterior state = {}", lambda: pretty(state))
        logger.opt(lazy=True).trace("posterior covariance = {}", lambda: pretty(covariance))

        if debug.symmetry_checks_enabled():
            debug.assert_symmetric(covariance, "posterior covariance")

        return StateAndCovariance(state, covariance)


class LinearTransitionModel(TransitionModel):
    """Time-invariant transition model built from constant matrices.

    Args:
        process_matrix (torch.Tensor): Transition matrix ``F``.
            Shape: ``(dim_x, dim_x)``
        process_noise (torch.Tensor): Process noise covariance ``Q``.
            Shape: ``(dim_x, dim_x)``
    """

    def __init__(self, process_matrix: torch.Tensor, process_noise: torch.Tensor) -> None:
        if process_matrix.ndim != 2 or process_matrix.shape[0] != process_matrix.shape[1]:
            raise DimensionMismatch(f"F should be a square matrix. Found shape {tuple(process_matrix.shape)}")
        if process_noise.shape != process_matrix.shape:
            raise DimensionMismatch(
                f"Q should have the same shape as F {tuple(process_matrix.shape)}. Found {tuple(process_noise.shape)}"
            )

        self._process_matrix = process_matrix
        self._process_matrix_t = process_matrix.mT
        self._process_noise = process_noise

    @property
    def state_dim(self) -> int:
        return self._process_matrix.shape[0]

    @property
    def F(self) -> torch.Tensor:  # noqa: N802
        return self._process_matrix

    @property
    def FT(self) -> torch.Tensor:  # noqa: N802
        return self._process_matrix_t

    @property
    def Q(self) -> torch.Tensor:  # noqa: N802
        return self._process_noise

    @overload
    def to(self, dtype: torch.dtype) -> LinearTransitionModel: ...

    @overload
    def to(self, device: torch.device) -> LinearTransitionModel: ...

    def to(self, fmt):
        """Convert the model to a specific device or dtype."""
        return LinearTransitionModel(self._process_matrix.to(fmt), self._process_noise.to(fmt))


class LinearObservationModel(ObservationModel):
    """Linear observation model built from constant matrices.

    Args:
        measurement_matrix (torch.Tensor): Observation matrix ``H``.
            Shape: ``(dim_z, dim_x)``
        measurement_noise (torch.Tensor): Observation noise covariance ``R``. Must be positive definite.
            Shape: ``(dim_z, dim_z)``
    """

    def __init__(self, measurement_matrix: torch.Tensor, measurement_noise: torch.Tensor) -> None:
        if measurement_matrix.ndim != 2:
            raise DimensionMismatch(f"H should be a matrix. Found shape {tuple(measurement_matrix.shape)}")
        dim_z = measurement_matrix.shape[0]
        if measurement_noise.shape != (dim_z, dim_z):
            raise DimensionMismatch(
                f"R should have shape ({dim_z}, {dim_z}) to match H. Found {tuple(measurement_noise.shape)}"
            )

        self._measurement_matrix = measurement_matrix
        self._measurement_matrix_t = measurement_matrix.mT
        self._measurement_noise = measurement_noise

    @property
    def H(self) -> torch.Tensor:  # noqa: N802
        return self._measurement_matrix

    @property
    def HT(self) -> torch.Tensor:  # noqa: N802
        return self._measurement_matrix_t

    @property
    def R(self) -> torch.Tensor:  # noqa: N802
        return self._measurement_noise

    @property
    def state_dim(self) -> int:
        return self._measurement_matrix.shape[1]

    @property
    def obs_dim(self) -> int:
        return self._measurement_matrix.shape[0]

    @overload
    def to(self, dtype: torch.dtype) -> LinearObservationModel: ...

    @overload
    def to(self, device: torch.device) -> LinearObservationModel: ...

    def to(self, fmt):
        """Convert the model to a specific device or dtype."""
        return LinearObservationModel(self._measurement_matrix.to(fmt), self._measurement_noise.to(fmt))
