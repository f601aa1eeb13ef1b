from __future__ import annotations

from typing import Iterable, MutableSequence, Sequence

import torch
from loguru import logger

from ._format import pretty, printoptions
from .errors import CovarianceNotPositiveSemiDefinite, DimensionMismatch
from .models import (
    CovarianceUpdateMethod,
    ObservationModel,
    TransitionModel,
    check_estimate,
    cholesky_inverse,
)
from .state import StateAndCovariance


class KalmanFilter:
    """Kalman filter and Rauch-Tung-Striebel smoother for a linear model without control inputs.

    This class estimates the latent state of a linear dynamical system under Gaussian noise:

        x_k = F x_{k-1} + w_k,   w_k ~ N(0, Q)
        z_k = H x_k     + v_k,   v_k ~ N(0, R)

    where:
    - ``x_k`` is the hidden state (dimension ``state_dim``),
    - ``z_k`` is the observation (dimension ``obs_dim``),
    - ``F`` and ``Q`` are given by the :class:`TransitionModel`,
    - ``H`` and ``R`` are given by the :class:`ObservationModel`.

    The filter is cheap to create: it only stores references to both models, which are never copied or
    modified. The estimates are passed explicitly to each method, so that a single filter can process several
    independent time series, and a new filter can be built at each step for time-varying models.

    Missing observations: if any component of an observation is NaN, the whole observation is ignored and the
    prior (predicted) estimate is kept for this time step.

    To be mathematically correct, the time interval between two observations must match the one of the
    transition model.

    Attributes:
        transition_model (TransitionModel): Process model (``F``, ``Q``).
        observation_model (ObservationModel): Observation model (``H``, ``R``).
    """

    _REPR_SPLIT_LENGTH = 110

    def __init__(self, transition_model: TransitionModel, observation_model: ObservationModel) -> None:
        if transition_model.state_dim != observation_model.state_dim:
            raise DimensionMismatch(
                f"Transition model state dimension ({transition_model.state_dim}) does not match "
                f"the observation model one ({observation_model.state_dim})"
            )
        self.transition_model = transition_model
        self.observation_model = observation_model

    @property
    def state_dim(self) -> int:
        """Dimension of the state variable."""
        return self.transition_model.state_dim

    @property
    def obs_dim(self) -> int:
        """Dimension of the observed variable."""
        return self.observation_model.obs_dim

    def step(self, previous_estimate: StateAndCovariance, observation: torch.Tensor) -> StateAndCovariance:
        """Perform the prediction and the update steps, using the Joseph form for the covariance update.

        See `step_with_options`.

        Args:
            previous_estimate (StateAndCovariance): Posterior estimate at time k-1.
            observation (torch.Tensor): Observation at time k (may contain NaN).
                Shape: ``(obs_dim, 1)``

        Returns:
            StateAndCovariance: Posterior estimate at time k.
        """
        return self.step_with_options(previous_estimate, observation, CovarianceUpdateMethod.JOSEPH_FORM)

    def step_with_options(
        self,
        previous_estimate: StateAndCovariance,
        observation: torch.Tensor,
        covariance_method: CovarianceUpdateMethod,
    ) -> StateAndCovariance:
        """Perform the prediction and the update steps.

        It calls `predict` from the transition model, then, if the observation is valid, `update` from the
        observation model with the given covariance update method.

        If any component of the observation is NaN, the observation is considered missing: the update is skipped
        and the prior estimate is returned as the posterior one.

        Args:
            previous_estimate (StateAndCovariance): Posterior estimate at time k-1.
            observation (torch.Tensor): Observation at time k (may contain NaN).
                Shape: ``(obs_dim, 1)``
            covariance_method (CovarianceUpdateMethod): Formula for the posterior covariance.

        Returns:
            StateAndCovariance: Posterior estimate at time k.

        Raises:
            CovarianceNotPositiveSemiDefinite: If the innovation covariance cannot be factorized.
        """
        if observation.shape != (self.obs_dim, 1):
            raise DimensionMismatch(
                f"observation should have shape ({self.obs_dim}, 1). Found {tuple(observation.shape)}"
            )

        prior = self.transition_model.predict(previous_estimate)
        if torch.isnan(observation).any():
            logger.debug("Missing observation (NaN component): update skipped")
            return prior

        return self.observation_model.update(prior, observation, covariance_method)

    def filter_inplace(
        self,
        initial_estimate: StateAndCovariance,
        observations: Iterable[torch.Tensor],
        state_estimates: MutableSequence[StateAndCovariance],
        covariance_method=CovarianceUpdateMethod.JOSEPH_FORM,
    ) -> None:
        """Run the filter over a whole time series, writing the estimates in a pre-allocated buffer.

        Each observation is processed with `step_with_options`, using the previous posterior as the next input.
        The initial estimate is the belief before the first time step: it is predicted before the first update.

        On failure, `state_estimates[:index]` holds the posteriors computed before the failing step `index`,
        and the following slots are left untouched. The error carries `index` and the completed estimates.

        Args:
            initial_estimate (StateAndCovariance): Belief on the state before the first observation.
            observations (Iterable[torch.Tensor]): Observations over time (may contain NaN).
                A ``(T, obs_dim, 1)`` tensor is accepted.
                Shape: ``(obs_dim, 1)`` for each observation
            state_estimates (MutableSequence[StateAndCovariance]): Output buffer. Its length must be at least T.
            covariance_method (CovarianceUpdateMethod): Formula for the posterior covariance.
                Default: JOSEPH_FORM

        Raises:
            CovarianceNotPositiveSemiDefinite: If a step fails. The pass is aborted.
            ValueError: If the buffer is too short.
        """
        if not isinstance(observations, (Sequence, torch.Tensor)):
            observations = list(observations)
        if len(state_estimates) < len(observations):
            raise ValueError(
                f"state_estimates should hold at least {len(observations)} estimates. Found {len(state_estimates)}"
            )

        check_estimate(initial_estimate, self.state_dim, "initial_estimate")
        logger.debug("Filtering {} observations", len(observations))

        previous_estimate = initial_estimate
        for t, observation in enumerate(observations):
            try:
                estimate = self.step_with_options(previous_estimate, observation, covariance_method)
            except CovarianceNotPositiveSemiDefinite as error:
                logger.debug("Filtering aborted at step {}: {}", t, error)
                error.index = t
                error.completed = list(state_estimates[:t])
                raise

            state_estimates[t] = estimate
            previous_estimate = estimate

    def filter(
        self,
        initial_estimate: StateAndCovariance,
        observations: Iterable[torch.Tensor],
        covariance_method=CovarianceUpdateMethod.JOSEPH_FORM,
    ) -> list[StateAndCovariance]:
        """Run the filter over a whole time series.

        Allocating version of `filter_inplace`.

        Args:
            initial_estimate (StateAndCovariance): Belief on the state before the first observation.
            observations (Iterable[torch.Tensor]): Observations over time (may contain NaN).
                Shape: ``(obs_dim, 1)`` for each observation
            covariance_method (CovarianceUpdateMethod): Formula for the posterior covariance.
                Default: JOSEPH_FORM

        Returns:
            list[StateAndCovariance]: Posterior estimate at each time step (same length as the observations).

        Raises:
            CovarianceNotPositiveSemiDefinite: If a step fails. The estimates computed before the failure
                are available in its `completed` attribute.
        """
        if not isinstance(observations, (Sequence, torch.Tensor)):
            observations = list(observations)

        # Placeholders are all overwritten on success
        state_estimates = [initial_estimate] * len(observations)
        self.filter_inplace(initial_estimate, observations, state_estimates, covariance_method)
        return state_estimates

    def smooth(
        self,
        initial_estimate: StateAndCovariance,
        observations: Iterable[torch.Tensor],
        covariance_method=CovarianceUpdateMethod.JOSEPH_FORM,
    ) -> list[StateAndCovariance]:
        """Run the filter then the RTS smoother over a whole time series.

        Args:
            initial_estimate (StateAndCovariance): Belief on the state before the first observation.
            observations (Iterable[torch.Tensor]): Observations over time (may contain NaN).
                Shape: ``(obs_dim, 1)`` for each observation
            covariance_method (CovarianceUpdateMethod): Formula for the posterior covariance in the forward pass.
                Default: JOSEPH_FORM

        Returns:
            list[StateAndCovariance]: Smoothed estimate at each time step.

        Raises:
            CovarianceNotPositiveSemiDefinite: If the forward or the backward pass fails.
        """
        forward_results = self.filter(initial_estimate, observations, covariance_method)
        return self.smooth_from_filtered(forward_results)

    def smooth_from_filtered(self, forward_results: Sequence[StateAndCovariance]) -> list[StateAndCovariance]:
        """Apply Rauch-Tung-Striebel (RTS) smoothing to filtered estimates.

        Input is assumed to be the sequence of **filtered (posterior) estimates** over time, typically obtained
        with `filter`. The sequence is processed backward: the last estimate is already smoothed (there is no
        future information), then each filtered estimate is corrected with the smoothed estimate that follows.

        Args:
            forward_results (Sequence[StateAndCovariance]): Filtered estimates over time. It is not modified.

        Returns:
            list[StateAndCovariance]: Smoothed estimates, in forward time order.

        Raises:
            CovarianceNotPositiveSemiDefinite: If a predicted covariance cannot be factorized.
                The whole pass is aborted.
            ValueError: If `forward_results` is empty.
        """
        if not forward_results:
            raise ValueError("Cannot smooth an empty sequence of estimates")

        logger.debug("Smoothing {} estimates", len(forward_results))

        smooth_future = forward_results[-1]
        smoothed = [smooth_future]
        for t in range(len(forward_results) - 2, -1, -1):
            try:
                smooth_future = self._smooth_step(smooth_future, forward_results[t])
            except CovarianceNotPositiveSemiDefinite as error:
                logger.debug("Smoothing aborted at step {}: {}", t, error)
                error.index = t
                raise

            smoothed.append(smooth_future)

        smoothed.reverse()
        return smoothed

    def _smooth_step(self, smooth_future: StateAndCovariance, filtered: StateAndCovariance) -> StateAndCovariance:
        prior = self.transition_model.predict(filtered)

        inv_prior_covariance = cholesky_inverse(prior.covariance)
        logger.opt(lazy=True).trace("inverse predicted covariance = {}", lambda: pretty(inv_prior_covariance))

        # Smoother gain
        gain = filtered.covariance @ self.transition_model.FT @ inv_prior_covariance
        logger.opt(lazy=True).trace("smoother gain J = {}", lambda: pretty(gain))

        state = filtered.state + gain @ (smooth_future.state - prior.state)
        covariance = filtered.covariance + gain @ (smooth_future.covariance - prior.covariance) @ gain.mT

        return StateAndCovariance(state, covariance)

    def __repr__(self) -> str:
        """Convert the Kalman filter models into a readable string."""
        header = f"Kalman Filter (State dimension: {self.state_dim}, Observation dimension: {self.obs_dim})"
        process = self._repr_pair(
            "Process: F = ", self.transition_model.F, "  &  Q = ", self.transition_model.Q, "         Q = ", 80
        )
        observation = self._repr_pair(
            "Observation: H = ",
            self.observation_model.H,
            "  &  R = ",
            self.observation_model.R,
            "             R = ",
            100,
        )
        n_char = max(len(line) for line in (process + "\n" + observation).split("\n"))
        return ("\n" + "-" * n_char + "\n").join([header, process, observation])

    def _repr_pair(
        self, header: str, matrix: torch.Tensor, sep: str, noise: torch.Tensor, noise_header: str, linewidth: int
    ) -> str:
        """Print a model matrix and its noise side by side, or one above the other if too wide."""
        with printoptions(profile="short", sci_mode=False, linewidth=linewidth):
            matrix_repr = str(matrix).split("\n")
            noise_repr = str(noise).split("\n")

        max_char_matrix = max(len(line) for line in matrix_repr)
        max_char_noise = max(len(line) for line in noise_repr)
        matrix_header = [header] + [" " * len(header)] * (len(matrix_repr) - 1)

        if max_char_matrix + max_char_noise <= self._REPR_SPLIT_LENGTH:  # Single line
            matrix_repr = [line + " " * (max_char_matrix - len(line)) for line in matrix_repr]
            separator = [sep] + [" " * len(sep)] * (len(matrix_repr) - 1)
            return "\n".join(["".join(lines) for lines in zip(matrix_header, matrix_repr, separator, noise_repr)])

        # Two lines
        matrix_header += ["", noise_header] + [" " * len(header)] * (len(noise_repr) - 1)
        return "\n".join(["".join(lines) for lines in zip(matrix_header, [*matrix_repr, "", *noise_repr])])
