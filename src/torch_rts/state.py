from __future__ import annotations

import dataclasses
from typing import Iterator, Sequence, overload

import torch


@dataclasses.dataclass
class StateAndCovariance:
    """Gaussian belief over the state at a single time step.

    This dataclass stores a multivariate Gaussian distribution:

        x ~ N(state, covariance)

    Conventions:
    - The state is a **column vector** with shape ``(dim, 1)``.
    - The covariance is assumed symmetric and positive semi-definite. This is the responsibility of the caller
      and it is not checked (positive semi-definite matrices cannot be validated with a Cholesky factorization
      alone, and an eigen decomposition at each step is not worth it).

    Each instance is a self-contained snapshot: filtering and smoothing always return new instances and never
    modify their inputs. Attributes can still be reassigned or modified in place by the caller.

    Attributes:
        state: Mean of the distribution.
            Shape: ``(dim, 1)``
        covariance: Covariance matrix of the distribution.
            Shape: ``(dim, dim)``
    """

    state: torch.Tensor
    covariance: torch.Tensor

    @property
    def state_dim(self) -> int:
        """Dimension of the state variable."""
        return self.state.shape[0]

    def clone(self) -> StateAndCovariance:
        """Return a deep copy of the estimate.

        Returns:
            StateAndCovariance: The cloned estimate
        """
        return StateAndCovariance(self.state.clone(), self.covariance.clone())

    def inner(self) -> tuple[torch.Tensor, torch.Tensor]:
        """Return the state vector and the covariance matrix."""
        return self.state, self.covariance

    def __iter__(self) -> Iterator[torch.Tensor]:
        return iter(self.inner())

    @overload
    def to(self, dtype: torch.dtype) -> StateAndCovariance: ...

    @overload
    def to(self, device: torch.device) -> StateAndCovariance: ...

    def to(self, fmt):
        """Convert an estimate to a specific device or dtype.

        Args:
            fmt (torch.dtype | torch.device): Memory format to send the estimate to.

        Returns:
            StateAndCovariance: The estimate with the right format
        """
        return StateAndCovariance(self.state.to(fmt), self.covariance.to(fmt))


def stack(estimates: Sequence[StateAndCovariance]) -> tuple[torch.Tensor, torch.Tensor]:
    """Stack a sequence of estimates along a new leading time dimension.

    Useful to plot or analyse the outputs of :meth:`KalmanFilter.filter` and :meth:`KalmanFilter.smooth`.

    Args:
        estimates (Sequence[StateAndCovariance]): Estimates for T time steps.

    Returns:
        torch.Tensor: Stacked states
            Shape: ``(T, dim, 1)``
        torch.Tensor: Stacked covariances
            Shape: ``(T, dim, dim)``
    """
    if not estimates:
        raise ValueError("Cannot stack an empty sequence of estimates")

    return (
        torch.stack([estimate.state for estimate in estimates]),
        torch.stack([estimate.covariance for estimate in estimates]),
    )
