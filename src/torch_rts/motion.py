"""Ready-made constant-derivative motion models.

The state holds, for each spatial dimension, a value and its derivatives up to a given order:

- ``order = 0``: constant position,
- ``order = 1``: constant velocity,
- ``order = 2``: constant acceleration, ...

Only the values are observed. These helpers return a (:class:`LinearTransitionModel`,
:class:`LinearObservationModel`) pair ready to be given to :class:`KalmanFilter`.
"""

from __future__ import annotations

import math

import torch

from .models import LinearObservationModel, LinearTransitionModel


def interleave(x: torch.Tensor, size: int) -> torch.Tensor:
    """Interleave rows of a tensor by blocks of ``size``.

    Row ``i * size + j`` is moved to row ``j * k + i`` (with ``B = k * size`` rows). This converts a state ordered by
    derivative (``x, y, x', y'``) into a state ordered by dimension (``x, x', y, y'``) when ``size`` is the number of
    derivatives, and back when ``size`` is the number of dimensions.

    Example:
        >>> interleave(torch.arange(6), 3)
        tensor([0, 3, 1, 4, 2, 5])

    Args:
        x (torch.Tensor): Tensor to interleave.
            Shape: ``(B, ...)``
        size (int): Block size. Must divide ``B``.

    Returns:
        torch.Tensor: Interleaved tensor.
            Shape: ``(B, ...)``
    """
    shape = list(x.shape)
    return x.reshape([-1, size, *shape[1:]]).transpose(0, 1).reshape([-1, *shape[1:]])


def _taylor_coefficients(length: int, dt: float) -> torch.Tensor:
    # 1, dt, dt^2 / 2, ..., dt^(length-1) / (length-1)!
    return torch.tensor([dt**k / math.factorial(k) for k in range(length)], dtype=torch.float64)


def taylor_process_matrix(order: int, dt=1.0) -> torch.Tensor:
    r"""Build the transition matrix ``F`` of a single dimension.

    Assuming derivatives above ``order`` are null, a Taylor expansion gives:

        x^{(i)}(t + dt) = \sum_{k=0}^{order - i} \frac{dt^k}{k!} x^{(i+k)}(t)

    For instance, for ``order = 1`` and ``dt = 1``: ``[[1, 1], [0, 1]]``.

    Args:
        order (int): Highest derivative in the state.
        dt (float): Time step.
            Default: 1.0

    Returns:
        torch.Tensor: Transition matrix.
            Shape: ``(order + 1, order + 1)``
    """
    coefficients = _taylor_coefficients(order + 1, dt)
    process_matrix = torch.zeros(order + 1, order + 1, dtype=torch.float64)
    for k, coef in enumerate(coefficients):
        process_matrix += torch.diag(coef.expand(order + 1 - k), k)
    return process_matrix


def white_noise_process_noise(process_std: float, order: int, dt=1.0, expected_model=False) -> torch.Tensor:
    r"""Build the process noise covariance ``Q`` of a single dimension.

    Two models are supported:
    - constant ``order``-th derivative: it randomly changes by w_k ~ N(0, process_std**2) at each step,
    - expected model: the ``(order + 1)``-th derivative is w_k ~ N(0, process_std**2) during each step.

    In both cases, the noise is propagated to the lower derivatives through the Taylor expansion, leading to a
    rank-one covariance ``process_std**2 * g gᵀ``.

    Args:
        process_std (float): Process noise standard deviation.
        order (int): Highest derivative in the state.
        dt (float): Time step.
            Default: 1.0
        expected_model (bool): Use the expected model.
            Default: False

    Returns:
        torch.Tensor: Process noise covariance.
            Shape: ``(order + 1, order + 1)``
    """
    coefficients = _taylor_coefficients(order + 1 + expected_model, dt)
    coefficients = coefficients[int(expected_model) :].flip(0)
    return process_std**2 * coefficients[:, None] @ coefficients[None]


def constant_derivative_models(
    measurement_std: float | torch.Tensor,
    process_std: float | torch.Tensor,
    *,
    dim=2,
    order=1,
    dt=1.0,
    expected_model=False,
    order_by_dim=False,
    dtype: torch.dtype | None = None,
) -> tuple[LinearTransitionModel, LinearObservationModel]:
    """Create the models of a constant-derivative motion.

    The state dimension is ``(order + 1) * dim``. Dimensions are independent.

    Example:
    ```python
        # 1D constant position: F = [1], Q = [0.01], H = [1], R = [0.1]
        transition, observation = constant_derivative_models(0.1**0.5, 0.1, dim=1, order=0)
        kf = KalmanFilter(transition, observation)
    ```

    Args:
        measurement_std (float | torch.Tensor): Observation noise standard deviation.
            Shape: broadcastable to ``(dim,)``
        process_std (float | torch.Tensor): Process noise standard deviation (see `white_noise_process_noise`).
            Shape: broadcastable to ``(dim,)``
        dim (int): Number of spatial dimensions.
            Default: 2
        order (int): Highest derivative in the state.
            Default: 1 (constant velocity)
        dt (float): Time step.
            Default: 1.0
        expected_model (bool): Use the expected model for the process noise.
            Default: False
        order_by_dim (bool): State ordering. If True: ``x, x', y, y'``, otherwise ``x, y, x', y'``.
            Default: False
        dtype (torch.dtype | None): Dtype of the matrices.
            Default: None (torch default dtype)

    Returns:
        LinearTransitionModel: Transition model (``F``, ``Q``).
        LinearObservationModel: Observation model (``H``, ``R``).
    """
    measurement_std = torch.broadcast_to(torch.as_tensor(measurement_std, dtype=torch.float64), (dim,))
    process_std = torch.broadcast_to(torch.as_tensor(process_std, dtype=torch.float64), (dim,))

    state_dim = (order + 1) * dim

    # Values are observed in the first rows (derivative ordering)
    measurement_matrix = torch.eye(dim, state_dim, dtype=torch.float64)
    measurement_noise = torch.diag(measurement_std**2)

    process_matrix = torch.block_diag(*(taylor_process_matrix(order, dt) for _ in range(dim)))
    process_noise = torch.block_diag(
        *(white_noise_process_noise(process_std[k].item(), order, dt, expected_model) for k in range(dim))
    )

    if order_by_dim:
        measurement_matrix = interleave(measurement_matrix.T, dim).T
    else:
        process_matrix = interleave(interleave(process_matrix, order + 1).T, order + 1).T
        process_noise = interleave(interleave(process_noise, order + 1).T, order + 1).T

    # Matrices are built in float64 and converted at the end
    if dtype is None:
        dtype = torch.get_default_dtype()

    return (
        LinearTransitionModel(process_matrix.to(dtype).contiguous(), process_noise.to(dtype).contiguous()),
        LinearObservationModel(measurement_matrix.to(dtype).contiguous(), measurement_noise.to(dtype).contiguous()),
    )
