"""Example tracking a 2D constant velocity target from range-only observations

The observation (distance to a sensor) is not linear in the state. It is linearized around the prior estimate
at each time step, and a new observation model (and filter) is built for each step.
"""

import argparse

import torch
from loguru import logger

import torch_rts
from torch_rts.motion import constant_derivative_models


class RangeObservationModel(torch_rts.ObservationModel):
    """Distance between the (x, y) position and a fixed sensor, linearized around a given state"""

    def __init__(self, sensor: torch.Tensor, linearization_state: torch.Tensor, noise_std: float):
        self.sensor = sensor
        delta = linearization_state[:2] - sensor
        distance = delta.norm()
        self._jacobian = torch.zeros(1, linearization_state.shape[0], dtype=sensor.dtype)

        # On the sensor, the direction (and thus the jacobian) is undefined
        self.defined = distance.item() > 1e-6
        if self.defined:
            self._jacobian[0, :2] = (delta / distance)[:, 0]
        self._noise = torch.tensor([[noise_std**2]], dtype=sensor.dtype)

    @property
    def H(self) -> torch.Tensor:  # noqa: N802
        return self._jacobian

    @property
    def HT(self) -> torch.Tensor:  # noqa: N802
        return self._jacobian.mT

    @property
    def R(self) -> torch.Tensor:  # noqa: N802
        return self._noise

    @property
    def state_dim(self) -> int:
        return self._jacobian.shape[1]

    @property
    def obs_dim(self) -> int:
        return 1

    def predict_observation(self, state: torch.Tensor) -> torch.Tensor:
        return (state[:2] - self.sensor).norm().reshape(1, 1)


def main(n: int, noise: float, verbose: bool):
    if verbose:
        logger.enable("torch_rts")

    sensor = torch.tensor([[0.0], [-50.0]], dtype=torch.float64)
    velocity = torch.tensor([[1.0], [0.5]], dtype=torch.float64)
    positions = torch.tensor([[-20.0], [10.0]], dtype=torch.float64) + velocity * torch.arange(n, dtype=torch.float64)
    ranges = (positions - sensor).norm(dim=0) + noise * torch.randn(n, dtype=torch.float64)

    # Position (x, y) and velocity (vx, vy). Only the transition model is used from the helper
    transition, _ = constant_derivative_models(noise, 0.05, dim=2, order=1, dtype=torch.float64)

    estimate = torch_rts.StateAndCovariance(
        torch.tensor([[-15.0], [15.0], [0.0], [0.0]], dtype=torch.float64),
        torch.diag(torch.tensor([25.0, 25.0, 4.0, 4.0], dtype=torch.float64)),
    )

    for t in range(n):
        prior = transition.predict(estimate)
        observation_model = RangeObservationModel(sensor, prior.state, noise)
        if observation_model.defined:
            estimate = observation_model.update(prior, ranges[t].reshape(1, 1))
        else:  # Cannot linearize: handled as a missing observation
            estimate = prior

        if t % 10 == 0:
            error = (estimate.state[:2] - positions[:, t : t + 1]).norm()
            print(f"t={t:3d}  range={ranges[t]:7.2f}  position error={error:6.2f}")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Range-only tracking with a per-step linearized observation model")
    parser.add_argument("--n", default=100, type=int, help="Number of points")
    parser.add_argument("--noise", default=0.5, type=float, help="Range noise")
    parser.add_argument("--verbose", action="store_true", help="Trace filter internals")

    args = parser.parse_args()

    main(args.n, args.noise, args.verbose)
