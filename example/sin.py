"""Example filtering/smoothing sinusoidal data"""

import argparse
import math
from typing import Tuple

import matplotlib.pyplot as plt
import torch

import torch_rts
from torch_rts.motion import constant_derivative_models


def generate_data(n: int, w0: float, noise: float, amplitude: float) -> Tuple[torch.Tensor, torch.Tensor]:
    """Generate sinusoidal data:

    x(t) = A sin(w0t)
    z(t) = x(t) + noise * N(0, 1)

    Args:
        n (int): Size of the sequence to generate
        w0 (float): Angular frequency
        noise (float): Gaussian noise standard deviation
        amplitude (float): Amplitude A of the sinus

    Returns:
        torch.Tensor: x(t) state of the system
            Shape: (T, 1, 1)
        torch.Tensor: z(t) observation for each state
            Shape: (T, 1, 1)
    """
    x = amplitude * torch.sin(w0 * torch.arange(n, dtype=torch.float64)[..., None, None])
    return x, x + noise * torch.randn_like(x)


def main(order: int, n: int, measurement_std: float, amplitude: float, nans: bool):
    # Let's do 2 full periods of sinus
    w0 = 4 * math.pi / n

    # The process errors with a constant pos/vel/acc model are bounded using the taylor expansion
    # | sin(w0 (t+1)) - pred_kf_order_k(sin(w0t)) | < w0^(k+1) / (k+1)!
    # In practice, w0^k / k! works well (and sqrt(w0) for order 0)
    process_std = max(amplitude * w0 ** (order + 0.5 * (order == 0)) / math.factorial(order) / 5, 1e-7)

    print("Parameters")
    print(f"Kalman order: {order}")
    print(f"Measurement noise: {measurement_std}")
    print(f"Process noise: {process_std}")
    print("Data: z(t) = measurement_noise * N(0, 1) + sin(w0 t)")
    print(f"Using w0={w0} for {n} points")

    transition, observation = constant_derivative_models(
        measurement_std, process_std, dim=1, order=order, dtype=torch.float64
    )
    kf = torch_rts.KalmanFilter(transition, observation)
    print(kf)

    x, z = generate_data(n, w0, measurement_std, amplitude)
    if nans:
        z[n // 2 : n // 2 + n // 20] = torch.nan  # Create missing observations in the middle

    # Unknown initial state: estimation at 0, with a std of 3 times the expected magnitude of each derivative
    initial_estimate = torch_rts.StateAndCovariance(
        torch.zeros(kf.state_dim, 1, dtype=torch.float64),
        torch.diag(torch.tensor([amplitude * w0**k * 3 for k in range(order + 1)], dtype=torch.float64) ** 2),
    )

    filtered = kf.filter(initial_estimate, z)
    smoothed = kf.smooth_from_filtered(filtered)

    states, covariances = torch_rts.stack(filtered)
    smoothed_states, smoothed_covariances = torch_rts.stack(smoothed)

    print(f"Filtering MSE: {(states[:, :1] - x).pow(2).mean()}")
    print(f"Smoothing MSE: {(smoothed_states[:, :1] - x).pow(2).mean()}")

    plt.rcParams["font.size"] = 20

    for k, name in enumerate(["x", "v"][: order + 1]):
        plt.figure(figsize=(24, 16))
        if k == 0:
            plt.plot(x[..., 0, 0], color="k", label="True trajectory - x = A sin(w0 t)")
            plt.plot(z[..., 0, 0], "o", color="r", markersize=2.0, label="Observations - z = x + noise * N(0, 1)")
        else:
            plt.plot(amplitude * w0 * torch.cos(w0 * torch.arange(n)), color="k", label="True velocity")

        for mean, covariance, color, label in (
            (states, covariances, "y", "Filtering"),
            (smoothed_states, smoothed_covariances, "g", "Smoothing"),
        ):
            plt.plot(mean[:, k, 0], color=color, label=label)
            mini = mean[:, k, 0] - 3 * covariance[:, k, k].sqrt()
            maxi = mean[:, k, 0] + 3 * covariance[:, k, k].sqrt()
            plt.fill_between(torch.arange(n), mini, maxi, color=color, alpha=0.5)

        scale = amplitude * w0**k
        plt.ylim(-scale * 1.4, scale * 1.4)
        plt.xlabel("t")
        plt.ylabel(name)
        plt.legend(loc="upper right")

    plt.show()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Kalman filter example, filtering a noisy sinus data")
    parser.add_argument(
        "--order",
        default=2,
        type=int,
        help="Order of the kalman filter (estimate derivative up to order to predict next pos)",
    )
    parser.add_argument("--noise", default=2.0, type=float, help="Observation noise")
    parser.add_argument("--amplitude", default=20, type=int, help="Amplitude of the signal")
    parser.add_argument("--n", default=500, type=int, help="Number of points")
    parser.add_argument("--nans", action="store_true", help="Some state will not be measured")

    args = parser.parse_args()

    main(args.order, args.n, args.noise, args.amplitude, args.nans)
