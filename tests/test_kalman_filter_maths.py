"""Test mathematical concepts about KF."""

import torch

from torch_rts import CovarianceUpdateMethod, KalmanFilter, LinearObservationModel, LinearTransitionModel

from _helpers import DTYPE, random_estimate, random_kf


def orthogonal_matrix(dim: int) -> torch.Tensor:
    return torch.linalg.qr(torch.randn(dim, dim, dtype=DTYPE))[0]


def identity_kf(dim: int, process_matrix: torch.Tensor) -> KalmanFilter:
    # Fully observed and well conditioned model
    return KalmanFilter(
        LinearTransitionModel(process_matrix, 0.5 * torch.eye(dim, dtype=DTYPE)),
        LinearObservationModel(torch.eye(dim, dtype=DTYPE), torch.eye(dim, dtype=DTYPE)),
    )


def test_predict_increase_uncertainty():
    # With an orthogonal F, det(F P Fᵀ) = det(P) and Q only adds uncertainty
    kf = identity_kf(3, orthogonal_matrix(3))
    s = random_estimate(3)

    predicted = kf.transition_model.predict(s)

    assert torch.linalg.det(predicted.covariance) > torch.linalg.det(s.covariance)

    predicted_2 = kf.transition_model.predict(predicted)

    assert torch.linalg.det(predicted_2.covariance) > torch.linalg.det(predicted.covariance)


def test_update_reduce_uncertainty():
    kf = random_kf(2, 1)
    s = random_estimate(2)
    measure = torch.randn(1, 1, dtype=DTYPE)

    updated = kf.observation_model.update(s, measure)

    assert torch.linalg.det(updated.covariance) < torch.linalg.det(s.covariance)

    updated_2 = kf.observation_model.update(updated, measure)

    assert torch.linalg.det(updated_2.covariance) < torch.linalg.det(updated.covariance)


def test_update_is_order_independent():
    kf = random_kf(4, 2)
    s = random_estimate(4)
    measure = torch.randn(2, 1, dtype=DTYPE)
    measure_2 = torch.randn(2, 1, dtype=DTYPE)

    updated = kf.observation_model.update(kf.observation_model.update(s, measure), measure_2)
    updated_2 = kf.observation_model.update(kf.observation_model.update(s, measure_2), measure)

    assert torch.allclose(updated.state, updated_2.state)
    assert torch.allclose(updated.covariance, updated_2.covariance)


def test_several_predict_can_be_reduced_to_one():
    kf = random_kf(3, 2)
    s = random_estimate(3)
    process_matrix = kf.transition_model.F
    process_noise = kf.transition_model.Q

    predicted = kf.transition_model.predict(kf.transition_model.predict(s))
    predicted_2 = LinearTransitionModel(
        process_matrix @ process_matrix, process_matrix @ process_noise @ process_matrix.mT + process_noise
    ).predict(s)

    assert torch.allclose(predicted.state, predicted_2.state)
    assert torch.allclose(predicted.covariance, predicted_2.covariance)


def test_filter_covariance_convergence():
    kf = identity_kf(2, orthogonal_matrix(2))
    s = random_estimate(2)

    for _ in range(50):
        s = kf.step(s, torch.randn(2, 1, dtype=DTYPE))

    covariance = s.covariance

    s = kf.step(s, torch.randn(2, 1, dtype=DTYPE))

    assert torch.allclose(covariance, s.covariance)


def test_filter_mean_convergence_for_converged_measure():
    # Always the same measure, and process is identity. It should converge
    kf = identity_kf(2, torch.eye(2, dtype=DTYPE))
    s = random_estimate(2)
    measure = torch.randn(2, 1, dtype=DTYPE)

    for _ in range(80):
        s = kf.step(s, measure)

    assert torch.allclose(kf.observation_model.predict_observation(s.state), measure)


def test_optimal_kalman_is_equivalent_to_joseph_over_a_series():
    kf = random_kf(3, 2)
    s = random_estimate(3)
    measures = torch.randn(5, 2, 1, dtype=DTYPE)

    joseph = kf.filter(s, measures, CovarianceUpdateMethod.JOSEPH_FORM)
    optimal = kf.filter(s, measures, CovarianceUpdateMethod.OPTIMAL_KALMAN)
    forced = kf.filter(s, measures, CovarianceUpdateMethod.OPTIMAL_KALMAN_FORCED_SYMMETRIC)

    for estimate_joseph, estimate_optimal, estimate_forced in zip(joseph, optimal, forced):
        assert torch.allclose(estimate_joseph.state, estimate_optimal.state)
        assert torch.allclose(estimate_joseph.covariance, estimate_optimal.covariance)
        assert torch.allclose(estimate_joseph.state, estimate_forced.state)
        assert torch.allclose(estimate_joseph.covariance, estimate_forced.covariance)


def test_cholesky_is_equivalent_to_inverse():
    kf = random_kf(4, 3)
    s = random_estimate(4)
    measure = torch.randn(3, 1, dtype=DTYPE)
    measurement_matrix = kf.observation_model.H

    updated = kf.observation_model.update(s, measure, CovarianceUpdateMethod.OPTIMAL_KALMAN)

    innovation_covariance = measurement_matrix @ s.covariance @ measurement_matrix.mT + kf.observation_model.R
    kalman_gain = s.covariance @ measurement_matrix.mT @ innovation_covariance.inverse()

    assert torch.allclose(updated.state, s.state + kalman_gain @ (measure - measurement_matrix @ s.state))
    assert torch.allclose(updated.covariance, s.covariance - kalman_gain @ measurement_matrix @ s.covariance)
