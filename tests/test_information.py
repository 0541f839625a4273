import numpy as np
import pytest

from receptor_distribution.core.exceptions import InvalidInputError
from receptor_distribution.core.information import (
    ReceptorInformation,
    check_inputs,
    receptor_information,
)


def _random_objective(seed=3):
    rng = np.random.RandomState(seed)
    S = rng.randn(4, 6)
    X = rng.randn(6, 12)
    Gamma = X @ X.T / 12
    return ReceptorInformation(S, Gamma), rng


def test_diagonal_problem_matches_closed_form(diagonal_problem):
    S, Gamma = diagonal_problem
    q = np.array([1.0, 4.0, 9.0])
    K = np.array([1.0, 2.0, 3.0])

    value, gradient = receptor_information(S, Gamma, K)

    assert value == pytest.approx(0.5 * np.sum(np.log1p(K * q)))
    assert np.allclose(gradient, q / (2 * (1 + K * q)))


def test_zero_allocation_carries_no_information(diagonal_problem):
    S, Gamma = diagonal_problem
    objective = ReceptorInformation(S, Gamma)

    value, gradient = objective.value_and_gradient(np.zeros(3))

    assert value == 0.0
    assert np.allclose(gradient, 0.5 * np.diag(objective.Q))
    assert np.allclose(objective.gains_at_zero(), gradient)


def test_partially_zero_allocation_is_finite():
    objective, rng = _random_objective()
    K = np.array([0.0, 5.0, 0.0, 2.0])

    value, gradient = objective.value_and_gradient(K)
    hessian = objective.hessian(K)

    assert np.isfinite(value) and value > 0
    assert np.all(np.isfinite(gradient))
    assert np.all(np.isfinite(hessian))


def test_negative_entries_are_clamped():
    objective, _ = _random_objective()

    assert objective.value([-1.0, 2.0, 3.0, -0.5]) == objective.value([0.0, 2.0, 3.0, 0.0])


def test_gradient_matches_finite_differences():
    objective, rng = _random_objective()
    K = rng.uniform(1, 10, 4)
    step = 1e-5

    numeric = np.zeros(4)
    for a in range(4):
        dK = np.zeros(4)
        dK[a] = step
        numeric[a] = (objective.value(K + dK) - objective.value(K - dK)) / (2 * step)

    assert np.allclose(objective.gradient(K), numeric, rtol=1e-5, atol=1e-9)


def test_hessian_matches_finite_differences():
    objective, rng = _random_objective()
    K = rng.uniform(1, 10, 4)
    step = 1e-5

    numeric = np.zeros((4, 4))
    for b in range(4):
        dK = np.zeros(4)
        dK[b] = step
        numeric[:, b] = (objective.gradient(K + dK) - objective.gradient(K - dK)) / (2 * step)

    assert np.allclose(objective.hessian(K), numeric, rtol=1e-4, atol=1e-9)


def test_information_increases_with_allocation():
    objective, rng = _random_objective()
    K = rng.uniform(1, 10, 4)

    assert objective.value(2 * K) > objective.value(K)
    assert np.all(objective.gradient(K) > 0)


def test_silent_receptors_have_zero_gradient():
    S = np.array([[1.0, 0.0], [0.0, 0.0]])
    objective = ReceptorInformation(S, np.eye(2))

    _, gradient = objective.value_and_gradient(np.array([3.0, 3.0]))

    assert gradient[1] == pytest.approx(0.0, abs=1e-14)
    assert objective.rank == 1


def test_blind_population_has_no_signal():
    objective = ReceptorInformation(np.zeros((3, 4)), np.eye(4))

    assert objective.rank == 0
    assert objective.value(np.ones(3)) == 0.0
    assert np.array_equal(objective.gradient(np.ones(3)), np.zeros(3))


def test_allocation_shape_is_checked(diagonal_problem):
    objective = ReceptorInformation(*diagonal_problem)

    with pytest.raises(InvalidInputError):
        objective.value(np.ones(4))
    with pytest.raises(InvalidInputError):
        objective.value(np.array([1.0, np.nan, 1.0]))


@pytest.mark.parametrize(
    "S, Gamma",
    [
        (np.eye(3), np.eye(2)),                              # dimension mismatch
        (np.eye(2), np.ones((2, 3))),                        # non-square covariance
        (np.array([[1.0, np.nan]]), np.eye(2)),              # NaN in sensing
        (np.eye(2), np.array([[1.0, np.inf], [0.0, 1.0]])),  # Inf in covariance
        (np.eye(2), np.array([[1.0, 0.5], [0.0, 1.0]])),     # asymmetric
        (np.eye(2), np.array([[1.0, 2.0], [2.0, 1.0]])),     # indefinite
        (np.ones(3), np.eye(3)),                             # 1-D sensing
    ],
)
def test_malformed_inputs_are_rejected(S, Gamma):
    with pytest.raises(InvalidInputError):
        check_inputs(S, Gamma)


def test_check_inputs_symmetrizes_rounding_noise():
    Gamma = np.array([[2.0, 1.0], [1.0 + 1e-12, 2.0]])

    _, checked = check_inputs(np.eye(2), Gamma)

    assert np.array_equal(checked, checked.T)
