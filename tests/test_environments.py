import numpy as np
import pytest

from receptor_distribution.core.environments import (
    ENVIRONMENT_KINDS,
    generate_environment,
    generate_nonoverlapping_pair,
    psd_sqrt,
    rescale_odors,
)
from receptor_distribution.core.sensing import generate_random_sensing, normalize_by_background
from receptor_distribution.analysis.tuning import compute_ipr


def _is_psd(Gamma, tol=1e-10):
    eigvals = np.linalg.eigvalsh(Gamma)
    return eigvals[0] >= -tol * max(1.0, np.max(np.abs(eigvals)))


@pytest.mark.parametrize("kind", ENVIRONMENT_KINDS)
def test_environments_are_symmetric_psd(kind):
    Gamma = generate_environment(kind, 12, np.random.RandomState(0))

    assert Gamma.shape == (12, 12)
    assert np.array_equal(Gamma, Gamma.T)
    assert _is_psd(Gamma)


@pytest.mark.parametrize("kind", ENVIRONMENT_KINDS)
def test_environments_are_reproducible_from_seed(kind):
    Gamma1 = generate_environment(kind, 8, np.random.RandomState(42))
    Gamma2 = generate_environment(kind, 8, np.random.RandomState(42))

    assert np.array_equal(Gamma1, Gamma2)


def test_unknown_environment_kind():
    with pytest.raises(ValueError):
        generate_environment('turbulent', 5, np.random.RandomState(0))


def test_psd_sqrt_squares_back():
    Gamma = generate_environment('rnd_corr', 6, np.random.RandomState(1))
    root = psd_sqrt(Gamma)

    assert np.allclose(root @ root, Gamma)


def test_rescale_odors_on_diagonal_covariance():
    Gamma = np.diag([1.0, 4.0, 9.0, 16.0])
    mask = np.array([True, False, True, False])

    rescaled = rescale_odors(Gamma, mask, 4.0)

    assert np.allclose(rescaled, np.diag([1 / 16, 4.0, 9 / 16, 16.0]))


def test_rescale_odors_keeps_correlated_covariance_psd():
    rng = np.random.RandomState(3)
    Gamma = generate_environment('rnd_corr', 10, rng)
    mask = rng.uniform(size=10) < 0.5

    rescaled = rescale_odors(Gamma, mask, 4.0)

    assert _is_psd(rescaled)
    assert np.allclose(rescaled, rescaled.T)
    assert np.all(np.diag(rescaled)[mask] < np.diag(Gamma)[mask])


def test_rescale_odors_checks_arguments():
    with pytest.raises(ValueError):
        rescale_odors(np.eye(3), np.array([True, False]), 2.0)
    with pytest.raises(ValueError):
        rescale_odors(np.eye(2), np.array([True, False]), 0.0)


def test_nonoverlapping_pair_uses_complementary_halves():
    Gamma1, Gamma2, mask = generate_nonoverlapping_pair(10, np.random.RandomState(9854))

    assert mask.dtype == bool
    assert mask.sum() == 5
    assert _is_psd(Gamma1) and _is_psd(Gamma2)


# =============================================================================
# SENSING MATRICES
# =============================================================================

def test_random_sensing_shapes_and_widths():
    S, sigmas = generate_random_sensing(6, 20, (0.2, 0.8), 200.0, np.random.RandomState(0))

    assert S.shape == (6, 20)
    assert sigmas.shape == (6,)
    assert np.all((sigmas >= 0.2) & (sigmas <= 0.8))
    assert np.all(np.isfinite(S))


def test_random_sensing_scalar_tuning_is_shared():
    _, sigmas = generate_random_sensing(4, 10, 0.05, 200.0, np.random.RandomState(0))

    assert np.all(sigmas == 0.05)


def test_random_sensing_is_reproducible_from_seed():
    S1, _ = generate_random_sensing(5, 15, (0.2, 0.8), 100.0, np.random.RandomState(123))
    S2, _ = generate_random_sensing(5, 15, (0.2, 0.8), 100.0, np.random.RandomState(123))

    assert np.array_equal(S1, S2)


def test_narrow_tuning_has_lower_ipr_than_wide():
    rng = np.random.RandomState(5)
    S_narrow, _ = generate_random_sensing(20, 50, 0.05, 1e6, rng)
    S_wide, _ = generate_random_sensing(20, 50, 0.5, 1e6, rng)

    assert np.mean(compute_ipr(S_narrow)) < np.mean(compute_ipr(S_wide))


@pytest.mark.parametrize(
    "tuning, snr",
    [((0.8, 0.2), 100.0), (0.0, 100.0), (0.1, 0.0)],
)
def test_random_sensing_rejects_bad_parameters(tuning, snr):
    with pytest.raises(ValueError):
        generate_random_sensing(3, 5, tuning, snr, np.random.RandomState(0))


def test_normalize_by_background_divides_rows():
    S = np.array([[2.0, 4.0], [3.0, 9.0]])

    normalized = normalize_by_background(S, np.array([2.0, 3.0]))

    assert np.allclose(normalized, [[1.0, 2.0], [1.0, 3.0]])
    with pytest.raises(ValueError):
        normalize_by_background(S, np.array([1.0, 2.0, 3.0]))
