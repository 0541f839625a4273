import numpy as np
import pytest

from receptor_distribution.core.optimal_distribution import OptimizationConfig
from receptor_distribution.core.sensing import generate_random_sensing
from receptor_distribution.experiments.change_determinants import (
    ChangeDeterminantsConfig,
    pooled_abs_change,
    run_change_determinants,
    run_environment_changes,
)


@pytest.fixture()
def small_config():
    return ChangeDeterminantsConfig(
        Ktot=100.0,
        cov_factor=1.0,
        n_receptors=4,
        n_odors=6,
        n_env_samples=2,
        n_sensing_samples=2,
        show_progress=False,
    )


def _check_allocations(K, n_receptors, Ktot, sumtol):
    assert K.ndim == 2 and K.shape[1] == n_receptors
    assert np.all(K >= 0)
    assert np.all(np.abs(K.sum(axis=1) - Ktot) <= sumtol)


def test_config_scalings_are_reciprocal():
    cfg = ChangeDeterminantsConfig()

    assert cfg.Ktot_varied == pytest.approx(25000.0 / 300)
    assert cfg.Gamma_varied_scaling == pytest.approx(300.0)
    assert cfg.optimization.method == 'lagsearch'


def test_pooled_abs_change():
    K1 = np.array([[1.0, 2.0], [3.0, 4.0]])
    K2 = np.array([[2.0, 2.0], [1.0, 4.0]])

    assert pooled_abs_change(K1, K2).tolist() == [1.0, 0.0, 2.0, 0.0]


def test_generic_environment_changes(small_config):
    S, _ = generate_random_sensing(4, 6, (0.2, 0.8), 200.0, np.random.RandomState(0))

    results = run_environment_changes(S, small_config)

    assert len(results['K1']) + len(results['failures']) == 2
    assert len(results['Gamma1']) == len(results['K1'])
    _check_allocations(results['K1'], 4, 100.0, small_config.optimization.sumtol)
    _check_allocations(results['K2'], 4, 100.0, small_config.optimization.sumtol)
    assert 'masks' not in results


def test_nonoverlapping_environment_changes(small_config):
    S, _ = generate_random_sensing(4, 6, (0.2, 0.8), 200.0, np.random.RandomState(0))

    results = run_environment_changes(S, small_config, nonoverlapping=True)

    assert len(results['masks']) == len(results['K1'])
    for mask in results['masks']:
        assert mask.shape == (6,)
        assert mask.sum() == 3


def test_environment_changes_are_reproducible(small_config):
    S, _ = generate_random_sensing(4, 6, (0.2, 0.8), 200.0, np.random.RandomState(0))

    first = run_environment_changes(S, small_config)
    second = run_environment_changes(S, small_config)

    assert np.array_equal(first['K1'], second['K1'])
    assert np.array_equal(first['K2'], second['K2'])


def test_failed_samples_are_recorded_and_skipped(small_config):
    S, _ = generate_random_sensing(4, 6, (0.2, 0.8), 200.0, np.random.RandomState(0))
    small_config.optimization = OptimizationConfig(maxfev=1)
    small_config.n_tries = 2

    results = run_environment_changes(S, small_config)

    assert results['K1'].shape == (0, 4)
    assert len(results['failures']) == 2
    assert results['failures'][0]['sample'] == 0


def test_full_experiment(small_config, capsys):
    results = run_change_determinants(small_config)

    assert set(results) == {'S', 'generic', 'nonoverlapping', 'varied', 'narrow_wide'}
    assert results['S'].shape == (4, 6)

    varied = results['varied']
    _check_allocations(varied['K1'], 4, small_config.Ktot_varied, small_config.optimization.sumtol)
    assert varied['sigmas'].shape == varied['K1'].shape
    assert np.all((varied['sigmas'] >= 0.2) & (varied['sigmas'] <= 0.8))
    assert varied['ipr'].shape == varied['K1'].shape

    narrow_wide = results['narrow_wide']
    _check_allocations(narrow_wide['K1_narrow'], 4, 100.0, small_config.narrow_wide_sumtol)
    _check_allocations(narrow_wide['K2_wide'], 4, 100.0, small_config.narrow_wide_sumtol)

    out = capsys.readouterr().out
    assert "Configuration:" in out
    assert "PHASE 1" in out and "PHASE 4" in out
