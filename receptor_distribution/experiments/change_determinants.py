"""
What determines how much the optimal receptor distribution changes?

=============================================================================
EXPERIMENT OVERVIEW
=============================================================================

Two environments Γ₁ and Γ₂ give two optimal allocations K₁ and K₂ for the
same receptor population. This driver measures |ΔK| = |K₁ - K₂| under four
manipulations:

PHASE 1: Generic environment changes
    Γ₁, Γ₂ independent random correlated environments.

PHASE 2: Non-overlapping environment changes
    As in phase 1, but a random half of the odors is suppressed (by a factor
    of 4 in square-root space) in Γ₁ and the other half in Γ₂, so the
    dominant odors of the two environments barely overlap.

PHASE 3: Receptors with varied tuning widths
    Random sensing matrices whose receptors draw their tuning width from a
    range; ΔK is related to each receptor's width and IPR.

PHASE 4: Narrow vs. wide tuning
    Populations of uniformly narrow or uniformly broad receptors under the
    same environment change.

Optimizations that fail to converge are retried with freshly generated
inputs a bounded number of times; samples that still fail are recorded and
skipped.

=============================================================================
"""

import numpy as np
from dataclasses import dataclass, field, replace
from typing import Callable, Dict, List, Optional, Tuple
from tqdm import tqdm

from ..core.environments import generate_environment, generate_nonoverlapping_pair
from ..core.exceptions import ConvergenceError
from ..core.optimal_distribution import OptimizationConfig, calculate_optimal_dist
from ..core.sensing import generate_random_sensing
from ..analysis.tuning import analyze_population_tuning, binned_changes, compute_ipr
from .retry import solve_with_retries


# =============================================================================
# CONFIGURATION
# =============================================================================

@dataclass
class ChangeDeterminantsConfig:
    """Configuration for the change-determinants experiment."""
    # Population and environment
    Ktot: float = 25000.0
    cov_factor: float = 1e-4       # rough scale giving intermediate SNR at Ktot
    n_receptors: int = 24
    n_odors: int = 110
    environment_kind: str = 'rnd_corr'
    nonoverlap_factor: float = 4.0

    # Sampling
    n_env_samples: int = 500
    n_sensing_samples: int = 50
    n_tries: int = 3

    # Random sensing matrices
    sensing_snr: float = 200.0
    tuning_narrow: float = 0.05
    tuning_wide: float = 0.5
    tuning_varied: Tuple[float, float] = (0.2, 0.8)

    # Scalings chosen to keep SNR comparable across sensing matrices
    S_varied_scaling: float = 5.0
    Ktot_varied_scaling: float = 1 / 300   # Γ is scaled by the inverse
    S_narrow_scaling: float = 27.0
    S_wide_scaling: float = 100.0
    narrow_wide_sumtol: float = 2e-3

    # Seeds
    reference_seed: int = 0
    generic_seed: int = 2334
    nonoverlapping_seed: int = 9854
    sensing_seed: int = 123

    optimization: OptimizationConfig = field(default_factory=OptimizationConfig)
    show_progress: bool = True

    @property
    def Ktot_varied(self) -> float:
        return self.Ktot * self.Ktot_varied_scaling

    @property
    def Gamma_varied_scaling(self) -> float:
        return 1.0 / self.Ktot_varied_scaling


# =============================================================================
# SAMPLING LOOP
# =============================================================================

def _run_samples(
    n_samples: int,
    generate: Callable,
    solve: Callable,
    n_tries: int,
    desc: str,
    show_progress: bool
) -> Tuple[List, List, List[Dict]]:
    """Collect n_samples (inputs, solution) pairs, skipping samples that never converge."""
    inputs, solutions, failures = [], [], []

    iterator = tqdm(range(n_samples), desc=desc) if show_progress else range(n_samples)
    for i in iterator:
        try:
            sample_inputs, solution, _ = solve_with_retries(generate, solve, n_tries)
        except ConvergenceError as err:
            failures.append({'sample': i, 'error': str(err), 'residual': err.residual})
            continue
        inputs.append(sample_inputs)
        solutions.append(solution)

    if failures:
        print(f"  ⚠️  {len(failures)}/{n_samples} samples failed after {n_tries} tries")

    return inputs, solutions, failures


def pooled_abs_change(K1: np.ndarray, K2: np.ndarray) -> np.ndarray:
    """|K1 - K2| pooled over samples and receptor types."""
    return np.abs(np.asarray(K1) - np.asarray(K2)).ravel()


def _change_summary(K1: np.ndarray, K2: np.ndarray) -> Dict:
    changes = pooled_abs_change(K1, K2)
    if changes.size == 0:
        return {'median': np.nan, 'mean': np.nan, 'quantiles': np.full(2, np.nan), 'all_values': changes}
    return {
        'median': np.median(changes),
        'mean': np.mean(changes),
        'quantiles': np.quantile(changes, [0.025, 0.975]),
        'all_values': changes,
    }


def _stack(solutions: List, index: int, n_receptors: int) -> np.ndarray:
    if not solutions:
        return np.zeros((0, n_receptors))
    return np.array([s[index] for s in solutions])


# =============================================================================
# PHASES
# =============================================================================

def run_environment_changes(
    S: np.ndarray,
    cfg: ChangeDeterminantsConfig,
    nonoverlapping: bool = False
) -> Dict:
    """
    Optimal allocations for pairs of random environments.

    Returns
    -------
    results : Dict with Gamma1, Gamma2 (lists), K1, K2 (n_samples × M),
        masks (non-overlapping only), failures and a summary of |ΔK|
    """
    seed = cfg.nonoverlapping_seed if nonoverlapping else cfg.generic_seed
    rng = np.random.RandomState(seed)
    n_odors = S.shape[1]

    if nonoverlapping:
        def generate():
            return generate_nonoverlapping_pair(
                n_odors, rng, factor=cfg.nonoverlap_factor,
                kind=cfg.environment_kind, scale=cfg.cov_factor
            )
    else:
        def generate():
            Gamma1 = cfg.cov_factor * generate_environment(cfg.environment_kind, n_odors, rng)
            Gamma2 = cfg.cov_factor * generate_environment(cfg.environment_kind, n_odors, rng)
            return Gamma1, Gamma2

    def solve(envs):
        return (calculate_optimal_dist(S, envs[0], cfg.Ktot, cfg.optimization),
                calculate_optimal_dist(S, envs[1], cfg.Ktot, cfg.optimization))

    desc = 'non-overlapping environments' if nonoverlapping else 'generic environments'
    inputs, solutions, failures = _run_samples(
        cfg.n_env_samples, generate, solve, cfg.n_tries, desc, cfg.show_progress
    )

    K1 = _stack(solutions, 0, S.shape[0])
    K2 = _stack(solutions, 1, S.shape[0])
    results = {
        'Gamma1': [envs[0] for envs in inputs],
        'Gamma2': [envs[1] for envs in inputs],
        'K1': K1,
        'K2': K2,
        'failures': failures,
        'delta_K': _change_summary(K1, K2),
    }
    if nonoverlapping:
        results['masks'] = [envs[2] for envs in inputs]

    diffs = [(envs[0] - envs[1]).ravel() for envs in inputs]
    results['delta_Gamma_std'] = float(np.std(np.concatenate(diffs))) if diffs else np.nan
    return results


def run_varied_tuning(
    Gamma1: np.ndarray,
    Gamma2: np.ndarray,
    cfg: ChangeDeterminantsConfig,
    n_receptors: int
) -> Dict:
    """
    Environment change seen by receptors with a range of tuning widths.

    Ktot and Γ are scaled in opposite directions, which leaves the optimal
    relative abundances unchanged but helps convergence.
    """
    rng = np.random.RandomState(cfg.sensing_seed)
    n_odors = Gamma1.shape[0]
    Gamma1_varied = cfg.Gamma_varied_scaling * Gamma1
    Gamma2_varied = cfg.Gamma_varied_scaling * Gamma2

    def generate():
        S, sigmas = generate_random_sensing(
            n_receptors, n_odors, cfg.tuning_varied, cfg.sensing_snr, rng
        )
        return cfg.S_varied_scaling * S, sigmas

    def solve(sample):
        S = sample[0]
        return (calculate_optimal_dist(S, Gamma1_varied, cfg.Ktot_varied, cfg.optimization),
                calculate_optimal_dist(S, Gamma2_varied, cfg.Ktot_varied, cfg.optimization))

    inputs, solutions, failures = _run_samples(
        cfg.n_sensing_samples, generate, solve, cfg.n_tries,
        'varied-tuning sensing matrices', cfg.show_progress
    )

    K1 = _stack(solutions, 0, n_receptors)
    K2 = _stack(solutions, 1, n_receptors)
    sigmas = np.array([s[1] for s in inputs]) if inputs else np.zeros((0, n_receptors))
    ipr = np.array([compute_ipr(s[0]) for s in inputs]) if inputs else np.zeros((0, n_receptors))

    results = {
        'S': [s[0] for s in inputs],
        'sigmas': sigmas,
        'ipr': ipr,
        'Gamma1': Gamma1_varied,
        'Gamma2': Gamma2_varied,
        'K1': K1,
        'K2': K2,
        'failures': failures,
        'delta_K': _change_summary(K1, K2),
    }
    if inputs:
        results['by_width'] = binned_changes(sigmas, K2 - K1, n_bins=3)
    return results


def run_narrow_vs_wide(
    Gamma1: np.ndarray,
    Gamma2: np.ndarray,
    cfg: ChangeDeterminantsConfig,
    n_receptors: int
) -> Dict:
    """Environment change seen by uniformly narrow vs. uniformly broad receptors."""
    rng = np.random.RandomState(cfg.sensing_seed)
    n_odors = Gamma1.shape[0]
    optimization = replace(cfg.optimization, sumtol=cfg.narrow_wide_sumtol)

    def generate():
        S_narrow, _ = generate_random_sensing(
            n_receptors, n_odors, cfg.tuning_narrow, cfg.sensing_snr, rng
        )
        S_wide, _ = generate_random_sensing(
            n_receptors, n_odors, cfg.tuning_wide, cfg.sensing_snr, rng
        )
        return cfg.S_narrow_scaling * S_narrow, cfg.S_wide_scaling * S_wide

    def solve(pair):
        return tuple(
            calculate_optimal_dist(S, Gamma, cfg.Ktot, optimization)
            for S in pair for Gamma in (Gamma1, Gamma2)
        )

    inputs, solutions, failures = _run_samples(
        cfg.n_sensing_samples, generate, solve, cfg.n_tries,
        'narrow- and broad-tuned sensing matrices', cfg.show_progress
    )

    K1_narrow = _stack(solutions, 0, n_receptors)
    K2_narrow = _stack(solutions, 1, n_receptors)
    K1_wide = _stack(solutions, 2, n_receptors)
    K2_wide = _stack(solutions, 3, n_receptors)

    return {
        'S_narrow': [pair[0] for pair in inputs],
        'S_wide': [pair[1] for pair in inputs],
        'K1_narrow': K1_narrow,
        'K2_narrow': K2_narrow,
        'K1_wide': K1_wide,
        'K2_wide': K2_wide,
        'failures': failures,
        'delta_K_narrow': _change_summary(K1_narrow, K2_narrow),
        'delta_K_wide': _change_summary(K1_wide, K2_wide),
    }


# =============================================================================
# MAIN EXPERIMENT RUNNER
# =============================================================================

def run_change_determinants(
    cfg: Optional[ChangeDeterminantsConfig] = None,
    S: Optional[np.ndarray] = None
) -> Dict:
    """
    Run all four phases.

    Parameters
    ----------
    cfg : ChangeDeterminantsConfig, optional
    S : np.ndarray, optional
        Reference sensing matrix for phases 1-2, already normalized by
        receptor background noise. A random one with varied tuning is
        generated from cfg.reference_seed when omitted.

    Returns
    -------
    results : Dict with one entry per phase plus the reference sensing matrix
    """
    if cfg is None:
        cfg = ChangeDeterminantsConfig()

    print("=" * 70)
    print("CHANGE DETERMINANTS: WHAT MOVES THE OPTIMAL RECEPTOR DISTRIBUTION")
    print("=" * 70)

    if S is None:
        S, _ = generate_random_sensing(
            cfg.n_receptors, cfg.n_odors, cfg.tuning_varied, cfg.sensing_snr,
            np.random.RandomState(cfg.reference_seed)
        )
        print(f"\nUsing a random reference sensing matrix ({cfg.n_receptors} × {cfg.n_odors})")
    S = np.asarray(S, dtype=float)
    n_receptors = S.shape[0]

    print("\nConfiguration:")
    print(f"  Ktot = {cfg.Ktot:g}, cov_factor = {cfg.cov_factor:g}")
    print(f"  {cfg.n_env_samples} environment pairs, {cfg.n_sensing_samples} sensing samples")
    print(f"  Method: {cfg.optimization.method}, sumtol = {cfg.optimization.sumtol:g}")
    analyze_population_tuning(S, verbose=True)

    results = {'S': S}

    print("\n" + "=" * 70)
    print("PHASE 1: GENERIC ENVIRONMENT CHANGES")
    print("=" * 70)
    generic = run_environment_changes(S, cfg, nonoverlapping=False)
    results['generic'] = generic
    print(f"  median |ΔK| = {generic['delta_K']['median']:.4g}")

    print("\n" + "=" * 70)
    print("PHASE 2: NON-OVERLAPPING ENVIRONMENT CHANGES")
    print("=" * 70)
    nonoverlapping = run_environment_changes(S, cfg, nonoverlapping=True)
    results['nonoverlapping'] = nonoverlapping
    print(f"  median |ΔK| = {nonoverlapping['delta_K']['median']:.4g}")

    if not generic['Gamma1']:
        raise RuntimeError("No generic environment pair converged; cannot run tuning phases")
    Gamma1, Gamma2 = generic['Gamma1'][0], generic['Gamma2'][0]

    print("\n" + "=" * 70)
    print("PHASE 3: RECEPTORS WITH VARIED TUNING")
    print("=" * 70)
    varied = run_varied_tuning(Gamma1, Gamma2, cfg, n_receptors)
    results['varied'] = varied
    if 'by_width' in varied:
        for center, median in zip(varied['by_width']['centers'], varied['by_width']['median']):
            print(f"  σ ≈ {center:.2f}: median |ΔK| = {median:.4g}")

    print("\n" + "=" * 70)
    print("PHASE 4: NARROW VS. WIDE TUNING")
    print("=" * 70)
    narrow_wide = run_narrow_vs_wide(Gamma1, Gamma2, cfg, n_receptors)
    results['narrow_wide'] = narrow_wide
    print(f"  median |ΔK| narrow = {narrow_wide['delta_K_narrow']['median']:.4g}, "
          f"wide = {narrow_wide['delta_K_wide']['median']:.4g}")

    print("\n✓ Change-determinants experiment complete")
    return results
