"""
Optimal allocation of olfactory sensory neurons across receptor types.

=============================================================================
PROBLEM
=============================================================================

    maximize    I(K)                     (see core.information)
    subject to  K_a >= 0,  Σ_a K_a = Ktot

I is concave in K, so the problem has a single optimal value and the KKT
conditions characterize the optimum:

    ∂I/∂K_a = λ   where K_a > 0
    ∂I/∂K_a <= λ  where K_a = 0

=============================================================================
'lagsearch' METHOD
=============================================================================

The sum constraint is the only coupling between receptor types, so it is
moved into a Lagrange multiplier λ:

1. INNER: for fixed λ, maximize L(K) = I(K) - λ Σ K over K >= 0.
   With all other receptor types fixed, the best K_a has a closed form,

       K_a = max(0, 1/(2λ) - 1/h_a),    h_a = v_aᵀ B₋ₐ⁻¹ v_a

   where h_a is the signal receptor a carries on top of the rest of the
   population. Sweeps of these updates are interleaved with projected Newton
   steps on the receptor types in use.

2. OUTER: Σ K(λ) decreases monotonically with λ. A root search on
   μ = 1/λ (in which Σ K is close to linear) with one of scipy's bracketing
   root finders finds the multiplier that spends exactly Ktot neurons.

=============================================================================
"""

import warnings
import numpy as np
from dataclasses import dataclass, field, replace
from typing import Dict, Optional, Tuple
from scipy import linalg, optimize

from .exceptions import ConvergenceError, InvalidInputError
from .information import ReceptorInformation


METHODS = ('lagsearch', 'slsqp')

# bracketing root finders for the multiplier search
ROOT_FINDERS = {
    'brentq': optimize.brentq,
    'brenth': optimize.brenth,
    'ridder': optimize.ridder,
    'bisect': optimize.bisect,
}

# optimopts fields lagsearch applies to its own configuration
LAGSEARCH_OPTIONS = ('maxfev', 'maxiter', 'gtol', 'inner_maxiter', 'root_method', 'disp')


# =============================================================================
# CONFIGURATION AND RESULTS
# =============================================================================

@dataclass
class OptimizationConfig:
    """Options controlling calculate_optimal_dist."""
    method: str = 'lagsearch'
    sumtol: float = 1e-3        # max |sum(K) - Ktot|
    maxiter: int = 200          # multiplier iterations (lagsearch) or scipy iterations
    maxfev: int = 50000         # objective evaluations
    gtol: float = 1e-9          # relative KKT tolerance (lagsearch), ftol for SLSQP
    inner_maxiter: int = 1000   # sweeps per multiplier value
    root_method: str = 'brentq'  # key of ROOT_FINDERS (lagsearch)
    disp: bool = False
    optimopts: Dict = field(default_factory=dict)   # scipy options (slsqp) or LAGSEARCH_OPTIONS


@dataclass
class AllocationResult:
    """Optimal allocation together with solver diagnostics."""
    K: np.ndarray
    information: float
    multiplier: float
    residual: float
    n_iter: int
    n_fev: int
    method: str


class _EvaluationBudget:
    """Counts objective evaluations against maxfev."""

    def __init__(self, maxfev: Optional[float] = None):
        self.maxfev = np.inf if maxfev is None else maxfev
        self.n_fev = 0

    def spend(self, n: int = 1):
        if self.n_fev + n > self.maxfev:
            raise ConvergenceError(
                f"Exceeded the budget of {self.maxfev} objective evaluations"
            )
        self.n_fev += n


# =============================================================================
# INNER PROBLEM: FIXED MULTIPLIER
# =============================================================================

def kkt_residual(K: np.ndarray, gradient: np.ndarray, multiplier: float) -> float:
    """
    Largest relative violation of the KKT conditions of
    max I(K) - multiplier * sum(K) over K >= 0.
    """
    excess = gradient / multiplier - 1.0
    violation = np.where(K > 0, np.abs(excess), np.maximum(excess, 0.0))
    return float(np.max(violation)) if violation.size else 0.0


def _coordinate_sweep(V: np.ndarray, K: np.ndarray, multiplier: float) -> np.ndarray:
    """One Gauss-Seidel pass of exact per-receptor maximizations."""
    rank, n_receptors = V.shape
    K = K.copy()

    B = np.eye(rank) + (V * K) @ V.T
    B_inv = linalg.cho_solve(linalg.cho_factor(B, lower=True), np.eye(rank))
    half_width = 0.5 / multiplier

    for a in range(n_receptors):
        v = V[:, a]
        w = B_inv @ v
        h = float(v @ w)

        if h <= 0.0:
            new = 0.0
        else:
            # signal of receptor a against everyone else (Sherman-Morrison)
            denom = 1.0 - K[a] * h
            h_rest = h / denom if denom > 0.0 else np.inf
            new = max(0.0, half_width - 1.0 / h_rest)

        delta = new - K[a]
        if delta != 0.0:
            B_inv -= (delta / (1.0 + delta * h)) * np.outer(w, w)
            K[a] = new

    return K


def _newton_step(
    objective: ReceptorInformation,
    K: np.ndarray,
    value: float,
    W: np.ndarray,
    residual: float,
    multiplier: float,
    budget: _EvaluationBudget,
    max_halvings: int = 4
) -> Tuple[np.ndarray, float, np.ndarray, float]:
    """
    Projected Newton step on the receptor types with K_a > 0.

    A step is kept only if it does not lower L beyond rounding and it reduces
    the KKT residual; otherwise the input state is returned unchanged.
    """
    free = K > 0
    if not np.any(free):
        return K, value, W, residual

    slope = 0.5 * np.diag(W)[free] - multiplier
    curvature = 0.5 * W[np.ix_(free, free)] ** 2
    try:
        with warnings.catch_warnings():
            warnings.simplefilter('ignore', linalg.LinAlgWarning)
            step = linalg.solve(curvature, slope, assume_a='pos')
    except linalg.LinAlgError:
        return K, value, W, residual
    if not np.all(np.isfinite(step)):
        return K, value, W, residual

    current = value - multiplier * K.sum()
    slack = 1e-12 * max(1.0, abs(current))

    t = 1.0
    for _ in range(max_halvings):
        trial = K.copy()
        trial[free] = np.maximum(K[free] + t * step, 0.0)

        budget.spend()
        trial_value, trial_W = objective.value_and_gain_matrix(trial)
        trial_residual = kkt_residual(trial, 0.5 * np.diag(trial_W), multiplier)

        if (trial_value - multiplier * trial.sum() >= current - slack
                and trial_residual < residual):
            return trial, trial_value, trial_W, trial_residual
        t *= 0.5

    return K, value, W, residual


def optimal_allocation_for_multiplier(
    objective: ReceptorInformation,
    multiplier: float,
    K0: Optional[np.ndarray] = None,
    gtol: float = 1e-9,
    maxiter: int = 1000,
    budget: Optional[_EvaluationBudget] = None
) -> Tuple[np.ndarray, int]:
    """
    Maximize I(K) - multiplier * sum(K) over K >= 0.

    Parameters
    ----------
    objective : ReceptorInformation
    multiplier : float
        Lagrange multiplier λ > 0 (price of one neuron, in nats)
    K0 : np.ndarray, optional
        Starting allocation (defaults to all zeros)
    gtol : float
        Relative KKT tolerance
    maxiter : int
        Maximum number of coordinate sweeps

    Returns
    -------
    K : np.ndarray, shape (M,)
    n_sweeps : int

    Raises
    ------
    ConvergenceError
        If the KKT tolerance is not met within maxiter sweeps or the
        evaluation budget runs out. The error carries the last allocation.
    """
    if not multiplier > 0:
        raise InvalidInputError(f"Multiplier must be positive, got {multiplier}")
    if budget is None:
        budget = _EvaluationBudget()

    if K0 is None:
        K = np.zeros(objective.n_receptors)
    else:
        K = np.maximum(np.array(K0, dtype=float), 0.0)

    V = objective.factor
    for sweep in range(1, maxiter + 1):
        budget.spend()
        K = _coordinate_sweep(V, K, multiplier)

        budget.spend()
        value, W = objective.value_and_gain_matrix(K)
        residual = kkt_residual(K, 0.5 * np.diag(W), multiplier)
        if residual <= gtol:
            return K, sweep

        K, value, W, residual = _newton_step(
            objective, K, value, W, residual, multiplier, budget
        )
        if residual <= gtol:
            return K, sweep

    raise ConvergenceError(
        f"Allocation at multiplier {multiplier:.4g} did not converge in "
        f"{maxiter} sweeps (KKT residual {residual:.3g})",
        K=K
    )


# =============================================================================
# OUTER PROBLEM: MULTIPLIER SEARCH
# =============================================================================

class _WithinTolerance(Exception):
    """Stops the root finder as soon as the allocation total is within sumtol."""

    def __init__(self, K: np.ndarray, mu: float):
        super().__init__()
        self.K = K
        self.mu = mu


def _spread_residual(K: np.ndarray, Ktot: float) -> np.ndarray:
    """Remove the mismatch sum(K) - Ktot evenly from the receptor types in use."""
    K = K.copy()
    free = K > 0
    if np.any(free):
        shift = (K.sum() - Ktot) / np.count_nonzero(free)
        K[free] = np.maximum(K[free] - shift, 0.0)
    return K


def _lagsearch(
    objective: ReceptorInformation,
    Ktot: float,
    config: OptimizationConfig
) -> AllocationResult:
    n_receptors = objective.n_receptors
    budget = _EvaluationBudget(config.maxfev)

    top_gain = float(np.max(objective.gains_at_zero()))
    if top_gain <= 0:
        # no receptor sees any signal: every allocation is equally good
        K = np.full(n_receptors, Ktot / n_receptors)
        return AllocationResult(K, 0.0, 0.0, 0.0, 0, 0, 'lagsearch')

    # μ = 1/λ. Below 1/top_gain no receptor type is worth a single neuron, and
    # since every K_a < μ/2 the population spends less than Ktot below 2 Ktot / M.
    mu_lo = 1.0 / top_gain
    totals = {mu_lo: -Ktot}
    mu_lo = max(mu_lo, 2.0 * Ktot / n_receptors)
    mu_hi = 2.0 * mu_lo

    K = np.zeros(n_receptors)
    best_K, best_f = K, -Ktot
    n_iter = 0

    def excess_at(mu):
        nonlocal K, n_iter, best_K, best_f
        if mu in totals:
            return totals[mu]

        n_iter += 1
        if n_iter > config.maxiter:
            raise ConvergenceError(
                f"Multiplier search did not converge in {config.maxiter} iterations"
            )
        K, _ = optimal_allocation_for_multiplier(
            objective, 1.0 / mu, K,
            gtol=config.gtol, maxiter=config.inner_maxiter, budget=budget
        )
        f = float(K.sum() - Ktot)
        totals[mu] = f
        if abs(f) < abs(best_f):
            best_K, best_f = K, f
        if config.disp:
            print(f"  lagsearch iter {n_iter:3d}: λ = {1.0 / mu:.6g}, "
                  f"sum(K) - Ktot = {f:+.4g}")
        if abs(f) <= config.sumtol:
            raise _WithinTolerance(K, mu)
        return f

    def finish(K_final, mu):
        K_final = np.maximum(K_final, 0.0)
        residual = float(K_final.sum() - Ktot)
        if config.disp:
            print(f"  lagsearch converged after {n_iter} iterations, "
                  f"{budget.n_fev} evaluations")
        return AllocationResult(
            K=K_final,
            information=objective.value(K_final),
            multiplier=1.0 / mu,
            residual=residual,
            n_iter=n_iter,
            n_fev=budget.n_fev,
            method='lagsearch'
        )

    try:
        # Bracket: grow μ until the population spends at least Ktot neurons
        while excess_at(mu_hi) < 0:
            mu_lo, mu_hi = mu_hi, 2.0 * mu_hi

        mu, info = ROOT_FINDERS[config.root_method](
            excess_at, mu_lo, mu_hi,
            xtol=np.finfo(float).tiny, rtol=4 * np.finfo(float).eps,
            maxiter=config.maxiter, full_output=True, disp=False
        )
    except _WithinTolerance as hit:
        return finish(hit.K, hit.mu)
    except ConvergenceError as err:
        raise ConvergenceError(str(err), K=best_K, residual=best_f) from err

    if not info.converged:
        raise ConvergenceError(
            f"Multiplier search ({config.root_method}) stopped: {info.flag}",
            K=best_K, residual=best_f
        )

    # μ is resolved to float precision but sum(K) is not within sumtol
    K_final = _spread_residual(best_K, Ktot)
    if abs(K_final.sum() - Ktot) > config.sumtol:
        raise ConvergenceError(
            f"Multiplier bracket collapsed before reaching sumtol={config.sumtol}",
            K=best_K, residual=best_f
        )
    return finish(K_final, mu)


# =============================================================================
# DIRECT CONSTRAINED OPTIMIZATION
# =============================================================================

def _direct(
    objective: ReceptorInformation,
    Ktot: float,
    config: OptimizationConfig
) -> AllocationResult:
    n_receptors = objective.n_receptors
    budget = _EvaluationBudget(config.maxfev)

    def negative_information(K):
        budget.spend()
        value, gradient = objective.value_and_gradient(K)
        return -value, -gradient

    options = {'maxiter': config.maxiter, 'ftol': config.gtol, 'disp': config.disp}
    options.update(config.optimopts)

    x0 = np.full(n_receptors, Ktot / n_receptors)
    constraint = {
        'type': 'eq',
        'fun': lambda K: np.sum(K) - Ktot,
        'jac': lambda K: np.ones_like(K),
    }

    try:
        res = optimize.minimize(
            negative_information, x0, jac=True, method='SLSQP',
            bounds=[(0.0, None)] * n_receptors,
            constraints=[constraint],
            options=options
        )
    except ConvergenceError as err:
        raise ConvergenceError(str(err), K=x0, residual=0.0) from err

    K = np.maximum(res.x, 0.0)
    residual = float(K.sum() - Ktot)
    if not res.success:
        raise ConvergenceError(f"SLSQP failed: {res.message}", K=K, residual=residual)
    if abs(residual) > config.sumtol:
        raise ConvergenceError(
            f"SLSQP result misses the neuron budget by {residual:.3g}",
            K=K, residual=residual
        )

    value, gradient = objective.value_and_gradient(K)
    used = K > 0
    multiplier = float(np.mean(gradient[used])) if np.any(used) else 0.0

    return AllocationResult(
        K=K,
        information=value,
        multiplier=multiplier,
        residual=residual,
        n_iter=int(res.nit),
        n_fev=budget.n_fev,
        method='slsqp'
    )


# =============================================================================
# PUBLIC INTERFACE
# =============================================================================

def _check_config(config: OptimizationConfig):
    if config.method not in METHODS:
        raise InvalidInputError(
            f"Unknown method {config.method!r}; choose from {', '.join(METHODS)}"
        )
    if not config.sumtol > 0:
        raise InvalidInputError(f"sumtol must be positive, got {config.sumtol}")
    if not config.gtol > 0:
        raise InvalidInputError(f"gtol must be positive, got {config.gtol}")
    if config.maxiter < 1 or config.maxfev < 1 or config.inner_maxiter < 1:
        raise InvalidInputError("Iteration and evaluation limits must be at least 1")
    if config.root_method not in ROOT_FINDERS:
        raise InvalidInputError(
            f"Unknown root_method {config.root_method!r}; choose from {', '.join(ROOT_FINDERS)}"
        )


def _lagsearch_config(config: OptimizationConfig) -> OptimizationConfig:
    """Apply optimopts to the lagsearch configuration; unknown keys are an error."""
    unknown = sorted(set(config.optimopts) - set(LAGSEARCH_OPTIONS))
    if unknown:
        raise InvalidInputError(
            f"optimopts not supported by lagsearch: {', '.join(unknown)} "
            f"(supported: {', '.join(LAGSEARCH_OPTIONS)})"
        )
    return replace(config, **config.optimopts)


def _check_total(Ktot) -> float:
    try:
        Ktot = float(Ktot)
    except (TypeError, ValueError) as err:
        raise InvalidInputError(f"Ktot must be a number, got {Ktot!r}") from err
    if not np.isfinite(Ktot) or Ktot <= 0:
        raise InvalidInputError(f"Ktot must be positive and finite, got {Ktot}")
    return Ktot


def solve_optimal_dist(
    S,
    Gamma,
    Ktot: float,
    config: Optional[OptimizationConfig] = None,
    **overrides
) -> AllocationResult:
    """
    Find the information-maximizing allocation and report diagnostics.

    Parameters
    ----------
    S : array_like, shape (M, N)
        Sensing matrix, normalized by receptor background noise
    Gamma : array_like, shape (N, N)
        Environment covariance (symmetric positive semidefinite)
    Ktot : float
        Total number of neurons
    config : OptimizationConfig, optional
    **overrides
        Replace individual config fields, e.g. ``sumtol=2e-3``.

    Returns
    -------
    result : AllocationResult

    Raises
    ------
    InvalidInputError
        Before any optimization, for inconsistent or malformed inputs.
    ConvergenceError
        When the iteration or evaluation limits are reached first.
    """
    config = replace(config if config is not None else OptimizationConfig(), **overrides)
    if config.method == 'lagsearch':
        config = _lagsearch_config(config)
    _check_config(config)
    Ktot = _check_total(Ktot)
    objective = ReceptorInformation(S, Gamma)

    if config.disp:
        print(f"Optimal distribution: {objective.n_receptors} receptor types, "
              f"{objective.n_odors} odors, Ktot = {Ktot:g}, method = {config.method}")

    if config.method == 'lagsearch':
        return _lagsearch(objective, Ktot, config)
    return _direct(objective, Ktot, config)


def calculate_optimal_dist(
    S,
    Gamma,
    Ktot: float,
    config: Optional[OptimizationConfig] = None,
    **overrides
) -> np.ndarray:
    """
    Optimal number of neurons per receptor type.

    Same arguments as solve_optimal_dist; returns only the allocation K,
    with K >= 0 and |sum(K) - Ktot| <= sumtol.
    """
    return solve_optimal_dist(S, Gamma, Ktot, config, **overrides).K
