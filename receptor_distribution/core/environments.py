"""
Random olfactory environments.

An environment is summarized by the covariance Γ of odor concentrations
across N odor channels. All generators take an explicit random state so that
experiment drivers control reproducibility.
"""

import numpy as np
from scipy import linalg
from typing import Optional, Tuple


ENVIRONMENT_KINDS = ('rnd_corr', 'rnd_diag', 'smooth', 'identity')


def compute_rbf_kernel(x1: np.ndarray, x2: np.ndarray, lengthscale: float = 0.2) -> np.ndarray:
    """
    RBF kernel between two sets of 1-D positions.

    Parameters:
        x1: [N] array
        x2: [M] array
        lengthscale: float

    Returns:
        [N, M] kernel matrix
    """
    x1 = np.asarray(x1, dtype=float).reshape(-1, 1)
    x2 = np.asarray(x2, dtype=float).reshape(1, -1)

    dist_sq = (x1 - x2) ** 2
    return np.exp(-dist_sq / (2 * lengthscale ** 2))


def generate_environment(
    kind: str,
    n_odors: int,
    rng: Optional[np.random.RandomState] = None,
    **kwargs
) -> np.ndarray:
    """
    Generate an odor concentration covariance matrix.

    Kinds:
        'rnd_corr': Wishart sample X Xᵀ / dof with X ~ N(0, 1), shape
                    (n_odors, dof). Random correlations between all odors.
                    kwargs: dof (default n_odors)
        'rnd_diag': Independent odors with log-normal variances.
                    kwargs: log_std (default 1.0)
        'smooth':   RBF covariance over random positions on a 1-D odor axis,
                    so that nearby odors co-vary.
                    kwargs: lengthscale (default 0.2), jitter (default 1e-6)
        'identity': Independent odors with unit variance.

    Args:
        kind: One of ENVIRONMENT_KINDS
        n_odors: Number of odor channels N
        rng: Random state (a fresh unseeded one if omitted)

    Returns:
        Symmetric positive semidefinite array of shape (n_odors, n_odors)
    """
    if n_odors < 1:
        raise ValueError(f"n_odors must be positive, got {n_odors}")
    if rng is None:
        rng = np.random.RandomState()

    if kind == 'rnd_corr':
        dof = kwargs.get('dof', n_odors)
        X = rng.randn(n_odors, dof)
        Gamma = X @ X.T / dof
    elif kind == 'rnd_diag':
        log_std = kwargs.get('log_std', 1.0)
        Gamma = np.diag(np.exp(log_std * rng.randn(n_odors)))
    elif kind == 'smooth':
        lengthscale = kwargs.get('lengthscale', 0.2)
        jitter = kwargs.get('jitter', 1e-6)
        positions = rng.uniform(0, 1, n_odors)
        Gamma = compute_rbf_kernel(positions, positions, lengthscale)
        Gamma += jitter * np.eye(n_odors)
    elif kind == 'identity':
        Gamma = np.eye(n_odors)
    else:
        raise ValueError(f"Unknown environment kind: {kind}")

    return 0.5 * (Gamma + Gamma.T)


def psd_sqrt(Gamma: np.ndarray) -> np.ndarray:
    """Symmetric square root of a PSD matrix (negative rounding noise clipped)."""
    w, U = linalg.eigh(Gamma)
    return (U * np.sqrt(np.clip(w, 0, None))) @ U.T


def rescale_odors(Gamma: np.ndarray, mask: np.ndarray, factor: float) -> np.ndarray:
    """
    Divide the contribution of the masked odors by `factor`.

    Works on the square root R = Γ^{1/2}: the masked columns of R are scaled
    and the covariance is rebuilt as RᵀR, which is positive semidefinite by
    construction. Variances of masked odors shrink by factor².

    Args:
        Gamma: Covariance, shape (N, N)
        mask: Boolean array of length N selecting the odors to suppress
        factor: Positive scaling factor

    Returns:
        Rescaled covariance, shape (N, N)
    """
    mask = np.asarray(mask, dtype=bool)
    if mask.shape != (Gamma.shape[0],):
        raise ValueError(f"mask must have length {Gamma.shape[0]}, got shape {mask.shape}")
    if factor <= 0:
        raise ValueError(f"factor must be positive, got {factor}")

    root = psd_sqrt(Gamma)
    root[:, mask] = root[:, mask] / factor
    rescaled = root.T @ root
    return 0.5 * (rescaled + rescaled.T)


def generate_nonoverlapping_pair(
    n_odors: int,
    rng: np.random.RandomState,
    factor: float = 4.0,
    kind: str = 'rnd_corr',
    scale: float = 1.0
) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Two environments whose dominant odors barely overlap.

    Both environments start as independent draws. A random half of the odors
    is suppressed in the first environment and the complementary half in the
    second.

    Returns:
        (Gamma1, Gamma2, mask): mask is True for odors suppressed in Gamma1
    """
    Gamma1 = scale * generate_environment(kind, n_odors, rng)
    Gamma2 = scale * generate_environment(kind, n_odors, rng)

    mask = np.ones(n_odors, dtype=bool)
    mask[rng.permutation(n_odors)[:n_odors // 2]] = False

    Gamma1 = rescale_odors(Gamma1, mask, factor)
    Gamma2 = rescale_odors(Gamma2, ~mask, factor)
    return Gamma1, Gamma2, mask
