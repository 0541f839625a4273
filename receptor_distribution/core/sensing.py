"""
Random receptor sensing matrices with controllable tuning width.
"""

import numpy as np
from typing import Optional, Tuple, Union

from .environments import compute_rbf_kernel


def _draw_widths(
    n_receptors: int,
    tuning: Union[float, Tuple[float, float]],
    rng: np.random.RandomState
) -> np.ndarray:
    if np.isscalar(tuning):
        widths = np.full(n_receptors, float(tuning))
    else:
        low, high = tuning
        if high < low:
            raise ValueError(f"tuning range must be increasing, got {tuning}")
        widths = rng.uniform(low, high, n_receptors)

    if np.any(widths <= 0):
        raise ValueError(f"tuning widths must be positive, got {tuning}")
    return widths


def generate_random_sensing(
    n_receptors: int,
    n_odors: int,
    tuning: Union[float, Tuple[float, float]],
    snr: float,
    rng: Optional[np.random.RandomState] = None
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Generate a random sensing matrix.

    Each receptor places the odors in its own random order along a unit
    axis and responds with a Gaussian profile of width σ around a random
    preferred position. Small σ gives narrowly tuned receptors that respond
    to a handful of odors; σ ≳ 0.5 gives broadly tuned ones. Gaussian noise
    of standard deviation 1/snr (relative to the peak response of 1) is
    added to every entry.

    Args:
        n_receptors: Number of receptor types M
        n_odors: Number of odor channels N
        tuning: Width σ, either shared by all receptors or a (low, high)
                range from which each receptor draws uniformly
        snr: Signal-to-noise ratio of the responses
        rng: Random state

    Returns:
        (S, sigmas): sensing matrix of shape (M, N) and the width used for
                     each receptor, shape (M,)
    """
    if n_receptors < 1 or n_odors < 1:
        raise ValueError(f"Need at least one receptor and one odor, got {n_receptors}×{n_odors}")
    if snr <= 0:
        raise ValueError(f"snr must be positive, got {snr}")
    if rng is None:
        rng = np.random.RandomState()

    sigmas = _draw_widths(n_receptors, tuning, rng)
    axis = np.linspace(0, 1, n_odors)

    S = np.zeros((n_receptors, n_odors))
    for a in range(n_receptors):
        positions = axis[rng.permutation(n_odors)]
        center = rng.uniform(0, 1)
        S[a] = compute_rbf_kernel(np.array([center]), positions, sigmas[a])[0]

    S += rng.randn(n_receptors, n_odors) / snr
    return S, sigmas


def normalize_by_background(S: np.ndarray, bkg_std: np.ndarray) -> np.ndarray:
    """
    Express responses in units of each receptor's background noise.

    Args:
        S: Raw responses, shape (M, N)
        bkg_std: Standard deviation of background activity per receptor, shape (M,)

    Returns:
        S with row a divided by bkg_std[a]
    """
    S = np.asarray(S, dtype=float)
    bkg_std = np.asarray(bkg_std, dtype=float)
    if bkg_std.shape != (S.shape[0],):
        raise ValueError(f"bkg_std must have length {S.shape[0]}, got shape {bkg_std.shape}")
    if np.any(bkg_std <= 0):
        raise ValueError("Background standard deviations must be positive")
    return S / bkg_std[:, None]
