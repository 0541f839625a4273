"""
Tuning-width analysis for receptor sensing matrices.

Relates how broadly a receptor responds across odors to how much its optimal
abundance moves when the environment changes.
"""

import numpy as np
from typing import Dict


def compute_ipr(responses: np.ndarray) -> np.ndarray:
    """
    Participation ratio of each receptor's response profile.

    For a row v of |S|:

        IPR(v) = (Σᵢ vᵢ²)² / Σᵢ vᵢ⁴

    ranging from 1 (responds to a single odor) to N (responds equally to
    all odors). Broadly tuned receptors have high IPR.

    Parameters:
        responses: [M, N] sensing matrix or a single [N] profile

    Returns:
        [M] array of IPR values (a float for a single profile);
        receptors with an all-zero profile get nan
    """
    responses = np.abs(np.asarray(responses, dtype=float))
    single = responses.ndim == 1
    responses = np.atleast_2d(responses)

    second = np.sum(responses ** 2, axis=1)
    fourth = np.sum(responses ** 4, axis=1)
    with np.errstate(divide='ignore', invalid='ignore'):
        ipr = np.where(fourth > 0, second ** 2 / fourth, np.nan)

    return float(ipr[0]) if single else ipr


def analyze_population_tuning(S: np.ndarray, verbose: bool = False) -> Dict:
    """
    Summarize the tuning breadth of a receptor population.

    Parameters:
        S: [M, N] sensing matrix
        verbose: Print a short report

    Returns:
        Dictionary with statistics of the per-receptor IPR
    """
    ipr = compute_ipr(S)
    n_odors = np.atleast_2d(S).shape[1]

    stats = {
        'mean': np.nanmean(ipr),
        'std': np.nanstd(ipr),
        'median': np.nanmedian(ipr),
        'min': np.nanmin(ipr),
        'max': np.nanmax(ipr),
        'mean_fraction': np.nanmean(ipr) / n_odors,
        'all_values': ipr,
    }

    if verbose:
        print(f"  Receptor IPR: {stats['mean']:.2f} ± {stats['std']:.2f} "
              f"(range [{stats['min']:.2f}, {stats['max']:.2f}] of {n_odors} odors)")

    return stats


def binned_changes(values: np.ndarray, changes: np.ndarray, n_bins: int = 3) -> Dict:
    """
    Median and spread of |ΔK| in equal-width bins of a tuning measure.

    Parameters:
        values: Tuning measure per receptor (width σ or IPR), pooled over samples
        changes: ΔK per receptor, same shape as values
        n_bins: Number of bins spanning [min(values), max(values)]

    Returns:
        Dictionary with bin edges, centers, counts, median and std of |ΔK|
        (nan for empty bins)
    """
    values = np.asarray(values, dtype=float).ravel()
    changes = np.abs(np.asarray(changes, dtype=float).ravel())
    if values.shape != changes.shape:
        raise ValueError(f"values and changes must match, got {values.shape} and {changes.shape}")
    if values.size == 0:
        raise ValueError("Need at least one value to bin")

    edges = np.linspace(values.min(), values.max() + np.finfo(float).eps, n_bins + 1)
    bin_index = np.clip(np.digitize(values, edges) - 1, 0, n_bins - 1)

    medians = np.full(n_bins, np.nan)
    stds = np.full(n_bins, np.nan)
    counts = np.zeros(n_bins, dtype=int)
    for i in range(n_bins):
        in_bin = changes[bin_index == i]
        counts[i] = in_bin.size
        if in_bin.size:
            medians[i] = np.median(in_bin)
            stds[i] = np.std(in_bin)

    return {
        'edges': edges,
        'centers': 0.5 * (edges[:-1] + edges[1:]),
        'counts': counts,
        'median': medians,
        'std': stds,
    }
