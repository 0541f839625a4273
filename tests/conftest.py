import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import numpy as np
import pytest

from receptor_distribution.core.environments import generate_environment
from receptor_distribution.core.sensing import generate_random_sensing


@pytest.fixture()
def diagonal_problem():
    """One receptor per odor, uncorrelated odors with variances 1, 4, 9."""
    S = np.eye(3)
    Gamma = np.diag([1.0, 4.0, 9.0])
    return S, Gamma


@pytest.fixture()
def random_problem():
    """A 10 × 10 random sensing matrix in a random correlated environment."""
    rng = np.random.RandomState(1)
    S, _ = generate_random_sensing(10, 10, (0.2, 0.8), 200.0, rng)
    Gamma = generate_environment('rnd_corr', 10, rng, dof=30)
    return 5.0 * S, Gamma
