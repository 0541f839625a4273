"""
Error types raised by the receptor distribution solver.
"""

import numpy as np
from typing import Optional


class InvalidInputError(ValueError):
    """Malformed sensing matrix, environment covariance or neuron budget."""


class ConvergenceError(RuntimeError):
    """
    The optimizer ran out of iterations or evaluations before reaching the
    requested tolerances.

    Attributes:
        K: Best allocation found before giving up (None if nothing usable)
        residual: Achieved sum(K) - Ktot for that allocation (nan if unknown)
    """

    def __init__(
        self,
        message: str,
        K: Optional[np.ndarray] = None,
        residual: float = np.nan
    ):
        super().__init__(message)
        self.K = None if K is None else np.array(K, dtype=float)
        self.residual = float(residual)
