"""
Information transmitted by a receptor population about odor concentrations.

=============================================================================
NOISE MODEL
=============================================================================

Receptor type a is expressed in K_a olfactory sensory neurons. Averaging over
those neurons, its response to an odor concentration vector c is

    r_a = s_a · c + η_a / √K_a,      η_a ~ N(0, 1)

where s_a is row a of the sensing matrix S (already normalized by the
background noise of the receptor, so the per-neuron noise has unit variance).
For Gaussian odor statistics c ~ N(0, Γ) the mutual information between c and
the responses r is

    I(K) = ½ log det(I + diag(√K) Q diag(√K)),      Q = S Γ Sᵀ

measured in nats. Writing Q = Vᵀ V with V of shape (rank, M):

    I(K)        = ½ log det B,     B = I + V diag(K) Vᵀ
    ∂I/∂K_a     = ½ v_aᵀ B⁻¹ v_a
    ∂²I/∂K_a∂K_b = -½ (v_aᵀ B⁻¹ v_b)²

Since B ⪰ I, nothing diverges at K_a = 0: an unused receptor type adds zero
information and its gradient tends to the finite limit ½ Q_aa. The objective is
concave in K.

=============================================================================
"""

import numpy as np
from scipy import linalg
from typing import Tuple

from .exceptions import InvalidInputError


SYMMETRY_RTOL = 1e-8   # relative asymmetry tolerated in Γ
PSD_RTOL = 1e-10       # relative size of negative eigenvalues tolerated in Γ
RANK_RTOL = 1e-12      # eigenvalues of Q below this fraction of the largest are dropped


# =============================================================================
# INPUT CHECKS
# =============================================================================

def check_inputs(S, Gamma) -> Tuple[np.ndarray, np.ndarray]:
    """
    Validate a sensing matrix and an environment covariance.

    Parameters
    ----------
    S : array_like, shape (M, N)
        Sensing matrix (receptor types × odor channels)
    Gamma : array_like, shape (N, N)
        Odor concentration covariance

    Returns
    -------
    S, Gamma : np.ndarray
        Float copies; Gamma is exactly symmetrized.

    Raises
    ------
    InvalidInputError
        Wrong shapes, non-finite entries, asymmetric or indefinite Gamma.
    """
    try:
        S = np.array(S, dtype=float)
        Gamma = np.array(Gamma, dtype=float)
    except (TypeError, ValueError) as err:
        raise InvalidInputError(f"Inputs must be numeric arrays: {err}") from err

    if S.ndim != 2 or S.shape[0] == 0 or S.shape[1] == 0:
        raise InvalidInputError(f"Sensing matrix must be a non-empty 2-D array, got shape {S.shape}")
    if Gamma.ndim != 2 or Gamma.shape[0] != Gamma.shape[1]:
        raise InvalidInputError(f"Environment covariance must be square, got shape {Gamma.shape}")
    if S.shape[1] != Gamma.shape[0]:
        raise InvalidInputError(
            f"Sensing matrix has {S.shape[1]} odor channels but covariance is "
            f"{Gamma.shape[0]}×{Gamma.shape[1]}"
        )
    if not np.all(np.isfinite(S)):
        raise InvalidInputError("Sensing matrix contains NaN or Inf entries")
    if not np.all(np.isfinite(Gamma)):
        raise InvalidInputError("Environment covariance contains NaN or Inf entries")

    scale = max(np.max(np.abs(Gamma)), np.finfo(float).tiny)
    if np.max(np.abs(Gamma - Gamma.T)) > SYMMETRY_RTOL * scale:
        raise InvalidInputError("Environment covariance is not symmetric")
    Gamma = 0.5 * (Gamma + Gamma.T)

    eigvals = linalg.eigvalsh(Gamma)
    if eigvals[0] < -PSD_RTOL * max(np.max(np.abs(eigvals)), np.finfo(float).tiny):
        raise InvalidInputError(
            f"Environment covariance is not positive semidefinite "
            f"(smallest eigenvalue {eigvals[0]:.3g})"
        )

    return S, Gamma


def _signal_factor(Q: np.ndarray) -> np.ndarray:
    """Return V with VᵀV = Q, keeping only the numerically nonzero modes."""
    n_receptors = Q.shape[0]
    w, U = linalg.eigh(Q)
    top = w[-1]
    if top <= 0:
        return np.zeros((0, n_receptors))

    keep = w > RANK_RTOL * top
    return np.sqrt(w[keep])[:, None] * U[:, keep].T


# =============================================================================
# OBJECTIVE
# =============================================================================

class ReceptorInformation:
    """
    Mutual information between odor concentrations and receptor responses,
    as a function of the receptor allocation K.

    The signal covariance Q = S Γ Sᵀ and its factor are computed once, so
    repeated evaluations only cost a Cholesky factorization of a
    (rank × rank) matrix.

    Attributes:
        S: Sensing matrix, shape (M, N)
        Gamma: Environment covariance, shape (N, N)
        Q: Receptor signal covariance S Γ Sᵀ, shape (M, M)
        factor: Matrix V with VᵀV = Q, shape (rank, M)
    """

    def __init__(self, S, Gamma):
        self.S, self.Gamma = check_inputs(S, Gamma)

        Q = self.S @ self.Gamma @ self.S.T
        self.Q = 0.5 * (Q + Q.T)
        self.factor = _signal_factor(self.Q)

    @property
    def n_receptors(self) -> int:
        return self.S.shape[0]

    @property
    def n_odors(self) -> int:
        return self.S.shape[1]

    @property
    def rank(self) -> int:
        return self.factor.shape[0]

    def _clamp(self, K) -> np.ndarray:
        K = np.asarray(K, dtype=float)
        if K.shape != (self.n_receptors,):
            raise InvalidInputError(
                f"Allocation must have shape ({self.n_receptors},), got {K.shape}"
            )
        if not np.all(np.isfinite(K)):
            raise InvalidInputError("Allocation contains NaN or Inf entries")
        return np.maximum(K, 0.0)

    def _factorize(self, K: np.ndarray):
        V = self.factor
        B = np.eye(self.rank) + (V * K) @ V.T
        return linalg.cho_factor(B, lower=True)

    def value(self, K) -> float:
        """Information I(K) in nats. Negative entries of K count as zero."""
        K = self._clamp(K)
        if self.rank == 0:
            return 0.0
        chol, _ = self._factorize(K)
        # ½ log det B = Σ log L_ii
        return float(np.sum(np.log(np.diag(chol))))

    def gradient(self, K) -> np.ndarray:
        return self.value_and_gradient(K)[1]

    def value_and_gradient(self, K) -> Tuple[float, np.ndarray]:
        """
        Information and its gradient from a single factorization.

        Returns
        -------
        value : float
        gradient : np.ndarray, shape (M,)
            ½ v_aᵀ B⁻¹ v_a for each receptor type; finite at K_a = 0.
        """
        K = self._clamp(K)
        if self.rank == 0:
            return 0.0, np.zeros(self.n_receptors)

        cf = self._factorize(K)
        V = self.factor
        X = linalg.cho_solve(cf, V)
        value = float(np.sum(np.log(np.diag(cf[0]))))
        gradient = 0.5 * np.sum(V * X, axis=0)
        return value, gradient

    def value_and_gain_matrix(self, K) -> Tuple[float, np.ndarray]:
        """
        Information and the gain matrix W = Vᵀ B⁻¹ V.

        The gradient is ½ diag(W) and the Hessian is -½ W∘W, so W carries
        all first- and second-order information about the objective.
        """
        K = self._clamp(K)
        if self.rank == 0:
            return 0.0, np.zeros((self.n_receptors, self.n_receptors))

        cf = self._factorize(K)
        V = self.factor
        W = V.T @ linalg.cho_solve(cf, V)
        value = float(np.sum(np.log(np.diag(cf[0]))))
        return value, 0.5 * (W + W.T)

    def gain_matrix(self, K) -> np.ndarray:
        return self.value_and_gain_matrix(K)[1]

    def hessian(self, K) -> np.ndarray:
        W = self.gain_matrix(K)
        return -0.5 * W ** 2

    def gains_at_zero(self) -> np.ndarray:
        """Gradient at K = 0, i.e. ½ Q_aa restricted to the retained modes."""
        return 0.5 * np.sum(self.factor ** 2, axis=0)


def receptor_information(S, Gamma, K) -> Tuple[float, np.ndarray]:
    """
    Evaluate the information objective and its gradient.

    Parameters
    ----------
    S : array_like, shape (M, N)
    Gamma : array_like, shape (N, N)
    K : array_like, shape (M,)
        Neurons per receptor type; entries must be >= 0 (negatives are
        clamped to zero).

    Returns
    -------
    value : float
        Information in nats
    gradient : np.ndarray, shape (M,)
    """
    return ReceptorInformation(S, Gamma).value_and_gradient(K)
