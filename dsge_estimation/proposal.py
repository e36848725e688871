"""
Proposal Distribution
=====================

Degenerate multivariate normal used as the Metropolis-Hastings proposal.

The proposal is centered at the posterior mode and its covariance is the
inverse of the Hessian of the negative log posterior. The Hessian is often
singular (fixed or weakly identified parameters), so the inverse is taken
via eigenvalue decomposition keeping only eigenvalues above a threshold:

    H = U * diag(S) * U'
    S_inv[i, i] = 1 / S[i]   if S[i] > tol, else 0
    sigma = U * sqrt(S_inv)

so that sigma * sigma' is the pseudo-inverse of H on its well-determined
subspace. Draws are mu + cc * sigma * z with z ~ N(0, I); directions with
flat curvature get no variance.
"""

import numpy as np
from scipy import linalg
from typing import Dict, Optional
import warnings

from .utils import symmetrize


EIGENVALUE_TOL = 1e-6


class DegenerateMvNormal:
    """Multivariate normal N(mu, sigma * sigma') of possibly reduced rank."""

    def __init__(self, mu: np.ndarray, sigma: np.ndarray, rank: Optional[int] = None):
        """
        Initialize from a mean and a covariance factor.

        Args:
            mu: Mean vector (n,)
            sigma: Covariance factor (n x n), covariance = sigma @ sigma.T
            rank: Rank of the distribution (computed from sigma if None)
        """
        self.mu = np.array(mu, dtype=float).ravel()
        self.sigma = np.asarray(sigma, dtype=float)

        n = self.mu.shape[0]
        if self.sigma.shape != (n, n):
            raise ValueError(f"Covariance factor shape {self.sigma.shape} does not match "
                             f"mean length {n}")

        self.rank = int(np.linalg.matrix_rank(self.sigma)) if rank is None else int(rank)
        if not 0 <= self.rank <= n:
            raise ValueError(f"Rank {self.rank} outside [0, {n}]")

    def __len__(self) -> int:
        return self.mu.shape[0]

    def __repr__(self):
        return f"DegenerateMvNormal(n={len(self)}, rank={self.rank})"

    @classmethod
    def from_hessian(cls, mode: np.ndarray, hessian: np.ndarray,
                     tol: float = EIGENVALUE_TOL) -> 'DegenerateMvNormal':
        """
        Build the proposal from the mode and the Hessian at the mode.

        Args:
            mode: Posterior mode (n,)
            hessian: Hessian of the negative log posterior (n x n)
            tol: Eigenvalues at or below tol are treated as zero

        Returns:
            DegenerateMvNormal centered at mode
        """
        mode = np.asarray(mode, dtype=float).ravel()
        hessian = np.asarray(hessian, dtype=float)

        n = mode.shape[0]
        if hessian.shape != (n, n):
            raise ValueError(f"Hessian shape {hessian.shape} does not match mode length {n}")

        # Eigenvalues come back in ascending order, so the significant ones
        # are the last `rank` entries
        S_diag, U = linalg.eigh(symmetrize(hessian))
        rank = int(np.sum(S_diag > tol))

        S_inv = np.zeros(n)
        S_inv[n - rank:] = 1.0 / S_diag[n - rank:]

        sigma = U * np.sqrt(S_inv)
        return cls(mode, sigma, rank)

    @classmethod
    def from_covariance(cls, mean: np.ndarray, covariance: np.ndarray,
                        tol: float = EIGENVALUE_TOL) -> 'DegenerateMvNormal':
        """
        Build the proposal directly from a covariance matrix.

        Used to test the sampler with a precomputed covariance instead of
        the eigen-filtered inverse Hessian.

        Args:
            mean: Mean vector (n,)
            covariance: Positive semi-definite covariance (n x n)
            tol: Eigenvalues at or below tol are treated as zero

        Returns:
            DegenerateMvNormal with sigma @ sigma.T == covariance
        """
        mean = np.asarray(mean, dtype=float).ravel()
        covariance = np.asarray(covariance, dtype=float)

        n = mean.shape[0]
        if covariance.shape != (n, n):
            raise ValueError(f"Covariance shape {covariance.shape} does not match "
                             f"mean length {n}")

        S_diag, U = linalg.eigh(symmetrize(covariance))
        S_diag = np.clip(S_diag, 0.0, None)
        sigma = U * np.sqrt(S_diag)

        return cls(mean, sigma, int(np.sum(S_diag > tol)))

    def sample(self, rng: np.random.Generator, cc: float = 1.0,
               bounds: Optional[np.ndarray] = None) -> np.ndarray:
        """
        Draw mu + cc * sigma * z with z ~ N(0, I).

        Args:
            rng: Random source providing standard_normal(n)
            cc: Jump size scaling the covariance factor
            bounds: Optional (n x 2) array of lower/upper bounds; draws are
                    repeated until they fall inside

        Returns:
            Parameter vector (n,)
        """
        n = len(self)
        while True:
            draw = self.mu + cc * (self.sigma @ rng.standard_normal(n))
            if bounds is None or in_bounds(draw, bounds):
                return draw

    def recenter(self, new_mean: np.ndarray):
        """Move the mean to new_mean (covariance factor unchanged)."""
        self.mu = np.array(new_mean, dtype=float).ravel()

    def covariance(self) -> np.ndarray:
        return self.sigma @ self.sigma.T

    def logpdf(self, x: np.ndarray) -> float:
        """
        Log density on the supported subspace.

        Uses the pseudo-inverse and pseudo-determinant of the covariance;
        the density is undefined off the subspace and is evaluated on the
        projection of x - mu.
        """
        cov = self.covariance()
        S_diag, U = linalg.eigh(cov)
        keep = S_diag > EIGENVALUE_TOL * max(1.0, np.max(np.abs(S_diag)))

        dev = U[:, keep].T @ (np.asarray(x, dtype=float) - self.mu)
        quad = np.sum(dev**2 / S_diag[keep])
        log_pdet = np.sum(np.log(S_diag[keep]))

        return float(-0.5 * (keep.sum() * np.log(2 * np.pi) + log_pdet + quad))


def in_bounds(x: np.ndarray, bounds: np.ndarray) -> bool:
    """True if every x[i] lies in [bounds[i, 0], bounds[i, 1]]."""
    bounds = np.asarray(bounds, dtype=float)
    return bool(np.all(x >= bounds[:, 0]) and np.all(x <= bounds[:, 1]))


def check_rank(propdist: DegenerateMvNormal, num_free: int) -> bool:
    """
    Compare the proposal rank to the number of free parameters.

    A mismatch means the Hessian is flat in some free direction, so those
    directions are shut down in the proposal. It is reported, not corrected.

    Returns:
        True if rank == num_free
    """
    if propdist.rank != num_free:
        warnings.warn(f"Proposal rank {propdist.rank} differs from the number of free "
                      f"parameters {num_free}: shutting down "
                      f"{abs(num_free - propdist.rank)} dimension(s)")
        return False
    return True


def hessian_eigen_summary(hessian: np.ndarray, tol: float = EIGENVALUE_TOL) -> Dict:
    """
    Classify the eigenvalues of a Hessian.

    Args:
        hessian: Hessian of the negative log posterior (n x n)
        tol: Significance threshold

    Returns:
        Dictionary with eigenvalues (ascending), rank (count of significant
        eigenvalues), counts of flat (|S| <= tol) and negative (S < -tol)
        eigenvalues, and the condition number of the significant block
    """
    S_diag = linalg.eigh(symmetrize(np.asarray(hessian, dtype=float)), eigvals_only=True)

    return {
        'eigenvalues': S_diag,
        'rank': int(np.sum(S_diag > tol)),
        'n_flat': int(np.sum(np.abs(S_diag) <= tol)),
        'n_negative': int(np.sum(S_diag < -tol)),
        'condition': float(S_diag[-1] / S_diag[S_diag > tol][0]) if np.any(S_diag > tol) else np.inf,
    }
