"""
Kalman Filter Implementation
=============================

Kalman filter for linear Gaussian state-space models.
Computes the likelihood used by the posterior evaluator.

State-space form:
    s_t = CCC + TTT * s_{t-1} + RRR * ε_t      (State equation)
    y_t = DD + ZZ * s_t + u_t                  (Measurement equation)

where:
    s_t: State vector (n_s x 1)
    y_t: Observed variables (n_y x 1)
    ε_t ~ N(0, QQ): Structural shocks
    u_t ~ N(0, EE): Measurement errors
"""

import numpy as np
from typing import Dict, Optional
from scipy import linalg

from .utils import symmetrize


class KalmanFilter:
    """Kalman filter for state-space models."""

    def __init__(self, TTT: np.ndarray, RRR: np.ndarray, CCC: np.ndarray,
                 QQ: np.ndarray, ZZ: np.ndarray, DD: np.ndarray,
                 EE: Optional[np.ndarray] = None):
        """
        Initialize Kalman filter.

        Args:
            TTT: State transition matrix (n_s x n_s)
            RRR: Shock loading matrix (n_s x n_eps)
            CCC: State constant (n_s,)
            QQ: Shock covariance matrix (n_eps x n_eps)
            ZZ: Measurement matrix (n_y x n_s)
            DD: Measurement constant (n_y,)
            EE: Measurement error covariance (n_y x n_y), optional
        """
        self.TTT = TTT
        self.RRR = RRR
        self.CCC = np.ravel(CCC)
        self.QQ = QQ
        self.ZZ = ZZ
        self.DD = np.ravel(DD)
        self.EE = EE if EE is not None else np.zeros((ZZ.shape[0], ZZ.shape[0]))

        self.n_s = TTT.shape[0]
        self.n_y = ZZ.shape[0]

    def initial_conditions(self) -> tuple:
        """
        Unconditional mean and covariance of the state.

        The covariance solves the discrete Lyapunov equation
        P = TTT * P * TTT' + RRR * QQ * RRR'.
        """
        s0 = np.linalg.solve(np.eye(self.n_s) - self.TTT, self.CCC)
        P0 = linalg.solve_discrete_lyapunov(self.TTT, self.RRR @ self.QQ @ self.RRR.T)
        return s0, symmetrize(P0)

    def filter(self, y: np.ndarray, s0: Optional[np.ndarray] = None,
               P0: Optional[np.ndarray] = None) -> Dict:
        """
        Run Kalman filter forward pass.

        Args:
            y: Observed data (T x n_y); rows with NaN are skipped
            s0: Initial state (n_s,), None for the unconditional mean
            P0: Initial state covariance (n_s x n_s), None for the
                unconditional covariance

        Returns:
            Dictionary with 'log_likelihood', 'zend' (filtered state at the
            last period) and 'Pend' (its covariance)
        """
        if s0 is None or P0 is None:
            s_init, P_init = self.initial_conditions()
            s0 = s_init if s0 is None else s0
            P0 = P_init if P0 is None else P0

        s = np.ravel(s0).astype(float)
        P = np.asarray(P0, dtype=float)
        shock_cov = self.RRR @ self.QQ @ self.RRR.T

        log_lik = 0.0
        for t in range(y.shape[0]):
            # Time update
            s = self.CCC + self.TTT @ s
            P = symmetrize(self.TTT @ P @ self.TTT.T + shock_cov)

            y_t = y[t, :]
            observed = ~np.isnan(y_t)
            if not np.any(observed):
                continue

            ZZ = self.ZZ[observed, :]
            v = y_t[observed] - ZZ @ s - self.DD[observed]
            F = ZZ @ P @ ZZ.T + self.EE[np.ix_(observed, observed)]

            sign, logdet = np.linalg.slogdet(F)
            if sign <= 0:
                raise np.linalg.LinAlgError(f"Non-positive definite innovation variance at t={t}")

            F_inv_v = np.linalg.solve(F, v)
            log_lik += -0.5 * (logdet + v @ F_inv_v + observed.sum() * np.log(2 * np.pi))

            # Measurement update
            K = P @ ZZ.T @ np.linalg.inv(F)
            s = s + K @ v
            P = symmetrize(P - K @ ZZ @ P)

        return {
            'log_likelihood': float(log_lik),
            'zend': s,
            'Pend': P,
        }


def kalman_likelihood(y: np.ndarray, TTT: np.ndarray, RRR: np.ndarray, CCC: np.ndarray,
                      QQ: np.ndarray, ZZ: np.ndarray, DD: np.ndarray,
                      EE: Optional[np.ndarray] = None) -> float:
    """
    Compute log-likelihood using Kalman filter (convenience function).

    Args:
        y: Observed data (T x n_y)
        TTT, RRR, CCC, QQ: State equation matrices
        ZZ, DD, EE: Measurement equation matrices

    Returns:
        Log-likelihood value
    """
    kf = KalmanFilter(TTT, RRR, CCC, QQ, ZZ, DD, EE)
    return kf.filter(y)['log_likelihood']
