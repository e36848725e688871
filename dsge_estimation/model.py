"""
Model Interface
===============

Capability interface consumed by the estimation stages, plus a state-space
base class that evaluates the posterior with the Kalman filter.

The sampler and the mode/Hessian stage depend only on PosteriorModel:
    - parameters / num_parameters / num_parameters_free
    - num_states_augmented / num_shocks_exogenous (sizes of saved matrices)
    - posterior(params, data) -> PosteriorEvaluation

posterior() never raises for infeasible parameter vectors (out of bounds,
no stable solution, singular filter); it returns posterior = -inf instead.
"""

import numpy as np
from abc import ABC, abstractmethod
from typing import List, NamedTuple, Optional, Tuple
import warnings

from .kalman import KalmanFilter
from .priors import Prior, create_prior


class StateSpace(NamedTuple):
    """State-space matrices of a solved model."""
    TTT: np.ndarray   # transition (n_s x n_s)
    RRR: np.ndarray   # shock loading (n_s x n_eps)
    CCC: np.ndarray   # state constant (n_s,)
    ZZ: np.ndarray    # measurement (n_y x n_s)
    DD: np.ndarray    # measurement constant (n_y,)
    QQ: np.ndarray    # shock covariance (n_eps x n_eps)
    EE: Optional[np.ndarray] = None   # measurement error covariance


class PosteriorEvaluation(NamedTuple):
    """Result of evaluating the posterior at one parameter vector."""
    posterior: float
    likelihood: float
    mats: Optional[StateSpace] = None
    zend: Optional[np.ndarray] = None

    @property
    def feasible(self) -> bool:
        return self.posterior > -np.inf

    @classmethod
    def infeasible(cls) -> 'PosteriorEvaluation':
        return cls(-np.inf, -np.inf)


class Parameter:
    """A model parameter: value, prior, bounds and whether it is fixed."""

    def __init__(self, name: str, value: float, prior: Optional[Prior] = None,
                 fixed: bool = False, bounds: Optional[Tuple[float, float]] = None,
                 description: str = ''):
        self.name = name
        self.value = float(value)
        self.prior = prior
        self.fixed = fixed
        self.description = description

        if bounds is None:
            bounds = (prior.lower, prior.upper) if prior is not None else (-np.inf, np.inf)
        self.bounds = (float(bounds[0]), float(bounds[1]))

    def log_prior(self, x: float) -> float:
        if not self.bounds[0] <= x <= self.bounds[1]:
            return -np.inf
        if self.prior is None:
            return 0.0
        return self.prior.log_pdf(x)

    def __repr__(self):
        status = 'fixed' if self.fixed else 'free'
        return f"Parameter({self.name}={self.value:.4f}, {status})"


class PosteriorModel(ABC):
    """Capability interface for models estimated by Metropolis-Hastings."""

    name = 'Posterior model'

    @property
    @abstractmethod
    def parameters(self) -> List[Parameter]:
        """Ordered list of model parameters."""

    @property
    @abstractmethod
    def num_states_augmented(self) -> int:
        """Number of states (rows of TTT)."""

    @property
    @abstractmethod
    def num_shocks_exogenous(self) -> int:
        """Number of structural shocks (columns of RRR)."""

    @abstractmethod
    def posterior(self, params: np.ndarray, data: np.ndarray) -> PosteriorEvaluation:
        """Evaluate log posterior, log likelihood and state-space matrices."""

    @property
    def num_parameters(self) -> int:
        return len(self.parameters)

    @property
    def num_parameters_free(self) -> int:
        return int(np.sum(self.free_mask))

    @property
    def free_mask(self) -> np.ndarray:
        return np.array([not p.fixed for p in self.parameters], dtype=bool)

    @property
    def param_names(self) -> List[str]:
        return [p.name for p in self.parameters]

    @property
    def bounds(self) -> np.ndarray:
        """Parameter bounds (n_params x 2)."""
        return np.array([p.bounds for p in self.parameters], dtype=float)

    def parameter_values(self) -> np.ndarray:
        return np.array([p.value for p in self.parameters], dtype=float)

    def update(self, values: np.ndarray):
        """Write a parameter vector into the model (fixed parameters are kept)."""
        values = self._check_length(values)
        for p, x in zip(self.parameters, values):
            if not p.fixed:
                p.value = float(x)

    def merge_fixed(self, values: np.ndarray) -> np.ndarray:
        """Replace the fixed entries of values by the fixed parameter values."""
        values = self._check_length(values)
        return np.where(self.free_mask, values, self.parameter_values())

    def describe(self) -> str:
        lines = [
            self.name,
            f"no. states:             {self.num_states_augmented}",
            f"no. exogenous shocks:   {self.num_shocks_exogenous}",
            f"no. parameters:         {self.num_parameters}",
            f"no. free parameters:    {self.num_parameters_free}",
        ]
        return "\n".join(lines)

    def _check_length(self, values: np.ndarray) -> np.ndarray:
        values = np.asarray(values, dtype=float).ravel()
        if values.shape[0] != self.num_parameters:
            raise ValueError(f"Expected {self.num_parameters} parameter values, "
                             f"got {values.shape[0]}")
        return values


class StateSpaceModel(PosteriorModel):
    """
    Linear state-space model with Kalman-filter likelihood.

    Posterior ∝ Prior × Likelihood
    - Prior: product of the free parameters' priors
    - Likelihood: Kalman filter on the matrices from state_space()
    """

    def __init__(self, name: str, parameters: List[Parameter]):
        self.name = name
        self._parameters = parameters

    @property
    def parameters(self) -> List[Parameter]:
        return self._parameters

    @abstractmethod
    def state_space(self, params: np.ndarray) -> StateSpace:
        """Map a parameter vector to state-space matrices."""

    def log_prior(self, params: np.ndarray) -> float:
        log_p = 0.0
        for p, x in zip(self.parameters, params):
            if not p.fixed:
                log_p += p.log_prior(x)
        return log_p

    def posterior(self, params: np.ndarray, data: np.ndarray) -> PosteriorEvaluation:
        params = self.merge_fixed(params)

        log_prior = self.log_prior(params)
        if not np.isfinite(log_prior):
            return PosteriorEvaluation.infeasible()

        try:
            mats = self.state_space(params)
            kf = KalmanFilter(mats.TTT, mats.RRR, mats.CCC, mats.QQ,
                              mats.ZZ, mats.DD, mats.EE)
            out = kf.filter(data)
        except (np.linalg.LinAlgError, ValueError) as e:
            warnings.warn(f"Model solution failed: {e}")
            return PosteriorEvaluation.infeasible()

        log_lik = out['log_likelihood']
        if not np.isfinite(log_lik):
            return PosteriorEvaluation.infeasible()

        return PosteriorEvaluation(log_prior + log_lik, log_lik, mats, out['zend'])


class AR1StateSpaceModel(StateSpaceModel):
    """
    Independent AR(1) latent processes observed with constants.

        s_{i,t} = rho_i * s_{i,t-1} + sigma_i * ε_{i,t}
        y_{i,t} = mu_i + s_{i,t}

    Parameters are ordered (rho_1, sigma_1, mu_1, rho_2, ...).
    """

    def __init__(self, n_series: int = 2, fixed: Tuple[str, ...] = ()):
        parameters = []
        for i in range(1, n_series + 1):
            parameters += [
                Parameter(f'rho_{i}', 0.5, create_prior('beta', mean=0.5, std=0.2),
                          bounds=(1e-4, 0.999), description='persistence'),
                Parameter(f'sigma_{i}', 1.0, create_prior('invgamma', s=1.0, nu=4),
                          bounds=(1e-4, 10.0), description='shock std'),
                Parameter(f'mu_{i}', 0.0, create_prior('normal', mean=0.0, std=2.0),
                          description='measurement constant'),
            ]
        for p in parameters:
            p.fixed = p.name in fixed

        super().__init__(f"AR(1) state-space model ({n_series} series)", parameters)
        self.n_series = n_series

    @property
    def num_states_augmented(self) -> int:
        return self.n_series

    @property
    def num_shocks_exogenous(self) -> int:
        return self.n_series

    def state_space(self, params: np.ndarray) -> StateSpace:
        theta = np.asarray(params, dtype=float).reshape(self.n_series, 3)
        rho, sigma, mu = theta[:, 0], theta[:, 1], theta[:, 2]
        n = self.n_series

        return StateSpace(
            TTT=np.diag(rho),
            RRR=np.eye(n),
            CCC=np.zeros(n),
            ZZ=np.eye(n),
            DD=mu.copy(),
            QQ=np.diag(sigma**2),
        )

    def simulate(self, n_periods: int, rng: np.random.Generator,
                 params: Optional[np.ndarray] = None) -> np.ndarray:
        """
        Simulate observables from the model.

        Args:
            n_periods: Number of periods
            rng: Random number generator
            params: Parameter vector (defaults to current values)

        Returns:
            Simulated data (n_periods x n_series)
        """
        if params is None:
            params = self.parameter_values()
        mats = self.state_space(params)
        shock_std = np.sqrt(np.diag(mats.QQ))

        s = np.zeros(self.n_series)
        y = np.zeros((n_periods, self.n_series))
        for t in range(n_periods):
            s = mats.CCC + mats.TTT @ s + mats.RRR @ (shock_std * rng.standard_normal(self.n_series))
            y[t] = mats.DD + mats.ZZ @ s

        return y


if __name__ == '__main__':
    print("Testing AR(1) state-space model...")

    model = AR1StateSpaceModel(n_series=2)
    print(f"\n{model.describe()}")

    rng = np.random.default_rng(42)
    truth = np.array([0.8, 0.5, 1.0, 0.3, 1.5, -0.5])
    data = model.simulate(200, rng, truth)

    ev = model.posterior(truth, data)
    print(f"\nLog posterior at truth: {ev.posterior:.2f}")
    print(f"Log likelihood at truth: {ev.likelihood:.2f}")

    bad = truth.copy()
    bad[0] = 1.5
    print(f"Log posterior out of bounds: {model.posterior(bad, data).posterior}")

    print("\nAll tests passed!")
