"""
Posterior Mode and Hessian
==========================

Mode-finding and Hessian stages that feed the Metropolis-Hastings proposal.

- ModeSource: where the mode comes from (a given vector, a file, or a
  reoptimization starting from an initial guess), resolved once.
- find_mode: calls the optimizer repeatedly until it stops for a reason
  other than running out of iterations, saving the mode after every call.
- numerical_hessian / resolve_hessian: Hessian of the negative log
  posterior at the mode, recomputed or read from a precomputed file.
- build_proposal: degenerate normal proposal from mode and Hessian.
"""

import numpy as np
from scipy import optimize
from typing import NamedTuple, Optional, Tuple, Union
import time

from .data_loader import load_array, save_array
from .model import PosteriorModel
from .proposal import DegenerateMvNormal, check_rank
from .settings import EstimationSettings
from .utils import Verbosity, report


class OptimizationResult(NamedTuple):
    """Outcome of one optimizer call."""
    mode: np.ndarray
    converged: bool      # False only if the iteration limit was exhausted
    iterations: int
    posterior: float


class ScipyModeOptimizer:
    """
    Posterior mode search with scipy.optimize.minimize.

    Minimizes the negative log posterior over the free parameters; fixed
    parameters stay at their values in the initial guess.
    """

    def __init__(self, model: PosteriorModel, method: str = 'L-BFGS-B',
                 infeasible_value: float = 1e10):
        self.model = model
        self.method = method
        self.infeasible_value = infeasible_value

    def optimize(self, initial_guess: np.ndarray, data: np.ndarray,
                 tolerance: float, max_iterations: int) -> OptimizationResult:
        """
        Run one optimizer call.

        Args:
            initial_guess: Starting parameter vector (all parameters)
            data: Observed data (T x n_obs)
            tolerance: Convergence tolerance
            max_iterations: Iteration limit for this call

        Returns:
            OptimizationResult
        """
        initial_guess = np.asarray(initial_guess, dtype=float).copy()
        free = self.model.free_mask

        def full_vector(x_free):
            params = initial_guess.copy()
            params[free] = x_free
            return params

        def neg_log_posterior(x_free):
            post = self.model.posterior(full_vector(x_free), data).posterior
            return -post if np.isfinite(post) else self.infeasible_value

        bounds = None
        if self.method in ('L-BFGS-B', 'TNC', 'SLSQP', 'Powell', 'trust-constr'):
            bounds = [(lo if np.isfinite(lo) else None, hi if np.isfinite(hi) else None)
                      for lo, hi in self.model.bounds[free]]

        result = optimize.minimize(
            neg_log_posterior,
            initial_guess[free],
            method=self.method,
            bounds=bounds,
            tol=tolerance,
            options={'maxiter': max_iterations}
        )

        iterations = int(getattr(result, 'nit', max_iterations))
        return OptimizationResult(
            mode=full_vector(result.x),
            converged=iterations < max_iterations,
            iterations=iterations,
            posterior=-float(result.fun),
        )


class ModeSource:
    """Where the posterior mode comes from."""

    PROVIDED = 'provided'
    FILE = 'file'
    REOPTIMIZE = 'reoptimize'

    def __init__(self, kind: str, vector: Optional[np.ndarray] = None,
                 path: Optional[str] = None, key: Optional[str] = None):
        if kind not in (self.PROVIDED, self.FILE, self.REOPTIMIZE):
            raise ValueError(f"Unknown mode source: {kind}")
        if vector is None and path is None:
            raise ValueError("A mode source needs a vector or a file path")
        self.kind = kind
        self.vector = None if vector is None else np.asarray(vector, dtype=float).ravel()
        self.path = path
        self.key = key

    @classmethod
    def provided(cls, vector: np.ndarray) -> 'ModeSource':
        return cls(cls.PROVIDED, vector=vector)

    @classmethod
    def from_file(cls, path: str, key: str = 'mode') -> 'ModeSource':
        return cls(cls.FILE, path=path, key=key)

    @classmethod
    def reoptimize(cls, initial_guess: Optional[np.ndarray] = None,
                   path: Optional[str] = None, key: str = 'params') -> 'ModeSource':
        """Reoptimize from a vector, or from a starting point stored in a file."""
        return cls(cls.REOPTIMIZE, vector=initial_guess, path=path, key=key)

    @classmethod
    def from_settings(cls, settings: EstimationSettings) -> 'ModeSource':
        """
        Default source implied by the settings.

        reoptimize=True starts from input_data/user/mode_in.h5 ('params');
        otherwise the mode is read from input_data/user/mode_in_optimized.h5
        ('mode').
        """
        if settings.reoptimize:
            return cls.reoptimize(path=settings.inpath('user', 'mode_in.h5'), key='params')
        return cls.from_file(settings.inpath('user', 'mode_in_optimized.h5'), key='mode')

    def load(self) -> np.ndarray:
        """The vector itself, or the vector read from the file."""
        if self.vector is not None:
            return self.vector.copy()
        return np.asarray(load_array(self.path, self.key), dtype=float).ravel()

    def __repr__(self):
        where = 'vector' if self.vector is not None else self.path
        return f"ModeSource({self.kind}, {where})"


def find_mode(model: PosteriorModel, data: np.ndarray, initial_guess: np.ndarray,
              settings: EstimationSettings, optimizer=None,
              verbose: Union[Verbosity, int, str] = Verbosity.LOW,
              mode_file: Optional[str] = None) -> Tuple[np.ndarray, dict]:
    """
    Refine the posterior mode until the optimizer converges.

    If an optimizer call stops only because it exceeded the maximum number
    of iterations, another call is made from where it stopped. The latest
    mode is written to mode_file after every call.

    Args:
        model: Model providing posterior()
        data: Observed data (T x n_obs)
        initial_guess: Starting parameter vector
        settings: Tolerance and iterations per call
        optimizer: Object with optimize(x0, data, tolerance, max_iterations)
                   (default ScipyModeOptimizer(model))
        verbose: Verbosity level
        mode_file: Output file (default rawpath('estimate', 'mode_out.h5'))

    Returns:
        (mode, info) where info has total_iterations, n_calls, elapsed, posterior
    """
    if optimizer is None:
        optimizer = ScipyModeOptimizer(model)
    if mode_file is None:
        mode_file = settings.rawpath('estimate', 'mode_out.h5')

    mode = np.asarray(initial_guess, dtype=float).copy()
    converged = False
    total_iterations = 0
    n_calls = 0
    posterior = -np.inf
    start = time.time()

    while not converged:
        out = optimizer.optimize(mode, data, settings.optimization_tol,
                                 settings.optimization_iterations)
        converged = out.converged
        total_iterations += out.iterations
        n_calls += 1
        mode = np.asarray(out.mode, dtype=float)
        posterior = out.posterior

        report(verbose, Verbosity.LOW, f"Total iterations completed: {total_iterations}")
        report(verbose, Verbosity.LOW, f"Optimization time elapsed: {time.time() - start:5.2f}")

        save_array(mode_file, 'mode', mode)

    model.update(mode)

    return mode, {
        'total_iterations': total_iterations,
        'n_calls': n_calls,
        'elapsed': time.time() - start,
        'posterior': posterior,
    }


def resolve_mode(source: ModeSource, model: PosteriorModel, data: np.ndarray,
                 settings: EstimationSettings, optimizer=None,
                 verbose: Union[Verbosity, int, str] = Verbosity.LOW) -> np.ndarray:
    """
    Produce the posterior mode from a ModeSource.

    Returns:
        Mode vector (n_params,)
    """
    if source.kind == ModeSource.FILE:
        report(verbose, Verbosity.LOW, "Reading in previous mode")

    vector = source.load()
    model.update(vector)

    if source.kind == ModeSource.REOPTIMIZE:
        report(verbose, Verbosity.LOW, "Reoptimizing...")
        vector, _ = find_mode(model, data, vector, settings, optimizer, verbose)

    return vector


def numerical_hessian(model: PosteriorModel, params: np.ndarray, data: np.ndarray,
                      step: float = 1e-5) -> np.ndarray:
    """
    Hessian of the negative log posterior by finite differences.

    Central differences are used where the posterior is finite at
    params +/- step. When one side is infeasible (the point is within step
    of a bound), that parameter falls back to a one-sided difference
    stepping inward: f(x), f(x + s*step) and f(x + 2*s*step) on the
    diagonal, and offsets {0, s*step} in the mixed differences.

    Rows and columns of fixed parameters are zero.

    Args:
        model: Model providing posterior()
        params: Point of evaluation (usually the mode)
        data: Observed data (T x n_obs)
        step: Finite-difference step

    Returns:
        Hessian matrix (n_params x n_params)

    Raises:
        ValueError: If the posterior is not finite at params, on both sides
            of a parameter, or at a point a difference needs
    """
    params = np.asarray(params, dtype=float)
    n = params.shape[0]
    free = np.flatnonzero(model.free_mask)

    def neg_post(x):
        return -model.posterior(x, data).posterior

    def f(x):
        value = neg_post(x)
        if not np.isfinite(value):
            raise ValueError(f"Posterior is not finite at {x}; cannot compute Hessian")
        return value

    def shifted(i, di, j=None, dj=0.0):
        x = params.copy()
        x[i] += di
        if j is not None:
            x[j] += dj
        return x

    hessian = np.zeros((n, n))
    f0 = f(params)

    # (a, b) offsets of each free parameter in the mixed differences
    offsets = {}
    for i in free:
        f_plus = neg_post(shifted(i, step))
        f_minus = neg_post(shifted(i, -step))

        if np.isfinite(f_plus) and np.isfinite(f_minus):
            hessian[i, i] = (f_plus - 2 * f0 + f_minus) / step**2
            offsets[i] = (step, -step)
            continue

        if not (np.isfinite(f_plus) or np.isfinite(f_minus)):
            raise ValueError(f"Posterior is not finite on either side of parameter {i} "
                             f"at {params}; cannot compute Hessian")

        s = 1.0 if np.isfinite(f_plus) else -1.0
        f_one = f_plus if s > 0 else f_minus
        f_two = f(shifted(i, 2 * s * step))
        hessian[i, i] = (f0 - 2 * f_one + f_two) / step**2
        offsets[i] = (s * step, 0.0)

    for a, i in enumerate(free):
        ai, bi = offsets[i]
        for j in free[a + 1:]:
            aj, bj = offsets[j]
            f_aa = f(shifted(i, ai, j, aj))
            f_ab = f(shifted(i, ai, j, bj))
            f_ba = f(shifted(i, bi, j, aj))
            f_bb = f(shifted(i, bi, j, bj))
            hessian[i, j] = (f_aa - f_ab - f_ba + f_bb) / ((ai - bi) * (aj - bj))
            hessian[j, i] = hessian[i, j]

    return hessian


def resolve_hessian(model: PosteriorModel, mode: np.ndarray, data: np.ndarray,
                    settings: EstimationSettings,
                    verbose: Union[Verbosity, int, str] = Verbosity.LOW) -> np.ndarray:
    """
    Recompute the Hessian at the mode, or read the precomputed one.

    A recomputed Hessian is written to rawpath('estimate', 'hessian.h5');
    the precomputed one is read from input_data/user/hessian_optimized.h5.

    Raises:
        FileNotFoundError: If the precomputed Hessian file is missing
    """
    if settings.recalculate_hessian:
        report(verbose, Verbosity.LOW, "Recalculating Hessian...")
        hessian = numerical_hessian(model, mode, data, settings.hessian_step)
        save_array(settings.rawpath('estimate', 'hessian.h5'), 'hessian', hessian)
        return hessian

    report(verbose, Verbosity.LOW, "Using pre-calculated Hessian")
    return np.asarray(load_array(settings.inpath('user', 'hessian_optimized.h5'), 'hessian'),
                      dtype=float)


def build_proposal(mode: np.ndarray, hessian: Optional[np.ndarray], model: PosteriorModel,
                   settings: EstimationSettings,
                   proposal_covariance: Optional[np.ndarray] = None) -> DegenerateMvNormal:
    """
    Proposal distribution centered at the mode.

    The covariance is the eigen-filtered inverse Hessian, or
    proposal_covariance when given. A rank different from the number of
    free parameters is reported as a warning.
    """
    if proposal_covariance is None:
        propdist = DegenerateMvNormal.from_hessian(mode, hessian, settings.eigenvalue_tol)
    else:
        propdist = DegenerateMvNormal.from_covariance(mode, proposal_covariance,
                                                      settings.eigenvalue_tol)

    check_rank(propdist, model.num_parameters_free)
    return propdist
