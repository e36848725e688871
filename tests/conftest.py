"""
Pytest configuration and shared fixtures for dsge_estimation tests.
"""

import matplotlib
matplotlib.use('Agg')

import numpy as np
import pytest

from dsge_estimation.model import (
    AR1StateSpaceModel,
    Parameter,
    PosteriorEvaluation,
    PosteriorModel,
    StateSpace,
)
from dsge_estimation.settings import EstimationSettings


class QuadraticModel(PosteriorModel):
    """
    Deterministic test model with log posterior -(θ - c)' A (θ - c).

    The Hessian of the negative log posterior is 2A. One state and one
    shock: TTT = [[θ_1]], RRR = [[1]], CCC = [0], zend = [θ_n].
    """

    name = 'Quadratic test model'

    def __init__(self, n_params=2, center=None, precision=None, fixed=()):
        self._parameters = [Parameter(f'theta_{i + 1}', 0.0, fixed=(i in fixed))
                            for i in range(n_params)]
        self.center = np.zeros(n_params) if center is None else np.asarray(center, dtype=float)
        self.precision = np.eye(n_params) if precision is None else np.asarray(precision, dtype=float)
        self.n_calls = 0

    @property
    def parameters(self):
        return self._parameters

    @property
    def num_states_augmented(self):
        return 1

    @property
    def num_shocks_exogenous(self):
        return 1

    def posterior(self, params, data):
        self.n_calls += 1
        params = np.asarray(params, dtype=float)
        dev = params - self.center
        post = -float(dev @ self.precision @ dev)
        mats = StateSpace(
            TTT=np.array([[params[0]]]),
            RRR=np.ones((1, 1)),
            CCC=np.zeros(1),
            ZZ=np.ones((1, 1)),
            DD=np.zeros(1),
            QQ=np.ones((1, 1)),
        )
        return PosteriorEvaluation(post, post, mats, np.array([params[-1]]))


class ScriptedRNG:
    """Random source that replays fixed normal vectors and uniforms."""

    def __init__(self, normals, uniforms=()):
        self.normals = [np.asarray(z, dtype=float) for z in normals]
        self.uniforms = list(uniforms)

    def standard_normal(self, size):
        z = self.normals.pop(0)
        assert z.shape == (size,)
        return z

    def random(self):
        return self.uniforms.pop(0)

    @property
    def exhausted(self):
        return not self.normals and not self.uniforms


@pytest.fixture
def quadratic_model():
    return QuadraticModel()


@pytest.fixture
def make_settings(tmp_path):
    """Factory for settings writing under a temporary savepath."""
    def _make(**overrides):
        config = {
            'n_mh_blocks': 3,
            'n_mh_simulations': 2,
            'n_mh_burn': 1,
            'mh_thinning_step': 1,
            'savepath': str(tmp_path / 'save'),
        }
        config.update(overrides)
        return EstimationSettings(**config)
    return _make


@pytest.fixture
def ar1_data():
    """Data simulated from a two-series AR(1) model with known parameters."""
    model = AR1StateSpaceModel(n_series=2)
    truth = np.array([0.8, 0.5, 1.0, 0.3, 1.5, -0.5])
    data = model.simulate(120, np.random.default_rng(7), truth)
    return model, truth, data
