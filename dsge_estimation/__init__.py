"""
DSGE Posterior Estimation Package
=================================

Bayesian estimation of linear state-space (DSGE) models: posterior mode,
Hessian-based proposal distribution, and block Metropolis-Hastings sampling
with draws streamed to HDF5.

Modules:
    - settings: Estimation settings and file layout
    - utils: Verbosity levels, matrix helpers, trace plots
    - data_loader: Observables and HDF5 artifact I/O
    - priors: Prior distribution classes
    - kalman: Kalman filter likelihood
    - model: Model capability interface and state-space models
    - proposal: Degenerate multivariate normal proposal
    - mode: Posterior mode and Hessian stages
    - simstore: Chunked on-disk storage of draws
    - sampler: Metropolis-Hastings sampler
    - covariance: Parameter covariance and posterior summaries
    - estimation: Full estimation stage
"""

__version__ = '0.1.0'
__author__ = 'David Guzzi'

from .settings import EstimationSettings
from .utils import Verbosity
from .model import (
    AR1StateSpaceModel,
    Parameter,
    PosteriorEvaluation,
    PosteriorModel,
    StateSpace,
    StateSpaceModel,
)
from .proposal import DegenerateMvNormal
from .mode import ModeSource, ScipyModeOptimizer, find_mode, numerical_hessian
from .sampler import ChainState, metropolis_hastings, mh_step
from .simstore import SimStore, load_draws
from .covariance import compute_parameter_covariance, summarize_draws
from .estimation import estimate

__all__ = [
    'EstimationSettings', 'Verbosity',
    'AR1StateSpaceModel', 'Parameter', 'PosteriorEvaluation', 'PosteriorModel',
    'StateSpace', 'StateSpaceModel',
    'DegenerateMvNormal',
    'ModeSource', 'ScipyModeOptimizer', 'find_mode', 'numerical_hessian',
    'ChainState', 'metropolis_hastings', 'mh_step',
    'SimStore', 'load_draws',
    'compute_parameter_covariance', 'summarize_draws',
    'estimate',
]
