"""
Bayesian Estimation
===================

Full estimation stage for state-space models:

1. Load the observables
2. Find the posterior mode (reoptimize, or read a previous mode)
3. Compute the proposal distribution: a degenerate multivariate normal
   centered at the mode whose covariance is the inverse of the Hessian,
   found via eigenvalue decomposition
4. Sample from the posterior with Metropolis-Hastings
5. Calculate and save the parameter covariance matrix

Posterior ∝ Prior × Likelihood
"""

import numpy as np
from typing import Dict, Optional, Union

from .covariance import compute_parameter_covariance, print_summary, summarize_draws
from .data_loader import describe_data, load_observables
from .mode import ModeSource, build_proposal, resolve_hessian, resolve_mode
from .model import PosteriorModel
from .sampler import metropolis_hastings
from .settings import EstimationSettings
from .simstore import load_draws
from .utils import Verbosity, report


def estimate(model: PosteriorModel, settings: EstimationSettings,
             data: Optional[np.ndarray] = None,
             verbose: Union[Verbosity, int, str] = Verbosity.LOW,
             proposal_covariance: Optional[np.ndarray] = None,
             mode_source: Optional[ModeSource] = None,
             optimizer=None, rng=None) -> Dict:
    """
    Run the estimation stage: mode, Hessian, proposal, sampling, covariance.

    Args:
        model: Model providing posterior()
        settings: Estimation settings
        data: Observed data (T x n_obs); read from settings.data_file() if None
        verbose: Verbosity level
        proposal_covariance: Precomputed proposal covariance. When given, the
            Hessian is not used to build the proposal; this exercises the
            sampler without the eigen-decomposition of a singular Hessian.
        mode_source: Where the mode comes from (default from settings)
        optimizer: Mode optimizer (default ScipyModeOptimizer)
        rng: Random source for the sampler

    Returns:
        Dictionary with mode, hessian, proposal, mh (sampler output) and
        param_covariance
    """
    verbose = Verbosity.parse(verbose)

    # Step 1: data
    if data is None:
        data = load_observables(settings.data_file())
    report(verbose, Verbosity.HIGH, f"Observables (T = {data.shape[0]}):")
    report(verbose, Verbosity.HIGH, describe_data(data).to_string())

    # Step 2: posterior mode
    if mode_source is None:
        mode_source = ModeSource.from_settings(settings)
    mode = resolve_mode(mode_source, model, data, settings, optimizer, verbose)

    # Step 3: proposal distribution
    hessian = None
    if proposal_covariance is None:
        hessian = resolve_hessian(model, mode, data, settings, verbose)
    propdist = build_proposal(mode, hessian, model, settings, proposal_covariance)

    # Step 4: Metropolis-Hastings
    mh = metropolis_hastings(propdist, model, data, settings, verbose, rng=rng)

    # Step 5: parameter covariance
    param_covariance = compute_parameter_covariance(settings, simfile=mh['simfile'])

    return {
        'mode': mode,
        'hessian': hessian,
        'proposal': propdist,
        'mh': mh,
        'param_covariance': param_covariance,
    }


if __name__ == '__main__':
    import tempfile
    from .model import AR1StateSpaceModel

    print("Testing Bayesian estimation...")

    model = AR1StateSpaceModel(n_series=2)
    rng = np.random.default_rng(0)
    truth = np.array([0.8, 0.5, 1.0, 0.3, 1.5, -0.5])
    data = model.simulate(150, rng, truth)

    with tempfile.TemporaryDirectory() as savepath:
        settings = EstimationSettings(n_mh_blocks=3, n_mh_simulations=200, n_mh_burn=1,
                                      mh_thinning_step=2, mh_cc=0.5, testing=True,
                                      savepath=savepath)
        results = estimate(model, settings, data=data,
                           mode_source=ModeSource.reoptimize(model.parameter_values()))

        draws = load_draws(results['mh']['simfile'])['parasim']
        print(f"\nSaved draws: {draws.shape}")
        print_summary(summarize_draws(draws, model.param_names), results['mode'])

    print("\nAll tests passed!")
