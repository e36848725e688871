"""
Metropolis-Hastings Sampler
===========================

Random-walk Metropolis-Hastings over blocks of draws.

For each of n_blocks blocks, n_sim * n_times candidates are drawn from the
proposal (recentered on every accepted draw) and accepted with probability
min(1, exp(post_new - post_old)). Every n_times-th step the current chain
state is recorded; blocks after the first n_burn are written to the draws
file, one block per write.

Random draws per step, in order: rng.standard_normal(n) for the candidate,
then rng.random() for the acceptance test.
"""

import numpy as np
import time
from typing import Dict, NamedTuple, Optional, Tuple, Union

from .model import PosteriorEvaluation, PosteriorModel
from .proposal import DegenerateMvNormal
from .settings import EstimationSettings
from .simstore import BlockBuffer, SimStore
from .utils import Verbosity, format_elapsed, report


class ChainState(NamedTuple):
    """Where the chain currently is: the latest accepted draw."""
    params: np.ndarray
    posterior: float
    likelihood: float
    evaluation: PosteriorEvaluation

    @classmethod
    def from_evaluation(cls, params: np.ndarray, evaluation: PosteriorEvaluation) -> 'ChainState':
        return cls(np.asarray(params, dtype=float), evaluation.posterior,
                   evaluation.likelihood, evaluation)


def acceptance_probability(post_new: float, post_old: float) -> float:
    """
    min(1, exp(post_new - post_old)), with log posteriors as inputs.

    A NaN ratio (NaN posterior) gives probability 0, so the candidate is
    rejected.
    """
    with np.errstate(over='ignore', invalid='ignore'):
        ratio = np.exp(post_new - post_old)
    if np.isnan(ratio):
        return 0.0
    return float(min(1.0, ratio))


def mh_step(state: ChainState, para_new: np.ndarray, evaluation: PosteriorEvaluation,
            u: float) -> Tuple[ChainState, bool]:
    """
    Accept or reject a candidate.

    The candidate is accepted iff u < min(1, exp(post_new - post_old)), so a
    candidate with a posterior at least as high as the current one is always
    accepted for u in [0, 1).

    Args:
        state: Current chain state
        para_new: Candidate parameter vector
        evaluation: Posterior evaluation of the candidate
        u: Uniform(0, 1) draw

    Returns:
        (new state, accepted)
    """
    if u < acceptance_probability(evaluation.posterior, state.posterior):
        return ChainState.from_evaluation(para_new, evaluation), True
    return state, False


def initialize_chain(propdist: DegenerateMvNormal, model: PosteriorModel, data: np.ndarray,
                     cc0: float, rng, bounds: Optional[np.ndarray] = None) -> ChainState:
    """
    Find a feasible starting point near the proposal mean.

    Candidates are drawn with the small jump size cc0 until one has a finite
    posterior; the proposal is then recentered on it. There is no bound on
    the number of attempts.

    Args:
        propdist: Proposal distribution (recentered in place)
        model: Model providing posterior()
        data: Observed data (T x n_obs)
        cc0: Initialization jump size
        rng: Random source
        bounds: Optional parameter bounds for truncated proposals

    Returns:
        Initial chain state
    """
    while True:
        para = propdist.sample(rng, cc0, bounds)
        evaluation = model.posterior(para, data)
        if evaluation.feasible:
            propdist.recenter(para)
            return ChainState.from_evaluation(para, evaluation)


def metropolis_hastings(propdist: DegenerateMvNormal, model: PosteriorModel, data: np.ndarray,
                        settings: EstimationSettings,
                        verbose: Union[Verbosity, int, str] = Verbosity.LOW,
                        rng=None, cc0: Optional[float] = None, cc: Optional[float] = None,
                        simfile: Optional[str] = None, truncate: bool = False,
                        keep_trace: bool = False) -> Dict:
    """
    Sample from the posterior with block Metropolis-Hastings.

    Args:
        propdist: Proposal distribution, recentered on every accepted draw
        model: Model providing posterior()
        data: Observed data (T x n_obs)
        settings: Block, draw, burn-in and thinning counts
        verbose: Verbosity level
        rng: Random source (default: numpy Generator seeded from settings;
             the seed is 654 in testing mode)
        cc0: Jump size for initialization (default settings.mh_cc0)
        cc: Jump size for the chain (default settings.mh_cc)
        simfile: Draws file (default rawpath('estimate', 'sim_save.h5'))
        truncate: Redraw candidates until they are inside the parameter bounds
        keep_trace: Keep the accept/reject decision of every step

    Returns:
        Dictionary with rejection statistics, timing, the final chain state
        and the draws file path
    """
    verbose = Verbosity.parse(verbose)
    if rng is None:
        rng = np.random.default_rng(settings.rng_seed)
    cc0 = settings.mh_cc0 if cc0 is None else cc0
    cc = settings.mh_cc if cc is None else cc
    if simfile is None:
        simfile = settings.rawpath('estimate', 'sim_save.h5')

    n_blocks = settings.n_mh_blocks
    n_sim = settings.n_mh_simulations
    n_burn = settings.n_mh_burn
    n_times = settings.mh_thinning_step
    n_params = model.num_parameters
    n_states = model.num_states_augmented
    n_shocks = model.num_shocks_exogenous
    bounds = model.bounds if truncate else None

    state = initialize_chain(propdist, model, data, cc0, rng, bounds)

    for line in settings.summary():
        report(verbose, Verbosity.LOW, line)

    buffer = BlockBuffer(n_sim, n_params, n_states, n_shocks)
    block_rejection_rates = np.zeros(n_blocks)
    trace = [] if keep_trace else None
    all_rejections = 0
    total_sampling_time = 0.0

    with SimStore.create(simfile, settings.n_saved_draws, n_sim, n_params,
                         n_states, n_shocks) as store:

        for i in range(1, n_blocks + 1):
            block_start_time = time.time()
            block_rejections = 0

            for j in range(1, n_sim * n_times + 1):
                para_new = propdist.sample(rng, cc, bounds)
                evaluation = model.posterior(para_new, data)

                report(verbose, Verbosity.HIGH,
                       f"Block {i}, Iteration {j}: posterior = {evaluation.posterior}")

                state, accepted = mh_step(state, para_new, evaluation, rng.random())

                if accepted:
                    propdist.recenter(para_new)
                    report(verbose, Verbosity.HIGH, f"Block {i}, Iteration {j}: accept proposed jump")
                else:
                    block_rejections += 1
                    report(verbose, Verbosity.HIGH, f"Block {i}, Iteration {j}: reject proposed jump")

                if keep_trace:
                    trace.append(accepted)

                if j % n_times == 0:
                    buffer.record(j // n_times - 1, state)

            all_rejections += block_rejections
            block_rejection_rates[i - 1] = block_rejections / (n_sim * n_times)

            # Burn-in blocks are never written
            if i > n_burn:
                store.write_block(n_sim * (i - n_burn - 1), buffer)

            block_time = time.time() - block_start_time
            total_sampling_time += block_time
            expected_remaining_hrs = (total_sampling_time / i) * (n_blocks - i) / 3600

            report(verbose, Verbosity.LOW, f"Completed {i} of {n_blocks} blocks.")
            report(verbose, Verbosity.LOW,
                   f"Total time to compute {i} blocks: {format_elapsed(total_sampling_time)}")
            report(verbose, Verbosity.LOW,
                   f"Expected time remaining for Metropolis-Hastings: "
                   f"{expected_remaining_hrs:.4f} hours")
            report(verbose, Verbosity.LOW,
                   f"Block {i} rejection rate: {block_rejection_rates[i - 1]:.4f}\n")

        n_saved = store.rows_written

    rejection_rate = all_rejections / (n_blocks * n_sim * n_times)
    report(verbose, Verbosity.LOW, f"Overall rejection rate: {rejection_rate:.4f}")

    return {
        'rejection_rate': rejection_rate,
        'total_rejections': all_rejections,
        'block_rejection_rates': block_rejection_rates,
        'n_saved': n_saved,
        'sampling_time': total_sampling_time,
        'final_state': state,
        'simfile': simfile,
        'trace': np.array(trace, dtype=bool) if keep_trace else None,
    }
