"""
Posterior Draw Summaries
========================

Post-processing of the saved Metropolis-Hastings draws:
- Parameter covariance matrix (written to the work directory)
- Table of posterior moments and quantiles
"""

import numpy as np
import pandas as pd
from typing import List, Optional, Sequence
import warnings
import os

from .data_loader import save_array
from .settings import EstimationSettings
from .simstore import load_draws


def compute_parameter_covariance(settings: EstimationSettings,
                                 simfile: Optional[str] = None,
                                 outfile: Optional[str] = None) -> Optional[np.ndarray]:
    """
    Compute the covariance of the saved parameter draws and write it to disk.

    Args:
        settings: Estimation settings (for default file locations)
        simfile: Draws file (default rawpath('estimate', 'sim_save.h5'))
        outfile: Output file (default workpath('estimate', 'parameter_covariance.h5'))

    Returns:
        Covariance matrix (n_params x n_params), or None if no draws were found
    """
    if simfile is None:
        simfile = settings.rawpath('estimate', 'sim_save.h5')

    if not os.path.isfile(simfile):
        warnings.warn(f"Saved parameter draws not found: {simfile}")
        return None

    param_draws = load_draws(simfile, keys=('parasim',))['parasim']

    # Draws are stored in single precision; the covariance is computed in double
    param_covariance = np.cov(param_draws.astype(np.float64), rowvar=False)
    param_covariance = np.atleast_2d(param_covariance)

    if outfile is None:
        outfile = settings.workpath('estimate', 'parameter_covariance.h5')
    save_array(outfile, 'param_covariance', param_covariance)

    return param_covariance


def summarize_draws(draws: np.ndarray, param_names: Sequence[str],
                    quantiles: Sequence[float] = (0.05, 0.5, 0.95)) -> pd.DataFrame:
    """
    Posterior mean, standard deviation and quantiles of each parameter.

    Args:
        draws: Parameter draws (n_draws x n_params)
        param_names: Parameter names
        quantiles: Quantile levels to report

    Returns:
        DataFrame indexed by parameter name
    """
    df = pd.DataFrame(np.asarray(draws, dtype=np.float64), columns=list(param_names))

    summary = pd.DataFrame({
        'mean': df.mean(),
        'std': df.std(),
    })
    for q in quantiles:
        summary[f'q{int(round(q * 100)):02d}'] = df.quantile(q)

    return summary


def print_summary(summary: pd.DataFrame, mode: Optional[np.ndarray] = None):
    """Print a posterior summary table in readable format."""
    print("\n" + "=" * 60)
    print("POSTERIOR SUMMARY")
    print("=" * 60)

    columns: List[str] = list(summary.columns)
    header = f"{'Parameter':<15}" + (f"{'Mode':>10}" if mode is not None else '')
    header += ''.join(f"{c:>10}" for c in columns)
    print(header)
    print("-" * len(header))

    for i, (name, row) in enumerate(summary.iterrows()):
        line = f"{name:<15}"
        if mode is not None:
            line += f"{mode[i]:10.4f}"
        line += ''.join(f"{row[c]:10.4f}" for c in columns)
        print(line)

    print("-" * len(header))
