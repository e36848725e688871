"""
Utility Functions
=================

General utility functions for posterior sampling:
- Verbosity levels for progress reporting
- Matrix operations
- Timing helpers
- Plotting utilities
"""

import numpy as np
from enum import IntEnum
from typing import List, Optional, Tuple, Union
import matplotlib.pyplot as plt


class Verbosity(IntEnum):
    """Ordered progress-reporting levels."""

    SILENT = 0   # no status updates
    LOW = 1      # one summary per block (and per optimizer call)
    HIGH = 2     # one line per draw

    @classmethod
    def parse(cls, value: Union['Verbosity', int, str]) -> 'Verbosity':
        """
        Convert an enum member, integer or level name to a Verbosity.

        Args:
            value: Verbosity, 0-2, or one of 'none'/'silent', 'low'/'summary',
                   'high'/'detailed'

        Returns:
            Verbosity member
        """
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            names = {
                'none': cls.SILENT, 'silent': cls.SILENT,
                'low': cls.LOW, 'summary': cls.LOW,
                'high': cls.HIGH, 'detailed': cls.HIGH,
            }
            key = value.strip().lower()
            if key not in names:
                raise ValueError(f"Unknown verbosity: {value}. "
                                 f"Available: {list(names.keys())}")
            return names[key]
        return cls(int(value))


def report(verbose: Union[Verbosity, int, str], level: Verbosity, message: str):
    """Print message if the requested verbosity reaches level."""
    if Verbosity.parse(verbose) >= level:
        print(message)


def vec(matrix: np.ndarray) -> np.ndarray:
    """
    Vectorize a matrix (stack columns).

    Args:
        matrix: Matrix to vectorize

    Returns:
        Vectorized matrix
    """
    return np.asarray(matrix).T.flatten()


def symmetrize(matrix: np.ndarray) -> np.ndarray:
    """Return 0.5 * (A + A')."""
    return 0.5 * (matrix + matrix.T)


def format_elapsed(seconds: float) -> str:
    """Format a duration as H:MM:SS."""
    seconds = int(round(seconds))
    hours, rem = divmod(seconds, 3600)
    minutes, secs = divmod(rem, 60)
    return f"{hours:d}:{minutes:02d}:{secs:02d}"


def plot_traces(draws: np.ndarray, param_names: List[str],
                figsize: Optional[Tuple[int, int]] = None,
                save_path: Optional[str] = None,
                show: bool = True):
    """
    Plot MCMC trace and marginal histogram for each parameter.

    Args:
        draws: Saved parameter draws (n_draws x n_params)
        param_names: Names of parameters (one per column)
        figsize: Figure size (defaults to 3 inches per parameter row)
        save_path: Path to save figure (optional)
        show: Whether to call plt.show()

    Returns:
        Matplotlib figure
    """
    draws = np.asarray(draws)
    n_params = draws.shape[1]
    if len(param_names) != n_params:
        raise ValueError(f"Got {len(param_names)} names for {n_params} parameters")

    if figsize is None:
        figsize = (10, 2.5 * n_params)

    fig, axes = plt.subplots(n_params, 2, figsize=figsize, squeeze=False)

    for i, name in enumerate(param_names):
        ax_trace, ax_hist = axes[i, 0], axes[i, 1]

        ax_trace.plot(draws[:, i], 'b-', linewidth=0.8)
        ax_trace.axhline(y=np.mean(draws[:, i]), color='k', linestyle='--', linewidth=0.5)
        ax_trace.set_ylabel(name)
        ax_trace.grid(True, alpha=0.3)

        ax_hist.hist(draws[:, i], bins=30, color='b', alpha=0.6)
        ax_hist.grid(True, alpha=0.3)

        if i == 0:
            ax_trace.set_title('Trace')
            ax_hist.set_title('Marginal')
        if i == n_params - 1:
            ax_trace.set_xlabel('Draw')

    plt.tight_layout()

    if save_path:
        plt.savefig(save_path, dpi=300, bbox_inches='tight')

    if show:
        plt.show()

    return fig


if __name__ == '__main__':
    print("Testing utility functions...")

    A = np.array([[1.0, 2.0], [3.0, 4.0]])
    print(f"\nvec(A) = {vec(A)}")

    report('low', Verbosity.LOW, "\nReported at LOW")
    report('low', Verbosity.HIGH, "This line should not appear")

    print(f"\nElapsed: {format_elapsed(3725.0)}")

    print("\nAll tests passed!")
