"""
Simulation Store
================

On-disk storage of Metropolis-Hastings draws.

The HDF5 file is created with its final size known upfront:
    n_saved = (n_blocks - n_burn) * n_sim rows
and every dataset is chunked by n_sim rows, so each block of draws maps to
exactly one chunk. Blocks are written whole, as contiguous row ranges; the
full chain is never held in memory.

Datasets (float32):
    parasim  (n_saved x n_params)           parameter draws
    postsim  (n_saved x 1)                  log posterior
    TTTsim   (n_saved x n_states^2)         vec(TTT)
    RRRsim   (n_saved x n_states*n_shocks)  vec(RRR)
    CCCsim   (n_saved x n_states)           CCC
    zsim     (n_saved x n_states)           end-of-sample filtered state
"""

import numpy as np
import h5py
import os
from typing import Dict

from .utils import vec


STORAGE_DTYPE = np.float32


class BlockBuffer:
    """In-memory (double precision) draws of one block, one row per saved draw."""

    def __init__(self, n_sim: int, n_params: int, n_states: int, n_shocks: int):
        self.n_sim = n_sim
        self.arrays = {
            'parasim': np.zeros((n_sim, n_params)),
            'postsim': np.zeros((n_sim, 1)),
            'TTTsim': np.zeros((n_sim, n_states**2)),
            'RRRsim': np.zeros((n_sim, n_states * n_shocks)),
            'CCCsim': np.zeros((n_sim, n_states)),
            'zsim': np.zeros((n_sim, n_states)),
        }

    def record(self, index: int, state):
        """
        Store the current chain state in row index.

        Args:
            index: Row within the block (0 <= index < n_sim)
            state: Chain state with params, posterior and the
                   accepted PosteriorEvaluation in evaluation
        """
        mats = state.evaluation.mats
        a = self.arrays
        a['parasim'][index, :] = state.params
        a['postsim'][index, 0] = state.posterior
        a['TTTsim'][index, :] = vec(mats.TTT)
        a['RRRsim'][index, :] = vec(mats.RRR)
        a['CCCsim'][index, :] = np.ravel(mats.CCC)
        a['zsim'][index, :] = np.ravel(state.evaluation.zend)

    def __getitem__(self, key: str) -> np.ndarray:
        return self.arrays[key]


class SimStore:
    """Pre-sized, chunked HDF5 file receiving one block of draws at a time."""

    DATASETS = ('parasim', 'postsim', 'TTTsim', 'RRRsim', 'CCCsim', 'zsim')

    def __init__(self, h5file: h5py.File, n_sim: int):
        self.file = h5file
        self.n_sim = n_sim
        self.n_saved = h5file['parasim'].shape[0]
        self.rows_written = 0

    @classmethod
    def create(cls, filepath: str, n_saved: int, n_sim: int, n_params: int,
               n_states: int, n_shocks: int) -> 'SimStore':
        """
        Create the draws file, replacing any existing one.

        Args:
            filepath: Output .h5 path
            n_saved: Total number of rows ((n_blocks - n_burn) * n_sim)
            n_sim: Rows per block (chunk size)
            n_params: Number of parameters
            n_states: Number of states
            n_shocks: Number of exogenous shocks

        Returns:
            Open SimStore
        """
        if n_saved % n_sim != 0:
            raise ValueError(f"n_saved ({n_saved}) must be a multiple of n_sim ({n_sim})")

        directory = os.path.dirname(filepath)
        if directory:
            os.makedirs(directory, exist_ok=True)

        widths = {
            'parasim': n_params,
            'postsim': 1,
            'TTTsim': n_states**2,
            'RRRsim': n_states * n_shocks,
            'CCCsim': n_states,
            'zsim': n_states,
        }

        h5file = h5py.File(filepath, 'w')
        for name in cls.DATASETS:
            h5file.create_dataset(name, shape=(n_saved, widths[name]), dtype=STORAGE_DTYPE,
                                  chunks=(n_sim, widths[name]))

        return cls(h5file, n_sim)

    def write_block(self, start: int, buffer: BlockBuffer):
        """
        Write a full block of draws to rows [start, start + n_sim).

        Values are stored in single precision. Nothing is written unless
        every dataset's buffer has exactly n_sim rows and the range fits.

        Args:
            start: First row (0-based)
            buffer: Block buffer with n_sim rows per dataset
        """
        end = start + self.n_sim
        if start < 0 or end > self.n_saved:
            raise ValueError(f"Rows [{start}, {end}) outside store of {self.n_saved} rows")

        for name in self.DATASETS:
            rows = buffer[name].shape[0]
            if rows != self.n_sim:
                raise ValueError(f"Partial block for {name}: {rows} rows, expected {self.n_sim}")

        for name in self.DATASETS:
            self.file[name][start:end, :] = buffer[name].astype(STORAGE_DTYPE)

        self.rows_written += self.n_sim

    def close(self):
        if self.file.id.valid:
            self.file.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()


def load_draws(filepath: str, keys=('parasim', 'postsim')) -> Dict[str, np.ndarray]:
    """
    Read datasets from a finished draws file.

    Args:
        filepath: Path to sim_save.h5
        keys: Dataset names to read

    Returns:
        Dictionary mapping dataset name to array
    """
    if not os.path.exists(filepath):
        raise FileNotFoundError(f"Saved parameter draws not found: {filepath}")

    with h5py.File(filepath, 'r') as f:
        return {key: f[key][()] for key in keys}
