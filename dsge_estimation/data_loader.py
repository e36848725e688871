"""
Data Loading Utilities
=======================

Functions to read and write estimation inputs and artifacts:
- Load the observables matrix (.h5, .mat, .csv, .xlsx)
- Save and load single arrays in HDF5 files (mode, Hessian, covariance)
"""

import numpy as np
import pandas as pd
from typing import Optional
import scipy.io
import h5py
import os


def load_observables(filepath: str, key: str = 'YY',
                     columns: Optional[list] = None) -> np.ndarray:
    """
    Load the matrix of observables.

    Args:
        filepath: Path to .h5, .mat, .csv, .xls or .xlsx file
        key: Dataset (.h5) or variable (.mat) name holding the data
        columns: Columns to keep for tabular files (None = all)

    Returns:
        Observed data (T x n_obs), float64
    """
    if not os.path.exists(filepath):
        raise FileNotFoundError(f"Data file not found: {filepath}")

    ext = os.path.splitext(filepath)[1].lower()

    if ext in ('.h5', '.hdf5'):
        data = load_array(filepath, key)
    elif ext == '.mat':
        mat_data = scipy.io.loadmat(filepath)
        if key not in mat_data:
            variables = [k for k in mat_data if not k.startswith('__')]
            raise ValueError(f"Variable '{key}' not in {filepath}. Available: {variables}")
        data = mat_data[key]
    elif ext in ('.csv', '.xls', '.xlsx'):
        if ext == '.csv':
            df = pd.read_csv(filepath)
        else:
            df = pd.read_excel(filepath)
        if columns is not None:
            missing = [c for c in columns if c not in df.columns]
            if missing:
                raise ValueError(f"Columns missing from {filepath}: {missing}")
            df = df[columns]
        data = df.dropna().to_numpy()
    else:
        raise ValueError(f"Unsupported data file type: {ext}")

    data = np.asarray(data, dtype=np.float64)
    if data.ndim == 1:
        data = data.reshape(-1, 1)

    return data


def save_array(filepath: str, key: str, array: np.ndarray) -> None:
    """
    Write a single array to an HDF5 file, replacing the file.

    Args:
        filepath: Output .h5 path (parent directories are created)
        key: Dataset name
        array: Array to store
    """
    directory = os.path.dirname(filepath)
    if directory:
        os.makedirs(directory, exist_ok=True)

    with h5py.File(filepath, 'w') as f:
        f[key] = np.asarray(array)


def load_array(filepath: str, key: str) -> np.ndarray:
    """
    Read a single array from an HDF5 file.

    Args:
        filepath: Input .h5 path
        key: Dataset name

    Returns:
        Array stored under key
    """
    if not os.path.exists(filepath):
        raise FileNotFoundError(f"File not found: {filepath}")

    with h5py.File(filepath, 'r') as f:
        if key not in f:
            raise KeyError(f"Dataset '{key}' not in {filepath}. Available: {list(f.keys())}")
        return f[key][()]


def describe_data(data: np.ndarray, names: Optional[list] = None) -> pd.DataFrame:
    """
    Compute descriptive statistics for the observables.

    Args:
        data: Observed data (T x n_obs)
        names: Column names (defaults to obs_1 ... obs_n)

    Returns:
        DataFrame with descriptive statistics
    """
    if names is None:
        names = [f'obs_{i + 1}' for i in range(data.shape[1])]
    df = pd.DataFrame(data, columns=names)

    stats = pd.DataFrame({
        'mean': df.mean(),
        'std': df.std(),
        'min': df.min(),
        'max': df.max(),
    })

    return stats
