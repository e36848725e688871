"""
Estimation Settings
===================

Configuration for the estimation stage:
- Metropolis-Hastings block/draw/burn-in/thinning counts
- Mode and Hessian stage switches
- Jump sizes, tolerances and random seed
- Directory conventions for input and output files

Directory layout under savepath:
    input_data/<kind>/<file>          (user-supplied inputs: data, mode, hessian)
    output_data/<stage>/raw/<file>    (raw output: draws, mode, hessian)
    output_data/<stage>/work/<file>   (derived output: parameter covariance)
"""

import os
from dataclasses import dataclass, fields
from typing import Any, Dict, List, Optional


TESTING_SEED = 654


@dataclass
class EstimationSettings:
    """Settings for mode-finding, Hessian and Metropolis-Hastings."""

    # Metropolis-Hastings
    n_mh_blocks: int = 22
    n_mh_simulations: int = 5000
    n_mh_burn: int = 2
    mh_thinning_step: int = 5
    mh_cc0: float = 0.01         # jump size while initializing the chain
    mh_cc: float = 0.09          # jump size for the rest of the chain

    # Mode and Hessian stages
    reoptimize: bool = True
    recalculate_hessian: bool = True
    optimization_tol: float = 1e-10
    optimization_iterations: int = 100
    hessian_step: float = 1e-5
    eigenvalue_tol: float = 1e-6

    # Reproducibility
    testing: bool = False
    seed: Optional[int] = None

    # Files
    data_vintage: str = 'default'
    savepath: str = 'save'

    def __post_init__(self):
        self.validate()

    def validate(self):
        """
        Check that the settings are sensible.

        Raises:
            ValueError: Listing every invalid setting
        """
        errors = []

        for key in ['n_mh_blocks', 'n_mh_simulations', 'mh_thinning_step',
                    'optimization_iterations']:
            if getattr(self, key) < 1:
                errors.append(f"{key} must be >= 1")

        if self.n_mh_burn < 0:
            errors.append("n_mh_burn must be >= 0")
        elif self.n_mh_burn >= self.n_mh_blocks:
            errors.append(f"n_mh_burn ({self.n_mh_burn}) must be smaller than "
                          f"n_mh_blocks ({self.n_mh_blocks})")

        for key in ['mh_cc0', 'mh_cc', 'optimization_tol', 'hessian_step', 'eigenvalue_tol']:
            if not getattr(self, key) > 0:
                errors.append(f"{key} must be > 0")

        if errors:
            raise ValueError("Invalid estimation settings:\n  " + "\n  ".join(errors))

    @classmethod
    def from_dict(cls, config: Dict[str, Any]) -> 'EstimationSettings':
        """
        Build settings from a plain dictionary.

        Args:
            config: Mapping of setting names to values

        Returns:
            EstimationSettings

        Raises:
            ValueError: If the mapping contains unknown keys
        """
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(config) - known)
        if unknown:
            raise ValueError(f"Unknown estimation settings: {unknown}")
        return cls(**config)

    @property
    def n_saved_draws(self) -> int:
        """Number of draws written to disk: (n_blocks - n_burn) * n_sim."""
        return (self.n_mh_blocks - self.n_mh_burn) * self.n_mh_simulations

    @property
    def rng_seed(self) -> Optional[int]:
        """Seed used by the sampler (fixed in testing mode)."""
        return TESTING_SEED if self.testing else self.seed

    def inpath(self, kind: str, filename: str = '') -> str:
        """Path to an input file, e.g. inpath('user', 'mode_in.h5')."""
        return os.path.join(self.savepath, 'input_data', kind, filename)

    def rawpath(self, stage: str, filename: str = '') -> str:
        """Path to a raw output file; the directory is created if needed."""
        return self._outpath(stage, 'raw', filename)

    def workpath(self, stage: str, filename: str = '') -> str:
        """Path to a derived output file; the directory is created if needed."""
        return self._outpath(stage, 'work', filename)

    def data_file(self) -> str:
        """Default observables file for the configured vintage."""
        return self.inpath('data', f'data_{self.data_vintage}.h5')

    def _outpath(self, stage: str, sub: str, filename: str) -> str:
        directory = os.path.join(self.savepath, 'output_data', stage, sub)
        os.makedirs(directory, exist_ok=True)
        return os.path.join(directory, filename)

    def summary(self) -> List[str]:
        """Lines describing the sampler configuration."""
        return [
            f"Blocks: {self.n_mh_blocks}",
            f"Draws per block: {self.n_mh_simulations}",
            f"Burn-in blocks: {self.n_mh_burn}",
            f"Thinning step: {self.mh_thinning_step}",
        ]
