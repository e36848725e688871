"""
Prior Distribution Classes
===========================

Prior distributions for Bayesian estimation of model parameters:
- Beta distribution
- Gamma distribution
- Normal distribution
- Inverse-Gamma distribution

Each prior wraps a frozen scipy.stats distribution and adds support bounds;
log_pdf returns -inf outside [lower, upper].
"""

import numpy as np
from scipy import stats


class Prior:
    """Base class for bounded prior distributions."""

    def __init__(self, dist, lower: float = -np.inf, upper: float = np.inf):
        """
        Initialize prior distribution.

        Args:
            dist: Frozen scipy.stats distribution
            lower: Lower bound of support
            upper: Upper bound of support
        """
        if lower >= upper:
            raise ValueError(f"Empty support: lower={lower} >= upper={upper}")
        self.dist = dist
        self.lower = lower
        self.upper = upper

    def log_pdf(self, x: float) -> float:
        """Log probability density at x (-inf outside support)."""
        if not self.in_support(x):
            return -np.inf
        return float(self.dist.logpdf(x))

    def in_support(self, x: float) -> bool:
        """Check if x is in the support of the distribution."""
        return bool(self.lower <= x <= self.upper)


class BetaPrior(Prior):
    """Beta prior parameterized by mean and standard deviation on (0, 1)."""

    def __init__(self, mean: float, std: float, lower: float = 0.0, upper: float = 1.0):
        # For Beta(a, b): mean = a/(a+b), var = ab/[(a+b)^2 (a+b+1)]
        sum_ab = mean * (1 - mean) / std**2 - 1
        if sum_ab <= 0:
            raise ValueError(f"Beta prior with mean={mean} cannot have std={std}")
        self.alpha = mean * sum_ab
        self.beta = (1 - mean) * sum_ab
        super().__init__(stats.beta(self.alpha, self.beta), lower, upper)


class GammaPrior(Prior):
    """Gamma prior parameterized by mean and standard deviation."""

    def __init__(self, mean: float, std: float, lower: float = 0.0, upper: float = np.inf):
        # k = mean^2 / var, theta = var / mean
        self.shape = mean**2 / std**2
        self.scale = std**2 / mean
        super().__init__(stats.gamma(self.shape, scale=self.scale), lower, upper)


class NormalPrior(Prior):
    """Normal prior, optionally truncated by bounds."""

    def __init__(self, mean: float, std: float, lower: float = -np.inf, upper: float = np.inf):
        super().__init__(stats.norm(loc=mean, scale=std), lower, upper)


class InverseGammaPrior(Prior):
    """
    Inverse-Gamma prior in the IG(s, nu) parameterization common in
    Bayesian econometrics (s scale, nu degrees of freedom).
    """

    def __init__(self, s: float, nu: float, lower: float = 0.0, upper: float = np.inf):
        self.s = s
        self.nu = nu
        # scipy invgamma(a, scale): a = nu/2, scale = s*nu/2
        super().__init__(stats.invgamma(nu / 2, scale=s * nu / 2), max(lower, 0.0), upper)

    def log_pdf(self, x: float) -> float:
        if x <= 0:
            return -np.inf
        return super().log_pdf(x)


def create_prior(prior_type: str, *args, **kwargs) -> Prior:
    """
    Factory function to create prior distributions.

    Args:
        prior_type: Type of prior ('beta', 'gamma', 'normal', 'invgamma')
        *args: Positional arguments for the prior
        **kwargs: Keyword arguments for the prior

    Returns:
        Prior distribution object

    Example:
        >>> prior = create_prior('beta', mean=0.5, std=0.2)
        >>> prior = create_prior('invgamma', s=0.1, nu=2)
    """
    prior_map = {
        'beta': BetaPrior,
        'gamma': GammaPrior,
        'normal': NormalPrior,
        'invgamma': InverseGammaPrior,
        'inv_gamma': InverseGammaPrior,
    }

    prior_type = prior_type.lower()
    if prior_type not in prior_map:
        raise ValueError(f"Unknown prior type: {prior_type}. "
                         f"Available: {list(prior_map.keys())}")

    return prior_map[prior_type](*args, **kwargs)
