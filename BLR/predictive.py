#!/usr/bin/env python3
"""
Posterior predictive draws for a new covariate vector
"""

import numpy as np
import pandas as pd

from MH import ConfigurationError
from model import log_sigmoid


def _check_inputs(trajectory, burn_in, x_new):
    trajectory = np.asarray(trajectory, dtype=float)
    x_new = np.asarray(x_new, dtype=float)
    if trajectory.ndim != 2:
        raise ConfigurationError(f"Trajectory must be 2-D, got shape {trajectory.shape}")
    if x_new.shape != (trajectory.shape[1],):
        raise ConfigurationError(
            f"x_new has shape {x_new.shape}, expected ({trajectory.shape[1]},) to match the coefficients")
    burn_in = int(burn_in)
    if burn_in < 0 or burn_in > trajectory.shape[0] - 1:
        raise ConfigurationError(f"burn_in must lie in [0, {trajectory.shape[0] - 1}], got {burn_in}")
    return trajectory[burn_in:], x_new


def predictive_probabilities(trajectory, burn_in, x_new):
    """Success probability sigmoid(x_new . beta_t) for every retained sample"""
    samples, x_new = _check_inputs(trajectory, burn_in, x_new)
    return np.exp(log_sigmoid(samples @ x_new))


def posterior_predictive(trajectory, burn_in, x_new, rng=None, seed=None):
    """
    Lazily draw one binary outcome per retained posterior sample

    Parameters:
    -----------
    trajectory : np.ndarray
        Chain samples (n_steps, n_coefficients)
    burn_in : int
        Number of leading samples to discard
    x_new : array-like
        Covariate vector, intercept entry included
    rng : numpy.random.Generator, optional
    seed : int, optional
        Used when rng is None

    Yields:
    -------
    int : 0 or 1
    """
    # validate eagerly; the returned generator is what stays lazy
    probs = predictive_probabilities(trajectory, burn_in, x_new)
    rng = rng if rng is not None else np.random.default_rng(seed)
    return _draws(probs, rng)


def _draws(probs, rng):
    for p in probs:
        yield int(rng.uniform() < p)


def predictive_table(draws):
    """Counts and empirical frequencies of the outcomes 0 and 1"""
    draws = np.fromiter(draws, dtype=int)
    counts = pd.Series(draws).value_counts().reindex([0, 1], fill_value=0)
    total = counts.sum()
    freq = counts / total if total > 0 else counts.astype(float)
    table = pd.DataFrame({'count': counts.astype(int), 'frequency': freq})
    table.index.name = 'outcome'
    return table
