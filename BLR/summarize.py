#!/usr/bin/env python3
"""
Posterior summaries and multi-chain convergence diagnostics
"""

import numpy as np
import pandas as pd
import arviz as az

from MH import ConfigurationError

SUMMARY_COLUMNS = ['mean', 'sd', '2.5%', '97.5%']


def _retained(trajectory, burn_in):
    trajectory = np.asarray(trajectory, dtype=float)
    if trajectory.ndim != 2:
        raise ConfigurationError(f"Trajectory must be 2-D (steps, coefficients), got shape {trajectory.shape}")
    n_steps = trajectory.shape[0]
    burn_in = int(burn_in)
    if burn_in < 0 or burn_in > n_steps - 1:
        raise ConfigurationError(f"burn_in must lie in [0, {n_steps - 1}], got {burn_in}")
    return trajectory[burn_in:]


def _names(names, k):
    if names is None:
        return [f"beta_{j}" for j in range(k)]
    if len(names) != k:
        raise ConfigurationError(f"Got {len(names)} coefficient names for {k} coefficients")
    return list(names)


def summarize_chain(trajectory, burn_in, names=None):
    """
    Mean, standard deviation and 95% credible interval per coefficient

    Parameters:
    -----------
    trajectory : np.ndarray
        Chain samples (n_steps, n_coefficients)
    burn_in : int
        Number of leading samples to discard, 0 <= burn_in <= n_steps - 1
    names : list of str, optional
        Coefficient names used as the index

    Returns:
    --------
    pd.DataFrame : one row per coefficient, columns mean, sd, 2.5%, 97.5%
    """
    samples = _retained(trajectory, burn_in)
    names = _names(names, samples.shape[1])

    # a single retained sample has no spread
    sd = samples.std(axis=0, ddof=1) if samples.shape[0] > 1 else np.zeros(samples.shape[1])
    lower, upper = np.quantile(samples, [0.025, 0.975], axis=0)
    return pd.DataFrame({
        'mean': samples.mean(axis=0),
        'sd': sd,
        '2.5%': lower,
        '97.5%': upper,
    }, index=pd.Index(names, name='coefficient'))


def compare_methods(trajectories, burn_in, mle=None, names=None):
    """
    Apply summarize_chain uniformly to several samplers and stack the results

    Parameters:
    -----------
    trajectories : dict
        Method label -> trajectory array
    burn_in : int
        Burn-in applied to every trajectory
    mle : MLEBaseline, optional
        Adds the maximum likelihood estimate as a column
    names : list of str, optional
        Coefficient names; taken from mle when omitted

    Returns:
    --------
    pd.DataFrame : indexed by (method, coefficient)
    """
    if names is None and mle is not None:
        names = list(mle.names)
    tables = {method: summarize_chain(traj, burn_in, names=names)
              for method, traj in trajectories.items()}
    table = pd.concat(tables, names=['method', 'coefficient'])
    if mle is not None:
        coef = np.asarray(mle.coefficients)
        if coef.shape[0] != len(tables[next(iter(tables))]):
            raise ConfigurationError("MLE baseline length does not match the trajectories")
        table['mle'] = np.tile(coef, len(tables))
    return table


def convergence_diagnostics(trajectories, burn_in, names=None, verbose=False):
    """
    Split R-hat and bulk effective sample size across chains

    Parameters:
    -----------
    trajectories : list of np.ndarray
        Chains of equal length and dimension
    burn_in : int
        Burn-in applied to every chain

    Returns:
    --------
    dict : 'table' (DataFrame with r_hat and ess_bulk per coefficient),
           'max_r_hat', 'min_n_eff', 'converged'
    """
    retained = [_retained(t, burn_in) for t in trajectories]
    if len({r.shape for r in retained}) != 1:
        raise ConfigurationError("All chains must have the same shape for convergence diagnostics")
    draws = np.stack(retained)  # (chain, draw, coefficient)
    names = _names(names, draws.shape[2])

    idata = az.from_dict(posterior={'beta': draws})
    r_hat = np.asarray(az.rhat(idata)['beta'].values, dtype=float)
    ess = np.asarray(az.ess(idata, method='bulk')['beta'].values, dtype=float)

    table = pd.DataFrame({'r_hat': r_hat, 'ess_bulk': ess},
                         index=pd.Index(names, name='coefficient'))
    max_r_hat = float(np.nanmax(r_hat)) if np.any(np.isfinite(r_hat)) else float('nan')
    min_n_eff = float(np.nanmin(ess)) if np.any(np.isfinite(ess)) else float('nan')
    diagnostics = {
        'table': table,
        'max_r_hat': max_r_hat,
        'min_n_eff': min_n_eff,
        'converged': bool(max_r_hat < 1.1) if np.isfinite(max_r_hat) else False,
    }

    if verbose:
        print("\n" + "="*50)
        print("MCMC CONVERGENCE DIAGNOSTICS")
        print("="*50)
        print(table.to_string(float_format=lambda v: f"{v:.4f}"))
        print(f"  Max R-hat: {max_r_hat:.4f}")
        print(f"  Min N_eff: {min_n_eff:.1f}")
        if diagnostics['converged']:
            print("✅ Good convergence (R-hat < 1.1)")
        else:
            print("❌ Poor convergence (R-hat >= 1.1), run longer chains or tune the proposal")
        print("="*50)

    return diagnostics
