#!/usr/bin/env python3
"""
Save and load Metropolis-Hastings results as pickle files
"""

import pickle
import numpy as np
import os
import glob
import json
import hashlib


def settings_fingerprint(settings, X=None, y=None):
    """
    Short hash of the full sampler settings and the training data

    Parameters:
    -----------
    settings : dict
        JSON-like settings (proposal description, prior, initial range, ...)
    X, y : array-like, optional
        Training data; its bytes are part of the hash

    Returns:
    --------
    str : 12 hex characters
    """
    h = hashlib.sha1(json.dumps(settings, sort_keys=True, default=str).encode())
    for arr in (X, y):
        if arr is not None:
            arr = np.ascontiguousarray(arr)
            h.update(str(arr.shape).encode())
            h.update(arr.tobytes())
    return h.hexdigest()[:12]


def results_filename(n_steps, burn_in, chains, proposal_mode, random_seed, fingerprint=None):
    """File name encoding the sampler settings"""
    name = f"mh_results_{proposal_mode}_{n_steps}_{burn_in}_{chains}_{random_seed}"
    if fingerprint is not None:
        name += f"_{fingerprint}"
    return name + ".pkl"


def save_mcmc_results(results, results_path='results/', filename=None):
    """
    Pickle a results dictionary produced by BLRMCMC.run_mcmc

    Returns:
    --------
    str : path of the written file
    """
    os.makedirs(results_path, exist_ok=True)
    if filename is None:
        settings = results['mcmc_settings']
        filename = results_filename(settings['n_steps'], settings['burn_in'], settings['chains'],
                                    settings['proposal']['mode'], settings['random_seed'],
                                    settings.get('fingerprint'))
    path = os.path.join(results_path, filename)
    with open(path, 'wb') as f:
        pickle.dump(results, f)
    print(f"Results saved to {path}")
    return path


def load_mcmc_results_from_pickle(results_path='results/', filename_pattern=None):
    """
    Load MCMC results from pickle files

    Parameters:
    -----------
    results_path : str
        Path to the results directory
    filename_pattern : str, optional
        Specific filename pattern to search for (e.g., 'mh_results_isotropic_*.pkl')

    Returns:
    --------
    dict : Dictionary containing MCMC results, None when nothing matches
    """

    if filename_pattern is None:
        pattern = os.path.join(results_path, 'mh_results_*.pkl')
    else:
        pattern = os.path.join(results_path, filename_pattern)

    files = sorted(glob.glob(pattern))

    if not files:
        print(f"No MCMC result files found matching pattern: {pattern}")
        return None

    print(f"Found {len(files)} MCMC result file(s):")
    for file in files:
        print(f"  {os.path.basename(file)}")

    mcmc_file = files[0]
    print(f"\nLoading MCMC results from: {mcmc_file}")

    with open(mcmc_file, 'rb') as f:
        mcmc_results = pickle.load(f)

    print("\nAvailable keys in MCMC results:")
    for key, value in mcmc_results.items():
        if isinstance(value, np.ndarray):
            print(f"  {key}: shape {value.shape}, dtype {value.dtype}")
        else:
            print(f"  {key}: {type(value)}")

    return mcmc_results


def extract_chain_components(mcmc_results):
    """
    Extract trajectories, acceptance rates and the MLE baseline

    Returns:
    --------
    tuple : (trajectories, acceptance_rates, mle)
    """

    if mcmc_results is None:
        return None, None, None

    chains = mcmc_results.get('chains', [])
    trajectories = [c.trajectory for c in chains]
    acceptance_rates = np.array([c.acceptance_rate for c in chains])
    mle = mcmc_results.get('mle', None)

    print("\nExtracted chain components:")
    for i, traj in enumerate(trajectories):
        print(f"  chain {i}: trajectory shape {traj.shape}, acceptance rate {acceptance_rates[i]:.3f}")
    if mle is None:
        print("  mle: Not found")

    return trajectories, acceptance_rates, mle
