#!/usr/bin/env python3
"""
Tests for saving and loading results
"""

import numpy as np

from model import MLEBaseline
from run_mcmc import ChainResult
from load_mcmc_results import (results_filename, settings_fingerprint, save_mcmc_results,
                               load_mcmc_results_from_pickle,
                               extract_chain_components)


def make_results():
    chains = [
        ChainResult(trajectory=np.zeros((5, 2)) + i, log_posteriors=np.zeros(5), acceptance_rate=0.25,
                    n_accepted=1, n_degenerate=0, initial_state=np.zeros(2) + i)
        for i in range(2)
    ]
    return {
        'chains': chains,
        'mle': MLEBaseline(coefficients=np.array([0.5, -0.5]), names=('a', 'b')),
        'mcmc_settings': {'n_steps': 5, 'burn_in': 1, 'chains': 2, 'random_seed': 3,
                          'proposal': {'mode': 'isotropic', 'step_size': 0.1}},
    }


def test_results_filename():
    assert results_filename(1000, 100, 4, 'covariance', 42) == 'mh_results_covariance_1000_100_4_42.pkl'


def test_save_and_load(tmp_path):
    path = save_mcmc_results(make_results(), str(tmp_path))
    assert path.endswith('mh_results_isotropic_5_1_2_3.pkl')

    loaded = load_mcmc_results_from_pickle(str(tmp_path))
    trajectories, rates, mle = extract_chain_components(loaded)
    assert len(trajectories) == 2
    np.testing.assert_array_equal(trajectories[1], np.ones((5, 2)))
    np.testing.assert_array_equal(rates, [0.25, 0.25])
    assert mle.names == ('a', 'b')


def test_missing_results(tmp_path):
    assert load_mcmc_results_from_pickle(str(tmp_path)) is None
    assert extract_chain_components(None) == (None, None, None)


def test_fingerprint_tracks_settings_and_data():
    settings = {'prior_sd': 100.0, 'proposal': {'mode': 'isotropic', 'step_size': 0.1}}
    X = np.ones((4, 2))
    y = np.array([0, 1, 0, 1])
    key = settings_fingerprint(settings, X, y)
    assert key == settings_fingerprint(dict(settings), X.copy(), y.copy())
    assert len(key) == 12
    assert key != settings_fingerprint({**settings, 'proposal': {'mode': 'isotropic', 'step_size': 0.2}}, X, y)
    assert key != settings_fingerprint({**settings, 'prior_sd': 1.0}, X, y)
    assert key != settings_fingerprint(settings, X, np.array([1, 1, 0, 1]))
    assert results_filename(10, 1, 2, 'isotropic', 0, key) == f'mh_results_isotropic_10_1_2_0_{key}.pkl'
