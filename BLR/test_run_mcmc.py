#!/usr/bin/env python3
"""
Tests for the chain ensemble and the end-to-end Metropolis workflow
"""

import warnings

import numpy as np
import pandas as pd
import pytest

from MH import ConfigurationError, PoorMixingWarning
from model import BLR, MLEBaseline, simulate_logistic_data
from proposals import IsotropicProposal, CovarianceProposal
import run_mcmc
from run_mcmc import ChainEnsemble, BLRMCMC, initial_states, check_mixing, main


TRUE_BETA = np.array([-0.5, 1.0])


@pytest.fixture(scope='module')
def data():
    X, y = simulate_logistic_data(300, TRUE_BETA, rng=np.random.default_rng(12))
    return X, y


def test_initial_states_start_from_mle():
    mle = MLEBaseline(coefficients=np.array([0.3, -0.2]), names=('a', 'b'))
    states = initial_states(mle, 3, low=-2.0, high=2.0, rng=np.random.default_rng(0))
    assert len(states) == 4
    np.testing.assert_array_equal(states[0], [0.3, -0.2])
    for state in states[1:]:
        assert state.shape == (2,)
        assert np.all((state >= -2.0) & (state <= 2.0))
    with pytest.raises(ConfigurationError):
        initial_states(mle, -1)


def test_ensemble_is_reproducible_and_chains_are_independent(data):
    X, y = data
    blr = BLR(X, y)
    starts = [np.zeros(2), np.array([1.0, 1.0]), np.zeros(2)]
    with warnings.catch_warnings():
        warnings.simplefilter('ignore', PoorMixingWarning)
        first = ChainEnsemble(blr, IsotropicProposal(0.2), 200, seed=5).run(starts)
        second = ChainEnsemble(blr, IsotropicProposal(0.2), 200, seed=5).run(starts)

    assert len(first) == 3
    for a, b in zip(first, second):
        assert a.trajectory.tobytes() == b.trajectory.tobytes()
        assert a.acceptance_rate == b.acceptance_rate
        assert 0.0 <= a.acceptance_rate <= 1.0
        assert a.acceptance_rate == a.n_accepted / 199
    # same start, different stream
    assert not np.array_equal(first[0].trajectory, first[2].trajectory)
    np.testing.assert_array_equal(first[1].initial_state, [1.0, 1.0])


def test_explicit_per_chain_seeds(data):
    X, y = data
    blr = BLR(X, y)
    with warnings.catch_warnings():
        warnings.simplefilter('ignore', PoorMixingWarning)
        ensemble = ChainEnsemble(blr, IsotropicProposal(0.2), 100, seeds=[11, 12])
        results = ensemble.run([np.zeros(2), np.zeros(2)])
        single = ChainEnsemble(blr, IsotropicProposal(0.2), 100, seeds=[12]).run([np.zeros(2)])
    np.testing.assert_array_equal(results[1].trajectory, single[0].trajectory)
    assert len(ensemble.trajectories) == 2
    assert ensemble.acceptance_rates.shape == (2,)

    with pytest.raises(ConfigurationError):
        ChainEnsemble(blr, IsotropicProposal(0.2), 100, seeds=[1]).run([np.zeros(2), np.zeros(2)])
    with pytest.raises(ConfigurationError):
        ChainEnsemble(blr, IsotropicProposal(0.2), 100).run([])


def test_parallel_run_matches_sequential(data):
    X, y = data
    blr = BLR(X, y)
    starts = [np.zeros(2), np.array([0.5, 0.5])]
    with warnings.catch_warnings():
        warnings.simplefilter('ignore', PoorMixingWarning)
        sequential = ChainEnsemble(blr, IsotropicProposal(0.2), 150, seed=3).run(starts)
        parallel = ChainEnsemble(blr, IsotropicProposal(0.2), 150, seed=3).run(starts, num_cores=2)
    for a, b in zip(sequential, parallel):
        np.testing.assert_array_equal(a.trajectory, b.trajectory)


def test_parallel_workers_are_spawned(data, monkeypatch):
    contexts = []

    class RecordingPool(run_mcmc.ProcessPoolExecutor):
        def __init__(self, *args, **kwargs):
            contexts.append(kwargs.get('mp_context'))
            super().__init__(*args, **kwargs)

    monkeypatch.setattr(run_mcmc, 'ProcessPoolExecutor', RecordingPool)
    X, y = data
    with warnings.catch_warnings():
        warnings.simplefilter('ignore', PoorMixingWarning)
        ChainEnsemble(BLR(X, y), IsotropicProposal(0.2), 20, seed=1).run(
            [np.zeros(2), np.ones(2)], num_cores=2)
    assert len(contexts) == 1
    assert contexts[0].get_start_method() == 'spawn'


def test_poor_mixing_is_a_warning(data):
    X, y = data
    blr = BLR(X, y)
    with pytest.warns(PoorMixingWarning):
        results = ChainEnsemble(blr, IsotropicProposal(0.0), 50, seed=1).run([np.zeros(2)])
    assert results[0].acceptance_rate == 1.0
    assert check_mixing(results, band=(0.0, 1.0)) == []


def test_blrmcmc_workflow(data, tmp_path):
    X, y = data
    mcmc = BLRMCMC(X, y, prior_sd=100.0, names=['intercept', 'x1'])
    proposal = CovarianceProposal.from_design(X, scale=1.5)
    with warnings.catch_warnings():
        warnings.simplefilter('ignore', PoorMixingWarning)
        results = mcmc.run_mcmc(proposal, n_steps=1500, burn_in=300, chains=3, random_seed=4,
                                progress=False, results_path=str(tmp_path))

    assert len(results['chains']) == 3
    np.testing.assert_array_equal(results['chains'][0].initial_state, mcmc.mle.coefficients)
    summary = results['summary']
    assert isinstance(summary, pd.DataFrame)
    assert list(summary.index.get_level_values('method').unique()) == ['chain_0', 'chain_1', 'chain_2']
    assert {'mean', 'sd', '2.5%', '97.5%', 'mle'} <= set(summary.columns)
    # posterior means are close to the MLE for a flat-ish prior and n = 300
    chain0 = summary.loc['chain_0']
    np.testing.assert_allclose(chain0['mean'], chain0['mle'], atol=0.3)
    assert results['convergence_diagnostics']['table'].shape == (2, 2)
    assert list(tmp_path.glob('mh_results_covariance_1500_300_3_4_*.pkl'))

    draws, table = mcmc.predict(np.array([1.0, 0.5]), seed=0)
    assert len(draws) == 1500 - 300
    assert set(draws) <= {0, 1}
    assert table['count'].sum() == len(draws)

    # second call loads the saved file
    again = BLRMCMC(X, y, names=['intercept', 'x1']).run_mcmc(
        proposal, n_steps=1500, burn_in=300, chains=3, random_seed=4, results_path=str(tmp_path))
    np.testing.assert_array_equal(again['chains'][1].trajectory, results['chains'][1].trajectory)


def test_saved_results_are_not_reused_for_other_settings(data, tmp_path):
    X, y = data
    kwargs = dict(n_steps=200, burn_in=10, chains=2, random_seed=4, progress=False,
                  results_path=str(tmp_path))
    with warnings.catch_warnings():
        warnings.simplefilter('ignore', PoorMixingWarning)
        first = BLRMCMC(X, y).run_mcmc(IsotropicProposal(0.01), **kwargs)
        other_step = BLRMCMC(X, y).run_mcmc(IsotropicProposal(5.0), **kwargs)
        other_prior = BLRMCMC(X, y, prior_sd=1.0).run_mcmc(IsotropicProposal(0.01), **kwargs)
        X_b, y_b = simulate_logistic_data(300, TRUE_BETA, rng=np.random.default_rng(99))
        other_data = BLRMCMC(X_b, y_b).run_mcmc(IsotropicProposal(0.01), **kwargs)
        same = BLRMCMC(X, y).run_mcmc(IsotropicProposal(0.01), **kwargs)

    assert other_step['mcmc_settings']['proposal']['step_size'] == 5.0
    assert other_prior['mcmc_settings']['prior_sd'] == 1.0
    fingerprints = {r['mcmc_settings']['fingerprint'] for r in (first, other_step, other_prior, other_data)}
    assert len(fingerprints) == 4
    assert len(list(tmp_path.glob('mh_results_isotropic_200_10_2_4_*.pkl'))) == 4
    # identical settings and data reuse the saved run
    assert same['mcmc_settings']['fingerprint'] == first['mcmc_settings']['fingerprint']
    np.testing.assert_array_equal(same['chains'][1].trajectory, first['chains'][1].trajectory)


def test_blrmcmc_input_errors(data):
    X, y = data
    mcmc = BLRMCMC(X, y)
    with pytest.raises(ConfigurationError):
        mcmc.run_mcmc(IsotropicProposal(0.1), n_steps=10, burn_in=10, chains=1)
    with pytest.raises(RuntimeError):
        mcmc.predict(np.ones(2))


def test_predict_checks_covariate_length(data):
    X, y = data
    mcmc = BLRMCMC(X, y)
    with warnings.catch_warnings():
        warnings.simplefilter('ignore', PoorMixingWarning)
        mcmc.run_mcmc(IsotropicProposal(0.2), n_steps=50, burn_in=10, chains=1, progress=False)
    with pytest.raises(ConfigurationError):
        mcmc.predict(np.ones(3))


def test_main_cli(tmp_path, capsys):
    with warnings.catch_warnings():
        warnings.simplefilter('ignore', PoorMixingWarning)
        main(['--n_obs', '200', '--chains', '2', '--n_steps', '300', '--burn_in', '50',
              '--proposal', 'per_coordinate', '--step_size', '0.2', '--output', str(tmp_path)])
    out = capsys.readouterr().out
    assert 'POSTERIOR SUMMARY' in out
    assert 'POSTERIOR PREDICTIVE' in out
    assert list(tmp_path.glob('mh_results_per_coordinate_*.pkl'))
