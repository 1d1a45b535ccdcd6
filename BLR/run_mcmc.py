#!/usr/bin/env python3
"""
Random-walk Metropolis for Bayesian Logistic Regression
Runs several independent chains from different starting points and compares
the posterior with the maximum likelihood fit
"""

import numpy as np
import os
import pickle
import warnings
import argparse
import multiprocessing as mp
from concurrent.futures import ProcessPoolExecutor
from dataclasses import dataclass

from MH import MHChain, ConfigurationError, PoorMixingWarning
from model import BLR, MLEBaseline, simulate_logistic_data, load_csv_dataset
from proposals import make_proposal, PROPOSAL_MODES
from tuning import tune_step_size, tune_per_coordinate
from summarize import compare_methods, convergence_diagnostics
from predictive import posterior_predictive, predictive_table
from load_mcmc_results import results_filename, save_mcmc_results, settings_fingerprint

HEALTHY_ACCEPTANCE_BAND = (0.05, 0.70)


@dataclass(frozen=True)
class ChainResult:
    trajectory: np.ndarray
    log_posteriors: np.ndarray
    acceptance_rate: float
    n_accepted: int
    n_degenerate: int
    initial_state: np.ndarray
    seed: object = None

    @property
    def n_steps(self):
        return self.trajectory.shape[0]


def _run_single_chain(job):
    """Run one chain to completion (module-level for pickling)"""
    target, proposal, beta0, n_steps, seed, progress, desc = job
    chain = MHChain(target, proposal, beta0, n_steps, seed=seed)
    chain.run(progress=progress, desc=desc)
    return ChainResult(
        trajectory=chain.trajectory.copy(),
        log_posteriors=chain.log_posteriors.copy(),
        acceptance_rate=chain.acceptance_rate,
        n_accepted=chain.n_accepted,
        n_degenerate=chain.n_degenerate,
        initial_state=chain.trajectory[0].copy(),
        seed=seed,
    )


def initial_states(mle, n_random, low=-1.0, high=1.0, rng=None):
    """
    Starting points: the MLE coefficients followed by uniform random draws

    Parameters:
    -----------
    mle: MLEBaseline or array-like
        Maximum likelihood coefficients, first starting point
    n_random: int
        Number of additional random starting points
    low, high: float or array-like
        Range of the uniform draws per coefficient
    rng: numpy.random.Generator, optional
    """
    coef = mle.coefficients if isinstance(mle, MLEBaseline) else np.asarray(mle, dtype=float)
    rng = rng if rng is not None else np.random.default_rng()
    if n_random < 0:
        raise ConfigurationError(f"n_random must be non-negative, got {n_random}")
    states = [np.array(coef, dtype=float)]
    for _ in range(n_random):
        states.append(rng.uniform(low, high, size=coef.shape[0]))
    return states


def check_mixing(results, band=HEALTHY_ACCEPTANCE_BAND):
    """Warn for every chain whose acceptance rate lies outside the healthy band"""
    low, high = band
    poor = []
    for i, result in enumerate(results):
        rate = result.acceptance_rate
        if np.isfinite(rate) and not (low <= rate <= high):
            poor.append(i)
            warnings.warn(
                f"Chain {i} acceptance rate {rate:.3f} is outside [{low}, {high}]; "
                f"consider tuning the proposal scale", PoorMixingWarning, stacklevel=2)
    return poor


class ChainEnsemble:

    def __init__(self, target, proposal, n_steps, seeds=None, seed=None):
        """
        Independent Metropolis chains sharing one target and one proposal

        Parameters:
        -----------
        target: BLR or callable
            Log posterior, read-only and shared by every chain
        proposal: Proposal
            Proposal configuration used by every chain
        n_steps: int
            Length of every chain including the initial state
        seeds: list, optional
            One seed per chain; overrides seed
        seed: int or SeedSequence, optional
            Root seed from which independent per-chain streams are spawned
        """
        self.target = target
        self.proposal = proposal
        self.n_steps = int(n_steps)
        self.seeds = seeds
        self.seed = seed
        self.results = None

    def _chain_seeds(self, n_chains):
        if self.seeds is not None:
            if len(self.seeds) != n_chains:
                raise ConfigurationError(f"Got {len(self.seeds)} seeds for {n_chains} chains")
            return list(self.seeds)
        root = self.seed if isinstance(self.seed, np.random.SeedSequence) else np.random.SeedSequence(self.seed)
        return root.spawn(n_chains)

    def run(self, initial_states, num_cores=None, progress=False, mixing_band=HEALTHY_ACCEPTANCE_BAND):
        """
        Run one chain per initial state

        Returns:
        --------
        list of ChainResult, in the order of initial_states
        """
        if len(initial_states) == 0:
            raise ConfigurationError("At least one initial state is required")
        seeds = self._chain_seeds(len(initial_states))
        jobs = [(self.target, self.proposal, beta0, self.n_steps, s, progress, f"chain {i}")
                for i, (beta0, s) in enumerate(zip(initial_states, seeds))]

        if num_cores is not None and num_cores > 1 and len(jobs) > 1:
            print(f"Running {len(jobs)} chains of {self.n_steps} steps on {num_cores} cores...")
            ctx = mp.get_context("spawn")
            with ProcessPoolExecutor(max_workers=num_cores, mp_context=ctx) as pool:
                results = list(pool.map(_run_single_chain, jobs))
        else:
            results = [_run_single_chain(job) for job in jobs]

        check_mixing(results, band=mixing_band)
        self.results = results
        return results

    @property
    def trajectories(self):
        return [r.trajectory for r in self.results] if self.results is not None else None

    @property
    def acceptance_rates(self):
        return np.array([r.acceptance_rate for r in self.results]) if self.results is not None else None


class BLRMCMC:
    def __init__(self, X_train, y_train, prior_sd=100.0, names=None):
        """
        Metropolis-Hastings workflow for Bayesian Logistic Regression

        Parameters:
        -----------
        X_train: design matrix, intercept column included
        y_train: training labels (binary: 0 or 1)
        prior_sd: prior standard deviation of every coefficient
        names: optional coefficient names
        """
        self.model = BLR(X_train, y_train, prior_sd=prior_sd, names=names)
        self.mle = None
        self.results = None

        print(f"Model initialized: {self.model.n_samples} observations, {self.model.n_features} coefficients")

    def fit_mle(self):
        """Maximum likelihood baseline, computed once and reused"""
        if self.mle is None:
            self.mle = self.model.fit_mle()
            print("MLE coefficients:")
            for name, value in zip(self.mle.names, self.mle.coefficients):
                print(f"  {name}: {value:.4f}")
        return self.mle

    def run_mcmc(self, proposal, n_steps=10000, burn_in=1000, chains=4, random_seed=42,
                 init_low=-1.0, init_high=1.0, num_cores=None, progress=True,
                 results_path=None, force_rerun=False):
        """
        Run the chain ensemble and summarise it

        Parameters:
        -----------
        proposal: Proposal
            Random-walk proposal shared by all chains
        n_steps: number of states per chain, initial state included
        burn_in: number of leading states discarded before summaries
        chains: number of chains; the first starts at the MLE
        random_seed: root seed for initial states and chain streams
        init_low, init_high: range of the random starting points
        num_cores: worker processes (None or 1 runs sequentially)
        results_path: directory for the pickle file (None disables saving)
        force_rerun: if True, run even if saved results exist

        Returns:
        --------
        dict: chains, summary, diagnostics, mle and settings
        """
        if burn_in < 0 or burn_in > n_steps - 1:
            raise ConfigurationError(f"burn_in must lie in [0, {n_steps - 1}], got {burn_in}")

        settings = {
            'n_steps': n_steps,
            'burn_in': burn_in,
            'chains': chains,
            'random_seed': random_seed,
            'init_low': np.asarray(init_low).tolist(),
            'init_high': np.asarray(init_high).tolist(),
            'prior_sd': np.asarray(self.model.prior_sd).tolist(),
            'proposal': proposal.describe(),
        }
        # a changed step size, prior or dataset must not reuse an old run
        settings['fingerprint'] = settings_fingerprint(settings, self.model.X_train, self.model.y_train)

        if results_path is not None and not force_rerun:
            results_file = os.path.join(results_path, results_filename(
                n_steps, burn_in, chains, proposal.mode, random_seed, settings['fingerprint']))
            if os.path.exists(results_file):
                print(f"Loading existing MCMC results from {results_file}")
                with open(results_file, 'rb') as f:
                    loaded = pickle.load(f)
                if loaded.get('mcmc_settings', {}).get('fingerprint') == settings['fingerprint']:
                    self.results = loaded
                    return self.results
                print("Saved settings differ from the requested ones, sampling again")

        mle = self.fit_mle()
        init_seq, chain_seq = np.random.SeedSequence(random_seed).spawn(2)
        starts = initial_states(mle, chains - 1, init_low, init_high, rng=np.random.default_rng(init_seq))

        print(f"Running {chains} chains x {n_steps} steps with {proposal.describe()['mode']} proposal...")
        ensemble = ChainEnsemble(self.model, proposal, n_steps, seed=chain_seq)
        chain_results = ensemble.run(starts, num_cores=num_cores, progress=progress)

        for i, result in enumerate(chain_results):
            print(f"  chain {i}: acceptance rate {result.acceptance_rate:.3f}")

        trajectories = {f"chain_{i}": r.trajectory for i, r in enumerate(chain_results)}
        summary = compare_methods(trajectories, burn_in, mle=mle)

        diagnostics = None
        if chains > 1 and n_steps - burn_in >= 4:
            diagnostics = convergence_diagnostics([r.trajectory for r in chain_results], burn_in,
                                                  names=self.model.names, verbose=True)

        self.results = {
            'chains': chain_results,
            'acceptance_rates': ensemble.acceptance_rates,
            'summary': summary,
            'convergence_diagnostics': diagnostics,
            'mle': mle,
            'names': list(self.model.names),
            'mcmc_settings': settings,
        }

        if results_path is not None:
            save_mcmc_results(self.results, results_path)

        return self.results

    def predict(self, x_new, chain=0, burn_in=None, seed=None):
        """
        Posterior predictive draws at x_new from one chain of the last run

        Returns:
        --------
        draws: list of 0/1
        table: DataFrame of counts and frequencies
        """
        if self.results is None:
            raise RuntimeError("run_mcmc must be called before predict")
        if burn_in is None:
            burn_in = self.results['mcmc_settings']['burn_in']
        x_new = self.model.check_coefficients(x_new, what='x_new')
        trajectory = self.results['chains'][chain].trajectory
        draws = list(posterior_predictive(trajectory, burn_in, x_new, seed=seed))
        return draws, predictive_table(draws)


def _build_proposal(args, model, start):
    k = model.n_features
    step_sizes = np.array(args.step_sizes, dtype=float) if args.step_sizes else None
    proposal = make_proposal(args.proposal, k, step_size=args.step_size, step_sizes=step_sizes,
                             X=model.X_train, scale=args.cov_scale)
    if not args.tune:
        return proposal

    band = (args.target_low, args.target_high)
    print(f"Tuning {args.proposal} proposal towards acceptance rate in {band}...")
    if args.proposal == 'per_coordinate':
        tuned = tune_per_coordinate(model, proposal.step_sizes, start, target_band=band,
                                    pilot_steps=args.pilot_steps, seed=args.random_seed, verbose=True)
    else:
        tuned = tune_step_size(model, proposal, start, target_band=band,
                               pilot_steps=args.pilot_steps, seed=args.random_seed, verbose=True)
    print(f"Tuned proposal: {tuned['proposal'].describe()} "
          f"(pilot acceptance rate {tuned['acceptance_rate']:.3f})")
    return tuned['proposal']


def main(argv=None):
    """Main function"""
    parser = argparse.ArgumentParser(description='Random-walk Metropolis for Bayesian Logistic Regression')
    parser.add_argument('--data', type=str, default=None,
                       help='CSV file; simulated data is used when omitted')
    parser.add_argument('--response', type=str, default='y',
                       help='Binary response column of the CSV file')
    parser.add_argument('--covariates', type=str, nargs='+', default=None,
                       help='Covariate columns (default: every other column)')
    parser.add_argument('--n_obs', type=int, default=500,
                       help='Number of simulated observations')
    parser.add_argument('--chains', type=int, default=4,
                       help='Number of chains')
    parser.add_argument('--n_steps', type=int, default=10000,
                       help='States per chain, initial state included')
    parser.add_argument('--burn_in', type=int, default=1000,
                       help='Leading states discarded before summaries')
    parser.add_argument('--prior_sd', type=float, default=100.0,
                       help='Prior standard deviation of every coefficient')
    parser.add_argument('--proposal', choices=PROPOSAL_MODES, default='isotropic',
                       help='Proposal mode')
    parser.add_argument('--step_size', type=float, default=0.1,
                       help='Isotropic step size (default per-coordinate step)')
    parser.add_argument('--step_sizes', type=float, nargs='+', default=None,
                       help='Per-coordinate step sizes')
    parser.add_argument('--cov_scale', type=float, default=1.5,
                       help='Tuning constant multiplying (X^T X)^-1')
    parser.add_argument('--tune', action='store_true',
                       help='Tune the proposal scale with pilot runs before sampling')
    parser.add_argument('--pilot_steps', type=int, default=500,
                       help='Steps per pilot run when tuning')
    parser.add_argument('--target_low', type=float, default=0.15,
                       help='Lower end of the target acceptance rate band')
    parser.add_argument('--target_high', type=float, default=0.25,
                       help='Upper end of the target acceptance rate band')
    parser.add_argument('--init_low', type=float, default=-1.0,
                       help='Lower bound of random starting points')
    parser.add_argument('--init_high', type=float, default=1.0,
                       help='Upper bound of random starting points')
    parser.add_argument('--x_new', type=float, nargs='+', default=None,
                       help='Covariate vector for prediction, intercept included (default: column means)')
    parser.add_argument('--random_seed', type=int, default=42,
                       help='Random seed for reproducibility')
    parser.add_argument('--num_cores', type=int, default=None,
                       help='Worker processes for running chains in parallel')
    parser.add_argument('--output', type=str, default='results/',
                       help='Directory for the results pickle file')
    parser.add_argument('--force_rerun', action='store_true',
                       help='Ignore saved results and sample again')

    args = parser.parse_args(argv)

    print("="*50)
    print("BAYESIAN LOGISTIC REGRESSION - METROPOLIS-HASTINGS")
    print("="*50)
    print(f"Settings:")
    print(f"  Chains: {args.chains}")
    print(f"  Steps per chain: {args.n_steps}")
    print(f"  Burn-in: {args.burn_in}")
    print(f"  Prior sd: {args.prior_sd}")
    print(f"  Proposal: {args.proposal}")
    print(f"  Random seed: {args.random_seed}")
    print("="*50)

    if args.data is not None:
        X, y, names = load_csv_dataset(args.data, args.response, args.covariates)
    else:
        true_beta = np.array([-0.5, 1.0, -2.0])
        print(f"Simulating {args.n_obs} observations with coefficients {true_beta}")
        X, y = simulate_logistic_data(args.n_obs, true_beta, rng=np.random.default_rng(args.random_seed))
        names = ['intercept', 'x1', 'x2']

    mcmc = BLRMCMC(X, y, prior_sd=args.prior_sd, names=names)
    mle = mcmc.fit_mle()
    proposal = _build_proposal(args, mcmc.model, mle.coefficients)

    results = mcmc.run_mcmc(
        proposal,
        n_steps=args.n_steps,
        burn_in=args.burn_in,
        chains=args.chains,
        random_seed=args.random_seed,
        init_low=args.init_low,
        init_high=args.init_high,
        num_cores=args.num_cores,
        results_path=args.output,
        force_rerun=args.force_rerun,
    )

    print("\n" + "="*50)
    print("POSTERIOR SUMMARY")
    print("="*50)
    print(results['summary'].to_string(float_format=lambda v: f"{v:.4f}"))

    x_new = np.array(args.x_new) if args.x_new is not None else X.mean(axis=0)
    draws, table = mcmc.predict(x_new, chain=0, seed=args.random_seed)
    print("\n" + "="*50)
    print(f"POSTERIOR PREDICTIVE AT x_new = {np.round(x_new, 4)}")
    print("="*50)
    print(table.to_string())


if __name__ == "__main__":
    main()
