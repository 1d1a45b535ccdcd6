import numpy as np
from tqdm.auto import tqdm


class ConfigurationError(ValueError):
    """Mismatched dimensions or invalid sampler settings"""


class DegenerateInitialState(ValueError):
    """Initial coefficients give a non-finite log posterior"""


class PoorMixingWarning(UserWarning):
    """Acceptance rate outside the healthy band"""


INITIALIZED = 'initialized'
RUNNING = 'running'
COMPLETED = 'completed'


def _readonly(view):
    view.flags.writeable = False
    return view


def _as_log_density(target):
    if hasattr(target, 'log_posterior'):
        return target.log_posterior
    if callable(target):
        return target
    raise ConfigurationError(f"target must be callable or expose log_posterior, got {type(target)}")


class MHChain():

    def __init__(self, target, proposal, beta0, n_steps, rng=None, seed=None):
        """
        Random-walk Metropolis chain.

        Parameters:
        -----------
        target: BLR or callable
            Object exposing log_posterior(beta), or the log density itself
        proposal: Proposal
            Symmetric proposal, see proposals.py
        beta0: array-like, shape (k,)
            Initial state, stored as row 0 of the trajectory
        n_steps: int
            Chain length S including the initial state
        rng: numpy.random.Generator, optional
            Private random stream of this chain
        seed: int or SeedSequence, optional
            Used to build a generator when rng is None
        """
        self.log_density = _as_log_density(target)
        self.proposal = proposal

        n_steps = int(n_steps)
        if n_steps < 1:
            raise ConfigurationError(f"n_steps must be at least 1, got {n_steps}")

        beta0 = np.array(beta0, dtype=float)
        if beta0.ndim != 1:
            raise ConfigurationError(f"Initial state must be a vector, got shape {beta0.shape}")
        if hasattr(target, 'check_coefficients'):
            target.check_coefficients(beta0, what='initial state')
        if proposal.dim is not None and proposal.dim != beta0.shape[0]:
            raise ConfigurationError(
                f"Proposal dimension {proposal.dim} does not match initial state length {beta0.shape[0]}")

        lnpost0 = self.log_density(beta0)
        if not np.isfinite(lnpost0):
            raise DegenerateInitialState(
                f"Log posterior at the initial state is {lnpost0}; choose a different starting point")

        self.rng = rng if rng is not None else np.random.default_rng(seed)
        self.n_steps = n_steps
        self.ndim = beta0.shape[0]

        self._samples = np.zeros((n_steps, self.ndim))
        self._samples[0] = beta0
        self._proposals = np.zeros((n_steps - 1, self.ndim))
        self._lnposts = np.zeros(n_steps)
        self._lnposts[0] = lnpost0
        self._accepted = np.zeros(n_steps - 1, dtype=bool)

        self.n_taken = 0
        self.n_accepted = 0
        self.n_degenerate = 0
        self.status = INITIALIZED

    @property
    def state(self):
        return self._samples[self.n_taken].copy()

    @property
    def lnpost(self):
        return self._lnposts[self.n_taken]

    def step(self):
        """Advance the chain by one Metropolis step and return whether the proposal was accepted"""
        if self.status == COMPLETED:
            raise RuntimeError("Chain is completed; no further steps can be taken")
        self.status = RUNNING

        t = self.n_taken + 1
        current = self._samples[t - 1]
        current_lnpost = self._lnposts[t - 1]

        candidate = self.proposal.propose(current, self.rng)
        with np.errstate(over='ignore', invalid='ignore'):
            candidate_lnpost = self.log_density(candidate)
        # always drawn so the stream does not depend on the outcome
        u = self.rng.uniform()

        if not np.isfinite(candidate_lnpost):
            self.n_degenerate += 1
            accept = False
        else:
            delta = candidate_lnpost - current_lnpost
            accept = delta >= 0 or u <= np.exp(delta)

        self._proposals[t - 1] = candidate
        if accept:
            self._samples[t] = candidate
            self._lnposts[t] = candidate_lnpost
            self.n_accepted += 1
        else:
            self._samples[t] = current
            self._lnposts[t] = current_lnpost
        self._accepted[t - 1] = accept

        self.n_taken = t
        if self.n_taken == self.n_steps - 1:
            self.status = COMPLETED
        return accept

    def run(self, progress=False, desc=None):
        """Run the remaining steps of the chain"""
        remaining = self.n_steps - 1 - self.n_taken
        if self.status == COMPLETED:
            return self
        if remaining <= 0:
            self.status = COMPLETED
            return self
        for _ in tqdm(range(remaining), desc=desc, disable=not progress):
            self.step()
        return self

    def stop(self):
        """Stop early; the history taken so far becomes the final trajectory"""
        self.status = COMPLETED
        return self

    @property
    def trajectory(self):
        return _readonly(self._samples[:self.n_taken + 1])

    @property
    def proposals(self):
        return _readonly(self._proposals[:self.n_taken])

    @property
    def log_posteriors(self):
        return _readonly(self._lnposts[:self.n_taken + 1])

    @property
    def accepted(self):
        return _readonly(self._accepted[:self.n_taken])

    @property
    def acceptance_rate(self):
        if self.n_taken == 0:
            return float('nan')
        return self.n_accepted / self.n_taken
