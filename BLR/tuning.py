#!/usr/bin/env python3
"""
Step size tuning from short pilot runs
"""

import numpy as np

from MH import MHChain, ConfigurationError
from proposals import PerCoordinateProposal


def _check_band(target_band):
    low, high = target_band
    if not (0.0 <= low < high <= 1.0):
        raise ConfigurationError(f"target_band must satisfy 0 <= low < high <= 1, got {target_band}")
    return float(low), float(high)


def pilot_acceptance_rate(target, proposal, beta0, pilot_steps, rng):
    """Acceptance rate of one pilot chain started at beta0"""
    chain = MHChain(target, proposal, beta0, pilot_steps + 1, rng=rng)
    chain.run()
    return chain.acceptance_rate


def tune_step_size(target, proposal, beta0, target_band=(0.15, 0.25), pilot_steps=500,
                   max_rounds=20, seed=None, verbose=False):
    """
    Halve or double the proposal spread until the pilot acceptance rate is in the band

    Parameters:
    -----------
    target: BLR or callable
        Log posterior
    proposal: Proposal
        Starting proposal; any kind, rescaled through proposal.scaled
    beta0: array-like
        Starting point of every pilot chain
    target_band: tuple
        Acceptable (low, high) acceptance rate
    pilot_steps: int
        Metropolis steps per pilot run
    max_rounds: int
        Maximum number of pilot runs
    seed: int, optional
        Seed for the pilot random streams

    Returns:
    --------
    dict: 'proposal', 'acceptance_rate', 'converged', 'history'
    """
    low, high = _check_band(target_band)
    if pilot_steps < 1 or max_rounds < 1:
        raise ConfigurationError("pilot_steps and max_rounds must be positive")

    streams = np.random.SeedSequence(seed).spawn(max_rounds)
    history = []
    for round_idx in range(max_rounds):
        measured = proposal
        rate = pilot_acceptance_rate(target, measured, beta0, pilot_steps,
                                     np.random.default_rng(streams[round_idx]))
        history.append({'round': round_idx, 'proposal': measured.describe(), 'acceptance_rate': rate})
        if verbose:
            print(f"  Round {round_idx + 1}: acceptance rate {rate:.3f} with {measured.describe()}")

        if low <= rate <= high:
            return {'proposal': measured, 'acceptance_rate': rate, 'converged': True, 'history': history}
        proposal = measured.scaled(0.5 if rate < low else 2.0)

    print(f"Warning: acceptance rate {rate:.3f} still outside [{low}, {high}] after {max_rounds} rounds")
    return {'proposal': measured, 'acceptance_rate': rate, 'converged': False, 'history': history}


def tune_per_coordinate(target, step_sizes, beta0, target_band=(0.15, 0.25), pilot_steps=500,
                        max_rounds=20, joint=True, seed=None, verbose=False):
    """
    Tune one step size per coordinate, moving only that coordinate in its pilots

    Coordinates with very different natural scales (an intercept against a
    covariate with a small physical range) need their own step sizes. After the
    individual passes the whole vector can be rescaled jointly into the band.

    Returns:
    --------
    dict: 'proposal' (PerCoordinateProposal), 'acceptance_rate', 'converged',
          'coordinates' (per-coordinate tuning results), 'history'
    """
    low, high = _check_band(target_band)
    step_sizes = np.array(step_sizes, dtype=float)
    beta0 = np.asarray(beta0, dtype=float)
    if step_sizes.shape != beta0.shape:
        raise ConfigurationError(
            f"step_sizes has shape {step_sizes.shape}, expected {beta0.shape} to match beta0")
    if np.any(step_sizes <= 0):
        # halving or doubling a zero step never changes it
        raise ConfigurationError("Initial step sizes must be positive for tuning")

    seeds = np.random.SeedSequence(seed).spawn(len(step_sizes) + 1)
    coordinates = []
    for j in range(len(step_sizes)):
        only_j = np.zeros_like(step_sizes)
        only_j[j] = step_sizes[j]
        result = tune_step_size(target, PerCoordinateProposal(only_j), beta0, target_band=(low, high),
                                pilot_steps=pilot_steps, max_rounds=max_rounds,
                                seed=seeds[j], verbose=verbose)
        step_sizes[j] = result['proposal'].step_sizes[j]
        coordinates.append({'coordinate': j, 'step_size': step_sizes[j],
                            'acceptance_rate': result['acceptance_rate'],
                            'converged': result['converged']})
        if verbose:
            print(f"Coordinate {j}: step size {step_sizes[j]:.4g}, acceptance rate {result['acceptance_rate']:.3f}")

    proposal = PerCoordinateProposal(step_sizes)
    if not joint:
        rate = pilot_acceptance_rate(target, proposal, beta0, pilot_steps, np.random.default_rng(seeds[-1]))
        return {'proposal': proposal, 'acceptance_rate': rate, 'converged': low <= rate <= high,
                'coordinates': coordinates, 'history': []}

    result = tune_step_size(target, proposal, beta0, target_band=(low, high), pilot_steps=pilot_steps,
                            max_rounds=max_rounds, seed=seeds[-1], verbose=verbose)
    result['coordinates'] = coordinates
    return result
