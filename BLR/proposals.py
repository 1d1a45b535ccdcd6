'''Symmetric random-walk proposals for the Metropolis sampler.'''


import numpy as np

from MH import ConfigurationError


class Proposal:
    """Base class. Subclasses draw a candidate centred on the current state."""

    dim = None

    def propose(self, current, rng):
        raise NotImplementedError

    def scaled(self, factor):
        """New proposal with the spread multiplied by factor"""
        raise NotImplementedError

    def describe(self):
        return {'mode': self.mode}


class IsotropicProposal(Proposal):
    mode = 'isotropic'

    def __init__(self, step_size, dim=None):
        step_size = float(step_size)
        if not np.isfinite(step_size) or step_size < 0:
            raise ConfigurationError(f"step_size must be non-negative, got {step_size}")
        self.step_size = step_size
        self.dim = dim

    def propose(self, current, rng):
        return rng.normal(loc=current, scale=self.step_size, size=np.shape(current))

    def scaled(self, factor):
        return IsotropicProposal(self.step_size * factor, dim=self.dim)

    def describe(self):
        return {'mode': self.mode, 'step_size': self.step_size}


class PerCoordinateProposal(Proposal):
    mode = 'per_coordinate'

    def __init__(self, step_sizes):
        step_sizes = np.array(step_sizes, dtype=float)
        if step_sizes.ndim != 1:
            raise ConfigurationError(f"step_sizes must be a vector, got shape {step_sizes.shape}")
        if not np.all(np.isfinite(step_sizes)) or np.any(step_sizes < 0):
            raise ConfigurationError("step_sizes must be non-negative and finite")
        step_sizes.setflags(write=False)
        self.step_sizes = step_sizes
        self.dim = step_sizes.shape[0]

    def propose(self, current, rng):
        return rng.normal(loc=current, scale=self.step_sizes, size=self.dim)

    def scaled(self, factor):
        return PerCoordinateProposal(self.step_sizes * factor)

    def with_step(self, j, step_size):
        """Copy with coordinate j's step size replaced"""
        step_sizes = self.step_sizes.copy()
        step_sizes[j] = step_size
        return PerCoordinateProposal(step_sizes)

    def describe(self):
        return {'mode': self.mode, 'step_sizes': self.step_sizes.tolist()}


class CovarianceProposal(Proposal):
    mode = 'covariance'

    def __init__(self, covariance, scale=1.0):
        covariance = np.array(covariance, dtype=float)
        if covariance.ndim != 2 or covariance.shape[0] != covariance.shape[1]:
            raise ConfigurationError(f"covariance must be square, got shape {covariance.shape}")
        if not np.allclose(covariance, covariance.T):
            raise ConfigurationError("covariance must be symmetric")
        scale = float(scale)
        if not np.isfinite(scale) or scale < 0:
            raise ConfigurationError(f"scale must be non-negative, got {scale}")
        covariance.setflags(write=False)
        self.base_covariance = covariance
        self.scale = scale
        self.dim = covariance.shape[0]

    @classmethod
    def from_design(cls, X, scale=1.5):
        """Base covariance (X^T X)^-1, pseudo-inverse when X^T X is singular"""
        X = np.asarray(X, dtype=float)
        xtx = X.T @ X
        try:
            base = np.linalg.inv(xtx)
        except np.linalg.LinAlgError:
            print("Singular X^T X detected, using pseudo-inverse")
            base = np.linalg.pinv(xtx)
        # symmetrise rounding error before the symmetry check
        base = 0.5 * (base + base.T)
        return cls(base, scale=scale)

    @property
    def covariance(self):
        return self.scale * self.base_covariance

    def propose(self, current, rng):
        return rng.multivariate_normal(mean=current, cov=self.covariance)

    def scaled(self, factor):
        return CovarianceProposal(self.base_covariance, scale=self.scale * factor)

    def describe(self):
        return {'mode': self.mode, 'scale': self.scale, 'covariance': self.covariance.tolist()}


PROPOSAL_MODES = ('isotropic', 'per_coordinate', 'covariance')


def make_proposal(mode, dim, step_size=None, step_sizes=None, covariance=None, X=None, scale=1.5):
    """
    Build a proposal from configuration values

    Parameters:
    -----------
    mode: str
        'isotropic', 'per_coordinate' or 'covariance'
    dim: int
        Number of coefficients k
    step_size: float, optional
        Isotropic step size, also the default for every coordinate in per_coordinate mode
    step_sizes: array-like, optional
        Per-coordinate step sizes
    covariance: array-like, optional
        Base covariance for covariance mode
    X: array-like, optional
        Design matrix; base covariance (X^T X)^-1 when covariance is not given
    scale: float
        Tuning constant multiplying the base covariance
    """
    if mode == 'isotropic':
        if step_size is None:
            raise ConfigurationError("isotropic proposal requires step_size")
        return IsotropicProposal(step_size, dim=dim)
    if mode == 'per_coordinate':
        if step_sizes is None:
            if step_size is None:
                raise ConfigurationError("per_coordinate proposal requires step_sizes or step_size")
            step_sizes = np.full(dim, step_size)
        proposal = PerCoordinateProposal(step_sizes)
    elif mode == 'covariance':
        if covariance is not None:
            proposal = CovarianceProposal(covariance, scale=scale)
        elif X is not None:
            proposal = CovarianceProposal.from_design(X, scale=scale)
        else:
            raise ConfigurationError("covariance proposal requires covariance or X")
    else:
        raise ConfigurationError(f"Unknown proposal mode: {mode!r}. Use one of {PROPOSAL_MODES}")

    if proposal.dim != dim:
        raise ConfigurationError(f"{mode} proposal has dimension {proposal.dim}, expected {dim}")
    return proposal
