import numpy as np
import pandas as pd
from dataclasses import dataclass
from scipy.stats import norm
from sklearn.linear_model import LogisticRegression

from MH import ConfigurationError


def log_sigmoid(eta):
    """Numerically stable log(1 / (1 + exp(-eta)))"""
    eta = np.asarray(eta, dtype=float)
    # eta >= 0: -log1p(exp(-eta)); eta < 0: eta - log1p(exp(eta))
    return np.minimum(eta, 0.0) - np.log1p(np.exp(-np.abs(eta)))


def log_likelihood(beta, X, y):
    """Bernoulli log likelihood under the logistic link"""
    eta = np.asarray(X, dtype=float) @ beta
    ones = np.asarray(y) == 1
    return np.sum(log_sigmoid(eta[ones])) + np.sum(log_sigmoid(-eta[~ones]))


def log_prior(beta, prior_sd):
    """Independent N(0, prior_sd^2) log density summed over coefficients"""
    return np.sum(norm.logpdf(beta, loc=0.0, scale=prior_sd))


def log_posterior(beta, X, y, prior_sd):
    """
    Unnormalised log posterior for Bayesian logistic regression

    Parameters:
    -----------
    beta: array-like, shape (k,)
        Regression coefficients (intercept included)
    X: array-like, shape (n, k)
        Design matrix
    y: array-like, shape (n,)
        Binary response
    prior_sd: float or array-like, shape (k,)
        Standard deviation of the independent normal priors

    Returns:
    --------
    float: log likelihood + log prior. NaN or -inf for degenerate beta.
    """
    beta = np.asarray(beta, dtype=float)
    return float(log_likelihood(beta, X, y) + log_prior(beta, prior_sd))


@dataclass(frozen=True)
class MLEBaseline:
    """Read-only maximum likelihood fit used for initial states and comparison"""
    coefficients: np.ndarray
    names: tuple

    def __post_init__(self):
        coef = np.array(self.coefficients, dtype=float)
        coef.setflags(write=False)
        object.__setattr__(self, 'coefficients', coef)
        object.__setattr__(self, 'names', tuple(self.names))
        if len(self.names) != coef.shape[0]:
            raise ConfigurationError(
                f"MLE baseline has {coef.shape[0]} coefficients but {len(self.names)} names")

    def as_series(self):
        return pd.Series(self.coefficients, index=list(self.names), name='mle')


class BLR:
    def __init__(self, X_train=None, y_train=None, prior_sd=100.0, names=None):
        """
        Bayesian Logistic Regression with independent normal priors

        Parameters:
        -----------
        X_train: design matrix, intercept column included
        y_train: training labels (binary: 0 or 1)
        prior_sd: prior standard deviation, scalar or one per coefficient
        names: optional coefficient names
        """
        self.X_train = None
        self.y_train = None
        self.prior_sd = prior_sd
        self.names = names

        if X_train is not None and y_train is not None:
            self._initialize_model(X_train, y_train)

    def _initialize_model(self, X_train, y_train):
        """Validate data and prior settings"""
        X = np.array(X_train, dtype=float)
        y = np.array(y_train)
        if X.ndim != 2:
            raise ConfigurationError(f"Design matrix must be 2-D, got shape {X.shape}")
        if y.ndim != 1 or y.shape[0] != X.shape[0]:
            raise ConfigurationError(
                f"Response length {y.shape} does not match {X.shape[0]} observations")
        if not np.all(np.isin(y, [0, 1])):
            raise ValueError(f"Labels must be binary [0, 1], but found {np.unique(y)}")

        self.n_samples, self.n_features = X.shape
        prior_sd = np.asarray(self.prior_sd, dtype=float)
        if prior_sd.ndim > 1 or (prior_sd.ndim == 1 and prior_sd.shape[0] != self.n_features):
            raise ConfigurationError(
                f"prior_sd must be a scalar or have length {self.n_features}, got shape {prior_sd.shape}")
        if np.any(prior_sd <= 0) or not np.all(np.isfinite(prior_sd)):
            raise ConfigurationError("prior_sd must be positive and finite")

        if self.names is None:
            self.names = [f"beta_{j}" for j in range(self.n_features)]
        elif len(self.names) != self.n_features:
            raise ConfigurationError(
                f"Got {len(self.names)} coefficient names for {self.n_features} covariates")

        # shared read-only across chains
        X.setflags(write=False)
        y = y.astype(int)
        y.setflags(write=False)
        self.X_train = X
        self.y_train = y
        self.prior_sd = prior_sd if prior_sd.ndim else float(prior_sd)

    def check_coefficients(self, beta, what='coefficient vector'):
        beta = np.asarray(beta, dtype=float)
        if beta.shape != (self.n_features,):
            raise ConfigurationError(
                f"{what} has shape {beta.shape}, expected ({self.n_features},)")
        return beta

    def log_prior(self, beta):
        """Compute log prior probability"""
        return float(log_prior(beta, self.prior_sd))

    def log_likelihood(self, beta):
        """Compute log likelihood for binary classification"""
        return float(log_likelihood(np.asarray(beta, dtype=float), self.X_train, self.y_train))

    def log_posterior(self, beta):
        """Compute log posterior probability"""
        return log_posterior(beta, self.X_train, self.y_train, self.prior_sd)

    def __call__(self, beta):
        return self.log_posterior(beta)

    def predict_proba(self, beta, X):
        """Success probability for each row of X"""
        eta = np.asarray(X, dtype=float) @ np.asarray(beta, dtype=float)
        return np.exp(log_sigmoid(eta))

    def fit_mle(self):
        """
        Maximum likelihood fit with scikit-learn, intercept taken from X

        Returns:
        --------
        MLEBaseline
        """
        # unpenalised fit; penalty=None is deprecated from scikit-learn 1.8
        clf = LogisticRegression(C=np.inf, fit_intercept=False, max_iter=10000)
        clf.fit(self.X_train, self.y_train)
        return MLEBaseline(coefficients=clf.coef_.ravel(), names=self.names)


def simulate_logistic_data(n_samples, beta, rng=None, covariate_scale=1.0):
    """
    Simulate a design matrix with intercept and a binary response

    Parameters:
    -----------
    n_samples: number of observations
    beta: true coefficients, first entry is the intercept
    rng: numpy Generator (a fresh default generator when None)
    covariate_scale: standard deviation of the simulated covariates

    Returns:
    --------
    X, y
    """
    rng = np.random.default_rng() if rng is None else rng
    beta = np.asarray(beta, dtype=float)
    covariates = rng.normal(scale=covariate_scale, size=(n_samples, beta.shape[0] - 1))
    X = np.column_stack([np.ones(n_samples), covariates])
    p = np.exp(log_sigmoid(X @ beta))
    y = rng.binomial(1, p)
    return X, y


def load_csv_dataset(path, response, covariates=None, dropna=True):
    """Load a tabular dataset and build the design matrix with an intercept column"""
    print(f"Loading dataset from {path}...")
    df = pd.read_csv(path)
    if covariates is None:
        covariates = [c for c in df.columns if c != response]
    missing = [c for c in [response, *covariates] if c not in df.columns]
    if missing:
        raise ConfigurationError(f"Columns not found in {path}: {missing}")
    df = df[[response, *covariates]]
    if dropna:
        n_before = len(df)
        df = df.dropna()
        if len(df) < n_before:
            print(f"Dropped {n_before - len(df)} rows with missing values")

    X = np.column_stack([np.ones(len(df)), df[covariates].to_numpy(dtype=float)])
    y = df[response].to_numpy()
    names = ['intercept', *covariates]
    print(f"Loaded {X.shape[0]} observations, {X.shape[1]} coefficients")
    print(f"Class distribution: {np.bincount(y.astype(int))}")
    return X, y, names
