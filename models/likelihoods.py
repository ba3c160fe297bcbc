"""Per-view noise models.

Gaussian views are modelled directly. Count (Poisson) and binary (Bernoulli)
views are fitted through Gaussian pseudo-data: with a fixed upper bound
``kappa`` on the curvature of the negative log-likelihood, the bound

    -log p(y | eta) <= f(eta0) + f'(eta0) (eta - eta0) + kappa / 2 (eta - eta0)^2

turns each observation into a Gaussian observation
``y_hat = eta0 - f'(eta0) / kappa`` with precision ``kappa``
(Seeger & Bouchard 2012), which the variational updates treat like data.
"""

from typing import Dict, Type

import numpy as np
from scipy.special import expit, gammaln

_EPS = 1e-10


def softplus(x: np.ndarray) -> np.ndarray:
    return np.logaddexp(0.0, x)


class Likelihood:
    """Base noise model; subclasses implement the non-Gaussian bound."""

    name = "base"
    is_gaussian = False

    def validate(self, Y: np.ndarray, view_name: str) -> None:
        """Raise ValueError if observed values are impossible under the model."""

    def initial_intercept(self, Y: np.ndarray) -> np.ndarray:
        """Per-feature intercept on the linear-predictor scale."""
        raise NotImplementedError

    def precision(self, Y: np.ndarray) -> np.ndarray:
        """Fixed per-feature pseudo-data precision (curvature bound)."""
        raise NotImplementedError

    def pseudo_data(self, Y: np.ndarray, eta: np.ndarray) -> np.ndarray:
        """Gaussian pseudo-observations around the current linear predictor."""
        raise NotImplementedError

    def mean(self, eta: np.ndarray) -> np.ndarray:
        """Expected observation for a linear predictor."""
        raise NotImplementedError

    def log_likelihood(self, Y: np.ndarray, eta: np.ndarray) -> float:
        """Plug-in log-likelihood summed over observed (non-NaN) entries."""
        raise NotImplementedError


class GaussianLikelihood(Likelihood):
    """Identity link; the noise precision is learned per feature."""

    name = "gaussian"
    is_gaussian = True

    def initial_intercept(self, Y: np.ndarray) -> np.ndarray:
        return np.nan_to_num(np.nanmean(Y, axis=0))

    def pseudo_data(self, Y: np.ndarray, eta: np.ndarray) -> np.ndarray:
        return Y

    def mean(self, eta: np.ndarray) -> np.ndarray:
        return eta

    def log_likelihood(self, Y: np.ndarray, eta: np.ndarray, precision: np.ndarray = None) -> float:
        if precision is None:
            precision = np.ones(Y.shape[1])
        obs = ~np.isnan(Y)
        sq = np.where(obs, (np.nan_to_num(Y) - eta) ** 2, 0.0)
        n_obs = obs.sum(axis=0)
        return float(
            np.sum(0.5 * n_obs * (np.log(precision) - np.log(2 * np.pi)))
            - 0.5 * np.sum(precision * sq.sum(axis=0))
        )


class PoissonLikelihood(Likelihood):
    """Counts with rate ``softplus(eta)``."""

    name = "poisson"

    def validate(self, Y: np.ndarray, view_name: str) -> None:
        observed = Y[~np.isnan(Y)]
        if np.any(observed < 0) or np.any(observed != np.round(observed)):
            raise ValueError(
                f"View '{view_name}' uses a poisson likelihood but contains "
                f"negative or non-integer values"
            )

    def initial_intercept(self, Y: np.ndarray) -> np.ndarray:
        rate = np.maximum(np.nan_to_num(np.nanmean(Y, axis=0)), 1e-3)
        # inverse softplus
        return np.log(np.expm1(rate))

    def precision(self, Y: np.ndarray) -> np.ndarray:
        return 0.25 + 0.17 * np.nan_to_num(np.nanmax(Y, axis=0))

    def pseudo_data(self, Y: np.ndarray, eta: np.ndarray) -> np.ndarray:
        rate = np.maximum(softplus(eta), _EPS)
        grad = expit(eta) * (1.0 - np.nan_to_num(Y) / rate)
        return eta - grad / self.precision(Y)

    def mean(self, eta: np.ndarray) -> np.ndarray:
        return softplus(eta)

    def log_likelihood(self, Y: np.ndarray, eta: np.ndarray) -> float:
        obs = ~np.isnan(Y)
        y = np.nan_to_num(Y)
        rate = np.maximum(softplus(eta), _EPS)
        ll = y * np.log(rate) - rate - gammaln(y + 1.0)
        return float(np.sum(np.where(obs, ll, 0.0)))


class BernoulliLikelihood(Likelihood):
    """Binary data with a logistic link."""

    name = "bernoulli"

    def validate(self, Y: np.ndarray, view_name: str) -> None:
        observed = Y[~np.isnan(Y)]
        if not np.all(np.isin(observed, (0.0, 1.0))):
            raise ValueError(
                f"View '{view_name}' uses a bernoulli likelihood but contains values other than 0/1"
            )

    def initial_intercept(self, Y: np.ndarray) -> np.ndarray:
        p = np.clip(np.nan_to_num(np.nanmean(Y, axis=0), nan=0.5), 1e-3, 1 - 1e-3)
        return np.log(p / (1.0 - p))

    def precision(self, Y: np.ndarray) -> np.ndarray:
        return np.full(Y.shape[1], 0.25)

    def pseudo_data(self, Y: np.ndarray, eta: np.ndarray) -> np.ndarray:
        return eta - 4.0 * (expit(eta) - np.nan_to_num(Y))

    def mean(self, eta: np.ndarray) -> np.ndarray:
        return expit(eta)

    def log_likelihood(self, Y: np.ndarray, eta: np.ndarray) -> float:
        obs = ~np.isnan(Y)
        ll = np.nan_to_num(Y) * eta - softplus(eta)
        return float(np.sum(np.where(obs, ll, 0.0)))


LIKELIHOODS: Dict[str, Type[Likelihood]] = {
    "gaussian": GaussianLikelihood,
    "poisson": PoissonLikelihood,
    "bernoulli": BernoulliLikelihood,
}


def get_likelihood(name: str) -> Likelihood:
    """Instantiate a noise model by name."""
    try:
        return LIKELIHOODS[name.lower()]()
    except KeyError:
        raise ValueError(
            f"Unknown likelihood '{name}'. Available: {sorted(LIKELIHOODS)}"
        ) from None
