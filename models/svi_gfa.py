"""Group factor analysis with an ARD prior, fitted by stochastic variational inference.

Same generative model as :mod:`models.variational_gfa`, written as a NumPyro
program and fitted with an ``AutoNormal`` guide and Adam. Missing entries
are excluded from the likelihood with ``numpyro.handlers.mask``; count and
binary views use their exact Poisson/Bernoulli likelihoods.
"""

import logging
import time
from typing import Dict, List, Optional

import jax
import jax.numpy as jnp
import numpy as np
import numpyro
import numpyro.distributions as dist
from numpyro.infer import SVI, Trace_ELBO
from numpyro.infer.autoguide import AutoNormal
from numpyro.infer.initialization import init_to_uniform, init_to_value

from core.error_handling import ConvergenceFailure
from core.pca_initialization import compute_pca_initialization

from .base import BaseFactorModel, PreparedData
from .trained import TrainedFactorModel

logger = logging.getLogger(__name__)

# Percent change between the mean loss of the last two windows of steps
SVI_TOLERANCES = {"fast": 0.5, "medium": 0.1, "slow": 0.05}

DEFAULT_HYPERS = {
    "a_sigma": 1.0,
    "b_sigma": 1.0,
    "a_alpha": 1.0,
    "b_alpha": 1.0,
    "intercept_scale": 5.0,
}


class NumpyroGFA(BaseFactorModel):
    """Multi-view factor analysis with an ARD prior, fitted by SVI.

    Parameters
    ----------
    n_factors : int
        Number of latent factors
    learning_rate : float
        Adam step size
    hypers : dict, optional
        Gamma hyperparameters for the noise (``a_sigma``, ``b_sigma``) and ARD
        (``a_alpha``, ``b_alpha``) precisions, and the prior scale of the
        intercepts of count/binary views
    drop_factor_threshold : float, optional
        Accepted for configuration compatibility with the CAVI engine; SVI
        keeps every factor and logs a warning when it is set
    """

    def __init__(
        self,
        n_factors: int = 15,
        learning_rate: float = 0.01,
        hypers: Optional[Dict[str, float]] = None,
        convergence_mode: str = "fast",
        tolerance: Optional[float] = None,
        drop_factor_threshold: Optional[float] = None,
        **kwargs,
    ):
        if tolerance is None:
            if convergence_mode not in SVI_TOLERANCES:
                raise ValueError(
                    f"Unknown convergence_mode '{convergence_mode}'. Available: {sorted(SVI_TOLERANCES)}"
                )
            tolerance = SVI_TOLERANCES[convergence_mode]
        super().__init__(
            n_factors=n_factors, convergence_mode=convergence_mode, tolerance=tolerance, **kwargs
        )
        self.learning_rate = learning_rate
        self.hypers = {**DEFAULT_HYPERS, **(hypers or {})}
        self.drop_factor_threshold = drop_factor_threshold
        if drop_factor_threshold is not None:
            logger.warning(
                f"drop_factor_threshold={drop_factor_threshold} is only applied by the 'cavi' engine; "
                f"SVI keeps all {n_factors} factors"
            )
        self._Dm: List[int] = []
        self._likelihood_names: List[str] = []

    @classmethod
    def _config_keys(cls) -> List[str]:
        return super()._config_keys() + ["learning_rate", "drop_factor_threshold"]

    def get_model_name(self) -> str:
        return f"NumpyroGFA_K{self.n_factors}"

    def __call__(self, X_list: List[jnp.ndarray], masks: List[jnp.ndarray]):
        """
        NumPyro model: standard normal factors, ARD-scaled loadings, per-feature
        noise precision for Gaussian views, an intercept for count/binary views.
        """
        N = X_list[0].shape[0]
        K = self.n_factors

        Z = numpyro.sample("Z", dist.Normal(0, 1), sample_shape=(N, K))

        for m, (X_m, mask_m) in enumerate(zip(X_list, masks)):
            D = self._Dm[m]
            W = numpyro.sample(f"W_{m}", dist.Normal(0, 1), sample_shape=(D, K))
            if self.ard_weights:
                alpha = numpyro.sample(
                    f"alpha_{m}",
                    dist.Gamma(self.hypers["a_alpha"], self.hypers["b_alpha"]),
                    sample_shape=(K,),
                )
                W = W * (1 / jnp.sqrt(alpha))

            eta = jnp.dot(Z, W.T)
            likelihood = self._likelihood_names[m]
            if likelihood == "gaussian":
                tau = numpyro.sample(
                    f"tau_{m}",
                    dist.Gamma(self.hypers["a_sigma"], self.hypers["b_sigma"]),
                    sample_shape=(D,),
                )
                obs_dist = dist.Normal(eta, 1 / jnp.sqrt(tau))
            else:
                intercept = numpyro.sample(
                    f"intercept_{m}",
                    dist.Normal(0, self.hypers["intercept_scale"]),
                    sample_shape=(D,),
                )
                eta = eta + intercept
                if likelihood == "poisson":
                    obs_dist = dist.Poisson(jax.nn.softplus(eta))
                else:
                    obs_dist = dist.Bernoulli(logits=eta)

            with numpyro.handlers.mask(mask=mask_m):
                numpyro.sample(f"X_{m}", obs_dist, obs=X_m)

    def _init_loc_fn(self, data: PreparedData, centered: List[np.ndarray]):
        if self.init != "pca":
            return init_to_uniform
        pca = compute_pca_initialization(centered, self.n_factors, random_state=self.seed)
        values = {"Z": jnp.asarray(pca["Z"])}
        for m, W in enumerate(pca["W_list"]):
            values[f"W_{m}"] = jnp.asarray(W)
        return init_to_value(values=values)

    def _check_losses(self, losses: np.ndarray) -> bool:
        """Raise on divergence; return whether the loss has stabilised."""
        elbo_trace = (-losses[np.isfinite(losses)]).tolist()
        if not np.all(np.isfinite(losses)):
            first_bad = int(np.flatnonzero(~np.isfinite(losses))[0])
            raise ConvergenceFailure(f"SVI loss became non-finite at step {first_bad + 1}", elbo_trace=elbo_trace)

        window = max(len(losses) // 10, 1)
        if len(losses) < 2 * window:
            return False
        last = float(np.mean(losses[-window:]))
        before = float(np.mean(losses[-2 * window:-window]))
        best = float(np.min([np.mean(losses[i:i + window]) for i in range(0, len(losses) - window + 1, window)]))

        if last > best and (last - best) / abs(best) > self.divergence_tolerance:
            raise ConvergenceFailure(
                f"SVI loss increased by {(last - best) / abs(best):.2%} from its best window",
                elbo_trace=elbo_trace,
            )
        return 100.0 * abs(last - before) / abs(before) < self.tolerance

    def _fit(self, data: PreparedData) -> TrainedFactorModel:
        start_time = time.perf_counter()
        self._Dm = data.n_features
        self._likelihood_names = [lik.name for lik in data.likelihoods]

        intercepts = [lik.initial_intercept(X) for X, lik in zip(data.X_list, data.likelihoods)]
        observed = []
        centered_init = []
        for X, mask, lik, b in zip(data.X_list, data.masks, data.likelihoods, intercepts):
            if lik.is_gaussian:
                observed.append(jnp.asarray(np.where(mask, X - b, 0.0)))
                centered_init.append(np.where(mask, X - b, np.nan))
            else:
                observed.append(jnp.asarray(np.where(mask, X, 0.0)))
                pseudo = lik.pseudo_data(X, np.broadcast_to(b, X.shape))
                centered_init.append(np.where(mask, pseudo - b, np.nan))
        masks = [jnp.asarray(mask) for mask in data.masks]

        seed = self.seed if self.seed is not None else int(np.random.default_rng().integers(2**31 - 1))
        guide = AutoNormal(self, init_loc_fn=self._init_loc_fn(data, centered_init), init_scale=0.1)
        svi = SVI(self, guide, numpyro.optim.Adam(step_size=self.learning_rate), loss=Trace_ELBO())

        logger.info(f"Running SVI for {self.max_iter} steps (lr={self.learning_rate})")
        result = svi.run(jax.random.PRNGKey(seed), self.max_iter, observed, masks, progress_bar=self.verbose)
        losses = np.asarray(result.losses, dtype=float)

        converged = self._check_losses(losses)
        if not converged:
            message = f"SVI loss still changing after {self.max_iter} steps (tolerance {self.tolerance}%)"
            if self.strict_convergence:
                raise ConvergenceFailure(message, elbo_trace=(-losses).tolist())
            logger.warning(message)
        else:
            logger.info(f"✓ SVI loss stabilised after {self.max_iter} steps")

        median = {name: np.asarray(value, dtype=float) for name, value in guide.median(result.params).items()}
        Z = median["Z"]

        W_list, noise_list, centered = [], [], []
        for m, (X, mask, lik) in enumerate(zip(data.X_list, data.masks, data.likelihoods)):
            W = median[f"W_{m}"]
            if self.ard_weights:
                W = W / np.sqrt(median[f"alpha_{m}"])
            W_list.append(W)

            if lik.is_gaussian:
                noise_list.append(1.0 / median[f"tau_{m}"])
                centered.append(centered_init[m])
            else:
                intercepts[m] = median[f"intercept_{m}"]
                noise_list.append(1.0 / lik.precision(X))
                pseudo = lik.pseudo_data(X, Z @ W.T + intercepts[m])
                centered.append(np.where(mask, pseudo - intercepts[m], np.nan))

        training_stats = {
            "engine": "svi",
            "elbo_trace": (-losses).tolist(),
            "final_elbo": float(-losses[-1]),
            "n_iterations": int(len(losses)),
            "converged": bool(converged),
            "tolerance": self.tolerance,
            "time_seconds": time.perf_counter() - start_time,
            "n_factors_initial": self.n_factors,
            "n_factors_final": self.n_factors,
            "dropped_factors": 0,
            "seed": seed,
            "learning_rate": self.learning_rate,
        }

        return self._build_result(
            data,
            Z=Z,
            W_list=W_list,
            noise_list=noise_list,
            intercepts=intercepts,
            centered=centered,
            training_stats=training_stats,
        )
