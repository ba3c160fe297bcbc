"""Group factor analysis fitted by coordinate-ascent variational inference.

Model, for every view m with D_m features:

    Z[n, k]      ~ N(0, 1)
    alpha[m, k]  ~ Gamma(a0, b0)                       (ARD, per view and factor)
    W_m[d, k]    ~ N(0, 1 / alpha[m, k])
    tau_m[d]     ~ Gamma(a0, b0)                       (Gaussian views)
    Y_m[n, d]    ~ N(b_m[d] + Z[n] . W_m[d], 1 / tau_m[d])

The posterior is approximated by a fully factorised q over the elements of
Z and W (Gaussian) and over alpha and tau (Gamma). Each sweep updates W
factor by factor in every view, then alpha, then Z factor by factor, then
tau, so the evidence lower bound (ELBO) never decreases for Gaussian views.
Count and binary views enter through Gaussian pseudo-data with a fixed
precision (see :mod:`models.likelihoods`), refreshed after every sweep.
"""

import logging
import time
from typing import List, Optional, Tuple

import numpy as np
from scipy.special import digamma, gammaln

from analysis.variance import compute_r2
from core.error_handling import ConvergenceFailure
from core.pca_initialization import compute_pca_initialization

from .base import BaseFactorModel, PreparedData
from .likelihoods import Likelihood
from .trained import TrainedFactorModel

logger = logging.getLogger(__name__)

LOG_2PI = np.log(2.0 * np.pi)


def _gamma_terms(a: np.ndarray, b: np.ndarray, a0: float, b0: float) -> float:
    """E_q[log Gamma(x | a0, b0)] + H[Gamma(a, b)], summed."""
    E, E_log = a / b, digamma(a) - np.log(b)
    prior = a0 * np.log(b0) - gammaln(a0) + (a0 - 1.0) * E_log - b0 * E
    entropy = a - np.log(b) + gammaln(a) + (1.0 - a) * digamma(a)
    return float(np.sum(prior + entropy))


class _ViewState:
    """Variational parameters and (pseudo-)data of one view."""

    def __init__(self, name: str, X: np.ndarray, mask: np.ndarray, likelihood: Likelihood, n_factors: int):
        self.name = name
        self.X = X
        self.mask = mask
        self.O = mask.astype(float)
        self.n_obs = self.O.sum(axis=0)
        self.likelihood = likelihood
        self.intercept = likelihood.initial_intercept(X)

        D = X.shape[1]
        self.W_mean = np.zeros((D, n_factors))
        self.W_var = np.ones((D, n_factors))
        self.alpha_a = np.ones(n_factors)
        self.alpha_b = np.ones(n_factors)

        if likelihood.is_gaussian:
            self.Yc = np.where(mask, X - self.intercept, 0.0)
            var = (self.Yc**2).sum(axis=0) / np.maximum(self.n_obs, 1.0)
            self.tau_a = np.ones(D)
            self.tau_b = np.maximum(var, 1e-6)
            self.kappa = None
        else:
            self.kappa = likelihood.precision(X)
            self.refresh_pseudo_data(np.zeros((X.shape[0], n_factors)))

    @property
    def gaussian(self) -> bool:
        return self.kappa is None

    @property
    def E_tau(self) -> np.ndarray:
        return self.tau_a / self.tau_b if self.gaussian else self.kappa

    def E_alpha(self, ard: bool) -> np.ndarray:
        return self.alpha_a / self.alpha_b if ard else np.ones_like(self.alpha_a)

    def E_log_alpha(self, ard: bool) -> np.ndarray:
        return digamma(self.alpha_a) - np.log(self.alpha_b) if ard else np.zeros_like(self.alpha_a)

    def residual(self, Zm: np.ndarray) -> np.ndarray:
        """Masked residual of the centered data given posterior means."""
        return self.O * (self.Yc - Zm @ self.W_mean.T)

    def expected_sse(self, Zm: np.ndarray, Zv: np.ndarray) -> np.ndarray:
        """Per-feature E_q[sum_n (y - z.w)^2] over observed entries."""
        E = self.residual(Zm)
        Z2 = Zm**2 + Zv
        W2 = self.W_mean**2 + self.W_var
        var_term = Z2 @ W2.T - (Zm**2) @ (self.W_mean**2).T
        return np.sum(E**2 + self.O * var_term, axis=0)

    def refresh_pseudo_data(self, Zm: np.ndarray) -> None:
        ZW = Zm @ self.W_mean.T
        pseudo = self.likelihood.pseudo_data(self.X, ZW + self.intercept)
        self.intercept = np.sum(self.O * (pseudo - ZW), axis=0) / np.maximum(self.n_obs, 1.0)
        self.Yc = np.where(self.mask, pseudo - self.intercept, 0.0)

    def drop_factors(self, keep: np.ndarray) -> None:
        self.W_mean = self.W_mean[:, keep]
        self.W_var = self.W_var[:, keep]
        self.alpha_a = self.alpha_a[keep]
        self.alpha_b = self.alpha_b[keep]

    def centered_data(self) -> np.ndarray:
        return np.where(self.mask, self.Yc, np.nan)

    def noise_variance(self) -> np.ndarray:
        return 1.0 / self.E_tau


class VariationalGFA(BaseFactorModel):
    """
    Multi-view factor analysis with ARD priors, fitted by CAVI.

    Parameters
    ----------
    n_factors : int
        Number of latent factors F
    drop_factor_threshold : float, optional
        During training, drop factors whose largest per-view R² (fraction)
        falls below this value
    a0, b0 : float
        Shape and rate of the Gamma hyperpriors on alpha and tau

    The remaining keyword arguments are those of :class:`BaseFactorModel`.
    """

    def __init__(
        self,
        n_factors: int = 15,
        drop_factor_threshold: Optional[float] = None,
        a0: float = 1e-3,
        b0: float = 1e-3,
        **kwargs,
    ):
        super().__init__(n_factors=n_factors, **kwargs)
        self.drop_factor_threshold = drop_factor_threshold
        self.a0 = a0
        self.b0 = b0

    @classmethod
    def _config_keys(cls) -> List[str]:
        return super()._config_keys() + ["drop_factor_threshold"]

    def get_model_name(self) -> str:
        return f"VariationalGFA_K{self.n_factors}"

    # ------------------------------------------------------------------
    # Initialisation
    # ------------------------------------------------------------------
    def _init_factors(
        self, views: List[_ViewState], K: int, rng: np.random.Generator
    ) -> Tuple[np.ndarray, np.ndarray]:
        N = views[0].X.shape[0]
        Zv = np.full((N, K), 0.1)
        if self.init == "random":
            return rng.standard_normal((N, K)), Zv

        pca = compute_pca_initialization(
            [view.centered_data() for view in views], K, random_state=self.seed
        )
        Zm = pca["Z"]
        n_comp = pca["n_components"]
        if n_comp < K:
            Zm[:, n_comp:] = rng.standard_normal((N, K - n_comp))
        for view, W in zip(views, pca["W_list"]):
            view.W_mean = np.array(W)
        return Zm, Zv

    # ------------------------------------------------------------------
    # Coordinate updates
    # ------------------------------------------------------------------
    def _update_W(self, view: _ViewState, Zm: np.ndarray, Zv: np.ndarray) -> None:
        E = view.residual(Zm)
        E_tau = view.E_tau
        E_alpha = view.E_alpha(self.ard_weights)
        OZ2 = view.O.T @ (Zm**2 + Zv)
        OZm2 = view.O.T @ Zm**2

        for k in range(Zm.shape[1]):
            w_old = view.W_mean[:, k].copy()
            prec = E_alpha[k] + E_tau * OZ2[:, k]
            w_new = E_tau * (E.T @ Zm[:, k] + w_old * OZm2[:, k]) / prec
            E -= view.O * np.outer(Zm[:, k], w_new - w_old)
            view.W_mean[:, k] = w_new
            view.W_var[:, k] = 1.0 / prec

    def _update_alpha(self, view: _ViewState) -> None:
        W2 = view.W_mean**2 + view.W_var
        view.alpha_a = np.full(W2.shape[1], self.a0 + 0.5 * W2.shape[0])
        view.alpha_b = self.b0 + 0.5 * W2.sum(axis=0)

    def _update_Z(self, views: List[_ViewState], Zm: np.ndarray, Zv: np.ndarray) -> None:
        residuals = [view.residual(Zm) for view in views]
        weighted_obs = [view.O * view.E_tau for view in views]

        for k in range(Zm.shape[1]):
            prec = np.ones(Zm.shape[0])
            num = np.zeros(Zm.shape[0])
            for view, E, OT in zip(views, residuals, weighted_obs):
                w = view.W_mean[:, k]
                prec += OT @ (w**2 + view.W_var[:, k])
                num += (E * view.E_tau) @ w + Zm[:, k] * (OT @ w**2)
            z_new = num / prec
            delta = z_new - Zm[:, k]
            for view, E in zip(views, residuals):
                E -= view.O * np.outer(delta, view.W_mean[:, k])
            Zm[:, k] = z_new
            Zv[:, k] = 1.0 / prec

    def _update_tau(self, view: _ViewState, Zm: np.ndarray, Zv: np.ndarray) -> None:
        view.tau_a = self.a0 + 0.5 * view.n_obs
        view.tau_b = self.b0 + 0.5 * view.expected_sse(Zm, Zv)

    # ------------------------------------------------------------------
    # Objective
    # ------------------------------------------------------------------
    def _elbo(self, views: List[_ViewState], Zm: np.ndarray, Zv: np.ndarray) -> float:
        elbo = float(np.sum(-0.5 * (Zm**2 + Zv) + 0.5 * np.log(Zv) + 0.5))

        for view in views:
            sse = view.expected_sse(Zm, Zv)
            if view.gaussian:
                E_tau = view.tau_a / view.tau_b
                E_log_tau = digamma(view.tau_a) - np.log(view.tau_b)
                elbo += float(np.sum(0.5 * view.n_obs * (E_log_tau - LOG_2PI) - 0.5 * E_tau * sse))
                elbo += _gamma_terms(view.tau_a, view.tau_b, self.a0, self.b0)
            else:
                elbo += float(
                    np.sum(0.5 * view.n_obs * (np.log(view.kappa) - LOG_2PI) - 0.5 * view.kappa * sse)
                )

            W2 = view.W_mean**2 + view.W_var
            elbo += float(
                np.sum(
                    0.5 * view.E_log_alpha(self.ard_weights)
                    - 0.5 * view.E_alpha(self.ard_weights) * W2
                    + 0.5 * np.log(view.W_var)
                    + 0.5
                )
            )
            if self.ard_weights:
                elbo += _gamma_terms(view.alpha_a, view.alpha_b, self.a0, self.b0)

        return elbo

    def _inactive_factors(self, views: List[_ViewState], Zm: np.ndarray) -> np.ndarray:
        per_factor, _ = compute_r2(
            [view.centered_data() for view in views], Zm, [view.W_mean for view in views]
        )
        inactive = per_factor.max(axis=0) < self.drop_factor_threshold
        if inactive.all():
            inactive[np.argmax(per_factor.max(axis=0))] = False
        return inactive

    # ------------------------------------------------------------------
    # Training loop
    # ------------------------------------------------------------------
    def _fit(self, data: PreparedData) -> TrainedFactorModel:
        rng = np.random.default_rng(self.seed)
        start_time = time.perf_counter()
        K = self.n_factors

        views = [
            _ViewState(name, X, mask, likelihood, K)
            for name, X, mask, likelihood in zip(
                data.view_names, data.X_list, data.masks, data.likelihoods
            )
        ]
        Zm, Zv = self._init_factors(views, K, rng)

        log = logger.info if self.verbose else logger.debug
        elbo_trace: List[float] = []
        previous: Optional[float] = None
        converged = False
        n_dropped = 0
        iteration = 0

        for iteration in range(1, self.max_iter + 1):
            for view in views:
                self._update_W(view, Zm, Zv)
                if self.ard_weights:
                    self._update_alpha(view)
            self._update_Z(views, Zm, Zv)
            for view in views:
                if view.gaussian:
                    self._update_tau(view, Zm, Zv)
                else:
                    view.refresh_pseudo_data(Zm)

            if self.drop_factor_threshold is not None and Zm.shape[1] > 1:
                inactive = self._inactive_factors(views, Zm)
                if inactive.any():
                    keep = ~inactive
                    Zm, Zv = Zm[:, keep], Zv[:, keep]
                    for view in views:
                        view.drop_factors(keep)
                    n_dropped += int(inactive.sum())
                    logger.info(
                        f"Iteration {iteration}: dropped {int(inactive.sum())} factor(s), "
                        f"{Zm.shape[1]} remaining"
                    )
                    previous = None
                    continue

            if iteration < self.start_elbo or (iteration - self.start_elbo) % self.elbo_freq:
                continue

            elbo = self._elbo(views, Zm, Zv)
            elbo_trace.append(elbo)
            if not np.isfinite(elbo):
                raise ConvergenceFailure(
                    f"ELBO became non-finite at iteration {iteration}", elbo_trace=elbo_trace
                )

            if previous is None:
                log(f"Iteration {iteration}: ELBO={elbo:.4f}")
            else:
                delta = elbo - previous
                change_pct = 100.0 * abs(delta) / abs(previous)
                log(f"Iteration {iteration}: ELBO={elbo:.4f}, deltaELBO={delta:.4f} ({change_pct:.6f}%)")

                if delta < 0 and -delta / abs(previous) > self.divergence_tolerance:
                    message = (
                        f"ELBO dropped by {-delta / abs(previous):.2%} at iteration {iteration}"
                    )
                    if data.all_gaussian:
                        raise ConvergenceFailure(f"Training diverged: {message}", elbo_trace=elbo_trace)
                    logger.warning(f"{message} (pseudo-data bound)")

                if change_pct < self.tolerance:
                    converged = True
                    logger.info(f"✓ Converged after {iteration} iterations (ELBO={elbo:.4f})")
                    break
            previous = elbo

        if not converged:
            message = f"No convergence after {iteration} iterations (tolerance {self.tolerance}%)"
            if self.strict_convergence:
                raise ConvergenceFailure(message, elbo_trace=elbo_trace)
            logger.warning(message)

        training_stats = {
            "engine": "cavi",
            "elbo_trace": elbo_trace,
            "final_elbo": elbo_trace[-1] if elbo_trace else None,
            "n_iterations": iteration,
            "converged": converged,
            "tolerance": self.tolerance,
            "time_seconds": time.perf_counter() - start_time,
            "n_factors_initial": K,
            "n_factors_final": int(Zm.shape[1]),
            "dropped_factors": n_dropped,
            "seed": self.seed,
        }

        return self._build_result(
            data,
            Z=Zm,
            W_list=[view.W_mean for view in views],
            noise_list=[view.noise_variance() for view in views],
            intercepts=[view.intercept for view in views],
            centered=[view.centered_data() for view in views],
            training_stats=training_stats,
        )
