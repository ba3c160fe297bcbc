"""Base model interface shared by the factor model engines."""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

import numpy as np

from analysis.variance import compute_r2
from core.error_handling import (
    DataValidationError,
    DimensionMismatch,
    EmptyViewError,
    InvalidFactorCount,
)
from data.assembler import MultiViewDataset

from .likelihoods import Likelihood, get_likelihood
from .trained import TrainedFactorModel

logger = logging.getLogger(__name__)

CONVERGENCE_TOLERANCES = {"fast": 5e-4, "medium": 5e-5, "slow": 5e-6}


@dataclass
class PreparedData:
    """Validated engine input; views are samples x features with NaN for missing."""

    X_list: List[np.ndarray]
    masks: List[np.ndarray]
    view_names: List[str]
    sample_names: List[str]
    feature_names: Dict[str, List[str]]
    likelihoods: List[Likelihood]
    scalers: Dict[str, Dict[str, Any]] = field(default_factory=dict)

    @property
    def n_samples(self) -> int:
        return self.X_list[0].shape[0]

    @property
    def n_features(self) -> List[int]:
        return [X.shape[1] for X in self.X_list]

    @property
    def all_gaussian(self) -> bool:
        return all(lik.is_gaussian for lik in self.likelihoods)


class BaseFactorModel(ABC):
    """Abstract base class for multi-view factor models.

    Subclasses implement :meth:`_fit` on validated arrays and return a
    :class:`TrainedFactorModel`; input validation, the R² tables and the
    artifact assembly are shared here.
    """

    def __init__(
        self,
        n_factors: int = 15,
        likelihoods: Optional[Mapping[str, str]] = None,
        ard_weights: bool = True,
        max_iter: int = 1000,
        convergence_mode: str = "fast",
        tolerance: Optional[float] = None,
        start_elbo: int = 1,
        elbo_freq: int = 1,
        divergence_tolerance: float = 0.05,
        strict_convergence: bool = False,
        init: str = "random",
        seed: Optional[int] = None,
        verbose: bool = False,
    ):
        if tolerance is None:
            if convergence_mode not in CONVERGENCE_TOLERANCES:
                raise ValueError(
                    f"Unknown convergence_mode '{convergence_mode}'. "
                    f"Available: {sorted(CONVERGENCE_TOLERANCES)}"
                )
            tolerance = CONVERGENCE_TOLERANCES[convergence_mode]
        if init not in ("random", "pca"):
            raise ValueError(f"init must be 'random' or 'pca', got '{init}'")

        self.n_factors = n_factors
        self.likelihoods = dict(likelihoods or {})
        self.ard_weights = ard_weights
        self.max_iter = max_iter
        self.tolerance = float(tolerance)
        self.start_elbo = start_elbo
        self.elbo_freq = elbo_freq
        self.divergence_tolerance = divergence_tolerance
        self.strict_convergence = strict_convergence
        self.init = init
        self.seed = seed
        self.verbose = verbose

        self.trained_model_: Optional[TrainedFactorModel] = None

    @classmethod
    def from_config(cls, config: Mapping[str, Any], **overrides):
        """Build from a run configuration (``model`` and ``training`` sections)."""
        model_cfg = dict(config.get("model", {}))
        training_cfg = dict(config.get("training", {}))
        params = {
            "n_factors": model_cfg.get("n_factors", 15),
            "likelihoods": model_cfg.get("likelihoods", {}),
            "ard_weights": model_cfg.get("ard_weights", True),
        }
        accepted = cls._config_keys()
        params.update({k: v for k, v in training_cfg.items() if k in accepted})
        params.update(overrides)
        return cls(**params)

    @classmethod
    def _config_keys(cls) -> List[str]:
        return [
            "max_iter",
            "convergence_mode",
            "tolerance",
            "start_elbo",
            "elbo_freq",
            "divergence_tolerance",
            "strict_convergence",
            "init",
            "seed",
            "verbose",
        ]

    @abstractmethod
    def get_model_name(self) -> str:
        """Return model name for logging."""

    @abstractmethod
    def _fit(self, data: PreparedData) -> TrainedFactorModel:
        """Run inference on validated data."""

    def fit(
        self,
        data: Union[MultiViewDataset, Sequence[np.ndarray]],
        view_names: Optional[Sequence[str]] = None,
        sample_names: Optional[Sequence[str]] = None,
        feature_names: Optional[Mapping[str, Sequence[str]]] = None,
        scalers: Optional[Mapping[str, Mapping[str, Any]]] = None,
    ) -> TrainedFactorModel:
        """
        Fit the model.

        Parameters
        ----------
        data : MultiViewDataset or list of np.ndarray
            Either an assembled dataset or raw samples x features matrices
            (NaN for missing entries)
        view_names, sample_names, feature_names : optional
            Labels used when ``data`` is a list of arrays
        scalers : dict, optional
            Preprocessing scalers stored with the result so predictions can
            be mapped back to the original scale

        Raises
        ------
        DimensionMismatch
            Views disagree on the number of samples
        EmptyViewError
            A view has no observed entry, or a sample is unobserved everywhere
        InvalidFactorCount
            ``n_factors`` is not between 1 and min(samples, total features)
        ConvergenceFailure
            Training diverged (or did not converge with ``strict_convergence``)
        """
        prepared = self._prepare(data, view_names, sample_names, feature_names, scalers)
        logger.info(
            f"🔧 Fitting {self.get_model_name()}: {prepared.n_samples} samples, "
            f"features per view {prepared.n_features}"
        )
        self.trained_model_ = self._fit(prepared)
        return self.trained_model_

    def _prepare(self, data, view_names, sample_names, feature_names, scalers) -> PreparedData:
        if isinstance(data, MultiViewDataset):
            X_list = [np.asarray(X, dtype=float) for X in data.X_list]
            view_names = list(data.view_names)
            sample_names = list(data.sample_names)
            feature_names = {v: list(f) for v, f in data.feature_names.items()}
            likelihood_names = {**data.likelihoods, **self.likelihoods}
        else:
            X_list = [np.asarray(X, dtype=float) for X in data]
            likelihood_names = dict(self.likelihoods)

        if len(X_list) == 0:
            raise EmptyViewError("No views were provided")

        if view_names is None:
            view_names = [f"view_{m + 1}" for m in range(len(X_list))]
        view_names = list(view_names)
        if len(view_names) != len(X_list):
            raise ValueError(f"{len(view_names)} view names for {len(X_list)} views")

        for X, view in zip(X_list, view_names):
            if X.ndim != 2:
                raise DimensionMismatch(f"View '{view}' must be a 2D array, got shape {X.shape}", view=view)

        n_samples = X_list[0].shape[0]
        for X, view in zip(X_list, view_names):
            if X.shape[0] != n_samples:
                raise DimensionMismatch(
                    f"View '{view}' has {X.shape[0]} samples, expected {n_samples}", view=view
                )

        masks = [~np.isnan(X) for X in X_list]
        for mask, view in zip(masks, view_names):
            if mask.size == 0 or not mask.any():
                raise EmptyViewError(f"View '{view}' has no observed entries", view=view)

        seen = np.zeros(n_samples, dtype=bool)
        for mask in masks:
            seen |= mask.any(axis=1)
        if not seen.all():
            unobserved = np.flatnonzero(~seen)
            raise EmptyViewError(
                f"{len(unobserved)} sample(s) have no observed entry in any view "
                f"(first index: {int(unobserved[0])})"
            )

        max_factors = min(n_samples, sum(X.shape[1] for X in X_list))
        if (
            isinstance(self.n_factors, bool)
            or not isinstance(self.n_factors, (int, np.integer))
            or not 1 <= self.n_factors <= max_factors
        ):
            raise InvalidFactorCount(self.n_factors, max_factors)

        unknown = set(likelihood_names) - set(view_names)
        if unknown:
            raise DataValidationError(f"Likelihoods given for unknown views: {sorted(unknown)}")
        try:
            likelihoods = [get_likelihood(likelihood_names.get(v, "gaussian")) for v in view_names]
            for X, view, likelihood in zip(X_list, view_names, likelihoods):
                likelihood.validate(X, view)
        except ValueError as e:
            raise DataValidationError(str(e)) from e

        if sample_names is None:
            sample_names = [f"sample_{n}" for n in range(n_samples)]
        if feature_names is None:
            feature_names = {}
        feature_names = {
            view: list(feature_names.get(view, [f"{view}_feature_{d}" for d in range(X.shape[1])]))
            for view, X in zip(view_names, X_list)
        }

        return PreparedData(
            X_list=X_list,
            masks=masks,
            view_names=view_names,
            sample_names=list(sample_names),
            feature_names=feature_names,
            likelihoods=likelihoods,
            scalers=dict(scalers or {}),
        )

    def _build_result(
        self,
        data: PreparedData,
        Z: np.ndarray,
        W_list: Sequence[np.ndarray],
        noise_list: Sequence[np.ndarray],
        intercepts: Sequence[np.ndarray],
        centered: Sequence[np.ndarray],
        training_stats: Dict[str, Any],
    ) -> TrainedFactorModel:
        """Order factors by variance explained and package the artifact.

        ``centered`` holds the data (or pseudo-data) with intercepts removed
        and NaN at missing entries; R² is computed against it.
        """
        per_factor, total = compute_r2(centered, Z, W_list)
        order = np.argsort(-per_factor.sum(axis=0), kind="stable")
        Z = Z[:, order]
        W_list = [W[:, order] for W in W_list]
        per_factor = per_factor[:, order]

        logger.info(f"✓ {self.get_model_name()} finished with {Z.shape[1]} factors")
        for view, r2 in zip(data.view_names, total):
            logger.info(f"  {view}: total R² {r2 * 100:.2f}%")

        return TrainedFactorModel(
            Z=Z,
            W_list=W_list,
            view_names=data.view_names,
            sample_names=data.sample_names,
            feature_names=data.feature_names,
            noise_list=noise_list,
            intercepts=intercepts,
            r2_per_factor=per_factor * 100.0,
            r2_total=total * 100.0,
            likelihoods={v: lik.name for v, lik in zip(data.view_names, data.likelihoods)},
            training_stats=training_stats,
            model_name=self.get_model_name(),
            scalers=data.scalers,
        )
