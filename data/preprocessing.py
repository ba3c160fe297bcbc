"""
Preprocessing for multi-view factor analysis.

Feature filtering and scaling applied to every view before training:

1. drop features with too many missing entries (or none observed);
2. drop zero-variance features;
3. optionally keep only the most variable features per view;
4. center Gaussian views feature-wise and optionally rescale them.

Missing entries stay NaN: the factor model skips them, so nothing is imputed
here. Count and binary views are filtered but never centered or scaled.
"""

import logging
from dataclasses import replace
from typing import Dict, List, Optional

import numpy as np

from core.error_handling import EmptyViewError
from data.assembler import MultiViewDataset

logger = logging.getLogger(__name__)


class ViewPreprocessor:
    """Fit per-view feature filters and scalers on a :class:`MultiViewDataset`.

    Parameters
    ----------
    missing_threshold : float
        Remove features with more than this fraction of missing values
    n_top_features : int, optional
        Keep at most this many features per view, ranked by variance
    remove_zero_variance : bool
        Remove features whose observed values are constant
    scale_views : bool
        Divide each Gaussian view by its overall standard deviation so that
        views with different ranges contribute comparably
    scale_features : bool
        Divide each Gaussian feature by its own standard deviation
    eps : float
        Standard deviations below this are treated as zero
    """

    def __init__(
        self,
        missing_threshold: float = 0.9,
        n_top_features: Optional[int] = None,
        remove_zero_variance: bool = True,
        scale_views: bool = False,
        scale_features: bool = False,
        eps: float = 1e-8,
    ):
        if not 0.0 <= missing_threshold <= 1.0:
            raise ValueError("missing_threshold must be between 0.0 and 1.0")
        if n_top_features is not None and n_top_features <= 0:
            raise ValueError(f"Invalid n_top_features={n_top_features}. Must be positive integer or None.")

        self.missing_threshold = missing_threshold
        self.n_top_features = n_top_features
        self.remove_zero_variance = remove_zero_variance
        self.scale_views = scale_views
        self.scale_features = scale_features
        self.eps = eps

        # Storage for fitted transformers
        self.scalers_: Dict[str, Dict[str, np.ndarray]] = {}
        self.selected_features_: Dict[str, List[str]] = {}

    @classmethod
    def from_config(cls, config: Dict) -> "ViewPreprocessor":
        """Build from the ``preprocessing`` section of a run configuration."""
        return cls(
            missing_threshold=config.get("missing_threshold", 0.9),
            n_top_features=config.get("n_top_features"),
            remove_zero_variance=config.get("remove_zero_variance", True),
            scale_views=config.get("scale_views", False),
            scale_features=config.get("scale_features", False),
        )

    def _feature_mask(self, X: np.ndarray, view_name: str) -> np.ndarray:
        n_obs = (~np.isnan(X)).sum(axis=0)
        missing_pct = 1.0 - n_obs / max(X.shape[0], 1)
        keep = (n_obs > 0) & (missing_pct <= self.missing_threshold)

        if np.any(~keep):
            logger.warning(
                f"{view_name}: dropping {int(np.sum(~keep))} features with "
                f">{self.missing_threshold * 100:.0f}% missing data"
            )

        variances = np.zeros(X.shape[1])
        if np.any(keep):
            variances[keep] = np.nanvar(X[:, keep], axis=0)

        if self.remove_zero_variance:
            constant = keep & (variances <= self.eps)
            if np.any(constant):
                logger.warning(f"{view_name}: dropping {int(constant.sum())} zero-variance features")
            keep &= ~constant

        if self.n_top_features is not None and keep.sum() > self.n_top_features:
            ranked = np.argsort(np.where(keep, variances, -np.inf))[::-1]
            top = np.zeros_like(keep)
            top[ranked[: self.n_top_features]] = True
            keep &= top
            logger.info(f"{view_name}: keeping the {self.n_top_features} most variable features")

        return keep

    def fit_transform(self, dataset: MultiViewDataset) -> MultiViewDataset:
        """
        Filter and scale every view.

        Returns
        -------
        MultiViewDataset
            A new dataset; the input is left untouched

        Raises
        ------
        EmptyViewError
            If filtering leaves a view without features
        """
        logger.info("Starting view preprocessing")
        X_processed = []
        feature_names = {}

        for X, view_name in zip(dataset.X_list, dataset.view_names):
            likelihood = dataset.likelihoods.get(view_name, "gaussian")
            logger.info(f"Processing view: {view_name} (shape: {X.shape}, likelihood: {likelihood})")

            keep = self._feature_mask(X, view_name)
            if not keep.any():
                raise EmptyViewError(
                    f"No usable features left in view '{view_name}' after filtering",
                    view=view_name,
                )

            X_kept = X[:, keep]
            names = [f for f, k in zip(dataset.feature_names[view_name], keep) if k]

            mu = np.zeros((1, X_kept.shape[1]))
            sd = np.ones((1, X_kept.shape[1]))
            view_scale = 1.0
            if likelihood == "gaussian":
                mu = np.nanmean(X_kept, axis=0, keepdims=True)
                X_kept = X_kept - mu
                if self.scale_features:
                    sd = np.nanstd(X_kept, axis=0, keepdims=True)
                    sd = np.where(sd < self.eps, 1.0, sd)
                    X_kept = X_kept / sd
                if self.scale_views:
                    view_scale = float(np.nanstd(X_kept))
                    if view_scale < self.eps:
                        view_scale = 1.0
                    X_kept = X_kept / view_scale

            self.scalers_[view_name] = {"mu": mu, "sd": sd, "view_scale": view_scale}
            self.selected_features_[view_name] = names
            feature_names[view_name] = names
            X_processed.append(X_kept)

            logger.info(f"Final shape for {view_name}: {X_kept.shape}")

        return replace(
            dataset,
            X_list=X_processed,
            feature_names=feature_names,
            likelihoods=dict(dataset.likelihoods),
        )

    def inverse_transform(self, view_name: str, X: np.ndarray) -> np.ndarray:
        """Map a (samples x kept features) matrix back to the original scale."""
        if view_name not in self.scalers_:
            raise KeyError(f"View '{view_name}' has not been fitted")
        scaler = self.scalers_[view_name]
        return X * scaler["view_scale"] * scaler["sd"] + scaler["mu"]

    def get_scalers(self) -> Dict[str, Dict[str, np.ndarray]]:
        """Per-view ``mu``/``sd``/``view_scale`` used for the fitted transform."""
        return {view: dict(scaler) for view, scaler in self.scalers_.items()}
