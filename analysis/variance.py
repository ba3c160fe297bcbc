"""Variance explained (R²) per view and factor.

For view m and factor k, over observed entries only:

    R²_mk = 1 - SS(Y_m - z_k w_mkᵀ) / SS(Y_m)
    R²_m  = 1 - SS(Y_m - Z W_mᵀ) / SS(Y_m)

``Y_m`` is expected to be centered (the factor models pass data with the
per-feature intercept removed). Values are reported in percent and clipped
to [0, 100]; a view with zero total variance gets 0. When factors overlap
and the per-factor values of a view add up to more than its total, they are
scaled down proportionally so their sum equals the total.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)

_MIN_SS = 1e-12


def compute_r2(
    X_list: Sequence[np.ndarray], Z: np.ndarray, W_list: Sequence[np.ndarray]
) -> Tuple[np.ndarray, np.ndarray]:
    """Array-level R² as fractions.

    Returns
    -------
    per_factor : np.ndarray, shape (n_views, n_factors)
    total : np.ndarray, shape (n_views,)
    """
    n_factors = Z.shape[1]
    per_factor = np.zeros((len(X_list), n_factors))
    total = np.zeros(len(X_list))

    for m, (X, W) in enumerate(zip(X_list, W_list)):
        obs = ~np.isnan(X)
        Y = np.where(obs, X, 0.0)
        ss_tot = float(np.sum(Y**2))
        if ss_tot < _MIN_SS:
            continue

        O = obs.astype(float)
        # SS(Y - z_k w_kᵀ) = SS(Y) - 2 z_kᵀ Y w_k + (z_k²)ᵀ O (w_k²)
        cross = np.sum((Y @ W) * Z, axis=0)
        quad = np.sum((O @ W**2) * Z**2, axis=0)
        per_factor[m] = (2.0 * cross - quad) / ss_tot

        resid = np.where(obs, Y - Z @ W.T, 0.0)
        total[m] = 1.0 - float(np.sum(resid**2)) / ss_tot

    per_factor = np.clip(per_factor, 0.0, 1.0)
    total = np.clip(total, 0.0, 1.0)

    # Correlated factors can overlap; shrink so per-factor values never exceed the total
    sums = per_factor.sum(axis=1)
    over = sums > total
    per_factor[over] *= (total[over] / sums[over])[:, None]
    return per_factor, total


@dataclass(frozen=True)
class VarianceExplained:
    """R² tables in percent.

    ``per_factor`` is factors x views; ``total`` is indexed by view.
    """

    per_factor: pd.DataFrame
    total: pd.Series

    @property
    def view_names(self) -> List[str]:
        return list(self.per_factor.columns)

    @property
    def factor_names(self) -> List[str]:
        return list(self.per_factor.index)

    def get(self, view: Optional[str] = None, factor: Optional[str] = None):
        """Slice by view and/or factor; both given returns a float."""
        table = self.per_factor
        if view is not None:
            table = table[view]
        if factor is not None:
            table = table.loc[factor]
        return float(table) if view is not None and factor is not None else table.copy()

    def to_long(self) -> pd.DataFrame:
        """Long format with columns ``factor``, ``view``, ``r2``."""
        long = self.per_factor.rename_axis("factor").reset_index().melt(
            id_vars="factor", var_name="view", value_name="r2"
        )
        return long


def calculate_variance_explained(
    X_list: Sequence[np.ndarray],
    Z: np.ndarray,
    W_list: Sequence[np.ndarray],
    view_names: Optional[Sequence[str]] = None,
    factor_names: Optional[Sequence[str]] = None,
) -> VarianceExplained:
    """
    Compute per-factor and total R² for every view.

    Parameters
    ----------
    X_list : list of np.ndarray
        Centered data, samples x features per view, NaN for missing
    Z : np.ndarray
        Factor scores, samples x factors
    W_list : list of np.ndarray
        Loadings, features x factors per view
    view_names, factor_names : sequence of str, optional
        Labels for the tables; default ``view_1..``/``Factor1..``
    """
    if len(X_list) != len(W_list):
        raise ValueError(f"Got {len(X_list)} views but {len(W_list)} loading matrices")

    if view_names is None:
        view_names = [f"view_{m + 1}" for m in range(len(X_list))]
    if factor_names is None:
        factor_names = [f"Factor{k + 1}" for k in range(Z.shape[1])]

    per_factor, total = compute_r2(X_list, Z, W_list)

    result = VarianceExplained(
        per_factor=pd.DataFrame(
            per_factor.T * 100.0, index=list(factor_names), columns=list(view_names)
        ),
        total=pd.Series(total * 100.0, index=list(view_names), name="r2_total"),
    )

    for view in result.view_names:
        logger.debug(f"R² {view}: total {result.total[view]:.2f}%")

    return result


def variance_explained_summary(variance: VarianceExplained, threshold: float = 1.0) -> pd.DataFrame:
    """
    Summarise which factors matter in which views.

    Returns a table per factor with the total R² summed over views, the view
    where the factor explains most and the views where it exceeds
    ``threshold`` percent (``active_views``, comma separated).
    """
    table = variance.per_factor
    summary = pd.DataFrame(
        {
            "r2_sum": table.sum(axis=1),
            "top_view": table.idxmax(axis=1),
            "top_view_r2": table.max(axis=1),
            "active_views": [
                ",".join(table.columns[row > threshold]) for _, row in table.iterrows()
            ],
        },
        index=table.index,
    )
    summary.index.name = "factor"
    return summary


def cumulative_r2(variance: VarianceExplained) -> pd.DataFrame:
    """Running sum of per-factor R² down the factor order, per view."""
    return variance.per_factor.cumsum(axis=0)


def variance_from_model(model) -> VarianceExplained:
    """R² tables stored on a fitted model, computed on its training data."""
    return VarianceExplained(per_factor=model.get_variance_explained(), total=model.get_r2_total())
