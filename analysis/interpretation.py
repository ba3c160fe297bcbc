"""Helpers for reading factors: top-loading features and factor overlap."""

import logging

import pandas as pd

logger = logging.getLogger(__name__)

SIGNS = ("all", "positive", "negative")


def get_top_features(model, view, factor, n: int = 10, sign: str = "all") -> pd.DataFrame:
    """
    Features with the largest loadings on one factor in one view.

    Parameters
    ----------
    model : TrainedFactorModel
    view, factor : str or int
        Name or position
    n : int
        Number of features to return
    sign : {"all", "positive", "negative"}
        Rank by absolute loading, or keep only one sign

    Returns
    -------
    pd.DataFrame
        Columns ``feature``, ``weight``, ``scaled_weight`` (divided by the
        factor's largest absolute loading), ordered by decreasing magnitude
    """
    if sign not in SIGNS:
        raise ValueError(f"sign must be one of {SIGNS}, got '{sign}'")
    if n < 1:
        raise ValueError(f"n must be positive, got {n}")

    weights = model.get_weights(view, factors=factor).iloc[:, 0]
    scaled = model.get_weights(view, factors=factor, scale=True).iloc[:, 0]

    if sign == "positive":
        weights = weights[weights > 0]
    elif sign == "negative":
        weights = weights[weights < 0]

    order = weights.abs().sort_values(ascending=False, kind="stable").index[:n]
    return pd.DataFrame(
        {
            "feature": list(order),
            "weight": weights[order].to_numpy(),
            "scaled_weight": scaled[order].to_numpy(),
        }
    )


def top_features_table(model, n: int = 10) -> pd.DataFrame:
    """Long table of the top ``n`` features for every view and factor."""
    frames = []
    for view in model.view_names:
        for factor in model.factor_names:
            top = get_top_features(model, view, factor, n=n)
            top.insert(0, "factor", factor)
            top.insert(0, "view", view)
            top["rank"] = range(1, len(top) + 1)
            frames.append(top)
    return pd.concat(frames, ignore_index=True)


def correlated_factor_pairs(model, threshold: float = 0.3) -> pd.DataFrame:
    """Factor pairs whose scores correlate beyond ``threshold`` in absolute value.

    The factors of a well-fitted model are close to uncorrelated, so any
    pair listed here usually points at a redundant factor.
    """
    corr = model.factor_correlation()
    names = list(corr.index)
    rows = [
        {"factor_1": a, "factor_2": b, "correlation": float(corr.loc[a, b])}
        for i, a in enumerate(names)
        for b in names[i + 1:]
        if abs(corr.loc[a, b]) > threshold
    ]
    if rows:
        logger.warning(f"{len(rows)} factor pair(s) correlate above |r|={threshold}")
    return pd.DataFrame(rows, columns=["factor_1", "factor_2", "correlation"])
