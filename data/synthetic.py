"""Synthetic data generation module."""

import logging
from typing import Any, Dict, List, Optional, Sequence

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)


def _softplus(x: np.ndarray) -> np.ndarray:
    return np.logaddexp(0.0, x)


def generate_synthetic_data(
    num_sources: int = 3,
    K: int = 3,
    num_samples: int = 100,
    features_per_view: Optional[Sequence[int]] = None,
    percW: float = 50.0,
    noise_sd: float = 0.5,
    likelihoods: Optional[Sequence[str]] = None,
    missing_fraction: float = 0.0,
    missing_samples: int = 0,
    seed: Optional[int] = None,
) -> Dict[str, Any]:
    """
    Generate synthetic multi-view data from a known factor model.

    Every factor is active in at least one view; within an active
    (view, factor) pair ``percW`` percent of the features carry a non-zero
    loading. Covariates are generated so that ``genotype`` tracks factor 1 and
    ``age`` tracks factor 2 (when K >= 2), while ``sex`` and ``diet`` are noise.

    Parameters
    ----------
    num_sources : int, default=3
        Number of data sources/views
    K : int, default=3
        Number of latent components
    num_samples : int, default=100
        Number of samples (mice)
    features_per_view : sequence of int, optional
        Features per view, default 60, 40, 20, ... cycling
    percW : float, default=50.0
        Percentage of non-zero loadings per active component
    noise_sd : float, default=0.5
        Standard deviation of the Gaussian noise
    likelihoods : sequence of str, optional
        Per-view noise model ("gaussian", "poisson", "bernoulli")
    missing_fraction : float, default=0.0
        Fraction of entries set to NaN at random in every view
    missing_samples : int, default=0
        Number of samples removed entirely from each view after the first
        (they stay observed in the first view)
    seed : int, optional
        Seed for the random generator

    Returns
    -------
    Dict containing synthetic data in the multi-view layout used by the pipeline
    """
    logger.info("Generating synthetic data")
    rng = np.random.default_rng(seed)

    if features_per_view is None:
        base = [60, 40, 20]
        features_per_view = [base[m % len(base)] for m in range(num_sources)]
    if len(features_per_view) != num_sources:
        raise ValueError("features_per_view must have one entry per source")
    if likelihoods is None:
        likelihoods = ["gaussian"] * num_sources
    if len(likelihoods) != num_sources:
        raise ValueError("likelihoods must have one entry per source")

    N = num_samples
    Dm = [int(d) for d in features_per_view]

    Z = rng.normal(0, 1, (N, K))

    # Which factors are active in which views; factor k always active in view k % M
    active = rng.random((num_sources, K)) < 0.6
    for k in range(K):
        active[k % num_sources, k] = True

    W_list: List[np.ndarray] = []
    for m in range(num_sources):
        W = rng.normal(0, 1, (Dm[m], K))
        n_nonzero = max(1, int(round(percW / 100.0 * Dm[m])))
        mask = np.zeros((Dm[m], K), dtype=bool)
        for k in range(K):
            if active[m, k]:
                mask[rng.choice(Dm[m], n_nonzero, replace=False), k] = True
        W_list.append(W * mask)

    X_list = []
    for m in range(num_sources):
        eta = Z @ W_list[m].T
        if likelihoods[m] == "gaussian":
            X = eta + rng.normal(0, noise_sd, eta.shape)
        elif likelihoods[m] == "poisson":
            X = rng.poisson(_softplus(eta)).astype(float)
        elif likelihoods[m] == "bernoulli":
            X = (rng.random(eta.shape) < 1.0 / (1.0 + np.exp(-eta))).astype(float)
        else:
            raise ValueError(f"Unknown likelihood: {likelihoods[m]}")

        if missing_fraction > 0:
            X[rng.random(X.shape) < missing_fraction] = np.nan
        if missing_samples > 0 and m > 0:
            dropped = rng.choice(N, min(missing_samples, N - 1), replace=False)
            X[dropped, :] = np.nan
        X_list.append(X)

    sample_names = [f"mouse_{i:03d}" for i in range(N)]
    view_names = [f"view_{m + 1}" for m in range(num_sources)]
    feature_names = {
        view_name: [f"{view_name}_feat_{j:03d}" for j in range(Dm[m])]
        for m, view_name in enumerate(view_names)
    }

    genotype_signal = Z[:, 0] + rng.normal(0, 0.3, N)
    covariates = pd.DataFrame(
        {
            "genotype": np.where(genotype_signal > 0, "5xFAD", "WT"),
            "age": 6.0 + (3.0 * Z[:, 1] if K >= 2 else 0.0) + rng.normal(0, 0.5, N),
            "sex": rng.choice(["F", "M"], N),
            "diet": rng.choice(["control", "high_fat"], N),
        },
        index=sample_names,
    )

    return {
        "X_list": X_list,
        "view_names": view_names,
        "feature_names": feature_names,
        "sample_names": sample_names,
        "covariates": covariates,
        "likelihoods": dict(zip(view_names, likelihoods)),
        "meta": {
            "dataset": "synthetic",
            "Dm": Dm,
            "N": N,
            "K_true": K,
        },
        # Include ground truth for evaluation
        "ground_truth": {
            "Z": Z,
            "W_list": W_list,
            "active": active,
            "noise_sd": noise_sd,
            "K_true": K,
        },
    }


def to_feature_frames(data: Dict[str, Any]) -> Dict[str, pd.DataFrame]:
    """Convert generated ``X_list`` into feature x sample DataFrames keyed by view."""
    return {
        view_name: pd.DataFrame(
            X.T, index=data["feature_names"][view_name], columns=data["sample_names"]
        )
        for view_name, X in zip(data["view_names"], data["X_list"])
    }
