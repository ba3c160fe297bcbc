"""Association tests between factor scores and sample covariates.

Continuous covariates are tested with Pearson correlation; categorical ones
with a group-difference test (Kruskal-Wallis by default, one-way ANOVA, or a
two-sample t-test). P-values are Benjamini-Hochberg adjusted over every
(factor, covariate) pair.
"""

import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple

import numpy as np
import pandas as pd
from scipy import stats
from statsmodels.stats.multitest import multipletests

from core.error_handling import ConfigurationError, DimensionMismatch

logger = logging.getLogger(__name__)

CATEGORICAL_TESTS = ("kruskal", "anova", "ttest")
_MIN_PVALUE = 1e-300


@dataclass(frozen=True)
class CovariateAssociation:
    """Factor x covariate tables of test results."""

    pvalues: pd.DataFrame
    adjusted_pvalues: pd.DataFrame
    statistics: pd.DataFrame
    tests: pd.Series
    n_samples: pd.Series

    @property
    def neg_log10_pvalues(self) -> pd.DataFrame:
        return -np.log10(self.pvalues.clip(lower=_MIN_PVALUE))

    @property
    def neg_log10_adjusted_pvalues(self) -> pd.DataFrame:
        return -np.log10(self.adjusted_pvalues.clip(lower=_MIN_PVALUE))

    def to_long(self) -> pd.DataFrame:
        """One row per (factor, covariate) pair."""
        long = pd.DataFrame(
            {
                "factor": np.repeat(self.pvalues.index.values, self.pvalues.shape[1]),
                "covariate": np.tile(self.pvalues.columns.values, self.pvalues.shape[0]),
                "statistic": self.statistics.values.ravel(),
                "pvalue": self.pvalues.values.ravel(),
                "adjusted_pvalue": self.adjusted_pvalues.values.ravel(),
            }
        )
        long["test"] = long["covariate"].map(self.tests)
        long["neg_log10_pvalue"] = -np.log10(long["pvalue"].clip(lower=_MIN_PVALUE))
        return long

    def significant(self, alpha: float = 0.05, adjusted: bool = True) -> pd.DataFrame:
        """Pairs below ``alpha``, most significant first."""
        column = "adjusted_pvalue" if adjusted else "pvalue"
        long = self.to_long()
        return long[long[column] < alpha].sort_values(column).reset_index(drop=True)


def _is_categorical(series: pd.Series) -> bool:
    return (
        pd.api.types.is_object_dtype(series)
        or isinstance(series.dtype, pd.CategoricalDtype)
        or pd.api.types.is_bool_dtype(series)
        or pd.api.types.is_string_dtype(series)
    )


def _continuous_test(z: np.ndarray, x: np.ndarray) -> Tuple[float, float]:
    if len(x) < 3 or np.ptp(x) == 0 or np.ptp(z) == 0:
        return 0.0, 1.0
    r, p = stats.pearsonr(z, x)
    return float(r), float(p)


def _categorical_test(
    z: np.ndarray, labels: np.ndarray, test: str, min_group_size: int
) -> Tuple[float, float]:
    levels, counts = np.unique(labels, return_counts=True)
    groups = [z[labels == level] for level, count in zip(levels, counts) if count >= min_group_size]
    if len(groups) < 2:
        return 0.0, 1.0

    try:
        if test == "kruskal":
            statistic, p = stats.kruskal(*groups)
        elif test == "anova":
            statistic, p = stats.f_oneway(*groups)
        else:
            if len(groups) != 2:
                raise ConfigurationError(
                    f"ttest needs exactly two groups, got {len(groups)}; use 'kruskal' or 'anova'"
                )
            statistic, p = stats.ttest_ind(groups[0], groups[1])
    except ValueError as e:
        # kruskal rejects inputs where every value is identical
        if "identical" not in str(e):
            raise
        return 0.0, 1.0

    if not np.isfinite(p):
        return 0.0, 1.0
    return float(statistic), float(p)


def associate_covariates(
    factors: pd.DataFrame,
    covariates: pd.DataFrame,
    categorical: Optional[Iterable[str]] = None,
    categorical_test: str = "kruskal",
    min_group_size: int = 2,
) -> CovariateAssociation:
    """
    Test every factor against every covariate.

    Parameters
    ----------
    factors : pd.DataFrame
        Factor scores, samples x factors (e.g. ``TrainedFactorModel.get_factors()``)
    covariates : pd.DataFrame
        Sample covariates indexed by sample; must cover every factor sample
    categorical : iterable of str, optional
        Columns to treat as categorical regardless of dtype; object, string,
        category and bool columns are categorical anyway
    categorical_test : {"kruskal", "anova", "ttest"}
        Group-difference test for categorical covariates
    min_group_size : int
        Groups with fewer samples are left out of a categorical test

    Returns
    -------
    CovariateAssociation

    Raises
    ------
    DimensionMismatch
        If covariates are missing for some factor samples
    """
    if categorical_test not in CATEGORICAL_TESTS:
        raise ValueError(f"categorical_test must be one of {CATEGORICAL_TESTS}, got '{categorical_test}'")

    missing = factors.index.difference(covariates.index)
    if len(missing) > 0:
        raise DimensionMismatch(
            f"Covariates are missing for {len(missing)} of {len(factors)} samples "
            f"(e.g. {list(missing[:3])})"
        )

    categorical = set(categorical or [])
    unknown = categorical - set(covariates.columns)
    if unknown:
        raise KeyError(f"Categorical covariates not found: {sorted(unknown)}")

    covariates = covariates.loc[factors.index]
    columns: List[str] = list(covariates.columns)
    pvalues = pd.DataFrame(1.0, index=factors.columns, columns=columns)
    statistics = pd.DataFrame(0.0, index=factors.columns, columns=columns)
    tests = pd.Series("", index=columns, dtype=object, name="test")
    n_samples = pd.Series(0, index=columns, name="n_samples")

    logger.info(f"Testing {factors.shape[1]} factors against {len(columns)} covariates")

    for name in columns:
        values = covariates[name]
        valid = values.notna().to_numpy()
        n_samples[name] = int(valid.sum())
        is_categorical = name in categorical or _is_categorical(values)
        tests[name] = categorical_test if is_categorical else "pearson"

        for factor in factors.columns:
            z = factors[factor].to_numpy(dtype=float)[valid]
            if is_categorical:
                labels = values[valid].astype(str).to_numpy()
                statistic, p = _categorical_test(z, labels, categorical_test, min_group_size)
            else:
                x = values[valid].to_numpy(dtype=float)
                statistic, p = _continuous_test(z, x)
            statistics.loc[factor, name] = statistic
            pvalues.loc[factor, name] = p

    adjusted = pvalues.copy()
    if pvalues.size > 0:
        _, corrected, _, _ = multipletests(pvalues.to_numpy().ravel(), method="fdr_bh")
        adjusted.loc[:, :] = corrected.reshape(pvalues.shape)

    result = CovariateAssociation(
        pvalues=pvalues,
        adjusted_pvalues=adjusted,
        statistics=statistics,
        tests=tests,
        n_samples=n_samples,
    )
    n_hits = len(result.significant(0.05))
    logger.info(f"📊 {n_hits} factor-covariate associations with adjusted p < 0.05")
    return result
