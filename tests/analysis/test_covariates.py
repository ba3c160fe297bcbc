"""Tests for factor-covariate association tests."""

import numpy as np
import pandas as pd
import pytest

from analysis.covariates import CovariateAssociation, associate_covariates
from core.error_handling import ConfigurationError, DimensionMismatch


@pytest.fixture
def factors_and_covariates():
    """Factor1 tracks genotype, Factor2 tracks age, Factor3 is noise."""
    rng = np.random.default_rng(0)
    n = 60
    samples = [f"m{i}" for i in range(n)]
    genotype = np.array(["WT", "5xFAD"] * (n // 2))
    age = rng.uniform(2, 12, n)
    factors = pd.DataFrame(
        {
            "Factor1": (genotype == "5xFAD") * 2.0 + rng.normal(0, 0.3, n),
            "Factor2": 0.5 * age + rng.normal(0, 0.3, n),
            "Factor3": rng.normal(0, 1, n),
        },
        index=samples,
    )
    covariates = pd.DataFrame(
        {"genotype": genotype, "age": age, "batch": rng.integers(1, 4, n)},
        index=samples,
    )
    # Rows in a different order than the factors
    return factors, covariates.iloc[::-1]


@pytest.mark.unit
@pytest.mark.analysis
class TestAssociateCovariates:
    """Test associate_covariates."""

    def test_detects_true_associations(self, factors_and_covariates):
        """Test the planted genotype and age signals are significant."""
        factors, covariates = factors_and_covariates
        result = associate_covariates(factors, covariates)

        assert isinstance(result, CovariateAssociation)
        assert result.adjusted_pvalues.loc["Factor1", "genotype"] < 1e-6
        assert result.adjusted_pvalues.loc["Factor2", "age"] < 1e-6
        assert result.pvalues.loc["Factor3", "genotype"] > 0.001

    def test_test_selection_by_dtype(self, factors_and_covariates):
        """Test strings use the group test and numbers use Pearson."""
        factors, covariates = factors_and_covariates
        result = associate_covariates(factors, covariates)

        assert result.tests["genotype"] == "kruskal"
        assert result.tests["age"] == "pearson"
        assert result.tests["batch"] == "pearson"
        assert result.statistics.loc["Factor2", "age"] > 0.9

    def test_numeric_column_forced_categorical(self, factors_and_covariates):
        """Test integer-coded covariates can be declared categorical."""
        factors, covariates = factors_and_covariates
        result = associate_covariates(factors, covariates, categorical=["batch"], categorical_test="anova")
        assert result.tests["batch"] == "anova"

    def test_ttest_two_groups(self, factors_and_covariates):
        """Test the t-test on a two-level covariate."""
        factors, covariates = factors_and_covariates
        result = associate_covariates(factors[["Factor1"]], covariates[["genotype"]], categorical_test="ttest")
        assert result.pvalues.loc["Factor1", "genotype"] < 1e-6

    def test_ttest_rejects_many_groups(self, factors_and_covariates):
        """Test the t-test needs exactly two groups."""
        factors, covariates = factors_and_covariates
        with pytest.raises(ConfigurationError, match="two groups"):
            associate_covariates(factors, covariates[["batch"]], categorical=["batch"], categorical_test="ttest")

    def test_bh_adjustment(self, factors_and_covariates):
        """Test adjusted p-values are never below the raw ones."""
        factors, covariates = factors_and_covariates
        result = associate_covariates(factors, covariates)
        assert (result.adjusted_pvalues >= result.pvalues - 1e-15).all().all()
        assert (result.adjusted_pvalues <= 1.0).all().all()

    def test_missing_covariate_values(self, factors_and_covariates):
        """Test NaN covariate values are left out of the test."""
        factors, covariates = factors_and_covariates
        covariates = covariates.copy()
        covariates.loc[covariates.index[:10], "age"] = np.nan
        result = associate_covariates(factors, covariates)
        assert result.n_samples["age"] == 50
        assert result.n_samples["genotype"] == 60

    def test_degenerate_covariates(self, factors_and_covariates):
        """Test constant and single-group covariates give p = 1."""
        factors, _ = factors_and_covariates
        covariates = pd.DataFrame(
            {"constant": 1.0, "single_group": "WT"}, index=factors.index
        )
        result = associate_covariates(factors, covariates)
        assert (result.pvalues == 1.0).all().all()

    def test_small_groups_dropped(self, factors_and_covariates):
        """Test groups below min_group_size are excluded."""
        factors, covariates = factors_and_covariates
        covariates = covariates.copy()
        covariates["rare"] = ["a"] * 59 + ["b"]
        result = associate_covariates(factors, covariates[["rare"]], min_group_size=2)
        assert (result.pvalues["rare"] == 1.0).all()

    def test_extra_covariate_samples_ignored(self, factors_and_covariates):
        """Test covariates may describe more samples than were fitted."""
        factors, covariates = factors_and_covariates
        result = associate_covariates(factors.iloc[:40], covariates)
        assert result.n_samples["age"] == 40

    def test_missing_samples(self, factors_and_covariates):
        """Test every factor sample needs covariates."""
        factors, covariates = factors_and_covariates
        with pytest.raises(DimensionMismatch):
            associate_covariates(factors, covariates.iloc[:30])

    def test_unknown_categorical(self, factors_and_covariates):
        """Test categorical columns must exist."""
        factors, covariates = factors_and_covariates
        with pytest.raises(KeyError):
            associate_covariates(factors, covariates, categorical=["sex"])

    def test_unknown_test(self, factors_and_covariates):
        """Test the categorical test name is checked."""
        factors, covariates = factors_and_covariates
        with pytest.raises(ValueError, match="categorical_test"):
            associate_covariates(factors, covariates, categorical_test="chi2")


@pytest.mark.unit
@pytest.mark.analysis
class TestCovariateAssociation:
    """Test the association result object."""

    def test_to_long_and_significant(self, factors_and_covariates):
        """Test the long table and the significance filter."""
        factors, covariates = factors_and_covariates
        result = associate_covariates(factors, covariates)

        long = result.to_long()
        assert len(long) == 9
        assert {"factor", "covariate", "statistic", "pvalue", "adjusted_pvalue", "test"} <= set(long.columns)

        hits = result.significant(alpha=1e-6)
        pairs = set(zip(hits["factor"], hits["covariate"]))
        assert ("Factor1", "genotype") in pairs
        assert ("Factor2", "age") in pairs
        assert list(hits["adjusted_pvalue"]) == sorted(hits["adjusted_pvalue"])

    def test_neg_log10(self, factors_and_covariates):
        """Test -log10 p-values are finite and non-negative."""
        factors, covariates = factors_and_covariates
        result = associate_covariates(factors, covariates)
        values = result.neg_log10_adjusted_pvalues.to_numpy()
        assert np.all(np.isfinite(values))
        assert np.all(values >= 0)
