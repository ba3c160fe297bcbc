"""Tests for factor interpretation helpers."""

import numpy as np
import pytest

from analysis.interpretation import correlated_factor_pairs, get_top_features, top_features_table
from models.trained import TrainedFactorModel


@pytest.mark.unit
@pytest.mark.analysis
class TestTopFeatures:
    """Test get_top_features and top_features_table."""

    def test_ranked_by_magnitude(self, trained_model):
        """Test features come back by decreasing absolute loading."""
        top = get_top_features(trained_model, "rna", "Factor1", n=2)

        assert list(top["feature"]) == ["g2", "g1"]
        assert list(top["weight"]) == [-2.0, 1.0]
        assert list(top["scaled_weight"]) == [-1.0, 0.5]

    def test_sign_filter(self, trained_model):
        """Test keeping only positive or negative loadings."""
        positive = get_top_features(trained_model, "rna", 0, sign="positive")
        negative = get_top_features(trained_model, "rna", 0, sign="negative")

        assert list(positive["feature"]) == ["g1", "g3"]
        assert list(negative["feature"]) == ["g2"]

    def test_n_larger_than_view(self, trained_model):
        """Test asking for more features than exist returns them all."""
        assert len(get_top_features(trained_model, "mut", "Factor2", n=50)) == 2

    def test_bad_arguments(self, trained_model):
        """Test argument checks."""
        with pytest.raises(ValueError, match="sign"):
            get_top_features(trained_model, "rna", 0, sign="up")
        with pytest.raises(ValueError):
            get_top_features(trained_model, "rna", 0, n=0)
        with pytest.raises(KeyError):
            get_top_features(trained_model, "atac", 0)

    def test_table_covers_every_view_and_factor(self, trained_model):
        """Test the long table lists top features per view and factor with ranks."""
        table = top_features_table(trained_model, n=2)

        assert list(table.columns[:2]) == ["view", "factor"]
        assert len(table) == 2 * 2 * 2
        first = table[(table["view"] == "rna") & (table["factor"] == "Factor1")]
        assert list(first["rank"]) == [1, 2]


@pytest.mark.unit
@pytest.mark.analysis
class TestCorrelatedFactors:
    """Test correlated_factor_pairs."""

    def _model(self, Z):
        return TrainedFactorModel(
            Z=Z, W_list=[np.ones((1, Z.shape[1]))], view_names=["v"],
            sample_names=[f"s{i}" for i in range(Z.shape[0])], feature_names={"v": ["f"]},
            noise_list=[np.ones(1)], intercepts=[np.zeros(1)],
            r2_per_factor=np.zeros((1, Z.shape[1])), r2_total=np.zeros(1),
        )

    def test_flags_redundant_factor(self):
        """Test a near-duplicate factor is reported."""
        rng = np.random.default_rng(0)
        z = rng.normal(size=50)
        Z = np.column_stack([z, z + 0.1 * rng.normal(size=50), rng.normal(size=50)])
        pairs = correlated_factor_pairs(self._model(Z), threshold=0.5)

        assert len(pairs) == 1
        assert tuple(pairs.iloc[0][["factor_1", "factor_2"]]) == ("Factor1", "Factor2")
        assert pairs.iloc[0]["correlation"] > 0.9

    def test_uncorrelated_factors(self):
        """Test orthogonal factors give an empty table with the expected columns."""
        Z = np.array([[1.0, 1.0], [1.0, -1.0], [-1.0, 1.0], [-1.0, -1.0]])
        pairs = correlated_factor_pairs(self._model(Z))
        assert pairs.empty
        assert list(pairs.columns) == ["factor_1", "factor_2", "correlation"]
