"""Tests for PCA-based initialization."""

import numpy as np
import pytest

from core.pca_initialization import compute_pca_initialization


@pytest.mark.unit
class TestPCAInitialization:
    """Test compute_pca_initialization."""

    @pytest.fixture
    def views(self):
        rng = np.random.default_rng(1)
        Z = rng.normal(size=(30, 2))
        X1 = Z @ rng.normal(size=(2, 8)) + 0.1 * rng.normal(size=(30, 8))
        X2 = Z @ rng.normal(size=(2, 5)) + 0.1 * rng.normal(size=(30, 5))
        return [X1 - X1.mean(0), X2 - X2.mean(0)]

    def test_shapes(self, views):
        """Test factors and per-view loadings have the requested shapes."""
        init = compute_pca_initialization(views, K=3, random_state=0)

        assert init["Z"].shape == (30, 3)
        assert [W.shape for W in init["W_list"]] == [(8, 3), (5, 3)]
        assert init["n_components"] == 3

    def test_unit_variance_factors(self, views):
        """Test the factor columns are scaled to unit variance."""
        init = compute_pca_initialization(views, K=2, random_state=0)
        np.testing.assert_allclose(init["Z"].std(axis=0), 1.0, rtol=1e-6)

    def test_low_rank_signal_captured(self, views):
        """Test two components explain most of a rank-2 signal."""
        init = compute_pca_initialization(views, K=2, random_state=0)
        assert init["variance_explained"] > 0.9

    def test_padding_when_k_exceeds_rank(self):
        """Test extra factors are zero-padded when K exceeds the data rank."""
        X = np.random.default_rng(0).normal(size=(4, 3))
        init = compute_pca_initialization([X], K=6)

        assert init["n_components"] == 3
        assert init["Z"].shape == (4, 6)
        assert np.all(init["Z"][:, 3:] == 0)

    def test_missing_values_tolerated(self, views):
        """Test NaN entries do not propagate into the initialization."""
        views[0][0, 0] = np.nan
        init = compute_pca_initialization(views, K=2)
        assert np.all(np.isfinite(init["Z"]))
