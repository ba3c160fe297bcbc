"""Tests for view preprocessing."""

import numpy as np
import pytest

from core.error_handling import EmptyViewError
from data.assembler import assemble_views
from data.preprocessing import ViewPreprocessor


@pytest.fixture
def raw_dataset():
    """A Gaussian view with a constant and a mostly-missing feature, plus a count view."""
    rng = np.random.default_rng(0)
    N = 20
    gauss = rng.normal(5.0, 2.0, size=(5, N))
    gauss[3] = 1.0
    gauss[4, :18] = np.nan
    counts = rng.poisson(3.0, size=(4, N)).astype(float)
    samples = [f"s{i}" for i in range(N)]
    return assemble_views(
        {"expr": gauss, "counts": counts},
        sample_names=samples,
        likelihoods={"counts": "poisson"},
    )


@pytest.mark.unit
@pytest.mark.data
class TestViewPreprocessor:
    """Test ViewPreprocessor filtering and scaling."""

    def test_filters_missing_and_constant_features(self, raw_dataset):
        """Test mostly-missing and zero-variance features are dropped."""
        processed = ViewPreprocessor(missing_threshold=0.5).fit_transform(raw_dataset)

        assert processed.feature_names["expr"] == ["expr_feature0", "expr_feature1", "expr_feature2"]
        assert processed.X_list[0].shape == (20, 3)

    def test_gaussian_views_centered(self, raw_dataset):
        """Test Gaussian features have zero mean after preprocessing."""
        processed = ViewPreprocessor(missing_threshold=0.5).fit_transform(raw_dataset)
        np.testing.assert_allclose(np.nanmean(processed.X_list[0], axis=0), 0.0, atol=1e-10)

    def test_count_views_untouched(self, raw_dataset):
        """Test count views are filtered but never centered or scaled."""
        processed = ViewPreprocessor(scale_views=True, scale_features=True).fit_transform(raw_dataset)
        np.testing.assert_array_equal(processed.X_list[1], raw_dataset.X_list[1])

    def test_scale_views(self, raw_dataset):
        """Test view scaling gives unit overall standard deviation."""
        processed = ViewPreprocessor(missing_threshold=0.5, scale_views=True).fit_transform(raw_dataset)
        assert np.nanstd(processed.X_list[0]) == pytest.approx(1.0)

    def test_scale_features(self, raw_dataset):
        """Test feature scaling gives unit standard deviation per feature."""
        processed = ViewPreprocessor(missing_threshold=0.5, scale_features=True).fit_transform(raw_dataset)
        np.testing.assert_allclose(np.nanstd(processed.X_list[0], axis=0), 1.0)

    def test_n_top_features(self, raw_dataset):
        """Test keeping only the most variable features."""
        processed = ViewPreprocessor(n_top_features=2).fit_transform(raw_dataset)
        assert len(processed.feature_names["expr"]) == 2
        assert len(processed.feature_names["counts"]) == 2

    def test_missing_values_kept(self, raw_dataset):
        """Test nothing is imputed."""
        processed = ViewPreprocessor(missing_threshold=1.0).fit_transform(raw_dataset)
        assert np.isnan(processed.X_list[0]).sum() == 18

    def test_input_not_modified(self, raw_dataset):
        """Test fit_transform returns a new dataset."""
        before = raw_dataset.X_list[0].copy()
        ViewPreprocessor().fit_transform(raw_dataset)
        np.testing.assert_array_equal(raw_dataset.X_list[0], before)

    def test_inverse_transform(self, raw_dataset):
        """Test scaled data maps back to the original values."""
        preprocessor = ViewPreprocessor(missing_threshold=0.5, scale_views=True, scale_features=True)
        processed = preprocessor.fit_transform(raw_dataset)

        restored = preprocessor.inverse_transform("expr", processed.X_list[0])
        np.testing.assert_allclose(restored, raw_dataset.X_list[0][:, :3])

    def test_inverse_transform_unknown_view(self):
        """Test inverse transform needs a fitted view."""
        with pytest.raises(KeyError):
            ViewPreprocessor().inverse_transform("expr", np.zeros((2, 2)))

    def test_empty_view_after_filtering(self):
        """Test a view losing every feature raises EmptyViewError."""
        dataset = assemble_views({"flat": np.ones((3, 5))}, sample_names=list("abcde"))
        with pytest.raises(EmptyViewError) as exc_info:
            ViewPreprocessor().fit_transform(dataset)
        assert exc_info.value.view == "flat"

    def test_get_scalers(self, raw_dataset):
        """Test scalers are exposed per view."""
        preprocessor = ViewPreprocessor(missing_threshold=0.5)
        preprocessor.fit_transform(raw_dataset)
        scalers = preprocessor.get_scalers()

        assert set(scalers) == {"expr", "counts"}
        assert scalers["expr"]["mu"].shape == (1, 3)
        assert scalers["counts"]["view_scale"] == 1.0

    @pytest.mark.parametrize("kwargs", [{"missing_threshold": 1.5}, {"n_top_features": 0}])
    def test_invalid_parameters(self, kwargs):
        """Test constructor argument checks."""
        with pytest.raises(ValueError):
            ViewPreprocessor(**kwargs)

    def test_from_config(self):
        """Test building from the preprocessing config section."""
        preprocessor = ViewPreprocessor.from_config({"n_top_features": 50, "scale_views": True})
        assert preprocessor.n_top_features == 50
        assert preprocessor.scale_views is True
        assert preprocessor.missing_threshold == 0.9
