"""Tests for the per-view noise models."""

import numpy as np
import pytest
from scipy.special import expit

from models.likelihoods import (
    BernoulliLikelihood,
    GaussianLikelihood,
    PoissonLikelihood,
    get_likelihood,
    softplus,
)


@pytest.mark.unit
@pytest.mark.model
class TestGetLikelihood:
    """Test lookup by name."""

    @pytest.mark.parametrize(
        "name,cls",
        [("gaussian", GaussianLikelihood), ("Poisson", PoissonLikelihood), ("bernoulli", BernoulliLikelihood)],
    )
    def test_known_names(self, name, cls):
        """Test names are case-insensitive."""
        assert isinstance(get_likelihood(name), cls)

    def test_unknown_name(self):
        """Test unknown names list the available models."""
        with pytest.raises(ValueError, match="Available"):
            get_likelihood("negative_binomial")


@pytest.mark.unit
@pytest.mark.model
class TestGaussianLikelihood:
    """Test the Gaussian noise model."""

    def test_intercept_is_observed_mean(self):
        """Test the intercept ignores missing entries."""
        Y = np.array([[1.0, np.nan], [3.0, 4.0]])
        np.testing.assert_allclose(GaussianLikelihood().initial_intercept(Y), [2.0, 4.0])

    def test_identity_link(self):
        """Test pseudo-data is the data itself."""
        lik = GaussianLikelihood()
        Y = np.ones((2, 2))
        assert lik.pseudo_data(Y, np.zeros((2, 2))) is Y
        np.testing.assert_array_equal(lik.mean(Y), Y)

    def test_log_likelihood_skips_missing(self):
        """Test NaN entries do not contribute."""
        lik = GaussianLikelihood()
        Y = np.array([[0.0, np.nan]])
        expected = -0.5 * np.log(2 * np.pi)
        assert lik.log_likelihood(Y, np.zeros((1, 2))) == pytest.approx(expected)


@pytest.mark.unit
@pytest.mark.model
class TestPoissonLikelihood:
    """Test the count noise model."""

    def test_validate_rejects_negative_and_fractional(self):
        """Test impossible counts are rejected."""
        lik = PoissonLikelihood()
        with pytest.raises(ValueError, match="poisson"):
            lik.validate(np.array([[1.0, -1.0]]), "counts")
        with pytest.raises(ValueError):
            lik.validate(np.array([[1.5]]), "counts")
        lik.validate(np.array([[0.0, 3.0, np.nan]]), "counts")

    def test_intercept_inverts_softplus(self):
        """Test softplus of the intercept recovers the mean count."""
        Y = np.array([[2.0, 0.0], [4.0, 0.0]])
        intercept = PoissonLikelihood().initial_intercept(Y)
        np.testing.assert_allclose(softplus(intercept), [3.0, 1e-3], rtol=1e-6)

    def test_precision_bound(self):
        """Test the curvature bound grows with the largest count."""
        Y = np.array([[0.0, 10.0], [2.0, 20.0]])
        np.testing.assert_allclose(PoissonLikelihood().precision(Y), [0.25 + 0.34, 0.25 + 3.4])

    def test_pseudo_data_fixed_point(self):
        """Test pseudo-data equals eta where the rate matches the count."""
        eta = np.array([[0.5, 1.5]])
        Y = softplus(eta)
        np.testing.assert_allclose(PoissonLikelihood().pseudo_data(Y, eta), eta)

    def test_pseudo_data_moves_towards_counts(self):
        """Test a count above the rate pushes the pseudo-observation up."""
        eta = np.zeros((1, 1))
        Y = np.array([[5.0]])
        assert PoissonLikelihood().pseudo_data(Y, eta)[0, 0] > 0


@pytest.mark.unit
@pytest.mark.model
class TestBernoulliLikelihood:
    """Test the binary noise model."""

    def test_validate(self):
        """Test only 0/1 values (and NaN) are accepted."""
        lik = BernoulliLikelihood()
        lik.validate(np.array([[0.0, 1.0, np.nan]]), "mut")
        with pytest.raises(ValueError, match="0/1"):
            lik.validate(np.array([[2.0]]), "mut")

    def test_intercept_is_logit_of_frequency(self):
        """Test the intercept is the logit of the observed frequency."""
        Y = np.array([[1.0], [1.0], [1.0], [0.0]])
        intercept = BernoulliLikelihood().initial_intercept(Y)
        assert expit(intercept[0]) == pytest.approx(0.75)

    def test_pseudo_data(self):
        """Test pseudo-data under the 1/4 curvature bound."""
        eta = np.array([[0.0, 0.0]])
        Y = np.array([[1.0, 0.0]])
        np.testing.assert_allclose(BernoulliLikelihood().pseudo_data(Y, eta), [[2.0, -2.0]])
        np.testing.assert_allclose(BernoulliLikelihood().precision(Y), [0.25, 0.25])

    def test_mean_is_probability(self):
        """Test the mean maps the predictor into (0, 1)."""
        assert BernoulliLikelihood().mean(np.array([0.0]))[0] == pytest.approx(0.5)
