"""Test configuration and fixtures."""

import shutil
import tempfile
from pathlib import Path

import numpy as np
import pandas as pd
import pytest

from data.assembler import assemble_views
from data.synthetic import generate_synthetic_data, to_feature_frames
from models.trained import TrainedFactorModel


@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests."""
    temp_dir = tempfile.mkdtemp()
    yield Path(temp_dir)
    shutil.rmtree(temp_dir)


@pytest.fixture
def sample_config(temp_dir):
    """Create a small run configuration writing into the temp directory."""
    return {
        "data": {"synthetic": True},
        "model": {"model_type": "cavi", "n_factors": 4},
        "training": {"max_iter": 150, "seed": 42, "tolerance": 1e-3},
        "analysis": {"categorical": ["genotype"]},
        "output": {"output_dir": str(temp_dir / "results")},
        "system": {"log_level": "WARNING"},
    }


@pytest.fixture
def sample_synthetic_data():
    """Generate small synthetic dataset for testing."""
    return generate_synthetic_data(
        num_sources=3,
        K=3,
        num_samples=50,
        features_per_view=[20, 15, 10],
        noise_sd=0.3,
        seed=42,
    )


@pytest.fixture
def sample_dataset(sample_synthetic_data):
    """The synthetic data assembled into a MultiViewDataset."""
    data = sample_synthetic_data
    return assemble_views(
        to_feature_frames(data),
        covariates=data["covariates"],
        likelihoods=data["likelihoods"],
    )


@pytest.fixture
def trained_model():
    """A hand-built two-view, two-factor fitted model."""
    Z = np.array([[1.0, 0.0], [0.0, 2.0], [-1.0, 1.0]])
    W_rna = np.array([[1.0, 0.5], [-2.0, 0.0], [0.5, 0.25]])
    W_mut = np.array([[0.0, 1.0], [1.0, -1.0]])
    return TrainedFactorModel(
        Z=Z,
        W_list=[W_rna, W_mut],
        view_names=["rna", "mut"],
        sample_names=["a", "b", "c"],
        feature_names={"rna": ["g1", "g2", "g3"], "mut": ["m1", "m2"]},
        noise_list=[np.array([0.1, 0.2, 0.3]), np.array([4.0, 4.0])],
        intercepts=[np.zeros(3), np.array([0.0, -1.0])],
        r2_per_factor=np.array([[40.0, 10.0], [5.0, 20.0]]),
        r2_total=np.array([50.0, 25.0]),
        likelihoods={"rna": "gaussian", "mut": "bernoulli"},
        training_stats={"engine": "cavi", "elbo_trace": [-10.0, -5.0], "converged": True},
        model_name="VariationalGFA_K2",
        scalers={"rna": {"mu": np.array([[10.0, 20.0, 30.0]]), "sd": np.ones((1, 3)), "view_scale": 2.0}},
    )


@pytest.fixture
def view_frames():
    """Two small feature x sample tables with partly overlapping samples."""
    rng = np.random.default_rng(0)
    rna = pd.DataFrame(
        rng.normal(size=(4, 5)),
        index=[f"gene_{i}" for i in range(4)],
        columns=["s1", "s2", "s3", "s4", "s5"],
    )
    protein = pd.DataFrame(
        rng.normal(size=(3, 4)),
        index=[f"prot_{i}" for i in range(3)],
        columns=["s2", "s3", "s5", "s6"],
    )
    return {"rna": rna, "protein": protein}


@pytest.fixture(autouse=True)
def setup_logging():
    """Setup logging for tests."""
    import logging

    logging.basicConfig(level=logging.WARNING)  # Reduce noise in tests
