"""Tests for the analysis pipeline and its command-line entry point."""

import numpy as np
import pandas as pd
import pytest

import run_analysis as cli
from core.error_handling import ConfigurationError
from core.run_analysis import load_dataset, run_analysis
from data.assembler import assemble_views
from data.synthetic import to_feature_frames
from models.trained import TrainedFactorModel


@pytest.mark.integration
class TestRunAnalysis:
    """Test the end-to-end pipeline."""

    def test_completed_run(self, sample_config, sample_dataset, temp_dir):
        """Test a run on an assembled dataset writes tables and the model."""
        result = run_analysis(sample_config, dataset=sample_dataset)

        assert result["status"] == "completed"
        assert result["model"].n_samples == 50
        assert result["model"].view_names == sample_dataset.view_names
        assert result["output_dir"] == str(temp_dir / "results")
        for name in ("factors", "r2_per_factor", "r2_summary", "top_features", "model"):
            assert result["files"][name].exists()

        loaded = TrainedFactorModel.load(result["files"]["model"])
        np.testing.assert_allclose(loaded.Z, result["model"].Z)

    def test_covariates_associated(self, sample_config, sample_dataset):
        """Test covariate tests run when the dataset carries covariates."""
        result = run_analysis(sample_config, dataset=sample_dataset)

        association = result["association"]
        assert association is not None
        assert association.tests["genotype"] == "kruskal"
        assert "covariate_tests" in result["files"]

    def test_synthetic_config(self, sample_config):
        """Test data.synthetic generates the default three views."""
        result = run_analysis(sample_config)

        assert result["status"] == "completed"
        assert result["model"].n_views == 3
        assert result["model"].n_samples == 100

    def test_no_export(self, sample_config, sample_dataset):
        """Test table export and model saving can be switched off."""
        sample_config["output"].update({"export_tables": False, "save_model": False})
        result = run_analysis(sample_config, dataset=sample_dataset)
        assert result["status"] == "completed"
        assert result["files"] == {}

    def test_invalid_config(self, sample_config):
        """Test a bad configuration is reported, not raised."""
        sample_config["model"]["model_type"] = "gibbs"
        result = run_analysis(sample_config)

        assert result["status"] == "failed"
        assert result["error_type"] == "ConfigurationError"

    def test_no_views(self, sample_config):
        """Test a run with neither views nor synthetic data fails cleanly."""
        sample_config["data"] = {}
        result = run_analysis(sample_config)

        assert result["status"] == "failed"
        assert result["error_type"] == "ConfigurationError"
        assert "output_dir" in result

    @pytest.mark.parametrize("n_factors", [60, 1000])
    def test_too_many_factors(self, sample_config, sample_dataset, n_factors):
        """Test a factor count above the data dimensions fails with InvalidFactorCount."""
        sample_config["model"]["n_factors"] = n_factors
        result = run_analysis(sample_config, dataset=sample_dataset)

        assert result["status"] == "failed"
        assert result["error_type"] == "InvalidFactorCount"

    def test_ttest_on_multi_level_covariate(self, sample_config, sample_synthetic_data):
        """Test a t-test request on a three-level covariate fails the run instead of raising."""
        data = sample_synthetic_data
        covariates = data["covariates"].copy()
        covariates["diet"] = np.resize(["chow", "hfd", "keto"], len(covariates))
        dataset = assemble_views(
            to_feature_frames(data), covariates=covariates, likelihoods=data["likelihoods"]
        )
        sample_config["analysis"]["categorical_test"] = "ttest"

        result = run_analysis(sample_config, dataset=dataset)

        assert result["status"] == "failed"
        assert result["error_type"] == "ConfigurationError"
        assert "two groups" in result["error"]


@pytest.mark.integration
class TestLoadDataset:
    """Test loading views from files."""

    def test_views_from_csv(self, view_frames, temp_dir):
        """Test view tables and covariates are read and aligned by sample."""
        views = {}
        for name, frame in view_frames.items():
            path = temp_dir / f"{name}.csv"
            frame.to_csv(path)
            views[name] = str(path)
        covariates = pd.DataFrame(
            {"sample": ["s1", "s2", "s3", "s4", "s5", "s6"], "age": [50, 61, 72, 45, 66, 58]}
        )
        covariates.to_csv(temp_dir / "covariates.csv", index=False)

        dataset = load_dataset(
            {"data": {"views": views, "covariates": str(temp_dir / "covariates.csv")}}
        )

        assert dataset.view_names == ["rna", "protein"]
        assert dataset.n_samples == 6
        assert list(dataset.covariates["age"]) == [50, 61, 72, 45, 66, 58]

    def test_missing_views(self):
        """Test an empty data section is a configuration error."""
        with pytest.raises(ConfigurationError, match="No views"):
            load_dataset({"data": {}})


@pytest.mark.unit
class TestCommandLine:
    """Test argument handling in run_analysis.py."""

    def test_parse_view_arguments(self):
        """Test name=path pairs and their errors."""
        assert cli.parse_view_arguments(["rna=a.csv", "meth=b=c.tsv"]) == {
            "rna": "a.csv",
            "meth": "b=c.tsv",
        }
        assert cli.parse_view_arguments(None) == {}
        with pytest.raises(ConfigurationError):
            cli.parse_view_arguments(["rna"])
        with pytest.raises(ConfigurationError, match="more than once"):
            cli.parse_view_arguments(["rna=a.csv", "rna=b.csv"])

    def test_config_from_args(self):
        """Test command-line values override the defaults."""
        args = cli.build_parser().parse_args(
            ["--synthetic", "--factors", "3", "--model-type", "svi", "--likelihood", "mut=bernoulli"]
        )
        config = cli.config_from_args(args)

        assert config["data"]["synthetic"] is True
        assert config["model"]["n_factors"] == 3
        assert config["model"]["model_type"] == "svi"
        assert config["model"]["likelihoods"] == {"mut": "bernoulli"}

    def test_bad_view_argument_exit_code(self):
        """Test a malformed --views value exits with code 2."""
        assert cli.main(["--views", "rna"]) == 2

    @pytest.mark.integration
    def test_main_synthetic(self, temp_dir):
        """Test a synthetic run from the command line."""
        out = temp_dir / "cli"
        code = cli.main(
            ["--synthetic", "--factors", "3", "--max-iter", "50",
             "--output-dir", str(out), "--log-level", "WARNING"]
        )

        assert code == 0
        assert (out / "factors.csv").exists()
        assert (out / "model" / "metadata.json").exists()

    @pytest.mark.integration
    def test_main_failure(self, temp_dir):
        """Test a failed run exits with code 1."""
        code = cli.main(["--views", f"rna={temp_dir / 'missing.csv'}", "--log-level", "ERROR"])
        assert code == 1
