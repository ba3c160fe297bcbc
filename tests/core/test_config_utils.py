"""Tests for core.config_utils and core.config_schema."""

from pathlib import Path

import pytest
import yaml

from core.config_schema import (
    AnalysisConfig,
    ConfigurationValidator,
    ModelConfig,
    TrainingConfig,
)
from core.config_utils import (
    ensure_directories,
    get_default_configuration,
    get_output_dir,
    load_config,
    safe_get,
    update_config_safely,
    validate_configuration,
)
from core.error_handling import ConfigurationError


@pytest.mark.unit
class TestSafeGet:
    """Test safe_get function."""

    def test_nested_key_access(self):
        """Test accessing nested keys."""
        config = {"level1": {"level2": {"level3": "deep_value"}}}
        assert safe_get(config, "level1", "level2", "level3") == "deep_value"

    def test_missing_key_returns_default(self):
        """Test that missing keys return default value."""
        assert safe_get({"existing": 1}, "missing", default="fallback") == "fallback"

    def test_non_dict_intermediate(self):
        """Test walking through a non-dict value returns default."""
        assert safe_get({"a": 5}, "a", "b", default=0) == 0


@pytest.mark.unit
class TestLoadConfig:
    """Test YAML loading."""

    def test_load_valid_file(self, temp_dir):
        """Test loading a YAML mapping."""
        path = temp_dir / "config.yaml"
        path.write_text(yaml.safe_dump({"model": {"n_factors": 5}}))
        assert load_config(path) == {"model": {"n_factors": 5}}

    def test_empty_file(self, temp_dir):
        """Test that an empty file gives an empty config."""
        path = temp_dir / "empty.yaml"
        path.write_text("")
        assert load_config(path) == {}

    def test_missing_file(self, temp_dir):
        """Test error for a missing file."""
        with pytest.raises(ConfigurationError, match="not found"):
            load_config(temp_dir / "nope.yaml")

    def test_not_a_mapping(self, temp_dir):
        """Test error when the YAML document is a list."""
        path = temp_dir / "list.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ConfigurationError, match="must be a mapping"):
            load_config(path)

    def test_shipped_example_config_parses(self):
        """Test the example config at the repository root is a valid mapping."""
        root = Path(__file__).resolve().parents[2]
        config = load_config(root / "config.yaml")
        assert config["model"]["model_type"] == "cavi"
        assert "analysis" in config


@pytest.mark.unit
class TestUpdateConfigSafely:
    """Test update_config_safely function."""

    def test_none_values_are_skipped(self):
        """Unset command-line options leave the file values alone."""
        config = {"model": {"n_factors": 10}}
        updated = update_config_safely(config, {"model": {"n_factors": None}})
        assert updated["model"]["n_factors"] == 10

    def test_new_section_without_none(self):
        """A new section only receives the non-None values."""
        updated = update_config_safely({}, {"training": {"seed": 3, "max_iter": None}})
        assert updated == {"training": {"seed": 3}}

    def test_input_not_mutated(self):
        """Test the original config is left untouched."""
        config = {"model": {"n_factors": 10}}
        update_config_safely(config, {"model": {"n_factors": 3}})
        assert config["model"]["n_factors"] == 10


@pytest.mark.unit
class TestValidateConfiguration:
    """Test schema validation and defaults."""

    def test_empty_config_gets_defaults(self, temp_dir):
        """Test validating an empty config fills in every section."""
        config = validate_configuration({"output": {"output_dir": str(temp_dir)}})
        for section in ("data", "preprocessing", "model", "training", "analysis", "output", "system"):
            assert section in config
        assert config["model"]["model_type"] == "cavi"

    def test_relative_output_dir_made_absolute(self):
        """Test output_dir is resolved to an absolute path."""
        config = validate_configuration({"output": {"output_dir": "results"}})
        assert Path(config["output"]["output_dir"]).is_absolute()

    def test_log_level_upper_cased(self):
        """Test log level is normalised."""
        config = validate_configuration({"system": {"log_level": "debug"}})
        assert config["system"]["log_level"] == "DEBUG"

    def test_invalid_model_type(self):
        """Test an unknown engine is rejected."""
        with pytest.raises(ConfigurationError, match="model_type"):
            validate_configuration({"model": {"model_type": "mcmc"}})

    def test_unknown_section(self):
        """Test unknown top-level sections are rejected."""
        with pytest.raises(ConfigurationError, match="Unknown configuration section"):
            validate_configuration({"experiments": {}})

    def test_unknown_key_in_section(self):
        """Test unknown keys inside a section are reported."""
        with pytest.raises(ConfigurationError, match="structure error"):
            validate_configuration({"model": {"K": 3}})

    def test_missing_view_file(self, temp_dir):
        """Test view paths must exist."""
        with pytest.raises(ConfigurationError, match="does not exist"):
            validate_configuration({"data": {"views": {"rna": str(temp_dir / "rna.csv")}}})

    def test_likelihood_for_unknown_view(self, temp_dir):
        """Test likelihoods must name configured views."""
        path = temp_dir / "rna.csv"
        path.write_text("feature,s1\ng1,1.0\n")
        config = {
            "data": {"views": {"rna": str(path)}},
            "model": {"likelihoods": {"atac": "bernoulli"}},
        }
        with pytest.raises(ConfigurationError, match="unknown views"):
            validate_configuration(config)

    def test_default_configuration(self):
        """Test the default configuration validates."""
        errors = ConfigurationValidator.validate_configuration(get_default_configuration())
        assert errors == []


@pytest.mark.unit
class TestSectionSchemas:
    """Test individual section validators."""

    def test_model_config_bad_factor_count(self):
        """Test n_factors must be a positive integer."""
        assert ModelConfig(n_factors=0).validate()
        assert ModelConfig(n_factors=5).validate() == []
        assert ModelConfig(n_factors=250).validate() == []
        assert ModelConfig(n_factors=True).validate()

    def test_model_config_bad_likelihood(self):
        """Test likelihood names are checked."""
        errors = ModelConfig(likelihoods={"rna": "negative_binomial"}).validate()
        assert any("likelihood" in e for e in errors)

    def test_training_config_limits(self):
        """Test training numeric limits."""
        assert TrainingConfig(max_iter=0).validate()
        assert TrainingConfig(drop_factor_threshold=1.5).validate()
        assert TrainingConfig(init="svd").validate()
        assert TrainingConfig(seed=-1).validate()
        assert TrainingConfig().validate() == []

    def test_analysis_config(self):
        """Test covariate test names are checked."""
        assert AnalysisConfig(categorical_test="chi2").validate()
        assert AnalysisConfig(categorical_test="anova").validate() == []


@pytest.mark.unit
class TestDirectories:
    """Test output directory helpers."""

    def test_get_output_dir_default(self):
        """Test fallback output directory."""
        assert get_output_dir({}) == Path("./results")

    def test_ensure_directories(self, temp_dir):
        """Test the output directory is created."""
        target = temp_dir / "a" / "b"
        result = ensure_directories({"output": {"output_dir": str(target)}})
        assert result == target
        assert target.is_dir()
