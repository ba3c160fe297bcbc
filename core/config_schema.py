"""Configuration schema validation for multi-view factor analysis runs."""

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


class ConfigValidationError(Exception):
    """Exception raised for configuration validation errors."""


class LogLevel(Enum):
    """Valid logging levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class ModelType(Enum):
    """Valid inference engines."""

    CAVI = "cavi"
    SVI = "svi"


class LikelihoodType(Enum):
    """Valid per-view noise models."""

    GAUSSIAN = "gaussian"
    POISSON = "poisson"
    BERNOULLI = "bernoulli"


class ConvergenceMode(Enum):
    """Named ELBO tolerances."""

    FAST = "fast"
    MEDIUM = "medium"
    SLOW = "slow"


class InitMethod(Enum):
    """Valid initialisation schemes for the latent factors."""

    RANDOM = "random"
    PCA = "pca"


@dataclass
class DataConfig:
    """Data configuration schema."""

    views: Dict[str, str] = field(default_factory=dict)
    covariates: Optional[str] = None
    sample_column: Optional[str] = None
    join: str = "outer"
    synthetic: bool = False

    def validate(self) -> List[str]:
        """Validate data configuration."""
        errors = []

        for view_name, view_path in self.views.items():
            if not Path(view_path).exists():
                errors.append(f"view file for '{view_name}' does not exist: {view_path}")

        if self.covariates is not None and not Path(self.covariates).exists():
            errors.append(f"covariates file does not exist: {self.covariates}")

        if self.join not in ("outer", "inner"):
            errors.append(f"join must be 'outer' or 'inner', got {self.join}")

        return errors


@dataclass
class PreprocessingConfig:
    """Preprocessing configuration schema."""

    missing_threshold: float = 0.9
    n_top_features: Optional[int] = None
    remove_zero_variance: bool = True
    scale_views: bool = False
    scale_features: bool = False

    def validate(self) -> List[str]:
        """Validate preprocessing configuration."""
        errors = []

        if not 0 <= self.missing_threshold <= 1:
            errors.append("missing_threshold must be between 0 and 1")

        if self.n_top_features is not None and self.n_top_features < 1:
            errors.append("n_top_features must be >= 1 or None")

        return errors


@dataclass
class ModelConfig:
    """Model configuration schema."""

    model_type: str = "cavi"
    n_factors: int = 15
    likelihoods: Dict[str, str] = field(default_factory=dict)
    ard_weights: bool = True

    def validate(self) -> List[str]:
        """Validate model configuration."""
        errors = []

        valid_types = [t.value for t in ModelType]
        if self.model_type not in valid_types:
            errors.append(
                f"model_type must be one of {valid_types}, got {self.model_type}"
            )

        # The upper bound depends on the data and is checked when the model is fitted
        if isinstance(self.n_factors, bool) or not isinstance(self.n_factors, int) or self.n_factors < 1:
            errors.append("n_factors (number of factors) must be an integer >= 1")

        valid_likelihoods = [lik.value for lik in LikelihoodType]
        for view_name, likelihood in self.likelihoods.items():
            if likelihood not in valid_likelihoods:
                errors.append(
                    f"likelihood for '{view_name}' must be one of {valid_likelihoods}, "
                    f"got {likelihood}"
                )

        return errors


@dataclass
class TrainingConfig:
    """Training configuration schema."""

    max_iter: int = 1000
    convergence_mode: str = "fast"
    tolerance: Optional[float] = None
    start_elbo: int = 1
    elbo_freq: int = 1
    divergence_tolerance: float = 0.05
    strict_convergence: bool = False
    drop_factor_threshold: Optional[float] = None
    init: str = "random"
    seed: Optional[int] = None
    learning_rate: float = 0.01
    verbose: bool = False

    def validate(self) -> List[str]:
        """Validate training configuration."""
        errors = []

        if self.max_iter < 1:
            errors.append("max_iter must be >= 1")

        valid_modes = [m.value for m in ConvergenceMode]
        if self.convergence_mode not in valid_modes:
            errors.append(f"convergence_mode must be one of {valid_modes}")

        if self.tolerance is not None and self.tolerance <= 0:
            errors.append("tolerance must be > 0")

        if self.start_elbo < 1:
            errors.append("start_elbo must be >= 1")

        if self.elbo_freq < 1:
            errors.append("elbo_freq must be >= 1")

        if self.divergence_tolerance <= 0:
            errors.append("divergence_tolerance must be > 0")

        if self.drop_factor_threshold is not None and not 0 <= self.drop_factor_threshold < 1:
            errors.append("drop_factor_threshold must be in [0, 1) or None")

        valid_init = [i.value for i in InitMethod]
        if self.init not in valid_init:
            errors.append(f"init must be one of {valid_init}")

        if self.seed is not None:
            if not isinstance(self.seed, int):
                errors.append("seed must be an integer")
            elif self.seed < 0:
                errors.append("seed must be >= 0")

        if self.learning_rate <= 0:
            errors.append("learning_rate must be > 0")

        return errors


@dataclass
class AnalysisConfig:
    """Covariate association configuration schema."""

    categorical: List[str] = field(default_factory=list)
    categorical_test: str = "kruskal"
    min_group_size: int = 2
    alpha: float = 0.05

    def validate(self) -> List[str]:
        """Validate analysis configuration."""
        errors = []

        valid_tests = ["kruskal", "anova", "ttest"]
        if self.categorical_test not in valid_tests:
            errors.append(f"categorical_test must be one of {valid_tests}")

        if self.min_group_size < 1:
            errors.append("min_group_size must be >= 1")

        if not 0 < self.alpha < 1:
            errors.append("alpha must be between 0 and 1")

        return errors


@dataclass
class OutputConfig:
    """Output configuration schema."""

    output_dir: str = "./results"
    save_model: bool = True
    export_tables: bool = True
    n_top_features: int = 10

    def validate(self) -> List[str]:
        """Validate output configuration."""
        errors = []

        if not self.output_dir:
            errors.append("output_dir is required")

        if self.n_top_features < 1:
            errors.append("n_top_features must be >= 1")

        return errors


@dataclass
class SystemConfig:
    """System configuration schema."""

    use_gpu: bool = False
    log_level: str = "INFO"
    log_file: Optional[str] = None

    def validate(self) -> List[str]:
        """Validate system configuration."""
        errors = []

        valid_levels = [level.value for level in LogLevel]
        if self.log_level not in valid_levels:
            errors.append(f"log_level must be one of {valid_levels}")

        return errors


SECTION_SCHEMAS = {
    "data": DataConfig,
    "preprocessing": PreprocessingConfig,
    "model": ModelConfig,
    "training": TrainingConfig,
    "analysis": AnalysisConfig,
    "output": OutputConfig,
    "system": SystemConfig,
}


class ConfigurationValidator:
    """Main configuration validator."""

    @staticmethod
    def create_from_dict(config_dict: Dict[str, Any]) -> Dict[str, Any]:
        """Create configuration objects from dictionary, defaulting missing sections."""
        config_objects = {}

        for section_name, schema in SECTION_SCHEMAS.items():
            section = config_dict.get(section_name) or {}
            config_objects[section_name] = schema(**section)

        return config_objects

    @staticmethod
    def validate_configuration(config_dict: Dict[str, Any]) -> List[str]:
        """Validate complete configuration."""
        all_errors = []

        unknown = [key for key in config_dict if key not in SECTION_SCHEMAS]
        for key in unknown:
            all_errors.append(f"Unknown configuration section: '{key}'")

        try:
            config_objects = ConfigurationValidator.create_from_dict(config_dict)

            for section_name, config_obj in config_objects.items():
                section_errors = config_obj.validate()
                for error in section_errors:
                    all_errors.append(f"{section_name}: {error}")

        except (TypeError, ValueError) as e:
            all_errors.append(f"Configuration structure error: {str(e)}")

        cross_errors = ConfigurationValidator._validate_cross_sections(config_dict)
        all_errors.extend(cross_errors)

        return all_errors

    @staticmethod
    def _validate_cross_sections(config_dict: Dict[str, Any]) -> List[str]:
        """Validate relationships between configuration sections."""
        errors = []

        views = (config_dict.get("data") or {}).get("views") or {}
        likelihoods = (config_dict.get("model") or {}).get("likelihoods") or {}
        if views:
            unknown_views = [name for name in likelihoods if name not in views]
            if unknown_views:
                errors.append(
                    f"likelihoods given for unknown views: {unknown_views}"
                )

        return errors

    @staticmethod
    def validate_and_fix_configuration(config_dict: Dict[str, Any]) -> Dict[str, Any]:
        """Validate configuration and apply fixes where possible."""
        fixed_config = ConfigurationValidator._apply_fixes(config_dict)

        errors = ConfigurationValidator.validate_configuration(fixed_config)

        if errors:
            error_message = "Configuration validation failed:\n" + "\n".join(
                f"  - {error}" for error in errors
            )
            raise ConfigValidationError(error_message)

        logger.info("Configuration validation passed")
        return fixed_config

    @staticmethod
    def _apply_fixes(config_dict: Dict[str, Any]) -> Dict[str, Any]:
        """Apply automatic fixes to configuration."""
        fixed_config = ConfigurationValidator.merge_with_defaults(config_dict)

        output_dir = fixed_config["output"]["output_dir"]
        if not Path(output_dir).is_absolute():
            fixed_config["output"]["output_dir"] = str(Path(output_dir).resolve())

        log_level = fixed_config["system"].get("log_level")
        if isinstance(log_level, str):
            fixed_config["system"]["log_level"] = log_level.upper()

        return fixed_config

    @staticmethod
    def get_default_configuration() -> Dict[str, Any]:
        """Get default configuration."""
        return {
            "data": {"views": {}, "join": "outer", "synthetic": False},
            "preprocessing": {
                "missing_threshold": 0.9,
                "n_top_features": None,
                "scale_views": False,
            },
            "model": {
                "model_type": "cavi",
                "n_factors": 15,
                "likelihoods": {},
                "ard_weights": True,
            },
            "training": {
                "max_iter": 1000,
                "convergence_mode": "fast",
                "start_elbo": 1,
                "elbo_freq": 1,
                "init": "random",
                "seed": 42,
            },
            "analysis": {"categorical": [], "categorical_test": "kruskal"},
            "output": {"output_dir": "./results", "save_model": True},
            "system": {"use_gpu": False, "log_level": "INFO"},
        }

    @staticmethod
    def merge_with_defaults(config_dict: Dict[str, Any]) -> Dict[str, Any]:
        """Merge user configuration with defaults."""
        default_config = ConfigurationValidator.get_default_configuration()

        def deep_merge(base: Dict, update: Dict) -> Dict:
            """Deep merge two dictionaries."""
            merged = base.copy()
            for key, value in update.items():
                if (
                    key in merged
                    and isinstance(merged[key], dict)
                    and isinstance(value, dict)
                    and key not in ("views", "likelihoods")
                ):
                    merged[key] = deep_merge(merged[key], value)
                else:
                    merged[key] = value
            return merged

        return deep_merge(default_config, config_dict or {})
