"""Configuration utilities for safe and consistent config access."""

import copy
import logging
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

from .config_schema import ConfigurationValidator, ConfigValidationError
from .error_handling import ConfigurationError

logger = logging.getLogger(__name__)


def load_config(config_path: Union[str, Path] = "config.yaml") -> Dict[str, Any]:
    """
    Load a YAML configuration file.

    Parameters
    ----------
    config_path : str or Path
        Path to the YAML file

    Returns
    -------
    Dict[str, Any]
        Parsed configuration (empty dict for an empty file)

    Raises
    ------
    ConfigurationError
        If the file is missing or is not a YAML mapping
    """
    config_path = Path(config_path)
    if not config_path.exists():
        raise ConfigurationError(f"Configuration file not found: {config_path}")

    with open(config_path, "r") as f:
        try:
            config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Could not parse {config_path}: {e}") from e

    if config is None:
        config = {}
    if not isinstance(config, dict):
        raise ConfigurationError(
            f"Configuration in {config_path} must be a mapping, got {type(config).__name__}"
        )

    logger.info(f"Loaded configuration from {config_path}")
    return config


def safe_get(config: Dict[str, Any], *keys: str, default: Any = None) -> Any:
    """
    Safely get nested configuration values.

    Examples
    --------
    >>> config = {'output': {'output_dir': '/path/to/results'}}
    >>> safe_get(config, 'output', 'output_dir', default='./results')
    '/path/to/results'
    >>> safe_get(config, 'missing', 'key', default='fallback')
    'fallback'
    """
    current = config
    try:
        for key in keys:
            current = current[key]
        return current
    except (KeyError, TypeError):
        return default


def get_output_dir(config: Dict[str, Any]) -> Path:
    """Get output directory from config with safe fallback."""
    return Path(safe_get(config, "output", "output_dir", default="./results"))


def update_config_safely(
    config: Dict[str, Any], updates: Dict[str, Any]
) -> Dict[str, Any]:
    """
    Apply nested updates to a copy of the configuration.

    ``None`` values in ``updates`` are skipped so unset command-line options
    leave the file configuration untouched.
    """
    updated_config = copy.deepcopy(config)

    def _deep_update(base_dict: Dict, update_dict: Dict) -> None:
        for key, value in update_dict.items():
            if value is None:
                continue
            if isinstance(value, dict):
                if not isinstance(base_dict.get(key), dict):
                    base_dict[key] = {}
                _deep_update(base_dict[key], value)
            else:
                base_dict[key] = value

    _deep_update(updated_config, updates)
    return updated_config


def ensure_directories(config: Dict[str, Any]) -> Path:
    """Ensure the output directory exists and return it."""
    output_dir = get_output_dir(config)
    output_dir.mkdir(parents=True, exist_ok=True)
    logger.info(f"Ensured output directory exists: {output_dir}")
    return output_dir


def validate_configuration(config: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Validate and fix configuration using schema validation.

    Raises
    ------
    ConfigurationError
        If configuration is invalid and cannot be fixed
    """
    try:
        return ConfigurationValidator.validate_and_fix_configuration(config or {})
    except ConfigValidationError as e:
        raise ConfigurationError(str(e)) from e


def get_default_configuration() -> Dict[str, Any]:
    """Get default configuration."""
    return ConfigurationValidator.get_default_configuration()
