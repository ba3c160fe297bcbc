"""
Core functionality for multi-view factor analysis.

This package contains the components the rest of the project builds on:

- config_schema.py / config_utils.py: configuration schema, loading and validation
- error_handling.py: exception taxonomy and result-dict helpers
- io_utils.py: JSON/CSV/array persistence
- logger_utils.py: logging setup
- pca_initialization.py: PCA start for the factor models
- run_analysis.py: the end-to-end pipeline

``run_analysis`` is imported lazily because it pulls in the model engines.
"""


def _get_run_analysis():
    from . import run_analysis
    return run_analysis


__all__ = [
    "config_schema",
    "config_utils",
    "error_handling",
    "io_utils",
    "logger_utils",
    "pca_initialization",
]
