"""Analysis package: variance decomposition, covariate tests, interpretation and export."""

from .covariates import CovariateAssociation, associate_covariates
from .export import export_results
from .interpretation import correlated_factor_pairs, get_top_features, top_features_table
from .variance import (
    VarianceExplained,
    calculate_variance_explained,
    compute_r2,
    cumulative_r2,
    variance_explained_summary,
    variance_from_model,
)

__all__ = [
    "CovariateAssociation",
    "VarianceExplained",
    "associate_covariates",
    "calculate_variance_explained",
    "compute_r2",
    "correlated_factor_pairs",
    "cumulative_r2",
    "export_results",
    "get_top_features",
    "top_features_table",
    "variance_explained_summary",
    "variance_from_model",
]
