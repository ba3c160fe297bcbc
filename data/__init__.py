"""Data loading, assembly and generation modules."""

from .assembler import MultiViewDataset, assemble_views
from .loaders import load_covariates, load_view_table, views_from_long_format
from .preprocessing import ViewPreprocessor
from .synthetic import generate_synthetic_data, to_feature_frames

__all__ = [
    "MultiViewDataset",
    "ViewPreprocessor",
    "assemble_views",
    "generate_synthetic_data",
    "load_covariates",
    "load_view_table",
    "to_feature_frames",
    "views_from_long_format",
]
