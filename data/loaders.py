"""Readers for view tables, covariate tables and long-format input."""

import logging
from pathlib import Path
from typing import Dict, Optional, Union

import pandas as pd

from core.error_handling import DataValidationError

logger = logging.getLogger(__name__)

LONG_FORMAT_COLUMNS = ("sample", "feature", "view", "value")


def _separator_for(path: Path) -> str:
    suffixes = [s.lower() for s in path.suffixes if s.lower() != ".gz"]
    if suffixes and suffixes[-1] in (".tsv", ".txt", ".tab"):
        return "\t"
    return ","


def load_view_table(path: Union[str, Path]) -> pd.DataFrame:
    """
    Load a feature-by-sample matrix from CSV or TSV.

    The first column holds feature IDs and the header row holds sample IDs.
    The separator is taken from the suffix (``.tsv``/``.txt``/``.tab`` are
    tab separated, anything else comma separated); ``.gz`` is accepted.
    Empty cells and ``NA`` become NaN.
    """
    path = Path(path)
    if not path.exists():
        raise DataValidationError(f"View file not found: {path}")

    frame = pd.read_csv(path, sep=_separator_for(path), index_col=0)
    if frame.empty:
        raise DataValidationError(f"View file {path} contains no data")

    logger.info(f"Loaded view table {path.name}: {frame.shape[0]} features x {frame.shape[1]} samples")
    return frame


def load_covariates(
    path: Union[str, Path], sample_column: Optional[str] = None
) -> pd.DataFrame:
    """
    Load a sample covariate table.

    Parameters
    ----------
    path : str or Path
        CSV/TSV file with one row per sample
    sample_column : str, optional
        Column holding sample IDs; defaults to the first column
    """
    path = Path(path)
    if not path.exists():
        raise DataValidationError(f"Covariate file not found: {path}")

    frame = pd.read_csv(path, sep=_separator_for(path))
    if sample_column is None:
        sample_column = frame.columns[0]
    if sample_column not in frame.columns:
        raise DataValidationError(
            f"Sample column '{sample_column}' not found in {path.name}; "
            f"columns: {list(frame.columns)}"
        )

    frame[sample_column] = frame[sample_column].astype(str)
    frame = frame.set_index(sample_column)
    logger.info(f"Loaded covariates {path.name}: {frame.shape[0]} samples, {frame.shape[1]} covariates")
    return frame


def views_from_long_format(data: pd.DataFrame) -> Dict[str, pd.DataFrame]:
    """
    Convert a long table into per-view feature x sample matrices.

    ``data`` must have the columns ``sample``, ``feature``, ``view`` and
    ``value``. Sample/feature combinations absent from the table are NaN.
    """
    missing = [c for c in LONG_FORMAT_COLUMNS if c not in data.columns]
    if missing:
        raise DataValidationError(f"Long-format data is missing columns: {missing}")

    duplicated = data.duplicated(subset=["view", "feature", "sample"])
    if duplicated.any():
        raise DataValidationError(
            f"Long-format data has {int(duplicated.sum())} duplicated (view, feature, sample) entries"
        )

    views = {}
    for view_name, chunk in data.groupby("view", sort=False):
        frame = chunk.pivot(index="feature", columns="sample", values="value")
        frame.index = frame.index.map(str)
        frame.columns = frame.columns.map(str)
        frame.index.name = None
        frame.columns.name = None
        views[str(view_name)] = frame.astype(float)
        logger.debug(f"Long-format view '{view_name}': {frame.shape[0]} features x {frame.shape[1]} samples")

    return views
