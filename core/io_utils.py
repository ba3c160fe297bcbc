"""IO utilities for consistent file operations across the pipeline."""

import json
import logging
import re
from pathlib import Path
from typing import Any, Dict, List, Union

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)


def save_json(data: Any, filepath: Union[str, Path], indent: int = 2) -> None:
    """
    Save data to JSON file with consistent formatting.

    Parameters
    ----------
    data : Any
        Data to save (non-serializable values are stringified)
    filepath : Union[str, Path]
        Output file path
    indent : int, optional
        JSON indentation level
    """
    filepath = Path(filepath)
    filepath.parent.mkdir(parents=True, exist_ok=True)

    try:
        with open(filepath, "w") as f:
            json.dump(data, f, indent=indent, default=_json_default)
        logger.debug(f"Saved JSON to {filepath}")
    except Exception as e:
        logger.error(f"Failed to save JSON to {filepath}: {e}")
        raise


def _json_default(value: Any) -> Any:
    if isinstance(value, np.integer):
        return int(value)
    if isinstance(value, np.floating):
        return float(value)
    if isinstance(value, np.ndarray):
        return value.tolist()
    return str(value)


def load_json(filepath: Union[str, Path]) -> Any:
    """Load data from JSON file."""
    filepath = Path(filepath)
    try:
        with open(filepath, "r") as f:
            data = json.load(f)
        logger.debug(f"Loaded JSON from {filepath}")
        return data
    except Exception as e:
        logger.error(f"Failed to load JSON from {filepath}: {e}")
        raise


def save_csv(
    df: pd.DataFrame, filepath: Union[str, Path], index: bool = False, **kwargs
) -> None:
    """
    Save DataFrame to CSV with consistent formatting.

    Parameters
    ----------
    df : pd.DataFrame
        DataFrame to save
    filepath : Union[str, Path]
        Output file path
    index : bool, optional
        Whether to save index
    **kwargs
        Additional arguments for to_csv
    """
    filepath = Path(filepath)
    filepath.parent.mkdir(parents=True, exist_ok=True)

    try:
        df.to_csv(filepath, index=index, **kwargs)
        logger.debug(f"Saved CSV to {filepath}")
    except Exception as e:
        logger.error(f"Failed to save CSV to {filepath}: {e}")
        raise


def load_csv(filepath: Union[str, Path], **kwargs) -> pd.DataFrame:
    """Load DataFrame from CSV."""
    filepath = Path(filepath)
    try:
        df = pd.read_csv(filepath, **kwargs)
        logger.debug(f"Loaded CSV from {filepath}")
        return df
    except Exception as e:
        logger.error(f"Failed to load CSV from {filepath}: {e}")
        raise


def save_arrays(
    arrays: Dict[str, np.ndarray], filepath: Union[str, Path], max_size_mb: int = 500
) -> Path:
    """
    Save several named numpy arrays to one compressed ``.npz`` file.

    Returns
    -------
    Path
        The path written (``.npz`` suffix enforced)
    """
    filepath = Path(filepath)
    if filepath.suffix != ".npz":
        filepath = filepath.with_suffix(".npz")
    filepath.parent.mkdir(parents=True, exist_ok=True)

    total_mb = sum(np.asarray(a).nbytes for a in arrays.values()) / (1024 * 1024)
    if total_mb > max_size_mb:
        logger.warning(f"Large arrays detected: {total_mb:.1f}MB > {max_size_mb}MB limit for {filepath}")

    try:
        np.savez_compressed(filepath, **arrays)
        logger.debug(f"Saved {len(arrays)} arrays to {filepath}")
    except Exception as e:
        logger.error(f"Failed to save arrays to {filepath}: {e}")
        raise
    return filepath


def load_arrays(filepath: Union[str, Path]) -> Dict[str, np.ndarray]:
    """Load every array stored in an ``.npz`` file into a dict."""
    filepath = Path(filepath)
    try:
        with np.load(filepath, allow_pickle=False) as data:
            arrays = {key: data[key] for key in data.files}
        logger.debug(f"Loaded {len(arrays)} arrays from {filepath}")
        return arrays
    except Exception as e:
        logger.error(f"Failed to load arrays from {filepath}: {e}")
        raise


def ensure_directory(dirpath: Union[str, Path]) -> Path:
    """Ensure directory exists, creating if necessary."""
    dirpath = Path(dirpath)
    dirpath.mkdir(parents=True, exist_ok=True)
    logger.debug(f"Ensured directory exists: {dirpath}")
    return dirpath


def safe_filename(filename: str, replacement: str = "_") -> str:
    """
    Create safe filename by replacing problematic characters.

    Examples
    --------
    >>> safe_filename("rna/seq: counts")
    'rna_seq_ counts'
    """
    safe_name = re.sub(r'[<>:"/\\|?*]', replacement, filename)
    safe_name = re.sub(f"{re.escape(replacement)}+", replacement, safe_name)
    return safe_name.strip(replacement)


class OutputManager:
    """
    Context manager for writing a set of result files into one directory.

    Creates the directory on entry and keeps track of every file written.
    """

    def __init__(self, base_dir: Union[str, Path]):
        self.base_dir = Path(base_dir)
        self.files_created: List[Path] = []

    def __enter__(self):
        ensure_directory(self.base_dir)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_type is not None:
            logger.warning(f"OutputManager exited with error: {exc_val}")
        logger.debug(f"OutputManager handled {len(self.files_created)} files")

    def save_json(self, data: Any, filename: str, **kwargs) -> Path:
        """Save JSON file within managed directory."""
        filepath = self.base_dir / safe_filename(filename)
        save_json(data, filepath, **kwargs)
        self.files_created.append(filepath)
        return filepath

    def save_csv(self, df: pd.DataFrame, filename: str, **kwargs) -> Path:
        """Save CSV file within managed directory."""
        filepath = self.base_dir / safe_filename(filename)
        save_csv(df, filepath, **kwargs)
        self.files_created.append(filepath)
        return filepath

    def save_arrays(self, arrays: Dict[str, np.ndarray], filename: str, **kwargs) -> Path:
        """Save an ``.npz`` bundle within managed directory."""
        filepath = save_arrays(arrays, self.base_dir / safe_filename(filename), **kwargs)
        self.files_created.append(filepath)
        return filepath
