"""Logging setup shared by the command-line runner and the pipeline."""

import logging
import sys
from pathlib import Path
from typing import Optional, Union

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class ResilientFileHandler(logging.FileHandler):
    """FileHandler that silently ignores OSError on flush (e.g., stale NFS handles)."""

    def flush(self):
        try:
            super().flush()
        except OSError:
            pass


def setup_logging(
    level: Union[str, int] = "INFO",
    log_file: Optional[Union[str, Path]] = None,
) -> logging.Logger:
    """Configure root logging for a run.

    Parameters
    ----------
    level : str or int
        Logging level name (e.g. ``"INFO"``) or numeric level
    log_file : str or Path, optional
        Also write records to this file (parent directories are created)

    Returns
    -------
    logging.Logger
        The configured root logger
    """
    if isinstance(level, str):
        numeric_level = getattr(logging, level.upper(), None)
        if not isinstance(numeric_level, int):
            raise ValueError(f"Unknown log level: {level}")
    else:
        numeric_level = level

    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file is not None:
        log_file = Path(log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(ResilientFileHandler(log_file))

    logging.basicConfig(
        level=numeric_level,
        format=LOG_FORMAT,
        handlers=handlers,
        force=True,
    )

    # JAX is chatty at INFO about backends
    logging.getLogger("jax").setLevel(max(numeric_level, logging.WARNING))

    return logging.getLogger()


def log_section(logger: logging.Logger, title: str, width: int = 60) -> None:
    """Log a banner separating pipeline stages."""
    logger.info("=" * width)
    logger.info(title)
    logger.info("=" * width)
