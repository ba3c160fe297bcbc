"""
Standard error handling patterns for the multi-view factor analysis codebase.

Defines the exception taxonomy raised by the data assembler, the factor model
engines and the pipeline, plus helpers that turn failures into result dicts.
"""

from __future__ import annotations

# Standard library imports
import logging
import traceback
from typing import Any, Dict, List, Optional, Sequence

logger = logging.getLogger(__name__)


class FactorAnalysisError(Exception):
    """Base exception for factor analysis errors."""
    pass


class ConfigurationError(FactorAnalysisError):
    """Raised when configuration is invalid."""
    pass


class DataValidationError(FactorAnalysisError):
    """Raised when input data fails validation."""
    pass


class DimensionMismatch(DataValidationError):
    """Raised when views (or covariates) disagree on the sample axis."""

    def __init__(self, message: str, view: Optional[str] = None):
        super().__init__(message)
        self.view = view


class EmptyViewError(DataValidationError):
    """Raised when a view (or a sample) carries no usable observations."""

    def __init__(self, message: str, view: Optional[str] = None):
        super().__init__(message)
        self.view = view


class InvalidFactorCount(FactorAnalysisError):
    """Raised when the requested number of factors is not feasible."""

    def __init__(self, requested: int, maximum: int):
        super().__init__(
            f"Invalid number of factors: {requested}. "
            f"Must be between 1 and {maximum} for this dataset."
        )
        self.requested = requested
        self.maximum = maximum


class ConvergenceFailure(FactorAnalysisError):
    """Raised when training diverges or does not stabilise."""

    def __init__(self, message: str, elbo_trace: Optional[Sequence[float]] = None):
        super().__init__(message)
        self.elbo_trace: List[float] = list(elbo_trace) if elbo_trace is not None else []


class ModelExecutionError(FactorAnalysisError):
    """Raised when model execution fails for reasons other than convergence."""
    pass


def create_error_result(
    error: Exception,
    context: str = "",
    additional_fields: Optional[Dict[str, Any]] = None
) -> Dict[str, Any]:
    """
    Create a standardized error result dictionary.

    Args:
        error: The exception that occurred
        context: Additional context about where/why error occurred
        additional_fields: Optional additional fields to include

    Returns:
        Standardized error dictionary with status, error message, and context
    """
    result = {
        "status": "failed",
        "error": str(error),
        "error_type": type(error).__name__,
    }

    view = getattr(error, "view", None)
    if view is not None:
        result["view"] = view

    if context:
        result["error_context"] = context

    if additional_fields:
        result.update(additional_fields)

    return result


def log_and_return_error(
    error: Exception,
    logger_instance: logging.Logger,
    context: str = "",
    log_level: str = "error",
    include_traceback: bool = False,
    additional_fields: Optional[Dict[str, Any]] = None
) -> Dict[str, Any]:
    """
    Log an error and return standardized error dictionary.

    Args:
        error: The exception that occurred
        logger_instance: Logger to use for logging
        context: Additional context about the error
        log_level: Logging level ('error', 'warning', 'info')
        include_traceback: Whether to include full traceback in log
        additional_fields: Optional additional fields for result dict

    Returns:
        Standardized error dictionary
    """
    if context:
        message = f"{context}: {error}"
    else:
        message = str(error)

    log_func = getattr(logger_instance, log_level.lower())

    if include_traceback:
        log_func(f"❌ {message}\n{traceback.format_exc()}")
    else:
        log_func(f"❌ {message}")

    return create_error_result(error, context, additional_fields)


def validate_required_keys(
    data: Dict[str, Any],
    required_keys: List[str],
    context: str = "Data validation"
) -> None:
    """
    Validate that required keys exist in dictionary.

    Raises:
        DataValidationError: If required keys are missing
    """
    missing = [key for key in required_keys if key not in data]
    if missing:
        raise DataValidationError(
            f"{context}: Missing required keys: {missing}"
        )


SUCCESS_RESULT_TEMPLATE = {
    "status": "completed",
}


def create_success_result(**kwargs) -> Dict[str, Any]:
    """Create a standardized success result dictionary."""
    result = SUCCESS_RESULT_TEMPLATE.copy()
    result.update(kwargs)
    return result
