"""
Custom exception classes for the VeriMed scoring pipeline.
Provides structured error handling with detailed context.
"""

from functools import wraps
from typing import Optional, Dict, Any


class VeriMedError(Exception):
    """Base exception class for the VeriMed pipeline."""

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        """
        Initialize exception with message and context.

        Args:
            message: Error message
            context: Additional context information
        """
        self.message = message
        self.context = context or {}
        super().__init__(self.message)

    def __str__(self) -> str:
        """String representation of the exception."""
        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            return f"{self.message} (Context: {context_str})"
        return self.message


class ConfigurationError(VeriMedError):
    """Exception raised when configuration is invalid."""
    pass


class PreprocessingError(VeriMedError):
    """Exception raised when an image cannot be decoded or resized."""
    pass


class ModelError(VeriMedError):
    """Exception raised when a scorer fails to build, load or run."""
    pass


class ModelUnavailableError(ModelError):
    """Exception raised when no active version exists for a model slot."""
    pass


class DeploymentError(VeriMedError):
    """Exception raised when a model version cannot be deployed."""
    pass


class RollbackError(DeploymentError):
    """Exception raised when no eligible version exists to roll back to."""
    pass


class StorageError(VeriMedError):
    """Exception raised when persisted state cannot be written or read."""
    pass


class DataCollectionError(VeriMedError):
    """Exception raised when a training image cannot be collected."""
    pass


class TrainingError(VeriMedError):
    """Exception raised when training fails."""
    pass


class InsufficientDataError(TrainingError):
    """Exception raised when there are no usable images for a training run."""
    pass


class TrainingInProgressError(TrainingError):
    """Exception raised when a second training run is requested concurrently."""
    pass


class NotInitializedError(VeriMedError):
    """Exception raised when inference is requested before initialization."""
    pass


def handle_exceptions(exception_type: type = VeriMedError):
    """
    Decorator to handle exceptions and convert them to custom types.

    Args:
        exception_type: Type of exception to convert to
    """
    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except VeriMedError:
                # Re-raise pipeline exceptions as-is
                raise
            except Exception as e:
                # Convert other exceptions to custom type
                raise exception_type(
                    f"Error in {func.__name__}: {str(e)}",
                    context={
                        "function": func.__name__,
                        "args": str(args)[:100],  # Truncate for readability
                        "kwargs": str(kwargs)[:100],
                        "original_exception": type(e).__name__
                    }
                ) from e
        return wrapper
    return decorator
