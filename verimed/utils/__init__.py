"""
Utilities package for the VeriMed pipeline.
Provides logging, configuration and error types shared across the application.
"""

from .logger import (
    LoggerManager, LoggerMixin, get_logger, setup_logging, log_execution_time
)
from .config import (
    ConfigManager,
    get_config,
    MODEL_TYPES,
    PreprocessingConfig,
    ModelConfig,
    TrainingConfig,
    InferenceConfig,
    DeploymentDefaults,
    PathsConfig
)
from .exceptions import (
    VeriMedError,
    ConfigurationError,
    PreprocessingError,
    ModelError,
    ModelUnavailableError,
    DeploymentError,
    RollbackError,
    StorageError,
    DataCollectionError,
    TrainingError,
    InsufficientDataError,
    TrainingInProgressError,
    NotInitializedError,
    handle_exceptions
)

__all__ = [
    # Logger utilities
    'LoggerManager',
    'LoggerMixin',
    'get_logger',
    'setup_logging',
    'log_execution_time',

    # Configuration utilities
    'ConfigManager',
    'get_config',
    'MODEL_TYPES',
    'PreprocessingConfig',
    'ModelConfig',
    'TrainingConfig',
    'InferenceConfig',
    'DeploymentDefaults',
    'PathsConfig',

    # Exception classes
    'VeriMedError',
    'ConfigurationError',
    'PreprocessingError',
    'ModelError',
    'ModelUnavailableError',
    'DeploymentError',
    'RollbackError',
    'StorageError',
    'DataCollectionError',
    'TrainingError',
    'InsufficientDataError',
    'TrainingInProgressError',
    'NotInitializedError',
    'handle_exceptions'
]
