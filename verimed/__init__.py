"""
VeriMed: counterfeit medicine detection pipeline

Scores photos of medicine packaging, pills and batch codes with per-modality
classifiers, fuses the scores into an authenticity verdict, and manages the
data collection, training and versioned deployment of those classifiers.

Key Features:
- Modality-specific preprocessing (resize, contrast enhancement, augmentation)
- Per-modality and fusion scorers with weighted fallback aggregation
- Versioned model registry with atomic activation, rollback and cleanup
- Labeled image collection with running statistics
- Training orchestrator with early stopping, evaluation and progress broadcast
- Logging, configuration management and error handling
- Command-line interface for collection, training, deployment and scanning

Version: 1.0.0
"""

__version__ = "1.0.0"

# Core imports
from .utils import ConfigManager, LoggerManager, setup_logging
from .data import Modality, ImagePreprocessor, DataCollectionStore
from .deployment import ModelRegistry, ModelVersion, DeploymentConfig
from .inference import ConfidenceAggregator, InferenceService, InferenceResult
from .training import TrainingOrchestrator, TrainingProgress, TrainingResult
from .session import VeriMedSession

__all__ = [
    # Version info
    '__version__',

    # Core utilities
    'ConfigManager',
    'LoggerManager',
    'setup_logging',

    # Data handling
    'Modality',
    'ImagePreprocessor',
    'DataCollectionStore',

    # Deployment
    'ModelRegistry',
    'ModelVersion',
    'DeploymentConfig',

    # Inference
    'ConfidenceAggregator',
    'InferenceService',
    'InferenceResult',

    # Training
    'TrainingOrchestrator',
    'TrainingProgress',
    'TrainingResult',

    # Session
    'VeriMedSession'
]
