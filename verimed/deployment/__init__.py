"""
Deployment package for the VeriMed pipeline.
Provides the versioned model registry and its records.
"""

from .records import (
    DeploymentStrategy,
    VersionMetrics,
    ModelVersion,
    DeploymentConfig,
    DeploymentRecord,
    ModelPerformance
)
from .registry import LoadedModel, ModelRegistry

__all__ = [
    'DeploymentStrategy',
    'VersionMetrics',
    'ModelVersion',
    'DeploymentConfig',
    'DeploymentRecord',
    'ModelPerformance',
    'LoadedModel',
    'ModelRegistry'
]
