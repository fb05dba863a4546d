"""
Data package for the VeriMed pipeline.
Provides preprocessing, the collection store and training datasets.
"""

from .records import (
    Modality,
    IMAGE_MODALITIES,
    MODEL_TYPES,
    ContributorRole,
    GeoLocation,
    ImageMetadata,
    ModalityImage,
    DataCollectionStats,
    TrainingExport,
    ProcessedImage,
    QualityAssessment
)
from .preprocessing import ImagePreprocessor, ImageRef
from .collection import DataCollectionStore
from .dataset import ModalityDataset, FusionDataset, TrainingDataBuilder

__all__ = [
    'Modality',
    'IMAGE_MODALITIES',
    'MODEL_TYPES',
    'ContributorRole',
    'GeoLocation',
    'ImageMetadata',
    'ModalityImage',
    'DataCollectionStats',
    'TrainingExport',
    'ProcessedImage',
    'QualityAssessment',
    'ImagePreprocessor',
    'ImageRef',
    'DataCollectionStore',
    'ModalityDataset',
    'FusionDataset',
    'TrainingDataBuilder'
]
