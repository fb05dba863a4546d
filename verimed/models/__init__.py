"""
Models package for the VeriMed pipeline.
Provides the default scorer networks and checkpoint helpers.
"""

from .scorers import (
    ConvBlock,
    ModalityScorerNet,
    FusionNet,
    count_parameters,
    create_scorer,
    build_from_architecture,
    save_checkpoint,
    load_checkpoint,
    resolve_device
)

__all__ = [
    'ConvBlock',
    'ModalityScorerNet',
    'FusionNet',
    'count_parameters',
    'create_scorer',
    'build_from_architecture',
    'save_checkpoint',
    'load_checkpoint',
    'resolve_device'
]
