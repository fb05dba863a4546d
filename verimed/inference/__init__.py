"""
Inference package for the VeriMed pipeline.
Provides scorers, confidence aggregation, the scan service and its self-check.
"""

from .scoring import ModalityScorer, FusionScorer, NEUTRAL_SCORE
from .aggregation import ConfidenceAggregator, WEIGHTS
from .service import InferenceService, InferenceResult
from .diagnostics import DiagnosticCheck, DiagnosticReport, ModelDiagnostics

__all__ = [
    'ModalityScorer',
    'FusionScorer',
    'NEUTRAL_SCORE',
    'ConfidenceAggregator',
    'WEIGHTS',
    'InferenceService',
    'InferenceResult',
    'DiagnosticCheck',
    'DiagnosticReport',
    'ModelDiagnostics'
]
