"""
Training package for the VeriMed pipeline.
Provides the training loop, evaluation, progress broadcast and the orchestrator.
"""

from .progress import TrainingStatus, TrainingProgress, ProgressBroadcaster, Subscription
from .trainer import EarlyStopping, TrainingHistory, ScorerTrainer
from .evaluation import ModelMetrics, compute_metrics, approximate_roc_auc
from .fusion_data import ScoreLedger, build_fusion_samples
from .orchestrator import TrainingOrchestrator, TrainingResult

__all__ = [
    'TrainingStatus',
    'TrainingProgress',
    'ProgressBroadcaster',
    'Subscription',
    'EarlyStopping',
    'TrainingHistory',
    'ScorerTrainer',
    'ModelMetrics',
    'compute_metrics',
    'approximate_roc_auc',
    'ScoreLedger',
    'build_fusion_samples',
    'TrainingOrchestrator',
    'TrainingResult'
]
