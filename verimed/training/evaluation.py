"""
Evaluation metrics for trained scorers.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Sequence

import numpy as np
from sklearn.metrics import accuracy_score, confusion_matrix, f1_score, precision_score, recall_score

from ..deployment.records import VersionMetrics


ROC_THRESHOLDS = np.linspace(0.0, 1.0, 11)


@dataclass
class ModelMetrics:
    """Evaluation summary of one training run."""
    accuracy: float
    precision: float
    recall: float
    f1_score: float
    confusion_matrix: List[List[int]] = field(default_factory=lambda: [[0, 0], [0, 0]])
    roc_auc: float = 0.5
    training_time: float = 0.0
    model_size: int = 0

    def version_metrics(self) -> VersionMetrics:
        """Subset stored with a registered model version."""
        return VersionMetrics(
            precision=self.precision,
            recall=self.recall,
            f1_score=self.f1_score,
            roc_auc=self.roc_auc
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "accuracy": self.accuracy,
            "precision": self.precision,
            "recall": self.recall,
            "f1_score": self.f1_score,
            "confusion_matrix": self.confusion_matrix,
            "roc_auc": self.roc_auc,
            "training_time": self.training_time,
            "model_size": self.model_size,
        }


def approximate_roc_auc(labels: Sequence[int], scores: Sequence[float]) -> float:
    """
    ROC-AUC by trapezoidal integration over an 11-point threshold sweep.

    Args:
        labels: True labels (1 = authentic)
        scores: Predicted probabilities

    Returns:
        Area in [0, 1]; 0.5 when only one class is present
    """
    labels = np.asarray(labels, dtype=int)
    scores = np.asarray(scores, dtype=float)
    positives = int((labels == 1).sum())
    negatives = int((labels == 0).sum())
    if positives == 0 or negatives == 0:
        return 0.5

    points = {(0.0, 0.0), (1.0, 1.0)}
    for threshold in ROC_THRESHOLDS:
        predicted = scores >= threshold
        tpr = float((predicted & (labels == 1)).sum()) / positives
        fpr = float((predicted & (labels == 0)).sum()) / negatives
        points.add((fpr, tpr))

    curve = sorted(points)
    area = 0.0
    for (x0, y0), (x1, y1) in zip(curve[:-1], curve[1:]):
        area += (x1 - x0) * (y0 + y1) / 2.0
    return float(min(1.0, max(0.0, area)))


def compute_metrics(
    labels: Sequence[int],
    scores: Sequence[float],
    threshold: float = 0.5
) -> ModelMetrics:
    """
    Classification metrics of predicted probabilities.

    Args:
        labels: True labels (1 = authentic)
        scores: Predicted probabilities
        threshold: Probability at or above which a sample is predicted authentic

    Returns:
        ModelMetrics without timing or size
    """
    labels = np.asarray(labels, dtype=int)
    scores = np.asarray(scores, dtype=float)
    predicted = (scores >= threshold).astype(int)

    return ModelMetrics(
        accuracy=float(accuracy_score(labels, predicted)),
        precision=float(precision_score(labels, predicted, zero_division=0)),
        recall=float(recall_score(labels, predicted, zero_division=0)),
        f1_score=float(f1_score(labels, predicted, zero_division=0)),
        confusion_matrix=confusion_matrix(labels, predicted, labels=[0, 1]).tolist(),
        roc_auc=approximate_roc_auc(labels, scores)
    )
