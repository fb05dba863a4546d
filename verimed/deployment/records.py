"""
Records kept by the model registry.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from ..data.records import Modality


class DeploymentStrategy(str, Enum):
    IMMEDIATE = "immediate"
    GRADUAL = "gradual"
    A_B_TEST = "a_b_test"


@dataclass(frozen=True)
class VersionMetrics:
    """Evaluation metrics stored with a model version."""
    precision: float = 0.0
    recall: float = 0.0
    f1_score: float = 0.0
    roc_auc: float = 0.0

    def to_dict(self) -> Dict[str, float]:
        return {
            "precision": self.precision,
            "recall": self.recall,
            "f1_score": self.f1_score,
            "roc_auc": self.roc_auc,
        }


@dataclass(frozen=True)
class ModelVersion:
    """A trained scorer artifact registered for one model type."""
    id: str
    model_type: Modality
    version: str
    accuracy: float
    size: int
    created_at: datetime
    is_active: bool
    model_path: str
    metrics: VersionMetrics = field(default_factory=VersionMetrics)

    def __post_init__(self):
        object.__setattr__(self, "model_type", Modality.parse(self.model_type))

    @property
    def minor(self) -> int:
        """Per-type sequence number encoded in ``1.<n>.0``."""
        return int(self.version.split(".")[1])

    @property
    def sort_key(self) -> Tuple[datetime, int]:
        return self.created_at, self.minor

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "model_type": self.model_type.value,
            "version": self.version,
            "accuracy": self.accuracy,
            "size": self.size,
            "created_at": self.created_at.isoformat(),
            "is_active": self.is_active,
            "model_path": self.model_path,
            "metrics": self.metrics.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ModelVersion":
        return cls(
            id=data["id"],
            model_type=Modality.parse(data["model_type"]),
            version=data["version"],
            accuracy=float(data["accuracy"]),
            size=int(data["size"]),
            created_at=datetime.fromisoformat(data["created_at"]),
            is_active=bool(data["is_active"]),
            model_path=data["model_path"],
            metrics=VersionMetrics(**data.get("metrics", {})),
        )


@dataclass
class DeploymentConfig:
    """How a newly registered version reaches traffic."""
    strategy: DeploymentStrategy = DeploymentStrategy.IMMEDIATE
    rollout_percentage: float = 100.0
    target_users: List[str] = field(default_factory=list)
    fallback_version: Optional[str] = None

    def __post_init__(self):
        self.strategy = DeploymentStrategy(self.strategy)
        if not 0.0 <= self.rollout_percentage <= 100.0:
            raise ValueError(f"rollout_percentage must be between 0 and 100, got {self.rollout_percentage}")


@dataclass(frozen=True)
class DeploymentRecord:
    """Entry of the deployment history."""
    version_id: str
    model_type: Modality
    strategy: DeploymentStrategy
    rollout_percentage: float
    target_users: Tuple[str, ...]
    deployed_at: datetime
    action: str = "deploy"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version_id": self.version_id,
            "model_type": self.model_type.value,
            "strategy": self.strategy.value,
            "rollout_percentage": self.rollout_percentage,
            "target_users": list(self.target_users),
            "deployed_at": self.deployed_at.isoformat(),
            "action": self.action,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DeploymentRecord":
        return cls(
            version_id=data["version_id"],
            model_type=Modality.parse(data["model_type"]),
            strategy=DeploymentStrategy(data["strategy"]),
            rollout_percentage=float(data["rollout_percentage"]),
            target_users=tuple(data.get("target_users", ())),
            deployed_at=datetime.fromisoformat(data["deployed_at"]),
            action=data.get("action", "deploy"),
        )


@dataclass(frozen=True)
class ModelPerformance:
    """Latency record of one inference served by an active version."""
    model_id: str
    model_type: Modality
    accuracy: float
    inference_time_ms: float
    recorded_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "model_id": self.model_id,
            "model_type": self.model_type.value,
            "accuracy": self.accuracy,
            "inference_time_ms": self.inference_time_ms,
            "recorded_at": self.recorded_at.isoformat(),
        }
