"""
Model registry and deployment manager.
Tracks scorer versions per model type, which one is active, the deployment
history and inference latency, and supports rollback and retention cleanup.
"""

import shutil
import threading
import uuid
from collections import deque
from dataclasses import dataclass, replace
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple, Union

import torch
import torch.nn as nn

from ..data.records import Modality, MODEL_TYPES
from ..models import load_checkpoint, save_checkpoint
from ..utils import (
    LoggerMixin, DeploymentError, ModelError, ModelUnavailableError, RollbackError, StorageError
)
from ..utils.storage import read_json, write_json_atomic
from .records import (
    DeploymentConfig, DeploymentRecord, DeploymentStrategy, ModelPerformance, ModelVersion, VersionMetrics
)


@dataclass(frozen=True)
class LoadedModel:
    """
    Immutable pairing of an active version and its network.
    Inference captures one of these and keeps using it even if the slot is swapped.
    """
    version: ModelVersion
    model: nn.Module


class ModelRegistry(LoggerMixin):
    """
    Versioned store of trained scorers with at most one active version per model type.

    Deploy and rollback hold a per-model-type lock for the whole swap. The
    registry file is written before the in-memory state is replaced, so a failed
    write leaves the registry unchanged.
    """

    ARTIFACT_NAME = "model.pt"

    def __init__(
        self,
        models_dir: Union[str, Path],
        device: Optional[torch.device] = None,
        performance_window: int = 1000
    ):
        """
        Initialize registry.

        Args:
            models_dir: Directory holding the registry file and version artifacts
            device: Device active models are loaded on
            performance_window: Number of inference records kept in memory
        """
        self.models_dir = Path(models_dir)
        self.device = device or torch.device("cpu")

        self._versions: Tuple[ModelVersion, ...] = ()
        self._history: Tuple[DeploymentRecord, ...] = ()
        self._loaded: Dict[Modality, LoadedModel] = {}
        self._performance = deque(maxlen=performance_window)

        self._state_lock = threading.RLock()
        self._type_locks = {model_type: threading.Lock() for model_type in MODEL_TYPES}
        self._initialized = False

    @property
    def versions_path(self) -> Path:
        return self.models_dir / "model_versions.json"

    @property
    def performance_path(self) -> Path:
        return self.models_dir / "performance_metrics.json"

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    def initialize(self):
        """Load the registry file and the active models."""
        with self._state_lock:
            try:
                self.models_dir.mkdir(parents=True, exist_ok=True)
                data = read_json(self.versions_path, default={}) or {}
                versions = tuple(ModelVersion.from_dict(v) for v in data.get("versions", []))
                history = tuple(DeploymentRecord.from_dict(r) for r in data.get("history", []))
            except (OSError, ValueError, KeyError) as e:
                raise StorageError(
                    f"Failed to load model registry: {e}", context={"path": str(self.versions_path)}
                ) from e

            self._versions = versions
            self._history = history
            self._loaded = {}
            for version in versions:
                if not version.is_active:
                    continue
                try:
                    self._loaded[version.model_type] = LoadedModel(version, self._load_model(version))
                except ModelError as e:
                    # The slot stays active in the registry and is retried lazily
                    self.logger.error(f"Failed to load active model {version.id}: {e}")
            self._initialized = True

        self.logger.info(
            f"Model registry initialized with {len(versions)} versions, "
            f"{len(self._loaded)} active models loaded"
        )

    def _ensure_initialized(self):
        """Initialize on first use; concurrent first callers load the file once."""
        if self._initialized:
            return
        with self._state_lock:
            if not self._initialized:
                self.initialize()

    def _load_model(self, version: ModelVersion) -> nn.Module:
        model = load_checkpoint(version.model_path, device=self.device)
        return model.to(self.device)

    def _commit(self, versions: Sequence[ModelVersion], history: Sequence[DeploymentRecord]):
        """Persist then replace the registry state. Caller holds the state lock."""
        payload = {
            "versions": [v.to_dict() for v in versions],
            "history": [r.to_dict() for r in history],
        }
        try:
            self.models_dir.mkdir(parents=True, exist_ok=True)
            write_json_atomic(self.versions_path, payload)
        except OSError as e:
            self.logger.error(f"Failed to save model registry: {e}")
            raise StorageError(f"Failed to save model registry: {e}", context={"path": str(self.versions_path)}) from e
        self._versions = tuple(versions)
        self._history = tuple(history)

    def _next_version_number(self, model_type: Modality) -> int:
        minors = [v.minor for v in self._versions if v.model_type is model_type]
        return max(minors) + 1 if minors else 1

    def deploy(
        self,
        model: nn.Module,
        model_type,
        accuracy: float,
        metrics: Optional[VersionMetrics] = None,
        config: Optional[DeploymentConfig] = None
    ) -> ModelVersion:
        """
        Register a trained network as a new version and activate it.

        Args:
            model: Trained network (saved, then reloaded for serving)
            model_type: packaging, pill, batch_code or fusion
            accuracy: Evaluation accuracy
            metrics: Precision, recall, F1 and ROC-AUC
            config: Deployment strategy; gradual and a_b_test are recorded only

        Returns:
            The activated ModelVersion
        """
        model_type = Modality.parse(model_type)
        config = config or DeploymentConfig()
        self._ensure_initialized()

        with self._type_locks[model_type]:
            created_at = datetime.now()
            version_id = f"{model_type.value}_v{int(created_at.timestamp() * 1000)}_{uuid.uuid4().hex[:6]}"
            with self._state_lock:
                minor = self._next_version_number(model_type)

            model_path = self._save_artifact(model, version_id)
            version = ModelVersion(
                id=version_id,
                model_type=model_type,
                version=f"1.{minor}.0",
                accuracy=float(accuracy),
                size=model_path.stat().st_size,
                created_at=created_at,
                is_active=True,
                model_path=str(model_path),
                metrics=metrics or VersionMetrics()
            )

            try:
                loaded = LoadedModel(version, self._load_model(version))
                record = DeploymentRecord(
                    version_id=version_id,
                    model_type=model_type,
                    strategy=config.strategy,
                    rollout_percentage=config.rollout_percentage,
                    target_users=tuple(config.target_users),
                    deployed_at=created_at
                )
                with self._state_lock:
                    versions = [
                        replace(v, is_active=False) if v.model_type is model_type and v.is_active else v
                        for v in self._versions
                    ]
                    versions.append(version)
                    self._commit(versions, self._history + (record,))
                    self._loaded[model_type] = loaded
            except (ModelError, StorageError):
                shutil.rmtree(model_path.parent, ignore_errors=True)
                raise

        self._log_strategy(version, config)
        return version

    def _save_artifact(self, model: nn.Module, version_id: str) -> Path:
        version_dir = self.models_dir / version_id
        model_path = version_dir / self.ARTIFACT_NAME
        try:
            version_dir.mkdir(parents=True, exist_ok=True)
            save_checkpoint(model, model_path, extra={"version_id": version_id})
        except (OSError, RuntimeError, AttributeError) as e:
            shutil.rmtree(version_dir, ignore_errors=True)
            raise DeploymentError(f"Failed to save model version: {e}", context={"version_id": version_id}) from e
        return model_path

    def _log_strategy(self, version: ModelVersion, config: DeploymentConfig):
        if config.strategy is DeploymentStrategy.GRADUAL:
            self.logger.info(
                f"Model {version.id} deployed gradually to {config.rollout_percentage:.0f}% of users "
                f"(recorded; active for default traffic)"
            )
        elif config.strategy is DeploymentStrategy.A_B_TEST:
            self.logger.info(
                f"Model {version.id} deployed for A/B testing with {len(config.target_users)} users "
                f"(recorded; active for default traffic)"
            )
        else:
            self.logger.info(f"Model {version.id} ({version.version}) deployed immediately")

    def rollback(self, model_type) -> ModelVersion:
        """
        Reactivate the most recently created inactive version of a model type.

        Args:
            model_type: packaging, pill, batch_code or fusion

        Returns:
            The reactivated version
        """
        model_type = Modality.parse(model_type)
        self._ensure_initialized()

        with self._type_locks[model_type]:
            with self._state_lock:
                current = self._active_version(model_type)
                if current is None:
                    raise RollbackError(f"No active model found for {model_type.value}")
                candidates = [v for v in self._versions if v.model_type is model_type and not v.is_active]
                if not candidates:
                    raise RollbackError(f"No previous version found for {model_type.value}")
                previous = max(candidates, key=lambda v: v.sort_key)

            try:
                model = self._load_model(previous)
            except ModelError as e:
                raise RollbackError(
                    f"Previous version {previous.id} could not be loaded: {e}",
                    context={"model_type": model_type.value}
                ) from e

            activated = replace(previous, is_active=True)
            record = DeploymentRecord(
                version_id=previous.id,
                model_type=model_type,
                strategy=DeploymentStrategy.IMMEDIATE,
                rollout_percentage=100.0,
                target_users=(),
                deployed_at=datetime.now(),
                action="rollback"
            )
            with self._state_lock:
                versions = []
                for v in self._versions:
                    if v.id == previous.id:
                        versions.append(activated)
                    elif v.model_type is model_type and v.is_active:
                        versions.append(replace(v, is_active=False))
                    else:
                        versions.append(v)
                self._commit(versions, self._history + (record,))
                self._loaded[model_type] = LoadedModel(activated, model)

        self.logger.info(f"Rolled back {model_type.value} model from {current.version} to {activated.version}")
        return activated

    def _active_version(self, model_type: Modality) -> Optional[ModelVersion]:
        for version in self._versions:
            if version.model_type is model_type and version.is_active:
                return version
        return None

    def get_active_model_version(self, model_type) -> Optional[ModelVersion]:
        model_type = Modality.parse(model_type)
        with self._state_lock:
            return self._active_version(model_type)

    def get_active_model(self, model_type) -> Optional[LoadedModel]:
        """
        Reference to the active network of a slot, or None when the slot is empty.
        The returned object never changes; later swaps install a new one.
        """
        model_type = Modality.parse(model_type)
        with self._state_lock:
            loaded = self._loaded.get(model_type)
            if loaded is not None:
                return loaded
            active = self._active_version(model_type)
            if active is None:
                return None
            try:
                loaded = LoadedModel(active, self._load_model(active))
            except ModelError as e:
                self.logger.error(f"Failed to load active model {active.id}: {e}")
                return None
            self._loaded[model_type] = loaded
            return loaded

    def require_active_model(self, model_type) -> LoadedModel:
        loaded = self.get_active_model(model_type)
        if loaded is None:
            raise ModelUnavailableError(f"No active model found for {Modality.parse(model_type).value}")
        return loaded

    def get_model_versions(self, model_type=None) -> List[ModelVersion]:
        """All versions, oldest first, optionally for one model type."""
        self._ensure_initialized()
        with self._state_lock:
            versions = list(self._versions)
        if model_type is not None:
            model_type = Modality.parse(model_type)
            versions = [v for v in versions if v.model_type is model_type]
        return sorted(versions, key=lambda v: (v.model_type.value, v.sort_key))

    def get_version(self, version_id: str) -> Optional[ModelVersion]:
        with self._state_lock:
            return next((v for v in self._versions if v.id == version_id), None)

    def get_deployment_history(self, model_type=None) -> List[DeploymentRecord]:
        self._ensure_initialized()
        with self._state_lock:
            history = list(self._history)
        if model_type is not None:
            model_type = Modality.parse(model_type)
            history = [r for r in history if r.model_type is model_type]
        return history

    def record_inference(self, model_type, inference_time_ms: float, version: Optional[ModelVersion] = None):
        """Append a latency record for the version that served an inference."""
        version = version or self.get_active_model_version(model_type)
        if version is None:
            return
        self._performance.append(ModelPerformance(
            model_id=version.id,
            model_type=version.model_type,
            accuracy=version.accuracy,
            inference_time_ms=float(inference_time_ms),
            recorded_at=datetime.now()
        ))

    def get_performance_metrics(self, model_type=None) -> List[ModelPerformance]:
        records = list(self._performance)
        if model_type is not None:
            model_type = Modality.parse(model_type)
            records = [r for r in records if r.model_type is model_type]
        return records

    def save_performance_metrics(self):
        """Write the in-memory latency window to performance_metrics.json."""
        try:
            write_json_atomic(self.performance_path, [r.to_dict() for r in list(self._performance)])
        except OSError as e:
            self.logger.error(f"Failed to save performance metrics: {e}")
            raise StorageError(f"Failed to save performance metrics: {e}") from e

    def cleanup_old_models(self, keep_versions: int = 5) -> List[ModelVersion]:
        """
        Keep the newest ``keep_versions`` versions per model type and delete the rest.
        The active version of a type is never deleted.

        Returns:
            The removed versions
        """
        if keep_versions < 1:
            raise ValueError("keep_versions must be at least 1")
        self._ensure_initialized()

        removed = []
        for model_type in MODEL_TYPES:
            with self._type_locks[model_type]:
                with self._state_lock:
                    versions = sorted(
                        (v for v in self._versions if v.model_type is model_type),
                        key=lambda v: v.sort_key,
                        reverse=True
                    )
                    keep_ids = {v.id for v in versions[:keep_versions]} | {v.id for v in versions if v.is_active}
                    to_delete = [v for v in versions if v.id not in keep_ids]
                    if not to_delete:
                        continue
                    delete_ids = {v.id for v in to_delete}
                    self._commit([v for v in self._versions if v.id not in delete_ids], self._history)

                for version in to_delete:
                    try:
                        shutil.rmtree(Path(version.model_path).parent)
                    except FileNotFoundError:
                        pass
                    except OSError as e:
                        self.logger.error(f"Failed to delete model {version.id}: {e}")
                removed.extend(to_delete)

        self.logger.info(f"Old models cleaned up: {len(removed)} versions removed")
        return removed
