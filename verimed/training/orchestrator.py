"""
Training orchestrator.
Turns collected images into trained scorers: prepares data, fits, evaluates,
saves the artifact and records predicted scores for fusion training.
"""

import threading
import time
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

import torch
import torch.nn as nn

from ..data.collection import DataCollectionStore
from ..data.dataset import TrainingDataBuilder
from ..data.preprocessing import ImagePreprocessor
from ..data.records import Modality, MODEL_TYPES
from ..models import count_parameters, create_scorer, save_checkpoint
from ..utils import (
    LoggerMixin, ModelConfig, TrainingConfig, VeriMedError, TrainingError,
    InsufficientDataError, TrainingInProgressError
)
from .evaluation import ModelMetrics, compute_metrics
from .fusion_data import ScoreLedger, build_fusion_samples
from .progress import ProgressBroadcaster, TrainingProgress, TrainingStatus
from .trainer import ScorerTrainer, TrainingHistory


@dataclass
class TrainingResult:
    """Outcome of one successful training run."""
    model_type: Modality
    model: nn.Module
    metrics: ModelMetrics
    history: TrainingHistory
    config: TrainingConfig
    artifact_path: Path
    status: TrainingStatus
    num_samples: int

    @property
    def accuracy(self) -> float:
        return self.metrics.accuracy

    def summary(self) -> Dict[str, Any]:
        return {
            "model_type": self.model_type.value,
            "status": self.status.value,
            "epochs_run": self.history.epochs_run,
            "num_samples": self.num_samples,
            "artifact_path": str(self.artifact_path),
            "metrics": self.metrics.to_dict(),
        }


class TrainingOrchestrator(LoggerMixin):
    """
    Runs one training job at a time.

    A second ``train`` call while one is running fails immediately with
    TrainingInProgressError; the lock is released however the run ends.
    """

    def __init__(
        self,
        store: DataCollectionStore,
        preprocessor: ImagePreprocessor,
        artifacts_dir: Union[str, Path],
        training_defaults: Dict[Modality, TrainingConfig],
        model_config: Optional[ModelConfig] = None,
        broadcaster: Optional[ProgressBroadcaster] = None,
        device: Optional[torch.device] = None,
        random_state: int = 42,
        num_workers: int = 0,
        tensorboard_dir: Optional[Path] = None,
        show_progress: bool = True
    ):
        """
        Initialize orchestrator.

        Args:
            store: Source of labeled images
            preprocessor: Shared image preprocessor
            artifacts_dir: Where trained artifacts and the score ledger are written
            training_defaults: Default TrainingConfig per model type
            model_config: Scorer architecture parameters
            broadcaster: Receives per-epoch and final progress
            device: Training device
            random_state: Seed for splits and weight initialization
            num_workers: DataLoader worker processes
            tensorboard_dir: SummaryWriter root, disabled when None
            show_progress: Show tqdm bars
        """
        self.store = store
        self.preprocessor = preprocessor
        self.artifacts_dir = Path(artifacts_dir)
        self.training_defaults = {Modality.parse(k): v for k, v in training_defaults.items()}
        self.model_config = model_config or ModelConfig()
        self.broadcaster = broadcaster or ProgressBroadcaster()
        self.device = device or torch.device("cpu")
        self.random_state = random_state
        self.num_workers = num_workers
        self.tensorboard_dir = Path(tensorboard_dir) if tensorboard_dir else None
        self.show_progress = show_progress

        self.ledger = ScoreLedger(self.artifacts_dir / "training_scores.json")
        self._training_lock = threading.Lock()

    @property
    def is_training(self) -> bool:
        return self._training_lock.locked()

    def artifact_path(self, model_type) -> Path:
        return self.artifacts_dir / f"{Modality.parse(model_type).value}_model.pt"

    def resolve_config(self, model_type: Modality, config=None) -> TrainingConfig:
        """Use a full TrainingConfig as is, or merge a dict of overrides over the defaults."""
        if isinstance(config, TrainingConfig):
            return config
        defaults = self.training_defaults.get(model_type, TrainingConfig())
        return defaults.merged(config)

    def train(self, modality, config: Optional[Union[TrainingConfig, Dict[str, Any]]] = None) -> TrainingResult:
        """
        Train a scorer for one model type.

        Args:
            modality: packaging, pill, batch_code or fusion
            config: TrainingConfig, or a dict of overrides of the defaults

        Returns:
            TrainingResult with the trained model, metrics and artifact path

        Raises:
            TrainingInProgressError: another run holds the training lock
            InsufficientDataError: nothing usable to train on
        """
        model_type = Modality.parse(modality)
        config = self.resolve_config(model_type, config)

        if not self._training_lock.acquire(blocking=False):
            raise TrainingInProgressError(
                "Training already in progress",
                context={"requested": model_type.value}
            )

        trainer = None
        try:
            self.logger.info(f"Starting training for {model_type.value} model")
            if model_type is Modality.FUSION:
                trainer, labels, dataset, kept = self._prepare_fusion(config)
            else:
                trainer, labels, dataset, kept = self._prepare_image_model(model_type, config)

            start = time.time()
            torch.manual_seed(self.random_state)
            history = trainer.train()
            training_time = time.time() - start

            loaders = TrainingDataBuilder(self.preprocessor, num_workers=self.num_workers).build_dataloaders(
                {"full": dataset}, batch_size=config.batch_size
            )
            scores = trainer.predict(loaders["full"])
            metrics = compute_metrics(labels, scores)
            metrics.training_time = training_time
            metrics.model_size = count_parameters(trainer.model) * 4

            if model_type is not Modality.FUSION:
                self.ledger.record(model_type, kept, scores)

            artifact_path = self._save_artifact(trainer.model, model_type, metrics, config)

            status = TrainingStatus.EARLY_STOPPED if history.stopped_early else TrainingStatus.COMPLETED
            self._publish_final(model_type, config, history, status)

            self.logger.info(
                f"{model_type.value} model trained: accuracy {metrics.accuracy:.3f}, "
                f"F1 {metrics.f1_score:.3f}, ROC-AUC {metrics.roc_auc:.3f} ({training_time:.1f}s)"
            )
            return TrainingResult(
                model_type=model_type,
                model=trainer.model,
                metrics=metrics,
                history=history,
                config=config,
                artifact_path=artifact_path,
                status=status,
                num_samples=len(labels)
            )

        except VeriMedError as e:
            self.logger.error(f"Training failed for {model_type.value}: {e}")
            self._publish_final(model_type, config, trainer.history if trainer else None, TrainingStatus.FAILED)
            raise
        except Exception as e:
            self.logger.error(f"Training failed for {model_type.value}: {e}")
            self._publish_final(model_type, config, trainer.history if trainer else None, TrainingStatus.FAILED)
            raise TrainingError(f"Training failed: {e}", context={"model_type": model_type.value}) from e
        finally:
            self._training_lock.release()

    def _prepare_image_model(self, model_type: Modality, config: TrainingConfig):
        export = self.store.export_for_training()
        records = [r for r in export.images if r.modality is model_type]
        if not records:
            raise InsufficientDataError(
                f"No training data available for {model_type.value}",
                context={"model_type": model_type.value}
            )

        builder = TrainingDataBuilder(
            self.preprocessor,
            validation_split=config.validation_split,
            random_state=self.random_state,
            num_workers=self.num_workers
        )
        images, labels, kept = builder.prepare_images(records, model_type)
        if not images:
            raise InsufficientDataError(
                f"Every {model_type.value} image failed preprocessing",
                context={"model_type": model_type.value, "images": len(records)}
            )
        datasets = builder.build_image_datasets(images, labels, augment=config.data_augmentation)
        loaders = builder.build_dataloaders(datasets, batch_size=config.batch_size)

        height, width, _ = self.preprocessor.tensor_shape(model_type)
        torch.manual_seed(self.random_state)
        model = create_scorer(model_type, self.model_config, input_size=[height, width])
        trainer = self._make_trainer(model, model_type, loaders, config)
        return trainer, labels, datasets["full"], kept

    def _prepare_fusion(self, config: TrainingConfig):
        if self.store.count() == 0:
            raise InsufficientDataError("No training data available for fusion", context={"model_type": "fusion"})

        features, labels, _ = build_fusion_samples(self.ledger.load())
        if len(labels) == 0:
            raise InsufficientDataError(
                "No recorded modality scores; train the image models first",
                context={"model_type": "fusion"}
            )

        builder = TrainingDataBuilder(
            self.preprocessor,
            validation_split=config.validation_split,
            random_state=self.random_state,
            num_workers=self.num_workers
        )
        datasets = builder.build_fusion_datasets(features, labels)
        loaders = builder.build_dataloaders(datasets, batch_size=config.batch_size)

        torch.manual_seed(self.random_state)
        model = create_scorer(Modality.FUSION, self.model_config)
        trainer = self._make_trainer(model, Modality.FUSION, loaders, config)
        return trainer, labels, datasets["full"], []

    def _make_trainer(self, model: nn.Module, model_type: Modality, loaders, config: TrainingConfig) -> ScorerTrainer:
        return ScorerTrainer(
            model=model,
            model_type=model_type,
            train_loader=loaders["train"],
            val_loader=loaders.get("val"),
            config=config,
            device=self.device,
            tensorboard_dir=self.tensorboard_dir,
            on_epoch=self.broadcaster.publish,
            show_progress=self.show_progress
        )

    def _save_artifact(
        self,
        model: nn.Module,
        model_type: Modality,
        metrics: ModelMetrics,
        config: TrainingConfig
    ) -> Path:
        path = self.artifact_path(model_type)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            save_checkpoint(model, path, extra={"metrics": metrics.to_dict(), "training_config": asdict(config)})
        except (OSError, RuntimeError) as e:
            raise TrainingError(f"Failed to save trained model: {e}", context={"path": str(path)}) from e
        self.logger.info(f"Model artifact saved to {path}")
        return path

    def _publish_final(
        self,
        model_type: Modality,
        config: TrainingConfig,
        history: Optional[TrainingHistory],
        status: TrainingStatus
    ):
        history = history or TrainingHistory()
        self.broadcaster.publish(TrainingProgress(
            model_type=model_type,
            epoch=history.epochs_run,
            total_epochs=config.epochs,
            loss=history.train_loss[-1] if history.train_loss else 0.0,
            accuracy=history.train_accuracy[-1] if history.train_accuracy else 0.0,
            val_loss=history.val_loss[-1] if history.val_loss else None,
            val_accuracy=history.val_accuracy[-1] if history.val_accuracy else None,
            status=status
        ))

    def train_all_models(
        self,
        on_result: Optional[Callable[[TrainingResult], None]] = None
    ) -> List[TrainingResult]:
        """
        Train packaging, pill, batch_code and fusion in order.
        Stops at the first failure and re-raises it.

        Args:
            on_result: Called with each result as soon as its run finishes

        Returns:
            Results in training order
        """
        results = []
        for model_type in MODEL_TYPES:
            try:
                result = self.train(model_type)
            except VeriMedError as e:
                self.logger.error(f"Failed to train {model_type.value} model: {e}")
                raise
            results.append(result)
            if on_result is not None:
                on_result(result)
        return results
