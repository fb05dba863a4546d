"""
Session object wiring the VeriMed components together.
One session owns its configuration, collection store, model registry,
training orchestrator and inference service; nothing is global.
"""

from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

from .data.collection import DataCollectionStore
from .data.preprocessing import ImagePreprocessor, ImageRef
from .data.records import DataCollectionStats, Modality, ModalityImage, MODEL_TYPES, TrainingExport
from .deployment.records import DeploymentConfig, DeploymentStrategy, ModelVersion
from .deployment.registry import ModelRegistry
from .inference.diagnostics import DiagnosticReport, ModelDiagnostics
from .inference.service import InferenceResult, InferenceService
from .models import resolve_device
from .training.orchestrator import TrainingOrchestrator, TrainingResult
from .training.progress import ProgressBroadcaster, Subscription, TrainingProgress
from .utils import ConfigManager, InferenceConfig, LoggerMixin, TrainingConfig, log_execution_time


class VeriMedSession(LoggerMixin):
    """
    Entry point for scanning, data collection, training and model management.

    Example::

        session = VeriMedSession(overrides={"paths": {"root_dir": "/tmp/verimed"}})
        session.initialize()
        result = session.analyze_medicine("box.jpg", "packaging")
    """

    def __init__(
        self,
        config_path: Optional[Union[str, Path]] = None,
        overrides: Optional[Dict[str, Any]] = None,
        config_manager: Optional[ConfigManager] = None,
        show_progress: bool = True
    ):
        """
        Initialize session.

        Args:
            config_path: YAML configuration file
            overrides: Nested configuration overrides
            config_manager: Ready-made configuration (config_path and overrides are ignored)
            show_progress: Show tqdm bars during training
        """
        self.config_manager = config_manager or ConfigManager(config_path, overrides=overrides)
        self.paths = self.config_manager.get_paths_config()
        self.paths.create()

        model_config = self.config_manager.get_model_config()
        self.device = resolve_device(model_config.device)
        self.deployment_defaults = self.config_manager.get_deployment_defaults()

        preprocessing_config = self.config_manager.get_preprocessing_config()
        self.preprocessor = ImagePreprocessor(preprocessing_config)
        self.store = DataCollectionStore(
            self.paths.data_dir,
            preprocessor=self.preprocessor,
            jpeg_quality=preprocessing_config.jpeg_quality
        )
        self.registry = ModelRegistry(
            self.paths.models_dir,
            device=self.device,
            performance_window=self.deployment_defaults.performance_window
        )
        self.broadcaster = ProgressBroadcaster()
        self.orchestrator = TrainingOrchestrator(
            store=self.store,
            preprocessor=self.preprocessor,
            artifacts_dir=self.paths.artifacts_dir,
            training_defaults={m: self.config_manager.get_training_config(m.value) for m in MODEL_TYPES},
            model_config=model_config,
            broadcaster=self.broadcaster,
            device=self.device,
            random_state=self.config_manager.get("data.random_state", 42),
            num_workers=self.config_manager.get("data.num_workers", 0),
            tensorboard_dir=self.paths.tensorboard_dir,
            show_progress=show_progress
        )
        self.inference = InferenceService(
            self.registry,
            self.preprocessor,
            self.config_manager.get_inference_config()
        )

    # Inference

    def initialize(self):
        """Load the registry and active models; required before scanning."""
        self.inference.initialize()

    @property
    def is_initialized(self) -> bool:
        return self.inference.is_initialized

    def analyze_medicine(
        self,
        image_ref: ImageRef,
        modality,
        known_name: Optional[str] = None,
        known_manufacturer: Optional[str] = None,
        known_batch_code: Optional[str] = None
    ) -> InferenceResult:
        """Scan one photo; see InferenceService.analyze_medicine."""
        return self.inference.analyze_medicine(
            image_ref, modality,
            known_name=known_name,
            known_manufacturer=known_manufacturer,
            known_batch_code=known_batch_code
        )

    def analyze_images(self, images: Mapping, **known) -> InferenceResult:
        """Scan several photos of one product in one call."""
        return self.inference.analyze_images(images, **known)

    def get_status(self) -> Dict[str, Any]:
        status = self.inference.get_status()
        status["training_in_progress"] = self.orchestrator.is_training
        status["collected_images"] = self.store.count()
        return status

    def update_inference_config(self, **changes) -> InferenceConfig:
        """Change the threshold, enabled models or the slow-scan limit."""
        return self.inference.update_config(**changes)

    def run_diagnostics(self, model_type: Optional[str] = None, iterations: int = 5) -> DiagnosticReport:
        """Self-check the active models with synthetic photos."""
        return ModelDiagnostics(self.inference).run(model_type, iterations=iterations)

    # Training and deployment

    def _deployment_config(self) -> DeploymentConfig:
        return DeploymentConfig(
            strategy=DeploymentStrategy(self.deployment_defaults.strategy),
            rollout_percentage=self.deployment_defaults.rollout_percentage
        )

    def deploy_training_result(
        self,
        result: TrainingResult,
        config: Optional[DeploymentConfig] = None
    ) -> ModelVersion:
        """Register a trained model as a new active version."""
        return self.registry.deploy(
            result.model,
            result.model_type,
            accuracy=result.metrics.accuracy,
            metrics=result.metrics.version_metrics(),
            config=config or self._deployment_config()
        )

    def train_model(
        self,
        modality,
        config: Optional[Union[TrainingConfig, Dict[str, Any]]] = None,
        deploy: bool = True
    ) -> TrainingResult:
        """
        Train one model type and, by default, deploy the result.

        Args:
            modality: packaging, pill, batch_code or fusion
            config: TrainingConfig or overrides of the configured defaults
            deploy: Register and activate the trained model

        Returns:
            TrainingResult of the run
        """
        result = self.orchestrator.train(modality, config)
        if deploy:
            version = self.deploy_training_result(result)
            self.logger.info(f"Deployed {version.model_type.value} model {version.version}")
        return result

    @log_execution_time
    def train_all_models(self, deploy: bool = True) -> List[TrainingResult]:
        """Train every model type in order, deploying each as it finishes."""
        on_result = self.deploy_training_result if deploy else None
        return self.orchestrator.train_all_models(on_result=on_result)

    def subscribe_progress(self, callback: Callable[[TrainingProgress], None]) -> Subscription:
        """Receive TrainingProgress snapshots on a background thread."""
        return self.broadcaster.subscribe(callback)

    def rollback_model(self, modality) -> ModelVersion:
        return self.registry.rollback(modality)

    def cleanup_old_models(self, keep_versions: Optional[int] = None) -> List[ModelVersion]:
        keep = keep_versions if keep_versions is not None else self.deployment_defaults.keep_versions
        return self.registry.cleanup_old_models(keep)

    def get_model_versions(self, modality=None) -> List[ModelVersion]:
        return self.registry.get_model_versions(modality)

    # Data collection

    def collect_medicine_image(
        self,
        image_ref: ImageRef,
        name: str,
        manufacturer: str,
        batch_code: str,
        is_authentic: bool,
        modality,
        quality: int,
        contributor_role,
        location: Optional[Dict[str, float]] = None
    ) -> ModalityImage:
        """Store one labeled photo for training."""
        return self.store.collect(
            image_ref,
            modality=Modality.parse(modality),
            is_authentic=is_authentic,
            quality=quality,
            contributor_role=contributor_role,
            medicine_name=name,
            manufacturer=manufacturer,
            batch_code=batch_code,
            location=location
        )

    def get_stats(self) -> DataCollectionStats:
        return self.store.get_stats()

    def export_data_for_training(self) -> TrainingExport:
        return self.store.export_for_training()

    def clear_all_data(self, confirm: bool = False):
        """Delete every collected image and the recorded training scores."""
        self.store.clear_all(confirm=confirm)
        self.orchestrator.ledger.clear()

    def close(self):
        """Flush pending progress and persist the latency window."""
        self.broadcaster.flush()
        self.broadcaster.close()
        if self.registry.is_initialized:
            self.registry.save_performance_metrics()
