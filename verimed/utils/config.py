"""
Configuration management utilities with validation and type safety.
Every session owns its own ConfigManager; typed dataclasses are handed out per section.
"""

from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union
import yaml
from omegaconf import OmegaConf, DictConfig
from omegaconf.errors import OmegaConfBaseException

from .exceptions import ConfigurationError
from .logger import LoggerMixin


MODEL_TYPES = ("packaging", "pill", "batch_code", "fusion")


@dataclass
class PreprocessingConfig:
    """Image preprocessing parameters."""
    standard_sizes: Dict[str, Tuple[int, int]] = field(default_factory=lambda: {
        "packaging": (800, 600),
        "pill": (512, 512),
        "batch_code": (400, 200),
    })
    rotation_limit: int = 10
    blur_threshold: float = 100.0
    min_dimension: int = 200
    jpeg_quality: int = 95

    def __post_init__(self):
        self.standard_sizes = {k: tuple(int(x) for x in v) for k, v in self.standard_sizes.items()}
        for name, size in self.standard_sizes.items():
            if len(size) != 2 or min(size) <= 0:
                raise ConfigurationError(
                    "standard size must be a positive [width, height] pair",
                    context={"modality": name, "size": size}
                )


@dataclass
class ModelConfig:
    """Default scorer architecture parameters."""
    channels: List[int] = field(default_factory=lambda: [16, 32, 64])
    stem_stride: int = 4
    dropout: float = 0.25
    hidden_units: int = 32
    fusion_hidden: List[int] = field(default_factory=lambda: [16, 8])
    device: str = "auto"


@dataclass
class TrainingConfig:
    """Training configuration parameters for one model type."""
    epochs: int = 50
    batch_size: int = 32
    learning_rate: float = 0.001
    validation_split: float = 0.2
    data_augmentation: bool = True
    early_stopping: bool = True
    patience: int = 10

    def __post_init__(self):
        checks = [
            (self.epochs > 0, "epochs must be positive"),
            (self.batch_size > 0, "batch_size must be positive"),
            (self.learning_rate > 0, "learning_rate must be positive"),
            (0 <= self.validation_split < 1, "validation_split must be in [0, 1)"),
            (self.patience > 0, "patience must be positive"),
        ]
        for ok, message in checks:
            if not ok:
                raise ConfigurationError(message, context={"config": self})

    def merged(self, overrides: Optional[Dict[str, Any]] = None) -> "TrainingConfig":
        """Return a copy with the non-None overrides applied."""
        if not overrides:
            return self
        values = {k: v for k, v in overrides.items() if v is not None}
        unknown = set(values) - set(self.__dataclass_fields__)
        if unknown:
            raise ConfigurationError("Unknown training options", context={"options": sorted(unknown)})
        return replace(self, **values)


@dataclass
class InferenceConfig:
    """Inference and aggregation parameters."""
    confidence_threshold: float = 0.7
    enable_fusion: bool = True
    enable_packaging: bool = True
    enable_pill: bool = True
    enable_batch_code: bool = True
    max_inference_time_ms: float = 5000.0

    def __post_init__(self):
        if not 0.0 <= self.confidence_threshold <= 1.0:
            raise ConfigurationError(
                "confidence_threshold must be between 0 and 1",
                context={"confidence_threshold": self.confidence_threshold}
            )
        if self.max_inference_time_ms <= 0:
            raise ConfigurationError("max_inference_time_ms must be positive")

    def is_enabled(self, model_type: str) -> bool:
        return bool(getattr(self, f"enable_{model_type}", False))


@dataclass
class DeploymentDefaults:
    """Deployment defaults."""
    strategy: str = "immediate"
    rollout_percentage: float = 100.0
    keep_versions: int = 5
    performance_window: int = 1000


@dataclass
class PathsConfig:
    """Resolved storage locations."""
    root_dir: Path
    data_dir: Path
    models_dir: Path
    artifacts_dir: Path
    tensorboard_dir: Optional[Path] = None

    def create(self):
        """Create the storage directories."""
        for directory in (self.root_dir, self.data_dir, self.models_dir, self.artifacts_dir):
            directory.mkdir(parents=True, exist_ok=True)


class ConfigManager(LoggerMixin):
    """
    Configuration manager with validation and type safety.
    Loads a YAML file over built-in defaults and exposes typed sections.
    """

    def __init__(
        self,
        config_path: Optional[Union[str, Path]] = None,
        overrides: Optional[Dict[str, Any]] = None
    ):
        """
        Initialize configuration manager.

        Args:
            config_path: YAML file to load; searched in common locations when omitted
            overrides: Nested dict merged last (e.g. {"paths": {"root_dir": ...}})
        """
        self.config_path = None
        self._config = self._load_config(config_path, overrides)

    def _load_config(
        self,
        config_path: Optional[Union[str, Path]],
        overrides: Optional[Dict[str, Any]]
    ) -> DictConfig:
        """Load, merge and validate configuration."""
        config = self._get_default_config()

        if config_path is None:
            config_path = self._find_config_file()

        if config_path is not None:
            config_path = Path(config_path)
            if not config_path.exists():
                raise ConfigurationError("Configuration file not found", context={"path": config_path})
            try:
                with open(config_path, 'r') as f:
                    config_dict = yaml.safe_load(f) or {}
                config = OmegaConf.merge(config, OmegaConf.create(config_dict))
            except (OSError, yaml.YAMLError, OmegaConfBaseException) as e:
                raise ConfigurationError(
                    f"Failed to load configuration: {e}", context={"path": config_path}
                ) from e
            self.config_path = config_path
            self.logger.info(f"Loaded configuration from {config_path}")
        else:
            self.logger.debug("Using default configuration")

        if overrides:
            config = OmegaConf.merge(config, OmegaConf.create(overrides))

        self._validate_config(config)
        return config

    def _find_config_file(self) -> Optional[Path]:
        """Find configuration file in common locations."""
        search_paths = [
            Path("config/config.yaml"),
            Path("config.yaml"),
            Path("../config/config.yaml")
        ]

        for path in search_paths:
            if path.exists():
                return path

        return None

    def _get_default_config(self) -> DictConfig:
        """Get default configuration."""
        default_config = {
            "project": {
                "name": "verimed",
                "version": "1.0.0",
                "description": "Counterfeit medicine scoring, deployment and training pipeline"
            },
            "paths": {
                "root_dir": "verimed_data",
                "data_dir": "medicine_data",
                "models_dir": "models",
                "artifacts_dir": "training_artifacts",
                "tensorboard_dir": None
            },
            "preprocessing": {
                "standard_sizes": {
                    "packaging": [800, 600],
                    "pill": [512, 512],
                    "batch_code": [400, 200]
                },
                "rotation_limit": 10,
                "blur_threshold": 100.0,
                "min_dimension": 200,
                "jpeg_quality": 95
            },
            "model": {
                "channels": [16, 32, 64],
                "stem_stride": 4,
                "dropout": 0.25,
                "hidden_units": 32,
                "fusion_hidden": [16, 8],
                "device": "auto"
            },
            "data": {
                "num_workers": 0,
                "random_state": 42
            },
            "training": {
                "packaging": {
                    "epochs": 50, "batch_size": 16, "learning_rate": 0.001,
                    "validation_split": 0.2, "data_augmentation": True,
                    "early_stopping": True, "patience": 10
                },
                "pill": {
                    "epochs": 50, "batch_size": 32, "learning_rate": 0.001,
                    "validation_split": 0.2, "data_augmentation": True,
                    "early_stopping": True, "patience": 10
                },
                "batch_code": {
                    "epochs": 30, "batch_size": 64, "learning_rate": 0.001,
                    "validation_split": 0.2, "data_augmentation": False,
                    "early_stopping": True, "patience": 5
                },
                "fusion": {
                    "epochs": 20, "batch_size": 32, "learning_rate": 0.0005,
                    "validation_split": 0.2, "data_augmentation": False,
                    "early_stopping": True, "patience": 5
                }
            },
            "inference": {
                "confidence_threshold": 0.7,
                "enable_fusion": True,
                "enable_packaging": True,
                "enable_pill": True,
                "enable_batch_code": True,
                "max_inference_time_ms": 5000.0
            },
            "deployment": {
                "strategy": "immediate",
                "rollout_percentage": 100.0,
                "keep_versions": 5,
                "performance_window": 1000
            },
            "logging": {
                "level": "INFO",
                "log_dir": None
            }
        }

        return OmegaConf.create(default_config)

    def _validate_config(self, config: DictConfig):
        """Validate configuration parameters."""
        try:
            assert config.paths.root_dir, "paths.root_dir must be set"
            assert len(config.model.channels) > 0, "model.channels must not be empty"
            assert config.model.stem_stride > 0, "model.stem_stride must be positive"
            assert 0 <= config.model.dropout < 1, "model.dropout must be in [0, 1)"
            assert config.data.num_workers >= 0, "data.num_workers must be non-negative"
            assert config.deployment.strategy in ("immediate", "gradual", "a_b_test"), \
                "deployment.strategy must be immediate, gradual or a_b_test"
            assert 0 <= config.deployment.rollout_percentage <= 100, \
                "deployment.rollout_percentage must be between 0 and 100"
            assert config.deployment.keep_versions > 0, "deployment.keep_versions must be positive"
            for model_type in MODEL_TYPES:
                assert model_type in config.training, f"training.{model_type} is missing"
            for model_type in MODEL_TYPES[:3]:
                assert model_type in config.preprocessing.standard_sizes, \
                    f"preprocessing.standard_sizes.{model_type} is missing"
        except AssertionError as e:
            self.logger.error(f"Configuration validation failed: {e}")
            raise ConfigurationError(f"Invalid configuration: {e}") from e

        # Typed sections validate their own ranges
        self._typed(config, "preprocessing", PreprocessingConfig)
        self._typed(config, "inference", InferenceConfig)
        for model_type in MODEL_TYPES:
            TrainingConfig(**OmegaConf.to_container(config.training[model_type], resolve=True))

        self.logger.debug("Configuration validation passed")

    @staticmethod
    def _typed(config: DictConfig, section: str, cls):
        return cls(**OmegaConf.to_container(config[section], resolve=True))

    @property
    def config(self) -> DictConfig:
        """Get configuration object."""
        return self._config

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value by dotted key."""
        return OmegaConf.select(self._config, key, default=default)

    def set(self, key: str, value: Any):
        """Set configuration value by dotted key."""
        OmegaConf.update(self._config, key, value, merge=True)

    def save(self, path: Union[str, Path]):
        """Save configuration to file."""
        with open(path, 'w') as f:
            OmegaConf.save(self._config, f)
        self.logger.info(f"Configuration saved to {path}")

    def get_preprocessing_config(self) -> PreprocessingConfig:
        """Get typed preprocessing configuration."""
        return self._typed(self._config, "preprocessing", PreprocessingConfig)

    def get_model_config(self) -> ModelConfig:
        """Get typed model configuration."""
        return self._typed(self._config, "model", ModelConfig)

    def get_training_config(self, model_type: str) -> TrainingConfig:
        """Get typed training defaults for one model type."""
        if model_type not in MODEL_TYPES:
            raise ConfigurationError("Unknown model type", context={"model_type": model_type})
        return TrainingConfig(**OmegaConf.to_container(self._config.training[model_type], resolve=True))

    def get_inference_config(self) -> InferenceConfig:
        """Get typed inference configuration."""
        return self._typed(self._config, "inference", InferenceConfig)

    def get_deployment_defaults(self) -> DeploymentDefaults:
        """Get typed deployment defaults."""
        return self._typed(self._config, "deployment", DeploymentDefaults)

    def get_paths_config(self) -> PathsConfig:
        """Get storage locations resolved against paths.root_dir."""
        paths = self._config.paths
        root = Path(paths.root_dir)

        def resolve(value):
            path = Path(value)
            return path if path.is_absolute() else root / path

        return PathsConfig(
            root_dir=root,
            data_dir=resolve(paths.data_dir),
            models_dir=resolve(paths.models_dir),
            artifacts_dir=resolve(paths.artifacts_dir),
            tensorboard_dir=resolve(paths.tensorboard_dir) if paths.tensorboard_dir else None
        )


def get_config(
    config_path: Optional[Union[str, Path]] = None,
    overrides: Optional[Dict[str, Any]] = None
) -> ConfigManager:
    """Build a configuration manager."""
    return ConfigManager(config_path, overrides=overrides)
