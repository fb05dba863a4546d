"""
Training loop for the modality and fusion scorers.
Implements binary training with validation, early stopping and learning-rate
reduction on plateau.
"""

import copy
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional

import numpy as np
import torch
import torch.nn as nn
import torch.optim as optim
from torch.utils.data import DataLoader
from torch.utils.tensorboard import SummaryWriter
from tqdm import tqdm

from ..data.records import Modality
from ..utils import LoggerMixin, TrainingConfig, TrainingError, handle_exceptions
from .progress import TrainingProgress, TrainingStatus


class EarlyStopping:
    """Early stopping utility to prevent overfitting."""

    def __init__(self, patience: int = 10, min_delta: float = 0.0, restore_best_weights: bool = True):
        self.patience = patience
        self.min_delta = min_delta
        self.restore_best_weights = restore_best_weights
        self.best_loss = float('inf')
        self.counter = 0
        self.best_weights = None

    def __call__(self, val_loss: float, model: nn.Module) -> bool:
        """Check if training should stop."""
        if val_loss < self.best_loss - self.min_delta:
            self.best_loss = val_loss
            self.counter = 0
            if self.restore_best_weights:
                self.best_weights = copy.deepcopy(model.state_dict())
        else:
            self.counter += 1

        return self.counter >= self.patience

    def restore(self, model: nn.Module):
        """Load the best weights seen so far into the model."""
        if self.restore_best_weights and self.best_weights is not None:
            model.load_state_dict(self.best_weights)


@dataclass
class TrainingHistory:
    train_loss: List[float] = field(default_factory=list)
    train_accuracy: List[float] = field(default_factory=list)
    val_loss: List[float] = field(default_factory=list)
    val_accuracy: List[float] = field(default_factory=list)
    learning_rate: List[float] = field(default_factory=list)
    stopped_early: bool = False

    @property
    def epochs_run(self) -> int:
        return len(self.train_loss)

    def to_dict(self) -> Dict:
        return {
            "train_loss": self.train_loss,
            "train_accuracy": self.train_accuracy,
            "val_loss": self.val_loss,
            "val_accuracy": self.val_accuracy,
            "learning_rate": self.learning_rate,
            "stopped_early": self.stopped_early,
        }


class ScorerTrainer(LoggerMixin):
    """
    Trainer for binary authenticity scorers.
    Handles training, validation, early stopping and logging.
    """

    MIN_LEARNING_RATE = 1e-4

    def __init__(
        self,
        model: nn.Module,
        model_type,
        train_loader: DataLoader,
        val_loader: Optional[DataLoader] = None,
        config: Optional[TrainingConfig] = None,
        device: Optional[torch.device] = None,
        tensorboard_dir: Optional[Path] = None,
        on_epoch: Optional[Callable[[TrainingProgress], None]] = None,
        show_progress: bool = True
    ):
        """
        Initialize trainer.

        Args:
            model: Network to train; outputs probabilities
            model_type: Model slot being trained
            train_loader: Training data loader
            val_loader: Validation data loader
            config: Training configuration
            device: Device to use for training
            tensorboard_dir: Directory for SummaryWriter scalars, disabled when None
            on_epoch: Called with a TrainingProgress after every epoch
            show_progress: Show tqdm bars
        """
        self.model = model
        self.model_type = Modality.parse(model_type)
        self.train_loader = train_loader
        self.val_loader = val_loader
        self.config = config or TrainingConfig()
        self.device = device or torch.device('cuda' if torch.cuda.is_available() else 'cpu')
        self.on_epoch = on_epoch
        self.show_progress = show_progress

        self.model.to(self.device)

        self.criterion = nn.BCELoss()
        self.optimizer = optim.Adam(self.model.parameters(), lr=self.config.learning_rate)
        self.scheduler = optim.lr_scheduler.ReduceLROnPlateau(
            self.optimizer,
            mode='min',
            factor=0.5,
            patience=max(1, self.config.patience // 2),
            min_lr=min(self.MIN_LEARNING_RATE, self.config.learning_rate)
        )
        self.early_stopping = EarlyStopping(patience=self.config.patience) if self.config.early_stopping else None

        self.writer = None
        if tensorboard_dir is not None:
            log_dir = Path(tensorboard_dir) / f"{self.model_type.value}_{int(time.time())}"
            self.writer = SummaryWriter(log_dir)

        self.current_epoch = 0
        self.history = TrainingHistory()

        self.logger.info(f"Initialized {self.model_type.value} trainer with device: {self.device}")

    def _run_batches(self, loader: DataLoader, train: bool) -> Dict[str, float]:
        total_loss = 0.0
        correct = 0
        total_samples = 0

        desc = f"{self.model_type.value} epoch {self.current_epoch + 1}" if train else "Validation"
        pbar = tqdm(loader, desc=desc, disable=not self.show_progress, leave=False)

        for batch in pbar:
            inputs = batch['input'].to(self.device)
            labels = batch['label'].to(self.device)
            batch_size = inputs.size(0)

            if train:
                self.optimizer.zero_grad()
            outputs = self.model(inputs).reshape(-1)
            loss = self.criterion(outputs, labels)
            if train:
                loss.backward()
                self.optimizer.step()

            total_loss += loss.item() * batch_size
            correct += ((outputs >= 0.5).float() == labels).sum().item()
            total_samples += batch_size

            if train:
                pbar.set_postfix({'Loss': f'{loss.item():.4f}'})

        if total_samples == 0:
            raise TrainingError("No samples in data loader", context={"model_type": self.model_type.value})

        return {'loss': total_loss / total_samples, 'accuracy': correct / total_samples}

    @handle_exceptions(TrainingError)
    def train_epoch(self) -> Dict[str, float]:
        """Train for one epoch."""
        self.model.train()
        return self._run_batches(self.train_loader, train=True)

    @handle_exceptions(TrainingError)
    def validate_epoch(self) -> Dict[str, float]:
        """Validate for one epoch."""
        if self.val_loader is None:
            return {}

        self.model.eval()
        with torch.no_grad():
            return self._run_batches(self.val_loader, train=False)

    def train(self) -> TrainingHistory:
        """
        Train the model for the configured number of epochs.

        Returns:
            Training history; the model holds the best weights when early stopping ran
        """
        epochs = self.config.epochs
        self.logger.info(f"Starting {self.model_type.value} training for {epochs} epochs")

        try:
            for epoch in range(epochs):
                self.current_epoch = epoch
                start_time = time.time()

                train_metrics = self.train_epoch()
                val_metrics = self.validate_epoch()

                monitored = val_metrics.get('loss', train_metrics['loss'])
                self.scheduler.step(monitored)

                self._record_epoch(train_metrics, val_metrics)
                self._log_epoch_metrics(train_metrics, val_metrics, epoch)

                stop = self.early_stopping is not None and self.early_stopping(monitored, self.model)
                if stop:
                    self.history.stopped_early = True

                if self.on_epoch is not None:
                    self.on_epoch(TrainingProgress(
                        model_type=self.model_type,
                        epoch=epoch + 1,
                        total_epochs=epochs,
                        loss=train_metrics['loss'],
                        accuracy=train_metrics['accuracy'],
                        val_loss=val_metrics.get('loss'),
                        val_accuracy=val_metrics.get('accuracy'),
                        status=TrainingStatus.TRAINING
                    ))

                epoch_time = time.time() - start_time
                self.logger.debug(f"Epoch {epoch + 1}/{epochs} completed in {epoch_time:.2f}s")

                if stop:
                    self.logger.info(f"Early stopping triggered at epoch {epoch + 1}")
                    break

            if self.early_stopping is not None:
                self.early_stopping.restore(self.model)

        except Exception as e:
            self.logger.error(f"Training failed: {e}")
            raise
        finally:
            if self.writer is not None:
                self.writer.close()

        self.logger.info(f"{self.model_type.value} training completed after {self.history.epochs_run} epochs")
        return self.history

    def _record_epoch(self, train_metrics: Dict[str, float], val_metrics: Dict[str, float]):
        self.history.train_loss.append(train_metrics['loss'])
        self.history.train_accuracy.append(train_metrics['accuracy'])
        if val_metrics:
            self.history.val_loss.append(val_metrics['loss'])
            self.history.val_accuracy.append(val_metrics['accuracy'])
        self.history.learning_rate.append(self.optimizer.param_groups[0]['lr'])

    def _log_epoch_metrics(self, train_metrics: Dict[str, float], val_metrics: Dict[str, float], epoch: int):
        """Log epoch metrics to tensorboard and console."""
        metrics = {f"train_{k}": v for k, v in train_metrics.items()}
        metrics.update({f"val_{k}": v for k, v in val_metrics.items()})

        metric_str = " | ".join([f"{k}: {v:.4f}" for k, v in metrics.items()])
        self.logger.info(f"{self.model_type.value} epoch {epoch + 1} - {metric_str}")

        if self.writer is not None:
            for metric_name, metric_value in metrics.items():
                self.writer.add_scalar(f'Epoch/{metric_name}', metric_value, epoch)
            self.writer.add_scalar('Epoch/learning_rate', self.optimizer.param_groups[0]['lr'], epoch)

    def predict(self, loader: DataLoader) -> np.ndarray:
        """
        Predicted probabilities for every sample of an unshuffled loader.

        Returns:
            Scores in dataset order
        """
        self.model.eval()
        scores = []
        with torch.no_grad():
            for batch in loader:
                outputs = self.model(batch['input'].to(self.device)).reshape(-1)
                scores.append(outputs.cpu().numpy())
        if not scores:
            return np.zeros(0, dtype=np.float32)
        return np.concatenate(scores)
