"""
Training progress broadcast.
Each subscriber gets its own bounded queue and worker thread so a slow
callback never blocks the training loop.
"""

import queue
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from ..data.records import Modality
from ..utils import LoggerMixin


class TrainingStatus(str, Enum):
    TRAINING = "training"
    EARLY_STOPPED = "early_stopped"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class TrainingProgress:
    """Snapshot published after every epoch and once at the end of a run."""
    model_type: Modality
    epoch: int
    total_epochs: int
    loss: float
    accuracy: float
    val_loss: Optional[float] = None
    val_accuracy: Optional[float] = None
    status: TrainingStatus = TrainingStatus.TRAINING

    @property
    def is_final(self) -> bool:
        return self.status is not TrainingStatus.TRAINING

    def to_dict(self) -> Dict[str, Any]:
        return {
            "model_type": self.model_type.value,
            "epoch": self.epoch,
            "total_epochs": self.total_epochs,
            "loss": self.loss,
            "accuracy": self.accuracy,
            "val_loss": self.val_loss,
            "val_accuracy": self.val_accuracy,
            "status": self.status.value,
        }


ProgressCallback = Callable[[TrainingProgress], None]


class Subscription(LoggerMixin):
    """A subscriber's queue and delivery thread."""

    def __init__(self, broadcaster: "ProgressBroadcaster", callback: ProgressCallback, max_pending: int):
        self._broadcaster = broadcaster
        self.callback = callback
        self._queue = queue.Queue(maxsize=max_pending)
        self._active = True
        self.dropped = 0
        self._thread = threading.Thread(target=self._run, name="verimed-progress", daemon=True)
        self._thread.start()

    @property
    def active(self) -> bool:
        return self._active

    def offer(self, progress: TrainingProgress):
        """Queue a snapshot without blocking; the oldest pending one is dropped when full."""
        while True:
            try:
                self._queue.put_nowait(progress)
                return
            except queue.Full:
                try:
                    self._queue.get_nowait()
                    self._queue.task_done()
                    self.dropped += 1
                except queue.Empty:
                    pass

    def _run(self):
        while True:
            progress = self._queue.get()
            try:
                if progress is None:
                    return
                self.callback(progress)
            except Exception as e:
                self.logger.error(f"Progress callback failed: {e}")
            finally:
                self._queue.task_done()

    @property
    def pending(self) -> int:
        return self._queue.unfinished_tasks

    def unsubscribe(self):
        """Stop delivery; snapshots already queued are still delivered."""
        if not self._active:
            return
        self._active = False
        self._broadcaster._remove(self)
        self.offer(None)


class ProgressBroadcaster(LoggerMixin):
    """Fan-out channel for TrainingProgress snapshots."""

    def __init__(self, max_pending: int = 64):
        """
        Initialize broadcaster.

        Args:
            max_pending: Queue size per subscriber
        """
        self.max_pending = max_pending
        self._subscriptions: List[Subscription] = []
        self._lock = threading.Lock()
        self._latest: Optional[TrainingProgress] = None

    @property
    def latest(self) -> Optional[TrainingProgress]:
        """Most recently published snapshot."""
        return self._latest

    def subscribe(self, callback: ProgressCallback) -> Subscription:
        subscription = Subscription(self, callback, self.max_pending)
        with self._lock:
            self._subscriptions.append(subscription)
        return subscription

    def _remove(self, subscription: Subscription):
        with self._lock:
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)

    def publish(self, progress: TrainingProgress):
        """Hand a snapshot to every subscriber without waiting for delivery."""
        self._latest = progress
        with self._lock:
            subscriptions = list(self._subscriptions)
        for subscription in subscriptions:
            subscription.offer(progress)

    def flush(self, timeout: float = 5.0) -> bool:
        """
        Wait until every queued snapshot has been delivered.

        Returns:
            True if all queues drained within the timeout
        """
        deadline = time.monotonic() + timeout
        with self._lock:
            subscriptions = list(self._subscriptions)
        for subscription in subscriptions:
            while subscription.pending > 0:
                if time.monotonic() >= deadline:
                    return False
                time.sleep(0.01)
        return True

    def close(self):
        """Unsubscribe everyone."""
        with self._lock:
            subscriptions = list(self._subscriptions)
        for subscription in subscriptions:
            subscription.unsubscribe()
