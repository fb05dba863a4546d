"""
Recorded modality scores used to train the fusion model.
Each image-model training run writes its per-image predictions here; fusion
samples are built by grouping those predictions per medicine.
"""

import threading
from collections import defaultdict
from pathlib import Path
from typing import Dict, List, Sequence, Tuple, Union

import numpy as np

from ..data.records import Modality, ModalityImage, IMAGE_MODALITIES
from ..utils import LoggerMixin, StorageError
from ..utils.storage import read_json, write_json_atomic
from ..inference.scoring import NEUTRAL_SCORE


GroupKey = Tuple[str, str, str, bool]


def medicine_key(entry: Dict) -> GroupKey:
    """Grouping key of a recorded score: name, manufacturer, batch code, label."""
    return (
        str(entry.get("medicine_name", "")).strip().lower(),
        str(entry.get("manufacturer", "")).strip().lower(),
        str(entry.get("batch_code", "")).strip().upper(),
        bool(entry["is_authentic"]),
    )


class ScoreLedger(LoggerMixin):
    """Per-image predicted scores persisted as ``training_scores.json``."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self._lock = threading.Lock()

    def load(self) -> List[Dict]:
        try:
            data = read_json(self.path, default={}) or {}
        except (OSError, ValueError) as e:
            raise StorageError(f"Failed to read score ledger: {e}", context={"path": str(self.path)}) from e
        return list(data.get("scores", []))

    def record(self, modality, records: Sequence[ModalityImage], scores: Sequence[float]):
        """
        Replace the recorded scores of one modality.

        Args:
            modality: Image modality the scores came from
            records: Image records in prediction order
            scores: Predicted probabilities
        """
        modality = Modality.parse(modality)
        if len(records) != len(scores):
            raise ValueError("records and scores must have the same length")

        new_entries = [
            {
                "image_id": record.id,
                "modality": modality.value,
                "medicine_name": record.medicine_name,
                "manufacturer": record.manufacturer,
                "batch_code": record.batch_code,
                "is_authentic": record.is_authentic,
                "score": float(score),
            }
            for record, score in zip(records, scores)
        ]

        with self._lock:
            entries = [e for e in self.load() if e.get("modality") != modality.value]
            entries.extend(new_entries)
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                write_json_atomic(self.path, {"scores": entries})
            except OSError as e:
                raise StorageError(f"Failed to write score ledger: {e}", context={"path": str(self.path)}) from e

        self.logger.info(f"Recorded {len(new_entries)} {modality.value} scores for fusion training")

    def clear(self):
        with self._lock:
            self.path.unlink(missing_ok=True)


def build_fusion_samples(entries: Sequence[Dict]) -> Tuple[np.ndarray, List[int], List[GroupKey]]:
    """
    Group recorded scores per medicine and average them per modality.

    Args:
        entries: Ledger entries

    Returns:
        Tuple of (features [N, 3] ordered packaging, pill, batch_code; labels; group keys).
        Modalities without a recorded score are neutral (0.5).
    """
    grouped: Dict[GroupKey, Dict[str, List[float]]] = defaultdict(lambda: defaultdict(list))
    for entry in entries:
        grouped[medicine_key(entry)][entry["modality"]].append(float(entry["score"]))

    keys = sorted(grouped)
    features = []
    labels = []
    for key in keys:
        per_modality = grouped[key]
        features.append([
            float(np.mean(per_modality[m.value])) if per_modality.get(m.value) else NEUTRAL_SCORE
            for m in IMAGE_MODALITIES
        ])
        labels.append(1 if key[3] else 0)

    return np.asarray(features, dtype=np.float32).reshape(-1, 3), labels, keys
