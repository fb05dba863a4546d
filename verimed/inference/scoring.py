"""
Scorers wrapping the active networks of the registry.
"""

from typing import Optional

import numpy as np
import torch

from ..data.records import Modality
from ..deployment.registry import LoadedModel
from ..utils import LoggerMixin, ModelError, handle_exceptions


NEUTRAL_SCORE = 0.5


class ModalityScorer(LoggerMixin):
    """Scores one normalized image tensor with a captured model version."""

    def __init__(self, loaded: LoadedModel, device: Optional[torch.device] = None):
        self.loaded = loaded
        self.device = device or torch.device("cpu")

    @property
    def modality(self) -> Modality:
        return self.loaded.version.model_type

    @handle_exceptions(ModelError)
    def score(self, tensor: np.ndarray) -> float:
        """
        Authenticity score of one image.

        Args:
            tensor: Normalized image [H, W, 3] in [0, 1]

        Returns:
            Score in [0, 1], 1 = authentic
        """
        expected = getattr(self.loaded.model, "input_size", None)
        if tensor.ndim != 3 or tensor.shape[2] != 3:
            raise ModelError("Scorer input must be [H, W, 3]", context={"shape": tensor.shape})
        if expected is not None and list(tensor.shape[:2]) != list(expected):
            raise ModelError(
                "Scorer input does not match the model input size",
                context={"shape": tensor.shape, "expected": expected}
            )

        batch = torch.from_numpy(np.ascontiguousarray(tensor, dtype=np.float32))
        batch = batch.permute(2, 0, 1).unsqueeze(0).to(self.device)
        with torch.no_grad():
            output = self.loaded.model(batch)
        return float(np.clip(output.reshape(-1)[0].item(), 0.0, 1.0))


class FusionScorer(LoggerMixin):
    """Combines modality scores with the captured fusion model."""

    def __init__(self, loaded: LoadedModel, device: Optional[torch.device] = None):
        self.loaded = loaded
        self.device = device or torch.device("cpu")

    @handle_exceptions(ModelError)
    def fuse(
        self,
        packaging: Optional[float] = None,
        pill: Optional[float] = None,
        batch_code: Optional[float] = None
    ) -> float:
        """
        Fused authenticity score; missing inputs count as neutral.

        Returns:
            Score in [0, 1]
        """
        features = [NEUTRAL_SCORE if value is None else float(value) for value in (packaging, pill, batch_code)]
        batch = torch.tensor([features], dtype=torch.float32, device=self.device)
        with torch.no_grad():
            output = self.loaded.model(batch)
        return float(np.clip(output.reshape(-1)[0].item(), 0.0, 1.0))
