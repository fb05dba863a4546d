"""
Default scorer networks for the per-modality and fusion models.
Each network maps its input to an authenticity probability in [0, 1].
"""

from typing import Any, Dict, List, Optional

import torch
import torch.nn as nn

from ..utils import LoggerMixin, ModelConfig, ModelError
from ..data.records import Modality


class ConvBlock(nn.Module):
    """Convolutional block with batch normalization and activation."""

    def __init__(
        self,
        in_channels: int,
        out_channels: int,
        kernel_size: int = 3,
        stride: int = 1,
        padding: int = 1,
        use_batchnorm: bool = True,
        dropout: float = 0.0
    ):
        super().__init__()

        layers = [
            nn.Conv2d(in_channels, out_channels, kernel_size, stride, padding, bias=not use_batchnorm)
        ]

        if use_batchnorm:
            layers.append(nn.BatchNorm2d(out_channels))

        layers.append(nn.ReLU(inplace=True))

        if dropout > 0:
            layers.append(nn.Dropout2d(dropout))

        self.block = nn.Sequential(*layers)

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        return self.block(x)


class ModalityScorerNet(nn.Module, LoggerMixin):
    """
    Small convolutional classifier for one image modality.
    A strided stem brings large inputs (up to 800x600) down before the blocks.
    """

    def __init__(
        self,
        modality: str,
        input_size: List[int],
        channels: List[int] = [16, 32, 64],
        stem_stride: int = 4,
        hidden_units: int = 32,
        dropout: float = 0.25
    ):
        """
        Initialize scorer network.

        Args:
            modality: Image modality this network scores
            input_size: Expected [height, width] of the input
            channels: Channel widths of the stem and the downsampling blocks
            stem_stride: Stride of the 7x7 stem convolution
            hidden_units: Width of the dense layer of the head
            dropout: Dropout probability in the convolutional blocks
        """
        super().__init__()

        self.modality = modality
        self.input_size = list(input_size)
        self.channels = list(channels)
        self.stem_stride = stem_stride
        self.hidden_units = hidden_units
        self.dropout = dropout

        self.stem = ConvBlock(3, channels[0], kernel_size=7, stride=stem_stride, padding=3)

        blocks = []
        for in_ch, out_ch in zip(channels[:-1], channels[1:]):
            blocks.append(ConvBlock(in_ch, out_ch, stride=2, dropout=dropout))
        self.blocks = nn.Sequential(*blocks)

        self.head = nn.Sequential(
            nn.AdaptiveAvgPool2d(1),
            nn.Flatten(),
            nn.Linear(channels[-1], hidden_units),
            nn.ReLU(inplace=True),
            nn.Dropout(0.5),
            nn.Linear(hidden_units, 1),
            nn.Sigmoid()
        )

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        """
        Args:
            x: Input tensor [B, 3, H, W]

        Returns:
            Authenticity probabilities [B]
        """
        x = self.stem(x)
        x = self.blocks(x)
        return self.head(x).squeeze(-1)

    def architecture(self) -> Dict[str, Any]:
        return {
            "kind": "modality",
            "modality": self.modality,
            "input_size": self.input_size,
            "channels": self.channels,
            "stem_stride": self.stem_stride,
            "hidden_units": self.hidden_units,
            "dropout": self.dropout,
        }


class FusionNet(nn.Module, LoggerMixin):
    """Combines the three modality scores into one authenticity probability."""

    def __init__(self, hidden: List[int] = [16, 8], dropout: float = 0.2):
        super().__init__()

        self.hidden = list(hidden)
        self.dropout = dropout

        layers = []
        in_features = 3
        for i, units in enumerate(hidden):
            layers.extend([nn.Linear(in_features, units), nn.ReLU(inplace=True)])
            if i == 0 and dropout > 0:
                layers.append(nn.Dropout(dropout))
            in_features = units
        layers.extend([nn.Linear(in_features, 1), nn.Sigmoid()])
        self.layers = nn.Sequential(*layers)

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        """
        Args:
            x: Scores [B, 3] ordered packaging, pill, batch_code

        Returns:
            Fused authenticity probabilities [B]
        """
        return self.layers(x).squeeze(-1)

    def architecture(self) -> Dict[str, Any]:
        return {"kind": "fusion", "hidden": self.hidden, "dropout": self.dropout}


def count_parameters(model: nn.Module) -> int:
    """Count total number of trainable parameters."""
    return sum(p.numel() for p in model.parameters() if p.requires_grad)


def create_scorer(
    model_type,
    config: Optional[ModelConfig] = None,
    input_size: Optional[List[int]] = None
) -> nn.Module:
    """
    Factory function to create the default network for a model type.

    Args:
        model_type: packaging, pill, batch_code or fusion
        config: Architecture parameters
        input_size: [height, width] of the modality tensor (image models only)

    Returns:
        Untrained network
    """
    model_type = Modality.parse(model_type)
    config = config or ModelConfig()

    if model_type is Modality.FUSION:
        return FusionNet(hidden=config.fusion_hidden)

    if input_size is None:
        raise ModelError("input_size is required for image scorers", context={"model_type": model_type.value})

    return ModalityScorerNet(
        modality=model_type.value,
        input_size=input_size,
        channels=config.channels,
        stem_stride=config.stem_stride,
        hidden_units=config.hidden_units,
        dropout=config.dropout
    )


def build_from_architecture(architecture: Dict[str, Any]) -> nn.Module:
    """Rebuild an untrained network from the architecture stored in a checkpoint."""
    params = dict(architecture)
    kind = params.pop("kind", None)
    if kind == "fusion":
        return FusionNet(**params)
    if kind == "modality":
        return ModalityScorerNet(**params)
    raise ModelError("Unknown scorer architecture", context={"kind": kind})


def save_checkpoint(model: nn.Module, path, extra: Optional[Dict[str, Any]] = None):
    """Save weights together with the architecture needed to rebuild them."""
    checkpoint = {
        "model_state_dict": model.state_dict(),
        "architecture": model.architecture(),
    }
    if extra:
        checkpoint.update(extra)
    torch.save(checkpoint, path)


def load_checkpoint(path, device: Optional[torch.device] = None) -> nn.Module:
    """Load a network saved with ``save_checkpoint`` in eval mode."""
    try:
        checkpoint = torch.load(path, map_location=device or torch.device("cpu"))
        model = build_from_architecture(checkpoint["architecture"])
        model.load_state_dict(checkpoint["model_state_dict"])
    except (OSError, KeyError, RuntimeError) as e:
        raise ModelError(f"Failed to load model checkpoint: {e}", context={"path": str(path)}) from e
    model.eval()
    return model


def resolve_device(name: str = "auto") -> torch.device:
    if name == "auto":
        return torch.device("cuda" if torch.cuda.is_available() else "cpu")
    return torch.device(name)
