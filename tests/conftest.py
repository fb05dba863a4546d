"""
Shared fixtures: temporary session roots, synthetic photos and tiny model settings.
"""

from pathlib import Path

import cv2
import numpy as np
import pytest

from verimed.data.preprocessing import ImagePreprocessor
from verimed.models import create_scorer
from verimed.session import VeriMedSession
from verimed.utils import ConfigManager, ModelConfig, PreprocessingConfig


SMALL_SIZES = {
    "packaging": [64, 48],
    "pill": [32, 32],
    "batch_code": [40, 20],
}

TINY_MODEL = {
    "channels": [4, 8],
    "stem_stride": 2,
    "dropout": 0.0,
    "hidden_units": 8,
    "fusion_hidden": [4],
    "device": "cpu",
}


def write_image(path, width=120, height=90, seed=0, color=None) -> Path:
    """Write a synthetic RGB photo to ``path`` and return the path."""
    rng = np.random.default_rng(seed)
    if color is None:
        image = rng.integers(0, 256, size=(height, width, 3), dtype=np.uint8)
    else:
        image = np.full((height, width, 3), color, dtype=np.uint8)
        noise = rng.integers(0, 20, size=(height, width, 3), dtype=np.uint8)
        image = cv2.add(image, noise)
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    assert cv2.imwrite(str(path), cv2.cvtColor(image, cv2.COLOR_RGB2BGR))
    return path


def session_overrides(root: Path) -> dict:
    return {
        "paths": {"root_dir": str(root), "tensorboard_dir": None},
        "preprocessing": {"standard_sizes": SMALL_SIZES},
        "model": TINY_MODEL,
        "training": {
            model_type: {"epochs": 2, "batch_size": 4, "patience": 2}
            for model_type in ("packaging", "pill", "batch_code", "fusion")
        },
        "logging": {"log_dir": None},
    }


@pytest.fixture
def image_file(tmp_path):
    return write_image(tmp_path / "photos" / "sample.png")


@pytest.fixture
def small_preprocessor():
    return ImagePreprocessor(PreprocessingConfig(standard_sizes=SMALL_SIZES))


@pytest.fixture
def tiny_model_config():
    return ModelConfig(**TINY_MODEL)


@pytest.fixture
def config_manager(tmp_path):
    return ConfigManager(overrides=session_overrides(tmp_path / "root"))


@pytest.fixture
def session(config_manager):
    current = VeriMedSession(config_manager=config_manager, show_progress=False)
    yield current
    current.broadcaster.close()


@pytest.fixture
def make_fusion_model(tiny_model_config):
    def factory():
        return create_scorer("fusion", tiny_model_config)
    return factory


@pytest.fixture
def make_packaging_model(tiny_model_config):
    width, height = SMALL_SIZES["packaging"]

    def factory():
        return create_scorer("packaging", tiny_model_config, input_size=[height, width])
    return factory


def collect_images(session, tmp_path, modality="packaging", count=6, name="Paracetamol"):
    """Collect ``count`` photos alternating authentic and counterfeit."""
    records = []
    for i in range(count):
        authentic = i % 2 == 0
        path = write_image(
            tmp_path / "incoming" / f"{modality}_{i}.png",
            seed=i,
            color=(200, 200, 200) if authentic else (40, 40, 40)
        )
        records.append(session.collect_medicine_image(
            path,
            name=name,
            manufacturer="Acme Pharma",
            batch_code="B123",
            is_authentic=authentic,
            modality=modality,
            quality=7,
            contributor_role="pharmacist"
        ))
    return records
