"""
Dataset classes for training the modality and fusion scorers.
Turns collected image records into labeled tensors with train/validation splits.
"""

from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
import torch
from torch.utils.data import Dataset, DataLoader
from sklearn.model_selection import train_test_split

from ..utils import LoggerMixin, PreprocessingError
from .preprocessing import ImagePreprocessor
from .records import Modality, ModalityImage


class ModalityDataset(Dataset, LoggerMixin):
    """
    Preprocessed images of one modality with binary authenticity labels.
    Images are kept as uint8 at the standard size; augmentation and
    normalization happen per item so every epoch sees fresh perturbations.
    """

    def __init__(
        self,
        images: Sequence[np.ndarray],
        labels: Sequence[int],
        preprocessor: ImagePreprocessor,
        augment: bool = False
    ):
        """
        Initialize dataset.

        Args:
            images: Resized and enhanced RGB images [H, W, 3]
            labels: 1 for authentic, 0 for counterfeit
            preprocessor: Supplies augmentation and normalization
            augment: Apply a random geometric perturbation per item
        """
        if len(images) != len(labels):
            raise ValueError("images and labels must have the same length")
        self.images = list(images)
        self.labels = [int(label) for label in labels]
        self.preprocessor = preprocessor
        self.augment = augment

    def __len__(self) -> int:
        return len(self.images)

    def __getitem__(self, idx: int) -> Dict[str, torch.Tensor]:
        image = self.images[idx]
        if self.augment:
            image = self.preprocessor.augment(image)
        tensor = torch.from_numpy(self.preprocessor.normalize(image)).permute(2, 0, 1).contiguous()
        return {
            "input": tensor,
            "label": torch.tensor(float(self.labels[idx])),
            "index": torch.tensor(idx)
        }


class FusionDataset(Dataset):
    """Recorded modality scores [N, 3] with labels."""

    def __init__(self, features: Sequence[Sequence[float]], labels: Sequence[int]):
        self.features = torch.tensor(np.asarray(features, dtype=np.float32).reshape(-1, 3))
        self.labels = torch.tensor([float(label) for label in labels])
        if len(self.features) != len(self.labels):
            raise ValueError("features and labels must have the same length")

    def __len__(self) -> int:
        return len(self.labels)

    def __getitem__(self, idx: int) -> Dict[str, torch.Tensor]:
        return {
            "input": self.features[idx],
            "label": self.labels[idx],
            "index": torch.tensor(idx)
        }


class TrainingDataBuilder(LoggerMixin):
    """
    Builds training and validation loaders from collected images.
    Handles preprocessing, splitting and loader setup.
    """

    def __init__(
        self,
        preprocessor: ImagePreprocessor,
        validation_split: float = 0.2,
        random_state: int = 42,
        num_workers: int = 0
    ):
        """
        Initialize builder.

        Args:
            preprocessor: Shared image preprocessor
            validation_split: Fraction of samples held out for validation
            random_state: Random seed for reproducible splits
            num_workers: DataLoader worker processes
        """
        self.preprocessor = preprocessor
        self.validation_split = validation_split
        self.random_state = random_state
        self.num_workers = num_workers

    def prepare_images(
        self,
        records: Sequence[ModalityImage],
        modality
    ) -> Tuple[List[np.ndarray], List[int], List[ModalityImage]]:
        """
        Preprocess collected images, skipping the ones that fail.

        Args:
            records: Collected image records
            modality: Image modality to prepare

        Returns:
            Tuple of (images, labels, records that were kept)
        """
        modality = Modality.parse(modality)
        images, labels, kept = [], [], []

        for record in records:
            if record.modality is not modality:
                continue
            try:
                processed = self.preprocessor.preprocess(record.path, modality, normalize=False, augment=False)
            except PreprocessingError as e:
                self.logger.warning(f"Skipping image {record.id}: {e}")
                continue
            images.append(processed.image)
            labels.append(record.label)
            kept.append(record)

        self.logger.info(
            f"Prepared {len(images)} {modality.value} images "
            f"({labels.count(1)} authentic, {labels.count(0)} counterfeit)"
        )
        return images, labels, kept

    def create_splits(self, labels: Sequence[int]) -> Tuple[List[int], List[int]]:
        """
        Split sample indices into training and validation.
        Stratifies when the class counts allow it.

        Returns:
            Tuple of (train_indices, val_indices); validation may be empty
        """
        indices = list(range(len(labels)))
        if self.validation_split <= 0 or len(indices) < 2:
            return indices, []

        try:
            train_idx, val_idx = train_test_split(
                indices,
                test_size=self.validation_split,
                stratify=list(labels),
                random_state=self.random_state
            )
        except ValueError:
            # Too few samples per class for a stratified split
            train_idx, val_idx = train_test_split(
                indices,
                test_size=self.validation_split,
                random_state=self.random_state
            )

        self.logger.info(f"Split {len(indices)} samples: {len(train_idx)} train, {len(val_idx)} validation")
        return list(train_idx), list(val_idx)

    def build_image_datasets(
        self,
        images: Sequence[np.ndarray],
        labels: Sequence[int],
        augment: bool
    ) -> Dict[str, ModalityDataset]:
        """Build train/val/full datasets for an image modality."""
        train_idx, val_idx = self.create_splits(labels)
        datasets = {
            "train": ModalityDataset(
                [images[i] for i in train_idx], [labels[i] for i in train_idx],
                self.preprocessor, augment=augment
            ),
            "full": ModalityDataset(images, labels, self.preprocessor, augment=False)
        }
        if val_idx:
            datasets["val"] = ModalityDataset(
                [images[i] for i in val_idx], [labels[i] for i in val_idx], self.preprocessor, augment=False
            )
        return datasets

    def build_fusion_datasets(
        self,
        features: Sequence[Sequence[float]],
        labels: Sequence[int]
    ) -> Dict[str, FusionDataset]:
        """Build train/val/full datasets for the fusion model."""
        train_idx, val_idx = self.create_splits(labels)
        datasets = {
            "train": FusionDataset([features[i] for i in train_idx], [labels[i] for i in train_idx]),
            "full": FusionDataset(features, labels)
        }
        if val_idx:
            datasets["val"] = FusionDataset([features[i] for i in val_idx], [labels[i] for i in val_idx])
        return datasets

    def build_dataloaders(
        self,
        datasets: Dict[str, Dataset],
        batch_size: int = 32
    ) -> Dict[str, DataLoader]:
        """
        Build data loaders from datasets.

        Args:
            datasets: Dictionary of datasets
            batch_size: Batch size for training

        Returns:
            Dictionary containing data loaders
        """
        dataloaders = {}

        for split_name, dataset in datasets.items():
            if len(dataset) == 0:
                continue
            dataloaders[split_name] = DataLoader(
                dataset,
                batch_size=batch_size,
                shuffle=split_name == "train",
                num_workers=self.num_workers,
                pin_memory=torch.cuda.is_available()
            )

        return dataloaders
