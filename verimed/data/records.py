"""
Data records shared by the preprocessing, collection and training code.
Records are validated at construction; collected images and stats are immutable.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

import numpy as np


class Modality(str, Enum):
    """Input channel of a photo, plus the fusion model slot."""
    PACKAGING = "packaging"
    PILL = "pill"
    BATCH_CODE = "batch_code"
    FUSION = "fusion"

    @classmethod
    def parse(cls, value) -> "Modality":
        """Parse a modality name, accepting the camelCase ``batchCode`` spelling."""
        if isinstance(value, cls):
            return value
        key = _MODALITY_ALIASES.get(str(value).strip(), str(value).strip())
        try:
            return cls(key)
        except ValueError as e:
            raise ValueError(f"Unknown modality: {value!r}") from e

    @property
    def is_image(self) -> bool:
        return self is not Modality.FUSION

    @property
    def storage_dir(self) -> str:
        """Directory name used by the collection store."""
        return _STORAGE_DIRS[self]


_MODALITY_ALIASES = {"batchCode": "batch_code", "batch-code": "batch_code", "pills": "pill"}
_STORAGE_DIRS = {
    Modality.PACKAGING: "packaging",
    Modality.PILL: "pills",
    Modality.BATCH_CODE: "batch_codes",
    Modality.FUSION: "fusion",
}

IMAGE_MODALITIES: Tuple[Modality, ...] = (Modality.PACKAGING, Modality.PILL, Modality.BATCH_CODE)
MODEL_TYPES: Tuple[Modality, ...] = IMAGE_MODALITIES + (Modality.FUSION,)


class ContributorRole(str, Enum):
    """Who contributed a training image."""
    CONSUMER = "consumer"
    HEALTHCARE_WORKER = "healthcare_worker"
    PHARMACIST = "pharmacist"


@dataclass(frozen=True)
class GeoLocation:
    latitude: float
    longitude: float

    def __post_init__(self):
        if not -90.0 <= self.latitude <= 90.0:
            raise ValueError(f"latitude out of range: {self.latitude}")
        if not -180.0 <= self.longitude <= 180.0:
            raise ValueError(f"longitude out of range: {self.longitude}")


@dataclass(frozen=True)
class ImageMetadata:
    """Capture context of a collected image."""
    timestamp: datetime
    contributor_role: ContributorRole
    device_info: str
    location: Optional[GeoLocation] = None

    def __post_init__(self):
        object.__setattr__(self, "contributor_role", ContributorRole(self.contributor_role))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "contributor_role": self.contributor_role.value,
            "device_info": self.device_info,
            "location": (
                {"latitude": self.location.latitude, "longitude": self.location.longitude}
                if self.location else None
            ),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ImageMetadata":
        location = data.get("location")
        return cls(
            timestamp=datetime.fromisoformat(data["timestamp"]),
            contributor_role=ContributorRole(data["contributor_role"]),
            device_info=data.get("device_info", ""),
            location=GeoLocation(**location) if location else None,
        )


@dataclass(frozen=True)
class ModalityImage:
    """One labeled training sample owned by the collection store."""
    id: str
    path: str
    width: int
    height: int
    modality: Modality
    is_authentic: bool
    quality: int
    metadata: ImageMetadata
    medicine_name: str = ""
    manufacturer: str = ""
    batch_code: str = ""

    def __post_init__(self):
        modality = Modality.parse(self.modality)
        if not modality.is_image:
            raise ValueError("collected images cannot use the fusion modality")
        object.__setattr__(self, "modality", modality)
        if isinstance(self.quality, bool) or int(self.quality) != self.quality or not 1 <= self.quality <= 10:
            raise ValueError(f"quality must be an integer between 1 and 10, got {self.quality!r}")
        if self.width <= 0 or self.height <= 0:
            raise ValueError(f"invalid image dimensions {self.width}x{self.height}")

    @property
    def label(self) -> int:
        """Binary training label (1 = authentic)."""
        return 1 if self.is_authentic else 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "path": self.path,
            "width": self.width,
            "height": self.height,
            "modality": self.modality.value,
            "is_authentic": self.is_authentic,
            "quality": self.quality,
            "medicine_name": self.medicine_name,
            "manufacturer": self.manufacturer,
            "batch_code": self.batch_code,
            "metadata": self.metadata.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ModalityImage":
        return cls(
            id=data["id"],
            path=data["path"],
            width=int(data["width"]),
            height=int(data["height"]),
            modality=Modality.parse(data["modality"]),
            is_authentic=bool(data["is_authentic"]),
            quality=int(data["quality"]),
            metadata=ImageMetadata.from_dict(data["metadata"]),
            medicine_name=data.get("medicine_name", ""),
            manufacturer=data.get("manufacturer", ""),
            batch_code=data.get("batch_code", ""),
        )


@dataclass(frozen=True)
class DataCollectionStats:
    """Running aggregate over every collected image."""
    total_images: int = 0
    authentic_images: int = 0
    counterfeit_images: int = 0
    packaging_images: int = 0
    pill_images: int = 0
    batch_code_images: int = 0
    average_quality: float = 0.0
    last_updated: Optional[datetime] = None

    def __post_init__(self):
        if self.authentic_images + self.counterfeit_images != self.total_images:
            raise ValueError("authentic + counterfeit must equal total")
        if self.packaging_images + self.pill_images + self.batch_code_images != self.total_images:
            raise ValueError("per-modality counts must sum to total")
        if min(self.total_images, self.authentic_images, self.counterfeit_images) < 0:
            raise ValueError("image counts cannot be negative")

    def count_for(self, modality: Modality) -> int:
        return {
            Modality.PACKAGING: self.packaging_images,
            Modality.PILL: self.pill_images,
            Modality.BATCH_CODE: self.batch_code_images,
        }.get(Modality.parse(modality), 0)

    def with_image(self, image: ModalityImage, timestamp: Optional[datetime] = None) -> "DataCollectionStats":
        """Return the stats updated incrementally with one more image."""
        total = self.total_images + 1
        modality_field = f"{image.modality.value}_images"
        return replace(
            self,
            total_images=total,
            authentic_images=self.authentic_images + int(image.is_authentic),
            counterfeit_images=self.counterfeit_images + int(not image.is_authentic),
            average_quality=(self.average_quality * self.total_images + image.quality) / total,
            last_updated=timestamp or datetime.now(),
            **{modality_field: getattr(self, modality_field) + 1},
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_images": self.total_images,
            "authentic_images": self.authentic_images,
            "counterfeit_images": self.counterfeit_images,
            "packaging_images": self.packaging_images,
            "pill_images": self.pill_images,
            "batch_code_images": self.batch_code_images,
            "average_quality": self.average_quality,
            "last_updated": self.last_updated.isoformat() if self.last_updated else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DataCollectionStats":
        last_updated = data.get("last_updated")
        return cls(
            total_images=int(data.get("total_images", 0)),
            authentic_images=int(data.get("authentic_images", 0)),
            counterfeit_images=int(data.get("counterfeit_images", 0)),
            packaging_images=int(data.get("packaging_images", 0)),
            pill_images=int(data.get("pill_images", 0)),
            batch_code_images=int(data.get("batch_code_images", 0)),
            average_quality=float(data.get("average_quality", 0.0)),
            last_updated=datetime.fromisoformat(last_updated) if last_updated else None,
        )


@dataclass(frozen=True)
class TrainingExport:
    """Snapshot of the collection store handed to training."""
    images: Tuple[ModalityImage, ...]
    stats: DataCollectionStats
    export_date: datetime


@dataclass
class ProcessedImage:
    """Derived image produced by the preprocessor; the source is never modified."""
    image: np.ndarray
    modality: Modality
    original_size: Tuple[int, int]
    steps: Tuple[str, ...]
    tensor: Optional[np.ndarray] = None

    @property
    def width(self) -> int:
        return int(self.image.shape[1])

    @property
    def height(self) -> int:
        return int(self.image.shape[0])

    @property
    def processed_size(self) -> Tuple[int, int]:
        return self.width, self.height


@dataclass
class QualityAssessment:
    score: int
    issues: List[str] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)
