"""
Labeled training-image store.
Persists images with JSON sidecars under authenticity x modality folders and
keeps running collection statistics.
"""

import platform
import shutil
import threading
import uuid
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Union

import cv2

from ..utils import LoggerMixin, DataCollectionError, StorageError, PreprocessingError
from ..utils.storage import read_json, write_json_atomic
from .preprocessing import ImagePreprocessor, ImageRef
from .records import (
    ContributorRole, DataCollectionStats, GeoLocation, IMAGE_MODALITIES,
    ImageMetadata, Modality, ModalityImage, TrainingExport
)


class DataCollectionStore(LoggerMixin):
    """
    Persists labeled images per modality and authenticity class.

    Layout under ``root_dir``::

        authentic/{packaging,pills,batch_codes}/<id>.jpg + <id>.json
        counterfeit/{packaging,pills,batch_codes}/<id>.jpg + <id>.json
        stats.json
    """

    AUTHENTICITY_DIRS = ("authentic", "counterfeit")

    def __init__(
        self,
        root_dir: Union[str, Path],
        preprocessor: Optional[ImagePreprocessor] = None,
        jpeg_quality: int = 95,
        device_info: Optional[str] = None
    ):
        """
        Initialize the store and its directory layout.

        Args:
            root_dir: Root directory of the collection
            preprocessor: Used to resize images to the modality standard size
            jpeg_quality: JPEG quality of stored images
            device_info: Device descriptor written into image metadata
        """
        self.root_dir = Path(root_dir)
        self.preprocessor = preprocessor or ImagePreprocessor()
        self.jpeg_quality = jpeg_quality
        self.device_info = device_info or f"Python {platform.python_version()} - {platform.system()} {platform.release()}"
        self._lock = threading.RLock()
        self._stats = DataCollectionStats()

        self._create_layout()
        self._stats = self._load_stats()
        self.logger.info(f"Data collection store ready at {self.root_dir}")

    @property
    def stats_path(self) -> Path:
        return self.root_dir / "stats.json"

    def _create_layout(self):
        try:
            for authenticity in self.AUTHENTICITY_DIRS:
                for modality in IMAGE_MODALITIES:
                    (self.root_dir / authenticity / modality.storage_dir).mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Failed to create collection layout: {e}", context={"root": str(self.root_dir)}) from e

    def _load_stats(self) -> DataCollectionStats:
        try:
            data = read_json(self.stats_path)
            return DataCollectionStats.from_dict(data) if data else DataCollectionStats()
        except (OSError, ValueError) as e:
            raise StorageError(f"Failed to load collection stats: {e}", context={"path": str(self.stats_path)}) from e

    def _image_dir(self, modality: Modality, is_authentic: bool) -> Path:
        authenticity = "authentic" if is_authentic else "counterfeit"
        return self.root_dir / authenticity / modality.storage_dir

    def collect(
        self,
        image_ref: ImageRef,
        modality,
        is_authentic: bool,
        quality: int,
        contributor_role,
        medicine_name: str = "",
        manufacturer: str = "",
        batch_code: str = "",
        location: Optional[Union[GeoLocation, Dict[str, float]]] = None
    ) -> ModalityImage:
        """
        Store one labeled image and update the statistics.

        Args:
            image_ref: Path or RGB array of the photo
            modality: packaging, pill or batch_code
            is_authentic: Authenticity label
            quality: Contributor quality rating (1-10)
            contributor_role: consumer, healthcare_worker or pharmacist
            medicine_name: Product name
            manufacturer: Product manufacturer
            batch_code: Printed batch code
            location: Optional capture location

        Returns:
            The stored ModalityImage
        """
        modality = Modality.parse(modality)
        if not modality.is_image:
            raise DataCollectionError("Cannot collect images for the fusion model", context={"modality": modality.value})
        try:
            processed = self.preprocessor.preprocess(image_ref, modality, normalize=False, augment=False)
        except PreprocessingError as e:
            raise DataCollectionError(f"Image could not be processed: {e}", context={"modality": modality.value}) from e

        timestamp = datetime.now()
        image_id = f"med_{int(timestamp.timestamp() * 1000)}_{uuid.uuid4().hex[:9]}"
        save_dir = self._image_dir(modality, is_authentic)
        image_path = save_dir / f"{image_id}.jpg"

        try:
            if isinstance(location, dict):
                location = GeoLocation(**location)
            record = ModalityImage(
                id=image_id,
                path=str(image_path),
                width=processed.width,
                height=processed.height,
                modality=modality,
                is_authentic=bool(is_authentic),
                quality=quality,
                metadata=ImageMetadata(
                    timestamp=timestamp,
                    contributor_role=ContributorRole(contributor_role),
                    device_info=self.device_info,
                    location=location
                ),
                medicine_name=medicine_name,
                manufacturer=manufacturer,
                batch_code=batch_code
            )
        except (ValueError, TypeError) as e:
            raise DataCollectionError(f"Invalid image record: {e}") from e

        with self._lock:
            self._write_image(record, processed.image)
            new_stats = self._stats.with_image(record, timestamp)
            self._stats = new_stats
            self._write_stats(new_stats)

        self.logger.info(
            f"Collected {modality.value} image {image_id} "
            f"({'authentic' if record.is_authentic else 'counterfeit'}, quality {quality})"
        )
        return record

    def _write_image(self, record: ModalityImage, image):
        image_path = Path(record.path)
        sidecar_path = image_path.with_suffix(".json")
        try:
            ok = cv2.imwrite(
                str(image_path),
                cv2.cvtColor(image, cv2.COLOR_RGB2BGR),
                [cv2.IMWRITE_JPEG_QUALITY, self.jpeg_quality]
            )
            if not ok:
                raise OSError("cv2.imwrite returned False")
            write_json_atomic(sidecar_path, record.to_dict())
        except (OSError, cv2.error) as e:
            image_path.unlink(missing_ok=True)
            self.logger.error(f"Failed to save image {record.id}: {e}")
            raise StorageError(f"Failed to save image: {e}", context={"path": str(image_path)}) from e

    def _write_stats(self, stats: DataCollectionStats):
        """Mirror committed statistics to stats.json; the in-memory value stays authoritative."""
        try:
            write_json_atomic(self.stats_path, stats.to_dict())
        except OSError as e:
            self.logger.error(f"Failed to mirror collection stats to {self.stats_path}: {e}")

    def get_stats(self) -> DataCollectionStats:
        """Current statistics (immutable value)."""
        with self._lock:
            return self._stats

    def get_all_images(self, modality=None) -> List[ModalityImage]:
        """
        Load every stored image record, optionally for one modality.

        Args:
            modality: Restrict to one image modality

        Returns:
            Records sorted by capture time
        """
        modalities = IMAGE_MODALITIES if modality is None else (Modality.parse(modality),)
        images = []
        with self._lock:
            for authenticity in self.AUTHENTICITY_DIRS:
                for mod in modalities:
                    directory = self.root_dir / authenticity / mod.storage_dir
                    if not directory.exists():
                        continue
                    for sidecar in sorted(directory.glob("*.json")):
                        images.append(self._read_sidecar(sidecar))
        images.sort(key=lambda img: (img.metadata.timestamp, img.id))
        return images

    def _read_sidecar(self, sidecar: Path) -> ModalityImage:
        try:
            return ModalityImage.from_dict(read_json(sidecar))
        except (OSError, ValueError, KeyError, TypeError) as e:
            raise StorageError(f"Corrupt image sidecar: {e}", context={"path": str(sidecar)}) from e

    def count(self, modality=None) -> int:
        """Number of stored images, optionally for one modality."""
        stats = self.get_stats()
        if modality is None:
            return stats.total_images
        return stats.count_for(modality)

    def export_for_training(self) -> TrainingExport:
        """Snapshot of all images and stats; later collects do not change it."""
        with self._lock:
            images = tuple(self.get_all_images())
            stats = self._stats
        return TrainingExport(images=images, stats=stats, export_date=datetime.now())

    def clear_all(self, confirm: bool = False):
        """
        Irreversibly delete every collected image and reset the statistics.

        Args:
            confirm: Must be True; guards against accidental calls
        """
        if not confirm:
            raise DataCollectionError("clear_all requires explicit confirmation")

        with self._lock:
            try:
                shutil.rmtree(self.root_dir, ignore_errors=False)
            except FileNotFoundError:
                pass
            except OSError as e:
                raise StorageError(f"Failed to clear collection: {e}", context={"root": str(self.root_dir)}) from e
            self._stats = DataCollectionStats()
            self._create_layout()
            self._write_stats(self._stats)

        self.logger.warning("All collected data cleared")
