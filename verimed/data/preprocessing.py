"""
Image preprocessing for the per-modality scorers.
Resizes photos to the modality's standard size, applies modality-specific
enhancement and produces normalized [height, width, 3] tensors.
"""

from pathlib import Path
from typing import Iterable, List, Optional, Tuple, Union

import albumentations as A
import cv2
import numpy as np

from ..utils import LoggerMixin, PreprocessingConfig, PreprocessingError, handle_exceptions
from .records import Modality, ProcessedImage, QualityAssessment

ImageRef = Union[str, Path, np.ndarray]


class ImagePreprocessor(LoggerMixin):
    """
    Stateless preprocessing pipeline shared by inference, collection and training.
    Augmentation is only applied when explicitly requested by training code.
    """

    def __init__(self, config: Optional[PreprocessingConfig] = None):
        """
        Initialize preprocessor.

        Args:
            config: Standard sizes and quality-check parameters
        """
        self.config = config or PreprocessingConfig()
        self._augmenter = A.OneOf([
            A.Rotate(
                limit=self.config.rotation_limit,
                border_mode=cv2.BORDER_REFLECT_101,
                p=1.0
            ),
            A.HorizontalFlip(p=1.0),
        ], p=1.0)

    def get_standard_size(self, modality) -> Tuple[int, int]:
        """Standard (width, height) for an image modality."""
        modality = Modality.parse(modality)
        if not modality.is_image:
            raise PreprocessingError("Fusion inputs are scores, not images", context={"modality": modality.value})
        return self.config.standard_sizes[modality.value]

    def tensor_shape(self, modality) -> Tuple[int, int, int]:
        """Shape of the normalized tensor for a modality."""
        width, height = self.get_standard_size(modality)
        return height, width, 3

    @handle_exceptions(PreprocessingError)
    def load_image(self, image_ref: ImageRef) -> np.ndarray:
        """
        Decode an image reference into an RGB uint8 array.

        Args:
            image_ref: Path to an image file or an RGB array

        Returns:
            Image [H, W, 3]
        """
        if isinstance(image_ref, np.ndarray):
            image = image_ref
            if image.ndim == 2:
                image = cv2.cvtColor(image, cv2.COLOR_GRAY2RGB)
            if image.ndim != 3 or image.shape[2] != 3 or image.size == 0:
                raise PreprocessingError("Image array must be [H, W, 3]", context={"shape": image_ref.shape})
            if image.dtype != np.uint8:
                scale = 255.0 if image.max() <= 1.0 else 1.0
                image = np.clip(image.astype(np.float32) * scale, 0, 255).astype(np.uint8)
            return image

        path = Path(image_ref)
        image = cv2.imread(str(path), cv2.IMREAD_COLOR)
        if image is None:
            raise PreprocessingError("Could not decode image", context={"path": str(path)})
        return cv2.cvtColor(image, cv2.COLOR_BGR2RGB)

    def preprocess(
        self,
        image_ref: ImageRef,
        modality,
        normalize: bool = True,
        augment: bool = False
    ) -> ProcessedImage:
        """
        Preprocess one photo for a modality.

        Args:
            image_ref: Path or RGB array; never modified
            modality: packaging, pill or batch_code
            normalize: Produce a float32 tensor in [0, 1]
            augment: Apply one random geometric perturbation (training only)

        Returns:
            ProcessedImage at exactly the modality's standard size
        """
        modality = Modality.parse(modality)
        image = self.load_image(image_ref)
        original_size = (int(image.shape[1]), int(image.shape[0]))
        steps = []

        image = self.resize(image, modality)
        steps.append("resize")

        image = self.enhance(image, modality)
        steps.append("type_specific_processing")

        if augment:
            image = self.augment(image)
            steps.append("augmentation")

        tensor = None
        if normalize:
            tensor = self.normalize(image)
            steps.append("normalize")

        return ProcessedImage(
            image=image,
            modality=modality,
            original_size=original_size,
            steps=tuple(steps),
            tensor=tensor
        )

    @handle_exceptions(PreprocessingError)
    def resize(self, image: np.ndarray, modality) -> np.ndarray:
        """Resize to the modality's standard size."""
        width, height = self.get_standard_size(modality)
        shrinking = image.shape[1] > width or image.shape[0] > height
        interpolation = cv2.INTER_AREA if shrinking else cv2.INTER_LINEAR
        return cv2.resize(image, (width, height), interpolation=interpolation)

    @handle_exceptions(PreprocessingError)
    def enhance(self, image: np.ndarray, modality) -> np.ndarray:
        """Apply modality-specific enhancement."""
        modality = Modality.parse(modality)

        if modality is Modality.PACKAGING:
            # Local contrast on lightness keeps printed text and logos legible
            lab = cv2.cvtColor(image, cv2.COLOR_RGB2LAB)
            lightness, a, b = cv2.split(lab)
            clahe = cv2.createCLAHE(clipLimit=2.0, tileGridSize=(8, 8))
            lab = cv2.merge((clahe.apply(lightness), a, b))
            return cv2.cvtColor(lab, cv2.COLOR_LAB2RGB)

        if modality is Modality.PILL:
            # Edge-preserving smoothing keeps shape and colour
            return cv2.bilateralFilter(image, 5, 50, 50)

        if modality is Modality.BATCH_CODE:
            gray = cv2.cvtColor(image, cv2.COLOR_RGB2GRAY)
            clahe = cv2.createCLAHE(clipLimit=3.0, tileGridSize=(4, 4))
            return cv2.cvtColor(clahe.apply(gray), cv2.COLOR_GRAY2RGB)

        raise PreprocessingError("Unknown image modality", context={"modality": modality.value})

    def augment(self, image: np.ndarray) -> np.ndarray:
        """Small rotation or horizontal flip; output keeps the input size."""
        return self._augmenter(image=image)["image"]

    @staticmethod
    def normalize(image: np.ndarray) -> np.ndarray:
        """Scale channel values to [0, 1]."""
        return image.astype(np.float32) / 255.0

    def preprocess_batch(
        self,
        image_refs: Iterable[ImageRef],
        modality,
        normalize: bool = True,
        augment: bool = False
    ) -> List[ProcessedImage]:
        """Preprocess several photos, skipping the ones that fail."""
        results = []
        for image_ref in image_refs:
            try:
                results.append(self.preprocess(image_ref, modality, normalize=normalize, augment=augment))
            except PreprocessingError as e:
                self.logger.warning(f"Skipping image that failed preprocessing: {e}")
        return results

    def assess_quality(self, image_ref: ImageRef) -> QualityAssessment:
        """
        Rate a photo on a 1-10 scale before it is collected.

        Args:
            image_ref: Path or RGB array

        Returns:
            Score with the detected issues and capture recommendations
        """
        try:
            image = self.load_image(image_ref)
        except PreprocessingError as e:
            self.logger.warning(f"Quality assessment failed: {e}")
            return QualityAssessment(
                score=1,
                issues=["Failed to analyze image"],
                recommendations=["Retake the image"]
            )

        height, width = image.shape[:2]
        issues = []
        recommendations = []
        score = 10

        if width < self.config.min_dimension or height < self.config.min_dimension:
            issues.append("Image too small")
            recommendations.append("Use higher resolution camera")
            score -= 3

        aspect_ratio = width / height
        if aspect_ratio < 0.5 or aspect_ratio > 2.0:
            issues.append("Unusual aspect ratio")
            recommendations.append("Ensure proper framing")
            score -= 1

        gray = cv2.cvtColor(image, cv2.COLOR_RGB2GRAY)
        sharpness = cv2.Laplacian(gray, cv2.CV_64F).var()
        if sharpness < self.config.blur_threshold:
            issues.append("Image appears blurry")
            recommendations.append("Hold the camera steady and refocus")
            score -= 2

        return QualityAssessment(score=max(1, score), issues=issues, recommendations=recommendations)
