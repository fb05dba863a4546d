"""
Image preprocessing tests.
"""

import numpy as np
import pytest

from verimed.data.preprocessing import ImagePreprocessor
from verimed.data.records import Modality
from verimed.utils import PreprocessingError

from conftest import write_image


@pytest.fixture
def preprocessor():
    return ImagePreprocessor()


class TestStandardSizes:
    @pytest.mark.parametrize("modality, size", [
        ("packaging", (800, 600)),
        ("pill", (512, 512)),
        ("batch_code", (400, 200)),
    ])
    def test_output_matches_standard_size(self, preprocessor, image_file, modality, size):
        processed = preprocessor.preprocess(image_file, modality)

        assert processed.processed_size == size
        assert processed.tensor.shape == (size[1], size[0], 3)
        assert processed.tensor.dtype == np.float32

    def test_size_is_idempotent(self, preprocessor, image_file):
        first = preprocessor.preprocess(image_file, "pill")
        second = preprocessor.preprocess(first.image, "pill")

        assert first.processed_size == second.processed_size == (512, 512)

    def test_tensor_range(self, preprocessor, image_file):
        tensor = preprocessor.preprocess(image_file, "packaging").tensor

        assert tensor.min() >= 0.0
        assert tensor.max() <= 1.0

    def test_batch_code_alias(self, preprocessor, image_file):
        processed = preprocessor.preprocess(image_file, "batchCode")

        assert processed.modality is Modality.BATCH_CODE


class TestPipeline:
    def test_steps_recorded(self, preprocessor, image_file):
        processed = preprocessor.preprocess(image_file, "packaging", augment=True)

        assert processed.steps == ("resize", "type_specific_processing", "augmentation", "normalize")

    def test_inference_path_does_not_augment(self, preprocessor, image_file):
        processed = preprocessor.preprocess(image_file, "packaging")

        assert "augmentation" not in processed.steps

    def test_without_normalization(self, preprocessor, image_file):
        processed = preprocessor.preprocess(image_file, "pill", normalize=False)

        assert processed.tensor is None
        assert processed.image.dtype == np.uint8

    def test_source_array_not_mutated(self, preprocessor):
        source = np.random.default_rng(1).integers(0, 256, size=(90, 120, 3), dtype=np.uint8)
        copy = source.copy()

        preprocessor.preprocess(source, "batch_code", augment=True)

        np.testing.assert_array_equal(source, copy)

    def test_batch_code_is_grayscale(self, preprocessor, image_file):
        image = preprocessor.preprocess(image_file, "batch_code", normalize=False).image

        np.testing.assert_array_equal(image[..., 0], image[..., 1])
        np.testing.assert_array_equal(image[..., 1], image[..., 2])

    def test_augment_keeps_size(self, preprocessor, image_file):
        image = preprocessor.preprocess(image_file, "packaging", normalize=False).image

        assert preprocessor.augment(image).shape == image.shape

    def test_deterministic_without_augmentation(self, preprocessor, image_file):
        first = preprocessor.preprocess(image_file, "pill").tensor
        second = preprocessor.preprocess(image_file, "pill").tensor

        np.testing.assert_array_equal(first, second)


class TestFailures:
    def test_missing_file(self, preprocessor, tmp_path):
        with pytest.raises(PreprocessingError):
            preprocessor.preprocess(tmp_path / "missing.jpg", "pill")

    def test_corrupt_file(self, preprocessor, tmp_path):
        corrupt = tmp_path / "corrupt.jpg"
        corrupt.write_bytes(b"not an image")

        with pytest.raises(PreprocessingError):
            preprocessor.preprocess(corrupt, "packaging")

    def test_fusion_is_not_an_image_modality(self, preprocessor, image_file):
        with pytest.raises(PreprocessingError):
            preprocessor.preprocess(image_file, "fusion")

    def test_batch_skips_failures(self, preprocessor, image_file, tmp_path):
        results = preprocessor.preprocess_batch([image_file, tmp_path / "missing.jpg"], "pill")

        assert len(results) == 1


class TestQualityAssessment:
    def test_small_image_penalized(self, preprocessor, tmp_path):
        path = write_image(tmp_path / "small.png", width=100, height=80)

        assessment = preprocessor.assess_quality(path)

        assert "Image too small" in assessment.issues
        assert assessment.score <= 7

    def test_flat_image_flagged_blurry(self, preprocessor):
        flat = np.full((400, 400, 3), 128, dtype=np.uint8)

        assessment = preprocessor.assess_quality(flat)

        assert "Image appears blurry" in assessment.issues
        assert assessment.score == 8

    def test_unreadable_image_scores_one(self, preprocessor, tmp_path):
        assessment = preprocessor.assess_quality(tmp_path / "missing.jpg")

        assert assessment.score == 1
