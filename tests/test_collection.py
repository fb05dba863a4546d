"""
Data records and collection store tests.
"""

import json
import threading
from datetime import datetime
from pathlib import Path

import pytest

from verimed.data import collection
from verimed.data.collection import DataCollectionStore
from verimed.data.records import (
    DataCollectionStats, ImageMetadata, Modality, ModalityImage
)
from verimed.utils import DataCollectionError

from conftest import write_image


def _metadata():
    return ImageMetadata(timestamp=datetime.now(), contributor_role="consumer", device_info="test")


@pytest.fixture
def store(tmp_path, small_preprocessor):
    return DataCollectionStore(tmp_path / "medicine_data", preprocessor=small_preprocessor)


def _collect(store, path, modality="packaging", authentic=True, quality=8):
    return store.collect(
        path, modality=modality, is_authentic=authentic, quality=quality,
        contributor_role="healthcare_worker", medicine_name="Amoxicillin", manufacturer="Acme"
    )


class TestRecords:
    def test_modality_aliases(self):
        assert Modality.parse("batchCode") is Modality.BATCH_CODE
        assert Modality.parse("pill") is Modality.PILL
        with pytest.raises(ValueError):
            Modality.parse("barcode")

    @pytest.mark.parametrize("quality", [0, 11, 5.5])
    def test_quality_out_of_range_rejected(self, quality):
        with pytest.raises(ValueError):
            ModalityImage(
                id="x", path="x.jpg", width=10, height=10, modality="pill",
                is_authentic=True, quality=quality, metadata=_metadata()
            )

    def test_fusion_images_rejected(self):
        with pytest.raises(ValueError):
            ModalityImage(
                id="x", path="x.jpg", width=10, height=10, modality="fusion",
                is_authentic=True, quality=5, metadata=_metadata()
            )

    def test_inconsistent_counts_rejected(self):
        with pytest.raises(ValueError):
            DataCollectionStats(total_images=2, authentic_images=1, counterfeit_images=0, packaging_images=2)

    def test_round_trip_dict(self):
        image = ModalityImage(
            id="med_1", path="a.jpg", width=64, height=48, modality="batch_code",
            is_authentic=False, quality=3, metadata=_metadata(), batch_code="B1"
        )

        assert ModalityImage.from_dict(image.to_dict()) == image


class TestCollect:
    def test_layout_and_sidecar(self, store, image_file):
        record = _collect(store, image_file, modality="pill", authentic=False)

        image_path = store.root_dir / "counterfeit" / "pills" / f"{record.id}.jpg"
        assert record.path == str(image_path)
        assert image_path.exists()
        sidecar = json.loads(image_path.with_suffix(".json").read_text())
        assert sidecar["modality"] == "pill"
        assert sidecar["medicine_name"] == "Amoxicillin"

    def test_image_resized_to_standard_size(self, store, image_file):
        record = _collect(store, image_file, modality="batch_code")

        assert (record.width, record.height) == (40, 20)

    def test_running_mean_quality(self, store, image_file):
        for quality in [8, 6, 10]:
            _collect(store, image_file, quality=quality)

        stats = store.get_stats()
        assert stats.average_quality == pytest.approx(8.0)
        assert stats.total_images == 3

    def test_counts_stay_consistent(self, store, image_file):
        _collect(store, image_file, modality="packaging", authentic=True)
        _collect(store, image_file, modality="pill", authentic=False)
        _collect(store, image_file, modality="batch_code", authentic=False)

        stats = store.get_stats()
        assert stats.authentic_images + stats.counterfeit_images == stats.total_images
        assert stats.packaging_images + stats.pill_images + stats.batch_code_images == stats.total_images
        assert stats.counterfeit_images == 2

    def test_stats_persisted(self, store, image_file, small_preprocessor):
        _collect(store, image_file, quality=9)

        reopened = DataCollectionStore(store.root_dir, preprocessor=small_preprocessor)

        assert reopened.get_stats().total_images == 1
        assert reopened.get_stats().average_quality == pytest.approx(9.0)

    def test_invalid_quality_leaves_stats_unchanged(self, store, image_file):
        with pytest.raises(DataCollectionError):
            _collect(store, image_file, quality=12)

        assert store.get_stats().total_images == 0

    def test_stats_mirror_failure_keeps_collected_image(self, store, image_file, monkeypatch):
        original_write = collection.write_json_atomic

        def failing_write(path, data, *args, **kwargs):
            if path == store.stats_path:
                raise OSError("disk full")
            return original_write(path, data, *args, **kwargs)

        monkeypatch.setattr(collection, "write_json_atomic", failing_write)

        record = _collect(store, image_file)

        assert Path(record.path).exists()
        assert store.get_stats().total_images == 1
        assert not store.stats_path.exists()

    def test_unreadable_image_rejected(self, store, tmp_path):
        with pytest.raises(DataCollectionError):
            _collect(store, tmp_path / "missing.jpg")

    def test_location_accepted(self, store, image_file):
        record = store.collect(
            image_file, modality="pill", is_authentic=True, quality=5,
            contributor_role="consumer", location={"latitude": 6.5, "longitude": 3.4}
        )

        assert record.metadata.location.latitude == pytest.approx(6.5)

    def test_concurrent_collects(self, store, tmp_path):
        paths = [write_image(tmp_path / f"c{i}.png", seed=i) for i in range(8)]
        threads = [threading.Thread(target=_collect, args=(store, p)) for p in paths]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert store.get_stats().total_images == 8
        assert len(store.get_all_images()) == 8


class TestExportAndClear:
    def test_export_contains_every_image(self, store, image_file):
        for _ in range(4):
            _collect(store, image_file)

        export = store.export_for_training()

        assert len(export.images) == 4
        assert export.stats.total_images == 4

    def test_export_is_a_snapshot(self, store, image_file):
        _collect(store, image_file)
        export = store.export_for_training()

        _collect(store, image_file)

        assert len(export.images) == 1

    def test_get_all_images_by_modality(self, store, image_file):
        _collect(store, image_file, modality="pill")
        _collect(store, image_file, modality="packaging")

        assert [img.modality for img in store.get_all_images("pill")] == [Modality.PILL]

    def test_clear_requires_confirmation(self, store, image_file):
        _collect(store, image_file)

        with pytest.raises(DataCollectionError):
            store.clear_all()

        assert store.get_stats().total_images == 1

    def test_clear_all(self, store, image_file):
        _collect(store, image_file)

        store.clear_all(confirm=True)

        assert store.get_stats() == DataCollectionStats()
        assert store.get_all_images() == []
        assert (store.root_dir / "authentic" / "packaging").is_dir()
