"""
End-to-end session tests: scanning, training with deployment and model swaps mid-scan.
"""

import threading

import pytest

from verimed.inference.scoring import ModalityScorer
from verimed.session import VeriMedSession
from verimed.utils import (
    ConfigurationError, DataCollectionError, InsufficientDataError, NotInitializedError, PreprocessingError
)

from conftest import collect_images, write_image


class TestScanWithoutModels:
    def test_requires_initialize(self, session, image_file):
        with pytest.raises(NotInitializedError):
            session.analyze_medicine(image_file, "packaging")

    def test_neutral_verdict(self, session, image_file):
        session.initialize()

        result = session.analyze_medicine(image_file, "packaging", known_name="Paracetamol")

        assert result.confidence == 0.5
        assert result.is_counterfeit is True
        assert result.fusion_score is None
        assert result.individual_scores == {"packaging": None, "pill": None, "batch_code": None}
        assert set(result.model_versions.values()) == {"N/A"}
        assert result.reasoning == ["Medicine appears to be COUNTERFEIT (50.0% confidence)"]
        assert result.known_name == "Paracetamol"

    def test_unreadable_photo_raises(self, session, tmp_path):
        session.initialize()
        corrupt = tmp_path / "corrupt.jpg"
        corrupt.write_bytes(b"not a photo")

        with pytest.raises(PreprocessingError):
            session.analyze_medicine(corrupt, "pill")

    def test_status(self, session):
        session.initialize()

        status = session.get_status()

        assert status["initialized"] is True
        assert status["training_in_progress"] is False
        assert status["collected_images"] == 0
        assert status["models"]["fusion"]["active_version"] is None


class TestScanWithModels:
    def test_deployed_model_scores(self, session, image_file, make_packaging_model):
        session.initialize()
        session.registry.deploy(make_packaging_model(), "packaging", accuracy=0.9)

        result = session.analyze_medicine(image_file, "packaging")

        score = result.individual_scores["packaging"]
        assert 0.0 <= score <= 1.0
        assert result.confidence == pytest.approx(score)
        assert result.model_versions["packaging"] == "1.1.0"
        assert result.model_versions["pill"] == "N/A"
        assert result.reasoning[0].startswith("Packaging analysis: ")
        assert len(session.registry.get_performance_metrics("packaging")) == 1

    def test_fusion_combines_scores(self, session, tmp_path, make_packaging_model, make_fusion_model):
        session.initialize()
        session.registry.deploy(make_packaging_model(), "packaging", accuracy=0.9)
        session.registry.deploy(make_fusion_model(), "fusion", accuracy=0.9)
        photo = write_image(tmp_path / "box.png")

        result = session.analyze_images({"packaging": photo, "pill": photo})

        assert result.fusion_score is not None
        assert result.individual_scores["pill"] is None
        assert any(line.startswith("Fusion analysis: ") for line in result.reasoning)
        assert result.confidence == pytest.approx(result.fusion_score)

    def test_deploy_during_scan_does_not_affect_it(
        self, session, image_file, make_packaging_model, monkeypatch
    ):
        session.initialize()
        session.registry.deploy(make_packaging_model(), "packaging", accuracy=0.8)
        entered = threading.Event()
        release = threading.Event()
        original_score = ModalityScorer.score

        def paused_score(self, tensor):
            entered.set()
            release.wait(timeout=10.0)
            return original_score(self, tensor)

        monkeypatch.setattr(ModalityScorer, "score", paused_score)
        results = []
        scan = threading.Thread(
            target=lambda: results.append(session.analyze_medicine(image_file, "packaging"))
        )
        scan.start()
        assert entered.wait(timeout=10.0)

        session.registry.deploy(make_packaging_model(), "packaging", accuracy=0.9)
        release.set()
        scan.join(timeout=30.0)

        assert results[0].model_versions["packaging"] == "1.1.0"
        assert results[0].individual_scores["packaging"] is not None
        assert session.registry.get_active_model_version("packaging").version == "1.2.0"


class TestDiagnostics:
    def test_before_initialize(self, session):
        report = session.run_diagnostics()

        assert [c.name for c in report.checks] == ["initialization", "model_loading"]
        assert report.passed_checks == 0
        assert report.overall_score == 0.0

    def test_without_models(self, session):
        session.initialize()

        report = session.run_diagnostics(iterations=2)

        passed = {c.name for c in report.checks if c.passed}
        assert report.total_checks == 9
        assert passed == {"initialization", "inference_capability", "inference_speed", "error_handling"}
        assert "no active version" in next(c for c in report.checks if c.name == "fusion_model").details

    def test_active_model_passes(self, session, make_packaging_model):
        session.initialize()
        session.registry.deploy(make_packaging_model(), "packaging", accuracy=0.9)

        report = session.run_diagnostics("packaging", iterations=2)

        assert [c.name for c in report.checks] == [
            "initialization", "model_loading", "packaging_model",
            "inference_capability", "inference_speed", "error_handling"
        ]
        assert report.passed_checks == report.total_checks
        assert report.overall_score == pytest.approx(100.0)
        assert report.to_dict()["model_type"] == "packaging"

    def test_disabled_model_fails_its_check(self, session, make_packaging_model):
        session.initialize()
        session.registry.deploy(make_packaging_model(), "packaging", accuracy=0.9)
        session.update_inference_config(enable_packaging=False)

        report = session.run_diagnostics("packaging", iterations=1)

        check = next(c for c in report.checks if c.name == "packaging_model")
        assert not check.passed
        assert check.details == "disabled in configuration"


class TestInferenceConfigUpdate:
    def test_threshold_change_applies_to_next_scan(self, session, image_file):
        session.initialize()

        updated = session.update_inference_config(confidence_threshold=0.4)

        assert updated.confidence_threshold == pytest.approx(0.4)
        assert session.analyze_medicine(image_file, "packaging").is_counterfeit is False
        assert session.get_status()["confidence_threshold"] == pytest.approx(0.4)

    def test_invalid_values_rejected(self, session):
        with pytest.raises(ConfigurationError):
            session.update_inference_config(confidence_threshold=1.5)
        with pytest.raises(ConfigurationError):
            session.update_inference_config(momentum=0.9)

        assert session.inference.config.confidence_threshold == pytest.approx(0.7)


class TestTrainingAndDeployment:
    def test_train_and_deploy(self, session, tmp_path, image_file):
        session.initialize()
        collect_images(session, tmp_path, modality="packaging", count=6)

        result = session.train_model("packaging", {"epochs": 2, "batch_size": 4})

        active = session.registry.get_active_model_version("packaging")
        assert active is not None
        assert active.accuracy == pytest.approx(result.accuracy)
        assert active.metrics.roc_auc == pytest.approx(result.metrics.roc_auc)
        scan = session.analyze_medicine(image_file, "packaging")
        assert scan.model_versions["packaging"] == active.version

    def test_train_without_deploy(self, session, tmp_path):
        collect_images(session, tmp_path, modality="pill", count=4)

        session.train_model("pill", deploy=False)

        assert session.get_model_versions("pill") == []

    def test_train_all_models(self, session, tmp_path):
        for modality in ("packaging", "pill", "batch_code"):
            collect_images(session, tmp_path, modality=modality, count=4)
        deployed = []
        session.subscribe_progress(lambda p: deployed.append(p) if p.is_final else None)

        results = session.train_all_models()
        session.broadcaster.flush(timeout=5.0)

        assert [r.model_type.value for r in results] == ["packaging", "pill", "batch_code", "fusion"]
        assert len(session.get_model_versions()) == 4
        assert len(deployed) == 4

    def test_train_all_stops_at_first_failure(self, session, tmp_path):
        collect_images(session, tmp_path, modality="packaging", count=4)

        with pytest.raises(InsufficientDataError):
            session.train_all_models()

        assert [v.model_type.value for v in session.get_model_versions()] == ["packaging"]

    def test_rollback_and_cleanup(self, session, make_fusion_model):
        session.initialize()
        first = session.registry.deploy(make_fusion_model(), "fusion", accuracy=0.8)
        session.registry.deploy(make_fusion_model(), "fusion", accuracy=0.9)

        assert session.rollback_model("fusion").id == first.id
        removed = session.cleanup_old_models(keep_versions=1)

        assert removed == []
        assert session.registry.get_active_model_version("fusion").id == first.id


class TestDataManagement:
    def test_collect_and_stats(self, session, tmp_path):
        collect_images(session, tmp_path, modality="pill", count=3)

        stats = session.get_stats()

        assert stats.total_images == 3
        assert stats.authentic_images == 2
        assert stats.pill_images == 3
        assert len(session.export_data_for_training().images) == 3

    def test_clear_all_data(self, session, tmp_path):
        collect_images(session, tmp_path, modality="pill", count=4)
        session.train_model("pill", {"epochs": 1}, deploy=False)

        with pytest.raises(DataCollectionError):
            session.clear_all_data()
        session.clear_all_data(confirm=True)

        assert session.get_stats().total_images == 0
        assert session.orchestrator.ledger.load() == []

    def test_close_saves_performance(self, config_manager, image_file, make_packaging_model):
        current = VeriMedSession(config_manager=config_manager, show_progress=False)
        current.initialize()
        current.registry.deploy(make_packaging_model(), "packaging", accuracy=0.9)
        current.analyze_medicine(image_file, "packaging")

        current.close()

        assert current.registry.performance_path.exists()
