"""
Self-check of the scan path: readiness, loaded models, scoring of a synthetic
photo, scan latency and rejection of malformed input.
"""

import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple

import numpy as np

from ..data.records import Modality, IMAGE_MODALITIES, MODEL_TYPES
from ..utils import LoggerMixin, PreprocessingError, VeriMedError
from .service import InferenceService


@dataclass
class DiagnosticCheck:
    """Outcome of one check."""
    name: str
    passed: bool
    score: float
    details: str
    duration_ms: float

    def to_dict(self) -> Dict:
        return {
            "name": self.name,
            "passed": self.passed,
            "score": self.score,
            "details": self.details,
            "duration_ms": self.duration_ms,
        }


@dataclass
class DiagnosticReport:
    """All checks of one run."""
    model_type: str
    checks: List[DiagnosticCheck] = field(default_factory=list)
    duration_ms: float = 0.0

    @property
    def passed_checks(self) -> int:
        return sum(1 for check in self.checks if check.passed)

    @property
    def total_checks(self) -> int:
        return len(self.checks)

    @property
    def overall_score(self) -> float:
        """Percentage of passed checks."""
        if not self.checks:
            return 0.0
        return self.passed_checks / self.total_checks * 100.0

    def to_dict(self) -> Dict:
        return {
            "model_type": self.model_type,
            "checks": [check.to_dict() for check in self.checks],
            "passed_checks": self.passed_checks,
            "total_checks": self.total_checks,
            "overall_score": self.overall_score,
            "duration_ms": self.duration_ms,
        }


class ModelDiagnostics(LoggerMixin):
    """
    Runs a fixed set of checks against the inference service.

    Scans use a seeded synthetic photo, so results depend only on the
    active models and never on collected data.
    """

    def __init__(self, inference: InferenceService, seed: int = 0):
        self.inference = inference
        self.seed = seed

    def _synthetic_photo(self, modality: Modality) -> np.ndarray:
        width, height = self.inference.preprocessor.get_standard_size(modality)
        rng = np.random.default_rng(self.seed)
        return rng.integers(0, 256, size=(height, width, 3), dtype=np.uint8)

    def _run_check(self, name: str, check: Callable[[], Tuple[bool, float, str]]) -> DiagnosticCheck:
        start = time.perf_counter()
        try:
            passed, score, details = check()
        except VeriMedError as e:
            passed, score, details = False, 0.0, f"{type(e).__name__}: {e}"
        duration_ms = (time.perf_counter() - start) * 1000.0

        result = DiagnosticCheck(name, passed, score, details, duration_ms)
        log = self.logger.info if passed else self.logger.warning
        log(f"Check '{name}': {'passed' if passed else 'failed'} ({details})")
        return result

    def _selected_types(self, model_type: Optional[str]) -> List[Modality]:
        if model_type is None or model_type == "all":
            return list(MODEL_TYPES)
        return [Modality.parse(model_type)]

    def _scan_modalities(self, selected: List[Modality]) -> List[Modality]:
        """Image modalities to photograph; fusion needs at least one of them."""
        images = [m for m in selected if m.is_image]
        return images or list(IMAGE_MODALITIES)

    def run(self, model_type: Optional[str] = None, iterations: int = 5) -> DiagnosticReport:
        """
        Run every check.

        Args:
            model_type: One model type, or None / "all" for every slot
            iterations: Number of timed scans in the speed check

        Returns:
            DiagnosticReport with one entry per check
        """
        if iterations < 1:
            raise ValueError("iterations must be at least 1")

        selected = self._selected_types(model_type)
        photos = {m: self._synthetic_photo(m) for m in self._scan_modalities(selected)}
        report = DiagnosticReport(model_type=model_type or "all")
        start = time.perf_counter()
        self.logger.info(f"Running diagnostics for {report.model_type}")

        def initialization():
            ready = self.inference.is_initialized
            return ready, 100.0 if ready else 0.0, "ready" if ready else "initialize() has not been called"

        def model_loading():
            active = self.inference.active_model_types()
            names = ", ".join(m.value for m in active) or "none"
            return bool(active), 100.0 if active else 0.0, f"active models: {names}"

        report.checks.append(self._run_check("initialization", initialization))
        report.checks.append(self._run_check("model_loading", model_loading))

        if not self.inference.is_initialized:
            report.duration_ms = (time.perf_counter() - start) * 1000.0
            return report

        for current in selected:
            report.checks.append(self._run_check(
                f"{current.value}_model", lambda current=current: self._check_model(current, photos)
            ))

        def inference_capability():
            result = self.inference.analyze_images(photos)
            passed = 0.0 <= result.confidence <= 1.0
            return passed, 100.0 if passed else 0.0, f"confidence {result.confidence:.3f}"

        def inference_speed():
            timings = []
            for _ in range(iterations):
                timings.append(self.inference.analyze_images(photos).processing_time_ms)
            average = sum(timings) / len(timings)
            limit = self.inference.config.max_inference_time_ms
            score = max(0.0, 100.0 - average / limit * 100.0)
            return average < limit, score, f"average {average:.1f}ms over {iterations} scans (limit {limit:.0f}ms)"

        def error_handling():
            modality = next(iter(photos))
            try:
                self.inference.analyze_images({modality: np.zeros((4, 4), dtype=np.float32)[..., None]})
            except PreprocessingError as e:
                return True, 100.0, f"malformed photo rejected: {e.message}"
            return False, 0.0, "malformed photo was accepted"

        report.checks.append(self._run_check("inference_capability", inference_capability))
        report.checks.append(self._run_check("inference_speed", inference_speed))
        report.checks.append(self._run_check("error_handling", error_handling))

        report.duration_ms = (time.perf_counter() - start) * 1000.0
        self.logger.info(
            f"Diagnostics finished: {report.passed_checks}/{report.total_checks} passed "
            f"({report.overall_score:.1f}%)"
        )
        return report

    def _check_model(self, model_type: Modality, photos: Dict) -> Tuple[bool, float, str]:
        if not self.inference.config.is_enabled(model_type.value):
            return False, 0.0, "disabled in configuration"
        loaded = self.inference.registry.get_active_model(model_type)
        if loaded is None:
            return False, 0.0, "no active version"

        result = self.inference.analyze_images(photos)
        if model_type == Modality.FUSION:
            score = result.fusion_score
        else:
            score = result.individual_scores[model_type.value]
        if score is None:
            return False, 0.0, f"version {loaded.version.version} produced no score"
        return True, 100.0, f"version {loaded.version.version} scored {score:.3f}"
