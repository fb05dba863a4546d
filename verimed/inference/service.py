"""
End-to-end scan: preprocess photos, score them with the active models,
fuse and aggregate into an authenticity verdict.
"""

import time
from dataclasses import dataclass, replace
from typing import Dict, List, Mapping, Optional

from ..data.preprocessing import ImagePreprocessor, ImageRef
from ..data.records import Modality, IMAGE_MODALITIES
from ..deployment.registry import LoadedModel, ModelRegistry
from ..utils import ConfigurationError, InferenceConfig, LoggerMixin, ModelError, NotInitializedError
from .aggregation import ConfidenceAggregator
from .scoring import FusionScorer, ModalityScorer


@dataclass
class InferenceResult:
    """Outcome of one scan."""
    is_counterfeit: bool
    confidence: float
    individual_scores: Dict[str, Optional[float]]
    fusion_score: Optional[float]
    reasoning: List[str]
    processing_time_ms: float
    model_versions: Dict[str, str]
    slow: bool = False
    known_name: Optional[str] = None
    known_manufacturer: Optional[str] = None
    known_batch_code: Optional[str] = None

    def to_dict(self) -> Dict:
        return {
            "is_counterfeit": self.is_counterfeit,
            "confidence": self.confidence,
            "individual_scores": dict(self.individual_scores),
            "fusion_score": self.fusion_score,
            "reasoning": list(self.reasoning),
            "processing_time_ms": self.processing_time_ms,
            "model_versions": dict(self.model_versions),
            "slow": self.slow,
            "known_name": self.known_name,
            "known_manufacturer": self.known_manufacturer,
            "known_batch_code": self.known_batch_code,
        }


class InferenceService(LoggerMixin):
    """
    Scores medicine photos with the models currently active in the registry.

    Model references are captured once at the start of a scan, so a deploy or
    rollback that happens mid-scan does not affect it.
    """

    def __init__(
        self,
        registry: ModelRegistry,
        preprocessor: ImagePreprocessor,
        config: Optional[InferenceConfig] = None
    ):
        """
        Initialize inference service.

        Args:
            registry: Source of the active models
            preprocessor: Shared image preprocessor
            config: Threshold, enabled models and the slow-scan limit
        """
        self.registry = registry
        self.preprocessor = preprocessor
        self.config = config or InferenceConfig()
        self.aggregator = ConfidenceAggregator(self.config.confidence_threshold)
        self._initialized = False

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    def initialize(self):
        """Load the registry and its active models."""
        if not self.registry.is_initialized:
            self.registry.initialize()
        self._initialized = True
        active = [m.value for m in self.active_model_types()]
        self.logger.info(f"Inference service initialized (active models: {', '.join(active) or 'none'})")

    def active_model_types(self) -> List[Modality]:
        return [
            model_type
            for model_type in IMAGE_MODALITIES + (Modality.FUSION,)
            if self.registry.get_active_model_version(model_type) is not None
        ]

    def _capture_models(self) -> Dict[Modality, Optional[LoadedModel]]:
        captured = {}
        for model_type in IMAGE_MODALITIES + (Modality.FUSION,):
            if not self.config.is_enabled(model_type.value):
                captured[model_type] = None
                continue
            captured[model_type] = self.registry.get_active_model(model_type)
        return captured

    def analyze_medicine(
        self,
        image_ref: ImageRef,
        modality,
        known_name: Optional[str] = None,
        known_manufacturer: Optional[str] = None,
        known_batch_code: Optional[str] = None
    ) -> InferenceResult:
        """
        Scan a single photo.

        Args:
            image_ref: Path or RGB array
            modality: packaging, pill or batch_code

        Returns:
            InferenceResult for the scan
        """
        return self.analyze_images(
            {modality: image_ref},
            known_name=known_name,
            known_manufacturer=known_manufacturer,
            known_batch_code=known_batch_code
        )

    def analyze_images(
        self,
        images: Mapping,
        known_name: Optional[str] = None,
        known_manufacturer: Optional[str] = None,
        known_batch_code: Optional[str] = None
    ) -> InferenceResult:
        """
        Scan several photos of one product, one per modality.

        Args:
            images: Mapping of modality to path or RGB array

        Returns:
            InferenceResult combining every modality that produced a score

        Raises:
            NotInitializedError: initialize() has not been called
            PreprocessingError: a photo could not be decoded or resized
        """
        if not self._initialized:
            raise NotInitializedError("Inference service is not initialized")

        start = time.perf_counter()
        captured = self._capture_models()

        # Preprocess everything first; a bad photo aborts the scan before scoring
        tensors = {}
        for key, image_ref in images.items():
            modality = Modality.parse(key)
            if not modality.is_image:
                raise ValueError("Fusion is not an image modality")
            tensors[modality] = self.preprocessor.preprocess(
                image_ref, modality, normalize=True, augment=False
            ).tensor

        scores: Dict[Modality, Optional[float]] = {m: None for m in IMAGE_MODALITIES}
        for modality, tensor in tensors.items():
            loaded = captured.get(modality)
            if loaded is None:
                self.logger.debug(f"No active {modality.value} model; score omitted")
                continue
            try:
                scores[modality] = ModalityScorer(loaded, self.registry.device).score(tensor)
            except ModelError as e:
                self.logger.error(f"{modality.value} scorer failed: {e}")

        fusion_score = None
        fusion_model = captured.get(Modality.FUSION)
        if fusion_model is not None and any(s is not None for s in scores.values()):
            try:
                fusion_score = FusionScorer(fusion_model, self.registry.device).fuse(
                    packaging=scores[Modality.PACKAGING],
                    pill=scores[Modality.PILL],
                    batch_code=scores[Modality.BATCH_CODE]
                )
            except ModelError as e:
                self.logger.error(f"Fusion scorer failed, using weighted average: {e}")

        confidence, is_counterfeit = self.aggregator.aggregate(scores, fusion_score)
        reasoning = self.aggregator.reasoning(scores, fusion_score, confidence, is_counterfeit)

        processing_time_ms = (time.perf_counter() - start) * 1000.0
        slow = processing_time_ms > self.config.max_inference_time_ms
        if slow:
            self.logger.warning(
                f"Inference took {processing_time_ms:.0f}ms "
                f"(limit {self.config.max_inference_time_ms:.0f}ms)"
            )

        used = [m for m, s in scores.items() if s is not None]
        if fusion_score is not None:
            used.append(Modality.FUSION)
        for model_type in used:
            self.registry.record_inference(model_type, processing_time_ms, version=captured[model_type].version)

        result = InferenceResult(
            is_counterfeit=is_counterfeit,
            confidence=confidence,
            individual_scores={m.value: s for m, s in scores.items()},
            fusion_score=fusion_score,
            reasoning=reasoning,
            processing_time_ms=processing_time_ms,
            model_versions={
                m.value: (loaded.version.version if loaded is not None else "N/A")
                for m, loaded in captured.items()
            },
            slow=slow,
            known_name=known_name,
            known_manufacturer=known_manufacturer,
            known_batch_code=known_batch_code
        )
        self.logger.info(
            f"Scan complete: {'COUNTERFEIT' if is_counterfeit else 'AUTHENTIC'} "
            f"({confidence * 100:.1f}%) in {processing_time_ms:.0f}ms"
        )
        return result

    def get_status(self) -> Dict:
        """Readiness and which model slots have an active version."""
        models = {}
        for model_type in IMAGE_MODALITIES + (Modality.FUSION,):
            version = self.registry.get_active_model_version(model_type)
            models[model_type.value] = {
                "enabled": self.config.is_enabled(model_type.value),
                "active_version": version.version if version is not None else None,
            }
        return {
            "initialized": self._initialized,
            "models": models,
            "confidence_threshold": self.config.confidence_threshold,
        }

    def update_config(self, **changes) -> InferenceConfig:
        """
        Change inference parameters without reloading models.

        Args:
            **changes: InferenceConfig fields to replace

        Returns:
            The new configuration
        """
        unknown = set(changes) - set(InferenceConfig.__dataclass_fields__)
        if unknown:
            raise ConfigurationError("Unknown inference options", context={"options": sorted(unknown)})
        updated = replace(self.config, **changes)
        self.config = updated
        self.aggregator = ConfidenceAggregator(updated.confidence_threshold)
        self.logger.info(f"Inference configuration updated: {', '.join(sorted(changes)) or 'no changes'}")
        return updated
