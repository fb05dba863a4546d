"""
Confidence aggregation.
Turns per-modality and fusion scores into a verdict with human-readable reasoning.
"""

from typing import Dict, List, Optional, Tuple

from ..data.records import Modality, IMAGE_MODALITIES


WEIGHTS = {
    Modality.PACKAGING: 0.4,
    Modality.PILL: 0.3,
    Modality.BATCH_CODE: 0.3,
}

_LABELS = {
    Modality.PACKAGING: "Packaging analysis",
    Modality.PILL: "Pill recognition",
    Modality.BATCH_CODE: "Batch code validation",
}


class ConfidenceAggregator:
    """
    Combines scores into an authenticity confidence.

    Fusion takes precedence when it produced a positive score; otherwise the
    present modality scores are averaged with weights renormalized over the
    modalities that actually produced a score.
    """

    def __init__(self, threshold: float = 0.7):
        if not 0.0 <= threshold <= 1.0:
            raise ValueError(f"threshold must be between 0 and 1, got {threshold}")
        self.threshold = threshold

    @staticmethod
    def _present(individual_scores: Dict) -> Dict[Modality, float]:
        scores = {}
        for key, value in (individual_scores or {}).items():
            if value is None:
                continue
            scores[Modality.parse(key)] = float(value)
        return scores

    def confidence(self, individual_scores: Dict, fusion_score: Optional[float] = None) -> float:
        """
        Aggregate confidence in [0, 1].

        Args:
            individual_scores: Score per modality; None marks an absent score
            fusion_score: Fusion output, if fusion ran
        """
        if fusion_score is not None and fusion_score > 0:
            value = float(fusion_score)
        else:
            scores = self._present(individual_scores)
            weighted = [(WEIGHTS[m], s) for m, s in scores.items() if m in WEIGHTS]
            total_weight = sum(w for w, _ in weighted)
            if total_weight > 0:
                value = sum(w * s for w, s in weighted) / total_weight
            else:
                value = 0.5
        return min(1.0, max(0.0, value))

    def aggregate(self, individual_scores: Dict, fusion_score: Optional[float] = None) -> Tuple[float, bool]:
        """
        Returns:
            Tuple of (confidence, is_counterfeit); counterfeit when confidence < threshold
        """
        confidence = self.confidence(individual_scores, fusion_score)
        return confidence, confidence < self.threshold

    def reasoning(
        self,
        individual_scores: Dict,
        fusion_score: Optional[float],
        confidence: float,
        is_counterfeit: bool
    ) -> List[str]:
        """One line per contributing modality, fusion when used, then a summary."""
        scores = self._present(individual_scores)
        lines = []
        for modality in IMAGE_MODALITIES:
            if modality in scores:
                lines.append(f"{_LABELS[modality]}: {scores[modality] * 100:.1f}% authentic")
        if fusion_score is not None and fusion_score > 0:
            lines.append(f"Fusion analysis: {fusion_score * 100:.1f}% authentic")

        verdict = "COUNTERFEIT" if is_counterfeit else "AUTHENTIC"
        lines.append(f"Medicine appears to be {verdict} ({confidence * 100:.1f}% confidence)")
        return lines
