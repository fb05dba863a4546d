"""
Confidence aggregation tests.
"""

import pytest

from verimed.inference.aggregation import ConfidenceAggregator


@pytest.fixture
def aggregator():
    return ConfidenceAggregator(threshold=0.7)


class TestWeightedFallback:
    def test_partial_scores_renormalized(self, aggregator):
        confidence, is_counterfeit = aggregator.aggregate(
            {"packaging": 0.9, "pill": 0.3, "batch_code": None}, fusion_score=None
        )

        assert confidence == pytest.approx((0.9 * 0.4 + 0.3 * 0.3) / 0.7)
        assert confidence == pytest.approx(0.642857, abs=1e-6)
        assert is_counterfeit is True

    def test_all_scores(self, aggregator):
        confidence, is_counterfeit = aggregator.aggregate(
            {"packaging": 0.9, "pill": 0.8, "batch_code": 0.7}
        )

        assert confidence == pytest.approx(0.9 * 0.4 + 0.8 * 0.3 + 0.7 * 0.3)
        assert is_counterfeit is False

    def test_single_score_used_directly(self, aggregator):
        confidence, _ = aggregator.aggregate({"pill": 0.85})

        assert confidence == pytest.approx(0.85)

    def test_zero_is_a_present_score(self, aggregator):
        confidence, is_counterfeit = aggregator.aggregate({"packaging": 0.0, "pill": 1.0})

        assert confidence == pytest.approx(0.3 / 0.7)
        assert is_counterfeit is True

    def test_no_scores_is_neutral_and_counterfeit(self, aggregator):
        confidence, is_counterfeit = aggregator.aggregate({}, fusion_score=None)

        assert confidence == 0.5
        assert is_counterfeit is True


class TestFusion:
    def test_fusion_overrides_weighted_average(self, aggregator):
        confidence, is_counterfeit = aggregator.aggregate(
            {"packaging": 0.1, "pill": 0.1, "batch_code": 0.1}, fusion_score=0.85
        )

        assert confidence == 0.85
        assert is_counterfeit is False

    def test_zero_fusion_falls_back(self, aggregator):
        confidence, _ = aggregator.aggregate({"packaging": 0.9}, fusion_score=0.0)

        assert confidence == pytest.approx(0.9)


class TestThreshold:
    def test_equal_to_threshold_is_authentic(self, aggregator):
        _, is_counterfeit = aggregator.aggregate({}, fusion_score=0.7)

        assert is_counterfeit is False

    def test_just_below_threshold_is_counterfeit(self, aggregator):
        _, is_counterfeit = aggregator.aggregate({}, fusion_score=0.6999)

        assert is_counterfeit is True

    def test_confidence_clamped(self, aggregator):
        confidence, _ = aggregator.aggregate({}, fusion_score=1.2)

        assert confidence == 1.0

    def test_invalid_threshold(self):
        with pytest.raises(ValueError):
            ConfidenceAggregator(threshold=1.5)


class TestReasoning:
    def test_lines_per_contributing_modality(self, aggregator):
        scores = {"packaging": 0.9, "pill": None, "batch_code": 0.6}
        confidence, is_counterfeit = aggregator.aggregate(scores)

        lines = aggregator.reasoning(scores, None, confidence, is_counterfeit)

        assert lines[0] == "Packaging analysis: 90.0% authentic"
        assert lines[1] == "Batch code validation: 60.0% authentic"
        assert len(lines) == 3
        assert lines[-1].startswith("Medicine appears to be AUTHENTIC")

    def test_fusion_line_and_summary(self, aggregator):
        lines = aggregator.reasoning({"pill": 0.4}, 0.65, 0.65, True)

        assert lines == [
            "Pill recognition: 40.0% authentic",
            "Fusion analysis: 65.0% authentic",
            "Medicine appears to be COUNTERFEIT (65.0% confidence)",
        ]
