"""Tests for the Hybrid Blender phase machine."""

import logging

import pytest

from focus_engine.models.scoring import BootstrapPhase, HybridPhase, KNNPhase
from focus_engine.models.task import Task
from focus_engine.scoring.hybrid import HybridBlender, blend, phase_for_count, to_percentage, to_scale


class _FakeNeighbors:
    """Stands in for NeighborScorer with a fixed count and adjustment."""

    def __init__(self, count: int, adjustment: float = 0.0, error: Exception = None):
        self.count = count
        self._adjustment = adjustment
        self.error = error
        self.consulted = 0

    def feedback_count(self):
        return self.count

    def score_with_knn(self, task, base_score):
        self.consulted += 1
        if self.error is not None:
            raise self.error
        score = max(1.0, min(10.0, base_score + self._adjustment))
        return score, self._adjustment, self._adjustment != 0


def _make_task() -> Task:
    return Task(id="task_1", title="Reply to investor")


class TestPhaseForCount:
    @pytest.mark.parametrize("count", [0, 19])
    def test_bootstrap(self, count):
        assert isinstance(phase_for_count(count), BootstrapPhase)

    @pytest.mark.parametrize("count", [20, 99])
    def test_hybrid(self, count):
        assert isinstance(phase_for_count(count), HybridPhase)

    @pytest.mark.parametrize("count", [100, 250])
    def test_knn(self, count):
        assert isinstance(phase_for_count(count), KNNPhase)

    def test_weight_at_60_is_half(self):
        assert phase_for_count(60).weight == pytest.approx(0.5)

    def test_weight_bounds(self):
        assert phase_for_count(20).weight == 0.0
        assert phase_for_count(99).weight == pytest.approx(79 / 80)

    def test_weight_only_exists_in_hybrid(self):
        assert not hasattr(phase_for_count(5), "weight")
        assert not hasattr(phase_for_count(150), "weight")


class TestBlend:
    def test_half_weight(self):
        assert blend(6.0, 8.0, 0.5) == pytest.approx(7.0)

    def test_extremes(self):
        assert blend(6.0, 8.0, 0.0) == 6.0
        assert blend(6.0, 8.0, 1.0) == 8.0

    def test_scale_conversion(self):
        assert to_scale(60) == 6.0
        assert to_scale(0) == 1.0
        assert to_percentage(7.0) == 70
        assert to_percentage(12.0) == 100


class TestHybridBlender:
    def test_bootstrap_does_not_consult_knn(self):
        neighbors = _FakeNeighbors(count=5, adjustment=2.0)
        outcome = HybridBlender(neighbors).score(_make_task(), 60)

        assert outcome.final_score == 60
        assert outcome.used_knn is False
        assert neighbors.consulted == 0

    def test_hybrid_blends(self):
        # base 6.0, knn 8.0, w = 0.5 -> 7.0
        neighbors = _FakeNeighbors(count=60, adjustment=2.0)
        outcome = HybridBlender(neighbors).score(_make_task(), 60)

        assert outcome.final_score == 70
        assert outcome.used_knn is True
        assert outcome.adjustment == 2.0
        assert isinstance(outcome.phase, HybridPhase)

    def test_hybrid_falls_back_fully_without_signal(self):
        neighbors = _FakeNeighbors(count=60, adjustment=0.0)
        outcome = HybridBlender(neighbors).score(_make_task(), 63)

        assert outcome.final_score == 63
        assert outcome.used_knn is False

    def test_hybrid_falls_back_on_failure(self):
        neighbors = _FakeNeighbors(count=60, error=ConnectionError("down"))
        outcome = HybridBlender(neighbors).score(_make_task(), 63)

        assert outcome.final_score == 63
        assert outcome.used_knn is False

    def test_knn_phase_uses_knn_score(self):
        neighbors = _FakeNeighbors(count=150, adjustment=-1.5)
        outcome = HybridBlender(neighbors).score(_make_task(), 60)

        assert outcome.final_score == 45
        assert outcome.used_knn is True

    def test_knn_phase_fallback_is_logged(self, caplog):
        neighbors = _FakeNeighbors(count=150, adjustment=0.0)
        with caplog.at_level(logging.WARNING, logger="focus_engine.scoring.hybrid"):
            outcome = HybridBlender(neighbors).score(_make_task(), 55)

        assert outcome.final_score == 55
        assert "K-NN unavailable" in caplog.text

    def test_phase_can_be_supplied(self):
        neighbors = _FakeNeighbors(count=0, adjustment=2.0)
        outcome = HybridBlender(neighbors).score(
            _make_task(), 60, phase=HybridPhase(feedback_count=60, weight=0.5)
        )
        assert outcome.final_score == 70

    def test_result_is_clamped(self):
        neighbors = _FakeNeighbors(count=150, adjustment=2.0)
        outcome = HybridBlender(neighbors).score(_make_task(), 95)
        assert outcome.final_score == 100

    def test_current_phase_reports_count(self):
        phase, count = HybridBlender(_FakeNeighbors(count=42)).current_phase()
        assert count == 42
        assert isinstance(phase, HybridPhase)
        assert phase.weight == pytest.approx(22 / 80)
