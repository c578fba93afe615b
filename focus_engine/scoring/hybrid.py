"""
Hybrid Blender — how much to trust learned feedback versus the rubric.

Phases are a pure function of the total feedback count n:

    Bootstrap   n < 20          base score only, K-NN not consulted
    Hybrid      20 <= n < 100   blend with weight w = (n - 20) / 80
    KNN         n >= 100        K-NN score, base score as fallback

Blending happens on a 1-10 scale: the base percentage is divided by ten,
blended, clamped to [1, 10], and scaled back to a whole percentage.

When K-NN yields nothing usable (cold task, zero adjustment, capability
failure) the base score is returned unchanged in every phase. Hybrid never
blends with a zero K-NN contribution.
"""

import logging
from typing import Optional, Tuple

from focus_engine.embeddings.store import DimensionMismatchError
from focus_engine.models.scoring import (
    BootstrapPhase,
    HybridPhase,
    KNNPhase,
    ScoreOutcome,
    ScoringPhase,
)
from focus_engine.models.task import Task
from focus_engine.scoring.deterministic import round_half_up
from focus_engine.scoring.knn import NeighborScorer, clamp_scale

logger = logging.getLogger(__name__)

BOOTSTRAP_THRESHOLD = 20
KNN_THRESHOLD = 100


def phase_for_count(
    count: int,
    bootstrap_threshold: int = BOOTSTRAP_THRESHOLD,
    knn_threshold: int = KNN_THRESHOLD,
) -> ScoringPhase:
    if count < bootstrap_threshold:
        return BootstrapPhase(feedback_count=count)
    if count < knn_threshold:
        weight = (count - bootstrap_threshold) / (knn_threshold - bootstrap_threshold)
        return HybridPhase(feedback_count=count, weight=weight)
    return KNNPhase(feedback_count=count)


def blend(base_score: float, knn_score: float, weight: float) -> float:
    """(1 - w) * base + w * knn, unclamped."""
    return (1.0 - weight) * base_score + weight * knn_score


def to_scale(percentage: int) -> float:
    return clamp_scale(percentage / 10.0)


def to_percentage(scale_score: float) -> int:
    return max(0, min(100, round_half_up(clamp_scale(scale_score) * 10.0)))


class HybridBlender:
    """Turns a base percentage into the final one for the current phase."""

    def __init__(
        self,
        neighbors: NeighborScorer,
        bootstrap_threshold: int = BOOTSTRAP_THRESHOLD,
        knn_threshold: int = KNN_THRESHOLD,
    ):
        self.neighbors = neighbors
        self.bootstrap_threshold = bootstrap_threshold
        self.knn_threshold = knn_threshold

    def current_phase(self) -> Tuple[ScoringPhase, int]:
        count = self.neighbors.feedback_count()
        return phase_for_count(count, self.bootstrap_threshold, self.knn_threshold), count

    def _consult_knn(self, task: Task, base_scale: float) -> Optional[Tuple[float, float]]:
        """(knn_score, adjustment) on the 1-10 scale, or None when unusable."""
        try:
            knn_score, adjustment, used = self.neighbors.score_with_knn(task, base_scale)
        except DimensionMismatchError:
            raise
        except Exception as e:
            logger.warning("K-NN scoring failed for task %s: %s", task.id, e)
            return None
        if not used:
            return None
        return knn_score, adjustment

    def score(
        self, task: Task, base_score: int, phase: Optional[ScoringPhase] = None
    ) -> ScoreOutcome:
        """
        Final percentage for a task.
        Pass `phase` to reuse one phase for a whole scoring pass.
        """
        if phase is None:
            try:
                phase, _ = self.current_phase()
            except Exception as e:
                logger.warning("Could not determine scoring phase, using base score: %s", e)
                phase = BootstrapPhase(feedback_count=0)

        outcome = ScoreOutcome(
            task_id=task.id, base_score=base_score, final_score=base_score, phase=phase
        )
        if isinstance(phase, BootstrapPhase):
            return outcome

        base_scale = to_scale(base_score)
        knn = self._consult_knn(task, base_scale)

        if knn is None:
            if isinstance(phase, KNNPhase):
                logger.warning(
                    "K-NN unavailable in KNN phase (%d feedback), using base score for task %s",
                    phase.feedback_count,
                    task.id,
                )
            return outcome

        knn_score, adjustment = knn
        outcome.used_knn = True
        outcome.adjustment = adjustment

        if isinstance(phase, HybridPhase):
            blended = clamp_scale(blend(base_scale, knn_score, phase.weight))
            logger.debug(
                "Hybrid scoring %s: base=%.2f knn=%.2f weight=%.2f blended=%.2f",
                task.id,
                base_scale,
                knn_score,
                phase.weight,
                blended,
            )
            outcome.final_score = to_percentage(blended)
        else:
            logger.debug("K-NN scoring %s: %.2f (base was %.2f)", task.id, knn_score, base_scale)
            outcome.final_score = to_percentage(knn_score)
        return outcome
