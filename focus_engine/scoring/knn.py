"""
Neighbor Scorer — learns from the user's votes on similar tasks.

Behavioral Contract:
- Candidates are tasks with both an embedding and feedback, excluding the
  target. A task with several votes contributes one candidate per vote.
- Only embeddings from the current model, with the target's length, are
  candidates. Leftovers from an earlier model never block scoring.
- Candidates are ranked by cosine similarity (descending) and the top K kept.
- Negative similarities carry no weight. The adjustment is
  2 * sum(vote * weight) / sum(weight), which lies in [-2, 2].
- No usable signal (no candidates, or zero total weight) means adjustment 0.
- All candidates are read in one query, so one scan sees one snapshot.
"""

import logging
from typing import List, Optional, Sequence, Tuple

from focus_engine.embeddings.store import EmbeddingStore, cosine_similarity
from focus_engine.models.feedback import Neighbor
from focus_engine.models.task import Task

logger = logging.getLogger(__name__)

DEFAULT_K = 5
MAX_ADJUSTMENT = 2.0

# Bounds of the internal 1-10 scale the adjustment is applied on
MIN_SCALE_SCORE = 1.0
MAX_SCALE_SCORE = 10.0


def clamp_scale(value: float) -> float:
    return max(MIN_SCALE_SCORE, min(MAX_SCALE_SCORE, value))


def weighted_vote(neighbors: Sequence[Neighbor]) -> float:
    """Similarity-weighted mean vote scaled to [-2, 2]; 0 when nothing is similar."""
    weighted_sum = 0.0
    total_weight = 0.0
    for neighbor in neighbors:
        weight = max(neighbor.similarity, 0.0)
        weighted_sum += neighbor.vote * weight
        total_weight += weight

    if total_weight == 0:
        return 0.0
    adjustment = (weighted_sum / total_weight) * MAX_ADJUSTMENT
    return max(-MAX_ADJUSTMENT, min(MAX_ADJUSTMENT, adjustment))


class NeighborScorer:
    """K-nearest-neighbor adjustment over the feedback log."""

    def __init__(self, store, embeddings: Optional[EmbeddingStore] = None, k: int = DEFAULT_K):
        self.store = store
        self.embeddings = embeddings
        self.k = k if k > 0 else DEFAULT_K

    def feedback_count(self) -> int:
        return self.store.count_feedback()

    def find_nearest_neighbors(
        self, task_id: str, target: Optional[Sequence[float]] = None
    ) -> List[Neighbor]:
        """
        Top-K most similar tasks with feedback. Empty if the target has no embedding.
        Only vectors from the current model are compared; stored vectors of
        another length are skipped with a warning.
        """
        model = self.embeddings.model if self.embeddings is not None else None
        if target is None:
            embedding = self.store.get_embedding(task_id)
            if embedding is None:
                return []
            target = embedding.vector
            model = model or embedding.model

        neighbors = []
        for other_id, vector, feedback in self.store.get_neighbor_candidates(task_id, model):
            if len(vector) != len(target):
                logger.warning(
                    "Skipping neighbor %s: %d dimensions, target has %d",
                    other_id,
                    len(vector),
                    len(target),
                )
                continue
            neighbors.append(
                Neighbor(
                    task_id=other_id,
                    vote=feedback.vote,
                    similarity=cosine_similarity(target, vector),
                    reason=feedback.reason,
                    original_score=feedback.original_score,
                    adjusted_score=feedback.adjusted_score,
                )
            )

        # Stable sort: equal similarities keep feedback order
        neighbors.sort(key=lambda n: n.similarity, reverse=True)
        return neighbors[: self.k]

    def adjustment(self, task_id: str, target: Optional[Sequence[float]] = None) -> float:
        """Score delta in [-2, 2] on the 1-10 scale."""
        return weighted_vote(self.find_nearest_neighbors(task_id, target))

    def score_with_knn(self, task: Task, base_score: float) -> Tuple[float, float, bool]:
        """
        Apply the adjustment to a 1-10 base score.
        Returns (score, adjustment, used); used is False when the adjustment is 0
        or the task's embedding could not be produced.
        """
        target = None
        if self.embeddings is not None:
            target = self.embeddings.try_ensure_embedding(task)
            if target is None:
                return base_score, 0.0, False

        adjustment = self.adjustment(task.id, target)
        return clamp_scale(base_score + adjustment), adjustment, adjustment != 0
