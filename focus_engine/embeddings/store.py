"""
Embedding Store — one live, content-addressed embedding per task.

Behavioral Contract:
- The embedding input is built from the task's title, description, a
  human-readable source/project descriptor, and matched priority names.
- An embedding is stale when the sha256 of that input no longer matches the
  stored content_hash, or when it came from another model or has another
  dimensionality than the configured one. Stale or missing embeddings are
  regenerated (with bounded retry) and replace the old row.
- Every freshly generated vector has the configured dimensionality. A mismatch
  is a programming error and raises DimensionMismatchError; vectors are never
  truncated or padded.
"""

import hashlib
import logging
import time
from datetime import datetime
from typing import Callable, List, Optional, Sequence

import numpy as np

from focus_engine.embeddings.client import Embedder, EmbeddingError, generate_with_retry
from focus_engine.models.feedback import TaskEmbedding
from focus_engine.models.task import Task, TaskSource

logger = logging.getLogger(__name__)

SOURCE_DESCRIPTORS = {
    TaskSource.EMAIL: "Email inbox",
    TaskSource.CALENDAR: "Calendar",
    TaskSource.TASKS: "Task list",
    TaskSource.MANUAL: "Manual entry",
}


class DimensionMismatchError(ValueError):
    """Two vectors (or a vector and the configured size) disagree on length."""


def describe_source(source: TaskSource, project: str = "") -> str:
    parts = [SOURCE_DESCRIPTORS.get(source, str(source.value))]
    if project:
        parts.append(f"project {project}")
    return " - ".join(parts)


def build_embedding_content(task: Task) -> str:
    """The text that gets embedded for a task, one labelled field per line."""
    parts = []
    if task.title:
        parts.append(f"Task: {task.title}")
    if task.description:
        parts.append(f"Description: {task.description}")
    parts.append(f"Source: {describe_source(task.source, task.project)}")
    names = task.matched_priorities.names()
    if names:
        parts.append(f"Aligned with priorities: {', '.join(names)}")
    return "\n".join(parts)


def hash_content(content: str) -> str:
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """
    Cosine similarity in [-1, 1].
    Raises DimensionMismatchError on unequal or empty vectors; a zero vector
    has no direction and is similar to nothing (0.0).
    """
    if len(a) != len(b):
        raise DimensionMismatchError(f"vector lengths differ: {len(a)} != {len(b)}")
    if len(a) == 0:
        raise DimensionMismatchError("cannot compare empty vectors")

    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    norm = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if norm == 0.0:
        return 0.0
    return float(np.clip(np.dot(va, vb) / norm, -1.0, 1.0))


class EmbeddingStore:
    """Keeps task embeddings fresh, delegating generation to an Embedder."""

    def __init__(
        self,
        store,
        embedder: Embedder,
        dimension: Optional[int] = None,
        attempts: int = 3,
        backoff_seconds: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.store = store
        self.embedder = embedder
        self.dimension = dimension
        self.attempts = attempts
        self.backoff_seconds = backoff_seconds
        self._sleep = sleep

    def _check_dimension(self, vector: List[float], task_id: str) -> None:
        if self.dimension is not None and len(vector) != self.dimension:
            raise DimensionMismatchError(
                f"embedding for task {task_id} has {len(vector)} dimensions, "
                f"expected {self.dimension}"
            )

    @property
    def model(self) -> str:
        return getattr(self.embedder, "model", "unknown")

    def is_stale(
        self, task: Task, existing: Optional[TaskEmbedding], content_hash: Optional[str] = None
    ) -> bool:
        if existing is None:
            return True
        if content_hash is None:
            content_hash = hash_content(build_embedding_content(task))
        if existing.content_hash != content_hash or existing.model != self.model:
            return True
        return self.dimension is not None and len(existing.vector) != self.dimension

    def ensure_embedding(self, task: Task) -> List[float]:
        """
        The task's current vector, generating and persisting it if missing or stale.
        Raises EmbeddingError when generation fails after retries.
        """
        content = build_embedding_content(task)
        content_hash = hash_content(content)

        existing = self.store.get_embedding(task.id)
        if not self.is_stale(task, existing, content_hash):
            return existing.vector

        vector = generate_with_retry(
            self.embedder,
            content,
            attempts=self.attempts,
            backoff_seconds=self.backoff_seconds,
            sleep=self._sleep,
        )
        self._check_dimension(vector, task.id)

        self.store.save_embedding(
            TaskEmbedding(
                task_id=task.id,
                vector=vector,
                content_hash=content_hash,
                model=self.model,
                generated_at=datetime.utcnow(),
            )
        )
        logger.debug(
            "%s embedding for task %s",
            "Regenerated" if existing is not None else "Generated",
            task.id,
        )
        return vector

    def try_ensure_embedding(self, task: Task) -> Optional[List[float]]:
        """ensure_embedding, but an unavailable capability yields None."""
        try:
            return self.ensure_embedding(task)
        except EmbeddingError as e:
            logger.warning("Embedding unavailable for task %s, skipping K-NN: %s", task.id, e)
            return None
