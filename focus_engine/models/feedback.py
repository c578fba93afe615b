"""Feedback Model — user votes, task embeddings, and neighbors derived from them."""

from datetime import datetime
from typing import List, Literal

from pydantic import BaseModel, Field


class TaskEmbedding(BaseModel):
    """The single live embedding of a task. Stale when its content_hash or model no longer matches."""

    task_id: str
    vector: List[float]
    content_hash: str                       # sha256 of the embedding input text
    model: str
    generated_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def dimension(self) -> int:
        return len(self.vector)


class Feedback(BaseModel):
    """A thumbs-up/down on a previously shown score. Append-only."""

    id: str
    task_id: str
    vote: Literal[-1, 1]
    reason: str = ""
    original_score: float
    adjusted_score: float
    created_at: datetime = Field(default_factory=datetime.utcnow)

    model_config = {"frozen": True}


class Neighbor(BaseModel):
    """A task with feedback, ranked by similarity to the task being scored."""

    task_id: str
    vote: int
    similarity: float                       # Cosine similarity, -1..1
    reason: str = ""
    original_score: float = 0.0
    adjusted_score: float = 0.0
