"""Scoring Model — alignment results, blending phases, and score outcomes."""

from typing import Literal, Optional, Union

from pydantic import BaseModel, Field

from focus_engine.models.task import PriorityMatches


class AlignmentResult(BaseModel):
    """Output of a strategic-alignment evaluation."""

    score: float = Field(ge=0.0, le=5.0, default=0.0)
    matches: PriorityMatches = PriorityMatches()
    reasoning: str = ""
    error: Optional[str] = None             # Set when the evaluation failed soft


class BootstrapPhase(BaseModel):
    """Too little feedback to trust similarity; deterministic score only."""

    kind: Literal["bootstrap"] = "bootstrap"
    feedback_count: int

    def describe(self) -> str:
        return "Bootstrap: collecting feedback (deterministic/LLM only)"


class HybridPhase(BaseModel):
    """Blend deterministic and K-NN scores. The weight exists only in this phase."""

    kind: Literal["hybrid"] = "hybrid"
    feedback_count: int
    weight: float = Field(ge=0.0, le=1.0)

    def describe(self) -> str:
        return f"Hybrid: blending deterministic + K-NN ({self.weight:.0%} K-NN weight)"


class KNNPhase(BaseModel):
    """K-NN is the primary signal, deterministic score is the fallback."""

    kind: Literal["knn"] = "knn"
    feedback_count: int

    def describe(self) -> str:
        return "K-NN: learning from feedback (deterministic fallback)"


ScoringPhase = Union[BootstrapPhase, HybridPhase, KNNPhase]


class ScoreOutcome(BaseModel):
    """What the blender decided for one task."""

    task_id: str
    base_score: int                         # Deterministic/LLM percentage
    final_score: int                        # Persisted percentage
    phase: ScoringPhase = Field(discriminator="kind")
    used_knn: bool = False
    adjustment: Optional[float] = None      # K-NN delta on the 1-10 scale, if consulted
