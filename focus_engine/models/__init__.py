"""Focus Engine data models."""

from focus_engine.models.feedback import Feedback, Neighbor, TaskEmbedding
from focus_engine.models.scheduler import (
    BatchResult,
    JobOutcome,
    JobState,
    JobStatus,
    ReprocessResult,
    UsageRecord,
)
from focus_engine.models.scoring import (
    AlignmentResult,
    BootstrapPhase,
    HybridPhase,
    KNNPhase,
    ScoreOutcome,
    ScoringPhase,
)
from focus_engine.models.task import (
    DailyPlan,
    Effort,
    Message,
    Priority,
    PriorityKind,
    PriorityMatches,
    PrioritySet,
    StakeholderClass,
    Task,
    TaskSource,
    TaskStatus,
    Thread,
)

__all__ = [
    "AlignmentResult",
    "BatchResult",
    "BootstrapPhase",
    "DailyPlan",
    "Effort",
    "Feedback",
    "HybridPhase",
    "JobOutcome",
    "JobState",
    "JobStatus",
    "KNNPhase",
    "Message",
    "Neighbor",
    "Priority",
    "PriorityKind",
    "PriorityMatches",
    "PrioritySet",
    "ReprocessResult",
    "ScoreOutcome",
    "ScoringPhase",
    "StakeholderClass",
    "Task",
    "TaskEmbedding",
    "TaskSource",
    "TaskStatus",
    "Thread",
    "UsageRecord",
]
