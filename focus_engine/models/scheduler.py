"""Scheduler Model — job states, batch results, and usage ledger entries."""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class JobStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"


class JobOutcome(str, Enum):
    """How the most recent tick of a job ended."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED_OVERLAP = "skipped_overlap"     # Previous run still going; tick dropped


class JobState(BaseModel):
    """Observable state of one named job."""

    name: str
    status: JobStatus = JobStatus.IDLE
    runs: int = 0
    skipped: int = 0                        # Ticks dropped because the previous run was still going
    failures: int = 0
    last_started_at: Optional[datetime] = None
    last_duration_seconds: Optional[float] = None
    last_error: Optional[str] = None
    last_outcome: Optional[JobOutcome] = None


class BatchResult(BaseModel):
    """Outcome of one summarize+extract batch."""

    total: int
    attempted: int = 0
    succeeded: int = 0
    failed: int = 0
    tasks_extracted: int = 0
    quota_exhausted: bool = False
    cancelled: bool = False
    estimated_tokens: int = 0
    estimated_cost: float = 0.0
    actual_tokens: int = 0
    actual_cost: float = 0.0


class ReprocessResult(BaseModel):
    """Outcome of rebuilding extracted tasks from stored summaries."""

    threads: int
    deleted: int
    extracted: int
    quota_exhausted: bool = False


class UsageRecord(BaseModel):
    """One entry of the reasoning-capability usage ledger."""

    service: str
    action: str
    tokens: int = 0
    cost: float = 0.0
    duration_ms: int = 0
    error: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
