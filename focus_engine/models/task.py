"""Task Model — work items, source conversations, and strategic priorities."""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class TaskStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class TaskSource(str, Enum):
    EMAIL = "email"         # Extracted from a conversation thread (source_id = thread id)
    CALENDAR = "calendar"
    TASKS = "tasks"         # External task list; completion is mirrored back
    MANUAL = "manual"


class Effort(str, Enum):
    SMALL = "S"
    MEDIUM = "M"
    LARGE = "L"


class StakeholderClass(str, Enum):
    NONE = "none"
    INTERNAL = "internal"
    EXTERNAL = "external"
    EXECUTIVE = "executive"


class PriorityKind(str, Enum):
    OKR = "okr"
    FOCUS_AREA = "focus_area"
    STAKEHOLDER = "stakeholder"
    PROJECT = "project"


class PriorityMatches(BaseModel):
    """Which strategic priorities a task was judged to serve."""

    okrs: List[str] = []
    focus_areas: List[str] = []
    projects: List[str] = []
    key_stakeholder: bool = False

    def is_empty(self) -> bool:
        return not (self.okrs or self.focus_areas or self.projects or self.key_stakeholder)

    def names(self) -> List[str]:
        """Matched priority names in a stable order, key-stakeholder flag last."""
        names = [*self.okrs, *self.focus_areas, *self.projects]
        if self.key_stakeholder:
            names.append("key stakeholder")
        return names


class Task(BaseModel):
    """A pending or finished work item. Scored by the planner."""

    id: str
    source: TaskSource = TaskSource.MANUAL
    source_id: str = ""                     # Source-local id (thread id for email tasks)
    title: str
    description: str = ""
    due_ts: Optional[datetime] = None
    project: str = ""
    impact: int = Field(ge=0, le=5, default=0)      # 0 = unset
    urgency: int = Field(ge=0, le=5, default=0)     # 0 = unset; derived from due_ts when present
    effort: Effort = Effort.MEDIUM
    stakeholder: StakeholderClass = StakeholderClass.NONE
    status: TaskStatus = TaskStatus.PENDING
    score: int = Field(ge=0, le=100, default=0)
    matched_priorities: PriorityMatches = PriorityMatches()
    metadata: dict = {}                     # Source-specific details (e.g., task list name)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
    completed_at: Optional[datetime] = None


class Message(BaseModel):
    """One message of a source conversation."""

    id: str
    thread_id: str
    sender: str = ""
    recipients: str = ""
    subject: str = ""
    body: str = ""
    labels: List[str] = []
    timestamp: datetime


class Thread(BaseModel):
    """A source conversation. Written once per processing pass."""

    id: str
    summary: str = ""
    task_count: int = 0
    priority_score: int = 0                 # Max score of the thread's tasks
    relevant_to_user: bool = False
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class Priority(BaseModel):
    """A strategic anchor consumed by the alignment delegate."""

    id: Optional[int] = None
    kind: PriorityKind
    text: str
    notes: str = ""


class PrioritySet(BaseModel):
    """Priorities grouped by kind, as handed to the reasoning capability."""

    okrs: List[str] = []
    focus_areas: List[str] = []
    key_stakeholders: List[str] = []
    key_projects: List[str] = []

    def is_empty(self) -> bool:
        return not (self.okrs or self.focus_areas or self.key_stakeholders or self.key_projects)

    @classmethod
    def from_priorities(cls, priorities: List[Priority]) -> "PrioritySet":
        grouped = cls()
        for p in priorities:
            if p.kind == PriorityKind.OKR:
                grouped.okrs.append(p.text)
            elif p.kind == PriorityKind.FOCUS_AREA:
                grouped.focus_areas.append(p.text)
            elif p.kind == PriorityKind.STAKEHOLDER:
                grouped.key_stakeholders.append(p.text)
            elif p.kind == PriorityKind.PROJECT:
                grouped.key_projects.append(p.text)
        return grouped


class DailyPlan(BaseModel):
    """Time-blocked day built from the highest-ranked pending tasks."""

    date: datetime
    morning: List[Task] = []                # 9:00 - 11:00, never Large effort
    afternoon: List[Task] = []              # 2:00 - 4:00, next in rank order
    quick_wins: List[Task] = []             # 4:00 - 5:00, Small effort only

    def render(self) -> str:
        rule = "-" * 41
        lines = [f"Daily Plan - {self.date:%A, %B} {self.date.day}", "=" * 41, ""]
        for heading, tasks in (
            ("Morning Focus Block (9:00 - 11:00 AM)", self.morning),
            ("Afternoon Focus Block (2:00 - 4:00 PM)", self.afternoon),
            ("Quick Wins (4:00 - 5:00 PM)", self.quick_wins),
        ):
            lines += [heading, rule]
            lines += [f"- {t.title}" for t in tasks]
            lines.append("")
        return "\n".join(lines).rstrip("\n") + "\n"
