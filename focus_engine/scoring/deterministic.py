"""
Deterministic Scorer — the rubric behind every base score.

    raw = 0.3*alignment + 0.25*urgency + 0.2*impact
          + 0.15*stakeholder_weight - 0.1*effort_factor

raw is clamped to [0, 4] and mapped to a whole percentage with round-half-up.
Pure functions only: no storage, no network, no clock unless one is passed in.
"""

from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from focus_engine.models.task import Effort, StakeholderClass, Task

DEFAULT_LEVEL = 3
MAX_RAW_SCORE = 4.0

EFFORT_FACTORS = {
    Effort.SMALL: 0.5,
    Effort.MEDIUM: 1.0,
    Effort.LARGE: 1.5,
}

STAKEHOLDER_WEIGHTS = {
    StakeholderClass.NONE: 0.0,
    StakeholderClass.INTERNAL: 1.0,
    StakeholderClass.EXTERNAL: 1.5,
    StakeholderClass.EXECUTIVE: 2.0,
}

# (hours until due, urgency); first bucket that fits wins
URGENCY_BUCKETS = (
    (24.0, 5),
    (72.0, 4),
    (168.0, 3),
    (720.0, 2),
)


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves away from zero."""
    # Float noise (32.49999999999) must not decide which side of the half we land on.
    return int(Decimal(repr(round(value, 9))).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def urgency_from_due(due: datetime, now: Optional[datetime] = None) -> int:
    """Urgency 1-5 from time remaining; overdue counts as due now."""
    if now is None:
        now = datetime.utcnow()
    hours_until = (_naive_utc(due) - _naive_utc(now)).total_seconds() / 3600.0
    for limit, urgency in URGENCY_BUCKETS:
        if hours_until <= limit:
            return urgency
    return 1


def compute_raw_score(
    impact: int,
    urgency: int,
    effort: Effort,
    stakeholder: StakeholderClass,
    alignment: float,
) -> float:
    """Weighted rubric before clamping. Unset (0) impact and urgency count as 3."""
    impact = impact or DEFAULT_LEVEL
    urgency = urgency or DEFAULT_LEVEL
    alignment = max(0.0, min(5.0, alignment))

    return (
        0.3 * alignment
        + 0.25 * urgency
        + 0.2 * impact
        + 0.15 * STAKEHOLDER_WEIGHTS[stakeholder]
        - 0.1 * EFFORT_FACTORS[effort]
    )


def compute_score(
    impact: int,
    urgency: int,
    effort: Effort,
    stakeholder: StakeholderClass,
    alignment: float,
) -> int:
    """Priority percentage in [0, 100]."""
    raw = compute_raw_score(impact, urgency, effort, stakeholder, alignment)
    raw = max(0.0, min(MAX_RAW_SCORE, raw))
    return round_half_up(raw / MAX_RAW_SCORE * 100.0)


def score_task(task: Task, alignment: float) -> int:
    """Score a task with a precomputed alignment score (0-5)."""
    return compute_score(task.impact, task.urgency, task.effort, task.stakeholder, alignment)


def refresh_urgency(task: Task, now: Optional[datetime] = None) -> int:
    """
    Recompute urgency from the due date when one is set.
    The due date is authoritative: a stored urgency is overwritten.
    """
    if task.due_ts is not None:
        task.urgency = urgency_from_due(task.due_ts, now)
    return task.urgency


def _naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)
