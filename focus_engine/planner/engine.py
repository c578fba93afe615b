"""
Planner — the operations the rest of the system calls to (re)score work.

Behavioral Contract:
- A full pass scores every pending task. One task failing is logged and
  skipped; it never aborts the pass.
- Priorities and the blending phase are resolved once per pass.
- Each task's score, urgency, and matches are committed together, so a
  cancelled pass leaves every task either fully old or fully new.
- Complete, uncomplete, and snooze persist locally first, mirror to the
  originating system best-effort, then trigger exactly one full pass.
- Feedback is validated and appended; it is never edited.
- A daily plan is read from the ranked pending tasks: up to 3 non-Large
  tasks in the morning block, the next 3 in the afternoon, and up to 5 Small
  tasks as quick wins.
"""

import logging
import threading
from concurrent.futures import Future
from datetime import datetime
from typing import Dict, List, Optional, Tuple
from uuid import uuid4

from focus_engine.alignment.delegate import AlignmentDelegate
from focus_engine.embeddings.store import EmbeddingStore
from focus_engine.models.feedback import Feedback
from focus_engine.models.scoring import BootstrapPhase, ScoreOutcome, ScoringPhase
from focus_engine.models.task import (
    DailyPlan,
    Effort,
    Priority,
    PrioritySet,
    Task,
    TaskSource,
    TaskStatus,
)
from focus_engine.scoring.deterministic import refresh_urgency, score_task
from focus_engine.scoring.hybrid import HybridBlender
from focus_engine.sources.base import TaskMirror
from focus_engine.storage.store import FocusStore

logger = logging.getLogger(__name__)

PLAN_TASK_LIMIT = 15
MORNING_SLOTS = 3
AFTERNOON_SLOTS = 3
QUICK_WIN_SLOTS = 5


class InvalidVoteError(ValueError):
    """A feedback vote other than -1 or +1."""


class Planner:
    """Scores tasks and applies user-driven task transitions."""

    def __init__(
        self,
        store: FocusStore,
        delegate: AlignmentDelegate,
        blender: Optional[HybridBlender] = None,
        embeddings: Optional[EmbeddingStore] = None,
        mirrors: Optional[List[TaskMirror]] = None,
        reprioritizer=None,
    ):
        self.store = store
        self.delegate = delegate
        self.blender = blender
        self.embeddings = embeddings
        self.mirrors: Dict[TaskSource, TaskMirror] = {m.source: m for m in (mirrors or [])}
        # Something with submit() -> Future; when unset, passes run inline
        self.reprioritizer = reprioritizer

    # --- Scoring ---

    def current_phase(self) -> Tuple[ScoringPhase, int]:
        if self.blender is None:
            count = self.store.count_feedback()
            return BootstrapPhase(feedback_count=count), count
        return self.blender.current_phase()

    def _phase_for_pass(self) -> ScoringPhase:
        try:
            phase, _ = self.current_phase()
        except Exception as e:
            logger.warning("Could not determine scoring phase, scoring deterministically: %s", e)
            return BootstrapPhase(feedback_count=0)
        return phase

    def prioritize_one(
        self,
        task: Task,
        priorities: Optional[PrioritySet] = None,
        phase: Optional[ScoringPhase] = None,
    ) -> ScoreOutcome:
        """Score one task and persist the result."""
        refresh_urgency(task)
        alignment = self.delegate.evaluate(task, priorities)
        task.matched_priorities = alignment.matches
        base = score_task(task, alignment.score)

        if self.blender is not None:
            outcome = self.blender.score(task, base, phase)
        else:
            outcome = ScoreOutcome(
                task_id=task.id,
                base_score=base,
                final_score=base,
                phase=phase or BootstrapPhase(feedback_count=0),
            )

        task.score = outcome.final_score
        self.store.update_task_score(task.id, task.score, task.urgency, task.matched_priorities)
        return outcome

    def prioritize_all(self, cancel_event: Optional[threading.Event] = None) -> int:
        """Rescore every pending task. Returns how many were updated."""
        tasks = self.store.get_tasks_by_status(TaskStatus.PENDING)
        priorities = self.delegate.resolve_priorities()
        phase = self._phase_for_pass()

        updated = 0
        for task in tasks:
            if cancel_event is not None and cancel_event.is_set():
                logger.info("Prioritization cancelled after %d of %d tasks", updated, len(tasks))
                break
            try:
                self.prioritize_one(task, priorities, phase)
            except Exception:
                logger.exception("Failed to prioritize task %s", task.id)
                continue
            updated += 1

        logger.info("Prioritized %d tasks (%s)", updated, phase.describe())
        return updated

    def trigger_reprioritization(self) -> Optional[Future]:
        """One full pass: queued on the background worker if present, else inline."""
        if self.reprioritizer is not None:
            return self.reprioritizer.submit()
        self.prioritize_all()
        return None

    # --- Transitions ---

    def _mirror(self, task: Task, completed: bool) -> None:
        mirror = self.mirrors.get(task.source)
        if mirror is None or not task.source_id:
            return
        try:
            if completed:
                mirror.complete(task)
            else:
                mirror.uncomplete(task)
        except Exception as e:
            logger.warning(
                "Failed to mirror %s of task %s to %s: %s",
                "completion" if completed else "reopening",
                task.id,
                task.source.value,
                e,
            )
        else:
            logger.info("Mirrored task %s status to %s", task.id, task.source.value)

    def complete_task(self, task_id: str) -> Optional[Future]:
        task = self.store.require_task(task_id)
        self.store.set_task_status(task_id, TaskStatus.COMPLETED)
        task.status = TaskStatus.COMPLETED
        self._mirror(task, completed=True)
        return self.trigger_reprioritization()

    def uncomplete_task(self, task_id: str) -> Optional[Future]:
        task = self.store.require_task(task_id)
        self.store.set_task_status(task_id, TaskStatus.PENDING)
        task.status = TaskStatus.PENDING
        self._mirror(task, completed=False)
        return self.trigger_reprioritization()

    def snooze_task(self, task_id: str, until: datetime) -> Optional[Future]:
        """Push the due date out; urgency follows on the next pass."""
        self.store.require_task(task_id)
        self.store.set_task_due(task_id, until)
        return self.trigger_reprioritization()

    # --- Feedback ---

    def record_feedback(
        self,
        task_id: str,
        vote: int,
        reason: str = "",
        original_score: float = 0.0,
        adjusted_score: float = 0.0,
    ) -> Feedback:
        if vote not in (-1, 1):
            raise InvalidVoteError(f"vote must be -1 or +1, got {vote!r}")
        task = self.store.require_task(task_id)

        feedback = self.store.append_feedback(
            Feedback(
                id=f"fb_{task_id}_{uuid4().hex[:12]}",
                task_id=task_id,
                vote=vote,
                reason=reason,
                original_score=original_score,
                adjusted_score=adjusted_score,
            )
        )
        # Without an embedding the vote can never be found as a neighbor
        if self.embeddings is not None:
            self.embeddings.try_ensure_embedding(task)
        logger.info("Recorded %+d feedback on task %s", vote, task_id)
        return feedback

    # --- Daily plan ---

    def generate_plan(self, limit: int = PLAN_TASK_LIMIT, now: Optional[datetime] = None) -> DailyPlan:
        """Block the top `limit` pending tasks into a plan for today."""
        ranked = self.store.get_tasks_by_status(TaskStatus.PENDING, limit=limit)

        morning = [t for t in ranked if t.effort != Effort.LARGE][:MORNING_SLOTS]
        morning_ids = {t.id for t in morning}
        afternoon = [t for t in ranked if t.id not in morning_ids][:AFTERNOON_SLOTS]
        quick_wins = [t for t in ranked if t.effort == Effort.SMALL][:QUICK_WIN_SLOTS]

        return DailyPlan(
            date=now or datetime.now(),
            morning=morning,
            afternoon=afternoon,
            quick_wins=quick_wins,
        )

    # --- Threads, stats, priorities ---

    def recalculate_thread_priorities(self) -> int:
        return self.store.recalculate_thread_priorities()

    def task_stats(self, now: Optional[datetime] = None) -> Dict[str, int]:
        now = now or datetime.utcnow()
        start_of_day = now.replace(hour=0, minute=0, second=0, microsecond=0)
        return self.store.get_task_stats(start_of_day)

    def save_priorities(self, priorities: List[Priority]) -> None:
        """Replace the stored priorities; the next pass evaluates against them."""
        self.store.replace_priorities(priorities)
        logger.info("Saved %d priorities", len(priorities))

    def get_priorities(self) -> PrioritySet:
        return self.delegate.resolve_priorities()
