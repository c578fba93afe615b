"""
Alignment Delegate — how well does a task serve the user's strategic priorities?

Behavioral Contract:
- The judgement itself belongs to an external reasoning capability.
- Failure is soft: any evaluator error yields score 0 and empty matches. The
  caller's scoring pass is never blocked.
- The key-stakeholder flag is OR-ed with a local, case-insensitive substring
  match of configured stakeholder names against the task's source id.
- Priorities come from the store first, configured defaults second. An empty
  store with defaults configured never yields a zero-priorities evaluation.
"""

import logging
from typing import List, Optional, Protocol

from focus_engine.models.scoring import AlignmentResult
from focus_engine.models.task import Priority, PrioritySet, Task

logger = logging.getLogger(__name__)


class AlignmentEvaluator(Protocol):
    """The reasoning capability: judges one task against a priority set."""

    def evaluate_strategic_alignment(
        self, task: Task, priorities: PrioritySet
    ) -> AlignmentResult:
        ...


class PrioritySource(Protocol):
    """Where stored priorities come from (the storage collaborator)."""

    def get_priorities(self) -> List[Priority]:
        ...


def matches_key_stakeholder(source_id: str, stakeholders) -> bool:
    """Case-insensitive substring match of any stakeholder name in the source id."""
    haystack = (source_id or "").lower()
    if not haystack:
        return False
    return any(name and name.lower() in haystack for name in stakeholders)


class AlignmentDelegate:
    """Wraps the reasoning capability with soft failure and priority resolution."""

    def __init__(
        self,
        evaluator: Optional[AlignmentEvaluator],
        store: Optional[PrioritySource] = None,
        defaults: Optional[PrioritySet] = None,
    ):
        self.evaluator = evaluator
        self.store = store
        self.defaults = defaults or PrioritySet()

    def resolve_priorities(self) -> PrioritySet:
        """Stored priorities if any exist, otherwise the configured defaults."""
        if self.store is not None:
            try:
                stored = PrioritySet.from_priorities(self.store.get_priorities())
            except Exception:
                logger.warning("Could not load stored priorities, using configured defaults", exc_info=True)
            else:
                if not stored.is_empty():
                    return stored
        return self.defaults.model_copy(deep=True)

    def evaluate(self, task: Task, priorities: Optional[PrioritySet] = None) -> AlignmentResult:
        """Alignment score 0-5 and the priorities matched. Never raises."""
        if priorities is None:
            priorities = self.resolve_priorities()

        if self.evaluator is None or priorities.is_empty():
            result = AlignmentResult()
        else:
            try:
                result = self.evaluator.evaluate_strategic_alignment(task, priorities)
            except Exception as e:
                logger.warning("Alignment evaluation failed for task %s: %s", task.id, e)
                result = AlignmentResult(error=str(e))

        if matches_key_stakeholder(task.source_id, priorities.key_stakeholders):
            result.matches.key_stakeholder = True
        return result
