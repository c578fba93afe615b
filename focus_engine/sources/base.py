"""
Source collaborators — the engine's view of external data providers.

Fetching, parsing, and authentication live behind these protocols. The
engine only needs to trigger a sync and to mirror completion changes back.
"""

from typing import Protocol

from focus_engine.models.task import Task, TaskSource


class SourceSyncer(Protocol):
    """Pulls new items from one provider into the store."""

    name: str

    def sync(self) -> int:
        """Returns the number of items ingested."""
        ...


class TaskMirror(Protocol):
    """Writes a local completion change back to the task's originating system."""

    source: TaskSource

    def complete(self, task: Task) -> None:
        ...

    def uncomplete(self, task: Task) -> None:
        ...
