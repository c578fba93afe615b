"""
Focus Engine API — FastAPI endpoints over the planner.

Exposes:
- Task transitions (complete, uncomplete, snooze) and feedback
- Full re-prioritization, dispatched to the background worker
- Observability: scoring phase, task stats, job states and next runs
- Strategic priorities (read and replace)
- The daily plan
"""

from datetime import datetime
from typing import List, Optional

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel

from focus_engine.models.task import Priority, TaskStatus
from focus_engine.planner.engine import InvalidVoteError, Planner
from focus_engine.scheduler.background import BackgroundPrioritizer
from focus_engine.scheduler.orchestrator import JobOrchestrator
from focus_engine.storage.store import TaskNotFoundError


# --- Request Models ---

class SnoozeRequest(BaseModel):
    until: datetime


class FeedbackRequest(BaseModel):
    vote: int
    reason: str = ""
    original_score: float = 0.0
    adjusted_score: float = 0.0


class PrioritiesRequest(BaseModel):
    priorities: List[Priority]


# --- Application Factory ---

def create_app(
    planner: Planner,
    prioritizer: Optional[BackgroundPrioritizer] = None,
    orchestrator: Optional[JobOrchestrator] = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""

    app = FastAPI(
        title="Focus Engine API",
        description="Adaptive task prioritization",
        version="0.1.0",
    )

    app.state.planner = planner
    app.state.prioritizer = prioritizer
    app.state.orchestrator = orchestrator

    def _dispatch_pass() -> str:
        if prioritizer is not None:
            prioritizer.submit()
            return "queued"
        planner.prioritize_all()
        return "completed"

    # === TASKS ===

    @app.get("/tasks")
    def list_tasks(status: TaskStatus = TaskStatus.PENDING, limit: int = 50):
        """Tasks with a status, highest score first."""
        tasks = planner.store.get_tasks_by_status(status, limit=limit)
        return [t.model_dump(mode="json") for t in tasks]

    @app.post("/tasks/{task_id}/complete")
    def complete_task(task_id: str):
        try:
            planner.complete_task(task_id)
        except TaskNotFoundError:
            raise HTTPException(404, "Task not found")
        return {"id": task_id, "status": TaskStatus.COMPLETED.value}

    @app.post("/tasks/{task_id}/uncomplete")
    def uncomplete_task(task_id: str):
        try:
            planner.uncomplete_task(task_id)
        except TaskNotFoundError:
            raise HTTPException(404, "Task not found")
        return {"id": task_id, "status": TaskStatus.PENDING.value}

    @app.post("/tasks/{task_id}/snooze")
    def snooze_task(task_id: str, req: SnoozeRequest):
        try:
            planner.snooze_task(task_id, req.until)
        except TaskNotFoundError:
            raise HTTPException(404, "Task not found")
        return {"id": task_id, "due_ts": req.until.isoformat()}

    @app.post("/tasks/{task_id}/feedback")
    def record_feedback(task_id: str, req: FeedbackRequest):
        try:
            feedback = planner.record_feedback(
                task_id,
                req.vote,
                reason=req.reason,
                original_score=req.original_score,
                adjusted_score=req.adjusted_score,
            )
        except TaskNotFoundError:
            raise HTTPException(404, "Task not found")
        except InvalidVoteError as e:
            raise HTTPException(400, str(e))
        return feedback.model_dump(mode="json")

    # === PRIORITIZATION ===

    @app.post("/prioritize")
    def prioritize():
        """Trigger a full re-prioritization pass."""
        return {"status": _dispatch_pass()}

    @app.get("/phase")
    def current_phase():
        phase, count = planner.current_phase()
        return {
            "phase": phase.model_dump(mode="json"),
            "feedback_count": count,
            "description": phase.describe(),
        }

    @app.get("/priorities")
    def get_priorities():
        return planner.get_priorities().model_dump(mode="json")

    @app.put("/priorities")
    def replace_priorities(req: PrioritiesRequest):
        planner.save_priorities(req.priorities)
        return {"saved": len(req.priorities), "status": _dispatch_pass()}

    @app.get("/plan")
    def daily_plan(limit: int = 15):
        """Today's time-blocked plan from the top-ranked pending tasks."""
        plan = planner.generate_plan(limit=limit)
        return {**plan.model_dump(mode="json"), "text": plan.render()}

    # === OBSERVABILITY ===

    @app.get("/stats")
    def task_stats():
        return planner.task_stats()

    @app.get("/jobs")
    def jobs():
        if orchestrator is None:
            return {}
        next_runs = orchestrator.next_runs()
        return {
            name: {
                **state.model_dump(mode="json"),
                "next_run": next_runs[name].isoformat() if name in next_runs else None,
            }
            for name, state in orchestrator.job_states().items()
        }

    return app
