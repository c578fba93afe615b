"""
Job Orchestrator — named periodic jobs with overlap prevention and isolation.

Behavioral Contract:
- Each job has its own trigger loop (fixed interval or cron pattern).
- Job bodies run on worker threads; the event loop only schedules.
- Overlap: a tick that arrives while the same job is still running is
  skipped, never queued and never run concurrently. The job's state records
  the skip as its last outcome.
- Isolation: an exception in a job body is logged and recorded on the job's
  state. Other jobs and the loop keep going.
- Startup: all triggers are armed first, then after a short delay the
  warm-up jobs (source syncs) run once.
- Shutdown: stop arming ticks, raise the cancellation signal, then wait for
  in-flight jobs to observe it and return.
"""

import asyncio
import logging
import threading
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Protocol, Set
from zoneinfo import ZoneInfo

from croniter import croniter

from focus_engine.models.scheduler import JobOutcome, JobState, JobStatus

logger = logging.getLogger(__name__)

JobFunc = Callable[[threading.Event], Any]


class Trigger(Protocol):
    def next_after(self, now: datetime) -> datetime:
        ...


class IntervalTrigger:
    """Fires every `seconds`, counted from when the trigger was armed."""

    def __init__(self, seconds: float):
        if seconds <= 0:
            raise ValueError("interval must be positive")
        self.seconds = seconds

    def next_after(self, now: datetime) -> datetime:
        return now + timedelta(seconds=self.seconds)

    def __repr__(self) -> str:
        return f"every {self.seconds:g}s"


class CronTrigger:
    """Fires on a five-field cron pattern, evaluated in the given timezone."""

    def __init__(self, expression: str, tz: str = "UTC"):
        if not croniter.is_valid(expression):
            raise ValueError(f"invalid cron expression: {expression!r}")
        self.expression = expression
        self.tz = ZoneInfo(tz)

    def next_after(self, now: datetime) -> datetime:
        local = now.astimezone(self.tz)
        return croniter(self.expression, local).get_next(datetime)

    def __repr__(self) -> str:
        return f"cron '{self.expression}'"


class Job:
    def __init__(self, name: str, func: JobFunc, trigger: Trigger):
        self.name = name
        self.func = func
        self.trigger = trigger
        self.state = JobState(name=name)
        self.next_run: Optional[datetime] = None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobOrchestrator:
    """
    Owns the job table. Constructed once at process start and passed to
    whatever needs to inspect or trigger jobs.
    """

    def __init__(
        self,
        startup_delay_seconds: float = 5.0,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.startup_delay_seconds = startup_delay_seconds
        self._clock = clock
        self._jobs: Dict[str, Job] = {}
        self._cancel = threading.Event()
        self._stop: Optional[asyncio.Event] = None
        self._loops: List[asyncio.Task] = []
        self._in_flight: Set[asyncio.Task] = set()
        self._started = False

    @property
    def cancel_event(self) -> threading.Event:
        return self._cancel

    def add_job(self, name: str, func: JobFunc, trigger: Trigger) -> Job:
        if name in self._jobs:
            raise ValueError(f"job {name!r} already registered")
        job = Job(name, func, trigger)
        self._jobs[name] = job
        if self._started:
            self._loops.append(asyncio.get_running_loop().create_task(self._trigger_loop(job)))
        logger.info("Scheduled job %s (%r)", name, trigger)
        return job

    def job_names(self) -> List[str]:
        return list(self._jobs)

    # --- Execution ---

    async def _execute(self, job: Job) -> Any:
        state = job.state
        state.last_started_at = datetime.utcnow()
        state.runs += 1
        started = time.monotonic()
        logger.info("Job %s started", job.name)
        try:
            result = await asyncio.to_thread(job.func, self._cancel)
        except Exception as e:
            state.failures += 1
            state.last_error = f"{type(e).__name__}: {e}"
            state.last_outcome = JobOutcome.FAILED
            logger.exception("Job %s failed", job.name)
            result = None
        else:
            state.last_error = None
            state.last_outcome = JobOutcome.SUCCEEDED
        finally:
            state.status = JobStatus.IDLE
            state.last_duration_seconds = time.monotonic() - started
        logger.info("Job %s finished in %.2fs", job.name, state.last_duration_seconds)
        return result

    def _dispatch(self, job: Job) -> Optional[asyncio.Task]:
        """Start one run unless the job is already running."""
        if job.state.status == JobStatus.RUNNING:
            job.state.skipped += 1
            job.state.last_outcome = JobOutcome.SKIPPED_OVERLAP
            logger.debug("Job %s still running, skipping tick", job.name)
            return None
        if self._cancel.is_set():
            return None
        job.state.status = JobStatus.RUNNING
        task = asyncio.get_running_loop().create_task(self._execute(job))
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)
        return task

    async def run_now(self, name: str) -> Optional[asyncio.Task]:
        """
        Start a job immediately, outside its schedule.
        Returns the running task, or None if the job was already running.
        """
        job = self._jobs[name]
        return self._dispatch(job)

    # --- Triggers ---

    async def _trigger_loop(self, job: Job) -> None:
        while not self._stop.is_set():
            now = self._clock()
            job.next_run = job.trigger.next_after(now)
            delay = max(0.0, (job.next_run - now).total_seconds())
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=delay)
            except asyncio.TimeoutError:
                self._dispatch(job)

    async def _warm_up(self, names: List[str]) -> None:
        try:
            await asyncio.wait_for(self._stop.wait(), timeout=self.startup_delay_seconds)
            return
        except asyncio.TimeoutError:
            pass
        logger.info("Running initial sync...")
        for name in names:
            self._dispatch(self._jobs[name])

    async def start(self, warm_up: Optional[List[str]] = None) -> None:
        """Arm every trigger, then schedule the one-off warm-up runs."""
        if self._started:
            return
        self._stop = asyncio.Event()
        self._cancel.clear()
        self._started = True
        loop = asyncio.get_running_loop()
        for job in self._jobs.values():
            self._loops.append(loop.create_task(self._trigger_loop(job)))
        if warm_up:
            unknown = [n for n in warm_up if n not in self._jobs]
            if unknown:
                raise KeyError(f"unknown warm-up jobs: {unknown}")
            self._loops.append(loop.create_task(self._warm_up(list(warm_up))))
        logger.info("Scheduler started with %d jobs", len(self._jobs))

    async def shutdown(self, timeout: Optional[float] = None) -> None:
        """Stop firing, signal cancellation, and wait for running jobs."""
        if not self._started:
            return
        logger.info("Stopping scheduler...")
        self._stop.set()
        self._cancel.set()
        if self._loops:
            await asyncio.gather(*self._loops, return_exceptions=True)
            self._loops.clear()
        if self._in_flight:
            _, pending = await asyncio.wait(set(self._in_flight), timeout=timeout)
            if pending:
                logger.warning("%d jobs still running after shutdown timeout", len(pending))
        self._started = False
        logger.info("Scheduler stopped")

    # --- Inspection ---

    def next_runs(self) -> Dict[str, datetime]:
        now = self._clock()
        return {
            name: job.next_run or job.trigger.next_after(now)
            for name, job in self._jobs.items()
        }

    def job_states(self) -> Dict[str, JobState]:
        return {name: job.state.model_copy() for name, job in self._jobs.items()}
