"""Tests for the Job Orchestrator."""

import asyncio
import threading
from datetime import datetime, timezone

import pytest

from focus_engine.models.scheduler import JobOutcome, JobStatus
from focus_engine.scheduler.orchestrator import CronTrigger, IntervalTrigger, JobOrchestrator


class TestTriggers:
    def test_interval(self):
        now = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)
        assert (IntervalTrigger(90).next_after(now) - now).total_seconds() == 90

    def test_interval_must_be_positive(self):
        with pytest.raises(ValueError):
            IntervalTrigger(0)

    def test_cron_daily(self):
        trigger = CronTrigger("0 3 * * *", "UTC")
        now = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)
        assert trigger.next_after(now) == datetime(2025, 3, 2, 3, 0, tzinfo=timezone.utc)

    def test_cron_respects_timezone(self):
        trigger = CronTrigger("0 3 * * *", "America/New_York")
        now = datetime(2025, 1, 15, 12, 0, tzinfo=timezone.utc)
        # 03:00 EST is 08:00 UTC
        assert trigger.next_after(now) == datetime(2025, 1, 16, 8, 0, tzinfo=timezone.utc)

    def test_invalid_cron(self):
        with pytest.raises(ValueError):
            CronTrigger("not a cron")


class TestJobOrchestrator:
    def test_overlapping_run_is_skipped(self):
        release = threading.Event()
        calls = []

        def slow(cancel):
            calls.append(1)
            release.wait(timeout=5)

        async def scenario():
            orchestrator = JobOrchestrator(startup_delay_seconds=0)
            orchestrator.add_job("prioritize", slow, IntervalTrigger(3600))
            await orchestrator.start()

            first = await orchestrator.run_now("prioritize")
            second = await orchestrator.run_now("prioritize")
            state = orchestrator.job_states()["prioritize"]

            release.set()
            await first
            await orchestrator.shutdown()
            return second, state, orchestrator.job_states()["prioritize"]

        second, during, after = asyncio.run(scenario())
        assert second is None
        assert during.status == JobStatus.RUNNING
        assert during.skipped == 1
        assert during.last_outcome == JobOutcome.SKIPPED_OVERLAP
        assert after.status == JobStatus.IDLE
        assert after.runs == 1
        assert after.last_outcome == JobOutcome.SUCCEEDED
        assert len(calls) == 1

    def test_failure_is_isolated(self):
        ran = []

        def broken(cancel):
            raise RuntimeError("sync failed")

        def healthy(cancel):
            ran.append("healthy")
            return 3

        async def scenario():
            orchestrator = JobOrchestrator(startup_delay_seconds=0)
            orchestrator.add_job("sync:gmail", broken, IntervalTrigger(3600))
            orchestrator.add_job("prioritize", healthy, IntervalTrigger(3600))
            await orchestrator.start()
            await (await orchestrator.run_now("sync:gmail"))
            result = await (await orchestrator.run_now("prioritize"))
            await orchestrator.shutdown()
            return orchestrator.job_states(), result

        states, result = asyncio.run(scenario())
        assert states["sync:gmail"].failures == 1
        assert "sync failed" in states["sync:gmail"].last_error
        assert states["sync:gmail"].status == JobStatus.IDLE
        assert states["sync:gmail"].last_outcome == JobOutcome.FAILED
        assert states["prioritize"].last_outcome == JobOutcome.SUCCEEDED
        assert states["prioritize"].failures == 0
        assert ran == ["healthy"]
        assert result == 3

    def test_interval_fires_and_skips_while_busy(self):
        release = threading.Event()

        def slow(cancel):
            release.wait(timeout=5)

        async def scenario():
            orchestrator = JobOrchestrator(startup_delay_seconds=0)
            orchestrator.add_job("process", slow, IntervalTrigger(0.01))
            await orchestrator.start()
            await asyncio.sleep(0.2)
            release.set()
            await orchestrator.shutdown()
            return orchestrator.job_states()["process"]

        state = asyncio.run(scenario())
        assert state.runs >= 1
        assert state.skipped >= 1

    def test_warm_up_runs_after_delay(self):
        ran = threading.Event()

        async def scenario():
            orchestrator = JobOrchestrator(startup_delay_seconds=0.01)
            orchestrator.add_job("sync:calendar", lambda cancel: ran.set(), IntervalTrigger(3600))
            await orchestrator.start(warm_up=["sync:calendar"])
            for _ in range(100):
                if ran.is_set():
                    break
                await asyncio.sleep(0.01)
            await orchestrator.shutdown()

        asyncio.run(scenario())
        assert ran.is_set()

    def test_unknown_warm_up_job(self):
        async def scenario():
            orchestrator = JobOrchestrator()
            orchestrator.add_job("prioritize", lambda cancel: None, IntervalTrigger(60))
            try:
                await orchestrator.start(warm_up=["sync:nope"])
            finally:
                await orchestrator.shutdown()

        with pytest.raises(KeyError):
            asyncio.run(scenario())

    def test_shutdown_signals_and_waits(self):
        entered = threading.Event()
        observed = []

        def cooperative(cancel):
            entered.set()
            cancel.wait(timeout=5)
            observed.append(cancel.is_set())

        async def scenario():
            orchestrator = JobOrchestrator(startup_delay_seconds=0)
            orchestrator.add_job("reprocess", cooperative, IntervalTrigger(3600))
            await orchestrator.start()
            await orchestrator.run_now("reprocess")
            while not entered.is_set():
                await asyncio.sleep(0.01)
            await orchestrator.shutdown(timeout=5)
            return await orchestrator.run_now("reprocess")

        after = asyncio.run(scenario())
        assert observed == [True]
        assert after is None

    def test_duplicate_job_name(self):
        orchestrator = JobOrchestrator()
        orchestrator.add_job("prioritize", lambda cancel: None, IntervalTrigger(60))
        with pytest.raises(ValueError):
            orchestrator.add_job("prioritize", lambda cancel: None, IntervalTrigger(60))

    def test_next_runs(self):
        now = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)
        orchestrator = JobOrchestrator(clock=lambda: now)
        orchestrator.add_job("prioritize", lambda cancel: None, IntervalTrigger(600))
        orchestrator.add_job("cleanup", lambda cancel: None, CronTrigger("0 3 * * *"))

        runs = orchestrator.next_runs()
        assert (runs["prioritize"] - now).total_seconds() == 600
        assert runs["cleanup"] == datetime(2025, 3, 2, 3, 0, tzinfo=timezone.utc)
        assert orchestrator.job_names() == ["prioritize", "cleanup"]
