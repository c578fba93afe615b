"""
Process entrypoint: build the engine from settings, run the scheduler (and
optionally the HTTP adapter) until SIGINT/SIGTERM, then shut down cleanly.

    python -m focus_engine.main
    python -m focus_engine.main --reprocess-tasks
"""

import argparse
import asyncio
import logging
import signal
import sys
import threading
from typing import List, Optional

import uvicorn

from focus_engine.alignment.delegate import AlignmentDelegate
from focus_engine.api.app import create_app
from focus_engine.config import Settings, get_settings
from focus_engine.embeddings.client import OpenAIEmbeddingClient
from focus_engine.embeddings.store import EmbeddingStore
from focus_engine.llm.client import OpenAIReasoningClient
from focus_engine.planner.engine import Planner
from focus_engine.scheduler.background import BackgroundPrioritizer
from focus_engine.scheduler.orchestrator import CronTrigger, IntervalTrigger, JobOrchestrator
from focus_engine.scheduler.processing import BacklogProcessor
from focus_engine.scoring.hybrid import HybridBlender
from focus_engine.scoring.knn import NeighborScorer
from focus_engine.sources.base import SourceSyncer, TaskMirror
from focus_engine.storage.store import FocusStore

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
API_JOIN_TIMEOUT_SECONDS = 10


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)


class Engine:
    """Every long-lived component, wired once at process start."""

    def __init__(
        self,
        settings: Settings,
        syncers: Optional[List[SourceSyncer]] = None,
        mirrors: Optional[List[TaskMirror]] = None,
    ):
        self.settings = settings
        self.syncers = list(syncers or [])
        openai_cfg = settings.openai
        scoring = settings.scoring

        self.store = FocusStore(settings.database.path)
        self.reasoning = OpenAIReasoningClient(
            self.store,
            api_key=openai_cfg.api_key,
            model=openai_cfg.model,
            temperature=openai_cfg.temperature,
            max_tokens=openai_cfg.max_tokens,
            timeout=openai_cfg.timeout_seconds,
            cache_hours=openai_cfg.cache_hours,
            cost_per_token=openai_cfg.cost_per_token,
        )
        self.embeddings = EmbeddingStore(
            self.store,
            OpenAIEmbeddingClient(
                api_key=openai_cfg.api_key,
                model=openai_cfg.embedding_model,
                dimensions=scoring.embedding_dimension,
                timeout=openai_cfg.timeout_seconds,
            ),
            dimension=scoring.embedding_dimension,
            attempts=scoring.embedding_retries,
            backoff_seconds=scoring.embedding_backoff_seconds,
        )
        self.blender = HybridBlender(
            NeighborScorer(self.store, self.embeddings, k=scoring.knn_k),
            bootstrap_threshold=scoring.bootstrap_threshold,
            knn_threshold=scoring.knn_threshold,
        )
        self.planner = Planner(
            self.store,
            AlignmentDelegate(self.reasoning, self.store, settings.priorities.to_priority_set()),
            blender=self.blender,
            embeddings=self.embeddings,
            mirrors=mirrors,
        )
        self.orchestrator = JobOrchestrator(
            startup_delay_seconds=settings.schedule.startup_delay_seconds
        )
        self.prioritizer = BackgroundPrioritizer(
            lambda: self.planner.prioritize_all(self.orchestrator.cancel_event)
        )
        self.planner.reprioritizer = self.prioritizer
        self.processor = BacklogProcessor(
            self.store,
            self.reasoning,
            self.reasoning,
            self.planner,
            enabled=settings.limits.enable_ai_processing,
            max_per_run=settings.limits.max_ai_processing_per_run,
            tokens_per_thread=settings.limits.estimated_tokens_per_thread,
            cost_per_token=openai_cfg.cost_per_token,
        )
        self._register_jobs()

    def _register_jobs(self) -> None:
        schedule = self.settings.schedule
        for syncer in self.syncers:
            minutes = schedule.sync_minutes.get(syncer.name, schedule.default_sync_minutes)
            self.orchestrator.add_job(
                f"sync:{syncer.name}",
                lambda cancel, s=syncer: s.sync(),
                IntervalTrigger(minutes * 60),
            )
        self.orchestrator.add_job(
            "process",
            self.processor.process_backlog,
            IntervalTrigger(schedule.process_minutes * 60),
        )
        self.orchestrator.add_job(
            "prioritize",
            self.planner.prioritize_all,
            IntervalTrigger(schedule.prioritize_minutes * 60),
        )
        self.orchestrator.add_job(
            "cleanup",
            lambda cancel: self.store.clean_expired_cache(),
            CronTrigger(schedule.cleanup_cron, schedule.timezone),
        )

    def sync_job_names(self) -> List[str]:
        return [f"sync:{s.name}" for s in self.syncers]

    async def run(self, stop_event: asyncio.Event) -> None:
        """Run until stop_event is set, then stop everything in order."""
        server = None
        server_thread = None
        if self.settings.api_port:
            app = create_app(self.planner, self.prioritizer, self.orchestrator)
            server = uvicorn.Server(
                uvicorn.Config(
                    app,
                    host=self.settings.api_host,
                    port=self.settings.api_port,
                    log_level=self.settings.log_level.lower(),
                )
            )
            # Off the main thread uvicorn leaves signal handling to us
            server_thread = threading.Thread(target=server.run, name="api", daemon=True)
            server_thread.start()
            logger.info("API listening on %s:%d", self.settings.api_host, self.settings.api_port)

        await self.orchestrator.start(warm_up=self.sync_job_names())
        try:
            await stop_event.wait()
        finally:
            if server is not None:
                server.should_exit = True
            await self.orchestrator.shutdown()
            # Requests may still submit passes until the API thread is gone
            if server_thread is not None:
                await asyncio.to_thread(server_thread.join, API_JOIN_TIMEOUT_SECONDS)
                if server_thread.is_alive():
                    logger.warning("API thread still running after %ds", API_JOIN_TIMEOUT_SECONDS)
            self.prioritizer.shutdown(wait=True)
            self.store.close()


async def _main(settings: Settings) -> None:
    engine = Engine(settings)
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_event.set)
    await engine.run(stop_event)


def reprocess(settings: Settings) -> int:
    """One-shot rebuild of extracted tasks from stored summaries."""
    engine = Engine(settings)
    try:
        result = engine.processor.reprocess_extracted_tasks()
    finally:
        engine.prioritizer.shutdown(wait=True)
        engine.store.close()
    return 1 if result.quota_exhausted else 0


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Adaptive task prioritization engine")
    parser.add_argument(
        "--reprocess-tasks",
        action="store_true",
        help="Re-extract tasks from existing thread summaries, rescore, and exit",
    )
    args = parser.parse_args(argv)

    settings = get_settings()
    configure_logging(settings.log_level)
    if args.reprocess_tasks:
        return reprocess(settings)
    asyncio.run(_main(settings))
    return 0


if __name__ == "__main__":
    sys.exit(main())
