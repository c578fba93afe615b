"""
Backlog Processor — summarize and extract tasks from unsummarized threads.

Behavioral Contract:
- Threads are processed one at a time, oldest first (id breaks ties), so a
  batch cut short always leaves the same "first N done" state.
- A token/cost estimate is logged before the batch and actual usage after.
- QuotaExhaustedError stops the batch at once. Everything already committed
  stays; nothing further is attempted until the next scheduled run.
- Any other failure on one thread is logged and the batch moves on.
- Reprocessing deletes every extracted task and re-derives them from stored
  summaries (the summarizer is not called), then runs a full pass. Extracted
  task ids depend only on thread id and position, so re-running converges.
"""

import logging
import threading
import time
from datetime import datetime
from typing import List, Optional

from focus_engine.llm.client import QuotaExhaustedError, Summarizer, TaskExtractor
from focus_engine.models.scheduler import BatchResult, ReprocessResult
from focus_engine.models.task import Task, TaskSource, Thread
from focus_engine.planner.engine import Planner
from focus_engine.storage.store import FocusStore

logger = logging.getLogger(__name__)

BANNER = "=" * 55
PROGRESS_EVERY = 10


def extracted_task_id(thread_id: str, index: int) -> str:
    return f"email_{thread_id}_{index}"


class BacklogProcessor:
    def __init__(
        self,
        store: FocusStore,
        summarizer: Summarizer,
        extractor: TaskExtractor,
        planner: Planner,
        enabled: bool = True,
        max_per_run: int = 0,
        tokens_per_thread: int = 500,
        cost_per_token: float = 0.0000002,
    ):
        self.store = store
        self.summarizer = summarizer
        self.extractor = extractor
        self.planner = planner
        self.enabled = enabled
        self.max_per_run = max_per_run
        self.tokens_per_thread = tokens_per_thread
        self.cost_per_token = cost_per_token

    def _save_extracted(self, thread_id: str, tasks: List[Task]) -> List[Task]:
        saved = []
        for index, task in enumerate(tasks):
            task.id = extracted_task_id(thread_id, index)
            task.source = TaskSource.EMAIL
            task.source_id = thread_id
            try:
                saved.append(self.store.save_task(task))
            except Exception:
                logger.exception("Failed to save extracted task %s", task.id)
        return saved

    def process_backlog(self, cancel_event: Optional[threading.Event] = None) -> BatchResult:
        """Summarize and extract every thread still lacking a summary."""
        if not self.enabled:
            logger.info("AI processing is disabled - skipping")
            return BatchResult(total=0)

        threads = self.store.get_threads_needing_summary(self.max_per_run)
        result = BatchResult(total=len(threads))
        if not threads:
            logger.info("No new threads to process")
            return result

        result.estimated_tokens = len(threads) * self.tokens_per_thread
        result.estimated_cost = result.estimated_tokens * self.cost_per_token
        logger.info(BANNER)
        logger.info("AI PROCESSING ESTIMATE:")
        logger.info("   Threads to process: %d", len(threads))
        logger.info("   Estimated tokens: ~%d", result.estimated_tokens)
        logger.info("   Estimated cost: ~$%.4f", result.estimated_cost)
        logger.info(BANNER)

        started_at = datetime.utcnow()
        started = time.monotonic()

        for i, thread in enumerate(threads):
            if cancel_event is not None and cancel_event.is_set():
                result.cancelled = True
                logger.info("AI processing cancelled after %d/%d threads", i, len(threads))
                break

            messages = self.store.get_thread_messages(thread.id)
            if not messages:
                logger.debug("Thread %s has no messages, skipping", thread.id)
                continue

            result.attempted += 1
            try:
                summary = self.summarizer.summarize_thread(messages)
                try:
                    tasks = self.extractor.extract_tasks(summary)
                except QuotaExhaustedError:
                    raise
                except Exception:
                    logger.exception("Failed to extract tasks from thread %s", thread.id)
                    tasks = []
            except QuotaExhaustedError:
                result.quota_exhausted = True
                logger.warning(
                    "Daily quota exhausted. Stopping AI processing. %d/%d threads processed.",
                    result.succeeded,
                    len(threads),
                )
                break
            except Exception:
                result.failed += 1
                logger.exception("Failed to summarize thread %s", thread.id)
                continue

            saved = self._save_extracted(thread.id, tasks)
            for task in saved:
                try:
                    self.planner.prioritize_one(task)
                except Exception:
                    logger.exception("Failed to prioritize extracted task %s", task.id)

            thread.summary = summary
            thread.task_count = len(saved)
            self.store.save_thread(thread)

            result.succeeded += 1
            result.tasks_extracted += len(saved)
            logger.info("Processed thread %s: %d tasks extracted", thread.id, len(saved))

            if (i + 1) % PROGRESS_EVERY == 0:
                elapsed = time.monotonic() - started
                logger.info(
                    "Progress: %d/%d threads | Elapsed: %.0fs | Avg: %.1fs/thread",
                    i + 1,
                    len(threads),
                    elapsed,
                    elapsed / (i + 1),
                )

        self.planner.recalculate_thread_priorities()

        result.actual_tokens, result.actual_cost = self.store.get_usage_since(started_at)
        logger.info(BANNER)
        logger.info("AI PROCESSING COMPLETE:")
        logger.info("   Successfully processed: %d/%d threads", result.succeeded, len(threads))
        logger.info("   Total time: %.0fs", time.monotonic() - started)
        logger.info("   Actual tokens used: %d", result.actual_tokens)
        logger.info("   Actual cost: $%.4f", result.actual_cost)
        logger.info(BANNER)
        return result

    def reprocess_extracted_tasks(self, cancel_event: Optional[threading.Event] = None) -> ReprocessResult:
        """Rebuild all extracted tasks from stored summaries, then rescore everything."""
        logger.info(BANNER)
        logger.info("REPROCESSING EXTRACTED TASKS")
        logger.info(BANNER)

        threads: List[Thread] = self.store.get_summarized_threads()
        deleted = self.store.delete_extracted_tasks()
        result = ReprocessResult(threads=len(threads), deleted=deleted, extracted=0)
        logger.info("Found %d threads with summaries, deleted %d old tasks", len(threads), deleted)

        for i, thread in enumerate(threads):
            if cancel_event is not None and cancel_event.is_set():
                logger.info("Reprocessing cancelled after %d/%d threads", i, len(threads))
                break
            try:
                tasks = self.extractor.extract_tasks(thread.summary)
            except QuotaExhaustedError:
                result.quota_exhausted = True
                logger.warning("Daily quota exhausted during reprocessing at thread %d/%d", i + 1, len(threads))
                break
            except Exception:
                logger.exception("Failed to extract tasks from thread %s", thread.id)
                continue
            saved = self._save_extracted(thread.id, tasks)
            result.extracted += len(saved)
            logger.debug("Extracted %d tasks from thread %s", len(saved), thread.id)

        self.planner.prioritize_all(cancel_event)
        self.planner.recalculate_thread_priorities()

        logger.info(BANNER)
        logger.info("REPROCESSING COMPLETE:")
        logger.info("   Processed threads: %d", result.threads)
        logger.info("   Old tasks deleted: %d", result.deleted)
        logger.info("   New tasks extracted: %d", result.extracted)
        logger.info(BANNER)
        return result
