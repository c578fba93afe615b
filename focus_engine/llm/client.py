"""
Reasoning client — strategic alignment, thread summaries, and task extraction
via the OpenAI chat completions API.

Behavioral Contract:
- Every call appends one entry to the usage ledger, success or failure.
- Alignment responses are cached by prompt hash for 7 days; summaries and
  extractions for the configured cache window.
- A daily-quota rejection raises QuotaExhaustedError, which batch processing
  treats as "stop now". Any other API failure raises LLMError.
- Malformed model output never raises: alignment degrades to score 0, and
  extraction to the tasks that could be parsed.
"""

import hashlib
import json
import logging
import time
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Protocol, Tuple

from openai import APIConnectionError, APIError, OpenAI, RateLimitError

from focus_engine.llm import prompts
from focus_engine.models.scheduler import UsageRecord
from focus_engine.models.scoring import AlignmentResult
from focus_engine.models.task import (
    Effort,
    Message,
    PriorityMatches,
    PrioritySet,
    StakeholderClass,
    Task,
    TaskSource,
)

logger = logging.getLogger(__name__)

SERVICE = "openai"
ALIGNMENT_CACHE_TTL = timedelta(days=7)

MEETING_PATTERNS = (
    "respond to meeting invitation",
    "accept meeting",
    "decline meeting",
    "confirm availability for meeting",
    "rsvp to",
    "reply to invitation",
    "accept invitation",
    "respond to invitation",
)


class LLMError(Exception):
    """The reasoning capability could not produce an answer."""


class QuotaExhaustedError(LLMError):
    """The daily budget for the reasoning capability is used up."""


class Summarizer(Protocol):
    def summarize_thread(self, messages: List[Message]) -> str:
        ...


class TaskExtractor(Protocol):
    def extract_tasks(self, content: str) -> List[Task]:
        ...


def is_quota_error(error: Exception) -> bool:
    """A rate-limit rejection that will not clear until the quota resets."""
    if not isinstance(error, RateLimitError):
        return False
    if getattr(error, "code", None) == "insufficient_quota":
        return True
    message = str(error).lower()
    return "current quota" in message or "quota exceeded" in message


def hash_prompt(model: str, prompt: str) -> str:
    return hashlib.sha256(f"{model}\n{prompt}".encode("utf-8")).hexdigest()


def estimate_tokens(text: str) -> int:
    """Rough approximation: one token per four characters."""
    return len(text) // 4


def _extract_json(text: str) -> Optional[Dict[str, Any]]:
    """Best-effort JSON object from model output (tolerates code fences and chatter)."""
    text = (text or "").strip()
    if text.startswith("```"):
        text = text.strip("`")
        if text.startswith("json"):
            text = text[4:]
    start, end = text.find("{"), text.rfind("}")
    if start < 0 or end <= start:
        return None
    try:
        data = json.loads(text[start : end + 1])
    except json.JSONDecodeError:
        return None
    return data if isinstance(data, dict) else None


def _string_list(value) -> List[str]:
    if not isinstance(value, list):
        return []
    return [str(v) for v in value if v]


def parse_alignment_response(text: str) -> AlignmentResult:
    """Parse and clamp an alignment answer. Unparseable output scores 0."""
    data = _extract_json(text)
    if data is None:
        logger.warning("Unparseable strategic alignment response: %.200r", text)
        return AlignmentResult(error="unparseable response")

    try:
        score = float(data.get("score", 0.0))
    except (TypeError, ValueError):
        score = 0.0
    return AlignmentResult(
        score=max(0.0, min(5.0, score)),
        matches=PriorityMatches(
            okrs=_string_list(data.get("okrs")),
            focus_areas=_string_list(data.get("focus_areas")),
            projects=_string_list(data.get("projects")),
            key_stakeholder=bool(data.get("key_stakeholder", False)),
        ),
        reasoning=str(data.get("reasoning") or ""),
    )


def _level(value) -> int:
    try:
        level = int(value)
    except (TypeError, ValueError):
        return 0
    return level if 1 <= level <= 5 else 0


def _due(value) -> Optional[datetime]:
    if not value or not isinstance(value, str):
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def is_meeting_invitation(title: str) -> bool:
    lowered = title.lower()
    return any(pattern in lowered for pattern in MEETING_PATTERNS)


def parse_extracted_tasks(text: str) -> List[Task]:
    """
    Tasks from an extraction answer. Meeting invitations and duplicate titles
    are dropped. Ids are placeholders; the caller assigns real ones.
    """
    data = _extract_json(text)
    if data is None:
        logger.warning("Unparseable task extraction response: %.200r", text)
        return []

    tasks = []
    seen_titles = set()
    for i, item in enumerate(data.get("tasks") or []):
        if not isinstance(item, dict):
            continue
        title = str(item.get("title") or "").strip()
        if not title or is_meeting_invitation(title) or title.lower() in seen_titles:
            continue
        seen_titles.add(title.lower())

        effort = str(item.get("effort") or "M").upper()
        stakeholder = str(item.get("stakeholder") or "none").lower()
        tasks.append(
            Task(
                id=f"extracted-{i}",
                source=TaskSource.EMAIL,
                title=title,
                description=str(item.get("description") or ""),
                due_ts=_due(item.get("due_date")),
                project=str(item.get("project") or ""),
                impact=_level(item.get("impact")),
                urgency=_level(item.get("urgency")),
                effort=effort if effort in ("S", "M", "L") else Effort.MEDIUM,
                stakeholder=(
                    stakeholder
                    if stakeholder in {s.value for s in StakeholderClass}
                    else StakeholderClass.NONE
                ),
            )
        )
    return tasks


class OpenAIReasoningClient:
    """Alignment, summarization, and extraction backed by OpenAI chat completions."""

    def __init__(
        self,
        store,
        api_key: Optional[str] = None,
        model: str = "gpt-4o-mini",
        temperature: float = 0.2,
        max_tokens: int = 800,
        timeout: float = 30.0,
        cache_hours: int = 24,
        cost_per_token: float = 0.0000002,
        user: str = "",
        client: Optional[OpenAI] = None,
    ):
        self.store = store
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.cache_ttl = timedelta(hours=cache_hours)
        self.cost_per_token = cost_per_token
        self.user = user
        self.client = client or OpenAI(api_key=api_key, timeout=timeout)

    def _log_usage(self, action: str, tokens: int, started: float, error: Optional[Exception] = None) -> None:
        self.store.log_usage(
            UsageRecord(
                service=SERVICE,
                action=action,
                tokens=tokens,
                cost=tokens * self.cost_per_token,
                duration_ms=int((time.monotonic() - started) * 1000),
                error=str(error) if error else None,
            )
        )

    def _complete(self, action: str, system: str, prompt: str, json_mode: bool) -> Tuple[str, int]:
        """One chat completion. Returns (text, tokens); maps API errors."""
        kwargs = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": prompt},
            ],
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
        }
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        started = time.monotonic()
        try:
            response = self.client.chat.completions.create(**kwargs)
        except RateLimitError as e:
            self._log_usage(action, 0, started, e)
            if is_quota_error(e):
                logger.error("Daily quota exhausted; processing stops until it resets")
                raise QuotaExhaustedError(str(e)) from e
            raise LLMError(f"rate limited: {e}") from e
        except (APIConnectionError, APIError) as e:
            self._log_usage(action, 0, started, e)
            raise LLMError(str(e)) from e

        text = ""
        if response.choices:
            text = response.choices[0].message.content or ""
        usage = getattr(response, "usage", None)
        tokens = usage.total_tokens if usage else estimate_tokens(prompt + text)
        self._log_usage(action, tokens, started)
        return text, tokens

    def _cached_complete(
        self, action: str, system: str, prompt: str, json_mode: bool, ttl: timedelta
    ) -> str:
        key = hash_prompt(self.model, prompt)
        cached = self.store.get_cached_response(key)
        if cached is not None:
            logger.debug("Using cached %s response", action)
            return cached

        text, tokens = self._complete(action, system, prompt, json_mode)
        if text:
            self.store.save_cached_response(
                key, text, self.model, tokens, datetime.utcnow() + ttl
            )
        return text

    def evaluate_strategic_alignment(self, task: Task, priorities: PrioritySet) -> AlignmentResult:
        prompt = prompts.build_strategic_alignment(task, priorities)
        text = self._cached_complete(
            "strategic_alignment", prompts.ALIGNMENT_SYSTEM, prompt, True, ALIGNMENT_CACHE_TTL
        )
        return parse_alignment_response(text)

    def summarize_thread(self, messages: List[Message]) -> str:
        if not messages:
            raise LLMError("cannot summarize a thread without messages")
        prompt = prompts.build_thread_summary(messages)
        summary = self._cached_complete(
            "summarize_thread", prompts.SUMMARY_SYSTEM, prompt, False, self.cache_ttl
        )
        if not summary.strip():
            raise LLMError("empty summary returned")
        return summary.strip()

    def extract_tasks(self, content: str) -> List[Task]:
        prompt = prompts.build_task_extraction(content, self.user)
        text = self._cached_complete(
            "extract_tasks", prompts.EXTRACTION_SYSTEM, prompt, True, self.cache_ttl
        )
        return parse_extracted_tasks(text)
