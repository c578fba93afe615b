"""
Focus Store — the storage collaborator the engine scores against.

Behavioral Contract:
- One SQLite connection, serialized by a re-entrant lock; safe to share across
  worker threads.
- Every write is its own transaction. A cancelled batch loses progress,
  never consistency.
- Feedback is append-only: there is no API to update or delete it.
- At most one live embedding per task (task_id is the primary key).
- Readers copy rows out under the lock and do their math outside it, so a long
  K-NN scan never holds writers back for longer than one SELECT.
- Malformed JSON columns decode to empty values with a warning.
"""

import json
import logging
import sqlite3
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from focus_engine.models.feedback import Feedback, TaskEmbedding
from focus_engine.models.scheduler import UsageRecord
from focus_engine.models.task import (
    Message,
    Priority,
    PriorityKind,
    PriorityMatches,
    Task,
    TaskSource,
    TaskStatus,
    Thread,
)

logger = logging.getLogger(__name__)

HIGH_PRIORITY_SCORE = 70
INBOX_LABEL = "INBOX"


class TaskNotFoundError(KeyError):
    """Raised when an operation names a task id the store does not know."""


_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS tasks (
        id TEXT PRIMARY KEY,
        source TEXT NOT NULL,
        source_id TEXT NOT NULL DEFAULT '',
        title TEXT NOT NULL,
        description TEXT NOT NULL DEFAULT '',
        due_ts TEXT,
        project TEXT NOT NULL DEFAULT '',
        impact INTEGER NOT NULL DEFAULT 0,
        urgency INTEGER NOT NULL DEFAULT 0,
        effort TEXT NOT NULL DEFAULT 'M',
        stakeholder TEXT NOT NULL DEFAULT 'none',
        status TEXT NOT NULL DEFAULT 'pending',
        score INTEGER NOT NULL DEFAULT 0,
        matched_priorities TEXT NOT NULL DEFAULT '{}',
        metadata TEXT NOT NULL DEFAULT '{}',
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        completed_at TEXT
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_tasks_status ON tasks(status)",
    "CREATE INDEX IF NOT EXISTS idx_tasks_source ON tasks(source, source_id)",
    """
    CREATE TABLE IF NOT EXISTS threads (
        id TEXT PRIMARY KEY,
        summary TEXT NOT NULL DEFAULT '',
        task_count INTEGER NOT NULL DEFAULT 0,
        priority_score INTEGER NOT NULL DEFAULT 0,
        relevant_to_user INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS messages (
        id TEXT PRIMARY KEY,
        thread_id TEXT NOT NULL,
        sender TEXT NOT NULL DEFAULT '',
        recipients TEXT NOT NULL DEFAULT '',
        subject TEXT NOT NULL DEFAULT '',
        body TEXT NOT NULL DEFAULT '',
        labels TEXT NOT NULL DEFAULT '[]',
        ts TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_messages_thread ON messages(thread_id)",
    """
    CREATE TABLE IF NOT EXISTS priorities (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        kind TEXT NOT NULL,
        text TEXT NOT NULL,
        notes TEXT NOT NULL DEFAULT ''
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS task_embeddings (
        task_id TEXT PRIMARY KEY,
        embedding TEXT NOT NULL,
        content_hash TEXT NOT NULL,
        model TEXT NOT NULL,
        generated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS priority_feedback (
        id TEXT PRIMARY KEY,
        task_id TEXT NOT NULL,
        user_vote INTEGER NOT NULL,
        reason TEXT NOT NULL DEFAULT '',
        original_score REAL NOT NULL,
        adjusted_score REAL NOT NULL,
        created_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_feedback_task ON priority_feedback(task_id)",
    """
    CREATE TABLE IF NOT EXISTS usage (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        service TEXT NOT NULL,
        action TEXT NOT NULL,
        tokens INTEGER NOT NULL DEFAULT 0,
        cost REAL NOT NULL DEFAULT 0,
        duration_ms INTEGER NOT NULL DEFAULT 0,
        error TEXT,
        created_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_usage_created ON usage(created_at)",
    """
    CREATE TABLE IF NOT EXISTS llm_cache (
        hash TEXT PRIMARY KEY,
        response TEXT NOT NULL,
        model TEXT NOT NULL,
        tokens INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL,
        expires_at TEXT NOT NULL
    )
    """,
)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _load_json(raw: Optional[str], default, what: str):
    """Decode a stored JSON column; malformed data degrades to the default."""
    if not raw:
        return default
    try:
        return json.loads(raw)
    except (ValueError, TypeError):
        logger.warning("Malformed %s JSON in store, treating as empty: %.80r", what, raw)
        return default


class FocusStore:
    """
    SQLite-backed repository for tasks, threads, priorities, embeddings,
    feedback, and the usage ledger.
    """

    def __init__(self, db_path: str = ":memory:"):
        self.db_path = db_path
        if db_path != ":memory:":
            Path(db_path).expanduser().parent.mkdir(parents=True, exist_ok=True)
            db_path = str(Path(db_path).expanduser())
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        self._init_schema()

    def _init_schema(self) -> None:
        """Create tables if they don't exist."""
        with self._lock, self._conn:
            for statement in _SCHEMA:
                self._conn.execute(statement)

    def _fetchall(self, query: str, params: tuple = ()) -> List[sqlite3.Row]:
        with self._lock:
            return self._conn.execute(query, params).fetchall()

    def _fetchone(self, query: str, params: tuple = ()) -> Optional[sqlite3.Row]:
        with self._lock:
            return self._conn.execute(query, params).fetchone()

    def _execute(self, query: str, params: tuple = ()) -> int:
        """Run one write in its own transaction. Returns affected rows."""
        with self._lock, self._conn:
            return self._conn.execute(query, params).rowcount

    # --- Tasks ---

    def save_task(self, task: Task) -> Task:
        """Insert or replace a task."""
        task.updated_at = datetime.utcnow()
        self._execute(
            """
            INSERT OR REPLACE INTO tasks (
                id, source, source_id, title, description, due_ts, project,
                impact, urgency, effort, stakeholder, status, score,
                matched_priorities, metadata, created_at, updated_at, completed_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                task.id,
                task.source.value,
                task.source_id,
                task.title,
                task.description,
                _iso(task.due_ts),
                task.project,
                task.impact,
                task.urgency,
                task.effort.value,
                task.stakeholder.value,
                task.status.value,
                task.score,
                task.matched_priorities.model_dump_json(),
                json.dumps(task.metadata),
                task.created_at.isoformat(),
                task.updated_at.isoformat(),
                _iso(task.completed_at),
            ),
        )
        return task

    def _deserialize_task(self, row: sqlite3.Row) -> Task:
        matches = _load_json(row["matched_priorities"], {}, "matched_priorities")
        try:
            matched = PriorityMatches.model_validate(matches)
        except ValueError:
            logger.warning("Unusable matched_priorities for task %s, treating as empty", row["id"])
            matched = PriorityMatches()
        metadata = _load_json(row["metadata"], {}, "metadata")
        return Task(
            id=row["id"],
            source=TaskSource(row["source"]),
            source_id=row["source_id"],
            title=row["title"],
            description=row["description"],
            due_ts=_parse_dt(row["due_ts"]),
            project=row["project"],
            impact=row["impact"],
            urgency=row["urgency"],
            effort=row["effort"],
            stakeholder=row["stakeholder"],
            status=TaskStatus(row["status"]),
            score=row["score"],
            matched_priorities=matched,
            metadata=metadata if isinstance(metadata, dict) else {},
            created_at=_parse_dt(row["created_at"]),
            updated_at=_parse_dt(row["updated_at"]),
            completed_at=_parse_dt(row["completed_at"]),
        )

    def get_task(self, task_id: str) -> Optional[Task]:
        row = self._fetchone("SELECT * FROM tasks WHERE id = ?", (task_id,))
        return self._deserialize_task(row) if row else None

    def require_task(self, task_id: str) -> Task:
        task = self.get_task(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        return task

    def get_tasks_by_status(
        self, status: TaskStatus, limit: Optional[int] = None
    ) -> List[Task]:
        """Tasks with a given status, highest score first, oldest first on ties."""
        query = "SELECT * FROM tasks WHERE status = ? ORDER BY score DESC, created_at, id"
        params: tuple = (status.value,)
        if limit:
            query += " LIMIT ?"
            params += (limit,)
        return [self._deserialize_task(r) for r in self._fetchall(query, params)]

    def get_tasks_for_source(self, source: TaskSource, source_id: str) -> List[Task]:
        rows = self._fetchall(
            "SELECT * FROM tasks WHERE source = ? AND source_id = ? ORDER BY created_at, id",
            (source.value, source_id),
        )
        return [self._deserialize_task(r) for r in rows]

    def count_tasks(self, source: Optional[TaskSource] = None) -> int:
        if source is None:
            row = self._fetchone("SELECT COUNT(*) AS cnt FROM tasks")
        else:
            row = self._fetchone(
                "SELECT COUNT(*) AS cnt FROM tasks WHERE source = ?", (source.value,)
            )
        return row["cnt"]

    def delete_task(self, task_id: str) -> bool:
        return self._execute("DELETE FROM tasks WHERE id = ?", (task_id,)) > 0

    def delete_extracted_tasks(self) -> int:
        """Drop every task that was auto-extracted from a conversation."""
        return self._execute("DELETE FROM tasks WHERE source = ?", (TaskSource.EMAIL.value,))

    def update_task_score(
        self,
        task_id: str,
        score: int,
        urgency: int,
        matches: PriorityMatches,
    ) -> bool:
        """Persist one task's scoring result atomically."""
        return self._execute(
            """
            UPDATE tasks SET score = ?, urgency = ?, matched_priorities = ?, updated_at = ?
            WHERE id = ?
            """,
            (
                score,
                urgency,
                matches.model_dump_json(),
                datetime.utcnow().isoformat(),
                task_id,
            ),
        ) > 0

    def set_task_status(self, task_id: str, status: TaskStatus) -> bool:
        """Change status; completed_at follows the status."""
        now = datetime.utcnow()
        completed_at = now.isoformat() if status == TaskStatus.COMPLETED else None
        return self._execute(
            "UPDATE tasks SET status = ?, completed_at = ?, updated_at = ? WHERE id = ?",
            (status.value, completed_at, now.isoformat(), task_id),
        ) > 0

    def set_task_due(self, task_id: str, due: datetime) -> bool:
        return self._execute(
            "UPDATE tasks SET due_ts = ?, updated_at = ? WHERE id = ?",
            (due.isoformat(), datetime.utcnow().isoformat(), task_id),
        ) > 0

    def get_task_stats(self, since: datetime) -> Dict[str, int]:
        """Status counts, completions since a timestamp, and high-priority backlog."""
        stats = {status.value: 0 for status in TaskStatus}
        for row in self._fetchall("SELECT status, COUNT(*) AS cnt FROM tasks GROUP BY status"):
            stats[row["status"]] = row["cnt"]
        row = self._fetchone(
            "SELECT COUNT(*) AS cnt FROM tasks WHERE status = ? AND completed_at >= ?",
            (TaskStatus.COMPLETED.value, since.isoformat()),
        )
        stats["completed_today"] = row["cnt"]
        row = self._fetchone(
            "SELECT COUNT(*) AS cnt FROM tasks WHERE status = ? AND score >= ?",
            (TaskStatus.PENDING.value, HIGH_PRIORITY_SCORE),
        )
        stats["high_priority"] = row["cnt"]
        return stats

    # --- Threads & messages ---

    def save_thread(self, thread: Thread) -> Thread:
        thread.updated_at = datetime.utcnow()
        self._execute(
            """
            INSERT INTO threads (
                id, summary, task_count, priority_score, relevant_to_user,
                created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                summary = excluded.summary,
                task_count = excluded.task_count,
                priority_score = excluded.priority_score,
                relevant_to_user = excluded.relevant_to_user,
                updated_at = excluded.updated_at
            """,
            (
                thread.id,
                thread.summary,
                thread.task_count,
                thread.priority_score,
                int(thread.relevant_to_user),
                thread.created_at.isoformat(),
                thread.updated_at.isoformat(),
            ),
        )
        return thread

    def _deserialize_thread(self, row: sqlite3.Row) -> Thread:
        return Thread(
            id=row["id"],
            summary=row["summary"],
            task_count=row["task_count"],
            priority_score=row["priority_score"],
            relevant_to_user=bool(row["relevant_to_user"]),
            created_at=_parse_dt(row["created_at"]),
            updated_at=_parse_dt(row["updated_at"]),
        )

    def get_thread(self, thread_id: str) -> Optional[Thread]:
        row = self._fetchone("SELECT * FROM threads WHERE id = ?", (thread_id,))
        return self._deserialize_thread(row) if row else None

    def get_threads_needing_summary(self, limit: int = 0) -> List[Thread]:
        """Unsummarized threads, oldest first with id as tiebreak (0 = no limit)."""
        query = "SELECT * FROM threads WHERE summary = '' ORDER BY created_at, id"
        params: tuple = ()
        if limit:
            query += " LIMIT ?"
            params = (limit,)
        return [self._deserialize_thread(r) for r in self._fetchall(query, params)]

    def get_summarized_threads(self) -> List[Thread]:
        rows = self._fetchall("SELECT * FROM threads WHERE summary <> '' ORDER BY id")
        return [self._deserialize_thread(r) for r in rows]

    def recalculate_thread_priorities(self) -> int:
        """Per thread: extracted-task count, max task score, and the relevant-to-user flag."""
        return self._execute(
            """
            UPDATE threads SET
                task_count = (
                    SELECT COUNT(*) FROM tasks
                    WHERE tasks.source = ? AND tasks.source_id = threads.id
                ),
                priority_score = COALESCE((
                    SELECT MAX(score) FROM tasks
                    WHERE tasks.source = ? AND tasks.source_id = threads.id
                ), 0),
                relevant_to_user = EXISTS (
                    SELECT 1 FROM tasks
                    WHERE tasks.source = ? AND tasks.source_id = threads.id
                ) AND EXISTS (
                    SELECT 1 FROM messages
                    WHERE messages.thread_id = threads.id AND messages.labels LIKE ?
                )
            """,
            (
                TaskSource.EMAIL.value,
                TaskSource.EMAIL.value,
                TaskSource.EMAIL.value,
                f'%"{INBOX_LABEL}"%',
            ),
        )

    def save_message(self, message: Message) -> None:
        self._execute(
            """
            INSERT OR REPLACE INTO messages (
                id, thread_id, sender, recipients, subject, body, labels, ts
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                message.id,
                message.thread_id,
                message.sender,
                message.recipients,
                message.subject,
                message.body,
                json.dumps(message.labels),
                message.timestamp.isoformat(),
            ),
        )

    def get_thread_messages(self, thread_id: str) -> List[Message]:
        """Messages of a thread, newest first."""
        rows = self._fetchall(
            "SELECT * FROM messages WHERE thread_id = ? ORDER BY ts DESC", (thread_id,)
        )
        return [
            Message(
                id=r["id"],
                thread_id=r["thread_id"],
                sender=r["sender"],
                recipients=r["recipients"],
                subject=r["subject"],
                body=r["body"],
                labels=_load_json(r["labels"], [], "labels"),
                timestamp=_parse_dt(r["ts"]),
            )
            for r in rows
        ]

    # --- Priorities ---

    def get_priorities(self, kind: Optional[PriorityKind] = None) -> List[Priority]:
        if kind is None:
            rows = self._fetchall("SELECT * FROM priorities ORDER BY id")
        else:
            rows = self._fetchall(
                "SELECT * FROM priorities WHERE kind = ? ORDER BY id", (kind.value,)
            )
        return [
            Priority(id=r["id"], kind=PriorityKind(r["kind"]), text=r["text"], notes=r["notes"])
            for r in rows
        ]

    def add_priority(self, priority: Priority) -> Priority:
        with self._lock, self._conn:
            cursor = self._conn.execute(
                "INSERT INTO priorities (kind, text, notes) VALUES (?, ?, ?)",
                (priority.kind.value, priority.text, priority.notes),
            )
        priority.id = cursor.lastrowid
        return priority

    def replace_priorities(self, priorities: List[Priority]) -> None:
        """Swap the whole priority set in one transaction."""
        with self._lock, self._conn:
            self._conn.execute("DELETE FROM priorities")
            self._conn.executemany(
                "INSERT INTO priorities (kind, text, notes) VALUES (?, ?, ?)",
                [(p.kind.value, p.text, p.notes) for p in priorities],
            )

    # --- Embeddings ---

    def save_embedding(self, embedding: TaskEmbedding) -> None:
        """Insert or replace the live embedding of a task."""
        self._execute(
            """
            INSERT OR REPLACE INTO task_embeddings (
                task_id, embedding, content_hash, model, generated_at
            ) VALUES (?, ?, ?, ?, ?)
            """,
            (
                embedding.task_id,
                json.dumps(embedding.vector),
                embedding.content_hash,
                embedding.model,
                embedding.generated_at.isoformat(),
            ),
        )

    def get_embedding(self, task_id: str) -> Optional[TaskEmbedding]:
        row = self._fetchone("SELECT * FROM task_embeddings WHERE task_id = ?", (task_id,))
        if not row:
            return None
        vector = _load_json(row["embedding"], None, "embedding")
        if not vector:
            return None
        return TaskEmbedding(
            task_id=row["task_id"],
            vector=vector,
            content_hash=row["content_hash"],
            model=row["model"],
            generated_at=_parse_dt(row["generated_at"]),
        )

    def has_embedding(self, task_id: str) -> bool:
        row = self._fetchone(
            "SELECT COUNT(*) AS cnt FROM task_embeddings WHERE task_id = ?", (task_id,)
        )
        return row["cnt"] > 0

    # --- Feedback ---

    def append_feedback(self, feedback: Feedback) -> Feedback:
        self._execute(
            """
            INSERT INTO priority_feedback (
                id, task_id, user_vote, reason, original_score, adjusted_score, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                feedback.id,
                feedback.task_id,
                feedback.vote,
                feedback.reason,
                feedback.original_score,
                feedback.adjusted_score,
                feedback.created_at.isoformat(),
            ),
        )
        return feedback

    def count_feedback(self) -> int:
        row = self._fetchone("SELECT COUNT(*) AS cnt FROM priority_feedback")
        return row["cnt"]

    def get_feedback_for_task(self, task_id: str) -> List[Feedback]:
        rows = self._fetchall(
            "SELECT * FROM priority_feedback WHERE task_id = ? ORDER BY created_at, id",
            (task_id,),
        )
        return [
            Feedback(
                id=r["id"],
                task_id=r["task_id"],
                vote=r["user_vote"],
                reason=r["reason"],
                original_score=r["original_score"],
                adjusted_score=r["adjusted_score"],
                created_at=_parse_dt(r["created_at"]),
            )
            for r in rows
        ]

    def get_neighbor_candidates(
        self, exclude_task_id: str, model: Optional[str] = None
    ) -> List[Tuple[str, List[float], Feedback]]:
        """
        Every (task, embedding, feedback) triple except the target's own,
        restricted to embeddings from `model` when given.
        A task with several votes appears once per vote. One SELECT, so the
        caller sees a single consistent snapshot.
        """
        query = """
            SELECT te.task_id, te.embedding, pf.id, pf.user_vote, pf.reason,
                   pf.original_score, pf.adjusted_score, pf.created_at
            FROM task_embeddings te
            INNER JOIN priority_feedback pf ON te.task_id = pf.task_id
            WHERE te.task_id != ?
        """
        params: List[Any] = [exclude_task_id]
        if model is not None:
            query += " AND te.model = ?"
            params.append(model)
        query += " ORDER BY pf.created_at, pf.id"
        rows = self._fetchall(query, tuple(params))
        candidates = []
        for r in rows:
            vector = _load_json(r["embedding"], None, "embedding")
            if not vector:
                continue
            feedback = Feedback(
                id=r["id"],
                task_id=r["task_id"],
                vote=r["user_vote"],
                reason=r["reason"],
                original_score=r["original_score"],
                adjusted_score=r["adjusted_score"],
                created_at=_parse_dt(r["created_at"]),
            )
            candidates.append((r["task_id"], vector, feedback))
        return candidates

    # --- Usage ledger ---

    def log_usage(self, record: UsageRecord) -> None:
        self._execute(
            """
            INSERT INTO usage (service, action, tokens, cost, duration_ms, error, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                record.service,
                record.action,
                record.tokens,
                record.cost,
                record.duration_ms,
                record.error,
                record.created_at.isoformat(),
            ),
        )

    def get_usage_since(self, since: datetime) -> Tuple[int, float]:
        """Total (tokens, cost) logged at or after a timestamp."""
        row = self._fetchone(
            "SELECT COALESCE(SUM(tokens), 0) AS tokens, COALESCE(SUM(cost), 0) AS cost "
            "FROM usage WHERE created_at >= ?",
            (since.isoformat(),),
        )
        return int(row["tokens"]), float(row["cost"])

    # --- LLM response cache ---

    def get_cached_response(self, prompt_hash: str) -> Optional[str]:
        row = self._fetchone(
            "SELECT response FROM llm_cache WHERE hash = ? AND expires_at > ?",
            (prompt_hash, datetime.utcnow().isoformat()),
        )
        return row["response"] if row else None

    def save_cached_response(
        self,
        prompt_hash: str,
        response: str,
        model: str,
        tokens: int,
        expires_at: datetime,
    ) -> None:
        self._execute(
            """
            INSERT OR REPLACE INTO llm_cache (hash, response, model, tokens, created_at, expires_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                prompt_hash,
                response,
                model,
                tokens,
                datetime.utcnow().isoformat(),
                expires_at.isoformat(),
            ),
        )

    def clean_expired_cache(self) -> int:
        return self._execute(
            "DELETE FROM llm_cache WHERE expires_at <= ?", (datetime.utcnow().isoformat(),)
        )

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self._conn.close()
