"""
Job store for Instaqueue.
SQLite is the default backend; an in-memory store is available for
short-lived deployments and tests.
"""

import itertools
import json
import logging
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Dict, List, Optional

from models import Job, JobStatus, format_ts, new_job, parse_ts, utcnow

logger = logging.getLogger(__name__)


class BaseJobStore:
    """Shared behaviour. Subclasses implement storage primitives."""

    default_tz = "UTC"

    def enqueue(self, account, media_url, when, caption="") -> Job:
        """Validate and insert a new queued job. Raises ValidationError."""
        job = new_job(account, media_url, when, caption, default_tz=self.default_tz)
        self._insert(job)
        logger.info("Enqueued job %s for %s at %s", job.id, job.account, format_ts(job.scheduled_at))
        return job

    def _insert(self, job: Job) -> None:
        raise NotImplementedError

    def list_due(self, now: datetime, limit: int) -> List[Job]:
        raise NotImplementedError

    def update(self, job: Job) -> Job:
        raise NotImplementedError

    def list_jobs(self, status: Optional[str] = None, account: Optional[str] = None) -> List[Job]:
        raise NotImplementedError

    def get(self, job_id: str) -> Optional[Job]:
        raise NotImplementedError

    def log_activity(self, job_id: Optional[str], account: Optional[str], action_type: str,
                     status: str, message: str, details: Optional[Dict] = None) -> None:
        raise NotImplementedError

    def recent_activity(self, job_id: Optional[str] = None, limit: int = 50) -> List[Dict]:
        raise NotImplementedError


# ──────────────────────────────────────────────────────
# SQLITE
# ──────────────────────────────────────────────────────

class JobStore(BaseJobStore):
    """SQLite-backed store. One connection per operation."""

    def __init__(self, path: str = "instaqueue.db", default_tz: str = "UTC"):
        self.path = path
        self.default_tz = default_tz
        self.init_database()

    @contextmanager
    def get_db_connection(self):
        """Context manager for database connections."""
        conn = sqlite3.connect(self.path, timeout=30)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def init_database(self):
        """Initialize database schema."""
        with self.get_db_connection() as conn:
            cursor = conn.cursor()

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS jobs (
                    id TEXT PRIMARY KEY,
                    account TEXT NOT NULL,
                    caption TEXT NOT NULL DEFAULT '',
                    media_url TEXT NOT NULL,
                    scheduled_at TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'queued'
                        CHECK(status IN ('queued', 'publishing', 'done', 'failed')),
                    attempts INTEGER NOT NULL DEFAULT 0,
                    last_error TEXT,
                    external_media_id TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_jobs_due ON jobs (status, scheduled_at)
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS activity_logs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    job_id TEXT,
                    account TEXT,
                    action_type TEXT NOT NULL,
                    status TEXT NOT NULL
                        CHECK(status IN ('success', 'error', 'running', 'warning', 'info')),
                    message TEXT,
                    details TEXT,
                    created_at TEXT NOT NULL
                )
            """)
        logger.debug("Database ready at %s", self.path)

    @staticmethod
    def _row_to_job(row) -> Job:
        return Job(
            id=row["id"],
            account=row["account"],
            caption=row["caption"],
            media_url=row["media_url"],
            scheduled_at=parse_ts(row["scheduled_at"]),
            status=JobStatus(row["status"]),
            attempts=row["attempts"],
            last_error=row["last_error"],
            external_media_id=row["external_media_id"],
            created_at=parse_ts(row["created_at"]),
            updated_at=parse_ts(row["updated_at"]),
        )

    def _insert(self, job: Job) -> None:
        with self.get_db_connection() as conn:
            conn.execute("""
                INSERT INTO jobs (
                    id, account, caption, media_url, scheduled_at, status,
                    attempts, last_error, external_media_id, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                job.id,
                job.account,
                job.caption,
                job.media_url,
                format_ts(job.scheduled_at),
                job.status.value,
                job.attempts,
                job.last_error,
                job.external_media_id,
                format_ts(job.created_at),
                format_ts(job.updated_at),
            ))

    def list_due(self, now: datetime, limit: int) -> List[Job]:
        """Queued jobs due at `now`, earliest first, at most `limit`."""
        if limit <= 0:
            return []
        with self.get_db_connection() as conn:
            cursor = conn.execute("""
                SELECT * FROM jobs
                WHERE status = 'queued' AND scheduled_at <= ?
                ORDER BY scheduled_at ASC, rowid ASC
                LIMIT ?
            """, (format_ts(now), limit))
            return [self._row_to_job(row) for row in cursor.fetchall()]

    def update(self, job: Job) -> Job:
        """Persist the full state of a job in a single statement."""
        job.updated_at = utcnow()
        with self.get_db_connection() as conn:
            cursor = conn.execute("""
                UPDATE jobs
                SET account = ?, caption = ?, media_url = ?, scheduled_at = ?, status = ?,
                    attempts = ?, last_error = ?, external_media_id = ?, updated_at = ?
                WHERE id = ?
            """, (
                job.account,
                job.caption,
                job.media_url,
                format_ts(job.scheduled_at),
                job.status.value,
                job.attempts,
                job.last_error,
                job.external_media_id,
                format_ts(job.updated_at),
                job.id,
            ))
            if cursor.rowcount == 0:
                raise ValueError(f"Job {job.id} not found for update.")
        return job

    def list_jobs(self, status: Optional[str] = None, account: Optional[str] = None) -> List[Job]:
        clauses, values = [], []
        if status:
            clauses.append("status = ?")
            values.append(JobStatus(status).value)
        if account:
            clauses.append("account = ?")
            values.append(account)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        with self.get_db_connection() as conn:
            cursor = conn.execute(
                f"SELECT * FROM jobs {where} ORDER BY scheduled_at ASC, rowid ASC", values
            )
            return [self._row_to_job(row) for row in cursor.fetchall()]

    def get(self, job_id: str) -> Optional[Job]:
        with self.get_db_connection() as conn:
            row = conn.execute("SELECT * FROM jobs WHERE id = ?", (job_id,)).fetchone()
            return self._row_to_job(row) if row else None

    # ──────────────────────────────────────────────────
    # ACTIVITY LOGGING
    # ──────────────────────────────────────────────────

    def log_activity(self, job_id, account, action_type, status, message, details=None):
        """Log an activity."""
        with self.get_db_connection() as conn:
            conn.execute("""
                INSERT INTO activity_logs (job_id, account, action_type, status, message, details, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
            """, (
                job_id, account, action_type, status, message,
                json.dumps(details) if details else None,
                format_ts(utcnow()),
            ))

    def recent_activity(self, job_id=None, limit=50):
        """Get recent activity logs, newest first."""
        with self.get_db_connection() as conn:
            if job_id:
                cursor = conn.execute("""
                    SELECT * FROM activity_logs
                    WHERE job_id = ?
                    ORDER BY id DESC
                    LIMIT ?
                """, (job_id, limit))
            else:
                cursor = conn.execute("""
                    SELECT * FROM activity_logs
                    ORDER BY id DESC
                    LIMIT ?
                """, (limit,))
            rows = [dict(row) for row in cursor.fetchall()]
        for row in rows:
            row["details"] = json.loads(row["details"]) if row["details"] else None
        return rows


# ──────────────────────────────────────────────────────
# IN-MEMORY
# ──────────────────────────────────────────────────────

class MemoryJobStore(BaseJobStore):
    """
    Process-local store. Jobs are copied in and out under a lock so a
    reader never observes a job half-way through an update.
    """

    def __init__(self, default_tz: str = "UTC"):
        self.default_tz = default_tz
        self._lock = threading.Lock()
        self._jobs: Dict[str, Job] = {}
        self._order: Dict[str, int] = {}
        self._seq = itertools.count()
        self._activity: List[Dict] = []
        self._activity_seq = itertools.count(1)

    def _insert(self, job: Job) -> None:
        with self._lock:
            if job.id in self._jobs:
                raise ValueError(f"Job with id {job.id} already exists.")
            self._jobs[job.id] = job.model_copy(deep=True)
            self._order[job.id] = next(self._seq)

    def _sorted(self, jobs) -> List[Job]:
        return sorted(jobs, key=lambda j: (j.scheduled_at, self._order[j.id]))

    def list_due(self, now: datetime, limit: int) -> List[Job]:
        if limit <= 0:
            return []
        with self._lock:
            due = [j for j in self._jobs.values()
                   if j.status == JobStatus.QUEUED and j.scheduled_at <= now]
            return [j.model_copy(deep=True) for j in self._sorted(due)[:limit]]

    def update(self, job: Job) -> Job:
        job.updated_at = utcnow()
        with self._lock:
            if job.id not in self._jobs:
                raise ValueError(f"Job {job.id} not found for update.")
            self._jobs[job.id] = job.model_copy(deep=True)
        return job

    def list_jobs(self, status=None, account=None) -> List[Job]:
        wanted = JobStatus(status) if status else None
        with self._lock:
            jobs = [j for j in self._jobs.values()
                    if (wanted is None or j.status == wanted)
                    and (account is None or j.account == account)]
            return [j.model_copy(deep=True) for j in self._sorted(jobs)]

    def get(self, job_id):
        with self._lock:
            job = self._jobs.get(job_id)
            return job.model_copy(deep=True) if job else None

    def log_activity(self, job_id, account, action_type, status, message, details=None):
        with self._lock:
            self._activity.append({
                "id": next(self._activity_seq),
                "job_id": job_id,
                "account": account,
                "action_type": action_type,
                "status": status,
                "message": message,
                "details": details,
                "created_at": format_ts(utcnow()),
            })

    def recent_activity(self, job_id=None, limit=50):
        with self._lock:
            rows = [dict(r) for r in self._activity if job_id is None or r["job_id"] == job_id]
        return list(reversed(rows))[:limit]


def open_store(settings) -> BaseJobStore:
    """Pick the store backend from settings."""
    if settings.database_path == ":memory:":
        logger.warning("Using in-memory job store; jobs are lost on restart.")
        return MemoryJobStore(default_tz=settings.default_timezone)
    return JobStore(settings.database_path, default_tz=settings.default_timezone)
