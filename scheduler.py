#!/usr/bin/env python3
"""
Scheduler loop for Instaqueue.

One tick scans the job store for due jobs and publishes them one at a
time. Ticks never overlap: a tick that starts while another is still
running is skipped.

Usage:
    python scheduler.py            run the periodic loop in the foreground
    python scheduler.py --once     run a single tick and exit (cron mode)
    python scheduler.py --check    validate account configuration and exit
"""

import asyncio
import logging
import sys
import threading
from datetime import datetime
from typing import NamedTuple, Optional, Tuple

import schedule

from accounts import AccountRegistry
from config import Settings
from database import open_store
from errors import AccountConfigError, InstaqueueError
from logger import JobLogger, setup_logging
from models import Job, JobStatus, utcnow
from notifications import TelegramNotifier
from publisher import GraphPublisher

logger = logging.getLogger(__name__)

ACCOUNT_NOT_CONFIGURED = "account not configured"


class TickResult(NamedTuple):
    skipped: bool = False
    processed: int = 0
    done: int = 0
    failed: int = 0
    job_ids: Tuple[str, ...] = ()

    def to_dict(self) -> dict:
        return self._asdict()


def error_message(exc: Exception) -> str:
    if isinstance(exc, InstaqueueError):
        return str(exc)
    return f"{type(exc).__name__}: {exc}"


class Scheduler:
    """The only component that changes a job after it is created."""

    def __init__(self, store, accounts: AccountRegistry, publisher: GraphPublisher,
                 due_limit: int = 25, notifier: Optional[TelegramNotifier] = None):
        self.store = store
        self.accounts = accounts
        self.publisher = publisher
        self.due_limit = due_limit
        self.notifier = notifier
        self._tick_lock = threading.Lock()

    @property
    def busy(self) -> bool:
        return self._tick_lock.locked()

    async def run_due(self, now: Optional[datetime] = None) -> TickResult:
        """Run one tick: publish every due job, earliest first."""
        if not self._tick_lock.acquire(blocking=False):
            logger.warning("⏰ Previous tick still running, skipping this one")
            return TickResult(skipped=True)
        try:
            now = now or utcnow()
            jobs = self.store.list_due(now, self.due_limit)
            if not jobs:
                logger.debug("⏰ No due jobs at %s", now.isoformat())
                return TickResult()

            logger.info("⏰ %d due job(s)", len(jobs))
            done = failed = 0
            for job in jobs:
                try:
                    outcome = await self._process(job)
                except Exception:
                    # the claim write failed; the stored job is still queued
                    logger.exception("Job %s: could not mark as publishing", job.id)
                    failed += 1
                    continue
                if outcome == JobStatus.DONE:
                    done += 1
                else:
                    failed += 1
            return TickResult(
                processed=len(jobs), done=done, failed=failed, job_ids=tuple(j.id for j in jobs)
            )
        finally:
            self._tick_lock.release()

    def run_tick(self, now: Optional[datetime] = None) -> TickResult:
        """Synchronous entry point for threads, HTTP handlers and cron."""
        return asyncio.run(self.run_due(now))

    async def _process(self, job: Job) -> JobStatus:
        job.status = JobStatus.PUBLISHING
        job.attempts += 1
        # if this write fails the stored job is still queued and the next tick picks it up
        self.store.update(job)

        try:
            return await self._attempt(job)
        except Exception as e:
            return self._settle(job, e)

    async def _attempt(self, job: Job) -> JobStatus:
        log = JobLogger(self.store, job.id, job.account)
        log.running("publish", f"Publishing {job.media_type.value.lower()} to {job.account} (attempt {job.attempts})")

        try:
            account = self.accounts.get(job.account)
        except AccountConfigError as e:
            return await self._fail(job, log, e, ACCOUNT_NOT_CONFIGURED)

        try:
            result = await self.publisher.publish(job, account)
        except Exception as e:
            return await self._fail(job, log, e)

        job.status = JobStatus.DONE
        job.external_media_id = result.media_id
        job.last_error = None
        self.store.update(job)
        log.success("publish", f"Published to {job.account} as media {result.media_id}",
                    {"creation_id": result.creation_id, "media_id": result.media_id})
        await self._notify("job_published", job)
        return job.status

    async def _fail(self, job: Job, log: JobLogger, exc: Exception,
                    message: Optional[str] = None) -> JobStatus:
        job.status = JobStatus.FAILED
        job.last_error = message or error_message(exc)
        self.store.update(job)
        log.failure("publish", exc)
        await self._notify("job_failed", job)
        return job.status

    def _settle(self, job: Job, exc: Exception) -> JobStatus:
        """Second chance for a job whose final state could not be written."""
        logger.exception("Job %s: could not record %s state", job.id, job.status.value)
        job.status = JobStatus.FAILED
        job.last_error = f"state write failed: {error_message(exc)}"
        try:
            self.store.update(job)
        except Exception:
            logger.exception("Job %s: retry of state write failed too", job.id)
        return job.status

    async def _notify(self, event: str, job: Job):
        if not self.notifier:
            return
        try:
            await asyncio.to_thread(getattr(self.notifier, event), job)
        except Exception as e:
            logger.warning("Job %s: %s notification failed: %s", job.id, event, e)


# ─────────────────────────────────────────────────────
# PERIODIC BINDING
# ─────────────────────────────────────────────────────

class SchedulerService:
    """Drives Scheduler.run_tick from a daemon thread every `interval` seconds."""

    def __init__(self, scheduler: Scheduler, interval: float = 60):
        self.scheduler = scheduler
        self.interval = max(1, int(interval))
        self.jobs = schedule.Scheduler()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def tick(self):
        try:
            result = self.scheduler.run_tick()
            if result.processed:
                logger.info("⏰ Tick finished: %d done, %d failed", result.done, result.failed)
        except Exception:
            logger.exception("⏰ Tick failed")

    def run_forever(self):
        logger.info("⏰ Scheduler started, interval %ss", self.interval)
        self.jobs.every(self.interval).seconds.do(self.tick)
        self.tick()
        while not self._stop.is_set():
            self.jobs.run_pending()
            self._stop.wait(1)
        self.jobs.clear()
        logger.info("⏰ Scheduler stopped")

    def start(self) -> threading.Thread:
        self._thread = threading.Thread(target=self.run_forever, daemon=True, name="instaqueue-scheduler")
        self._thread.start()
        return self._thread

    def stop(self, timeout: Optional[float] = None):
        self._stop.set()
        if self._thread:
            self._thread.join(timeout)


def build_scheduler(settings: Settings, store=None, accounts=None) -> Scheduler:
    """Wire a Scheduler from settings."""
    if store is None:
        store = open_store(settings)
    if accounts is None:
        accounts = AccountRegistry.from_settings(settings)
    notifier = TelegramNotifier()
    return Scheduler(
        store=store,
        accounts=accounts,
        publisher=GraphPublisher.from_settings(settings),
        due_limit=settings.due_limit,
        notifier=notifier if notifier.enabled else None,
    )


def validate_config(accounts: AccountRegistry) -> bool:
    print("\n🔍 Validating account configuration...")
    print(f"{'Account':<25} | {'Status'}")
    print("-" * 60)
    all_ok = True
    for item in accounts.summary():
        missing = []
        if not item["has_user_id"]:
            missing.append("ig_user_id")
        if not item["has_token"]:
            missing.append("access_token")
        if missing:
            status = f"❌ Missing: {', '.join(missing)}"
            all_ok = False
        else:
            status = "✅ Ready"
        print(f"{item['account']:<25} | {status}")
    print("-" * 60)
    if not accounts.keys():
        print("⚠️ No accounts configured.")
        all_ok = False
    return all_ok


def main(argv=None) -> int:
    argv = sys.argv[1:] if argv is None else argv
    setup_logging()
    settings = Settings.from_env()
    scheduler = build_scheduler(settings)

    if "--check" in argv:
        return 0 if validate_config(scheduler.accounts) else 1

    if "--once" in argv:
        result = scheduler.run_tick()
        print(f"Processed {result.processed} job(s): {result.done} done, {result.failed} failed.")
        return 0

    service = SchedulerService(scheduler, settings.tick_interval)
    try:
        service.run_forever()
    except KeyboardInterrupt:
        logger.info("⏰ Interrupted")
    return 0


if __name__ == "__main__":
    sys.exit(main())
