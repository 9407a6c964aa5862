"""Process-local scheduler for the scan-and-notify jobs.

Each registered job gets its own asyncio task that sleeps until the job's next
cadence tick and then runs the job body in a worker thread with a fresh
session. A failing job is logged and rolled back; it never stops its own loop
or any other job. The same job never runs twice concurrently: a tick or
manual trigger that finds it already running is skipped.
"""

import asyncio
import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from functools import partial
from zoneinfo import ZoneInfo

from sqlalchemy.orm import Session

from ..config import Settings, settings
from ..database.base import utcnow
from ..errors import JobError, ValidationError
from ..notifications.channels import DeliverySink
from ..notifications.delivery import dispatch_pending
from . import jobs
from .cadence import SUNDAY, Cadence, IntervalCadence

logger = logging.getLogger(__name__)

SCHEME_DEADLINES = "scheme_deadlines"
WEEKLY_REMINDERS = "weekly_reminders"
OVERDUE_GRIEVANCES = "overdue_grievances"
NOTIFICATION_CLEANUP = "notification_cleanup"
BIRTHDAY_WISHES = "birthday_wishes"
PENDING_APPLICATIONS = "pending_applications"
NOTIFICATION_DELIVERY = "notification_delivery"

JOB_CADENCES: dict[str, Cadence] = {
    SCHEME_DEADLINES: Cadence(9),
    WEEKLY_REMINDERS: Cadence(10, weekday=SUNDAY),
    OVERDUE_GRIEVANCES: Cadence(14),
    NOTIFICATION_CLEANUP: Cadence(0, weekday=SUNDAY),
    BIRTHDAY_WISHES: Cadence(8),
    PENDING_APPLICATIONS: Cadence(11),
}


@dataclass
class JobRun:
    """Outcome of one job execution."""

    name: str
    started_at: datetime
    finished_at: datetime | None = None
    count: int = 0
    error: JobError | None = None
    skipped: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None and not self.skipped


@dataclass
class ScheduledJob:
    name: str
    cadence: Cadence | IntervalCadence
    body: Callable[[Session, datetime], int]
    lock: threading.Lock = field(default_factory=threading.Lock)


class Scheduler:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        *,
        config: Settings = settings,
        clock: Callable[[], datetime] = utcnow,
        delivery_sink: DeliverySink | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock
        self._tz = ZoneInfo(config.scheduler_timezone)
        self._jobs: dict[str, ScheduledJob] = {}
        self._tasks: list[asyncio.Task] = []
        self._stop: asyncio.Event | None = None
        self.last_runs: dict[str, JobRun] = {}

        self._register(
            SCHEME_DEADLINES,
            partial(jobs.check_scheme_deadlines, window_days=config.deadline_window_days),
        )
        self._register(
            WEEKLY_REMINDERS,
            partial(jobs.send_weekly_reminders, scheme_limit=config.weekly_reminder_scheme_limit),
        )
        self._register(
            OVERDUE_GRIEVANCES,
            partial(
                jobs.check_overdue_grievances,
                overdue_days=config.grievance_overdue_days,
                escalation_days=config.grievance_escalation_days,
            ),
        )
        self._register(
            NOTIFICATION_CLEANUP,
            partial(jobs.cleanup_notifications, retention_days=config.notification_retention_days),
        )
        self._register(BIRTHDAY_WISHES, partial(jobs.send_birthday_wishes, tz=self._tz))
        self._register(
            PENDING_APPLICATIONS,
            partial(jobs.check_pending_applications, pending_days=config.pending_application_days),
        )

        if delivery_sink is not None:
            batch_size = config.delivery_batch_size

            def _deliver(db: Session, now: datetime) -> int:
                return dispatch_pending(db, delivery_sink, now, batch_size).processed

            self._jobs[NOTIFICATION_DELIVERY] = ScheduledJob(
                NOTIFICATION_DELIVERY,
                IntervalCadence(config.delivery_interval_minutes),
                _deliver,
            )

    def _register(self, name: str, body: Callable[[Session, datetime], int]) -> None:
        self._jobs[name] = ScheduledJob(name, JOB_CADENCES[name], body)

    @property
    def job_names(self) -> list[str]:
        return list(self._jobs)

    @property
    def running(self) -> bool:
        return bool(self._tasks)

    # ── Execution ─────────────────────────────────────────────────────

    def run_job(self, name: str) -> JobRun:
        """Run one job to completion in the calling thread, inside its own transaction."""
        job = self._jobs.get(name)
        if job is None:
            raise ValidationError(f"Unknown job: {name!r}")

        started = self._clock()
        if not job.lock.acquire(blocking=False):
            logger.warning("Job %s is still running, skipping this tick", name)
            return JobRun(name, started_at=started, finished_at=started, skipped=True)

        run = JobRun(name, started_at=started)
        db: Session | None = None
        try:
            db = self._session_factory()
            run.count = job.body(db, started)
            db.commit()
        except Exception as exc:
            if db is not None:
                db.rollback()
            run.error = JobError(name, exc)
            logger.exception("Job %s failed", name)
        finally:
            if db is not None:
                db.close()
            job.lock.release()
            run.finished_at = self._clock()
            self.last_runs[name] = run

        if run.ok:
            logger.info(
                "Job %s finished: %d records in %.2fs",
                name, run.count, (run.finished_at - run.started_at).total_seconds(),
            )
        return run

    async def trigger(self, name: str) -> JobRun:
        if name not in self._jobs:
            raise ValidationError(f"Unknown job: {name!r}")
        return await asyncio.to_thread(self.run_job, name)

    # Manual triggers, used by admin endpoints and tests

    def check_scheme_deadlines(self) -> JobRun:
        return self.run_job(SCHEME_DEADLINES)

    def send_weekly_reminders(self) -> JobRun:
        return self.run_job(WEEKLY_REMINDERS)

    def check_overdue_grievances(self) -> JobRun:
        return self.run_job(OVERDUE_GRIEVANCES)

    def cleanup_old_notifications(self) -> JobRun:
        return self.run_job(NOTIFICATION_CLEANUP)

    def send_birthday_wishes(self) -> JobRun:
        return self.run_job(BIRTHDAY_WISHES)

    def check_pending_applications(self) -> JobRun:
        return self.run_job(PENDING_APPLICATIONS)

    def dispatch_notifications(self) -> JobRun:
        return self.run_job(NOTIFICATION_DELIVERY)

    # ── Lifecycle ─────────────────────────────────────────────────────

    def seconds_until_next_run(self, name: str) -> float:
        job = self._jobs[name]
        now_local = self._clock().astimezone(self._tz)
        fire_at = job.cadence.next_run(now_local)
        return max((fire_at.astimezone(UTC) - now_local.astimezone(UTC)).total_seconds(), 0.0)

    async def _job_loop(self, job: ScheduledJob) -> None:
        while not self._stop.is_set():
            delay = self.seconds_until_next_run(job.name)
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=delay)
            except asyncio.TimeoutError:
                try:
                    await asyncio.to_thread(self.run_job, job.name)
                except Exception:
                    logger.exception("Unexpected error running job %s", job.name)

    async def start(self) -> None:
        """Begin firing every registered job on its cadence."""
        if self.running:
            return
        self._stop = asyncio.Event()
        self._tasks = [
            asyncio.create_task(self._job_loop(job), name=f"scheduler:{job.name}")
            for job in self._jobs.values()
        ]
        logger.info(
            "Scheduler started (%s): %s",
            self._tz.key,
            ", ".join(f"{j.name} {j.cadence.describe()}" for j in self._jobs.values()),
        )

    async def stop(self) -> None:
        """Stop the timers and wait for in-flight job runs to finish."""
        if not self.running:
            return
        self._stop.set()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("Scheduler stopped")
