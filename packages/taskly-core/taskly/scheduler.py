"""
Periodic jobs.

TaskScheduler ties the generator and the dispatcher together. run_tick() is the
single entry point for "do what is due now"; start() registers it (and the daily
advance generation and weekly maintenance) on an APScheduler AsyncIOScheduler
running in UTC.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from taskly.clock import utc_now
from taskly.config import TasklyConfig
from taskly.dispatcher import DispatchResult, NotificationDispatcher
from taskly.generator import GenerationResult, InstanceGenerator

logger = logging.getLogger(__name__)

TICK_JOB = "tick"
ADVANCE_JOB = "advance_generation"
MAINTENANCE_JOB = "maintenance"


@dataclass
class TickResult:
    """What one tick did; a phase that failed outright is None."""

    started_at: datetime
    generation: Optional[GenerationResult] = None
    dispatch: Optional[DispatchResult] = None
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "started_at": self.started_at.isoformat(),
            "generation": self.generation.to_dict() if self.generation else None,
            "dispatch": self.dispatch.to_dict() if self.dispatch else None,
            "errors": list(self.errors),
        }


class TaskScheduler:
    """
    Runs generation and dispatch on a timer.

    Args:
        generator: InstanceGenerator
        dispatcher: NotificationDispatcher
        config: TasklyConfig; defaults are used when omitted
        clock: Returns the current UTC instant
    """

    def __init__(
        self,
        generator: InstanceGenerator,
        dispatcher: NotificationDispatcher,
        config: TasklyConfig | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.generator = generator
        self.dispatcher = dispatcher
        self.config = config or TasklyConfig()
        self.clock = clock
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._inflight: set[asyncio.Task] = set()

    @property
    def running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    async def run_tick(self, now: datetime | None = None) -> TickResult:
        """
        Generate today's recurring instances, then send what is due.

        Never raises: a failing phase is logged and the tick moves on. Safe to
        call concurrently and more often than scheduled.
        """
        now = now or self.clock()
        result = TickResult(started_at=now)

        with self._tracked():
            try:
                result.generation = await self.generator.generate_due_instances(now)
            except Exception as e:
                result.errors.append(f"generation: {e}")
                logger.exception("Recurring generation phase failed")

            try:
                result.dispatch = await self.dispatcher.run_tick(now)
            except Exception as e:
                result.errors.append(f"dispatch: {e}")
                logger.exception("Notification dispatch phase failed")

        return result

    async def run_advance_generation(self, now: datetime | None = None) -> Optional[GenerationResult]:
        """Generate instances for the next `advance_days` days."""
        now = now or self.clock()
        with self._tracked():
            try:
                return await self.generator.generate_due_instances(
                    now, lookahead_days=self.config.scheduler.advance_days
                )
            except Exception:
                logger.exception("Advance generation failed")
                return None

    async def run_maintenance(self, now: datetime | None = None) -> dict:
        """
        Weekly upkeep. Each step runs on its own; a failed step is logged and
        reported as None.

        Broken templates are repaired before the expiry step looks at them.
        """
        now = now or self.clock()
        summary = {}
        steps = (
            ("repaired_templates", self.generator.repair_templates),
            ("detached_instances", self.generator.detach_orphaned_instances),
            ("expired_templates", lambda: self.generator.expire_finished_templates(now)),
            ("archived_instances", lambda: self.generator.archive_completed_instances(now)),
            ("deleted_notifications", lambda: self.dispatcher.cleanup_notifications(now)),
        )

        with self._tracked():
            for name, step in steps:
                try:
                    summary[name] = await step()
                except Exception:
                    summary[name] = None
                    logger.exception(f"Maintenance step {name} failed")

        logger.info(f"Maintenance finished: {summary}")
        return summary

    def _tracked(self):
        return _InflightTracker(self._inflight)

    def start(self) -> "SchedulerHandle":
        """
        Register the periodic jobs and start scheduling. Must be called from
        inside the running event loop.
        """
        if self.running:
            logger.warning("Scheduler already running")
            return SchedulerHandle(self)

        sched = self.config.scheduler
        scheduler = AsyncIOScheduler(timezone="UTC")
        job_defaults = {"max_instances": 1, "coalesce": True, "replace_existing": True}

        # First tick right away rather than one interval after startup
        scheduler.add_job(
            self.run_tick,
            "interval",
            minutes=sched.tick_minutes,
            next_run_time=datetime.now(timezone.utc),
            id=TICK_JOB,
            **job_defaults,
        )
        scheduler.add_job(
            self.run_advance_generation,
            "cron",
            hour=sched.advance_hour,
            minute=sched.advance_minute,
            id=ADVANCE_JOB,
            **job_defaults,
        )
        scheduler.add_job(
            self.run_maintenance, "cron", day_of_week="sun", hour=2, minute=0, id=MAINTENANCE_JOB, **job_defaults
        )

        scheduler.start()
        self._scheduler = scheduler
        logger.info(
            f"Scheduler started: tick every {sched.tick_minutes} min, advance generation at "
            f"{sched.advance_hour:02d}:{sched.advance_minute:02d} UTC, maintenance Sundays 02:00 UTC"
        )
        return SchedulerHandle(self)

    def job_ids(self) -> list[str]:
        if self._scheduler is None:
            return []
        return [job.id for job in self._scheduler.get_jobs()]

    def next_run_times(self) -> dict[str, Optional[datetime]]:
        """Next scheduled run per job id; empty when not started."""
        if self._scheduler is None:
            return {}
        return {job.id: job.next_run_time for job in self._scheduler.get_jobs()}

    async def stop(self) -> None:
        """Stop scheduling new runs, then wait for in-flight runs to finish."""
        if self._scheduler is not None:
            if self._scheduler.running:
                self._scheduler.shutdown(wait=False)
            self._scheduler = None
            logger.info("Scheduler stopped")

        pending = [t for t in self._inflight if not t.done() and t is not asyncio.current_task()]
        if pending:
            logger.info(f"Waiting for {len(pending)} in-flight runs to finish")
            await asyncio.gather(*pending, return_exceptions=True)


class _InflightTracker:
    """Registers the current asyncio task as in flight for the duration of a block."""

    def __init__(self, inflight: set):
        self._inflight = inflight
        self._task: Optional[asyncio.Task] = None

    def __enter__(self):
        self._task = asyncio.current_task()
        if self._task is not None:
            self._inflight.add(self._task)
        return self

    def __exit__(self, *exc):
        if self._task is not None:
            self._inflight.discard(self._task)
        return False


class SchedulerHandle:
    """Returned by TaskScheduler.start(); lets the caller inspect and stop it."""

    def __init__(self, scheduler: TaskScheduler):
        self._scheduler = scheduler

    @property
    def running(self) -> bool:
        return self._scheduler.running

    @property
    def job_ids(self) -> list[str]:
        return self._scheduler.job_ids()

    async def stop(self) -> None:
        await self._scheduler.stop()
