"""Scheduler service that triggers queue processing cycles."""

import threading
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from deliveryq.logging import get_logger

logger = get_logger(__name__, component="scheduler")

JOB_ID = "queue-cycle"


class SchedulerService:
    """
    Wraps APScheduler to run one processing cycle per interval.

    BackgroundScheduler runs cycles on a worker thread so the main thread can
    handle signals. ``max_instances=1`` and ``coalesce=True`` keep ticks from
    piling up behind a slow cycle; the processor's own lock still guards
    against overlap from any other caller.
    """

    def __init__(
        self,
        cycle_callable: Callable[[], Any],
        interval_seconds: int,
        shutdown_event: Optional[threading.Event] = None,
    ):
        """
        Initialize the scheduler service.

        Args:
            cycle_callable: Function to call on each tick (e.g. processor.run_cycle)
            interval_seconds: Interval between cycles in seconds
            shutdown_event: Optional event to set on shutdown for coordination
        """
        if interval_seconds <= 0:
            raise ValueError(f"interval_seconds must be positive, got: {interval_seconds}")

        self.cycle_callable = cycle_callable
        self.interval_seconds = interval_seconds
        self.shutdown_event = shutdown_event

        self.scheduler = BackgroundScheduler(
            job_defaults={
                "max_instances": 1,
                "coalesce": True,
                "misfire_grace_time": interval_seconds,
            },
            timezone=timezone.utc,
        )

    def start(self) -> None:
        """
        Register the cycle job and start the scheduler.

        The first cycle runs immediately; later cycles follow the interval.
        Calling start() on a running scheduler does nothing.
        """
        if self.scheduler.running:
            logger.warning(
                "Scheduler already running, ignoring start()",
                extra={"event": "scheduler.already_running"},
            )
            return

        trigger = IntervalTrigger(seconds=self.interval_seconds, timezone=timezone.utc)

        next_run = datetime.now(timezone.utc)
        self.scheduler.add_job(
            func=self.cycle_callable,
            trigger=trigger,
            id=JOB_ID,
            name="Notification queue cycle",
            replace_existing=True,
            next_run_time=next_run,
        )

        self.scheduler.start()

        logger.info(
            f"Scheduler started with interval: {self.interval_seconds} seconds",
            extra={
                "event": "scheduler.started",
                "interval_seconds": self.interval_seconds,
                "next_run_time": next_run.isoformat(),
            },
        )

    def shutdown(self, wait: bool = False) -> None:
        """
        Stop the scheduler.

        Args:
            wait: If True, wait for a running cycle to finish before returning
        """
        logger.info(
            "Shutting down scheduler",
            extra={"event": "scheduler.stopping", "wait_for_jobs": wait},
        )

        if self.scheduler.running:
            self.scheduler.shutdown(wait=wait)

        if self.shutdown_event:
            self.shutdown_event.set()

        logger.info("Scheduler shutdown complete", extra={"event": "scheduler.stopped"})

    def trigger_now(self) -> Any:
        """Run one cycle synchronously in the calling thread and return its result."""
        logger.info("Triggering immediate queue cycle", extra={"event": "scheduler.trigger_now"})
        return self.cycle_callable()

    def is_running(self) -> bool:
        return self.scheduler.running

    def get_next_run_time(self) -> Optional[datetime]:
        job = self.scheduler.get_job(JOB_ID)
        return job.next_run_time if job else None
