import logging
from datetime import date
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from config import get_settings
from database import session_scope
from networth import NetWorthSnapshotter
from periods import current_month
from recurrence import RecurringEngine
from services import MonthTransitionService, users_with_definitions


logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def run_recurring_cycle(session, today: Optional[date] = None) -> dict[str, int]:
    """Materialize the current month and close the previous one for every user."""
    month = current_month(today)
    totals = {"users": 0, "created": 0, "errors": 0}
    for user_id in users_with_definitions(session):
        totals["users"] += 1
        result = RecurringEngine(session, user_id).materialize(month, today)
        totals["created"] += result.created
        totals["errors"] += result.errors
        try:
            MonthTransitionService(session, user_id).process(today)
        except Exception:
            session.rollback()
            totals["errors"] += 1
            logger.exception(f"month_transition_failed: user={user_id}")
    return totals


class SchedulerManager:
    """Owns the background scheduler: recurring runs plus net-worth snapshots."""

    def __init__(self) -> None:
        settings = get_settings()
        self.scheduler = BackgroundScheduler(timezone=settings.timezone)
        self.snapshots = NetWorthSnapshotter(self.scheduler)

    def _cycle_jobs(self):
        tz = self.scheduler.timezone
        # (job id, trigger, source label, misfire grace seconds)
        return [
            (
                "recurring_daily",
                CronTrigger(hour=3, minute=15, timezone=tz),
                "daily_03:15",
                3600,
            ),
            (
                "recurring_hourly_safety",
                IntervalTrigger(hours=1, timezone=tz),
                "hourly_safety_net",
                300,
            ),
        ]

    def run_cycle(self, source: str = "manual") -> dict[str, int]:
        with session_scope() as session:
            totals = run_recurring_cycle(session)
        logger.info(
            f"scheduler_run: source={source} users={totals['users']} "
            f"occurrences_posted={totals['created']} errors={totals['errors']}"
        )
        return totals

    def start(self) -> None:
        self.run_cycle("startup")
        for job_id, trigger, source, grace in self._cycle_jobs():
            self.scheduler.add_job(
                self.run_cycle,
                trigger,
                args=[source],
                id=job_id,
                replace_existing=True,
                misfire_grace_time=grace,
            )
        self.scheduler.start()
        logger.info("Scheduler started: recurring cycle daily at 03:15 and hourly")

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
