import logging
from typing import Callable, ContextManager

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.orm import Session

from config import get_settings
from database import session_scope
from services import BudgetService, StoreError, budget_owner_ids


logger = logging.getLogger(__name__)


def sweep_duplicate_budgets(session: Session) -> int:
    removed = 0
    for user_id in budget_owner_ids(session):
        try:
            result = BudgetService(session, user_id).cleanup_duplicates()
        except StoreError:
            logger.error(f"cleanup_sweep: user={user_id} failed, continuing")
            continue
        removed += result.duplicates_removed
    return removed


class SchedulerManager:
    def __init__(
        self, scope: Callable[[], ContextManager[Session]] = session_scope
    ) -> None:
        settings = get_settings()
        self.scope = scope
        self.interval_hours = settings.cleanup_interval_hours
        self.scheduler = BackgroundScheduler(timezone=settings.timezone)

    def _run_job(self, source: str = "manual") -> int:
        logger.info(f"cleanup_sweep: source={source}")
        with self.scope() as session:
            removed = sweep_duplicate_budgets(session)
        logger.info(f"cleanup_sweep: source={source} duplicates_removed={removed}")
        return removed

    def start(self) -> None:
        self._run_job("startup")

        trigger = CronTrigger(hour=3, minute=15)
        self.scheduler.add_job(
            self._run_job,
            trigger,
            args=["daily_03:15"],
            id="budget_cleanup_daily",
            replace_existing=True,
            misfire_grace_time=3600,
        )

        trigger = IntervalTrigger(hours=self.interval_hours)
        self.scheduler.add_job(
            self._run_job,
            trigger,
            args=[f"every_{self.interval_hours}h"],
            id="budget_cleanup_interval",
            replace_existing=True,
            misfire_grace_time=300,
        )

        self.scheduler.start()
        logger.info(
            f"Scheduler started with daily 03:15 and {self.interval_hours}h cleanup"
        )

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
