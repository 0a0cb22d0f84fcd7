import logging

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy import select

from cache import chart_cache
from config import get_settings
from context import UserContext
from database import session_scope
from models import Budget
from services import BudgetService


logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def cleanup_all_budgets() -> int:
    """Delete zero-amount limits for every user that owns a budget."""
    deleted = 0
    with session_scope() as session:
        user_ids = session.scalars(select(Budget.user_id).distinct()).all()
        for user_id in user_ids:
            deleted += BudgetService(session, UserContext(user_id)).cleanup_budgets()
    return deleted


class SchedulerManager:
    def __init__(self) -> None:
        settings = get_settings()
        self.scheduler = BackgroundScheduler(timezone=settings.timezone)

    def _run_cleanup(self, source: str = "manual") -> None:
        logger.info(f"budget_cleanup: source={source}")
        count = cleanup_all_budgets()
        logger.info(f"budget_cleanup: source={source} limits_deleted={count}")

    def _purge_cache(self) -> None:
        purged = chart_cache.purge_expired()
        if purged:
            logger.info(f"chart_cache: purged={purged}")

    def start(self) -> None:
        self._run_cleanup("startup")

        trigger = CronTrigger(hour=3, minute=15)
        self.scheduler.add_job(
            self._run_cleanup,
            trigger,
            args=["daily_03:15"],
            id="budget_cleanup_daily",
            replace_existing=True,
            misfire_grace_time=3600,
        )

        trigger = IntervalTrigger(hours=1)
        self.scheduler.add_job(
            self._purge_cache,
            trigger,
            id="chart_cache_purge",
            replace_existing=True,
            misfire_grace_time=300,
        )

        self.scheduler.start()
        logger.info("Scheduler started with daily 03:15 cleanup and hourly cache purge")

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
