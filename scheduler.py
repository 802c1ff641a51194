import logging
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from config import get_settings
from database import SessionLocal, session_scope
from services import BudgetService


logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def run_budget_audit(session, *, repair: bool = False) -> int:
    service = BudgetService(session)
    drifts = service.audit_usage()
    for drift in drifts:
        logger.warning(
            f"budget_drift: budget_id={drift.budget_id} "
            f"sub_category_id={drift.sub_category_id} year={drift.year} "
            f"stored_cents={drift.stored_cents} expected_cents={drift.expected_cents}"
        )
    if drifts and repair:
        service.rebuild_usage()
    return len(drifts)


class SchedulerManager:
    def __init__(self, session_factory=SessionLocal) -> None:
        self.settings = get_settings()
        self.session_factory = session_factory
        self.scheduler = BackgroundScheduler(timezone=self.settings.timezone)

    def _run_job(self, source: str = "manual") -> None:
        logger.info(f"budget_audit: source={source}")
        with session_scope(self.session_factory) as session:
            count = run_budget_audit(session, repair=self.settings.audit_repair)
            logger.info(f"budget_audit: source={source} drifting_budgets={count}")

    def start(self) -> None:
        self._run_job("startup")

        trigger = CronTrigger(
            hour=self.settings.audit_hour, minute=self.settings.audit_minute
        )
        self.scheduler.add_job(
            self._run_job,
            trigger,
            args=["daily"],
            id="budget_audit_daily",
            replace_existing=True,
            misfire_grace_time=3600,
        )

        self.scheduler.start()
        logger.info(
            f"Scheduler started with daily budget audit at "
            f"{self.settings.audit_hour:02d}:{self.settings.audit_minute:02d}"
        )

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
