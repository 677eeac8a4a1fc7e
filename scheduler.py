import logging
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from sqlalchemy import select

from config import get_settings
from database import SessionLocal, session_scope
from models import BudgetSettings
from services import HistoryService


logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def snapshot_all_owners(source: str = "manual", factory=SessionLocal) -> int:
    """Rebuild closed-cycle snapshots for every owner with stored settings."""
    with session_scope(factory) as session:
        user_ids = session.scalars(
            select(BudgetSettings.user_id).order_by(BudgetSettings.user_id)
        ).all()
    written = 0
    for user_id in user_ids:
        try:
            with session_scope(factory) as session:
                result = HistoryService.for_session(session, user_id).ensure_snapshots()
        except ValueError as exc:
            logger.error(f"snapshot_job: source={source} user_id={user_id} error={exc}")
            continue
        written += result.cycles_written
    logger.info(
        f"snapshot_job: source={source} owners={len(user_ids)} cycles_written={written}"
    )
    return written


class SchedulerManager:
    def __init__(self) -> None:
        settings = get_settings()
        self.settings = settings
        self.scheduler = BackgroundScheduler(timezone=settings.timezone)

    def _run_job(self, source: str = "manual") -> None:
        logger.info(f"scheduler_run: source={source}")
        snapshot_all_owners(source)

    def start(self) -> None:
        hour = self.settings.snapshot_hour
        minute = self.settings.snapshot_minute
        label = f"daily_{hour:02d}:{minute:02d}"

        trigger = CronTrigger(hour=hour, minute=minute)
        self.scheduler.add_job(
            self._run_job,
            trigger,
            args=[label],
            id="history_snapshots_daily",
            replace_existing=True,
            misfire_grace_time=3600,
        )

        self.scheduler.start()
        logger.info(f"Scheduler started with {label} snapshot rebuild")

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
