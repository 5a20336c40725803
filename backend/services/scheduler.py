"""
Background Scheduler
Runs the event sync, score update, quota reset and hot pick jobs in-process.

Only started when ENABLE_SCHEDULER=true; otherwise the same jobs are driven
externally through the /api/cron endpoints.
"""
import logging
import os

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from pymongo.errors import PyMongoError

from backend.core.errors import EdgeUpError
from backend.db.mongo import db
from backend.services.event_sync import EventSyncService
from backend.services.hot_picks import HotPickService
from backend.services.logger import log_stage
from backend.services.quota_service import QuotaService

logger = logging.getLogger(__name__)

scheduler = BackgroundScheduler(timezone="UTC")


def scheduler_enabled() -> bool:
    return os.getenv("ENABLE_SCHEDULER", "false").lower() == "true"


def _run_job(name: str, job):
    try:
        result = job()
        logger.info("✓ %s: %s", name, {k: v for k, v in result.items() if k != "details"})
    except (EdgeUpError, PyMongoError) as e:
        log_stage(name, "exception", input_payload={}, output_payload={"error": str(e)}, level="ERROR")
        logger.error("✗ Exception in %s: %s", name, e)


def run_fetch_events():
    _run_job("fetch_events", EventSyncService(db).fetch_events)


def run_update_scores():
    _run_job("update_scores", EventSyncService(db).update_scores)


def run_reset_simulations():
    _run_job("reset_simulations", QuotaService(db).reset_due_profiles)


def run_generate_hot_picks():
    _run_job("generate_hot_picks", HotPickService(db).generate_daily_hot_picks)


def start_scheduler():
    """
    Start background scheduler with all jobs
    """
    # Job 1: Refresh events and odds every 5 minutes
    scheduler.add_job(
        func=run_fetch_events,
        trigger=IntervalTrigger(minutes=5),
        id="fetch_events",
        name="Fetch Events & Odds (5m)",
        replace_existing=True
    )

    # Job 2: Scores and prediction resolution every 15 minutes
    scheduler.add_job(
        func=run_update_scores,
        trigger=IntervalTrigger(minutes=15),
        id="update_scores",
        name="Update Scores (15m)",
        replace_existing=True
    )

    # Job 3: Hourly; each user resets at their own local midnight
    scheduler.add_job(
        func=run_reset_simulations,
        trigger="cron",
        minute=0,
        id="reset_simulations",
        name="Reset Simulations (hourly)",
        replace_existing=True
    )

    # Job 4: Daily hot picks at 6 AM UTC
    scheduler.add_job(
        func=run_generate_hot_picks,
        trigger="cron",
        hour=6,
        minute=0,
        id="generate_hot_picks",
        name="Generate Hot Picks (6 AM)",
        replace_existing=True
    )

    scheduler.start()
    logger.info("✓ Scheduler started with jobs: %s", [job.id for job in scheduler.get_jobs()])


def stop_scheduler():
    """Stop background scheduler"""
    if scheduler.running:
        scheduler.shutdown()
        logger.info("✓ Scheduler stopped")
