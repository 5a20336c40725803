"""
Cron Routes
Scheduled-job entry points for an external scheduler.
Every endpoint requires "Authorization: Bearer $CRON_SECRET".
"""
from fastapi import APIRouter, Depends

from backend.db.mongo import get_db
from backend.middleware.auth import verify_cron_secret
from backend.services.event_sync import EventSyncService
from backend.services.hot_picks import HotPickService
from backend.services.quota_service import QuotaService
from backend.utils.timezone import now_utc

router = APIRouter(prefix="/api/cron", tags=["cron"], dependencies=[Depends(verify_cron_secret)])


def _report(results):
    return {"success": True, **results, "timestamp": now_utc().isoformat()}


@router.get("/fetch-events")
def fetch_events(db=Depends(get_db)):
    """Every 5 minutes: refresh upcoming events and odds."""
    return _report(EventSyncService(db).fetch_events())


@router.get("/update-scores")
def update_scores(db=Depends(get_db)):
    """Every 15 minutes: record scores and resolve predictions for finished games."""
    return _report(EventSyncService(db).update_scores())


@router.get("/reset-simulations")
def reset_simulations(db=Depends(get_db)):
    """Hourly: apply due daily/monthly quota resets."""
    return _report(QuotaService(db).reset_due_profiles())


@router.get("/generate-hot-picks")
def generate_hot_picks(db=Depends(get_db)):
    """Daily: assign hot picks to active subscribers."""
    return _report(HotPickService(db).generate_daily_hot_picks())
