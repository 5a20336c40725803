"""
Admin Routes - Admin Tier Only
Manual event fetch, prediction review and moderation, learning insights,
user bans, promo codes and Odds API usage
"""
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from backend.config import BET_TYPES
from backend.core.errors import UpstreamFailure, ValidationError
from backend.db.mongo import get_db
from backend.integrations.odds_api import check_quota, resolve_sport_key
from backend.middleware.auth import require_admin
from backend.services.billing_service import BillingService
from backend.services.event_sync import EventSyncService
from backend.services.learning_engine import LearningEngine
from backend.utils.timezone import now_utc

router = APIRouter(prefix="/api/admin", tags=["admin"])

MarkBadCategory = Literal[
    "overconfident",
    "missed_injury",
    "weather_factor",
    "poor_matchup_analysis",
    "line_movement_misread",
    "other",
]


class MarkBadRequest(BaseModel):
    reason: str = Field(..., min_length=10, description="Please provide a detailed reason")
    categories: List[MarkBadCategory] = Field(default_factory=list)


class BanUserRequest(BaseModel):
    reason: str = ""


class CreatePromoRequest(BaseModel):
    code: str = Field(..., min_length=3, max_length=50)
    percent_off: Optional[float] = Field(None, gt=0, le=100)
    amount_off: Optional[float] = Field(None, gt=0, description="Dollars")
    max_redemptions: Optional[int] = Field(None, gt=0)
    expires_at: Optional[datetime] = None


@router.get("/trigger-fetch")
def trigger_fetch(admin: Dict[str, Any] = Depends(require_admin), db=Depends(get_db)):
    """
    Run the event fetch immediately instead of waiting for the schedule.

    Responds 207 when some sports failed.
    """
    results = EventSyncService(db).fetch_events()
    errors = results["errors"]
    body = {
        "success": not errors,
        "summary": {
            "total_fetched": results["fetched"],
            "total_updated": results["updated"],
            "error_count": len(errors),
        },
        "details": results["details"],
        "errors": errors,
        "timestamp": now_utc().isoformat(),
        "message": (
            f"Successfully fetched {results['fetched']} events and updated {results['updated']} in database"
            if not errors
            else f"Completed with {len(errors)} errors. Check details below."
        ),
    }
    return JSONResponse(content=body, status_code=207 if errors else 200)


@router.get("/review-queue")
def review_queue(admin: Dict[str, Any] = Depends(require_admin), db=Depends(get_db)):
    predictions = LearningEngine(db).get_review_queue()
    return {"predictions": predictions, "count": len(predictions)}


@router.post("/predictions/{prediction_id}/mark-bad")
def mark_prediction_bad(
    prediction_id: str,
    body: MarkBadRequest,
    admin: Dict[str, Any] = Depends(require_admin),
    db=Depends(get_db),
):
    return LearningEngine(db).mark_prediction_bad(
        prediction_id, admin["user_id"], body.reason, list(body.categories)
    )


@router.get("/insights/{sport}/{bet_type}")
def learning_insights(
    sport: str,
    bet_type: str,
    admin: Dict[str, Any] = Depends(require_admin),
    db=Depends(get_db),
):
    if bet_type not in BET_TYPES:
        raise ValidationError(f"Unsupported bet type: {bet_type}")
    return LearningEngine(db).generate_learning_insights(resolve_sport_key(sport), bet_type)


@router.post("/users/{user_id}/ban")
def ban_user(
    user_id: str,
    body: BanUserRequest,
    admin: Dict[str, Any] = Depends(require_admin),
    db=Depends(get_db),
):
    return LearningEngine(db).ban_user(user_id, admin["user_id"], body.reason)


@router.post("/promo-codes")
def create_promo_code(
    body: CreatePromoRequest,
    admin: Dict[str, Any] = Depends(require_admin),
    db=Depends(get_db),
):
    promo = BillingService(db).create_promo_code(
        body.code,
        percent_off=body.percent_off,
        amount_off=body.amount_off,
        max_redemptions=body.max_redemptions,
        expires_at=body.expires_at,
    )
    return {"success": True, "id": promo["id"], "code": promo["code"]}


@router.get("/odds-quota")
def odds_quota(admin: Dict[str, Any] = Depends(require_admin)):
    """Remaining Odds API requests for the current billing period"""
    quota = check_quota()
    if quota is None:
        raise UpstreamFailure("odds_api", "Could not read request quota")
    return quota
