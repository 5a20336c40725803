"""
Prediction Routes
On-demand simulations (quota-gated), prediction lookup, history and today's hot picks
"""
from typing import Any, Dict, Literal, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from pymongo.errors import PyMongoError

from backend.config import ADMIN_TIER
from backend.core.errors import EdgeUpError, NotFound
from backend.db.mongo import get_db
from backend.middleware.auth import get_current_user
from backend.services.hot_picks import HotPickService
from backend.services.prediction_generator import PredictionGenerator, PredictionRequest
from backend.services.quota_service import QuotaService

router = APIRouter(prefix="/api/predictions", tags=["predictions"])

HISTORY_LIMIT = 100

SportKey = Literal["nfl", "nba", "ncaaf", "ncaab", "mlb", "nhl"]


class GeneratePredictionRequest(BaseModel):
    """Request body for an on-demand simulation"""
    event_id: str = Field(..., min_length=1)
    sport: SportKey
    bet_type: Literal["moneyline", "spread", "total"] = "moneyline"

    model_config = {
        "json_schema_extra": {
            "example": {"event_id": "e912304de2b2ce35b473ce2ecd3d1502", "sport": "nba", "bet_type": "spread"}
        }
    }


def get_prediction_generator(db=Depends(get_db)) -> PredictionGenerator:
    return PredictionGenerator(db)


@router.post("/generate")
def generate_prediction(
    body: GeneratePredictionRequest,
    user: Dict[str, Any] = Depends(get_current_user),
    db=Depends(get_db),
    generator: PredictionGenerator = Depends(get_prediction_generator),
):
    """
    Run a simulation for the current user.

    One unit of quota is charged before generation (daily allowance first,
    then rollover) and refunded if generation fails. Admins are not charged.
    """
    quota = QuotaService(db)
    user_id = user["user_id"]
    pool = None if user.get("subscription_tier") == ADMIN_TIER else quota.consume_simulation(user_id)

    try:
        prediction = generator.generate_prediction(PredictionRequest(
            event_id=body.event_id,
            sport=body.sport,
            bet_type=body.bet_type,
            user_id=user_id,
        ))
    except (EdgeUpError, PyMongoError):
        if pool:
            quota.refund_simulation(user_id, pool)
        raise

    prediction["simulations_remaining"] = quota.get_quota_status(user_id)["available"]
    return prediction


@router.get("/history/me")
def get_prediction_history(
    prediction_type: Optional[Literal["hot_pick", "user_simulation"]] = Query(None),
    user: Dict[str, Any] = Depends(get_current_user),
    db=Depends(get_db),
):
    """The current user's predictions, newest first."""
    query: Dict[str, Any] = {"requested_by": user["user_id"]}
    if prediction_type:
        query["prediction_type"] = prediction_type

    predictions = list(
        db["ai_predictions"].find(query, {"_id": 0}).sort("created_at", -1).limit(HISTORY_LIMIT)
    )
    return {"predictions": predictions, "count": len(predictions)}


@router.get("/quota/me")
def get_quota(
    user: Dict[str, Any] = Depends(get_current_user),
    db=Depends(get_db),
):
    return QuotaService(db).get_quota_status(user["user_id"])


@router.get("/hot-picks/today")
def get_today_hot_picks(
    user: Dict[str, Any] = Depends(get_current_user),
    db=Depends(get_db),
):
    picks = HotPickService(db).get_today_hot_picks(user["user_id"])
    return {"hot_picks": picks, "count": len(picks)}


@router.get("/{prediction_id}")
def get_prediction(
    prediction_id: str,
    user: Dict[str, Any] = Depends(get_current_user),
    db=Depends(get_db),
):
    """
    A single prediction. Hot picks are visible to every subscriber;
    simulations only to the user who requested them (and admins).
    """
    prediction = db["ai_predictions"].find_one({"prediction_id": prediction_id}, {"_id": 0})
    visible = prediction and (
        prediction.get("prediction_type") == "hot_pick"
        or prediction.get("requested_by") == user["user_id"]
        or user.get("subscription_tier") == ADMIN_TIER
    )
    if not visible:
        raise NotFound(f"Prediction not found: {prediction_id}")
    return prediction
