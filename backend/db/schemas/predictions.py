"""
Prediction Schemas
Stored shapes for predictions, learning data and user profiles
"""
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional
import uuid

from pydantic import BaseModel, Field


PredictionType = Literal["hot_pick", "user_simulation"]
BetType = Literal["moneyline", "spread", "total"]
PredictedOutcome = Literal["home", "away", "over", "under"]


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class PredictionRecord(BaseModel):
    """
    LLM-generated betting prediction
    Immutable after creation except for resolution and moderation fields
    """
    prediction_id: str = Field(default_factory=lambda: f"pred_{uuid.uuid4().hex[:12]}")
    event_id: str
    prediction_type: PredictionType
    requested_by: Optional[str] = None
    model_version: str
    sport_key: str

    predicted_winner: Optional[PredictedOutcome] = None
    confidence_score: int = Field(..., ge=0, le=100)
    edge_score: float
    true_probability: float = 0.0
    recommended: bool = False
    recommended_bet_type: BetType
    recommended_line: str = ""
    ai_analysis: str = ""
    key_factors: List[str] = Field(default_factory=list)
    risk_assessment: str = ""
    odds_snapshot: List[Dict[str, Any]] = Field(default_factory=list)

    # Resolution
    actual_winner: Optional[str] = None
    actual_score: Optional[Dict[str, int]] = None
    was_correct: Optional[bool] = None
    resolved_at: Optional[str] = None

    # Moderation
    admin_marked_bad: bool = False
    admin_reason: Optional[str] = None
    admin_marked_by: Optional[str] = None
    admin_marked_at: Optional[str] = None

    created_at: str = Field(default_factory=_utc_now_iso)


class LearningDataRecord(BaseModel):
    """
    One row per resolved prediction, read by insight generation
    Only used_for_training changes after creation
    """
    prediction_id: str
    sport_type: str
    bet_type: str
    model_version: Optional[str] = None
    confidence_vs_outcome: Dict[str, Any]
    edge_vs_outcome: Dict[str, Any]
    factors_vs_outcome: Dict[str, Any]
    training_weight: float
    used_for_training: bool = False
    created_at: str = Field(default_factory=_utc_now_iso)


class UserProfile(BaseModel):
    """Subscriber profile including simulation quota state"""
    user_id: str
    email: str
    full_name: str = ""
    verified_state: str
    reset_timezone: str
    preferred_sports: List[str]
    subscription_status: str = "none"
    subscription_tier: str
    stripe_customer_id: Optional[str] = None
    stripe_subscription_id: Optional[str] = None
    daily_simulation_limit: int
    daily_simulation_count: int = 0
    monthly_simulation_count: int = 0
    monthly_simulation_rollover: int = 0
    last_simulation_reset: str = Field(default_factory=_utc_now_iso)
    created_at: str = Field(default_factory=_utc_now_iso)
