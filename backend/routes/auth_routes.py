from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, EmailStr, Field
from pymongo.errors import DuplicateKeyError

from backend.config import (
    DEFAULT_PREFERRED_SPORTS,
    DEFAULT_TIER,
    DEFAULT_TIMEZONE,
    SPORTS,
    get_daily_limit,
    is_legal_state,
)
from backend.core.errors import ValidationError
from backend.db.mongo import get_db
from backend.db.schemas.predictions import UserProfile
from backend.utils.timezone import get_zone


class CreateProfileRequest(BaseModel):
    user_id: str = Field(..., min_length=1)
    email: EmailStr
    full_name: str = ""
    state: str = Field(..., min_length=2, max_length=2)
    timezone: Optional[str] = None
    preferred_sports: Optional[List[str]] = None


router = APIRouter(prefix="/api", tags=["auth"])


@router.post("/auth/create-profile")
def create_profile(payload: CreateProfileRequest, db=Depends(get_db)):
    """
    Create the profile for a newly registered user.

    New profiles start with no subscription on the starter tier's limits.
    """
    if not is_legal_state(payload.state):
        raise ValidationError(f"Sports betting is not available in {payload.state.upper()}")

    sports = payload.preferred_sports or DEFAULT_PREFERRED_SPORTS
    unknown = [s for s in sports if s not in SPORTS]
    if unknown:
        raise ValidationError(f"Unknown sports: {', '.join(unknown)}")

    # Unknown zones fall back to the default rather than failing registration
    timezone_name = str(get_zone(payload.timezone or DEFAULT_TIMEZONE))

    profile = UserProfile(
        user_id=payload.user_id,
        email=payload.email,
        full_name=payload.full_name,
        verified_state=payload.state.upper(),
        reset_timezone=timezone_name,
        preferred_sports=sports,
        subscription_status="none",
        subscription_tier=DEFAULT_TIER,
        daily_simulation_limit=get_daily_limit(DEFAULT_TIER),
    )

    try:
        db["profiles"].insert_one(profile.model_dump())
    except DuplicateKeyError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Profile already exists")

    return {"success": True, "profile": profile.model_dump()}
