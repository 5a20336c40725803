"""
Authentication Middleware
Centralized auth dependencies for FastAPI routes
"""
import hmac
import os
from typing import Any, Dict, Optional

from fastapi import Depends, Header, HTTPException, status

from backend.config import ADMIN_TIER
from backend.db.mongo import get_db


def _parse_user_token(authorization: Optional[str]) -> Optional[str]:
    """
    Token format: "Bearer user:<user_id>"

    Returns the user id, or None when the header is malformed.
    """
    if not authorization:
        return None

    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != 'bearer':
        return None

    token = parts[1]
    if not token.startswith('user:'):
        return None

    return token.split(':', 1)[1] or None


def get_current_user(
    authorization: Optional[str] = Header(None),
    db=Depends(get_db),
) -> Dict[str, Any]:
    """
    Extract and validate user from Authorization header.

    Returns:
        Profile document from MongoDB

    Raises:
        HTTPException: 401 if token is missing, invalid, or has no profile
    """
    if not authorization:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing Authorization header"
        )

    user_id = _parse_user_token(authorization)
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token format"
        )

    profile = db["profiles"].find_one({"user_id": user_id}, {"_id": 0})
    if not profile:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found"
        )

    return profile


def require_admin(user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
    """403 unless the profile is on the admin tier."""
    if user.get("subscription_tier") != ADMIN_TIER:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required"
        )
    return user


def verify_cron_secret(authorization: Optional[str] = Header(None)) -> None:
    """
    Scheduled-job endpoints: require "Bearer <CRON_SECRET>".

    An unset CRON_SECRET rejects every request.
    """
    secret = os.getenv("CRON_SECRET")
    expected = f"Bearer {secret}"
    if not secret or not authorization or not hmac.compare_digest(authorization, expected):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized"
        )
