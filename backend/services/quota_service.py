"""
Simulation Quota Service
========================
Per-user daily simulation allowance with a capped rollover pool.

- Daily allowance is consumed before rollover.
- At the user's local midnight, unused daily allowance is folded into the
  rollover pool, capped at ROLLOVER_MULTIPLIER × daily limit.
- At the user's local month boundary, monthly count and rollover reset to 0.

Consumption is done with conditional update_one filters, so two concurrent
requests cannot both take the last unit.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from pymongo.errors import PyMongoError

from backend.config import ACTIVE_SUBSCRIPTION_STATUSES, ROLLOVER_MULTIPLIER
from backend.core.errors import NotFound, QuotaExceeded
from backend.services.logger import log_stage
from backend.utils.timezone import (
    format_user_date,
    get_user_midnight,
    now_utc,
    should_reset_daily,
    should_reset_monthly,
    to_utc,
)

logger = logging.getLogger(__name__)

POOL_DAILY = "daily"
POOL_ROLLOVER = "rollover"


@dataclass
class QuotaDeduction:
    success: bool
    new_daily_used: int
    new_rollover: int
    pool: Optional[str] = None


def calculate_rollover(daily_limit: int, daily_used: int, current_rollover: int) -> int:
    """
    Unused sims from today get added to rollover, capped at 3x daily limit.

    Example: limit 3, used 1, rollover 8 → min(8 + 2, 9) = 9
    """
    unused_today = max(0, daily_limit - daily_used)
    max_rollover = daily_limit * ROLLOVER_MULTIPLIER
    return min(current_rollover + unused_today, max_rollover)


def get_available_simulations(daily_limit: int, daily_used: int, rollover: int) -> int:
    """Remaining daily allowance plus rollover."""
    return max(0, daily_limit - daily_used) + rollover


def deduct_simulation(daily_limit: int, daily_used: int, rollover: int) -> QuotaDeduction:
    """Take one simulation, daily allowance first, then rollover."""
    if get_available_simulations(daily_limit, daily_used, rollover) <= 0:
        return QuotaDeduction(False, daily_used, rollover)

    if daily_used < daily_limit:
        return QuotaDeduction(True, daily_used + 1, rollover, POOL_DAILY)

    return QuotaDeduction(True, daily_used, rollover - 1, POOL_ROLLOVER)


def compute_reset(profile: Dict[str, Any], now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Fields to $set on a profile for any due daily/monthly reset (empty when none is due).
    """
    now = now or now_utc()
    tz_name = profile.get("reset_timezone")
    last_reset = profile.get("last_simulation_reset")
    updates: Dict[str, Any] = {}

    if should_reset_daily(last_reset, tz_name, now):
        updates["daily_simulation_count"] = 0
        updates["monthly_simulation_rollover"] = calculate_rollover(
            profile.get("daily_simulation_limit", 0),
            profile.get("daily_simulation_count", 0),
            profile.get("monthly_simulation_rollover", 0),
        )
        updates["last_simulation_reset"] = to_utc(get_user_midnight(tz_name, now)).isoformat()

    if should_reset_monthly(last_reset, tz_name, now):
        updates["monthly_simulation_count"] = 0
        updates["monthly_simulation_rollover"] = 0

    return updates


class QuotaService:
    """Quota reads, atomic consumption and the scheduled reset job."""

    def __init__(self, db):
        self.db = db
        self.profiles = db["profiles"]

    def get_profile(self, user_id: str) -> Dict[str, Any]:
        profile = self.profiles.find_one({"user_id": user_id}, {"_id": 0})
        if not profile:
            raise NotFound(f"Profile not found: {user_id}")
        return profile

    def get_quota_status(self, user_id: str, now: Optional[datetime] = None) -> Dict[str, Any]:
        profile = self.get_profile(user_id)
        tz_name = profile.get("reset_timezone")
        next_reset = get_user_midnight(tz_name, now) + timedelta(days=1)
        limit = profile.get("daily_simulation_limit", 0)
        used = profile.get("daily_simulation_count", 0)
        rollover = profile.get("monthly_simulation_rollover", 0)
        return {
            "daily_limit": limit,
            "daily_used": used,
            "rollover": rollover,
            "monthly_used": profile.get("monthly_simulation_count", 0),
            "available": get_available_simulations(limit, used, rollover),
            "next_reset": format_user_date(next_reset, tz_name),
        }

    def consume_simulation(self, user_id: str) -> str:
        """
        Charge one simulation to the user.

        Returns:
            The pool charged: "daily" or "rollover"

        Raises:
            NotFound: no profile
            QuotaExceeded: daily allowance and rollover both used up
        """
        daily = self.profiles.update_one(
            {
                "user_id": user_id,
                "$expr": {"$lt": ["$daily_simulation_count", "$daily_simulation_limit"]},
            },
            {"$inc": {"daily_simulation_count": 1, "monthly_simulation_count": 1}},
        )
        if daily.matched_count:
            return POOL_DAILY

        rollover = self.profiles.update_one(
            {
                "user_id": user_id,
                "$expr": {"$gte": ["$daily_simulation_count", "$daily_simulation_limit"]},
                "monthly_simulation_rollover": {"$gt": 0},
            },
            {"$inc": {"monthly_simulation_rollover": -1, "monthly_simulation_count": 1}},
        )
        if rollover.matched_count:
            return POOL_ROLLOVER

        # Distinguish a missing profile from an exhausted one
        self.get_profile(user_id)
        raise QuotaExceeded(f"Simulation quota exhausted for user {user_id}")

    def refund_simulation(self, user_id: str, pool: str) -> None:
        """Give back a unit charged by consume_simulation when generation failed."""
        if pool == POOL_DAILY:
            self.profiles.update_one(
                {"user_id": user_id, "daily_simulation_count": {"$gt": 0}},
                {"$inc": {"daily_simulation_count": -1, "monthly_simulation_count": -1}},
            )
        elif pool == POOL_ROLLOVER:
            self.profiles.update_one(
                {
                    "user_id": user_id,
                    "$expr": {
                        "$lt": [
                            "$monthly_simulation_rollover",
                            {"$multiply": ["$daily_simulation_limit", ROLLOVER_MULTIPLIER]},
                        ]
                    },
                },
                {"$inc": {"monthly_simulation_rollover": 1, "monthly_simulation_count": -1}},
            )
        logger.info("Refunded %s simulation for user %s", pool, user_id)

    def reset_due_profiles(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Scheduled job: apply due daily/monthly resets to active subscribers.

        Per-user failures are collected and do not stop the run.
        """
        now = now or now_utc()
        results = {"users_checked": 0, "users_reset": 0, "monthly_resets": 0, "errors": []}

        profiles = self.profiles.find(
            {"subscription_status": {"$in": ACTIVE_SUBSCRIPTION_STATUSES}},
            {"_id": 0},
        )

        for profile in profiles:
            user_id = profile.get("user_id")
            results["users_checked"] += 1
            try:
                updates = compute_reset(profile, now)
                if not updates:
                    continue

                self.profiles.update_one({"user_id": user_id}, {"$set": updates})

                if "daily_simulation_count" in updates:
                    results["users_reset"] += 1
                if "monthly_simulation_count" in updates:
                    results["monthly_resets"] += 1
                logger.info(
                    "Reset simulations for user %s. Rollover: %s",
                    user_id, updates.get("monthly_simulation_rollover"),
                )
            except (PyMongoError, TypeError, ValueError) as e:
                logger.error("Error resetting user %s: %s", user_id, e)
                results["errors"].append(f"User {user_id}: {e}")

        log_stage(
            "quota_reset",
            "completed",
            input_payload={"now": now.isoformat()},
            output_payload={k: v for k, v in results.items() if k != "errors"} | {"error_count": len(results["errors"])},
            database=self.db,
        )
        return results
