"""
Daily Hot Picks
Assigns up to HOT_PICKS_PER_USER picks per active subscriber, one per
preferred sport, from events starting in the next 24 hours.

Hot-pick predictions are shared: every user assigned the same event on the
same UTC day gets the same prediction.
"""
import logging
import random
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from pymongo.errors import PyMongoError

from backend.config import (
    ACTIVE_SUBSCRIPTION_STATUSES,
    DEFAULT_PREFERRED_SPORTS,
    HOT_PICK_BET_TYPE,
    HOT_PICKS_PER_USER,
)
from backend.core.errors import EdgeUpError
from backend.integrations.odds_api import resolve_sport_key
from backend.services.logger import log_stage
from backend.services.prediction_generator import PredictionGenerator
from backend.utils.timezone import get_utc_date_today, now_utc

logger = logging.getLogger(__name__)

CANDIDATE_EVENT_LIMIT = 5


def _iso_z(dt: datetime) -> str:
    # Same shape as the odds provider's commence_time so string ranges compare correctly
    return dt.strftime("%Y-%m-%dT%H:%M:%SZ")


class HotPickService:
    def __init__(self, db, generator: Optional[PredictionGenerator] = None, rng: Optional[random.Random] = None):
        self.db = db
        self.profiles = db["profiles"]
        self.events = db["sports_events"]
        self.hot_picks = db["daily_hot_picks"]
        self.predictions = db["ai_predictions"]
        self._generator = generator
        self.rng = rng or random.Random()

    @property
    def generator(self) -> PredictionGenerator:
        if self._generator is None:
            self._generator = PredictionGenerator(self.db)
        return self._generator

    def candidate_events(self, sport: str, now: datetime) -> List[Dict[str, Any]]:
        """Upcoming events for a sport starting within 24h, soonest first."""
        cursor = self.events.find(
            {
                "sport_key": resolve_sport_key(sport),
                "event_status": "upcoming",
                "commence_time": {"$gte": _iso_z(now), "$lt": _iso_z(now + timedelta(days=1))},
            },
            {"_id": 0, "event_id": 1, "sport_key": 1, "home_team": 1, "away_team": 1},
        ).sort("commence_time", 1).limit(CANDIDATE_EVENT_LIMIT)
        return list(cursor)

    def assign_picks_for_user(self, profile: Dict[str, Any], now: datetime) -> List[str]:
        """Generate (or reuse) and assign today's picks for one user."""
        today = get_utc_date_today(now)
        sports = profile.get("preferred_sports") or DEFAULT_PREFERRED_SPORTS
        assigned: List[str] = []

        for rank, sport in enumerate(sports[:HOT_PICKS_PER_USER], start=1):
            events = self.candidate_events(sport, now)
            if not events:
                continue

            event = self.rng.choice(events)
            prediction = self.generator.get_or_create_hot_pick(event["event_id"], sport, HOT_PICK_BET_TYPE, now=now)
            prediction_id = prediction.get("prediction_id")
            if not prediction_id:
                logger.warning("Hot pick for %s was not persisted, skipping assignment", event["event_id"])
                continue

            # Upsert keeps reruns on the same day from duplicating assignments
            self.hot_picks.update_one(
                {"user_id": profile["user_id"], "assigned_date": today, "pick_rank": rank},
                {"$set": {
                    "prediction_id": prediction_id,
                    "sport_key": event.get("sport_key"),
                    "created_at": now.isoformat(),
                }},
                upsert=True,
            )
            assigned.append(prediction_id)

        return assigned

    def generate_daily_hot_picks(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        now = now or now_utc()
        results: Dict[str, Any] = {"users_processed": 0, "picks_generated": 0, "errors": []}

        profiles = self.profiles.find(
            {"subscription_status": {"$in": ACTIVE_SUBSCRIPTION_STATUSES}},
            {"_id": 0, "user_id": 1, "preferred_sports": 1},
        )

        for profile in profiles:
            user_id = profile.get("user_id")
            try:
                assigned = self.assign_picks_for_user(profile, now)
            except (EdgeUpError, PyMongoError) as e:
                logger.error("Error generating picks for user %s: %s", user_id, e)
                results["errors"].append(f"User {user_id}: {e}")
                continue

            results["users_processed"] += 1
            results["picks_generated"] += len(assigned)
            logger.info("Generated %d picks for user %s", len(assigned), user_id)

        log_stage(
            "hot_picks",
            "generated",
            input_payload={"date": get_utc_date_today(now)},
            output_payload=results,
            level="WARNING" if results["errors"] else "INFO",
            database=self.db,
        )
        return results

    def get_today_hot_picks(self, user_id: str, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
        """Today's assignments for a user with their predictions attached, by rank."""
        today = get_utc_date_today(now)
        assignments = list(
            self.hot_picks.find({"user_id": user_id, "assigned_date": today}, {"_id": 0}).sort("pick_rank", 1)
        )
        if not assignments:
            return []

        prediction_ids = [a["prediction_id"] for a in assignments]
        predictions = {
            p["prediction_id"]: p
            for p in self.predictions.find({"prediction_id": {"$in": prediction_ids}}, {"_id": 0})
        }
        for assignment in assignments:
            assignment["prediction"] = predictions.get(assignment["prediction_id"])
        return assignments
