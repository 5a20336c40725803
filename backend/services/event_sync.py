"""
Event Sync Jobs
Pull odds and scores from The Odds API into sports_events, and hand completed
games to the learning engine.

Both jobs are per-sport fault tolerant: a failing sport is recorded in the
report's `errors` and the next sport still runs.
"""
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, Optional

from pymongo.errors import PyMongoError

from backend.config import COMPLETED_EVENT_RETENTION_DAYS, SCHEDULED_SPORTS
from backend.db.mongo import upsert_events
from backend.integrations.odds_api import OddsApiError, fetch_odds, fetch_scores, normalize_event, parse_score
from backend.services.learning_engine import LearningEngine
from backend.services.logger import log_stage
from backend.utils.timezone import now_utc

logger = logging.getLogger(__name__)

EVENTS_COLLECTION = "sports_events"


class EventSyncService:
    def __init__(self, db, learning_engine: Optional[LearningEngine] = None):
        self.db = db
        self.events = db[EVENTS_COLLECTION]
        self.learning_engine = learning_engine or LearningEngine(db)

    def fetch_events(self, sports: Iterable[str] = SCHEDULED_SPORTS, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Upsert upcoming events with current odds, then prune old completed events.
        """
        now = now or now_utc()
        results: Dict[str, Any] = {"fetched": 0, "updated": 0, "deleted": 0, "details": {}, "errors": []}

        for sport in sports:
            try:
                raw_events = fetch_odds(sport)
                normalized = [normalize_event(e, now) for e in raw_events]
                updated = upsert_events(EVENTS_COLLECTION, normalized, database=self.db)
            except (OddsApiError, PyMongoError) as e:
                logger.error("[EventSync] Error fetching %s: %s", sport, e)
                results["errors"].append(f"{sport}: {e}")
                results["details"][sport] = {"fetched": 0, "updated": 0, "error": str(e)}
                continue

            results["fetched"] += len(raw_events)
            results["updated"] += updated
            results["details"][sport] = {"fetched": len(raw_events), "updated": updated}
            logger.info("[EventSync] %s: %d fetched, %d updated", sport, len(raw_events), updated)

        cutoff = (now - timedelta(days=COMPLETED_EVENT_RETENTION_DAYS)).strftime("%Y-%m-%dT%H:%M:%SZ")
        try:
            deleted = self.events.delete_many({"event_status": "completed", "commence_time": {"$lt": cutoff}})
            results["deleted"] = deleted.deleted_count
        except PyMongoError as e:
            logger.error("[EventSync] Error pruning completed events: %s", e)
            results["errors"].append(f"cleanup: {e}")

        log_stage(
            "event_sync",
            "fetch_events",
            input_payload={"sports": list(results["details"].keys())},
            output_payload={k: v for k, v in results.items() if k != "details"},
            level="WARNING" if results["errors"] else "INFO",
            database=self.db,
        )
        return results

    def update_scores(self, sports: Iterable[str] = SCHEDULED_SPORTS, days_from: int = 1, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Record live/final scores; resolve predictions for completed games with a winner.

        Ties are stored with winner=None and their predictions stay open.
        """
        now = now or now_utc()
        results: Dict[str, Any] = {"updated": 0, "completed": 0, "predictions_resolved": 0, "errors": []}

        for sport in sports:
            try:
                scores = fetch_scores(sport, days_from=days_from)
            except OddsApiError as e:
                logger.error("[EventSync] Error fetching scores for %s: %s", sport, e)
                results["errors"].append(f"{sport}: {e}")
                continue

            for score in scores:
                try:
                    self._apply_score(score, now, results)
                except PyMongoError as e:
                    logger.error("[EventSync] Error updating event %s: %s", score.get("id"), e)
                    results["errors"].append(f"{sport}: {score.get('id')} - {e}")

        log_stage(
            "event_sync",
            "update_scores",
            input_payload={"days_from": days_from},
            output_payload=results,
            level="WARNING" if results["errors"] else "INFO",
            database=self.db,
        )
        return results

    def _apply_score(self, score: Dict[str, Any], now: datetime, results: Dict[str, Any]):
        parsed = parse_score(score)
        event = self.events.find_one({"event_id": parsed["event_id"]}, {"_id": 0})
        if not event:
            return

        self.events.update_one(
            {"event_id": parsed["event_id"]},
            {"$set": {
                "event_status": "completed" if parsed["completed"] else "live",
                "final_score": {
                    "home": parsed["home_score"],
                    "away": parsed["away_score"],
                    "winner": parsed["winner"],
                },
                "updated_at": now.isoformat(),
            }},
        )
        results["updated"] += 1

        if parsed["completed"] and parsed["winner"]:
            report = self.learning_engine.process_completed_game(event, parsed)
            results["completed"] += 1
            results["predictions_resolved"] += report["resolved"]
            results["errors"].extend(report["errors"])
