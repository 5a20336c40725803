import os
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv
from pymongo import MongoClient, UpdateOne
from pymongo.database import Database

from backend.utils.timezone import now_utc

load_dotenv()

MONGO_URI = os.getenv("MONGO_URI", "mongodb://localhost:27017")
DB_NAME = os.getenv("DATABASE_NAME", "edgeupsim")

# MongoClient connects lazily; constructing it at import does not touch the network.
client = MongoClient(MONGO_URI)
db = client[DB_NAME]


def get_db() -> Database:
    """FastAPI dependency returning the process-wide database handle."""
    return db


def ensure_indexes(database: Optional[Database] = None) -> None:
    """Create core indexes for collections used by the backend."""
    database = database if database is not None else db

    # Events
    database["sports_events"].create_index("event_id", unique=True)
    database["sports_events"].create_index([("sport_key", 1), ("event_status", 1), ("commence_time", 1)])

    # Predictions
    database["ai_predictions"].create_index("prediction_id", unique=True)
    database["ai_predictions"].create_index([("event_id", 1), ("was_correct", 1)])
    database["ai_predictions"].create_index([("requested_by", 1), ("created_at", -1)])
    database["ai_predictions"].create_index([("event_id", 1), ("prediction_type", 1), ("created_at", -1)])

    # Learning data
    database["ai_learning_data"].create_index("prediction_id", unique=True)
    database["ai_learning_data"].create_index([("sport_type", 1), ("bet_type", 1), ("used_for_training", 1), ("created_at", -1)])

    # Profiles
    database["profiles"].create_index("user_id", unique=True)
    database["profiles"].create_index("email", unique=True)
    database["profiles"].create_index("stripe_customer_id", sparse=True)
    database["profiles"].create_index([("subscription_status", 1)])

    # Hot pick assignments
    database["daily_hot_picks"].create_index([("user_id", 1), ("assigned_date", 1), ("pick_rank", 1)])

    # Audit trails
    database["admin_logs"].create_index([("admin_id", 1), ("created_at", -1)])
    database["logs_core_ai"].create_index([("module", 1), ("timestamp", -1)])


def upsert_events(collection: str, events: List[Dict[str, Any]], database: Optional[Database] = None) -> int:
    """Upsert a list of event dicts into `collection` using event_id as unique key.

    Each event dict is expected to contain an `event_id` key.
    """
    database = database if database is not None else db
    if not events:
        return 0

    ops = []
    for ev in events:
        ev = ev.copy()
        event_id = ev.get("event_id") or ev.get("id")
        if not event_id:
            # skip malformed
            continue
        ev["event_id"] = event_id
        ev.pop("_id", None)
        ev.pop("id", None)
        created_at = ev.pop("created_at", None) or now_utc().isoformat()
        ops.append(
            UpdateOne(
                {"event_id": event_id},
                {"$set": ev, "$setOnInsert": {"created_at": created_at}},
                upsert=True,
            )
        )

    if not ops:
        return 0

    result = database[collection].bulk_write(ops, ordered=False)
    return (result.upserted_count or 0) + (result.modified_count or 0)


def insert_log_entry(entry: Dict[str, Any], database: Optional[Database] = None):
    database = database if database is not None else db
    return database["logs_core_ai"].insert_one(entry)
