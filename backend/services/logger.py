import logging
from typing import Any, Dict, Optional

from pymongo.errors import PyMongoError

from backend.db.mongo import insert_log_entry
from backend.utils.timezone import now_utc

logger = logging.getLogger(__name__)


def log_stage(
    module: str,
    stage: str,
    input_payload: Optional[Dict[str, Any]] = None,
    output_payload: Optional[Dict[str, Any]] = None,
    level: str = "INFO",
    database=None,
):
    entry = {
        "module": module,
        "stage": stage,
        "level": level,
        "timestamp": now_utc().isoformat(),
        "input": input_payload or {},
        "output": output_payload or {},
    }
    logger.log(logging.getLevelName(level), "[%s] %s %s", module, stage, entry["output"])
    try:
        insert_log_entry(entry, database=database)
    except PyMongoError as e:
        logger.warning("Failed to persist log entry for %s/%s: %s", module, stage, e)
