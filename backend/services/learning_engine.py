"""
Outcome & Learning Engine
=========================
Resolves open predictions when a game completes, records one learning row per
resolved prediction, and aggregates those rows into calibration and factor
insights that are fed back into future prompts.

Resolution is a conditional update on was_correct == null, so two score
updates racing on the same game resolve each prediction once.
"""
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from pymongo.errors import PyMongoError

from backend.config import (
    CONFIDENCE_BUCKETS,
    LEARNING_CONFIG,
    MARK_BAD_CATEGORIES,
    TRAINING_WEIGHTS,
)
from backend.core.errors import NotFound, ValidationError
from backend.db.schemas.predictions import LearningDataRecord
from backend.integrations.odds_api import get_outcome_line
from backend.services.logger import log_stage
from backend.utils.timezone import now_utc, parse_iso

logger = logging.getLogger(__name__)


def determine_winner(home_score: int, away_score: int) -> Optional[str]:
    """Winning side from the final score, None on a tie."""
    if home_score > away_score:
        return "home"
    if away_score > home_score:
        return "away"
    return None


def _spread_covered(prediction: Dict[str, Any], result: Dict[str, Any]) -> bool:
    side = prediction.get("predicted_winner")
    if side not in ("home", "away"):
        return False

    team = result.get(f"{side}_team")
    line = get_outcome_line(prediction.get("odds_snapshot") or [], "spreads", team)
    if not line or line.get("point") is None:
        return False

    own = result["home_score"] if side == "home" else result["away_score"]
    opponent = result["away_score"] if side == "home" else result["home_score"]
    # Push counts as a miss
    return own + line["point"] > opponent


def _total_hit(prediction: Dict[str, Any], result: Dict[str, Any]) -> bool:
    side = prediction.get("predicted_winner")
    if side not in ("over", "under"):
        return False

    line = get_outcome_line(prediction.get("odds_snapshot") or [], "totals", side.capitalize())
    if not line or line.get("point") is None:
        return False

    combined = result["home_score"] + result["away_score"]
    if side == "over":
        return combined > line["point"]
    return combined < line["point"]


def evaluate_prediction(prediction: Dict[str, Any], result: Dict[str, Any]) -> bool:
    """
    Was the prediction correct for this result?

    `result` carries home_score, away_score, winner and the team names.
    Spread and total picks are graded against the line in the prediction's own
    odds snapshot; a missing line or a push grades as incorrect.
    """
    bet_type = prediction.get("recommended_bet_type")

    if bet_type == "moneyline":
        return prediction.get("predicted_winner") == result.get("winner")
    if bet_type == "spread":
        return _spread_covered(prediction, result)
    if bet_type == "total":
        return _total_hit(prediction, result)
    return False


def calculate_training_weight(prediction: Dict[str, Any], was_correct: bool, now: Optional[datetime] = None) -> float:
    """Multiplicative weight: high-confidence misses, admin flags and recency count more."""
    now = now or now_utc()
    weight = 1.0

    if not was_correct and prediction.get("confidence_score", 0) > TRAINING_WEIGHTS["high_confidence_cutoff"]:
        weight *= TRAINING_WEIGHTS["high_confidence_miss"]

    if prediction.get("admin_marked_bad"):
        weight *= TRAINING_WEIGHTS["admin_flagged"]

    created_at = parse_iso(prediction.get("created_at"))
    if created_at is not None and now - created_at < timedelta(days=TRAINING_WEIGHTS["recent_days"]):
        weight *= TRAINING_WEIGHTS["recent"]

    return round(weight, 4)


def bucket_label(low: int, high: int) -> str:
    return f"{low}-{high}"


def calculate_confidence_buckets(records: List[Dict[str, Any]]) -> Dict[str, Dict[str, float]]:
    """Predictions, wins and realized win rate per confidence bucket (rate 0 for empty buckets)."""
    counts = {bucket_label(low, high): [0, 0] for low, high in CONFIDENCE_BUCKETS}

    for record in records:
        outcome = record.get("confidence_vs_outcome") or {}
        confidence = outcome.get("predicted_confidence")
        if not confidence:
            continue

        # Highest bucket whose lower bound is reached; anything under 65 lands in the first
        label = bucket_label(*CONFIDENCE_BUCKETS[0])
        for low, high in CONFIDENCE_BUCKETS:
            if confidence >= low:
                label = bucket_label(low, high)

        counts[label][0] += 1
        if outcome.get("was_correct"):
            counts[label][1] += 1

    return {
        label: {
            "predictions": total,
            "wins": wins,
            "win_rate": (wins / total * 100) if total else 0.0,
        }
        for label, (total, wins) in counts.items()
    }


def analyze_factor_performance(records: List[Dict[str, Any]]) -> Dict[str, List[Dict[str, Any]]]:
    """Win rate per key-factor string, restricted to factors used often enough."""
    stats: Dict[str, List[int]] = {}
    for record in records:
        factors = (record.get("factors_vs_outcome") or {}).get("factors") or []
        was_correct = (record.get("confidence_vs_outcome") or {}).get("was_correct")
        for factor in factors:
            entry = stats.setdefault(factor, [0, 0])
            entry[0] += 1
            if was_correct:
                entry[1] += 1

    factors = [
        {"factor": factor, "uses": uses, "win_rate": wins / uses * 100}
        for factor, (uses, wins) in stats.items()
        if uses >= LEARNING_CONFIG["min_factor_uses"]
    ]
    factors.sort(key=lambda f: f["win_rate"], reverse=True)

    if not factors:
        return {"top": [], "overvalued": []}

    avg_win_rate = sum(f["win_rate"] for f in factors) / len(factors)
    overvalued = [
        f for f in factors
        if f["win_rate"] < avg_win_rate - LEARNING_CONFIG["overvalued_margin"]
    ]

    return {
        "top": factors[:LEARNING_CONFIG["top_factor_count"]],
        "overvalued": overvalued[:LEARNING_CONFIG["overvalued_factor_count"]],
    }


def format_learning_insights(insights: Dict[str, Any]) -> str:
    lines = [
        f"LEARNING INSIGHTS FOR {insights['sport'].upper()} {insights['bet_type'].upper()}",
        f"Sample Size: {insights['sample_size']} predictions | Win Rate: {insights['win_rate']:.1f}%",
        "",
        "CONFIDENCE CALIBRATION:",
    ]

    for label, bucket in insights["confidence_buckets"].items():
        if not bucket["predictions"]:
            continue
        rate = bucket["win_rate"]
        low, high = (int(x) for x in label.split("-"))
        midpoint = (low + high) / 2
        if abs(rate - midpoint) < LEARNING_CONFIG["calibration_tolerance"]:
            lines.append(f"✓ {label}% confidence → {rate:.1f}% actual (well calibrated)")
        elif rate < midpoint:
            lines.append(f"⚠ {label}% confidence → {rate:.1f}% actual (overconfident)")

    if insights["top_factors"]:
        lines += ["", "TOP PREDICTIVE FACTORS:"]
        for i, f in enumerate(insights["top_factors"], start=1):
            lines.append(f'{i}. "{f["factor"]}" → {f["win_rate"]:.1f}% win rate')

    if insights["overvalued_factors"]:
        lines += ["", "OVERVALUED FACTORS (Use Less):"]
        for f in insights["overvalued_factors"]:
            lines.append(f'- "{f["factor"]}" → Only {f["win_rate"]:.1f}% win rate')

    return "\n".join(lines)


class LearningEngine:
    """
    Responsibilities:
    - Grade open predictions for a completed game
    - Append learning rows with training weights
    - Aggregate insights per (sport, bet type)
    - Admin moderation: mark bad, review queue, ban user
    """

    def __init__(self, db):
        self.db = db
        self.predictions = db["ai_predictions"]
        self.learning_data = db["ai_learning_data"]
        self.admin_logs = db["admin_logs"]
        self.profiles = db["profiles"]

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def process_prediction_outcome(
        self,
        prediction: Dict[str, Any],
        result: Dict[str, Any],
        now: Optional[datetime] = None,
    ) -> Optional[bool]:
        """
        Resolve one prediction and append its learning row.

        Returns:
            was_correct, or None when another run already resolved it
        """
        now = now or now_utc()
        prediction_id = prediction["prediction_id"]
        was_correct = evaluate_prediction(prediction, result)
        resolved_at = now.isoformat()

        update = self.predictions.update_one(
            {"prediction_id": prediction_id, "was_correct": None},
            {"$set": {
                "actual_winner": result.get("winner"),
                "actual_score": {"home": result["home_score"], "away": result["away_score"]},
                "was_correct": was_correct,
                "resolved_at": resolved_at,
            }},
        )
        if not update.modified_count:
            logger.info("Prediction %s already resolved, skipping", prediction_id)
            return None

        try:
            self._record_learning_data(prediction, was_correct, now)
        except (PyMongoError, ValueError):
            # Reopen so the next score update retries the whole resolution
            self.predictions.update_one(
                {"prediction_id": prediction_id, "resolved_at": resolved_at},
                {
                    "$set": {"was_correct": None},
                    "$unset": {"actual_winner": "", "actual_score": "", "resolved_at": ""},
                },
            )
            logger.warning("Reopened prediction %s after learning row write failed", prediction_id)
            raise

        logger.info("Processed outcome for prediction %s (correct=%s)", prediction_id, was_correct)
        return was_correct

    def _record_learning_data(self, prediction: Dict[str, Any], was_correct: bool, now: datetime):
        confidence = prediction.get("confidence_score", 0)
        record = LearningDataRecord(
            prediction_id=prediction["prediction_id"],
            sport_type=prediction.get("sport_key") or "unknown",
            bet_type=prediction.get("recommended_bet_type"),
            model_version=prediction.get("model_version"),
            confidence_vs_outcome={
                "predicted_confidence": confidence,
                "was_correct": was_correct,
                "actual_confidence": confidence if was_correct else 100 - confidence,
            },
            edge_vs_outcome={
                "predicted_edge": prediction.get("edge_score", 0.0),
                "actual_edge": prediction.get("edge_score", 0.0),
            },
            factors_vs_outcome={"factors": prediction.get("key_factors") or []},
            training_weight=calculate_training_weight(prediction, was_correct, now),
            created_at=now.isoformat(),
        )
        self.learning_data.insert_one(record.model_dump())

    def process_completed_game(self, event: Dict[str, Any], result: Dict[str, Any]) -> Dict[str, Any]:
        """
        Resolve every open prediction for a completed event.

        One failing prediction is recorded in `errors` and the rest continue.
        """
        result = {
            **result,
            "home_team": event.get("home_team"),
            "away_team": event.get("away_team"),
        }
        report = {"event_id": event.get("event_id"), "resolved": 0, "correct": 0, "errors": []}

        open_predictions = self.predictions.find(
            {"event_id": event.get("event_id"), "was_correct": None},
            {"_id": 0},
        )
        for prediction in open_predictions:
            try:
                was_correct = self.process_prediction_outcome(prediction, result)
            except (PyMongoError, KeyError, ValueError) as e:
                logger.error("Error processing prediction %s: %s", prediction.get("prediction_id"), e)
                report["errors"].append(f"{prediction.get('prediction_id')}: {e}")
                continue

            if was_correct is None:
                continue
            report["resolved"] += 1
            if was_correct:
                report["correct"] += 1

        log_stage("learning_engine", "game_resolved", {"event_id": event.get("event_id")}, report, database=self.db)
        return report

    # ------------------------------------------------------------------
    # Insights
    # ------------------------------------------------------------------

    def generate_learning_insights(self, sport: str, bet_type: str) -> Dict[str, Any]:
        """
        Aggregate unused learning rows for (sport, bet type).

        Fewer than min_sample_size rows returns sufficient_data=False.
        """
        records = list(
            self.learning_data.find(
                {"sport_type": sport, "bet_type": bet_type, "used_for_training": False},
                {"_id": 0},
            )
            .sort("created_at", -1)
            .limit(LEARNING_CONFIG["max_records"])
        )

        if len(records) < LEARNING_CONFIG["min_sample_size"]:
            return {
                "sufficient_data": False,
                "message": "Insufficient data for learning insights",
                "sample_size": len(records),
            }

        correct = sum(1 for r in records if (r.get("confidence_vs_outcome") or {}).get("was_correct") is True)
        factor_analysis = analyze_factor_performance(records)

        insights = {
            "sufficient_data": True,
            "sport": sport,
            "bet_type": bet_type,
            "sample_size": len(records),
            "win_rate": correct / len(records) * 100,
            "confidence_buckets": calculate_confidence_buckets(records),
            "top_factors": factor_analysis["top"],
            "overvalued_factors": factor_analysis["overvalued"],
        }
        insights["formatted"] = format_learning_insights(insights)
        return insights

    # ------------------------------------------------------------------
    # Admin
    # ------------------------------------------------------------------

    def _log_admin_action(self, admin_id: str, action: str, target_type: str, target_id: str, details: Dict[str, Any]):
        self.admin_logs.insert_one({
            "admin_id": admin_id,
            "action": action,
            "target_type": target_type,
            "target_id": target_id,
            "details": details,
            "created_at": now_utc().isoformat(),
        })

    def mark_prediction_bad(
        self,
        prediction_id: str,
        admin_id: str,
        reason: str,
        categories: Optional[List[str]] = None,
    ) -> Dict[str, Any]:
        categories = categories or []
        unknown = [c for c in categories if c not in MARK_BAD_CATEGORIES]
        if unknown:
            raise ValidationError(f"Unknown categories: {', '.join(unknown)}")

        marked_at = now_utc().isoformat()
        update = self.predictions.update_one(
            {"prediction_id": prediction_id},
            {"$set": {
                "admin_marked_bad": True,
                "admin_reason": reason,
                "admin_marked_by": admin_id,
                "admin_marked_at": marked_at,
            }},
        )
        if not update.matched_count:
            raise NotFound(f"Prediction not found: {prediction_id}")

        self._log_admin_action(
            admin_id, "mark_prediction_bad", "prediction", prediction_id,
            {"reason": reason, "categories": categories},
        )
        logger.info("Prediction %s marked as bad by %s", prediction_id, admin_id)
        return {"prediction_id": prediction_id, "admin_marked_bad": True, "admin_marked_at": marked_at}

    def get_review_queue(self, limit: int = 50) -> List[Dict[str, Any]]:
        """High-confidence misses not yet flagged, newest first."""
        cursor = self.predictions.find(
            {
                "was_correct": False,
                "admin_marked_bad": {"$ne": True},
                "confidence_score": {"$gte": LEARNING_CONFIG["review_min_confidence"]},
            },
            {"_id": 0},
        ).sort("created_at", -1).limit(limit)
        return list(cursor)

    def ban_user(self, user_id: str, admin_id: str, reason: str = "") -> Dict[str, Any]:
        update = self.profiles.update_one(
            {"user_id": user_id},
            {"$set": {"subscription_status": "canceled", "updated_at": now_utc().isoformat()}},
        )
        if not update.matched_count:
            raise NotFound(f"Profile not found: {user_id}")

        self._log_admin_action(admin_id, "ban_user", "user", user_id, {"reason": reason})
        logger.info("User %s banned by %s", user_id, admin_id)
        return {"user_id": user_id, "subscription_status": "canceled"}
