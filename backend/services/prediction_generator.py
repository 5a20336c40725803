"""
Prediction Generator
====================
Runs one prediction request through the pipeline:

    fetching_event → building_prompt → awaiting_model → parsing → validating → persisted

Each stage is written to logs_core_ai via log_stage. Any failure before
persistence raises and nothing is stored. A failed write at the persistence
stage does not fail the request: the prediction is returned with
prediction_id=None and a warning.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from pymongo.errors import PyMongoError

from backend.config import AI_CONFIG, BET_TYPE_MARKETS, HOT_PICK_BET_TYPE, SPORTS
from backend.core.errors import EdgeUpError, NotFound, PersistenceWarning, ValidationError
from backend.core.ev_calculator import edge_score
from backend.core.prompt_builder import build_prediction_context, build_prompt, get_prompt_template
from backend.core.response_parser import (
    ParsedPrediction,
    parse_ai_response,
    parse_edge_calculation,
    validate_parsed_prediction,
)
from backend.db.schemas.predictions import PredictionRecord
from backend.integrations.odds_api import get_outcome_line, resolve_sport_key
from backend.services.learning_engine import LearningEngine
from backend.services.llm_client import PredictionLLMClient
from backend.services.logger import log_stage
from backend.utils.timezone import get_utc_date_today

logger = logging.getLogger(__name__)

MODULE = "prediction_generator"

CONFIDENCE_NO_BET = f"NO BET - Confidence below {AI_CONFIG['min_confidence']}% threshold"
EDGE_NO_BET = f"NO BET - Edge below {AI_CONFIG['min_edge']:g}% threshold"

# Odds API sport key -> short key used by the prompt templates
SHORT_SPORT_KEYS = {sport["odds_api_key"]: key for key, sport in SPORTS.items()}


@dataclass
class PredictionRequest:
    event_id: str
    sport: str
    bet_type: str = "moneyline"
    user_id: Optional[str] = None
    is_hot_pick: bool = False


def short_sport_key(sport: str) -> str:
    """basketball_nba → nba; short keys pass through."""
    return SHORT_SPORT_KEYS.get(sport, sport)


def outcome_name_for(event: Dict[str, Any], predicted_winner: Optional[str]) -> Optional[str]:
    """Odds-snapshot outcome name for a predicted side."""
    return {
        "home": event.get("home_team"),
        "away": event.get("away_team"),
        "over": "Over",
        "under": "Under",
    }.get(predicted_winner)


def calculate_prediction_edge(
    event: Dict[str, Any],
    bet_type: str,
    predicted_winner: Optional[str],
    true_probability: float,
) -> float:
    """
    Edge of the model's probability against the best offered price for its side.

    No predicted side, or no price for it in the snapshot, gives 0.0.
    """
    outcome_name = outcome_name_for(event, predicted_winner)
    if outcome_name is None:
        return 0.0

    line = get_outcome_line(event.get("odds_data") or [], BET_TYPE_MARKETS[bet_type], outcome_name)
    if not line:
        return 0.0

    return round(edge_score(true_probability, line["odds"]), 2)


def apply_decision_rules(parsed: ParsedPrediction, edge: float) -> Tuple[Optional[str], str, bool]:
    """
    Confidence and edge gates.

    Returns:
        (predicted_winner, recommended_line, recommended)
    """
    predicted_winner = parsed.predicted_winner
    recommended_line = parsed.recommended_line

    if parsed.confidence_score < AI_CONFIG["min_confidence"]:
        predicted_winner = None
        recommended_line = CONFIDENCE_NO_BET

    # Checked second so its message wins when both gates fire
    if edge < AI_CONFIG["min_edge"]:
        predicted_winner = None
        recommended_line = EDGE_NO_BET

    return predicted_winner, recommended_line, predicted_winner is not None


class PredictionGenerator:
    def __init__(self, db, llm_client: Optional[PredictionLLMClient] = None, learning_engine: Optional[LearningEngine] = None):
        self.db = db
        self.events = db["sports_events"]
        self.predictions = db["ai_predictions"]
        self.llm_client = llm_client or PredictionLLMClient()
        self.learning_engine = learning_engine or LearningEngine(db)

    def _log(self, stage: str, request: PredictionRequest, output: Optional[Dict[str, Any]] = None, level: str = "INFO"):
        log_stage(
            MODULE,
            stage,
            input_payload={
                "event_id": request.event_id,
                "sport": request.sport,
                "bet_type": request.bet_type,
                "user_id": request.user_id,
                "is_hot_pick": request.is_hot_pick,
            },
            output_payload=output,
            level=level,
            database=self.db,
        )

    def _learning_insights(self, sport_key: str, bet_type: str) -> Optional[str]:
        try:
            insights = self.learning_engine.generate_learning_insights(sport_key, bet_type)
        except PyMongoError as e:
            logger.warning("Learning insights unavailable for %s/%s: %s", sport_key, bet_type, e)
            return None
        return insights.get("formatted") if insights.get("sufficient_data") else None

    def generate_prediction(self, request: PredictionRequest) -> Dict[str, Any]:
        """
        Generate, gate and persist one prediction.

        Raises:
            ValidationError: unknown bet type
            NotFound: event does not exist
            UpstreamFailure: model call failed
        """
        try:
            return self._run(request)
        except EdgeUpError as e:
            self._log("failed", request, {"error": e.error_code, "message": e.message}, level="ERROR")
            raise

    def _run(self, request: PredictionRequest) -> Dict[str, Any]:
        if request.bet_type not in BET_TYPE_MARKETS:
            raise ValidationError(f"Unsupported bet type: {request.bet_type}")

        # Stage 1: event
        self._log("fetching_event", request)
        event = self.events.find_one({"event_id": request.event_id}, {"_id": 0})
        if not event:
            raise NotFound(f"Event not found: {request.event_id}")

        sport_key = event.get("sport_key") or resolve_sport_key(request.sport)
        sport = short_sport_key(request.sport or sport_key)

        # Stage 2: prompt
        template = get_prompt_template(sport, request.bet_type)
        context = build_prediction_context(event, sport, request.bet_type)
        insights = self._learning_insights(sport_key, request.bet_type)
        prompt = build_prompt(template, context, learning_insights=insights)
        self._log("building_prompt", request, {
            "template": f"{template.sport_type}/{template.bet_type}",
            "prompt_chars": len(prompt),
            "has_insights": bool(insights),
        })

        # Stage 3: model
        self._log("awaiting_model", request, {"model": self.llm_client.model})
        raw_response = self.llm_client.complete(prompt)

        # Stage 4: parse
        parsed = parse_ai_response(raw_response, request.bet_type)
        self._log("parsing", request, {
            "predicted_winner": parsed.predicted_winner,
            "confidence_score": parsed.confidence_score,
            "true_probability": parsed.true_probability,
            "factor_count": len(parsed.key_factors),
        })
        if not validate_parsed_prediction(parsed):
            logger.warning("Model response for %s is missing required sections", request.event_id)

        # Stage 5: edge + gates
        edge = calculate_prediction_edge(event, request.bet_type, parsed.predicted_winner, parsed.true_probability)
        predicted_winner, recommended_line, recommended = apply_decision_rules(parsed, edge)
        self._log("validating", request, {
            "edge_score": edge,
            "model_reported_edge": parse_edge_calculation(raw_response),
            "recommended": recommended,
            "recommended_line": recommended_line,
        })

        record = PredictionRecord(
            event_id=request.event_id,
            prediction_type="hot_pick" if request.is_hot_pick else "user_simulation",
            requested_by=request.user_id,
            model_version=self.llm_client.model,
            sport_key=sport_key,
            predicted_winner=predicted_winner,
            confidence_score=parsed.confidence_score,
            edge_score=edge,
            true_probability=parsed.true_probability,
            recommended=recommended,
            recommended_bet_type=request.bet_type,
            recommended_line=recommended_line,
            ai_analysis=parsed.ai_analysis,
            key_factors=parsed.key_factors,
            risk_assessment=parsed.risk_assessment,
            odds_snapshot=event.get("odds_data") or [],
        )

        # Stage 6: persist
        result = record.model_dump()
        warnings: List[str] = []
        try:
            self.predictions.insert_one(record.model_dump())
        except PyMongoError as e:
            warning = PersistenceWarning(f"Prediction could not be saved: {e}")
            logger.warning(warning.message)
            warnings.append(warning.message)
            result["prediction_id"] = None

        self._log("persisted", request, {
            "prediction_id": result["prediction_id"],
            "warnings": warnings,
        }, level="WARNING" if warnings else "INFO")

        result["warnings"] = warnings
        return result

    def get_or_create_hot_pick(
        self,
        event_id: str,
        sport: str,
        bet_type: str = HOT_PICK_BET_TYPE,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """
        Today's hot pick for an event, generating it only when none exists yet.

        "Today" is the UTC date, so every user assigned this event on the same
        day shares one prediction.
        """
        today = get_utc_date_today(now)
        existing = self.predictions.find_one(
            {
                "event_id": event_id,
                "prediction_type": "hot_pick",
                "created_at": {"$gte": today},
            },
            {"_id": 0},
            sort=[("created_at", -1)],
        )
        if existing:
            existing.setdefault("warnings", [])
            return existing

        return self.generate_prediction(
            PredictionRequest(event_id=event_id, sport=sport, bet_type=bet_type, is_hot_pick=True)
        )
