"""
Prediction pipeline tests: event lookup, edge from the odds snapshot,
confidence/edge gates, persistence and hot-pick reuse.
"""
from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest
from pymongo.errors import PyMongoError

from backend.core.errors import NotFound, UpstreamFailure, ValidationError
from backend.core.ev_calculator import edge_score
from backend.core.response_parser import ParsedPrediction
from backend.services.prediction_generator import (
    CONFIDENCE_NO_BET,
    EDGE_NO_BET,
    PredictionGenerator,
    PredictionRequest,
    apply_decision_rules,
    calculate_prediction_edge,
    short_sport_key,
)


def make_parsed(confidence=72, winner="home", line="Boston Celtics Moneyline at -120"):
    return ParsedPrediction(
        predicted_winner=winner,
        confidence_score=confidence,
        true_probability=58.5,
        recommended_bet_type="moneyline",
        recommended_line=line,
        key_factors=["Home court advantage"],
        ai_analysis="analysis",
    )


@pytest.fixture
def llm_client(sample_response):
    client = MagicMock()
    client.model = "gpt-4o"
    client.complete.return_value = sample_response
    return client


@pytest.fixture
def learning_engine():
    engine = MagicMock()
    engine.generate_learning_insights.return_value = {"sufficient_data": False, "sample_size": 3}
    return engine


@pytest.fixture
def generator(mock_db, event, llm_client, learning_engine):
    mock_db["sports_events"].find_one.return_value = event
    return PredictionGenerator(mock_db, llm_client=llm_client, learning_engine=learning_engine)


# -----------------------------
# Decision rules
# -----------------------------

def test_low_confidence_is_no_bet():
    winner, line, recommended = apply_decision_rules(make_parsed(confidence=60), edge=5.0)
    assert winner is None
    assert line == CONFIDENCE_NO_BET == "NO BET - Confidence below 65% threshold"
    assert recommended is False


def test_low_edge_is_no_bet():
    winner, line, recommended = apply_decision_rules(make_parsed(confidence=70), edge=1.0)
    assert winner is None
    assert line == EDGE_NO_BET == "NO BET - Edge below 2% threshold"
    assert recommended is False


def test_edge_message_wins_when_both_gates_fire():
    _, line, _ = apply_decision_rules(make_parsed(confidence=50), edge=-3.0)
    assert line == EDGE_NO_BET


def test_passing_gates_keeps_model_pick():
    winner, line, recommended = apply_decision_rules(make_parsed(), edge=7.25)
    assert winner == "home"
    assert line == "Boston Celtics Moneyline at -120"
    assert recommended is True


# -----------------------------
# Edge from the odds snapshot
# -----------------------------

def test_edge_uses_best_price_for_predicted_side(event):
    # Best Celtics h2h price across books is -120 (FanDuel)
    assert calculate_prediction_edge(event, "moneyline", "home", 58.5) == round(edge_score(58.5, -120), 2)


def test_edge_for_totals_uses_over_under_outcomes(event):
    assert calculate_prediction_edge(event, "total", "over", 55.0) == round(edge_score(55.0, -108), 2)


def test_edge_zero_without_side_or_price(event):
    assert calculate_prediction_edge(event, "moneyline", None, 60) == 0.0
    assert calculate_prediction_edge({**event, "odds_data": []}, "moneyline", "home", 60) == 0.0
    assert calculate_prediction_edge(event, "moneyline", "over", 60) == 0.0


def test_short_sport_key():
    assert short_sport_key("basketball_nba") == "nba"
    assert short_sport_key("nfl") == "nfl"


# -----------------------------
# Pipeline
# -----------------------------

def test_generate_prediction_persists_record(generator, mock_db, llm_client):
    result = generator.generate_prediction(PredictionRequest(
        event_id="evt_celtics_knicks", sport="nba", bet_type="moneyline", user_id="user_1",
    ))

    assert result["predicted_winner"] == "home"
    assert result["confidence_score"] == 72
    assert result["edge_score"] == round(edge_score(58.5, -120), 2)
    assert result["recommended"] is True
    assert result["prediction_type"] == "user_simulation"
    assert result["requested_by"] == "user_1"
    assert result["model_version"] == "gpt-4o"
    assert result["prediction_id"].startswith("pred_")
    assert result["warnings"] == []

    llm_client.complete.assert_called_once()
    stored = mock_db["ai_predictions"].insert_one.call_args[0][0]
    assert stored["prediction_id"] == result["prediction_id"]
    assert stored["was_correct"] is None
    assert stored["odds_snapshot"] == result["odds_snapshot"]


def test_stages_are_logged_in_order(generator, mock_db):
    generator.generate_prediction(PredictionRequest(event_id="evt_celtics_knicks", sport="nba"))

    stages = [c[0][0]["stage"] for c in mock_db["logs_core_ai"].insert_one.call_args_list]
    assert stages == ["fetching_event", "building_prompt", "awaiting_model", "parsing", "validating", "persisted"]


def test_learning_insights_included_in_prompt(generator, learning_engine, llm_client):
    learning_engine.generate_learning_insights.return_value = {
        "sufficient_data": True,
        "formatted": "LEARNING INSIGHTS FOR BASKETBALL_NBA MONEYLINE",
    }
    generator.generate_prediction(PredictionRequest(event_id="evt_celtics_knicks", sport="nba"))

    learning_engine.generate_learning_insights.assert_called_once_with("basketball_nba", "moneyline")
    assert "LEARNING INSIGHTS FOR BASKETBALL_NBA MONEYLINE" in llm_client.complete.call_args[0][0]


def test_missing_event_raises_not_found(generator, mock_db, llm_client):
    mock_db["sports_events"].find_one.return_value = None

    with pytest.raises(NotFound):
        generator.generate_prediction(PredictionRequest(event_id="missing", sport="nba"))

    llm_client.complete.assert_not_called()
    mock_db["ai_predictions"].insert_one.assert_not_called()


def test_model_failure_writes_nothing(generator, mock_db, llm_client):
    llm_client.complete.side_effect = UpstreamFailure("llm", "timeout")

    with pytest.raises(UpstreamFailure):
        generator.generate_prediction(PredictionRequest(event_id="evt_celtics_knicks", sport="nba"))

    mock_db["ai_predictions"].insert_one.assert_not_called()


def test_unsupported_bet_type(generator):
    with pytest.raises(ValidationError):
        generator.generate_prediction(PredictionRequest(event_id="evt_celtics_knicks", sport="nba", bet_type="parlay"))


def test_storage_failure_returns_prediction_with_warning(generator, mock_db):
    mock_db["ai_predictions"].insert_one.side_effect = PyMongoError("connection reset")

    result = generator.generate_prediction(PredictionRequest(event_id="evt_celtics_knicks", sport="nba"))

    assert result["prediction_id"] is None
    assert len(result["warnings"]) == 1
    assert "connection reset" in result["warnings"][0]
    assert result["predicted_winner"] == "home"


def test_low_confidence_response_is_stored_as_no_bet(generator, llm_client, sample_response):
    llm_client.complete.return_value = sample_response.replace("### CONFIDENCE LEVEL\n72", "### CONFIDENCE LEVEL\n55")

    result = generator.generate_prediction(PredictionRequest(event_id="evt_celtics_knicks", sport="nba"))

    assert result["predicted_winner"] is None
    assert result["recommended_line"] == CONFIDENCE_NO_BET
    assert result["recommended"] is False


# -----------------------------
# Hot picks
# -----------------------------

def test_hot_pick_reused_for_same_day(generator, mock_db, llm_client):
    existing = {"prediction_id": "pred_existing", "prediction_type": "hot_pick"}
    mock_db["ai_predictions"].find_one.return_value = existing
    now = datetime(2026, 10, 17, 15, 0, tzinfo=timezone.utc)

    result = generator.get_or_create_hot_pick("evt_celtics_knicks", "nba", now=now)

    assert result["prediction_id"] == "pred_existing"
    llm_client.complete.assert_not_called()
    query = mock_db["ai_predictions"].find_one.call_args[0][0]
    assert query["created_at"] == {"$gte": "2026-10-17"}


def test_hot_pick_generated_when_none_today(generator, mock_db):
    mock_db["ai_predictions"].find_one.return_value = None

    result = generator.get_or_create_hot_pick("evt_celtics_knicks", "nba")

    assert result["prediction_type"] == "hot_pick"
    assert result["requested_by"] is None
