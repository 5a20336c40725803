from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import pytest
from pymongo.errors import PyMongoError

from backend.integrations.odds_api import OddsApiError
from backend.services.event_sync import EventSyncService

NOW = datetime(2026, 10, 17, 12, 0, tzinfo=timezone.utc)


def raw_event(event_id, commence="2026-10-18T00:00:00Z"):
    return {
        "id": event_id,
        "sport_key": "basketball_nba",
        "sport_title": "NBA",
        "home_team": "Boston Celtics",
        "away_team": "New York Knicks",
        "commence_time": commence,
        "bookmakers": [],
    }


def raw_score(event_id, home, away, completed=True):
    return {
        "id": event_id,
        "completed": completed,
        "home_team": "Boston Celtics",
        "away_team": "New York Knicks",
        "scores": [
            {"name": "Boston Celtics", "score": str(home)},
            {"name": "New York Knicks", "score": str(away)},
        ],
    }


@pytest.fixture
def learning_engine():
    engine = MagicMock()
    engine.process_completed_game.return_value = {"resolved": 2, "correct": 1, "errors": []}
    return engine


@pytest.fixture
def service(mock_db, learning_engine):
    return EventSyncService(mock_db, learning_engine=learning_engine)


def test_fetch_events_continues_past_failing_sport(service, mock_db):
    def fake_fetch(sport):
        if sport == "nfl":
            raise OddsApiError("Odds API error (401): quota exceeded")
        return [raw_event("evt_1"), raw_event("evt_2")]

    mock_db["sports_events"].delete_many.return_value = MagicMock(deleted_count=4)

    with patch("backend.services.event_sync.fetch_odds", side_effect=fake_fetch), \
            patch("backend.services.event_sync.upsert_events", return_value=2) as upsert:
        results = service.fetch_events(["nfl", "nba"], now=NOW)

    assert results["fetched"] == 2
    assert results["updated"] == 2
    assert results["deleted"] == 4
    assert results["details"]["nba"] == {"fetched": 2, "updated": 2}
    assert "error" in results["details"]["nfl"]
    assert len(results["errors"]) == 1 and results["errors"][0].startswith("nfl:")

    collection, events = upsert.call_args[0]
    assert collection == "sports_events"
    assert [e["event_id"] for e in events] == ["evt_1", "evt_2"]
    assert events[0]["event_status"] == "upcoming"

    prune = mock_db["sports_events"].delete_many.call_args[0][0]
    assert prune == {"event_status": "completed", "commence_time": {"$lt": "2026-10-10T12:00:00Z"}}


def test_fetch_events_reports_storage_failure(service, mock_db):
    mock_db["sports_events"].delete_many.return_value = MagicMock(deleted_count=0)

    with patch("backend.services.event_sync.fetch_odds", return_value=[raw_event("evt_1")]), \
            patch("backend.services.event_sync.upsert_events", side_effect=PyMongoError("down")):
        results = service.fetch_events(["nba"], now=NOW)

    assert results["fetched"] == 0
    assert results["errors"] == ["nba: down"]


def test_update_scores_resolves_completed_games(service, mock_db, learning_engine, event):
    mock_db["sports_events"].find_one.return_value = event
    scores = [raw_score("evt_celtics_knicks", 110, 105)]

    with patch("backend.services.event_sync.fetch_scores", return_value=scores):
        results = service.update_scores(["nba"], now=NOW)

    assert results == {"updated": 1, "completed": 1, "predictions_resolved": 2, "errors": []}

    update = mock_db["sports_events"].update_one.call_args[0][1]["$set"]
    assert update["event_status"] == "completed"
    assert update["final_score"] == {"home": 110, "away": 105, "winner": "home"}

    passed_event, parsed = learning_engine.process_completed_game.call_args[0]
    assert passed_event is event
    assert parsed["winner"] == "home"


def test_tie_and_live_scores_leave_predictions_open(service, mock_db, learning_engine, event):
    mock_db["sports_events"].find_one.return_value = event
    scores = [
        raw_score("evt_tie", 100, 100),
        raw_score("evt_live", 54, 50, completed=False),
    ]

    with patch("backend.services.event_sync.fetch_scores", return_value=scores):
        results = service.update_scores(["nba"], now=NOW)

    assert results["updated"] == 2
    assert results["completed"] == 0
    learning_engine.process_completed_game.assert_not_called()

    live_update = mock_db["sports_events"].update_one.call_args[0][1]["$set"]
    assert live_update["event_status"] == "live"


def test_unknown_events_are_skipped(service, mock_db, learning_engine):
    mock_db["sports_events"].find_one.return_value = None

    with patch("backend.services.event_sync.fetch_scores", return_value=[raw_score("evt_x", 1, 0)]):
        results = service.update_scores(["nba"], now=NOW)

    assert results["updated"] == 0
    mock_db["sports_events"].update_one.assert_not_called()


def test_score_fetch_failure_is_reported(service):
    with patch("backend.services.event_sync.fetch_scores", side_effect=OddsApiError("timeout")):
        results = service.update_scores(["nba", "nfl"], now=NOW)

    assert len(results["errors"]) == 2
