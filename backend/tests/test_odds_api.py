from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import pytest
import requests

from backend.integrations import odds_api
from backend.integrations.odds_api import (
    OddsApiError,
    calculate_average_odds,
    get_best_odds,
    get_outcome_line,
    normalize_event,
    parse_score,
    resolve_sport_key,
)

NOW = datetime(2026, 10, 17, 12, 0, tzinfo=timezone.utc)


def test_resolve_sport_key():
    assert resolve_sport_key("nba") == "basketball_nba"
    assert resolve_sport_key("icehockey_nhl") == "icehockey_nhl"


def test_normalize_event_status_from_commence_time(odds_data):
    raw = {
        "id": "abc123",
        "sport_key": "basketball_nba",
        "sport_title": "NBA",
        "home_team": "Boston Celtics",
        "away_team": "New York Knicks",
        "commence_time": "2026-10-18T00:00:00Z",
        "bookmakers": odds_data,
    }

    upcoming = normalize_event(raw, NOW)
    assert upcoming["event_id"] == "abc123"
    assert upcoming["event_status"] == "upcoming"
    assert upcoming["odds_data"] == odds_data
    assert upcoming["last_odds_update"] == NOW.isoformat()

    started = normalize_event({**raw, "commence_time": "2026-10-17T11:00:00Z"}, NOW)
    assert started["event_status"] == "live"


def score(home, away, completed=True):
    return {
        "id": "abc123",
        "completed": completed,
        "home_team": "Boston Celtics",
        "away_team": "New York Knicks",
        "scores": [
            {"name": "New York Knicks", "score": str(away)},
            {"name": "Boston Celtics", "score": str(home)},
        ],
    }


def test_parse_score_matches_entries_by_team_name():
    parsed = parse_score(score(98, 104))
    assert parsed["home_score"] == 98
    assert parsed["away_score"] == 104
    assert parsed["winner"] == "away"
    assert parsed["completed"] is True


def test_parse_score_tie_has_no_winner():
    parsed = parse_score(score(3, 3))
    assert parsed["has_scores"] is True
    assert parsed["winner"] is None


def test_parse_score_without_scores():
    parsed = parse_score({"id": "abc123", "completed": False, "scores": None})
    assert parsed["has_scores"] is False
    assert parsed["winner"] is None


def test_outcome_line_takes_best_price(odds_data):
    line = get_outcome_line(odds_data, "h2h", "Boston Celtics")
    assert line == {"odds": -120, "point": None, "bookmaker": "FanDuel"}

    spread = get_outcome_line(odds_data, "spreads", "New York Knicks")
    assert spread["point"] == 3.5

    assert get_outcome_line(odds_data, "h2h", "Los Angeles Lakers") is None


def test_best_and_average_odds(odds_data):
    best = get_best_odds(odds_data, "h2h")
    assert best["New York Knicks"]["odds"] == 110

    average = calculate_average_odds(odds_data, "h2h")
    assert average == {"Boston Celtics": -125, "New York Knicks": 105}
    assert "Over_215.5" in calculate_average_odds(odds_data, "totals")


def test_missing_api_key_raises(monkeypatch):
    monkeypatch.setattr(odds_api, "API_KEY", None)
    with pytest.raises(OddsApiError):
        odds_api.fetch_odds("nba")


def test_http_error_raises_upstream(monkeypatch):
    monkeypatch.setattr(odds_api, "API_KEY", "key")
    response = MagicMock(status_code=401, text="unauthorized")
    response.json.return_value = {"message": "Invalid API key"}

    with patch("backend.integrations.odds_api.requests.get", return_value=response) as get:
        with pytest.raises(OddsApiError) as exc:
            odds_api.fetch_scores("nba", days_from=2)

    assert exc.value.status_code == 502
    assert get.call_args[1]["params"]["daysFrom"] == 2
    assert get.call_args[0][0].endswith("/sports/basketball_nba/scores")


def test_network_error_raises_upstream(monkeypatch):
    monkeypatch.setattr(odds_api, "API_KEY", "key")
    with patch("backend.integrations.odds_api.requests.get", side_effect=requests.ConnectionError("refused")):
        with pytest.raises(OddsApiError):
            odds_api.fetch_odds("nfl")
