"""
Shared fixtures: a Mongo database stand-in and sample odds data.
"""
from unittest.mock import MagicMock

import pytest


@pytest.fixture
def mock_db():
    """
    db["name"] returns the same MagicMock per collection name, so tests can
    configure a collection and the code under test sees that configuration.
    """
    collections = {}
    db_mock = MagicMock()
    db_mock.__getitem__.side_effect = lambda name: collections.setdefault(name, MagicMock(name=name))
    return db_mock


def make_bookmaker(key, title, markets):
    return {
        "key": key,
        "title": title,
        "markets": [{"key": market_key, "outcomes": outcomes} for market_key, outcomes in markets.items()],
    }


@pytest.fixture
def odds_data():
    """Two books pricing h2h, spreads and totals for Celtics (home) vs Knicks (away)."""
    return [
        make_bookmaker("draftkings", "DraftKings", {
            "h2h": [
                {"name": "Boston Celtics", "price": -130},
                {"name": "New York Knicks", "price": 110},
            ],
            "spreads": [
                {"name": "Boston Celtics", "price": -110, "point": -3.5},
                {"name": "New York Knicks", "price": -110, "point": 3.5},
            ],
            "totals": [
                {"name": "Over", "price": -108, "point": 215.5},
                {"name": "Under", "price": -112, "point": 215.5},
            ],
        }),
        make_bookmaker("fanduel", "FanDuel", {
            "h2h": [
                {"name": "Boston Celtics", "price": -120},
                {"name": "New York Knicks", "price": 100},
            ],
        }),
    ]


@pytest.fixture
def event(odds_data):
    return {
        "event_id": "evt_celtics_knicks",
        "sport_key": "basketball_nba",
        "sport_title": "NBA",
        "home_team": "Boston Celtics",
        "away_team": "New York Knicks",
        "commence_time": "2026-10-18T00:00:00Z",
        "event_status": "upcoming",
        "odds_data": odds_data,
    }


SAMPLE_RESPONSE = """### PREDICTION
HOME

### CONFIDENCE LEVEL
72

### TRUE PROBABILITY ESTIMATE
58.5%

### EDGE CALCULATION
Implied probability at -120 is 54.5%.
Edge Score: +7.3%

### RECOMMENDED BET
Boston Celtics Moneyline at -120

### KEY FACTORS
- Home court advantage
- Rest advantage: 2 days vs back-to-back
- Opponent missing starting center

### DETAILED ANALYSIS
The Celtics come in rested while the Knicks play the second night of a back-to-back.

### RISK ASSESSMENT
A late lineup change for Boston would erase most of the edge.
"""


@pytest.fixture
def sample_response():
    return SAMPLE_RESPONSE
