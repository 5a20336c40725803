import logging
import os
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

import requests
from dotenv import load_dotenv

from backend.config import SPORTS
from backend.core.errors import UpstreamFailure
from backend.utils.timezone import now_utc, parse_iso

load_dotenv()

API_KEY = os.getenv("THE_ODDS_API_KEY") or os.getenv("ODDS_API_KEY")
BASE_URL = os.getenv("ODDS_BASE_URL", "https://api.the-odds-api.com/v4")
REQUEST_TIMEOUT = 20

DEFAULT_MARKETS = ("h2h", "spreads", "totals")

# Short sport key -> Odds API sport key
SPORT_KEYS = {key: sport["odds_api_key"] for key, sport in SPORTS.items()}

logger = logging.getLogger(__name__)


class OddsApiError(UpstreamFailure):
    def __init__(self, message: str):
        super().__init__("odds_api", message)


def resolve_sport_key(sport: str) -> str:
    """Map a short sport key (nba) to the Odds API key (basketball_nba); pass through full keys."""
    return SPORT_KEYS.get(sport, sport)


def _get(path: str, params: Dict[str, Any]) -> requests.Response:
    if not API_KEY:
        raise OddsApiError("THE_ODDS_API_KEY is not set in environment")
    try:
        return requests.get(
            f"{BASE_URL}{path}",
            params={"apiKey": API_KEY, **params},
            timeout=REQUEST_TIMEOUT,
        )
    except requests.RequestException as e:
        raise OddsApiError(f"Request failed: {e}") from e


def _check_response(res: requests.Response):
    try:
        data = res.json()
    except ValueError:
        raise OddsApiError(f"Invalid JSON response: {res.text[:200]}")

    if res.status_code != 200:
        # Odds API returns error message in JSON sometimes
        msg = data if isinstance(data, dict) else res.text
        raise OddsApiError(f"Odds API error ({res.status_code}): {msg}")
    return data


def fetch_odds(
    sport: str,
    markets: Iterable[str] = DEFAULT_MARKETS,
    region: str = "us",
    odds_format: str = "american",
) -> List[Dict[str, Any]]:
    """Fetch upcoming and live events with odds for a sport.

    Returns JSON list of event objects (bookmakers → markets → outcomes).
    """
    sport_key = resolve_sport_key(sport)
    events = _check_response(_get(
        f"/sports/{sport_key}/odds",
        {
            "regions": region,
            "markets": ",".join(markets),
            "oddsFormat": odds_format,
            "dateFormat": "iso",
        },
    ))
    logger.info("[OddsAPI] Fetched %d events for %s", len(events), sport)
    return events


def fetch_scores(sport: str, days_from: int = 3) -> List[Dict[str, Any]]:
    """Fetch scores for completed and live events."""
    sport_key = resolve_sport_key(sport)
    scores = _check_response(_get(
        f"/sports/{sport_key}/scores",
        {"daysFrom": days_from, "dateFormat": "iso"},
    ))
    logger.info("[OddsAPI] Fetched %d scores for %s", len(scores), sport)
    return scores


def check_quota() -> Optional[Dict[str, int]]:
    """Remaining/used request counts from the Odds API response headers."""
    try:
        res = _get("/sports", {})
    except OddsApiError as e:
        logger.error("[OddsAPI] Error checking quota: %s", e)
        return None

    return {
        "remaining": int(res.headers.get("x-requests-remaining") or 0),
        "used": int(res.headers.get("x-requests-used") or 0),
    }


def normalize_event(event: Dict[str, Any], now: Optional[datetime] = None) -> Dict[str, Any]:
    """Normalize an Odds API event object into our DB event structure.

    id -> event_id; bookmakers -> odds_data; status derived from commence_time.
    """
    now = now or now_utc()
    commence = parse_iso(event.get("commence_time"))
    status = "upcoming" if commence is not None and commence > now else "live"

    return {
        "event_id": event.get("id") or event.get("event_id"),
        "sport_key": event.get("sport_key"),
        "sport_title": event.get("sport_title"),
        "home_team": event.get("home_team"),
        "away_team": event.get("away_team"),
        "commence_time": event.get("commence_time"),
        "odds_data": event.get("bookmakers", []),
        "event_status": status,
        "last_odds_update": now.isoformat(),
        "updated_at": now.isoformat(),
    }


def parse_score(score: Dict[str, Any]) -> Dict[str, Any]:
    """Extract home/away scores and the winner from an Odds API score object.

    Ties and missing scores leave winner as None.
    """
    home_score = 0
    away_score = 0
    winner = None
    has_scores = False

    entries = score.get("scores") or []
    if len(entries) >= 2:
        home_entry = next((s for s in entries if s.get("name") == score.get("home_team")), None)
        away_entry = next((s for s in entries if s.get("name") == score.get("away_team")), None)
        if home_entry and away_entry:
            try:
                home_score = int(home_entry.get("score"))
                away_score = int(away_entry.get("score"))
                has_scores = True
            except (TypeError, ValueError):
                logger.warning("[OddsAPI] Unparseable score for event %s", score.get("id"))

    if has_scores:
        if home_score > away_score:
            winner = "home"
        elif away_score > home_score:
            winner = "away"

    return {
        "event_id": score.get("id"),
        "completed": bool(score.get("completed")),
        "has_scores": has_scores,
        "home_score": home_score,
        "away_score": away_score,
        "winner": winner,
    }


def _outcome_key(outcome: Dict[str, Any]) -> str:
    if outcome.get("point") is not None:
        return f"{outcome.get('name')}_{outcome.get('point')}"
    return outcome.get("name")


def calculate_average_odds(odds_data: List[Dict[str, Any]], market: str) -> Dict[str, int]:
    """Average American price per outcome (name, or name_point) across bookmakers."""
    all_outcomes: Dict[str, List[float]] = {}
    for bookmaker in odds_data or []:
        for m in bookmaker.get("markets", []):
            if m.get("key") != market:
                continue
            for outcome in m.get("outcomes", []):
                if outcome.get("price") is not None:
                    all_outcomes.setdefault(_outcome_key(outcome), []).append(outcome["price"])

    return {
        key: round(sum(prices) / len(prices))
        for key, prices in all_outcomes.items()
        if prices
    }


def get_best_odds(odds_data: List[Dict[str, Any]], market: str) -> Dict[str, Dict[str, Any]]:
    """Best price per outcome across bookmakers (higher positive / less negative is better)."""
    best: Dict[str, Dict[str, Any]] = {}
    for bookmaker in odds_data or []:
        for m in bookmaker.get("markets", []):
            if m.get("key") != market:
                continue
            for outcome in m.get("outcomes", []):
                key = _outcome_key(outcome)
                price = outcome.get("price")
                if price is None:
                    continue
                if key not in best or price > best[key]["odds"]:
                    best[key] = {
                        "odds": price,
                        "point": outcome.get("point"),
                        "bookmaker": bookmaker.get("title") or bookmaker.get("key"),
                    }
    return best


def get_outcome_line(odds_data: List[Dict[str, Any]], market: str, outcome_name: str) -> Optional[Dict[str, Any]]:
    """
    Best price (and its point, for spreads/totals) for one named outcome.

    Outcome names are team names for h2h/spreads and "Over"/"Under" for totals.
    """
    best = None
    for bookmaker in odds_data or []:
        for m in bookmaker.get("markets", []):
            if m.get("key") != market:
                continue
            for outcome in m.get("outcomes", []):
                if outcome.get("name") != outcome_name or outcome.get("price") is None:
                    continue
                if best is None or outcome["price"] > best["odds"]:
                    best = {
                        "odds": outcome["price"],
                        "point": outcome.get("point"),
                        "bookmaker": bookmaker.get("title") or bookmaker.get("key"),
                    }
    return best
