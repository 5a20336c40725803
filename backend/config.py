"""
Edge Up Sim Platform Configuration
Master constants for subscription tiers, AI thresholds, sports and compliance
"""
import os

from dotenv import load_dotenv

load_dotenv()


# ============================================================================
# SUBSCRIPTION TIERS
# ============================================================================

SUBSCRIPTION_TIERS = {
    "edge_starter": {
        "name": "Edge Starter",
        "price": 29,
        "daily_sim_limit": 3,
        "features": [
            "3 personalized hot picks daily",
            "3 custom simulations per day",
            "Moneyline, Spread, Total analysis",
            "Basic edge score display",
            "Performance tracking",
        ],
    },
    "edge_pro": {
        "name": "Edge Pro",
        "price": 99,
        "daily_sim_limit": 10,
        "features": [
            "3 personalized hot picks daily",
            "10 custom simulations per day",
            "All bet types including Player Props",
            "Advanced edge breakdown",
            "Historical performance analytics",
            "Priority support",
        ],
    },
    "edge_elite": {
        "name": "Edge Elite",
        "price": 249,
        "daily_sim_limit": 50,
        "features": [
            "3 personalized hot picks daily",
            "50 custom simulations per day",
            "All bet types + advanced analysis",
            "Full advanced analytics",
            "Bankroll management tools",
            "Dedicated support",
            "Early access to new features",
        ],
    },
}

DEFAULT_TIER = "edge_starter"
ADMIN_TIER = "admin"

# Checkout tier id -> profile tier
CHECKOUT_TIERS = {
    "starter": "edge_starter",
    "pro": "edge_pro",
    "elite": "edge_elite",
}

# Stripe price ids per checkout tier
PRICE_IDS = {
    "starter": os.getenv("STRIPE_PRICE_STARTER"),
    "pro": os.getenv("STRIPE_PRICE_PRO"),
    "elite": os.getenv("STRIPE_PRICE_ELITE"),
}

# Subscription statuses that receive hot picks and quota resets
ACTIVE_SUBSCRIPTION_STATUSES = ["active", "trialing"]

TRIAL_CONFIG = {
    "duration_days": 3,
}


# ============================================================================
# SIMULATION QUOTA
# ============================================================================

# Rollover pool is capped at this multiple of the daily limit
ROLLOVER_MULTIPLIER = 3

DEFAULT_TIMEZONE = "America/New_York"


# ============================================================================
# AI CONFIGURATION
# ============================================================================

AI_CONFIG = {
    "min_confidence": 65,   # Minimum confidence threshold
    "min_edge": 2.0,        # Minimum edge percentage
    "model": os.getenv("LLM_MODEL", "gpt-4o"),
    "max_tokens": 2500,
    "temperature": 0.3,
    "timeout_seconds": 60,
}

HOT_PICKS_PER_USER = 3
HOT_PICK_BET_TYPE = "moneyline"


# ============================================================================
# LEARNING ENGINE
# ============================================================================

LEARNING_CONFIG = {
    "min_sample_size": 50,
    "max_records": 1000,
    "min_factor_uses": 10,
    "top_factor_count": 5,
    "overvalued_factor_count": 3,
    "overvalued_margin": 5.0,
    "calibration_tolerance": 3.0,
    "review_min_confidence": 75,
}

# Training weight multipliers
TRAINING_WEIGHTS = {
    "high_confidence_miss": 1.5,   # confidence > 80 and incorrect
    "high_confidence_cutoff": 80,
    "admin_flagged": 1.8,
    "recent": 1.2,                 # created < 30 days ago
    "recent_days": 30,
}

CONFIDENCE_BUCKETS = [
    (65, 70), (70, 75), (75, 80), (80, 85), (85, 90), (90, 95), (95, 100),
]

MARK_BAD_CATEGORIES = [
    "overconfident",
    "missed_injury",
    "weather_factor",
    "poor_matchup_analysis",
    "line_movement_misread",
    "other",
]


# ============================================================================
# SPORTS & MARKETS
# ============================================================================

SPORTS = {
    "nfl": {"name": "NFL", "priority": 1, "odds_api_key": "americanfootball_nfl"},
    "nba": {"name": "NBA", "priority": 1, "odds_api_key": "basketball_nba"},
    "ncaaf": {"name": "NCAA Football", "priority": 1, "odds_api_key": "americanfootball_ncaa"},
    "ncaab": {"name": "NCAA Basketball", "priority": 1, "odds_api_key": "basketball_ncaab"},
    "mlb": {"name": "MLB", "priority": 2, "odds_api_key": "baseball_mlb"},
    "nhl": {"name": "NHL", "priority": 2, "odds_api_key": "icehockey_nhl"},
}

# Sports polled by the scheduled jobs (tier 1 priority)
SCHEDULED_SPORTS = ["nfl", "nba", "ncaab", "ncaaf"]

DEFAULT_PREFERRED_SPORTS = ["nfl", "nba", "ncaab", "ncaaf"]

BET_TYPES = {
    "moneyline": "Moneyline",
    "spread": "Spread",
    "total": "Over/Under",
}

# Bet type -> Odds API market key
BET_TYPE_MARKETS = {
    "moneyline": "h2h",
    "spread": "spreads",
    "total": "totals",
}

COMPLETED_EVENT_RETENTION_DAYS = 7


# ============================================================================
# COMPLIANCE
# ============================================================================

LEGAL_STATES = [
    "AZ", "CO", "CT", "IL", "IN", "IA", "KS", "KY", "LA", "ME",
    "MD", "MA", "MI", "MO", "NJ", "NY", "NC", "OH", "PA", "TN",
    "VT", "VA", "WV", "WY",
]

RESPONSIBLE_GAMBLING = {
    "hotline": "1-800-GAMBLER",
    "website": "https://www.ncpgambling.org/",
    "disclaimer": (
        "For entertainment and educational purposes only. Never bet more than "
        "you can afford to lose. If you or someone you know has a gambling "
        "problem, call 1-800-GAMBLER."
    ),
}


def get_daily_limit(tier: str) -> int:
    """Daily simulation limit for a subscription tier (unknown tiers get the starter limit)."""
    tier_config = SUBSCRIPTION_TIERS.get(tier) or SUBSCRIPTION_TIERS[DEFAULT_TIER]
    return tier_config["daily_sim_limit"]


def is_legal_state(state_code: str) -> bool:
    return state_code.upper() in LEGAL_STATES
