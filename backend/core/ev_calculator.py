"""
core/ev_calculator.py
Odds conversions, implied probability, vig removal and edge / expected value.

Conventions:
    - American odds are ints (e.g. -110, +150); 0 is not a valid price.
    - Probabilities are percentages on a 0-100 scale.
    - Edge and EV are percentages of the stake.
"""
from typing import Dict, Iterable, Optional, Tuple


def american_to_decimal(american_odds: float) -> float:
    """
    Convert American odds to decimal odds.

    Examples:
        +150 → 2.5
        -150 → 1.6667
    """
    if american_odds == 0:
        raise ValueError("American odds of 0 are not a valid price")
    if american_odds > 0:
        return american_odds / 100 + 1
    return 100 / abs(american_odds) + 1


def decimal_to_american(decimal_odds: float) -> int:
    """
    Convert decimal odds to American odds.

    Decimal odds of 1.0 or less have no American equivalent and are rejected.
    """
    if decimal_odds <= 1:
        raise ValueError(f"Invalid decimal odds: {decimal_odds} (must be > 1.0)")
    if decimal_odds >= 2.0:
        return round((decimal_odds - 1) * 100)
    return round(-100 / (decimal_odds - 1))


def implied_probability(american_odds: float) -> float:
    """
    Convert American odds to implied probability (0-100 scale).

    Examples:
        +150 → 40.0
        -150 → 60.0
    """
    if american_odds == 0:
        raise ValueError("American odds of 0 are not a valid price")
    if american_odds > 0:
        # Underdog
        return 100 / (american_odds + 100) * 100
    # Favorite
    return abs(american_odds) / (abs(american_odds) + 100) * 100


def edge_score(true_probability_pct: float, american_odds: float) -> float:
    """
    Edge = (True Probability × Decimal Odds) - 1, as a percentage.

    Positive edge means the estimated win probability exceeds what the
    offered price implies.

    Example:
        60% at +120 → (0.60 × 2.2 - 1) × 100 = 32.0
    """
    decimal_odds = american_to_decimal(american_odds)
    return (true_probability_pct / 100 * decimal_odds - 1) * 100


def calculate_vig(odds_a: float, odds_b: float) -> float:
    """Bookmaker overround: how far the two implied probabilities sum above 100."""
    return implied_probability(odds_a) + implied_probability(odds_b) - 100


def remove_vig(odds_a: float, odds_b: float) -> Tuple[float, float]:
    """
    Normalize the implied probabilities of a two-way market to a fair 100% split.

    Returns:
        (fair_prob_a, fair_prob_b) on a 0-100 scale
    """
    prob_a = implied_probability(odds_a)
    prob_b = implied_probability(odds_b)
    total = prob_a + prob_b
    return prob_a / total * 100, prob_b / total * 100


def expected_value(win_probability_pct: float, american_odds: float, stake: float = 100) -> float:
    """
    EV = (Win Probability × Win Amount) - (Loss Probability × Stake)

    Returns the expected profit in stake currency units.
    """
    decimal_odds = american_to_decimal(american_odds)
    win_amount = stake * (decimal_odds - 1)
    loss_probability = 100 - win_probability_pct
    return win_probability_pct / 100 * win_amount - loss_probability / 100 * stake


def roi(ev: float, stake: float = 100) -> float:
    """Return on investment percentage for an expected value."""
    return ev / stake * 100


def fair_odds(true_probability_pct: float) -> int:
    """American odds with no vig for a true probability."""
    if true_probability_pct <= 0 or true_probability_pct >= 100:
        raise ValueError(f"Probability must be between 0 and 100, got {true_probability_pct}")
    return decimal_to_american(100 / true_probability_pct)


def find_best_odds(prices: Iterable[Dict]) -> Optional[Dict]:
    """
    Pick the most favorable American price across bookmakers.

    Args:
        prices: dicts with "price" (or "odds") and "bookmaker" (or "key")

    Returns:
        {"bookmaker", "odds", "implied_prob"} or None when there are no prices
    """
    best = None
    for entry in prices:
        odds = entry.get("price", entry.get("odds"))
        if odds is None:
            continue
        if best is None or odds > best["odds"]:
            best = {
                "bookmaker": entry.get("bookmaker") or entry.get("key"),
                "odds": odds,
            }

    if best is None:
        return None

    best["implied_prob"] = implied_probability(best["odds"])
    return best
