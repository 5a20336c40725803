import pytest

from backend.core.ev_calculator import (
    american_to_decimal,
    calculate_vig,
    decimal_to_american,
    edge_score,
    expected_value,
    fair_odds,
    find_best_odds,
    implied_probability,
    remove_vig,
    roi,
)


def test_implied_probability_underdog_and_favorite():
    assert implied_probability(150) == pytest.approx(40.0)
    assert implied_probability(-150) == pytest.approx(60.0)
    assert implied_probability(100) == pytest.approx(50.0)


def test_american_to_decimal():
    assert american_to_decimal(150) == pytest.approx(2.5)
    assert american_to_decimal(-200) == pytest.approx(1.5)


def test_zero_odds_rejected():
    with pytest.raises(ValueError):
        american_to_decimal(0)
    with pytest.raises(ValueError):
        implied_probability(0)


@pytest.mark.parametrize("odds", [-500, -150, -110, 100, 120, 250, 1000])
def test_decimal_round_trip(odds):
    assert decimal_to_american(american_to_decimal(odds)) == odds


def test_decimal_to_american_rejects_non_positive_profit():
    with pytest.raises(ValueError):
        decimal_to_american(1.0)


def test_edge_score_example():
    assert edge_score(60, 120) == pytest.approx(32.0)


def test_edge_score_is_zero_at_implied_probability():
    assert edge_score(implied_probability(-110), -110) == pytest.approx(0.0, abs=1e-9)


def test_remove_vig_sums_to_100():
    fair_a, fair_b = remove_vig(-110, -110)
    assert fair_a + fair_b == pytest.approx(100.0)
    assert fair_a == pytest.approx(50.0)
    assert calculate_vig(-110, -110) == pytest.approx(4.7619, rel=1e-3)


def test_expected_value_and_roi():
    ev = expected_value(50, 100, stake=100)
    assert ev == pytest.approx(0.0)
    assert roi(expected_value(60, 100)) == pytest.approx(20.0)


def test_fair_odds():
    assert fair_odds(50) == 100
    assert fair_odds(60) == -150
    with pytest.raises(ValueError):
        fair_odds(0)


def test_find_best_odds_picks_highest_price():
    best = find_best_odds([
        {"bookmaker": "dk", "price": -120},
        {"bookmaker": "fd", "price": -105},
        {"bookmaker": "mgm", "price": None},
    ])
    assert best["bookmaker"] == "fd"
    assert best["odds"] == -105
    assert best["implied_prob"] == pytest.approx(implied_probability(-105))
    assert find_best_odds([]) is None
