from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest
from pymongo.errors import PyMongoError

from backend.core.errors import NotFound, QuotaExceeded
from backend.services.quota_service import (
    QuotaService,
    calculate_rollover,
    compute_reset,
    deduct_simulation,
    get_available_simulations,
)


def utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


def profile(tz, last_reset, limit=3, used=1, rollover=0, **extra):
    return {
        "user_id": "u1",
        "reset_timezone": tz,
        "last_simulation_reset": last_reset,
        "daily_simulation_limit": limit,
        "daily_simulation_count": used,
        "monthly_simulation_rollover": rollover,
        "monthly_simulation_count": 12,
        **extra,
    }


# -----------------------------
# Rollover and deduction
# -----------------------------

def test_rollover_is_capped_at_three_times_limit():
    assert calculate_rollover(3, 1, 8) == 9
    assert calculate_rollover(3, 0, 0) == 3
    assert calculate_rollover(10, 12, 4) == 4


def test_available_simulations():
    assert get_available_simulations(3, 1, 2) == 4
    assert get_available_simulations(3, 5, 0) == 0


def test_deduction_sequence_uses_rollover_then_rejects():
    first = deduct_simulation(3, 3, 2)
    assert first.success and first.pool == "rollover"
    assert (first.new_daily_used, first.new_rollover) == (3, 1)

    second = deduct_simulation(3, first.new_daily_used, first.new_rollover)
    assert second.success and second.new_rollover == 0

    third = deduct_simulation(3, second.new_daily_used, second.new_rollover)
    assert not third.success
    assert third.pool is None


def test_daily_allowance_is_consumed_first():
    result = deduct_simulation(3, 1, 5)
    assert result.pool == "daily"
    assert (result.new_daily_used, result.new_rollover) == (2, 5)


# -----------------------------
# Reset timing
# -----------------------------

def test_no_reset_before_local_midnight():
    la = profile("America/Los_Angeles", "2026-10-16T07:00:00+00:00")
    # 23:30 PDT on Oct 16
    assert compute_reset(la, utc(2026, 10, 17, 6, 30)) == {}


def test_daily_reset_after_local_midnight():
    la = profile("America/Los_Angeles", "2026-10-16T07:00:00+00:00", rollover=8)
    updates = compute_reset(la, utc(2026, 10, 17, 7, 30))

    assert updates == {
        "daily_simulation_count": 0,
        "monthly_simulation_rollover": 9,
        "last_simulation_reset": "2026-10-17T07:00:00+00:00",
    }


def test_month_boundary_clears_rollover():
    ny = profile("America/New_York", "2026-09-30T04:00:00+00:00", rollover=6)
    updates = compute_reset(ny, utc(2026, 10, 1, 5, 0))

    assert updates["daily_simulation_count"] == 0
    assert updates["monthly_simulation_count"] == 0
    assert updates["monthly_simulation_rollover"] == 0
    assert updates["last_simulation_reset"] == "2026-10-01T04:00:00+00:00"


def test_same_instant_resets_each_user_on_their_own_clock():
    now = utc(2026, 10, 17, 5, 0)
    ny = profile("America/New_York", "2026-10-16T04:00:00+00:00")
    la = profile("America/Los_Angeles", "2026-10-16T07:00:00+00:00")

    assert compute_reset(ny, now)["daily_simulation_count"] == 0
    assert compute_reset(la, now) == {}


def test_missing_last_reset_triggers_reset():
    updates = compute_reset(profile("America/Chicago", None), utc(2026, 10, 17, 12, 0))
    assert updates["daily_simulation_count"] == 0
    assert updates["monthly_simulation_count"] == 0


# -----------------------------
# QuotaService
# -----------------------------

@pytest.fixture
def service(mock_db):
    return QuotaService(mock_db)


def test_consume_from_daily(service, mock_db):
    mock_db["profiles"].update_one.return_value = MagicMock(matched_count=1)

    assert service.consume_simulation("u1") == "daily"
    assert mock_db["profiles"].update_one.call_count == 1


def test_consume_falls_back_to_rollover(service, mock_db):
    mock_db["profiles"].update_one.side_effect = [MagicMock(matched_count=0), MagicMock(matched_count=1)]

    assert service.consume_simulation("u1") == "rollover"
    rollover_filter, rollover_update = mock_db["profiles"].update_one.call_args[0]
    assert rollover_filter["monthly_simulation_rollover"] == {"$gt": 0}
    assert rollover_update == {"$inc": {"monthly_simulation_rollover": -1, "monthly_simulation_count": 1}}


def test_consume_exhausted_raises_quota_exceeded(service, mock_db):
    mock_db["profiles"].update_one.return_value = MagicMock(matched_count=0)
    mock_db["profiles"].find_one.return_value = profile("America/New_York", None, used=3)

    with pytest.raises(QuotaExceeded) as exc:
        service.consume_simulation("u1")
    assert exc.value.status_code == 429
    assert "Upgrade" in exc.value.to_response()["message"]


def test_consume_for_missing_profile(service, mock_db):
    mock_db["profiles"].update_one.return_value = MagicMock(matched_count=0)
    mock_db["profiles"].find_one.return_value = None

    with pytest.raises(NotFound):
        service.consume_simulation("ghost")


def test_refund_daily(service, mock_db):
    service.refund_simulation("u1", "daily")

    query, update = mock_db["profiles"].update_one.call_args[0]
    assert query == {"user_id": "u1", "daily_simulation_count": {"$gt": 0}}
    assert update == {"$inc": {"daily_simulation_count": -1, "monthly_simulation_count": -1}}


def test_quota_status(service, mock_db):
    mock_db["profiles"].find_one.return_value = profile("America/New_York", None, limit=10, used=4, rollover=2)

    status = service.get_quota_status("u1", now=utc(2026, 10, 17, 12, 0))
    assert status["available"] == 8
    assert status["monthly_used"] == 12
    assert status["next_reset"] == "Oct 18, 2026 12:00 AM"


def test_reset_due_profiles_counts_and_collects_errors(service, mock_db):
    now = utc(2026, 10, 17, 7, 30)
    mock_db["profiles"].find.return_value = [
        profile("America/Los_Angeles", "2026-10-16T07:00:00+00:00", user_id="la"),
        profile("America/Los_Angeles", "2026-10-17T07:00:00+00:00", user_id="fresh"),
        profile("America/New_York", "2026-10-16T04:00:00+00:00", user_id="broken"),
    ]
    mock_db["profiles"].update_one.side_effect = [None, PyMongoError("write failed")]

    results = service.reset_due_profiles(now)

    assert results["users_checked"] == 3
    assert results["users_reset"] == 1
    assert results["monthly_resets"] == 0
    assert len(results["errors"]) == 1
    assert "broken" in results["errors"][0]

    query = mock_db["profiles"].find.call_args[0][0]
    assert query == {"subscription_status": {"$in": ["active", "trialing"]}}


def test_malformed_profile_does_not_stop_reset_batch(service, mock_db):
    now = utc(2026, 10, 17, 7, 30)
    mock_db["profiles"].find.return_value = [
        profile("America/Los_Angeles", "2026-10-16T07:00:00+00:00", user_id="bad", used=None),
        profile("America/Los_Angeles", "2026-10-16T07:00:00+00:00", user_id="good"),
    ]

    results = service.reset_due_profiles(now)

    assert results["users_checked"] == 2
    assert results["users_reset"] == 1
    assert len(results["errors"]) == 1
    assert "bad" in results["errors"][0]
    mock_db["profiles"].update_one.assert_called_once()
    assert mock_db["profiles"].update_one.call_args[0][0] == {"user_id": "good"}
