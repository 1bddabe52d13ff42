"""
Essay submission entitlement: advisory check and guarded submission.
"""
import threading
from datetime import date, datetime

import pytest

from essayplans.core.errors import QuotaExceeded, ValidationError
from essayplans.features.entitlements.service import (
    NO_ACTIVE_SUBSCRIPTION,
    can_submit_essay,
    submit_essay,
)
from essayplans.features.quota.service import count_submissions, current_week_bucket
from essayplans.features.subscriptions.service import (
    cancel_subscription,
    create_subscription,
    suspend_subscription,
)


START = date(2024, 1, 1)
NOW = datetime(2024, 1, 10, 14, 30)  # Wednesday of week 2


def _submit(user_id, count, now=NOW):
    for i in range(count):
        submit_essay(user_id, f"essay {i}", now=now)


def test_no_subscription_is_denied():
    decision = can_submit_essay("nobody", now=NOW)

    assert decision.allowed is False
    assert decision.reason == NO_ACTIVE_SUBSCRIPTION
    assert decision.current == 0
    assert decision.max == 0


def test_master_at_quota_is_denied():
    create_subscription("u_b", "master", today=START)
    _submit("u_b", 2)

    decision = can_submit_essay("u_b", now=NOW)

    assert decision.allowed is False
    assert (decision.current, decision.max) == (2, 2)
    assert decision.reason == "weekly limit of 2 essays reached"


def test_vip_below_quota_is_allowed():
    create_subscription("u_c", "vip", today=START)
    _submit("u_c", 3)

    decision = can_submit_essay("u_c", now=NOW)

    assert decision.allowed is True
    assert (decision.current, decision.max) == (3, 4)
    assert decision.reason is None
    assert decision.to_dict()["plan_type"] == "vip"
    assert (decision.week_number, decision.year) == tuple(current_week_bucket(NOW))
    assert (decision.week_start, decision.week_end) == (date(2024, 1, 7), date(2024, 1, 13))


def test_quota_resets_with_the_next_bucket():
    create_subscription("u_week", "master", today=START)
    _submit("u_week", 2)

    # Sunday 2024-01-14 opens week 3
    assert can_submit_essay("u_week", now=datetime(2024, 1, 13, 23, 0)).allowed is False
    assert can_submit_essay("u_week", now=datetime(2024, 1, 14, 0, 1)).allowed is True


def test_quota_follows_current_plan_type():
    create_subscription("u_up", "master", today=START)
    _submit("u_up", 2)
    create_subscription("u_up", "vip", today=START)

    decision = can_submit_essay("u_up", now=NOW)
    assert decision.allowed is True
    assert (decision.current, decision.max) == (2, 4)


@pytest.mark.parametrize("end_state", [cancel_subscription, suspend_subscription])
def test_cancelled_or_suspended_subscription_denies(end_state):
    sub = create_subscription("u_end", "vip", today=START)
    end_state(sub.id)

    decision = can_submit_essay("u_end", now=NOW)
    assert decision.allowed is False
    assert decision.reason == NO_ACTIVE_SUBSCRIPTION


def test_lapsed_subscription_denies_before_sweep():
    create_subscription("u_lapsed", "vip", today=START)

    assert can_submit_essay("u_lapsed", now=datetime(2024, 1, 31, 9, 0)).allowed is False


def test_submit_records_bucket():
    create_subscription("u_sub", "master", today=START)

    submission = submit_essay("u_sub", "  Desafios da educação  ", now=NOW)

    assert submission.title == "Desafios da educação"
    assert submission.bucket == current_week_bucket(NOW)
    assert count_submissions("u_sub", submission.bucket) == 1


def test_submit_over_quota_raises():
    create_subscription("u_over", "master", today=START)
    _submit("u_over", 2)

    with pytest.raises(QuotaExceeded) as exc_info:
        submit_essay("u_over", "third", now=NOW)

    assert exc_info.value.payload_details() == {
        "current": 2,
        "max": 2,
        "week_start": "2024-01-07",
        "week_end": "2024-01-13",
    }
    assert exc_info.value.status_code == 403
    assert count_submissions("u_over", current_week_bucket(NOW)) == 2


def test_submit_without_subscription_raises():
    with pytest.raises(QuotaExceeded) as exc_info:
        submit_essay("nobody", "essay", now=NOW)
    assert exc_info.value.message == NO_ACTIVE_SUBSCRIPTION


@pytest.mark.parametrize("title", ["", "   "])
def test_submit_requires_title(title):
    create_subscription("u_title", "master", today=START)
    with pytest.raises(ValidationError):
        submit_essay("u_title", title, now=NOW)


def test_concurrent_submissions_at_quota_minus_one_admit_exactly_one():
    create_subscription("u_race", "master", today=START)
    _submit("u_race", 1)

    barrier = threading.Barrier(2)
    outcomes = []
    lock = threading.Lock()

    def attempt(n):
        barrier.wait()
        try:
            submit_essay("u_race", f"racer {n}", now=NOW)
            result = "ok"
        except QuotaExceeded:
            result = "denied"
        with lock:
            outcomes.append(result)

    threads = [threading.Thread(target=attempt, args=(n,)) for n in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)

    assert sorted(outcomes) == ["denied", "ok"]
    assert count_submissions("u_race", current_week_bucket(NOW)) == 2
