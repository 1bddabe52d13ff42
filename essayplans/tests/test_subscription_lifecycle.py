"""
Subscription lifecycle: create, renew, cancel, suspend, reactivate, edits and lookups.
"""
import threading
from datetime import date, timedelta
from decimal import Decimal
from unittest.mock import patch

import pytest
from sqlalchemy import select

from essayplans.core.database import get_db_session, subscriptions
from essayplans.core.errors import (
    DuplicateActiveSubscription,
    InvalidPlanType,
    NoActiveSubscription,
    NotSuspended,
    SubscriptionNotFound,
    ValidationError,
)
from essayplans.features.plans import catalog
from essayplans.features.subscriptions.service import (
    cancel_subscription,
    create_subscription,
    get_active_subscription,
    get_expiring_subscriptions,
    get_subscription,
    get_subscription_history,
    list_subscriptions,
    reactivate_subscription,
    renew_subscription,
    suspend_subscription,
    update_subscription,
)
from essayplans.features.users.service import get_user
from essayplans.models.plan import PlanType
from essayplans.models.subscription import SubscriptionStatus


TODAY = date(2024, 1, 1)


def _active_rows(user_id):
    with get_db_session() as session:
        return session.execute(
            select(subscriptions.c.id)
            .where(subscriptions.c.user_id == user_id)
            .where(subscriptions.c.status == "active")
        ).all()


def test_create_snapshots_price_and_one_period():
    sub = create_subscription("u1", "vip", "pix", today=TODAY)

    assert sub.plan_type == PlanType.VIP
    assert sub.status == SubscriptionStatus.ACTIVE
    assert sub.start_date == TODAY
    assert sub.end_date == date(2024, 1, 31)
    assert sub.price == Decimal("50.00")
    assert sub.payment_method == "pix"
    assert sub.auto_renewal is True
    assert sub.essay_limit == 4
    assert get_user("u1").subscription_id == sub.id


def test_create_rejects_unknown_plan():
    with pytest.raises(InvalidPlanType):
        create_subscription("u1", "gold", today=TODAY)
    assert get_active_subscription("u1", today=TODAY) is None


def test_second_create_force_cancels_first():
    first = create_subscription("u_d", "vip", "pix", today=TODAY)
    second = create_subscription("u_d", "master", "pix", today=TODAY)

    assert get_subscription(first.id).status == SubscriptionStatus.CANCELLED
    active = get_active_subscription("u_d", today=TODAY)
    assert active.id == second.id
    assert active.plan_type == PlanType.MASTER
    assert len(_active_rows("u_d")) == 1
    assert get_user("u_d").subscription_id == second.id


def test_price_stays_as_recorded_when_catalog_changes():
    sub = create_subscription("u_price", "vip", today=TODAY)
    repriced = catalog.PLANS[PlanType.VIP].model_copy(update={"monthly_price": Decimal("99.00")})

    with patch.dict(catalog.PLANS, {PlanType.VIP: repriced}):
        assert catalog.price_of("vip") == Decimal("99.00")
        update_subscription(sub.id, auto_renewal=False)
        assert get_subscription(sub.id).price == Decimal("50.00")

    assert get_subscription(sub.id).price == Decimal("50.00")


def test_renew_anchors_on_current_end_date_even_when_lapsed():
    sub = create_subscription("u_r", "master", today=date(2023, 12, 2))
    assert sub.end_date == date(2024, 1, 1)

    renewed = renew_subscription(sub.id, months=1)

    assert renewed.end_date == date(2024, 1, 31)
    assert renewed.status == SubscriptionStatus.ACTIVE


def test_renew_several_months_and_reactivates_cancelled_row():
    sub = create_subscription("u_r2", "master", today=TODAY)
    cancel_subscription(sub.id)

    renewed = renew_subscription(sub.id, months=3)

    assert renewed.status == SubscriptionStatus.ACTIVE
    assert renewed.end_date == date(2024, 1, 31) + timedelta(days=90)
    assert get_user("u_r2").subscription_id == sub.id


def test_renew_old_row_cancels_the_current_one():
    old = create_subscription("u_r3", "master", today=TODAY)
    current = create_subscription("u_r3", "vip", today=TODAY)

    renew_subscription(old.id)

    assert get_subscription(current.id).status == SubscriptionStatus.CANCELLED
    assert [row.id for row in _active_rows("u_r3")] == [old.id]


@pytest.mark.parametrize("months", [0, -1])
def test_renew_requires_positive_months(months):
    sub = create_subscription("u_r4", "master", today=TODAY)
    with pytest.raises(ValidationError):
        renew_subscription(sub.id, months=months)


def test_create_then_cancel_leaves_no_active_subscription():
    sub = create_subscription("u_c", "master", today=TODAY)

    cancelled = cancel_subscription(sub.id, reason="too expensive")

    assert cancelled.status == SubscriptionStatus.CANCELLED
    assert get_active_subscription("u_c", today=TODAY) is None
    assert get_user("u_c").subscription_id is None


def test_cancel_twice_fails():
    sub = create_subscription("u_c2", "master", today=TODAY)
    cancel_subscription(sub.id)
    with pytest.raises(NoActiveSubscription):
        cancel_subscription(sub.id)


def test_suspend_then_reactivate_restores_same_subscription():
    sub = create_subscription("u_s", "vip", today=TODAY)

    suspended = suspend_subscription(sub.id, reason="chargeback review")
    assert suspended.status == SubscriptionStatus.INACTIVE
    assert get_active_subscription("u_s", today=TODAY) is None
    assert get_user("u_s").subscription_id == sub.id

    reactivated = reactivate_subscription(sub.id)
    assert reactivated.id == sub.id
    assert get_active_subscription("u_s", today=TODAY).id == sub.id


def test_reactivate_requires_suspension():
    sub = create_subscription("u_s2", "vip", today=TODAY)
    with pytest.raises(NotSuspended):
        reactivate_subscription(sub.id)


def test_suspend_requires_active():
    sub = create_subscription("u_s3", "vip", today=TODAY)
    cancel_subscription(sub.id)
    with pytest.raises(NoActiveSubscription):
        suspend_subscription(sub.id)


def test_reactivate_blocked_by_newer_active_subscription():
    suspended = create_subscription("u_s4", "vip", today=TODAY)
    suspend_subscription(suspended.id)
    newer = create_subscription("u_s4", "master", today=TODAY)

    with pytest.raises(DuplicateActiveSubscription):
        reactivate_subscription(suspended.id)
    assert get_subscription(suspended.id).status == SubscriptionStatus.INACTIVE
    assert get_active_subscription("u_s4", today=TODAY).id == newer.id


def test_unknown_subscription_raises_not_found():
    for operation in (get_subscription, cancel_subscription, suspend_subscription, reactivate_subscription, renew_subscription):
        with pytest.raises(SubscriptionNotFound):
            operation(999)


def test_active_lookup_is_date_aware():
    sub = create_subscription("u_a", "master", today=TODAY)

    assert get_active_subscription("u_a", today=date(2024, 1, 30)).id == sub.id
    # still flagged active in storage, but the end date is not after today
    assert get_active_subscription("u_a", today=date(2024, 1, 31)) is None
    assert get_subscription(sub.id).status == SubscriptionStatus.ACTIVE


def test_derived_date_helpers():
    sub = create_subscription("u_h", "master", today=TODAY)

    assert sub.days_remaining(date(2024, 1, 25)) == 6
    assert sub.is_near_expiration(today=date(2024, 1, 25)) is True
    assert sub.is_near_expiration(today=date(2024, 1, 10)) is False
    assert sub.is_expired(date(2024, 2, 1)) is True
    assert sub.days_remaining(date(2024, 2, 10)) == 0
    summary = sub.to_summary(date(2024, 1, 25))
    assert summary["is_active"] is True
    assert summary["days_remaining"] == 6
    assert summary["essay_limit"] == 2


def test_update_subscription_fields():
    sub = create_subscription("u_e", "master", today=TODAY)

    updated = update_subscription(sub.id, plan_type="vip", auto_renewal=False, end_date=date(2024, 2, 15))

    assert updated.plan_type == PlanType.VIP
    assert updated.auto_renewal is False
    assert updated.end_date == date(2024, 2, 15)
    assert updated.price == Decimal("40.00")
    assert updated.essay_limit == 4


def test_update_subscription_validation():
    sub = create_subscription("u_e2", "master", today=TODAY)
    with pytest.raises(ValidationError):
        update_subscription(sub.id)
    with pytest.raises(ValidationError):
        update_subscription(sub.id, end_date=date(2023, 12, 31))
    with pytest.raises(InvalidPlanType):
        update_subscription(sub.id, plan_type="gold")


def test_history_newest_first_with_pagination():
    ids = [create_subscription("u_hist", plan, today=TODAY).id for plan in ("master", "vip", "master")]
    create_subscription("someone_else", "vip", today=TODAY)

    page_one = get_subscription_history("u_hist", page=1, limit=2)
    assert [s.id for s in page_one["subscriptions"]] == [ids[2], ids[1]]
    assert page_one["pagination"] == {"page": 1, "limit": 2, "total": 3, "total_pages": 2}

    page_two = get_subscription_history("u_hist", page=2, limit=2)
    assert [s.id for s in page_two["subscriptions"]] == [ids[0]]


def test_list_subscriptions_filters_and_limits():
    create_subscription("u_l1", "master", today=TODAY)
    create_subscription("u_l2", "vip", today=TODAY)
    cancelled = create_subscription("u_l3", "vip", today=TODAY)
    cancel_subscription(cancelled.id)

    vip_active = list_subscriptions(plan_type="vip", status="active")
    assert [s.user_id for s in vip_active["subscriptions"]] == ["u_l2"]

    with pytest.raises(ValidationError):
        list_subscriptions(status="paused")
    with pytest.raises(ValidationError):
        list_subscriptions(limit=101)
    with pytest.raises(ValidationError):
        list_subscriptions(page=0)


def test_expiring_window():
    soon = create_subscription("u_x1", "master", today=date(2023, 12, 8))     # ends 2024-01-07
    create_subscription("u_x2", "master", today=TODAY)                        # ends 2024-01-31
    create_subscription("u_x3", "master", today=date(2023, 12, 1))            # ends 2023-12-31, lapsed

    expiring = get_expiring_subscriptions(days=7, today=TODAY)

    assert [s.id for s in expiring] == [soon.id]
    assert get_expiring_subscriptions(days=30, today=TODAY)[-1].user_id == "u_x2"
    with pytest.raises(ValidationError):
        get_expiring_subscriptions(days=-1, today=TODAY)


def test_concurrent_creates_leave_a_single_active_subscription():
    first = create_subscription("u_race", "master", today=TODAY)

    barrier = threading.Barrier(2)
    created = []
    errors = []
    lock = threading.Lock()

    def attempt(plan_type):
        barrier.wait()
        try:
            sub = create_subscription("u_race", plan_type, "pix", today=TODAY)
        except Exception as exc:  # surfaced by the assertions below
            with lock:
                errors.append(exc)
            return
        with lock:
            created.append(sub.id)

    threads = [threading.Thread(target=attempt, args=(plan,)) for plan in ("vip", "master")]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)

    assert errors == []
    assert len(created) == 2
    active_ids = [row.id for row in _active_rows("u_race")]
    assert len(active_ids) == 1
    assert active_ids[0] in created
    assert get_subscription(first.id).status == SubscriptionStatus.CANCELLED
    assert get_user("u_race").subscription_id == active_ids[0]
