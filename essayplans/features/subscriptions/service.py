"""
essayplans/features/subscriptions/service.py

Subscription lifecycle.

Handles:
- create / renew / cancel / suspend / reactivate transitions
- One active subscription per user (force-cancel before insert)
- Date-aware lookups (active, expiring, history)
- Admin edits that never touch the price snapshot

State machine:
    active   --cancel-->     cancelled
    active   --suspend-->    inactive
    inactive --reactivate--> active
    active   --expire-->     expired      (bulk sweep, see features/expiration)
    any      --renew-->      active       (end_date extended from its current value)
"""

from contextlib import contextmanager
from datetime import date, timedelta
from typing import Any, Dict, List, Optional, Union
import logging

from sqlalchemy.orm import Session

from essayplans.core.config import settings
from essayplans.core.database import get_db_session
from essayplans.core.errors import (
    DuplicateActiveSubscription,
    NoActiveSubscription,
    NotSuspended,
    SubscriptionNotFound,
    ValidationError,
)
from essayplans.features.plans.catalog import parse_plan_type, price_of
from essayplans.features.subscriptions import store
from essayplans.features.users.service import (
    lock_user,
    set_subscription_reference,
    clear_subscription_reference,
)
from essayplans.models.plan import PlanType
from essayplans.models.subscription import Subscription, SubscriptionStatus


logger = logging.getLogger("essayplans.subscriptions")


def _today(today: Optional[date]) -> date:
    return today or date.today()


def _period_days() -> int:
    return settings.SUBSCRIPTION_PERIOD_DAYS


def _load(session, subscription_id: int) -> Subscription:
    subscription = store.select_by_id(session, subscription_id)
    if subscription is None:
        raise SubscriptionNotFound(subscription_id)
    return subscription


@contextmanager
def _transaction(session: Optional[Session]):
    """Join the caller's open transaction, or run in a fresh one."""
    if session is not None:
        yield session
        return
    with get_db_session() as own_session:
        yield own_session


def _owner_of(subscription_id: int, session: Optional[Session] = None) -> str:
    if session is not None:
        return _load(session, subscription_id).user_id
    with get_db_session() as own_session:
        return _load(own_session, subscription_id).user_id


def create_subscription(
    user_id: str,
    plan_type: Union[str, PlanType],
    payment_method: Optional[str] = "online",
    auto_renewal: bool = True,
    today: Optional[date] = None,
    session: Optional[Session] = None,
) -> Subscription:
    """
    Create an active subscription valid for one period starting today.

    Any subscription of the user still flagged active is cancelled first in
    the same transaction, so the user never holds two active rows. Pass an
    open `session` to make the creation part of a larger transaction; the
    caller then owns the commit.

    Raises:
        InvalidPlanType: plan_type is not master or vip
    """
    plan = parse_plan_type(plan_type)
    price = price_of(plan)
    start = _today(today)
    end = start + timedelta(days=_period_days())

    with _transaction(session) as tx:
        lock_user(tx, user_id)
        cancelled_ids = store.cancel_active_for_user(tx, user_id)
        subscription = store.insert_subscription(
            tx,
            user_id=user_id,
            plan_type=plan.value,
            start_date=start,
            end_date=end,
            price=price,
            payment_method=payment_method,
            auto_renewal=auto_renewal,
        )
        set_subscription_reference(tx, user_id, subscription.id)

    if cancelled_ids:
        logger.info(
            "[subscriptions] superseded",
            extra={"user_id": user_id, "cancelled_ids": cancelled_ids, "subscription_id": subscription.id},
        )
    logger.info(
        "[subscriptions] created",
        extra={
            "user_id": user_id,
            "subscription_id": subscription.id,
            "plan_type": plan.value,
            "end_date": end.isoformat(),
        },
    )
    return subscription


def renew_subscription(subscription_id: int, months: int = 1, session: Optional[Session] = None) -> Subscription:
    """
    Extend end_date by months x period, anchored on the CURRENT end_date.

    A lapsed subscription renewed late keeps its old anchor: a row ending
    2024-01-01 renewed by one month on 2024-03-01 ends 2024-01-31.
    The row becomes active again; another active row of the same user is
    cancelled so the single-active invariant holds. Pass an open `session`
    to join the caller's transaction.
    """
    if months < 1:
        raise ValidationError("months must be at least 1")

    user_id = _owner_of(subscription_id, session)
    with _transaction(session) as tx:
        lock_user(tx, user_id)
        subscription = _load(tx, subscription_id)
        new_end = subscription.end_date + timedelta(days=months * _period_days())
        cancelled_ids = store.cancel_active_for_user(tx, user_id, exclude_id=subscription_id)
        store.update_fields(
            tx,
            subscription_id,
            status=SubscriptionStatus.ACTIVE,
            end_date=new_end,
        )
        set_subscription_reference(tx, user_id, subscription_id)
        renewed = _load(tx, subscription_id)

    logger.info(
        "[subscriptions] renewed",
        extra={
            "user_id": user_id,
            "subscription_id": subscription_id,
            "months": months,
            "end_date": new_end.isoformat(),
            "cancelled_ids": cancelled_ids,
        },
    )
    return renewed


def cancel_subscription(subscription_id: int, reason: Optional[str] = None) -> Subscription:
    """Cancel an active subscription and clear the owner's back-reference.

    Raises:
        NoActiveSubscription: status is not active
    """
    user_id = _owner_of(subscription_id)
    with get_db_session() as session:
        lock_user(session, user_id)
        subscription = _load(session, subscription_id)
        if subscription.status != SubscriptionStatus.ACTIVE:
            raise NoActiveSubscription(
                f"Subscription {subscription_id} is not active (status={subscription.status.value})"
            )
        store.update_fields(session, subscription_id, status=SubscriptionStatus.CANCELLED)
        clear_subscription_reference(session, [subscription_id])
        cancelled = _load(session, subscription_id)

    logger.info(
        "[subscriptions] cancelled",
        extra={"user_id": user_id, "subscription_id": subscription_id, "reason": reason or "not informed"},
    )
    return cancelled


def suspend_subscription(subscription_id: int, reason: Optional[str] = None) -> Subscription:
    """Administrative, reversible suspension. The back-reference is kept.

    Raises:
        NoActiveSubscription: status is not active
    """
    user_id = _owner_of(subscription_id)
    with get_db_session() as session:
        lock_user(session, user_id)
        subscription = _load(session, subscription_id)
        if subscription.status != SubscriptionStatus.ACTIVE:
            raise NoActiveSubscription(
                f"Subscription {subscription_id} is not active (status={subscription.status.value})"
            )
        store.update_fields(session, subscription_id, status=SubscriptionStatus.INACTIVE)
        suspended = _load(session, subscription_id)

    logger.info(
        "[subscriptions] suspended",
        extra={"user_id": user_id, "subscription_id": subscription_id, "reason": reason or "not informed"},
    )
    return suspended


def reactivate_subscription(subscription_id: int) -> Subscription:
    """
    Lift a suspension.

    Raises:
        NotSuspended: status is not inactive
        DuplicateActiveSubscription: the user bought another subscription meanwhile
    """
    user_id = _owner_of(subscription_id)
    with get_db_session() as session:
        lock_user(session, user_id)
        subscription = _load(session, subscription_id)
        if subscription.status != SubscriptionStatus.INACTIVE:
            raise NotSuspended(
                f"Subscription {subscription_id} is not suspended (status={subscription.status.value})"
            )
        others = [s for s in store.select_active_rows_for_user(session, user_id) if s.id != subscription_id]
        if others:
            raise DuplicateActiveSubscription(
                f"User {user_id} already holds active subscription {others[0].id}"
            )
        store.update_fields(session, subscription_id, status=SubscriptionStatus.ACTIVE)
        reactivated = _load(session, subscription_id)

    logger.info(
        "[subscriptions] reactivated",
        extra={"user_id": user_id, "subscription_id": subscription_id},
    )
    return reactivated


def update_subscription(
    subscription_id: int,
    *,
    plan_type: Optional[Union[str, PlanType]] = None,
    auto_renewal: Optional[bool] = None,
    end_date: Optional[date] = None,
) -> Subscription:
    """Admin edit of plan type, auto-renewal or end date. Price stays as recorded."""
    fields: Dict[str, Any] = {}
    if plan_type is not None:
        fields["plan_type"] = parse_plan_type(plan_type)
    if auto_renewal is not None:
        fields["auto_renewal"] = bool(auto_renewal)
    if end_date is not None:
        fields["end_date"] = end_date
    if not fields:
        raise ValidationError("No valid field to update")

    user_id = _owner_of(subscription_id)
    with get_db_session() as session:
        lock_user(session, user_id)
        subscription = _load(session, subscription_id)
        if end_date is not None and end_date < subscription.start_date:
            raise ValidationError("end_date cannot be before start_date")
        store.update_fields(session, subscription_id, **fields)
        updated = _load(session, subscription_id)

    logger.info(
        "[subscriptions] updated",
        extra={"user_id": user_id, "subscription_id": subscription_id, "fields": sorted(fields)},
    )
    return updated


def get_subscription(subscription_id: int) -> Subscription:
    with get_db_session() as session:
        return _load(session, subscription_id)


def get_active_subscription(user_id: str, today: Optional[date] = None) -> Optional[Subscription]:
    """Current valid subscription: status active AND end_date after today.

    A row can still read active in storage after its end_date if the sweep
    has not run yet; this lookup ignores such rows.
    """
    with get_db_session() as session:
        return store.select_active_by_user(session, user_id, _today(today))


def _page_args(page: int, limit: int) -> tuple:
    if page < 1:
        raise ValidationError("page must be >= 1")
    if limit < 1 or limit > settings.HISTORY_PAGE_LIMIT_MAX:
        raise ValidationError(f"limit must be between 1 and {settings.HISTORY_PAGE_LIMIT_MAX}")
    return limit, (page - 1) * limit


def list_subscriptions(
    *,
    page: int = 1,
    limit: int = 10,
    user_id: Optional[str] = None,
    plan_type: Optional[Union[str, PlanType]] = None,
    status: Optional[Union[str, SubscriptionStatus]] = None,
    sort_by: str = "created_at",
    sort_order: str = "desc",
) -> Dict[str, Any]:
    """Paginated listing with optional filters."""
    page_limit, offset = _page_args(page, limit)
    plan_filter = parse_plan_type(plan_type).value if plan_type else None
    status_filter = None
    if status:
        try:
            status_filter = SubscriptionStatus(status).value
        except ValueError:
            raise ValidationError(f"Invalid status: {status!r}") from None

    with get_db_session() as session:
        items, total = store.select_many(
            session,
            user_id=user_id,
            plan_type=plan_filter,
            status=status_filter,
            sort_by=sort_by,
            sort_order=sort_order,
            limit=page_limit,
            offset=offset,
        )

    return {
        "subscriptions": items,
        "pagination": {
            "page": page,
            "limit": page_limit,
            "total": total,
            "total_pages": -(-total // page_limit),
        },
    }


def get_subscription_history(user_id: str, page: int = 1, limit: int = 10) -> Dict[str, Any]:
    """All subscriptions of a user, newest first."""
    return list_subscriptions(page=page, limit=limit, user_id=user_id)


def get_expiring_subscriptions(days: Optional[int] = None, today: Optional[date] = None) -> List[Subscription]:
    """Active subscriptions not yet past end_date that end within `days`."""
    window = settings.EXPIRING_SOON_DAYS if days is None else days
    if window < 0:
        raise ValidationError("days must be >= 0")
    start = _today(today)
    with get_db_session() as session:
        return store.select_expiring(session, start, start + timedelta(days=window))
