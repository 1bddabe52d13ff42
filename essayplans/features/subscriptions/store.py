"""
essayplans/features/subscriptions/store.py

Subscription store accessor.

Thin SQLAlchemy Core queries over the subscriptions table. Every function
takes an open session so callers decide the transaction boundary.
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import select, insert, update, func, and_
from sqlalchemy.orm import Session

from essayplans.core.database import subscriptions
from essayplans.models.subscription import Subscription, SubscriptionStatus


# Columns callers may sort listings by
SORTABLE_COLUMNS = {
    "created_at": subscriptions.c.created_at,
    "start_date": subscriptions.c.start_date,
    "end_date": subscriptions.c.end_date,
    "price": subscriptions.c.price,
    "plan_type": subscriptions.c.plan_type,
    "status": subscriptions.c.status,
}

# Fields that may change after creation; price is not one of them
MUTABLE_FIELDS = {"plan_type", "status", "end_date", "payment_method", "auto_renewal"}


def row_to_subscription(row) -> Subscription:
    return Subscription(
        id=row.id,
        user_id=row.user_id,
        plan_type=row.plan_type,
        status=row.status,
        start_date=row.start_date,
        end_date=row.end_date,
        price=Decimal(row.price).quantize(Decimal("0.01")),
        payment_method=row.payment_method,
        auto_renewal=bool(row.auto_renewal),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def insert_subscription(
    session: Session,
    *,
    user_id: str,
    plan_type: str,
    start_date: date,
    end_date: date,
    price: Decimal,
    payment_method: Optional[str],
    auto_renewal: bool,
) -> Subscription:
    now = datetime.now(timezone.utc)
    result = session.execute(
        insert(subscriptions).values(
            user_id=user_id,
            plan_type=plan_type,
            status=SubscriptionStatus.ACTIVE.value,
            start_date=start_date,
            end_date=end_date,
            price=price,
            payment_method=payment_method,
            auto_renewal=auto_renewal,
            created_at=now,
            updated_at=now,
        )
    )
    subscription_id = result.inserted_primary_key[0]
    return select_by_id(session, subscription_id)


def select_by_id(session: Session, subscription_id: int) -> Optional[Subscription]:
    row = session.execute(
        select(subscriptions).where(subscriptions.c.id == subscription_id)
    ).first()
    return row_to_subscription(row) if row else None


def select_active_by_user(session: Session, user_id: str, today: date) -> Optional[Subscription]:
    """Date-aware lookup: status active AND end_date after today."""
    row = session.execute(
        select(subscriptions)
        .where(subscriptions.c.user_id == user_id)
        .where(subscriptions.c.status == SubscriptionStatus.ACTIVE.value)
        .where(subscriptions.c.end_date > today)
        .order_by(subscriptions.c.created_at.desc(), subscriptions.c.id.desc())
    ).first()
    return row_to_subscription(row) if row else None


def select_active_rows_for_user(session: Session, user_id: str) -> List[Subscription]:
    """Raw status filter, regardless of end_date."""
    rows = session.execute(
        select(subscriptions)
        .where(subscriptions.c.user_id == user_id)
        .where(subscriptions.c.status == SubscriptionStatus.ACTIVE.value)
    ).all()
    return [row_to_subscription(row) for row in rows]


def update_fields(session: Session, subscription_id: int, **fields: Any) -> None:
    unknown = set(fields) - MUTABLE_FIELDS
    if unknown:
        raise ValueError(f"Fields not updatable: {', '.join(sorted(unknown))}")
    values = {
        key: (value.value if hasattr(value, "value") else value)
        for key, value in fields.items()
    }
    values["updated_at"] = datetime.now(timezone.utc)
    session.execute(
        update(subscriptions)
        .where(subscriptions.c.id == subscription_id)
        .values(**values)
    )


def cancel_active_for_user(session: Session, user_id: str, exclude_id: Optional[int] = None) -> List[int]:
    """Flip every active row of a user to cancelled. Returns the affected ids."""
    query = (
        select(subscriptions.c.id)
        .where(subscriptions.c.user_id == user_id)
        .where(subscriptions.c.status == SubscriptionStatus.ACTIVE.value)
    )
    if exclude_id is not None:
        query = query.where(subscriptions.c.id != exclude_id)
    ids = [row.id for row in session.execute(query).all()]
    if ids:
        session.execute(
            update(subscriptions)
            .where(subscriptions.c.id.in_(ids))
            .values(status=SubscriptionStatus.CANCELLED.value, updated_at=datetime.now(timezone.utc))
        )
    return ids


def _filters(user_id: Optional[str], plan_type: Optional[str], status: Optional[str]) -> list:
    clauses = []
    if user_id:
        clauses.append(subscriptions.c.user_id == user_id)
    if plan_type:
        clauses.append(subscriptions.c.plan_type == plan_type)
    if status:
        clauses.append(subscriptions.c.status == status)
    return clauses


def select_many(
    session: Session,
    *,
    user_id: Optional[str] = None,
    plan_type: Optional[str] = None,
    status: Optional[str] = None,
    sort_by: str = "created_at",
    sort_order: str = "desc",
    limit: int = 10,
    offset: int = 0,
) -> Tuple[List[Subscription], int]:
    """Filtered, ordered page of subscriptions plus the unpaged total."""
    clauses = _filters(user_id, plan_type, status)
    column = SORTABLE_COLUMNS.get(sort_by, subscriptions.c.created_at)
    descending = str(sort_order).lower() != "asc"
    ordering = (column.desc(), subscriptions.c.id.desc()) if descending else (column.asc(), subscriptions.c.id.asc())

    query = select(subscriptions)
    count_query = select(func.count()).select_from(subscriptions)
    if clauses:
        query = query.where(and_(*clauses))
        count_query = count_query.where(and_(*clauses))

    rows = session.execute(query.order_by(*ordering).limit(limit).offset(offset)).all()
    total = session.execute(count_query).scalar() or 0
    return [row_to_subscription(row) for row in rows], total


def select_expiring(session: Session, today: date, horizon: date) -> List[Subscription]:
    rows = session.execute(
        select(subscriptions)
        .where(subscriptions.c.status == SubscriptionStatus.ACTIVE.value)
        .where(subscriptions.c.end_date > today)
        .where(subscriptions.c.end_date <= horizon)
        .order_by(subscriptions.c.end_date.asc(), subscriptions.c.id.asc())
    ).all()
    return [row_to_subscription(row) for row in rows]


def expire_stale_active(session: Session, today: date) -> List[Tuple[int, str]]:
    """
    Flip active rows whose end_date already passed to expired.

    One guarded UPDATE: the status/end_date condition is evaluated by the
    store against the row as it is when written, so a row renewed by a
    concurrent transaction no longer matches. Returns (id, user_id) of the
    rows actually changed.
    """
    rows = session.execute(
        update(subscriptions)
        .where(subscriptions.c.status == SubscriptionStatus.ACTIVE.value)
        .where(subscriptions.c.end_date < today)
        .values(status=SubscriptionStatus.EXPIRED.value, updated_at=datetime.now(timezone.utc))
        .returning(subscriptions.c.id, subscriptions.c.user_id)
    ).all()
    return sorted((row.id, row.user_id) for row in rows)


def select_for_statistics(
    session: Session,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
) -> List[Dict[str, Any]]:
    """Plain rows (plan_type, status, price, created_at) inside a creation window."""
    query = select(
        subscriptions.c.plan_type,
        subscriptions.c.status,
        subscriptions.c.price,
        subscriptions.c.created_at,
    )
    if date_from:
        query = query.where(subscriptions.c.created_at >= datetime.combine(date_from, datetime.min.time()))
    if date_to:
        query = query.where(subscriptions.c.created_at <= datetime.combine(date_to, datetime.max.time()))
    return [dict(row._mapping) for row in session.execute(query).all()]
