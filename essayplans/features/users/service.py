"""
User domain service.

- get_user(user_id)
- lock_user(session, user_id): per-user write serialization
- back-reference maintenance (set/clear current subscription pointer)
"""

from datetime import datetime, timezone
from typing import Optional, Iterable
from sqlalchemy import select, insert, update
from sqlalchemy.orm import Session

from essayplans.core.database import get_db_session, users as app_users
from essayplans.models.user import User


def _row_to_user(row) -> User:
    return User(
        user_id=row.user_id,
        created_at=row.created_at,
        display_name=row.display_name,
        role=row.role,
        status=row.status,
        subscription_id=row.subscription_id,
    )


def get_user(user_id: str) -> Optional[User]:
    with get_db_session() as session:
        row = session.execute(select(app_users).where(app_users.c.user_id == user_id)).first()
        if not row:
            return None
        return _row_to_user(row)


def lock_user(session: Session, user_id: str) -> None:
    """Take the per-user write lock for the rest of the session's transaction.

    Must be the first statement of the transaction. The UPDATE holds the row
    lock on PostgreSQL and the database write lock on SQLite, so concurrent
    lifecycle writes and guarded submissions for one user run one at a time.
    Users unknown to the store are provisioned on the spot; identity is owned
    by the caller.
    """
    now = datetime.now(timezone.utc)
    result = session.execute(
        update(app_users)
        .where(app_users.c.user_id == user_id)
        .values(updated_at=now)
    )
    if result.rowcount == 0:
        session.execute(
            insert(app_users).values(
                user_id=user_id,
                status="active",
                created_at=now,
                updated_at=now,
            )
        )


def set_subscription_reference(session: Session, user_id: str, subscription_id: int) -> None:
    session.execute(
        update(app_users)
        .where(app_users.c.user_id == user_id)
        .values(subscription_id=subscription_id)
    )


def clear_subscription_reference(session: Session, subscription_ids: Iterable[int]) -> int:
    """Null out back-references pointing at any of the given subscriptions."""
    ids = list(subscription_ids)
    if not ids:
        return 0
    result = session.execute(
        update(app_users)
        .where(app_users.c.subscription_id.in_(ids))
        .values(subscription_id=None)
    )
    return result.rowcount or 0
