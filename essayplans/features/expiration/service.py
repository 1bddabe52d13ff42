"""
Expiration sweep.

Transitions every lapsed active subscription to expired and clears the owners'
back-references in a single transaction. Nothing is scheduled here; the worker
in essayplans/workers/expire_subscriptions.py or an admin action triggers it.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import List, Optional
import logging

from essayplans.core.database import get_db_session
from essayplans.features.subscriptions import store
from essayplans.features.users.service import clear_subscription_reference

logger = logging.getLogger("essayplans.expiration")


@dataclass(frozen=True)
class ExpirationResult:
    expired_count: int
    run_date: date
    subscription_ids: List[int] = field(default_factory=list)
    user_ids: List[str] = field(default_factory=list)
    references_cleared: int = 0


def process_expired_subscriptions(today: Optional[date] = None) -> ExpirationResult:
    """
    Expire active subscriptions whose end_date is before `today`.

    The status flip re-checks status and end_date as it writes, so a renewal
    committed while the sweep runs is left alone. Only back-references to the
    rows actually expired are cleared, in the same transaction. Idempotent: a
    second run with no new lapses changes nothing.
    """
    run_date = today or date.today()

    with get_db_session() as session:
        expired = store.expire_stale_active(session, run_date)
        subscription_ids = [subscription_id for subscription_id, _ in expired]
        cleared = clear_subscription_reference(session, subscription_ids)

    user_ids = sorted({user_id for _, user_id in expired})
    logger.info(
        "[expiration] sweep complete",
        extra={
            "run_date": run_date.isoformat(),
            "expired": len(subscription_ids),
            "references_cleared": cleared,
        },
    )
    return ExpirationResult(
        expired_count=len(subscription_ids),
        run_date=run_date,
        subscription_ids=subscription_ids,
        user_ids=user_ids,
        references_cleared=cleared,
    )
