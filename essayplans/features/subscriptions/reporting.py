"""
Subscription statistics and revenue reporting.

Read-only aggregations for the admin dashboard. Revenue counts subscriptions
that were paid for and used (active or expired); cancelled and suspended rows
are excluded.
"""
from __future__ import annotations

from collections import defaultdict
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Union

from essayplans.core.database import get_db_session
from essayplans.core.errors import ValidationError
from essayplans.features.plans.catalog import parse_plan_type
from essayplans.features.subscriptions import store
from essayplans.features.subscriptions.service import get_active_subscription
from essayplans.models.plan import PlanType
from essayplans.models.subscription import SubscriptionStatus


REVENUE_STATUSES = {SubscriptionStatus.ACTIVE.value, SubscriptionStatus.EXPIRED.value}

_PERIOD_FORMATS = {
    "day": "%Y-%m-%d",
    "month": "%Y-%m",
    "year": "%Y",
}


def get_statistics(date_from: Optional[date] = None, date_to: Optional[date] = None) -> Dict[str, Any]:
    """Counts by status and plan plus revenue, for subscriptions created in the window."""
    with get_db_session() as session:
        rows = store.select_for_statistics(session, date_from, date_to)
        all_rows = rows if not (date_from or date_to) else store.select_for_statistics(session)

    by_status = {status.value: 0 for status in SubscriptionStatus}
    by_plan: Dict[str, int] = defaultdict(int)
    revenue_total = Decimal("0.00")
    for row in rows:
        by_status[row["status"]] = by_status.get(row["status"], 0) + 1
        by_plan[row["plan_type"]] += 1
        if row["status"] in REVENUE_STATUSES:
            revenue_total += Decimal(row["price"])

    # Active revenue is a point-in-time figure, independent of the window
    revenue_active = sum(
        (Decimal(row["price"]) for row in all_rows if row["status"] == SubscriptionStatus.ACTIVE.value),
        Decimal("0.00"),
    )

    return {
        "total": len(rows),
        "by_status": by_status,
        "by_plan": dict(by_plan),
        "revenue": {
            "total": revenue_total.quantize(Decimal("0.01")),
            "active": revenue_active.quantize(Decimal("0.01")),
        },
    }


def get_revenue_by_period(period: str = "month") -> List[Dict[str, Any]]:
    """Subscriptions and revenue grouped by creation period and plan, newest period first."""
    fmt = _PERIOD_FORMATS.get(period)
    if fmt is None:
        raise ValidationError(f"Unsupported period: {period!r} (expected day, month or year)")

    with get_db_session() as session:
        rows = store.select_for_statistics(session)

    buckets: Dict[tuple, Dict[str, Any]] = {}
    for row in rows:
        if row["status"] not in REVENUE_STATUSES:
            continue
        created: datetime = row["created_at"]
        key = (created.strftime(fmt), row["plan_type"])
        bucket = buckets.setdefault(
            key,
            {"period": key[0], "plan_type": key[1], "subscriptions": 0, "revenue": Decimal("0.00")},
        )
        bucket["subscriptions"] += 1
        bucket["revenue"] += Decimal(row["price"])

    return sorted(buckets.values(), key=lambda b: (b["period"], b["plan_type"]), reverse=True)


def check_upgrade_eligibility(
    user_id: str,
    target_plan: Union[str, PlanType],
    today: Optional[date] = None,
) -> Dict[str, Any]:
    """Whether the user may switch plans, and in which direction."""
    target = parse_plan_type(target_plan)
    current = get_active_subscription(user_id, today=today)
    if current is None:
        return {"eligible": False, "reason": "no active subscription"}

    return {
        "eligible": current.plan_type != target,
        "current_plan": current.plan_type.value,
        "target_plan": target.value,
        "is_upgrade": current.plan_type == PlanType.MASTER and target == PlanType.VIP,
        "is_downgrade": current.plan_type == PlanType.VIP and target == PlanType.MASTER,
        "days_remaining": current.days_remaining(today),
    }
