"""
essayplans/features/entitlements/service.py

Essay submission entitlement.

Handles:
- can_submit_essay: advisory check (active subscription + weekly quota)
- submit_essay: authoritative re-check and insert in one transaction
- Structured logs for every decision
"""

from dataclasses import dataclass, asdict
from datetime import date, datetime, timezone
from typing import Any, Dict, Optional
import logging

from sqlalchemy import insert
from sqlalchemy.orm import Session

from essayplans.core.database import get_db_session, essay_submissions
from essayplans.core.errors import QuotaExceeded, ValidationError
from essayplans.features.plans.catalog import quota_of
from essayplans.features.quota.service import current_week_bucket, count_submissions, week_range
from essayplans.features.subscriptions import store
from essayplans.features.users.service import lock_user
from essayplans.models.submission import EssaySubmission


logger = logging.getLogger(__name__)

NO_ACTIVE_SUBSCRIPTION = "no active subscription"


@dataclass(frozen=True)
class EntitlementDecision:
    allowed: bool
    current: int
    max: int
    reason: Optional[str] = None
    plan_type: Optional[str] = None
    week_number: Optional[int] = None
    year: Optional[int] = None
    week_start: Optional[date] = None
    week_end: Optional[date] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _normalize_now(now: Optional[datetime]) -> datetime:
    return now or datetime.now()


def _decide(session: Session, user_id: str, now: datetime) -> EntitlementDecision:
    bucket = current_week_bucket(now)
    week_start, week_end = week_range(now)
    subscription = store.select_active_by_user(session, user_id, now.date())
    if subscription is None:
        return EntitlementDecision(
            allowed=False,
            current=0,
            max=0,
            reason=NO_ACTIVE_SUBSCRIPTION,
            week_number=bucket.week_number,
            year=bucket.year,
            week_start=week_start,
            week_end=week_end,
        )

    quota = quota_of(subscription.plan_type)
    current = count_submissions(user_id, bucket, session=session)
    allowed = current < quota
    return EntitlementDecision(
        allowed=allowed,
        current=current,
        max=quota,
        reason=None if allowed else f"weekly limit of {quota} essays reached",
        plan_type=subscription.plan_type.value,
        week_number=bucket.week_number,
        year=bucket.year,
        week_start=week_start,
        week_end=week_end,
    )


def can_submit_essay(user_id: str, now: Optional[datetime] = None) -> EntitlementDecision:
    """
    Can the user submit an essay right now?

    Evaluated against live data on every call. The answer is advisory: only
    submit_essay, which re-counts inside its inserting transaction, admits a
    submission.
    """
    moment = _normalize_now(now)
    with get_db_session() as session:
        decision = _decide(session, user_id, moment)

    logger.info(
        "[entitlement] ALLOWED" if decision.allowed else "[entitlement] DENIED",
        extra={
            "user_id": user_id,
            "plan_type": decision.plan_type,
            "current": decision.current,
            "max": decision.max,
            "reason": decision.reason,
        },
    )
    return decision


def submit_essay(user_id: str, title: str, now: Optional[datetime] = None) -> EssaySubmission:
    """
    Record an essay submission if the weekly quota still allows it.

    The user row is locked first, then the subscription and the bucket count
    are re-read in the same transaction as the insert, so two concurrent
    submissions at quota-1 admit exactly one.

    Raises:
        ValidationError: empty title
        QuotaExceeded: no active subscription or weekly quota reached
    """
    if not title or not title.strip():
        raise ValidationError("title is required")

    moment = _normalize_now(now)
    with get_db_session() as session:
        lock_user(session, user_id)
        decision = _decide(session, user_id, moment)
        if not decision.allowed:
            logger.warning(
                "[entitlement] BLOCK",
                extra={
                    "user_id": user_id,
                    "plan_type": decision.plan_type,
                    "current": decision.current,
                    "max": decision.max,
                    "reason": decision.reason,
                    "week_start": decision.week_start,
                    "week_end": decision.week_end,
                },
            )
            raise QuotaExceeded(
                decision.reason,
                current=decision.current,
                maximum=decision.max,
                week_start=decision.week_start,
                week_end=decision.week_end,
            )

        submitted_at = moment if moment.tzinfo else moment.replace(tzinfo=timezone.utc)
        result = session.execute(
            insert(essay_submissions).values(
                user_id=user_id,
                title=title.strip(),
                week_number=decision.week_number,
                year=decision.year,
                submitted_at=submitted_at,
            )
        )
        submission = EssaySubmission(
            id=result.inserted_primary_key[0],
            user_id=user_id,
            title=title.strip(),
            week_number=decision.week_number,
            year=decision.year,
            submitted_at=submitted_at,
        )

    logger.info(
        "[entitlement] submission recorded",
        extra={
            "user_id": user_id,
            "submission_id": submission.id,
            "week_number": submission.week_number,
            "year": submission.year,
            "current": decision.current + 1,
            "max": decision.max,
        },
    )
    return submission
