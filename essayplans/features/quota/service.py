"""
essayplans/features/quota/service.py

Weekly quota accounting.

Handles:
- Week bucket derivation for a timestamp
- Counting a user's essay submissions inside a bucket
"""

import math
from datetime import date, datetime, timedelta
from typing import Optional, Tuple, Union

from sqlalchemy import select, func
from sqlalchemy.orm import Session

from essayplans.core.database import get_db_session, essay_submissions
from essayplans.models.submission import WeekBucket


def _as_date(now: Union[datetime, date]) -> date:
    return now.date() if isinstance(now, datetime) else now


def _sunday_based_weekday(day: date) -> int:
    # Python: Monday == 0; the bucket formula counts Sunday == 0
    return (day.weekday() + 1) % 7


def current_week_bucket(now: Optional[Union[datetime, date]] = None) -> WeekBucket:
    """
    Derive the (week_number, year) bucket for a timestamp.

    week = ceil((days_since_jan_1 + weekday_of_jan_1 + 1) / 7), weekday with
    Sunday == 0. This is NOT ISO-8601: weeks start on Sunday, the first
    partial week of January is week 1, and the days of a week that straddles
    New Year belong to two different buckets (2024-12-31 is (53, 2024),
    2025-01-01 is (1, 2025)).
    """
    today = _as_date(now or datetime.now())
    jan_1 = date(today.year, 1, 1)
    days = (today - jan_1).days
    week = math.ceil((days + _sunday_based_weekday(jan_1) + 1) / 7)
    return WeekBucket(week_number=week, year=today.year)


def week_range(now: Optional[Union[datetime, date]] = None) -> Tuple[date, date]:
    """Sunday..Saturday calendar range containing `now`."""
    today = _as_date(now or datetime.now())
    first = today - timedelta(days=_sunday_based_weekday(today))
    return first, first + timedelta(days=6)


def _count(session: Session, user_id: str, bucket: WeekBucket) -> int:
    return session.execute(
        select(func.count())
        .select_from(essay_submissions)
        .where(essay_submissions.c.user_id == user_id)
        .where(essay_submissions.c.week_number == bucket.week_number)
        .where(essay_submissions.c.year == bucket.year)
    ).scalar() or 0


def count_submissions(user_id: str, bucket: WeekBucket, session: Optional[Session] = None) -> int:
    """
    Count submissions recorded for a user in an exact (week, year) bucket.

    Args:
        user_id: Owner of the submissions
        bucket: WeekBucket to match exactly (no windowing)
        session: Open session to count inside an existing transaction

    Returns:
        Number of matching submissions
    """
    if session is not None:
        return _count(session, user_id, bucket)
    with get_db_session() as own_session:
        return _count(own_session, user_id, bucket)
