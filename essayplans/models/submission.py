"""
essayplans/models/submission.py

Essay submission records and the week bucket they are counted in.
"""

from datetime import datetime
from typing import NamedTuple, Optional
from pydantic import BaseModel, ConfigDict


class WeekBucket(NamedTuple):
    """(week_number, year) pair used to group submissions for quota counting."""
    week_number: int
    year: int


class EssaySubmission(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    user_id: str
    title: str
    week_number: int
    year: int
    submitted_at: Optional[datetime] = None

    @property
    def bucket(self) -> WeekBucket:
        return WeekBucket(self.week_number, self.year)
