"""
essayplans/models/subscription.py

Subscription model and its date helpers.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from pydantic import BaseModel, ConfigDict

from essayplans.models.plan import PlanType


class SubscriptionStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"  # suspended
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class Subscription(BaseModel):
    """
    Subscription is a user's purchase of a plan for a date window.

    Constraints:
    - At most one ACTIVE subscription per user.
    - end_date >= start_date.
    - price is the catalog price at creation time and never changes.
    - The weekly quota is not stored; it is derived from plan_type.
    """
    model_config = ConfigDict(frozen=True)

    id: int
    user_id: str
    plan_type: PlanType
    status: SubscriptionStatus
    start_date: date
    end_date: date
    price: Decimal
    payment_method: Optional[str] = None
    auto_renewal: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def _today(self, today: Optional[date]) -> date:
        return today or date.today()

    def is_active(self, today: Optional[date] = None) -> bool:
        return self.status == SubscriptionStatus.ACTIVE and self.end_date > self._today(today)

    def is_expired(self, today: Optional[date] = None) -> bool:
        return self.end_date < self._today(today)

    def days_remaining(self, today: Optional[date] = None) -> int:
        remaining = (self.end_date - self._today(today)).days
        return remaining if remaining > 0 else 0

    def is_near_expiration(self, days: int = 7, today: Optional[date] = None) -> bool:
        remaining = (self.end_date - self._today(today)).days
        return 0 < remaining <= days

    @property
    def essay_limit(self) -> int:
        from essayplans.features.plans.catalog import quota_of
        return quota_of(self.plan_type)

    def to_summary(self, today: Optional[date] = None) -> dict:
        """Serializable view including the derived date flags."""
        data = self.model_dump(mode="json")
        data.update(
            is_active=self.is_active(today),
            is_near_expiration=self.is_near_expiration(today=today),
            is_expired=self.is_expired(today),
            days_remaining=self.days_remaining(today),
            essay_limit=self.essay_limit,
        )
        return data
