"""
essayplans/models/payment.py

Payment confirmation signal handed over by the (simulated) gateway.
"""

from decimal import Decimal
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field


class PaymentConfirmation(BaseModel):
    """
    A confirmed payment.

    plan_hint wins when it names a valid plan; otherwise the plan is inferred
    from the amount. renew asks for an extension of the user's current
    subscription of the same plan instead of a fresh one.
    """
    model_config = ConfigDict(frozen=True)

    user_id: str
    amount: Decimal = Field(gt=0)
    plan_hint: Optional[str] = None
    payment_method: str = "online"
    payment_reference: Optional[str] = None
    renew: bool = False
