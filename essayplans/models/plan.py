"""
essayplans/models/plan.py

Static plan catalog entries.

A plan fixes the monthly price and the weekly essay quota. Plans are
compiled-in configuration, never persisted.
"""

from decimal import Decimal
from enum import Enum
from typing import Tuple
from pydantic import BaseModel, ConfigDict


class PlanType(str, Enum):
    MASTER = "master"
    VIP = "vip"


class PlanDefinition(BaseModel):
    """
    PlanDefinition describes one purchasable tier.

    Examples:
    - master: 40.00 BRL / month, 2 essays per week
    - vip: 50.00 BRL / month, 4 essays per week
    """
    model_config = ConfigDict(frozen=True)

    plan_type: PlanType
    name: str
    monthly_price: Decimal
    weekly_essay_quota: int
    currency: str = "BRL"
    features: Tuple[str, ...] = ()
    priority_support: bool = False
    early_access: bool = False
    recommended: bool = False
