"""
essayplans/features/plans/catalog.py

Static plan catalog.

Handles:
- Price and weekly quota lookup per plan type
- Display catalog and plan comparison
- Plan inference from a paid amount
"""

from decimal import Decimal
from typing import Any, Dict, List, Union

from essayplans.core.errors import InvalidPlanType
from essayplans.models.plan import PlanDefinition, PlanType


_COMMON_FEATURES = (
    "Correção profissional detalhada",
    "Feedback personalizado",
    "Acesso a materiais gratuitos",
)

PLANS: Dict[PlanType, PlanDefinition] = {
    PlanType.MASTER: PlanDefinition(
        plan_type=PlanType.MASTER,
        name="Plano Master",
        monthly_price=Decimal("40.00"),
        weekly_essay_quota=2,
        features=("Até 2 redações por semana",) + _COMMON_FEATURES + ("Suporte por email",),
    ),
    PlanType.VIP: PlanDefinition(
        plan_type=PlanType.VIP,
        name="Plano VIP",
        monthly_price=Decimal("50.00"),
        weekly_essay_quota=4,
        features=("Até 4 redações por semana",) + _COMMON_FEATURES + (
            "Suporte prioritário",
            "Acesso antecipado a novos conteúdos",
        ),
        priority_support=True,
        early_access=True,
        recommended=True,
    ),
}


def parse_plan_type(plan_type: Union[str, PlanType, None]) -> PlanType:
    """Normalize a plan identifier or raise InvalidPlanType."""
    if isinstance(plan_type, PlanType):
        return plan_type
    if not isinstance(plan_type, str):
        raise InvalidPlanType(plan_type)
    try:
        return PlanType(plan_type.strip())
    except ValueError:
        raise InvalidPlanType(plan_type) from None


def is_valid_plan_type(plan_type: Any) -> bool:
    try:
        parse_plan_type(plan_type)
    except InvalidPlanType:
        return False
    return True


def get_plan(plan_type: Union[str, PlanType]) -> PlanDefinition:
    return PLANS[parse_plan_type(plan_type)]


def price_of(plan_type: Union[str, PlanType]) -> Decimal:
    return get_plan(plan_type).monthly_price


def quota_of(plan_type: Union[str, PlanType]) -> int:
    return get_plan(plan_type).weekly_essay_quota


def plan_for_amount(amount: Decimal) -> PlanType:
    """Infer the plan from a confirmed amount: the vip price buys vip, anything else master."""
    if Decimal(amount) == PLANS[PlanType.VIP].monthly_price:
        return PlanType.VIP
    return PlanType.MASTER


def list_plans() -> Dict[str, Dict[str, Any]]:
    """Display catalog keyed by plan type."""
    return {
        plan.plan_type.value: {
            "name": plan.name,
            "price": plan.monthly_price,
            "currency": plan.currency,
            "period": "mensal",
            "weekly_essay_quota": plan.weekly_essay_quota,
            "features": list(plan.features),
            "recommended": plan.recommended,
        }
        for plan in PLANS.values()
    }


def compare_plans() -> Dict[str, Any]:
    master = PLANS[PlanType.MASTER]
    vip = PLANS[PlanType.VIP]
    features: List[Dict[str, Any]] = [
        {"feature": "Redações por semana", "master": str(master.weekly_essay_quota), "vip": str(vip.weekly_essay_quota)},
        {"feature": "Correção profissional", "master": True, "vip": True},
        {"feature": "Feedback detalhado", "master": True, "vip": True},
        {"feature": "Materiais gratuitos", "master": True, "vip": True},
        {"feature": "Suporte prioritário", "master": master.priority_support, "vip": vip.priority_support},
        {"feature": "Acesso antecipado", "master": master.early_access, "vip": vip.early_access},
    ]
    pricing = {
        plan.plan_type.value: {
            "monthly": plan.monthly_price,
            "annually": plan.monthly_price * 12,
            "savings": Decimal("0.00"),
        }
        for plan in (master, vip)
    }
    return {"features": features, "pricing": pricing}
