"""Subscription, plan and essay-entitlement endpoints.

Identity comes from the trusted X-User-Id header set by the gateway in front
of this service. Role checks for the admin routes happen upstream.
"""
from datetime import date
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Header, Query
from pydantic import BaseModel, Field, field_validator

from essayplans.features.entitlements.service import can_submit_essay, submit_essay
from essayplans.features.expiration.service import process_expired_subscriptions
from essayplans.features.payments.service import activate_subscription_for_payment, simulate_renewal
from essayplans.features.plans.catalog import compare_plans, list_plans
from essayplans.features.subscriptions.reporting import (
    check_upgrade_eligibility,
    get_revenue_by_period,
    get_statistics,
)
from essayplans.features.subscriptions.service import (
    cancel_subscription,
    create_subscription,
    get_active_subscription,
    get_expiring_subscriptions,
    get_subscription,
    get_subscription_history,
    list_subscriptions,
    reactivate_subscription,
    renew_subscription,
    suspend_subscription,
    update_subscription,
)
from essayplans.models.payment import PaymentConfirmation

router = APIRouter(prefix="/v1/subscriptions", tags=["subscriptions"])
essays_router = APIRouter(prefix="/v1/essays", tags=["essays"])


class CreateSubscriptionRequest(BaseModel):
    plan_type: str
    payment_method: str = "online"
    auto_renewal: bool = True


class RenewRequest(BaseModel):
    months: int = Field(default=1, ge=1)


class ReasonRequest(BaseModel):
    reason: Optional[str] = None


class UpdateSubscriptionRequest(BaseModel):
    plan_type: Optional[str] = None
    auto_renewal: Optional[bool] = None
    end_date: Optional[date] = None


class PaymentConfirmedRequest(BaseModel):
    amount: Decimal = Field(gt=0)
    plan_hint: Optional[str] = None
    payment_method: str = "online"
    payment_reference: Optional[str] = None
    renew: bool = False


class SubmitEssayRequest(BaseModel):
    title: str

    @field_validator("title")
    @classmethod
    def _trim(cls, value: str) -> str:
        return value.strip()


@router.get("/plans")
def get_plans():
    return {"plans": list_plans()}


@router.get("/plans/compare")
def get_plan_comparison():
    return compare_plans()


@router.post("", status_code=201)
def post_subscription(body: CreateSubscriptionRequest, x_user_id: str = Header(..., alias="X-User-Id")):
    subscription = create_subscription(
        x_user_id,
        body.plan_type,
        payment_method=body.payment_method,
        auto_renewal=body.auto_renewal,
    )
    return {"subscription": subscription.to_summary()}


@router.get("")
def get_subscriptions(
    page: int = Query(1),
    limit: int = Query(10),
    user_id: Optional[str] = None,
    plan_type: Optional[str] = None,
    status: Optional[str] = None,
    sort_by: str = "created_at",
    sort_order: str = "desc",
):
    result = list_subscriptions(
        page=page,
        limit=limit,
        user_id=user_id,
        plan_type=plan_type,
        status=status,
        sort_by=sort_by,
        sort_order=sort_order,
    )
    return {
        "subscriptions": [s.to_summary() for s in result["subscriptions"]],
        "pagination": result["pagination"],
    }


@router.get("/active")
def get_active(x_user_id: str = Header(..., alias="X-User-Id")):
    subscription = get_active_subscription(x_user_id)
    return {"subscription": subscription.to_summary() if subscription else None}


@router.get("/history")
def get_history(
    page: int = Query(1),
    limit: int = Query(10),
    x_user_id: str = Header(..., alias="X-User-Id"),
):
    result = get_subscription_history(x_user_id, page=page, limit=limit)
    return {
        "subscriptions": [s.to_summary() for s in result["subscriptions"]],
        "pagination": result["pagination"],
    }


@router.get("/expiring")
def get_expiring(days: Optional[int] = None):
    return {"subscriptions": [s.to_summary() for s in get_expiring_subscriptions(days=days)]}


@router.post("/process-expired")
def post_process_expired():
    result = process_expired_subscriptions()
    return {
        "run_date": result.run_date.isoformat(),
        "expired_count": result.expired_count,
        "references_cleared": result.references_cleared,
    }


@router.get("/statistics")
def get_stats(date_from: Optional[date] = None, date_to: Optional[date] = None):
    return get_statistics(date_from=date_from, date_to=date_to)


@router.get("/revenue")
def get_revenue(period: str = "month"):
    return {"period": period, "rows": get_revenue_by_period(period)}


@router.get("/upgrade-eligibility")
def get_upgrade_eligibility(target_plan: str, x_user_id: str = Header(..., alias="X-User-Id")):
    return check_upgrade_eligibility(x_user_id, target_plan)


@router.post("/payments/confirmed", status_code=201)
def post_payment_confirmed(body: PaymentConfirmedRequest, x_user_id: str = Header(..., alias="X-User-Id")):
    confirmation = PaymentConfirmation(user_id=x_user_id, **body.model_dump())
    subscription = activate_subscription_for_payment(confirmation)
    return {"subscription": subscription.to_summary()}


@router.get("/{subscription_id}")
def get_by_id(subscription_id: int):
    return {"subscription": get_subscription(subscription_id).to_summary()}


@router.patch("/{subscription_id}")
def patch_subscription(subscription_id: int, body: UpdateSubscriptionRequest):
    subscription = update_subscription(
        subscription_id,
        plan_type=body.plan_type,
        auto_renewal=body.auto_renewal,
        end_date=body.end_date,
    )
    return {"subscription": subscription.to_summary()}


@router.post("/{subscription_id}/renew")
def post_renew(subscription_id: int, body: Optional[RenewRequest] = None):
    months = body.months if body else 1
    return {"subscription": renew_subscription(subscription_id, months=months).to_summary()}


@router.post("/{subscription_id}/cancel")
def post_cancel(subscription_id: int, body: Optional[ReasonRequest] = None):
    reason = body.reason if body else None
    return {"subscription": cancel_subscription(subscription_id, reason=reason).to_summary()}


@router.post("/{subscription_id}/suspend")
def post_suspend(subscription_id: int, body: Optional[ReasonRequest] = None):
    reason = body.reason if body else None
    return {"subscription": suspend_subscription(subscription_id, reason=reason).to_summary()}


@router.post("/{subscription_id}/reactivate")
def post_reactivate(subscription_id: int):
    return {"subscription": reactivate_subscription(subscription_id).to_summary()}


@router.get("/{subscription_id}/renewal-preview")
def get_renewal_preview(subscription_id: int):
    return simulate_renewal(subscription_id)


@essays_router.get("/can-submit")
def get_can_submit(x_user_id: str = Header(..., alias="X-User-Id")):
    return can_submit_essay(x_user_id).to_dict()


@essays_router.post("", status_code=201)
def post_essay(body: SubmitEssayRequest, x_user_id: str = Header(..., alias="X-User-Id")):
    submission = submit_essay(x_user_id, body.title)
    return {"submission": submission.model_dump(mode="json")}
