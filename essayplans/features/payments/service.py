"""
essayplans/features/payments/service.py

Payment confirmation -> subscription activation.

The gateway is simulated upstream; this module only needs the confirmed
amount, an optional plan hint and the payment method.
"""

from datetime import date, datetime, timezone
from typing import Any, Dict, Optional
import logging

from sqlalchemy import insert

from essayplans.core.database import get_db_session, subscription_payments
from essayplans.core.logging import log_event
from essayplans.features.plans.catalog import (
    is_valid_plan_type,
    parse_plan_type,
    plan_for_amount,
    price_of,
)
from essayplans.features.subscriptions import store
from essayplans.features.subscriptions.service import (
    create_subscription,
    get_subscription,
    renew_subscription,
)
from essayplans.features.users.service import lock_user
from essayplans.models.payment import PaymentConfirmation
from essayplans.models.plan import PlanType
from essayplans.models.subscription import Subscription


logger = logging.getLogger("essayplans.payments")


def resolve_plan_type(confirmation: PaymentConfirmation) -> PlanType:
    """Valid plan hint first, otherwise infer from the paid amount."""
    if confirmation.plan_hint and is_valid_plan_type(confirmation.plan_hint):
        return parse_plan_type(confirmation.plan_hint)
    if confirmation.plan_hint:
        logger.warning(
            "[payments] ignoring invalid plan hint",
            extra={"user_id": confirmation.user_id, "plan_hint": confirmation.plan_hint},
        )
    return plan_for_amount(confirmation.amount)


def activate_subscription_for_payment(
    confirmation: PaymentConfirmation,
    today: Optional[date] = None,
) -> Subscription:
    """
    Turn a confirmed payment into an active subscription.

    With renew=True and an active subscription of the same plan, that
    subscription is extended by one period; otherwise a new subscription is
    created (superseding any current one). The subscription change and the
    payment record commit together or not at all.
    """
    plan_type = resolve_plan_type(confirmation)
    user_id = confirmation.user_id

    with get_db_session() as session:
        lock_user(session, user_id)
        current = None
        if confirmation.renew:
            current = store.select_active_by_user(session, user_id, today or date.today())

        if current is not None and current.plan_type == plan_type:
            subscription = renew_subscription(current.id, months=1, session=session)
            action = "renewed"
        else:
            subscription = create_subscription(
                user_id,
                plan_type,
                payment_method=confirmation.payment_method,
                today=today,
                session=session,
            )
            action = "created"

        session.execute(
            insert(subscription_payments).values(
                user_id=user_id,
                subscription_id=subscription.id,
                payment_reference=confirmation.payment_reference,
                amount=confirmation.amount,
                payment_method=confirmation.payment_method,
                action=action,
                confirmed_at=datetime.now(timezone.utc),
            )
        )

    log_event(
        "info",
        "[payments] subscription activated",
        user_id=confirmation.user_id,
        subscription_id=subscription.id,
        event_type=f"payment.{action}",
        extra={
            "plan_type": plan_type.value,
            "amount": str(confirmation.amount),
            "payment_reference": confirmation.payment_reference,
        },
    )
    return subscription


def simulate_renewal(subscription_id: int) -> Dict[str, Any]:
    """Preview the next automatic charge of a subscription."""
    subscription = get_subscription(subscription_id)
    if not subscription.auto_renewal:
        return {"will_renew": False, "reason": "auto renewal disabled"}

    return {
        "will_renew": True,
        "next_billing_date": subscription.end_date.isoformat(),
        "amount": price_of(subscription.plan_type),
        "plan_type": subscription.plan_type.value,
        "payment_method": subscription.payment_method,
    }
