"""
Payment webhook router
Receives processor events relayed by the payment gateway integration
"""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from db import get_db
from schemas.api_models import PaymentOutcomeResponse, PaymentWebhookRequest
from services.payments import record_payment_event

router = APIRouter()


@router.post("/webhook", response_model=PaymentOutcomeResponse, summary="Reconcile a payment event")
def payment_webhook(event: PaymentWebhookRequest, db: Session = Depends(get_db)):
    """
    Idempotent on transaction_id: a re-delivered event answers 200 with
    ``applied: false``.
    """
    outcome = record_payment_event(
        db,
        transaction_id=event.transaction_id,
        user_id=event.user_id,
        amount=event.amount,
        method=event.method,
        status=event.status.value,
        course_id=event.course_id,
        plan_id=event.plan_id,
        processor_subscription_id=event.processor_subscription_id,
    )
    return PaymentOutcomeResponse(
        message="applied" if outcome.applied else "duplicate",
        transaction_id=outcome.payment.transaction_id,
        status=outcome.payment.status.value,
        applied=outcome.applied,
        enrollment_id=outcome.enrollment.id if outcome.enrollment is not None else None,
        subscription_id=outcome.subscription.id if outcome.subscription is not None else None,
        earned_achievement_ids=[row.achievement_id for row in outcome.earned],
    )
