"""
Subscription lifecycle callbacks from the payment processor
"""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from db import get_db
from schemas.api_models import SubscriptionCancelRequest, SubscriptionRenewRequest, SubscriptionResponse
from services.subscriptions import cancel_subscription, renew_subscription

router = APIRouter()


@router.post("/{processor_id}/renew", response_model=SubscriptionResponse, summary="Extend a subscription")
def renew(processor_id: str, body: SubscriptionRenewRequest, db: Session = Depends(get_db)):
    return renew_subscription(db, processor_id, body.new_end_time)


@router.post("/{processor_id}/cancel", response_model=SubscriptionResponse, summary="Cancel a subscription")
def cancel(processor_id: str, body: SubscriptionCancelRequest, db: Session = Depends(get_db)):
    return cancel_subscription(db, processor_id, body.effective_time)
