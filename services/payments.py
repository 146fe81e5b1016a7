"""
Payment reconciler

Turns processor events into ledger rows and their downstream effects
(enrollment, subscription, counters) in a single transaction. Events are
keyed by the processor's transaction id so re-deliveries are harmless.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Union

from sqlalchemy.orm import Session

from models import (
    Course,
    Enrollment,
    Payment,
    PaymentStatus,
    StatType,
    Subscription,
    SubscriptionPlan,
    User,
    UserAchievement,
    utcnow,
    as_utc,
)
from services import stats
from services.entitlements import grant_enrollment
from services.subscriptions import apply_plan_purchase
from utils.error_handling import (
    ConflictError,
    InvalidInput,
    InvalidTransition,
    insert_or_get,
    require,
    store_transaction,
)
from utils.structured_logging import get_logger, LogCategory

logger = get_logger("services.payments")


@dataclass
class PaymentOutcome:
    payment: Payment
    applied: bool
    enrollment: Optional[Enrollment] = None
    subscription: Optional[Subscription] = None
    earned: List[UserAchievement] = field(default_factory=list)


def _parse_status(status: Union[PaymentStatus, str], transaction_id: str) -> PaymentStatus:
    if isinstance(status, PaymentStatus):
        return status
    try:
        return PaymentStatus(str(status).lower())
    except ValueError:
        raise InvalidInput(f"Unknown payment status {status!r}", entity="payment", key=transaction_id)


def _check_same_payment(payment: Payment, user_id, amount, course_id, plan_id) -> None:
    if (payment.user_id, payment.amount, payment.course_id, payment.plan_id) != (user_id, amount, course_id, plan_id):
        raise ConflictError(
            "Transaction id is already bound to a different payment", entity="payment", key=payment.transaction_id
        )


def _fulfil(
    db: Session,
    outcome: PaymentOutcome,
    course: Optional[Course],
    plan: Optional[SubscriptionPlan],
    processor_subscription_id: Optional[str],
    now: datetime,
) -> None:
    payment = outcome.payment
    key = f"payment:{payment.transaction_id}"

    if course is not None:
        if payment.amount != course.price:
            logger.warning(
                f"Paid {payment.amount} for a course priced {course.price}",
                category=LogCategory.PAYMENT,
                entity="payment",
                key=payment.transaction_id,
                user_id=payment.user_id,
            )
        outcome.enrollment, created = grant_enrollment(db, payment.user_id, course.id, now)
        if created:
            _, outcome.earned = stats.bump_and_evaluate(
                db, payment.user_id, StatType.COURSES_PURCHASED, 1, idempotency_key=key, now=now
            )
    else:
        outcome.subscription = apply_plan_purchase(
            db, payment.user_id, plan, processor_subscription_id or payment.transaction_id, now
        )
        _, outcome.earned = stats.bump_and_evaluate(
            db, payment.user_id, StatType.SUBSCRIPTIONS_PURCHASED, 1, idempotency_key=key, now=now
        )


def record_payment_event(
    db: Session,
    transaction_id: str,
    user_id: uuid.UUID,
    amount: int,
    method: str,
    status: Union[PaymentStatus, str],
    course_id: Optional[uuid.UUID] = None,
    plan_id: Optional[uuid.UUID] = None,
    processor_subscription_id: Optional[str] = None,
    now: Optional[datetime] = None,
    timeout: Optional[float] = None,
) -> PaymentOutcome:
    """
    Reconcile one payment event from the processor.

    Status only moves pending -> completed or pending -> failed. Replaying
    an event already applied returns ``applied=False`` and changes nothing.
    Effects of completion (enrollment or subscription, counters and
    achievements) commit together with the status change or not at all.
    """
    if not transaction_id:
        raise InvalidInput("transaction_id is required", entity="payment", key=transaction_id)
    if (course_id is None) == (plan_id is None):
        raise InvalidInput("Exactly one of course_id and plan_id is required", entity="payment", key=transaction_id)
    if amount is None or amount < 0:
        raise InvalidInput("amount must be non-negative", entity="payment", key=transaction_id)
    status = _parse_status(status, transaction_id)
    now = as_utc(now) or utcnow()

    with store_transaction(db, "record payment event", timeout):
        require(db.get(User, user_id), "user", user_id)
        course = require(db.get(Course, course_id), "course", course_id) if course_id is not None else None
        plan = require(db.get(SubscriptionPlan, plan_id), "subscription_plan", plan_id) if plan_id is not None else None

        payment, created = insert_or_get(
            db,
            Payment(
                user_id=user_id,
                course_id=course_id,
                plan_id=plan_id,
                amount=amount,
                payment_method=method,
                transaction_id=transaction_id,
                status=status,
                created_at=now,
                updated_at=now,
            ),
            lambda: db.query(Payment)
            .filter(Payment.transaction_id == transaction_id)
            .populate_existing()
            .with_for_update()
            .first(),
        )
        outcome = PaymentOutcome(payment=payment, applied=created)

        if created:
            logger.transition(LogCategory.PAYMENT, "payment", transaction_id, None, status.value, user_id=user_id)
        else:
            _check_same_payment(payment, user_id, amount, course_id, plan_id)
            if payment.status is status:
                logger.debug(
                    f"Duplicate {status.value} event ignored",
                    category=LogCategory.PAYMENT,
                    entity="payment",
                    key=transaction_id,
                )
                return outcome
            if payment.status.is_terminal:
                raise InvalidTransition(
                    f"Payment is already {payment.status.value}, cannot become {status.value}",
                    entity="payment",
                    key=transaction_id,
                )
            previous = payment.status
            payment.status = status
            payment.updated_at = now
            outcome.applied = True
            logger.transition(
                LogCategory.PAYMENT, "payment", transaction_id, previous.value, status.value, user_id=user_id
            )

        if status is PaymentStatus.COMPLETED:
            _fulfil(db, outcome, course, plan, processor_subscription_id, now)
    return outcome


def get_payment(db: Session, transaction_id: str) -> Optional[Payment]:
    return db.query(Payment).filter(Payment.transaction_id == transaction_id).first()


def get_user_payments(db: Session, user_id: uuid.UUID) -> List[Payment]:
    return db.query(Payment).filter(Payment.user_id == user_id).order_by(Payment.created_at.desc()).all()


def has_completed_course_payment(db: Session, user_id: uuid.UUID, course_id: uuid.UUID) -> bool:
    return (
        db.query(Payment.id)
        .filter(
            Payment.user_id == user_id,
            Payment.course_id == course_id,
            Payment.status == PaymentStatus.COMPLETED,
        )
        .first()
        is not None
    )
