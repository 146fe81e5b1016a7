"""
Subscription lifecycle

A subscription has no row while pending, then moves active -> expired or
active -> canceled. Terminal rows are never written again. Every write locks
the row and goes through the mapper's version check.
"""

import threading
import uuid
from datetime import datetime
from typing import List, Optional, Tuple

from dateutil.relativedelta import relativedelta
from sqlalchemy import func
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from config import settings
from models import Subscription, SubscriptionPlan, SubscriptionStatus, User, utcnow, as_utc
from services.entitlements import has_live_subscription
from utils.cache_manager import invalidate_user_cache
from utils.error_handling import (
    AlreadyTerminal,
    ConflictError,
    DuplicateSubscription,
    InvalidInput,
    NotFoundError,
    StoreTimeout,
    insert_or_get,
    require,
    store_transaction,
)
from utils.structured_logging import get_logger, LogCategory

logger = get_logger("services.subscriptions")

_PLAN_FIELDS = {"name", "description", "price", "duration_months", "features", "active"}


def plan_end(plan: SubscriptionPlan, start: datetime) -> datetime:
    return start + relativedelta(months=plan.duration_months)


# ============================================================================
# PLAN CATALOGUE
# ============================================================================


def _validate_plan(price, duration_months):
    if price is not None and price < 0:
        raise InvalidInput("Plan price must be non-negative", entity="subscription_plan", key="price")
    if duration_months is not None and duration_months <= 0:
        raise InvalidInput("Plan duration must be positive", entity="subscription_plan", key="duration_months")


def create_plan(
    db: Session,
    name: str,
    price: int,
    duration_months: int,
    processor_plan_id: str,
    description: Optional[str] = None,
    features: Optional[list] = None,
) -> SubscriptionPlan:
    _validate_plan(price, duration_months)
    with store_transaction(db, "create plan"):
        exists = db.query(SubscriptionPlan.id).filter(SubscriptionPlan.processor_plan_id == processor_plan_id).first()
        if exists:
            raise ConflictError("Plan already exists", entity="subscription_plan", key=processor_plan_id)
        plan = SubscriptionPlan(
            name=name,
            description=description,
            price=price,
            duration_months=duration_months,
            processor_plan_id=processor_plan_id,
            features=features or [],
        )
        db.add(plan)
    logger.info(f"Created plan {processor_plan_id}", category=LogCategory.SUBSCRIPTION, key=plan.id)
    return plan


def update_plan(db: Session, plan_id: uuid.UUID, **fields) -> SubscriptionPlan:
    unknown = set(fields) - _PLAN_FIELDS
    if unknown:
        raise InvalidInput(f"Unknown plan fields: {sorted(unknown)}", entity="subscription_plan", key=plan_id)
    _validate_plan(fields.get("price"), fields.get("duration_months"))
    with store_transaction(db, "update plan"):
        plan = require(db.get(SubscriptionPlan, plan_id), "subscription_plan", plan_id)
        for name, value in fields.items():
            setattr(plan, name, value)
    return plan


def deactivate_plan(db: Session, plan_id: uuid.UUID) -> SubscriptionPlan:
    """Hide a plan from sale; running subscriptions are untouched"""
    return update_plan(db, plan_id, active=False)


def list_active_plans(db: Session) -> List[SubscriptionPlan]:
    return db.query(SubscriptionPlan).filter(SubscriptionPlan.active.is_(True)).order_by(SubscriptionPlan.price).all()


def get_plan_by_processor_id(db: Session, processor_plan_id: str) -> Optional[SubscriptionPlan]:
    return db.query(SubscriptionPlan).filter(SubscriptionPlan.processor_plan_id == processor_plan_id).first()


# ============================================================================
# LIFECYCLE
# ============================================================================


def _lock_active(db: Session, processor_subscription_id: str) -> Optional[Subscription]:
    return (
        db.query(Subscription)
        .filter(
            Subscription.processor_subscription_id == processor_subscription_id,
            Subscription.status == SubscriptionStatus.ACTIVE,
        )
        .populate_existing()
        .with_for_update()
        .first()
    )


def _require_active(db: Session, processor_subscription_id: str) -> Subscription:
    row = _lock_active(db, processor_subscription_id)
    if row is not None:
        return row
    latest = (
        db.query(Subscription)
        .filter(Subscription.processor_subscription_id == processor_subscription_id)
        .order_by(Subscription.created_at.desc())
        .first()
    )
    if latest is None:
        raise NotFoundError("Subscription not found", entity="subscription", key=processor_subscription_id)
    raise AlreadyTerminal(
        f"Subscription is already {latest.status.value}", entity="subscription", key=processor_subscription_id
    )


def refresh_user_expiry(db: Session, user_id: uuid.UUID) -> Optional[datetime]:
    """Point User.subscription_expires_at at the latest active end time, or clear it"""
    latest = (
        db.query(func.max(Subscription.end_time))
        .filter(Subscription.user_id == user_id, Subscription.status == SubscriptionStatus.ACTIVE)
        .scalar()
    )
    user = db.get(User, user_id)
    if user is not None and user.subscription_expires_at != latest:
        user.subscription_expires_at = latest
    invalidate_user_cache(user_id)
    return latest


def _insert_active(
    db: Session,
    user_id: uuid.UUID,
    plan: SubscriptionPlan,
    processor_subscription_id: str,
    start_time: datetime,
    end_time: Optional[datetime] = None,
) -> Tuple[Subscription, bool]:
    """
    Insert an active row for the processor id, or return the active row that holds it.

    The partial unique index on active processor ids settles concurrent
    inserts; the losing caller gets the winner's row with created False.
    """
    end_time = as_utc(end_time) or plan_end(plan, start_time)
    if end_time <= start_time:
        raise InvalidInput("end_time must be after start_time", entity="subscription", key=processor_subscription_id)

    row, created = insert_or_get(
        db,
        Subscription(
            user_id=user_id,
            plan_id=plan.id,
            processor_subscription_id=processor_subscription_id,
            status=SubscriptionStatus.ACTIVE,
            start_time=start_time,
            end_time=end_time,
        ),
        lambda: _lock_active(db, processor_subscription_id),
    )
    if created:
        refresh_user_expiry(db, user_id)
        logger.transition(
            LogCategory.SUBSCRIPTION, "subscription", processor_subscription_id, "pending", "active", user_id=user_id
        )
    return row, created


def open_in_transaction(
    db: Session,
    user_id: uuid.UUID,
    plan: SubscriptionPlan,
    processor_subscription_id: str,
    start_time: datetime,
    end_time: Optional[datetime] = None,
) -> Subscription:
    row, created = _insert_active(db, user_id, plan, processor_subscription_id, start_time, end_time)
    if not created:
        raise DuplicateSubscription(
            "An active subscription already exists", entity="subscription", key=processor_subscription_id
        )
    return row


def extend_in_transaction(db: Session, row: Subscription, new_end_time: datetime) -> Subscription:
    """Move end_time forward; an earlier end time leaves the row as is"""
    if row.end_time is None or new_end_time > row.end_time:
        previous = row.end_time
        row.end_time = new_end_time
        db.flush()
        logger.info(
            f"Subscription extended {previous} -> {new_end_time}",
            category=LogCategory.SUBSCRIPTION,
            entity="subscription",
            key=row.processor_subscription_id,
            user_id=row.user_id,
        )
    refresh_user_expiry(db, row.user_id)
    return row


def apply_plan_purchase(
    db: Session,
    user_id: uuid.UUID,
    plan: SubscriptionPlan,
    processor_subscription_id: str,
    now: datetime,
) -> Subscription:
    """Open a subscription for a paid plan, or extend the running one by the plan duration"""
    row = _lock_active(db, processor_subscription_id)
    if row is None:
        row, created = _insert_active(db, user_id, plan, processor_subscription_id, now)
        if created:
            return row
        # A concurrent purchase opened it first; extend that row instead
    if row.user_id != user_id:
        raise DuplicateSubscription(
            "Subscription belongs to another user", entity="subscription", key=processor_subscription_id
        )
    base = max(row.end_time or now, now)
    return extend_in_transaction(db, row, plan_end(plan, base))


def open_subscription(
    db: Session,
    user_id: uuid.UUID,
    plan_id: uuid.UUID,
    processor_subscription_id: str,
    start_time: Optional[datetime] = None,
    end_time: Optional[datetime] = None,
    timeout: Optional[float] = None,
) -> Subscription:
    start_time = as_utc(start_time) or utcnow()
    with store_transaction(db, "open subscription", timeout):
        require(db.get(User, user_id), "user", user_id)
        plan = require(db.get(SubscriptionPlan, plan_id), "subscription_plan", plan_id)
        row = open_in_transaction(db, user_id, plan, processor_subscription_id, start_time, end_time)
    return row


def renew_subscription(
    db: Session, processor_subscription_id: str, new_end_time: datetime, timeout: Optional[float] = None
) -> Subscription:
    """
    Extend an active subscription to new_end_time.

    Renewals never shorten a subscription. Raises AlreadyTerminal when the
    row is expired or canceled; a renewal that lost the race to the sweep
    lands here.
    """
    if new_end_time is None:
        raise InvalidInput("new_end_time is required", entity="subscription", key=processor_subscription_id)
    new_end_time = as_utc(new_end_time)
    with store_transaction(db, "renew subscription", timeout):
        row = _require_active(db, processor_subscription_id)
        extend_in_transaction(db, row, new_end_time)
    return row


def cancel_subscription(
    db: Session,
    processor_subscription_id: str,
    effective_time: Optional[datetime] = None,
    timeout: Optional[float] = None,
) -> Subscription:
    effective_time = as_utc(effective_time) or utcnow()
    with store_transaction(db, "cancel subscription", timeout):
        row = _require_active(db, processor_subscription_id)
        row.status = SubscriptionStatus.CANCELED
        row.end_time = effective_time
        db.flush()
        refresh_user_expiry(db, row.user_id)
        logger.transition(
            LogCategory.SUBSCRIPTION, "subscription", processor_subscription_id, "active", "canceled", user_id=row.user_id
        )
    return row


def get_user_subscriptions(db: Session, user_id: uuid.UUID) -> List[Subscription]:
    return (
        db.query(Subscription)
        .filter(Subscription.user_id == user_id)
        .order_by(Subscription.start_time.desc())
        .all()
    )


def has_active_subscription(db: Session, user_id: uuid.UUID, now: Optional[datetime] = None) -> bool:
    return has_live_subscription(db, user_id, now)


# ============================================================================
# EXPIRATION SWEEP
# ============================================================================


def _expire_one(db: Session, subscription_id: uuid.UUID, now: datetime) -> bool:
    with store_transaction(db, "expire subscription"):
        row = (
            db.query(Subscription)
            .filter(Subscription.id == subscription_id)
            .populate_existing()
            .with_for_update()
            .first()
        )
        # Re-check under the lock: a renewal or cancel may have committed since the scan
        if row is None or not row.is_active or row.end_time is None or row.end_time >= now:
            return False
        row.status = SubscriptionStatus.EXPIRED
        db.flush()
        refresh_user_expiry(db, row.user_id)
        logger.transition(
            LogCategory.SUBSCRIPTION,
            "subscription",
            row.processor_subscription_id,
            "active",
            "expired",
            user_id=row.user_id,
        )
    return True


def sweep_expirations(
    session_factory, now: Optional[datetime] = None, cancel_event: Optional[threading.Event] = None
) -> int:
    """
    Expire every active subscription whose end_time has passed.

    Each row commits on its own, so a cancelled or failed pass keeps what it
    already did. Rows changed concurrently are skipped and picked up by the
    next pass if still due. Returns the number of rows expired.
    """
    now = as_utc(now) or utcnow()
    expired = 0
    db = session_factory()
    try:
        due = [
            row_id
            for (row_id,) in db.query(Subscription.id)
            .filter(Subscription.status == SubscriptionStatus.ACTIVE, Subscription.end_time < now)
            .order_by(Subscription.end_time)
            .all()
        ]
        db.rollback()

        for subscription_id in due:
            if cancel_event is not None and cancel_event.is_set():
                logger.info(
                    f"Sweep cancelled after {expired} of {len(due)} rows", category=LogCategory.SUBSCRIPTION
                )
                break
            try:
                if _expire_one(db, subscription_id, now):
                    expired += 1
            except (StaleDataError, StoreTimeout) as e:
                logger.warning(
                    f"Skipped subscription during sweep: {type(e).__name__}",
                    category=LogCategory.SUBSCRIPTION,
                    entity="subscription",
                    key=subscription_id,
                )
    finally:
        db.close()

    if due:
        logger.info(f"Sweep expired {expired} of {len(due)} due subscriptions", category=LogCategory.SUBSCRIPTION)
    return expired


class ExpirationSweeper(threading.Thread):
    """Runs sweep_expirations every ``interval`` seconds until stopped"""

    def __init__(self, session_factory, interval: Optional[float] = None):
        super().__init__(name="subscription-sweeper", daemon=True)
        self.session_factory = session_factory
        self.interval = settings.SUBSCRIPTION_SWEEP_INTERVAL_SECONDS if interval is None else interval
        self._stop_event = threading.Event()

    def run(self):
        logger.info(f"Expiration sweeper started, interval {self.interval}s", category=LogCategory.SYSTEM)
        while not self._stop_event.is_set():
            try:
                sweep_expirations(self.session_factory, cancel_event=self._stop_event)
            except Exception as e:
                logger.error("Expiration sweep failed", category=LogCategory.SUBSCRIPTION, exception=e)
            self._stop_event.wait(self.interval)
        logger.info("Expiration sweeper stopped", category=LogCategory.SYSTEM)

    def stop(self, timeout: Optional[float] = None):
        """Cancel the current pass after its in-flight row and wait for the thread"""
        self._stop_event.set()
        if self.is_alive():
            self.join(timeout)
