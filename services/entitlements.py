"""
Entitlement store: which users may open which courses
"""

import uuid
from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy import update
from sqlalchemy.orm import Session

from config import settings
from models import Course, Enrollment, Subscription, SubscriptionStatus, utcnow, as_utc
from utils.cache_manager import LRUCache, cache_key_for_user, invalidate_user_cache, snapshot_cache
from utils.error_handling import insert_or_get
from utils.structured_logging import get_logger, LogCategory

logger = get_logger("services.entitlements")


def is_enrolled(db: Session, user_id: uuid.UUID, course_id: uuid.UUID) -> bool:
    return (
        db.query(Enrollment.id).filter(Enrollment.user_id == user_id, Enrollment.course_id == course_id).first()
        is not None
    )


def has_live_subscription(db: Session, user_id: uuid.UUID, now: Optional[datetime] = None) -> bool:
    """Active and not past its end time, whether or not the sweep has reached the row yet"""
    now = as_utc(now) or utcnow()
    row = (
        db.query(Subscription.id)
        .filter(
            Subscription.user_id == user_id,
            Subscription.status == SubscriptionStatus.ACTIVE,
            (Subscription.end_time.is_(None)) | (Subscription.end_time >= now),
        )
        .first()
    )
    return row is not None


def has_access(db: Session, user_id: uuid.UUID, course_id: uuid.UUID, now: Optional[datetime] = None) -> bool:
    """Read-only; takes no locks"""
    if is_enrolled(db, user_id, course_id):
        return True
    if settings.SUBSCRIPTIONS_GRANT_CATALOGUE:
        return has_live_subscription(db, user_id, now)
    return False


def grant_enrollment(
    db: Session, user_id: uuid.UUID, course_id: uuid.UUID, now: Optional[datetime] = None
) -> Tuple[Enrollment, bool]:
    """
    Idempotent enrollment writer; runs inside the caller's transaction.

    Bumps the course's student count only when the row is new.
    """
    now = as_utc(now) or utcnow()
    enrollment, created = insert_or_get(
        db,
        Enrollment(user_id=user_id, course_id=course_id, purchased_at=now),
        lambda: db.query(Enrollment)
        .filter(Enrollment.user_id == user_id, Enrollment.course_id == course_id)
        .first(),
    )
    if created:
        db.execute(
            update(Course)
            .where(Course.id == course_id)
            .values(students=Course.students + 1)
            .execution_options(synchronize_session=False)
        )
        logger.transition(LogCategory.ENTITLEMENT, "enrollment", course_id, None, "granted", user_id=user_id)
        invalidate_user_cache(user_id)
    return enrollment, created


def list_user_courses(db: Session, user_id: uuid.UUID) -> List[Course]:
    return (
        db.query(Course)
        .join(Enrollment, Enrollment.course_id == Course.id)
        .filter(Enrollment.user_id == user_id)
        .order_by(Enrollment.purchased_at)
        .all()
    )


class CachedEntitlements:
    """
    has_access behind a TTL snapshot cache.

    A decision may be up to ``ttl`` seconds stale. Enrollment grants made in
    this process invalidate the user's entries straight away; subscription
    expiry is only picked up when the entry times out.
    """

    def __init__(self, session_factory, ttl: Optional[float] = None, cache: Optional[LRUCache] = None):
        self.session_factory = session_factory
        self.ttl = settings.ENTITLEMENT_CACHE_TTL_SECONDS if ttl is None else ttl
        self.cache = cache if cache is not None else snapshot_cache

    def has_access(self, user_id: uuid.UUID, course_id: uuid.UUID) -> bool:
        key = cache_key_for_user(user_id, "access", course_id)
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        db = self.session_factory()
        try:
            allowed = has_access(db, user_id, course_id)
        finally:
            db.close()
        self.cache.set(key, allowed, ttl=self.ttl)
        return allowed

    def invalidate(self, user_id: uuid.UUID) -> int:
        return self.cache.invalidate_prefix(f"user:{user_id}:")
