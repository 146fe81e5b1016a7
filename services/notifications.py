"""
User notifications

Rows are appended by the dispatcher; the core only stores, lists and marks
them read. pending_achievement_notices hands the dispatcher the earned
achievements it has not announced yet.
"""

import uuid
from datetime import datetime
from typing import List, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session, joinedload

from models import Notification, User, UserAchievement, utcnow, as_utc
from utils.error_handling import InvalidInput, require, store_transaction
from utils.structured_logging import get_logger, LogCategory

logger = get_logger("services.notifications")


def create_notification(
    db: Session,
    user_id: uuid.UUID,
    title: str,
    message: str,
    sent_via: str = "in_app",
    sent_at: Optional[datetime] = None,
) -> Notification:
    if not title or not message:
        raise InvalidInput("Notification needs a title and a message", entity="notification", key=user_id)
    with store_transaction(db, "create notification"):
        require(db.get(User, user_id), "user", user_id)
        notification = Notification(
            user_id=user_id,
            title=title,
            message=message,
            sent_via=sent_via,
            sent_at=as_utc(sent_at) or utcnow(),
        )
        db.add(notification)
    logger.info(f"Notification sent via {sent_via}", category=LogCategory.NOTIFICATION, user_id=user_id)
    return notification


def list_notifications(db: Session, user_id: uuid.UUID, unread_only: bool = False) -> List[Notification]:
    query = db.query(Notification).filter(Notification.user_id == user_id)
    if unread_only:
        query = query.filter(Notification.read.is_(False))
    return query.order_by(Notification.sent_at.desc()).all()


def mark_notification_read(db: Session, user_id: uuid.UUID, notification_id: uuid.UUID) -> bool:
    """Returns False when it was already read"""
    with store_transaction(db, "mark notification read"):
        notification = db.get(Notification, notification_id)
        if notification is None or notification.user_id != user_id:
            require(None, "notification", notification_id)
        result = db.execute(
            update(Notification)
            .where(Notification.id == notification_id, Notification.read.is_(False))
            .values(read=True)
            .execution_options(synchronize_session=False)
        )
    db.refresh(notification)
    return result.rowcount == 1


def pending_achievement_notices(
    db: Session, user_id: uuid.UUID, since: Optional[datetime] = None
) -> List[UserAchievement]:
    """Earned achievements after ``since`` (default: the user's latest notification)"""
    if since is None:
        since = (
            db.query(Notification.sent_at)
            .filter(Notification.user_id == user_id)
            .order_by(Notification.sent_at.desc())
            .limit(1)
            .scalar()
        )
    query = (
        db.query(UserAchievement)
        .options(joinedload(UserAchievement.achievement))
        .filter(UserAchievement.user_id == user_id, UserAchievement.earned.is_(True))
    )
    if since is not None:
        query = query.filter(UserAchievement.earned_at > as_utc(since))
    return query.order_by(UserAchievement.earned_at).all()
