"""
Achievement engine: flips UserAchievement.earned exactly once per user/achievement
"""

import uuid
from datetime import datetime
from typing import List, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session, joinedload

from models import Achievement, UserAchievement, User, utcnow, as_utc
from utils.error_handling import InvalidInput, insert_or_get, require, store_transaction
from utils.structured_logging import get_logger, LogCategory

logger = get_logger("services.achievements")


def _user_achievement(db: Session, user_id: uuid.UUID, achievement_id: uuid.UUID) -> UserAchievement:
    row, _ = insert_or_get(
        db,
        UserAchievement(user_id=user_id, achievement_id=achievement_id, earned=False),
        lambda: db.query(UserAchievement)
        .filter(UserAchievement.user_id == user_id, UserAchievement.achievement_id == achievement_id)
        .first(),
    )
    return row


def _earn(db: Session, row: UserAchievement, now: datetime) -> bool:
    """Conditional flip; only the caller whose UPDATE matched sees True"""
    result = db.execute(
        update(UserAchievement)
        .where(UserAchievement.id == row.id, UserAchievement.earned.is_(False))
        .values(earned=True, earned_at=now)
        .execution_options(synchronize_session=False)
    )
    db.refresh(row)
    return result.rowcount == 1


def award_for_stat(
    db: Session, user_id: uuid.UUID, stat_type: str, new_value: int, now: Optional[datetime] = None
) -> List[UserAchievement]:
    """Earn every matching achievement; runs inside the caller's transaction"""
    now = as_utc(now) or utcnow()
    candidates = (
        db.query(Achievement)
        .filter(
            Achievement.active.is_(True),
            Achievement.trigger_type == stat_type,
            Achievement.trigger_value <= new_value,
        )
        .order_by(Achievement.trigger_value, Achievement.id)
        .all()
    )

    newly_earned = []
    for achievement in candidates:
        row = _user_achievement(db, user_id, achievement.id)
        if row.earned:
            continue
        if _earn(db, row, now):
            newly_earned.append(row)
            logger.transition(
                LogCategory.ACHIEVEMENT,
                "user_achievement",
                achievement.id,
                "unearned",
                "earned",
                user_id=user_id,
                extra={"trigger_type": stat_type, "trigger_value": achievement.trigger_value, "value": new_value},
            )
    return newly_earned


def evaluate_triggers(
    db: Session,
    user_id: uuid.UUID,
    stat_type: str,
    new_value: int,
    now: Optional[datetime] = None,
    timeout: Optional[float] = None,
) -> List[UserAchievement]:
    """
    Evaluate achievement triggers for a statistic value.

    Safe to call repeatedly with the same or lower values: nothing is ever
    un-earned and a re-delivered call returns an empty list.
    """
    with store_transaction(db, f"evaluate triggers {stat_type}", timeout):
        require(db.get(User, user_id), "user", user_id)
        return award_for_stat(db, user_id, stat_type, new_value, now=now)


def create_achievement(
    db: Session,
    name: str,
    trigger_type: str = "manual",
    trigger_value: int = 1,
    description: Optional[str] = None,
    icon: Optional[str] = None,
    active: bool = True,
) -> Achievement:
    if trigger_value < 0:
        raise InvalidInput("trigger_value must be non-negative", entity="achievement", key=name)
    with store_transaction(db, "create achievement"):
        achievement = Achievement(
            name=name,
            description=description,
            icon=icon,
            trigger_type=trigger_type,
            trigger_value=trigger_value,
            active=active,
        )
        db.add(achievement)
    return achievement


def assign_achievement(db: Session, user_id: uuid.UUID, achievement_id: uuid.UUID) -> UserAchievement:
    """Show an achievement on the user's board without earning it"""
    with store_transaction(db, "assign achievement"):
        require(db.get(User, user_id), "user", user_id)
        require(db.get(Achievement, achievement_id), "achievement", achievement_id)
        return _user_achievement(db, user_id, achievement_id)


def earn_achievement(
    db: Session, user_id: uuid.UUID, achievement_id: uuid.UUID, now: Optional[datetime] = None
) -> UserAchievement:
    """Manual grant with the same once-only rule as triggered earns"""
    now = as_utc(now) or utcnow()
    with store_transaction(db, "earn achievement"):
        require(db.get(User, user_id), "user", user_id)
        require(db.get(Achievement, achievement_id), "achievement", achievement_id)
        row = _user_achievement(db, user_id, achievement_id)
        if not row.earned and _earn(db, row, now):
            logger.transition(
                LogCategory.ACHIEVEMENT, "user_achievement", achievement_id, "unearned", "earned", user_id=user_id
            )
    return row


def get_user_achievements(db: Session, user_id: uuid.UUID, earned_only: bool = False) -> List[UserAchievement]:
    query = (
        db.query(UserAchievement)
        .options(joinedload(UserAchievement.achievement))
        .filter(UserAchievement.user_id == user_id)
    )
    if earned_only:
        query = query.filter(UserAchievement.earned.is_(True))
    return query.order_by(UserAchievement.earned_at).all()
