"""
User statistic counters

Each counter is an append-only log of positive deltas (UserStatEvent) whose
fold is the current value. UserStat holds that value, kept in step with an
atomic ``value = value + delta`` so concurrent increments never lose updates.
An optional idempotency key makes a retried increment a no-op.
"""

import uuid
from typing import Iterable, Optional, Tuple

from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from models import UserStat, UserStatEvent, User, StatType, utcnow
from services import achievements
from utils.error_handling import InvalidInput, insert_or_get, require, store_transaction
from utils.structured_logging import get_logger, LogCategory

logger = get_logger("services.stats")


def fold_stat_events(deltas: Iterable[int], initial: int = 0) -> int:
    """Pure reducer: current counter value from its event deltas"""
    value = initial
    for delta in deltas:
        value += delta
    return value


def get_stat(db: Session, user_id: uuid.UUID, stat_type: str) -> int:
    value = (
        db.query(UserStat.value).filter(UserStat.user_id == user_id, UserStat.stat_type == stat_type).scalar()
    )
    return value or 0


def get_user_stats(db: Session, user_id: uuid.UUID) -> dict:
    rows = db.query(UserStat).filter(UserStat.user_id == user_id).all()
    return {row.stat_type: row.value for row in rows}


def add_to_stat(
    db: Session, user_id: uuid.UUID, stat_type: str, delta: int = 1, idempotency_key: Optional[str] = None
) -> Tuple[int, bool]:
    """
    Append an event and add it to the materialized value. Runs inside the
    caller's transaction.

    Returns (value, applied); applied is False when the key was seen before.
    """
    if delta <= 0:
        raise InvalidInput("Stat delta must be positive", entity="user_stat", key=stat_type)

    if idempotency_key is not None:
        try:
            with db.begin_nested():
                db.add(UserStatEvent(user_id=user_id, stat_type=stat_type, delta=delta, idempotency_key=idempotency_key))
        except IntegrityError:
            logger.debug(
                f"Duplicate stat event {idempotency_key} ignored",
                category=LogCategory.STATS,
                user_id=user_id,
                key=stat_type,
            )
            return get_stat(db, user_id, stat_type), False
    else:
        db.add(UserStatEvent(user_id=user_id, stat_type=stat_type, delta=delta))
        db.flush()

    insert_or_get(
        db,
        UserStat(user_id=user_id, stat_type=stat_type, value=0),
        lambda: db.query(UserStat).filter(UserStat.user_id == user_id, UserStat.stat_type == stat_type).first(),
    )

    db.execute(
        update(UserStat)
        .where(UserStat.user_id == user_id, UserStat.stat_type == stat_type)
        .values(value=UserStat.value + delta, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    value = get_stat(db, user_id, stat_type)
    logger.info(
        f"{stat_type} += {delta} -> {value}", category=LogCategory.STATS, user_id=user_id, key=stat_type
    )
    return value, True


def bump_and_evaluate(
    db: Session, user_id: uuid.UUID, stat_type: str, delta: int = 1, idempotency_key: Optional[str] = None, now=None
) -> Tuple[int, list]:
    """add_to_stat followed by trigger evaluation, inside the caller's transaction"""
    value, applied = add_to_stat(db, user_id, stat_type, delta, idempotency_key)
    earned = achievements.award_for_stat(db, user_id, stat_type, value, now=now) if applied else []
    return value, earned


def increment_stat(
    db: Session,
    user_id: uuid.UUID,
    stat_type: str,
    delta: int = 1,
    idempotency_key: Optional[str] = None,
    evaluate: bool = True,
    timeout: Optional[float] = None,
) -> int:
    """Increment a counter and, unless evaluate is False, its achievement triggers atomically"""
    with store_transaction(db, f"increment {stat_type}", timeout):
        require(db.get(User, user_id), "user", user_id)
        if evaluate:
            value, _ = bump_and_evaluate(db, user_id, stat_type, delta, idempotency_key)
        else:
            value, _ = add_to_stat(db, user_id, stat_type, delta, idempotency_key)
    return value


def record_login(db: Session, user_id: uuid.UUID, timeout: Optional[float] = None) -> int:
    """Called by the session layer on every successful login"""
    return increment_stat(db, user_id, StatType.LOGIN_COUNT, timeout=timeout)


def rebuild_stat(db: Session, user_id: uuid.UUID, stat_type: str, timeout: Optional[float] = None) -> int:
    """Reset the materialized value to the fold of the event log"""
    with store_transaction(db, f"rebuild {stat_type}", timeout):
        deltas = (
            db.query(UserStatEvent.delta)
            .filter(UserStatEvent.user_id == user_id, UserStatEvent.stat_type == stat_type)
            .with_for_update()
            .all()
        )
        value = fold_stat_events(d for (d,) in deltas)
        row, _ = insert_or_get(
            db,
            UserStat(user_id=user_id, stat_type=stat_type, value=value),
            lambda: db.query(UserStat)
            .filter(UserStat.user_id == user_id, UserStat.stat_type == stat_type)
            .populate_existing()
            .with_for_update()
            .first(),
        )
        if row.value != value:
            logger.warning(
                f"{stat_type} drifted: {row.value} -> {value}",
                category=LogCategory.STATS,
                user_id=user_id,
                key=stat_type,
            )
            row.value = value
    return value


def event_total(db: Session, user_id: uuid.UUID, stat_type: str) -> int:
    total = (
        db.query(func.coalesce(func.sum(UserStatEvent.delta), 0))
        .filter(UserStatEvent.user_id == user_id, UserStatEvent.stat_type == stat_type)
        .scalar()
    )
    return int(total)
