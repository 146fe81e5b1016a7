"""
Progress aggregator

Lesson-level completion lives in UserLessonProgress. The per-course
CourseProgress row is derived from it and is only written here, under a row
lock, so concurrent lesson updates for one (user, course) serialize.
"""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from models import Course, CourseProgress, Lesson, Module, StatType, User, UserLessonProgress, utcnow, as_utc
from services import stats
from utils.error_handling import InvalidInput, insert_or_get, require, store_transaction
from utils.structured_logging import get_logger, LogCategory

logger = get_logger("services.progress")


def percentage(completed: int, total: int) -> float:
    if total <= 0:
        return 0.0
    return min(100.0 * completed / total, 100.0)


def _course_of(db: Session, lesson: Lesson) -> uuid.UUID:
    return db.query(Module.course_id).filter(Module.id == lesson.module_id).scalar()


def _lock_course_progress(db: Session, user_id: uuid.UUID, course_id: uuid.UUID, now: datetime) -> CourseProgress:
    row, _ = insert_or_get(
        db,
        CourseProgress(user_id=user_id, course_id=course_id, started_at=now, last_accessed=now),
        lambda: db.query(CourseProgress)
        .filter(CourseProgress.user_id == user_id, CourseProgress.course_id == course_id)
        .populate_existing()
        .with_for_update()
        .first(),
    )
    return row


def _count_lessons(db: Session, course_id: uuid.UUID) -> int:
    return (
        db.query(func.count(Lesson.id))
        .join(Module, Lesson.module_id == Module.id)
        .filter(Module.course_id == course_id)
        .scalar()
    )


def _count_completed(db: Session, user_id: uuid.UUID, course_id: uuid.UUID) -> int:
    return (
        db.query(func.count(UserLessonProgress.id))
        .join(Lesson, UserLessonProgress.lesson_id == Lesson.id)
        .join(Module, Lesson.module_id == Module.id)
        .filter(
            UserLessonProgress.user_id == user_id,
            UserLessonProgress.is_completed.is_(True),
            Module.course_id == course_id,
        )
        .scalar()
    )


def _derive(db: Session, row: CourseProgress, now: datetime) -> bool:
    """Refresh the summary; returns True when the course just hit 100% for the first time"""
    previous = row.progress_percentage
    row.total_lessons = _count_lessons(db, row.course_id)
    row.completed_lessons = _count_completed(db, row.user_id, row.course_id)
    row.progress_percentage = percentage(row.completed_lessons, row.total_lessons)
    row.last_accessed = now

    if previous != row.progress_percentage:
        logger.transition(
            LogCategory.PROGRESS,
            "course_progress",
            row.course_id,
            previous,
            row.progress_percentage,
            user_id=row.user_id,
        )

    if row.progress_percentage >= 100.0 and row.completed_at is None:
        row.completed_at = now
        return True
    return False


def record_lesson_progress(
    db: Session,
    user_id: uuid.UUID,
    lesson_id: uuid.UUID,
    completed: bool,
    fraction: float = 0.0,
    now: Optional[datetime] = None,
    timeout: Optional[float] = None,
) -> CourseProgress:
    """
    Record a lesson progress report and re-derive the course summary.

    Completion is sticky and the stored fraction only grows, so replays and
    out-of-order reports converge to the same state.
    """
    if fraction is None or not 0.0 <= fraction <= 1.0:
        raise InvalidInput("fraction must be between 0 and 1", entity="lesson", key=lesson_id)
    now = as_utc(now) or utcnow()

    with store_transaction(db, "record lesson progress", timeout):
        require(db.get(User, user_id), "user", user_id)
        lesson = require(db.get(Lesson, lesson_id), "lesson", lesson_id)
        course_id = _course_of(db, lesson)

        row = _lock_course_progress(db, user_id, course_id, now)

        lesson_row, _ = insert_or_get(
            db,
            UserLessonProgress(user_id=user_id, lesson_id=lesson_id, started_at=now, last_accessed=now),
            lambda: db.query(UserLessonProgress)
            .filter(UserLessonProgress.user_id == user_id, UserLessonProgress.lesson_id == lesson_id)
            .first(),
        )
        first_completion = completed and not lesson_row.is_completed

        lesson_row.progress = max(lesson_row.progress or 0.0, fraction)
        lesson_row.last_accessed = now
        if completed:
            lesson_row.is_completed = True
            lesson_row.progress = 1.0
            if lesson_row.completed_at is None:
                lesson_row.completed_at = now
        db.flush()

        course_done = _derive(db, row, now)

        if first_completion:
            stats.bump_and_evaluate(
                db, user_id, StatType.LESSONS_COMPLETED, 1, idempotency_key=f"lesson:{lesson_id}", now=now
            )
        if course_done:
            stats.bump_and_evaluate(
                db, user_id, StatType.COURSES_COMPLETED, 1, idempotency_key=f"course:{course_id}", now=now
            )
    return row


def recompute_course_progress(
    db: Session,
    user_id: uuid.UUID,
    course_id: uuid.UUID,
    now: Optional[datetime] = None,
    timeout: Optional[float] = None,
) -> CourseProgress:
    """Reconcile the summary after lessons were added to or removed from a course"""
    now = as_utc(now) or utcnow()
    with store_transaction(db, "recompute course progress", timeout):
        require(db.get(User, user_id), "user", user_id)
        require(db.get(Course, course_id), "course", course_id)
        row = _lock_course_progress(db, user_id, course_id, now)
        if _derive(db, row, now):
            stats.bump_and_evaluate(
                db, user_id, StatType.COURSES_COMPLETED, 1, idempotency_key=f"course:{course_id}", now=now
            )
    return row


def get_course_progress(db: Session, user_id: uuid.UUID, course_id: uuid.UUID) -> Optional[CourseProgress]:
    return (
        db.query(CourseProgress)
        .filter(CourseProgress.user_id == user_id, CourseProgress.course_id == course_id)
        .first()
    )


def get_lesson_progress(db: Session, user_id: uuid.UUID, lesson_id: uuid.UUID) -> Optional[UserLessonProgress]:
    return (
        db.query(UserLessonProgress)
        .filter(UserLessonProgress.user_id == user_id, UserLessonProgress.lesson_id == lesson_id)
        .first()
    )
