"""
Course content as one ordered list of units

Courses carry content in two shapes: the module/lesson tree and the older
flat video list. Each shape is a source yielding ContentUnits; a course's
content is the concatenation of its sources.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Sequence

from sqlalchemy import func
from sqlalchemy.orm import Session

from models import Course, CourseComment, CourseRating, Lesson, LessonComment, Module, User, Video, as_utc, utcnow
from utils.error_handling import InvalidInput, NotFoundError, insert_or_get, require, store_transaction
from utils.structured_logging import get_logger, LogCategory

logger = get_logger("services.content")


@dataclass(frozen=True)
class ContentUnit:
    course_id: uuid.UUID
    position: int
    kind: str
    ref_id: uuid.UUID
    title: str


class ContentSource:
    kind = "unit"

    def units(self, db: Session, course_id: uuid.UUID) -> List[ContentUnit]:
        raise NotImplementedError


class ModuleLessonSource(ContentSource):
    """Lessons in module order, then lesson order"""

    kind = "lesson"

    def units(self, db: Session, course_id: uuid.UUID) -> List[ContentUnit]:
        lessons = (
            db.query(Lesson)
            .join(Module, Lesson.module_id == Module.id)
            .filter(Module.course_id == course_id)
            .order_by(Module.order, Lesson.order)
            .all()
        )
        return [
            ContentUnit(course_id=course_id, position=i, kind=self.kind, ref_id=lesson.id, title=lesson.title)
            for i, lesson in enumerate(lessons)
        ]


class LegacyVideoSource(ContentSource):
    kind = "video"

    def units(self, db: Session, course_id: uuid.UUID) -> List[ContentUnit]:
        videos = db.query(Video).filter(Video.course_id == course_id).order_by(Video.order).all()
        return [
            ContentUnit(course_id=course_id, position=i, kind=self.kind, ref_id=video.id, title=video.title)
            for i, video in enumerate(videos)
        ]


DEFAULT_SOURCES = (ModuleLessonSource(), LegacyVideoSource())


def course_content(
    db: Session, course_id: uuid.UUID, sources: Optional[Sequence[ContentSource]] = None
) -> List[ContentUnit]:
    """All units of a course, numbered 0..n-1 across sources"""
    require(db.get(Course, course_id), "course", course_id)
    combined = []
    for source in sources or DEFAULT_SOURCES:
        for unit in source.units(db, course_id):
            combined.append(
                ContentUnit(
                    course_id=course_id, position=len(combined), kind=unit.kind, ref_id=unit.ref_id, title=unit.title
                )
            )
    return combined


def rate_course(db: Session, user_id: uuid.UUID, course_id: uuid.UUID, rating: int) -> Course:
    """Store the user's 1-5 rating and refresh the course's average"""
    if not isinstance(rating, int) or not 1 <= rating <= 5:
        raise InvalidInput("Rating must be between 1 and 5", entity="course_rating", key=course_id)

    with store_transaction(db, "rate course"):
        require(db.get(User, user_id), "user", user_id)
        course = require(db.get(Course, course_id), "course", course_id)
        row, created = insert_or_get(
            db,
            CourseRating(course_id=course_id, user_id=user_id, rating=rating),
            lambda: db.query(CourseRating)
            .filter(CourseRating.course_id == course_id, CourseRating.user_id == user_id)
            .first(),
        )
        if not created:
            row.rating = rating
            row.updated_at = utcnow()
        db.flush()
        average = db.query(func.avg(CourseRating.rating)).filter(CourseRating.course_id == course_id).scalar()
        course.rating = round(float(average), 2)
        logger.info(
            f"Course rated {rating}, average {course.rating}",
            category=LogCategory.SYSTEM,
            entity="course",
            key=course_id,
            user_id=user_id,
        )
    return course


def _clean_comment(content: Optional[str], entity: str, key: uuid.UUID) -> str:
    content = (content or "").strip()
    if not content:
        raise InvalidInput("Comment must not be empty", entity=entity, key=key)
    return content


def create_lesson_comment(
    db: Session, user_id: uuid.UUID, lesson_id: uuid.UUID, content: str, now: Optional[datetime] = None
) -> LessonComment:
    content = _clean_comment(content, "lesson_comment", lesson_id)
    with store_transaction(db, "create lesson comment"):
        require(db.get(User, user_id), "user", user_id)
        require(db.get(Lesson, lesson_id), "lesson", lesson_id)
        comment = LessonComment(
            lesson_id=lesson_id, user_id=user_id, content=content, created_at=as_utc(now) or utcnow()
        )
        db.add(comment)
        db.flush()
    return comment


def get_lesson_comments(db: Session, lesson_id: uuid.UUID) -> List[LessonComment]:
    """Comments on a lesson, oldest first"""
    require(db.get(Lesson, lesson_id), "lesson", lesson_id)
    return (
        db.query(LessonComment)
        .filter(LessonComment.lesson_id == lesson_id)
        .order_by(LessonComment.created_at, LessonComment.id)
        .all()
    )


def create_course_comment(
    db: Session, user_id: uuid.UUID, course_id: uuid.UUID, content: str, now: Optional[datetime] = None
) -> CourseComment:
    content = _clean_comment(content, "course_comment", course_id)
    with store_transaction(db, "create course comment"):
        require(db.get(User, user_id), "user", user_id)
        require(db.get(Course, course_id), "course", course_id)
        comment = CourseComment(
            course_id=course_id, user_id=user_id, content=content, created_at=as_utc(now) or utcnow()
        )
        db.add(comment)
        db.flush()
    return comment


def get_course_comments(db: Session, course_id: uuid.UUID) -> List[CourseComment]:
    require(db.get(Course, course_id), "course", course_id)
    return (
        db.query(CourseComment)
        .filter(CourseComment.course_id == course_id)
        .order_by(CourseComment.created_at, CourseComment.id)
        .all()
    )


def delete_comment(db: Session, user_id: uuid.UUID, comment_id: uuid.UUID) -> None:
    """
    Delete a lesson or course comment written by user_id.

    A comment that does not exist and one written by someone else both
    raise NotFoundError.
    """
    with store_transaction(db, "delete comment"):
        for model in (LessonComment, CourseComment):
            deleted = (
                db.query(model)
                .filter(model.id == comment_id, model.user_id == user_id)
                .delete(synchronize_session=False)
            )
            if deleted:
                logger.info(
                    "Comment deleted",
                    category=LogCategory.SYSTEM,
                    entity=model.__tablename__,
                    key=comment_id,
                    user_id=user_id,
                )
                return
        raise NotFoundError("comment not found", entity="comment", key=comment_id)
