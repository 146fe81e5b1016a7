"""
Lesson player progress reports
"""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from db import get_db
from schemas.api_models import CourseProgressResponse, LessonProgressRequest
from services.progress import record_lesson_progress

router = APIRouter()


@router.post("/lessons", response_model=CourseProgressResponse, summary="Record lesson progress")
def report_lesson_progress(report: LessonProgressRequest, db: Session = Depends(get_db)):
    """Returns the re-derived course summary"""
    return record_lesson_progress(db, report.user_id, report.lesson_id, report.completed, report.fraction)
