"""
Integration tests for the progress aggregator
"""

import itertools
import uuid
from datetime import datetime, timedelta

import pytest

from models import Achievement, CourseProgress, Lesson, Module, LessonType, StatType, UserAchievement, UserLessonProgress
from services.progress import (
    get_course_progress,
    get_lesson_progress,
    recompute_course_progress,
    record_lesson_progress,
)
from services.stats import get_stat
from utils.error_handling import InvalidInput, NotFoundError

T0 = datetime(2026, 3, 1, 9, 0, 0)


class TestTwoLessonCourse:
    def test_completing_both_lessons(self, test_db, make_user, make_course):
        user = make_user()
        course, (first, second) = make_course(lessons_per_module=(2,))
        achievement = Achievement(name="Graduate", trigger_type=StatType.COURSES_COMPLETED, trigger_value=1)
        test_db.add(achievement)
        test_db.commit()

        progress = record_lesson_progress(test_db, user.id, first.id, True, 1.0, now=T0)
        assert progress.progress_percentage == 50.0
        assert progress.completed_lessons == 1
        assert progress.total_lessons == 2
        assert progress.completed_at is None

        done_at = T0 + timedelta(minutes=20)
        progress = record_lesson_progress(test_db, user.id, second.id, True, 1.0, now=done_at)
        assert progress.progress_percentage == 100.0
        assert progress.completed_at == done_at
        assert get_stat(test_db, user.id, StatType.LESSONS_COMPLETED) == 2
        assert get_stat(test_db, user.id, StatType.COURSES_COMPLETED) == 1

        earned = test_db.query(UserAchievement).filter(UserAchievement.user_id == user.id).one()
        assert earned.achievement_id == achievement.id
        assert earned.earned is True

    def test_replays_do_not_double_count(self, test_db, make_user, make_course):
        user = make_user()
        course, (first, second) = make_course(lessons_per_module=(2,))

        for _ in range(3):
            record_lesson_progress(test_db, user.id, first.id, True, 1.0, now=T0)
            record_lesson_progress(test_db, user.id, second.id, True, 1.0, now=T0 + timedelta(hours=1))

        progress = get_course_progress(test_db, user.id, course.id)
        assert progress.progress_percentage == 100.0
        assert progress.completed_at == T0 + timedelta(hours=1)
        assert get_stat(test_db, user.id, StatType.LESSONS_COMPLETED) == 2
        assert get_stat(test_db, user.id, StatType.COURSES_COMPLETED) == 1


class TestOrderIndependence:
    @pytest.mark.parametrize(
        "reports",
        list(itertools.permutations([(False, 0.5), (True, 0.2), (False, 0.3)])),
    )
    def test_any_order_converges(self, test_db, make_user, make_course, reports):
        user = make_user()
        course, (first, _) = make_course(lessons_per_module=(2,))

        for completed, fraction in reports:
            record_lesson_progress(test_db, user.id, first.id, completed, fraction, now=T0)

        lesson_row = get_lesson_progress(test_db, user.id, first.id)
        assert lesson_row.is_completed is True
        assert lesson_row.progress == 1.0
        assert get_course_progress(test_db, user.id, course.id).progress_percentage == 50.0

    def test_fraction_keeps_maximum(self, test_db, make_user, make_course):
        user = make_user()
        course, (first, _) = make_course()

        record_lesson_progress(test_db, user.id, first.id, False, 0.7, now=T0)
        record_lesson_progress(test_db, user.id, first.id, False, 0.2, now=T0)

        assert get_lesson_progress(test_db, user.id, first.id).progress == 0.7
        assert get_course_progress(test_db, user.id, course.id).progress_percentage == 0.0

    def test_completion_time_is_not_overwritten(self, test_db, make_user, make_course):
        user = make_user()
        course, (first, _) = make_course()

        record_lesson_progress(test_db, user.id, first.id, True, 1.0, now=T0)
        record_lesson_progress(test_db, user.id, first.id, True, 1.0, now=T0 + timedelta(days=1))

        assert get_lesson_progress(test_db, user.id, first.id).completed_at == T0


class TestCourseShape:
    def test_lessons_across_modules(self, test_db, make_user, make_course):
        user = make_user()
        course, lessons = make_course(lessons_per_module=(1, 3))

        record_lesson_progress(test_db, user.id, lessons[0].id, True, 1.0)
        progress = record_lesson_progress(test_db, user.id, lessons[3].id, True, 1.0)

        assert progress.total_lessons == 4
        assert progress.completed_lessons == 2
        assert progress.progress_percentage == 50.0

    def test_other_users_do_not_count(self, test_db, make_user, make_course):
        alice, bob = make_user(name="Alice"), make_user(name="Bob")
        course, (first, second) = make_course()

        record_lesson_progress(test_db, alice.id, first.id, True, 1.0)
        progress = record_lesson_progress(test_db, bob.id, second.id, True, 1.0)

        assert progress.completed_lessons == 1
        assert progress.progress_percentage == 50.0

    def test_authoring_flag_is_ignored(self, test_db, make_user, make_course):
        user = make_user()
        course, (first, second) = make_course()
        second.completed = True
        test_db.commit()

        progress = record_lesson_progress(test_db, user.id, first.id, True, 1.0)

        assert progress.progress_percentage == 50.0

    def test_recompute_after_new_lesson(self, test_db, make_user, make_course):
        user = make_user()
        course, (first, second) = make_course()
        record_lesson_progress(test_db, user.id, first.id, True, 1.0)
        record_lesson_progress(test_db, user.id, second.id, True, 1.0)

        module = test_db.query(Module).filter(Module.course_id == course.id).one()
        test_db.add(Lesson(module_id=module.id, title="Bonus", type=LessonType.QUIZ, order=3))
        test_db.commit()

        progress = recompute_course_progress(test_db, user.id, course.id)

        assert progress.total_lessons == 3
        assert progress.progress_percentage == pytest.approx(200.0 / 3)
        # Reaching 100% once is history; it stays recorded
        assert progress.completed_at is not None
        assert get_stat(test_db, user.id, StatType.COURSES_COMPLETED) == 1

    def test_course_without_lessons(self, test_db, make_user, make_course):
        user = make_user()
        course, _ = make_course(lessons_per_module=())

        progress = recompute_course_progress(test_db, user.id, course.id)

        assert progress.total_lessons == 0
        assert progress.progress_percentage == 0.0
        assert progress.completed_at is None


class TestValidation:
    @pytest.mark.parametrize("fraction", [-0.1, 1.5])
    def test_fraction_out_of_range(self, test_db, make_user, make_course, fraction):
        user = make_user()
        course, (first, _) = make_course()

        with pytest.raises(InvalidInput):
            record_lesson_progress(test_db, user.id, first.id, False, fraction)

        assert test_db.query(UserLessonProgress).count() == 0
        assert get_course_progress(test_db, user.id, course.id) is None

    def test_unknown_lesson(self, test_db, make_user):
        user = make_user()
        with pytest.raises(NotFoundError):
            record_lesson_progress(test_db, user.id, uuid.uuid4(), True, 1.0)

    def test_recompute_unknown_course(self, test_db, make_user):
        user = make_user()
        missing = uuid.uuid4()

        with pytest.raises(NotFoundError) as exc_info:
            recompute_course_progress(test_db, user.id, missing)

        assert exc_info.value.entity == "course"
        assert exc_info.value.key == missing
        assert test_db.query(CourseProgress).count() == 0
