import pytest
from sqlalchemy.exc import IntegrityError

from models import (
    CourseProgress,
    Enrollment,
    Payment,
    PaymentStatus,
    SubscriptionStatus,
    User,
    UserLessonProgress,
    UserStat,
)


class TestUserModel:
    """Test User model operations"""

    def test_create_user(self, test_db, make_user):
        user = make_user(name="Ada", email="ada@example.com")

        assert user.id is not None
        assert user.verified is False
        assert user.subscription_expires_at is None

    def test_user_unique_email(self, test_db, make_user):
        make_user(email="same@example.com")

        test_db.add(User(name="Other", email="same@example.com", password="x"))
        with pytest.raises(IntegrityError):
            test_db.commit()


class TestStatusEnums:
    def test_payment_terminal_states(self):
        assert not PaymentStatus.PENDING.is_terminal
        assert PaymentStatus.COMPLETED.is_terminal
        assert PaymentStatus.FAILED.is_terminal

    def test_subscription_terminal_states(self):
        assert not SubscriptionStatus.ACTIVE.is_terminal
        assert SubscriptionStatus.EXPIRED.is_terminal
        assert SubscriptionStatus.CANCELED.is_terminal


class TestConstraints:
    def test_payment_needs_exactly_one_target(self, test_db, make_user, make_course, make_plan):
        user = make_user()
        course, _ = make_course()
        plan = make_plan()

        test_db.add(
            Payment(
                user_id=user.id,
                course_id=course.id,
                plan_id=plan.id,
                amount=100,
                payment_method="paypal",
                transaction_id="both",
            )
        )
        with pytest.raises(IntegrityError):
            test_db.commit()

    def test_enrollment_unique_per_user_course(self, test_db, make_user, make_course):
        user = make_user()
        course, _ = make_course()
        test_db.add(Enrollment(user_id=user.id, course_id=course.id))
        test_db.commit()

        test_db.add(Enrollment(user_id=user.id, course_id=course.id))
        with pytest.raises(IntegrityError):
            test_db.commit()

    def test_progress_percentage_range(self, test_db, make_user, make_course):
        user = make_user()
        course, _ = make_course()
        test_db.add(CourseProgress(user_id=user.id, course_id=course.id, progress_percentage=120.0))
        with pytest.raises(IntegrityError):
            test_db.commit()


class TestCascades:
    def test_deleting_user_removes_owned_rows(self, test_db, make_user, make_course):
        user = make_user()
        course, lessons = make_course()
        test_db.add_all(
            [
                Enrollment(user_id=user.id, course_id=course.id),
                UserLessonProgress(user_id=user.id, lesson_id=lessons[0].id, is_completed=True),
                UserStat(user_id=user.id, stat_type="login_count", value=3),
            ]
        )
        test_db.commit()

        test_db.delete(user)
        test_db.commit()

        assert test_db.query(Enrollment).count() == 0
        assert test_db.query(UserLessonProgress).count() == 0
        assert test_db.query(UserStat).count() == 0

    def test_deleting_course_removes_lesson_progress(self, test_db, make_user, make_course):
        user = make_user()
        course, lessons = make_course()
        test_db.add(UserLessonProgress(user_id=user.id, lesson_id=lessons[0].id))
        test_db.commit()

        test_db.delete(course)
        test_db.commit()

        assert test_db.query(UserLessonProgress).count() == 0
