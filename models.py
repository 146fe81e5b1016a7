from sqlalchemy import Column, Integer, String, DateTime, Date, ForeignKey, Enum, Boolean, JSON, BigInteger, Text, Float
from sqlalchemy import UniqueConstraint, CheckConstraint, Index, Uuid, text
from sqlalchemy.orm import declarative_base, relationship
import enum
from datetime import datetime, timezone
import uuid

Base = declarative_base()


def utcnow() -> datetime:
    """Naive UTC timestamp; every DateTime column stores naive UTC"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_utc(value: datetime) -> datetime:
    """Normalize an aware datetime to naive UTC, pass naive values through"""
    if value is not None and value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


# Enums


class UserRole(enum.Enum):
    ADMIN = "admin"
    USER = "user"


class CourseLevel(enum.Enum):
    BASIC = "basic"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"


class CourseCategory(enum.Enum):
    BASIC = "basic"
    PREMIUM = "premium"


class LessonType(enum.Enum):
    VIDEO = "video"
    EXERCISE = "exercise"
    QUIZ = "quiz"


class PaymentStatus(enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not PaymentStatus.PENDING


class SubscriptionStatus(enum.Enum):
    ACTIVE = "active"
    EXPIRED = "expired"
    CANCELED = "canceled"

    @property
    def is_terminal(self) -> bool:
        return self is not SubscriptionStatus.ACTIVE


class StatType:
    """Well-known counter names; achievements may use any string"""

    LOGIN_COUNT = "login_count"
    LESSONS_COMPLETED = "lessons_completed"
    COURSES_COMPLETED = "courses_completed"
    COURSES_PURCHASED = "courses_purchased"
    SUBSCRIPTIONS_PURCHASED = "subscriptions_purchased"


# Users


class User(Base):
    __tablename__ = "users"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String(100), nullable=False, index=True)
    email = Column(String(255), nullable=False, unique=True, index=True)
    password = Column(String(255), nullable=False)  # credential hash
    verified = Column(Boolean, default=False, nullable=False)
    role = Column(Enum(UserRole, values_callable=_enum_values, name="user_role"), default=UserRole.USER, nullable=False)

    verification_token = Column(String(255), nullable=True)
    token_expiry = Column(DateTime, nullable=True)

    # Extended profile
    phone = Column(String(32), nullable=True)
    location = Column(String(255), nullable=True)
    bio = Column(Text, nullable=True)
    birth_date = Column(Date, nullable=True)
    profile_image_url = Column(Text, nullable=True)
    subscription_expires_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    settings = relationship("UserSettings", back_populates="user", uselist=False, passive_deletes=True)
    enrollments = relationship("Enrollment", back_populates="user", passive_deletes=True)
    payments = relationship("Payment", back_populates="user", passive_deletes=True)
    subscriptions = relationship("Subscription", back_populates="user", passive_deletes=True)
    stats = relationship("UserStat", back_populates="user", passive_deletes=True)
    achievements = relationship("UserAchievement", back_populates="user", passive_deletes=True)
    notifications = relationship("Notification", back_populates="user", passive_deletes=True)


class UserSettings(Base):
    __tablename__ = "user_settings"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True)
    email_notifications = Column(Boolean, default=True, nullable=False)
    push_notifications = Column(Boolean, default=True, nullable=False)
    course_reminders = Column(Boolean, default=True, nullable=False)
    new_content = Column(Boolean, default=True, nullable=False)
    two_factor_enabled = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    user = relationship("User", back_populates="settings")


# Catalogue and content


class Course(Base):
    __tablename__ = "courses"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    title = Column(String(255), nullable=False, index=True)
    description = Column(Text, nullable=False, default="")
    price = Column(BigInteger, nullable=False, default=0)  # minor units
    long_description = Column(Text, nullable=True)
    level = Column(
        Enum(CourseLevel, values_callable=_enum_values, name="course_level"), default=CourseLevel.BASIC, nullable=False
    )
    category = Column(
        Enum(CourseCategory, values_callable=_enum_values, name="course_category"),
        default=CourseCategory.BASIC,
        nullable=False,
    )
    duration = Column(String(50), nullable=True)
    features = Column(JSON, default=list, nullable=True)
    image = Column(Text, nullable=True)

    # Denormalized summary
    students = Column(Integer, default=0, nullable=False)
    rating = Column(Float, default=5.0, nullable=False)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    modules = relationship("Module", order_by="Module.order", back_populates="course", passive_deletes=True)
    videos = relationship("Video", order_by="Video.order", back_populates="course", passive_deletes=True)


class Video(Base):
    """Legacy flat content list, kept alongside the module/lesson tree"""

    __tablename__ = "videos"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    course_id = Column(Uuid, ForeignKey("courses.id", ondelete="CASCADE"), nullable=False, index=True)
    order = Column(Integer, nullable=False)
    title = Column(Text, nullable=False)
    url = Column(Text, nullable=False)
    duration = Column(String(50), nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    course = relationship("Course", back_populates="videos")

    __table_args__ = (UniqueConstraint("course_id", "order", name="uq_video_order_per_course"),)


class Module(Base):
    __tablename__ = "modules"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    course_id = Column(Uuid, ForeignKey("courses.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    order = Column(Integer, nullable=False)

    course = relationship("Course", back_populates="modules")
    lessons = relationship("Lesson", order_by="Lesson.order", back_populates="module", passive_deletes=True)

    __table_args__ = (UniqueConstraint("course_id", "order", name="uq_module_order_per_course"),)


class Lesson(Base):
    __tablename__ = "lessons"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    module_id = Column(Uuid, ForeignKey("modules.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    duration = Column(String(50), nullable=True)
    type = Column(Enum(LessonType, values_callable=_enum_values, name="lesson_type"), nullable=False)
    content_url = Column(Text, nullable=True)
    description = Column(Text, nullable=True)
    order = Column(Integer, nullable=False)
    # Content-authoring flag only; per-user completion lives in UserLessonProgress
    completed = Column(Boolean, default=False, nullable=False)

    module = relationship("Module", back_populates="lessons")

    __table_args__ = (UniqueConstraint("module_id", "order", name="uq_lesson_order_per_module"),)


# Purchases and subscriptions


class Enrollment(Base):
    __tablename__ = "user_courses"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    course_id = Column(Uuid, ForeignKey("courses.id", ondelete="CASCADE"), nullable=False)
    purchased_at = Column(DateTime, default=utcnow, nullable=False)

    user = relationship("User", back_populates="enrollments")
    course = relationship("Course")

    __table_args__ = (UniqueConstraint("user_id", "course_id", name="uq_user_course"),)


class SubscriptionPlan(Base):
    __tablename__ = "subscription_plans"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    price = Column(BigInteger, nullable=False)  # minor units
    duration_months = Column(Integer, nullable=False)
    processor_plan_id = Column(String(255), nullable=False, unique=True)
    active = Column(Boolean, default=True, nullable=False, index=True)
    features = Column(JSON, default=list, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (CheckConstraint("duration_months > 0", name="ck_plan_duration_positive"),)


class Payment(Base):
    __tablename__ = "payments"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    course_id = Column(Uuid, ForeignKey("courses.id", ondelete="CASCADE"), nullable=True)
    plan_id = Column(Uuid, ForeignKey("subscription_plans.id", ondelete="CASCADE"), nullable=True)
    amount = Column(BigInteger, nullable=False)  # minor units
    payment_method = Column(String(50), nullable=False)
    transaction_id = Column(String(255), nullable=False, unique=True)
    status = Column(
        Enum(PaymentStatus, values_callable=_enum_values, name="payment_status"),
        default=PaymentStatus.PENDING,
        nullable=False,
        index=True,
    )
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    user = relationship("User", back_populates="payments")
    course = relationship("Course")
    plan = relationship("SubscriptionPlan")

    __table_args__ = (
        CheckConstraint(
            "(course_id IS NOT NULL AND plan_id IS NULL) OR (course_id IS NULL AND plan_id IS NOT NULL)",
            name="ck_payment_single_target",
        ),
        CheckConstraint("amount >= 0", name="ck_payment_amount_non_negative"),
    )


class Subscription(Base):
    __tablename__ = "subscriptions"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    processor_subscription_id = Column(String(255), nullable=False, index=True)
    plan_id = Column(Uuid, ForeignKey("subscription_plans.id", ondelete="SET NULL"), nullable=True)
    status = Column(
        Enum(SubscriptionStatus, values_callable=_enum_values, name="subscription_status"),
        default=SubscriptionStatus.ACTIVE,
        nullable=False,
    )
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=True)
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    user = relationship("User", back_populates="subscriptions")
    plan = relationship("SubscriptionPlan")

    # Optimistic check: UPDATE ... WHERE version = :seen
    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index("idx_subscriptions_status_end", "status", "end_time"),
        # At most one active row per processor subscription; terminal rows may repeat
        Index(
            "uq_subscriptions_active_processor_id",
            "processor_subscription_id",
            unique=True,
            postgresql_where=text("status = 'active'"),
            sqlite_where=text("status = 'active'"),
        ),
    )

    @property
    def is_active(self) -> bool:
        return self.status is SubscriptionStatus.ACTIVE


# Progress


class CourseProgress(Base):
    __tablename__ = "course_progress"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    course_id = Column(Uuid, ForeignKey("courses.id", ondelete="CASCADE"), nullable=False)
    progress_percentage = Column(Float, default=0.0, nullable=False)
    total_lessons = Column(Integer, default=0, nullable=False)
    completed_lessons = Column(Integer, default=0, nullable=False)
    last_accessed = Column(DateTime, default=utcnow, nullable=False)
    started_at = Column(DateTime, default=utcnow, nullable=False)
    completed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "course_id", name="uq_course_progress_user_course"),
        CheckConstraint("progress_percentage >= 0 AND progress_percentage <= 100", name="ck_progress_range"),
    )


class UserLessonProgress(Base):
    __tablename__ = "user_lesson_progress"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    lesson_id = Column(Uuid, ForeignKey("lessons.id", ondelete="CASCADE"), nullable=False, index=True)
    is_completed = Column(Boolean, default=False, nullable=False)
    progress = Column(Float, default=0.0, nullable=False)
    started_at = Column(DateTime, default=utcnow, nullable=False)
    completed_at = Column(DateTime, nullable=True)
    last_accessed = Column(DateTime, default=utcnow, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    lesson = relationship("Lesson")

    __table_args__ = (UniqueConstraint("user_id", "lesson_id", name="uq_user_lesson_progress"),)


# Statistics and achievements


class UserStat(Base):
    """Materialized current value of a counter; always the fold of its events"""

    __tablename__ = "user_stats"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    stat_type = Column(String(50), nullable=False, index=True)
    value = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    user = relationship("User", back_populates="stats")

    __table_args__ = (UniqueConstraint("user_id", "stat_type", name="uq_user_stat"),)


class UserStatEvent(Base):
    """Append-only log of counter deltas"""

    __tablename__ = "user_stat_events"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    stat_type = Column(String(50), nullable=False)
    delta = Column(Integer, nullable=False)
    idempotency_key = Column(String(255), nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "stat_type", "idempotency_key", name="uq_stat_event_key"),
        Index("idx_stat_events_user_type", "user_id", "stat_type"),
        CheckConstraint("delta > 0", name="ck_stat_event_delta_positive"),
    )


class Achievement(Base):
    __tablename__ = "achievements"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    icon = Column(String(255), nullable=True)
    trigger_type = Column(String(50), nullable=False, default="manual")
    trigger_value = Column(Integer, nullable=False, default=1)
    active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (Index("idx_achievements_trigger", "trigger_type", "active"),)


class UserAchievement(Base):
    __tablename__ = "user_achievements"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    achievement_id = Column(Uuid, ForeignKey("achievements.id", ondelete="CASCADE"), nullable=False)
    earned = Column(Boolean, default=False, nullable=False)
    earned_at = Column(DateTime, nullable=True)

    user = relationship("User", back_populates="achievements")
    achievement = relationship("Achievement")

    __table_args__ = (UniqueConstraint("user_id", "achievement_id", name="uq_user_achievement"),)


# Notifications and credentials


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    sent_via = Column(String(50), nullable=False)
    sent_at = Column(DateTime, default=utcnow, nullable=False)
    read = Column(Boolean, default=False, nullable=False)

    user = relationship("User", back_populates="notifications")


class PasswordResetToken(Base):
    __tablename__ = "password_reset_tokens"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    token_hash = Column(String(255), nullable=False)
    version = Column(Integer, nullable=False, default=1)
    expires_at = Column(DateTime, nullable=False, index=True)
    used = Column(Boolean, default=False, nullable=False)
    used_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (UniqueConstraint("user_id", "version", name="uq_reset_token_version"),)


# Community


class CourseComment(Base):
    __tablename__ = "course_comments"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    course_id = Column(Uuid, ForeignKey("courses.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    content = Column(Text, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)


class LessonComment(Base):
    __tablename__ = "lesson_comments"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    lesson_id = Column(Uuid, ForeignKey("lessons.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    content = Column(Text, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)


class CourseRating(Base):
    __tablename__ = "course_ratings"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    course_id = Column(Uuid, ForeignKey("courses.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    rating = Column(Integer, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("course_id", "user_id", name="uq_course_user_rating"),
        CheckConstraint("rating BETWEEN 1 AND 5", name="ck_rating_range"),
    )
