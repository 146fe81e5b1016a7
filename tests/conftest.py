import pytest
import os
import sys
import shutil
import tempfile
import uuid
from pathlib import Path

# Add project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

# Test database lives in a throwaway directory; SQLite file so several sessions can share it
TEST_DB_DIR = tempfile.mkdtemp(prefix="academy_core_test_")

# Set test environment variables
os.environ["NODE_ENV"] = "test"
os.environ["SQLALCHEMY_TEST_DATABASE_URL"] = f"sqlite:///{TEST_DB_DIR}/test.db"
os.environ["BACKEND_API_KEY"] = "test_api_key"
os.environ["LOG_LEVEL"] = "WARNING"
os.environ["STORE_TIMEOUT_SECONDS"] = "5"

from fastapi.testclient import TestClient

from app import app
from db import engine, get_db, SessionLocal
from models import Base, Course, Lesson, LessonType, Module, SubscriptionPlan, User, Video
from utils.cache_manager import snapshot_cache
from utils.security import hash_password

API_HEADERS = {"Authorization": "Bearer test_api_key"}


@pytest.fixture(scope="session")
def test_engine():
    """Create test database schema"""
    Base.metadata.create_all(bind=engine)
    yield engine
    # Cleanup
    Base.metadata.drop_all(bind=engine)
    engine.dispose()
    shutil.rmtree(TEST_DB_DIR, ignore_errors=True)


@pytest.fixture(scope="function")
def test_db(test_engine):
    """Create test database session"""
    session = SessionLocal()

    yield session

    # Cleanup after each test
    session.rollback()
    session.close()
    with test_engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(table.delete())
    snapshot_cache.clear()


@pytest.fixture
def session_factory(test_engine):
    """Factory for code that opens its own sessions, like the expiration sweep"""
    return SessionLocal


@pytest.fixture(scope="function")
def client(test_db):
    """Create test client with test database"""

    def override_get_db():
        yield test_db

    app.dependency_overrides[get_db] = override_get_db

    with TestClient(app, headers=API_HEADERS) as test_client:
        yield test_client

    # Clean up dependency override
    app.dependency_overrides.clear()


@pytest.fixture
def make_user(test_db):
    def _make_user(name="Student", email=None, password="correct-horse"):
        user = User(
            name=name,
            email=email or f"{uuid.uuid4().hex[:10]}@example.com",
            password=hash_password(password),
        )
        test_db.add(user)
        test_db.commit()
        return user

    return _make_user


@pytest.fixture
def make_course(test_db):
    def _make_course(title="Python Basics", price=1999, lessons_per_module=(2,), videos=0):
        course = Course(title=title, description="Test course", price=price)
        test_db.add(course)
        test_db.flush()

        lessons = []
        for module_order, lesson_count in enumerate(lessons_per_module, start=1):
            module = Module(course_id=course.id, title=f"Module {module_order}", order=module_order)
            test_db.add(module)
            test_db.flush()
            for lesson_order in range(1, lesson_count + 1):
                lesson = Lesson(
                    module_id=module.id,
                    title=f"Lesson {module_order}.{lesson_order}",
                    type=LessonType.VIDEO,
                    order=lesson_order,
                )
                test_db.add(lesson)
                lessons.append(lesson)

        for video_order in range(1, videos + 1):
            test_db.add(
                Video(course_id=course.id, order=video_order, title=f"Video {video_order}", url=f"https://v/{video_order}")
            )

        test_db.commit()
        return course, lessons

    return _make_course


@pytest.fixture
def make_plan(test_db):
    def _make_plan(name="Monthly", price=999, duration_months=1, processor_plan_id=None):
        plan = SubscriptionPlan(
            name=name,
            price=price,
            duration_months=duration_months,
            processor_plan_id=processor_plan_id or f"P-{uuid.uuid4().hex[:12]}",
        )
        test_db.add(plan)
        test_db.commit()
        return plan

    return _make_plan
