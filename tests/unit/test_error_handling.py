import uuid

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError

from models import Enrollment, User
from utils.error_handling import (
    AlreadyTerminal,
    ConflictError,
    DuplicateSubscription,
    NotFoundError,
    StoreTimeout,
    TokenExpired,
    insert_or_get,
    is_timeout_error,
    require,
    store_transaction,
    to_http_exception,
)


class FakePgError(Exception):
    def __init__(self, pgcode):
        super().__init__("canceling statement due to statement timeout")
        self.pgcode = pgcode


class TestErrorTaxonomy:
    def test_duplicate_subscription_is_a_conflict(self):
        assert issubclass(DuplicateSubscription, ConflictError)

    def test_to_dict_carries_entity_and_key(self):
        error = NotFoundError("user not found", entity="user", key=42)
        assert error.to_dict() == {"error": "NotFoundError", "message": "user not found", "entity": "user", "key": "42"}

    @pytest.mark.parametrize(
        "error,status_code",
        [
            (NotFoundError("x"), 404),
            (ConflictError("x"), 409),
            (AlreadyTerminal("x"), 200),
            (TokenExpired("x"), 410),
            (StoreTimeout("x"), 503),
        ],
    )
    def test_http_mapping(self, error, status_code):
        assert to_http_exception(error).status_code == status_code

    def test_require(self):
        assert require("row", "user", 1) == "row"
        with pytest.raises(NotFoundError):
            require(None, "user", 1)


class TestTimeoutDetection:
    def test_sqlite_lock(self):
        assert is_timeout_error(OperationalError("UPDATE x", {}, Exception("database is locked")))

    def test_postgres_statement_timeout(self):
        assert is_timeout_error(OperationalError("SELECT 1", {}, FakePgError("57014")))
        assert is_timeout_error(OperationalError("SELECT 1", {}, FakePgError("55P03")))

    def test_pool_timeout(self):
        assert is_timeout_error(PoolTimeoutError("QueuePool limit reached"))

    def test_other_errors(self):
        assert not is_timeout_error(OperationalError("SELECT 1", {}, Exception("no such table")))
        assert not is_timeout_error(ValueError("nope"))


class TestStoreTransaction:
    def test_commits_on_success(self, test_db):
        with store_transaction(test_db, "create user"):
            test_db.add(User(name="A", email="a@example.com", password="x"))

        assert test_db.query(User).count() == 1

    def test_rolls_back_on_error(self, test_db):
        with pytest.raises(RuntimeError):
            with store_transaction(test_db, "create user"):
                test_db.add(User(name="A", email="a@example.com", password="x"))
                test_db.flush()
                raise RuntimeError("boom")

        assert test_db.query(User).count() == 0

    def test_timeout_surfaces_as_store_timeout(self, test_db):
        with pytest.raises(StoreTimeout) as exc_info:
            with store_transaction(test_db, "slow write"):
                raise OperationalError("UPDATE users", {}, Exception("database is locked"))

        assert exc_info.value.key == "slow write"


class TestInsertOrGet:
    def test_existing_row_is_returned(self, test_db, make_user, make_course):
        user = make_user()
        course, _ = make_course()
        first, created = insert_or_get(
            test_db, Enrollment(user_id=user.id, course_id=course.id), lambda: None
        )
        test_db.commit()
        assert created is True

        row, created = insert_or_get(test_db, Enrollment(user_id=user.id, course_id=course.id), lambda: first)

        assert created is False
        assert row is first

    def test_concurrent_insert_wins(self, test_db, session_factory, make_user, make_course):
        user = make_user()
        course, _ = make_course()
        user_id, course_id = user.id, course.id
        test_db.rollback()
        calls = []

        def lookup():
            calls.append(1)
            if len(calls) == 1:
                other = session_factory()
                try:
                    other.add(Enrollment(user_id=user_id, course_id=course_id))
                    other.commit()
                finally:
                    other.close()
                return None
            return (
                test_db.query(Enrollment)
                .filter(Enrollment.user_id == user_id, Enrollment.course_id == course_id)
                .first()
            )

        row, created = insert_or_get(test_db, Enrollment(user_id=user_id, course_id=course_id), lookup)
        test_db.commit()

        assert created is False
        assert len(calls) == 2
        assert row.user_id == user_id
        assert test_db.query(Enrollment).count() == 1

    def test_unrelated_integrity_error_propagates(self, test_db, make_course):
        course, _ = make_course()

        with pytest.raises(IntegrityError):
            insert_or_get(test_db, Enrollment(user_id=uuid.uuid4(), course_id=course.id), lambda: None)
        test_db.rollback()

        assert test_db.query(Enrollment).count() == 0
