"""
Error taxonomy and transaction handling for the reconciliation core
"""

from contextlib import contextmanager
from typing import Any, Optional

from fastapi import HTTPException, status
from sqlalchemy import text
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session

from config import settings
from utils.structured_logging import get_logger, LogCategory

logger = get_logger("errors")


class CoreError(Exception):
    """Base class for every error the core raises; carries entity kind and key"""

    http_status = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str, entity: Optional[str] = None, key: Any = None):
        super().__init__(message)
        self.message = message
        self.entity = entity
        self.key = key

    def to_dict(self) -> dict:
        return {
            "error": type(self).__name__,
            "message": self.message,
            "entity": self.entity,
            "key": None if self.key is None else str(self.key),
        }


class NotFoundError(CoreError):
    http_status = status.HTTP_404_NOT_FOUND


class ConflictError(CoreError):
    http_status = status.HTTP_409_CONFLICT


class DuplicateSubscription(ConflictError):
    pass


class InvalidTransition(CoreError):
    http_status = status.HTTP_409_CONFLICT


class AlreadyTerminal(CoreError):
    """Benign: the subscription already reached expired or canceled"""

    http_status = status.HTTP_200_OK


class InvalidInput(CoreError):
    http_status = status.HTTP_422_UNPROCESSABLE_ENTITY


class TokenError(CoreError):
    http_status = status.HTTP_400_BAD_REQUEST


class TokenNotFound(TokenError):
    http_status = status.HTTP_404_NOT_FOUND


class TokenExpired(TokenError):
    http_status = status.HTTP_410_GONE


class TokenAlreadyUsed(TokenError):
    http_status = status.HTTP_409_CONFLICT


class TokenSuperseded(TokenError):
    http_status = status.HTTP_410_GONE


class StoreTimeout(CoreError):
    """The store did not answer within the caller's deadline; safe to retry"""

    http_status = status.HTTP_503_SERVICE_UNAVAILABLE


# PostgreSQL SQLSTATEs for query_canceled and lock_not_available
_TIMEOUT_SQLSTATES = {"57014", "55P03"}


def is_timeout_error(e: Exception) -> bool:
    if isinstance(e, PoolTimeoutError):
        return True
    if isinstance(e, DBAPIError):
        orig = getattr(e, "orig", None)
        sqlstate = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
        if sqlstate in _TIMEOUT_SQLSTATES:
            return True
        if isinstance(e, OperationalError) and "database is locked" in str(orig):
            return True
    return False


def _apply_timeout(db: Session, timeout: float) -> None:
    if db.get_bind().dialect.name != "postgresql":
        return
    timeout_ms = max(int(timeout * 1000), 1)
    db.execute(text(f"SET LOCAL statement_timeout = {timeout_ms}"))
    db.execute(text(f"SET LOCAL lock_timeout = {timeout_ms}"))


@contextmanager
def store_transaction(db: Session, operation: str, timeout: Optional[float] = None):
    """
    Run a block as one atomic transaction against the store

    Usage:
        with store_transaction(db, "record payment", timeout=5):
            db.add(payment)

    Commits on success. Any error rolls back the whole block so no partial
    write survives. Driver-level timeouts surface as StoreTimeout.
    """
    try:
        _apply_timeout(db, timeout if timeout is not None else settings.STORE_TIMEOUT_SECONDS)
        yield db
        db.commit()
    except CoreError:
        db.rollback()
        raise
    except SQLAlchemyError as e:
        db.rollback()
        if is_timeout_error(e):
            logger.warning(f"Store timeout during {operation}", category=LogCategory.DATABASE)
            raise StoreTimeout(f"{operation} exceeded its deadline", entity="store", key=operation) from e
        logger.error(f"Database error during {operation}", category=LogCategory.DATABASE, exception=e)
        raise
    except Exception:
        db.rollback()
        raise


def insert_or_get(db: Session, instance, lookup):
    """
    Insert ``instance`` inside a savepoint; on a unique-constraint race return
    the row that won instead. ``lookup`` re-reads it.

    Returns (row, created).
    """
    existing = lookup()
    if existing is not None:
        return existing, False
    try:
        with db.begin_nested():
            db.add(instance)
        return instance, True
    except IntegrityError:
        existing = lookup()
        if existing is None:
            raise
        return existing, False


def require(resource: Any, entity: str, key: Any):
    """Return resource or raise NotFoundError"""
    if resource is None:
        raise NotFoundError(f"{entity} not found", entity=entity, key=key)
    return resource


def to_http_exception(e: CoreError) -> HTTPException:
    """Translate a core error for the HTTP adapter"""
    return HTTPException(status_code=e.http_status, detail=e.to_dict())
