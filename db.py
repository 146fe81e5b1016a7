import os
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import QueuePool
from config import settings

from utils.structured_logging import get_logger, LogCategory

logger = get_logger("database")


def build_engine(url: str = None):
    """Create the engine for ``url`` (defaults to the configured database)"""
    url = url or settings.database_url

    if url.startswith("sqlite"):
        engine = create_engine(
            url, connect_args={"check_same_thread": False, "timeout": settings.STORE_TIMEOUT_SECONDS}
        )

        @event.listens_for(engine, "connect")
        def set_sqlite_settings(dbapi_connection, connection_record):
            # Let SQLAlchemy own BEGIN so SAVEPOINTs work with pysqlite
            dbapi_connection.isolation_level = None
            cursor = dbapi_connection.cursor()
            # SQLite only enforces ON DELETE CASCADE with this pragma
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        @event.listens_for(engine, "begin")
        def do_begin(conn):
            conn.exec_driver_sql("BEGIN")

        return engine

    engine = create_engine(
        url,
        poolclass=QueuePool,
        pool_size=settings.POOL_SIZE,
        max_overflow=settings.POOL_MAX_OVERFLOW,
        pool_pre_ping=True,  # Validate connections before use
        pool_recycle=3600,
        pool_timeout=settings.STORE_TIMEOUT_SECONDS,
        echo=False,
        connect_args={
            "connect_timeout": 10,
            "application_name": "academy_core",
        },
    )

    @event.listens_for(engine, "connect")
    def set_postgresql_settings(dbapi_connection, connection_record):
        """Default statement timeout; transactions narrow it with SET LOCAL"""
        try:
            with dbapi_connection.cursor() as cursor:
                cursor.execute(f"SET statement_timeout = '{int(settings.STORE_TIMEOUT_SECONDS * 1000)}ms'")
        except Exception as e:
            logger.warning(f"Could not apply PostgreSQL settings: {e}", category=LogCategory.DATABASE)

    return engine


# Test-friendly engine: use SQLite when NODE_ENV=test
if os.getenv("NODE_ENV") == "test":
    engine = build_engine(os.getenv("SQLALCHEMY_TEST_DATABASE_URL", "sqlite:///./test.db"))
else:
    engine = build_engine()


SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
