import logging
from datetime import datetime, timezone
from typing import Callable, TypeVar

from sqlalchemy import DateTime, create_engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.types import TypeDecorator

from authcore.core.config import settings

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _engine_kwargs(url: str) -> dict:
    if url.startswith("sqlite"):
        # SQLite connections are handed between request threads
        return {"connect_args": {"check_same_thread": False}}
    return {
        "pool_pre_ping": True,  # Verify connections before using them
        "pool_size": 10,  # Connection pool size
        "max_overflow": 20,  # Allow up to 20 connections beyond pool_size
    }


# Create SQLAlchemy engine
engine = create_engine(settings.DATABASE_URL, **_engine_kwargs(settings.DATABASE_URL))

# Create SessionLocal class
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Create Base class for models
Base = declarative_base()


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware UTC timestamp column.

    PostgreSQL keeps the offset natively. SQLite drops it, so values are
    written as naive UTC and re-tagged as UTC on the way out. Expiry checks
    compare aware datetimes on every backend.
    """
    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        value = value.astimezone(timezone.utc)
        if dialect.name == "sqlite":
            value = value.replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):
        if value is not None and value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value


def get_db():
    """
    Dependency function to get database session.
    Used in FastAPI endpoints with Depends(get_db)
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def run_in_transaction(db: Session, fn: Callable[[], T], attempts: int = 1) -> T:
    """
    Run fn inside a single transaction and commit its work.

    Any exception rolls the transaction back. An IntegrityError means a
    concurrent transaction committed a conflicting row first (unique index on
    accounts or verified contacts); fn is re-run from scratch so it observes
    that row, up to `attempts` times.

    Args:
        db: Database session
        fn: Unit of work reading and writing through `db`
        attempts: Maximum number of runs

    Returns:
        Whatever fn returns
    """
    for attempt in range(1, attempts + 1):
        try:
            result = fn()
            db.commit()
            return result
        except IntegrityError:
            db.rollback()
            if attempt >= attempts:
                raise
            logger.info(f"Transaction lost a uniqueness race, retrying (attempt {attempt + 1}/{attempts})")
        except Exception:
            db.rollback()
            raise


def init_db():
    """
    Initialize database.

    Production schemas are managed by Alembic ("alembic upgrade head").
    create_all is only used for local SQLite databases.
    """
    from authcore import models  # noqa: F401  Import models to register them
    if settings.DATABASE_URL.startswith("sqlite"):
        Base.metadata.create_all(bind=engine)
