import logging
from typing import Generator, List

from sqlalchemy import create_engine, func, inspect, text
from sqlalchemy.orm import sessionmaker, Session, declarative_base

from smsync.config import settings

logger = logging.getLogger(__name__)

# check_same_thread=False is required for SQLite to work with FastAPI's threadpool
connect_args = {}
if settings.DATABASE_URL.startswith("sqlite"):
    connect_args["check_same_thread"] = False

engine = create_engine(
    settings.DATABASE_URL,
    connect_args=connect_args,
    pool_pre_ping=True,
    echo=False,
)

# Create SessionLocal class for creating database sessions
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Base class for SQLAlchemy models
Base = declarative_base()

REQUIRED_TABLES = ("users", "logs", "commands")


def init_db() -> None:
    """
    Initialize the database by creating all tables.
    Called during application startup.
    """
    logger.debug("Initializing database")
    try:
        # Import models to register them with Base.metadata
        from smsync import models  # noqa: F401

        Base.metadata.create_all(bind=engine)
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        raise


def get_db() -> Generator[Session, None, None]:
    """
    Dependency to get database session.
    Yields a session and ensures it's closed after use.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def check_db_health() -> bool:
    """
    Check if the database is reachable and schema is applied.

    Returns:
        True if DB is healthy and all tables exist, False otherwise.
    """
    try:
        with SessionLocal() as db:
            db.execute(text("SELECT 1"))
        existing = set(inspect(engine).get_table_names())
        missing = [name for name in REQUIRED_TABLES if name not in existing]
        if missing:
            logger.error(f"Database schema not applied, missing tables: {missing}")
            return False
        return True
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        return False


# =============================================================================
# Log Feed Functions
# =============================================================================

def get_sync_status(db: Session, user_id: int) -> dict:
    """
    High-water marks the uploader uses to resume an interrupted upload.

    Returns:
        Dictionary with the newest stored SMS and call timestamps (0 if none)
    """
    from smsync.models import Log, SMS_TYPES, CALL_TYPES

    def max_timestamp(types) -> int:
        value = (
            db.query(func.max(Log.timestamp))
            .filter(Log.user_id == user_id, Log.type.in_(types))
            .scalar()
        )
        return int(value) if value else 0

    status = {
        "last_sms_timestamp": max_timestamp(SMS_TYPES),
        "last_call_timestamp": max_timestamp(CALL_TYPES),
    }
    logger.debug(f"Sync status for user {user_id}: {status}")
    return status


def fetch_logs(db: Session, user_id: int, limit: int = 100, offset: int = 0) -> List:
    """
    Every log of the user regardless of contact, newest first.

    Args:
        db: Database session
        user_id: Owner of the logs
        limit: Maximum number of logs to return
        offset: Number of logs to skip
    """
    from smsync.models import Log

    return (
        db.query(Log)
        .filter(Log.user_id == user_id)
        .order_by(Log.timestamp.desc(), Log.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )


def purge_logs(db: Session, user_id: int) -> int:
    """
    Administrative purge: delete all logs of one user.

    Returns:
        Number of deleted rows
    """
    from smsync.models import Log

    deleted = db.query(Log).filter(Log.user_id == user_id).delete(synchronize_session=False)
    db.commit()
    logger.warning(f"Purged {deleted} logs for user {user_id}")
    return deleted
