"""
Dedup/merge engine for uploaded logs.

Each record is upserted on its natural key (user_id, timestamp,
remote_number, type). A collision merges instead of replacing:

- remote_name and content take the incoming value (names resolved later win)
- synced_at is refreshed to the merge time
- is_read is monotonic: once true it stays true, otherwise it takes the
  incoming value

A batch is a sequence of independent per-record commits, not a single
transaction. The first failing record aborts the rest of the batch; records
merged before it stay committed and the client resumes from the sync-status
high-water marks.
"""

import logging
from typing import Any, Iterable, Mapping

from pydantic import ValidationError
from sqlalchemy import case, true
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from smsync.metrics import record_logs_merged
from smsync.models import Log, utcnow
from smsync.normalizer import normalize_record
from smsync.schemas import LogRecord

logger = logging.getLogger(__name__)

NATURAL_KEY = ("user_id", "timestamp", "remote_number", "type")

DIALECT_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


class BatchAbortedError(Exception):
    """Raised when a record fails mid-batch; earlier records remain applied."""

    def __init__(self, applied: int, total: int):
        self.applied = applied
        self.total = total
        super().__init__(f"upload aborted after {applied} of {total} records")


def _dialect_insert(db: Session):
    dialect = db.get_bind().dialect.name
    try:
        return DIALECT_INSERTS[dialect]
    except KeyError:
        raise RuntimeError(f"upsert not supported for dialect {dialect!r}")


def merge_log(db: Session, user_id: int, record: Mapping[str, Any]) -> None:
    """
    Upsert one normalized log record for a user.

    Does not commit; the caller owns the transaction boundary.

    Raises:
        ValidationError: record is missing a key field or has a bad type
        SQLAlchemyError: the store rejected the statement
    """
    log = LogRecord.model_validate(record)
    now = utcnow()

    insert = _dialect_insert(db)
    stmt = insert(Log).values(
        user_id=user_id,
        type=log.type,
        remote_number=log.remote_number,
        remote_name=log.remote_name,
        content=log.content,
        duration=log.duration,
        timestamp=log.timestamp,
        synced_at=now,
        is_read=log.is_read,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=list(NATURAL_KEY),
        set_={
            "remote_name": stmt.excluded.remote_name,
            "content": stmt.excluded.content,
            "synced_at": now,
            "is_read": case(
                (Log.is_read == true(), true()),
                else_=stmt.excluded.is_read,
            ),
        },
    )
    db.execute(stmt)


def upload_logs(db: Session, user_id: int, records: Iterable[Mapping[str, Any]]) -> int:
    """
    Merge a batch of raw records in upload order.

    Args:
        db: Database session
        user_id: Owner of the logs
        records: Raw records as received from the client

    Returns:
        Number of records applied (always the batch size on success)

    Raises:
        BatchAbortedError: a record failed; the remaining ones were skipped
    """
    records = list(records)
    total = len(records)
    applied = 0

    for index, raw in enumerate(records):
        try:
            merge_log(db, user_id, normalize_record(raw))
            db.commit()
        except (ValidationError, SQLAlchemyError) as e:
            db.rollback()
            logger.error(
                f"Upload for user {user_id} failed at record {index}: {e}",
                extra={"user_id": user_id, "applied": applied, "records": total},
            )
            record_logs_merged(applied)
            raise BatchAbortedError(applied=applied, total=total) from e
        applied += 1

    record_logs_merged(applied)
    logger.info(f"Merged {applied} logs for user {user_id}")
    return applied
