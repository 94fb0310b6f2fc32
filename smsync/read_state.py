"""
Read-state reconciliation.

Both operations only ever set is_read to true, so they are idempotent and
safe to replay. The returned row counts are informational; callers
acknowledge success whether or not anything matched.
"""

import logging

from sqlalchemy import false
from sqlalchemy.orm import Session

from smsync.conversations import InvalidCategoryError
from smsync.models import Log, UNREAD_TYPES

logger = logging.getLogger(__name__)


def mark_conversation_read(db: Session, user_id: int, remote_number: str) -> int:
    """Mark every log exchanged with a contact as read, across all types."""
    updated = (
        db.query(Log)
        .filter(Log.user_id == user_id, Log.remote_number == remote_number)
        .update({Log.is_read: True}, synchronize_session=False)
    )
    db.commit()
    logger.info(f"Marked conversation {remote_number} read for user {user_id} ({updated} rows)")
    return updated


def mark_category_read(db: Session, user_id: int, category: str) -> int:
    """
    Mark unread logs of a category as read.

    messages flips sms_inbox only, calls flips call_missed and call_incoming,
    all flips every type.

    Raises:
        InvalidCategoryError: category is not messages, calls or all
    """
    if category not in UNREAD_TYPES:
        raise InvalidCategoryError(category)
    types = UNREAD_TYPES[category]

    query = db.query(Log).filter(Log.user_id == user_id, Log.is_read == false())
    if types is not None:
        query = query.filter(Log.type.in_(types))
    updated = query.update({Log.is_read: True}, synchronize_session=False)
    db.commit()
    logger.info(f"Marked category {category} read for user {user_id} ({updated} rows)")
    return updated
