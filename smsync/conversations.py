"""
Conversation aggregation over the raw log table.

Conversations are never materialized: every listing recomputes, per
remote_number, the newest log and the count of unread inbound logs.
"""

import logging
from typing import List, Optional

from sqlalchemy import false, func
from sqlalchemy.orm import Session

from smsync.models import CALL_INCOMING, CALL_MISSED, INBOUND_TYPES, LISTING_TYPES, Log, SMS_INBOX

logger = logging.getLogger(__name__)


class InvalidCategoryError(ValueError):
    """Category is not one of messages, calls or all."""


def listing_types(category: Optional[str]):
    """
    Types shown for a listing category; None means every type.

    Raises:
        InvalidCategoryError: category is not recognised
    """
    if category is None or category == "all":
        return None
    try:
        return LISTING_TYPES[category]
    except KeyError:
        raise InvalidCategoryError(category)


def unread_counts_by_contact(db: Session, user_id: int) -> dict:
    """Unread inbound log count per remote_number (contacts with none are absent)."""
    rows = (
        db.query(Log.remote_number, func.count(Log.id))
        .filter(
            Log.user_id == user_id,
            Log.is_read == false(),
            Log.type.in_(INBOUND_TYPES),
        )
        .group_by(Log.remote_number)
        .all()
    )
    return {remote_number: count for remote_number, count in rows}


def list_conversations(db: Session, user_id: int, category: Optional[str] = None) -> List[dict]:
    """
    One summary per contact, most recently active contact first.

    Args:
        db: Database session
        user_id: Owner of the logs
        category: "messages", "calls", "all" or None; filters which logs can
            be the summary row. The unread count ignores this filter.

    Returns:
        List of summary dicts ordered by newest timestamp desc, then row id
        desc for contacts whose newest logs share a timestamp
    """
    types = listing_types(category)

    recency = func.row_number().over(
        partition_by=Log.remote_number,
        order_by=(Log.timestamp.desc(), Log.id.desc()),
    ).label("recency_rank")

    query = db.query(
        Log.id,
        Log.remote_number,
        Log.remote_name,
        Log.content,
        Log.type,
        Log.timestamp,
        Log.duration,
        recency,
    ).filter(Log.user_id == user_id)
    if types is not None:
        query = query.filter(Log.type.in_(types))
    ranked = query.subquery()

    latest = (
        db.query(ranked)
        .filter(ranked.c.recency_rank == 1)
        .order_by(ranked.c.timestamp.desc(), ranked.c.id.desc())
        .all()
    )
    unread = unread_counts_by_contact(db, user_id)

    conversations = [
        {
            "remote_number": row.remote_number,
            "remote_name": row.remote_name,
            "content": row.content,
            "type": row.type,
            "timestamp": row.timestamp,
            "duration": row.duration,
            "unread_count": unread.get(row.remote_number, 0),
        }
        for row in latest
    ]
    logger.debug(f"Aggregated {len(conversations)} conversations for user {user_id}, category={category}")
    return conversations


def list_contact_messages(
    db: Session,
    user_id: int,
    remote_number: str,
    limit: int = 50,
    offset: int = 0,
) -> List[Log]:
    """
    Logs exchanged with one contact, newest first.

    Args:
        db: Database session
        user_id: Owner of the logs
        remote_number: Contact to page through
        limit: Maximum number of logs to return
        offset: Number of logs to skip
    """
    return (
        db.query(Log)
        .filter(Log.user_id == user_id, Log.remote_number == remote_number)
        .order_by(Log.timestamp.desc(), Log.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )


def get_unread_counts(db: Session, user_id: int) -> dict:
    """Global unread totals: inbox SMS as messages, missed and incoming calls as calls."""
    rows = (
        db.query(Log.type, func.count(Log.id))
        .filter(
            Log.user_id == user_id,
            Log.is_read == false(),
            Log.type.in_(INBOUND_TYPES),
        )
        .group_by(Log.type)
        .all()
    )
    per_type = {log_type: count for log_type, count in rows}
    return {
        "messages": per_type.get(SMS_INBOX, 0),
        "calls": per_type.get(CALL_MISSED, 0) + per_type.get(CALL_INCOMING, 0),
    }
