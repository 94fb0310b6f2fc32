"""
SQLAlchemy ORM models for database tables.

This module contains database table definitions using SQLAlchemy, plus the
log type vocabulary shared by the sync components.
For Pydantic request/response schemas, see schemas.py.
"""

from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)

from smsync.storage import Base


# =============================================================================
# Log Type Vocabulary
# =============================================================================

SMS_INBOX = "sms_inbox"
SMS_SENT = "sms_sent"
CALL_INCOMING = "call_incoming"
CALL_OUTGOING = "call_outgoing"
CALL_MISSED = "call_missed"

SMS_TYPES = (SMS_INBOX, SMS_SENT)
CALL_TYPES = (CALL_INCOMING, CALL_OUTGOING, CALL_MISSED)
LOG_TYPES = SMS_TYPES + CALL_TYPES

# Types that count toward unread totals
INBOUND_TYPES = (SMS_INBOX, CALL_MISSED, CALL_INCOMING)

# Category -> types shown in listings and high-water marks
LISTING_TYPES = {
    "messages": SMS_TYPES,
    "calls": CALL_TYPES,
}

# Category -> types flipped by mark-category-read (None means no filter)
UNREAD_TYPES = {
    "messages": (SMS_INBOX,),
    "calls": (CALL_MISSED, CALL_INCOMING),
    "all": None,
}


# =============================================================================
# Command Lifecycle
# =============================================================================

COMMAND_PENDING = "pending"
COMMAND_PICKED_UP = "picked_up"
COMMAND_COMPLETED = "completed"
COMMAND_FAILED = "failed"

# Terminal states share a rank; a command only ever moves to a higher rank
COMMAND_STATUS_RANK = {
    COMMAND_PENDING: 0,
    COMMAND_PICKED_UP: 1,
    COMMAND_COMPLETED: 2,
    COMMAND_FAILED: 2,
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class User(Base):
    """
    Registered account. Owns all logs and commands.

    Table: users
    """
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    username = Column(String(50), unique=True, nullable=False, index=True)
    password_hash = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class Log(Base):
    """
    One SMS message or call event uploaded by the mobile client.

    Table: logs
    Natural key: (user_id, timestamp, remote_number, type) ensures idempotent uploads
    """
    __tablename__ = "logs"
    __table_args__ = (
        UniqueConstraint(
            "user_id", "timestamp", "remote_number", "type",
            name="uq_logs_natural_key",
        ),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    type = Column(String(20), nullable=False)
    remote_number = Column(Text, nullable=False, index=True)
    remote_name = Column(Text, nullable=True)
    content = Column(Text, nullable=True)  # SMS body
    duration = Column(Integer, nullable=True)  # Call length in seconds
    timestamp = Column(BigInteger, nullable=False, index=True)  # Device epoch millis
    synced_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    is_read = Column(Boolean, nullable=False, default=False)


class Command(Base):
    """
    Outbound action queued by the controller for the uploader to execute.

    Table: commands
    """
    __tablename__ = "commands"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    type = Column(String(20), nullable=False)  # e.g. send_sms
    payload = Column(JSON, nullable=False)  # e.g. {"to": "+12345", "body": "hello"}
    status = Column(String(20), nullable=False, default=COMMAND_PENDING, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
