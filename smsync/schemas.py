"""
Pydantic schemas for request/response validation.

This module contains:
- Request models for incoming data validation
- The per-record model used by the merge engine
- Response models for API responses
"""

from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field, field_validator


LogType = Literal["sms_inbox", "sms_sent", "call_incoming", "call_outgoing", "call_missed"]
CommandStatus = Literal["pending", "picked_up", "completed", "failed"]


# =============================================================================
# Pydantic Request Models
# =============================================================================

class AuthRequest(BaseModel):
    """Credentials for registration and login."""
    username: str = Field(..., min_length=1, max_length=50)
    password: str = Field(..., min_length=1)


class LogRecord(BaseModel):
    """
    One normalized log record as uploaded by the mobile client.

    Validated per record inside the upload loop, so a malformed record
    aborts the rest of its batch without affecting records already merged.
    """
    type: LogType
    remote_number: str = Field(..., min_length=1)
    remote_name: Optional[str] = None
    content: Optional[str] = None
    duration: Optional[int] = None
    timestamp: int = Field(..., description="Origin-device epoch milliseconds")
    is_read: Optional[bool] = False

    # Some dialers hand numbers over as JSON integers
    model_config = {"extra": "ignore", "coerce_numbers_to_str": True}

    @field_validator("is_read")
    @classmethod
    def default_unread(cls, v: Optional[bool]) -> bool:
        """Older clients send null for is_read; treat it as unread."""
        return bool(v)


class UploadRequest(BaseModel):
    """
    Batch of raw log records.

    Records stay untyped here: sanitization and validation happen per
    record so that earlier records in the batch are applied first.
    """
    logs: list[dict[str, Any]]

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "logs": [
                        {
                            "type": "sms_inbox",
                            "remote_number": "+15551234",
                            "remote_name": "Alice",
                            "content": "Hello",
                            "timestamp": 1700000000000,
                            "is_read": False,
                        }
                    ]
                }
            ]
        }
    }


class MarkReadRequest(BaseModel):
    remote_number: str = Field(..., min_length=1)


class MarkCategoryReadRequest(BaseModel):
    category: str = Field(..., description="messages, calls or all")


class CommandRequest(BaseModel):
    """Outbound action queued by the controller, e.g. send_sms."""
    type: str = Field(..., min_length=1, max_length=20)
    payload: Any = Field(..., description="Opaque data for the executing client")

    @field_validator("payload")
    @classmethod
    def payload_present(cls, v: Any) -> Any:
        """Any JSON value is accepted as long as it is not empty."""
        if not v:
            raise ValueError("payload must not be empty")
        return v

    model_config = {
        "json_schema_extra": {
            "examples": [
                {"type": "send_sms", "payload": {"to": "+15551234", "body": "On my way"}}
            ]
        }
    }


class CommandStatusRequest(BaseModel):
    status: CommandStatus


# =============================================================================
# Pydantic Response Models
# =============================================================================

class StatusResponse(BaseModel):
    """Acknowledgement for mutating operations."""
    status: str = Field(default="ok", description="Operation status")


class ErrorResponse(BaseModel):
    """Response model for error responses."""
    detail: str = Field(..., description="Error description")


class TokenResponse(BaseModel):
    token: str
    user_id: int


class LogResponse(BaseModel):
    """A stored log as returned to the controller."""
    id: int
    type: str
    remote_number: str
    remote_name: Optional[str] = None
    content: Optional[str] = None
    duration: Optional[int] = None
    timestamp: int
    synced_at: Optional[datetime] = None
    is_read: bool

    model_config = {"from_attributes": True}


class ConversationResponse(BaseModel):
    """
    Per-contact summary: display fields of the newest log plus the unread
    count of inbound-relevant logs for that contact.
    """
    remote_number: str
    remote_name: Optional[str] = None
    content: Optional[str] = None
    type: str
    timestamp: int
    duration: Optional[int] = None
    unread_count: int = Field(..., ge=0)


class UnreadCountsResponse(BaseModel):
    messages: int = Field(..., ge=0)
    calls: int = Field(..., ge=0)


class CommandResponse(BaseModel):
    id: int
    type: str
    payload: Any
    status: str
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class SyncStatusResponse(BaseModel):
    """High-water marks the uploader compares against its local history."""
    last_sms_timestamp: int = Field(
        ...,
        serialization_alias="lastSmsTimestamp",
        description="Newest stored SMS timestamp (0 if none)"
    )
    last_call_timestamp: int = Field(
        ...,
        serialization_alias="lastCallTimestamp",
        description="Newest stored call timestamp (0 if none)"
    )


class PurgeResponse(BaseModel):
    status: str = "ok"
    deleted: int = Field(..., ge=0)


class HealthResponse(BaseModel):
    """Response model for health check endpoints."""
    status: str = Field(..., description="Health status")
    reason: Optional[str] = Field(None, description="Reason if not ready")
