import logging
from contextlib import asynccontextmanager
from typing import Annotated, Optional

from fastapi import FastAPI, Response, Request, Depends, HTTPException, status, Query
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from smsync.auth import (
    CurrentUser,
    InvalidCredentialsError,
    UsernameTakenError,
    authenticate_user,
    issue_token,
    register_user,
)
from smsync.commands import (
    CommandNotFoundError,
    InvalidTransitionError,
    advance_command_status,
    enqueue_command,
    list_pending_commands,
)
from smsync.config import settings
from smsync.conversations import (
    InvalidCategoryError,
    get_unread_counts,
    list_contact_messages,
    list_conversations,
)
from smsync.logging_utils import setup_logging, RequestLoggingMiddleware, log_upload_data
from smsync.merge import BatchAbortedError, upload_logs
from smsync.metrics import record_upload_outcome, get_metrics, get_metrics_content_type
from smsync.read_state import mark_category_read, mark_conversation_read
from smsync.schemas import (
    AuthRequest,
    CommandRequest,
    CommandResponse,
    CommandStatusRequest,
    ConversationResponse,
    ErrorResponse,
    HealthResponse,
    LogResponse,
    MarkCategoryReadRequest,
    MarkReadRequest,
    PurgeResponse,
    StatusResponse,
    SyncStatusResponse,
    TokenResponse,
    UnreadCountsResponse,
    UploadRequest,
)
from smsync.storage import init_db, check_db_health, get_db, fetch_logs, get_sync_status, purge_logs


# Setup structured JSON logging
setup_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for startup and shutdown events.
    - Startup: Initialize database and create tables
    """
    init_db()
    yield


app = FastAPI(
    title="SMS Sync API",
    description="Sync backend for SMS/call history uploads, conversations and outbound commands",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(RequestLoggingMiddleware)

DbSession = Annotated[Session, Depends(get_db)]

AUTH_ERRORS = {
    401: {"model": ErrorResponse, "description": "Missing token"},
    403: {"model": ErrorResponse, "description": "Invalid token"},
}


def server_error(message: str) -> HTTPException:
    """Opaque 500 for store failures; details stay in the server log."""
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=message,
    )


# =============================================================================
# Health Check Routes
# =============================================================================

@app.get("/")
async def root() -> Response:
    return Response(content="SMS Sync Backend is running", media_type="text/plain")


@app.get("/health/live", response_model=HealthResponse)
async def health_live() -> HealthResponse:
    """
    Liveness probe - always returns 200 once the app is running.
    """
    return HealthResponse(status="ok")


@app.get("/health/ready", response_model=HealthResponse)
async def health_ready(response: Response) -> HealthResponse:
    """
    Readiness probe - returns 200 only if:
    1. AUTH_SECRET is set (non-empty)
    2. DB is reachable and schema is applied

    Otherwise returns 503 (Service Unavailable).
    """
    if not settings.AUTH_SECRET:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(status="not_ready", reason="AUTH_SECRET not configured")

    if not check_db_health():
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(
            status="not_ready",
            reason="Database not reachable or schema not applied"
        )

    return HealthResponse(status="ready")


# =============================================================================
# Auth Routes
# =============================================================================

@app.post(
    "/auth/register",
    response_model=TokenResponse,
    responses={409: {"model": ErrorResponse, "description": "Username already exists"}},
)
def register(body: AuthRequest, db: DbSession) -> TokenResponse:
    """Create an account and return a bearer token for it."""
    try:
        identity = register_user(db, body.username, body.password)
    except UsernameTakenError:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="username already exists")
    except SQLAlchemyError as e:
        logger.error(f"Registration failed: {e}")
        raise server_error("internal server error")
    return TokenResponse(token=issue_token(identity), user_id=identity.user_id)


@app.post(
    "/auth/login",
    response_model=TokenResponse,
    responses={401: {"model": ErrorResponse, "description": "Invalid credentials"}},
)
def login(body: AuthRequest, db: DbSession) -> TokenResponse:
    """Exchange username/password for a bearer token."""
    try:
        identity = authenticate_user(db, body.username, body.password)
    except InvalidCredentialsError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid credentials")
    except SQLAlchemyError as e:
        logger.error(f"Login failed: {e}")
        raise server_error("internal server error")
    return TokenResponse(token=issue_token(identity), user_id=identity.user_id)


# =============================================================================
# Upload Routes (uploader -> server)
# =============================================================================

@app.post("/sync/upload", response_model=StatusResponse, responses=AUTH_ERRORS)
def upload(request: Request, body: UploadRequest, user: CurrentUser, db: DbSession) -> StatusResponse:
    """
    Merge a batch of SMS/call logs.

    - Records are sanitized and upserted one by one in upload order
    - Re-uploading the same records is idempotent; is_read never reverts to false
    - A failing record aborts the rest of the batch without undoing earlier
      records; the client resumes from GET /sync/status
    """
    total = len(body.logs)
    if total > settings.MAX_UPLOAD_BATCH:
        record_upload_outcome("rejected")
        log_upload_data(request, user_id=user.user_id, records=total, result="rejected")
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"at most {settings.MAX_UPLOAD_BATCH} logs per upload",
        )

    try:
        applied = upload_logs(db, user.user_id, body.logs)
    except BatchAbortedError as e:
        logger.error(f"Upload aborted for user {user.user_id}: {e}")
        record_upload_outcome("aborted")
        log_upload_data(request, user_id=user.user_id, records=total, applied=e.applied, result="aborted")
        raise server_error("failed to store logs")

    record_upload_outcome("ok")
    log_upload_data(request, user_id=user.user_id, records=total, applied=applied, result="ok")
    return StatusResponse()


@app.get("/sync/status", response_model=SyncStatusResponse, responses=AUTH_ERRORS)
def sync_status(user: CurrentUser, db: DbSession) -> SyncStatusResponse:
    """High-water marks: newest stored SMS and call timestamps (0 if none)."""
    try:
        marks = get_sync_status(db, user.user_id)
    except SQLAlchemyError as e:
        logger.error(f"Sync status failed: {e}")
        raise server_error("internal server error")
    return SyncStatusResponse(**marks)


# =============================================================================
# Conversation Routes (controller -> server)
# =============================================================================

@app.get("/sync/conversations", response_model=list[ConversationResponse], responses=AUTH_ERRORS)
def conversations(
    user: CurrentUser,
    db: DbSession,
    category: Annotated[Optional[str], Query(description="messages, calls or all")] = None,
) -> list[ConversationResponse]:
    """
    One entry per contact with its newest log and unread count, most recent first.

    The category narrows which logs can be the summary row; unread_count
    always covers inbox SMS, missed and incoming calls for that contact.
    """
    try:
        rows = list_conversations(db, user.user_id, category)
    except InvalidCategoryError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="invalid category")
    except SQLAlchemyError as e:
        logger.error(f"Conversation listing failed: {e}")
        raise server_error("internal server error")
    return [ConversationResponse(**row) for row in rows]


@app.get("/sync/messages", response_model=list[LogResponse], responses=AUTH_ERRORS)
def contact_messages(
    user: CurrentUser,
    db: DbSession,
    remote_number: Annotated[str, Query(min_length=1, description="Contact to page through")],
    limit: Annotated[int, Query(ge=1, le=500)] = 50,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> list[LogResponse]:
    """Logs exchanged with one contact, newest first."""
    try:
        logs = list_contact_messages(db, user.user_id, remote_number, limit=limit, offset=offset)
    except SQLAlchemyError as e:
        logger.error(f"Message listing failed: {e}")
        raise server_error("internal server error")
    return [LogResponse.model_validate(log) for log in logs]


@app.get("/sync/fetch", response_model=list[LogResponse], responses=AUTH_ERRORS)
def fetch(
    user: CurrentUser,
    db: DbSession,
    limit: Annotated[int, Query(ge=1, le=1000)] = 100,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> list[LogResponse]:
    """Every log of the caller across contacts, newest first."""
    try:
        logs = fetch_logs(db, user.user_id, limit=limit, offset=offset)
    except SQLAlchemyError as e:
        logger.error(f"Log fetch failed: {e}")
        raise server_error("internal server error")
    return [LogResponse.model_validate(log) for log in logs]


@app.get("/sync/unread_counts", response_model=UnreadCountsResponse, responses=AUTH_ERRORS)
def unread_counts(user: CurrentUser, db: DbSession) -> UnreadCountsResponse:
    """Global unread totals: inbox SMS and missed/incoming calls."""
    try:
        counts = get_unread_counts(db, user.user_id)
    except SQLAlchemyError as e:
        logger.error(f"Unread count failed: {e}")
        raise server_error("internal server error")
    return UnreadCountsResponse(**counts)


@app.post("/sync/mark_read", response_model=StatusResponse, responses=AUTH_ERRORS)
def mark_read(body: MarkReadRequest, user: CurrentUser, db: DbSession) -> StatusResponse:
    """Mark every log of one contact as read."""
    try:
        mark_conversation_read(db, user.user_id, body.remote_number)
    except SQLAlchemyError as e:
        logger.error(f"Mark read failed: {e}")
        raise server_error("internal server error")
    return StatusResponse()


@app.post("/sync/mark_category_read", response_model=StatusResponse, responses=AUTH_ERRORS)
def mark_category(body: MarkCategoryReadRequest, user: CurrentUser, db: DbSession) -> StatusResponse:
    """Mark unread inbox SMS (messages), missed/incoming calls (calls) or everything (all) as read."""
    try:
        mark_category_read(db, user.user_id, body.category)
    except InvalidCategoryError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="invalid category")
    except SQLAlchemyError as e:
        logger.error(f"Mark category read failed: {e}")
        raise server_error("internal server error")
    return StatusResponse()


@app.delete("/sync/logs", response_model=PurgeResponse, responses=AUTH_ERRORS)
def purge(user: CurrentUser, db: DbSession) -> PurgeResponse:
    """Administrative purge of every log the caller has uploaded."""
    try:
        deleted = purge_logs(db, user.user_id)
    except SQLAlchemyError as e:
        logger.error(f"Purge failed: {e}")
        raise server_error("internal server error")
    return PurgeResponse(deleted=deleted)


# =============================================================================
# Command Routes
# =============================================================================

@app.post("/sync/command", response_model=StatusResponse, responses=AUTH_ERRORS)
def create_command(body: CommandRequest, user: CurrentUser, db: DbSession) -> StatusResponse:
    """Queue an outbound action (controller -> server)."""
    try:
        enqueue_command(db, user.user_id, body.type, body.payload)
    except SQLAlchemyError as e:
        logger.error(f"Enqueue failed: {e}")
        raise server_error("internal server error")
    return StatusResponse()


@app.get("/sync/commands", response_model=list[CommandResponse], responses=AUTH_ERRORS)
def pending_commands(user: CurrentUser, db: DbSession) -> list[CommandResponse]:
    """Pending commands, oldest first (uploader -> server). Does not pick them up."""
    try:
        commands = list_pending_commands(db, user.user_id)
    except SQLAlchemyError as e:
        logger.error(f"Command listing failed: {e}")
        raise server_error("internal server error")
    return [CommandResponse.model_validate(command) for command in commands]


@app.post(
    "/sync/command/{command_id}/status",
    response_model=StatusResponse,
    responses={
        **AUTH_ERRORS,
        404: {"model": ErrorResponse, "description": "Command not found"},
        409: {"model": ErrorResponse, "description": "Status would move backwards"},
    },
)
def command_status(
    command_id: int,
    body: CommandStatusRequest,
    user: CurrentUser,
    db: DbSession,
) -> StatusResponse:
    """Report command progress: picked_up, then completed or failed."""
    try:
        advance_command_status(db, user.user_id, command_id, body.status)
    except CommandNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="command not found")
    except InvalidTransitionError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except SQLAlchemyError as e:
        logger.error(f"Command status update failed: {e}")
        raise server_error("internal server error")
    return StatusResponse()


# =============================================================================
# Metrics Route
# =============================================================================

@app.get("/metrics")
async def metrics() -> Response:
    """
    Expose Prometheus-style metrics.
    """
    return Response(
        content=get_metrics(),
        media_type=get_metrics_content_type()
    )
