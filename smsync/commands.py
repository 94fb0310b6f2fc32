"""
Command relay between the controller and the uploader.

The controller enqueues commands; the uploader polls the pending queue and
reports progress. Status only moves forward:
pending -> picked_up -> completed | failed.
"""

import logging
from typing import Any, List

from sqlalchemy.orm import Session

from smsync.metrics import record_command_transition
from smsync.models import COMMAND_PENDING, COMMAND_STATUS_RANK, Command, utcnow

logger = logging.getLogger(__name__)


class CommandNotFoundError(LookupError):
    """No command with that id belongs to the user."""


class InvalidTransitionError(ValueError):
    """Requested status would move the command backwards."""

    def __init__(self, current: str, requested: str):
        self.current = current
        self.requested = requested
        super().__init__(f"cannot move command from {current} to {requested}")


def enqueue_command(db: Session, user_id: int, command_type: str, payload: Any) -> Command:
    """Queue a command in pending status."""
    command = Command(
        user_id=user_id,
        type=command_type,
        payload=payload,
        status=COMMAND_PENDING,
    )
    db.add(command)
    db.commit()
    db.refresh(command)
    record_command_transition(COMMAND_PENDING)
    logger.info(f"Enqueued command {command.id} ({command_type}) for user {user_id}")
    return command


def list_pending_commands(db: Session, user_id: int) -> List[Command]:
    """
    Pending commands, oldest first.

    Draining does not pick commands up; the uploader reports that explicitly.
    """
    return (
        db.query(Command)
        .filter(Command.user_id == user_id, Command.status == COMMAND_PENDING)
        .order_by(Command.created_at.asc(), Command.id.asc())
        .all()
    )


def advance_command_status(db: Session, user_id: int, command_id: int, status: str) -> Command:
    """
    Move a command forward in its lifecycle.

    The write only matches rows whose current status ranks below the
    requested one, so concurrent reports can never move a command backwards.
    Re-sending the current status is a no-op so the uploader can retry its
    report safely.

    Raises:
        CommandNotFoundError: unknown id, or the command belongs to another user
        InvalidTransitionError: status would not move the command forward
    """
    rank = COMMAND_STATUS_RANK[status]
    lower = [name for name, other in COMMAND_STATUS_RANK.items() if other < rank]

    updated = (
        db.query(Command)
        .filter(
            Command.id == command_id,
            Command.user_id == user_id,
            Command.status.in_(lower),
        )
        .update({Command.status: status, Command.updated_at: utcnow()}, synchronize_session=False)
    )
    db.commit()

    command = (
        db.query(Command)
        .filter(Command.id == command_id, Command.user_id == user_id)
        .populate_existing()
        .first()
    )
    if command is None:
        raise CommandNotFoundError(command_id)

    if updated:
        record_command_transition(status)
        logger.info(f"Command {command_id} moved to {status} for user {user_id}")
        return command
    if command.status == status:
        return command
    raise InvalidTransitionError(command.status, status)
