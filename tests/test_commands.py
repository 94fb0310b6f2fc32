"""
Tests for the command relay routes.

Tests cover:
- Enqueue, drain, complete, drain-again lifecycle
- FIFO ordering of pending commands
- Forward-only status transitions
- Owner scoping
- Overlapping status reports
"""

import pytest

from smsync.auth import register_user
from smsync.commands import InvalidTransitionError, advance_command_status, enqueue_command
from smsync.models import Command
from smsync.storage import SessionLocal


def enqueue(client, headers, body: str = "hello", to: str = "+15551234"):
    response = client.post(
        "/sync/command",
        json={"type": "send_sms", "payload": {"to": to, "body": body}},
        headers=headers,
    )
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def pending(client, headers) -> list:
    response = client.get("/sync/commands", headers=headers)
    assert response.status_code == 200
    return response.json()


def set_status(client, headers, command_id: int, status: str):
    return client.post(f"/sync/command/{command_id}/status", json={"status": status}, headers=headers)


class TestCommandLifecycle:
    """Test the enqueue/drain/advance cycle."""

    def test_enqueue_drain_complete(self, client, auth_headers):
        """Test a completed command no longer shows up as pending."""
        enqueue(client, auth_headers)

        commands = pending(client, auth_headers)
        assert len(commands) == 1
        assert commands[0]["type"] == "send_sms"
        assert commands[0]["payload"] == {"to": "+15551234", "body": "hello"}
        assert commands[0]["status"] == "pending"

        response = set_status(client, auth_headers, commands[0]["id"], "completed")
        assert response.status_code == 200

        assert pending(client, auth_headers) == []

    def test_drain_does_not_pick_up(self, client, auth_headers):
        """Test listing pending commands twice returns them both times."""
        enqueue(client, auth_headers)

        assert pending(client, auth_headers) == pending(client, auth_headers)
        assert len(pending(client, auth_headers)) == 1

    def test_fifo_order(self, client, auth_headers):
        """Test pending commands come back oldest first."""
        for body in ("first", "second", "third"):
            enqueue(client, auth_headers, body=body)

        bodies = [command["payload"]["body"] for command in pending(client, auth_headers)]

        assert bodies == ["first", "second", "third"]

    def test_picked_up_leaves_queue(self, client, auth_headers):
        """Test a picked_up command is no longer pending and can then finish."""
        enqueue(client, auth_headers)
        command_id = pending(client, auth_headers)[0]["id"]

        assert set_status(client, auth_headers, command_id, "picked_up").status_code == 200
        assert pending(client, auth_headers) == []
        assert set_status(client, auth_headers, command_id, "failed").status_code == 200


class TestCommandTransitions:
    """Test status transitions only move forward."""

    def test_backwards_rejected(self, client, auth_headers):
        """Test a completed command cannot return to pending or picked_up."""
        enqueue(client, auth_headers)
        command_id = pending(client, auth_headers)[0]["id"]
        set_status(client, auth_headers, command_id, "completed")

        assert set_status(client, auth_headers, command_id, "pending").status_code == 409
        assert set_status(client, auth_headers, command_id, "picked_up").status_code == 409
        assert pending(client, auth_headers) == []

    def test_terminal_states_are_final(self, client, auth_headers):
        """Test completed cannot become failed."""
        enqueue(client, auth_headers)
        command_id = pending(client, auth_headers)[0]["id"]
        set_status(client, auth_headers, command_id, "completed")

        assert set_status(client, auth_headers, command_id, "failed").status_code == 409

    def test_repeated_report_is_noop(self, client, auth_headers):
        """Test re-sending the current status is acknowledged."""
        enqueue(client, auth_headers)
        command_id = pending(client, auth_headers)[0]["id"]
        set_status(client, auth_headers, command_id, "picked_up")

        assert set_status(client, auth_headers, command_id, "picked_up").status_code == 200

    def test_unknown_status_value(self, client, auth_headers):
        """Test statuses outside the lifecycle are rejected."""
        enqueue(client, auth_headers)
        command_id = pending(client, auth_headers)[0]["id"]

        assert set_status(client, auth_headers, command_id, "exploded").status_code == 422


class TestCommandScoping:
    """Test users only see and mutate their own commands."""

    def test_other_user_cannot_advance(self, client, auth_headers, other_headers):
        """Test another user's command id is treated as not found."""
        enqueue(client, auth_headers)
        command_id = pending(client, auth_headers)[0]["id"]

        response = set_status(client, other_headers, command_id, "completed")

        assert response.status_code == 404
        assert len(pending(client, auth_headers)) == 1

    def test_other_user_queue_separate(self, client, auth_headers, other_headers):
        """Test pending queues are per user."""
        enqueue(client, auth_headers)

        assert pending(client, other_headers) == []

    def test_unknown_command(self, client, auth_headers):
        """Test advancing a missing command returns 404."""
        assert set_status(client, auth_headers, 12345, "completed").status_code == 404


class TestCommandValidation:
    """Test enqueue input validation."""

    def test_missing_payload(self, client, auth_headers):
        """Test a command without payload is rejected."""
        response = client.post("/sync/command", json={"type": "send_sms"}, headers=auth_headers)

        assert response.status_code == 422

    def test_empty_payload(self, client, auth_headers):
        """Test an empty payload is rejected."""
        response = client.post("/sync/command", json={"type": "send_sms", "payload": {}}, headers=auth_headers)

        assert response.status_code == 422

    def test_missing_type(self, client, auth_headers):
        """Test a command without type is rejected."""
        response = client.post("/sync/command", json={"payload": {"to": "+1"}}, headers=auth_headers)

        assert response.status_code == 422


class TestConcurrentStatusReports:
    """Test overlapping status reports from two sessions."""

    def test_stale_report_cannot_move_backwards(self, client):
        """Test a picked_up report computed before completion does not overwrite it."""
        with SessionLocal() as setup:
            user_id = register_user(setup, "carol", "pw").user_id
            command_id = enqueue_command(setup, user_id, "send_sms", {"to": "+1", "body": "x"}).id

        with SessionLocal() as first, SessionLocal() as second:
            # First reporter has already loaded the command as pending
            stale = first.query(Command).filter(Command.id == command_id).one()
            assert stale.status == "pending"

            advance_command_status(second, user_id, command_id, "completed")

            with pytest.raises(InvalidTransitionError):
                advance_command_status(first, user_id, command_id, "picked_up")

        with SessionLocal() as check:
            assert check.query(Command).filter(Command.id == command_id).one().status == "completed"

    def test_stale_repeat_of_current_status_is_noop(self, client):
        """Test two sessions reporting the same status both succeed."""
        with SessionLocal() as setup:
            user_id = register_user(setup, "carol", "pw").user_id
            command_id = enqueue_command(setup, user_id, "send_sms", {"to": "+1"}).id

        with SessionLocal() as first, SessionLocal() as second:
            advance_command_status(first, user_id, command_id, "failed")
            command = advance_command_status(second, user_id, command_id, "failed")

        assert command.status == "failed"


class TestOpaquePayload:
    """Test payloads are stored as given."""

    def test_non_object_payload_accepted(self, client, auth_headers):
        """Test a list or string payload is queued and returned unchanged."""
        for payload in (["+1", "hi"], "raw text"):
            response = client.post("/sync/command", json={"type": "custom", "payload": payload}, headers=auth_headers)
            assert response.status_code == 200

        assert [command["payload"] for command in pending(client, auth_headers)] == [["+1", "hi"], "raw text"]

    def test_null_payload_rejected(self, client, auth_headers):
        """Test a null payload is rejected like a missing one."""
        response = client.post("/sync/command", json={"type": "send_sms", "payload": None}, headers=auth_headers)

        assert response.status_code == 422
