"""
Unit tests for credguard.workflow.requests module.

Tests payload parsing, dispatch and response mapping.
"""

import pytest
from returns.result import Failure, Success

from credguard.core.exceptions import (
    InvalidCredentials,
    RateLimited,
    StoreFailure,
    ValidationError,
)
from credguard.core.types import LoginOutcome, Ok, Principal
from credguard.store.audit import AuditLog
from credguard.workflow.requests import (
    ChangeSecretRequest,
    LoginRequest,
    LogoutRequest,
    parse_request,
    to_response,
)

from tests.conftest import DEMO_ID, DEMO_PIN, ORIGIN_A


class TestParseRequest:
    """Tests for parse_request."""

    def test_login(self):
        result = parse_request({"action": "login", "username": "demo", "pin": "1234"})
        assert result == Success(LoginRequest(identity="demo", secret="1234"))

    def test_numeric_pin_accepted(self):
        result = parse_request({"action": "login", "username": "demo", "pin": 1234})
        assert result.unwrap().secret == "1234"

    def test_missing_fields_become_empty(self):
        result = parse_request({"action": "login"})
        assert result.unwrap() == LoginRequest(identity="", secret="")

    def test_logout(self):
        assert parse_request({"action": "logout"}).unwrap() == LogoutRequest()

    def test_change_password(self):
        result = parse_request(
            {
                "action": "change_password",
                "oldPin": "1234",
                "newPassword": "Str0ngPass",
                "confirmPassword": "Str0ngPass",
            }
        )
        assert result.unwrap() == ChangeSecretRequest("1234", "Str0ngPass", "Str0ngPass")

    @pytest.mark.parametrize(
        "payload,reason",
        [
            ([], "malformed_payload"),
            ("login", "malformed_payload"),
            ({}, "unknown_action"),
            ({"action": "delete_account"}, "unknown_action"),
            ({"action": 7}, "unknown_action"),
            ({"action": "login", "username": ["demo"]}, "malformed_field"),
            ({"action": "login", "username": "demo", "pin": True}, "malformed_field"),
        ],
    )
    def test_invalid(self, payload, reason):
        result = parse_request(payload)
        assert isinstance(result, Failure)
        assert result.failure().reason == reason

    def test_secret_not_in_repr(self):
        assert "1234" not in repr(LoginRequest(identity="demo", secret="1234"))


class TestToResponse:
    """Tests for to_response."""

    def test_login_outcome(self):
        status, body = to_response(Success(LoginOutcome(principal_id="demo", session_token="tok")))
        assert status == 200
        assert body["session_token"] == "tok"

    def test_ok(self):
        assert to_response(Success(Ok("Logged out"))) == (
            200,
            {"success": True, "message": "Logged out"},
        )

    def test_principal(self):
        status, body = to_response(Success(Principal("demo", email="demo@example.com")))
        assert status == 200
        assert body["user"] == {"id": "demo", "email": "demo@example.com", "display_name": None}

    @pytest.mark.parametrize(
        "error,status",
        [
            (ValidationError("mismatch", "No match"), 400),
            (InvalidCredentials(), 401),
            (RateLimited(), 429),
        ],
    )
    def test_failures(self, error, status):
        code, body = to_response(Failure(error))
        assert code == status
        assert body["error"] == error.message

    def test_validation_reason_included(self):
        _, body = to_response(Failure(ValidationError("mismatch")))
        assert body["reason"] == "mismatch"


class TestDispatcher:
    """Tests for Dispatcher."""

    def test_handlers_cover_every_action(self, dispatcher):
        assert set(dispatcher.handlers()) == {LoginRequest, LogoutRequest, ChangeSecretRequest}

    def test_full_flow(self, dispatcher):
        status, body = dispatcher.handle(
            {"action": "login", "username": DEMO_ID, "pin": DEMO_PIN}, origin=ORIGIN_A
        )
        assert status == 200
        token = body["session_token"]

        status, body = dispatcher.handle(
            {
                "action": "change_password",
                "oldPin": DEMO_PIN,
                "newPassword": "Str0ngPass",
                "confirmPassword": "Str0ngPass",
            },
            session_token=token,
            origin=ORIGIN_A,
        )
        assert (status, body) == (200, {"success": True, "message": "Password updated successfully."})

        status, _ = dispatcher.handle({"action": "logout"}, session_token=token, origin=ORIGIN_A)
        assert status == 200

    def test_change_password_without_session(self, dispatcher):
        status, body = dispatcher.handle(
            {
                "action": "change_password",
                "oldPin": DEMO_PIN,
                "newPassword": "Str0ngPass",
                "confirmPassword": "Str0ngPass",
            },
            origin=ORIGIN_A,
        )
        assert status == 401

    def test_unknown_action(self, dispatcher):
        status, body = dispatcher.handle({"action": "sudo"})
        assert status == 400
        assert body["reason"] == "unknown_action"

    def test_dispatch_propagates_store_failure(self, dispatcher, monkeypatch):
        monkeypatch.setattr(AuditLog, "append", _raise_store_failure)
        with pytest.raises(StoreFailure):
            dispatcher.dispatch(LoginRequest(DEMO_ID, DEMO_PIN), origin=ORIGIN_A)

    def test_store_failure_is_server_error(self, dispatcher, monkeypatch):
        monkeypatch.setattr(AuditLog, "append", _raise_store_failure)
        status, body = dispatcher.handle(
            {"action": "login", "username": DEMO_ID, "pin": DEMO_PIN}, origin=ORIGIN_A
        )
        assert (status, body) == (500, {"error": "Server error"})


def _raise_store_failure(self, *args, **kwargs):
    raise StoreFailure("audit write failed")
