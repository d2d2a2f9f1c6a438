"""
CredGuard Request Dispatch

Maps the JSON payloads of the web layer onto the closed set of workflow
operations and maps outcomes back to ``(status, body)`` pairs.

Payload shape (the ``action`` field selects the operation):
    {"action": "login", "username": "...", "pin": "..."}
    {"action": "logout"}
    {"action": "change_password", "oldPin": "...",
     "newPassword": "...", "confirmPassword": "..."}

Unknown or missing actions are a ValidationError, never a silent no-op.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, Mapping, Optional, Tuple, Union

import attrs
import structlog
from returns.result import Failure, Result, Success

from credguard.core.exceptions import CredGuardError, StoreFailure, ValidationError
from credguard.core.types import LoginOutcome, Ok, Principal
from credguard.workflow.rotation import CredentialRotationWorkflow

logger = structlog.get_logger()


# =============================================================================
# REQUEST TYPES
# =============================================================================


@attrs.define(frozen=True, slots=True)
class LoginRequest:
    """Log in with identity and login secret."""

    identity: str
    secret: str = attrs.field(repr=False)


@attrs.define(frozen=True, slots=True)
class LogoutRequest:
    """End the caller's session."""


@attrs.define(frozen=True, slots=True)
class ChangeSecretRequest:
    """Rotate the caller's secret."""

    old_secret: str = attrs.field(repr=False)
    new_secret: str = attrs.field(repr=False)
    confirm_secret: str = attrs.field(repr=False)


Request = Union[LoginRequest, LogoutRequest, ChangeSecretRequest]


def _text(payload: Mapping[str, Any], key: str) -> str:
    value = payload.get(key)
    if value is None:
        return ""
    if isinstance(value, bool):
        raise ValueError(key)
    if isinstance(value, (str, int, float)):
        return str(value)
    raise ValueError(key)


def _parse_login(payload: Mapping[str, Any]) -> Request:
    return LoginRequest(identity=_text(payload, "username"), secret=_text(payload, "pin"))


def _parse_logout(payload: Mapping[str, Any]) -> Request:
    return LogoutRequest()


def _parse_change_secret(payload: Mapping[str, Any]) -> Request:
    return ChangeSecretRequest(
        old_secret=_text(payload, "oldPin"),
        new_secret=_text(payload, "newPassword"),
        confirm_secret=_text(payload, "confirmPassword"),
    )


ACTIONS: Dict[str, Callable[[Mapping[str, Any]], Request]] = {
    "login": _parse_login,
    "logout": _parse_logout,
    "change_password": _parse_change_secret,
}


def parse_request(payload: Any) -> Result[Request, ValidationError]:
    """
    Parse a decoded JSON payload into a typed request.

    Returns:
        Success(request), or Failure(ValidationError) for a non-object
        payload, an unknown action or a field of the wrong type
    """
    if not isinstance(payload, Mapping):
        return Failure(ValidationError("malformed_payload", "Request body must be an object"))

    action = payload.get("action")
    parser = ACTIONS.get(action) if isinstance(action, str) else None
    if parser is None:
        logger.warning("unknown_action", action=str(action)[:64])
        return Failure(ValidationError("unknown_action", "Unknown action"))

    try:
        return Success(parser(payload))
    except ValueError as e:
        return Failure(ValidationError("malformed_field", f"Malformed field: {e}"))


# =============================================================================
# RESPONSES
# =============================================================================


def to_response(result: Result[Any, CredGuardError]) -> Tuple[int, Dict[str, Any]]:
    """
    Map an outcome to an HTTP-equivalent status and JSON body.

    Returns:
        (status, body)
    """
    if isinstance(result, Failure):
        error = result.failure()
        body: Dict[str, Any] = {"error": error.message}
        reason = getattr(error, "reason", None)
        if reason is not None:
            body["reason"] = reason
        return error.code or 400, body

    value = result.unwrap()
    if isinstance(value, LoginOutcome):
        return 200, {
            "success": True,
            "message": "Logged in",
            "session_token": value.session_token,
        }
    if isinstance(value, Principal):
        return 200, {
            "user": {
                "id": value.principal_id,
                "email": value.email,
                "display_name": value.display_name,
            }
        }
    if isinstance(value, Ok):
        return 200, {"success": True, "message": value.message}
    return 200, {"success": True}


# =============================================================================
# DISPATCHER
# =============================================================================


@attrs.define
class Dispatcher:
    """
    Routes typed requests to workflow operations.

    Example:
        dispatcher = Dispatcher(workflow)
        status, body = dispatcher.handle(
            {"action": "login", "username": "demo", "pin": "1234"},
            origin="10.0.0.1",
        )
    """

    workflow: CredentialRotationWorkflow
    _logger: structlog.BoundLogger = attrs.Factory(lambda: structlog.get_logger())

    def handlers(self) -> Dict[type, Callable[..., Result[Any, CredGuardError]]]:
        """Map each request type to its handler."""
        return {
            LoginRequest: self._login,
            LogoutRequest: self._logout,
            ChangeSecretRequest: self._change_secret,
        }

    def dispatch(
        self,
        request: Request,
        session_token: Optional[str] = None,
        origin: str = "",
        user_agent: str = "",
    ) -> Result[Any, CredGuardError]:
        """
        Run a typed request.

        Raises:
            StoreFailure: Propagated unchanged from the stores
        """
        handler = self.handlers().get(type(request))
        if handler is None:
            return Failure(ValidationError("unknown_action", "Unknown action"))
        return handler(request, session_token, origin, user_agent)

    def handle(
        self,
        payload: Any,
        session_token: Optional[str] = None,
        origin: str = "",
        user_agent: str = "",
    ) -> Tuple[int, Dict[str, Any]]:
        """
        Parse, dispatch and render a payload.

        Store failures become a 500 response with a generic message.
        """
        parsed = parse_request(payload)
        if isinstance(parsed, Failure):
            return to_response(parsed)

        try:
            result = self.dispatch(parsed.unwrap(), session_token, origin, user_agent)
        except StoreFailure as e:
            self._logger.error("request_failed", error=e.message)
            return 500, {"error": "Server error"}
        return to_response(result)

    def _login(
        self, request: LoginRequest, session_token: Optional[str], origin: str, user_agent: str
    ) -> Result[Any, CredGuardError]:
        return self.workflow.login(
            request.identity,
            request.secret,
            origin=origin,
            user_agent=user_agent,
            session_token=session_token,
        )

    def _logout(
        self, request: LogoutRequest, session_token: Optional[str], origin: str, user_agent: str
    ) -> Result[Any, CredGuardError]:
        return self.workflow.logout(session_token, origin=origin, user_agent=user_agent)

    def _change_secret(
        self,
        request: ChangeSecretRequest,
        session_token: Optional[str],
        origin: str,
        user_agent: str,
    ) -> Result[Any, CredGuardError]:
        return self.workflow.change_secret(
            session_token,
            request.old_secret,
            request.new_secret,
            request.confirm_secret,
            origin=origin,
            user_agent=user_agent,
        )
