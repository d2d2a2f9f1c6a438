"""
CredGuard Credential Rotation Workflow

Orchestrates login, logout and secret rotation on top of the credential
store, the audit log, the rate limiter and the session manager.

States (per request):
- UNAUTHENTICATED: no principal bound
- AUTHENTICATED: a live session is bound to a principal
- ROTATION_REJECTED: a rotation attempt failed (terminal for the attempt)
- ROTATION_COMMITTED: a rotation attempt succeeded (terminal for the attempt)

change_secret check order (fixed):
1. rate limit (reject before any verification work)
2. required fields present
3. new secret equals confirmation
4. policy: length, upper case, lower case, digit
5. old secret verifies against the login kind

Steps 2-5 record a failed attempt and a ``password_change_failed_<reason>``
audit event. Only the first failing check is reported.

Atomicity: the writes of one outcome (rate-limit entry or reset, credential
replace, audit append) share a single store transaction. A store failure
commits none of them and propagates as ``StoreFailure``.
"""

from __future__ import annotations

import re
import threading
from contextlib import contextmanager
from datetime import datetime
from enum import Enum, auto
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

import attrs
import structlog
from returns.result import Failure, Result, Success

from credguard.core.config import WorkflowConfig
from credguard.core.exceptions import (
    Conflict,
    CredGuardError,
    InvalidCredentials,
    RateLimited,
    StoreFailure,
    Unauthorized,
    ValidationError,
)
from credguard.core.state_machine import StateMachineBase, Transition, TransitionEntry
from credguard.core.types import (
    EventKind,
    LoginOutcome,
    Ok,
    Principal,
    SecretKind,
    utcnow,
)
from credguard.session.manager import SessionManager
from credguard.store.audit import AuditLog
from credguard.store.credentials import CredentialStore
from credguard.store.database import Database
from credguard.store.throttle import RateLimiter, normalize_origin

logger = structlog.get_logger()


# =============================================================================
# STATES AND EVENTS
# =============================================================================


class WorkflowState(Enum):
    """Credential workflow states."""

    UNAUTHENTICATED = auto()
    AUTHENTICATED = auto()
    ROTATION_REJECTED = auto()
    ROTATION_COMMITTED = auto()


@attrs.define(frozen=True, slots=True)
class LoginSucceeded:
    principal_id: str


@attrs.define(frozen=True, slots=True)
class LoginFailed:
    principal_id: str
    reason: str


@attrs.define(frozen=True, slots=True)
class LoginThrottled:
    principal_id: str


@attrs.define(frozen=True, slots=True)
class LoggedOut:
    pass


@attrs.define(frozen=True, slots=True)
class RotationThrottled:
    pass


@attrs.define(frozen=True, slots=True)
class RotationRejected:
    reason: str


@attrs.define(frozen=True, slots=True)
class RotationCommitted:
    kind: SecretKind


# =============================================================================
# REJECTION REASONS
# =============================================================================


class RejectReason:
    """Machine-readable reasons, also used as audit event suffixes."""

    MISSING_FIELDS = "missing_fields"
    MISMATCH = "mismatch"
    TOO_SHORT = "too_short"
    COMPLEXITY = "complexity"
    PIN = "pin"
    PIN_TOO_SHORT = "pin_too_short"
    IDENTITY = "identity"
    EMAIL = "email"


_UPPER = re.compile(r"[A-Z]")
_LOWER = re.compile(r"[a-z]")
_DIGIT = re.compile(r"[0-9]")
_EMAIL = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def check_secret_policy(secret: str, min_length: int = 8) -> Optional[ValidationError]:
    """
    Validate a new secret against the rotation policy.

    Returns:
        None if acceptable, otherwise the ValidationError to report
    """
    if len(secret) < min_length:
        return ValidationError(
            RejectReason.TOO_SHORT,
            f"Password must be at least {min_length} characters.",
        )
    if not (_UPPER.search(secret) and _LOWER.search(secret) and _DIGIT.search(secret)):
        return ValidationError(
            RejectReason.COMPLEXITY,
            "Password must include upper, lower and a number.",
        )
    return None


def _clean(value: Optional[str]) -> str:
    return (value or "").strip()


# =============================================================================
# REQUEST STATE MACHINE
# =============================================================================


@attrs.define
class FlowContext:
    """
    Per-request workflow context.

    Never holds a raw secret or a session token.
    """

    origin: str
    user_agent: str = ""
    principal_id: Optional[str] = None
    failure_reason: str = ""


@attrs.define
class CredentialFlowStateMachine(
    StateMachineBase[WorkflowState, Any, FlowContext]
):
    """
    Credential workflow state machine.

    States:
    - UNAUTHENTICATED: waiting for a login
    - AUTHENTICATED: principal bound, rotation or logout allowed
    - ROTATION_REJECTED: attempt failed
    - ROTATION_COMMITTED: attempt succeeded
    """

    def __attrs_post_init__(self) -> None:
        self.add_invariant(
            "authenticated_has_principal",
            lambda state, ctx: state == WorkflowState.UNAUTHENTICATED
            or ctx.principal_id is not None,
        )
        self.add_invariant(
            "unauthenticated_has_no_principal",
            lambda state, ctx: state != WorkflowState.UNAUTHENTICATED
            or ctx.principal_id is None,
        )

    def initial_state(self) -> WorkflowState:
        return WorkflowState.UNAUTHENTICATED

    def transition_table(
        self,
    ) -> Dict[Tuple[WorkflowState, type], TransitionEntry]:
        return {
            (WorkflowState.UNAUTHENTICATED, LoginSucceeded): (
                WorkflowState.AUTHENTICATED,
                self._handle_login_succeeded,
            ),
            (WorkflowState.UNAUTHENTICATED, LoginFailed): (
                WorkflowState.UNAUTHENTICATED,
                self._handle_login_failed,
            ),
            (WorkflowState.UNAUTHENTICATED, LoginThrottled): (
                WorkflowState.UNAUTHENTICATED,
                self._handle_throttled,
            ),
            (WorkflowState.UNAUTHENTICATED, LoggedOut): (
                WorkflowState.UNAUTHENTICATED,
                self._handle_logged_out,
            ),
            (WorkflowState.AUTHENTICATED, LoggedOut): (
                WorkflowState.UNAUTHENTICATED,
                self._handle_logged_out,
            ),
            (WorkflowState.AUTHENTICATED, RotationThrottled): (
                WorkflowState.ROTATION_REJECTED,
                self._handle_throttled,
            ),
            (WorkflowState.AUTHENTICATED, RotationRejected): (
                WorkflowState.ROTATION_REJECTED,
                self._handle_rotation_rejected,
            ),
            (WorkflowState.AUTHENTICATED, RotationCommitted): (
                WorkflowState.ROTATION_COMMITTED,
                self._handle_rotation_committed,
            ),
        }

    @staticmethod
    def _handle_login_succeeded(event: LoginSucceeded, ctx: FlowContext) -> FlowContext:
        return attrs.evolve(ctx, principal_id=event.principal_id, failure_reason="")

    @staticmethod
    def _handle_login_failed(event: LoginFailed, ctx: FlowContext) -> FlowContext:
        return attrs.evolve(ctx, principal_id=None, failure_reason=event.reason)

    @staticmethod
    def _handle_throttled(event: Any, ctx: FlowContext) -> FlowContext:
        return attrs.evolve(ctx, failure_reason="rate_limited")

    @staticmethod
    def _handle_logged_out(event: LoggedOut, ctx: FlowContext) -> FlowContext:
        return attrs.evolve(ctx, principal_id=None, failure_reason="")

    @staticmethod
    def _handle_rotation_rejected(event: RotationRejected, ctx: FlowContext) -> FlowContext:
        return attrs.evolve(ctx, failure_reason=event.reason)

    @staticmethod
    def _handle_rotation_committed(event: RotationCommitted, ctx: FlowContext) -> FlowContext:
        return attrs.evolve(ctx, failure_reason="")


# =============================================================================
# WORKFLOW
# =============================================================================

@attrs.define
class _PrincipalLock:
    """Rotation lock of one principal; dropped once no caller holds or awaits it."""

    lock: threading.Lock = attrs.Factory(threading.Lock)
    holders: int = 0



@attrs.define
class CredentialRotationWorkflow:
    """
    Login, logout and secret rotation.

    All boundary operations return ``Result``: ``Success(outcome)`` or
    ``Failure(error)`` for the recoverable taxonomy (validation, unauthorized,
    invalid credentials, rate limited). ``StoreFailure`` is raised.

    Example:
        workflow = create_workflow()
        workflow.register("demo", pin="1234", password="OldPass123")

        outcome = workflow.login("demo", "1234", origin="10.0.0.1").unwrap()
        result = workflow.change_secret(
            outcome.session_token, "1234", "Str0ngPass", "Str0ngPass",
            origin="10.0.0.1",
        )
        assert isinstance(result, Success)
    """

    config: WorkflowConfig
    db: Database
    credentials: CredentialStore
    audit: AuditLog
    limiter: RateLimiter
    sessions: SessionManager

    _principal_locks: Dict[str, _PrincipalLock] = attrs.field(factory=dict, alias="_principal_locks")
    _locks_guard: threading.Lock = attrs.field(factory=threading.Lock, alias="_locks_guard")
    _local: threading.local = attrs.field(factory=threading.local, alias="_local")
    _logger: structlog.BoundLogger = attrs.field(
        factory=lambda: structlog.get_logger(), alias="_logger"
    )

    # -------------------------------------------------------------------------
    # Boundary operations
    # -------------------------------------------------------------------------

    def login(
        self,
        identity: str,
        secret: str,
        origin: str,
        user_agent: str = "",
        session_token: Optional[str] = None,
    ) -> Result[LoginOutcome, CredGuardError]:
        """
        Authenticate with the login-kind secret.

        Args:
            identity: Principal identity
            secret: Candidate login secret (PIN)
            origin: Caller network origin
            user_agent: Caller user agent
            session_token: Token the caller already holds; replaced on success

        Returns:
            Success(LoginOutcome) with a fresh token,
            Failure(RateLimited), Failure(ValidationError) or
            Failure(InvalidCredentials)
        """
        identity = _clean(identity)
        secret = _clean(secret)
        origin = normalize_origin(origin)
        machine = self._new_machine(origin, user_agent)

        if self.limiter.is_blocked(origin, identity or None):
            machine.process_event(LoginThrottled(principal_id=identity))
            return Failure(RateLimited())

        if not identity or not secret:
            machine.process_event(
                LoginFailed(principal_id=identity, reason=RejectReason.MISSING_FIELDS)
            )
            return Failure(
                ValidationError(RejectReason.MISSING_FIELDS, "username and pin required")
            )

        if not self.credentials.verify(identity, self.config.login_kind, secret):
            with self.db.transaction():
                self.limiter.record_failure(origin, identity)
                self.audit.append(identity, EventKind.LOGIN_FAILURE, origin, user_agent)
            machine.process_event(LoginFailed(principal_id=identity, reason="invalid_credentials"))
            self._logger.info("login_failed", principal=identity, origin=origin)
            return Failure(InvalidCredentials())

        self.audit.append(identity, EventKind.LOGIN_SUCCESS, origin, user_agent)
        token = self.sessions.start(identity, origin=origin, previous_token=session_token)
        machine.process_event(LoginSucceeded(principal_id=identity))

        self._logger.info("login_succeeded", principal=identity, origin=origin)
        return Success(LoginOutcome(principal_id=identity, session_token=token))

    def logout(
        self,
        session_token: Optional[str],
        origin: str = "",
        user_agent: str = "",
    ) -> Result[Ok, CredGuardError]:
        """
        End a session. Always succeeds; unknown tokens are a no-op.
        """
        origin = normalize_origin(origin)
        principal_id = self.sessions.current(session_token)
        machine = self._new_machine(origin, user_agent, principal_id)

        if principal_id is not None:
            self.audit.append(principal_id, EventKind.LOGOUT, origin, user_agent)
            self.sessions.end(session_token)
            self._logger.info("logged_out", principal=principal_id)

        machine.process_event(LoggedOut())
        return Success(Ok("Logged out"))

    def change_secret(
        self,
        session_token: Optional[str],
        old_secret: Optional[str],
        new_secret: Optional[str],
        confirm_secret: Optional[str],
        origin: str,
        user_agent: str = "",
    ) -> Result[Ok, CredGuardError]:
        """
        Rotate the rotating-kind secret of the session's principal.

        Returns:
            Success(Ok), or Failure with Unauthorized, RateLimited,
            ValidationError(reason), InvalidCredentials or NotFound
        """
        principal_id = self.sessions.current(session_token)
        if principal_id is None:
            return Failure(Unauthorized())

        old_secret, new_secret, confirm_secret = (
            _clean(old_secret),
            _clean(new_secret),
            _clean(confirm_secret),
        )
        origin = normalize_origin(origin)
        machine = self._new_machine(origin, user_agent, principal_id)

        with self._serialized(principal_id):
            if self.limiter.is_blocked(origin, principal_id):
                machine.process_event(RotationThrottled())
                return Failure(RateLimited())

            error = self._validate_rotation(old_secret, new_secret, confirm_secret)
            if error is None and not self.credentials.verify(
                principal_id, self.config.login_kind, old_secret
            ):
                error = InvalidCredentials("Old PIN is incorrect.")

            if error is not None:
                self._reject(machine, principal_id, error, origin, user_agent)
                return Failure(error)

            new_hash = self.credentials.hash(new_secret)
            with self.db.transaction():
                replaced = self.credentials.replace_hashed(
                    principal_id, self.config.rotating_kind, new_hash
                )
                if isinstance(replaced, Failure):
                    return replaced
                self.limiter.reset(principal_id)
                self.audit.append(principal_id, EventKind.PASSWORD_CHANGED, origin, user_agent)

        machine.process_event(RotationCommitted(kind=self.config.rotating_kind))
        self._logger.info(
            "password_changed",
            principal=principal_id,
            kind=self.config.rotating_kind.value,
        )
        return Success(Ok("Password updated successfully."))

    def current_principal(
        self, session_token: Optional[str]
    ) -> Result[Principal, Unauthorized]:
        """Principal bound to a session token."""
        principal_id = self.sessions.current(session_token)
        if principal_id is None:
            return Failure(Unauthorized("Not authenticated"))

        principal = self.credentials.get(principal_id)
        if principal is None:
            # Removed out-of-band; the session no longer means anything
            self.sessions.end(session_token)
            return Failure(Unauthorized("Not authenticated"))
        return Success(principal)

    def register(
        self,
        identity: str,
        pin: str,
        password: str,
        origin: str = "",
        user_agent: str = "",
        email: Optional[str] = None,
        display_name: Optional[str] = None,
    ) -> Result[Principal, CredGuardError]:
        """
        Create a principal owning both a PIN and a password.

        Returns:
            Success(Principal), Failure(ValidationError) or Failure(Conflict)
        """
        identity = _clean(identity)
        pin = _clean(pin)
        password = _clean(password)
        origin = normalize_origin(origin)

        if not identity or not pin or not password:
            return Failure(
                ValidationError(RejectReason.MISSING_FIELDS, "Missing or invalid fields")
            )
        if len(identity) > 255:
            return Failure(ValidationError(RejectReason.IDENTITY, "Identity too long"))
        if len(pin) < self.config.min_pin_length:
            return Failure(ValidationError(RejectReason.PIN_TOO_SHORT, "PIN too short"))
        error = check_secret_policy(password, self.config.min_secret_length)
        if error is not None:
            return Failure(error)

        if email is not None:
            email = email.strip().lower() or None
        if email is not None and not _EMAIL.match(email):
            return Failure(ValidationError(RejectReason.EMAIL, "Invalid email"))

        principal = Principal(
            principal_id=identity,
            email=email,
            display_name=(display_name or "").strip() or None,
        )
        hashes = {
            SecretKind.PIN: self.credentials.hash(pin),
            SecretKind.PASSWORD: self.credentials.hash(password),
        }
        with self.db.transaction():
            created = self.credentials.create_hashed(principal, hashes)
            if isinstance(created, Failure):
                return Failure(Conflict("User already exists"))
            self.audit.append(identity, EventKind.ACCOUNT_CREATED, origin, user_agent)

        return created

    # -------------------------------------------------------------------------
    # Traces
    # -------------------------------------------------------------------------

    def last_trace(self) -> List[Transition]:
        """Transitions of the last request handled on this thread."""
        machine = getattr(self._local, "machine", None)
        return machine.get_trace() if machine is not None else []

    def last_state(self) -> Optional[WorkflowState]:
        """Final state of the last request handled on this thread."""
        machine = getattr(self._local, "machine", None)
        return machine.state if machine is not None else None

    def last_trace_json(self) -> str:
        """JSON export of the last request's trace on this thread."""
        machine = getattr(self._local, "machine", None)
        return machine.export_trace_json() if machine is not None else "{}"

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _new_machine(
        self, origin: str, user_agent: str, principal_id: Optional[str] = None
    ) -> CredentialFlowStateMachine:
        state = (
            WorkflowState.AUTHENTICATED
            if principal_id is not None
            else WorkflowState.UNAUTHENTICATED
        )
        machine = CredentialFlowStateMachine(
            _state=state,
            _context=FlowContext(
                origin=origin,
                user_agent=user_agent or "",
                principal_id=principal_id,
            ),
            _clock=self.audit.clock,
        )
        self._local.machine = machine
        return machine

    def _validate_rotation(
        self,
        old_secret: Optional[str],
        new_secret: Optional[str],
        confirm_secret: Optional[str],
    ) -> Optional[ValidationError]:
        if not (old_secret and new_secret and confirm_secret):
            return ValidationError(RejectReason.MISSING_FIELDS, "All fields are required.")
        if new_secret != confirm_secret:
            return ValidationError(
                RejectReason.MISMATCH,
                "New password and confirmation do not match.",
            )
        return check_secret_policy(new_secret, self.config.min_secret_length)

    def _reject(
        self,
        machine: CredentialFlowStateMachine,
        principal_id: str,
        error: CredGuardError,
        origin: str,
        user_agent: str,
    ) -> None:
        reason = getattr(error, "reason", RejectReason.PIN)
        with self.db.transaction():
            self.limiter.record_failure(origin, principal_id)
            self.audit.append(
                principal_id,
                EventKind.password_change_failed(reason),
                origin,
                user_agent,
            )
        machine.process_event(RotationRejected(reason=reason))
        self._logger.info(
            "password_change_rejected",
            principal=principal_id,
            reason=reason,
            origin=origin,
        )

    @contextmanager
    def _serialized(self, principal_id: str) -> Iterator[None]:
        with self._locks_guard:
            entry = self._principal_locks.setdefault(principal_id, _PrincipalLock())
            entry.holders += 1
        try:
            if not entry.lock.acquire(timeout=self.config.store_timeout_seconds):
                self._logger.error("principal_lock_timeout", principal=principal_id)
                raise StoreFailure("Timed out waiting for a concurrent rotation")
            try:
                yield
            finally:
                entry.lock.release()
        finally:
            with self._locks_guard:
                entry.holders -= 1
                if entry.holders == 0:
                    del self._principal_locks[principal_id]


# =============================================================================
# FACTORY
# =============================================================================


def create_workflow(
    config: Optional[WorkflowConfig] = None,
    clock: Optional[Callable[[], datetime]] = None,
) -> CredentialRotationWorkflow:
    """
    Create a fully wired CredentialRotationWorkflow.

    Args:
        config: Workflow configuration (defaults: in-memory store)
        clock: Wall clock returning aware UTC datetimes

    Returns:
        Configured CredentialRotationWorkflow

    Example:
        workflow = create_workflow(WorkflowConfig(database_path="auth.db"))
    """
    config = config or WorkflowConfig()
    clock = clock or utcnow

    db = Database(path=config.database_path, timeout_seconds=config.store_timeout_seconds)

    return CredentialRotationWorkflow(
        config=config,
        db=db,
        credentials=CredentialStore(db, hash_iterations=config.hash_iterations, clock=clock),
        audit=AuditLog(db, clock=clock),
        limiter=RateLimiter(
            db,
            max_attempts=config.max_attempts,
            window_seconds=config.window_seconds,
            clock=clock,
        ),
        sessions=SessionManager(ttl_seconds=config.session_ttl_seconds, clock=clock),
    )
