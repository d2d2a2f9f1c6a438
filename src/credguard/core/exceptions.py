"""
CredGuard Exception Types

Error taxonomy for the credential rotation workflow.

Each error carries an HTTP-equivalent status code so the surrounding web
layer can report it without knowing the workflow internals.
"""

from typing import Optional


class CredGuardError(Exception):
    """Base exception for all CredGuard errors."""

    def __init__(self, message: str, code: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code


class ValidationError(CredGuardError):
    """
    Missing or malformed input.

    Always recoverable by the caller resubmitting corrected input.
    The ``reason`` is a short machine-readable slug (e.g. ``"mismatch"``).
    """

    def __init__(self, reason: str, message: Optional[str] = None) -> None:
        super().__init__(message or f"Validation failed: {reason}", code=400)
        self.reason = reason


class Unauthorized(CredGuardError):
    """
    No session, or the session has expired.

    Sensitive operations treat this as a hard rejection, never as a
    guest identity.
    """

    def __init__(self, message: str = "Unauthorized") -> None:
        super().__init__(message, code=401)


class InvalidCredentials(CredGuardError):
    """
    A presented secret did not verify.

    Always paired with a recorded failed attempt and an audit event.
    """

    def __init__(self, message: str = "Invalid credentials") -> None:
        super().__init__(message, code=401)


class NotFound(CredGuardError):
    """The referenced principal does not exist."""

    def __init__(self, message: str = "Principal not found") -> None:
        super().__init__(message, code=404)


class Conflict(CredGuardError):
    """The principal already exists."""

    def __init__(self, message: str = "Principal already exists") -> None:
        super().__init__(message, code=409)


class RateLimited(CredGuardError):
    """
    Too many failed attempts inside the sliding window.

    Raised before the store is touched, so it is never paired with a write.
    """

    def __init__(self, message: str = "Too many attempts. Try again later.") -> None:
        super().__init__(message, code=429)


class StoreFailure(CredGuardError):
    """
    The durable store failed or timed out.

    Fatal for the request. Nothing is committed when this is raised inside
    a workflow transaction.
    """

    def __init__(self, message: str = "Store unavailable") -> None:
        super().__init__(message, code=500)


class StateError(CredGuardError):
    """
    Invalid state transition.

    An event arrived that is not valid in the current workflow state.
    """

    pass


class InvariantViolation(CredGuardError):
    """
    Security invariant was violated.

    The workflow entered a state that its registered invariants forbid.
    """

    pass
