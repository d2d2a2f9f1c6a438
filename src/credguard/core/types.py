"""
CredGuard Core Types

Fundamental type definitions shared by the stores, the session manager and
the rotation workflow.

Design Principles:
- Immutable: records use frozen attrs classes
- Validated: identity constraints enforced at construction
- Secret-free: no type here ever holds a raw secret
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

import attrs
from attrs import field, validators


# =============================================================================
# ENUMS
# =============================================================================


class SecretKind(Enum):
    """
    Logical kinds of credential a principal owns.

    Each kind is hashed independently; the PIN is used to log in and the
    password is the secret rotated by the workflow.
    """

    PIN = "pin"
    PASSWORD = "password"


class EventKind:
    """Audit event kinds written by the workflow."""

    ACCOUNT_CREATED = "account_created"
    LOGIN_SUCCESS = "login_success"
    LOGIN_FAILURE = "login_failure"
    LOGOUT = "logout"
    PASSWORD_CHANGED = "password_changed"
    PASSWORD_CHANGE_FAILED_PREFIX = "password_change_failed_"

    @classmethod
    def password_change_failed(cls, reason: str) -> str:
        """Return the audit kind for a rejected rotation."""
        return f"{cls.PASSWORD_CHANGE_FAILED_PREFIX}{reason}"


# =============================================================================
# IDENTITY TYPES
# =============================================================================


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@attrs.define(frozen=True, slots=True)
class Principal:
    """
    Identity protected by a set of secrets.

    INVARIANT: principal_id is non-empty and at most 255 characters
    """

    principal_id: str = field(
        validator=[
            validators.instance_of(str),
            validators.min_len(1),
            validators.max_len(255),
        ]
    )
    email: Optional[str] = None
    display_name: Optional[str] = None
    created_at: datetime = field(factory=utcnow)

    def __str__(self) -> str:
        return self.principal_id


# =============================================================================
# PERSISTED RECORDS
# =============================================================================


@attrs.define(frozen=True, slots=True)
class AuditEvent:
    """
    Immutable record of a security-relevant outcome.

    Never mutated or deleted once appended.
    """

    principal_id: str
    event_kind: str
    origin: str
    user_agent: str
    created_at: datetime

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "principal_id": self.principal_id,
            "event_kind": self.event_kind,
            "origin": self.origin,
            "user_agent": self.user_agent,
            "created_at": self.created_at.isoformat(),
        }


@attrs.define(frozen=True, slots=True)
class FailedAttempt:
    """A single failed verification counted by the rate limiter."""

    origin: str
    created_at: datetime
    principal_id: Optional[str] = None


@attrs.define(frozen=True, slots=True)
class SessionRecord:
    """
    Binding of a session token to exactly one principal.

    The token itself is the key of the session map and is not repeated here.
    """

    principal_id: str
    origin: str
    created_at: datetime
    last_seen: datetime

    def is_expired(self, now: datetime, ttl_seconds: float) -> bool:
        """Check if the session has been idle longer than ``ttl_seconds``."""
        return (now - self.last_seen).total_seconds() > ttl_seconds


# =============================================================================
# OUTCOME TYPES
# =============================================================================


@attrs.define(frozen=True, slots=True)
class LoginOutcome:
    """
    Result of a successful login.

    Attributes:
        principal_id: Authenticated principal
        session_token: Fresh opaque token for subsequent calls
    """

    principal_id: str
    session_token: str = field(repr=False)


@attrs.define(frozen=True, slots=True)
class Ok:
    """Successful completion of an operation with nothing to return."""

    message: str = ""
