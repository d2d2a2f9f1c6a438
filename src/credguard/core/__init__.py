"""
CredGuard Core Module

Provides foundational types and abstractions used across the stores, the
session manager and the rotation workflow.

Components:
- types: Core type definitions (Principal, SecretKind, AuditEvent, etc.)
- state_machine: Base state machine with invariant checking
- crypto: Secret hashing and token generation
- config: Workflow configuration
- exceptions: Error taxonomy
"""

from credguard.core.types import (
    SecretKind,
    EventKind,
    Principal,
    AuditEvent,
    FailedAttempt,
    SessionRecord,
    LoginOutcome,
    Ok,
)
from credguard.core.state_machine import StateMachineBase, Transition
from credguard.core.config import WorkflowConfig
from credguard.core.exceptions import (
    CredGuardError,
    ValidationError,
    Unauthorized,
    InvalidCredentials,
    NotFound,
    Conflict,
    RateLimited,
    StoreFailure,
    StateError,
    InvariantViolation,
)

__all__ = [
    # Types
    "SecretKind",
    "EventKind",
    "Principal",
    "AuditEvent",
    "FailedAttempt",
    "SessionRecord",
    "LoginOutcome",
    "Ok",
    # State Machine
    "StateMachineBase",
    "Transition",
    # Config
    "WorkflowConfig",
    # Exceptions
    "CredGuardError",
    "ValidationError",
    "Unauthorized",
    "InvalidCredentials",
    "NotFound",
    "Conflict",
    "RateLimited",
    "StoreFailure",
    "StateError",
    "InvariantViolation",
]
