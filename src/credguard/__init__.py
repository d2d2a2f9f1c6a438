"""
CredGuard - Session-backed Credential Rotation

This package provides the credential workflow behind a login and
password-reset page: PIN login, logout and password rotation, guarded by a
sliding-window throttle and recorded in an append-only audit trail.

Components:
- CredentialStore: salted one-way hashes per principal and secret kind
- AuditLog: append-only security events
- RateLimiter: failed attempts keyed by origin and by principal
- SessionManager: opaque session tokens with idle expiry
- CredentialRotationWorkflow: the login / logout / rotation state machine

Example Usage:
    from credguard import WorkflowConfig, create_workflow

    workflow = create_workflow(WorkflowConfig(database_path="auth.db"))
    workflow.register("demo", pin="1234", password="OldPass123")

    result = workflow.login("demo", "1234", origin="192.168.1.100")
    token = result.unwrap().session_token

    result = workflow.change_secret(
        token, "1234", "Str0ngPass", "Str0ngPass", origin="192.168.1.100"
    )
"""

from credguard.core.config import WorkflowConfig
from credguard.core.types import Principal, SecretKind, LoginOutcome, Ok
from credguard.workflow.rotation import CredentialRotationWorkflow, create_workflow
from credguard.workflow.requests import Dispatcher

__version__ = "0.1.0"

__all__ = [
    # Main API
    "CredentialRotationWorkflow",
    "create_workflow",
    "Dispatcher",
    "WorkflowConfig",
    # Types
    "Principal",
    "SecretKind",
    "LoginOutcome",
    "Ok",
    # Metadata
    "__version__",
]
