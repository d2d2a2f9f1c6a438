"""
CredGuard Workflow Module

Login, logout and secret rotation orchestrated as a per-request state
machine, plus the action-field dispatch used by the web layer.

Components:
- rotation: CredentialRotationWorkflow and its state machine
- requests: typed requests, payload parsing, dispatch and responses
"""

from credguard.workflow.rotation import (
    CredentialRotationWorkflow,
    CredentialFlowStateMachine,
    FlowContext,
    RejectReason,
    WorkflowState,
    check_secret_policy,
    create_workflow,
)
from credguard.workflow.requests import (
    ChangeSecretRequest,
    Dispatcher,
    LoginRequest,
    LogoutRequest,
    parse_request,
    to_response,
)

__all__ = [
    # Workflow
    "CredentialRotationWorkflow",
    "CredentialFlowStateMachine",
    "FlowContext",
    "RejectReason",
    "WorkflowState",
    "check_secret_policy",
    "create_workflow",
    # Requests
    "ChangeSecretRequest",
    "Dispatcher",
    "LoginRequest",
    "LogoutRequest",
    "parse_request",
    "to_response",
]
