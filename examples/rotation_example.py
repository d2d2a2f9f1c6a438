#!/usr/bin/env python3
"""
Credential Rotation Example

Demonstrates the CredGuard workflow behind a login and password-reset page.
This example shows:
1. Registering a principal and logging in with a PIN
2. Rejected and committed password rotations
3. Throttling after repeated failures
4. Reading the audit trail and the last request trace
"""

import json

from credguard import WorkflowConfig, create_workflow
from credguard.core.types import SecretKind


ORIGIN = "192.168.1.100"
AGENT = "example-browser/1.0"


def main():
    """Walk through a login and password rotation."""

    print("=" * 60)
    print("CredGuard - Credential Rotation Example")
    print("=" * 60)
    print()

    # In-memory store; pass database_path="auth.db" to persist
    workflow = create_workflow(WorkflowConfig(hash_iterations=50_000))
    workflow.register("demo", pin="1234", password="OldPass123", origin=ORIGIN)

    # ==========================================================================
    # EXAMPLE 1: Login
    # ==========================================================================
    print("1. Login")
    print("-" * 40)

    result = workflow.login("demo", "1234", origin=ORIGIN, user_agent=AGENT)
    token = result.unwrap().session_token
    print(f"   Principal: {result.unwrap().principal_id}")
    print(f"   State: {workflow.last_state().name}")
    print()

    # ==========================================================================
    # EXAMPLE 2: Rejected rotations
    # ==========================================================================
    print("2. Rejected Rotations")
    print("-" * 40)

    attempts = [
        ("1234", "Weakpass", "Weakpass"),
        ("1234", "Str0ngPass", "Str0ngPasz"),
        ("9999", "Str0ngPass", "Str0ngPass"),
    ]
    for old, new, confirm in attempts:
        result = workflow.change_secret(token, old, new, confirm, origin=ORIGIN, user_agent=AGENT)
        error = result.failure()
        print(f"   {type(error).__name__}: {error.message}")

    counts = workflow.limiter.failure_count(ORIGIN, "demo")
    print(f"   Failures in window: {counts}")
    print()

    # ==========================================================================
    # EXAMPLE 3: Committed rotation
    # ==========================================================================
    print("3. Committed Rotation")
    print("-" * 40)

    result = workflow.change_secret(
        token, "1234", "Str0ngPass", "Str0ngPass", origin=ORIGIN, user_agent=AGENT
    )
    print(f"   {result.unwrap().message}")
    print(f"   New password verifies: "
          f"{workflow.credentials.verify('demo', SecretKind.PASSWORD, 'Str0ngPass')}")
    print(f"   Failures after reset: {workflow.limiter.failure_count(ORIGIN, 'demo')}")
    print(f"   Trace: {json.loads(workflow.last_trace_json())['final_state']}")
    print()

    # ==========================================================================
    # EXAMPLE 4: Throttling
    # ==========================================================================
    print("4. Throttling")
    print("-" * 40)

    for i in range(workflow.config.max_attempts):
        result = workflow.login("demo", "0000", origin=ORIGIN, user_agent=AGENT)
        print(f"   Attempt {i + 1}: {result.failure().message}")

    result = workflow.login("demo", "1234", origin=ORIGIN, user_agent=AGENT)
    print(f"   Correct PIN now: {result.failure().message}")
    print()

    # ==========================================================================
    # EXAMPLE 5: Audit trail
    # ==========================================================================
    print("5. Audit Trail")
    print("-" * 40)

    for event in workflow.audit.events_for("demo"):
        print(f"   {event.created_at:%H:%M:%S}  {event.event_kind:<40} {event.origin}")
    print()

    workflow.db.close()

    print("=" * 60)
    print("Example complete!")
    print("=" * 60)


if __name__ == "__main__":
    main()
