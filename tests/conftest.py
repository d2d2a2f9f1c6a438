"""
Pytest configuration and shared fixtures for CredGuard tests.
"""

import pytest
from datetime import datetime, timedelta, timezone

from credguard.core.config import WorkflowConfig
from credguard.session.manager import SessionManager
from credguard.store.audit import AuditLog
from credguard.store.credentials import CredentialStore
from credguard.store.database import Database
from credguard.store.throttle import RateLimiter
from credguard.workflow.requests import Dispatcher
from credguard.workflow.rotation import CredentialRotationWorkflow, create_workflow


# Cheap hashing for tests
TEST_ITERATIONS = 1_000

ORIGIN_A = "203.0.113.10"
ORIGIN_B = "198.51.100.20"
USER_AGENT = "pytest-agent/1.0"

DEMO_ID = "demo"
DEMO_PIN = "1234"
DEMO_PASSWORD = "OldPass123"


# =============================================================================
# CLOCK
# =============================================================================


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime = None) -> None:
        self.now = start or datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    """Fake wall clock starting at a fixed instant."""
    return FakeClock()


# =============================================================================
# STORE FIXTURES
# =============================================================================


@pytest.fixture
def db() -> Database:
    """Fresh in-memory database."""
    database = Database(path=":memory:", timeout_seconds=2.0)
    yield database
    database.close()


@pytest.fixture
def credential_store(db: Database, clock: FakeClock) -> CredentialStore:
    return CredentialStore(db, hash_iterations=TEST_ITERATIONS, clock=clock)


@pytest.fixture
def audit_log(db: Database, clock: FakeClock) -> AuditLog:
    return AuditLog(db, clock=clock)


@pytest.fixture
def rate_limiter(db: Database, clock: FakeClock) -> RateLimiter:
    return RateLimiter(db, max_attempts=5, window_seconds=900, clock=clock)


@pytest.fixture
def session_manager(clock: FakeClock) -> SessionManager:
    return SessionManager(ttl_seconds=1800, clock=clock)


# =============================================================================
# WORKFLOW FIXTURES
# =============================================================================


@pytest.fixture
def config() -> WorkflowConfig:
    """Default config with cheap hashing."""
    return WorkflowConfig(hash_iterations=TEST_ITERATIONS, store_timeout_seconds=2.0)


@pytest.fixture
def workflow(config: WorkflowConfig, clock: FakeClock) -> CredentialRotationWorkflow:
    """Workflow with the demo principal registered."""
    wf = create_workflow(config, clock=clock)
    wf.register(DEMO_ID, pin=DEMO_PIN, password=DEMO_PASSWORD).unwrap()
    yield wf
    wf.db.close()


@pytest.fixture
def demo_token(workflow: CredentialRotationWorkflow) -> str:
    """Session token of a logged-in demo principal."""
    return workflow.login(DEMO_ID, DEMO_PIN, origin=ORIGIN_A, user_agent=USER_AGENT).unwrap().session_token


@pytest.fixture
def dispatcher(workflow: CredentialRotationWorkflow) -> Dispatcher:
    return Dispatcher(workflow)


# =============================================================================
# PYTEST MARKERS
# =============================================================================


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
