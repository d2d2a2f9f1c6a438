"""
Unit tests for credguard.store.

Tests the database wrapper, the credential store, the audit log and the
rate limiter against an in-memory SQLite database.
"""

import pytest
from returns.result import Failure, Success

from credguard.core.exceptions import Conflict, NotFound, StoreFailure
from credguard.core.types import EventKind, Principal, SecretKind
from credguard.store.database import Database
from credguard.store.throttle import UNKNOWN_ORIGIN, normalize_origin

from tests.conftest import ORIGIN_A, ORIGIN_B


def _count(db: Database, table: str) -> int:
    return db.query_one(f"SELECT COUNT(*) AS n FROM {table}")["n"]


# =============================================================================
# DATABASE
# =============================================================================


class TestDatabase:
    """Tests for the Database wrapper."""

    def test_transaction_commits(self, db):
        with db.transaction():
            db.execute(
                "INSERT INTO failed_attempts (principal_id, origin, created_at) VALUES (?, ?, ?)",
                ("demo", ORIGIN_A, 1.0),
            )
        assert _count(db, "failed_attempts") == 1

    def test_exception_rolls_back(self, db):
        """Test every write in the scope is undone on error."""
        with pytest.raises(RuntimeError):
            with db.transaction():
                db.execute(
                    "INSERT INTO failed_attempts (principal_id, origin, created_at) "
                    "VALUES (?, ?, ?)",
                    ("demo", ORIGIN_A, 1.0),
                )
                raise RuntimeError("boom")
        assert _count(db, "failed_attempts") == 0
        assert not db.in_transaction

    def test_nested_scope_joins_outer(self, db):
        """Test a failing outer scope also undoes inner writes."""
        with pytest.raises(StoreFailure):
            with db.transaction():
                with db.transaction():
                    db.execute(
                        "INSERT INTO failed_attempts (principal_id, origin, created_at) "
                        "VALUES (?, ?, ?)",
                        ("demo", ORIGIN_A, 1.0),
                    )
                assert db.in_transaction
                raise StoreFailure("audit write failed")
        assert _count(db, "failed_attempts") == 0

    def test_sql_error_is_store_failure(self, db):
        with pytest.raises(StoreFailure):
            db.query("SELECT * FROM missing_table")

    def test_closed_database_raises(self):
        database = Database(path=":memory:")
        database.close()
        with pytest.raises(StoreFailure):
            database.query("SELECT 1")

    def test_file_database_persists(self, tmp_path):
        path = str(tmp_path / "auth.db")
        first = Database(path=path)
        first.execute(
            "INSERT INTO principals (principal_id, created_at) VALUES (?, ?)", ("demo", 1.0)
        )
        first.close()

        second = Database(path=path)
        try:
            assert _count(second, "principals") == 1
        finally:
            second.close()


# =============================================================================
# CREDENTIAL STORE
# =============================================================================


class TestCredentialStore:
    """Tests for CredentialStore."""

    def test_create_and_verify(self, credential_store):
        result = credential_store.create(
            Principal("demo"), {SecretKind.PIN: "1234", SecretKind.PASSWORD: "OldPass123"}
        )
        assert isinstance(result, Success)
        assert credential_store.verify("demo", SecretKind.PIN, "1234")
        assert credential_store.verify("demo", SecretKind.PASSWORD, "OldPass123")

    def test_kinds_are_independent(self, credential_store):
        credential_store.create(
            Principal("demo"), {SecretKind.PIN: "1234", SecretKind.PASSWORD: "OldPass123"}
        )
        assert not credential_store.verify("demo", SecretKind.PASSWORD, "1234")
        assert not credential_store.verify("demo", SecretKind.PIN, "OldPass123")

    def test_create_duplicate_conflicts(self, credential_store):
        credential_store.create(Principal("demo"), {SecretKind.PIN: "1234"})
        result = credential_store.create(Principal("demo"), {SecretKind.PIN: "9999"})

        assert isinstance(result, Failure)
        assert isinstance(result.failure(), Conflict)
        assert credential_store.verify("demo", SecretKind.PIN, "1234")

    def test_raw_secret_not_stored(self, credential_store, db):
        credential_store.create(Principal("demo"), {SecretKind.PIN: "1234"})
        rows = db.query("SELECT secret_hash FROM credentials")
        assert len(rows) == 1
        assert rows[0]["secret_hash"] != "1234"
        assert rows[0]["secret_hash"].startswith("pbkdf2_sha256$")

    def test_verify_unknown_principal(self, credential_store):
        assert credential_store.verify("ghost", SecretKind.PIN, "1234") is False

    def test_replace(self, credential_store, clock):
        credential_store.create(Principal("demo"), {SecretKind.PASSWORD: "OldPass123"})
        before = credential_store.updated_at("demo", SecretKind.PASSWORD)
        clock.advance(seconds=5)

        result = credential_store.replace("demo", SecretKind.PASSWORD, "Str0ngPass")

        assert isinstance(result, Success)
        assert credential_store.verify("demo", SecretKind.PASSWORD, "Str0ngPass")
        assert not credential_store.verify("demo", SecretKind.PASSWORD, "OldPass123")
        assert credential_store.updated_at("demo", SecretKind.PASSWORD) > before

    def test_replace_adds_missing_kind(self, credential_store):
        credential_store.create(Principal("demo"), {SecretKind.PIN: "1234"})
        credential_store.replace("demo", SecretKind.PASSWORD, "Str0ngPass")
        assert credential_store.verify("demo", SecretKind.PASSWORD, "Str0ngPass")

    def test_replace_unknown_principal(self, credential_store):
        result = credential_store.replace("ghost", SecretKind.PASSWORD, "Str0ngPass")
        assert isinstance(result, Failure)
        assert isinstance(result.failure(), NotFound)

    def test_prehashed_writes(self, credential_store):
        """Test create_hashed and replace_hashed store the given hashes as-is."""
        pin_hash = credential_store.hash("1234")
        credential_store.create_hashed(Principal("demo"), {SecretKind.PIN: pin_hash}).unwrap()
        assert credential_store.verify("demo", SecretKind.PIN, "1234")

        result = credential_store.replace_hashed(
            "demo", SecretKind.PASSWORD, credential_store.hash("Str0ngPass")
        )
        assert isinstance(result, Success)
        assert credential_store.verify("demo", SecretKind.PASSWORD, "Str0ngPass")

    def test_replace_hashed_unknown_principal(self, credential_store):
        result = credential_store.replace_hashed(
            "ghost", SecretKind.PASSWORD, credential_store.hash("Str0ngPass")
        )
        assert isinstance(result.failure(), NotFound)

    def test_get(self, credential_store):
        credential_store.create(
            Principal("demo", email="demo@example.com", display_name="Demo"),
            {SecretKind.PIN: "1234"},
        )
        principal = credential_store.get("demo")
        assert principal.email == "demo@example.com"
        assert principal.display_name == "Demo"
        assert credential_store.get("ghost") is None
        assert credential_store.exists("demo")
        assert not credential_store.exists("ghost")


# =============================================================================
# AUDIT LOG
# =============================================================================


class TestAuditLog:
    """Tests for AuditLog."""

    def test_append_and_read_in_order(self, audit_log, clock):
        audit_log.append("demo", EventKind.LOGIN_FAILURE, ORIGIN_A, "agent")
        clock.advance(seconds=1)
        audit_log.append("demo", EventKind.LOGIN_SUCCESS, ORIGIN_A, "agent")
        audit_log.append("other", EventKind.LOGIN_SUCCESS, ORIGIN_B)

        events = audit_log.events_for("demo")
        assert [e.event_kind for e in events] == ["login_failure", "login_success"]
        assert events[0].user_agent == "agent"
        assert events[1].created_at > events[0].created_at
        assert audit_log.count() == 3

    def test_filter_by_kind(self, audit_log):
        audit_log.append("demo", EventKind.LOGIN_FAILURE, ORIGIN_A)
        audit_log.append("demo", EventKind.LOGIN_SUCCESS, ORIGIN_A)

        events = audit_log.events_for("demo", EventKind.LOGIN_SUCCESS)
        assert len(events) == 1

    def test_append_inside_failed_transaction_is_undone(self, audit_log, db):
        with pytest.raises(StoreFailure):
            with db.transaction():
                audit_log.append("demo", EventKind.LOGIN_FAILURE, ORIGIN_A)
                raise StoreFailure()
        assert audit_log.count() == 0

    def test_append_to_closed_store_raises(self, audit_log, db):
        db.close()
        with pytest.raises(StoreFailure):
            audit_log.append("demo", EventKind.LOGIN_FAILURE, ORIGIN_A)


# =============================================================================
# RATE LIMITER
# =============================================================================


class TestNormalizeOrigin:
    """Tests for origin bucketing."""

    @pytest.mark.parametrize("origin", [None, "", "   ", "10.0.0.1\x00"])
    def test_unknown_bucket(self, origin):
        assert normalize_origin(origin) == UNKNOWN_ORIGIN

    def test_ip_canonicalized(self):
        assert normalize_origin(" 203.0.113.10 ") == "203.0.113.10"
        assert normalize_origin("::ffff:203.0.113.10") == "203.0.113.10"
        assert normalize_origin("2001:DB8::1") == "2001:db8::1"

    def test_opaque_origin_kept(self):
        assert normalize_origin("proxy-7") == "proxy-7"


class TestRateLimiter:
    """Tests for RateLimiter."""

    def test_not_blocked_below_threshold(self, rate_limiter):
        for _ in range(4):
            rate_limiter.record_failure(ORIGIN_A, "demo")
        assert not rate_limiter.is_blocked(ORIGIN_A, "demo")

    def test_blocked_at_threshold(self, rate_limiter):
        for _ in range(5):
            rate_limiter.record_failure(ORIGIN_A, "demo")
        assert rate_limiter.is_blocked(ORIGIN_A, "demo")

    def test_origin_key_blocks_other_principals(self, rate_limiter):
        """Test one origin hammering many accounts is throttled."""
        for i in range(5):
            rate_limiter.record_failure(ORIGIN_A, f"user{i}")

        assert rate_limiter.is_blocked(ORIGIN_A, "fresh")
        assert not rate_limiter.is_blocked(ORIGIN_B, "fresh")

    def test_principal_key_blocks_other_origins(self, rate_limiter):
        """Test many origins hammering one account are throttled."""
        for i in range(5):
            rate_limiter.record_failure(f"198.51.100.{i}", "demo")

        assert rate_limiter.is_blocked(ORIGIN_B, "demo")
        assert not rate_limiter.is_blocked(ORIGIN_B, "other")

    def test_unknown_origins_share_a_bucket(self, rate_limiter):
        for origin in (None, "", "  ", None, ""):
            rate_limiter.record_failure(origin)
        assert rate_limiter.is_blocked(None)
        assert rate_limiter.is_blocked("")

    def test_window_expiry(self, rate_limiter, clock):
        for _ in range(5):
            rate_limiter.record_failure(ORIGIN_A, "demo")

        clock.advance(seconds=899)
        assert rate_limiter.is_blocked(ORIGIN_A, "demo")

        clock.advance(seconds=1)
        assert not rate_limiter.is_blocked(ORIGIN_A, "demo")

    def test_failure_count(self, rate_limiter):
        rate_limiter.record_failure(ORIGIN_A, "demo")
        rate_limiter.record_failure(ORIGIN_B, "demo")

        assert rate_limiter.failure_count(ORIGIN_A, "demo") == {"origin": 1, "principal": 2}
        assert rate_limiter.failure_count(principal_id="demo") == {"principal": 2}

    def test_reset_clears_principal(self, rate_limiter):
        for _ in range(5):
            rate_limiter.record_failure(ORIGIN_A, "demo")

        assert rate_limiter.reset("demo") == 5
        assert not rate_limiter.is_blocked(ORIGIN_A, "demo")

    def test_compaction_drops_expired_rows(self, rate_limiter, clock, db):
        for _ in range(3):
            rate_limiter.record_failure(ORIGIN_A, "demo")

        clock.advance(seconds=901)
        rate_limiter.record_failure(ORIGIN_B, "other")

        assert _count(db, "failed_attempts") == 1

    def test_explicit_compact(self, rate_limiter, clock):
        rate_limiter.record_failure(ORIGIN_A, "demo")
        clock.advance(seconds=1000)
        assert rate_limiter.compact() == 1
