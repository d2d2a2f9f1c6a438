"""
CredGuard Credential Store

Durable mapping from principal identity to hashed secrets, one hash per
``SecretKind``.

The raw secret never reaches the database or the logger. Verification is
always a hash verification, never a comparison of stored hashes.
"""

from __future__ import annotations

from datetime import datetime
from typing import Callable, Mapping, Optional

import attrs
import structlog
from returns.result import Failure, Result, Success

from credguard.core.crypto import DEFAULT_ITERATIONS, dummy_verify, hash_secret, verify_secret
from credguard.core.exceptions import Conflict, NotFound
from credguard.core.types import Ok, Principal, SecretKind, utcnow
from credguard.store.database import Database, from_epoch, to_epoch

logger = structlog.get_logger()


@attrs.define
class CredentialStore:
    """
    Hashed secrets per (principal, kind).

    Example:
        store = CredentialStore(db)
        store.create(Principal("demo"), {SecretKind.PIN: "1234"})
        assert store.verify("demo", SecretKind.PIN, "1234")
    """

    db: Database
    hash_iterations: int = DEFAULT_ITERATIONS
    clock: Callable[[], datetime] = utcnow
    _logger: structlog.BoundLogger = attrs.Factory(lambda: structlog.get_logger())

    def hash(self, secret: str) -> str:
        """Hash a secret with this store's iteration count."""
        return hash_secret(secret, self.hash_iterations)

    def create(
        self, principal: Principal, secrets_by_kind: Mapping[SecretKind, str]
    ) -> Result[Principal, Conflict]:
        """
        Create a principal together with its initial secrets.

        Returns:
            Success(principal), or Failure(Conflict) if the identity exists
        """
        return self.create_hashed(
            principal, {kind: self.hash(secret) for kind, secret in secrets_by_kind.items()}
        )

    def create_hashed(
        self, principal: Principal, hashes: Mapping[SecretKind, str]
    ) -> Result[Principal, Conflict]:
        """
        Create a principal from secrets already hashed with ``hash``.

        Performs no key derivation.
        """
        now = to_epoch(self.clock())

        with self.db.transaction():
            if self.exists(principal.principal_id):
                return Failure(Conflict(f"Principal {principal.principal_id!r} already exists"))

            self.db.execute(
                "INSERT INTO principals (principal_id, email, display_name, created_at) "
                "VALUES (?, ?, ?, ?)",
                (principal.principal_id, principal.email, principal.display_name, now),
            )
            for kind, secret_hash in hashes.items():
                self.db.execute(
                    "INSERT INTO credentials (principal_id, kind, secret_hash, updated_at) "
                    "VALUES (?, ?, ?, ?)",
                    (principal.principal_id, kind.value, secret_hash, now),
                )

        self._logger.info(
            "principal_created",
            principal=principal.principal_id,
            kinds=sorted(k.value for k in hashes),
        )
        return Success(attrs.evolve(principal, created_at=from_epoch(now)))

    def exists(self, principal_id: str) -> bool:
        """Check whether a principal exists."""
        row = self.db.query_one(
            "SELECT 1 FROM principals WHERE principal_id = ?", (principal_id,)
        )
        return row is not None

    def get(self, principal_id: str) -> Optional[Principal]:
        """Load a principal, or None if it does not exist."""
        row = self.db.query_one(
            "SELECT principal_id, email, display_name, created_at "
            "FROM principals WHERE principal_id = ?",
            (principal_id,),
        )
        if row is None:
            return None
        return Principal(
            principal_id=row["principal_id"],
            email=row["email"],
            display_name=row["display_name"],
            created_at=from_epoch(row["created_at"]),
        )

    def verify(self, principal_id: str, kind: SecretKind, candidate_secret: str) -> bool:
        """
        Verify a candidate secret for a principal.

        A wrong secret is a False result, not an error. Unknown principals
        cost the same hashing work as known ones.
        """
        row = self.db.query_one(
            "SELECT secret_hash FROM credentials WHERE principal_id = ? AND kind = ?",
            (principal_id, kind.value),
        )
        if row is None:
            self._logger.debug("credential_missing", principal=principal_id, kind=kind.value)
            return dummy_verify(candidate_secret, self.hash_iterations)

        return verify_secret(candidate_secret, row["secret_hash"])

    def replace(
        self, principal_id: str, kind: SecretKind, new_secret: str
    ) -> Result[Ok, NotFound]:
        """
        Replace the secret of the given kind with a fresh hash.

        Returns:
            Success(Ok), or Failure(NotFound) if the principal does not exist
        """
        return self.replace_hashed(principal_id, kind, self.hash(new_secret))

    def replace_hashed(
        self, principal_id: str, kind: SecretKind, new_hash: str
    ) -> Result[Ok, NotFound]:
        """Replace the secret of the given kind with a hash produced by ``hash``."""
        now = to_epoch(self.clock())

        with self.db.transaction():
            if not self.exists(principal_id):
                return Failure(NotFound(f"Principal {principal_id!r} not found"))

            self.db.execute(
                "INSERT INTO credentials (principal_id, kind, secret_hash, updated_at) "
                "VALUES (?, ?, ?, ?) "
                "ON CONFLICT (principal_id, kind) DO UPDATE SET "
                "secret_hash = excluded.secret_hash, updated_at = excluded.updated_at",
                (principal_id, kind.value, new_hash, now),
            )

        self._logger.info("credential_replaced", principal=principal_id, kind=kind.value)
        return Success(Ok())

    def updated_at(self, principal_id: str, kind: SecretKind) -> Optional[datetime]:
        """When the secret of the given kind was last set, if it exists."""
        row = self.db.query_one(
            "SELECT updated_at FROM credentials WHERE principal_id = ? AND kind = ?",
            (principal_id, kind.value),
        )
        return from_epoch(row["updated_at"]) if row is not None else None
