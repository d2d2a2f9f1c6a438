"""
CredGuard Store Module

Durable persistence for credentials, audit events and failed attempts.

Components:
- database: SQLite connection, schema and bounded nested transactions
- credentials: CredentialStore (hashed secrets per principal and kind)
- audit: AuditLog (append-only event trail)
- throttle: RateLimiter (sliding window keyed by origin and principal)
"""

from credguard.store.database import Database
from credguard.store.credentials import CredentialStore
from credguard.store.audit import AuditLog
from credguard.store.throttle import RateLimiter, normalize_origin, UNKNOWN_ORIGIN

__all__ = [
    "Database",
    "CredentialStore",
    "AuditLog",
    "RateLimiter",
    "normalize_origin",
    "UNKNOWN_ORIGIN",
]
