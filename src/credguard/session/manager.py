"""
CredGuard Session Manager

Tracks which caller is authenticated as which principal, keyed by an opaque
token passed on every call. There is no ambient per-connection global.

Lifecycle:
- start(): issue a fresh token; any prior token of the caller is invalidated
  first, so a pre-login token can never become an authenticated one
- current(): resolve a token, sliding its idle expiry
- end(): destroy a token (idempotent)

Thread-safe for concurrent requests.
"""

from __future__ import annotations

import threading
from datetime import datetime
from typing import Callable, Dict, Optional

import attrs
import structlog

from credguard.core.crypto import generate_session_token, token_fingerprint
from credguard.core.types import SessionRecord, utcnow

logger = structlog.get_logger()


@attrs.define
class SessionManager:
    """
    In-memory session map with idle expiry.

    Example:
        sessions = SessionManager(ttl_seconds=1800)
        token = sessions.start("demo", origin="10.0.0.1")
        assert sessions.current(token) == "demo"
        sessions.end(token)
        assert sessions.current(token) is None
    """

    ttl_seconds: int = 1800
    clock: Callable[[], datetime] = utcnow

    _sessions: Dict[str, SessionRecord] = attrs.Factory(dict)
    _lock: threading.RLock = attrs.Factory(threading.RLock)
    _logger: structlog.BoundLogger = attrs.Factory(lambda: structlog.get_logger())

    def start(
        self,
        principal_id: str,
        origin: str = "",
        previous_token: Optional[str] = None,
    ) -> str:
        """
        Bind a fresh token to a principal.

        Args:
            principal_id: Authenticated principal
            origin: Caller origin, kept for diagnostics
            previous_token: Token the caller held before logging in, if any

        Returns:
            New session token
        """
        now = self.clock()
        token = generate_session_token()

        with self._lock:
            if previous_token is not None and self._sessions.pop(previous_token, None):
                self._logger.info(
                    "session_replaced",
                    session=token_fingerprint(previous_token),
                )
            self._sessions[token] = SessionRecord(
                principal_id=principal_id,
                origin=origin,
                created_at=now,
                last_seen=now,
            )

        self._logger.info(
            "session_started",
            principal=principal_id,
            session=token_fingerprint(token),
        )
        return token

    def current(self, session_token: Optional[str]) -> Optional[str]:
        """
        Principal bound to a token.

        Returns:
            The principal id, or None when the token is absent, unknown or
            expired (callers must treat None as unauthenticated)
        """
        if not session_token:
            return None

        now = self.clock()
        with self._lock:
            record = self._sessions.get(session_token)
            if record is None:
                return None
            if record.is_expired(now, self.ttl_seconds):
                del self._sessions[session_token]
                self._logger.info(
                    "session_expired",
                    principal=record.principal_id,
                    session=token_fingerprint(session_token),
                )
                return None
            self._sessions[session_token] = attrs.evolve(record, last_seen=now)
            return record.principal_id

    def end(self, session_token: Optional[str]) -> bool:
        """
        Destroy a session.

        Returns:
            True if a live session was removed
        """
        if not session_token:
            return False

        with self._lock:
            record = self._sessions.pop(session_token, None)

        if record is not None:
            self._logger.info(
                "session_ended",
                principal=record.principal_id,
                session=token_fingerprint(session_token),
            )
        return record is not None

    def end_all(self, principal_id: str) -> int:
        """
        Destroy every session bound to a principal.

        Returns:
            Number of sessions removed
        """
        with self._lock:
            tokens = [t for t, r in self._sessions.items() if r.principal_id == principal_id]
            for token in tokens:
                del self._sessions[token]

        if tokens:
            self._logger.info("sessions_ended", principal=principal_id, count=len(tokens))
        return len(tokens)

    def purge_expired(self) -> int:
        """Remove expired sessions. Returns the number removed."""
        now = self.clock()
        with self._lock:
            expired = [
                t for t, r in self._sessions.items() if r.is_expired(now, self.ttl_seconds)
            ]
            for token in expired:
                del self._sessions[token]
        return len(expired)

    @property
    def size(self) -> int:
        """Number of sessions currently held (live or not yet purged)."""
        with self._lock:
            return len(self._sessions)
