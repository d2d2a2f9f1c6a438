"""
CredGuard Rate Limiter

Sliding-window counter of failed attempts, keyed independently by network
origin and by targeted principal.

A caller is blocked when EITHER key has at least ``max_attempts`` failures
newer than ``now - window``. The origin key throttles one source hammering
many accounts; the principal key throttles many sources hammering one
account.

Recording a failure never evaluates the threshold. The workflow checks
``is_blocked`` before any privileged work.

Expired attempts are compacted lazily on ``record_failure``; no background
scheduler is needed.
"""

from __future__ import annotations

import ipaddress
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional

import attrs
import structlog

from credguard.core.types import FailedAttempt, utcnow
from credguard.store.database import Database, to_epoch

logger = structlog.get_logger()


UNKNOWN_ORIGIN = "unknown"


def normalize_origin(origin: Optional[str]) -> str:
    """
    Canonical bucket key for a caller origin.

    IP addresses are canonicalized (IPv4-mapped IPv6 collapses to IPv4).
    Missing, blank or non-printable origins all share the UNKNOWN_ORIGIN
    bucket, so they are throttled together rather than skipped.
    """
    if origin is None:
        return UNKNOWN_ORIGIN

    value = origin.strip()
    if not value or not value.isprintable():
        return UNKNOWN_ORIGIN

    try:
        address = ipaddress.ip_address(value)
    except ValueError:
        return value

    if isinstance(address, ipaddress.IPv6Address) and address.ipv4_mapped is not None:
        return str(address.ipv4_mapped)
    return str(address)


@attrs.define
class RateLimiter:
    """
    Dual-key sliding-window throttle.

    Example:
        limiter = RateLimiter(db, max_attempts=5, window_seconds=900)
        if limiter.is_blocked("10.0.0.1", "demo"):
            ...  # reject with RateLimited
        limiter.record_failure("10.0.0.1", "demo")
    """

    db: Database
    max_attempts: int = 5
    window_seconds: int = 900
    clock: Callable[[], datetime] = utcnow
    _logger: structlog.BoundLogger = attrs.Factory(lambda: structlog.get_logger())

    @property
    def window(self) -> timedelta:
        return timedelta(seconds=self.window_seconds)

    def _cutoff(self) -> float:
        return to_epoch(self.clock() - self.window)

    def failure_count(
        self, origin: Optional[str] = None, principal_id: Optional[str] = None
    ) -> Dict[str, int]:
        """
        Failures inside the current window for each supplied key.

        Returns:
            {"origin": n, "principal": m} for the keys that were given
        """
        cutoff = self._cutoff()
        counts: Dict[str, int] = {}

        if origin is not None or principal_id is None:
            row = self.db.query_one(
                "SELECT COUNT(*) AS n FROM failed_attempts "
                "WHERE origin = ? AND created_at > ?",
                (normalize_origin(origin), cutoff),
            )
            counts["origin"] = int(row["n"])

        if principal_id:
            row = self.db.query_one(
                "SELECT COUNT(*) AS n FROM failed_attempts "
                "WHERE principal_id = ? AND created_at > ?",
                (principal_id, cutoff),
            )
            counts["principal"] = int(row["n"])

        return counts

    def is_blocked(self, origin: Optional[str], principal_id: Optional[str] = None) -> bool:
        """
        Check whether either key has reached the threshold.

        Args:
            origin: Caller network origin (opaque; blank means unknown)
            principal_id: Targeted principal, when known
        """
        key = normalize_origin(origin)
        counts = self.failure_count(key, principal_id)

        blocked_by = [name for name, n in counts.items() if n >= self.max_attempts]
        if blocked_by:
            self._logger.warning(
                "rate_limited",
                origin=key,
                principal=principal_id,
                blocked_by=blocked_by,
                counts=counts,
                max_attempts=self.max_attempts,
            )
            return True
        return False

    def record_failure(
        self, origin: Optional[str], principal_id: Optional[str] = None
    ) -> FailedAttempt:
        """
        Append a timestamped failed attempt.

        Also drops attempts that have left the window.
        """
        attempt = FailedAttempt(
            origin=normalize_origin(origin),
            created_at=self.clock(),
            principal_id=principal_id or None,
        )

        with self.db.transaction():
            self.db.execute(
                "INSERT INTO failed_attempts (principal_id, origin, created_at) "
                "VALUES (?, ?, ?)",
                (attempt.principal_id, attempt.origin, to_epoch(attempt.created_at)),
            )
            self._compact()

        self._logger.info(
            "failed_attempt_recorded",
            origin=attempt.origin,
            principal=attempt.principal_id,
        )
        return attempt

    def reset(self, principal_id: str) -> int:
        """
        Clear every recorded attempt for a principal.

        Returns:
            Number of attempts removed
        """
        cursor = self.db.execute(
            "DELETE FROM failed_attempts WHERE principal_id = ?", (principal_id,)
        )
        self._logger.info("rate_limit_reset", principal=principal_id, removed=cursor.rowcount)
        return cursor.rowcount

    def compact(self) -> int:
        """Remove attempts older than the window. Returns the number removed."""
        with self.db.transaction():
            return self._compact()

    def _compact(self) -> int:
        cursor = self.db.execute(
            "DELETE FROM failed_attempts WHERE created_at <= ?", (self._cutoff(),)
        )
        if cursor.rowcount:
            self._logger.debug("rate_limit_compacted", removed=cursor.rowcount)
        return cursor.rowcount
