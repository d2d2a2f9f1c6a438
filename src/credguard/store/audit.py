"""
CredGuard Audit Log

Append-only trail of security-relevant outcomes.

Audit is a security control, not best-effort telemetry: a failed append
raises ``StoreFailure`` and, inside a workflow transaction, rolls back the
outcome it was recording.
"""

from __future__ import annotations

from datetime import datetime
from typing import Callable, List, Optional

import attrs
import structlog

from credguard.core.types import AuditEvent, utcnow
from credguard.store.database import Database, from_epoch, to_epoch

logger = structlog.get_logger()


@attrs.define
class AuditLog:
    """Append-only audit events, ordered by insertion."""

    db: Database
    clock: Callable[[], datetime] = utcnow
    _logger: structlog.BoundLogger = attrs.Factory(lambda: structlog.get_logger())

    def append(
        self,
        principal_id: str,
        event_kind: str,
        origin: str,
        user_agent: str = "",
    ) -> AuditEvent:
        """
        Append an event.

        Raises:
            StoreFailure: If the write fails
        """
        event = AuditEvent(
            principal_id=principal_id,
            event_kind=event_kind,
            origin=origin,
            user_agent=user_agent or "",
            created_at=self.clock(),
        )
        self.db.execute(
            "INSERT INTO audit_events "
            "(principal_id, event_kind, origin, user_agent, created_at) "
            "VALUES (?, ?, ?, ?, ?)",
            (
                event.principal_id,
                event.event_kind,
                event.origin,
                event.user_agent,
                to_epoch(event.created_at),
            ),
        )
        self._logger.info(
            "audit_event",
            principal=principal_id,
            event_kind=event_kind,
            origin=origin,
        )
        return event

    def events_for(
        self, principal_id: str, event_kind: Optional[str] = None
    ) -> List[AuditEvent]:
        """Events of one principal in insertion order, optionally of one kind."""
        sql = (
            "SELECT principal_id, event_kind, origin, user_agent, created_at "
            "FROM audit_events WHERE principal_id = ?"
        )
        params: list = [principal_id]
        if event_kind is not None:
            sql += " AND event_kind = ?"
            params.append(event_kind)
        sql += " ORDER BY id"

        return [self._to_event(row) for row in self.db.query(sql, params)]

    def count(self) -> int:
        """Total number of events in the log."""
        row = self.db.query_one("SELECT COUNT(*) AS n FROM audit_events")
        return int(row["n"]) if row is not None else 0

    @staticmethod
    def _to_event(row) -> AuditEvent:
        return AuditEvent(
            principal_id=row["principal_id"],
            event_kind=row["event_kind"],
            origin=row["origin"],
            user_agent=row["user_agent"],
            created_at=from_epoch(row["created_at"]),
        )
