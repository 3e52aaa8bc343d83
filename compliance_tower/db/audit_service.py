"""
Audit Log Service.

Entries are added to the caller's session and flushed; the caller's commit
makes them durable together with the change they describe.
"""

from typing import Any, Dict, List, Optional

from sqlalchemy import desc
from sqlalchemy.orm import Session

from ..schemas.primitives import generate_ulid, utc_now
from .audit_models import AuditLogModel


class AuditService:
    """Service for recording and querying audit log entries.

    Usage:
        audit = AuditService(db_session)
        audit.log_status_change("ScanRun", run.id, "pending", "in_progress", trace_id=run.id)
        db_session.commit()
    """

    def __init__(self, db: Session, actor_id: str = "scanner"):
        self.db = db
        self.actor_id = actor_id

    def _record(
        self,
        action: str,
        entity_kind: str,
        entity_id: str,
        before: Optional[Dict[str, Any]],
        after: Optional[Dict[str, Any]],
        note: Optional[str],
        trace_id: Optional[str],
        actor_kind: str,
    ) -> AuditLogModel:
        entry = AuditLogModel(
            id=generate_ulid(),
            ts=utc_now(),
            actor_kind=actor_kind,
            actor_id=self.actor_id,
            action=action,
            entity_kind=entity_kind,
            entity_id=entity_id,
            before=before,
            after=after,
            note=note,
            trace_id=trace_id,
        )
        self.db.add(entry)
        self.db.flush()
        return entry

    def log_create(
        self,
        entity_kind: str,
        entity_id: str,
        after: Dict[str, Any],
        note: Optional[str] = None,
        trace_id: Optional[str] = None,
        actor_kind: str = "system",
    ) -> AuditLogModel:
        """Log the creation of an entity."""
        return self._record(
            "created", entity_kind, entity_id, None, after, note, trace_id, actor_kind
        )

    def log_update(
        self,
        entity_kind: str,
        entity_id: str,
        before: Dict[str, Any],
        after: Dict[str, Any],
        note: Optional[str] = None,
        trace_id: Optional[str] = None,
        actor_kind: str = "system",
    ) -> AuditLogModel:
        """Log an update to an entity.

        Args:
            entity_kind: Type of entity (e.g., "ScanRun", "Evidence")
            entity_id: ID of the entity
            before: Changed fields before the update
            after: Changed fields after the update
            note: Optional human-readable note
            trace_id: Optional scan run id for correlation
            actor_kind: "human" or "system"
        """
        return self._record(
            "updated", entity_kind, entity_id, before, after, note, trace_id, actor_kind
        )

    def log_status_change(
        self,
        entity_kind: str,
        entity_id: str,
        old_status: str,
        new_status: str,
        note: Optional[str] = None,
        trace_id: Optional[str] = None,
        actor_kind: str = "system",
    ) -> AuditLogModel:
        """Log a status change on an entity."""
        return self._record(
            "status_changed",
            entity_kind,
            entity_id,
            {"status": old_status},
            {"status": new_status},
            note or f"Status changed: {old_status} -> {new_status}",
            trace_id,
            actor_kind,
        )

    def log_delete(
        self,
        entity_kind: str,
        entity_id: str,
        before: Dict[str, Any],
        note: Optional[str] = None,
        trace_id: Optional[str] = None,
        actor_kind: str = "system",
    ) -> AuditLogModel:
        """Log the deletion of an entity."""
        return self._record(
            "deleted", entity_kind, entity_id, before, None, note, trace_id, actor_kind
        )

    # Query methods

    def query_by_entity(
        self,
        entity_kind: str,
        entity_id: str,
        limit: int = 100,
    ) -> List[AuditLogModel]:
        """Get audit history for a specific entity, newest first."""
        return (
            self.db.query(AuditLogModel)
            .filter(
                AuditLogModel.entity_kind == entity_kind,
                AuditLogModel.entity_id == entity_id,
            )
            .order_by(desc(AuditLogModel.ts), desc(AuditLogModel.id))
            .limit(limit)
            .all()
        )

    def query_by_trace(self, trace_id: str, limit: int = 500) -> List[AuditLogModel]:
        """Get all audit entries recorded during one scan run, oldest first."""
        return (
            self.db.query(AuditLogModel)
            .filter(AuditLogModel.trace_id == trace_id)
            .order_by(AuditLogModel.ts, AuditLogModel.id)
            .limit(limit)
            .all()
        )
