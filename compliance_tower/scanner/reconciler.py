"""
Artifact reconciliation.

Validates parsed records and upserts them keyed by (repository, kind,
natural id). Re-reconciling the same natural id overwrites the stored record;
it never creates a duplicate. Artifacts whose backing file disappeared or no
longer declares them are deleted together with their edges, and each deletion
is written to the audit log. Writes are flushed, not committed.
"""

import logging
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import or_, tuple_
from sqlalchemy.orm import Session

from ..db.audit_service import AuditService
from ..db.models import ArtifactModel, TraceabilityEdgeModel
from ..schemas.artifacts import ParsedArtifact, ReconcileResult, Rejection

logger = logging.getLogger(__name__)

# Columns overwritten on every upsert. The evidence verification fields
# (is_signature_valid, signature_verified_at) are owned by EvidenceService.
_DESCRIPTIVE_FIELDS = (
    "parent_ref",
    "title",
    "description",
    "file_path",
    "raw_content",
    "attributes",
    "meta",
    "jws_header",
    "jws_payload",
    "signature",
    "test_results",
    "system_state",
    "evidence_timestamp",
)


def _values(record: ParsedArtifact) -> Dict[str, object]:
    values = {name: getattr(record, name) for name in _DESCRIPTIVE_FIELDS}
    values["risk_rating"] = record.risk_rating.value if record.risk_rating else None
    values["verification_tier"] = (
        record.verification_tier.value if record.verification_tier else None
    )
    return values


class ArtifactReconciler:
    """Upserts parsed artifacts into the artifacts table."""

    def __init__(self, db: Session, audit: Optional[AuditService] = None):
        self.db = db
        self.audit = audit or AuditService(db)

    def validate(
        self, records: Iterable[ParsedArtifact]
    ) -> Tuple[List[ParsedArtifact], List[Rejection]]:
        """Split records into accepted ones and rejections. Never raises per item."""
        accepted: List[ParsedArtifact] = []
        rejections: List[Rejection] = []

        for record in records:
            if not record.has_natural_id:
                rejections.append(
                    Rejection(
                        file_path=record.file_path,
                        kind=record.kind,
                        reason=f"Missing natural id for {record.kind.label} at {record.file_path}",
                    )
                )
                continue
            accepted.append(record)

        return accepted, rejections

    def apply(
        self,
        repository_id: str,
        scan_run_id: str,
        records: Sequence[ParsedArtifact],
    ) -> ReconcileResult:
        """Validate and upsert ``records``.

        Duplicates inside one batch resolve to the last occurrence.

        Returns:
            ReconcileResult with created/updated counts and rejections
        """
        accepted, rejections = self.validate(records)

        batch: Dict[Tuple[str, str], ParsedArtifact] = {}
        for record in accepted:
            key = (record.kind.value, record.natural_id.strip())
            if key in batch:
                logger.warning(
                    f"Duplicate {record.kind.label} {key[1]} in one batch; "
                    f"keeping {record.file_path}"
                )
            batch[key] = record

        existing = self._existing(repository_id, list(batch))
        result = ReconcileResult(rejected=rejections)

        for (kind, natural_id), record in batch.items():
            values = _values(record)
            row = existing.get((kind, natural_id))
            if row is None:
                self.db.add(
                    ArtifactModel(
                        repository_id=repository_id,
                        scan_run_id=scan_run_id,
                        kind=kind,
                        natural_id=natural_id,
                        **values,
                    )
                )
                result.created += 1
            else:
                for name, value in values.items():
                    setattr(row, name, value)
                row.scan_run_id = scan_run_id
                result.updated += 1
            result.written.append({"kind": kind, "natural_id": natural_id})

        self.db.flush()
        logger.info(
            f"Reconciled {len(batch)} artifacts for repository {repository_id}: "
            f"{result.created} created, {result.updated} updated, "
            f"{len(rejections)} rejected"
        )
        return result

    def _existing(
        self, repository_id: str, keys: List[Tuple[str, str]]
    ) -> Dict[Tuple[str, str], ArtifactModel]:
        if not keys:
            return {}
        rows = (
            self.db.query(ArtifactModel)
            .filter(
                ArtifactModel.repository_id == repository_id,
                tuple_(ArtifactModel.kind, ArtifactModel.natural_id).in_(keys),
            )
            .all()
        )
        return {(row.kind, row.natural_id): row for row in rows}

    def remove_paths(
        self,
        repository_id: str,
        paths: Iterable[str],
        trace_id: Optional[str] = None,
    ) -> int:
        """Delete artifacts backed by files that no longer exist, with their edges."""
        paths = list(paths)
        if not paths:
            return 0
        rows = self._at_paths(repository_id, paths)
        return self._delete(repository_id, rows, "Source file removed", trace_id)

    def remove_superseded(
        self,
        repository_id: str,
        paths: Iterable[str],
        written: Sequence[Dict[str, str]],
        trace_id: Optional[str] = None,
    ) -> int:
        """Delete artifacts whose re-read file no longer declares them.

        A file that now carries a different natural id, or none at all, leaves
        its previous artifact behind; ``written`` is the key list returned by
        :meth:`apply` for the same batch.
        """
        paths = list(paths)
        if not paths:
            return 0
        kept = {(item["kind"], item["natural_id"]) for item in written}
        rows = [
            row
            for row in self._at_paths(repository_id, paths)
            if (row.kind, row.natural_id) not in kept
        ]
        return self._delete(
            repository_id, rows, "No longer declared by its source file", trace_id
        )

    def _at_paths(self, repository_id: str, paths: List[str]) -> List[ArtifactModel]:
        return (
            self.db.query(ArtifactModel)
            .filter(
                ArtifactModel.repository_id == repository_id,
                ArtifactModel.file_path.in_(paths),
            )
            .all()
        )

    def _delete(
        self,
        repository_id: str,
        rows: List[ArtifactModel],
        note: str,
        trace_id: Optional[str],
    ) -> int:
        if not rows:
            return 0

        ids = [row.id for row in rows]
        for row in rows:
            self.audit.log_delete(
                "Artifact",
                row.id,
                before={
                    "kind": row.kind,
                    "natural_id": row.natural_id,
                    "file_path": row.file_path,
                },
                note=note,
                trace_id=trace_id,
            )

        self.db.query(TraceabilityEdgeModel).filter(
            TraceabilityEdgeModel.repository_id == repository_id,
            or_(
                TraceabilityEdgeModel.child_artifact_id.in_(ids),
                TraceabilityEdgeModel.parent_artifact_id.in_(ids),
            ),
        ).delete()
        deleted = (
            self.db.query(ArtifactModel)
            .filter(ArtifactModel.id.in_(ids))
            .delete()
        )
        self.db.flush()
        logger.info(f"Removed {deleted} artifacts from {repository_id}: {note}")
        return deleted
