"""
Database services for Compliance Tower.

Write methods of the scan-scoped services (scan runs, fingerprints) only
flush; the scan orchestrator owns the transaction and commits once a phase is
complete, so a failed phase can be rolled back as a whole.
"""

from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from sqlalchemy import desc
from sqlalchemy.orm import Session

from ..errors import ComplianceValidationError, NotFoundError, ScanStateError
from ..schemas.enums import ScanStatus
from ..schemas.primitives import utc_now
from .audit_service import AuditService
from .models import FileFingerprintModel, RepositoryModel, ScanRunModel


class RepositoryService:
    """Service for managing registered source repositories."""

    def __init__(self, db: Session):
        self.db = db

    def create(
        self, owner: str, name: str, default_branch: str = "main"
    ) -> RepositoryModel:
        """Register a repository.

        Raises:
            ComplianceValidationError: If owner/name is blank or already registered
        """
        owner = (owner or "").strip()
        name = (name or "").strip()
        if not owner or not name:
            raise ComplianceValidationError(
                "REPOSITORY_INVALID", "Repository owner and name are required"
            )
        if self.get_by_slug(owner, name) is not None:
            raise ComplianceValidationError(
                "REPOSITORY_EXISTS", f"Repository {owner}/{name} is already registered"
            )

        repo = RepositoryModel(
            owner=owner, name=name, default_branch=default_branch or "main"
        )
        self.db.add(repo)
        self.db.commit()
        self.db.refresh(repo)
        return repo

    def get(self, repository_id: str) -> Optional[RepositoryModel]:
        """Get a repository by ID."""
        return (
            self.db.query(RepositoryModel)
            .filter(RepositoryModel.id == repository_id)
            .first()
        )

    def require(self, repository_id: str) -> RepositoryModel:
        """Get a repository by ID or raise NotFoundError."""
        repo = self.get(repository_id)
        if repo is None:
            raise NotFoundError("Repository", repository_id)
        return repo

    def get_by_slug(self, owner: str, name: str) -> Optional[RepositoryModel]:
        return (
            self.db.query(RepositoryModel)
            .filter(RepositoryModel.owner == owner, RepositoryModel.name == name)
            .first()
        )

    def list(self, limit: int = 100, offset: int = 0) -> List[RepositoryModel]:
        return (
            self.db.query(RepositoryModel)
            .order_by(RepositoryModel.owner, RepositoryModel.name)
            .offset(offset)
            .limit(limit)
            .all()
        )

    def update_last_scan(
        self,
        repo: RepositoryModel,
        run_id: str,
        status: str,
        scanned_at: Optional[datetime] = None,
    ) -> RepositoryModel:
        """Record the most recent scan run on the repository (flush only)."""
        repo.last_scan_id = run_id
        repo.last_scan_status = status
        repo.last_scanned_at = scanned_at or utc_now()
        self.db.flush()
        return repo


# Allowed scan run transitions. Terminal states have no entry.
_TRANSITIONS = {
    ScanStatus.PENDING.value: {ScanStatus.IN_PROGRESS.value, ScanStatus.FAILED.value},
    ScanStatus.IN_PROGRESS.value: {
        ScanStatus.COMPLETED.value,
        ScanStatus.FAILED.value,
    },
}


def can_transition(current: str, target: str) -> bool:
    """Return True if a scan run may move from ``current`` to ``target``."""
    return target in _TRANSITIONS.get(current, set())


class ScanRunService:
    """Service for scan run records and their state machine."""

    def __init__(self, db: Session, audit: Optional[AuditService] = None):
        self.db = db
        self.audit = audit or AuditService(db)

    def create(self, repository_id: str) -> ScanRunModel:
        """Create a pending scan run (flush only)."""
        run = ScanRunModel(
            repository_id=repository_id,
            status=ScanStatus.PENDING.value,
            meta={},
        )
        self.db.add(run)
        self.db.flush()
        self.audit.log_create(
            "ScanRun",
            run.id,
            after={"repository_id": repository_id, "status": run.status},
            trace_id=run.id,
        )
        return run

    def get(self, run_id: str) -> Optional[ScanRunModel]:
        return self.db.query(ScanRunModel).filter(ScanRunModel.id == run_id).first()

    def require(self, run_id: str) -> ScanRunModel:
        """Get a scan run by ID or raise NotFoundError."""
        run = self.get(run_id)
        if run is None:
            raise NotFoundError("ScanRun", run_id)
        return run

    def list_for_repository(
        self, repository_id: str, limit: int = 50, offset: int = 0
    ) -> List[ScanRunModel]:
        """List scan runs for a repository, newest first."""
        return (
            self.db.query(ScanRunModel)
            .filter(ScanRunModel.repository_id == repository_id)
            .order_by(desc(ScanRunModel.created_at), desc(ScanRunModel.id))
            .offset(offset)
            .limit(limit)
            .all()
        )

    def transition(
        self,
        run: ScanRunModel,
        target: ScanStatus,
        note: Optional[str] = None,
        **fields: Any,
    ) -> ScanRunModel:
        """Move a run to ``target``, applying ``fields`` and auditing the change.

        Args:
            run: The scan run to update
            target: Requested status
            note: Optional audit note
            **fields: Column values to set together with the status

        Raises:
            ScanStateError: If the transition is not allowed
        """
        current = run.status
        requested = ScanStatus(target).value
        if not can_transition(current, requested):
            raise ScanStateError(run.id, current, requested)

        run.status = requested
        for key, value in fields.items():
            setattr(run, key, value)
        self.db.flush()

        self.audit.log_status_change(
            "ScanRun", run.id, current, requested, note=note, trace_id=run.id
        )
        return run


class FingerprintService:
    """Service for the per-path content fingerprints used by delta detection."""

    def __init__(self, db: Session):
        self.db = db

    def list_for_repository(self, repository_id: str) -> List[FileFingerprintModel]:
        return (
            self.db.query(FileFingerprintModel)
            .filter(FileFingerprintModel.repository_id == repository_id)
            .order_by(FileFingerprintModel.file_path)
            .all()
        )

    def prior_map(self, repository_id: str) -> Dict[str, str]:
        """Return {file_path: content_id} for the repository."""
        return {
            row.file_path: row.content_id
            for row in self.list_for_repository(repository_id)
        }

    def upsert(
        self,
        repository_id: str,
        scan_run_id: Optional[str],
        fingerprints: Mapping[str, str],
    ) -> Tuple[int, int]:
        """Insert or update fingerprints keyed by (repository, path) (flush only).

        Returns:
            Tuple of (inserted, updated) counts
        """
        if not fingerprints:
            return 0, 0

        existing = {
            row.file_path: row
            for row in self.db.query(FileFingerprintModel)
            .filter(
                FileFingerprintModel.repository_id == repository_id,
                FileFingerprintModel.file_path.in_(list(fingerprints)),
            )
            .all()
        }

        now = utc_now()
        inserted = updated = 0
        for path, content_id in fingerprints.items():
            row = existing.get(path)
            if row is None:
                self.db.add(
                    FileFingerprintModel(
                        repository_id=repository_id,
                        file_path=path,
                        content_id=content_id,
                        last_scanned_at=now,
                        scan_run_id=scan_run_id,
                    )
                )
                inserted += 1
            else:
                row.content_id = content_id
                row.last_scanned_at = now
                row.scan_run_id = scan_run_id
                updated += 1

        self.db.flush()
        return inserted, updated

    def delete_paths(self, repository_id: str, paths: Iterable[str]) -> int:
        """Delete fingerprints for paths that no longer exist (flush only)."""
        paths = list(paths)
        if not paths:
            return 0
        deleted = (
            self.db.query(FileFingerprintModel)
            .filter(
                FileFingerprintModel.repository_id == repository_id,
                FileFingerprintModel.file_path.in_(paths),
            )
            .delete()
        )
        self.db.flush()
        return deleted
