"""
SQLAlchemy models for Compliance Tower.

Natural keys are enforced with unique constraints so that every write made by
a scan is an upsert:

- repositories: (owner, name)
- file_fingerprints: (repository_id, file_path)
- artifacts: (repository_id, kind, natural_id)
- traceability_edges: (repository_id, child_artifact_id, parent_ref)
"""

from typing import Any, Dict

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from ..schemas.primitives import generate_ulid, isoformat
from .base import Base


scan_status_enum = Enum(
    "pending", "in_progress", "completed", "failed", name="scan_status"
)

artifact_kind_enum = Enum(
    "context", "requirement", "story", "spec", "evidence", name="artifact_kind"
)


class RepositoryModel(Base):
    """A source repository that holds compliance artifacts."""

    __tablename__ = "repositories"

    id = Column(String(128), primary_key=True, default=generate_ulid)
    owner = Column(String(255), nullable=False)
    name = Column(String(255), nullable=False)
    default_branch = Column(String(255), nullable=False, default="main")

    # Last scan bookkeeping
    last_scan_id = Column(String(128), nullable=True)
    last_scan_status = Column(scan_status_enum, nullable=True)
    last_scanned_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=func.now(),
        onupdate=func.now(),
    )

    scan_runs = relationship(
        "ScanRunModel", back_populates="repository", cascade="all, delete-orphan"
    )

    __table_args__ = (
        UniqueConstraint("owner", "name", name="uq_repositories_owner_name"),
    )

    @property
    def slug(self) -> str:
        return f"{self.owner}/{self.name}"

    def to_dict(self) -> Dict[str, Any]:
        """Convert model to dictionary."""
        return {
            "id": self.id,
            "owner": self.owner,
            "name": self.name,
            "slug": self.slug,
            "default_branch": self.default_branch,
            "last_scan_id": self.last_scan_id,
            "last_scan_status": self.last_scan_status,
            "last_scanned_at": isoformat(self.last_scanned_at),
            "created_at": isoformat(self.created_at),
            "updated_at": isoformat(self.updated_at),
        }


class ScanRunModel(Base):
    """One auditable execution of the scan pipeline for a repository."""

    __tablename__ = "scan_runs"

    id = Column(String(128), primary_key=True, default=generate_ulid)
    repository_id = Column(
        String(128),
        ForeignKey("repositories.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # State machine
    status = Column(scan_status_enum, nullable=False, default="pending", index=True)
    phase = Column(String(32), nullable=True)

    # Source revision
    source_revision = Column(String(64), nullable=True)
    commit_message = Column(Text, nullable=True)

    # Timing
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    duration_ms = Column(Integer, nullable=True)

    # Counters
    artifacts_found = Column(Integer, nullable=False, default=0)
    artifacts_created = Column(Integer, nullable=False, default=0)
    artifacts_updated = Column(Integer, nullable=False, default=0)
    artifacts_deleted = Column(Integer, nullable=False, default=0)
    artifacts_rejected = Column(Integer, nullable=False, default=0)

    # Failure details
    error_message = Column(Text, nullable=True)
    error_detail = Column(Text, nullable=True)

    meta = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), nullable=False, default=func.now())

    repository = relationship("RepositoryModel", back_populates="scan_runs")

    __table_args__ = (
        Index("ix_scan_runs_repository_created", "repository_id", "created_at"),
    )

    def to_dict(self) -> Dict[str, Any]:
        """Convert model to dictionary."""
        return {
            "id": self.id,
            "repository_id": self.repository_id,
            "status": self.status,
            "phase": self.phase,
            "source_revision": self.source_revision,
            "commit_message": self.commit_message,
            "started_at": isoformat(self.started_at),
            "completed_at": isoformat(self.completed_at),
            "duration_ms": self.duration_ms,
            "artifacts_found": self.artifacts_found,
            "artifacts_created": self.artifacts_created,
            "artifacts_updated": self.artifacts_updated,
            "artifacts_deleted": self.artifacts_deleted,
            "artifacts_rejected": self.artifacts_rejected,
            "error_message": self.error_message,
            "error_detail": self.error_detail,
            "meta": self.meta,
            "created_at": isoformat(self.created_at),
        }


class FileFingerprintModel(Base):
    """Last seen content identity of one file, used for delta detection."""

    __tablename__ = "file_fingerprints"

    id = Column(String(128), primary_key=True, default=generate_ulid)
    repository_id = Column(
        String(128),
        ForeignKey("repositories.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    file_path = Column(String(1024), nullable=False)
    content_id = Column(String(128), nullable=False)
    last_scanned_at = Column(DateTime(timezone=True), nullable=False, default=func.now())
    scan_run_id = Column(String(128), nullable=True)

    __table_args__ = (
        UniqueConstraint(
            "repository_id", "file_path", name="uq_file_fingerprints_repo_path"
        ),
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "repository_id": self.repository_id,
            "file_path": self.file_path,
            "content_id": self.content_id,
            "last_scanned_at": isoformat(self.last_scanned_at),
            "scan_run_id": self.scan_run_id,
        }


class ArtifactModel(Base):
    """A reconciled compliance artifact of any kind.

    Evidence rows additionally carry the decoded signed document and the
    verification fields, which only the evidence verification service writes.
    """

    __tablename__ = "artifacts"

    id = Column(String(128), primary_key=True, default=generate_ulid)
    repository_id = Column(
        String(128),
        ForeignKey("repositories.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    scan_run_id = Column(String(128), nullable=True, index=True)

    # Identity
    kind = Column(artifact_kind_enum, nullable=False, index=True)
    natural_id = Column(String(255), nullable=False)
    parent_ref = Column(String(255), nullable=False, default="")

    # Descriptive fields
    title = Column(Text, nullable=True)
    description = Column(Text, nullable=True)
    file_path = Column(String(1024), nullable=False)
    raw_content = Column(Text, nullable=True)
    risk_rating = Column(String(16), nullable=True, index=True)
    verification_tier = Column(String(8), nullable=True)
    attributes = Column(JSON, nullable=False, default=dict)
    meta = Column(JSON, nullable=False, default=dict)

    # Evidence
    jws_header = Column(JSON, nullable=True)
    jws_payload = Column(JSON, nullable=True)
    signature = Column(Text, nullable=True)
    test_results = Column(JSON, nullable=True)
    system_state = Column(Text, nullable=True)
    evidence_timestamp = Column(DateTime(timezone=True), nullable=True)
    is_signature_valid = Column(Boolean, nullable=True)
    signature_verified_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=func.now(),
        onupdate=func.now(),
    )

    __table_args__ = (
        UniqueConstraint(
            "repository_id", "kind", "natural_id", name="uq_artifacts_natural_key"
        ),
        Index("ix_artifacts_repository_kind", "repository_id", "kind"),
        Index("ix_artifacts_repository_path", "repository_id", "file_path"),
    )

    def to_dict(self) -> Dict[str, Any]:
        """Convert model to dictionary."""
        data = {
            "id": self.id,
            "repository_id": self.repository_id,
            "scan_run_id": self.scan_run_id,
            "kind": self.kind,
            "natural_id": self.natural_id,
            "parent_ref": self.parent_ref,
            "title": self.title,
            "description": self.description,
            "file_path": self.file_path,
            "risk_rating": self.risk_rating,
            "verification_tier": self.verification_tier,
            "attributes": self.attributes,
            "meta": self.meta,
            "created_at": isoformat(self.created_at),
            "updated_at": isoformat(self.updated_at),
        }
        if self.kind == "evidence":
            data.update(
                {
                    "jws_header": self.jws_header,
                    "jws_payload": self.jws_payload,
                    "test_results": self.test_results,
                    "system_state": self.system_state,
                    "evidence_timestamp": isoformat(self.evidence_timestamp),
                    "is_signature_valid": self.is_signature_valid,
                    "signature_verified_at": isoformat(self.signature_verified_at),
                }
            )
        return data


class TraceabilityEdgeModel(Base):
    """Derived parent -> child link between artifacts of adjacent kinds.

    Edges are fully recomputable from the artifact set and are never
    authoritative on their own.
    """

    __tablename__ = "traceability_edges"

    id = Column(String(128), primary_key=True, default=generate_ulid)
    repository_id = Column(
        String(128),
        ForeignKey("repositories.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # Parent side (declared reference, resolved id when found)
    parent_kind = Column(artifact_kind_enum, nullable=False)
    parent_ref = Column(String(255), nullable=False)
    parent_artifact_id = Column(String(128), nullable=True, index=True)

    # Child side
    child_kind = Column(artifact_kind_enum, nullable=False)
    child_artifact_id = Column(
        String(128),
        ForeignKey("artifacts.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    child_natural_id = Column(String(255), nullable=False)

    is_valid = Column(Boolean, nullable=False, default=True, index=True)
    reason = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=func.now(),
        onupdate=func.now(),
    )

    __table_args__ = (
        UniqueConstraint(
            "repository_id",
            "child_artifact_id",
            "parent_ref",
            name="uq_traceability_edges_child_ref",
        ),
    )

    @property
    def link_type(self) -> str:
        return f"{self.parent_kind}_to_{self.child_kind}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "repository_id": self.repository_id,
            "parent_kind": self.parent_kind,
            "parent_ref": self.parent_ref,
            "parent_artifact_id": self.parent_artifact_id,
            "child_kind": self.child_kind,
            "child_artifact_id": self.child_artifact_id,
            "child_natural_id": self.child_natural_id,
            "link_type": self.link_type,
            "is_valid": self.is_valid,
            "reason": self.reason,
        }
