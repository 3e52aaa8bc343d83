"""Create compliance tables

Revision ID: 0001_create_compliance_tables
Revises:
Create Date: 2026-10-18

"""
import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers
revision = "0001_create_compliance_tables"
down_revision = None
branch_labels = None
depends_on = None


scan_status = sa.Enum(
    "pending", "in_progress", "completed", "failed", name="scan_status"
)
artifact_kind = sa.Enum(
    "context", "requirement", "story", "spec", "evidence", name="artifact_kind"
)
audit_actor_kind = sa.Enum("human", "system", name="audit_actor_kind")
audit_action = sa.Enum(
    "created", "updated", "status_changed", "deleted", name="audit_action"
)

NAMED_ENUMS = (scan_status, artifact_kind, audit_actor_kind, audit_action)


def _existing(enum: sa.Enum) -> sa.types.TypeEngine:
    """Column type referring to a named enum created in ``upgrade``."""
    return enum.with_variant(
        postgresql.ENUM(*enum.enums, name=enum.name, create_type=False),
        "postgresql",
    )


def _timestamps() -> list:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    ]


def upgrade() -> None:
    bind = op.get_bind()
    for enum in NAMED_ENUMS:
        enum.create(bind, checkfirst=True)

    # Repositories
    op.create_table(
        "repositories",
        sa.Column("id", sa.String(128), primary_key=True),
        sa.Column("owner", sa.String(255), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("default_branch", sa.String(255), nullable=False),
        sa.Column("last_scan_id", sa.String(128), nullable=True),
        sa.Column("last_scan_status", _existing(scan_status), nullable=True),
        sa.Column("last_scanned_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("owner", "name", name="uq_repositories_owner_name"),
    )

    # Scan runs
    op.create_table(
        "scan_runs",
        sa.Column("id", sa.String(128), primary_key=True),
        sa.Column(
            "repository_id",
            sa.String(128),
            sa.ForeignKey("repositories.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("status", _existing(scan_status), nullable=False),
        sa.Column("phase", sa.String(32), nullable=True),
        sa.Column("source_revision", sa.String(64), nullable=True),
        sa.Column("commit_message", sa.Text, nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("duration_ms", sa.Integer, nullable=True),
        sa.Column("artifacts_found", sa.Integer, nullable=False, server_default="0"),
        sa.Column("artifacts_created", sa.Integer, nullable=False, server_default="0"),
        sa.Column("artifacts_updated", sa.Integer, nullable=False, server_default="0"),
        sa.Column("artifacts_deleted", sa.Integer, nullable=False, server_default="0"),
        sa.Column("artifacts_rejected", sa.Integer, nullable=False, server_default="0"),
        sa.Column("error_message", sa.Text, nullable=True),
        sa.Column("error_detail", sa.Text, nullable=True),
        sa.Column("meta", sa.JSON, nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )
    op.create_index("ix_scan_runs_repository_id", "scan_runs", ["repository_id"])
    op.create_index("ix_scan_runs_status", "scan_runs", ["status"])
    op.create_index(
        "ix_scan_runs_repository_created", "scan_runs", ["repository_id", "created_at"]
    )

    # File fingerprints
    op.create_table(
        "file_fingerprints",
        sa.Column("id", sa.String(128), primary_key=True),
        sa.Column(
            "repository_id",
            sa.String(128),
            sa.ForeignKey("repositories.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("file_path", sa.String(1024), nullable=False),
        sa.Column("content_id", sa.String(128), nullable=False),
        sa.Column(
            "last_scanned_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column("scan_run_id", sa.String(128), nullable=True),
        sa.UniqueConstraint(
            "repository_id", "file_path", name="uq_file_fingerprints_repo_path"
        ),
    )
    op.create_index(
        "ix_file_fingerprints_repository_id", "file_fingerprints", ["repository_id"]
    )

    # Artifacts
    op.create_table(
        "artifacts",
        sa.Column("id", sa.String(128), primary_key=True),
        sa.Column(
            "repository_id",
            sa.String(128),
            sa.ForeignKey("repositories.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("scan_run_id", sa.String(128), nullable=True),
        sa.Column("kind", _existing(artifact_kind), nullable=False),
        sa.Column("natural_id", sa.String(255), nullable=False),
        sa.Column("parent_ref", sa.String(255), nullable=False, server_default=""),
        sa.Column("title", sa.Text, nullable=True),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("file_path", sa.String(1024), nullable=False),
        sa.Column("raw_content", sa.Text, nullable=True),
        sa.Column("risk_rating", sa.String(16), nullable=True),
        sa.Column("verification_tier", sa.String(8), nullable=True),
        sa.Column("attributes", sa.JSON, nullable=False),
        sa.Column("meta", sa.JSON, nullable=False),
        sa.Column("jws_header", sa.JSON, nullable=True),
        sa.Column("jws_payload", sa.JSON, nullable=True),
        sa.Column("signature", sa.Text, nullable=True),
        sa.Column("test_results", sa.JSON, nullable=True),
        sa.Column("system_state", sa.Text, nullable=True),
        sa.Column("evidence_timestamp", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_signature_valid", sa.Boolean, nullable=True),
        sa.Column("signature_verified_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint(
            "repository_id", "kind", "natural_id", name="uq_artifacts_natural_key"
        ),
    )
    op.create_index("ix_artifacts_repository_id", "artifacts", ["repository_id"])
    op.create_index("ix_artifacts_scan_run_id", "artifacts", ["scan_run_id"])
    op.create_index("ix_artifacts_kind", "artifacts", ["kind"])
    op.create_index("ix_artifacts_risk_rating", "artifacts", ["risk_rating"])
    op.create_index(
        "ix_artifacts_repository_kind", "artifacts", ["repository_id", "kind"]
    )
    op.create_index(
        "ix_artifacts_repository_path", "artifacts", ["repository_id", "file_path"]
    )

    # Traceability edges
    op.create_table(
        "traceability_edges",
        sa.Column("id", sa.String(128), primary_key=True),
        sa.Column(
            "repository_id",
            sa.String(128),
            sa.ForeignKey("repositories.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("parent_kind", _existing(artifact_kind), nullable=False),
        sa.Column("parent_ref", sa.String(255), nullable=False),
        sa.Column("parent_artifact_id", sa.String(128), nullable=True),
        sa.Column("child_kind", _existing(artifact_kind), nullable=False),
        sa.Column(
            "child_artifact_id",
            sa.String(128),
            sa.ForeignKey("artifacts.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("child_natural_id", sa.String(255), nullable=False),
        sa.Column("is_valid", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("reason", sa.Text, nullable=True),
        *_timestamps(),
        sa.UniqueConstraint(
            "repository_id",
            "child_artifact_id",
            "parent_ref",
            name="uq_traceability_edges_child_ref",
        ),
    )
    op.create_index(
        "ix_traceability_edges_repository_id", "traceability_edges", ["repository_id"]
    )
    op.create_index(
        "ix_traceability_edges_parent_artifact_id",
        "traceability_edges",
        ["parent_artifact_id"],
    )
    op.create_index(
        "ix_traceability_edges_child_artifact_id",
        "traceability_edges",
        ["child_artifact_id"],
    )
    op.create_index("ix_traceability_edges_is_valid", "traceability_edges", ["is_valid"])

    # Audit log
    op.create_table(
        "audit_log",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "ts",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column("actor_kind", _existing(audit_actor_kind), nullable=False),
        sa.Column("actor_id", sa.String(128), nullable=False),
        sa.Column("action", _existing(audit_action), nullable=False),
        sa.Column("entity_kind", sa.String(50), nullable=False),
        sa.Column("entity_id", sa.String(128), nullable=False),
        sa.Column("before", sa.JSON, nullable=True),
        sa.Column("after", sa.JSON, nullable=True),
        sa.Column("note", sa.Text, nullable=True),
        sa.Column("trace_id", sa.String(36), nullable=True),
    )
    op.create_index("ix_audit_log_ts", "audit_log", ["ts"])
    op.create_index("ix_audit_log_actor_id", "audit_log", ["actor_id"])
    op.create_index("ix_audit_log_action", "audit_log", ["action"])
    op.create_index("ix_audit_log_entity_kind", "audit_log", ["entity_kind"])
    op.create_index("ix_audit_log_entity_id", "audit_log", ["entity_id"])
    op.create_index("ix_audit_log_trace_id", "audit_log", ["trace_id"])
    op.create_index("ix_audit_log_entity", "audit_log", ["entity_kind", "entity_id"])
    op.create_index(
        "ix_audit_log_entity_ts", "audit_log", ["entity_kind", "entity_id", "ts"]
    )


def downgrade() -> None:
    # Drop tables in reverse order
    op.drop_table("audit_log")
    op.drop_table("traceability_edges")
    op.drop_table("artifacts")
    op.drop_table("file_fingerprints")
    op.drop_table("scan_runs")
    op.drop_table("repositories")

    bind = op.get_bind()
    for enum in reversed(NAMED_ENUMS):
        enum.drop(bind, checkfirst=True)
