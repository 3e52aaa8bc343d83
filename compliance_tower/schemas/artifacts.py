"""
Parsed artifact records and reconciliation results.

A ParsedArtifact is the canonical shape the document parser produces for every
kind; source-format spellings never reach past the parser.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .enums import ArtifactKind, RiskRating, VerificationTier


class ParsedArtifact(BaseModel):
    """One parsed compliance document, ready for reconciliation."""

    model_config = ConfigDict(extra="forbid")

    kind: ArtifactKind
    natural_id: Optional[str] = Field(
        None, description="Short code identifying the artifact (e.g. REQ-001)"
    )
    file_path: str
    parent_ref: str = Field(
        "", description="Declared parent natural id, verbatim; empty when absent"
    )

    title: Optional[str] = None
    description: Optional[str] = None
    raw_content: str = ""
    risk_rating: Optional[RiskRating] = None
    verification_tier: Optional[VerificationTier] = None

    # Canonical kind-specific fields (acceptance criteria, as_a, ...)
    attributes: Dict[str, Any] = Field(default_factory=dict)
    # Opaque frontmatter as written in the source document
    meta: Dict[str, Any] = Field(default_factory=dict)

    # Evidence only: decoded (not verified) signed document
    jws_header: Optional[Dict[str, Any]] = None
    jws_payload: Optional[Dict[str, Any]] = None
    signature: Optional[str] = None
    test_results: Optional[Any] = None
    system_state: Optional[str] = None
    evidence_timestamp: Optional[datetime] = None

    @property
    def has_natural_id(self) -> bool:
        return bool(self.natural_id and self.natural_id.strip())


class Rejection(BaseModel):
    """A parsed record that failed validation and was not persisted."""

    file_path: str
    kind: ArtifactKind
    reason: str


class ReconcileResult(BaseModel):
    """Outcome of reconciling one batch of parsed artifacts."""

    created: int = 0
    updated: int = 0
    rejected: List[Rejection] = Field(default_factory=list)
    # Natural keys (kind, natural_id) of the records written in this batch
    written: List[Dict[str, str]] = Field(default_factory=list)

    @property
    def accepted(self) -> int:
        return self.created + self.updated
