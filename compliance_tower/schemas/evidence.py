"""Evidence verification outcomes."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class VerificationResult(BaseModel):
    """Result of verifying one signed document."""

    is_valid: bool
    header: Optional[Dict[str, Any]] = None
    payload: Optional[Dict[str, Any]] = None
    error: Optional[str] = None


class VerificationOutcome(BaseModel):
    """Verification outcome for one stored evidence artifact."""

    evidence_id: str
    is_valid: bool
    verified_at: Optional[datetime] = None
    payload: Optional[Dict[str, Any]] = None
    error: Optional[str] = None


class BatchVerificationResult(BaseModel):
    """Aggregate of a batch verification. ``results`` follows input order."""

    total_processed: int
    success_count: int
    failure_count: int
    results: List[VerificationOutcome] = Field(default_factory=list)


class BatchVerifyRequest(BaseModel):
    evidence_ids: List[str] = Field(default_factory=list)


class TierVerificationStatus(BaseModel):
    total: int = 0
    verified: int = 0


class VerificationStatusSummary(BaseModel):
    """Verification status of all evidence in a repository."""

    repository_id: str
    total: int
    verified: int
    unverified: int
    verification_rate: int = Field(..., ge=0, le=100)
    by_tier: Dict[str, TierVerificationStatus] = Field(default_factory=dict)
