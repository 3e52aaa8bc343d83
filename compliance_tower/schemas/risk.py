"""Risk assessment models. Computed on demand, never persisted."""

from __future__ import annotations

from datetime import datetime
from typing import List

from pydantic import BaseModel, Field

from .enums import RiskBand
from .primitives import utc_now


class RiskBreakdown(BaseModel):
    """Sub-scores, truncated to integers, each in [0, 100]."""

    requirements_coverage: int = Field(..., ge=0, le=100)
    evidence_quality: int = Field(..., ge=0, le=100)
    verification_completeness: int = Field(..., ge=0, le=100)
    traceability_integrity: int = Field(..., ge=0, le=100)


class RiskFactor(BaseModel):
    """One weighted contribution to the composite score."""

    category: str
    score: int = Field(..., ge=0, le=100)
    weight: float
    description: str


class RiskAssessment(BaseModel):
    """Composite risk score with its breakdown and recommendations."""

    repository_id: str
    overall_score: int = Field(..., ge=0, le=100)
    band: RiskBand
    risk_level: str = Field(..., description='e.g. "MEDIUM (Score: 72/100)"')
    breakdown: RiskBreakdown
    factors: List[RiskFactor] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)
    assessed_at: datetime = Field(default_factory=utc_now)
