"""Pydantic schemas and canonical enums for Compliance Tower."""

from .artifacts import ParsedArtifact, ReconcileResult, Rejection
from .enums import (
    PHASE_PROGRESS,
    ArtifactKind,
    RiskBand,
    RiskRating,
    ScanPhase,
    ScanStatus,
    VerificationTier,
)
from .evidence import (
    BatchVerificationResult,
    VerificationOutcome,
    VerificationResult,
    VerificationStatusSummary,
)
from .risk import RiskAssessment, RiskBreakdown, RiskFactor
from .scan import RepositoryCreate, ScanRunStatus, ScanStarted
from .traceability import BrokenLink, GraphBuildSummary, TraceabilityChain

__all__ = [
    "ArtifactKind",
    "ScanStatus",
    "ScanPhase",
    "PHASE_PROGRESS",
    "RiskRating",
    "RiskBand",
    "VerificationTier",
    "ParsedArtifact",
    "Rejection",
    "ReconcileResult",
    "VerificationResult",
    "VerificationOutcome",
    "BatchVerificationResult",
    "VerificationStatusSummary",
    "RiskAssessment",
    "RiskBreakdown",
    "RiskFactor",
    "RepositoryCreate",
    "ScanStarted",
    "ScanRunStatus",
    "GraphBuildSummary",
    "BrokenLink",
    "TraceabilityChain",
]
