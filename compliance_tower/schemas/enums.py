"""
Canonical enums.

The parser maps every source spelling into these sets; everything downstream
of the parser only ever sees these values.
"""

from enum import Enum


class ArtifactKind(str, Enum):
    """Kinds of compliance artifacts held in a repository."""

    CONTEXT = "context"
    REQUIREMENT = "requirement"
    STORY = "story"
    SPEC = "spec"
    EVIDENCE = "evidence"

    @property
    def label(self) -> str:
        """Human-readable label used in messages."""
        return _KIND_LABELS[self]


_KIND_LABELS = {
    ArtifactKind.CONTEXT: "system context",
    ArtifactKind.REQUIREMENT: "requirement",
    ArtifactKind.STORY: "user story",
    ArtifactKind.SPEC: "spec",
    ArtifactKind.EVIDENCE: "evidence",
}


class ScanStatus(str, Enum):
    """Lifecycle of a scan run."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (ScanStatus.COMPLETED, ScanStatus.FAILED)


class ScanPhase(str, Enum):
    """Phases executed, in order, while a scan run is in progress."""

    DISCOVERY = "discovery"
    DELTA_DETECTION = "delta_detection"
    FETCH = "fetch"
    PARSE = "parse"
    VALIDATE = "validate"
    PERSIST = "persist"
    GRAPH_BUILD = "graph_build"
    EVIDENCE_CHECK = "evidence_check"
    NOTIFY = "notify"


# Progress percentage reported when each phase starts.
PHASE_PROGRESS = {
    ScanPhase.DISCOVERY: 10,
    ScanPhase.DELTA_DETECTION: 20,
    ScanPhase.FETCH: 35,
    ScanPhase.PARSE: 50,
    ScanPhase.VALIDATE: 60,
    ScanPhase.PERSIST: 70,
    ScanPhase.GRAPH_BUILD: 80,
    ScanPhase.EVIDENCE_CHECK: 90,
    ScanPhase.NOTIFY: 100,
}


class RiskRating(str, Enum):
    """Risk rating declared on requirements and system contexts."""

    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class VerificationTier(str, Enum):
    """Qualification tier of a spec or evidence artifact."""

    IQ = "IQ"
    OQ = "OQ"
    PQ = "PQ"


class RiskBand(str, Enum):
    """Qualitative risk band derived from the composite score."""

    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"
