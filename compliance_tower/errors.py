"""
Domain errors for Compliance Tower.

Every error carries a stable ``code`` for programmatic handling and a
human-readable ``message``. Integrity findings (broken links) and signature
verification failures are not errors; they are returned as query results and
typed outcomes respectively.
"""

from __future__ import annotations

from typing import Any, Dict


class ComplianceError(Exception):
    """
    Base class for all Compliance Tower errors.

    Attributes:
        code: Stable error code for programmatic handling
        message: Human-readable error description
    """

    error_type = "compliance_error"

    def __init__(self, code: str, message: str):
        self.code = code
        self.message = message
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for JSON serialization."""
        return {
            "error": self.error_type,
            "code": self.code,
            "message": self.message,
        }


class ConfigurationError(ComplianceError):
    """Raised at start-up when the configuration cannot be used safely."""

    error_type = "configuration_error"


class ComplianceValidationError(ComplianceError):
    """Raised when an input document or scan result fails validation."""

    error_type = "validation_error"


class SignatureFormatError(ComplianceValidationError):
    """Raised when a signed evidence document is structurally malformed."""


class ScanValidationError(ComplianceValidationError):
    """Raised when a repository does not meet the minimum scan requirements."""


class EvidenceContentError(ComplianceValidationError):
    """Raised when an evidence record has no content to verify."""

    def __init__(self, evidence_id: str):
        self.evidence_id = evidence_id
        super().__init__(
            "EVIDENCE_NO_CONTENT",
            f"Evidence {evidence_id} has no raw content to verify",
        )


class SourceError(ComplianceError):
    """Raised when the source repository cannot be read."""

    error_type = "source_error"


class NotFoundError(ComplianceError):
    """Raised when a repository, scan run or artifact does not exist."""

    error_type = "not_found"

    def __init__(self, entity_kind: str, entity_id: str, scope: str = ""):
        self.entity_kind = entity_kind
        self.entity_id = entity_id
        suffix = f" in {scope}" if scope else ""
        super().__init__(
            f"{entity_kind.upper()}_NOT_FOUND",
            f"{entity_kind} {entity_id} not found{suffix}",
        )


class ScanStateError(ComplianceError):
    """Raised on an illegal scan run state transition."""

    error_type = "invalid_state"

    def __init__(self, run_id: str, current: str, requested: str):
        self.run_id = run_id
        self.current = current
        self.requested = requested
        super().__init__(
            "INVALID_TRANSITION",
            f"Scan run {run_id} cannot move from {current} to {requested}",
        )
