"""
Compliance Tower

Scans version-controlled compliance artifacts, keeps their traceability graph
current, verifies signed test evidence and scores compliance risk.
"""

import importlib.metadata

__version__ = importlib.metadata.version("compliance-tower")

from .errors import (
    ComplianceError,
    ComplianceValidationError,
    ConfigurationError,
    NotFoundError,
    ScanStateError,
    SourceError,
)
from .evidence import EvidenceService, JwsVerifier
from .parsing import FrontmatterParser
from .risk import RiskEngine
from .scanner import ScanOrchestrator, detect_changes
from .traceability import TraceabilityGraphBuilder

__all__ = [
    "ComplianceError",
    "ComplianceValidationError",
    "ConfigurationError",
    "EvidenceService",
    "FrontmatterParser",
    "JwsVerifier",
    "NotFoundError",
    "RiskEngine",
    "ScanOrchestrator",
    "ScanStateError",
    "SourceError",
    "TraceabilityGraphBuilder",
    "detect_changes",
]
