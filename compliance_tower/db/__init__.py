"""
Database package for Compliance Tower.
"""

from .base import Base, get_db, get_engine, get_session_local, init_database
from .models import (
    ArtifactModel,
    FileFingerprintModel,
    RepositoryModel,
    ScanRunModel,
    TraceabilityEdgeModel,
)

__all__ = [
    "Base",
    "get_db",
    "get_engine",
    "get_session_local",
    "init_database",
    "RepositoryModel",
    "ScanRunModel",
    "FileFingerprintModel",
    "ArtifactModel",
    "TraceabilityEdgeModel",
]
