"""Scan pipeline: change detection, reconciliation and orchestration."""

from .delta import ChangeSet, detect_changes
from .orchestrator import ScanOrchestrator, run_status
from .reconciler import ArtifactReconciler

__all__ = [
    "ArtifactReconciler",
    "ChangeSet",
    "ScanOrchestrator",
    "detect_changes",
    "run_status",
]
