"""Request and response models for repositories and scan runs."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, constr

from .enums import ScanStatus


class RepositoryCreate(BaseModel):
    """Registration payload for a source repository."""

    model_config = ConfigDict(extra="forbid")

    owner: constr(min_length=1, max_length=255)
    name: constr(min_length=1, max_length=255)
    default_branch: constr(min_length=1, max_length=255) = "main"


class ScanStarted(BaseModel):
    run_id: str
    repository_id: str
    status: ScanStatus = ScanStatus.PENDING


class ScanRunStatus(BaseModel):
    """Externally visible state of one scan run."""

    id: str
    repository_id: str
    status: ScanStatus
    phase: Optional[str] = None
    source_revision: Optional[str] = None
    commit_message: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    duration_ms: Optional[int] = None
    artifacts_found: int = 0
    artifacts_created: int = 0
    artifacts_updated: int = 0
    artifacts_deleted: int = 0
    artifacts_rejected: int = 0
    error_message: Optional[str] = None
    meta: Dict[str, Any] = Field(default_factory=dict)
