"""Traceability query results."""

from __future__ import annotations

from typing import List

from pydantic import BaseModel, Field


class GraphBuildSummary(BaseModel):
    """Counts produced by one graph rebuild."""

    total: int = 0
    valid: int = 0
    invalid: int = 0
    removed: int = Field(0, description="Stored edges no longer derivable and deleted")


class BrokenLink(BaseModel):
    """An edge whose declared parent reference does not resolve."""

    source_id: str = Field(..., description="Declared parent natural id")
    target_id: str = Field(..., description="Natural id of the child artifact")
    link_type: str = Field(..., description="<parent kind>_to_<child kind>")
    reason: str


class TraceabilityChain(BaseModel):
    """Upstream and downstream closure of one artifact."""

    document_id: str
    upstream: List[str] = Field(default_factory=list)
    downstream: List[str] = Field(default_factory=list)
