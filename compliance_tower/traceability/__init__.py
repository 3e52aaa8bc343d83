"""Traceability graph building and queries."""

from .graph import LINKED_KINDS, TraceabilityGraphBuilder

__all__ = ["LINKED_KINDS", "TraceabilityGraphBuilder"]
