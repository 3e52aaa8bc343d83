"""
Traceability graph.

Edges link a requirement to its user stories, a story to its specs, and a
spec to its evidence. They are derived entirely from the artifacts' declared
parent references: after a rebuild the stored edge set equals the derived one.
"""

import logging
from collections import deque
from typing import Dict, List, Tuple

from sqlalchemy.orm import Session

from ..db.models import ArtifactModel, TraceabilityEdgeModel
from ..errors import NotFoundError
from ..schemas.enums import ArtifactKind
from ..schemas.traceability import BrokenLink, GraphBuildSummary, TraceabilityChain

logger = logging.getLogger(__name__)

# (parent kind, child kind)
LINKED_KINDS: Tuple[Tuple[ArtifactKind, ArtifactKind], ...] = (
    (ArtifactKind.REQUIREMENT, ArtifactKind.STORY),
    (ArtifactKind.STORY, ArtifactKind.SPEC),
    (ArtifactKind.SPEC, ArtifactKind.EVIDENCE),
)


class TraceabilityGraphBuilder:
    """Builds and queries the traceability graph of one repository.

    Writes are flushed; the caller commits.
    """

    def __init__(self, db: Session):
        self.db = db

    def _artifacts_by_kind(
        self, repository_id: str
    ) -> Dict[str, Dict[str, ArtifactModel]]:
        index: Dict[str, Dict[str, ArtifactModel]] = {kind.value: {} for kind in ArtifactKind}
        rows = (
            self.db.query(ArtifactModel)
            .filter(ArtifactModel.repository_id == repository_id)
            .all()
        )
        for row in rows:
            index[row.kind][row.natural_id] = row
        return index

    def _edges(self, repository_id: str) -> List[TraceabilityEdgeModel]:
        return (
            self.db.query(TraceabilityEdgeModel)
            .filter(TraceabilityEdgeModel.repository_id == repository_id)
            .all()
        )

    def build_graph(self, repository_id: str) -> GraphBuildSummary:
        """Rebuild all edges of a repository. Idempotent.

        Every child with a non-empty parent reference gets exactly one edge,
        valid when the reference resolves to an artifact of the parent kind.
        Stored edges that are no longer derivable are deleted.

        Returns:
            GraphBuildSummary with total/valid/invalid/removed counts
        """
        index = self._artifacts_by_kind(repository_id)
        existing = {
            (edge.child_artifact_id, edge.parent_ref): edge
            for edge in self._edges(repository_id)
        }

        summary = GraphBuildSummary()
        derived = set()

        for parent_kind, child_kind in LINKED_KINDS:
            parents = index[parent_kind.value]
            for child in index[child_kind.value].values():
                parent_ref = (child.parent_ref or "").strip()
                if not parent_ref:
                    continue

                parent = parents.get(parent_ref)
                is_valid = parent is not None
                reason = (
                    None
                    if is_valid
                    else f"Parent {parent_kind.label} {parent_ref} not found"
                )

                key = (child.id, parent_ref)
                derived.add(key)
                edge = existing.get(key)
                if edge is None:
                    edge = TraceabilityEdgeModel(
                        repository_id=repository_id,
                        child_artifact_id=child.id,
                        parent_ref=parent_ref,
                    )
                    self.db.add(edge)

                edge.parent_kind = parent_kind.value
                edge.parent_artifact_id = parent.id if parent is not None else None
                edge.child_kind = child_kind.value
                edge.child_natural_id = child.natural_id
                edge.is_valid = is_valid
                edge.reason = reason

                summary.total += 1
                if is_valid:
                    summary.valid += 1
                else:
                    summary.invalid += 1

        for key, edge in existing.items():
            if key not in derived:
                self.db.delete(edge)
                summary.removed += 1

        self.db.flush()
        logger.info(
            f"Traceability graph for {repository_id}: {summary.total} links, "
            f"{summary.invalid} broken, {summary.removed} removed"
        )
        return summary

    def list_broken_links(self, repository_id: str) -> List[BrokenLink]:
        """Return every edge whose parent reference does not resolve.

        Ordered by link type, then target id.
        """
        edges = (
            self.db.query(TraceabilityEdgeModel)
            .filter(
                TraceabilityEdgeModel.repository_id == repository_id,
                TraceabilityEdgeModel.is_valid.is_(False),
            )
            .all()
        )
        links = [
            BrokenLink(
                source_id=edge.parent_ref,
                target_id=edge.child_natural_id,
                link_type=edge.link_type,
                reason=edge.reason
                or f"Parent {ArtifactKind(edge.parent_kind).label} {edge.parent_ref} not found",
            )
            for edge in edges
        ]
        return sorted(links, key=lambda link: (link.link_type, link.target_id, link.source_id))

    def get_chain(self, repository_id: str, natural_id: str) -> TraceabilityChain:
        """Return the upstream and downstream closure of one artifact.

        The adjacency map is built once from the valid edges; both directions
        are walked breadth first with a visited set, so cycles terminate.

        Raises:
            NotFoundError: If no artifact has ``natural_id``
        """
        known = {
            row.natural_id
            for row in self.db.query(ArtifactModel.natural_id)
            .filter(ArtifactModel.repository_id == repository_id)
            .all()
        }
        if natural_id not in known:
            raise NotFoundError("Artifact", natural_id, scope=f"repository {repository_id}")

        parents: Dict[str, List[str]] = {}
        children: Dict[str, List[str]] = {}
        for edge in self._edges(repository_id):
            if not edge.is_valid:
                continue
            parents.setdefault(edge.child_natural_id, []).append(edge.parent_ref)
            children.setdefault(edge.parent_ref, []).append(edge.child_natural_id)

        return TraceabilityChain(
            document_id=natural_id,
            upstream=_walk(natural_id, parents),
            downstream=_walk(natural_id, children),
        )


def _walk(start: str, adjacency: Dict[str, List[str]]) -> List[str]:
    visited = {start}
    order: List[str] = []
    queue = deque([start])
    while queue:
        node = queue.popleft()
        for neighbour in sorted(adjacency.get(node, ())):
            if neighbour in visited:
                continue
            visited.add(neighbour)
            order.append(neighbour)
            queue.append(neighbour)
    return order
