"""
Document parser interface.

A parser classifies repository paths into artifact kinds and turns document
content into canonical ParsedArtifact records.
"""

from abc import ABC, abstractmethod
from typing import Optional

from ..schemas.artifacts import ParsedArtifact
from ..schemas.enums import ArtifactKind


class DocumentParser(ABC):
    """Abstract parser for compliance documents."""

    @abstractmethod
    def classify(self, path: str) -> Optional[ArtifactKind]:
        """Return the artifact kind held at ``path``, or None if it is not an artifact."""

    @abstractmethod
    def parse_context(self, content: str, path: str) -> ParsedArtifact:
        ...

    @abstractmethod
    def parse_requirement(self, content: str, path: str) -> ParsedArtifact:
        ...

    @abstractmethod
    def parse_story(self, content: str, path: str) -> ParsedArtifact:
        ...

    @abstractmethod
    def parse_spec(self, content: str, path: str) -> ParsedArtifact:
        ...

    @abstractmethod
    def parse_evidence(self, content: str, path: str) -> ParsedArtifact:
        ...

    def parse(self, kind: ArtifactKind, content: str, path: str) -> ParsedArtifact:
        """Parse ``content`` as an artifact of ``kind``."""
        handlers = {
            ArtifactKind.CONTEXT: self.parse_context,
            ArtifactKind.REQUIREMENT: self.parse_requirement,
            ArtifactKind.STORY: self.parse_story,
            ArtifactKind.SPEC: self.parse_spec,
            ArtifactKind.EVIDENCE: self.parse_evidence,
        }
        return handlers[ArtifactKind(kind)](content, path)
