"""Source repository clients."""

from .base import FetchedFile, RevisionMetadata, SourceClient, SourceFile
from .github import GitHubSourceClient
from .inmemory import InMemorySourceClient

__all__ = [
    "SourceClient",
    "SourceFile",
    "FetchedFile",
    "RevisionMetadata",
    "GitHubSourceClient",
    "InMemorySourceClient",
]
