"""
Source client interface.

A source client reads a version-controlled repository: the latest revision of
a branch, that revision's metadata, its recursive file listing, and file
contents. Implementations raise SourceError for any remote failure.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional, Sequence

from ..errors import SourceError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SourceFile:
    """One entry of a repository tree listing."""

    path: str
    kind: str  # "blob" or "tree"
    content_id: str
    size: Optional[int] = None

    @property
    def is_blob(self) -> bool:
        return self.kind == "blob"


@dataclass(frozen=True)
class FetchedFile:
    """Decoded content of one file at a revision."""

    path: str
    content: str
    content_id: str


@dataclass(frozen=True)
class RevisionMetadata:
    tree_id: str
    message: str = ""


class SourceClient(ABC):
    """Abstract read-only client for a source repository host."""

    @abstractmethod
    async def latest_revision(self, owner: str, repo: str, ref: str) -> str:
        """Return the revision id at the head of ``ref``."""

    @abstractmethod
    async def revision_metadata(
        self, owner: str, repo: str, revision: str
    ) -> RevisionMetadata:
        """Return the tree id and message of ``revision``."""

    @abstractmethod
    async def list_tree(
        self, owner: str, repo: str, tree_id: str, recursive: bool = True
    ) -> List[SourceFile]:
        """List the entries of a tree."""

    @abstractmethod
    async def fetch_file(
        self, owner: str, repo: str, path: str, revision: Optional[str] = None
    ) -> FetchedFile:
        """Fetch one file. Raises SourceError if it cannot be read."""

    async def fetch_many(
        self,
        owner: str,
        repo: str,
        paths: Sequence[str],
        revision: Optional[str] = None,
        batch_size: int = 10,
    ) -> List[FetchedFile]:
        """Fetch many files, ``batch_size`` at a time.

        Best effort: files that fail to fetch are logged and omitted from the
        result. Result order follows ``paths``.
        """
        batch_size = max(1, batch_size)
        results: List[FetchedFile] = []

        for start in range(0, len(paths), batch_size):
            batch = paths[start : start + batch_size]
            fetched = await asyncio.gather(
                *(self.fetch_file(owner, repo, path, revision) for path in batch),
                return_exceptions=True,
            )
            for path, item in zip(batch, fetched):
                if isinstance(item, SourceError):
                    logger.warning(f"Failed to fetch {path}: {item.message}")
                    continue
                if isinstance(item, BaseException):
                    raise item
                results.append(item)

        return results

    async def close(self) -> None:
        """Release any held resources."""

    async def __aenter__(self) -> "SourceClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()
