"""In-memory source client for deterministic tests and local runs."""

from __future__ import annotations

import hashlib
from typing import Dict, List, Optional, Set, Tuple

from ..errors import SourceError
from .base import FetchedFile, RevisionMetadata, SourceClient, SourceFile


def content_identity(content: str) -> str:
    """Git-style blob identity of ``content``."""
    data = content.encode("utf-8")
    return hashlib.sha1(b"blob %d\0" % len(data) + data).hexdigest()


class InMemorySourceClient(SourceClient):
    """Source client backed by dictionaries of file contents.

    Each call to ``publish`` creates a new revision at the head of the branch,
    so successive scans see successive snapshots.
    """

    def __init__(self) -> None:
        # (owner, repo, ref) -> head revision
        self.heads: Dict[Tuple[str, str, str], str] = {}
        # revision -> (message, {path: content})
        self.revisions: Dict[str, Tuple[str, Dict[str, str]]] = {}
        self.fail_paths: Set[str] = set()
        self.fail_discovery = False
        self.fetch_calls: List[str] = []

    def publish(
        self,
        owner: str,
        repo: str,
        files: Dict[str, str],
        message: str = "",
        ref: str = "main",
    ) -> str:
        """Make ``files`` the new head of ``ref`` and return its revision id."""
        digest = hashlib.sha1()
        parent = self.heads.get((owner, repo, ref), "")
        digest.update(parent.encode("utf-8"))
        for path in sorted(files):
            digest.update(path.encode("utf-8"))
            digest.update(content_identity(files[path]).encode("utf-8"))
        revision = digest.hexdigest()

        self.revisions[revision] = (message, dict(files))
        self.heads[(owner, repo, ref)] = revision
        return revision

    def _snapshot(self, revision: str) -> Tuple[str, Dict[str, str]]:
        try:
            return self.revisions[revision]
        except KeyError:
            raise SourceError("SOURCE_HTTP_404", f"Revision {revision} not found") from None

    async def latest_revision(self, owner: str, repo: str, ref: str) -> str:
        if self.fail_discovery:
            raise SourceError("SOURCE_UNAVAILABLE", f"{owner}/{repo} is unreachable")
        try:
            return self.heads[(owner, repo, ref)]
        except KeyError:
            raise SourceError(
                "SOURCE_HTTP_404", f"Branch {ref} of {owner}/{repo} not found"
            ) from None

    async def revision_metadata(
        self, owner: str, repo: str, revision: str
    ) -> RevisionMetadata:
        message, _ = self._snapshot(revision)
        return RevisionMetadata(tree_id=revision, message=message)

    async def list_tree(
        self, owner: str, repo: str, tree_id: str, recursive: bool = True
    ) -> List[SourceFile]:
        _, files = self._snapshot(tree_id)
        listing: List[SourceFile] = []
        directories: Set[str] = set()

        for path in sorted(files):
            parts = path.split("/")
            if not recursive and len(parts) > 1:
                directories.add(parts[0])
                continue
            for depth in range(1, len(parts)):
                directories.add("/".join(parts[:depth]))
            content = files[path]
            listing.append(
                SourceFile(
                    path=path,
                    kind="blob",
                    content_id=content_identity(content),
                    size=len(content.encode("utf-8")),
                )
            )

        listing.extend(
            SourceFile(path=directory, kind="tree", content_id=f"tree:{directory}")
            for directory in sorted(directories)
        )
        return listing

    async def fetch_file(
        self, owner: str, repo: str, path: str, revision: Optional[str] = None
    ) -> FetchedFile:
        self.fetch_calls.append(path)
        if path in self.fail_paths:
            raise SourceError("SOURCE_UNAVAILABLE", f"Fetching {path} failed")

        revision = revision or self.heads.get((owner, repo, "main"), "")
        _, files = self._snapshot(revision)
        if path not in files:
            raise SourceError("SOURCE_HTTP_404", f"Path {path} not found")

        content = files[path]
        return FetchedFile(path=path, content=content, content_id=content_identity(content))
