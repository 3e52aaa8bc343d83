"""
GitHub REST source client.

Reads branches, commits, trees and file contents over the GitHub REST API
with an httpx AsyncClient.
"""

import base64
import binascii
import logging
from typing import Any, Dict, List, Optional

import httpx

from ..config import Settings, get_settings
from ..errors import SourceError
from .base import FetchedFile, RevisionMetadata, SourceClient, SourceFile

logger = logging.getLogger(__name__)


class GitHubSourceClient(SourceClient):
    """
    Source client for repositories hosted on GitHub.

    Args:
        settings: Settings providing the API URL, token and timeout
        client: Optional preconfigured httpx.AsyncClient (used by tests)
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.settings = settings or get_settings()
        self.base_url = self.settings.source_api_url.rstrip("/")
        headers = {
            "Accept": "application/vnd.github+json",
            "User-Agent": "compliance-tower",
        }
        if self.settings.source_token:
            headers["Authorization"] = f"Bearer {self.settings.source_token}"

        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(
            timeout=self.settings.source_timeout_seconds,
            headers=headers,
        )
        if client is not None:
            self.client.headers.update(headers)

    async def close(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._owns_client:
            await self.client.aclose()

    async def _get(
        self, path: str, params: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            response = await self.client.get(url, params=params)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            raise SourceError(
                f"SOURCE_HTTP_{e.response.status_code}",
                f"GET {path} failed with status {e.response.status_code}",
            ) from e
        except httpx.RequestError as e:
            logger.error(f"Request to {url} failed: {e}")
            raise SourceError("SOURCE_UNAVAILABLE", f"GET {path} failed: {e}") from e
        except ValueError as e:
            raise SourceError("SOURCE_BAD_RESPONSE", f"GET {path} returned invalid JSON") from e

    async def latest_revision(self, owner: str, repo: str, ref: str) -> str:
        data = await self._get(f"/repos/{owner}/{repo}/branches/{ref}")
        try:
            return data["commit"]["sha"]
        except (KeyError, TypeError) as e:
            raise SourceError(
                "SOURCE_BAD_RESPONSE", f"Branch {ref} of {owner}/{repo} has no commit"
            ) from e

    async def revision_metadata(
        self, owner: str, repo: str, revision: str
    ) -> RevisionMetadata:
        data = await self._get(f"/repos/{owner}/{repo}/commits/{revision}")
        try:
            commit = data["commit"]
            return RevisionMetadata(
                tree_id=commit["tree"]["sha"], message=commit.get("message") or ""
            )
        except (KeyError, TypeError) as e:
            raise SourceError(
                "SOURCE_BAD_RESPONSE", f"Commit {revision} of {owner}/{repo} has no tree"
            ) from e

    async def list_tree(
        self, owner: str, repo: str, tree_id: str, recursive: bool = True
    ) -> List[SourceFile]:
        params = {"recursive": "1"} if recursive else None
        data = await self._get(f"/repos/{owner}/{repo}/git/trees/{tree_id}", params)
        if data.get("truncated"):
            logger.warning(f"Tree listing for {owner}/{repo}@{tree_id} was truncated")

        return [
            SourceFile(
                path=node["path"],
                kind=node.get("type", "blob"),
                content_id=node.get("sha", ""),
                size=node.get("size"),
            )
            for node in data.get("tree", [])
        ]

    async def fetch_file(
        self, owner: str, repo: str, path: str, revision: Optional[str] = None
    ) -> FetchedFile:
        params = {"ref": revision} if revision else None
        data = await self._get(f"/repos/{owner}/{repo}/contents/{path}", params)

        if isinstance(data, list) or data.get("type") != "file":
            raise SourceError("SOURCE_NOT_A_FILE", f"Path {path} is not a file")

        try:
            content = base64.b64decode(data.get("content") or "").decode("utf-8")
        except (binascii.Error, UnicodeDecodeError) as e:
            raise SourceError(
                "SOURCE_BAD_CONTENT", f"Content of {path} could not be decoded"
            ) from e

        return FetchedFile(
            path=data.get("path", path),
            content=content,
            content_id=data.get("sha", ""),
        )
