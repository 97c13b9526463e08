"""Release document stores.

- ``FileDocumentStore`` keeps documents as Markdown files in a directory
  (local mode).
- ``GitHubReleaseStore`` keeps each document as the body of a GitHub
  release whose tag is the document name (CI mode).
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import httpx

from kmod_imagegen.errors import ReleaseNotesError

logger = logging.getLogger(__name__)

GITHUB_API_VERSION = "2022-11-28"
DEFAULT_HTTP_TIMEOUT = 30.0


class FileDocumentStore:
    """Documents stored as ``<directory>/<name>.md``."""

    def __init__(self, directory: Path) -> None:
        self.directory = directory

    def path_for(self, name: str) -> Path:
        return self.directory / f"{name}.md"

    def read(self, name: str) -> str | None:
        path = self.path_for(name)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            raise ReleaseNotesError(
                f"Failed to read {path}: {e}", code="store_read_failed"
            ) from e

    def write(self, name: str, content: str) -> None:
        path = self.path_for(name)
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            path.write_text(content, encoding="utf-8")
        except OSError as e:
            raise ReleaseNotesError(
                f"Failed to write {path}: {e}", code="store_write_failed"
            ) from e
        logger.debug("Wrote %s", path)


class GitHubReleaseStore:
    """Documents stored as GitHub release bodies.

    Args:
        repository: ``owner/name`` of the repository holding the releases.
        token: Token with permission to write releases.
        api_url: GitHub REST API base URL.
        client: Optional HTTPX client (created and owned by the store if
            not provided).
        timeout: Request timeout in seconds.
    """

    def __init__(
        self,
        repository: str,
        token: str,
        api_url: str = "https://api.github.com",
        client: httpx.Client | None = None,
        timeout: float = DEFAULT_HTTP_TIMEOUT,
    ) -> None:
        self.repository = repository
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self._owns_client = client is None
        self._client = client or httpx.Client(
            headers={
                "Accept": "application/vnd.github+json",
                "Authorization": f"Bearer {token}",
                "X-GitHub-Api-Version": GITHUB_API_VERSION,
            },
            follow_redirects=True,
        )
        self._release_ids: dict[str, int] = {}

    def _url(self, path: str) -> str:
        return f"{self.api_url}/repos/{self.repository}{path}"

    def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            response = self._client.request(method, url, timeout=self.timeout, **kwargs)
            if method == "GET" and response.status_code == 404:
                return response
            response.raise_for_status()
            return response
        except httpx.HTTPStatusError as e:
            raise ReleaseNotesError(
                f"HTTP error {e.response.status_code} from {method} {url}",
                code="http_error",
            ) from e
        except httpx.TimeoutException as e:
            raise ReleaseNotesError(
                f"Timeout during {method} {url}", code="timeout"
            ) from e
        except httpx.RequestError as e:
            raise ReleaseNotesError(
                f"Network error during {method} {url}: {e}", code="network_error"
            ) from e

    def read(self, name: str) -> str | None:
        """Return the body of the release tagged ``name``, or None if absent."""
        response = self._request("GET", self._url(f"/releases/tags/{name}"))
        if response.status_code == 404:
            return None
        data = response.json()
        self._release_ids[name] = data["id"]
        return data.get("body") or ""

    def write(self, name: str, content: str) -> None:
        """Update the release tagged ``name``, creating it if needed."""
        if name not in self._release_ids:
            self.read(name)

        release_id = self._release_ids.get(name)
        if release_id is not None:
            self._request(
                "PATCH", self._url(f"/releases/{release_id}"), json={"body": content}
            )
            logger.debug("Updated release %s", name)
            return

        response = self._request(
            "POST",
            self._url("/releases"),
            json={"tag_name": name, "name": name, "body": content},
        )
        self._release_ids[name] = response.json()["id"]
        logger.debug("Created release %s", name)

    def close(self) -> None:
        if self._owns_client:
            self._client.close()


__all__ = ["FileDocumentStore", "GitHubReleaseStore"]
