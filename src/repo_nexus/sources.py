"""Repository sources - where records, README context and file trees come from.

GitHubSource talks to the GitHub REST API; LocalSource reads scanned
repositories from disk; RoutingSource picks between them per record.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

import httpx

from .errors import AuthError, MalformedResponse, NotFound, RateLimited, TransportError
from .logging import get_logger
from .records import SOURCE_LOCAL, SOURCE_REMOTE, RepositoryRecord
from .scanner import find_readme, is_noise_dir

logger = get_logger("sources")

GITHUB_API_URL = "https://api.github.com"
REQUEST_TIMEOUT = 30
PAGE_SIZE = 100
MAX_PAGES = 10
MAX_TREE_ENTRIES = 2000


@dataclass(frozen=True)
class TreeEntry:
    """One path in a repository listing."""

    path: str
    is_directory: bool


class RepositorySource(Protocol):
    def fetch_metadata_list(self) -> list[RepositoryRecord]: ...

    def fetch_context(self, full_name: str) -> str: ...

    def fetch_tree(self, full_name: str) -> list[TreeEntry]: ...


class GitHubSource:
    """Client for the GitHub REST API."""

    def __init__(
        self,
        token: str = "",
        username: str = "",
        base_url: str = GITHUB_API_URL,
    ):
        self.token = token
        self.username = username
        self.base_url = base_url.rstrip("/")
        headers = {"Accept": "application/vnd.github.v3+json"}
        if token:
            headers["Authorization"] = f"token {token}"
        self._client = httpx.Client(timeout=REQUEST_TIMEOUT, headers=headers)
        # default_branch per repository, learned from the metadata listing
        self._branches: dict[str, str] = {}

    def fetch_metadata_list(self) -> list[RepositoryRecord]:
        """List the user's repositories, most recently updated first."""
        if self.username:
            url = f"{self.base_url}/users/{self.username}/repos"
        elif self.token:
            url = f"{self.base_url}/user/repos"
        else:
            raise AuthError("A GitHub token or username is required to list repositories")

        records: list[RepositoryRecord] = []
        for page in range(1, MAX_PAGES + 1):
            resp = self._get(url, params={"sort": "updated", "per_page": PAGE_SIZE, "page": page})
            items = _json(resp, url, list)
            for item in items:
                record = _record_from_api(item, url)
                self._branches[record.full_name] = record.default_branch
                records.append(record)
            if len(items) < PAGE_SIZE:
                break
        return records

    def fetch_context(self, full_name: str) -> str:
        """Return the raw README text. Raises NotFound if there is none."""
        resp = self._get(
            f"{self.base_url}/repos/{full_name}/readme",
            headers={"Accept": "application/vnd.github.v3.raw"},
        )
        return resp.text

    def fetch_tree(self, full_name: str) -> list[TreeEntry]:
        """Flat recursive listing of the default branch."""
        branch = self._branches.get(full_name)
        if branch is None:
            url = f"{self.base_url}/repos/{full_name}"
            branch = _json(self._get(url), url, dict).get("default_branch") or "main"
            self._branches[full_name] = branch

        url = f"{self.base_url}/repos/{full_name}/git/trees/{branch}"
        data = _json(self._get(url, params={"recursive": "1"}), url, dict)
        if data.get("truncated"):
            logger.debug("Tree listing for %s was truncated by GitHub", full_name)
        items = data.get("tree", [])
        if not isinstance(items, list):
            raise MalformedResponse(f"Unexpected tree listing from {url}")
        return [
            TreeEntry(path=item["path"], is_directory=item.get("type") == "tree")
            for item in items[:MAX_TREE_ENTRIES]
            if isinstance(item, dict) and isinstance(item.get("path"), str)
        ]

    def _get(self, url: str, **kwargs: Any) -> httpx.Response:
        try:
            resp = self._client.get(url, **kwargs)
        except httpx.TimeoutException:
            raise TransportError(f"GitHub request timed out after {REQUEST_TIMEOUT}s: {url}")
        except httpx.HTTPError as e:
            raise TransportError(f"Cannot reach GitHub: {e}")
        _raise_for_status(resp, url)
        return resp

    def close(self) -> None:
        self._client.close()


def _raise_for_status(resp: httpx.Response, url: str) -> None:
    status = resp.status_code
    if 200 <= status < 300:
        return
    if status == 404:
        raise NotFound(f"Not found: {url}")
    if status == 429 or (status == 403 and resp.headers.get("x-ratelimit-remaining") == "0"):
        raise RateLimited("GitHub API rate limit exceeded. Please wait a moment.")
    if status in (401, 403):
        raise AuthError(f"GitHub rejected the request ({status}). Check your token.")
    raise TransportError(f"GitHub API error {status}: {resp.text[:200]}")


def _json(resp: httpx.Response, url: str, expected: type) -> Any:
    try:
        data = resp.json()
    except ValueError:
        raise MalformedResponse(f"GitHub returned a non-JSON body for {url}")
    if not isinstance(data, expected):
        raise MalformedResponse(f"Unexpected {type(data).__name__} from {url}")
    return data


def _record_from_api(item: Any, url: str) -> RepositoryRecord:
    try:
        return RepositoryRecord(
            id=str(item["id"]),
            full_name=item["full_name"],
            name=item["name"],
            description=item.get("description") or "",
            language=item.get("language") or "",
            private=bool(item.get("private", False)),
            updated_at=item.get("updated_at") or "",
            default_branch=item.get("default_branch") or "main",
            source_type=SOURCE_REMOTE,
            html_url=item.get("html_url") or "",
        )
    except (KeyError, TypeError, AttributeError):
        raise MalformedResponse(f"Repository entry without id or name from {url}")


class LocalSource:
    """Serves context and trees for records produced by a local scan."""

    def __init__(self, records: list[RepositoryRecord] | None = None):
        self._paths: dict[str, Path] = {}
        for record in records or []:
            self.register(record)

    def register(self, record: RepositoryRecord) -> None:
        if record.local_path:
            self._paths[record.full_name] = Path(record.local_path)

    def fetch_metadata_list(self) -> list[RepositoryRecord]:
        # Local records come from the scanner, not from this source
        return []

    def fetch_context(self, full_name: str) -> str:
        readme = find_readme(self._root(full_name))
        if readme is None:
            raise NotFound(f"No README in {full_name}")
        try:
            return readme.read_text(errors="replace")
        except OSError as e:
            raise NotFound(f"Cannot read README for {full_name}: {e}")

    def fetch_tree(self, full_name: str) -> list[TreeEntry]:
        root = self._root(full_name)
        entries: list[TreeEntry] = []
        for dirpath, dirnames, filenames in os.walk(root):
            dirnames[:] = sorted(d for d in dirnames if not is_noise_dir(d))
            rel_dir = Path(dirpath).relative_to(root)
            for d in dirnames:
                entries.append(TreeEntry(path=(rel_dir / d).as_posix(), is_directory=True))
            for f in sorted(filenames):
                entries.append(TreeEntry(path=(rel_dir / f).as_posix(), is_directory=False))
            if len(entries) >= MAX_TREE_ENTRIES:
                break
        return entries[:MAX_TREE_ENTRIES]

    def _root(self, full_name: str) -> Path:
        root = self._paths.get(full_name)
        if root is None or not root.is_dir():
            raise NotFound(f"Unknown local repository: {full_name}")
        return root


class RoutingSource:
    """Sends local full names to LocalSource and everything else to the remote."""

    def __init__(self, remote: RepositorySource, local: LocalSource):
        self.remote = remote
        self.local = local

    def _pick(self, full_name: str) -> RepositorySource:
        return self.local if full_name.startswith(f"{SOURCE_LOCAL}/") else self.remote

    def fetch_metadata_list(self) -> list[RepositoryRecord]:
        return self.remote.fetch_metadata_list()

    def fetch_context(self, full_name: str) -> str:
        return self._pick(full_name).fetch_context(full_name)

    def fetch_tree(self, full_name: str) -> list[TreeEntry]:
        return self._pick(full_name).fetch_tree(full_name)
