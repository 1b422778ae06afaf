"""Prompt source for repositories hosted on GitHub."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import TYPE_CHECKING
from typing import Any

import httpx

from ..errors import MalformedSourceError
from ..errors import ModuleLoadError
from ..prompt_source import DEFAULT_PROMPT_DIRS
from ..prompt_source import PROMPT_EXTENSION
from ..prompt_source import DiscoveredPromptFile
from .base import RemotePromptSource

if TYPE_CHECKING:
    from ..content_cache import ContentCache

logger = logging.getLogger(__name__)

DEFAULT_REF = "main"
GITHUB_API_URL = "https://api.github.com"
GITHUB_RAW_URL = "https://raw.githubusercontent.com"

_FILE_TYPES = ("blob", "file")


def parse_github_source(source: str) -> tuple[str, str, str | None]:
    """Parse ``owner/repo`` with an optional ``#ref`` suffix.

    Returns:
        Tuple of (owner, repo, ref); ref is None when absent

    Raises:
        MalformedSourceError: Source is not of the form owner/repo
    """
    owner_repo, _, ref = source.partition("#")
    owner, slash, repo = owner_repo.partition("/")
    if not slash or not owner or not repo or "/" in repo:
        raise MalformedSourceError(f'Invalid GitHub source format: expected "owner/repo", got "{source}"')
    return owner, repo, ref or None


class GitHubPromptSource(RemotePromptSource):
    """Discovers template files in a GitHub repository.

    Lists the repository tree through the Git Trees API and fetches every
    matching file from the raw content host.
    """

    def __init__(
        self,
        owner_repo: str,
        *,
        ref: str | None = None,
        token: str | None = None,
        prompt_dirs: list[str] | None = None,
        extension: str = PROMPT_EXTENSION,
        api_url: str = GITHUB_API_URL,
        raw_url: str = GITHUB_RAW_URL,
        cache: ContentCache | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        """Initialize with repository identifier.

        Args:
            owner_repo: ``owner/repo`` or ``owner/repo#ref``
            ref: Branch, tag or commit; overrides the ``#ref`` suffix (default: main)
            token: Access token for private repositories or higher rate limits
            prompt_dirs: Repository directories to scan (default: prompts)
            extension: Template file extension
            api_url: API base URL
            raw_url: Raw content base URL
            cache: Content cache for API and raw content requests
            client: HTTP client used when no cache is supplied

        Raises:
            MalformedSourceError: Identifier is not owner/repo
        """
        super().__init__(cache=cache, client=client)
        self.owner, self.repo, parsed_ref = parse_github_source(owner_repo)
        self.ref = ref or parsed_ref or DEFAULT_REF
        self.token = token
        self.prompt_dirs = prompt_dirs
        self.extension = extension
        self.api_url = api_url.rstrip("/")
        self.raw_url = raw_url.rstrip("/")

    async def get_prompts(self) -> list[DiscoveredPromptFile]:
        tree = await self.fetch_tree()
        entries = self.filter_prompt_files(tree)
        if not entries:
            return []

        contents = await asyncio.gather(*(self._fetch_file(entry["path"]) for entry in entries))
        return [
            DiscoveredPromptFile(filename=entry["path"].rsplit("/", 1)[-1], content=content)
            for entry, content in zip(entries, contents, strict=True)
        ]

    async def fetch_tree(self) -> list[dict[str, Any]]:
        """List every entry of the repository tree at ``ref``.

        Raises:
            RateLimitedError: API rate limit exceeded
            NotFoundError: Repository or ref not found
            NetworkFailureError: Transport failure or other error response
        """
        url = f"{self.api_url}/repos/{self.owner}/{self.repo}/git/trees/{self.ref}?recursive=1"
        try:
            body = await self._fetch(url, headers=self._headers())
        except ModuleLoadError as e:
            raise e.with_context(f"Failed to fetch GitHub tree for {self.owner}/{self.repo}") from e

        try:
            data = json.loads(body)
        except ValueError as e:
            raise MalformedSourceError(f"Invalid tree response for {self.owner}/{self.repo}: {e}") from e

        if data.get("truncated"):
            logger.warning(
                f"GitHub tree for {self.owner}/{self.repo}@{self.ref} is truncated; some files may be missing"
            )
        return data.get("tree", [])

    def filter_prompt_files(self, tree: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """Keep file entries with the template extension under a prompt directory."""
        prefixes = [d if d.endswith("/") else f"{d}/" for d in (self.prompt_dirs or DEFAULT_PROMPT_DIRS)]
        return [
            entry
            for entry in tree
            if entry.get("type") in _FILE_TYPES
            and entry.get("path", "").endswith(self.extension)
            and any(entry["path"].startswith(prefix) for prefix in prefixes)
        ]

    async def _fetch_file(self, path: str) -> str:
        url = f"{self.raw_url}/{self.owner}/{self.repo}/{self.ref}/{path}"
        try:
            body = await self._fetch(url, headers=self._headers())
        except ModuleLoadError as e:
            raise e.with_context(f"Failed to fetch file {path} from {self.owner}/{self.repo}") from e
        try:
            return body.decode("utf-8")
        except UnicodeDecodeError as e:
            raise MalformedSourceError(f"Template file {path} in {self.owner}/{self.repo} is not valid UTF-8") from e

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/vnd.github.v3+json"}
        if self.token:
            headers["Authorization"] = f"token {self.token}"
        return headers

    def __repr__(self) -> str:
        return f"GitHubPromptSource({self.owner}/{self.repo}@{self.ref})"
