"""Prompt source for package tarballs published to a package registry."""

from __future__ import annotations

import asyncio
import json
import logging
import urllib.parse
from typing import TYPE_CHECKING

import httpx

from ..archive import extract_prompt_files
from ..errors import ModuleLoadError
from ..errors import NotFoundError
from ..models import ParsedPackageSource
from ..prompt_source import PROMPT_EXTENSION
from ..prompt_source import DiscoveredPromptFile
from .base import RemotePromptSource

if TYPE_CHECKING:
    from ..content_cache import ContentCache

logger = logging.getLogger(__name__)

DEFAULT_REGISTRY_URL = "https://registry.npmjs.org"


def parse_package_source(source: str) -> ParsedPackageSource:
    """Split a package specifier into name and optional version.

    Scoped names (``@scope/name``) use the second ``@`` as the version
    separator, unscoped names the first. An empty version counts as none.

    Example:
        >>> parse_package_source("@scope/pkg@2.1.0")
        ParsedPackageSource(name='@scope/pkg', version='2.1.0')
    """
    search_from = 1 if source.startswith("@") else 0
    at_index = source.find("@", search_from)
    if at_index == -1:
        return ParsedPackageSource(name=source)
    return ParsedPackageSource(name=source[:at_index], version=source[at_index + 1 :] or None)


def encode_package_name(name: str) -> str:
    """URL-encode a scoped name for the registry path (``@scope/pkg`` -> ``@scope%2Fpkg``)."""
    if name.startswith("@"):
        return urllib.parse.quote(name, safe="@")
    return name


class RegistryPromptSource(RemotePromptSource):
    """Discovers template files inside a registry tarball.

    Given a package specifier the tarball URL is read from the registry's
    per-version metadata (``dist.tarball``); given a URL the tarball is
    downloaded directly.
    """

    def __init__(
        self,
        specifier: str,
        *,
        registry_url: str = DEFAULT_REGISTRY_URL,
        extension: str = PROMPT_EXTENSION,
        cache: ContentCache | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        """Initialize with package specifier or tarball URL.

        Args:
            specifier: ``name``, ``name@version`` or an http(s) tarball URL
            registry_url: Registry base URL (for enterprise registries)
            extension: Template file extension
            cache: Content cache for metadata and tarball downloads
            client: HTTP client used when no cache is supplied
        """
        super().__init__(cache=cache, client=client)
        self.registry_url = registry_url.rstrip("/")
        self.extension = extension
        self.package_name: str | None = None
        self.version: str | None = None
        self.tarball_url: str | None = None

        if specifier.startswith(("https://", "http://")):
            self.tarball_url = specifier
        else:
            parsed = parse_package_source(specifier)
            self.package_name = parsed.name
            self.version = parsed.version

    @classmethod
    def from_url(
        cls,
        url: str,
        *,
        extension: str = PROMPT_EXTENSION,
        cache: ContentCache | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> RegistryPromptSource:
        """Create a source that downloads a tarball URL directly."""
        return cls(url, extension=extension, cache=cache, client=client)

    async def get_prompts(self) -> list[DiscoveredPromptFile]:
        tarball_url = self.tarball_url or await self.resolve_tarball_url()
        tarball = await self._download(tarball_url)
        return await asyncio.to_thread(extract_prompt_files, tarball, self.extension)

    async def resolve_tarball_url(self) -> str:
        """Read ``dist.tarball`` from the registry metadata for this version.

        Raises:
            NotFoundError: Package/version unknown or metadata has no tarball URL
        """
        version = self.version or "latest"
        label = f"{self.package_name}@{version}"
        url = f"{self.registry_url}/{encode_package_name(self.package_name or '')}/{version}"

        try:
            body = await self._fetch(url)
        except ModuleLoadError as e:
            raise e.with_context(f'Fetch failed for "{label}"') from e

        try:
            metadata = json.loads(body)
        except ValueError as e:
            raise NotFoundError(f'Invalid registry metadata for "{label}": {e}') from e

        dist = metadata.get("dist") if isinstance(metadata, dict) else None
        tarball = dist.get("tarball") if isinstance(dist, dict) else None
        if not tarball:
            raise NotFoundError(f'No tarball URL found in registry metadata for "{label}"')

        logger.debug(f"Resolved {label} -> {tarball}")
        return tarball

    async def _download(self, url: str) -> bytes:
        try:
            return await self._fetch(url)
        except ModuleLoadError as e:
            raise e.with_context(f'Fetch failed for tarball at "{url}"') from e

    def __repr__(self) -> str:
        if self.tarball_url:
            return f"RegistryPromptSource({self.tarball_url})"
        version = f"@{self.version}" if self.version else ""
        return f"RegistryPromptSource({self.package_name}{version})"
