"""Helpers shared by the concrete prompt sources."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

import httpx

from ..http import fetch
from ..prompt_source import DiscoveredPromptFile
from ..prompt_source import PromptSource

if TYPE_CHECKING:
    from ..content_cache import ContentCache

logger = logging.getLogger(__name__)


def scan_directory(directory: Path, extension: str) -> list[DiscoveredPromptFile]:
    """Read every file in ``directory`` (non-recursive) ending with ``extension``."""
    results = []
    for path in sorted(directory.iterdir()):
        if path.is_file() and path.name.endswith(extension):
            results.append(DiscoveredPromptFile(filename=path.name, content=path.read_text(encoding="utf-8")))
    logger.debug(f"Found {len(results)} {extension} files in {directory}")
    return results


class RemotePromptSource(PromptSource):
    """Prompt source that fetches bytes over HTTP, optionally through a ContentCache."""

    def __init__(self, cache: ContentCache | None = None, client: httpx.AsyncClient | None = None):
        self.cache = cache
        self.client = client

    async def _fetch(self, url: str, headers: dict[str, str] | None = None) -> bytes:
        if self.cache is not None:
            return await self.cache.resolve(url, headers=headers)
        response = await fetch(url, headers=headers, client=self.client)
        return response.content
