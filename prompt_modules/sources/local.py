"""Prompt source for a local directory."""

from __future__ import annotations

import logging
from pathlib import Path

from ..errors import NotFoundError
from ..prompt_source import PROMPT_EXTENSION
from ..prompt_source import DiscoveredPromptFile
from ..prompt_source import PromptSource
from .base import scan_directory

logger = logging.getLogger(__name__)


class LocalPromptSource(PromptSource):
    """Discovers template files in a local directory.

    Without explicit prompt directories the directory itself is used when it
    holds template files, otherwise its ``prompts/`` sub-directory. A directory
    with neither yields no files.
    """

    def __init__(
        self,
        dir_path: str | Path,
        prompt_dirs: list[str] | None = None,
        extension: str = PROMPT_EXTENSION,
    ):
        """Initialize with directory path.

        Args:
            dir_path: Directory to scan, absolute or relative to the working directory
            prompt_dirs: Sub-directories to scan instead of the default heuristic
            extension: Template file extension
        """
        self.dir_path = Path(dir_path)
        self.prompt_dirs = prompt_dirs
        self.extension = extension

    async def get_prompts(self) -> list[DiscoveredPromptFile]:
        """Scan the directory for template files.

        Raises:
            NotFoundError: Directory does not exist
        """
        resolved = self.dir_path.resolve()
        if not resolved.is_dir():
            raise NotFoundError(f"Directory not found: {resolved}")

        if self.prompt_dirs:
            return self._scan_prompt_dirs(resolved, self.prompt_dirs)

        scan_dir = resolved
        if not any(p.is_file() and p.name.endswith(self.extension) for p in resolved.iterdir()):
            scan_dir = resolved / "prompts"
            if not scan_dir.is_dir():
                logger.debug(f"No {self.extension} files or prompts/ directory in {resolved}")
                return []

        return scan_directory(scan_dir, self.extension)

    def _scan_prompt_dirs(self, base_path: Path, prompt_dirs: list[str]) -> list[DiscoveredPromptFile]:
        results: list[DiscoveredPromptFile] = []
        for directory in prompt_dirs:
            full_dir = base_path / directory
            if not full_dir.is_dir():
                logger.debug(f"Skipping missing prompt directory {full_dir}")
                continue
            results.extend(scan_directory(full_dir, self.extension))
        return results

    def __repr__(self) -> str:
        return f"LocalPromptSource({self.dir_path})"
