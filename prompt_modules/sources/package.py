"""Prompt source for a package installed in a local package cache."""

from __future__ import annotations

import importlib.metadata
import importlib.util
import logging
from pathlib import Path

from ..errors import NotFoundError
from ..prompt_source import PROMPT_EXTENSION
from ..prompt_source import DiscoveredPromptFile
from ..prompt_source import PromptSource
from .local import LocalPromptSource

logger = logging.getLogger(__name__)

PACKAGE_MANIFEST = "package.json"
PACKAGE_CACHE_DIR = "node_modules"


def to_import_name(package_name: str) -> str:
    """Map a distribution-style name to the module name it would be imported as."""
    return package_name.replace("-", "_").replace(".", "_")


def find_in_package_cache(package_name: str, start: Path) -> Path | None:
    """Resolve ``<name>/package.json`` inside node_modules of ``start`` or any ancestor.

    Returns:
        Package directory, or None if no ancestor has it installed
    """
    for directory in (start, *start.parents):
        manifest = directory / PACKAGE_CACHE_DIR / package_name / PACKAGE_MANIFEST
        if manifest.is_file():
            return manifest.parent
    return None


def find_python_package(package_name: str) -> Path | None:
    """Resolve an installed Python package directory through the import system.

    Tries the import spec first, then the distribution metadata.
    """
    import_name = to_import_name(package_name)
    try:
        spec = importlib.util.find_spec(import_name)
    except (ImportError, ValueError):
        spec = None
    if spec is not None:
        if spec.submodule_search_locations:
            return Path(next(iter(spec.submodule_search_locations)))
        if spec.origin:
            return Path(spec.origin).parent

    try:
        dist = importlib.metadata.distribution(package_name)
    except importlib.metadata.PackageNotFoundError:
        return None
    candidate = Path(str(dist.locate_file(import_name)))
    if candidate.is_dir():
        return candidate
    return None


class PackagePromptSource(PromptSource):
    """Discovers template files of a locally installed package.

    The package directory is resolved through the node-style package cache
    (``node_modules/<name>/package.json``), falling back to the Python import
    system. The directory is then scanned like a LocalPromptSource.
    """

    def __init__(
        self,
        package_name: str,
        prompt_dirs: list[str] | None = None,
        extension: str = PROMPT_EXTENSION,
        base_dir: Path | None = None,
    ):
        """Initialize with package name.

        Args:
            package_name: Package name without version
            prompt_dirs: Sub-directories to scan instead of the default heuristic
            extension: Template file extension
            base_dir: Directory the package cache lookup starts from (default: cwd)
        """
        self.package_name = package_name
        self.prompt_dirs = prompt_dirs
        self.extension = extension
        self.base_dir = base_dir

    def resolve_package_path(self) -> Path:
        """Resolve the package's installation directory.

        Raises:
            NotFoundError: Package not installed
        """
        start = (self.base_dir or Path.cwd()).resolve()
        if path := find_in_package_cache(self.package_name, start):
            logger.debug(f"[package:resolve] {self.package_name} -> package cache ({path})")
            return path

        if path := find_python_package(self.package_name):
            logger.debug(f"[package:resolve] {self.package_name} -> python package ({path})")
            return path

        raise NotFoundError(
            f"Cannot resolve package '{self.package_name}': not found in {PACKAGE_CACHE_DIR}/ "
            f"of {start} or its parents, and not importable"
        )

    async def get_prompts(self) -> list[DiscoveredPromptFile]:
        package_dir = self.resolve_package_path()
        return await LocalPromptSource(package_dir, self.prompt_dirs, self.extension).get_prompts()

    def __repr__(self) -> str:
        return f"PackagePromptSource({self.package_name})"
