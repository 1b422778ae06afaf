"""Code loader capability: import a module and return its exported symbols.

The loader only ever calls ``load_module(target, headers=...)``; how a target maps to code
is up to the host application. ImportlibCodeLoader is the standard
implementation built on the Python import system.

Loading from a URL executes code fetched over the network. Only use it with
origins you trust.
"""

from __future__ import annotations

import hashlib
import importlib
import importlib.util
import logging
import sys
import types
from pathlib import Path
from typing import TYPE_CHECKING
from typing import Any
from typing import Protocol

import httpx

from .errors import ModuleLoadError
from .errors import NotFoundError
from .http import fetch
from .sources.package import to_import_name

if TYPE_CHECKING:
    from .content_cache import ContentCache

logger = logging.getLogger(__name__)

_MODULE_PREFIX = "_prompt_modules_loaded"


class CodeLoader(Protocol):
    """Capability for dynamically loading code by path, name or URL."""

    async def load_module(self, target: str, headers: dict[str, str] | None = None) -> dict[str, Any]: ...


def is_url(target: str) -> bool:
    return target.startswith(("http://", "https://"))


def is_path(target: str) -> bool:
    """Check if target names a filesystem location rather than an importable module."""
    if target.startswith("@"):
        return False
    return target.startswith((".", "/", "~")) or "/" in target or "\\" in target or target.endswith(".py")


def module_exports(module: types.ModuleType) -> dict[str, Any]:
    """Public symbols of a module (``__all__`` when defined, else names without underscore)."""
    names = getattr(module, "__all__", None)
    if names is None:
        names = [name for name in vars(module) if not name.startswith("_")]
    return {name: getattr(module, name) for name in names if hasattr(module, name)}


def _synthetic_name(origin: str, stem: str) -> str:
    digest = hashlib.sha256(origin.encode()).hexdigest()[:12]
    safe_stem = "".join(c if c.isalnum() else "_" for c in stem) or "module"
    return f"{_MODULE_PREFIX}_{safe_stem}_{digest}"


class ImportlibCodeLoader:
    """Loads modules from file paths, importable names or URLs."""

    def __init__(self, cache: ContentCache | None = None, client: httpx.AsyncClient | None = None):
        """Initialize code loader.

        Args:
            cache: Content cache used for URL targets
            client: HTTP client used for URL targets when no cache is supplied
        """
        self.cache = cache
        self.client = client

    async def load_module(self, target: str, headers: dict[str, str] | None = None) -> dict[str, Any]:
        """Load ``target`` and return its exported symbols.

        Args:
            target: ``.py`` file, package directory, module name or http(s) URL
            headers: Extra request headers for URL targets (e.g. authorization)

        Returns:
            Mapping of exported name to value

        Raises:
            NotFoundError: Target does not exist
            ModuleLoadError: Target exists but failed to execute
        """
        if is_url(target):
            module = await self._load_url(target, headers)
        elif is_path(target):
            module = self._load_path(Path(target).expanduser())
        else:
            module = self._import(target)
        return module_exports(module)

    def _load_path(self, path: Path) -> types.ModuleType:
        path = path.resolve()
        if path.is_dir():
            init_file = path / "__init__.py"
            if not init_file.is_file():
                raise NotFoundError(f"No Python package at {path} (missing __init__.py)")
            spec = importlib.util.spec_from_file_location(
                _synthetic_name(str(path), path.name), init_file, submodule_search_locations=[str(path)]
            )
        elif path.is_file():
            spec = importlib.util.spec_from_file_location(_synthetic_name(str(path), path.stem), path)
        else:
            raise NotFoundError(f"Module path not found: {path}")

        if spec is None or spec.loader is None:
            raise ModuleLoadError(f"Cannot create import spec for {path}")

        module = importlib.util.module_from_spec(spec)
        # Registered before execution so package-relative imports resolve
        sys.modules[spec.name] = module
        try:
            spec.loader.exec_module(module)
        except Exception as e:
            sys.modules.pop(spec.name, None)
            raise ModuleLoadError(f"Error executing module {path}: {e}") from e

        logger.debug(f"Loaded module from {path} as {spec.name}")
        return module

    def _import(self, name: str) -> types.ModuleType:
        import_name = to_import_name(name)
        if not all(part.isidentifier() for part in import_name.split(".")):
            raise NotFoundError(f"'{name}' is not an importable module name")

        try:
            return importlib.import_module(import_name)
        except ModuleNotFoundError as e:
            # Only the module itself missing is absence; a missing dependency inside it is a load error
            if e.name and (import_name == e.name or import_name.startswith(f"{e.name}.")):
                raise NotFoundError(f"Module '{import_name}' is not installed") from e
            raise ModuleLoadError(f"Error importing module '{import_name}': {e}") from e
        except Exception as e:
            raise ModuleLoadError(f"Error importing module '{import_name}': {e}") from e

    async def _load_url(self, url: str, headers: dict[str, str] | None) -> types.ModuleType:
        if self.cache is not None:
            body = await self.cache.resolve(url, headers=headers)
        else:
            body = (await fetch(url, headers=headers, client=self.client)).content

        stem = url.rstrip("/").rsplit("/", 1)[-1].removesuffix(".py")
        module = types.ModuleType(_synthetic_name(url, stem))
        module.__file__ = url
        try:
            code = compile(body.decode("utf-8"), url, "exec")
            exec(code, module.__dict__)
        except Exception as e:
            raise ModuleLoadError(f"Error executing module from {url}: {e}") from e

        logger.debug(f"Loaded module from {url}")
        return module
