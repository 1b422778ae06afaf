"""Module loader: resolve module entries into loaded libraries.

The loader classifies each entry, deduplicates repeated and concurrent
requests for the same normalized source, detects version conflicts and
assembles components and compiled prompts into a LoadedLibrary.

Dedup state lives on the instance. Two loaders never share results, and
clear() resets one loader without touching the content cache.
"""

from __future__ import annotations

import asyncio
import logging
import os
import re
import uuid
from collections.abc import Awaitable
from collections.abc import Callable
from collections.abc import Iterable
from pathlib import Path
from typing import Any
from urllib.parse import urlparse

import httpx

from .code_loader import CodeLoader
from .code_loader import ImportlibCodeLoader
from .compiler import FrontmatterPromptCompiler
from .compiler import PromptCompiler
from .content_cache import ContentCache
from .elements import PromptElement
from .elements import is_component_class
from .elements import is_prompt_element
from .errors import InvalidPackageReferenceError
from .errors import MalformedSourceError
from .errors import ModuleLoadError
from .errors import NotFoundError
from .errors import VersionConflictError
from .errors import wrap_error
from .models import CompiledPrompt
from .models import LoadedLibrary
from .models import LoadResult
from .models import ModuleType
from .models import PackageReferenceEntry
from .models import ParsedPackageSource
from .models import PromptSourceEntry
from .models import ResolvedModuleEntry
from .models import parse_module_entry
from .prompt_source import PROMPT_EXTENSION
from .prompt_source import DiscoveredPromptFile
from .prompt_source import PromptSource
from .sources import GitHubPromptSource
from .sources import LocalPromptSource
from .sources import PackagePromptSource
from .sources import RegistryPromptSource
from .sources.github import DEFAULT_REF
from .sources.github import GITHUB_RAW_URL
from .sources.registry import DEFAULT_REGISTRY_URL
from .sources.registry import parse_package_source

logger = logging.getLogger(__name__)

NO_CONTENT_MESSAGE = "no module or template files found"
TARBALL_HOSTS = frozenset({"cdn.jsdelivr.net", "unpkg.com", "esm.sh", "registry.npmjs.org"})
DEFAULT_EXPORT = "default"

_GITHUB_URL = re.compile(r"github\.com[/:](?P<owner>[^/]+)/(?P<repo>[^/#]+?)(?:\.git)?(?:[/#]|$)")
_OWNER_REPO = re.compile(r"^(?P<owner>[\w.-]+)/(?P<repo>[\w.-]+?)(?:\.git)?(?:#.*)?$")


def parse_git_source(source: str) -> tuple[str, str, str | None]:
    """Extract owner, repo and ``#ref`` fragment from a git source.

    Accepts ``https://github.com/owner/repo(.git)``, ``git@github.com:owner/repo``
    and bare ``owner/repo``, each optionally suffixed with ``#ref``.

    Raises:
        MalformedSourceError: No owner/repo can be extracted
    """
    match = _GITHUB_URL.search(source) or _OWNER_REPO.match(source)
    if not match:
        raise MalformedSourceError(f"Cannot extract GitHub owner/repo from source: {source}")
    _, _, fragment = source.partition("#")
    return match.group("owner"), match.group("repo"), fragment or None


def is_tarball_or_cdn_url(url: str) -> bool:
    """Check if a URL points at a package tarball rather than a Python module."""
    parsed = urlparse(url)
    return parsed.path.endswith(".tgz") or parsed.hostname in TARBALL_HOSTS


def name_from_path(source: str) -> str:
    path = Path(source).expanduser()
    return path.name or path.resolve().name or "unknown"


def name_from_url(url: str) -> str:
    segments = [segment for segment in urlparse(url).path.split("/") if segment]
    if not segments:
        return "unknown"
    return segments[-1].removesuffix(".py") or "unknown"


class ModuleLoader:
    """Loads modules from local directories, installed packages, URLs and GitHub."""

    def __init__(
        self,
        *,
        code_loader: CodeLoader | None = None,
        compiler: PromptCompiler | None = None,
        cache: ContentCache | None = None,
        client: httpx.AsyncClient | None = None,
        registry_url: str = DEFAULT_REGISTRY_URL,
        github_token: str | None = None,
        extension: str = PROMPT_EXTENSION,
        registry_fallback: bool = False,
    ):
        """Initialize module loader.

        Args:
            code_loader: Capability used to import modules (default: ImportlibCodeLoader)
            compiler: Capability used to compile template files (default: FrontmatterPromptCompiler)
            cache: Content cache shared by network sources
            client: HTTP client for network sources when no cache is supplied
            registry_url: Package registry base URL
            github_token: Token attached to GitHub requests
            extension: Template file extension
            registry_fallback: Download npm packages from the registry when they
                are neither importable nor in the local package cache
        """
        self.cache = cache
        self.client = client
        self.code_loader = code_loader or ImportlibCodeLoader(cache=cache, client=client)
        self.compiler = compiler or FrontmatterPromptCompiler()
        self.registry_url = registry_url
        self.github_token = github_token
        self.extension = extension
        self.registry_fallback = registry_fallback

        self._loaded: dict[str, LoadedLibrary] = {}
        self._loading: dict[str, asyncio.Task[LoadedLibrary]] = {}
        self._versions: dict[str, str] = {}
        self._generation = 0

    # ---- Entry points ----

    async def load_entry(self, entry: Any) -> LoadedLibrary:
        """Load one module entry.

        Args:
            entry: A ModuleEntry variant, a PromptSource, or raw configuration dict

        Returns:
            Loaded library. Resolved entries return the shared cached instance.

        Raises:
            MalformedSourceError: Entry matches no variant, or a git source is unparseable
            VersionConflictError: Another version of the same name is already loaded
            InvalidPackageReferenceError: Package reference does not yield a PromptSource
            ModuleLoadError: Resolution failed (message carries operation and origin)
        """
        entry = parse_module_entry(entry)
        if isinstance(entry, ResolvedModuleEntry):
            return await self.load_resolved_entry(entry)
        if isinstance(entry, PromptSourceEntry):
            return await self.load_prompt_source(entry.source, entry.name)
        return await self.load_package_reference(entry)

    async def load_entries(self, entries: Iterable[Any]) -> LoadResult:
        """Load several entries concurrently, collecting failures as warnings.

        Returns:
            LoadResult with the successfully loaded libraries (in entry order) and
            one warning per failed entry
        """

        async def attempt(entry: Any) -> LoadedLibrary | str:
            try:
                return await self.load_entry(entry)
            except ModuleLoadError as e:
                return f'Failed to load module "{_entry_id(entry)}": {e}'

        outcomes = await asyncio.gather(*(attempt(entry) for entry in entries))

        result = LoadResult()
        for outcome in outcomes:
            if isinstance(outcome, str):
                logger.warning(outcome)
                result.warnings.append(outcome)
            else:
                result.libraries.append(outcome)
        return result

    async def load_resolved_entry(self, entry: ResolvedModuleEntry) -> LoadedLibrary:
        """Load a typed entry with dedup and version conflict detection.

        Concurrent calls for the same normalized source share one in-flight
        resolution. Callers await it through asyncio.shield, so cancelling one
        caller leaves the resolution running for the others.
        """
        key = self.normalize_source(entry.source, entry.type)

        if (library := self._loaded.get(key)) is not None:
            logger.debug(f"Dedup hit for {key}")
            return library

        task = self._loading.get(key)
        if task is not None:
            logger.debug(f"Joining in-flight load of {key}")
        else:
            if entry.version:
                loaded_version = self._versions.get(entry.name)
                if loaded_version and loaded_version != entry.version:
                    raise VersionConflictError(
                        f"Version conflict for {entry.name}: trying to load {entry.version} "
                        f"but {loaded_version} is already loaded",
                        name=entry.name,
                        requested=entry.version,
                        loaded=loaded_version,
                    )
            task = asyncio.create_task(self._resolve(key, entry, self._generation), name=f"load:{key}")
            self._loading[key] = task

        return await asyncio.shield(task)

    async def load_prompt_source(self, source: PromptSource, name: str | None = None) -> LoadedLibrary:
        """Discover and compile prompts from a caller-supplied PromptSource.

        Every call runs a fresh discovery pass.
        """
        try:
            prompts = await self.discover_and_compile_prompts(source)
        except Exception as e:
            raise wrap_error(e, f"Failed to load prompts from {source!r}") from e
        return LoadedLibrary(name=name or type(source).__name__, prompts=prompts)

    async def load_package_reference(self, entry: PackageReferenceEntry) -> LoadedLibrary:
        """Import a PromptSource factory, construct it with ``config`` and load it.

        Raises:
            InvalidPackageReferenceError: Export is missing, not callable, fails to
                construct, or does not return a PromptSource
        """
        target, attr = _split_reference(entry.source)
        if target.startswith(("./", "../")):
            target = os.path.normpath(Path.cwd() / target)

        try:
            exports = await self.code_loader.load_module(target)
        except Exception as e:
            raise wrap_error(e, f'Failed to load package reference "{entry.source}"') from e

        factory = exports.get(attr)
        if not callable(factory):
            raise InvalidPackageReferenceError(
                f'Package reference source "{entry.source}" must export a callable "{attr}" '
                f"that constructs a prompt source"
            )

        try:
            instance = factory(**entry.config)
        except Exception as e:
            raise InvalidPackageReferenceError(
                f'Package reference "{entry.source}" could not be constructed with its config: {e}'
            ) from e

        if not isinstance(instance, PromptSource):
            raise InvalidPackageReferenceError(
                f'Package reference "{entry.source}" produced {type(instance).__name__}, not a PromptSource'
            )

        logger.debug(f"Constructed {instance!r} from package reference {entry.source}")
        return await self.load_prompt_source(instance, name=entry.source)

    # ---- Normalization ----

    def parse_package_source(self, source: str) -> ParsedPackageSource:
        return parse_package_source(source)

    def normalize_source(self, source: str, type: ModuleType) -> str:
        """Canonical dedup key for a source of the given type.

        Local paths have ``~`` expanded and relative ones become absolute
        against the working directory, npm names are lower-cased (versions
        kept), everything else is returned unchanged. Normalizing a normalized
        key returns it unchanged.
        """
        if type == "local":
            path = Path(source).expanduser()
            if not path.is_absolute():
                return os.path.normpath(Path.cwd() / path)
            return str(path)

        if type == "npm":
            parsed = parse_package_source(source)
            name = parsed.name.lower()
            return f"{name}@{parsed.version}" if parsed.version else name

        return source

    def clear(self) -> None:
        """Forget loaded libraries, in-flight loads and pinned versions.

        Loads still running when this is called return to their callers but are
        not recorded.
        """
        self._generation += 1
        self._loaded.clear()
        self._loading.clear()
        self._versions.clear()

    # ---- Prompt and component discovery ----

    async def discover_and_compile_prompts(self, source: PromptSource) -> dict[str, CompiledPrompt]:
        files = await source.get_prompts()
        return self.compile_prompt_files(files)

    def compile_prompt_files(self, files: Iterable[DiscoveredPromptFile]) -> dict[str, CompiledPrompt]:
        """Compile discovered files into prompts keyed by name.

        The name comes from the template metadata, else the filename without
        the extension. A later file with the same name replaces an earlier one.
        """
        prompts: dict[str, CompiledPrompt] = {}
        for file in files:
            element = self.compiler.compile(file.content, file.filename)
            prompt = self._to_compiled_prompt(element, file.filename.removesuffix(self.extension))
            prompts[prompt.name] = prompt
        return prompts

    def detect_components(self, exports: dict[str, Any]) -> dict[str, type]:
        """Select exported Component subclasses."""
        return {name: value for name, value in exports.items() if is_component_class(value)}

    def detect_prompts(self, exports: dict[str, Any]) -> dict[str, PromptElement]:
        """Select exported PromptElements that carry a name."""
        return {name: value for name, value in exports.items() if is_prompt_element(value)}

    def _to_compiled_prompt(self, element: PromptElement, default_name: str) -> CompiledPrompt:
        props = element.props
        tags = props.get("tags") or []
        if not isinstance(tags, list | tuple | set | frozenset):
            tags = [tags]
        version = props.get("version")
        return CompiledPrompt(
            element=element,
            id=str(uuid.uuid4()),
            name=str(props.get("name") or default_name),
            description=str(props.get("description") or ""),
            tags=frozenset(str(tag) for tag in tags),
            version=str(version) if version is not None else None,
        )

    # ---- Resolution ----

    async def _resolve(self, key: str, entry: ResolvedModuleEntry, generation: int) -> LoadedLibrary:
        try:
            library = await self._dispatch(entry)
            library.name = entry.name
            if generation != self._generation:
                logger.debug(f"Loader was cleared while loading {key}, result not recorded")
                return library
            self._loaded[key] = library
            if entry.version:
                self._versions[entry.name] = entry.version
            logger.info(
                f"Loaded {entry.type} module {entry.name} "
                f"({len(library.components)} components, {len(library.prompts)} prompts)"
            )
            return library
        finally:
            # clear() may have dropped or replaced the slot while this task ran
            if self._loading.get(key) is asyncio.current_task():
                del self._loading[key]

    async def _dispatch(self, entry: ResolvedModuleEntry) -> LoadedLibrary:
        loaders: dict[str, tuple[str, Callable[[ResolvedModuleEntry], Awaitable[LoadedLibrary]]]] = {
            "local": ("Failed to load local module", self._load_local),
            "npm": ("Failed to load npm package", self._load_npm),
            "url": ("Failed to load module from URL", self._load_url),
            "git": ("Failed to load GitHub module", self._load_git),
        }
        label, load = loaders[entry.type]
        logger.debug(f"Resolving {entry.type} module {entry.source}")
        try:
            return await load(entry)
        except Exception as e:
            raise wrap_error(e, f'{label} "{entry.source}"') from e

    async def _load_local(self, entry: ResolvedModuleEntry) -> LoadedLibrary:
        path = Path(entry.source).expanduser().resolve()
        exports = await self._load_exports(str(path))
        file_prompts = await self._discover_prompts(LocalPromptSource(path, entry.prompt_dirs, self.extension))
        return self._assemble(name_from_path(entry.source), exports, file_prompts)

    async def _load_npm(self, entry: ResolvedModuleEntry) -> LoadedLibrary:
        parsed = parse_package_source(entry.source)
        exports = await self._load_exports(parsed.name)
        file_prompts = await self._discover_prompts(
            PackagePromptSource(parsed.name, entry.prompt_dirs, self.extension)
        )

        if exports is None and not file_prompts and self.registry_fallback:
            logger.info(f"{parsed.name} is not installed locally, fetching from {self.registry_url}")
            registry_source = RegistryPromptSource(
                entry.source,
                registry_url=self.registry_url,
                extension=self.extension,
                cache=self.cache,
                client=self.client,
            )
            file_prompts = await self.discover_and_compile_prompts(registry_source)

        return self._assemble(parsed.name, exports, file_prompts)

    async def _load_url(self, entry: ResolvedModuleEntry) -> LoadedLibrary:
        name = name_from_url(entry.source)
        if is_tarball_or_cdn_url(entry.source):
            source = RegistryPromptSource.from_url(
                entry.source, extension=self.extension, cache=self.cache, client=self.client
            )
            return self._assemble(name, None, await self.discover_and_compile_prompts(source))

        exports = await self.code_loader.load_module(entry.source)
        return LoadedLibrary(
            name=name,
            components=self.detect_components(exports),
            dependencies=_dependencies(exports),
        )

    async def _load_git(self, entry: ResolvedModuleEntry) -> LoadedLibrary:
        owner, repo, fragment = parse_git_source(entry.source)
        ref = entry.branch or fragment or DEFAULT_REF

        headers = {"Authorization": f"token {self.github_token}"} if self.github_token else None
        exports = await self._load_exports(f"{GITHUB_RAW_URL}/{owner}/{repo}/{ref}/__init__.py", headers)
        source = GitHubPromptSource(
            f"{owner}/{repo}",
            ref=ref,
            token=self.github_token,
            prompt_dirs=entry.prompt_dirs,
            extension=self.extension,
            cache=self.cache,
            client=self.client,
        )
        file_prompts = await self._discover_prompts(source)
        return self._assemble(f"{owner}/{repo}", exports, file_prompts)

    async def _load_exports(self, target: str, headers: dict[str, str] | None = None) -> dict[str, Any] | None:
        try:
            return await self.code_loader.load_module(target, headers=headers)
        except NotFoundError as e:
            logger.debug(f"No importable module at {target}: {e}")
            return None

    async def _discover_prompts(self, source: PromptSource) -> dict[str, CompiledPrompt]:
        try:
            return await self.discover_and_compile_prompts(source)
        except NotFoundError as e:
            logger.debug(f"No template files from {source!r}: {e}")
            return {}

    def _assemble(
        self,
        name: str,
        exports: dict[str, Any] | None,
        file_prompts: dict[str, CompiledPrompt],
    ) -> LoadedLibrary:
        """Combine module exports and template files; template files win on name clashes.

        Raises:
            NotFoundError: Neither components nor prompts were found
        """
        components: dict[str, type] = {}
        prompts: dict[str, CompiledPrompt] = {}
        dependencies: list[str] = []
        if exports is not None:
            components = self.detect_components(exports)
            for export_name, element in self.detect_prompts(exports).items():
                prompt = self._to_compiled_prompt(element, export_name)
                prompts[prompt.name] = prompt
            dependencies = _dependencies(exports)
        prompts.update(file_prompts)

        if not components and not prompts:
            raise NotFoundError(NO_CONTENT_MESSAGE)
        return LoadedLibrary(name=name, components=components, prompts=prompts, dependencies=dependencies)


def _dependencies(exports: dict[str, Any]) -> list[str]:
    value = exports.get("dependencies")
    if isinstance(value, list | tuple):
        return [str(item) for item in value]
    return []


def _split_reference(source: str) -> tuple[str, str]:
    """Split ``target:attr``; a suffix that is not an identifier (URL scheme, drive) is part of the target."""
    target, sep, attr = source.rpartition(":")
    if sep and attr.isidentifier() and target:
        return target, attr
    return source, DEFAULT_EXPORT


def _entry_id(entry: Any) -> str:
    if isinstance(entry, ResolvedModuleEntry):
        return entry.name
    if isinstance(entry, PackageReferenceEntry):
        return entry.source
    if isinstance(entry, PromptSourceEntry):
        return entry.name or repr(entry.source)
    if isinstance(entry, dict):
        return str(entry.get("name") or entry.get("source") or entry)
    return repr(entry)
