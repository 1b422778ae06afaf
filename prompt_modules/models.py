"""Data models for module resolution.

Module entries are pydantic models tagged with an explicit ``kind`` so the
loader dispatches on the tag instead of probing object shapes. Resolution
results are plain dataclasses owned by the loader.
"""

from __future__ import annotations

from dataclasses import dataclass
from dataclasses import field
from typing import Annotated
from typing import Any
from typing import Literal

from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import Field
from pydantic import TypeAdapter

from .elements import PromptElement
from .errors import MalformedSourceError
from .prompt_source import PromptSource

ModuleType = Literal["local", "npm", "url", "git"]


class ResolvedModuleEntry(BaseModel):
    """Request to resolve a module from a typed origin."""

    kind: Literal["resolved"] = "resolved"
    name: str = Field(..., description="Library name reported to callers")
    type: ModuleType = Field(..., description="Origin kind used for dispatch")
    source: str = Field(..., description="Path, package specifier, URL or repository")
    prompt_dirs: list[str] | None = Field(None, description="Sub-directories to scan for template files")
    version: str | None = Field(None, description="Pinned version, used for conflict detection")
    branch: str | None = Field(None, description="Git ref for git sources")


class PromptSourceEntry(BaseModel):
    """Request to load prompts from a caller-supplied PromptSource."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    kind: Literal["source"] = "source"
    source: PromptSource
    name: str | None = None


class PackageReferenceEntry(BaseModel):
    """Request to import a PromptSource factory and construct it with ``config``."""

    kind: Literal["package"] = "package"
    source: str = Field(..., description="Module path or name, optionally suffixed with ':attr'")
    config: dict[str, Any] = Field(default_factory=dict)


ModuleEntry = Annotated[
    ResolvedModuleEntry | PromptSourceEntry | PackageReferenceEntry,
    Field(discriminator="kind"),
]

_entry_adapter: TypeAdapter[ResolvedModuleEntry | PromptSourceEntry | PackageReferenceEntry] = TypeAdapter(
    ModuleEntry
)


def parse_module_entry(data: Any) -> ResolvedModuleEntry | PromptSourceEntry | PackageReferenceEntry:
    """Convert raw configuration into a tagged ModuleEntry.

    Accepts existing entries, PromptSource instances and dicts. Dicts without a
    ``kind`` are tagged from their keys: ``type`` marks a resolved entry and
    ``config`` marks a package reference.

    Raises:
        MalformedSourceError: Data does not describe any entry variant
    """
    if isinstance(data, ResolvedModuleEntry | PromptSourceEntry | PackageReferenceEntry):
        return data
    if isinstance(data, PromptSource):
        return PromptSourceEntry(source=data)
    if not isinstance(data, dict):
        raise MalformedSourceError(
            f"Invalid module entry: expected a mapping or PromptSource, got {type(data).__name__}"
        )

    kind = data.get("kind")
    if kind is None:
        if "type" in data:
            kind = "resolved"
        elif "config" in data:
            kind = "package"
        else:
            raise MalformedSourceError(
                "Invalid module entry: must be a resolved entry (with 'type'), "
                "a PromptSource, or a package reference (with 'source' and 'config')"
            )

    try:
        return _entry_adapter.validate_python({**data, "kind": kind})
    except ValueError as e:
        raise MalformedSourceError(f"Invalid module entry: {e}") from e


@dataclass
class ParsedPackageSource:
    """Package specifier split into name and optional version."""

    name: str
    version: str | None = None


@dataclass
class CompiledPrompt:
    """One resolved, individually addressable template unit."""

    element: PromptElement
    id: str
    name: str
    description: str = ""
    tags: frozenset[str] = field(default_factory=frozenset)
    version: str | None = None


@dataclass
class LoadedLibrary:
    """Resolution result bundling components and compiled prompts."""

    name: str
    components: dict[str, type] = field(default_factory=dict)
    prompts: dict[str, CompiledPrompt] = field(default_factory=dict)
    dependencies: list[str] = field(default_factory=list)


@dataclass
class LoadResult:
    """Outcome of loading several entries with per-entry error isolation."""

    libraries: list[LoadedLibrary] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
