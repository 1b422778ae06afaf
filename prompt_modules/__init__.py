"""Resolve prompt modules from local directories, packages, registries and GitHub."""

from .code_loader import CodeLoader
from .code_loader import ImportlibCodeLoader
from .compiler import FrontmatterPromptCompiler
from .compiler import PromptCompiler
from .content_cache import CacheStats
from .content_cache import ContentCache
from .elements import Component
from .elements import PromptElement
from .errors import InvalidPackageReferenceError
from .errors import MalformedSourceError
from .errors import ModuleLoadError
from .errors import NetworkFailureError
from .errors import NotFoundError
from .errors import RateLimitedError
from .errors import VersionConflictError
from .loader import ModuleLoader
from .models import CompiledPrompt
from .models import LoadedLibrary
from .models import LoadResult
from .models import ModuleEntry
from .models import PackageReferenceEntry
from .models import PromptSourceEntry
from .models import ResolvedModuleEntry
from .models import parse_module_entry
from .prompt_source import PROMPT_EXTENSION
from .prompt_source import DiscoveredPromptFile
from .prompt_source import PromptSource
from .settings import LoaderSettings
from .settings import create_content_cache
from .settings import create_module_loader
from .settings import load_settings
from .sources import GitHubPromptSource
from .sources import LocalPromptSource
from .sources import PackagePromptSource
from .sources import RegistryPromptSource

__all__ = [
    "PROMPT_EXTENSION",
    "CacheStats",
    "CodeLoader",
    "CompiledPrompt",
    "Component",
    "ContentCache",
    "DiscoveredPromptFile",
    "FrontmatterPromptCompiler",
    "GitHubPromptSource",
    "ImportlibCodeLoader",
    "InvalidPackageReferenceError",
    "LoadResult",
    "LoadedLibrary",
    "LoaderSettings",
    "LocalPromptSource",
    "MalformedSourceError",
    "ModuleEntry",
    "ModuleLoadError",
    "ModuleLoader",
    "NetworkFailureError",
    "NotFoundError",
    "PackagePromptSource",
    "PackageReferenceEntry",
    "PromptCompiler",
    "PromptElement",
    "PromptSource",
    "PromptSourceEntry",
    "RateLimitedError",
    "RegistryPromptSource",
    "ResolvedModuleEntry",
    "VersionConflictError",
    "create_content_cache",
    "create_module_loader",
    "load_settings",
    "parse_module_entry",
]
