"""Prompt source implementations.

- LocalPromptSource: Local directory
- PackagePromptSource: Package installed in a local package cache
- RegistryPromptSource: Package tarball from a registry or tarball URL
- GitHubPromptSource: GitHub repository via the Git Trees API
"""

from ..prompt_source import DiscoveredPromptFile
from ..prompt_source import PromptSource
from .github import GitHubPromptSource
from .local import LocalPromptSource
from .package import PackagePromptSource
from .registry import RegistryPromptSource

__all__ = [
    "DiscoveredPromptFile",
    "PromptSource",
    "LocalPromptSource",
    "PackagePromptSource",
    "RegistryPromptSource",
    "GitHubPromptSource",
]
