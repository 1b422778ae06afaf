"""Settings for the module loader.

Three-scope YAML settings, merged in order (later wins):
- Global (~/.prompt-modules/settings.yaml)
- Project (.prompt-modules/settings.yaml)
- Local (.prompt-modules/settings.local.yaml)

Environment variables override the merged files.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import httpx
import yaml
from pydantic import BaseModel
from pydantic import Field
from pydantic import ValidationError

from .content_cache import ContentCache
from .errors import MalformedSourceError
from .http import DEFAULT_TIMEOUT
from .loader import ModuleLoader
from .prompt_source import PROMPT_EXTENSION
from .sources.registry import DEFAULT_REGISTRY_URL

logger = logging.getLogger(__name__)

SETTINGS_DIR = ".prompt-modules"

ENV_OVERRIDES = {
    "PROMPT_MODULES_REGISTRY_URL": "registry_url",
    "PROMPT_MODULES_CACHE_DIR": "cache_dir",
    "PROMPT_MODULES_EXTENSION": "prompt_extension",
    "GITHUB_TOKEN": "github_token",
}


@dataclass
class SettingsPaths:
    """Standard paths for settings files."""

    global_settings: Path
    project_settings: Path
    local_settings: Path

    @classmethod
    def default(cls) -> SettingsPaths:
        return cls(
            global_settings=Path.home() / SETTINGS_DIR / "settings.yaml",
            project_settings=Path.cwd() / SETTINGS_DIR / "settings.yaml",
            local_settings=Path.cwd() / SETTINGS_DIR / "settings.local.yaml",
        )

    def in_order(self) -> list[Path]:
        return [self.global_settings, self.project_settings, self.local_settings]


def default_cache_dir() -> Path:
    return Path.home() / SETTINGS_DIR / "cache"


class LoaderSettings(BaseModel):
    """Effective loader configuration."""

    registry_url: str = Field(DEFAULT_REGISTRY_URL, description="Package registry base URL")
    github_token: str | None = Field(None, description="Token for GitHub API and raw content requests")
    cache_dir: Path | None = Field(default_factory=default_cache_dir, description="Persistent content cache")
    cache_ttl: int | None = Field(None, description="Fixed cache TTL in seconds (default: by URL kind)")
    prompt_extension: str = Field(PROMPT_EXTENSION, description="Template file extension")
    http_timeout: float = Field(DEFAULT_TIMEOUT, description="HTTP request timeout in seconds")
    registry_fallback: bool = Field(False, description="Fetch uninstalled npm packages from the registry")
    modules: list[dict[str, Any]] = Field(default_factory=list, description="Module entries to load")


def deep_merge(base: dict[str, Any], overlay: dict[str, Any]) -> dict[str, Any]:
    """Deep merge two dicts, overlay wins."""
    result = base.copy()
    for key, value in overlay.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def read_settings_file(path: Path) -> dict[str, Any]:
    """Read one settings file; missing or malformed files yield an empty dict."""
    if not path.exists():
        return {}
    try:
        with open(path, encoding="utf-8") as f:
            content = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.warning(f"Skipping malformed settings file {path}: {e}")
        return {}
    if not isinstance(content, dict):
        logger.warning(f"Skipping settings file {path}: expected a mapping, got {type(content).__name__}")
        return {}
    return content


def load_settings(paths: SettingsPaths | None = None, environ: dict[str, str] | None = None) -> LoaderSettings:
    """Merge the settings scopes and apply environment overrides.

    Args:
        paths: Settings file locations (default: standard layout)
        environ: Environment mapping (default: os.environ)

    Returns:
        Validated settings

    Raises:
        MalformedSourceError: Merged settings do not validate
    """
    paths = paths or SettingsPaths.default()
    environ = os.environ if environ is None else environ

    merged: dict[str, Any] = {}
    for path in paths.in_order():
        merged = deep_merge(merged, read_settings_file(path))

    for variable, key in ENV_OVERRIDES.items():
        if value := environ.get(variable):
            merged[key] = value

    try:
        return LoaderSettings.model_validate(merged)
    except ValidationError as e:
        raise MalformedSourceError(f"Invalid settings: {e}") from e


def create_content_cache(settings: LoaderSettings, client: httpx.AsyncClient | None = None) -> ContentCache:
    return ContentCache(
        settings.cache_dir,
        ttl=settings.cache_ttl,
        client=client,
        timeout=settings.http_timeout,
    )


def create_module_loader(
    settings: LoaderSettings,
    *,
    cache: ContentCache | None = None,
    client: httpx.AsyncClient | None = None,
) -> ModuleLoader:
    """Build a loader wired to a content cache created from the same settings."""
    return ModuleLoader(
        cache=cache or create_content_cache(settings, client),
        client=client,
        registry_url=settings.registry_url,
        github_token=settings.github_token,
        extension=settings.prompt_extension,
        registry_fallback=settings.registry_fallback,
    )
