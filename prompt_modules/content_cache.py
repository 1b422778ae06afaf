"""Content cache for fetched module and template bytes.

Entries are keyed by the exact URL string the caller asked for. With a cache
directory the cache survives restarts: a manifest.json describes each entry
and the bytes live in modules/<sha256 of url>. Without one it is in-memory
only.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
import os
import re
import tempfile
from dataclasses import dataclass
from datetime import UTC
from datetime import datetime
from pathlib import Path

import httpx

from .errors import NetworkFailureError
from .http import DEFAULT_TIMEOUT
from .http import raise_for_response
from .http import send

logger = logging.getLogger(__name__)

SEVEN_DAYS_SECONDS = 7 * 24 * 60 * 60
ONE_HOUR_SECONDS = 60 * 60

MANIFEST_FILE = "manifest.json"
CONTENT_DIR = "modules"

_VERSIONED_URL = re.compile(
    r"(?:/v?\d+\.\d+\.\d+(?:[-+][\w.]+)?/?)"
    r"|(?:@v?\d+\.\d+\.\d+)"
    r"|(?:[?&]v(?:ersion)?=\d+\.\d+\.\d+)"
)


@dataclass
class CacheEntry:
    """Cached content for one URL."""

    key: str
    content: bytes
    fetched_at: datetime
    ttl: int
    etag: str | None = None
    last_modified: str | None = None

    def age(self, now: datetime | None = None) -> float:
        """Seconds since the content was fetched or last revalidated."""
        return ((now or datetime.now(UTC)) - self.fetched_at).total_seconds()

    def is_expired(self, now: datetime | None = None) -> bool:
        return self.age(now) >= self.ttl


@dataclass
class CacheStats:
    """Aggregate cache statistics."""

    entry_count: int
    total_bytes: int

    @property
    def total_size_mb(self) -> float:
        return self.total_bytes / (1024 * 1024)


def is_versioned_url(url: str) -> bool:
    """Check if the URL pins a semantic version (path segment, @version or query)."""
    return bool(_VERSIONED_URL.search(url))


def resolve_github_shorthand(specifier: str) -> str:
    """Expand ``github:user/repo[@ref]/path`` to a raw content URL.

    Anything else, including malformed shorthands, is returned unchanged.
    """
    if not specifier.startswith("github:"):
        return specifier

    rest = specifier[len("github:") :]
    parts = rest.split("/", 2)
    if len(parts) < 3 or not all(parts):
        return specifier

    user, repo, file_path = parts
    ref = "main"
    if "@" in repo:
        repo, ref = repo.split("@", 1)

    return f"https://raw.githubusercontent.com/{user}/{repo}/{ref}/{file_path}"


def _url_hash(url: str) -> str:
    return hashlib.sha256(url.encode()).hexdigest()


def _write_atomic(path: Path, data: bytes) -> None:
    """Write via a temp file in the same directory so readers never see partial content."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


class ContentCache:
    """Fetch-through cache for remote bytes with TTL and manual invalidation.

    Concurrent resolves of the same URL share one fetch; different URLs are
    fetched concurrently.
    """

    def __init__(
        self,
        cache_dir: Path | None = None,
        *,
        ttl: int | None = None,
        client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        """Initialize content cache.

        Args:
            cache_dir: Directory for persistent storage. None keeps entries in memory only.
            ttl: Time-to-live in seconds for every entry. None selects 7 days for
                versioned URLs and 1 hour otherwise.
            client: HTTP client to use. None creates one per fetch.
            timeout: Request timeout in seconds when no client is supplied
        """
        self.cache_dir = Path(cache_dir) if cache_dir is not None else None
        self.ttl = ttl
        self.client = client
        self.timeout = timeout
        self._entries: dict[str, CacheEntry] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._loaded = self.cache_dir is None

    async def resolve(
        self,
        url: str,
        *,
        no_cache: bool = False,
        headers: dict[str, str] | None = None,
    ) -> bytes:
        """Return content for ``url``, fetching it when missing or expired.

        Args:
            url: URL or ``github:`` shorthand; the exact string is the cache key
            no_cache: Fetch even when a fresh entry is stored, still storing the result.
                The stored entry is still served if that fetch fails.
            headers: Extra request headers (e.g. authorization)

        Returns:
            Content bytes

        Raises:
            NotFoundError: HTTP 404
            RateLimitedError: HTTP 403 with a rate-limit message
            NetworkFailureError: Transport failure or other non-2xx response, and
                no stale content is available
        """
        self._ensure_loaded()
        lock = self._locks.setdefault(url, asyncio.Lock())

        async with lock:
            entry = self._entries.get(url)
            if entry is not None and not no_cache:
                if not entry.is_expired():
                    logger.debug(f"Cache hit for {url} (age: {entry.age():.0f}s)")
                    return entry.content
                logger.debug(f"Cache expired for {url} (age: {entry.age():.0f}s, ttl: {entry.ttl}s)")

            request_headers = dict(headers or {})
            conditional = entry is not None and not no_cache
            if conditional:
                assert entry is not None
                if entry.etag:
                    request_headers["If-None-Match"] = entry.etag
                if entry.last_modified:
                    request_headers["If-Modified-Since"] = entry.last_modified

            target = resolve_github_shorthand(url)
            logger.info(f"Fetching {target}")
            try:
                response = await send(target, headers=request_headers, client=self.client, timeout=self.timeout)
                if response.status_code == 304 and conditional:
                    assert entry is not None
                    logger.debug(f"Not modified: {url}")
                    entry.fetched_at = datetime.now(UTC)
                    self._save_manifest()
                    return entry.content
                raise_for_response(response)
            except NetworkFailureError as e:
                if entry is not None:
                    logger.warning(f"Fetch failed for {url}, using stale cached content: {e}")
                    return entry.content
                raise

            new_entry = CacheEntry(
                key=url,
                content=response.content,
                fetched_at=datetime.now(UTC),
                ttl=self._ttl_for(url),
                etag=response.headers.get("ETag"),
                last_modified=response.headers.get("Last-Modified"),
            )
            self._store(new_entry)
            return new_entry.content

    def get_entry(self, url: str) -> CacheEntry | None:
        """Return the stored entry for ``url`` without fetching."""
        self._ensure_loaded()
        return self._entries.get(url)

    def invalidate(self, url: str) -> bool:
        """Remove one URL from the cache.

        Returns:
            True if an entry was removed
        """
        self._ensure_loaded()
        self._drop_lock(url)
        entry = self._entries.pop(url, None)
        if entry is None:
            return False
        if self.cache_dir is not None:
            (self.cache_dir / CONTENT_DIR / _url_hash(url)).unlink(missing_ok=True)
            self._save_manifest()
        logger.debug(f"Invalidated cache entry for {url}")
        return True

    def clear(self) -> int:
        """Remove every entry.

        Returns:
            Number of entries removed
        """
        self._ensure_loaded()
        count = len(self._entries)
        if self.cache_dir is not None:
            for url in self._entries:
                (self.cache_dir / CONTENT_DIR / _url_hash(url)).unlink(missing_ok=True)
        self._entries.clear()
        for url in list(self._locks):
            self._drop_lock(url)
        if self.cache_dir is not None:
            self._save_manifest()
        logger.debug(f"Cleared {count} cache entries")
        return count

    def get_stats(self) -> CacheStats:
        self._ensure_loaded()
        return CacheStats(
            entry_count=len(self._entries),
            total_bytes=sum(len(entry.content) for entry in self._entries.values()),
        )

    def _drop_lock(self, url: str) -> None:
        lock = self._locks.get(url)
        if lock is not None and not lock.locked():
            del self._locks[url]

    def _ttl_for(self, url: str) -> int:
        if self.ttl is not None:
            return self.ttl
        return SEVEN_DAYS_SECONDS if is_versioned_url(url) else ONE_HOUR_SECONDS

    def _store(self, entry: CacheEntry) -> None:
        self._entries[entry.key] = entry
        if self.cache_dir is not None:
            _write_atomic(self.cache_dir / CONTENT_DIR / _url_hash(entry.key), entry.content)
            self._save_manifest()

    def _ensure_loaded(self) -> None:
        """Read the on-disk manifest the first time the cache is used."""
        if self._loaded:
            return
        self._loaded = True
        assert self.cache_dir is not None

        manifest_path = self.cache_dir / MANIFEST_FILE
        if not manifest_path.exists():
            return

        try:
            manifest = json.loads(manifest_path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError) as e:
            logger.warning(f"Cache manifest corrupted, starting empty: {e}")
            return

        for url, meta in manifest.get("entries", {}).items():
            content_path = self.cache_dir / CONTENT_DIR / meta.get("hash", _url_hash(url))
            try:
                self._entries[url] = CacheEntry(
                    key=url,
                    content=content_path.read_bytes(),
                    fetched_at=datetime.fromisoformat(meta["fetched_at"]),
                    ttl=int(meta["ttl"]),
                    etag=meta.get("etag"),
                    last_modified=meta.get("last_modified"),
                )
            except (OSError, KeyError, ValueError) as e:
                logger.debug(f"Skipping unreadable cache entry for {url}: {e}")

        logger.debug(f"Loaded {len(self._entries)} cache entries from {self.cache_dir}")

    def _save_manifest(self) -> None:
        if self.cache_dir is None:
            return
        manifest = {
            "entries": {
                url: {
                    "hash": _url_hash(url),
                    "fetched_at": entry.fetched_at.isoformat(),
                    "ttl": entry.ttl,
                    "etag": entry.etag,
                    "last_modified": entry.last_modified,
                }
                for url, entry in self._entries.items()
            }
        }
        _write_atomic(self.cache_dir / MANIFEST_FILE, json.dumps(manifest, indent=2).encode("utf-8"))

    def __repr__(self) -> str:
        location = self.cache_dir or "memory"
        return f"ContentCache({location})"
