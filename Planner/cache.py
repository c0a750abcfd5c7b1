"""
Caching layer for planner input documents with pluggable backends.

Two kinds of entries are kept:

* local JSON documents (codex, recipes, item mappings), validated against
  the SHA-256 of the source file so edits are picked up on the next load;
* keyed values such as claim inventory responses, which expire after a
  maximum age.

Only raw input documents are cached. Expanded and processed trees are built
fresh for every calculation.
"""
from __future__ import annotations

import hashlib
import json
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

from .config import DEFAULT_CACHE_DIR, CacheSettings


@dataclass
class CacheMetadata:
    """Metadata about a cached entry."""
    source_hash: str
    timestamp: float
    version: str
    expires_at: Optional[float] = None


@dataclass
class CacheEntry:
    """A cached data entry with metadata."""
    metadata: CacheMetadata
    data: Any


class CacheBackend(ABC):
    """Abstract base class for cache backends."""

    @abstractmethod
    def get(self, key: str) -> Optional[CacheEntry]:
        """Retrieve a cache entry by key."""

    @abstractmethod
    def set(self, key: str, entry: CacheEntry) -> None:
        """Store a cache entry."""

    @abstractmethod
    def invalidate(self, key: str) -> None:
        """Remove a cache entry."""

    @abstractmethod
    def clear(self) -> None:
        """Clear all cache entries."""


class MemoryCacheBackend(CacheBackend):
    """In-process dictionary backend; lives as long as the process."""

    def __init__(self):
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[CacheEntry]:
        with self._lock:
            return self._entries.get(key)

    def set(self, key: str, entry: CacheEntry) -> None:
        with self._lock:
            self._entries[key] = entry

    def invalidate(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


class FileCacheBackend(CacheBackend):
    """
    File-based JSON cache backend.

    One JSON file per key, written atomically through a temp file.
    """

    def __init__(self, cache_dir: Optional[Path] = None):
        self._cache_dir = cache_dir or DEFAULT_CACHE_DIR
        self._cache_dir.mkdir(parents=True, exist_ok=True)

    def _get_cache_path(self, key: str) -> Path:
        # Sanitize key for filesystem
        safe_key = "".join(c if c.isalnum() or c in "-_" else "_" for c in key)
        return self._cache_dir / f"{safe_key}.cache.json"

    def get(self, key: str) -> Optional[CacheEntry]:
        cache_path = self._get_cache_path(key)
        if not cache_path.exists():
            return None

        try:
            with cache_path.open("r", encoding="utf-8") as fh:
                raw = json.load(fh)

            metadata = CacheMetadata(
                source_hash=raw.get("source_hash", ""),
                timestamp=raw.get("timestamp", 0.0),
                version=raw.get("version", ""),
                expires_at=raw.get("expires_at"),
            )
            return CacheEntry(metadata=metadata, data=raw.get("data"))
        except (json.JSONDecodeError, KeyError, OSError):
            # Corrupted entry
            self.invalidate(key)
            return None

    def set(self, key: str, entry: CacheEntry) -> None:
        cache_path = self._get_cache_path(key)

        raw = {
            "source_hash": entry.metadata.source_hash,
            "timestamp": entry.metadata.timestamp,
            "version": entry.metadata.version,
            "expires_at": entry.metadata.expires_at,
            "data": entry.data,
        }

        temp_path = cache_path.with_suffix(".tmp")
        try:
            with temp_path.open("w", encoding="utf-8") as fh:
                json.dump(raw, fh, indent=2)
            temp_path.replace(cache_path)
        except OSError:
            if temp_path.exists():
                temp_path.unlink()
            raise

    def invalidate(self, key: str) -> None:
        cache_path = self._get_cache_path(key)
        if cache_path.exists():
            cache_path.unlink()

    def clear(self) -> None:
        for cache_file in self._cache_dir.glob("*.cache.json"):
            cache_file.unlink()


class PlannerDataCache:
    """
    High-level cache injected into the data loader.

    Usage:
        cache = PlannerDataCache(MemoryCacheBackend())

        data = cache.get_if_valid(codex_path)
        if data is None:
            data = read_json(codex_path)
            cache.store(codex_path, data)

        cache.set("inventories:123", payload, max_age=60)
        cache.get("inventories:123")
    """

    VERSION = "1.0"  # Increment when cache format changes

    def __init__(
        self,
        backend: Optional[CacheBackend] = None,
        enabled: bool = True,
    ):
        """
        Parameters
        ----------
        backend : CacheBackend, optional
            Cache backend to use. Defaults to MemoryCacheBackend.
        enabled : bool
            Whether caching is enabled. If False, every lookup misses.
        """
        self._backend = backend if backend is not None else MemoryCacheBackend()
        self._enabled = enabled

    @staticmethod
    def compute_hash(file_path: Path) -> str:
        """Compute SHA-256 hash of a file."""
        if not file_path.exists():
            return ""

        hasher = hashlib.sha256()
        with file_path.open("rb") as fh:
            for chunk in iter(lambda: fh.read(65536), b""):
                hasher.update(chunk)
        return hasher.hexdigest()

    # -- keyed values -------------------------------------------------------

    def get(self, key: str) -> Optional[Any]:
        """Return the value stored under ``key`` unless missing or expired."""
        if not self._enabled:
            return None

        entry = self._backend.get(key)
        if entry is None:
            return None
        if entry.metadata.version != self.VERSION:
            self._backend.invalidate(key)
            return None
        expires_at = entry.metadata.expires_at
        if expires_at is not None and time.time() >= expires_at:
            self._backend.invalidate(key)
            return None
        return entry.data

    def set(self, key: str, value: Any, max_age: Optional[float] = None) -> None:
        """Store ``value`` under ``key``; ``max_age`` seconds, or forever."""
        if not self._enabled:
            return

        now = time.time()
        metadata = CacheMetadata(
            source_hash="",
            timestamp=now,
            version=self.VERSION,
            expires_at=None if max_age is None else now + max_age,
        )
        self._backend.set(key, CacheEntry(metadata=metadata, data=value))

    # -- source files -------------------------------------------------------

    def _make_key(self, source_path: Path) -> str:
        return f"document_{source_path.stem}"

    def get_if_valid(self, source_path: Path) -> Optional[Any]:
        """
        Get a cached document if its source file is unchanged.

        Parameters
        ----------
        source_path : Path
            Path to the source JSON file

        Returns
        -------
        Any or None
            Cached data if valid, None on a miss or a stale entry
        """
        if not self._enabled:
            return None

        key = self._make_key(source_path)
        entry = self._backend.get(key)
        if entry is None:
            return None

        if entry.metadata.version != self.VERSION:
            self._backend.invalidate(key)
            return None

        if entry.metadata.source_hash != self.compute_hash(source_path):
            self._backend.invalidate(key)
            return None

        return entry.data

    def store(self, source_path: Path, data: Any) -> None:
        """Store a document with the current hash of its source file."""
        if not self._enabled:
            return

        metadata = CacheMetadata(
            source_hash=self.compute_hash(source_path),
            timestamp=time.time(),
            version=self.VERSION,
        )
        self._backend.set(self._make_key(source_path), CacheEntry(metadata=metadata, data=data))

    def invalidate(self, source_path: Path) -> None:
        """Manually invalidate the cached copy of a source file."""
        self._backend.invalidate(self._make_key(source_path))

    def clear_all(self) -> None:
        self._backend.clear()

    @property
    def enabled(self) -> bool:
        return self._enabled

    @enabled.setter
    def enabled(self, value: bool) -> None:
        self._enabled = value


def create_cache(settings: Optional[CacheSettings] = None) -> PlannerDataCache:
    """Build a cache for the configured backend."""
    settings = settings or CacheSettings()
    if settings.backend == "file":
        backend: CacheBackend = FileCacheBackend(settings.directory)
    else:
        backend = MemoryCacheBackend()
    return PlannerDataCache(backend=backend, enabled=settings.enabled)


# Module-level singleton
_cache: Optional[PlannerDataCache] = None


def get_data_cache(settings: Optional[CacheSettings] = None) -> PlannerDataCache:
    """Get or create the process-wide data cache."""
    global _cache
    if _cache is None:
        _cache = create_cache(settings)
    return _cache
