"""Key/value cache stores with per-entry TTL.

AggregationCache and the CRM association resolver take a CacheStore so the
backing can be swapped: in-memory for a single process, JSON files on disk
to share between CLI runs.
"""

import json
import logging
import os
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


class CacheStore(ABC):
    """Minimal cache interface."""

    @abstractmethod
    def get(self, key: str) -> Optional[Any]:
        """Return the cached value, or None when missing or expired."""

    @abstractmethod
    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        """Store a value; ttl in seconds, None means no expiry."""

    @abstractmethod
    def invalidate(self, prefix: str = '') -> int:
        """Drop every key starting with prefix; returns the number dropped."""


class MemoryCacheStore(CacheStore):
    """Dict-backed cache for a single process."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._entries: dict[str, tuple[Any, Optional[float]]] = {}
        self._clock = clock

    def get(self, key: str) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and self._clock() >= expires_at:
            logger.debug(f"Cache expired for {key}")
            self._entries.pop(key, None)
            return None
        return value

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        expires_at = self._clock() + ttl if ttl is not None else None
        # Whole-entry replacement: readers see the old or the new value
        self._entries[key] = (value, expires_at)

    def invalidate(self, prefix: str = '') -> int:
        keys = [k for k in self._entries if k.startswith(prefix)]
        for key in keys:
            self._entries.pop(key, None)
        return len(keys)


class FileCacheStore(CacheStore):
    """
    JSON-file cache, one file per key.

    Each file holds an envelope with the original key, fetch and expiry
    timestamps and the value. Writes go to a temp file that is then
    renamed over the target, so a reader never sees a half-written entry.
    Values must be JSON-serialisable.
    """

    def __init__(self, cache_dir: Path, clock: Callable[[], float] = time.time):
        self.cache_dir = Path(cache_dir)
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        self._clock = clock

    def _safe_key(self, key: str) -> str:
        return "".join(c if c.isalnum() or c in "._-()" else "_" for c in key)

    def _path(self, key: str) -> Path:
        return self.cache_dir / f"{self._safe_key(key)}.json"

    def _read(self, cache_file: Path) -> Optional[dict]:
        try:
            with open(cache_file, "r", encoding="utf-8") as f:
                envelope = json.load(f)
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as e:
            logger.warning(f"Cache read error for {cache_file.name}: {e}")
            return None
        return envelope if isinstance(envelope, dict) else None

    def get(self, key: str) -> Optional[Any]:
        envelope = self._read(self._path(key))
        if envelope is None or envelope.get('key') != key:
            return None

        expires_at = envelope.get('expires_at')
        if expires_at is not None and self._clock() >= expires_at:
            age = self._clock() - envelope.get('fetched_at', 0)
            logger.debug(f"Cache expired for {key} (age: {age:.0f}s)")
            return None

        logger.debug(f"Cache hit for {key}")
        return envelope.get('value')

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        now = self._clock()
        envelope = {
            'key': key,
            'fetched_at': now,
            'expires_at': now + ttl if ttl is not None else None,
            'value': value,
        }
        cache_file = self._path(key)
        tmp_file = cache_file.with_suffix(f".{os.getpid()}.tmp")
        with open(tmp_file, "w", encoding="utf-8") as f:
            json.dump(envelope, f)
        os.replace(tmp_file, cache_file)
        logger.debug(f"Cached {key}")

    def invalidate(self, prefix: str = '') -> int:
        dropped = 0
        for cache_file in self.cache_dir.glob("*.json"):
            envelope = self._read(cache_file)
            if envelope is None or not str(envelope.get('key', '')).startswith(prefix):
                continue
            try:
                cache_file.unlink()
                dropped += 1
            except FileNotFoundError:
                pass
        return dropped
