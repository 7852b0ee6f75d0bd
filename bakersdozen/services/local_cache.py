# bakersdozen/services/local_cache.py
"""
Offline cache of table/view snapshots.

Snapshots are JSON arrays stored under versioned keys
(`<prefix><name>_v<version>`) in a string key/value store. Bumping the
version makes every previous key unreachable; `prune_stale_versions()`
deletes them (unversioned legacy keys included).

Storage errors never escape this module: a corrupted or unreadable entry is
logged, removed and reported as a cache miss.
"""
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Union
from urllib.parse import quote, unquote

logger = logging.getLogger(__name__)

Row = Dict[str, Any]


class KeyValueStorage:
    """Minimal string -> string store."""

    def get_item(self, key: str) -> Optional[str]:
        raise NotImplementedError

    def set_item(self, key: str, value: str) -> None:
        raise NotImplementedError

    def remove_item(self, key: str) -> None:
        raise NotImplementedError

    def keys(self) -> List[str]:
        raise NotImplementedError


class MemoryStorage(KeyValueStorage):

    def __init__(self, initial: Optional[Dict[str, str]] = None) -> None:
        self._data: Dict[str, str] = dict(initial or {})

    def get_item(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._data[key] = value

    def remove_item(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> List[str]:
        return list(self._data)


class FileStorage(KeyValueStorage):
    """One file per key under `directory`; survives process restarts."""

    SUFFIX = ".json"

    def __init__(self, directory: Union[str, Path]) -> None:
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        return self.directory / f"{quote(key, safe='')}{self.SUFFIX}"

    def get_item(self, key: str) -> Optional[str]:
        path = self._path(key)
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    def set_item(self, key: str, value: str) -> None:
        path = self._path(key)
        tmp = path.with_name(path.name + ".tmp")
        tmp.write_text(value, encoding="utf-8")
        tmp.replace(path)

    def remove_item(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)

    def keys(self) -> List[str]:
        return [
            unquote(p.name[: -len(self.SUFFIX)])
            for p in self.directory.glob(f"*{self.SUFFIX}")
        ]


class LocalCache:

    def __init__(
        self,
        storage: Optional[KeyValueStorage] = None,
        prefix: str = "bakersDozen_",
        version: str = "1.0.0",
    ) -> None:
        self.storage = storage if storage is not None else MemoryStorage()
        self.prefix = prefix
        self.version = version

    @classmethod
    def from_settings(cls, settings) -> "LocalCache":
        storage: KeyValueStorage
        if settings.cache_dir:
            storage = FileStorage(settings.cache_dir)
        else:
            storage = MemoryStorage()
        return cls(storage, prefix=settings.cache_prefix, version=settings.cache_version)

    def key(self, name: str) -> str:
        return f"{self.prefix}{name}_v{self.version}"

    # -----------------------
    # Snapshot access
    # -----------------------
    @staticmethod
    def _parse(raw: str) -> List[Row]:
        rows = json.loads(raw)
        if not isinstance(rows, list):
            raise ValueError(f"expected a JSON array, got {type(rows).__name__}")
        return rows

    def read(self, name: str) -> Optional[List[Row]]:
        """Return the cached snapshot for `name`, or None on a miss."""
        cache_key = self.key(name)
        try:
            raw = self.storage.get_item(cache_key)
        except ValueError as exc:
            # undecodable bytes on disk
            logger.error("Error decoding cached data for %s: %s", cache_key, exc)
            self._discard(cache_key)
            return None
        except Exception as exc:
            logger.error("Error reading cached data for %s: %s", cache_key, exc)
            return None
        if not raw:
            return None
        try:
            return self._parse(raw)
        except ValueError as exc:
            logger.error("Error parsing cached data for %s: %s", cache_key, exc)
            self._discard(cache_key)
            return None

    def write(self, name: str, rows: List[Row]) -> None:
        cache_key = self.key(name)
        try:
            self.storage.set_item(cache_key, json.dumps(rows, default=str))
        except Exception as exc:
            logger.error("Error storing data in cache for %s: %s", cache_key, exc)

    def remove(self, name: str) -> None:
        self._discard(self.key(name))

    def _discard(self, cache_key: str) -> None:
        try:
            self.storage.remove_item(cache_key)
        except Exception as exc:
            logger.error("Error removing cache key %s: %s", cache_key, exc)

    # -----------------------
    # Recovery helpers
    # -----------------------
    def _app_keys(self) -> List[str]:
        try:
            return [k for k in self.storage.keys() if k.startswith(self.prefix)]
        except Exception as exc:
            logger.error("Error listing cache keys: %s", exc)
            return []

    def clear_all(self) -> int:
        """Remove every key under the prefix, whatever its version."""
        keys = self._app_keys()
        for k in keys:
            logger.debug("Removing cache key: %s", k)
            self._discard(k)
        logger.info("Cleared %d cache items", len(keys))
        return len(keys)

    def detect_corruption(self) -> bool:
        for k in self._app_keys():
            try:
                value = self.storage.get_item(k)
                if value:
                    self._parse(value)
            except Exception:
                logger.error("Corrupted cache detected for key: %s", k)
                return True
        return False

    def attempt_recovery(self) -> bool:
        """Clear the cache if any entry is corrupted. True when a clear happened."""
        if self.detect_corruption():
            self.clear_all()
            return True
        return False

    def prune_stale_versions(self) -> int:
        """Delete keys written by other cache versions (or with no version)."""
        suffix = f"_v{self.version}"
        stale = [k for k in self._app_keys() if not k.endswith(suffix)]
        for k in stale:
            self._discard(k)
        if stale:
            logger.info("Pruned %d stale cache entries", len(stale))
        return len(stale)
