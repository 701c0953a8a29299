"""Disk cache for persisting computed Aquascope results."""

from __future__ import annotations

import gzip
import hashlib
import json
import sys
from pathlib import Path
from typing import Any

CACHE_PATH = ".aquascope-cache"


def _digest(key: Any) -> str:
    """Stable digest of a key: objects with ``cache_key()`` or JSON-serialisable values."""
    cache_key = getattr(key, "cache_key", None)
    if callable(cache_key):
        key = cache_key()
    payload = json.dumps(key, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()[:16]


class Cache:
    """A gzip-compressed JSON file mapping key digests to values."""

    def __init__(self, path: Path, entries: dict[str, Any] | None = None) -> None:
        self.path = Path(path)
        self._entries: dict[str, Any] = dict(entries or {})
        self._dirty = False

    @classmethod
    def load(cls, path: str | Path = CACHE_PATH) -> Cache:
        """Open the cache at ``path``, creating the file if it does not exist."""
        path = Path(path)
        path.touch(exist_ok=True)
        raw = path.read_bytes()
        entries: dict[str, Any] = {}
        if raw:
            try:
                loaded = json.loads(gzip.decompress(raw))
                if not isinstance(loaded, dict):
                    raise ValueError("cache contents are not a mapping")
                entries = loaded
            except (OSError, EOFError, ValueError) as error:
                print(
                    f"Warning: failed to read Aquascope cache with error {error}",
                    file=sys.stderr,
                )
        return cls(path, entries)

    def get(self, key: Any) -> Any | None:
        return self._entries.get(_digest(key))

    def set(self, key: Any, value: Any) -> None:
        self._entries[_digest(key)] = value
        self._dirty = True

    def save(self) -> None:
        """Write the cache to disk if anything was set since it was loaded."""
        if not self._dirty:
            return
        payload = json.dumps(self._entries, sort_keys=True).encode("utf-8")
        self.path.write_bytes(gzip.compress(payload, compresslevel=9, mtime=0))