"""
Durable store implementations for the result cache.

The durable tier is a plain key-value store of opaque bytes, used only to
survive process restarts. Provides memory, disk, and null stores.
Implementations raise ``OSError`` or ``ValueError`` on I/O failures; the
cache logs and swallows them.
"""

from __future__ import annotations

import asyncio
import base64
import hashlib
import json
from abc import ABC, abstractmethod
from pathlib import Path


class DurableStore(ABC):
    """Abstract base class for durable stores."""

    @abstractmethod
    async def get(self, key: str) -> bytes | None:
        """Get a value.

        Args:
            key: Store key

        Returns:
            Stored bytes or None
        """
        raise NotImplementedError

    @abstractmethod
    async def set(self, key: str, value: bytes) -> None:
        """Store a value under a key."""
        raise NotImplementedError

    @abstractmethod
    async def remove(self, key: str) -> bool:
        """Remove a value.

        Returns:
            True if removed, False if not found
        """
        raise NotImplementedError

    @abstractmethod
    async def keys(self, prefix: str = "") -> list[str]:
        """List stored keys starting with ``prefix``, oldest first."""
        raise NotImplementedError

    async def close(self) -> None:
        """Close the store (cleanup)."""
        pass


class InMemoryStore(DurableStore):
    """Dict-backed store, for tests and single-process use.

    Example:
        >>> store = InMemoryStore()
        >>> await store.set("k", b"v")
        >>> await store.get("k")
        b'v'
    """

    def __init__(self) -> None:
        self._data: dict[str, bytes] = {}

    async def get(self, key: str) -> bytes | None:
        return self._data.get(key)

    async def set(self, key: str, value: bytes) -> None:
        # Re-inserting moves the key to the end (newest)
        self._data.pop(key, None)
        self._data[key] = value

    async def remove(self, key: str) -> bool:
        return self._data.pop(key, None) is not None

    async def keys(self, prefix: str = "") -> list[str]:
        return [k for k in self._data if k.startswith(prefix)]

    @property
    def size(self) -> int:
        return len(self._data)


class DiskStore(DurableStore):
    """Disk-based store, one JSON file per key.

    Example:
        >>> store = DiskStore(path="/var/cache/ai-shield")
        >>> await store.set("key", b"...")
    """

    def __init__(self, path: str | Path) -> None:
        """Initialize disk store.

        Args:
            path: Store directory path (created if missing)
        """
        self._path = Path(path)
        self._lock = asyncio.Lock()

        self._path.mkdir(parents=True, exist_ok=True)

    @property
    def path(self) -> Path:
        return self._path

    def _key_to_path(self, key: str) -> Path:
        # Hash key to create safe filename
        key_hash = hashlib.sha256(key.encode()).hexdigest()
        return self._path / f"{key_hash}.json"

    async def get(self, key: str) -> bytes | None:
        path = self._key_to_path(key)

        async with self._lock:
            if not path.exists():
                return None
            data = json.loads(path.read_text(encoding="utf-8"))
        try:
            return base64.b64decode(data["value"])
        except (KeyError, TypeError) as e:
            raise ValueError(f"Malformed store record for {key!r}") from e

    async def set(self, key: str, value: bytes) -> None:
        path = self._key_to_path(key)
        record = {"key": key, "value": base64.b64encode(value).decode("ascii")}

        async with self._lock:
            tmp = path.with_suffix(".tmp")
            tmp.write_text(json.dumps(record), encoding="utf-8")
            tmp.replace(path)

    async def remove(self, key: str) -> bool:
        path = self._key_to_path(key)

        async with self._lock:
            if path.exists():
                path.unlink(missing_ok=True)
                return True
            return False

    async def keys(self, prefix: str = "") -> list[str]:
        found: list[tuple[float, str]] = []

        async with self._lock:
            for path in self._path.glob("*.json"):
                try:
                    record = json.loads(path.read_text(encoding="utf-8"))
                    mtime = path.stat().st_mtime
                except (OSError, ValueError):
                    # Unreadable record; skip
                    continue
                key = record.get("key", "")
                if key.startswith(prefix):
                    found.append((mtime, key))

        return [key for _, key in sorted(found)]


class NullStore(DurableStore):
    """Store that keeps nothing; disables the durable tier."""

    async def get(self, key: str) -> bytes | None:  # noqa: ARG002
        """Always returns None."""
        return None

    async def set(self, key: str, value: bytes) -> None:
        """Does nothing."""
        pass

    async def remove(self, key: str) -> bool:  # noqa: ARG002
        """Always returns False."""
        return False

    async def keys(self, prefix: str = "") -> list[str]:  # noqa: ARG002
        return []
