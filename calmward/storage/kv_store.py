"""
Persisted key-value storage.

String keys map to string values. A missing key is a valid state.
All operations are coroutines so callers treat storage as a
suspension point, like the device storage the client runs against.
"""

import asyncio
import json
from pathlib import Path
from typing import Dict, Optional

from calmward.utils.logger import get_logger

logger = get_logger(__name__)


class StorageError(RuntimeError):
    """Raised when the underlying store cannot be read or written."""


class KeyValueStore:
    """
    Base interface for session storage backends.
    """

    async def get(self, key: str) -> Optional[str]:
        raise NotImplementedError

    async def set(self, key: str, value: str) -> None:
        raise NotImplementedError

    async def remove(self, key: str) -> None:
        raise NotImplementedError


class InMemoryKeyValueStore(KeyValueStore):
    """Process-local store. Used for tests and ephemeral runs."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})

    async def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    async def set(self, key: str, value: str) -> None:
        self._data[key] = str(value)

    async def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def snapshot(self) -> Dict[str, str]:
        """Copy of the stored pairs."""
        return dict(self._data)


class JsonFileKeyValueStore(KeyValueStore):
    """
    Store backed by a single JSON object on disk.

    Every write rewrites the file through a temporary sibling and
    an atomic rename. File I/O runs in a worker thread so the event
    loop is never blocked.
    """

    def __init__(self, path: str | Path):
        self._path = Path(path)
        self._lock = asyncio.Lock()

    def _read_all(self) -> Dict[str, str]:
        if not self._path.exists():
            return {}

        try:
            with open(self._path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as exc:
            raise StorageError(f"Unable to read {self._path}") from exc

        if not isinstance(data, dict):
            raise StorageError(f"Corrupted store at {self._path}")

        return {str(k): str(v) for k, v in data.items() if v is not None}

    def _write_all(self, data: Dict[str, str]) -> None:
        tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, sort_keys=True)
            tmp_path.replace(self._path)
        except OSError as exc:
            raise StorageError(f"Unable to write {self._path}") from exc

    async def get(self, key: str) -> Optional[str]:
        data = await asyncio.to_thread(self._read_all)
        return data.get(key)

    async def set(self, key: str, value: str) -> None:
        async with self._lock:
            data = await asyncio.to_thread(self._read_all)
            data[key] = str(value)
            await asyncio.to_thread(self._write_all, data)

        logger.debug("Stored key", extra={"key": key})

    async def remove(self, key: str) -> None:
        async with self._lock:
            data = await asyncio.to_thread(self._read_all)
            if key not in data:
                return
            data.pop(key)
            await asyncio.to_thread(self._write_all, data)

        logger.debug("Removed key", extra={"key": key})
