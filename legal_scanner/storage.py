"""
Durable key-value storage used by the result cache.

Both backends expose the same async interface:
    get(keys)    -> {key: value} for the keys that exist
    set(mapping) -> store every key/value pair
    remove(keys) -> delete keys, ignoring missing ones

Values must be JSON-serializable.  Errors are not handled here: the cache
above decides what a storage failure means.
"""

import asyncio
import json
import os
import tempfile
from pathlib import Path
from typing import Any, Iterable, Optional, Protocol

from .logger import get_module_logger

logger = get_module_logger("storage")


class StorageBackend(Protocol):
    async def get(self, keys: Iterable[str]) -> dict[str, Any]: ...

    async def set(self, mapping: dict[str, Any]) -> None: ...

    async def remove(self, keys: Iterable[str]) -> None: ...


class MemoryStorage:
    """Process-local storage; values are deep-copied through JSON like a real store."""

    def __init__(self):
        self._data: dict[str, str] = {}

    async def get(self, keys: Iterable[str]) -> dict[str, Any]:
        return {key: json.loads(self._data[key]) for key in keys if key in self._data}

    async def set(self, mapping: dict[str, Any]) -> None:
        for key, value in mapping.items():
            self._data[key] = json.dumps(value)

    async def remove(self, keys: Iterable[str]) -> None:
        for key in keys:
            self._data.pop(key, None)


class JsonFileStorage:
    """
    File-based storage: one JSON file per key in a directory.

    Writes go to a temp file first and are moved into place, so a crash
    never leaves a half-written file behind.  File I/O runs in a worker
    thread to keep the event loop free.
    """

    def __init__(self, storage_dir: Optional[str] = None):
        if storage_dir is None:
            storage_dir = Path.cwd() / "legal_scanner_cache"

        self.storage_dir = Path(storage_dir)
        self.storage_dir.mkdir(parents=True, exist_ok=True)

        logger.info(f"File storage initialized at: {self.storage_dir}")

    def _path(self, key: str) -> Path:
        # Keep only filesystem-safe characters
        safe_name = "".join(c if c.isalnum() or c in '-_.' else '_' for c in key)
        return self.storage_dir / f"{safe_name}.json"

    def _read(self, keys: list[str]) -> dict[str, Any]:
        result = {}
        for key in keys:
            path = self._path(key)
            if path.exists():
                result[key] = json.loads(path.read_text())
        return result

    def _write(self, mapping: dict[str, Any]) -> None:
        for key, value in mapping.items():
            path = self._path(key)
            fd, tmp_name = tempfile.mkstemp(dir=self.storage_dir, suffix=".tmp")
            try:
                with os.fdopen(fd, "w") as tmp:
                    json.dump(value, tmp, indent=2)
                os.replace(tmp_name, path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise

    def _delete(self, keys: list[str]) -> None:
        for key in keys:
            self._path(key).unlink(missing_ok=True)

    async def get(self, keys: Iterable[str]) -> dict[str, Any]:
        return await asyncio.to_thread(self._read, list(keys))

    async def set(self, mapping: dict[str, Any]) -> None:
        await asyncio.to_thread(self._write, dict(mapping))

    async def remove(self, keys: Iterable[str]) -> None:
        await asyncio.to_thread(self._delete, list(keys))
