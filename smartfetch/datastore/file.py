"""
FileStorage - key-value storage backed by one JSON file per key.

Survives process restarts but offers no transactions. Blocking file I/O runs
in a worker thread so the event loop is never held.
"""

import asyncio
import hashlib
from pathlib import Path
from typing import Any

from loguru import logger

from smartfetch.datastore.base import (
    StorageAdapter,
    StorageError,
    dump_record,
    load_record,
)


class FileStorage(StorageAdapter):
    """
    File-backed storage adapter.

    Keys are hashed into file names under ``directory``; the original key is
    kept inside the file so collisions are detected on read.
    """

    name = "file"

    def __init__(self, directory: str | Path, prefix: str = "smartfetch-"):
        self._directory = Path(directory)
        self._prefix = prefix

    def _path(self, key: str) -> Path:
        digest = hashlib.sha256(key.encode("utf-8")).hexdigest()[:32]
        return self._directory / f"{self._prefix}{digest}.json"

    async def get(self, key: str) -> dict[str, Any] | None:
        return await asyncio.to_thread(self._read, key)

    async def set(self, key: str, record: dict[str, Any]) -> None:
        raw = dump_record({"key": key, "value": record})
        try:
            await asyncio.to_thread(self._write, key, raw)
        except OSError as e:
            # Out of space or similar: drop our files and try once more
            logger.warning(f"FileStorage write failed ({e}), clearing old entries")
            await self.clear()
            try:
                await asyncio.to_thread(self._write, key, raw)
            except OSError as retry_error:
                raise StorageError(str(retry_error), backend=self.name) from retry_error

    async def delete(self, key: str) -> None:
        await asyncio.to_thread(self._path(key).unlink, missing_ok=True)

    async def clear(self) -> None:
        await asyncio.to_thread(self._clear)

    async def has(self, key: str) -> bool:
        return await self.get(key) is not None

    def _read(self, key: str) -> dict[str, Any] | None:
        path = self._path(key)
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StorageError(str(e), backend=self.name) from e

        try:
            stored = load_record(raw)
        except ValueError as e:
            logger.warning(f"Corrupt cache file {path.name}, removing: {e}")
            path.unlink(missing_ok=True)
            return None

        if stored.get("key") != key:
            return None
        return stored.get("value")

    def _write(self, key: str, raw: str) -> None:
        self._directory.mkdir(parents=True, exist_ok=True)
        path = self._path(key)
        tmp = path.with_suffix(".tmp")
        tmp.write_text(raw, encoding="utf-8")
        tmp.replace(path)

    def _clear(self) -> None:
        if not self._directory.exists():
            return
        for path in self._directory.glob(f"{self._prefix}*.json"):
            path.unlink(missing_ok=True)
