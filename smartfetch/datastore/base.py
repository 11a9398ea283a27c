"""
Storage adapter interface.
"""

import base64
import json
from abc import ABC, abstractmethod
from typing import Any


class StorageError(Exception):
    """A storage backend operation failed."""

    def __init__(self, message: str, backend: str | None = None):
        self.backend = backend
        super().__init__(message)


class StorageAdapter(ABC):
    """
    Abstract key-value store used by the response cache and the offline queue.

    Values are JSON-able dict records. Adapters know nothing about TTLs;
    expiry is interpreted by the caller.
    """

    name: str = "storage"

    @abstractmethod
    async def get(self, key: str) -> dict[str, Any] | None:
        """Return the record stored under key, or None."""
        ...

    @abstractmethod
    async def set(self, key: str, record: dict[str, Any]) -> None:
        """Store record under key, replacing any previous value."""
        ...

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove key. Missing keys are ignored."""
        ...

    @abstractmethod
    async def clear(self) -> None:
        """Remove every key owned by this adapter."""
        ...

    @abstractmethod
    async def has(self, key: str) -> bool:
        """Check whether key is stored."""
        ...

    async def close(self) -> None:
        """Release backend resources."""
        return None


def _encode_default(value: Any) -> Any:
    if isinstance(value, (bytes, bytearray)):
        return {"__bytes__": base64.b64encode(bytes(value)).decode("ascii")}
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def _decode_hook(obj: dict[str, Any]) -> Any:
    if len(obj) == 1 and "__bytes__" in obj:
        return base64.b64decode(obj["__bytes__"])
    return obj


def dump_record(record: dict[str, Any]) -> str:
    """Serialize a record; bytes values survive the round trip."""
    return json.dumps(record, default=_encode_default, ensure_ascii=False)


def load_record(raw: str) -> dict[str, Any]:
    return json.loads(raw, object_hook=_decode_hook)
