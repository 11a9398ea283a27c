"""
SQLStorage - transactional storage backend on top of SQLAlchemy.
"""

from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from smartfetch.datastore.base import (
    StorageAdapter,
    StorageError,
    dump_record,
    load_record,
)
from smartfetch.datastore.engine import Database
from smartfetch.datastore.repositories import StoredEntryRepository


class SQLStorage(StorageAdapter):
    """
    Storage adapter persisting records in a SQL table.

    Several adapters can share one Database by using different namespaces;
    ``clear()`` only touches its own namespace.

    Usage:
        db = Database("sqlite+aiosqlite:///./smartfetch.db")
        cache_storage = SQLStorage(db, namespace="cache")
        queue_storage = SQLStorage(db, namespace="offline")
    """

    name = "sql"

    def __init__(
        self,
        database: Database,
        namespace: str = "default",
        owns_database: bool = False,
    ):
        self._db = database
        self._namespace = namespace
        self._owns_database = owns_database

    async def get(self, key: str) -> dict[str, Any] | None:
        try:
            async with self._db.session() as session:
                entry = await StoredEntryRepository(session, self._namespace).get(key)
                return load_record(entry.value_json) if entry else None
        except SQLAlchemyError as e:
            raise StorageError(str(e), backend=self.name) from e

    async def set(self, key: str, record: dict[str, Any]) -> None:
        value_json = dump_record(record)
        try:
            async with self._db.session() as session:
                await StoredEntryRepository(session, self._namespace).upsert(
                    key, value_json
                )
        except SQLAlchemyError as e:
            raise StorageError(str(e), backend=self.name) from e

    async def delete(self, key: str) -> None:
        try:
            async with self._db.session() as session:
                await StoredEntryRepository(session, self._namespace).delete(key)
        except SQLAlchemyError as e:
            raise StorageError(str(e), backend=self.name) from e

    async def clear(self) -> None:
        try:
            async with self._db.session() as session:
                await StoredEntryRepository(session, self._namespace).clear()
        except SQLAlchemyError as e:
            raise StorageError(str(e), backend=self.name) from e

    async def has(self, key: str) -> bool:
        try:
            async with self._db.session() as session:
                return await StoredEntryRepository(session, self._namespace).exists(key)
        except SQLAlchemyError as e:
            raise StorageError(str(e), backend=self.name) from e

    async def close(self) -> None:
        if self._owns_database:
            await self._db.close()
