"""
Database repository layer - wraps data access for stored entries.
"""

from datetime import datetime

from loguru import logger
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from smartfetch.datastore.models import StoredEntryDB


class StoredEntryRepository:
    """Repository for namespaced key-value records"""

    def __init__(self, session: AsyncSession, namespace: str):
        self.session = session
        self.namespace = namespace

    async def get(self, key: str) -> StoredEntryDB | None:
        result = await self.session.execute(
            select(StoredEntryDB).where(
                StoredEntryDB.namespace == self.namespace,
                StoredEntryDB.key == key,
            )
        )
        return result.scalar_one_or_none()

    async def upsert(self, key: str, value_json: str) -> None:
        """Create or update the record for key"""
        existing = await self.get(key)
        if existing:
            existing.value_json = value_json
            existing.updated_at = datetime.now()
        else:
            self.session.add(
                StoredEntryDB(namespace=self.namespace, key=key, value_json=value_json)
            )

    async def delete(self, key: str) -> None:
        await self.session.execute(
            delete(StoredEntryDB).where(
                StoredEntryDB.namespace == self.namespace,
                StoredEntryDB.key == key,
            )
        )

    async def clear(self) -> None:
        await self.session.execute(
            delete(StoredEntryDB).where(StoredEntryDB.namespace == self.namespace)
        )
        logger.debug(f"Cleared stored entries in namespace '{self.namespace}'")

    async def exists(self, key: str) -> bool:
        result = await self.session.execute(
            select(StoredEntryDB.id).where(
                StoredEntryDB.namespace == self.namespace,
                StoredEntryDB.key == key,
            )
        )
        return result.scalar_one_or_none() is not None
