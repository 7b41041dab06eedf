"""Storage Service: keyed JSON persistence for generated assets and snapshots.

Objects are plain dicts carrying an "id" key, grouped by collection name.
put() is an upsert: writing an id that already exists in the collection
replaces its payload.

Transaction Pattern:
    Each public method opens its own short session from the injected
    session factory and commits before returning. Nothing is held open
    across awaits of other services.

Usage:
    storage = StorageService(get_session_factory())
    await storage.put("assets", asset.model_dump(mode="json"))
    assets = await storage.get_items_for_project("assets", "proj_1")
"""

from collections.abc import Iterable
from typing import Any

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shotforge.models import StoredRecord
from shotforge.utils.logging import get_logger

log = get_logger(__name__)


class StorageService:
    """Async key/value store over the stored_records table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def put(self, collection: str, item: dict[str, Any]) -> None:
        """Insert or replace one object.

        Raises:
            ValueError: If the object has no "id"
        """
        async with self.session_factory() as session:
            await self._upsert(session, collection, item)
            await session.commit()
        log.debug("record_saved", collection=collection, item_id=str(item["id"]))

    async def put_many(self, collection: str, items: Iterable[dict[str, Any]]) -> int:
        """Insert or replace several objects in one transaction.

        Returns:
            Number of objects written
        """
        count = 0
        async with self.session_factory() as session:
            for item in items:
                await self._upsert(session, collection, item)
                count += 1
            await session.commit()
        log.info("records_saved", collection=collection, count=count)
        return count

    async def get(self, collection: str, item_id: str) -> dict[str, Any] | None:
        async with self.session_factory() as session:
            record = await self._find(session, collection, item_id)
            return dict(record.payload) if record is not None else None

    async def get_all(self, collection: str) -> list[dict[str, Any]]:
        """Return every object in a collection, oldest first."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(StoredRecord)
                .where(StoredRecord.collection == collection)
                .order_by(StoredRecord.id)
            )
            return [dict(record.payload) for record in result.scalars().all()]

    async def get_items_for_project(self, collection: str, project_id: str) -> list[dict[str, Any]]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(StoredRecord)
                .where(
                    StoredRecord.collection == collection,
                    StoredRecord.project_id == project_id,
                )
                .order_by(StoredRecord.id)
            )
            return [dict(record.payload) for record in result.scalars().all()]

    async def count(self, collection: str) -> int:
        async with self.session_factory() as session:
            result = await session.execute(
                select(func.count()).select_from(StoredRecord).where(StoredRecord.collection == collection)
            )
            return int(result.scalar_one())

    async def delete(self, collection: str, item_id: str) -> bool:
        """Delete one object.

        Returns:
            True if an object was deleted, False if none existed
        """
        async with self.session_factory() as session:
            result = await session.execute(
                delete(StoredRecord).where(
                    StoredRecord.collection == collection,
                    StoredRecord.item_id == item_id,
                )
            )
            await session.commit()
        deleted = (result.rowcount or 0) > 0
        if deleted:
            log.debug("record_deleted", collection=collection, item_id=item_id)
        return deleted

    async def clear(self, collection: str) -> int:
        """Delete every object in a collection and return how many were removed."""
        async with self.session_factory() as session:
            result = await session.execute(
                delete(StoredRecord).where(StoredRecord.collection == collection)
            )
            await session.commit()
        removed = result.rowcount or 0
        log.info("collection_cleared", collection=collection, removed=removed)
        return removed

    @staticmethod
    async def _find(session: AsyncSession, collection: str, item_id: str) -> StoredRecord | None:
        result = await session.execute(
            select(StoredRecord).where(
                StoredRecord.collection == collection,
                StoredRecord.item_id == item_id,
            )
        )
        return result.scalar_one_or_none()

    async def _upsert(self, session: AsyncSession, collection: str, item: dict[str, Any]) -> None:
        if item.get("id") in (None, ""):
            raise ValueError(f"Cannot store an object without an 'id' in collection {collection!r}")

        item_id = str(item["id"])
        project_id = item.get("project_id")
        payload = dict(item)

        record = await self._find(session, collection, item_id)
        if record is None:
            session.add(
                StoredRecord(
                    collection=collection,
                    item_id=item_id,
                    project_id=str(project_id) if project_id is not None else None,
                    payload=payload,
                )
            )
        else:
            record.payload = payload
            record.project_id = str(project_id) if project_id is not None else None
