"""Metadata store for file records.

Thin async repository over a session. Every mutating call commits, so a
corrective delete made during reconciliation survives a later failure in the
same request.
"""
import uuid

from sqlalchemy import delete, desc, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from fileshare.models.category import Category
from fileshare.models.file_record import FileKind, FileRecord


class FileRecordStore:

    def __init__(self, db: AsyncSession):
        self.db = db

    async def find(self, kind: FileKind) -> list[FileRecord]:
        result = await self.db.execute(
            select(FileRecord)
            .where(FileRecord.kind == kind)
            .order_by(desc(FileRecord.created_at))
        )
        return list(result.scalars().all())

    async def find_by_id(self, record_id: uuid.UUID) -> FileRecord | None:
        result = await self.db.execute(
            select(FileRecord)
            .where(FileRecord.id == record_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def find_by_ids(self, record_ids: list[uuid.UUID]) -> dict[uuid.UUID, FileRecord]:
        """Reload several records, overwriting any expired state in the session."""
        if not record_ids:
            return {}
        result = await self.db.execute(
            select(FileRecord)
            .where(FileRecord.id.in_(record_ids))
            .execution_options(populate_existing=True)
        )
        return {r.id: r for r in result.scalars().all()}

    async def find_by_category(self, category_id: uuid.UUID) -> list[FileRecord]:
        result = await self.db.execute(
            select(FileRecord)
            .where(FileRecord.category_id == category_id)
            .order_by(desc(FileRecord.created_at))
        )
        return list(result.scalars().all())

    async def create(self, record: FileRecord) -> FileRecord:
        self.db.add(record)
        await self.db.flush()
        if record.category_id is not None:
            await self._recount(record.category_id)
        await self.db.commit()
        return await self.find_by_id(record.id)

    async def delete_by_id(self, record_id: uuid.UUID) -> bool:
        """Delete a record. Deleting an id that is already gone is not an error."""
        result = await self.db.execute(
            delete(FileRecord)
            .where(FileRecord.id == record_id)
            .returning(FileRecord.category_id)
            .execution_options(synchronize_session=False)
        )
        removed = result.all()
        for (category_id,) in removed:
            if category_id is not None:
                await self._recount(category_id)
        await self.db.commit()
        return bool(removed)

    async def increment_download_count(self, record_id: uuid.UUID) -> int | None:
        """Atomically bump the counter. Returns the new count, or None if the record is gone."""
        result = await self.db.execute(
            update(FileRecord)
            .where(FileRecord.id == record_id)
            .values(download_count=FileRecord.download_count + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            await self.db.rollback()
            return None
        await self.db.commit()
        count = await self.db.execute(
            select(FileRecord.download_count).where(FileRecord.id == record_id)
        )
        return count.scalar_one_or_none()

    async def set_category(self, record_id: uuid.UUID, category: Category) -> FileRecord | None:
        """Move a record into ``category`` and refresh file counts on both sides."""
        record = await self.find_by_id(record_id)
        if record is None:
            return None

        previous_id = record.category_id
        record.category_id = category.id
        await self.db.flush()

        category_ids = {category.id}
        if previous_id is not None and previous_id != category.id:
            category_ids.add(previous_id)
        for cid in category_ids:
            await self._recount(cid)

        await self.db.commit()
        return await self.find_by_id(record_id)

    async def _recount(self, category_id: uuid.UUID) -> None:
        count = await self.db.execute(
            select(func.count(FileRecord.id)).where(FileRecord.category_id == category_id)
        )
        await self.db.execute(
            update(Category)
            .where(Category.id == category_id)
            .values(file_count=count.scalar_one())
            .execution_options(synchronize_session=False)
        )
