"""Periodic orphan-file sweep.

Runs as an asyncio task within the FastAPI process. The lifespan owns it:
``start()`` on startup, ``stop()`` on shutdown. Tests call ``run_once()``
directly instead of waiting for the interval.
"""
import asyncio
import logging

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from fileshare.services.file_storage import FileStorageService
from fileshare.services.file_store import FileRecordStore
from fileshare.services.reconciler import BlobReconciler

logger = logging.getLogger(__name__)


class OrphanSweeper:

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        storage: FileStorageService,
        interval_seconds: float,
    ):
        self.session_factory = session_factory
        self.storage = storage
        self.interval_seconds = interval_seconds
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> int:
        """One directory-to-store sweep cycle. Returns the number of files deleted."""
        async with self.session_factory() as db:
            reconciler = BlobReconciler(FileRecordStore(db), self.storage)
            return await reconciler.sweep_directory_orphans()

    def start(self) -> None:
        if self.interval_seconds <= 0:
            logger.info("Orphan sweep disabled")
            return
        if self.running:
            return
        self._task = asyncio.create_task(self._loop(), name="orphan-sweeper")

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Orphan sweeper stopped")

    async def _loop(self) -> None:
        logger.info("Orphan sweeper started (every %ss)", self.interval_seconds)
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                logger.info("Running scheduled cleanup of orphaned files...")
                deleted = await self.run_once()
                if deleted > 0:
                    logger.info("Scheduled cleanup removed %d orphaned files", deleted)
            except Exception as e:
                logger.error("Scheduled cleanup failed: %s", e)
