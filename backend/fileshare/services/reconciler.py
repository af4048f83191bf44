"""Blob/metadata reconciliation.

Keeps the managed upload directory and the files table consistent:

- reads (listing, download by id) lazily delete records whose blob is gone,
  is not a regular file, or whose stored path escapes the directory;
- the directory sweep deletes files no record references;
- the record sweep deletes records whose blob is missing.

No locking is involved. Record deletes and file unlinks are both idempotent,
so concurrent reconciliations of the same drift are harmless.

Records are copied into ``BlobRef`` snapshots before any corrective delete:
a failed delete rolls the session back, which expires every loaded row.
"""
import logging
import uuid
from dataclasses import dataclass, field
from pathlib import Path

from fileshare.exceptions import (
    BlobForbiddenError,
    BlobNotFoundError,
    NotABlobError,
    PathTraversalError,
)
from fileshare.models.file_record import FileKind, FileRecord
from fileshare.services.file_storage import BlobStatus, FileStorageService
from fileshare.services.file_store import FileRecordStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BlobRef:
    id: uuid.UUID
    filename: str
    stored_path: str
    display_name: str

    @classmethod
    def of(cls, record: FileRecord) -> "BlobRef":
        return cls(
            id=record.id,
            filename=record.filename or "",
            stored_path=record.stored_path or "",
            display_name=record.display_name or "",
        )


@dataclass(frozen=True)
class ResolvedBlob:
    record_id: uuid.UUID | None
    path: Path
    size: int
    display_name: str


@dataclass
class RecordSweepReport:
    removed_count: int = 0
    errors: list[str] = field(default_factory=list)


class BlobReconciler:
    """Resolves file records to servable blobs, repairing drift on the way."""

    def __init__(self, store: FileRecordStore, storage: FileStorageService):
        self.store = store
        self.storage = storage
        self._discard_failures = 0

    async def resolve_record(self, record: FileRecord | BlobRef) -> ResolvedBlob:
        """Validate one blob record against the filesystem.

        Raises BlobNotFoundError or BlobForbiddenError after deleting the
        record when it no longer describes a servable blob.
        """
        ref = record if isinstance(record, BlobRef) else BlobRef.of(record)

        if not ref.stored_path.strip():
            logger.warning("File record %s has no stored path, removing it", ref.id)
            await self._discard(ref.id)
            raise BlobNotFoundError("File not found")

        try:
            path = self.storage.resolve(ref.stored_path)
        except PathTraversalError:
            logger.warning(
                "Security violation: file record %s points outside the upload directory, removing it",
                ref.id,
            )
            await self._discard(ref.id)
            raise BlobForbiddenError("Access denied")

        check = await self.storage.check(path)
        if check.status is BlobStatus.MISSING:
            logger.warning("Removing orphaned file record %s (%s): blob is missing", ref.id, ref.filename)
            await self._discard(ref.id)
            raise BlobNotFoundError("File not found")
        if check.status is BlobStatus.WRONG_TYPE:
            logger.warning("Removing file record %s: %s is not a regular file", ref.id, ref.stored_path)
            await self._discard(ref.id)
            raise BlobNotFoundError("File not found")

        return ResolvedBlob(
            record_id=ref.id,
            path=path,
            size=check.size,
            display_name=ref.display_name or ref.filename or path.name,
        )

    async def resolve_for_download(self, record_id: uuid.UUID) -> ResolvedBlob:
        record = await self.store.find_by_id(record_id)
        if record is None:
            raise BlobNotFoundError("File not found")
        if record.kind is FileKind.LINK:
            raise NotABlobError("Cannot download URL type files directly")
        return await self.resolve_record(record)

    async def list_blobs(self) -> list[tuple[FileRecord, int]]:
        """Every blob record that can be served right now, with its live size.

        Records failing reconciliation have already deleted themselves and are
        simply left out.
        """
        records = await self.store.find(FileKind.BLOB)
        refs = [(record, BlobRef.of(record)) for record in records]
        failures_before = self._discard_failures

        surviving = []
        for record, ref in refs:
            try:
                resolved = await self.resolve_record(ref)
            except (BlobNotFoundError, BlobForbiddenError):
                continue
            except OSError as e:
                logger.error("Could not stat blob for record %s: %s", ref.id, e)
                continue
            surviving.append((record, ref.id, resolved.size))

        if self._discard_failures != failures_before:
            reloaded = await self.store.find_by_ids([record_id for _, record_id, _ in surviving])
            return [(reloaded[rid], size) for _, rid, size in surviving if rid in reloaded]

        logger.debug("Listing %d of %d blob records", len(surviving), len(refs))
        return [(record, size) for record, _, size in surviving]

    async def sweep_directory_orphans(self) -> int:
        """Delete entries in the managed directory that no record references.

        Regular files and symlinks are removed as entries; a symlink is
        unlinked itself, never its target. Subdirectories are left alone.
        """
        entries = await self.storage.list_entries()
        if not entries:
            return 0

        # Entry names as stored, never symlink targets
        expected: set[str] = set()
        for record in await self.store.find(FileKind.BLOB):
            if not record.stored_path:
                continue
            try:
                expected.add(self.storage.entry_name(record.stored_path))
            except PathTraversalError:
                continue

        deleted = 0
        for name in entries:
            if name in expected:
                continue
            try:
                path = self.storage.entry_path(name)
                check = await self.storage.check(path, follow_symlinks=False)
                if check.status not in (BlobStatus.PRESENT, BlobStatus.SYMLINK):
                    logger.debug("Skipping non-file entry %s in upload directory", name)
                    continue
                if await self.storage.delete(path):
                    logger.info("Deleted orphaned file: %s", name)
                    deleted += 1
            except (OSError, PathTraversalError) as e:
                logger.error("Error deleting orphaned file %s: %s", name, e)

        logger.info("Orphaned file sweep completed, deleted %d file(s)", deleted)
        return deleted

    async def sweep_record_orphans(self) -> RecordSweepReport:
        """Delete blob records whose file is not present on disk.

        Every record is evaluated; failed deletions are collected in the
        report instead of being raised.
        """
        report = RecordSweepReport()
        refs = [BlobRef.of(record) for record in await self.store.find(FileKind.BLOB)]
        for ref in refs:
            try:
                check = await self.storage.check(self.storage.resolve(ref.stored_path))
                orphaned = check.status is not BlobStatus.PRESENT
            except PathTraversalError:
                orphaned = True
            except OSError as e:
                logger.error("Could not stat blob for record %s: %s", ref.id, e)
                report.errors.append(f"Failed to check {ref.filename}: {e}")
                continue
            if not orphaned:
                continue

            logger.warning("Removing orphaned file record: %s (%s)", ref.filename, ref.id)
            try:
                await self.store.delete_by_id(ref.id)
            except Exception as e:
                logger.error("Error deleting orphaned file record %s: %s", ref.id, e)
                await self.store.db.rollback()
                report.errors.append(f"Failed to delete {ref.filename}: {e}")
                continue
            report.removed_count += 1

        logger.info(
            "Orphaned record sweep completed, removed %d record(s), %d error(s)",
            report.removed_count, len(report.errors),
        )
        return report

    async def _discard(self, record_id: uuid.UUID) -> None:
        try:
            await self.store.delete_by_id(record_id)
        except Exception:
            logger.exception("Error deleting invalid file record %s", record_id)
            self._discard_failures += 1
            await self.store.db.rollback()
