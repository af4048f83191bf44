"""Files API routes."""
import logging
from typing import Optional
from urllib.parse import urlparse
from uuid import UUID

from fastapi import APIRouter, Depends, File as FastAPIFile, Form, HTTPException, UploadFile
from pydantic import ValidationError

from fileshare.config import settings
from fileshare.dependencies import get_file_storage, get_reconciler, get_store, require_admin
from fileshare.exceptions import (
    BlobForbiddenError,
    BlobNotFoundError,
    NotABlobError,
    PathTraversalError,
    UploadIngestionError,
    UploadTooLargeError,
)
from fileshare.models.category import Category
from fileshare.models.file_record import (
    DISPLAY_NAME_MAX_LENGTH,
    FILENAME_MAX_LENGTH,
    FileKind,
    FileRecord,
)
from fileshare.schemas.common import DeleteResponse, FileSweepResponse, RecordSweepResponse
from fileshare.schemas.file import (
    CategoryAssign,
    DownloadCountResponse,
    FileMetadata,
    FileRecordResponse,
)
from fileshare.services.file_storage import BlobStatus, FileStorageService
from fileshare.services.file_store import FileRecordStore
from fileshare.services.reconciler import BlobReconciler, ResolvedBlob
from fileshare.services.streaming import BlobStreamingResponse, open_blob_stream

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/files", tags=["files"])


@router.get("", response_model=list[FileRecordResponse])
async def list_files(reconciler: BlobReconciler = Depends(get_reconciler)):
    """Public listing of uploaded blobs, newest first.

    Records whose blob cannot be served are removed on the way and never
    returned. Sizes come from the filesystem, not from the stored value.
    """
    blobs = await reconciler.list_blobs()
    return [_to_response(record, size=size) for record, size in blobs]


@router.get("/download/{file_id}")
async def download_file(
    file_id: UUID,
    reconciler: BlobReconciler = Depends(get_reconciler),
):
    """Stream a blob by record ID."""
    try:
        resolved = await reconciler.resolve_for_download(file_id)
        stream = await open_blob_stream(resolved)
    except BlobNotFoundError:
        raise HTTPException(status_code=404, detail="File not found")
    except BlobForbiddenError:
        raise HTTPException(status_code=403, detail="Access denied")
    except NotABlobError:
        raise HTTPException(
            status_code=400,
            detail="Cannot download URL type files directly. Use the frontend interface.",
        )

    logger.info("Starting file stream for %s (%d bytes)", resolved.display_name, resolved.size)
    return BlobStreamingResponse(stream, resolved)


@router.get("/download-direct/{filename:path}")
async def download_direct(
    filename: str,
    storage: FileStorageService = Depends(get_file_storage),
):
    """Stream a blob by its on-disk name."""
    try:
        # Already percent-decoded by the router
        path = storage.resolve(filename, decode=False)
    except PathTraversalError:
        logger.warning("Rejected direct download outside the upload directory")
        raise HTTPException(status_code=403, detail="Access denied")

    check = await storage.check(path)
    if check.status is not BlobStatus.PRESENT:
        raise HTTPException(status_code=404, detail="File not found")

    resolved = ResolvedBlob(record_id=None, path=path, size=check.size, display_name=path.name)
    try:
        stream = await open_blob_stream(resolved)
    except BlobNotFoundError:
        raise HTTPException(status_code=404, detail="File not found")
    return BlobStreamingResponse(stream, resolved)


@router.post(
    "/upload",
    response_model=FileRecordResponse,
    status_code=201,
    dependencies=[Depends(require_admin)],
)
async def upload_file(
    file: Optional[UploadFile] = FastAPIFile(None),
    url: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    category_id: Optional[str] = Form(None, alias="categoryId"),
    metadata: Optional[str] = Form(None),
    store: FileRecordStore = Depends(get_store),
    storage: FileStorageService = Depends(get_file_storage),
):
    """Upload a file, or register an external link when ``url`` is given."""
    meta = _parse_metadata(metadata)
    category_uuid = await _resolve_category(store, category_id)
    description = (description or "").strip()[: settings.DESCRIPTION_MAX_LENGTH]

    if url is not None:
        return await _create_link(store, url, description, category_uuid, meta)

    if file is None:
        raise HTTPException(status_code=400, detail="No file uploaded - file was not received by server")

    try:
        stored = await storage.save_upload(file)
    except UploadTooLargeError as e:
        raise HTTPException(status_code=413, detail=str(e))
    except UploadIngestionError as e:
        raise HTTPException(status_code=500, detail=str(e))

    record = FileRecord(
        kind=FileKind.BLOB,
        filename=stored.stored_path,
        display_name=stored.display_name,
        stored_path=stored.stored_path,
        size_bytes=stored.declared_size,
        description=description,
        category_id=category_uuid,
        meta=meta.model_dump(),
    )
    try:
        record = await store.create(record)
    except Exception:
        logger.exception("Saving file record for %s failed, removing blob", stored.stored_path)
        await store.db.rollback()
        await storage.delete(storage.resolve(stored.stored_path))
        raise

    logger.info("File saved to database successfully: %s", record.id)
    return _to_response(record)


@router.delete("/{file_id}", response_model=DeleteResponse, dependencies=[Depends(require_admin)])
async def delete_file(
    file_id: UUID,
    store: FileRecordStore = Depends(get_store),
    storage: FileStorageService = Depends(get_file_storage),
):
    """Delete a file record and its blob."""
    record = await store.find_by_id(file_id)
    if not record:
        raise HTTPException(status_code=404, detail="File not found")

    if record.kind is FileKind.BLOB and record.stored_path:
        try:
            removed = await storage.delete(storage.resolve(record.stored_path))
            if not removed:
                logger.warning("File not found on disk, skipping unlink: %s", record.stored_path)
        except PathTraversalError:
            logger.warning("Refusing to unlink blob outside the upload directory for record %s", file_id)
        except OSError as e:
            logger.warning("Could not unlink %s, leaving it to the orphan sweep: %s", record.stored_path, e)

    await store.delete_by_id(file_id)
    return {"deleted": True, "id": str(file_id), "message": "File deleted successfully"}


@router.put(
    "/{file_id}/category",
    response_model=FileRecordResponse,
    dependencies=[Depends(require_admin)],
)
async def assign_category(
    file_id: UUID,
    body: CategoryAssign,
    store: FileRecordStore = Depends(get_store),
):
    """Move a file into a category and refresh category file counts."""
    if not body.category_id:
        raise HTTPException(status_code=400, detail="Category ID is required")
    category_uuid = _parse_uuid(body.category_id, "Invalid category ID")

    category = await store.db.get(Category, category_uuid)
    if not category:
        raise HTTPException(status_code=404, detail="Category not found")

    record = await store.set_category(file_id, category)
    if not record:
        raise HTTPException(status_code=404, detail="File not found")
    return _to_response(record)


@router.get(
    "/category/{category_id}",
    response_model=list[FileRecordResponse],
    dependencies=[Depends(require_admin)],
)
async def list_files_by_category(
    category_id: str,
    store: FileRecordStore = Depends(get_store),
):
    """All records (files and links) in a category."""
    category_uuid = _parse_uuid(category_id, "Invalid category ID")
    return [_to_response(r) for r in await store.find_by_category(category_uuid)]


@router.put("/{file_id}/download", response_model=DownloadCountResponse)
async def increment_download_count(
    file_id: UUID,
    store: FileRecordStore = Depends(get_store),
):
    """Count one download of a file or link."""
    count = await store.increment_download_count(file_id)
    if count is None:
        raise HTTPException(status_code=404, detail="File not found")
    logger.debug("Download count for %s is now %d", file_id, count)
    return {"download_count": count}


@router.post(
    "/cleanup-orphaned",
    response_model=RecordSweepResponse,
    response_model_exclude_none=True,
    dependencies=[Depends(require_admin)],
)
async def cleanup_orphaned_records(reconciler: BlobReconciler = Depends(get_reconciler)):
    """Remove records whose blob is gone from disk."""
    report = await reconciler.sweep_record_orphans()
    return {
        "message": f"Cleanup completed. Removed {report.removed_count} orphaned file records.",
        "cleaned_count": report.removed_count,
        "errors": report.errors or None,
    }


@router.post(
    "/cleanup-orphaned-files",
    response_model=FileSweepResponse,
    dependencies=[Depends(require_admin)],
)
async def cleanup_orphaned_files(reconciler: BlobReconciler = Depends(get_reconciler)):
    """Remove files in the upload directory that no record references."""
    deleted = await reconciler.sweep_directory_orphans()
    return {
        "message": f"Cleanup completed. Deleted {deleted} orphaned files.",
        "deleted_count": deleted,
    }


def _parse_uuid(value: str, error: str) -> UUID:
    try:
        return UUID(value)
    except (TypeError, ValueError):
        raise HTTPException(status_code=400, detail=error)


def _parse_metadata(raw: Optional[str]) -> FileMetadata:
    if not raw or not raw.strip():
        return FileMetadata()
    try:
        return FileMetadata.model_validate_json(raw)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=f"Invalid metadata: {e.errors(include_url=False)}")


async def _resolve_category(store: FileRecordStore, raw: Optional[str]) -> Optional[UUID]:
    if not raw:
        return None
    category_uuid = _parse_uuid(raw, "Invalid category ID")
    if not await store.db.get(Category, category_uuid):
        raise HTTPException(status_code=400, detail="Category not found")
    return category_uuid


async def _create_link(
    store: FileRecordStore,
    url: str,
    description: str,
    category_id: Optional[UUID],
    meta: FileMetadata,
) -> dict:
    url = url.strip()
    if not url:
        raise HTTPException(status_code=400, detail="URL is required for URL uploads")
    # Links keep the URL as their display name
    if len(url) > DISPLAY_NAME_MAX_LENGTH:
        raise HTTPException(
            status_code=400,
            detail=f"URL must be at most {DISPLAY_NAME_MAX_LENGTH} characters",
        )
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise HTTPException(status_code=400, detail="Invalid URL format")

    filename = parsed.path.rstrip("/").split("/")[-1] or parsed.hostname or "url-file"
    filename = filename[:FILENAME_MAX_LENGTH]
    record = await store.create(FileRecord(
        kind=FileKind.LINK,
        filename=filename,
        display_name=url,
        stored_path="",
        url=url,
        size_bytes=0,
        description=description,
        category_id=category_id,
        meta=meta.model_dump(),
    ))
    logger.info("Link saved to database: %s", record.id)
    return _to_response(record)


def _to_response(record: FileRecord, size: Optional[int] = None) -> dict:
    """Convert SQLAlchemy model to response dict."""
    category = record.category
    return {
        "id": record.id,
        "type": record.kind.value,
        "filename": record.filename,
        "display_name": record.display_name,
        "url": record.url,
        "size": record.size_bytes if size is None else size,
        "description": record.description or "",
        "category_id": record.category_id,
        "category": (
            {"id": category.id, "name": category.name, "description": category.description}
            if category is not None else None
        ),
        "download_count": record.download_count,
        "metadata": record.meta or {},
        "uploaded_at": record.created_at,
    }
