"""FastAPI dependencies shared by the routers."""
import logging
from secrets import compare_digest
from typing import Optional

from fastapi import Depends, Header, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from fileshare.config import settings
from fileshare.database import get_db
from fileshare.services.file_storage import FileStorageService, file_storage
from fileshare.services.file_store import FileRecordStore
from fileshare.services.reconciler import BlobReconciler

logger = logging.getLogger(__name__)


def get_file_storage() -> FileStorageService:
    return file_storage


def get_store(db: AsyncSession = Depends(get_db)) -> FileRecordStore:
    return FileRecordStore(db)


def get_reconciler(
    store: FileRecordStore = Depends(get_store),
    storage: FileStorageService = Depends(get_file_storage),
) -> BlobReconciler:
    return BlobReconciler(store, storage)


def require_admin(x_admin_key: Optional[str] = Header(default=None)) -> None:
    """Gate admin routes behind ADMIN_API_KEY. Open when no key is configured."""
    expected = settings.ADMIN_API_KEY
    if not expected:
        return
    if not x_admin_key or not compare_digest(x_admin_key, expected):
        logger.warning("Rejected admin request with missing or invalid key")
        raise HTTPException(status_code=401, detail="Not authorized")
