"""File storage for the managed upload directory.

All paths handed out by this module have passed the path guard. Nothing here
touches the database; record bookkeeping lives in the reconciler.
"""
import enum
import logging
import os
import re
import secrets
import stat as stat_mode
import time
from dataclasses import dataclass
from pathlib import Path

import aiofiles
import aiofiles.os
from fastapi import UploadFile

from fileshare.config import settings
from fileshare.exceptions import PathTraversalError, UploadIngestionError, UploadTooLargeError
from fileshare.services.path_guard import managed_entry_name, resolve_managed_path

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9.-]")


class BlobStatus(str, enum.Enum):
    PRESENT = "present"
    MISSING = "missing"
    WRONG_TYPE = "wrong_type"
    SYMLINK = "symlink"


@dataclass(frozen=True)
class BlobCheck:
    status: BlobStatus
    size: int | None = None


@dataclass(frozen=True)
class StoredUpload:
    """A blob fully written to the managed directory, not yet recorded."""
    stored_path: str
    declared_size: int
    display_name: str


def sanitize_filename(name: str) -> str:
    """Replace everything outside [A-Za-z0-9.-] with underscores."""
    cleaned = _UNSAFE_CHARS.sub("_", os.path.basename(name.replace("\\", "/")))
    return cleaned or "unnamed"


def generate_stored_name(original_name: str) -> str:
    """Timestamp-prefixed sanitized name with a short random token."""
    millis = int(time.time() * 1000)
    return f"{millis}-{secrets.token_hex(4)}-{sanitize_filename(original_name)}"


class FileStorageService:
    """Handles blob read/write/delete inside one managed directory."""

    def __init__(
        self,
        base_path: str | os.PathLike | None = None,
        max_file_size: int | None = None,
        chunk_size: int | None = None,
    ):
        self.base_path = Path(base_path if base_path is not None else settings.UPLOADS_DIR).resolve()
        self.base_path.mkdir(parents=True, exist_ok=True)
        self.max_file_size = max_file_size if max_file_size is not None else settings.MAX_FILE_SIZE
        self.chunk_size = chunk_size or settings.CHUNK_SIZE

    def resolve(self, raw_path: str, decode: bool = True) -> Path:
        """Absolute path for ``raw_path`` inside the managed directory.

        Raises PathTraversalError.
        """
        return resolve_managed_path(self.base_path, raw_path, decode)

    def entry_name(self, raw_path: str) -> str:
        """Name of the directory entry ``raw_path`` refers to, without following symlinks.

        Raises PathTraversalError.
        """
        return managed_entry_name(self.base_path, raw_path)

    def entry_path(self, name: str) -> Path:
        """The entry ``name`` directly inside the managed directory, itself.

        Unlike ``resolve`` this never follows a symlink, so deleting the
        returned path removes the link and not its target.
        """
        if not name or name in (".", "..") or os.sep in name or "\x00" in name:
            raise PathTraversalError("not a directory entry name")
        return self.base_path / name

    async def check(self, path: Path, follow_symlinks: bool = True) -> BlobCheck:
        """Single stat classifying ``path`` as present, missing or wrong type.

        With ``follow_symlinks=False`` a symlink is reported as SYMLINK
        instead of being classified by its target.
        """
        try:
            st = await aiofiles.os.stat(path, follow_symlinks=follow_symlinks)
        except (FileNotFoundError, NotADirectoryError):
            return BlobCheck(BlobStatus.MISSING)
        if stat_mode.S_ISLNK(st.st_mode):
            return BlobCheck(BlobStatus.SYMLINK)
        if not stat_mode.S_ISREG(st.st_mode):
            return BlobCheck(BlobStatus.WRONG_TYPE)
        return BlobCheck(BlobStatus.PRESENT, st.st_size)

    async def save_upload(self, upload: UploadFile) -> StoredUpload:
        """Stream an uploaded file into the managed directory.

        The caller creates the metadata record only after this returns, and
        must call ``delete`` on the returned path if that fails.
        """
        display_name = upload.filename or "unnamed"
        stored_name = generate_stored_name(display_name)
        target = self.resolve(stored_name)

        received = 0
        try:
            async with aiofiles.open(target, "xb") as f:
                while True:
                    chunk = await upload.read(self.chunk_size)
                    if not chunk:
                        break
                    received += len(chunk)
                    if received > self.max_file_size:
                        raise UploadTooLargeError(
                            f"File exceeds maximum size of {self.max_file_size} bytes"
                        )
                    await f.write(chunk)
                await f.flush()
        except UploadTooLargeError:
            await self.delete(target)
            raise
        except OSError as e:
            logger.error("Writing upload %s failed: %s", stored_name, e)
            await self.delete(target)
            raise UploadIngestionError("File upload failed - unable to write uploaded file") from e

        try:
            st = await aiofiles.os.stat(target)
        except OSError as e:
            logger.error("Stat of freshly written upload %s failed: %s", stored_name, e)
            await self.delete(target)
            raise UploadIngestionError("File upload failed - unable to access uploaded file") from e

        reported = getattr(upload, "size", None)
        expected = reported if reported is not None else received
        if abs(st.st_size - expected) > settings.SIZE_MISMATCH_TOLERANCE:
            logger.warning(
                "File size mismatch for %s: expected=%d actual=%d",
                stored_name, expected, st.st_size,
            )

        logger.info("Stored upload %s (%d bytes) as %s", display_name, st.st_size, stored_name)
        return StoredUpload(
            stored_path=stored_name,
            declared_size=st.st_size,
            display_name=display_name,
        )

    async def delete(self, path: Path) -> bool:
        """Unlink a blob. Returns False when it was already gone."""
        try:
            await aiofiles.os.remove(path)
        except FileNotFoundError:
            return False
        return True

    async def list_entries(self) -> list[str]:
        """Names of all entries directly inside the managed directory."""
        try:
            return await aiofiles.os.listdir(self.base_path)
        except FileNotFoundError:
            return []


file_storage = FileStorageService()
