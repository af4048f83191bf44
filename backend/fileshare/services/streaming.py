"""Streamed blob transfer."""
import logging
from urllib.parse import quote

import aiofiles
from fastapi.responses import StreamingResponse

from fileshare.config import settings
from fileshare.exceptions import BlobNotFoundError, StreamFailure
from fileshare.services.reconciler import ResolvedBlob

logger = logging.getLogger(__name__)


class BlobStream:
    """One-shot async iterator over an already opened blob.

    Yields at most ``size`` bytes and fails with StreamFailure if the file
    ends early. The handle is released on completion, on a read error, and
    through ``aclose`` when the consumer stops early.
    """

    def __init__(self, handle, resolved: ResolvedBlob, chunk_size: int):
        self._handle = handle
        self._resolved = resolved
        self._chunk_size = chunk_size
        self._iterator = None

    @property
    def closed(self) -> bool:
        return self._handle is None

    def __aiter__(self):
        if self._iterator is not None:
            raise StreamFailure("stream already consumed")
        self._iterator = self._generate()
        return self._iterator

    async def _generate(self):
        remaining = self._resolved.size
        try:
            while remaining > 0:
                try:
                    chunk = await self._handle.read(min(self._chunk_size, remaining))
                except OSError as e:
                    logger.error("Stream error for %s: %s", self._resolved.display_name, e)
                    raise StreamFailure(f"read error: {e}") from e
                if not chunk:
                    logger.error(
                        "Blob %s ended %d bytes early, terminating stream",
                        self._resolved.display_name, remaining,
                    )
                    raise StreamFailure("blob truncated during transfer")
                remaining -= len(chunk)
                yield chunk
            logger.info("File stream ended successfully for: %s", self._resolved.display_name)
        finally:
            if remaining > 0:
                logger.info("Stream for %s stopped with %d bytes unsent", self._resolved.display_name, remaining)
            await self._release()

    async def aclose(self) -> None:
        if self._iterator is not None:
            await self._iterator.aclose()
        await self._release()

    async def _release(self) -> None:
        handle, self._handle = self._handle, None
        if handle is not None:
            await handle.close()


class BlobStreamingResponse(StreamingResponse):
    """StreamingResponse that always releases its blob handle, even on disconnect."""

    def __init__(self, stream: BlobStream, resolved: ResolvedBlob):
        super().__init__(
            stream,
            media_type="application/octet-stream",
            headers={
                "Content-Length": str(resolved.size),
                "Content-Disposition": content_disposition(resolved.display_name),
            },
        )
        self.blob_stream = stream

    async def __call__(self, scope, receive, send) -> None:
        try:
            await super().__call__(scope, receive, send)
        finally:
            await self.blob_stream.aclose()


async def open_blob_stream(resolved: ResolvedBlob, chunk_size: int | None = None) -> BlobStream:
    """Open the blob before any header is sent.

    A blob removed since resolution is reported as BlobNotFoundError rather
    than as a broken stream.
    """
    try:
        handle = await aiofiles.open(resolved.path, "rb")
    except (FileNotFoundError, NotADirectoryError, IsADirectoryError) as e:
        raise BlobNotFoundError("File not found") from e
    return BlobStream(handle, resolved, chunk_size or settings.CHUNK_SIZE)


def content_disposition(display_name: str) -> str:
    encoded = quote(display_name, safe="")
    return f"attachment; filename=\"{encoded}\"; filename*=UTF-8''{encoded}"
