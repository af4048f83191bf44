"""Shared pytest fixtures for fileshare tests."""

from __future__ import annotations

import os
import tempfile
from collections.abc import AsyncGenerator, Awaitable, Callable
from pathlib import Path
from typing import Any

# Settings and the module-level storage/engine are built at import time, so
# point them at throwaway locations before anything from fileshare is imported.
_SCRATCH = Path(tempfile.mkdtemp(prefix="fileshare-tests-"))
os.environ["UPLOADS_DIR"] = str(_SCRATCH / "uploads")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_SCRATCH / 'app.db'}"
os.environ["RATE_LIMIT_MAX_REQUESTS"] = "100000"
os.environ["ORPHAN_SWEEP_INTERVAL_SECONDS"] = "0"
os.environ["ADMIN_API_KEY"] = ""

import pytest  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import (  # noqa: E402
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from fileshare.database import create_tables, get_db  # noqa: E402
from fileshare.dependencies import get_file_storage  # noqa: E402
from fileshare.main import app  # noqa: E402
from fileshare.models import Category, FileKind, FileRecord  # noqa: E402
from fileshare.services.file_storage import FileStorageService  # noqa: E402
from fileshare.services.file_store import FileRecordStore  # noqa: E402
from fileshare.services.reconciler import BlobReconciler  # noqa: E402


@pytest.fixture
def upload_dir(tmp_path: Path) -> Path:
    path = tmp_path / "uploads"
    path.mkdir()
    return path


@pytest.fixture
async def test_engine(tmp_path: Path) -> AsyncGenerator[AsyncEngine, None]:
    """File-backed SQLite database with all tables created."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", echo=False)
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def storage(upload_dir: Path) -> FileStorageService:
    # Small chunks so streaming and upload paths loop more than once
    return FileStorageService(upload_dir, max_file_size=64 * 1024, chunk_size=7)


@pytest.fixture
def store(db_session: AsyncSession) -> FileRecordStore:
    return FileRecordStore(db_session)


@pytest.fixture
def reconciler(store: FileRecordStore, storage: FileStorageService) -> BlobReconciler:
    return BlobReconciler(store, storage)


WriteBlob = Callable[..., Path]
MakeRecord = Callable[..., Awaitable[FileRecord]]


@pytest.fixture
def write_blob(upload_dir: Path) -> WriteBlob:
    """Write bytes directly into the managed directory."""

    def _write(name: str, content: bytes = b"hello") -> Path:
        path = upload_dir / name
        path.write_bytes(content)
        return path

    return _write


@pytest.fixture
def make_record(store: FileRecordStore) -> MakeRecord:
    """Factory for persisted FileRecord rows (no blob is written)."""

    async def _make(
        *,
        stored_path: str = "abc.bin",
        kind: FileKind = FileKind.BLOB,
        display_name: str | None = None,
        size_bytes: int = 5,
        url: str | None = None,
        category_id: Any = None,
    ) -> FileRecord:
        return await store.create(
            FileRecord(
                kind=kind,
                filename=stored_path if kind is FileKind.BLOB else "link",
                display_name=display_name or stored_path or "link",
                stored_path=stored_path,
                url=url,
                size_bytes=size_bytes,
                category_id=category_id,
                meta={},
            )
        )

    return _make


@pytest.fixture
def make_category(db_session: AsyncSession) -> Callable[..., Awaitable[Category]]:
    async def _make(name: str = "Tools", description: str = "") -> Category:
        category = Category(name=name, description=description)
        db_session.add(category)
        await db_session.commit()
        await db_session.refresh(category)
        return category

    return _make


@pytest.fixture
async def client(
    session_factory: async_sessionmaker[AsyncSession],
    storage: FileStorageService,
) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client against the app, wired to the test database and upload dir."""

    async def _get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_file_storage] = lambda: storage
    try:
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as http:
            yield http
    finally:
        app.dependency_overrides.clear()
