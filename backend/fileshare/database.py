"""Async SQLAlchemy engine and session factory.

Routes get a session through ``get_db``; the repository in
``services/file_store.py`` wraps it:

    @router.get("/api/files")
    async def list_files(store: FileRecordStore = Depends(get_store)):
        ...

Background work (the orphan sweeper) opens its own sessions from
``async_session``.
"""
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from fileshare.config import settings

engine_options = {"echo": False, "pool_pre_ping": True}
# SQLite (tests, single-box installs) uses a pool without size limits
if not settings.DATABASE_URL.startswith("sqlite"):
    engine_options.update(pool_size=10, max_overflow=20)

engine = create_async_engine(settings.DATABASE_URL, **engine_options)

async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def create_tables(bind: AsyncEngine = engine) -> None:
    """Create the files and categories tables if they do not exist yet."""
    from fileshare.models import Base

    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def get_db():
    """FastAPI dependency that yields an async DB session."""
    async with async_session() as session:
        yield session
