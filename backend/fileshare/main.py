"""FastAPI application entry point."""
import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from fileshare import __version__
from fileshare.config import settings
from fileshare.database import async_session, create_tables, engine, get_db
from fileshare.logging_config import configure_logging
from fileshare.services.file_storage import file_storage
from fileshare.services.rate_limit import InMemoryRateLimitStore, RateLimitMiddleware
from fileshare.services.sweeper import OrphanSweeper

logger = logging.getLogger(__name__)

STARTED_AT = time.monotonic()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables on startup, run the orphan sweeper while serving."""
    configure_logging()
    await create_tables()
    logger.info("Serving uploads from %s", file_storage.base_path)

    sweeper = OrphanSweeper(async_session, file_storage, settings.ORPHAN_SWEEP_INTERVAL_SECONDS)
    app.state.sweeper = sweeper
    sweeper.start()

    yield

    await sweeper.stop()
    await engine.dispose()


app = FastAPI(
    title="File Share API",
    version=__version__,
    description="Upload, list and download shared files and links.",
    lifespan=lifespan,
)

app.add_middleware(
    RateLimitMiddleware,
    store=InMemoryRateLimitStore(),
    window_seconds=settings.RATE_LIMIT_WINDOW_SECONDS,
    max_requests=settings.RATE_LIMIT_MAX_REQUESTS,
)

# CORS
origins = [o.strip() for o in settings.CORS_ORIGINS.split(",")]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-Admin-Key"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    duration_ms = (time.perf_counter() - start) * 1000
    logger.info("%s %s %d - %.0fms", request.method, request.url.path, response.status_code, duration_ms)
    return response


@app.get("/health")
async def health_check():
    """Verify API and database connectivity."""
    payload = {
        "status": "OK",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "uptime": round(time.monotonic() - STARTED_AT, 3),
        "version": __version__,
    }
    try:
        async for db in get_db():
            await db.execute(text("SELECT 1"))
            payload["database"] = "connected"
    except Exception as e:
        logger.error("Health check database error: %s", e)
        payload["status"] = "error"
        payload["database"] = str(e)
    return payload


# Register routers
from fileshare.routes.files import router as files_router
from fileshare.routes.categories import router as categories_router
app.include_router(files_router)
app.include_router(categories_router)
