import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from src.adapters.sqlite.blobstore import SQLiteBlobStore
from src.adapters.sqlite.migrator import SQLiteMigrator
from src.api.deps import get_settings
from src.domain.errors import MangaError, StorageError
from src.rules.loader import load_rules

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler for startup/shutdown."""
    logging.basicConfig(
        level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )
    settings = get_settings()

    # Load rules and validate on startup (fail-fast)
    try:
        rules = load_rules(settings.rules_path)
    except Exception:
        logger.critical("Rules load failed from %s", settings.rules_path, exc_info=True)
        raise
    logger.info("Rules loaded from %s", settings.rules_path)

    applied = SQLiteMigrator(
        settings.db_path,
        str(settings.migrations_dir),
        timeout=rules.storage.busy_timeout_seconds,
    ).run_migrations()
    if applied:
        logger.info("Applied migrations: %s", ", ".join(applied))

    # The one blob store handle for the process; routes get it via get_blob_store
    app.state.blob_store = SQLiteBlobStore(
        settings.db_path,
        chunk_size=rules.uploads.chunk_size_bytes,
        timeout=rules.storage.busy_timeout_seconds,
    )

    yield
    app.state.blob_store = None


app = FastAPI(
    title="Manga Moderation API",
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)


# --- Error mapping ---


@app.exception_handler(MangaError)
async def manga_error_handler(request: Request, exc: MangaError) -> JSONResponse:
    if isinstance(exc, StorageError):
        logger.error("Storage failure on %s %s: %s", request.method, request.url.path, exc.message)
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.public_message})

    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
    return JSONResponse(
        status_code=exc.status_code, content={"detail": exc.message}, headers=headers
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(p) for p in first.get("loc", ())[1:]) or "request"
    return JSONResponse(
        status_code=400,
        content={"detail": f"Invalid {field}: {first.get('msg', 'malformed input')}"},
    )


@app.exception_handler(Exception)
async def unknown_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


# --- Routers ---
from src.api.routes import auth, manga  # noqa: E402

app.include_router(auth.router, prefix="/api/auth", tags=["Auth"])
app.include_router(manga.router, prefix="/api/manga", tags=["Manga"])


# CORS (Allow Frontend)
origins = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health")
def health_check() -> dict[str, Any]:
    """Health check endpoint."""
    return {"status": "ok", "service": "api"}
