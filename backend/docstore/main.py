"""FastAPI application entry point."""
import logging
from contextlib import asynccontextmanager
from http import HTTPStatus
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from starlette.exceptions import HTTPException as StarletteHTTPException

from docstore import __version__
from docstore.config import Settings, settings as default_settings
from docstore.database import create_engine, create_session_factory, init_models
from docstore.routes.documents import router as documents_router
from docstore.routes.ui import router as ui_router
from docstore.schemas.common import ErrorResponse
from docstore.services.document_service import DocumentServiceError
from docstore.services.file_storage import FileStorageService
from docstore.services.locks import KeyedLock

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open the store and upload directory on startup, dispose on shutdown."""
    settings: Settings = app.state.settings

    engine = create_engine(settings)
    await init_models(engine)
    app.state.engine = engine
    app.state.session_factory = create_session_factory(engine)

    storage = FileStorageService(settings.UPLOAD_DIR, io_timeout=settings.IO_TIMEOUT_SECONDS)
    storage.ensure_directory()
    app.state.storage = storage
    app.state.locks = KeyedLock()
    logger.info("Document store ready (uploads in %s)", storage.base_path)

    yield

    await engine.dispose()
    logger.info("Database connection closed")


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(message=message).model_dump(),
    )


async def document_error_handler(request: Request, exc: DocumentServiceError):
    return _error(exc.status_code, exc.message)


async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return _error(exc.status_code, str(exc.detail))


async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    # A `file` form part that is not an upload counts as no file at all.
    if any(tuple(err.get("loc", ()))[:2] == ("body", "file") for err in errors):
        return _error(HTTPStatus.BAD_REQUEST, "No file uploaded")
    message = errors[0].get("msg", "Invalid request") if errors else "Invalid request"
    return _error(HTTPStatus.UNPROCESSABLE_ENTITY, message)


async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return _error(HTTPStatus.INTERNAL_SERVER_ERROR, "Internal server error")


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or default_settings

    app = FastAPI(
        title="Document Store API",
        version=__version__,
        description="Upload, list, download and delete PDF documents.",
        lifespan=lifespan,
    )
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origin_list,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(DocumentServiceError, document_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    @app.get("/api/health")
    async def health_check(request: Request):
        """Verify API and database connectivity."""
        try:
            async with request.app.state.session_factory() as db:
                await db.execute(text("SELECT 1"))
            return {"status": "ok", "database": "connected"}
        except Exception as e:
            logger.warning("Health check failed: %s", e)
            return {"status": "error", "database": str(e)}

    app.include_router(documents_router)
    app.include_router(ui_router)
    return app


app = create_app()
