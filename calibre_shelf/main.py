"""
Calibre shelf backend: login (password or OAuth), paginated catalog over a
Calibre library, cover and book file delivery, admin approval of accounts.

create_app() builds the engines and services once and stores them on
app.state; routers reach them through dependencies. Load .env in development
only (production uses env vars directly).
"""
import logging
import os
import time
from contextlib import asynccontextmanager
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from calibre_shelf.admin import router as admin_router
from calibre_shelf.auth import router as auth_router
from calibre_shelf.books import router as books_router
from calibre_shelf.config import Settings, load_settings
from calibre_shelf.database import (
    create_app_engine,
    create_library_engine,
    create_session_factory,
    init_app_store,
)
from calibre_shelf.services.auth_service import AuthService
from calibre_shelf.services.catalog_service import CatalogService
from calibre_shelf.services.errors import StorageError
from calibre_shelf.services.user_service import UserService

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


def create_app(settings: Settings | None = None) -> FastAPI:
    if settings is None:
        settings = load_settings()

    if settings.uses_default_secret:
        logger.warning("JWT_SECRET is not set; using the built-in default. Do not run like this in production.")

    app_engine = create_app_engine(settings.app_database_url)
    init_app_store(app_engine)
    session_factory = create_session_factory(app_engine)
    catalog_service = CatalogService(
        create_library_engine(settings.calibre_db_path),
        settings.calibre_library_path,
    )
    user_service = UserService(session_factory, bcrypt_rounds=settings.bcrypt_rounds)
    auth_service = AuthService(
        session_factory,
        settings.jwt_secret,
        bcrypt_rounds=settings.bcrypt_rounds,
    )

    if settings.admin_email:
        user_service.ensure_admin(
            settings.admin_email,
            settings.admin_username,
            settings.admin_password,
        )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        catalog_service.close()
        app_engine.dispose()

    app = FastAPI(
        title="Calibre Shelf",
        description="Personal e-book library: catalog, covers and downloads from a Calibre library.",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.auth_service = auth_service
    app.state.user_service = user_service
    app.state.catalog_service = catalog_service

    # CORS: explicit origin, allow credentials (cookies). Never use "*" with cookies.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.frontend_url] if settings.frontend_url else [],
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        """Log each request with its status and duration."""
        start = time.perf_counter()
        response = await call_next(request)
        logger.info(
            "%s %s -> %s (%.0fms)",
            request.method,
            request.url.path,
            response.status_code,
            (time.perf_counter() - start) * 1000,
        )
        return response

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(status_code=400, content={"error": "Invalid request"})

    @app.exception_handler(StorageError)
    async def storage_exception_handler(request: Request, exc: StorageError):
        # Already logged with context where it was raised
        logger.error("Storage failure on %s %s: %s", request.method, request.url.path, exc.msg)
        return JSONResponse(status_code=500, content={"error": "Internal server error"})

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Catch unhandled exceptions; log and return generic 500. Never leak stack traces."""
        logger.exception("Unhandled exception: %s", exc)
        return JSONResponse(
            status_code=500,
            content={"error": "Internal server error"},
        )

    @app.get("/health")
    def health():
        return {"status": "ok"}

    app.include_router(auth_router)
    app.include_router(books_router)
    app.include_router(admin_router)
    return app


def run() -> None:
    """Console entry point: load .env, configure logging, serve with uvicorn."""
    import uvicorn

    # Load .env only in development; production should set env vars directly
    if os.getenv("ENV", "development").lower() == "development":
        load_dotenv(Path.cwd() / ".env")
    settings = load_settings()
    configure_logging(settings.log_level)
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port)


if __name__ == "__main__":
    run()
