import logging
import sys
from contextlib import asynccontextmanager
from typing import Optional

import sentry_sdk
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from prometheus_fastapi_instrumentator import Instrumentator
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.logging import LoggingIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration
from starlette.exceptions import HTTPException

from .config import Settings, get_settings
from .db.session import Database
from .middleware import RequestLoggingMiddleware, SecurityHeadersMiddleware
from .middleware.logging import ACCESS_LOGGER_NAME
from .routers import health, permits, uploads
from .services.storage import PUBLIC_UPLOADS_PREFIX, build_blob_store

logging.basicConfig(level=logging.INFO, handlers=[logging.StreamHandler(sys.stdout)])
logging.getLogger(ACCESS_LOGGER_NAME).setLevel(logging.INFO)

logger = logging.getLogger(__name__)


def _init_sentry(settings: Settings) -> None:
    if settings.sentry_dsn and str(settings.sentry_dsn).strip().lower().startswith(("http://", "https://")):
        sentry_sdk.init(
            dsn=str(settings.sentry_dsn).strip(),
            environment=settings.environment,
            integrations=[
                FastApiIntegration(transaction_style="endpoint"),
                SqlalchemyIntegration(),
                LoggingIntegration(level=logging.INFO, event_level=logging.ERROR),
            ],
            traces_sample_rate=settings.sentry_traces_sample_rate,
            profiles_sample_rate=settings.sentry_profiles_sample_rate,
        )


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings: Settings = app.state.settings
    database: Database = app.state.database

    database.connect()
    if settings.database_auto_create:
        database.create_all()
    if settings.blob_storage == "filesystem":
        settings.upload_dir.mkdir(parents=True, exist_ok=True)
    app.state.blob_store = build_blob_store(settings, database)
    logger.info("permit_portal_started blob_storage=%s", settings.blob_storage)
    try:
        yield
    finally:
        if app.state.owns_database:
            database.dispose()


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"message": exc.detail}, headers=exc.headers)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"message": "Invalid request"})


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error path=%s", request.url.path)
    return JSONResponse(status_code=500, content={"message": "Internal server error"})


def create_app(settings: Optional[Settings] = None, database: Optional[Database] = None) -> FastAPI:
    settings = settings or get_settings()
    _init_sentry(settings)

    app = FastAPI(title="Work Permit Portal API", version="0.1.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.owns_database = database is None
    app.state.database = database or Database(settings.database_url)

    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(SecurityHeadersMiddleware, hsts=not settings.is_development)

    if settings.metrics_enabled:
        instrumentator = Instrumentator(should_group_status_codes=True, should_ignore_untemplated=True)
        instrumentator.instrument(app).expose(app, include_in_schema=False)

    # CORS (allow local web)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allow_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    prefixes = [""]
    if settings.api_prefix:
        prefixes.append(settings.api_prefix)
    for prefix in prefixes:
        in_schema = prefix == ""
        app.include_router(health.router, prefix=prefix, tags=["health"], include_in_schema=in_schema)
        app.include_router(permits.router, prefix=prefix, tags=["permits"], include_in_schema=in_schema)
        if settings.blob_storage != "filesystem":
            app.include_router(uploads.router, prefix=prefix, tags=["uploads"], include_in_schema=in_schema)

    if settings.blob_storage == "filesystem":
        app.mount(
            PUBLIC_UPLOADS_PREFIX,
            StaticFiles(directory=str(settings.upload_dir), check_dir=False),
            name="uploads",
        )

    return app


app = create_app()
