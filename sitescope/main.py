"""
SiteScope API entry point.

    uvicorn sitescope.main:app

Runs are created here and executed by the Celery worker
(`celery -A sitescope.workers.celery_app worker -Q analysis_queue`).
"""

import uuid
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from sitescope.api.v1.routes import health, runs
from sitescope.core.config import get_settings
from sitescope.core.database import engine, ping_database
from sitescope.core.errors import RunValidationError
from sitescope.core.logging import configure_logging
from sitescope.core.redis import close_redis, ping_redis

logger = structlog.get_logger(__name__)
settings = get_settings()

REQUEST_ID_HEADER = "x-request-id"


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    configure_logging()
    logger.info("Starting SiteScope", version=settings.APP_VERSION, env=settings.ENV)

    # Refuse to start without the run store and the run lock
    await ping_database()
    await ping_redis()
    logger.info("Dependencies verified", database="ok", redis="ok")

    yield

    await engine.dispose()
    await close_redis()
    logger.info("SiteScope stopped")


def _validation_errors(exc: RequestValidationError) -> list[dict]:
    return [
        {"loc": list(error.get("loc", ())), "msg": error.get("msg", ""), "type": error.get("type", "")}
        for error in exc.errors()
    ]


def create_application(use_lifespan: bool = True) -> FastAPI:
    """
    Build the API app. Tests pass use_lifespan=False to skip the
    database/Redis startup checks.
    """
    docs_enabled = settings.ENV != "production"
    app = FastAPI(
        title="SiteScope API",
        description="Website crawler with technical, content and AI-readiness analysis.",
        version=settings.APP_VERSION,
        docs_url="/docs" if docs_enabled else None,
        redoc_url="/redoc" if docs_enabled else None,
        lifespan=lifespan if use_lifespan else None,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(GZipMiddleware, minimum_size=1000)

    @app.middleware("http")
    async def bind_request_context(request: Request, call_next):
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id, path=request.url.path)
        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response

    app.include_router(health.router, prefix="/health", tags=["Health"])
    app.include_router(runs.router, prefix="/api/v1/runs", tags=["Runs"])

    # ── Error mapping ─────────────────────────

    @app.exception_handler(RunValidationError)
    async def run_validation_handler(request: Request, exc: RunValidationError) -> JSONResponse:
        logger.info("Run request rejected", reason=str(exc), field=exc.field)
        return JSONResponse(status_code=400, content={"detail": str(exc), "field": exc.field})

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"detail": _validation_errors(exc)})

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.error("Unhandled exception", error=str(exc), exc_info=True)
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error", "request_id": request.headers.get(REQUEST_ID_HEADER)},
        )

    return app


app = create_application()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("sitescope.main:app", host=settings.HOST, port=settings.PORT, reload=settings.DEBUG)
