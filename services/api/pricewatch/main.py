"""FastAPI application entry point.

Pricewatch API - e-commerce price tracking.
"""

from contextlib import asynccontextmanager
from collections.abc import AsyncGenerator
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from pricewatch.container import Services, build_services
from pricewatch.routes import api_router
from pricewatch.schemas.common import error_body
from pricewatch.services.fetcher import FetchError
from pricewatch.services.products import ProductNotFoundError, ScrapeIncompleteError
from pricewatch.services.scheduler import SchedulerError
from pricewatch.services.scraper import InvalidUrlError
from pricewatch.settings import Settings, get_settings
from pricewatch.stores.postgres import close_db, create_tables, init_db, ping_db
from pricewatch.stores.products import PersistenceError
from pricewatch.stores.redis import close_redis, init_redis

logger = logging.getLogger("uvicorn.error")

# Domain exception -> (HTTP status, error code)
ERROR_STATUS: dict[type[Exception], tuple[int, str]] = {
    InvalidUrlError: (400, "INVALID_URL"),
    SchedulerError: (400, "INVALID_CRON"),
    ProductNotFoundError: (404, "PRODUCT_NOT_FOUND"),
    ScrapeIncompleteError: (422, "SCRAPE_INCOMPLETE"),
    FetchError: (502, "FETCH_FAILED"),
    PersistenceError: (503, "PERSISTENCE_ERROR"),
}


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager.

    Handles startup and shutdown events.
    """
    settings: Settings = app.state.settings
    services: Services = app.state.services

    # Initialize database (skip in tests if no DB available)
    try:
        await init_db()
        await ping_db()
        if settings.auto_create_tables:
            await create_tables()
        logger.info("Postgres connected")
    except Exception:
        logger.exception("Postgres init failed")

    # Initialize Redis (batch history only; optional)
    try:
        await init_redis()
    except Exception:
        logger.exception("Redis init failed")

    if settings.scheduler_autostart:
        services.scheduler.start(settings.price_check_cron)

    yield

    # Shutdown
    await services.close()
    await close_redis()
    await close_db()


def create_app(settings: Settings | None = None, services: Services | None = None) -> FastAPI:
    """Create and configure FastAPI application."""
    settings = settings or get_settings()

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="E-commerce price tracking API",
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )
    app.state.settings = settings
    app.state.services = services or build_services(settings)

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    async def domain_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Map service-layer errors onto the structured error format."""
        status_code, code = next(
            (v for cls, v in ERROR_STATUS.items() if isinstance(exc, cls)),
            (500, "INTERNAL_ERROR"),
        )
        detail = None
        if isinstance(exc, FetchError):
            detail = {"url": exc.url, "attempts": exc.attempts, "status_code": exc.status_code}
        message = str(exc)
        if isinstance(exc, PersistenceError) and not settings.debug:
            message = "Database unavailable"
        return JSONResponse(status_code=status_code, content=error_body(code, message, detail))

    for exc_class in ERROR_STATUS:
        app.add_exception_handler(exc_class, domain_exception_handler)

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        """HTTPExceptions already carrying the error envelope are returned as-is."""
        if isinstance(exc.detail, dict) and "error" in exc.detail:
            content = exc.detail
        else:
            content = error_body(f"HTTP_{exc.status_code}", str(exc.detail))
        return JSONResponse(status_code=exc.status_code, content=content, headers=exc.headers)

    # Exception handler for structured error format
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Global exception handler returning structured error format."""
        logger.exception(f"Unhandled error on {request.method} {request.url.path}")
        return JSONResponse(
            status_code=500,
            content={
                "error": {
                    "code": "INTERNAL_ERROR",
                    "message": str(exc) if settings.debug else "Internal server error",
                    "detail": None,
                }
            },
        )

    # Health check endpoint
    @app.get("/health", tags=["health"])
    async def health_check() -> dict[str, bool]:
        """Health check endpoint."""
        return {"ok": True}

    # Include API routes
    app.include_router(api_router)

    return app


# Application instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "pricewatch.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )
