"""
OrderDesk API - Main Application Entry Point.

Order lifecycle service: creation, status transitions, search,
cancellation and per-customer statistics.
"""
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from orderdesk.core.config import settings
from orderdesk.core.database import close_db, init_db, is_db_available
from orderdesk.core.logging import LoggerContextMiddleware, configure_logging, get_logger
from orderdesk.middleware import ErrorHandlerMiddleware, register_exception_handlers
from orderdesk.repositories.memory import InMemoryOrderStore
from orderdesk.repositories.order import sqlalchemy_repository_scope
from orderdesk.routers import health_router, orders_router
from orderdesk.services.cache import build_cache
from orderdesk.services.order_service import OrderService

# Configure logging before anything else
configure_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan manager.
    Handles startup and shutdown events.
    """
    # Startup
    logger.info(
        "Starting application",
        app_name=settings.app_name,
        version=settings.app_version,
        environment=settings.environment,
        storage_backend=settings.storage_backend,
    )

    if settings.storage_backend == "memory":
        repository_scope = InMemoryOrderStore().scope
    else:
        await init_db()
        if not is_db_available():
            logger.warning("Database unreachable at startup, order requests will return 503 until it recovers")
        repository_scope = sqlalchemy_repository_scope()

    cache = build_cache(settings)
    app.state.cache = cache
    app.state.order_service = OrderService(repository_scope, cache, settings)

    # Initialize Sentry if configured
    if settings.sentry_dsn:
        import sentry_sdk

        sentry_sdk.init(
            dsn=settings.sentry_dsn,
            environment=settings.environment,
            traces_sample_rate=0.1,
        )
        logger.info("Sentry initialized")

    yield

    # Shutdown
    logger.info("Shutting down application")
    await cache.close()
    await close_db()


def create_app() -> FastAPI:
    """
    Application factory function.
    Creates and configures the FastAPI application.
    """
    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Order lifecycle management API",
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    # Add middleware (order matters - last added = outermost)
    app.add_middleware(ErrorHandlerMiddleware)
    app.add_middleware(LoggerContextMiddleware)

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PATCH", "OPTIONS"],
        allow_headers=[
            "Content-Type",
            "X-Request-ID",
            "X-User-Id",
        ],
    )

    register_exception_handlers(app)

    # Register routers
    app.include_router(health_router)
    app.include_router(orders_router, prefix="/api/v1")

    logger.info(
        "Application created",
        routes=len(app.routes),
        cors_origins=len(settings.allowed_origins),
    )

    return app


# Create the application instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "orderdesk.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )
