"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import APIRouter, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware

from src.api.middleware.error_handler import error_handler_middleware
from src.api.middleware.latency_logging import latency_logging_with_stats_middleware
from src.api.routes import chat, checkout, health, lab
from src.core.cache import create_parse_cache
from src.core.config import get_settings
from src.core.rate_limiter import init_rate_limiter, shutdown_rate_limiter
from src.core.stripe import configure_stripe
from src.services.lab_session import LabSessionRegistry, create_chat_backend, create_key_value_store

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager.

    Handles startup and shutdown events.

    Args:
        app: FastAPI application instance.

    Yields:
        None: Control back to the application.
    """
    # Startup
    settings = get_settings()
    logger.info("Starting %s in %s mode", settings.app_name, settings.app_env)

    # Configure Stripe SDK
    configure_stripe()
    logger.info("Stripe SDK configured")

    # Initialize rate limiter with cleanup task
    await init_rate_limiter()
    logger.info("Rate limiter initialized")

    # Reply parse cache, chat backend and lab sessions share the app lifetime
    parse_cache = create_parse_cache()
    await parse_cache.start_cleanup_task()
    app.state.parse_cache = parse_cache

    chat_backend = create_chat_backend(settings, parse_cache=parse_cache)
    app.state.chat_backend = chat_backend

    registry = LabSessionRegistry(
        create_key_value_store(settings),
        chat_backend,
        parse_cache=parse_cache,
        settings=settings,
    )
    await registry.start()
    app.state.lab_sessions = registry
    logger.info("Lab session registry initialized (backend=%s)", type(chat_backend).__name__)

    yield
    # Shutdown
    await registry.shutdown()
    logger.info("Lab session registry shutdown")
    await parse_cache.stop_cleanup_task()
    logger.info("Parse cache shutdown")
    await shutdown_rate_limiter()
    logger.info("Rate limiter shutdown")
    logger.info("Shutting down %s", settings.app_name)


def create_app() -> FastAPI:
    """Create and configure the FastAPI application.

    Returns:
        FastAPI: Configured application instance.
    """
    settings = get_settings()

    app = FastAPI(
        title="Fragrance Lab API",
        description="Conversational custom fragrance recipe backend",
        version="0.1.0",
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        openapi_url="/openapi.json" if settings.debug else None,
        lifespan=lifespan,
    )

    # Configure CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["x-client-id", "Retry-After"],
    )

    # Add error handler middleware (outermost - catches all errors)
    app.add_middleware(BaseHTTPMiddleware, dispatch=error_handler_middleware)

    # Add latency logging middleware (tracks request timing)
    app.add_middleware(BaseHTTPMiddleware, dispatch=latency_logging_with_stats_middleware)

    # Mount health routes at root level (no prefix)
    app.include_router(health.router)

    # Create API v1 router for versioned endpoints
    api_v1_router = APIRouter(prefix="/api/v1")

    # Chat API and lab session routes
    api_v1_router.include_router(chat.router)
    api_v1_router.include_router(lab.router)

    # Checkout routes
    api_v1_router.include_router(checkout.router)

    app.include_router(api_v1_router)

    return app


# Create application instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "src.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )
