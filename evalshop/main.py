"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import APIRouter, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware

from evalshop.api.middleware.error_handler import error_handler_middleware
from evalshop.api.middleware.latency_logging import latency_logging_middleware
from evalshop.api.middleware.request_size import request_size_limit_middleware
from evalshop.api.routes import checkout, coupons, health, purchases, webhooks
from evalshop.core.config import get_settings
from evalshop.core.http_client import close_http_client, create_http_client
from evalshop.core.supabase import create_supabase_client
from evalshop.services.dispatchers.registry import build_dispatchers
from evalshop.services.gateways.registry import build_gateways

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager.

    Creates the store and downstream clients once and keeps them on
    ``app.state`` for route dependencies; closes them on shutdown.

    Args:
        app: FastAPI application instance.

    Yields:
        None: Control back to the application.
    """
    settings = get_settings()
    logger.info("Starting %s in %s mode", settings.app_name, settings.app_env)

    app.state.supabase = create_supabase_client(settings)
    app.state.http_client = create_http_client(settings)
    app.state.gateways = build_gateways(settings)
    app.state.dispatchers = build_dispatchers(app.state.http_client, settings)

    disabled = [d.name for d in app.state.dispatchers if not d.enabled()]
    if disabled:
        logger.warning("Side-effect dispatchers not configured: %s", ", ".join(disabled))

    yield

    await close_http_client(app.state.http_client)
    logger.info("Shutting down %s", settings.app_name)


def create_app() -> FastAPI:
    """Create and configure the FastAPI application.

    Returns:
        FastAPI: Configured application instance.
    """
    settings = get_settings()

    app = FastAPI(
        title="Evalshop API",
        description="Checkout, pricing and payment reconciliation for evaluation programs",
        version="0.1.0",
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        openapi_url="/openapi.json" if settings.debug else None,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Starlette wraps in reverse order: size limit runs first, error handling last
    app.add_middleware(BaseHTTPMiddleware, dispatch=error_handler_middleware)
    app.add_middleware(BaseHTTPMiddleware, dispatch=latency_logging_middleware)
    app.add_middleware(BaseHTTPMiddleware, dispatch=request_size_limit_middleware)

    app.include_router(health.router)

    api_v1_router = APIRouter(prefix="/api/v1")
    api_v1_router.include_router(checkout.router)
    api_v1_router.include_router(coupons.router)
    api_v1_router.include_router(purchases.router)
    api_v1_router.include_router(webhooks.router)
    app.include_router(api_v1_router)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "evalshop.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )
