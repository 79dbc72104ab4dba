"""FastAPI application factory for the gateway.

``create_app`` composes the middleware pipeline, mounts the route modules
and installs the 404/error handlers. Collaborators (settings, embedding
client, store client, logger) are built once here or passed in by the
caller, and handed explicitly to every router.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware

from semantic_search_gateway.api.diagnostics import create_diagnostics_router
from semantic_search_gateway.api.handlers import (
    UnhandledErrorMiddleware,
    register_error_handlers,
)
from semantic_search_gateway.api.routes import (
    analytics,
    blogs,
    filters,
    health,
    search,
    webhooks,
)
from semantic_search_gateway.config import Settings, get_settings
from semantic_search_gateway.core.embedding import EmbeddingClient
from semantic_search_gateway.db.supabase_ops import StoreClient
from semantic_search_gateway.logging_utils import AccessLogMiddleware, RequestLogger
from semantic_search_gateway.middleware import (
    BodySizeLimitMiddleware,
    SecurityHeadersMiddleware,
    StaticAssetsMiddleware,
)

CORS_METHODS = ["GET", "POST", "PUT", "DELETE", "OPTIONS"]
CORS_HEADERS = ["Content-Type", "Authorization", "Origin", "X-Requested-With", "Accept"]


def _setup_middleware(app: FastAPI, settings: Settings, logger: RequestLogger) -> None:
    """Install the middleware pipeline.

    Starlette wraps each new middleware around the previous ones, so the
    stages are added innermost first. Requests then pass through: security
    headers, compression, CORS, body size cap, access log, request logger,
    unhandled-error conversion, static assets.
    """
    app.add_middleware(StaticAssetsMiddleware, directory=settings.public_dir)
    app.add_middleware(UnhandledErrorMiddleware, settings=settings, logger=logger)
    request_logger, options = logger.request_logger()
    app.add_middleware(request_logger, **options)
    app.add_middleware(AccessLogMiddleware, settings=settings)
    app.add_middleware(BodySizeLimitMiddleware, max_body_bytes=settings.max_body_bytes)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.cors_origin],
        allow_credentials=True,
        allow_methods=CORS_METHODS,
        allow_headers=CORS_HEADERS,
    )
    app.add_middleware(GZipMiddleware, minimum_size=1000)
    app.add_middleware(SecurityHeadersMiddleware)


def _setup_prometheus_instrumentation(app: FastAPI) -> None:
    """Expose request metrics on ``/metrics``."""
    # Lazy import prometheus components to defer loading
    from prometheus_fastapi_instrumentator import Instrumentator

    Instrumentator(excluded_handlers=["/metrics", "/favicon.ico"]).instrument(
        app
    ).expose(app, include_in_schema=False)


def create_app(
    settings: Optional[Settings] = None,
    embedder: Optional[EmbeddingClient] = None,
    store: Optional[StoreClient] = None,
    logger: Optional[RequestLogger] = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        settings: Settings snapshot, read from the environment when omitted
        embedder: Embedding client, built from settings when omitted
        store: Store client, built from settings when omitted
        logger: Request logger, a default one when omitted

    Returns:
        Configured FastAPI application with all routes and middleware
    """
    settings = settings or get_settings()
    embedder = embedder or EmbeddingClient.from_settings(settings)
    store = store or StoreClient(settings)
    logger = logger or RequestLogger()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        try:
            yield
        finally:
            # Shutdown: release the HTTP client and the database pool
            await embedder.close()
            await store.close()

    app = FastAPI(
        title="Semantic Search Gateway",
        version=settings.app_version,
        lifespan=lifespan,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
    )
    app.state.settings = settings
    app.state.embedder = embedder
    app.state.store = store

    _setup_middleware(app, settings, logger)
    register_error_handlers(app, settings, logger)

    app.include_router(create_diagnostics_router(settings, embedder, store))
    app.include_router(search.create_router(embedder, store), prefix="/api/search")
    app.include_router(filters.create_router(store), prefix="/api/filters")
    app.include_router(analytics.create_router(store), prefix="/api/analytics")
    app.include_router(
        webhooks.create_router(settings, embedder, store), prefix="/api/webhook"
    )
    app.include_router(blogs.create_router(store), prefix="/api/blogs")
    app.include_router(
        health.create_router(settings, embedder, store), prefix="/api/health"
    )

    if settings.enable_metrics:
        _setup_prometheus_instrumentation(app)

    return app
