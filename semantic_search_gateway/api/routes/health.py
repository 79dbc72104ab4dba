from typing import Any

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from semantic_search_gateway.api.diagnostics import probe_services
from semantic_search_gateway.config import Settings
from semantic_search_gateway.core.embedding import EmbeddingClient
from semantic_search_gateway.db.supabase_ops import StoreClient
from semantic_search_gateway.models.helpers import utc_timestamp


def create_router(
    settings: Settings, embedder: EmbeddingClient, store: StoreClient
) -> APIRouter:
    router = APIRouter(tags=["health"])

    @router.get("")
    @router.get("/", include_in_schema=False)
    async def readiness() -> JSONResponse:
        """Readiness check probing the embedding provider and the store.

        Unlike ``/health`` this fails with 503 while a dependency is down.
        """
        outcomes = await probe_services(
            embedder, store, settings.downstream_timeout_seconds
        )
        services: dict[str, Any] = {}
        for name, outcome in outcomes.items():
            services[name] = {"status": "up" if outcome.ok else "down"}
            # Downstream error text is only exposed in development
            if not outcome.ok and settings.is_development:
                services[name]["error"] = outcome.error
        healthy = all(outcome.ok for outcome in outcomes.values())
        return JSONResponse(
            status_code=200 if healthy else 503,
            content={
                "status": "healthy" if healthy else "degraded",
                "timestamp": utc_timestamp(),
                "environment": settings.environment.value,
                "services": services,
            },
        )

    return router
