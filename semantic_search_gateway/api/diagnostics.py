"""Welcome, liveness and connectivity probe endpoints.

None of these belong to the product API. ``/health`` must stay independent
of the embedding provider and the store; the ``/api/test-*`` probes exist to
prove credentials and connectivity for exactly those two collaborators.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from fastapi import APIRouter, Depends, Response
from fastapi.responses import JSONResponse

from semantic_search_gateway.api.handlers import parse_body
from semantic_search_gateway.config import Settings
from semantic_search_gateway.core.embedding import EmbeddingClient
from semantic_search_gateway.db.supabase_ops import StoreClient
from semantic_search_gateway.models.helpers import utc_timestamp

logger = logging.getLogger(__name__)

ENDPOINTS = {
    "health": "/health",
    "search": "/api/search",
    "filters": "/api/filters",
    "analytics": "/api/analytics",
    "webhooks": "/api/webhook",
    "blogs": "/api/blogs",
}


@dataclass
class ProbeResult:
    """Outcome of one connectivity probe."""

    ok: bool
    error: Optional[str] = None
    details: dict[str, Any] = field(default_factory=dict)


async def probe_embeddings(
    embedder: EmbeddingClient, timeout: float, text: str = "test query"
) -> ProbeResult:
    try:
        embedding = await asyncio.wait_for(embedder.generate_embedding(text), timeout)
    except asyncio.TimeoutError:
        return ProbeResult(ok=False, error=f"Timed out after {timeout:g}s")
    except Exception as e:
        logger.error(f"Embedding probe failed: {e}")
        return ProbeResult(ok=False, error=str(e))
    return ProbeResult(ok=True, details={"embeddingLength": len(embedding)})


async def probe_store(store: StoreClient, timeout: float) -> ProbeResult:
    try:
        options = await asyncio.wait_for(store.get_filter_options(), timeout)
    except asyncio.TimeoutError:
        return ProbeResult(ok=False, error=f"Timed out after {timeout:g}s")
    except Exception as e:
        logger.error(f"Store probe failed: {e}")
        return ProbeResult(ok=False, error=str(e))
    return ProbeResult(
        ok=True,
        details={
            "contentTypes": len(options.content_types),
            "locales": len(options.locales),
        },
    )


async def probe_services(
    embedder: EmbeddingClient, store: StoreClient, timeout: float
) -> dict[str, ProbeResult]:
    """Run both probes concurrently; one failing never hides the other."""
    openai_result, supabase_result = await asyncio.gather(
        probe_embeddings(embedder, timeout, text="test"), probe_store(store, timeout)
    )
    return {"openai": openai_result, "supabase": supabase_result}


def create_diagnostics_router(
    settings: Settings, embedder: EmbeddingClient, store: StoreClient
) -> APIRouter:
    router = APIRouter()
    timeout = settings.downstream_timeout_seconds
    environment = settings.environment.value

    @router.get("/favicon.ico", include_in_schema=False)
    async def favicon() -> Response:
        return Response(status_code=204)

    @router.get("/")
    async def root() -> dict[str, Any]:
        return {
            "message": "Backend API is running successfully!",
            "status": "active",
            "timestamp": utc_timestamp(),
            "version": settings.app_version,
            "endpoints": ENDPOINTS,
        }

    @router.get("/health")
    async def health() -> dict[str, str]:
        """Liveness probe; never touches downstream services."""
        return {
            "status": "healthy",
            "timestamp": utc_timestamp(),
            "environment": environment,
            "cors": "enabled",
        }

    @router.get("/api/test")
    async def test_get() -> dict[str, str]:
        return {
            "message": "API GET is working!",
            "timestamp": utc_timestamp(),
            "environment": environment,
        }

    @router.post("/api/test")
    async def test_post(body: Any = Depends(parse_body)) -> dict[str, Any]:
        return {
            "message": "API POST is working!",
            "body": body,
            "timestamp": utc_timestamp(),
        }

    @router.get("/api/test-openai")
    async def test_openai() -> JSONResponse:
        logger.info("Testing OpenAI API...")
        result = await probe_embeddings(embedder, timeout)
        if not result.ok:
            return JSONResponse(
                status_code=500,
                content={
                    "status": "error",
                    "message": "OpenAI API failed",
                    "error": result.error,
                    "timestamp": utc_timestamp(),
                },
            )
        return JSONResponse(
            content={
                "status": "success",
                "message": "OpenAI API is working!",
                **result.details,
                "timestamp": utc_timestamp(),
            }
        )

    @router.get("/api/test-supabase")
    async def test_supabase() -> JSONResponse:
        logger.info("Testing Supabase connection...")
        result = await probe_store(store, timeout)
        if not result.ok:
            return JSONResponse(
                status_code=500,
                content={
                    "status": "error",
                    "message": "Supabase connection failed",
                    "error": result.error,
                    "timestamp": utc_timestamp(),
                },
            )
        return JSONResponse(
            content={
                "status": "success",
                "message": "Supabase connection is working!",
                **result.details,
                "timestamp": utc_timestamp(),
            }
        )

    @router.get("/api/test-services")
    async def test_services() -> JSONResponse:
        outcomes = await probe_services(embedder, store, timeout)
        results: dict[str, Any] = {
            name: (
                {"status": "success", "message": f"{label} working"}
                if outcome.ok
                else {"status": "error", "message": outcome.error}
            )
            for (name, outcome), label in zip(outcomes.items(), ("OpenAI", "Supabase"))
        }
        results["timestamp"] = utc_timestamp()

        all_working = all(outcome.ok for outcome in outcomes.values())
        return JSONResponse(
            status_code=200 if all_working else 500,
            content={
                "status": "success" if all_working else "error",
                "message": "All services working!" if all_working else "Some services failed",
                "results": results,
            },
        )

    return router
