import logging
import time
from typing import Optional

from fastapi import APIRouter, Query

from semantic_search_gateway.core.embedding import EmbeddingClient
from semantic_search_gateway.db.supabase_ops import StoreClient
from semantic_search_gateway.errors import GatewayError
from semantic_search_gateway.models.api import SearchRequest, SearchResponse, SearchResult

logger = logging.getLogger(__name__)


async def run_search(
    req: SearchRequest, embedder: EmbeddingClient, store: StoreClient
) -> SearchResponse:
    """Embed the query, run the vector search and record the search event."""
    started = time.perf_counter()

    embedding = await embedder.generate_embedding(req.query)
    rows = await store.vector_search(
        embedding,
        limit=req.limit,
        content_type=req.content_type,
        locale=req.locale,
        threshold=req.threshold,
    )
    results = [SearchResult(**row) for row in rows]

    filters = {
        key: value
        for key, value in {
            "content_type": req.content_type,
            "locale": req.locale,
        }.items()
        if value
    }
    try:
        await store.record_search(req.query, len(results), filters)
    except GatewayError as e:
        # Analytics must never fail a search
        logger.warning(f"Could not record search analytics: {e}")

    return SearchResponse(
        query=req.query,
        results=results,
        total=len(results),
        took_ms=int((time.perf_counter() - started) * 1000),
    )


def create_router(embedder: EmbeddingClient, store: StoreClient) -> APIRouter:
    router = APIRouter(tags=["search"])

    @router.post("", response_model=SearchResponse)
    @router.post("/", response_model=SearchResponse, include_in_schema=False)
    async def search(req: SearchRequest) -> SearchResponse:
        """Semantic search over indexed content."""
        return await run_search(req, embedder, store)

    @router.get("", response_model=SearchResponse)
    @router.get("/", response_model=SearchResponse, include_in_schema=False)
    async def search_get(
        q: str = Query(..., min_length=1, description="Search query text"),
        limit: int = Query(10, ge=1, le=50),
        content_type: Optional[str] = Query(None, alias="contentType"),
        locale: Optional[str] = Query(None),
        threshold: Optional[float] = Query(None, ge=0, le=1),
    ) -> SearchResponse:
        req = SearchRequest(
            query=q,
            limit=limit,
            content_type=content_type,
            locale=locale,
            threshold=threshold,
        )
        return await run_search(req, embedder, store)

    return router
