from fastapi import APIRouter, Query

from semantic_search_gateway.db.supabase_ops import StoreClient
from semantic_search_gateway.models.api import PopularQuery, TrackSearchRequest


def create_router(store: StoreClient) -> APIRouter:
    router = APIRouter(tags=["analytics"])

    @router.post("/track", status_code=201)
    async def track(event: TrackSearchRequest) -> dict[str, str]:
        """Record a search performed by the frontend."""
        await store.record_search(event.query, event.results_count, event.filters)
        return {"status": "recorded"}

    @router.get("/popular", response_model=list[PopularQuery])
    async def popular(limit: int = Query(10, ge=1, le=100)) -> list[PopularQuery]:
        """Most frequent search queries."""
        rows = await store.popular_queries(limit)
        return [PopularQuery(**row) for row in rows]

    return router
