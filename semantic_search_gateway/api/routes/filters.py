from fastapi import APIRouter

from semantic_search_gateway.db.supabase_ops import StoreClient
from semantic_search_gateway.models.api import FilterOptions


def create_router(store: StoreClient) -> APIRouter:
    router = APIRouter(tags=["filters"])

    @router.get("", response_model=FilterOptions)
    @router.get("/", response_model=FilterOptions, include_in_schema=False)
    async def filter_options() -> FilterOptions:
        """Content types and locales the search can be filtered by."""
        return await store.get_filter_options()

    return router
