from typing import Optional

from fastapi import APIRouter, Query

from semantic_search_gateway.db.supabase_ops import BLOG_CONTENT_TYPE, StoreClient
from semantic_search_gateway.errors import ErrorKind, GatewayError
from semantic_search_gateway.models.api import Blog, BlogList, SearchResult


def create_router(store: StoreClient) -> APIRouter:
    router = APIRouter(tags=["blogs"])

    async def _get_blog(uid: str) -> Blog:
        document = await store.get_document(uid)
        if document is None or document["content_type"] != BLOG_CONTENT_TYPE:
            raise GatewayError(f"Blog '{uid}' not found", ErrorKind.NOT_FOUND)
        return Blog(**document)

    @router.get("", response_model=BlogList)
    @router.get("/", response_model=BlogList, include_in_schema=False)
    async def list_blogs(
        locale: Optional[str] = Query(None),
        limit: int = Query(20, ge=1, le=100),
        offset: int = Query(0, ge=0),
    ) -> BlogList:
        rows = await store.list_documents(
            BLOG_CONTENT_TYPE, locale=locale, limit=limit, offset=offset
        )
        blogs = [Blog(**row) for row in rows]
        return BlogList(blogs=blogs, count=len(blogs), limit=limit, offset=offset)

    @router.get("/{uid}", response_model=Blog)
    async def get_blog(uid: str) -> Blog:
        return await _get_blog(uid)

    @router.get("/{uid}/related", response_model=list[SearchResult])
    async def related_blogs(
        uid: str, limit: int = Query(5, ge=1, le=20)
    ) -> list[SearchResult]:
        """Blogs whose embeddings sit closest to the given blog's."""
        blog = await _get_blog(uid)
        embedding = await store.get_embedding(uid)
        if embedding is None:
            return []
        rows = await store.vector_search(
            embedding,
            limit=limit,
            content_type=BLOG_CONTENT_TYPE,
            locale=blog.locale,
            exclude_uid=uid,
        )
        return [SearchResult(**row) for row in rows]

    return router
