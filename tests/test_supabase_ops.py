import asyncio
import json
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import asyncpg
import pytest
from tenacity import wait_none

from semantic_search_gateway.db.supabase_ops import (
    SupabaseRetryConfig,
    StoreClient,
    with_supabase_retry,
)
from semantic_search_gateway.errors import ErrorKind, StoreError

from conftest import SAMPLE_EMBEDDING, make_settings

SAMPLE_ROW = {
    "uid": "blt001",
    "content_type": "blog_post",
    "locale": "en-us",
    "title": "Modeling content for search",
    "url": "/blog/modeling-content",
    "content": "How to structure entries so they embed well.",
    "metadata": '{"tags": ["search"]}',
    "updated_at": datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc),
}


@pytest.fixture
def conn():
    """Mock asyncpg connection."""
    conn = AsyncMock()
    conn.fetch.return_value = [{**SAMPLE_ROW, "similarity": 0.875}]
    conn.fetchrow.return_value = SAMPLE_ROW
    conn.execute.return_value = "INSERT 0 1"
    return conn


@pytest.fixture
def mock_pool(conn):
    """Mock asyncpg pool whose ``acquire()`` works as an async context manager."""
    pool = MagicMock()

    class AsyncContextManagerMock:
        async def __aenter__(self):
            return conn

        async def __aexit__(self, exc_type, exc_val, exc_tb):
            return None

    pool.acquire.side_effect = lambda: AsyncContextManagerMock()
    pool.close = AsyncMock()
    return pool


@pytest.fixture
def store(mock_pool):
    return StoreClient(make_settings(), pool=mock_pool, wait=wait_none())


class TestWithSupabaseRetry:
    @pytest.mark.asyncio
    async def test_success_on_first_attempt(self):
        func = AsyncMock(return_value="ok")

        result = await with_supabase_retry(func, "a", key="b", wait=wait_none())

        assert result == "ok"
        func.assert_awaited_once_with("a", key="b")

    @pytest.mark.asyncio
    async def test_retries_connection_errors(self):
        func = AsyncMock(
            side_effect=[asyncpg.ConnectionDoesNotExistError("gone"), "recovered"]
        )

        result = await with_supabase_retry(func, wait=wait_none())

        assert result == "recovered"
        assert func.await_count == 2

    @pytest.mark.asyncio
    async def test_reraises_after_max_attempts(self):
        func = AsyncMock(side_effect=OSError("network unreachable"))

        with pytest.raises(OSError):
            await with_supabase_retry(func, wait=wait_none())

        assert func.await_count == SupabaseRetryConfig.MAX_ATTEMPTS

    @pytest.mark.asyncio
    async def test_query_errors_are_not_retried(self):
        func = AsyncMock(side_effect=asyncpg.UndefinedTableError("no such table"))

        with pytest.raises(asyncpg.UndefinedTableError):
            await with_supabase_retry(func, wait=wait_none())

        func.assert_awaited_once()


class TestStoreClient:
    @pytest.mark.asyncio
    async def test_vector_search_without_filters(self, store, conn):
        results = await store.vector_search(SAMPLE_EMBEDDING, limit=5)

        query, *params = conn.fetch.await_args.args
        assert "ORDER BY embedding <=> $1" in query
        assert "LIMIT $2" in query
        assert params == [SAMPLE_EMBEDDING, 5]

        assert results[0]["uid"] == "blt001"
        assert results[0]["similarity"] == 0.875
        assert results[0]["metadata"] == {"tags": ["search"]}
        assert results[0]["updated_at"] == "2024-05-01T10:00:00+00:00"

    @pytest.mark.asyncio
    async def test_vector_search_with_all_filters(self, store, conn):
        await store.vector_search(
            SAMPLE_EMBEDDING,
            limit=3,
            content_type="blog_post",
            locale="fr-fr",
            threshold=0.5,
            exclude_uid="blt001",
        )

        query, *params = conn.fetch.await_args.args
        assert "content_type = $2" in query
        assert "locale = $3" in query
        assert "uid <> $4" in query
        assert "1 - (embedding <=> $1) >= $5" in query
        assert "LIMIT $6" in query
        assert params == [SAMPLE_EMBEDDING, "blog_post", "fr-fr", "blt001", 0.5, 3]

    @pytest.mark.asyncio
    async def test_filter_options(self, store, conn):
        conn.fetch.side_effect = [
            [{"content_type": "blog_post"}, {"content_type": "page"}],
            [{"locale": "en-us"}],
        ]

        options = await store.get_filter_options()

        assert options.content_types == ["blog_post", "page"]
        assert options.locales == ["en-us"]
        assert conn.fetch.await_count == 2

    @pytest.mark.asyncio
    async def test_list_documents_paginates(self, store, conn):
        conn.fetch.return_value = [SAMPLE_ROW]

        documents = await store.list_documents("blog_post", locale="en-us", limit=10, offset=20)

        query, *params = conn.fetch.await_args.args
        assert "LIMIT $3 OFFSET $4" in query
        assert params == ["blog_post", "en-us", 10, 20]
        assert documents[0]["title"] == SAMPLE_ROW["title"]

    @pytest.mark.asyncio
    async def test_get_document_missing(self, store, conn):
        conn.fetchrow.return_value = None

        assert await store.get_document("nope") is None

    @pytest.mark.asyncio
    async def test_get_embedding(self, store, conn):
        conn.fetchrow.return_value = {"embedding": [1, 0.5]}

        assert await store.get_embedding("blt001") == [1.0, 0.5]

    @pytest.mark.asyncio
    async def test_upsert_document_serializes_metadata(self, store, conn):
        document = {
            "uid": "blt009",
            "content_type": "blog_post",
            "locale": "en-us",
            "title": "Launch checklist",
            "url": "/blog/launch-checklist",
            "content": "Review every entry.",
            "metadata": {"tags": ["launch"]},
        }

        await store.upsert_document(document, SAMPLE_EMBEDDING)

        query, *params = conn.execute.await_args.args
        assert "ON CONFLICT (uid) DO UPDATE" in query
        assert params[0] == "blt009"
        assert json.loads(params[6]) == {"tags": ["launch"]}
        assert params[7] == SAMPLE_EMBEDDING

    @pytest.mark.asyncio
    @pytest.mark.parametrize("tag, expected", [("DELETE 1", True), ("DELETE 0", False)])
    async def test_delete_document(self, store, conn, tag, expected):
        conn.execute.return_value = tag

        assert await store.delete_document("blt001") is expected

    @pytest.mark.asyncio
    async def test_record_search(self, store, conn):
        await store.record_search("webhooks", 4, {"locale": "en-us"})

        _, query, results_count, filters = conn.execute.await_args.args
        assert query == "webhooks"
        assert results_count == 4
        assert json.loads(filters) == {"locale": "en-us"}

    @pytest.mark.asyncio
    async def test_popular_queries(self, store, conn):
        conn.fetch.return_value = [{"query": "webhooks", "searches": 12, "avg_results": None}]

        popular = await store.popular_queries(5)

        assert popular == [{"query": "webhooks", "searches": 12, "avg_results": 0.0}]
        assert conn.fetch.await_args.args[-1] == 5

    @pytest.mark.asyncio
    async def test_postgres_error_becomes_store_error(self, store, conn):
        conn.fetch.side_effect = asyncpg.UndefinedTableError('relation "documents" does not exist')

        with pytest.raises(StoreError, match="Store query failed") as exc_info:
            await store.vector_search(SAMPLE_EMBEDDING)

        assert exc_info.value.kind == ErrorKind.UPSTREAM

    @pytest.mark.asyncio
    async def test_timeout_becomes_timeout_kind(self, store, conn):
        conn.fetchval.side_effect = asyncio.TimeoutError()

        with pytest.raises(StoreError) as exc_info:
            await store.ping()

        assert exc_info.value.kind == ErrorKind.TIMEOUT
        # ↳ Timeouts are retried before giving up
        assert conn.fetchval.await_count == SupabaseRetryConfig.MAX_ATTEMPTS

    @pytest.mark.asyncio
    async def test_missing_database_url_is_unavailable(self):
        store = StoreClient(make_settings(supabase_db_url=None), wait=wait_none())

        with pytest.raises(StoreError) as exc_info:
            await store.ping()

        assert exc_info.value.kind == ErrorKind.UNAVAILABLE
        assert "SUPABASE_DB_URL" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_pool_is_created_lazily_once(self, mock_pool):
        store = StoreClient(make_settings(), wait=wait_none())

        with patch(
            "semantic_search_gateway.db.supabase_ops.create_pool",
            AsyncMock(return_value=mock_pool),
        ) as mock_create_pool:
            await asyncio.gather(store.ping(), store.ping())

        mock_create_pool.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_close_releases_pool(self, store, mock_pool):
        await store.close()

        mock_pool.close.assert_awaited_once()
        # ↳ Closing twice is a no-op
        await store.close()
        mock_pool.close.assert_awaited_once()
