import asyncio
import json
import logging
from typing import Any, Dict, List, Optional

import asyncpg
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)
from tenacity.wait import wait_base

from semantic_search_gateway.config import Settings
from semantic_search_gateway.db import create_pool
from semantic_search_gateway.errors import ErrorKind, StoreError
from semantic_search_gateway.models.api import FilterOptions

logger = logging.getLogger(__name__)

BLOG_CONTENT_TYPE = "blog_post"

DOCUMENT_COLUMNS = "uid, content_type, locale, title, url, content, metadata, updated_at"


class SupabaseRetryConfig:
    """Configuration for Supabase-specific retry logic."""

    # Retry on connection issues, server errors, and timeout
    RETRYABLE_EXCEPTIONS = (
        asyncpg.ConnectionDoesNotExistError,
        asyncpg.ConnectionFailureError,
        asyncpg.PostgresConnectionError,
        asyncio.TimeoutError,
        OSError,  # Network-related issues
    )

    MAX_ATTEMPTS = 3
    MIN_WAIT = 1  # seconds
    MAX_WAIT = 8  # seconds
    MULTIPLIER = 2


async def with_supabase_retry(
    func,
    *args,
    max_attempts: int = SupabaseRetryConfig.MAX_ATTEMPTS,
    wait: Optional[wait_base] = None,
    **kwargs,
) -> Any:
    """
    Execute a database function with Supabase-compatible retry logic.

    Args:
        func: The async function to execute
        *args: Arguments to pass to the function
        max_attempts: Maximum number of retry attempts
        wait: Tenacity wait strategy, exponential backoff by default
        **kwargs: Keyword arguments to pass to the function

    Returns:
        Result of the function execution

    Raises:
        The last exception if all retries are exhausted
    """
    if wait is None:
        wait = wait_exponential(
            multiplier=SupabaseRetryConfig.MULTIPLIER,
            min=SupabaseRetryConfig.MIN_WAIT,
            max=SupabaseRetryConfig.MAX_WAIT,
        )
    async for attempt in AsyncRetrying(
        stop=stop_after_attempt(max_attempts),
        wait=wait,
        retry=retry_if_exception_type(SupabaseRetryConfig.RETRYABLE_EXCEPTIONS),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    ):
        with attempt:
            return await func(*args, **kwargs)


def _document_from_row(row) -> Dict[str, Any]:
    metadata = row["metadata"]
    if isinstance(metadata, str):
        metadata = json.loads(metadata)
    updated_at = row["updated_at"]
    return {
        "uid": row["uid"],
        "content_type": row["content_type"],
        "locale": row["locale"],
        "title": row["title"],
        "url": row["url"],
        "content": row["content"],
        "metadata": metadata or {},
        "updated_at": updated_at.isoformat() if updated_at else None,
    }


class StoreClient:
    """Queries the Supabase Postgres/pgvector store.

    The asyncpg pool is created on first use so the gateway starts (and its
    liveness probe answers) even while the database is unreachable.
    """

    def __init__(
        self,
        settings: Settings,
        pool: Optional[asyncpg.Pool] = None,
        max_attempts: int = SupabaseRetryConfig.MAX_ATTEMPTS,
        wait: Optional[wait_base] = None,
    ):
        self.settings = settings
        self._pool = pool
        self._pool_lock = asyncio.Lock()
        self.max_attempts = max_attempts
        self.wait = wait

    async def _get_pool(self) -> asyncpg.Pool:
        if self._pool is None:
            async with self._pool_lock:
                if self._pool is None:
                    try:
                        self._pool = await create_pool(self.settings)
                    except ValueError as e:
                        raise StoreError(str(e), ErrorKind.UNAVAILABLE) from None
        return self._pool

    async def _run(self, method: str, query: str, *params) -> Any:
        """Run ``query`` on a pooled connection, mapping driver errors to StoreError."""

        async def _execute():
            pool = await self._get_pool()
            async with pool.acquire() as conn:
                return await getattr(conn, method)(query, *params)

        try:
            return await with_supabase_retry(
                _execute, max_attempts=self.max_attempts, wait=self.wait
            )
        except asyncio.TimeoutError:
            raise StoreError("Store query timed out", ErrorKind.TIMEOUT) from None
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as e:
            logger.warning(f"Store query failed: {e}")
            raise StoreError(f"Store query failed: {e}") from None

    async def ping(self) -> None:
        await self._run("fetchval", "SELECT 1")

    async def get_filter_options(self) -> FilterOptions:
        """Distinct content types and locales available for filtering."""
        content_types = await self._run(
            "fetch",
            "SELECT DISTINCT content_type FROM documents "
            "WHERE content_type IS NOT NULL ORDER BY content_type",
        )
        locales = await self._run(
            "fetch",
            "SELECT DISTINCT locale FROM documents "
            "WHERE locale IS NOT NULL ORDER BY locale",
        )
        return FilterOptions(
            content_types=[row["content_type"] for row in content_types],
            locales=[row["locale"] for row in locales],
        )

    async def vector_search(
        self,
        query_embedding: List[float],
        limit: int = 10,
        content_type: Optional[str] = None,
        locale: Optional[str] = None,
        threshold: Optional[float] = None,
        exclude_uid: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """
        Cosine-similarity search over document embeddings.

        Args:
            query_embedding: The query vector
            limit: Number of results to return
            content_type: Filter by content type
            locale: Filter by locale
            threshold: Minimum similarity (0-1) a result must reach
            exclude_uid: Document to leave out, used for "related" lookups

        Returns:
            Documents ordered by descending similarity
        """
        where_conditions = ["embedding IS NOT NULL"]
        params: List[Any] = [query_embedding]

        if content_type:
            params.append(content_type)
            where_conditions.append(f"content_type = ${len(params)}")

        if locale:
            params.append(locale)
            where_conditions.append(f"locale = ${len(params)}")

        if exclude_uid:
            params.append(exclude_uid)
            where_conditions.append(f"uid <> ${len(params)}")

        if threshold is not None:
            params.append(threshold)
            where_conditions.append(f"1 - (embedding <=> $1) >= ${len(params)}")

        params.append(limit)
        query = f"""
            SELECT {DOCUMENT_COLUMNS}, 1 - (embedding <=> $1) AS similarity
            FROM documents
            WHERE {" AND ".join(where_conditions)}
            ORDER BY embedding <=> $1
            LIMIT ${len(params)}
        """
        rows = await self._run("fetch", query, *params)

        results = []
        for row in rows:
            result = _document_from_row(row)
            result["similarity"] = float(row["similarity"])
            results.append(result)
        return results

    async def list_documents(
        self,
        content_type: str,
        locale: Optional[str] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> List[Dict[str, Any]]:
        params: List[Any] = [content_type]
        where = "content_type = $1"
        if locale:
            params.append(locale)
            where += f" AND locale = ${len(params)}"
        params.extend([limit, offset])
        rows = await self._run(
            "fetch",
            f"SELECT {DOCUMENT_COLUMNS} FROM documents WHERE {where} "
            f"ORDER BY updated_at DESC NULLS LAST "
            f"LIMIT ${len(params) - 1} OFFSET ${len(params)}",
            *params,
        )
        return [_document_from_row(row) for row in rows]

    async def get_document(self, uid: str) -> Optional[Dict[str, Any]]:
        row = await self._run(
            "fetchrow", f"SELECT {DOCUMENT_COLUMNS} FROM documents WHERE uid = $1", uid
        )
        return _document_from_row(row) if row else None

    async def get_embedding(self, uid: str) -> Optional[List[float]]:
        row = await self._run(
            "fetchrow", "SELECT embedding FROM documents WHERE uid = $1", uid
        )
        if row is None or row["embedding"] is None:
            return None
        return [float(v) for v in row["embedding"]]

    async def upsert_document(self, document: Dict[str, Any], embedding: List[float]) -> None:
        """Insert or replace a document and its embedding."""
        await self._run(
            "execute",
            """
            INSERT INTO documents (
                uid, content_type, locale, title, url, content, metadata,
                embedding, updated_at
            ) VALUES ($1, $2, $3, $4, $5, $6, $7::jsonb, $8, now())
            ON CONFLICT (uid) DO UPDATE SET
                content_type = EXCLUDED.content_type,
                locale = EXCLUDED.locale,
                title = EXCLUDED.title,
                url = EXCLUDED.url,
                content = EXCLUDED.content,
                metadata = EXCLUDED.metadata,
                embedding = EXCLUDED.embedding,
                updated_at = now()
            """,
            document["uid"],
            document.get("content_type"),
            document.get("locale"),
            document.get("title"),
            document.get("url"),
            document.get("content"),
            json.dumps(document.get("metadata") or {}),
            embedding,
        )

    async def delete_document(self, uid: str) -> bool:
        status = await self._run("execute", "DELETE FROM documents WHERE uid = $1", uid)
        # asyncpg returns the command tag, e.g. "DELETE 1"
        return status.split()[-1] != "0"

    async def record_search(
        self, query: str, results_count: int, filters: Optional[Dict[str, Any]] = None
    ) -> None:
        await self._run(
            "execute",
            "INSERT INTO search_analytics (query, results_count, filters) "
            "VALUES ($1, $2, $3::jsonb)",
            query,
            results_count,
            json.dumps(filters or {}),
        )

    async def popular_queries(self, limit: int = 10) -> List[Dict[str, Any]]:
        rows = await self._run(
            "fetch",
            """
            SELECT query, COUNT(*) AS searches, AVG(results_count) AS avg_results
            FROM search_analytics
            GROUP BY query
            ORDER BY searches DESC, query
            LIMIT $1
            """,
            limit,
        )
        return [
            {
                "query": row["query"],
                "searches": int(row["searches"]),
                "avg_results": float(row["avg_results"] or 0),
            }
            for row in rows
        ]

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None
