import json
import warnings

import httpx
import openai
import pytest
import respx
from tenacity import wait_none

from semantic_search_gateway.config import Settings
from semantic_search_gateway.core.embedding import (
    MAX_TOKENS,
    EmbeddingClient,
    num_tokens_from_string,
    prepare_text,
    truncate_text_to_tokens,
)
from semantic_search_gateway.errors import EmbeddingError, ErrorKind

BASE_URL = "https://api.openai.com/v1"
EMBEDDINGS_URL = f"{BASE_URL}/embeddings"


def _embedding_response(vector):
    return httpx.Response(
        200,
        json={
            "object": "list",
            "data": [{"object": "embedding", "index": 0, "embedding": vector}],
            "model": "text-embedding-3-small",
            "usage": {"prompt_tokens": 2, "total_tokens": 2},
        },
    )


def _error_response(status_code, message="provider said no"):
    return httpx.Response(
        status_code, json={"error": {"message": message, "type": "error", "code": None}}
    )


@pytest.fixture
def embedding_client():
    client = openai.AsyncClient(api_key="sk-test", base_url=BASE_URL, max_retries=0)
    return EmbeddingClient(client, "text-embedding-3-small", wait=wait_none())


def test_num_tokens_from_string():
    text = "This is a test."
    assert num_tokens_from_string(text) == 5


def test_truncate_text_to_tokens():
    long_text = "test " * 10000
    truncated = truncate_text_to_tokens(long_text)
    assert num_tokens_from_string(truncated) <= MAX_TOKENS


def test_prepare_text_collapses_whitespace():
    assert prepare_text("  content\n\tmodeling  ") == "content modeling"


@pytest.mark.parametrize("text", ["", "   ", "\n\t"])
def test_prepare_text_rejects_empty_input(text):
    with pytest.raises(EmbeddingError) as exc_info:
        prepare_text(text)

    assert exc_info.value.kind == ErrorKind.BAD_REQUEST


def test_prepare_text_truncates_long_input():
    with warnings.catch_warnings(record=True) as w:
        warnings.simplefilter("always")
        text = prepare_text("test " * 10000)

    assert len(w) == 1
    assert "truncated" in str(w[0].message).lower()
    assert num_tokens_from_string(text) <= MAX_TOKENS


@pytest.mark.asyncio
@respx.mock
async def test_generate_embedding(embedding_client):
    route = respx.post(EMBEDDINGS_URL).mock(return_value=_embedding_response([0.1, 0.2]))

    result = await embedding_client.generate_embedding("test query")

    assert result == [0.1, 0.2]
    sent = json.loads(route.calls.last.request.content)
    assert sent["input"] == ["test query"]
    assert sent["model"] == "text-embedding-3-small"
    assert "dimensions" not in sent


@pytest.mark.asyncio
@respx.mock
async def test_dimensions_are_forwarded():
    client = openai.AsyncClient(api_key="sk-test", base_url=BASE_URL, max_retries=0)
    embedder = EmbeddingClient(client, "text-embedding-3-small", dimensions=256)
    route = respx.post(EMBEDDINGS_URL).mock(return_value=_embedding_response([0.3]))

    await embedder.generate_embedding("test")

    assert json.loads(route.calls.last.request.content)["dimensions"] == 256


@pytest.mark.asyncio
@respx.mock
async def test_rate_limit_is_retried(embedding_client):
    route = respx.post(EMBEDDINGS_URL).mock(
        side_effect=[_error_response(429, "slow down"), _embedding_response([0.4, 0.5])]
    )

    result = await embedding_client.generate_embedding("test text")

    assert result == [0.4, 0.5]
    assert route.call_count == 2


@pytest.mark.asyncio
@respx.mock
async def test_rate_limit_retries_exhausted(embedding_client):
    route = respx.post(EMBEDDINGS_URL).mock(return_value=_error_response(429))

    with pytest.raises(EmbeddingError, match="after multiple retries") as exc_info:
        await embedding_client.generate_embedding("test text")

    assert exc_info.value.kind == ErrorKind.UPSTREAM
    assert route.call_count == embedding_client.max_attempts


@pytest.mark.asyncio
@respx.mock
async def test_status_error_hides_provider_body(embedding_client):
    route = respx.post(EMBEDDINGS_URL).mock(
        return_value=_error_response(401, "Incorrect API key provided: sk-test")
    )

    with pytest.raises(EmbeddingError) as exc_info:
        await embedding_client.generate_embedding("test text")

    assert str(exc_info.value) == "Embedding provider returned HTTP 401"
    assert "sk-test" not in str(exc_info.value)
    # ↳ Only rate limits are retried
    assert route.call_count == 1


@pytest.mark.asyncio
@respx.mock
async def test_timeout_maps_to_timeout_kind(embedding_client):
    respx.post(EMBEDDINGS_URL).mock(side_effect=httpx.ReadTimeout("timed out"))

    with pytest.raises(EmbeddingError) as exc_info:
        await embedding_client.generate_embedding("test text")

    assert exc_info.value.kind == ErrorKind.TIMEOUT
    assert exc_info.value.status_code == 504


@pytest.mark.asyncio
@respx.mock
async def test_connection_error(embedding_client):
    respx.post(EMBEDDINGS_URL).mock(side_effect=httpx.ConnectError("refused"))

    with pytest.raises(EmbeddingError, match="Could not reach"):
        await embedding_client.generate_embedding("test text")


@pytest.mark.asyncio
@respx.mock
async def test_empty_text_never_reaches_provider(embedding_client):
    route = respx.post(EMBEDDINGS_URL).mock(return_value=_embedding_response([0.1]))

    with pytest.raises(EmbeddingError):
        await embedding_client.generate_embedding("   ")

    assert not route.called


@pytest.mark.asyncio
async def test_from_settings():
    settings = Settings(
        _env_file=None,
        openai_api_key="sk-configured",
        embedding_model="text-embedding-3-large",
        embedding_dimensions=1024,
        downstream_timeout_seconds=7,
    )

    embedder = EmbeddingClient.from_settings(settings)

    assert embedder.model == "text-embedding-3-large"
    assert embedder.dimensions == 1024
    assert embedder.client.api_key == "sk-configured"
    assert embedder.client.max_retries == 0
    assert embedder.client.timeout == 7
    await embedder.close()
