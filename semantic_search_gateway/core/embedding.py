import logging
import warnings
from typing import Optional

import openai
import tiktoken
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)
from tenacity.wait import wait_base

from semantic_search_gateway.config import Settings
from semantic_search_gateway.errors import EmbeddingError, ErrorKind

logger = logging.getLogger(__name__)

# Constants
EMBEDDING_ENCODING = "cl100k_base"
MAX_TOKENS = 8191
MAX_RETRIES = 5
INITIAL_DELAY_SECONDS = 1.0
MAX_DELAY_SECONDS = 16.0


def num_tokens_from_string(string: str, encoding_name: str = EMBEDDING_ENCODING) -> int:
    """Returns the number of tokens in a text string."""
    encoding = tiktoken.get_encoding(encoding_name)
    return len(encoding.encode(string))


def truncate_text_to_tokens(
    string: str, max_tokens: int = MAX_TOKENS, encoding_name: str = EMBEDDING_ENCODING
) -> str:
    """Truncates a text string to a maximum number of tokens."""
    encoding = tiktoken.get_encoding(encoding_name)
    encoded_string = encoding.encode(string)
    return encoding.decode(encoded_string[:max_tokens])


def prepare_text(text: str) -> str:
    """Normalise whitespace and keep the text within the model's token limit."""
    text = " ".join(text.split())
    if not text:
        raise EmbeddingError("Cannot embed empty text", ErrorKind.BAD_REQUEST)

    # A token always spans at least one character, so short inputs skip the tokenizer
    if len(text) > MAX_TOKENS:
        token_count = num_tokens_from_string(text)
        if token_count > MAX_TOKENS:
            warnings.warn(
                f"Text truncated from {token_count} to {MAX_TOKENS} tokens.",
                stacklevel=2,
            )
            text = truncate_text_to_tokens(text)
    return text


class EmbeddingClient:
    """Turns text into vectors using the OpenAI embeddings API.

    Rate-limit responses are retried with exponential backoff; every other
    provider failure is raised as :class:`EmbeddingError` without the
    provider's response body.
    """

    def __init__(
        self,
        client: openai.AsyncClient,
        model: str,
        dimensions: Optional[int] = None,
        max_attempts: int = MAX_RETRIES,
        wait: Optional[wait_base] = None,
    ):
        self.client = client
        self.model = model
        self.dimensions = dimensions
        self.max_attempts = max_attempts
        self.wait = wait or wait_exponential(
            multiplier=INITIAL_DELAY_SECONDS, max=MAX_DELAY_SECONDS
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "EmbeddingClient":
        """Build a client from settings.

        The OpenAI client is created even without a key so the gateway can
        start; calls then fail with an authentication error that the
        diagnostic endpoints report.
        """
        client = openai.AsyncClient(
            api_key=settings.openai_api_key or "missing-api-key",
            timeout=settings.downstream_timeout_seconds,
            # ↳ Retries are handled here so they are logged in one place
            max_retries=0,
        )
        return cls(client, settings.embedding_model, settings.embedding_dimensions)

    async def _create(self, text: str) -> list[float]:
        kwargs = {"input": [text], "model": self.model}
        if self.dimensions:
            kwargs["dimensions"] = self.dimensions
        response = await self.client.embeddings.create(**kwargs)
        if not response.data:
            raise EmbeddingError("Embedding response contained no data")
        return list(response.data[0].embedding)

    async def generate_embedding(self, text: str) -> list[float]:
        """Generate an embedding vector for ``text``."""
        text = prepare_text(text)
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.max_attempts),
                wait=self.wait,
                retry=retry_if_exception_type(openai.RateLimitError),
                before_sleep=before_sleep_log(logger, logging.WARNING),
                reraise=True,
            ):
                with attempt:
                    return await self._create(text)
        except openai.RateLimitError:
            raise EmbeddingError(
                "Failed to get embedding after multiple retries."
            ) from None
        except openai.APITimeoutError:
            raise EmbeddingError(
                "Embedding request timed out", ErrorKind.TIMEOUT
            ) from None
        except openai.APIStatusError as e:
            raise EmbeddingError(
                f"Embedding provider returned HTTP {e.status_code}"
            ) from None
        except openai.APIConnectionError:
            raise EmbeddingError("Could not reach the embedding provider") from None
        raise EmbeddingError("Embedding request was not attempted")

    async def close(self) -> None:
        await self.client.close()
