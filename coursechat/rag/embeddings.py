"""Embedding gateway: text in, fixed-length vectors out.

The model and dimension are pinned when the gateway is built. Failures of
any kind surface as ``EmbeddingError``; nothing is retried or cached here.
"""
import asyncio
from typing import List, Optional

import httpx
import structlog

from coursechat import config
from coursechat.errors import EmbeddingError
from coursechat.llm_client import OllamaClient

logger = structlog.get_logger()

RETRYABLE_STATUS_CODES = {408, 429, 500, 502, 503, 504}


class EmbeddingGateway:
    """Batched access to the embedding model."""

    def __init__(
        self,
        client: OllamaClient,
        model: str = None,
        dimension: int = None,
        timeout: float = None,
    ):
        """Initialize the gateway.

        Args:
            client: Ollama client used for the embed calls
            model: Embedding model name (default from config)
            dimension: Expected vector length (default from config)
            timeout: Seconds allowed per batch call (default from config)
        """
        self.client = client
        self.model = model or config.EMBEDDING_MODEL
        self.dimension = dimension or config.EMBEDDING_DIMENSION
        self.timeout = timeout or config.EMBED_TIMEOUT

    async def embed_many(
        self, texts: List[str], timeout: Optional[float] = None
    ) -> List[List[float]]:
        """Embed a batch of texts with a single provider call.

        Raises:
            EmbeddingError: On provider failure, timeout, or bad vectors
        """
        if not texts:
            return []

        if any(not text or not text.strip() for text in texts):
            raise EmbeddingError("Cannot embed empty text", retryable=False)

        timeout = timeout or self.timeout
        try:
            response = await asyncio.wait_for(
                self.client.embed(texts, model=self.model, timeout=timeout),
                timeout=timeout,
            )
        except asyncio.TimeoutError as e:
            logger.error("embedding_timeout", model=self.model, batch_size=len(texts))
            raise EmbeddingError(
                f"Embedding request timed out after {timeout}s", retryable=True
            ) from e
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            raise EmbeddingError(
                f"Embedding provider returned HTTP {status}",
                retryable=status in RETRYABLE_STATUS_CODES,
            ) from e
        except httpx.HTTPError as e:
            raise EmbeddingError(
                f"Embedding provider unreachable: {e}", retryable=True
            ) from e

        vectors = response.get("embeddings") or []
        if len(vectors) != len(texts):
            raise EmbeddingError(
                f"Expected {len(texts)} embeddings, got {len(vectors)}",
                retryable=False,
            )

        for vector in vectors:
            if len(vector) != self.dimension:
                raise EmbeddingError(
                    f"Embedding dimension mismatch: expected {self.dimension}, "
                    f"got {len(vector)} from model {self.model}",
                    retryable=False,
                )

        logger.debug("embeddings_generated", model=self.model, count=len(vectors))
        return vectors

    async def embed_one(self, text: str, timeout: Optional[float] = None) -> List[float]:
        """Embed a single text."""
        vectors = await self.embed_many([text], timeout=timeout)
        return vectors[0]
