"""Async Ollama HTTP client for chat completions and batched embeddings.

The client only speaks HTTP: it raises ``httpx`` errors unchanged and
leaves mapping them to domain errors to its callers.
"""
from typing import Any, Dict, List, Optional

import httpx
import structlog

from coursechat import config

logger = structlog.get_logger()

LIST_MODELS_TIMEOUT = 5.0


class OllamaClient:
    """Thin async wrapper around the Ollama REST API."""

    def __init__(self, base_url: str = None, timeout: float = None):
        """
        Args:
            base_url: Ollama API base URL (default from config)
            timeout: Default request timeout in seconds (default from config)
        """
        self.base_url = (base_url or config.OLLAMA_BASE_URL).rstrip("/")
        self.timeout = timeout or config.LLM_TIMEOUT

    async def _request(
        self,
        method: str,
        path: str,
        payload: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            async with httpx.AsyncClient(timeout=timeout or self.timeout) as client:
                response = await client.request(method, url, json=payload)
                response.raise_for_status()
                return response.json()
        except httpx.HTTPStatusError as e:
            logger.error(
                "ollama_http_error",
                path=path,
                status_code=e.response.status_code,
                error=str(e),
            )
            raise
        except httpx.HTTPError as e:
            logger.error(
                "ollama_request_failed",
                path=path,
                base_url=self.base_url,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise

    async def chat(
        self,
        messages: List[Dict[str, str]],
        model: str = None,
        temperature: Optional[float] = None,
        timeout: Optional[float] = None,
    ) -> Dict[str, Any]:
        """Non-streaming chat completion.

        Returns:
            Ollama response dict; the answer is in ``["message"]["content"]``

        Raises:
            httpx.HTTPError: On transport or HTTP status errors
        """
        model = model or config.CHAT_MODEL
        payload: Dict[str, Any] = {"model": model, "messages": messages, "stream": False}
        if temperature is not None:
            payload["options"] = {"temperature": temperature}

        logger.info("ollama_chat_request", model=model, message_count=len(messages))
        data = await self._request("POST", "/api/chat", payload, timeout)
        logger.info(
            "ollama_chat_response",
            model=model,
            response_length=len(data.get("message", {}).get("content", "")),
        )
        return data

    async def embed(
        self,
        inputs: List[str],
        model: str = None,
        timeout: Optional[float] = None,
    ) -> Dict[str, Any]:
        """Embed a batch of texts with one ``/api/embed`` call.

        Returns:
            Ollama response dict with one vector per input under ``"embeddings"``
        """
        model = model or config.EMBEDDING_MODEL
        logger.debug(
            "ollama_embed_request",
            model=model,
            input_count=len(inputs),
            total_length=sum(len(text) for text in inputs),
        )
        data = await self._request(
            "POST", "/api/embed", {"model": model, "input": list(inputs)}, timeout
        )
        logger.debug("ollama_embed_response", model=model, vector_count=len(data.get("embeddings", [])))
        return data

    async def list_models(self) -> List[str]:
        """Names of the models installed on the Ollama server."""
        data = await self._request("GET", "/api/tags", timeout=LIST_MODELS_TIMEOUT)
        return [model["name"] for model in data.get("models", [])]
