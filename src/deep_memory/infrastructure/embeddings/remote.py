"""OpenAI-compatible embedding endpoint over httpx."""

import time
from typing import Any

import httpx

from deep_memory.core.base import ServiceErrorDetails
from deep_memory.core.circuit_breaker import CircuitBreaker, RetryWithCircuitBreaker
from deep_memory.core.errors import (
    AuthenticationError,
    MalformedResponseError,
    RateLimitError,
    ServiceUnavailableError,
    TimeoutError,
    TransportError,
)
from deep_memory.core.logging import get_logger

logger = get_logger(__name__)


class RemoteEmbeddingService:
    """Embeds text by POSTing ``{model, input}`` to an embeddings endpoint.

    Wire and status failures surface as TransportError subclasses; a 2xx
    body without usable vectors surfaces as MalformedResponseError.
    """

    service_name = "remote_embeddings"

    def __init__(
        self,
        url: str,
        api_key: str,
        model: str,
        dimensions: int | None = None,
        timeout: float = 10.0,
        retry_handler: RetryWithCircuitBreaker | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the remote embedding service.

        Args:
            url: Full URL of the embeddings endpoint
            api_key: Bearer token; empty means no Authorization header
            model: Model name sent with every request
            dimensions: Requested output size, sent as ``dimensions`` when set
            timeout: Per-request timeout in seconds
            retry_handler: Retry and circuit breaking policy
            client: Shared httpx client; one is created (and owned) otherwise
        """
        self.url = url
        self.model = model
        self.dimensions = dimensions
        self.timeout = timeout
        self._headers = {"Content-Type": "application/json"}
        if api_key:
            self._headers["Authorization"] = f"Bearer {api_key}"
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._retry_handler = retry_handler or RetryWithCircuitBreaker(
            circuit_breaker=CircuitBreaker(
                name=self.service_name,
                expected_exception_types=(TransportError,),
            ),
        )

    def _details(self, operation: str, status_code: int | None = None, latency_ms: float | None = None) -> ServiceErrorDetails:
        return ServiceErrorDetails(
            source="RemoteEmbeddingService",
            operation=operation,
            service_name=self.service_name,
            endpoint=self.url,
            status_code=status_code,
            latency_ms=latency_ms,
        )

    async def _request(self, payload: dict[str, Any]) -> Any:
        start = time.perf_counter()
        try:
            response = await self._client.post(self.url, json=payload, headers=self._headers, timeout=self.timeout)
        except httpx.TimeoutException as e:
            raise TimeoutError(
                message=f"Embedding request timed out: {e!s}",
                details=self._details("post", status_code=408),
            ) from e
        except httpx.HTTPError as e:
            raise ServiceUnavailableError(
                message=f"Embedding request failed: {e!s}",
                details=self._details("post"),
            ) from e

        latency_ms = (time.perf_counter() - start) * 1000
        status = response.status_code
        if status == 429:
            raise RateLimitError("Rate limit exceeded for embeddings API", self._details("post", status, latency_ms))
        if status in (401, 403):
            raise AuthenticationError("Authentication failed for embeddings API", self._details("post", status, latency_ms))
        if status >= 500:
            raise ServiceUnavailableError(
                f"Embeddings API returned {status}",
                self._details("post", status, latency_ms),
            )
        if status >= 400:
            raise TransportError(
                f"Embeddings API rejected the request with {status}: {response.text[:200]}",
                self._details("post", status, latency_ms),
            )

        try:
            return response.json()
        except ValueError as e:
            raise MalformedResponseError(
                "Embeddings API returned a non-JSON body",
                self._details("parse", status, latency_ms),
            ) from e

    def _parse(self, body: Any, expected: int) -> list[list[float]]:
        vectors: list[Any]
        if isinstance(body, dict) and isinstance(body.get("data"), list):
            items = body["data"]
            if all(isinstance(item, dict) and "index" in item for item in items):
                items = sorted(items, key=lambda item: item["index"])
            vectors = [item.get("embedding") if isinstance(item, dict) else None for item in items]
        elif isinstance(body, dict) and "embedding" in body:
            vectors = [body["embedding"]]
        else:
            raise MalformedResponseError("Response carries neither 'data' nor 'embedding'", self._details("parse", 200))

        if len(vectors) != expected:
            raise MalformedResponseError(
                f"Expected {expected} embeddings, got {len(vectors)}",
                self._details("parse", 200),
            )
        parsed: list[list[float]] = []
        for vector in vectors:
            if not isinstance(vector, list) or not vector or not all(isinstance(x, int | float) for x in vector):
                raise MalformedResponseError("Embedding is not a non-empty list of numbers", self._details("parse", 200))
            parsed.append([float(x) for x in vector])
        return parsed

    def _payload(self, model_input: str | list[str]) -> dict[str, Any]:
        payload: dict[str, Any] = {"model": self.model, "input": model_input}
        if self.dimensions:
            payload["dimensions"] = self.dimensions
        return payload

    async def embed_text(self, text: str) -> list[float]:
        body = await self._retry_handler.call_async(self._request, self._payload(text))
        return self._parse(body, expected=1)[0]

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        body = await self._retry_handler.call_async(self._request, self._payload(texts))
        return self._parse(body, expected=len(texts))

    def get_model_dimensions(self) -> int:
        return self.dimensions or 1536

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
