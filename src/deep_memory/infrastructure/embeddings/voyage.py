"""Voyage AI embedding service."""

from typing import Any, cast

import voyageai

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

MODEL_DIMENSIONS = {
    "voyage-3": 1024,
    "voyage-3-large": 1024,
    "voyage-3-lite": 512,
    "voyage-code-3": 1024,
    "voyage-large-2": 1536,
    "voyage-code-2": 1536,
}


class VoyageEmbeddingService:
    """Voyage AI embedding backend.

    The client's own retries are disabled; retries, backoff and circuit
    breaking happen in ``RetryWithCircuitBreaker`` like the other backends.
    """

    def __init__(
        self,
        api_key: str,
        model: str = "voyage-3",
        timeout: float = 10.0,
        retry_handler: RetryWithCircuitBreaker | None = None,
        client: Any | None = None,
    ) -> None:
        """Initialize the Voyage embedding service.

        Args:
            api_key: Voyage API key
            model: Voyage model name
            timeout: Per-request timeout in seconds
            retry_handler: Retry and circuit breaking policy
            client: Pre-built ``voyageai.AsyncClient`` (tests inject a stub)

        Raises:
            AuthenticationError: If no API key is available
        """
        if not api_key and client is None:
            raise AuthenticationError(
                message="Voyage API key not configured",
                details=ServiceErrorDetails(
                    source="VoyageEmbeddingService",
                    operation="initialization",
                    service_name="Voyage AI",
                ),
            )

        self.model = model
        # voyageai client doesn't expose a public type
        self.client = client or voyageai.AsyncClient(api_key=api_key, max_retries=0, timeout=timeout)
        self._retry_handler = retry_handler or RetryWithCircuitBreaker(
            circuit_breaker=CircuitBreaker(
                name="voyage_api",
                failure_threshold=3,
                recovery_timeout=30.0,
                expected_exception_types=(TransportError,),
            ),
        )

    async def _call_voyage_api_internal(self, texts: list[str]) -> list[list[float]]:
        """Single Voyage call, wrapped by the retry handler."""
        try:
            response = await self.client.embed(texts=texts, model=self.model)
        except Exception as e:
            raise self._handle_error(e, texts) from e

        embeddings = getattr(response, "embeddings", None)
        if not embeddings or len(embeddings) != len(texts):
            raise MalformedResponseError(
                message="Voyage API returned incomplete embeddings",
                details=ServiceErrorDetails(
                    source="VoyageEmbeddingService",
                    operation="embed_batch",
                    service_name="Voyage AI",
                    endpoint="/embeddings",
                    status_code=200,
                ),
            )
        return [cast("list[float]", list(embedding)) for embedding in embeddings]

    async def embed_text(self, text: str) -> list[float]:
        return (await self.embed_batch([text]))[0]

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """
        Generate embedding vectors for a batch of texts with circuit breaker and retry logic.

        Raises:
            TransportError: If the service could not be reached or refused the call
            MalformedResponseError: If the service answered without usable vectors
        """
        if not texts:
            return []
        return await self._retry_handler.call_async(self._call_voyage_api_internal, texts)

    def _handle_error(self, e: Exception, texts: list[str]) -> TransportError:
        """Map client errors to our exception types."""
        error_msg = str(e).lower()

        def details(status_code: int | None) -> ServiceErrorDetails:
            return ServiceErrorDetails(
                source="VoyageEmbeddingService",
                operation="embed_batch",
                service_name="Voyage AI",
                endpoint="/embeddings",
                status_code=status_code,
            )

        if "rate limit" in error_msg or "too many requests" in error_msg:
            return RateLimitError("Rate limit exceeded for embeddings API", details(429))
        if "timeout" in error_msg or "timed out" in error_msg:
            return TimeoutError("Embeddings API request timed out", details(408))
        if "auth" in error_msg or "api key" in error_msg:
            return AuthenticationError("Authentication failed for embeddings API", details(401))
        if "connection" in error_msg or "unavailable" in error_msg or "server" in error_msg:
            return ServiceUnavailableError(f"Embeddings API unavailable: {e!s}", details(503))

        logger.debug("Unclassified Voyage error", batch_size=len(texts), model=self.model, error=str(e))
        return TransportError(f"Failed to generate embeddings: {e!s}", details(None))

    def get_model_dimensions(self) -> int:
        return MODEL_DIMENSIONS.get(self.model, 1024)
