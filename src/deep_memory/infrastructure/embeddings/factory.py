"""Construction of the Vectorizer from settings.

Backends are built here and injected, never looked up from globals.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from deep_memory.core.base import ServiceErrorDetails
from deep_memory.core.circuit_breaker import CircuitBreaker, RetryWithCircuitBreaker
from deep_memory.core.config import VectorizerSettings
from deep_memory.core.decorators import with_error_handling
from deep_memory.core.errors import AuthenticationError, TransportError
from deep_memory.core.logging import get_logger

from .cache import EmbeddingCache
from .fallback import FallbackEmbedder
from .local import LocalEmbeddingService
from .remote import RemoteEmbeddingService
from .vectorizer import EmbeddingServiceProvider, Vectorizer
from .voyage import VoyageEmbeddingService

if TYPE_CHECKING:
    import httpx

logger = get_logger(__name__)


class EmbeddingServiceBuilder:
    """Builder for a configured Vectorizer.

    Example:
        vectorizer = EmbeddingServiceBuilder(settings.vectorizer).with_strategy("remote").build()
    """

    def __init__(self, settings: VectorizerSettings | None = None):
        self.settings = settings or VectorizerSettings()
        self._strategy = self.settings.strategy
        self._fallback_enabled = self.settings.fallback_enabled
        self._primary: EmbeddingServiceProvider | None = None
        self._http_client: httpx.AsyncClient | None = None
        self._cache: EmbeddingCache | None = None

    def with_strategy(self, strategy: str) -> EmbeddingServiceBuilder:
        """Select the primary backend: remote, voyage, local or fallback."""
        self._strategy = strategy
        return self

    def with_fallback(self, enabled: bool = True) -> EmbeddingServiceBuilder:
        self._fallback_enabled = enabled
        return self

    def with_backend(self, backend: EmbeddingServiceProvider) -> EmbeddingServiceBuilder:
        """Use an already constructed primary backend."""
        self._primary = backend
        return self

    def with_http_client(self, client: httpx.AsyncClient) -> EmbeddingServiceBuilder:
        self._http_client = client
        return self

    def with_cache(self, cache: EmbeddingCache) -> EmbeddingServiceBuilder:
        self._cache = cache
        return self

    def _retry_handler(self, name: str) -> RetryWithCircuitBreaker:
        s = self.settings
        return RetryWithCircuitBreaker(
            circuit_breaker=CircuitBreaker(
                name=name,
                failure_threshold=s.circuit_failure_threshold,
                recovery_timeout=s.circuit_recovery_timeout,
                expected_exception_types=(TransportError,),
            ),
            max_retries=s.max_retries,
            initial_delay=s.initial_backoff,
            backoff_factor=s.backoff_factor,
            max_delay=s.max_backoff,
        )

    def _build_primary(self) -> EmbeddingServiceProvider | None:
        s = self.settings
        if self._primary is not None:
            return self._primary
        if self._strategy == "fallback":
            return None
        if self._strategy == "remote":
            api_key = s.remote_api_key.get_secret_value()
            if not api_key:
                logger.warning("Remote embedding API key is empty, requests are sent unauthenticated", url=s.remote_url)
            return RemoteEmbeddingService(
                url=s.remote_url,
                api_key=api_key,
                model=s.remote_model,
                dimensions=s.dimensions,
                timeout=s.request_timeout,
                retry_handler=self._retry_handler("remote_embeddings"),
                client=self._http_client,
            )
        if self._strategy == "voyage":
            return VoyageEmbeddingService(
                api_key=s.voyage_api_key.get_secret_value(),
                model=s.voyage_model,
                timeout=s.request_timeout,
                retry_handler=self._retry_handler("voyage_api"),
            )
        if self._strategy == "local":
            return LocalEmbeddingService(model_name=s.local_model, dimensions=s.dimensions)
        raise ValueError(f"Unknown vectorizer strategy: {self._strategy}")

    @with_error_handling(reraise=True)
    def build(self) -> Vectorizer:
        """Build the configured Vectorizer.

        Raises:
            AuthenticationError: If the voyage strategy has no key and no fallback
            ValueError: For an unknown strategy
        """
        try:
            primary = self._build_primary()
        except AuthenticationError:
            if not self._fallback_enabled:
                raise
            logger.warning("Primary embedding backend unavailable, using fallback only", strategy=self._strategy)
            primary = None

        fallback = FallbackEmbedder(dimensions=self.settings.dimensions) if self._fallback_enabled else None
        if primary is None and fallback is None:
            raise AuthenticationError(
                message="No embedding backend could be configured",
                details=ServiceErrorDetails(
                    source="embedding_builder",
                    operation="build",
                    service_name=self._strategy,
                ),
            )

        cache = self._cache or EmbeddingCache(max_size=self.settings.cache_max_size)
        logger.info(
            "Vectorizer configured",
            strategy=self._strategy,
            primary=primary.model if primary else None,
            fallback=fallback is not None,
        )
        return Vectorizer(
            primary=primary,
            fallback=fallback,
            cache=cache,
            embed_timeout=self.settings.embed_timeout,
            strategy=self._strategy,
        )


def create_vectorizer(
    settings: VectorizerSettings | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> Vectorizer:
    """Convenience function to build a Vectorizer from settings."""
    builder = EmbeddingServiceBuilder(settings)
    if http_client is not None:
        builder.with_http_client(http_client)
    return builder.build()
