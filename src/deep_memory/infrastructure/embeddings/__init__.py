from .cache import EmbeddingCache
from .factory import EmbeddingServiceBuilder, create_vectorizer
from .fallback import FallbackEmbedder
from .local import LocalEmbeddingService
from .remote import RemoteEmbeddingService
from .vectorizer import EmbeddingServiceProvider, Vectorizer
from .voyage import VoyageEmbeddingService

__all__ = [
    "EmbeddingCache",
    "EmbeddingServiceBuilder",
    "EmbeddingServiceProvider",
    "FallbackEmbedder",
    "LocalEmbeddingService",
    "RemoteEmbeddingService",
    "Vectorizer",
    "VoyageEmbeddingService",
    "create_vectorizer",
]
