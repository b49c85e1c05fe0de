from .base import ApplicationError, ErrorCode, ErrorLevel
from .circuit_breaker import CircuitBreaker, CircuitState, RetryWithCircuitBreaker
from .config import Settings, get_settings
from .errors import (
    AuthenticationError,
    CircuitOpenError,
    MalformedResponseError,
    MigrationError,
    ModelLoadError,
    PersistenceError,
    ProcessingError,
    RateLimitError,
    ServiceUnavailableError,
    TimeoutError,
    TransportError,
    ValidationError,
)
