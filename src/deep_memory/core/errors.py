"""Specific error types for the memory subsystem."""

from .base import (
    ApplicationError,
    ErrorCode,
    ErrorLevel,
    MigrationErrorDetails,
    ServiceErrorDetails,
    StorageErrorDetails,
    ValidationErrorDetails,
)


class ValidationError(ApplicationError):
    """Content rejected by the admissibility filter.

    Never user-facing: ingestion catches it and skips the content.
    """

    def __init__(self, message: str, details: ValidationErrorDetails | dict | None = None):
        super().__init__(
            message=message,
            code=ErrorCode.INVALID_INPUT,
            level=ErrorLevel.DEBUG,
            details=details,
        )


class ProcessingError(ApplicationError):
    """General processing errors."""

    def __init__(self, message: str, details: dict | ServiceErrorDetails | None = None):
        super().__init__(
            message=message,
            code=ErrorCode.PROCESSING_FAILED,
            level=ErrorLevel.ERROR,
            details=details,
        )


class MalformedResponseError(ProcessingError):
    """The embedding service answered successfully but the body carried no usable vectors."""

    def __init__(self, message: str, details: ServiceErrorDetails | None = None):
        super().__init__(message=message, details=details)
        self.code = ErrorCode.MALFORMED_RESPONSE
        self.level = ErrorLevel.WARNING


class ModelLoadError(ProcessingError):
    """A local embedding model could not be loaded."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message=message, details=details)
        self.code = ErrorCode.MODEL_INITIALIZATION_ERROR


class TransportError(ApplicationError):
    """An embedding call failed on the wire or with a non-success status."""

    def __init__(
        self,
        message: str,
        details: ServiceErrorDetails | None = None,
        code: ErrorCode = ErrorCode.EMBEDDING_FAILED,
        level: ErrorLevel = ErrorLevel.WARNING,
    ):
        super().__init__(message=message, code=code, level=level, details=details)

    @property
    def status_code(self) -> int | None:
        return getattr(self.details, "status_code", None)


class RateLimitError(TransportError):
    """Rate limiting errors."""

    def __init__(self, message: str, details: ServiceErrorDetails | None = None):
        super().__init__(message=message, details=details, code=ErrorCode.RATE_LIMITED)


class TimeoutError(TransportError):
    """Timeout errors."""

    def __init__(self, message: str, details: ServiceErrorDetails | None = None):
        super().__init__(message=message, details=details, code=ErrorCode.TIMEOUT)


class ServiceUnavailableError(TransportError):
    """Server-side failure or unreachable service."""

    def __init__(self, message: str, details: ServiceErrorDetails | None = None):
        super().__init__(message=message, details=details, code=ErrorCode.SERVICE_UNAVAILABLE)


class AuthenticationError(TransportError):
    """Authentication-related errors."""

    def __init__(self, message: str, details: ServiceErrorDetails | None = None):
        super().__init__(
            message=message,
            details=details,
            code=ErrorCode.AUTHENTICATION_FAILED,
            level=ErrorLevel.ERROR,
        )


class CircuitOpenError(TransportError):
    """Calls rejected because the circuit breaker is open."""

    def __init__(self, message: str, details: ServiceErrorDetails | None = None):
        super().__init__(message=message, details=details, code=ErrorCode.CIRCUIT_OPEN)


class PersistenceError(ApplicationError):
    """Read or write against the persistence collaborator failed."""

    def __init__(
        self,
        message: str,
        details: StorageErrorDetails | None = None,
        code: ErrorCode = ErrorCode.STORAGE_ERROR,
    ):
        super().__init__(
            message=message,
            code=code,
            level=ErrorLevel.WARNING,
            details=details,
        )


class MigrationError(ApplicationError):
    """A tier move that goes backward or starts from a tier the memory is not in."""

    def __init__(self, message: str, details: MigrationErrorDetails | None = None):
        super().__init__(
            message=message,
            code=ErrorCode.INVALID_MIGRATION,
            level=ErrorLevel.ERROR,
            details=details,
        )
