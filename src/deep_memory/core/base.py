"""Base error classes and enums"""

import logging
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Self

from logfire.integrations.pydantic import PluginSettings
from pydantic import BaseModel, Field, field_serializer


class ErrorLevel(str, Enum):
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"

    def to_logging_level(self) -> int:
        """Convert ErrorLevel to logging level"""
        return {
            ErrorLevel.DEBUG: logging.DEBUG,
            ErrorLevel.INFO: logging.INFO,
            ErrorLevel.WARNING: logging.WARNING,
            ErrorLevel.ERROR: logging.ERROR,
            ErrorLevel.CRITICAL: logging.CRITICAL,
        }[self]


class ErrorCode(str, Enum):
    """Error codes for the memory subsystem."""

    # General Errors (1xxx)
    UNKNOWN = "1000"
    INVALID_INPUT = "1002"
    NOT_FOUND = "1003"
    PROCESSING_FAILED = "1004"
    CONFIG_INVALID = "1005"
    TIMEOUT = "1007"

    # Remote service Errors (2xxx)
    AUTHENTICATION_FAILED = "2001"
    RATE_LIMITED = "2003"
    CIRCUIT_OPEN = "2005"
    MALFORMED_RESPONSE = "2006"

    # Lifecycle Errors (3xxx)
    INVALID_MIGRATION = "3001"
    SWEEP_FAILED = "3002"

    # AI/ML Errors (4xxx)
    MODEL_ERROR = "4001"
    MODEL_INITIALIZATION_ERROR = "4002"
    EMBEDDING_FAILED = "4003"

    # Infrastructure Errors (5xxx)
    SERVICE_UNAVAILABLE = "5002"

    # Storage Errors (6xxx)
    STORAGE_ERROR = "6001"
    STORAGE_READ = "6002"
    STORAGE_WRITE = "6003"
    STORAGE_CORRUPT = "6004"


class ErrorDetails(BaseModel, plugin_settings=PluginSettings(logfire={"record": "all"})):
    """Base model for structured error details"""

    source: str = Field(description="Component or module where the error occurred")
    operation: str = Field(description="Operation being performed when the error occurred")
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC), description="When the error occurred")

    @field_serializer("timestamp")
    def serialize_timestamp(self, timestamp: datetime) -> str:
        return timestamp.isoformat()


class ValidationErrorDetails(ErrorDetails):
    """Details for validation-related errors"""

    field: str | None = Field(None, description="Field that failed validation")
    actual_value: Any = Field(None, description="Value that failed validation")
    constraint: str | None = Field(None, description="Constraint that was violated")


class ServiceErrorDetails(ErrorDetails):
    """Details for errors raised while talking to an embedding service"""

    service_name: str = Field(description="Name of the service that failed")
    endpoint: str | None = Field(None, description="Service endpoint that was called")
    status_code: int | None = Field(None, description="HTTP or service status code")
    latency_ms: float | None = Field(None, description="Response time in milliseconds")


class StorageErrorDetails(ErrorDetails):
    """Details for persistence collaborator errors"""

    key: str | None = Field(None, description="Storage key involved")
    chat_id: str | None = Field(None, description="Conversation the key belongs to")


class MigrationErrorDetails(ErrorDetails):
    """Details for rejected tier moves"""

    memory_id: str = Field(description="Memory that was being moved")
    from_layer: str | None = Field(None, description="Tier the move started from")
    to_layer: str | None = Field(None, description="Requested destination tier")


class ApplicationError(Exception):
    """Base class for all memory subsystem errors"""

    def __init__(
        self,
        message: str,
        code: ErrorCode,
        level: ErrorLevel = ErrorLevel.ERROR,
        details: ErrorDetails | dict[str, Any] | None = None,
    ):
        self.message = message
        self.code = code
        self.level = level
        self.extra: dict[str, Any] = {}

        if details is None:
            self.details = ErrorDetails(source="unknown", operation="unknown")
        elif isinstance(details, dict):
            details = dict(details)
            source = details.pop("source", "unknown")
            operation = details.pop("operation", "unknown")
            self.details = ErrorDetails(source=source, operation=operation)
            self.extra = details
        else:
            self.details = details

        super().__init__(message)

    @classmethod
    def with_details(cls, message: str, details: ErrorDetails, **kwargs: Any) -> Self:
        """Create an error with specific details model"""
        return cls(message=message, details=details, **kwargs)
