"""Error handling decorators"""

import inspect
from collections.abc import Awaitable, Callable
from functools import wraps
from typing import Any, ParamSpec, Protocol, TypeVar, cast

from .base import ApplicationError, ErrorLevel
from .error_context import ErrorContextManager
from .logging import get_logger

logger = get_logger(__name__)
P = ParamSpec("P")
T = TypeVar("T")


class ErrorHandler(Protocol):
    """Custom sink for errors caught by with_error_handling"""

    def handle(
        self,
        error: Exception,
        level: ErrorLevel,
        context: dict[str, Any],
    ) -> None: ...


def _report(
    func: Callable[..., Any],
    error: Exception,
    fallback_level: ErrorLevel,
    context: dict[str, Any],
    error_handler: ErrorHandler | None,
) -> None:
    level = error.level if isinstance(error, ApplicationError) else fallback_level
    if error_handler:
        error_handler.handle(error, level, context)
        return
    logger.log(
        level.to_logging_level(),
        f"Error in {func.__name__}: {error!s}",
        error_context=context,
        exc_info=level in (ErrorLevel.ERROR, ErrorLevel.CRITICAL),
    )


def with_error_handling(
    error_level: ErrorLevel = ErrorLevel.ERROR,
    reraise: bool = True,
    error_handler: ErrorHandler | None = None,
) -> Callable[[Callable[P, T]], Callable[P, T]]:
    """Decorator for handling errors in functions.

    ApplicationError instances are logged at their own level, anything else
    at ``error_level``.

    Args:
        error_level: Severity level for non-application errors
        reraise: Whether to re-raise the error after handling
        error_handler: Optional custom error handler

    Returns:
        Decorated function with error handling. When ``reraise`` is False the
        wrapper returns None after a failure.
    """

    def decorator(func: Callable[P, T]) -> Callable[P, T]:
        original_signature = inspect.signature(func)

        if inspect.iscoroutinefunction(func):

            @wraps(func)
            async def async_wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
                try:
                    return await cast("Callable[P, Awaitable[T]]", func)(*args, **kwargs)
                except Exception as e:
                    async with ErrorContextManager(e, function=func.__name__) as ctx:
                        _report(func, e, error_level, ctx.to_dict(), error_handler)
                        if reraise:
                            raise
                        return cast("T", None)

            async_wrapper.__signature__ = original_signature  # type: ignore[attr-defined]
            return cast("Callable[P, T]", async_wrapper)

        @wraps(func)
        def sync_wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            try:
                return func(*args, **kwargs)
            except Exception as e:
                with ErrorContextManager(e, function=func.__name__) as ctx:
                    _report(func, e, error_level, ctx.to_dict(), error_handler)
                    if reraise:
                        raise
                    return cast("T", None)

        sync_wrapper.__signature__ = original_signature  # type: ignore[attr-defined]
        return sync_wrapper

    return decorator
