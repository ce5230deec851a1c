"""Error boundary decorators that keep one failing handler from taking down the loop.

A downstream handler that raises must never affect another client's link or
the publisher, so every consumer-supplied callback and every per-connection
coroutine is run behind one of these boundaries.
"""

import asyncio
import functools
import logging
from collections.abc import Callable
from typing import Any, TypeVar

from .logger import get_logger

T = TypeVar("T")
logger = get_logger(__name__)


def error_boundary(
    *,
    log_level: int = logging.ERROR,
    reraise: bool = False,
    default_return: Any = None,
    catch_exceptions: tuple[type[BaseException], ...] = (Exception,),
    ignore_exceptions: tuple[type[BaseException], ...] = (asyncio.CancelledError,),
) -> Callable:
    """Wrap a sync or async callable so that caught exceptions are logged instead of raised.

    Args:
        log_level: Logging level used when an exception is caught
        reraise: Re-raise after logging (default: False)
        default_return: Value returned when an exception is swallowed
        catch_exceptions: Exceptions handled by the boundary
        ignore_exceptions: Exceptions that always propagate (default: CancelledError)

    Example:
        @error_boundary(log_level=logging.WARNING)
        async def on_event(event):
            await render(event)
    """

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        def _log(exc: BaseException) -> None:
            logger.log(
                log_level,
                "Error in boundary-wrapped callable",
                function=func.__qualname__,
                module=func.__module__,
                error_type=type(exc).__name__,
                error=str(exc),
                exc_info=True,
            )

        if asyncio.iscoroutinefunction(func):

            @functools.wraps(func)
            async def async_wrapper(*args, **kwargs):
                try:
                    return await func(*args, **kwargs)
                except ignore_exceptions:
                    raise
                except catch_exceptions as e:
                    _log(e)
                    if reraise:
                        raise
                    return default_return

            return async_wrapper

        @functools.wraps(func)
        def sync_wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except ignore_exceptions:
                raise
            except catch_exceptions as e:
                _log(e)
                if reraise:
                    raise
                return default_return

        return sync_wrapper

    return decorator


def safe_handler(func: Callable) -> Callable:
    """Log and swallow failures. Used for event handlers and per-connection tasks."""
    return error_boundary(log_level=logging.WARNING)(func)


def critical_operation(func: Callable) -> Callable:
    """Log failures with full context and still raise them to the caller."""
    return error_boundary(log_level=logging.ERROR, reraise=True)(func)


async def call_handler(handler: Callable[..., Any], *args: Any) -> Any:
    """Invoke a handler that may be sync or async behind a warning-level boundary."""

    @safe_handler
    async def _invoke():
        result = handler(*args)
        if asyncio.iscoroutine(result):
            return await result
        return result

    return await _invoke()
