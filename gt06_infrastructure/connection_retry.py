"""
Connection Retry Utility with Exponential Backoff
Used for RabbitMQ connections and for binding the TCP listener
"""
import asyncio
import logging
import socket
from typing import Callable, Any, Optional, Tuple

import aio_pika.exceptions

logger = logging.getLogger(__name__)

# Transient errors that should trigger a retry
CONNECTION_ERRORS: Tuple[type, ...] = (
    ConnectionError,
    TimeoutError,
    asyncio.TimeoutError,
    OSError,
    socket.gaierror,
    socket.herror,
    aio_pika.exceptions.AMQPConnectionError,
    aio_pika.exceptions.AMQPChannelError,
)


def _describe(error: Exception) -> str:
    """Shorten common connection error messages"""
    error_msg = str(error)
    if isinstance(error, socket.gaierror) or "Name or service not known" in error_msg:
        return "Service not available (DNS/host resolution failed)"
    if "Connection refused" in error_msg:
        return "Connection refused (service not ready)"
    if "timeout" in error_msg.lower():
        return "Connection timeout"
    if "address already in use" in error_msg.lower():
        return "Address already in use"
    return error_msg or type(error).__name__


async def retry_connection(
    func: Callable[..., Any],
    max_retries: int = -1,
    initial_delay: float = 1.0,
    max_delay: float = 60.0,
    exponential_base: float = 2.0,
    should_stop: Optional[Callable[[], bool]] = None,
    *args,
    **kwargs
) -> Any:
    """
    Retry a connection function with exponential backoff.

    Args:
        func: Async function to retry
        max_retries: Maximum number of retry attempts (-1 for infinite)
        initial_delay: Initial delay in seconds
        max_delay: Maximum delay in seconds
        exponential_base: Base for exponential backoff
        should_stop: Optional predicate polled between attempts; True aborts with CancelledError
        *args: Positional arguments to pass to function
        **kwargs: Keyword arguments to pass to function

    Returns:
        Result from function call

    Raises:
        Last exception if max_retries is reached (and not -1)
        asyncio.CancelledError: If cancelled or should_stop() turns True
    """
    attempt = 0

    while True:
        if should_stop and should_stop():
            logger.debug("Shutdown detected in retry loop, stopping connection attempts")
            raise asyncio.CancelledError("Shutdown requested")

        try:
            return await func(*args, **kwargs)
        except asyncio.CancelledError:
            logger.debug("Connection retry cancelled (shutdown requested)")
            raise
        except CONNECTION_ERRORS as e:
            attempt += 1

            if max_retries != -1 and attempt > max_retries:
                logger.error(f"Connection failed after {max_retries} attempts. Last error: {e}")
                raise

            delay = min(initial_delay * (exponential_base ** (attempt - 1)), max_delay)

            # INFO for the first few attempts, WARNING after that
            log_level = logger.info if attempt <= 3 else logger.warning
            log_level(
                f"Connection attempt {attempt} failed: {_describe(e)}. "
                f"Retrying in {delay:.2f}s... "
                f"(max_retries={'infinite' if max_retries == -1 else max_retries})"
            )

            # Sleep in small steps so a shutdown request is noticed quickly
            slept = 0.0
            while slept < delay:
                step = min(0.1, delay - slept)
                await asyncio.sleep(step)
                slept += step
                if should_stop and should_stop():
                    raise asyncio.CancelledError("Shutdown requested")
        except Exception as e:
            logger.error(f"Non-connection error (not retrying): {e}")
            raise
