"""TCP listener for GT06 devices: one asyncio task per connection via a custom handler."""
import asyncio
import logging
from typing import Awaitable, Callable, Optional

from config import Config, ServerParams

logger = logging.getLogger(__name__)

ConnectionHandler = Callable[[asyncio.StreamReader, asyncio.StreamWriter], Awaitable[None]]

# Server reference for graceful shutdown
_server_instance: Optional[asyncio.AbstractServer] = None


def close_tcp_server_sync() -> None:
    """Stop accepting new connections immediately; makes serve_forever() return."""
    if _server_instance and _server_instance.is_serving():
        logger.info("Closing TCP server to stop accepting new connections...")
        _server_instance.close()


async def close_tcp_server() -> None:
    """Close the TCP server and wait (bounded) for it to finish closing."""
    global _server_instance
    if _server_instance is None:
        return

    _server_instance.close()
    timeout = ServerParams.get_float('shutdown.tcp_server_stop_timeout', 1.0)
    try:
        await asyncio.wait_for(_server_instance.wait_closed(), timeout=timeout)
        logger.info("TCP server closed - no longer accepting connections")
    except asyncio.TimeoutError:
        logger.warning(f"TCP server close timed out after {timeout}s, continuing shutdown")
    _server_instance = None


async def create_tcp_server(ip: Optional[str] = None, port: Optional[int] = None,
                            handler: Optional[ConnectionHandler] = None) -> asyncio.AbstractServer:
    """
    Bind the listening socket without serving forever.

    Args:
        ip: IP address to bind to (uses server.ip from config if not provided)
        port: Port to bind to (uses server.tcp_port from config if not provided; 0 picks a free port)
        handler: Connection handler coroutine (required)

    Raises:
        ValueError: If handler is not provided
    """
    if not handler:
        raise ValueError("Handler is required: connections are processed by a custom handler")

    server_config = Config.get_server_config()
    bind_ip = ip or (server_config.get('ip') or '0.0.0.0').strip() or '0.0.0.0'
    bind_port = port if port is not None else server_config.get('tcp_port', 5001)
    backlog = ServerParams.get_int('tcp_server.backlog', 1000)

    logger.info(f"Starting TCP server on {bind_ip}:{bind_port}...")
    server = await asyncio.start_server(handler, bind_ip, bind_port, backlog=backlog)
    addr = server.sockets[0].getsockname()
    logger.info(f"TCP Server listening on {addr}")
    return server


async def start_tcp_server(ip: Optional[str] = None, port: Optional[int] = None,
                           handler: Optional[ConnectionHandler] = None) -> None:
    """
    Start the TCP server and serve until it is closed or the task is cancelled.

    Raises:
        ValueError: If handler is not provided
    """
    global _server_instance
    _server_instance = await create_tcp_server(ip, port, handler)

    try:
        async with _server_instance:
            await _server_instance.serve_forever()
    except asyncio.CancelledError:
        logger.info("TCP server task cancelled")
        if _server_instance and _server_instance.is_serving():
            _server_instance.close()
        raise
