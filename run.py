"""
GT06 Parser Node Entry Point
Receives GT06 frames over TCP, acknowledges them and publishes decoded events
"""
import asyncio
import logging
import os
import signal
import socket
from typing import Optional, List, Dict, Any

from config import Config, ServerParams
from gt06_listener.tcp_listener import start_tcp_server, close_tcp_server, close_tcp_server_sync
from gt06_parser.async_event_publisher import EventPublisher
from gt06_parser.frame_dispatcher import DispatchResult, FrameDispatcher
from gt06_parser.parser_load_monitor import ParserNodeLoadMonitor, get_load_monitor
from gt06_parser.session import Gt06Session
from gt06_infrastructure.device_allow_list import DeviceAllowList
from gt06_infrastructure.rabbitmq_producer import RabbitMQProducer, get_rabbitmq_producer, close_rabbitmq_producer
from logging_config import setup_logging_from_config

logger = logging.getLogger(__name__)

# Global components
_publisher: Optional[EventPublisher] = None
_dispatcher: Optional[FrameDispatcher] = None
_load_monitor: Optional[ParserNodeLoadMonitor] = None
_rabbitmq_producer: Optional[RabbitMQProducer] = None
_rabbitmq_connect_task: Optional[asyncio.Task] = None
_shutdown_event = asyncio.Event()

# Connection tracking
_connection_count = 0
_max_concurrent_connections = ServerParams.get_int('tcp_server.max_concurrent_connections', 50000)
_total_connections = 0
_total_rejected = 0
_connection_lock = asyncio.Lock()


def _enable_keepalive(writer: asyncio.StreamWriter, connection_id: str):
    """Enable TCP keepalive so half-dead device links are eventually noticed"""
    sock = writer.get_extra_info('socket')
    if not sock:
        return
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_KEEPALIVE, 1)

        keepalive_idle = ServerParams.get_int('tcp_server.keepalive_idle', 60)
        keepalive_interval = ServerParams.get_int('tcp_server.keepalive_interval', 10)
        keepalive_count = ServerParams.get_int('tcp_server.keepalive_count', 3)

        # Linux-specific options
        if hasattr(socket, 'TCP_KEEPIDLE'):
            sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_KEEPIDLE, keepalive_idle)
        if hasattr(socket, 'TCP_KEEPINTVL'):
            sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_KEEPINTVL, keepalive_interval)
        if hasattr(socket, 'TCP_KEEPCNT'):
            sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_KEEPCNT, keepalive_count)

        logger.debug(f"TCP keepalive enabled for {connection_id}: idle={keepalive_idle}s, "
                     f"interval={keepalive_interval}s, count={keepalive_count}")
    except OSError as e:
        logger.debug(f"Could not set keepalive options for {connection_id}: {e}")


def _log_raw_chunk(chunk: bytes, connection_id: str, session: Gt06Session):
    if not ServerParams.get_bool('tcp_server.log_raw_packets', True):
        return
    max_bytes = ServerParams.get_int('tcp_server.raw_packet_max_bytes', 256)
    hex_dump = chunk[:max_bytes].hex(' ').upper()
    truncated = f" (truncated, showing first {max_bytes} of {len(chunk)} bytes)" if len(chunk) > max_bytes else ""
    logger.info(f"Raw data from {connection_id} (IMEI: {session.state.device_label}): {hex_dump}{truncated}")


async def _process_results(writer: asyncio.StreamWriter, results: List[DispatchResult],
                           context: Dict[str, Any]) -> bool:
    """
    Write the acks for one chunk, then publish its events.

    Returns:
        False when the session asked for the connection to be closed
    """
    keep_open = True
    events = []
    for result in results:
        if result.ack:
            writer.write(result.ack)
        if result.event is not None:
            events.append(result.event)
        if result.close:
            keep_open = False

    acks = sum(1 for result in results if result.ack)
    if acks:
        await writer.drain()
        logger.debug(f"✓ {acks} ACK(s) sent to {context['connection_id']}")

    # Acks go out before any event is published
    for event in events:
        await _publisher.publish(event, context)

    return keep_open


async def _close_writer(writer: asyncio.StreamWriter, connection_id: str, timeout: float):
    if writer.is_closing():
        return
    writer.close()
    try:
        await asyncio.wait_for(writer.wait_closed(), timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning(f"Connection cleanup timeout for {connection_id}, forcing abort")
        writer.transport.abort()
    except (ConnectionError, OSError) as e:
        logger.debug(f"Error while closing {connection_id}: {e}")


async def handle_client_connection(reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
    """
    Serve one device connection.

    Reads arbitrary chunks, feeds them to a per-connection Gt06Session and
    acts on the results: acks are written immediately, events published
    afterwards, and a rejected LOGIN closes the connection.
    """
    global _connection_count, _total_connections, _total_rejected

    client_addr = writer.get_extra_info('peername')
    if not client_addr:
        writer.close()
        return

    device_ip, device_port = client_addr[0], client_addr[1]
    connection_id = f"{device_ip}:{device_port}"

    async with _connection_lock:
        if _connection_count >= _max_concurrent_connections:
            _total_rejected += 1
            if _load_monitor:
                _load_monitor.reject_connection()
            logger.warning(f"Max connections reached ({_max_concurrent_connections}), rejecting {connection_id} "
                           f"(Total rejected: {_total_rejected})")
            await _close_writer(writer, connection_id,
                                ServerParams.get_float('tcp_server.connection_reject_timeout', 1.0))
            return

        _connection_count += 1
        _total_connections += 1
        logger.info(f"Client connected: {connection_id} (Active: {_connection_count}/{_max_concurrent_connections}, "
                    f"Total: {_total_connections})")

    if _load_monitor:
        _load_monitor.increment_connections()

    session = Gt06Session(_dispatcher, connection_id, _load_monitor)
    context = {'device_ip': device_ip, 'device_port': device_port, 'connection_id': connection_id}

    try:
        _enable_keepalive(writer, connection_id)

        read_size = ServerParams.get_int('tcp_server.read_size', 4096)
        read_timeout = ServerParams.get_float('gt06_protocol.read_timeout', 30.0)
        idle_timeout = ServerParams.get_float('gt06_protocol.idle_timeout', 600.0)
        loop = asyncio.get_running_loop()
        last_activity = loop.time()

        while not _shutdown_event.is_set():
            try:
                chunk = await asyncio.wait_for(reader.read(read_size), timeout=read_timeout)
            except asyncio.TimeoutError:
                if idle_timeout > 0 and loop.time() - last_activity >= idle_timeout:
                    logger.info(f"Idle timeout ({idle_timeout:.0f}s) for {connection_id} "
                                f"(IMEI: {session.state.device_label}), closing")
                    break
                logger.debug(f"Read timeout for {connection_id} (connection still alive, continuing)")
                continue

            if not chunk:
                logger.info(f"Connection closed by device: {connection_id} (IMEI: {session.state.device_label})")
                break

            last_activity = loop.time()
            _log_raw_chunk(chunk, connection_id, session)

            results = session.feed(chunk)
            if not await _process_results(writer, results, context):
                logger.info(f"Closing {connection_id} after rejected LOGIN")
                break

    except asyncio.CancelledError:
        logger.info(f"Connection cancelled for {connection_id}")
    except (ConnectionResetError, ConnectionAbortedError, BrokenPipeError, OSError) as e:
        logger.info(f"Connection error from {connection_id}: {e}")
    finally:
        session.close()
        await _close_writer(writer, connection_id,
                            ServerParams.get_float('tcp_server.connection_cleanup_timeout', 5.0))

        async with _connection_lock:
            _connection_count = max(0, _connection_count - 1)
            logger.info(f"Client disconnected: {connection_id} (Remaining: {_connection_count}/{_max_concurrent_connections})")

        if _load_monitor:
            _load_monitor.decrement_connections()


async def _connect_rabbitmq() -> RabbitMQProducer:
    """Connect at startup; if that fails, keep connecting in the background"""
    global _rabbitmq_connect_task

    logger.info("Connecting to RabbitMQ (will retry if unavailable)...")
    try:
        connect_timeout = ServerParams.get_float('rabbitmq.startup_connect_timeout', 15.0)
        producer = await asyncio.wait_for(get_rabbitmq_producer(), timeout=connect_timeout)
        logger.info("✓ RabbitMQ connected")
        return producer
    except asyncio.TimeoutError:
        logger.warning("RabbitMQ not available at startup. Parser will keep running and retry the connection.")

    await close_rabbitmq_producer()
    producer = RabbitMQProducer()

    async def _background_connect():
        try:
            await producer.connect(retry=True)
            logger.info("✓ RabbitMQ connected (background connection succeeded)")
        except asyncio.CancelledError:
            logger.debug("Background RabbitMQ connection cancelled")

    _rabbitmq_connect_task = asyncio.create_task(_background_connect())
    return producer


async def main():
    """Main entry point for the parser node"""
    global _publisher, _dispatcher, _load_monitor, _rabbitmq_producer

    tcp_server_task: Optional[asyncio.Task] = None
    try:
        config = Config.load()
        parser_config = config.get('parser_node', {})
        node_id = os.environ.get('NODE_ID') or parser_config.get('node_id', 'gt06-parser-1')
        data_mode = Config.get_data_transfer_mode()

        logger.info(f"Starting GT06 Parser Node: {node_id}")
        logger.info(f"Vendor: {parser_config.get('vendor', 'gt06')}, data transfer mode: {data_mode}")

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, _shutdown_event.set)
            except NotImplementedError:
                # Windows event loops have no add_signal_handler
                signal.signal(sig, signal_handler)

        _load_monitor = get_load_monitor(node_id)
        await _load_monitor.start_reporting()

        if data_mode == 'RABBITMQ':
            _rabbitmq_producer = await _connect_rabbitmq()
        else:
            logger.info(f"{data_mode} mode enabled - RabbitMQ not used")

        _publisher = EventPublisher(data_mode, rabbitmq_producer=_rabbitmq_producer, load_monitor=_load_monitor)
        _dispatcher = FrameDispatcher(allow_list=DeviceAllowList.from_config())

        server_config = Config.get_server_config()
        ip = server_config.get('ip', '0.0.0.0')
        port = server_config.get('tcp_port', 5001)

        async def _start_server_with_retry():
            from gt06_infrastructure.connection_retry import retry_connection
            await retry_connection(
                start_tcp_server,
                -1,  # Infinite retries
                2.0,
                30.0,
                2.0,
                _shutdown_event.is_set,
                ip, port, handle_client_connection
            )

        tcp_server_task = asyncio.create_task(_start_server_with_retry())

        logger.info("✓ Parser node started successfully")
        logger.info("Waiting for connections...")

        await _shutdown_event.wait()
        logger.info("Shutdown requested, stopping TCP server...")

    except asyncio.CancelledError:
        logger.info("Shutdown requested, cleaning up...")
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
    finally:
        logger.info("Shutting down parser node gracefully...")
        _shutdown_event.set()
        close_tcp_server_sync()

        if tcp_server_task and not tcp_server_task.done():
            tcp_server_task.cancel()
            shutdown_timeout = ServerParams.get_float('shutdown.task_completion_timeout', 1.5)
            try:
                await asyncio.wait_for(tcp_server_task, timeout=shutdown_timeout)
            except (asyncio.CancelledError, asyncio.TimeoutError):
                pass

        if _rabbitmq_connect_task and not _rabbitmq_connect_task.done():
            _rabbitmq_connect_task.cancel()

        if _load_monitor:
            await _load_monitor.stop_reporting()

        if _publisher:
            await _publisher.shutdown()

        if _rabbitmq_producer:
            await _rabbitmq_producer.disconnect()
            await close_rabbitmq_producer()
            logger.info("RabbitMQ producer closed")

        await close_tcp_server()

        logger.info("Parser node shutdown complete")


def signal_handler(signum, frame):
    """Handle shutdown signals"""
    logger.info(f"Received signal {signum}, initiating shutdown...")
    _shutdown_event.set()


def cli():
    """Console script entry point"""
    setup_logging_from_config()

    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Shutdown complete")


if __name__ == "__main__":
    cli()
