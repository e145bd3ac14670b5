"""
RabbitMQ Producer for the GT06 parser node
Publishes decoded GT06 events to a topic exchange with publisher confirms
"""
import asyncio
import logging
import json
from typing import Dict, Any, Optional
from datetime import datetime, timezone
import aio_pika
from aio_pika import ExchangeType, DeliveryMode
import aio_pika.exceptions

from config import Config, ServerParams

logger = logging.getLogger(__name__)


class RabbitMQProducer:
    """
    RabbitMQ message producer with publisher confirms.
    A publish reports success only once the broker has confirmed the message.
    """

    def __init__(self):
        self.connection: Optional[aio_pika.abc.AbstractConnection] = None
        self.channel: Optional[aio_pika.abc.AbstractChannel] = None
        self.exchange: Optional[aio_pika.abc.AbstractExchange] = None
        self._connected = False
        self._shutting_down = False
        self._publish_successes = 0
        self._publish_failures = 0
        self._connection_lock = asyncio.Lock()

    @staticmethod
    def _settings() -> Dict[str, Any]:
        return Config.load().get('rabbitmq', {})

    def _url(self) -> str:
        settings = self._settings()
        return (
            f"amqp://{settings.get('username', 'guest')}:{settings.get('password', 'guest')}"
            f"@{settings.get('host', 'localhost')}:{settings.get('port', 5672)}"
            f"/{settings.get('virtual_host', '/')}"
        )

    async def _open_channel(self):
        """Open a confirming channel and declare the durable topic exchange"""
        settings = self._settings()
        exchange_name = settings.get('exchange', 'tracking_data_exchange')
        self.channel = await self.connection.channel(
            publisher_confirms=settings.get('publisher_confirms', True)
        )
        self.exchange = await self.channel.declare_exchange(exchange_name, ExchangeType.TOPIC, durable=True)
        self._connected = True
        logger.info(f"✓ Connected to RabbitMQ, exchange: {exchange_name}")

    async def connect(self, retry: bool = True):
        """
        Connect to RabbitMQ and set up the exchange.

        Args:
            retry: If True, retry indefinitely with exponential backoff using a
                   robust (self-reconnecting) connection; otherwise fail fast
        """
        if self._shutting_down:
            raise asyncio.CancelledError("Shutdown in progress")

        async def _connect():
            settings = self._settings()
            logger.info(f"Connecting to RabbitMQ at {settings.get('host', 'localhost')}:{settings.get('port', 5672)}...")
            if retry:
                self.connection = await aio_pika.connect_robust(self._url())
            else:
                self.connection = await aio_pika.connect(self._url())
            await self._open_channel()

        if retry:
            from .connection_retry import retry_connection
            await retry_connection(
                _connect, max_retries=-1, initial_delay=1.0, max_delay=30.0,
                should_stop=lambda: self._shutting_down
            )
        else:
            await _connect()

    async def disconnect(self):
        """Disconnect from RabbitMQ and stop all reconnection attempts"""
        self._shutting_down = True
        async with self._connection_lock:
            if self.channel:
                try:
                    await self.channel.close()
                except Exception as e:
                    logger.debug(f"Error closing channel: {e}")
                self.channel = None

            if self.connection:
                try:
                    await self.connection.close()
                except Exception as e:
                    logger.debug(f"Error closing connection: {e}")
                self.connection = None

            self.exchange = None
            self._connected = False
            logger.debug("Disconnected from RabbitMQ")

    def is_ready(self) -> bool:
        """Current state only; never attempts a reconnect."""
        if self._shutting_down or not self.connection or self.connection.is_closed:
            return False
        if not self.channel or self.channel.is_closed or not self.exchange:
            return False
        return self._connected

    async def _ensure_ready(self) -> bool:
        """Reconnect or reopen the channel with bounded timeouts. Caller holds the lock."""
        if self.is_ready():
            return True

        reconnect_timeout = ServerParams.get_float('rabbitmq.publish_reconnect_timeout', 10.0)
        try:
            if self.connection and not self.connection.is_closed:
                logger.warning("RabbitMQ channel/exchange missing, recreating...")
                await asyncio.wait_for(self._open_channel(), timeout=reconnect_timeout)
            else:
                logger.warning("RabbitMQ not connected, attempting to reconnect...")
                self.connection = None
                self.channel = None
                self.exchange = None
                self._connected = False
                await asyncio.wait_for(self.connect(retry=False), timeout=reconnect_timeout)
        except asyncio.TimeoutError:
            logger.error(f"RabbitMQ reconnection timed out after {reconnect_timeout}s - publish failed")
            return False
        except (ConnectionError, OSError, aio_pika.exceptions.AMQPError) as e:
            logger.error(f"Failed to reconnect to RabbitMQ: {e}")
            return False

        return self.is_ready()

    async def publish_tracking_record(
        self,
        record: Dict[str, Any],
        vendor: str = "gt06",
        record_type: str = "trackdata",
        timeout: float = 5.0
    ) -> bool:
        """
        Publish one message envelope with publisher confirms.

        Args:
            record: Message envelope (JSON-serializable)
            vendor: Vendor segment of the routing key
            record_type: trackdata, event or alarm
            timeout: Timeout for the publisher confirm (seconds)

        Returns:
            bool: True if the broker confirmed the message
        """
        if self._shutting_down:
            logger.warning("RabbitMQ producer shutting down - publish rejected")
            return False

        async with self._connection_lock:
            ready = await self._ensure_ready()

        if not ready:
            logger.error("✗ RabbitMQ not ready after connection check - publish failed")
            self._publish_failures += 1
            return False

        routing_key = f"tracking.{vendor}.{record_type}"
        message = aio_pika.Message(
            json.dumps(record).encode('utf-8'),
            content_type='application/json',
            delivery_mode=DeliveryMode.PERSISTENT,
            priority=10 if record_type == "alarm" else 0,
            timestamp=datetime.now(timezone.utc)
        )

        try:
            confirmed = await asyncio.wait_for(
                self.exchange.publish(message, routing_key=routing_key),
                timeout=timeout
            )
        except asyncio.TimeoutError:
            self._publish_failures += 1
            self._connected = False
            logger.error(f"✗ RabbitMQ publish timeout ({timeout}s) for {routing_key} - connection may be down")
            return False
        except (ConnectionError, OSError, aio_pika.exceptions.AMQPError) as e:
            self._publish_failures += 1
            self._connected = False
            logger.error(f"✗ RabbitMQ connection error during publish: {e}")
            return False

        if confirmed:
            self._publish_successes += 1
            logger.debug(f"✓ Published {routing_key}: {record.get('imei', 'unknown')}")
            return True

        self._publish_failures += 1
        logger.warning(f"✗ Publisher confirm failed for {routing_key}")
        return False

    def get_stats(self) -> Dict[str, Any]:
        total = self._publish_successes + self._publish_failures
        success_rate = (self._publish_successes / total * 100) if total > 0 else 100.0

        return {
            "connected": self._connected,
            "publish_successes": self._publish_successes,
            "publish_failures": self._publish_failures,
            "success_rate": round(success_rate, 2)
        }


_producer_instance: Optional[RabbitMQProducer] = None


async def get_rabbitmq_producer() -> RabbitMQProducer:
    """
    Get or create the global RabbitMQ producer.
    Retries the connection until it succeeds.
    """
    global _producer_instance

    if _producer_instance is None:
        _producer_instance = RabbitMQProducer()
        await _producer_instance.connect(retry=True)

    return _producer_instance


async def close_rabbitmq_producer():
    """Close the global RabbitMQ producer"""
    global _producer_instance

    if _producer_instance:
        await _producer_instance.disconnect()
        _producer_instance = None
