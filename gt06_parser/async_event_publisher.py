"""
Event Publisher
Routes decoded GT06 events to CSV files, RabbitMQ or an HTTP relay based on data_transfer_mode
"""
import logging
import os
import uuid
from datetime import datetime, timezone
from typing import Optional, Dict, Any

from config import Config
from gt06_parser.events import RECORD_TRACKDATA, Gt06Event

logger = logging.getLogger(__name__)

MODE_LOGS = 'LOGS'
MODE_RABBITMQ = 'RABBITMQ'
MODE_HTTP = 'HTTP'
SUPPORTED_MODES = (MODE_LOGS, MODE_RABBITMQ, MODE_HTTP)


class EventPublisher:
    """
    Event sink for all connections.
    - LOGS mode: appends records to trackdata.csv / events.csv / alarms.csv
    - RABBITMQ mode: publishes the message envelope to the tracking exchange
    - HTTP mode: relays GPS fixes to the configured endpoint

    publish() never raises; failures are logged and counted so that
    acknowledgments to the device are never held up by the sink.
    """

    def __init__(self, mode: Optional[str] = None, rabbitmq_producer=None, http_forwarder=None,
                 csv_saver=None, load_monitor=None):
        """
        Args:
            mode: LOGS, RABBITMQ or HTTP (default: data_transfer_mode from config)
            rabbitmq_producer: RabbitMQProducer (RABBITMQ mode)
            http_forwarder: HttpForwarder (HTTP mode, created from config when omitted)
            csv_saver: AsyncSaveToCSV (LOGS mode, created from config when omitted)
            load_monitor: Optional ParserNodeLoadMonitor
        """
        self.mode = (mode or Config.get_data_transfer_mode()).upper()
        if self.mode not in SUPPORTED_MODES:
            raise ValueError(f"Unsupported data transfer mode: {self.mode} (expected one of {', '.join(SUPPORTED_MODES)})")

        parser_config = Config.load().get('parser_node', {})
        self.vendor = parser_config.get('vendor', 'gt06')
        self.node_id = os.environ.get('NODE_ID') or parser_config.get('node_id', 'gt06-parser-1')

        self.rabbitmq_producer = rabbitmq_producer
        self.load_monitor = load_monitor

        if self.mode == MODE_LOGS and csv_saver is None:
            from gt06_database.async_save_to_csv import AsyncSaveToCSV
            csv_saver = AsyncSaveToCSV()
        self.csv_saver = csv_saver

        if self.mode == MODE_HTTP and http_forwarder is None:
            from gt06_infrastructure.http_forwarder import HttpForwarder
            http_forwarder = HttpForwarder()
        self.http_forwarder = http_forwarder

        logger.info(f"Event publisher ready ({self.mode} mode, vendor={self.vendor}, node={self.node_id})")

    def build_message(self, event: Gt06Event, record: Dict[str, Any],
                      context: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Wrap a record in the standard tracking message envelope"""
        context = context or {}
        return {
            "message_id": str(uuid.uuid4()),
            "vendor": self.vendor,
            "vendor_version": "1.0",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "imei": event.imei,
            "device_ip": context.get('device_ip'),
            "device_port": context.get('device_port'),
            "record_type": event.record_type,
            "data": record,
            "metadata": {
                "parser_node_id": self.node_id
            }
        }

    async def publish(self, event: Gt06Event, context: Optional[Dict[str, Any]] = None) -> bool:
        """
        Deliver one event to the configured sink.

        Args:
            event: Event from the frame dispatcher
            context: Connection details (device_ip, device_port)

        Returns:
            bool: True if the sink accepted the event
        """
        record = event.to_record()
        try:
            if self.mode == MODE_LOGS:
                published = await self.csv_saver.save([record], event.record_type)
            elif self.mode == MODE_RABBITMQ:
                published = await self._publish_rabbitmq(event, record, context)
            else:
                published = await self._publish_http(event, record)
        except Exception as e:
            logger.error(f"✗ Error publishing {event.event_name} event for IMEI {event.imei}: {e}", exc_info=True)
            published = False

        if self.load_monitor:
            self.load_monitor.increment_events()
            if published:
                self.load_monitor.record_publish_success()
            else:
                self.load_monitor.record_publish_failure()

        if not published:
            logger.warning(f"✗ {event.event_name} event for IMEI {event.imei} not delivered ({self.mode} mode)")
        return published

    async def _publish_rabbitmq(self, event: Gt06Event, record: Dict[str, Any],
                                context: Optional[Dict[str, Any]]) -> bool:
        if not self.rabbitmq_producer:
            logger.error("RabbitMQ producer not initialized but mode requires RabbitMQ")
            return False
        message = self.build_message(event, record, context)
        return await self.rabbitmq_producer.publish_tracking_record(
            record=message,
            vendor=self.vendor,
            record_type=event.record_type,
            timeout=5.0
        )

    async def _publish_http(self, event: Gt06Event, record: Dict[str, Any]) -> bool:
        # Only location fixes are relayed
        if event.record_type != RECORD_TRACKDATA:
            logger.debug(f"HTTP mode: {event.event_name} event for IMEI {event.imei} not relayed")
            return True
        return await self.http_forwarder.forward(record)

    async def shutdown(self):
        if self.http_forwarder:
            await self.http_forwarder.close()
