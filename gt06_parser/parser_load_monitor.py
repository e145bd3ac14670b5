"""
Load Monitor for the GT06 parser node
Tracks connection, frame and publish counters and reports them periodically
"""
import asyncio
import logging
import os
import psutil
from datetime import datetime, timezone
from typing import Dict, Any, Optional
import aiohttp

from config import Config, ServerParams

logger = logging.getLogger(__name__)


class ParserNodeLoadMonitor:
    """Monitor and report parser node load metrics"""

    def __init__(self, node_id: str):
        self.node_id = node_id
        self.active_connections = 0
        self.total_connections = 0
        self.total_rejected = 0  # Refused at capacity or by the allow-list
        self.total_frames = 0
        self.total_diagnostics = 0
        self.total_events = 0
        self.publish_successes = 0
        self.publish_failures = 0
        self.start_time = datetime.now()
        self._report_task: Optional[asyncio.Task] = None

        load_config = Config.load().get('load_monitoring', {})
        self.enabled = load_config.get('enabled', True)
        self.report_interval = load_config.get('report_interval_seconds', 10)
        self.api_endpoint = load_config.get('api_endpoint')

        self.vendor = os.environ.get('VENDOR', Config.load().get('parser_node', {}).get('vendor', 'gt06'))
        self.max_connections = ServerParams.get_int('tcp_server.max_concurrent_connections', 5000)

    def increment_connections(self):
        self.active_connections += 1
        self.total_connections += 1

    def decrement_connections(self):
        if self.active_connections > 0:
            self.active_connections -= 1

    def reject_connection(self):
        self.total_rejected += 1

    def increment_frames(self, count: int = 1):
        """Checksum-valid frames handed to the dispatcher"""
        self.total_frames += count

    def increment_diagnostics(self, count: int = 1):
        """Resyncs, corrupt frames and undecodable payloads"""
        self.total_diagnostics += count

    def increment_events(self, count: int = 1):
        self.total_events += count

    def record_publish_success(self):
        self.publish_successes += 1

    def record_publish_failure(self):
        self.publish_failures += 1

    async def start_reporting(self):
        """Start periodic reporting task"""
        if not self.enabled:
            return

        if self._report_task is None or self._report_task.done():
            self._report_task = asyncio.create_task(self._periodic_report())
            logger.info(f"Started load monitoring reporting (interval: {self.report_interval}s)")

    async def stop_reporting(self):
        """Stop periodic reporting task"""
        if self._report_task and not self._report_task.done():
            self._report_task.cancel()
            try:
                await self._report_task
            except asyncio.CancelledError:
                pass

    async def _periodic_report(self):
        while True:
            try:
                await asyncio.sleep(self.report_interval)
                metrics = await self.report_metrics()
                logger.info(
                    f"Load: {metrics['active_connections']} active connections, "
                    f"{metrics['total_frames']} frames, {metrics['total_diagnostics']} diagnostics, "
                    f"{metrics['frames_per_second']:.1f} frames/s"
                )
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in periodic reporting: {e}", exc_info=True)

    def collect_metrics(self) -> Dict[str, Any]:
        """Snapshot of all counters plus host CPU/memory"""
        memory = psutil.virtual_memory()
        return {
            "node_id": self.node_id,
            "vendor": self.vendor,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "active_connections": self.active_connections,
            "total_connections": self.total_connections,
            "total_rejected": self.total_rejected,
            "max_connections": self.max_connections,
            "connection_utilization": (self.active_connections / self.max_connections * 100) if self.max_connections > 0 else 0,
            "frames_per_second": self._calculate_fps(),
            "total_frames": self.total_frames,
            "total_diagnostics": self.total_diagnostics,
            "total_events": self.total_events,
            "cpu_usage": psutil.cpu_percent(interval=None),
            "memory_usage_mb": memory.used / 1024 / 1024,
            "memory_usage_percent": memory.percent,
            "publish_success_rate": self._calculate_success_rate(),
            "total_published": self.publish_successes,
            "total_publish_failures": self.publish_failures,
        }

    async def report_metrics(self) -> Dict[str, Any]:
        """Collect metrics and send them to the monitoring endpoint when one is configured"""
        metrics = self.collect_metrics()

        if self.api_endpoint:
            try:
                async with aiohttp.ClientSession() as session:
                    async with session.post(self.api_endpoint, json=metrics,
                                            timeout=aiohttp.ClientTimeout(total=5)) as response:
                        if response.status == 200:
                            logger.debug(f"Load metrics reported: {metrics}")
                        else:
                            logger.warning(f"Load metrics API returned status {response.status}: {await response.text()}")
            except asyncio.TimeoutError:
                logger.warning(f"Timeout reporting load metrics to {self.api_endpoint}")
            except aiohttp.ClientError as e:
                logger.warning(f"Client error reporting load metrics: {e}")

        return metrics

    def _calculate_fps(self) -> float:
        elapsed = (datetime.now() - self.start_time).total_seconds()
        if elapsed > 0:
            return self.total_frames / elapsed
        return 0.0

    def _calculate_success_rate(self) -> float:
        total = self.publish_successes + self.publish_failures
        if total > 0:
            return (self.publish_successes / total) * 100
        return 100.0


_monitor_instance: Optional[ParserNodeLoadMonitor] = None


def get_load_monitor(node_id: str) -> ParserNodeLoadMonitor:
    """Get or create global load monitor instance"""
    global _monitor_instance

    if _monitor_instance is None:
        _monitor_instance = ParserNodeLoadMonitor(node_id)

    return _monitor_instance
