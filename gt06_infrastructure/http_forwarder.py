"""
HTTP relay for GPS fixes
POSTs each location record as JSON to a configured backend endpoint
"""
import asyncio
import logging
from typing import Dict, Any, Optional
import aiohttp

from config import Config

logger = logging.getLogger(__name__)

FORWARDED_FIELDS = ('imei', 'latitude', 'longitude', 'speed', 'course')


class HttpForwarder:
    """Relays GPS records to an HTTP endpoint over one shared aiohttp session."""

    def __init__(self, endpoint: Optional[str] = None, timeout: Optional[float] = None):
        settings = Config.load().get('http_forwarder', {})
        self.endpoint = endpoint or settings.get('endpoint')
        self.timeout = timeout if timeout is not None else settings.get('timeout', 5.0)
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.timeout))
        return self._session

    @staticmethod
    def build_payload(record: Dict[str, Any]) -> Dict[str, Any]:
        """Reduce a GPS record to the relay body: imei, position, speed, course and fix time."""
        payload = {field: record.get(field) for field in FORWARDED_FIELDS}
        payload['timestamp'] = record.get('gps_time') or record.get('server_time')
        return payload

    async def forward(self, record: Dict[str, Any]) -> bool:
        """
        POST one GPS record.

        Returns:
            bool: True on a 2xx response
        """
        if not self.endpoint:
            logger.error("HTTP forwarder has no endpoint configured")
            return False

        payload = self.build_payload(record)
        try:
            session = await self._get_session()
            async with session.post(self.endpoint, json=payload) as response:
                if 200 <= response.status < 300:
                    logger.debug(f"✓ Forwarded fix for IMEI {payload['imei']} to {self.endpoint}")
                    return True
                logger.warning(f"✗ HTTP endpoint returned status {response.status}: {await response.text()}")
                return False
        except asyncio.TimeoutError:
            logger.warning(f"✗ Timeout forwarding fix for IMEI {payload['imei']} to {self.endpoint}")
            return False
        except aiohttp.ClientError as e:
            logger.warning(f"✗ Client error forwarding fix for IMEI {payload['imei']}: {e}")
            return False

    async def close(self):
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None
