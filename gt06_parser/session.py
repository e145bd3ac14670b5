"""
Connection session: one reassembler and one dispatcher state per socket.

The session is synchronous; the asyncio connection handler feeds it chunks
and acts on the returned results (write acks, publish events, close).
"""
import logging
from typing import List, Optional

from gt06_codec.models.diagnostic import Diagnostic
from gt06_codec.stream_reassembler import StreamReassembler
from gt06_parser.frame_dispatcher import DispatchResult, FrameDispatcher, SessionState

logger = logging.getLogger(__name__)


class Gt06Session:
    """Receive-side state for one device connection."""

    def __init__(self, dispatcher: FrameDispatcher, connection_id: str = "", load_monitor=None):
        """
        Args:
            dispatcher: Shared frame dispatcher (stateless apart from its handler table)
            connection_id: "ip:port" label used in log messages
            load_monitor: Optional ParserNodeLoadMonitor for frame/diagnostic counters
        """
        self.dispatcher = dispatcher
        self.connection_id = connection_id
        self.load_monitor = load_monitor
        self.state = SessionState(connection_id=connection_id)
        self.reassembler = StreamReassembler()
        self.closed = False

    @property
    def imei(self) -> Optional[str]:
        return self.state.imei

    def feed(self, chunk: bytes) -> List[DispatchResult]:
        """
        Process one received chunk.

        Returns:
            One DispatchResult per frame or stream diagnostic, in stream order.
            Processing stops after a result asking to close the connection.
        """
        if self.closed:
            return []

        results = []
        for item in self.reassembler.feed(chunk):
            if isinstance(item, Diagnostic):
                self._report(item)
                results.append(DispatchResult(diagnostic=item))
                continue

            if self.load_monitor:
                self.load_monitor.increment_frames()
            logger.debug(f"Frame from {self.state.device_label} on {self.connection_id}: {item!r}")

            result = self.dispatcher.dispatch(item, self.state)
            if result.diagnostic is not None:
                self._report(result.diagnostic)
            results.append(result)

            if result.close:
                self.closed = True
                break

        return results

    def close(self):
        """Tear down receive state, reporting noise that never reached a header."""
        pending = self.reassembler.pending_noise
        if pending:
            logger.warning(f"{pending} bytes of noise without a frame header from "
                           f"{self.state.device_label} on {self.connection_id} at close")
        if self.reassembler.buffered:
            logger.debug(f"Discarding {self.reassembler.buffered} bytes of incomplete frame "
                         f"on {self.connection_id}")
        self.reassembler.reset()
        self.closed = True

    def _report(self, diagnostic: Diagnostic):
        if self.load_monitor:
            self.load_monitor.increment_diagnostics()
        logger.warning(f"Stream diagnostic from {self.state.device_label} on {self.connection_id}: {diagnostic}")
