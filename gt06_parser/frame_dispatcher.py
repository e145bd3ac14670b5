"""
Frame dispatcher: interprets decoded frames and decides the acknowledgment.

One handler per frame type, registered in a table, plus a fallback for
unknown tags. Handlers are synchronous and never touch the socket; the
connection handler writes the returned ack and publishes the returned event.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, Optional

from gt06_codec.errors import InvalidIdentifier, MalformedPayload, RejectedIdentifier
from gt06_codec.frame_codec import build_ack
from gt06_codec.identifier import decode_imei
from gt06_codec.models.diagnostic import Diagnostic, DiagnosticKind
from gt06_codec.models.frame import Frame
from gt06_codec.models.frame_type import FrameType
from gt06_codec.payload_decoder import decode_gps
from gt06_parser.events import (
    UNKNOWN_IMEI, AlarmEvent, CommandResponseEvent, Gt06Event, GpsEvent, HeartbeatEvent,
    LoginEvent, StatusEvent, StringInfoEvent, UnknownFrameEvent,
)

logger = logging.getLogger(__name__)

AllowListPredicate = Callable[[str], bool]


@dataclass
class SessionState:
    """Per-connection state; the device is unidentified until a LOGIN is accepted."""
    imei: Optional[str] = None
    connection_id: str = ""

    @property
    def identified(self) -> bool:
        return self.imei is not None

    @property
    def device_label(self) -> str:
        return self.imei or UNKNOWN_IMEI


@dataclass
class DispatchResult:
    """What the connection handler must do for one frame (or one stream diagnostic)."""
    event: Optional[Gt06Event] = None
    ack: Optional[bytes] = None
    close: bool = False
    diagnostic: Optional[Diagnostic] = None


FrameHandler = Callable[[Frame, SessionState], Gt06Event]


class FrameDispatcher:
    """
    Routes frames to per-type handlers.

    A handler returns the event for the frame. InvalidIdentifier and
    MalformedPayload become a MALFORMED_PAYLOAD diagnostic and the frame is
    still acknowledged; any other exception from a handler propagates. Only a
    LOGIN refused by the allow-list goes unacknowledged, and it closes the
    connection.
    """

    def __init__(self, allow_list: Optional[AllowListPredicate] = None):
        """
        Args:
            allow_list: Predicate deciding whether a device IMEI may log in
                        (None accepts every device)
        """
        self.allow_list = allow_list
        self._handlers: Dict[int, FrameHandler] = {
            FrameType.LOGIN: self._handle_login,
            FrameType.GPS: self._handle_gps,
            FrameType.HEARTBEAT: self._payload_handler(HeartbeatEvent),
            FrameType.STATUS: self._payload_handler(StatusEvent),
            FrameType.ALARM: self._payload_handler(AlarmEvent),
            FrameType.STRING_INFO: self._payload_handler(StringInfoEvent),
            FrameType.COMMAND_RESPONSE: self._payload_handler(CommandResponseEvent),
        }

    def register(self, protocol: int, handler: FrameHandler):
        """Install or replace the handler for a protocol number."""
        self._handlers[protocol] = handler

    def dispatch(self, frame: Frame, state: SessionState) -> DispatchResult:
        """
        Interpret one frame.

        Args:
            frame: Checksum-valid frame from the reassembler
            state: Session state of the connection the frame arrived on

        Returns:
            DispatchResult with the event, the ack to send, and whether to close
        """
        handler = self._handlers.get(frame.protocol, self._handle_unknown)
        ack = build_ack(frame.protocol, frame.serial)

        try:
            event = handler(frame, state)
        except RejectedIdentifier as e:
            logger.warning(f"✗ LOGIN rejected on {state.connection_id}: {e}, closing connection")
            return DispatchResult(close=True)
        except (InvalidIdentifier, MalformedPayload) as e:
            diagnostic = Diagnostic(DiagnosticKind.MALFORMED_PAYLOAD, len(frame.payload),
                                    f"{frame.type_name} serial={frame.serial}: {e}")
            return DispatchResult(ack=ack, diagnostic=diagnostic)

        return DispatchResult(event=event, ack=ack)

    def _handle_login(self, frame: Frame, state: SessionState) -> Gt06Event:
        imei = decode_imei(frame.payload)
        if self.allow_list is not None and not self.allow_list(imei):
            raise RejectedIdentifier(imei)

        if state.imei is not None and state.imei != imei:
            logger.info(f"Re-login on {state.connection_id}: IMEI {state.imei} -> {imei}")
        state.imei = imei
        logger.info(f"✓ LOGIN from IMEI {imei} on {state.connection_id} (serial={frame.serial})")
        return LoginEvent(imei, frame.protocol, frame.serial, _now())

    def _handle_gps(self, frame: Frame, state: SessionState) -> Gt06Event:
        gps = decode_gps(frame.payload)
        if state.imei is None:
            logger.debug(f"GPS frame before LOGIN on {state.connection_id}")
        return GpsEvent(state.device_label, frame.protocol, frame.serial, _now(), gps)

    @staticmethod
    def _payload_handler(event_class) -> FrameHandler:
        def handle(frame: Frame, state: SessionState) -> Gt06Event:
            return event_class(state.device_label, frame.protocol, frame.serial, _now(), frame.payload)
        return handle

    def _handle_unknown(self, frame: Frame, state: SessionState) -> Gt06Event:
        logger.info(f"Unknown frame type 0x{frame.protocol:02X} from {state.device_label} "
                    f"on {state.connection_id} ({len(frame.payload)} payload bytes)")
        return UnknownFrameEvent(state.device_label, frame.protocol, frame.serial, _now(), frame.payload)


def _now() -> datetime:
    return datetime.now(timezone.utc)
