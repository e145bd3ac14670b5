"""
Device-side GT06 frame builders.

Used by the mock tracker and tests to produce the traffic a real unit sends.
Serial numbers come from an explicit SerialCounter owned by the sender.
"""
import struct
import threading
from datetime import datetime, timezone
from typing import Optional

from .frame_codec import encode_frame
from .identifier import encode_imei
from .models.frame_type import FrameType
from .payload_decoder import COORDINATE_DIVISOR, COURSE_MASK, EAST_BIT, NORTH_BIT, POSITIONED_BIT, REALTIME_BIT

# GPS info byte: high nibble = GPS block length (12), low nibble = satellites
DEFAULT_SATELLITES = 0x0C


class SerialCounter:
    """Monotonic 16-bit serial number generator, safe to share between threads."""

    def __init__(self, start: int = 1):
        self._value = start & 0xFFFF
        self._lock = threading.Lock()

    def next(self) -> int:
        """Return the current serial and advance (wraps at 65536)."""
        with self._lock:
            value = self._value
            self._value = (self._value + 1) & 0xFFFF
            return value

    def peek(self) -> int:
        with self._lock:
            return self._value


def build_course_status(heading: float, east: bool = True, north: bool = True,
                        positioned: bool = True, realtime: bool = True) -> int:
    """Pack heading (degrees) and hemisphere/fix flags into the course/status word."""
    value = int(round(heading)) % 360 & COURSE_MASK
    if east:
        value |= EAST_BIT
    if north:
        value |= NORTH_BIT
    if positioned:
        value |= POSITIONED_BIT
    if realtime:
        value |= REALTIME_BIT
    return value


def encode_datetime(moment: datetime) -> bytes:
    """Encode a timestamp as YY MM DD hh mm ss (UTC)."""
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc)
    return bytes([moment.year - 2000, moment.month, moment.day,
                  moment.hour, moment.minute, moment.second])


class Gt06PacketBuilder:
    """Builds the frames a GT06 tracker sends, numbering them from its own counter."""

    def __init__(self, imei: str, serial_counter: Optional[SerialCounter] = None):
        self.imei = imei
        self._imei_bcd = encode_imei(imei)
        self.serials = serial_counter or SerialCounter()

    def _packet(self, frame_type: int, payload: bytes) -> bytes:
        return encode_frame(frame_type, self.serials.next(), payload)

    def login(self) -> bytes:
        """LOGIN (0x01): 8-byte BCD IMEI."""
        return self._packet(FrameType.LOGIN, self._imei_bcd)

    def gps(self, latitude: float, longitude: float, speed: float = 0, heading: float = 0,
            timestamp: Optional[datetime] = None, satellites: int = DEFAULT_SATELLITES,
            lac: int = 1, cell_id: int = 0x000101, mcc: int = 0x02F5, mnc: int = 0) -> bytes:
        """
        GPS (0x12): GPS block followed by an LBS block.

        Coordinates are sent as magnitudes; the hemisphere goes into the
        course/status flags.
        """
        if timestamp is None:
            timestamp = datetime.now(timezone.utc)

        lat_raw = int(abs(latitude) * COORDINATE_DIVISOR)
        lon_raw = int(abs(longitude) * COORDINATE_DIVISOR)
        course_status = build_course_status(heading, east=longitude >= 0, north=latitude >= 0)
        speed_byte = max(0, min(int(speed), 0xFF))

        payload = (
            encode_datetime(timestamp)
            + bytes([0xC0 | (satellites & 0x0F)])
            + struct.pack('>IIBH', lat_raw, lon_raw, speed_byte, course_status)
            + struct.pack('>H', lac & 0xFFFF)
            + (cell_id & 0xFFFFFF).to_bytes(3, 'big')
            + struct.pack('>HB', mcc & 0xFFFF, mnc & 0xFF)
        )
        return self._packet(FrameType.GPS, payload)

    def heartbeat(self, flags: int = 0x01) -> bytes:
        """HEARTBEAT (0x13): one terminal-information byte."""
        return self._packet(FrameType.HEARTBEAT, bytes([flags & 0xFF]))

    def status(self, battery: int) -> bytes:
        """STATUS (0x10): battery level byte."""
        return self._packet(FrameType.STATUS, bytes([max(0, min(int(battery), 0xFF))]))

    def alarm(self, code: int) -> bytes:
        """ALARM (0x16): alarm code byte."""
        return self._packet(FrameType.ALARM, bytes([code & 0xFF]))

    def string_info(self, text: str) -> bytes:
        """STRING_INFO (0x15): UTF-8 text."""
        return self._packet(FrameType.STRING_INFO, text.encode('utf-8'))
