"""Payload decoders for GT06 frame bodies."""
import struct
from datetime import datetime, timezone
from typing import Optional

from .errors import MalformedPayload
from .models.gps_element import GpsElement, LbsElement

GPS_MIN_PAYLOAD = 19
GPS_BLOCK_SIZE = 18  # datetime(6) + gps info(1) + lat(4) + lon(4) + speed(1) + course/status(2)
LBS_BLOCK_SIZE = 8   # LAC(2) + cell id(3) + MCC(2) + MNC(1)
COORDINATE_DIVISOR = 30000.0 * 60.0

# Course/status word bits
COURSE_MASK = 0x01FF
EAST_BIT = 0x0200
NORTH_BIT = 0x0400
POSITIONED_BIT = 0x1000
REALTIME_BIT = 0x2000


def decode_datetime(data: bytes) -> Optional[datetime]:
    """Decode the 6-byte YY MM DD hh mm ss timestamp (UTC); None if the fields are out of range."""
    if len(data) < 6:
        return None
    year, month, day, hour, minute, second = data[:6]
    try:
        return datetime(2000 + year, month, day, hour, minute, second, tzinfo=timezone.utc)
    except ValueError:
        return None


def decode_coordinate(raw: bytes) -> float:
    """Convert a 4-byte big-endian coordinate (1/30000 minute units) to degrees."""
    return struct.unpack('>I', raw)[0] / 30000.0 / 60.0


def parse_course_status(value: int) -> dict:
    """Split the course/status word into heading and flag bits."""
    return {
        'course': value & COURSE_MASK,
        'east': bool(value & EAST_BIT),
        'north': bool(value & NORTH_BIT),
        'positioned': bool(value & POSITIONED_BIT),
        'realtime': bool(value & REALTIME_BIT),
    }


def decode_lbs(data: bytes) -> LbsElement:
    """Decode the 8-byte LBS (cell tower) block."""
    lac = struct.unpack('>H', data[0:2])[0]
    cell_id = int.from_bytes(data[2:5], 'big')
    mcc = struct.unpack('>H', data[5:7])[0]
    mnc = data[7]
    return LbsElement(lac=lac, cell_id=cell_id, mcc=mcc, mnc=mnc)


def decode_gps(payload: bytes) -> GpsElement:
    """
    Decode a GPS (0x12) frame payload.

    Layout: datetime(6) | gps info(1) | latitude(4) | longitude(4) | speed(1) |
    course/status(2) | optional LBS block(8) | ...

    Raises:
        MalformedPayload: If the payload is shorter than GPS_MIN_PAYLOAD bytes
    """
    if len(payload) < GPS_MIN_PAYLOAD:
        raise MalformedPayload(f"GPS payload too short: {len(payload)} bytes (min {GPS_MIN_PAYLOAD})")

    course_status = parse_course_status(struct.unpack('>H', payload[16:18])[0])

    lbs = None
    if len(payload) >= GPS_BLOCK_SIZE + LBS_BLOCK_SIZE:
        lbs = decode_lbs(payload[GPS_BLOCK_SIZE:GPS_BLOCK_SIZE + LBS_BLOCK_SIZE])

    return GpsElement(
        gps_time=decode_datetime(payload[0:6]),
        satellites=payload[6] & 0x0F,
        latitude=decode_coordinate(payload[7:11]),
        longitude=decode_coordinate(payload[11:15]),
        speed=payload[15],
        lbs=lbs,
        **course_status
    )
