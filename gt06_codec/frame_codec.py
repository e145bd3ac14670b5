"""
GT06 frame encoder/decoder.

Frame layout::

    +---------+--------+----------+-----------+--------+-------+---------+
    | Header  | Length | Protocol |  Payload  | Serial |  CRC  | Trailer |
    | 78 78   | 1 byte | 1 byte   |  N bytes  | 2 (BE) | 2 (BE)| 0D 0A   |
    +---------+--------+----------+-----------+--------+-------+---------+

- Length: protocol + payload + serial + CRC, i.e. N + 5 (max 255)
- CRC: CRC-ITU over length..serial inclusive
"""
import struct

from .crc import crc_itu
from .errors import BadHeader, BadTrailer, ChecksumMismatch, FrameTooShort, PayloadTooLarge
from .models.frame import Frame

HEADER = b"\x78\x78"
TRAILER = b"\x0D\x0A"
MIN_PACKET_SIZE = 5  # header + length + trailer skeleton
LENGTH_OVERHEAD = 5  # protocol(1) + serial(2) + crc(2)
FRAME_OVERHEAD = len(HEADER) + 1 + len(TRAILER)  # bytes outside the declared length
MAX_LENGTH = 0xFF
MAX_PAYLOAD_SIZE = MAX_LENGTH - LENGTH_OVERHEAD


def encode_frame(protocol: int, serial: int, payload: bytes = b"") -> bytes:
    """
    Build a complete GT06 wire frame.

    Args:
        protocol: Frame type tag (one byte)
        serial: Serial number, masked to 16 bits
        payload: Information content

    Returns:
        Frame bytes from header to trailer

    Raises:
        PayloadTooLarge: If the payload does not fit the one-byte length field
        ValueError: If protocol is not a single byte
    """
    if not 0 <= protocol <= 0xFF:
        raise ValueError(f"Protocol number must fit in one byte, got {protocol}")

    length = len(payload) + LENGTH_OVERHEAD
    if length > MAX_LENGTH:
        raise PayloadTooLarge(
            f"Payload of {len(payload)} bytes exceeds the maximum of {MAX_PAYLOAD_SIZE}"
        )

    body = bytes([length, protocol]) + bytes(payload) + struct.pack('>H', serial & 0xFFFF)
    return HEADER + body + struct.pack('>H', crc_itu(body)) + TRAILER


def decode_frame(data: bytes) -> Frame:
    """
    Decode one complete frame (header through trailer).

    No interpretation of the payload happens here; that belongs to the dispatcher.

    The CRC is checked before the declared length, so corruption of the length
    byte is reported as a checksum mismatch.

    Raises:
        FrameTooShort: If data is shorter than a frame skeleton, or the CRC matches
            but the declared length disagrees with the frame size
        BadHeader: If the first two bytes are not 0x78 0x78
        BadTrailer: If the last two bytes are not 0x0D 0x0A
        ChecksumMismatch: If the CRC over length..serial does not match
    """
    if len(data) < MIN_PACKET_SIZE:
        raise FrameTooShort(f"Frame too short: {len(data)} bytes (min {MIN_PACKET_SIZE})")

    if data[0:2] != HEADER:
        raise BadHeader(f"Invalid header: {bytes(data[0:2]).hex()}")

    if data[-2:] != TRAILER:
        raise BadTrailer(f"Invalid trailer: {bytes(data[-2:]).hex()}")

    # length..serial is everything between the header and the CRC
    checked = data[2:len(data) - 4]
    expected = struct.unpack('>H', data[-4:-2])[0]
    actual = crc_itu(checked)
    if expected != actual:
        raise ChecksumMismatch(expected, actual)

    length = data[2]
    if length < LENGTH_OVERHEAD or len(data) != length + FRAME_OVERHEAD:
        raise FrameTooShort(
            f"Declared length {length} does not match frame of {len(data)} bytes"
        )

    protocol = data[3]
    payload = bytes(data[4:len(data) - 6])
    serial = struct.unpack('>H', data[-6:-4])[0]
    return Frame.create(protocol, serial, payload)


def build_ack(protocol: int, serial: int) -> bytes:
    """
    Build the acknowledgment frame echoing a received frame's type and serial.

    Example: build_ack(0x01, 1) == 78 78 05 01 00 01 D9 DC 0D 0A
    """
    return encode_frame(protocol, serial, b"")
