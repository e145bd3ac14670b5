"""
Error taxonomy for the GT06 protocol engine.

MalformedFrame and its subclasses are recoverable: the stream reassembler
turns them into diagnostics and keeps reading. InvalidIdentifier and
PayloadTooLarge are raised on the encode path to the caller.
MalformedPayload is raised by payload decoders
and reported per frame. RejectedIdentifier ends a single connection.
"""


class Gt06Error(Exception):
    """Base class for GT06 protocol errors."""


class MalformedFrame(Gt06Error):
    """Frame bytes could not be decoded."""


class FrameTooShort(MalformedFrame):
    """Fewer bytes than the frame skeleton or the declared length requires."""


class BadHeader(MalformedFrame):
    """Frame does not start with 0x78 0x78."""


class BadTrailer(MalformedFrame):
    """Frame does not end with 0x0D 0x0A."""


class ChecksumMismatch(MalformedFrame):
    """CRC over length..serial does not match the transmitted checksum."""

    def __init__(self, expected: int, actual: int):
        super().__init__(f"CRC mismatch: frame carries 0x{expected:04X}, computed 0x{actual:04X}")
        self.expected = expected
        self.actual = actual


class InvalidIdentifier(Gt06Error, ValueError):
    """Device identifier is not a 15-16 digit decimal string (or not valid BCD)."""


class PayloadTooLarge(Gt06Error, ValueError):
    """Payload does not fit the single-byte length field."""


class MalformedPayload(Gt06Error, ValueError):
    """Payload of a known frame type is too short or otherwise cannot be interpreted."""


class RejectedIdentifier(Gt06Error):
    """Device identifier was refused by the allow-list."""

    def __init__(self, imei: str):
        super().__init__(f"Device {imei} is not on the allow-list")
        self.imei = imei
