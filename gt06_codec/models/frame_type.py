"""GT06 protocol number enumeration."""
from enum import IntEnum
from typing import Optional


class FrameType(IntEnum):
    """Protocol numbers (frame type tags) understood by the parser."""
    LOGIN = 0x01
    STATUS = 0x10
    GPS = 0x12
    HEARTBEAT = 0x13
    STRING_INFO = 0x15
    ALARM = 0x16
    COMMAND_RESPONSE = 0x80

    @classmethod
    def lookup(cls, protocol: int) -> Optional['FrameType']:
        """Return the FrameType for a raw tag, or None when the tag is unknown."""
        try:
            return cls(protocol)
        except ValueError:
            return None
