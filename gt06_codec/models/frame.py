"""Decoded GT06 frame model."""
from dataclasses import dataclass
from typing import Optional

from .frame_type import FrameType


@dataclass(frozen=True)
class Frame:
    """One complete protocol message between the 0x7878 header and 0x0D0A trailer."""
    protocol: int
    serial: int
    payload: bytes

    @staticmethod
    def create(protocol: int, serial: int, payload: bytes = b"") -> 'Frame':
        """Create a frame."""
        return Frame(protocol=protocol, serial=serial & 0xFFFF, payload=bytes(payload))

    @property
    def frame_type(self) -> Optional[FrameType]:
        """Known frame type, or None for an UNKNOWN(raw tag) frame."""
        return FrameType.lookup(self.protocol)

    @property
    def type_name(self) -> str:
        frame_type = self.frame_type
        return frame_type.name if frame_type is not None else f"UNKNOWN(0x{self.protocol:02X})"

    def __repr__(self) -> str:
        return (
            f"Frame(type={self.type_name}, serial={self.serial}, "
            f"payload={self.payload.hex(' ') if self.payload else '(empty)'})"
        )
