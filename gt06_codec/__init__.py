"""GT06 protocol codec: checksum, identifier, frame codec and stream reassembly."""
from .crc import CRC, crc_itu
from .errors import (
    Gt06Error, MalformedFrame, FrameTooShort, BadHeader, BadTrailer, ChecksumMismatch,
    InvalidIdentifier, PayloadTooLarge, MalformedPayload, RejectedIdentifier,
)
from .identifier import encode_imei, decode_imei
from .frame_codec import encode_frame, decode_frame, build_ack
from .stream_reassembler import StreamReassembler, decode_stream
from .models import FrameType, Frame, Diagnostic, DiagnosticKind, GpsElement, LbsElement
