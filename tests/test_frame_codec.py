import struct

import pytest

from gt06_codec.crc import crc_itu
from gt06_codec.errors import (
    BadHeader, BadTrailer, ChecksumMismatch, FrameTooShort, MalformedFrame, PayloadTooLarge,
)
from gt06_codec.frame_codec import (
    HEADER, MAX_PAYLOAD_SIZE, TRAILER, build_ack, decode_frame, encode_frame,
)
from gt06_codec.identifier import encode_imei
from gt06_codec.models.frame_type import FrameType

LOGIN_PACKET = bytes.fromhex("78780D01" "0123456789012345" "0001" "8CDD" "0D0A")
LOGIN_ACK = bytes.fromhex("78780501" "0001" "D9DC" "0D0A")


def _with_crc(body: bytes) -> bytes:
    """Wrap length..serial bytes in header, correct CRC and trailer."""
    return HEADER + body + struct.pack('>H', crc_itu(body)) + TRAILER


class TestEncodeFrame:
    def test_login_example(self):
        assert encode_frame(0x01, 1, encode_imei("123456789012345")) == LOGIN_PACKET

    def test_login_length_counts_crc(self):
        packet = encode_frame(FrameType.LOGIN, 1, encode_imei("356860820045174"))
        assert packet[:4] == bytes.fromhex("78780D01")
        assert packet.endswith(b"\x0D\x0A")

    def test_length_field(self):
        packet = encode_frame(0x15, 9, b"hello")
        assert packet[2] == len(b"hello") + 5
        assert len(packet) == packet[2] + 5

    def test_serial_is_masked(self):
        assert decode_frame(encode_frame(0x13, 0x10005, b"\x01")).serial == 5

    def test_largest_payload(self):
        packet = encode_frame(0x15, 1, bytes(MAX_PAYLOAD_SIZE))
        assert packet[2] == 0xFF
        assert len(decode_frame(packet).payload) == MAX_PAYLOAD_SIZE

    def test_payload_too_large(self):
        with pytest.raises(PayloadTooLarge):
            encode_frame(0x15, 1, bytes(MAX_PAYLOAD_SIZE + 1))

    def test_protocol_must_fit_one_byte(self):
        with pytest.raises(ValueError):
            encode_frame(0x100, 1)


class TestDecodeFrame:
    def test_login_example(self):
        frame = decode_frame(LOGIN_PACKET)
        assert frame.protocol == FrameType.LOGIN
        assert frame.frame_type is FrameType.LOGIN
        assert frame.serial == 1
        assert frame.payload == bytes.fromhex("0123456789012345")

    @pytest.mark.parametrize("protocol", [0x00, 0x01, 0x12, 0x13, 0x16, 0x80, 0xFF])
    @pytest.mark.parametrize("length", [0, 1, 8, 19, 127, MAX_PAYLOAD_SIZE - 1, MAX_PAYLOAD_SIZE])
    def test_round_trip(self, protocol, length):
        payload = bytes((i * 7 + protocol) & 0xFF for i in range(length))
        for serial in (0, 1, 0x0D0A, 0x7878, 0xFFFF):
            frame = decode_frame(encode_frame(protocol, serial, payload))
            assert (frame.protocol, frame.serial, frame.payload) == (protocol, serial, payload)

    def test_unknown_tag_is_kept(self):
        frame = decode_frame(encode_frame(0x99, 3, b"\xAA"))
        assert frame.frame_type is None
        assert frame.type_name == "UNKNOWN(0x99)"

    def test_too_short(self):
        with pytest.raises(FrameTooShort):
            decode_frame(b"\x78\x78\x05\x0D")

    def test_bad_header(self):
        with pytest.raises(BadHeader):
            decode_frame(b"\x79" + LOGIN_PACKET[1:])

    def test_bad_trailer(self):
        with pytest.raises(BadTrailer):
            decode_frame(LOGIN_PACKET[:-1] + b"\x0B")

    def test_checksum_mismatch(self):
        corrupted = bytearray(LOGIN_PACKET)
        corrupted[6] ^= 0x10
        with pytest.raises(ChecksumMismatch) as exc_info:
            decode_frame(bytes(corrupted))
        assert exc_info.value.expected == 0x8CDD
        assert exc_info.value.actual != 0x8CDD

    @pytest.mark.parametrize("packet", [
        LOGIN_PACKET,
        LOGIN_ACK,
        encode_frame(0x15, 0xFFFF, b"IGN ON"),
        encode_frame(0x80, 0x1234, bytes(range(MAX_PAYLOAD_SIZE))),
    ])
    def test_every_single_bit_flip_is_a_checksum_mismatch(self, packet):
        # Length byte through CRC, the length byte included
        for index in range(2, len(packet) - 2):
            for bit in range(8):
                corrupted = bytearray(packet)
                corrupted[index] ^= 1 << bit
                with pytest.raises(ChecksumMismatch):
                    decode_frame(bytes(corrupted))

    def test_corrupted_length_byte(self):
        with pytest.raises(ChecksumMismatch):
            decode_frame(LOGIN_PACKET[:2] + b"\x0E" + LOGIN_PACKET[3:])

    def test_declared_length_mismatch(self):
        # Checksum is valid, but 0x0E + 5 does not match the 18 bytes on the wire
        body = b"\x0E" + LOGIN_PACKET[3:-4]
        with pytest.raises(FrameTooShort):
            decode_frame(_with_crc(body))

    def test_declared_length_below_minimum(self):
        with pytest.raises(FrameTooShort):
            decode_frame(_with_crc(b"\x02"))

    def test_errors_are_malformed_frames(self):
        for error in (FrameTooShort, BadHeader, BadTrailer, ChecksumMismatch):
            assert issubclass(error, MalformedFrame)


class TestBuildAck:
    def test_login_ack_example(self):
        assert build_ack(0x01, 1) == LOGIN_ACK

    def test_ack_echoes_type_and_serial(self):
        frame = decode_frame(build_ack(0x12, 0x0007))
        assert frame.protocol == 0x12
        assert frame.serial == 7
        assert frame.payload == b""
