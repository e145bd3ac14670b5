import random
import struct

import pytest

from gt06_codec.crc import crc_itu
from gt06_codec.frame_codec import HEADER, TRAILER, build_ack, encode_frame
from gt06_codec.models.diagnostic import Diagnostic, DiagnosticKind
from gt06_codec.models.frame import Frame
from gt06_codec.stream_reassembler import StreamReassembler, decode_stream


def _kinds(items):
    return [item.kind if isinstance(item, Diagnostic) else item.protocol for item in items]


# Any byte except the first header byte, so noise can never contain or end in a header
NOISE_BYTES = [b for b in range(256) if b != HEADER[0]]


@pytest.fixture
def reassembler() -> StreamReassembler:
    return StreamReassembler()


@pytest.fixture
def stream(builder) -> bytes:
    """LOGIN, GPS, HEARTBEAT and a STRING_INFO frame back to back."""
    return builder.login() + builder.gps(22.5, 114.0, speed=40) + builder.heartbeat() + builder.string_info("IGN ON")


class TestFraming:
    def test_single_frame(self, reassembler):
        items = decode_stream(reassembler, build_ack(0x01, 1))
        assert items == [Frame.create(0x01, 1)]
        assert reassembler.buffered == 0
        assert reassembler.frames_decoded == 1

    def test_frames_in_order(self, reassembler, stream):
        items = decode_stream(reassembler, stream)
        assert [item.protocol for item in items] == [0x01, 0x12, 0x13, 0x15]
        assert [item.serial for item in items] == [1, 2, 3, 4]

    def test_partial_frame_waits_for_rest(self, reassembler, builder):
        packet = builder.login()
        assert decode_stream(reassembler, packet[:7]) == []
        assert reassembler.buffered == 7
        items = decode_stream(reassembler, packet[7:])
        assert len(items) == 1
        assert reassembler.buffered == 0

    def test_iterator_is_lazy(self, reassembler, stream):
        items = reassembler.feed(stream)
        first = next(items)
        assert first.protocol == 0x01
        assert reassembler.buffered == len(stream) - 18
        assert len(list(items)) == 3


class TestChunkInvariance:
    def test_byte_by_byte_matches_one_shot(self, stream):
        one_shot = decode_stream(StreamReassembler(), stream)

        chunked = StreamReassembler()
        items = []
        for i in range(len(stream)):
            items.extend(chunked.feed(stream[i:i + 1]))

        assert items == one_shot

    @pytest.mark.parametrize("size", [2, 3, 5, 7, 13, 64])
    def test_fixed_size_chunks_with_noise(self, builder, size):
        data = b"\x01\x02\x03" + builder.login() + b"\xFF\x00" + builder.heartbeat() + b"\x42"
        one_shot = decode_stream(StreamReassembler(), data)

        chunked = StreamReassembler()
        items = []
        for i in range(0, len(data), size):
            items.extend(decode_stream(chunked, data[i:i + size]))

        assert items == one_shot
        assert chunked.pending_noise == 1

    @pytest.mark.parametrize("seed", range(8))
    def test_random_partitions_match_one_shot(self, builder, seed):
        rng = random.Random(seed)
        corrupt = bytearray(builder.alarm(0x02))
        corrupt[5] ^= 0x40
        data = (b"\x00\x78\x01" + builder.login() + builder.gps(-33.9, 151.2, speed=88) + bytes(corrupt)
                + b"\xAA" * 4 + builder.heartbeat() + builder.status(70) + b"\x33")
        one_shot = decode_stream(StreamReassembler(), data)

        cuts = sorted(rng.sample(range(1, len(data)), rng.randint(1, len(data) // 3)))
        chunked = StreamReassembler()
        items = []
        for start, end in zip([0] + cuts, cuts + [len(data)]):
            items.extend(decode_stream(chunked, data[start:end]))

        assert items == one_shot
        assert [item.protocol for item in items if isinstance(item, Frame)] == [0x01, 0x12, 0x13, 0x10]


class TestResync:
    def test_noise_before_header(self, reassembler, builder):
        items = decode_stream(reassembler, b"\x01\x02\x03" + builder.login())
        assert _kinds(items) == [DiagnosticKind.RESYNC, 0x01]
        assert items[0].discarded == 3

    def test_noise_between_frames_is_reported_once(self, reassembler, builder):
        data = builder.login() + b"\xAA" * 10 + builder.heartbeat()
        items = decode_stream(reassembler, data)
        assert _kinds(items) == [0x01, DiagnosticKind.RESYNC, 0x13]
        assert items[1].discarded == 10

    def test_noise_only_is_pending(self, reassembler):
        assert decode_stream(reassembler, b"\x00\x01\x02\x03") == []
        assert reassembler.pending_noise == 4
        assert reassembler.buffered == 0

    def test_header_split_after_noise(self, reassembler, builder):
        packet = builder.login()
        assert decode_stream(reassembler, b"\x10\x20" + packet[:1]) == []
        assert reassembler.buffered == 1
        items = decode_stream(reassembler, packet[1:])
        assert _kinds(items) == [DiagnosticKind.RESYNC, 0x01]
        assert items[0].discarded == 2

    def test_reset_forgets_everything(self, reassembler, builder):
        decode_stream(reassembler, b"\x01\x02" + builder.login()[:6])
        reassembler.reset()
        assert reassembler.buffered == 0
        assert reassembler.pending_noise == 0

    @pytest.mark.parametrize("seed", range(10))
    def test_random_noise_then_one_frame(self, reassembler, builder, seed):
        rng = random.Random(seed)
        noise = bytes(rng.choice(NOISE_BYTES) for _ in range(rng.randint(1, 600)))

        items = decode_stream(reassembler, noise + builder.gps(51.5, -0.12))

        frames = [item for item in items if isinstance(item, Frame)]
        assert len(frames) == 1
        assert frames[0].protocol == 0x12
        assert _kinds(items) == [DiagnosticKind.RESYNC, 0x12]
        assert items[0].discarded == len(noise)
        assert reassembler.buffered == 0


class TestCorruptFrames:
    def test_checksum_mismatch_then_good_frame(self, reassembler, builder):
        bad = bytearray(builder.login())
        bad[-3] ^= 0xFF
        good = builder.heartbeat()

        items = decode_stream(reassembler, bytes(bad) + good)

        assert _kinds(items) == [DiagnosticKind.CHECKSUM_MISMATCH, 0x13]
        assert items[0].discarded == len(bad)
        assert reassembler.frames_discarded == 1
        assert reassembler.frames_decoded == 1

    def test_bit_flip_in_payload(self, reassembler, builder):
        bad = bytearray(builder.gps(10.0, 20.0))
        bad[10] ^= 0x04
        items = decode_stream(reassembler, bytes(bad))
        assert _kinds(items) == [DiagnosticKind.CHECKSUM_MISMATCH]

    def test_every_bit_flip_then_good_frame(self, builder):
        bad = builder.login()
        good = builder.heartbeat()
        # Length byte left intact so the corrupt slice keeps its boundary
        for index in range(3, len(bad) - 2):
            for bit in range(8):
                corrupted = bytearray(bad)
                corrupted[index] ^= 1 << bit
                reassembler = StreamReassembler()

                items = decode_stream(reassembler, bytes(corrupted) + good)

                assert _kinds(items) == [DiagnosticKind.CHECKSUM_MISMATCH, 0x13]
                assert items[0].discarded == len(bad)
                assert items[1].serial == 2

    def test_bad_trailer(self, reassembler, builder):
        bad = builder.login()[:-2] + b"\x00\x00"
        items = decode_stream(reassembler, bad + builder.heartbeat())
        assert _kinds(items) == [DiagnosticKind.BAD_TRAILER, 0x13]

    def test_length_below_minimum(self, reassembler):
        # Checksum-valid frame whose length byte is below the fixed overhead
        short = HEADER + b"\x02" + struct.pack('>H', crc_itu(b"\x02")) + TRAILER
        items = decode_stream(reassembler, short + build_ack(0x13, 9))
        assert _kinds(items) == [DiagnosticKind.MALFORMED_FRAME, 0x13]
        assert items[0].discarded == 7

    def test_corrupt_slice_is_not_rescanned(self, reassembler):
        # A header hidden inside a corrupt frame's payload is discarded with it
        inner = build_ack(0x13, 5)
        outer = bytearray(encode_frame(0x15, 1, inner))
        outer[-3] ^= 0x01
        items = decode_stream(reassembler, bytes(outer))
        assert _kinds(items) == [DiagnosticKind.CHECKSUM_MISMATCH]
        assert reassembler.buffered == 0
