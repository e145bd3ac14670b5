import pytest

from gt06_codec.frame_codec import build_ack, encode_frame
from gt06_codec.models.diagnostic import DiagnosticKind
from gt06_parser.frame_dispatcher import FrameDispatcher
from gt06_parser.parser_load_monitor import ParserNodeLoadMonitor
from gt06_parser.session import Gt06Session


@pytest.fixture
def load_monitor() -> ParserNodeLoadMonitor:
    return ParserNodeLoadMonitor("test-node")


@pytest.fixture
def session(dispatcher, load_monitor) -> Gt06Session:
    return Gt06Session(dispatcher, "127.0.0.1:40000", load_monitor)


def test_login_then_gps_in_one_chunk(session, builder, load_monitor):
    results = session.feed(builder.login() + builder.gps(22.5, 114.0))

    assert [result.ack for result in results] == [build_ack(0x01, 1), build_ack(0x12, 2)]
    assert session.imei == "356860820045174"
    assert results[1].event.imei == "356860820045174"
    assert load_monitor.total_frames == 2


def test_acks_follow_frame_order_across_chunks(session, builder):
    data = builder.login() + builder.heartbeat() + builder.status(50)
    acks = []
    for i in range(0, len(data), 4):
        acks.extend(result.ack for result in session.feed(data[i:i + 4]))
    assert acks == [build_ack(0x01, 1), build_ack(0x13, 2), build_ack(0x10, 3)]


def test_noise_becomes_diagnostic(session, builder, load_monitor):
    results = session.feed(b"\x00\x11\x22" + builder.login())

    assert results[0].diagnostic.kind is DiagnosticKind.RESYNC
    assert results[0].ack is None
    assert results[1].ack == build_ack(0x01, 1)
    assert load_monitor.total_diagnostics == 1


def test_rejected_login_stops_processing(builder, load_monitor):
    session = Gt06Session(FrameDispatcher(allow_list=lambda imei: False), "127.0.0.1:40001", load_monitor)

    results = session.feed(builder.login() + builder.gps(1.0, 1.0))

    assert len(results) == 1
    assert results[0].close
    assert session.closed
    assert session.feed(builder.heartbeat()) == []


def test_malformed_payload_is_counted(session, load_monitor):
    results = session.feed(encode_frame(0x12, 9, b"\x00" * 5))

    assert results[0].diagnostic.kind is DiagnosticKind.MALFORMED_PAYLOAD
    assert results[0].ack == build_ack(0x12, 9)
    assert load_monitor.total_diagnostics == 1


def test_close_discards_buffered_bytes(session, builder):
    session.feed(b"\x01\x02" + builder.login()[:5])
    session.close()

    assert session.closed
    assert session.reassembler.buffered == 0
    assert session.feed(builder.login()) == []
