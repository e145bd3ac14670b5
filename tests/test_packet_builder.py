from datetime import datetime, timedelta, timezone

import pytest

from gt06_codec.frame_codec import decode_frame
from gt06_codec.identifier import encode_imei
from gt06_codec.models.frame_type import FrameType
from gt06_codec.packet_builder import (
    Gt06PacketBuilder, SerialCounter, build_course_status, encode_datetime,
)
from gt06_codec.payload_decoder import decode_gps, parse_course_status


class TestSerialCounter:
    def test_starts_at_one(self):
        counter = SerialCounter()
        assert counter.peek() == 1
        assert [counter.next() for _ in range(3)] == [1, 2, 3]
        assert counter.peek() == 4

    def test_wraps_at_16_bits(self):
        counter = SerialCounter(0xFFFF)
        assert counter.next() == 0xFFFF
        assert counter.next() == 0


class TestGt06PacketBuilder:
    def test_login(self, builder):
        frame = decode_frame(builder.login())
        assert frame.frame_type is FrameType.LOGIN
        assert frame.serial == 1
        assert frame.payload == encode_imei("356860820045174")

    def test_serials_advance_per_frame(self, builder):
        serials = [decode_frame(packet).serial
                   for packet in (builder.login(), builder.heartbeat(), builder.status(80))]
        assert serials == [1, 2, 3]

    def test_shared_counter(self):
        counter = SerialCounter(100)
        first = Gt06PacketBuilder("123456789012345", counter)
        second = Gt06PacketBuilder("123456789012346", counter)
        assert decode_frame(first.login()).serial == 100
        assert decode_frame(second.login()).serial == 101

    def test_invalid_imei(self):
        with pytest.raises(ValueError):
            Gt06PacketBuilder("12345")

    def test_gps_southern_western_hemisphere(self, builder):
        moment = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
        frame = decode_frame(builder.gps(-33.5, -70.25, speed=80, heading=270, timestamp=moment))
        assert frame.frame_type is FrameType.GPS
        assert len(frame.payload) == 26

        gps = decode_gps(frame.payload)
        assert gps.gps_time == moment
        assert gps.latitude == pytest.approx(33.5)
        assert gps.longitude == pytest.approx(70.25)
        assert not gps.north
        assert not gps.east
        assert gps.course == 270
        assert gps.speed == 80
        assert gps.satellites == 12
        assert gps.positioned and gps.realtime
        assert (gps.lbs.lac, gps.lbs.cell_id, gps.lbs.mcc, gps.lbs.mnc) == (1, 0x000101, 0x02F5, 0)

    def test_gps_speed_is_clamped(self, builder):
        gps = decode_gps(decode_frame(builder.gps(1.0, 1.0, speed=400)).payload)
        assert gps.speed == 255

    def test_simple_frames(self, builder):
        assert decode_frame(builder.heartbeat(0x45)).payload == b"\x45"
        assert decode_frame(builder.status(87)).payload == bytes([87])
        assert decode_frame(builder.alarm(0x02)).frame_type is FrameType.ALARM
        string_frame = decode_frame(builder.string_info("ÜBER"))
        assert string_frame.frame_type is FrameType.STRING_INFO
        assert string_frame.payload.decode('utf-8') == "ÜBER"


def test_build_course_status():
    assert build_course_status(45, east=False, north=False, positioned=False, realtime=False) == 45
    assert build_course_status(360) & 0x01FF == 0
    flags = parse_course_status(build_course_status(123.6, east=True, north=False))
    assert flags == {'course': 124, 'east': True, 'north': False, 'positioned': True, 'realtime': True}


def test_encode_datetime_converts_to_utc():
    moment = datetime(2024, 6, 1, 2, 0, 0, tzinfo=timezone(timedelta(hours=3)))
    assert encode_datetime(moment) == bytes([24, 5, 31, 23, 0, 0])
