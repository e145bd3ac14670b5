"""
Typed events produced by the frame dispatcher.

Each event flattens to a plain record dict (to_record) that the publisher
writes to CSV, RabbitMQ or the HTTP relay.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Any, ClassVar, Dict, Optional

from gt06_codec.models.gps_element import GpsElement

UNKNOWN_IMEI = "UNKNOWN"

RECORD_TRACKDATA = "trackdata"
RECORD_EVENT = "event"
RECORD_ALARM = "alarm"


def _format_time(value: Optional[datetime]) -> str:
    return value.isoformat() if value is not None else ''


@dataclass
class Gt06Event:
    """Fields every decoded frame carries."""
    imei: str
    protocol: int
    serial: int
    server_time: datetime

    record_type: ClassVar[str] = RECORD_EVENT
    event_name: ClassVar[str] = "event"

    def to_record(self) -> Dict[str, Any]:
        """Flatten to a record dict for publishing."""
        return {
            'server_time': _format_time(self.server_time),
            'imei': self.imei,
            'event': self.event_name,
            'protocol': f"0x{self.protocol:02X}",
            'serial': self.serial,
        }


@dataclass
class PayloadEvent(Gt06Event):
    """Event that keeps the raw frame payload."""
    payload: bytes

    def to_record(self) -> Dict[str, Any]:
        record = super().to_record()
        record['payload'] = self.payload.hex()
        return record


@dataclass
class LoginEvent(Gt06Event):
    event_name: ClassVar[str] = "login"


@dataclass
class GpsEvent(Gt06Event):
    """Location fix from a GPS (0x12) frame."""
    gps: GpsElement

    record_type: ClassVar[str] = RECORD_TRACKDATA
    event_name: ClassVar[str] = "gps"

    def to_record(self) -> Dict[str, Any]:
        gps = self.gps
        record = super().to_record()
        record.update({
            'gps_time': _format_time(gps.gps_time),
            'latitude': gps.latitude,
            'longitude': gps.longitude,
            'speed': gps.speed,
            'course': gps.course,
            'satellites': gps.satellites,
            'east': gps.east,
            'north': gps.north,
            'positioned': gps.positioned,
            'realtime': gps.realtime,
            'is_valid': 1 if gps.is_valid and gps.positioned else 0,
        })
        if gps.lbs is not None:
            record.update({
                'lac': gps.lbs.lac,
                'cell_id': gps.lbs.cell_id,
                'mcc': gps.lbs.mcc,
                'mnc': gps.lbs.mnc,
            })
        return record


@dataclass
class HeartbeatEvent(PayloadEvent):
    event_name: ClassVar[str] = "heartbeat"


@dataclass
class StatusEvent(PayloadEvent):
    event_name: ClassVar[str] = "status"

    @property
    def battery_level(self) -> Optional[int]:
        """First payload byte, or None for an empty STATUS frame."""
        return self.payload[0] if self.payload else None

    def to_record(self) -> Dict[str, Any]:
        record = super().to_record()
        record['battery_level'] = self.battery_level
        return record


@dataclass
class AlarmEvent(PayloadEvent):
    record_type: ClassVar[str] = RECORD_ALARM
    event_name: ClassVar[str] = "alarm"

    @property
    def alarm_code(self) -> Optional[int]:
        return self.payload[0] if self.payload else None

    def to_record(self) -> Dict[str, Any]:
        record = super().to_record()
        record['alarm_code'] = self.alarm_code
        return record


@dataclass
class StringInfoEvent(PayloadEvent):
    event_name: ClassVar[str] = "string_info"

    @property
    def text(self) -> str:
        return self.payload.decode('utf-8', errors='replace')

    def to_record(self) -> Dict[str, Any]:
        record = super().to_record()
        record['text'] = self.text
        return record


@dataclass
class CommandResponseEvent(PayloadEvent):
    event_name: ClassVar[str] = "command_response"


@dataclass
class UnknownFrameEvent(PayloadEvent):
    """Frame with a tag the dispatcher has no handler for; raw tag kept in protocol."""
    event_name: ClassVar[str] = "unknown"
