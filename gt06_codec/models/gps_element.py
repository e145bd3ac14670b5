"""GPS element model for GT06 location frames."""
from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass
class LbsElement:
    """Cell tower (LBS) block that follows the GPS block."""
    lac: int
    cell_id: int
    mcc: int
    mnc: int


@dataclass
class GpsElement:
    """GPS block of a location frame: fix time, position, speed and course/status."""
    gps_time: Optional[datetime]
    satellites: int
    latitude: float
    longitude: float
    speed: int
    course: int
    east: bool
    north: bool
    positioned: bool
    realtime: bool
    lbs: Optional[LbsElement] = None

    @staticmethod
    def is_lat_valid(latitude: float) -> bool:
        """Check if latitude is valid."""
        return -90 <= latitude <= 90

    @staticmethod
    def is_lng_valid(longitude: float) -> bool:
        """Check if longitude is valid."""
        return -180 <= longitude <= 180

    @property
    def is_valid(self) -> bool:
        return self.is_lat_valid(self.latitude) and self.is_lng_valid(self.longitude)
