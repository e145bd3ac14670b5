"""GT06 codec models."""
from .frame_type import FrameType
from .frame import Frame
from .diagnostic import Diagnostic, DiagnosticKind
from .gps_element import GpsElement, LbsElement
