"""Diagnostics emitted for malformed input on the receive path."""
from dataclasses import dataclass
from enum import Enum


class DiagnosticKind(str, Enum):
    """Kinds of non-fatal receive problems."""
    RESYNC = "resync"
    CHECKSUM_MISMATCH = "checksum_mismatch"
    BAD_TRAILER = "bad_trailer"
    MALFORMED_FRAME = "malformed_frame"
    MALFORMED_PAYLOAD = "malformed_payload"


@dataclass(frozen=True)
class Diagnostic:
    """A discarded region of the stream (or an uninterpretable payload) and why."""
    kind: DiagnosticKind
    discarded: int = 0
    detail: str = ""

    def __str__(self) -> str:
        text = f"{self.kind.value}: {self.discarded} bytes discarded"
        return f"{text} ({self.detail})" if self.detail else text
