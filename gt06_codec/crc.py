"""CRC-16/ITU calculation for GT06 frame validation."""


class CRC:
    """CRC-16 calculator with configurable (reflected) polynomial, preset and final XOR."""

    ITU = None  # Will be initialized below

    def __init__(self, polynom: int, preset: int = 0xFFFF, xor_out: int = 0xFFFF):
        """Initialize CRC with reflected polynomial."""
        self._polynom = polynom & 0xFFFF
        self._preset = preset & 0xFFFF
        self._xor_out = xor_out & 0xFFFF

    def calc_crc16(self, buffer: bytes) -> int:
        """Calculate CRC-16 for the entire buffer."""
        return self._calc_crc16(buffer, 0, len(buffer), self._polynom, self._preset) ^ self._xor_out

    @staticmethod
    def _calc_crc16(buffer: bytes, offset: int, buf_len: int, polynom: int, preset: int) -> int:
        """Calculate CRC-16 (LSB first) with specified parameters."""
        crc = preset & 0xFFFF
        for i in range(offset, offset + buf_len):
            crc ^= buffer[i] & 0xFF
            for _ in range(8):
                if crc & 0x0001:
                    crc = (crc >> 1) ^ polynom
                else:
                    crc >>= 1

        return crc & 0xFFFF


# GT06 "CRC-ITU": polynomial 0x1021 bit-reversed (0x8408), preset 0xFFFF, inverted result
CRC.ITU = CRC(0x8408)


def crc_itu(data: bytes) -> int:
    """Checksum of a GT06 frame region (length byte through serial number)."""
    return CRC.ITU.calc_crc16(data)
