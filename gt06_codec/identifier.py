"""IMEI <-> packed BCD conversion used by GT06 login frames."""
from .errors import InvalidIdentifier

IMEI_BCD_SIZE = 8  # 16 digits, two per byte


def encode_imei(imei: str) -> bytes:
    """
    Pack a 15-16 digit IMEI into 8 BCD bytes.

    A 15-digit IMEI is left-padded with one zero before packing.

    Raises:
        InvalidIdentifier: If the padded value is not exactly 16 decimal digits
    """
    digits = str(imei)
    if len(digits) == 15:
        digits = "0" + digits
    if len(digits) != 16 or not digits.isascii() or not digits.isdigit():
        raise InvalidIdentifier(f"IMEI must be 15 or 16 decimal digits, got {imei!r}")

    return bytes((int(digits[i]) << 4) | int(digits[i + 1]) for i in range(0, 16, 2))


def decode_imei(data: bytes) -> str:
    """
    Unpack 8 BCD bytes into an IMEI string, stripping leading zero padding.

    An all-zero identifier decodes to "0".

    Raises:
        InvalidIdentifier: If data is not 8 bytes or holds a nibble above 9
    """
    if len(data) != IMEI_BCD_SIZE:
        raise InvalidIdentifier(f"IMEI field must be {IMEI_BCD_SIZE} bytes, got {len(data)}")

    digits = []
    for byte in data:
        high, low = byte >> 4, byte & 0x0F
        if high > 9 or low > 9:
            raise InvalidIdentifier(f"Invalid BCD byte 0x{byte:02X} in IMEI field {bytes(data).hex()}")
        digits.append(str(high))
        digits.append(str(low))

    return "".join(digits).lstrip("0") or "0"
