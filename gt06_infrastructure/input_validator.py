"""
Input validation and sanitization utilities for the GT06 parser node
"""
import re
import logging
from typing import Optional, Any

logger = logging.getLogger(__name__)

# IMEI validation: 15 digits (16 with the BCD pad digit), numeric only
IMEI_PATTERN = re.compile(r'^\d{15,16}$')


def validate_imei(imei: Any) -> Optional[str]:
    """
    Validate and sanitize IMEI input.

    Args:
        imei: IMEI value (string, int, or other)

    Returns:
        IMEI digit string (15 or 16 digits) or None if invalid
    """
    if imei is None:
        return None

    imei_str = str(imei).strip()

    if not IMEI_PATTERN.match(imei_str):
        logger.warning(f"Invalid IMEI format: {imei!r}")
        return None

    return imei_str


def validate_port(port: Any) -> Optional[int]:
    """
    Validate port number.

    Args:
        port: Port number (int, string, or other)

    Returns:
        Valid port number (0-65535, 0 meaning "any free port") or None if invalid
    """
    try:
        port_int = int(port)
    except (ValueError, TypeError):
        logger.warning(f"Invalid port format: {port}")
        return None

    if 0 <= port_int <= 65535:
        return port_int

    logger.warning(f"Port out of range: {port_int}")
    return None
