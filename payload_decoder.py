"""
Payload decoding for the temperature/humidity characteristics.

Wire format (both characteristics):
    byte 0      reserved, ignored
    bytes 1-2   little-endian unsigned 16-bit value, scaled by 1/100
    bytes 3+    ignored
"""

import struct
from decimal import Decimal

from errors import PayloadTooShortError

PAYLOAD_MIN_LENGTH = 3
VALUE_OFFSET = 1
VALUE_SCALE_EXPONENT = -2  # raw / 100


def decode_payload(data) -> Decimal:
    """
    Decode a raw characteristic buffer into a fixed-point physical value.

    Args:
        data: bytes-like buffer read from the characteristic

    Returns:
        Decimal with exactly two fractional digits (0x1234 -> 46.60)

    Raises:
        PayloadTooShortError: if the buffer has fewer than 3 bytes
    """
    if data is None or len(data) < PAYLOAD_MIN_LENGTH:
        length = 0 if data is None else len(data)
        raise PayloadTooShortError(
            f"Payload too short: {length} byte(s), need {PAYLOAD_MIN_LENGTH}"
        )

    (raw,) = struct.unpack_from('<H', bytes(data), VALUE_OFFSET)
    return Decimal(raw).scaleb(VALUE_SCALE_EXPONENT)
