"""Wire encoding for the Timer characteristic values."""

import struct
from typing import Optional, Union

from gatttime.errors import CodecError

UINT32_MASK = 0xFFFFFFFF
UINT32_WIDTH = 4

# GATT values are little-endian
_UINT32 = struct.Struct("<I")

BytesLike = Union[bytes, bytearray, memoryview]


class ValueCodec:
    """Encode and decode the unsigned 32-bit elapsed/offset values."""

    @staticmethod
    def wrap(value: int) -> int:
        """Truncate an integer to its unsigned 32-bit representation."""
        return int(value) & UINT32_MASK

    @staticmethod
    def encode(value: int) -> bytes:
        """
        Encode an integer as four little-endian bytes.

        Values outside the uint32 range wrap modulo 2**32.
        """
        return _UINT32.pack(ValueCodec.wrap(value))

    @staticmethod
    def decode(data: Optional[BytesLike]) -> int:
        """
        Decode the leading four bytes of a payload as an unsigned integer.

        Parameters:
            data: Raw characteristic value; trailing bytes beyond the first four are ignored.

        Returns:
            int: Value in the range [0, 2**32 - 1].

        Raises:
            CodecError: If the payload is missing or shorter than four bytes.
        """
        if data is None:
            raise CodecError("Cannot decode uint32 from empty payload")
        raw = bytes(data)
        if len(raw) < UINT32_WIDTH:
            raise CodecError(
                f"Cannot decode uint32 from {len(raw)} byte payload: {raw.hex()}"
            )
        return _UINT32.unpack_from(raw, 0)[0]


__all__ = ["UINT32_MASK", "UINT32_WIDTH", "ValueCodec"]
