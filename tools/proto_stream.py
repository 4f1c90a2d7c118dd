"""
proto_stream.py - Byte stream used by the argument codec

The codec only talks to a stream through a narrow contract:

    write_bytes(data)            raw bytes out
    read_bytes(length) -> bytes  raw bytes in (short at end of stream)
    write_fixed(fmt, value)      fixed-width number, struct format code
    read_fixed(fmt) -> value
    write_string(data)           uint16 length prefix + bytes
    read_string() -> bytes

Any object providing these methods can be handed to Argument.write() and
decode(). ProtoStream implements them over a binary file object, an
in-memory io.BytesIO by default.

Fixed-width values use the host's native byte order with standard sizes
(struct '=' prefix). There is no endianness conversion: a stream written on
a big-endian host cannot be read on a little-endian one.

Usage:
    from proto_stream import ProtoStream

    stream = ProtoStream()
    stream.write_fixed('i', 555)
    stream.rewind()
    stream.read_fixed('i')   # 555
"""

import io
import struct
from typing import BinaryIO, Optional

from proto_errors import TruncatedStream


NATIVE_ORDER = '='

# Format codes accepted by write_fixed/read_fixed
FIXED_FORMATS = frozenset('bBhHiIqQd')

STRING_MAX = 0xFFFF
BLOB_MAX = 0xFFFFFFFF


class ProtoStream:
    """Binary stream over a file object (in-memory when none is given).

    Not safe for concurrent use: one encode or decode in flight per
    stream.
    """

    def __init__(self, buffer: Optional[BinaryIO] = None):
        self._buffer = buffer if buffer is not None else io.BytesIO()
        self._codecs = {}

    @classmethod
    def from_bytes(cls, data: bytes) -> 'ProtoStream':
        """Stream positioned at the start of `data`, ready for reading."""
        return cls(io.BytesIO(data))

    def _codec(self, fmt: str) -> struct.Struct:
        codec = self._codecs.get(fmt)
        if codec is None:
            if len(fmt) != 1 or fmt not in FIXED_FORMATS:
                raise ValueError(f"Unsupported fixed format: {fmt!r}")
            codec = struct.Struct(NATIVE_ORDER + fmt)
            self._codecs[fmt] = codec
        return codec

    def write_bytes(self, data: bytes) -> None:
        self._buffer.write(data)

    def read_bytes(self, length: int) -> bytes:
        """Read up to `length` bytes; fewer are returned at end of stream."""
        if length <= 0:
            return b''
        return self._buffer.read(length)

    def read_exact(self, length: int, what: str = 'field') -> bytes:
        """Read exactly `length` bytes or raise TruncatedStream."""
        data = self.read_bytes(length)
        if len(data) != length:
            raise TruncatedStream(length, len(data), what)
        return data

    def write_fixed(self, fmt: str, value) -> None:
        codec = self._codec(fmt)
        try:
            self._buffer.write(codec.pack(value))
        except struct.error as e:
            raise ValueError(f"Cannot pack {value!r} as '{fmt}': {e}") from e

    def read_fixed(self, fmt: str):
        codec = self._codec(fmt)
        data = self.read_exact(codec.size, f"'{fmt}' value")
        return codec.unpack(data)[0]

    def write_string(self, data: bytes) -> None:
        if len(data) > STRING_MAX:
            raise ValueError(
                f"String too long: {len(data)} bytes (max {STRING_MAX})")
        self.write_fixed('H', len(data))
        self.write_bytes(data)

    def read_string(self) -> bytes:
        size = self.read_fixed('H')
        return self.read_exact(size, 'string')

    def getvalue(self) -> bytes:
        """Everything written so far (in-memory streams only)."""
        if not hasattr(self._buffer, 'getvalue'):
            raise TypeError("Underlying buffer does not support getvalue()")
        return self._buffer.getvalue()

    def seek(self, offset: int, whence: int = io.SEEK_SET) -> int:
        return self._buffer.seek(offset, whence)

    def tell(self) -> int:
        return self._buffer.tell()

    def rewind(self) -> None:
        """Move back to the start so written data can be read."""
        self._buffer.seek(0)

    def at_end(self) -> bool:
        """True when no unread bytes remain."""
        pos = self._buffer.tell()
        if self._buffer.read(1):
            self._buffer.seek(pos)
            return False
        return True
