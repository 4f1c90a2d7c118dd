"""
Tests for the in-memory/file protocol stream.
"""

import struct

import pytest
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / 'tools'))

from proto_stream import ProtoStream, STRING_MAX
from proto_errors import TruncatedStream


class TestFixedValues:
    """Tests for fixed-width read/write."""

    @pytest.mark.parametrize('fmt,value', [
        ('B', 255),
        ('b', -128),
        ('H', 65535),
        ('i', -2**31),
        ('I', 2**32 - 1),
        ('q', -2**63),
        ('Q', 2**64 - 1),
        ('d', 3.5),
    ])
    def test_roundtrip(self, stream, fmt, value):
        stream.write_fixed(fmt, value)
        stream.rewind()
        assert stream.read_fixed(fmt) == value
        assert stream.at_end()

    def test_native_byte_order(self, stream):
        stream.write_fixed('i', 555)
        assert stream.getvalue() == struct.pack('=i', 555)

    def test_unsupported_format(self, stream):
        with pytest.raises(ValueError, match='Unsupported fixed format'):
            stream.write_fixed('x', 1)
        with pytest.raises(ValueError):
            stream.read_fixed('<i')

    def test_value_out_of_range(self, stream):
        with pytest.raises(ValueError, match='Cannot pack'):
            stream.write_fixed('B', 256)

    def test_truncated_read(self):
        s = ProtoStream.from_bytes(b'\x01\x02')
        with pytest.raises(TruncatedStream) as exc_info:
            s.read_fixed('I')
        assert exc_info.value.expected == 4
        assert exc_info.value.received == 2


class TestStrings:
    """Tests for length-prefixed strings."""

    def test_roundtrip(self, stream):
        stream.write_string(b'hello')
        assert stream.getvalue() == struct.pack('=H', 5) + b'hello'
        stream.rewind()
        assert stream.read_string() == b'hello'

    def test_empty(self, stream):
        stream.write_string(b'')
        stream.rewind()
        assert stream.read_string() == b''

    def test_max_length(self, stream):
        stream.write_string(b'x' * STRING_MAX)
        stream.rewind()
        assert len(stream.read_string()) == STRING_MAX

    def test_too_long(self, stream):
        with pytest.raises(ValueError, match='too long'):
            stream.write_string(b'x' * (STRING_MAX + 1))
        assert stream.getvalue() == b''

    def test_truncated_body(self):
        s = ProtoStream.from_bytes(struct.pack('=H', 10) + b'abc')
        with pytest.raises(TruncatedStream):
            s.read_string()


class TestRawBytes:
    """Tests for raw byte access and positioning."""

    def test_short_read_at_end(self):
        s = ProtoStream.from_bytes(b'abc')
        assert s.read_bytes(10) == b'abc'
        assert s.read_bytes(1) == b''

    def test_zero_length_read(self, stream):
        assert stream.read_bytes(0) == b''

    def test_read_exact(self):
        s = ProtoStream.from_bytes(b'abcd')
        assert s.read_exact(2) == b'ab'
        with pytest.raises(TruncatedStream):
            s.read_exact(3)

    def test_at_end_does_not_consume(self):
        s = ProtoStream.from_bytes(b'z')
        assert not s.at_end()
        assert s.tell() == 0
        assert s.read_bytes(1) == b'z'
        assert s.at_end()

    def test_file_backed_stream(self, tmp_path):
        path = tmp_path / 'data.bin'
        with open(path, 'wb') as f:
            s = ProtoStream(f)
            s.write_fixed('Q', 42)
            s.write_string(b'file')
            with pytest.raises(TypeError):
                s.getvalue()

        with open(path, 'rb') as f:
            s = ProtoStream(f)
            assert s.read_fixed('Q') == 42
            assert s.read_string() == b'file'
            assert s.at_end()
