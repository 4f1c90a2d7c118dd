#!/usr/bin/env python3
"""
argument_proto.py - Self-describing binary argument format

A tagged, recursive value model that encodes itself to a byte stream and
can be rebuilt from one without knowing the concrete type in advance.

Value Model
-----------
Argument is the abstract value; every argument has a name (may be empty,
need not be unique) and a fixed type tag. The variant set is closed:

    Int32, UInt64, Float64, String   scalars, held by value
    Blob                             raw bytes
    Array                            homogeneous sequence of int32, uint64,
                                     float64, string or struct elements
    Struct                           ordered, heterogeneous children

Every argument has at most one owner (a Struct, an Array or a
StructBuilder). Attaching an argument that is already owned raises
ValueError; release() detaches a child so it can be attached elsewhere.

Binary Format
-------------
    Argument:  tag(1) [element_tag(1), arrays only] name payload
    name:      length(u16) + bytes
    int32:     4 bytes     uint64: 8 bytes     float64: 8 bytes
    string:    length(u16) + bytes
    blob:      length(u32) + bytes
    array:     count(u64 LE) + element payloads, no per-element tag;
               struct elements write only their struct payload
    struct:    count(u64 LE) + complete child arguments

Scalars and length prefixes use native byte order (see proto_stream).
Counts are always 8-byte little-endian.

Type tags: int32=0 uint64=1 float64=2 string=3 array=4 struct=5 blob=7.
Tag 6 is reserved and never decodes.

Usage:
    from argument_proto import (
        ArgumentType, Int32, String, StructBuilder,
        decode_argument, encode_argument,
    )

    root = (StructBuilder.create()
            .add(Int32, 'a', 1)
            .add(StructBuilder.create().add(String, 'x', 'hi').build('b'))
            .build('root'))

    data = encode_argument(root)
    copy = decode_argument(data)
    copy.field('a', ArgumentType.INT32)                        # 1
    copy.child('b').field('x', ArgumentType.STRING)            # 'hi'
"""

import base64
import logging
import struct
import threading
import warnings
from enum import IntEnum
from types import MappingProxyType
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Tuple, Union

from proto_errors import (
    FieldNotFound, NestingTooDeep, ProtoError, TruncatedStream, TypeMismatch,
    UnknownTypeTag, UnsupportedElementType,
)
from proto_stream import BLOB_MAX, ProtoStream


logger = logging.getLogger(__name__)


class ArgumentType(IntEnum):
    """Wire type tags (1 byte)."""
    INT32 = 0
    UINT64 = 1
    FLOAT64 = 2
    STRING = 3
    ARRAY = 4
    STRUCT = 5
    # 6 is reserved
    BLOB = 7


ELEMENT_TYPES = frozenset({
    ArgumentType.INT32,
    ArgumentType.UINT64,
    ArgumentType.FLOAT64,
    ArgumentType.STRING,
    ArgumentType.STRUCT,
})

INT32_MIN = -2**31
INT32_MAX = 2**31 - 1
UINT64_MAX = 2**64 - 1

COUNT = struct.Struct('<Q')

# Nesting levels decode() accepts, counting the outermost argument
MAX_DEPTH = 128


def _encode_text(text: str) -> bytes:
    return text.encode('utf-8', 'surrogateescape')


def _decode_text(data: bytes) -> str:
    return data.decode('utf-8', 'surrogateescape')


def _read_exact(stream, length: int, what: str) -> bytes:
    data = stream.read_bytes(length)
    if len(data) != length:
        raise TruncatedStream(length, len(data), what)
    return data


def _write_count(stream, count: int) -> None:
    stream.write_bytes(COUNT.pack(count))


def _read_count(stream) -> int:
    return COUNT.unpack(_read_exact(stream, COUNT.size, 'count'))[0]


def _claim(owner, child: 'Argument') -> None:
    """Make `owner` the sole owner of `child`."""
    if not isinstance(child, Argument):
        raise ValueError(f"Expected an Argument, got {type(child).__name__}")
    if child._owner is not None:
        raise ValueError(
            f"Argument '{child.name}' already has an owner; release it first")
    node = owner
    while node is not None:
        if node is child:
            raise ValueError(f"Argument '{child.name}' cannot contain itself")
        node = getattr(node, '_owner', None)
    child._owner = owner


def _claim_all(owner, children: Iterable['Argument']) -> List['Argument']:
    """Claim every child or none of them."""
    claimed = []
    try:
        for child in children:
            _claim(owner, child)
            claimed.append(child)
    except Exception:
        for child in claimed:
            child._owner = None
        raise
    return claimed


# =============================================================================
# Value model
# =============================================================================

class Argument:
    """Abstract named value with a fixed wire type."""

    TYPE: ArgumentType = None

    def __init__(self, name: str = ''):
        if not isinstance(name, str):
            raise ValueError(
                f"Argument name must be a string, got {type(name).__name__}")
        self.name = name
        self._owner = None

    @property
    def type(self) -> ArgumentType:
        return self.TYPE

    @property
    def owner(self):
        """Container currently owning this argument, or None."""
        return self._owner

    @classmethod
    def empty(cls, stream) -> 'Argument':
        """Allocate a default instance for decoding (registry factory)."""
        return cls()

    def get(self, kind: ArgumentType) -> Any:
        """Return the payload if `kind` matches the stored type."""
        if kind != self.TYPE:
            raise TypeMismatch(kind, self.TYPE, self.name)
        return self._payload()

    def write(self, stream) -> None:
        """Write tag, name and payload."""
        stream.write_fixed('B', self.TYPE)
        stream.write_string(_encode_text(self.name))
        self.write_value(stream)

    def read(self, stream) -> None:
        """Read name and payload; the tag was consumed by decode()."""
        self.name = _decode_text(stream.read_string())
        self.read_value(stream)

    def write_value(self, stream) -> None:
        raise NotImplementedError

    def read_value(self, stream) -> None:
        raise NotImplementedError

    def _payload(self) -> Any:
        raise NotImplementedError

    def _compare_key(self) -> Any:
        return self._payload()

    def __eq__(self, other):
        if not isinstance(other, Argument):
            return NotImplemented
        return (type(self) is type(other)
                and self.name == other.name
                and self._compare_key() == other._compare_key())

    __hash__ = None

    def __repr__(self):
        return f"{type(self).__name__}(name={self.name!r}, value={self._payload()!r})"


class Scalar(Argument):
    """Base for fixed-kind scalar variants."""

    FORMAT: str = None
    DEFAULT: Any = 0

    def __init__(self, name: str = '', value: Any = None):
        super().__init__(name)
        self.value = self.DEFAULT if value is None else value

    @property
    def value(self) -> Any:
        return self._value

    @value.setter
    def value(self, value: Any) -> None:
        self._value = self.coerce(value)

    @classmethod
    def coerce(cls, value: Any) -> Any:
        """Validate a Python value for this kind; raises ValueError."""
        raise NotImplementedError

    @classmethod
    def write_element(cls, stream, value: Any) -> None:
        stream.write_fixed(cls.FORMAT, value)

    @classmethod
    def read_element(cls, stream) -> Any:
        return stream.read_fixed(cls.FORMAT)

    def write_value(self, stream) -> None:
        self.write_element(stream, self._value)

    def read_value(self, stream) -> None:
        self._value = self.read_element(stream)

    def _payload(self) -> Any:
        return self._value


class Int32(Scalar):
    TYPE = ArgumentType.INT32
    FORMAT = 'i'

    @classmethod
    def coerce(cls, value):
        if not isinstance(value, int) or isinstance(value, bool):
            raise ValueError(
                f"int32 value must be an integer, got {type(value).__name__}")
        if not INT32_MIN <= value <= INT32_MAX:
            raise ValueError(f"int32 value out of range: {value}")
        return int(value)


class UInt64(Scalar):
    TYPE = ArgumentType.UINT64
    FORMAT = 'Q'

    @classmethod
    def coerce(cls, value):
        if not isinstance(value, int) or isinstance(value, bool):
            raise ValueError(
                f"uint64 value must be an integer, got {type(value).__name__}")
        if not 0 <= value <= UINT64_MAX:
            raise ValueError(f"uint64 value out of range: {value}")
        return int(value)


class Float64(Scalar):
    TYPE = ArgumentType.FLOAT64
    FORMAT = 'd'
    DEFAULT = 0.0

    @classmethod
    def coerce(cls, value):
        if not isinstance(value, (int, float)) or isinstance(value, bool):
            raise ValueError(
                f"float64 value must be a number, got {type(value).__name__}")
        try:
            return float(value)
        except OverflowError:
            raise ValueError("float64 value out of range") from None


class String(Scalar):
    """Text payload; opaque bytes on the wire."""
    TYPE = ArgumentType.STRING
    DEFAULT = ''

    @classmethod
    def coerce(cls, value):
        if isinstance(value, (bytes, bytearray)):
            return _decode_text(bytes(value))
        if not isinstance(value, str):
            raise ValueError(
                f"string value must be str, got {type(value).__name__}")
        return value

    @classmethod
    def write_element(cls, stream, value):
        stream.write_string(_encode_text(value))

    @classmethod
    def read_element(cls, stream):
        return _decode_text(stream.read_string())


class Blob(Argument):
    """Raw byte sequence with a 32-bit length prefix."""
    TYPE = ArgumentType.BLOB

    def __init__(self, name: str = '', data: bytes = b''):
        super().__init__(name)
        if isinstance(data, (str, int)) or data is None:
            raise ValueError(
                f"blob data must be bytes, got {type(data).__name__}")
        try:
            self.data = bytes(data)
        except TypeError as e:
            raise ValueError(f"blob data must be bytes: {e}") from None

    def write_value(self, stream):
        if len(self.data) > BLOB_MAX:
            raise ValueError(
                f"Blob too long: {len(self.data)} bytes (max {BLOB_MAX})")
        stream.write_fixed('I', len(self.data))
        stream.write_bytes(self.data)

    def read_value(self, stream):
        size = stream.read_fixed('I')
        self.data = _read_exact(stream, size, 'blob')

    def _payload(self):
        return self.data


class Struct(Argument):
    """Ordered collection of named child arguments.

    Children need not have unique names; lookups return the first match
    in insertion order.
    """
    TYPE = ArgumentType.STRUCT

    def __init__(self, name: str = '', children: Optional[Iterable[Argument]] = None):
        super().__init__(name)
        self._children = _claim_all(self, children or ())

    @property
    def children(self) -> Tuple[Argument, ...]:
        return tuple(self._children)

    def names(self) -> List[str]:
        return [child.name for child in self._children]

    def __len__(self):
        return len(self._children)

    def __iter__(self) -> Iterator[Argument]:
        return iter(tuple(self._children))

    def __contains__(self, name) -> bool:
        return any(child.name == name for child in self._children)

    def _index(self, name: str) -> int:
        for index, child in enumerate(self._children):
            if child.name == name:
                return index
        raise FieldNotFound(name, self.name)

    def child(self, name: str) -> Argument:
        """First child named `name`."""
        return self._children[self._index(name)]

    def field(self, name: str, kind: ArgumentType) -> Any:
        """Payload of the first child named `name`, checked against `kind`."""
        return self.child(name).get(kind)

    def release(self, target: Union[str, Argument]) -> Argument:
        """Detach and return a child.

        A string releases the first child with that name; an Argument
        releases that exact object, leaving same-named siblings in place.
        """
        if isinstance(target, Argument):
            for index, child in enumerate(self._children):
                if child is target:
                    break
            else:
                raise FieldNotFound(target.name, self.name)
        else:
            index = self._index(target)

        released = self._children.pop(index)
        released._owner = None
        return released

    def write_value(self, stream):
        _write_count(stream, len(self._children))
        for child in self._children:
            child.write(stream)

    def read_value(self, stream):
        count = _read_count(stream)
        children = []
        for _ in range(count):
            children.append(decode(stream))
        for child in self._children:
            child._owner = None
        self._children = _claim_all(self, children)

    def _payload(self):
        return tuple(self._children)

    def __repr__(self):
        return f"Struct(name={self.name!r}, children={self._children!r})"


class Array(Argument):
    """Homogeneous sequence; the element type is recorded once."""
    TYPE = ArgumentType.ARRAY

    def __init__(self, name: str = '', element_type=ArgumentType.INT32,
                 values: Iterable[Any] = ()):
        super().__init__(name)
        self._element_type = _element_kind(element_type)
        self._values = self._adopt_values(values)

    @classmethod
    def empty(cls, stream) -> 'Array':
        raw = stream.read_fixed('B')
        try:
            element_type = ArgumentType(raw)
        except ValueError:
            raise UnknownTypeTag(raw) from None
        return cls('', element_type)

    @property
    def element_type(self) -> ArgumentType:
        return self._element_type

    @property
    def values(self) -> Tuple[Any, ...]:
        return tuple(self._values)

    def __len__(self):
        return len(self._values)

    def __iter__(self):
        return iter(tuple(self._values))

    def __getitem__(self, index):
        return self._values[index]

    def _adopt_values(self, values: Iterable[Any]) -> List[Any]:
        if self._element_type == ArgumentType.STRUCT:
            values = list(values)
            for value in values:
                if not isinstance(value, Struct):
                    raise ValueError(
                        f"struct array element must be a Struct, "
                        f"got {type(value).__name__}")
            return _claim_all(self, values)
        codec = ELEMENT_CODECS[self._element_type]
        return [codec.coerce(value) for value in values]

    def write(self, stream):
        stream.write_fixed('B', self.TYPE)
        stream.write_fixed('B', self._element_type)
        stream.write_string(_encode_text(self.name))
        self.write_value(stream)

    def write_value(self, stream):
        _write_count(stream, len(self._values))
        if self._element_type == ArgumentType.STRUCT:
            for element in self._values:
                element.write_value(stream)
            return
        codec = ELEMENT_CODECS[self._element_type]
        for value in self._values:
            codec.write_element(stream, value)

    def read_value(self, stream):
        count = _read_count(stream)
        values = []
        if self._element_type == ArgumentType.STRUCT:
            for _ in range(count):
                element = Struct()
                element.read_value(stream)
                values.append(element)
        else:
            codec = ELEMENT_CODECS[self._element_type]
            for _ in range(count):
                values.append(codec.read_element(stream))
        for old in self._values:
            if isinstance(old, Argument):
                old._owner = None
        self._values = self._adopt_values(values)

    def _payload(self):
        return tuple(self._values)

    def _compare_key(self):
        return (self._element_type, tuple(self._values))

    def __repr__(self):
        return (f"Array(name={self.name!r}, "
                f"element_type={self._element_type.name.lower()}, "
                f"values={self._values!r})")


ELEMENT_CODECS: Dict[ArgumentType, type] = {
    ArgumentType.INT32: Int32,
    ArgumentType.UINT64: UInt64,
    ArgumentType.FLOAT64: Float64,
    ArgumentType.STRING: String,
}


def _element_kind(element_type) -> ArgumentType:
    """Normalize an element type (tag or variant class) for Array."""
    if isinstance(element_type, type) and issubclass(element_type, Argument):
        element_type = element_type.TYPE
    try:
        kind = ArgumentType(element_type)
    except (ValueError, TypeError):
        raise UnsupportedElementType(element_type) from None
    if kind not in ELEMENT_TYPES:
        raise UnsupportedElementType(kind)
    return kind


# =============================================================================
# Struct builder
# =============================================================================

class StructBuilder:
    """Accumulates children, then hands them all to a new Struct.

    A builder must end with build() or discard(); one garbage-collected
    while still holding children emits a ResourceWarning.
    """

    def __init__(self):
        self._pending: List[Argument] = []

    @classmethod
    def create(cls) -> 'StructBuilder':
        return cls()

    def add(self, value, *args, **kwargs) -> 'StructBuilder':
        """Append a child.

        add(Int32, 'a', 1) constructs the child in place;
        add(existing) takes ownership of an argument; add(None) does nothing.
        """
        if value is None:
            return self
        if isinstance(value, type) and issubclass(value, Argument):
            value = value(*args, **kwargs)
        elif args or kwargs:
            raise TypeError("Constructor arguments need a variant class")
        _claim(self, value)
        self._pending.append(value)
        return self

    def build(self, name: str = '') -> Struct:
        """Transfer every pending child to a new Struct named `name`."""
        pending = self.discard()
        return Struct(name, pending)

    def discard(self) -> List[Argument]:
        """Release and return pending children, leaving the builder empty."""
        pending, self._pending = self._pending, []
        for child in pending:
            child._owner = None
        return pending

    def __len__(self):
        return len(self._pending)

    def __del__(self):
        pending = getattr(self, '_pending', None)
        if pending:
            warnings.warn(
                f"StructBuilder discarded with {len(pending)} pending "
                f"argument(s); call build() or discard()",
                ResourceWarning, stacklevel=2)


# =============================================================================
# Type-tag registry and decode dispatch
# =============================================================================

ARGUMENT_CLASSES = (Int32, UInt64, Float64, String, Array, Struct, Blob)


class TypeRegistry:
    """Tag -> factory mapping used by decode().

    Populated once, on first use, under a lock; read-only afterwards.
    """

    def __init__(self, classes: Iterable[type] = ARGUMENT_CLASSES):
        self._classes = tuple(classes)
        self._lock = threading.Lock()
        self._factories = None

    @property
    def initialized(self) -> bool:
        return self._factories is not None

    def _table(self) -> MappingProxyType:
        factories = self._factories
        if factories is None:
            with self._lock:
                if self._factories is None:
                    self._factories = self._populate()
                factories = self._factories
        return factories

    def _populate(self) -> MappingProxyType:
        table: Dict[ArgumentType, Callable] = {}
        for cls in self._classes:
            table[cls.TYPE] = cls.empty
        missing = [kind.name.lower() for kind in ArgumentType
                   if kind not in table]
        if missing:
            raise RuntimeError(
                f"No decode factory for type(s): {', '.join(missing)}")
        logger.debug("Type registry initialized with %d factories", len(table))
        return MappingProxyType(table)

    def lookup(self, tag: int) -> Callable:
        """Factory for `tag`; raises UnknownTypeTag if none is registered."""
        try:
            return self._table()[tag]
        except KeyError:
            raise UnknownTypeTag(int(tag)) from None

    def tags(self) -> frozenset:
        return frozenset(self._table())

    def __contains__(self, tag) -> bool:
        return tag in self._table()


REGISTRY = TypeRegistry()

# Per-thread nesting of the decode() calls in progress
_decoding = threading.local()


def decode(stream) -> Argument:
    """Read one complete argument of any type from `stream`.

    Raises NestingTooDeep once containers nest past MAX_DEPTH levels.
    """
    depth = getattr(_decoding, 'depth', 0)
    if depth >= MAX_DEPTH:
        raise NestingTooDeep(MAX_DEPTH)
    _decoding.depth = depth + 1
    try:
        tag = stream.read_fixed('B')
        factory = REGISTRY.lookup(tag)
        argument = factory(stream)
        argument.read(stream)
    finally:
        _decoding.depth = depth
    logger.debug("Decoded %s '%s'", argument.type.name.lower(), argument.name)
    return argument


# Convenience functions
def encode_argument(argument: Argument) -> bytes:
    """Encode an argument tree to bytes."""
    stream = ProtoStream()
    argument.write(stream)
    return stream.getvalue()


def decode_argument(data: bytes) -> Argument:
    """Decode the first argument in `data`; trailing bytes are ignored."""
    stream = ProtoStream.from_bytes(data)
    argument = decode(stream)
    remaining = len(data) - stream.tell()
    if remaining:
        logger.debug("Ignoring %d trailing bytes after '%s'",
                     remaining, argument.name)
    return argument


def decode_all(data: bytes) -> Iterator[Argument]:
    """Yield every argument packed back to back in `data`."""
    stream = ProtoStream.from_bytes(data)
    while not stream.at_end():
        yield decode(stream)


def argument_to_base64(argument: Argument, url_safe: bool = True) -> str:
    """Encode an argument tree to a base64 string."""
    binary = encode_argument(argument)
    if url_safe:
        return base64.urlsafe_b64encode(binary).decode('ascii').rstrip('=')
    return base64.b64encode(binary).decode('ascii')


_URLSAFE_TO_STANDARD = str.maketrans('-_', '+/')


def base64_to_bytes(encoded: str) -> bytes:
    """Decode base64 text, URL-safe or standard, padded or not."""
    encoded = encoded.strip().translate(_URLSAFE_TO_STANDARD)
    padding = 4 - (len(encoded) % 4)
    if padding != 4:
        encoded += '=' * padding
    try:
        return base64.b64decode(encoded, validate=True)
    except ValueError as e:
        raise ProtoError(f"Invalid base64: {e}") from e


def base64_to_argument(encoded: str) -> Argument:
    """Decode a base64 string to an argument tree."""
    return decode_argument(base64_to_bytes(encoded))


if __name__ == '__main__':
    root = (StructBuilder.create()
            .add(Int32, 'a', 1)
            .add(Array, 'arr_arg', ArgumentType.INT32, [13, 14, 88])
            .add(StructBuilder.create().add(String, 'x', 'hi').build('b'))
            .build('root'))

    print("=== Argument Encoder/Decoder Demo ===\n")

    binary = encode_argument(root)
    print(f"Binary ({len(binary)} bytes):")
    print(' '.join(f'{b:02X}' for b in binary))
    print(f"\nBase64: {argument_to_base64(root)}")

    decoded = decode_argument(binary)
    print(f"\nDecoded: {decoded!r}")
    print(f"a = {decoded.field('a', ArgumentType.INT32)}")
    print(f"b.x = {decoded.child('b').field('x', ArgumentType.STRING)}")
