"""
proto_errors.py - Exception hierarchy for the argument wire format

Every failure the codec reports derives from ProtoError, which is itself a
ValueError so callers that already guard codec calls with
``except ValueError`` keep working.
"""


class ProtoError(ValueError):
    """Base class for argument encode/decode errors."""
    pass


class TypeMismatch(ProtoError, TypeError):
    """Accessor type does not match the stored variant."""

    def __init__(self, expected, actual, name: str = ''):
        self.expected = expected
        self.actual = actual
        self.name = name
        label = f" '{name}'" if name else ''
        super().__init__(
            f"Argument{label} holds {_type_name(actual)}, "
            f"not {_type_name(expected)}")


class FieldNotFound(ProtoError, LookupError):
    """Struct lookup by name (or by child identity) failed."""

    def __init__(self, name: str, struct_name: str = ''):
        self.name = name
        self.struct_name = struct_name
        where = f" in struct '{struct_name}'" if struct_name else ''
        super().__init__(f"Field not found: '{name}'{where}")


class UnknownTypeTag(ProtoError):
    """Decode met a type tag that has no registered factory."""

    def __init__(self, tag: int):
        self.tag = tag
        super().__init__(f"Unknown type tag: {tag} (0x{tag:02X})")


class TruncatedStream(ProtoError):
    """Stream ended before an expected field was fully read."""

    def __init__(self, expected: int, received: int, what: str = 'field'):
        self.expected = expected
        self.received = received
        super().__init__(
            f"Truncated stream reading {what}: "
            f"need {expected} bytes, got {received}")


class NestingTooDeep(ProtoError):
    """Nested structs or arrays exceed the decoder's depth limit."""

    def __init__(self, limit: int):
        self.limit = limit
        super().__init__(f"Argument nesting deeper than {limit} levels")


class UnsupportedElementType(ProtoError):
    """Array element type outside the supported set."""

    def __init__(self, element_type):
        self.element_type = element_type
        super().__init__(
            f"Unsupported array element type: {_type_name(element_type)}")


def _type_name(kind) -> str:
    name = getattr(kind, 'name', None)
    return name.lower() if name else str(kind)
