"""
test_hypothesis.py - Property-based testing with Hypothesis

Generates argument trees and raw byte sequences to check round-trip
consistency and decoder safety, discovering edge cases through shrinking.

Run with:
    pytest tests/test_hypothesis.py -v
    pytest tests/test_hypothesis.py -v --hypothesis-show-statistics
"""

import pytest
from hypothesis import given, settings, HealthCheck
from hypothesis import strategies as st
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / 'tools'))
from argument_proto import (
    Argument, ArgumentType, Array, Blob, Float64, Int32, String, Struct,
    UInt64, decode_argument, encode_argument,
)
from proto_errors import FieldNotFound, ProtoError


# =============================================================================
# Strategies for generating test data
# =============================================================================

names = st.text(max_size=16)

int32_values = st.integers(min_value=-2**31, max_value=2**31 - 1)
uint64_values = st.integers(min_value=0, max_value=2**64 - 1)
float_values = st.floats(allow_nan=False)
string_values = st.text(max_size=40)

ELEMENT_VALUES = {
    ArgumentType.INT32: int32_values,
    ArgumentType.UINT64: uint64_values,
    ArgumentType.FLOAT64: float_values,
    ArgumentType.STRING: string_values,
}

scalars = st.one_of(
    st.builds(Int32, names, int32_values),
    st.builds(UInt64, names, uint64_values),
    st.builds(Float64, names, float_values),
    st.builds(String, names, string_values),
)

blobs = st.builds(Blob, names, st.binary(max_size=64))

scalar_arrays = st.sampled_from(sorted(ELEMENT_VALUES)).flatmap(
    lambda kind: st.builds(
        Array, names, st.just(kind),
        st.lists(ELEMENT_VALUES[kind], max_size=10)))

leaves = st.one_of(scalars, blobs, scalar_arrays)

# Struct array elements are unnamed on the wire
struct_arrays = st.builds(
    Array, names, st.just(ArgumentType.STRUCT),
    st.lists(st.builds(Struct, st.just(''), st.lists(leaves, max_size=3)),
             max_size=3))

trees = st.recursive(
    st.one_of(leaves, struct_arrays),
    lambda children: st.builds(Struct, names, st.lists(children, max_size=5)),
    max_leaves=20,
)

bytes_strategy = st.binary(min_size=0, max_size=256)


# =============================================================================
# Property Tests: Roundtrip Encoding
# =============================================================================

class TestRoundtrip:
    """Encode/decode consistency for generated values."""

    @given(scalars)
    def test_scalar_roundtrip(self, arg):
        decoded = decode_argument(encode_argument(arg))
        assert decoded.type == arg.type
        assert decoded.name == arg.name
        assert decoded.get(arg.type) == arg.get(arg.type)

    @given(scalar_arrays)
    def test_array_roundtrip(self, arg):
        decoded = decode_argument(encode_argument(arg))
        assert decoded.element_type == arg.element_type
        assert list(decoded) == list(arg)

    @given(trees)
    @settings(suppress_health_check=[HealthCheck.too_slow])
    def test_tree_roundtrip(self, arg):
        assert decode_argument(encode_argument(arg)) == arg

    @given(trees)
    def test_encoding_is_stable(self, arg):
        data = encode_argument(arg)
        assert encode_argument(decode_argument(data)) == data


# =============================================================================
# Property Tests: Struct access
# =============================================================================

class TestStructAccess:
    """Lookup and release properties."""

    @given(st.lists(st.builds(Int32, st.sampled_from('abc'), int32_values),
                    max_size=8),
           st.sampled_from('abcd'))
    def test_lookup_and_release(self, children, name):
        expected = [c.value for c in children if c.name == name]
        s = Struct('s', children)

        if not expected:
            with pytest.raises(FieldNotFound):
                s.field(name, ArgumentType.INT32)
            with pytest.raises(FieldNotFound):
                s.release(name)
            assert len(s) == len(children)
            return

        first = s.field(name, ArgumentType.INT32)
        assert first == s.field(name, ArgumentType.INT32) == expected[0]

        released = s.release(name)
        assert released.value == expected[0]
        assert len(s) == len(children) - 1
        remaining = [c.value for c in s if c.name == name]
        assert remaining == expected[1:]


# =============================================================================
# Property Tests: Decoder Safety
# =============================================================================

class TestDecoderSafety:
    """Decoding arbitrary bytes either succeeds or raises ProtoError."""

    @given(bytes_strategy)
    @settings(max_examples=1000, suppress_health_check=[HealthCheck.too_slow])
    def test_never_crashes_on_random_bytes(self, data):
        try:
            result = decode_argument(data)
        except ProtoError:
            return
        assert isinstance(result, Argument)

    @given(trees, st.data())
    def test_truncated_encodings_fail_cleanly(self, arg, data):
        encoded = encode_argument(arg)
        cut = data.draw(st.integers(min_value=0, max_value=len(encoded) - 1))
        with pytest.raises(ProtoError):
            decode_argument(encoded[:cut])

    @given(trees, st.data())
    def test_bitflips_fail_cleanly(self, arg, data):
        encoded = bytearray(encode_argument(arg))
        index = data.draw(st.integers(min_value=0, max_value=len(encoded) - 1))
        encoded[index] ^= data.draw(st.integers(min_value=1, max_value=255))
        try:
            decode_argument(bytes(encoded))
        except ProtoError:
            pass
