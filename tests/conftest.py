"""
pytest configuration and fixtures for argument codec tests.

Provides reusable fixtures for:
- In-memory protocol streams
- Encode/decode round trips
- Hypothesis property-based testing configuration
"""

import os
import sys
from pathlib import Path

import pytest
from hypothesis import settings, Verbosity, Phase

# Add project paths
sys.path.insert(0, str(Path(__file__).parent.parent / "tools"))

# Configure Hypothesis profiles

# Default profile: balanced speed and coverage
settings.register_profile(
    "default",
    max_examples=100,
    deadline=None,
)

# CI profile: more thorough testing
settings.register_profile(
    "ci",
    max_examples=500,
    deadline=None,
    suppress_health_check=[],
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
)

# Dev profile: fast iteration
settings.register_profile(
    "dev",
    max_examples=10,
    deadline=None,
)

# Debug profile: verbose output
settings.register_profile(
    "debug",
    max_examples=10,
    verbosity=Verbosity.verbose,
    deadline=None,
)

# Load profile from environment
settings.load_profile(os.environ.get("HYPOTHESIS_PROFILE", "default"))


@pytest.fixture
def stream():
    """Empty in-memory stream."""
    from proto_stream import ProtoStream
    return ProtoStream()


@pytest.fixture
def roundtrip():
    """
    Encode an argument through a stream and decode it back.

    Usage:
        def test_value(roundtrip):
            decoded = roundtrip(Int32('Base', 555))
    """
    from argument_proto import decode
    from proto_stream import ProtoStream

    def _roundtrip(argument):
        s = ProtoStream()
        argument.write(s)
        s.rewind()
        decoded = decode(s)
        assert s.at_end()
        return decoded

    return _roundtrip


# Markers for test categorization
def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers", "wire: marks byte-level wire format checks"
    )
