"""
pytest configuration and fixtures for the uplink decoder tests.

Provides reusable fixtures for:
- Device record store with one registered slot
- Decoder with a fixed wall clock
- Hypothesis property-based testing configuration
"""

import pytest
import sys
from pathlib import Path

# Add project paths
sys.path.insert(0, str(Path(__file__).parent.parent / "tools"))

# Configure Hypothesis profiles
try:
    from hypothesis import settings, Verbosity, Phase

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
    import os
    profile = os.environ.get("HYPOTHESIS_PROFILE", "default")
    settings.load_profile(profile)

except ImportError:
    pass  # Hypothesis not installed


# Fixed wall clock: 2024-01-01T00:00:00Z
NOW = 1704067200.0

# Device clocks run at UTC+8
DEVICE_NOW = int(NOW) + 8 * 3600


@pytest.fixture
def table():
    from lpp_fields import default_table
    return default_table()


@pytest.fixture
def store():
    """Store with a blank record in slot 0."""
    from lpp_record import DeviceRecordStore
    store = DeviceRecordStore()
    store.add(0)
    return store


@pytest.fixture
def record(store):
    return store[0]


@pytest.fixture
def resend_calls():
    """Collects (slot, downlink_interval) for every interval resend request."""
    return []


@pytest.fixture
def decoder(store, resend_calls):
    from lpp_decoder import UplinkDecoder
    from lpp_derived import ClearVoiceClock

    def request_resend(slot, rec):
        resend_calls.append((slot, rec.downlink_interval))

    return UplinkDecoder(
        store,
        clock=lambda: NOW,
        clear_voice=ClearVoiceClock(),
        request_interval_resend=request_resend,
    )


# Markers for test categorization
def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
