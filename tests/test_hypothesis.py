"""
test_hypothesis.py - Property-based testing with Hypothesis

Properties:
- Decoder never crashes on arbitrary payloads: it either succeeds or raises
  a DecodeError, and never loops forever
- Every fixed-width numeric rule reproduces its raw bytes through encode()
- Decoding is deterministic for equal starting records

Run with:
    pytest tests/test_hypothesis.py -v
    pytest tests/test_hypothesis.py -v --hypothesis-show-statistics
"""

import copy

import pytest
from hypothesis import given, settings, HealthCheck
from hypothesis import strategies as st
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / 'tools'))
from lpp_decoder import UplinkDecoder
from lpp_derived import ClearVoiceClock
from lpp_errors import DecodeError
from lpp_fields import FixedWidth, build_payload, default_table
from lpp_record import DeviceRecord, DeviceRecordStore, DeviceType


NOW = 1704067200.0

TABLE = default_table()
NUMERIC_RULES = [r for r in TABLE if isinstance(r.width, FixedWidth)]

payload_bytes = st.binary(min_size=0, max_size=128)


def _decoder(record):
    store = DeviceRecordStore({0: record})
    return UplinkDecoder(store, clock=lambda: NOW, clear_voice=ClearVoiceClock(NOW - 1))


@st.composite
def valid_fields(draw):
    """A list of (tag, raw payload bytes) for fixed-width rules."""
    rules = draw(st.lists(st.sampled_from(NUMERIC_RULES), min_size=1, max_size=12))
    return [(r.tag, draw(st.binary(min_size=r.width.size, max_size=r.width.size)))
            for r in rules]


def _assemble(fields):
    return bytes([0x00]) + b''.join(bytes([tag]) + raw for tag, raw in fields)


# =============================================================================
# Decoder safety
# =============================================================================

class TestDecoderSafety:
    """Arbitrary payloads either decode or raise DecodeError."""

    @given(payload_bytes)
    @settings(max_examples=1000, suppress_health_check=[HealthCheck.too_slow])
    def test_never_crashes_on_random_bytes(self, data):
        decoder = _decoder(DeviceRecord(device_type=DeviceType.SMOKE))
        try:
            result = decoder.decode(0, 1, 210, False, data)
        except DecodeError:
            return
        assert result.flags.event_count >= 0

    @given(valid_fields(), st.integers(min_value=1, max_value=8))
    def test_truncation_always_detected(self, fields, cut):
        payload = _assemble(fields)
        cut = min(cut, len(payload) - 3)
        if cut <= 0:
            return
        last_tag, last_raw = fields[-1]
        if cut > len(last_raw):
            return
        with pytest.raises(DecodeError):
            _decoder(DeviceRecord()).decode(0, 1, 210, False, payload[:-cut])


# =============================================================================
# Roundtrip and determinism
# =============================================================================

class TestRoundtrip:
    """Encode/decode consistency."""

    @pytest.mark.parametrize("rule", NUMERIC_RULES, ids=lambda r: f"0x{r.tag:02x}")
    @given(data=st.data())
    @settings(max_examples=50)
    def test_rule_inverse(self, rule, data):
        size = rule.width.size
        if rule.type == 'bool':
            raw = bytes([data.draw(st.integers(min_value=0, max_value=1))])
        else:
            raw = data.draw(st.binary(min_size=size, max_size=size))
        value, _ = rule.decode(bytes([rule.tag]) + raw, 1, 32)
        assert rule.encode(value.value) == raw

    @given(valid_fields())
    def test_valid_payload_decodes_fully(self, fields):
        payload = _assemble(fields)
        result = _decoder(DeviceRecord()).decode(0, 1, 210, False, payload)

        # Later fields win when several tags share a name
        expected = {}
        for tag, raw in fields:
            rule = TABLE.lookup(tag)
            expected[rule.name] = int.from_bytes(raw, 'big', signed=rule.signed)

        for name, raw in expected.items():
            assert name in result.summary
            assert result.summary.raw(name) == raw
        assert len(result.summary.values) == len(expected)

    @given(valid_fields())
    def test_idempotent(self, fields):
        payload = _assemble(fields)
        start = DeviceRecord(device_type=DeviceType.GAS, downlink_interval=60)
        outcomes = []
        for _ in range(2):
            record = copy.deepcopy(start)
            flags = _decoder(record).decode(0, 1, 210, False, payload).flags
            outcomes.append((record, flags))
        assert outcomes[0] == outcomes[1]

    @given(st.text(alphabet=st.characters(min_codepoint=0x21, max_codepoint=0x7e), max_size=32))
    def test_string_roundtrip(self, text):
        payload = build_payload([(0x07, text)])
        record = DeviceRecord()
        _decoder(record).decode(0, 1, 210, False, payload)
        assert record.main_version == text
