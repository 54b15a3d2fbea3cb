#!/usr/bin/env python3
"""
lpp_fields.py - Field Codec Table for the fPort 210 tag/value dialect

Uplink layout:
    Byte 0:  marker (not tag-decoded)
    Byte 1+: [tag][payload][tag][payload]...

There is no generic length field. Each tag's catalog entry tells the
decoder how many bytes its payload occupies:

    u8/bool      1 byte
    u16/s16      2 bytes, big-endian
    u32/s32      4 bytes, big-endian
    cstring      bytes up to a 0x00 terminator (terminator consumed)
    lenbytes     1 length byte followed by that many bytes (Modbus block)

The catalog is kept as YAML text and parsed once with PyYAML. Rules are
immutable; looking a tag up has no side effects.

Usage:
    from lpp_fields import default_table, build_payload

    table = default_table()
    rule = table.lookup(0x04)
    value, next_pos = rule.decode(payload, 2, capacity=32)

    payload = build_payload([(0x04, 3.1), (0x10, 21.5)])
"""

import math
from dataclasses import dataclass, field
from enum import Enum
from functools import lru_cache
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

import yaml

from lpp_errors import OversizedString, TruncatedField


FIELD_CATALOG = """
name: lpp-fport210

models:
  0x01: AN-301
  0x02: AN-302
  0x03: AN-303
  0x04: AN-304
  0x05: AN-102D
  0x07: M100C
  0x08: M101A
  0x09: M102A
  0x0a: M300C
  0x0b: AN-103A
  0x0c: AN-101
  0x0d: AN-102C
  0x0e: AN-106
  0x0f: AN-202A
  0x10: AN-203A
  0x11: AN-204A
  0x12: EFM02
  0x13: kongqihezi
  0x14: lajitong
  0x15: GPS
  0x16: AN-305D
  0x17: EL300A
  0x18: CM101
  0x19: AN-217
  0x1a: kongqikaiguan
  0x1b: JTY-GD-H605
  0x1c: AN-219
  0x1d: WN_SJSYOA
  0x1e: xiongpai
  0x20: AN-220
  0x21: IA100A
  0x22: AN-214
  0x23: AN-215
  0x24: AN-305A
  0x25: AN-305B
  0x26: AN-305C
  0x27: AN-310
  0x29: FP100A
  0x2a: SENSOR_BOX_AGRIC
  0x2b: SENSOR_BOX_MODBUS
  0x2c: AN-207
  0x2d: AN-208
  0x2e: AN-108B
  0x2f: AN-122
  0x30: AN-201C
  0x31: CU300A
  0x32: JTY-GD-H605
  0x33: Ci-TC-01
  0x34: AN-211A
  0x35: AN-307
  0x3b: M101A-AN-113
  0x3c: M300C-AN-113
  0x3d: Q9_AN204C
  0x3e: AJ761
  0x3f: AN-103C
  0x40: D-BOX
  0x41: AN-223
  0x42: AN_JTY_GD_H386
  0x43: JC-RS801
  0x44: AN-306
  0x45: AN-308
  0x46: CU803
  0x47: DS803
  0x48: DS501
  0x49: CU600
  0x4a: CU601
  0x4b: CU606
  0x4e: AN-224
  0x4f: EX-201
  0x50: M200C
  0x51: JTY-AN-503A
  0x54: EX-205
  0x55: EX-205
  0x56: EX-301
  0x57: AN-122
  0x5b: EF5600-DN1
  0x5c: DS-103
  0x60: SC001

fields:
  # Identity and housekeeping
  - {tag: 0x01, name: model_code, type: u8, lookup: models, record: model}
  - {tag: 0x02, name: downlink_count, type: u32, record: downlink_count, skip_zero: true}
  - {tag: 0x06, name: boot_version, type: cstring, record: boot_version}
  - {tag: 0x07, name: main_version, type: cstring, record: main_version}
  - {tag: 0x08, name: app_version, type: cstring, record: app_version}
  - {tag: 0x09, name: hardware_version, type: cstring, record: hardware_version}
  - {tag: 0x0a, name: p2p_update_frequency, type: u32}
  - {tag: 0x0b, name: p2p_config_frequency, type: u32}
  - {tag: 0x0c, name: radio_chip, type: cstring}
  - {tag: 0x0d, name: reset_cause, type: cstring}
  - {tag: 0x0e, name: lorawan_region, type: cstring}
  - {tag: 0x0f, name: at_response, type: cstring}
  - {tag: 0x6d, name: packet_type, type: u8}
  - {tag: 0x78, name: heartbeat_interval, type: u32}
  - {tag: 0x79, name: local_time, type: u32}
  - {tag: 0x7e, name: power_down, type: u8}
  - {tag: 0x82, name: self_check, type: u8}
  - {tag: 0x83, name: mute, type: u8}
  - {tag: 0xab, name: command_response, type: u16}

  # Battery
  - {tag: 0x04, name: battery_voltage, type: u16, div: 1000, decimals: 2, record: battery_voltage}
  - {tag: 0x05, name: battery_state, type: u8, record: battery_state, event: one}
  - {tag: 0x7d, name: battery_voltage_state, type: u8, record: battery_state}
  - {tag: 0x93, name: battery_level, type: u8, record: battery_level}
  - {tag: 0xb8, name: battery_low_percentage_event, type: u8}

  # Environment
  - {tag: 0x10, name: temperature, type: s16, div: 100, decimals: 1, record: temperature}
  - {tag: 0x11, name: temperature_event, type: u8, record: temperature_state}
  - {tag: 0x12, name: humidity, type: u16, div: 10, record: humidity}
  - {tag: 0x13, name: humidity_event, type: u8, record: humidity_state}
  - {tag: 0x19, name: brightness_state, type: u8}
  - {tag: 0x48, name: illuminance, type: u32}
  - {tag: 0x57, name: atmospheric_pressure, type: u32}
  - {tag: 0x8c, name: temperature_alarm_setting, type: u8}
  - {tag: 0xa9, name: temperature_warning, type: u8, record: temperature_state}
  - {tag: 0xaa, name: temperature, type: s16, div: 10, record: temperature, record_mult: 10}

  # Security sensors
  - {tag: 0x03, name: tamper_event, type: bool, record: tamper_state, event: always}
  - {tag: 0x14, name: sos_event, type: u8, event: always}
  - {tag: 0x17, name: infrared_state, type: bool, record: infrared_state, event: always}
  - {tag: 0x18, name: magnet_state, type: u8}
  - {tag: 0x1b, name: sensor_state, type: u8, record: sensor_state}
  - {tag: 0x1c, name: button_state, type: u8}
  - {tag: 0x21, name: flood_event, type: bool, record: flood_state, event: always}
  - {tag: 0x24, name: door_event, type: bool, record: door_state, event: always}
  - {tag: 0x31, name: smoke_event, type: bool, record: smoke_state, event: always}
  - {tag: 0x32, name: smoke_alarm_status, type: u8}
  - {tag: 0x3a, name: alarm_state, type: u8}
  - {tag: 0x3b, name: linked_smoke_alarm_status, type: u8}
  - {tag: 0x72, name: irda_count, type: u16}
  - {tag: 0x73, name: soaking_duration, type: u16, record: flood_soaking_time}
  - {tag: 0x74, name: smoke_blue_pa, type: u16}
  - {tag: 0x75, name: smoke_red_pa, type: u16}
  - {tag: 0x76, name: door_state, type: bool, record: door_state}
  - {tag: 0x77, name: tamper_state, type: bool, record: tamper_state}
  - {tag: 0x84, name: smoke_state, type: bool, record: smoke_state}
  - {tag: 0x85, name: flood_status, type: bool, record: flood_state}
  - {tag: 0x86, name: bell_state, type: u8}
  - {tag: 0xbd, name: presence_state, type: u8}
  - {tag: 0xbe, name: presence_event, type: u8}

  # Gas and air quality
  - {tag: 0x15, name: gas_concentration, type: u16}
  - {tag: 0x16, name: gas_state, type: bool, record: gas_state, event: always}
  - {tag: 0x1d, name: gas_state, type: bool, record: gas_state, event: always}
  - {tag: 0x1e, name: noxious_gas_state, type: u8}
  - {tag: 0x1f, name: oxygen_state, type: u8}
  - {tag: 0x20, name: oxygen_concentration, type: u8}
  - {tag: 0x23, name: noxious_gas_concentration, type: u8}
  - {tag: 0x49, name: co2, type: u16}
  - {tag: 0x52, name: pm25, type: u16}
  - {tag: 0x7a, name: methane, type: u16}
  - {tag: 0x7b, name: so2, type: u16}
  - {tag: 0x7c, name: no2, type: u16}
  - {tag: 0x8a, name: formaldehyde, type: u16}
  - {tag: 0x8b, name: air_quality, type: u8}
  - {tag: 0x9c, name: pressure_state, type: u8}
  - {tag: 0x9d, name: h2s, type: u16}
  - {tag: 0x9e, name: nh4, type: u16}
  - {tag: 0x9f, name: hcho, type: u16}
  - {tag: 0xa0, name: tvoc, type: u16}

  # Electrical metering and switching
  - {tag: 0x1a, name: dc_voltage, type: u16}
  - {tag: 0x22, name: relay_state, type: u8}
  - {tag: 0x25, name: switch_address, type: u8}
  - {tag: 0x26, name: switch_type, type: u8}
  - {tag: 0x27, name: line_voltage, type: u16}
  - {tag: 0x28, name: leakage_current, type: u16}
  - {tag: 0x29, name: line_power, type: u16}
  - {tag: 0x2a, name: line_current, type: u16}
  - {tag: 0x2b, name: breaker_alarm, type: u16}
  - {tag: 0x2c, name: power_consumption, type: u32}
  - {tag: 0x2e, name: breaker_control, type: u8}
  - {tag: 0x2f, name: switch_quantity, type: u8}
  - {tag: 0x30, name: error_code, type: u8}
  - {tag: 0x87, name: backlight_state, type: u8}
  - {tag: 0x88, name: countdown, type: u8}
  - {tag: 0x89, name: timer, type: u8}
  - {tag: 0x96, name: switch_lock_state, type: u8}
  - {tag: 0x97, name: voltage_rms, type: u16, div: 10}
  - {tag: 0x98, name: current_rms, type: u16, div: 100}
  - {tag: 0x99, name: active_power, type: s16, div: 100}
  - {tag: 0x9a, name: energy, type: u32, div: 100}
  - {tag: 0xb0, name: switch_timer_status, type: u32}
  - {tag: 0xc7, name: electrical_fire_alarm_attr, type: u16}
  - {tag: 0xc8, name: electrical_fire_alarm_event, type: u16}

  # Embedded bus and BLE
  - {tag: 0x7f, name: adc, type: u16}
  - {tag: 0x8f, name: rs485_channel, type: u8}
  - {tag: 0x90, name: ble_beacon_id, type: u32}
  - {tag: 0x91, name: ble_rssi_1m, type: u8}
  - {tag: 0x92, name: ble_rssi, type: u8}
  - {tag: 0x94, name: rs485_address, type: u8}
  - {tag: 0x95, name: modbus_data, type: lenbytes}

  # Liquid level and radar ranging
  - {tag: 0x80, name: liquid_level, type: u16, div: 10, record: liquid_level}
  - {tag: 0x81, name: liquid_level_event, type: u8}
  - {tag: 0x9b, name: liquid_level_state, type: u8, record: liquid_level_state}
  - {tag: 0xac, name: water_hammer_attr, type: u8}
  - {tag: 0xad, name: water_hammer_duration, type: u32}
  - {tag: 0xae, name: water_hammer_event, type: u8}
  - {tag: 0xb9, name: radar_distance, type: u32, div: 10, record: radar_distance}

  # Accelerometer, tilt and vibration
  - {tag: 0x6b, name: tilt_angle, type: u16}
  - {tag: 0xa2, name: acc_diff_abs, type: u16}
  - {tag: 0xa3, name: acc_abs, type: u16}
  - {tag: 0xa4, name: acc_x, type: u16}
  - {tag: 0xa5, name: acc_y, type: u16}
  - {tag: 0xa6, name: acc_z, type: u16}
  - {tag: 0xa7, name: acc_attr, type: u8}
  - {tag: 0xa8, name: acc_event, type: u8}
  - {tag: 0xc0, name: vibration_alarm_status, type: u16}
  - {tag: 0xc1, name: vibration_alarm_event, type: u16}
  - {tag: 0xc2, name: tilt_alarm_event, type: u8}

  # Location and wearable alarms
  - {tag: 0x3e, name: latitude, type: s32, div: 10000000}
  - {tag: 0x43, name: longitude, type: s32, div: 10000000}
  - {tag: 0xc3, name: position_accuracy, type: u8, div: 10}
  - {tag: 0xd8, name: altitude, type: u32, div: 10}
  - {tag: 0xcb, name: fall_alarm_status, type: u8}
  - {tag: 0xcc, name: fall_alarm_event, type: u8}
  - {tag: 0xcd, name: removal_alarm_status, type: u8}
  - {tag: 0xce, name: removal_alarm_event, type: u8}
  - {tag: 0xcf, name: electricity_alarm_status, type: u8}
  - {tag: 0xd0, name: electricity_alarm_event, type: u8}
  - {tag: 0xd1, name: impact_alarm_status, type: u8}
  - {tag: 0xd2, name: impact_alarm_event, type: u8}
  - {tag: 0xd3, name: silence_alarm_status, type: u8}
  - {tag: 0xd4, name: silence_alarm_event, type: u8}
  - {tag: 0xd5, name: height_alarm_status, type: u8}
  - {tag: 0xd6, name: height_alarm_event, type: u8}
"""


# Map catalog type strings to (size_bytes, signed)
INT_TYPES = {
    'u8': (1, False),
    'u16': (2, False),
    's16': (2, True),
    'u32': (4, False),
    's32': (4, True),
    'bool': (1, False),
}

EVENT_KINDS = ('always', 'one')


class ValueKind(Enum):
    UNSIGNED = 'unsigned'
    SIGNED = 'signed'
    SCALED = 'scaled'
    STRING = 'string'
    BOOLEAN = 'boolean'
    OPAQUE = 'opaque'


@dataclass(frozen=True)
class FixedWidth:
    size: int


@dataclass(frozen=True)
class NullTerminatedString:
    pass


@dataclass(frozen=True)
class LengthPrefixed:
    pass


Width = Union[FixedWidth, NullTerminatedString, LengthPrefixed]


@dataclass(frozen=True)
class DecodedValue:
    """One field value as read from the payload."""
    kind: ValueKind
    raw: Any
    value: Any
    label: Optional[str] = None

    @property
    def as_int(self) -> int:
        """Raw integer value; 0 for non-numeric kinds."""
        return self.raw if isinstance(self.raw, int) else 0


@dataclass(frozen=True)
class FieldRule:
    """Decoding rule for a single tag."""
    tag: int
    name: str
    type: str
    width: Width
    div: int = 1
    decimals: int = 0
    record: Optional[str] = None
    record_mult: int = 1
    event: Optional[str] = None
    skip_zero: bool = False
    labels: Mapping[int, str] = field(default_factory=dict, compare=False)

    @property
    def signed(self) -> bool:
        return INT_TYPES.get(self.type, (0, False))[1]

    def counts_event(self, value: DecodedValue) -> bool:
        """True when this value is alarm-worthy."""
        if self.event == 'always':
            return True
        if self.event == 'one':
            return value.as_int == 1
        return False

    def decode(self, buf: bytes, pos: int, capacity: int) -> Tuple[DecodedValue, int]:
        """
        Decode this rule's payload starting at ``pos`` (first byte after the tag).

        Returns: (value, position after the payload)

        Never reads past ``len(buf)``: the width is checked before any read.
        ``capacity`` bounds strings that have a record destination.
        """
        tag_pos = pos - 1
        available = len(buf) - pos

        if isinstance(self.width, FixedWidth):
            size = self.width.size
            if size > available:
                raise TruncatedField(self.tag, tag_pos, size, max(available, 0))
            raw = int.from_bytes(buf[pos:pos + size], 'big', signed=self.signed)
            return self._wrap_int(raw), pos + size

        if isinstance(self.width, NullTerminatedString):
            end = buf.find(b'\x00', pos)
            if end < 0:
                raise TruncatedField(self.tag, tag_pos, available + 1, max(available, 0))
            length = end - pos
            # Only strings stored on the device record are bounded
            if self.record is not None and length > capacity:
                raise OversizedString(self.tag, tag_pos, length, capacity)
            raw = bytes(buf[pos:end])
            text = raw.decode('ascii', errors='replace')
            return DecodedValue(ValueKind.STRING, raw, text), end + 1

        # LengthPrefixed
        if available < 1:
            raise TruncatedField(self.tag, tag_pos, 1, 0)
        length = buf[pos]
        if 1 + length > available:
            raise TruncatedField(self.tag, tag_pos, 1 + length, available)
        raw = bytes(buf[pos + 1:pos + 1 + length])
        return DecodedValue(ValueKind.OPAQUE, raw, raw), pos + 1 + length

    def _wrap_int(self, raw: int) -> DecodedValue:
        if self.type == 'bool':
            return DecodedValue(ValueKind.BOOLEAN, raw, bool(raw))
        if self.div != 1:
            return DecodedValue(ValueKind.SCALED, raw, raw / self.div)
        kind = ValueKind.SIGNED if self.signed else ValueKind.UNSIGNED
        return DecodedValue(kind, raw, raw, self.labels.get(raw))

    def encode(self, value: Any) -> bytes:
        """Inverse of decode(): payload bytes (without the tag) for a value."""
        if isinstance(self.width, NullTerminatedString):
            if isinstance(value, str):
                value = value.encode('ascii')
            if b'\x00' in value:
                raise ValueError(f"String for tag 0x{self.tag:02x} contains a terminator")
            return bytes(value) + b'\x00'

        if isinstance(self.width, LengthPrefixed):
            value = bytes(value)
            if len(value) > 0xFF:
                raise ValueError(f"Block for tag 0x{self.tag:02x} exceeds 255 bytes")
            return bytes([len(value)]) + value

        if self.type == 'bool':
            raw = 1 if value else 0
        elif self.div != 1:
            raw = int(round(value * self.div))
        else:
            raw = int(value)
        return raw.to_bytes(self.width.size, 'big', signed=self.signed)

    def format(self, value: DecodedValue) -> str:
        """Human-readable rendering at this rule's precision."""
        if value.kind == ValueKind.SCALED:
            return f"{value.value:.{self.decimals}f}"
        if value.kind == ValueKind.BOOLEAN:
            return '1' if value.value else '0'
        if value.kind == ValueKind.OPAQUE:
            return value.raw.hex()
        if value.label is not None:
            return value.label
        return str(value.value)


class FieldTable:
    """Immutable tag -> FieldRule mapping."""

    def __init__(self, rules: Iterable[FieldRule], name: str = 'lpp'):
        self.name = name
        self._rules: Dict[int, FieldRule] = {}
        for rule in rules:
            if rule.tag in self._rules:
                raise ValueError(f"Duplicate tag 0x{rule.tag:02x} in field catalog")
            self._rules[rule.tag] = rule

    def lookup(self, tag: int) -> Optional[FieldRule]:
        return self._rules.get(tag)

    def __contains__(self, tag: int) -> bool:
        return tag in self._rules

    def __len__(self) -> int:
        return len(self._rules)

    def __iter__(self):
        return iter(sorted(self._rules.values(), key=lambda r: r.tag))

    @property
    def tags(self) -> List[int]:
        return sorted(self._rules)


def _width_for(type_name: str) -> Width:
    if type_name in INT_TYPES:
        return FixedWidth(INT_TYPES[type_name][0])
    if type_name == 'cstring':
        return NullTerminatedString()
    if type_name == 'lenbytes':
        return LengthPrefixed()
    raise ValueError(f"Unknown field type: {type_name}")


def _default_decimals(div: int) -> int:
    return int(round(math.log10(div))) if div > 1 else 0


def parse_catalog(catalog: Dict[str, Any]) -> FieldTable:
    """Build a FieldTable from a parsed catalog mapping."""
    lookups = {
        key: {int(code): str(label) for code, label in (table or {}).items()}
        for key, table in catalog.items()
        if key not in ('name', 'fields')
    }

    rules = []
    for entry in catalog.get('fields', []):
        type_name = entry.get('type', 'u8')
        div = int(entry.get('div', 1))
        event = entry.get('event')
        if event is not None and event not in EVENT_KINDS:
            raise ValueError(f"Unknown event kind '{event}' for tag 0x{entry['tag']:02x}")

        labels: Mapping[int, str] = {}
        lookup = entry.get('lookup')
        if lookup is not None:
            if lookup not in lookups:
                raise ValueError(f"Lookup table not found: {lookup}")
            labels = lookups[lookup]

        rules.append(FieldRule(
            tag=int(entry['tag']),
            name=entry['name'],
            type=type_name,
            width=_width_for(type_name),
            div=div,
            decimals=int(entry.get('decimals', _default_decimals(div))),
            record=entry.get('record'),
            record_mult=int(entry.get('record_mult', 1)),
            event=event,
            skip_zero=bool(entry.get('skip_zero', False)),
            labels=labels,
        ))

    return FieldTable(rules, name=catalog.get('name', 'lpp'))


def load_field_table(text: str = FIELD_CATALOG) -> FieldTable:
    """Parse catalog YAML text into a FieldTable."""
    return parse_catalog(yaml.safe_load(text))


@lru_cache(maxsize=1)
def default_table() -> FieldTable:
    """The built-in catalog, parsed once per process."""
    return load_field_table()


def build_payload(fields: Iterable[Tuple[int, Any]], marker: int = 0,
                  table: Optional[FieldTable] = None) -> bytes:
    """
    Encode ``[(tag, value), ...]`` into an uplink payload.

    Values use the decoded representation (volts for 0x04, degrees for 0x10).
    """
    table = table or default_table()
    out = bytearray([marker])
    for tag, value in fields:
        rule = table.lookup(tag)
        if rule is None:
            raise ValueError(f"Unknown tag 0x{tag:02x}")
        out.append(tag)
        out += rule.encode(value)
    return bytes(out)
