#!/usr/bin/env python3
"""
lpp_record.py - Per-device state and per-uplink telemetry summary

DeviceRecord is long-lived and owned by the device registry; the decoder
borrows one record per uplink and overwrites only the attributes named by
the tags present in that uplink. Everything else keeps its previous value.

TelemetrySummary is built fresh for every uplink and handed back to the
caller together with the derived flags.
"""

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Dict, Iterator, List, Optional

from lpp_fields import DecodedValue, FieldRule, ValueKind


class DeviceType(IntEnum):
    """Device families with type-specific follow-up after decoding."""
    UNDEFINED = 0
    SMOKE = 1
    INFRARED = 2
    DOOR_SENSOR = 3
    GAS = 4
    SOS = 5
    DOORBELL = 6
    SMART_BUTTON = 7
    TEMPERATURE_HUMIDITY_NO_SCREEN = 8
    TEMPERATURE_HUMIDITY_SCREEN = 9
    TEMPERATURE_HUMIDITY_AN303 = 10
    FLOOD = 11


class IntervalState(IntEnum):
    UNSET = 0
    CHECKING = 1
    OK = 2


BUTTON_DEVICE_TYPES = (DeviceType.SOS, DeviceType.DOORBELL, DeviceType.SMART_BUTTON)


@dataclass
class DeviceRecord:
    """Mutable state for one known device."""
    device_type: DeviceType = DeviceType.UNDEFINED
    model: str = ''
    downlink_count: int = 0

    # Security sensors
    tamper_state: bool = False
    door_state: bool = False
    smoke_state: bool = False
    gas_state: bool = False
    flood_state: bool = False
    infrared_state: bool = False
    sensor_state: int = 0
    flood_soaking_time: int = 0

    # Battery: voltage in mV, level in percent
    battery_voltage: int = 0
    battery_state: int = 0
    battery_level: int = 0

    # Environment: temperature in centi-degrees, humidity in per-mille
    temperature: int = 0
    temperature_state: int = 0
    humidity: int = 0
    humidity_state: int = 0

    # Ranging, raw device units
    liquid_level: int = 0
    liquid_level_state: int = 0
    radar_distance: int = 0

    boot_version: str = ''
    main_version: str = ''
    app_version: str = ''
    hardware_version: str = ''

    # Heartbeat interval reconciliation
    uplink_interval: int = 0
    downlink_interval: int = 0
    interval_state: IntervalState = IntervalState.UNSET

    send_interval_flag: bool = False
    send_time_flag: bool = False
    send_clear_flag: bool = False


def apply_field(record: DeviceRecord, rule: FieldRule, value: DecodedValue) -> None:
    """Overwrite the record attribute targeted by ``rule`` with ``value``."""
    if rule.record is None:
        return
    if not hasattr(record, rule.record):
        raise AttributeError(f"DeviceRecord has no attribute '{rule.record}'")

    if rule.labels:
        # Unknown codes leave the previous label in place
        if value.label is not None:
            setattr(record, rule.record, value.label)
        return

    if rule.skip_zero and value.as_int == 0:
        return

    if value.kind == ValueKind.BOOLEAN:
        new = bool(value.value)
    elif value.kind in (ValueKind.STRING, ValueKind.OPAQUE):
        new = value.value
    else:
        new = value.raw * rule.record_mult
    setattr(record, rule.record, new)


class DeviceRecordStore:
    """
    Slot-indexed collection of device records.

    Allocation and persistence belong to the registry that owns the store;
    the decoder only reads and mutates records that already exist.
    """

    def __init__(self, records: Optional[Dict[int, DeviceRecord]] = None):
        self._records: Dict[int, DeviceRecord] = dict(records or {})

    def add(self, slot: int, record: Optional[DeviceRecord] = None) -> DeviceRecord:
        record = record if record is not None else DeviceRecord()
        self._records[slot] = record
        return record

    def get(self, slot: int, default: Optional[DeviceRecord] = None) -> Optional[DeviceRecord]:
        return self._records.get(slot, default)

    def __getitem__(self, slot: int) -> DeviceRecord:
        return self._records[slot]

    def __contains__(self, slot: int) -> bool:
        return slot in self._records

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[int]:
        return iter(sorted(self._records))


@dataclass
class TelemetrySummary:
    """Values seen in one uplink, plus the alarm event count."""
    device_slot: int
    fcnt: int = 0
    port: int = 0
    confirmed: bool = False
    event_count: int = 0
    event_tags: List[int] = field(default_factory=list)
    values: Dict[str, DecodedValue] = field(default_factory=dict)
    history: Dict[str, List[DecodedValue]] = field(default_factory=dict)
    rules: Dict[str, FieldRule] = field(default_factory=dict, repr=False)

    def add(self, rule: FieldRule, value: DecodedValue) -> None:
        self.values[rule.name] = value
        self.rules[rule.name] = rule
        self.history.setdefault(rule.name, []).append(value)

    def count_event(self, tag: int) -> None:
        self.event_count += 1
        self.event_tags.append(tag)

    def __contains__(self, name: str) -> bool:
        return name in self.values

    def get(self, name: str, default: Any = None) -> Any:
        """Decoded (post-scale) value of the last ``name`` field seen."""
        value = self.values.get(name)
        return value.value if value is not None else default

    def raw(self, name: str, default: Any = None) -> Any:
        value = self.values.get(name)
        return value.raw if value is not None else default

    def values_for(self, name: str) -> List[DecodedValue]:
        return list(self.history.get(name, []))

    def format(self, name: str) -> str:
        if name not in self.values:
            raise KeyError(name)
        return self.rules[name].format(self.values[name])

    def to_dict(self) -> Dict[str, Any]:
        """JSON-friendly view for notification emitters."""
        data: Dict[str, Any] = {}
        for name, value in self.values.items():
            if value.kind == ValueKind.OPAQUE:
                data[name] = value.raw.hex()
            elif value.label is not None:
                data[name] = value.label
            else:
                data[name] = value.value
        return {
            'device_slot': self.device_slot,
            'fcnt': self.fcnt,
            'port': self.port,
            'confirmed': self.confirmed,
            'event_count': self.event_count,
            'data': data,
        }
