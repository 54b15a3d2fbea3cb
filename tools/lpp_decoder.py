#!/usr/bin/env python3
"""
lpp_decoder.py - Tag dispatcher and uplink decoder for fPort 210 payloads

Walks the payload tag by tag using the field catalog, updates the device
record in place, collects a TelemetrySummary and then runs the
post-decode checks (interval reconciliation, clock drift, device-type
follow-up).

Decoding stops at the first tag the catalog does not know. Payload widths
are tag-specific and there is no generic length field, so nothing after an
unknown tag can be located. Fields applied before the stop stay applied.

The decoder does no locking. Callers that decode uplinks from several
devices concurrently must serialize decodes per device slot.

Usage:
    from lpp_decoder import UplinkDecoder
    from lpp_record import DeviceRecordStore

    store = DeviceRecordStore()
    store.add(0)
    decoder = UplinkDecoder(store)
    result = decoder.decode(0, reported_fcnt=12, radio_port=210,
                            is_confirmed=False, payload=bytes.fromhex('00040c1c'))
    result.summary.format('battery_voltage')   # '3.10'

    # Command line
    python lpp_decoder.py 00040c1c
    python lpp_decoder.py 0078000000 1e --downlink-interval 60 --json
"""

import argparse
import json
import logging
import sys
import time
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Callable, Optional

from lpp_config import DecoderConfig, load_config
from lpp_derived import ClearVoiceClock, DerivedFlags, IntervalRequester, evaluate
from lpp_errors import DecodeError, RejectedFrame, UnknownTag
from lpp_fields import FieldTable, default_table
from lpp_record import (
    DeviceRecord, DeviceRecordStore, DeviceType, TelemetrySummary, apply_field,
)


logger = logging.getLogger(__name__)


@dataclass
class UplinkResult:
    """Outcome of one successfully decoded uplink."""
    summary: TelemetrySummary
    flags: DerivedFlags


def dispatch(record: DeviceRecord, payload: bytes, summary: TelemetrySummary,
             table: FieldTable, config: DecoderConfig) -> None:
    """
    Decode every [tag][payload] pair after the marker byte.

    Raises UnknownTag, TruncatedField or OversizedString; the exception's
    ``summary`` holds what was decoded up to that point.
    """
    pos = 1
    try:
        while pos < len(payload):
            tag = payload[pos]
            rule = table.lookup(tag)
            if rule is None:
                raise UnknownTag(tag, pos)

            value, next_pos = rule.decode(payload, pos + 1, config.string_capacity)
            logger.debug("--payload-- %s [%s]", rule.name, rule.format(value))

            apply_field(record, rule, value)
            summary.add(rule, value)
            if rule.counts_event(value):
                summary.count_event(tag)

            pos = next_pos
    except DecodeError as exc:
        exc.summary = summary
        raise


class UplinkDecoder:
    """
    Decodes uplinks into device records held by an external store.

    Collaborators:
        clock                    returns wall-clock epoch seconds
        clear_voice              last clear-voice broadcast, shared per process
        request_interval_resend  called as (slot, record) when the device
                                 reports a heartbeat interval other than the
                                 commanded one; must not block
    """

    def __init__(self, store: DeviceRecordStore, config: Optional[DecoderConfig] = None,
                 table: Optional[FieldTable] = None,
                 clock: Callable[[], float] = time.time,
                 clear_voice: Optional[ClearVoiceClock] = None,
                 request_interval_resend: Optional[IntervalRequester] = None):
        self.store = store
        self.config = config or DecoderConfig()
        self.table = table or default_table()
        self.clock = clock
        self.clear_voice = clear_voice if clear_voice is not None else ClearVoiceClock()
        self.request_interval_resend = request_interval_resend

    def _check_frame(self, device_slot: int, radio_port: int, payload: bytes,
                     payload_len: int) -> DeviceRecord:
        if radio_port != self.config.app_port:
            raise RejectedFrame(f"Port {radio_port} is not application port {self.config.app_port}")
        if payload_len > len(payload):
            raise RejectedFrame(f"Declared length {payload_len} exceeds buffer of {len(payload)} bytes")
        if payload_len < self.config.min_payload_len:
            raise RejectedFrame(
                f"Payload of {payload_len} bytes is shorter than {self.config.min_payload_len}"
            )
        record = self.store.get(device_slot)
        if record is None:
            raise RejectedFrame(f"No device record in slot {device_slot}")
        return record

    def decode(self, device_slot: int, reported_fcnt: int, radio_port: int,
               is_confirmed: bool, payload: bytes,
               payload_len: Optional[int] = None) -> UplinkResult:
        payload = bytes(payload)
        if payload_len is None:
            payload_len = len(payload)

        try:
            record = self._check_frame(device_slot, radio_port, payload, payload_len)
        except RejectedFrame as exc:
            logger.warning("slot %d fcnt %d rejected: %s", device_slot, reported_fcnt, exc)
            raise

        summary = TelemetrySummary(
            device_slot=device_slot,
            fcnt=reported_fcnt,
            port=radio_port,
            confirmed=is_confirmed,
        )
        try:
            dispatch(record, payload[:payload_len], summary, self.table, self.config)
        except DecodeError as exc:
            logger.warning("slot %d fcnt %d aborted: %s", device_slot, reported_fcnt, exc)
            raise

        flags = evaluate(device_slot, record, summary, self.config, self.clock(),
                         self.clear_voice, self.request_interval_resend)
        return UplinkResult(summary=summary, flags=flags)


def record_to_dict(record: DeviceRecord) -> dict:
    data = asdict(record)
    for key, value in data.items():
        if isinstance(value, Enum):
            data[key] = value.name
    return data


def main():
    parser = argparse.ArgumentParser(description='Decode an fPort 210 uplink payload')
    parser.add_argument('payload', nargs='+', help='Payload as hex (spaces allowed)')
    parser.add_argument('--port', type=int, help='Radio port (default: configured app port)')
    parser.add_argument('--fcnt', type=int, default=0, help='Uplink frame counter')
    parser.add_argument('--confirmed', action='store_true', help='Confirmed uplink')
    parser.add_argument('--device-type', choices=[t.name for t in DeviceType],
                        default=DeviceType.UNDEFINED.name, help='Device type of the record')
    parser.add_argument('--downlink-interval', type=int, default=0,
                        help='Pending commanded heartbeat interval')
    parser.add_argument('--config', help='Decoder config YAML file')
    parser.add_argument('--json', action='store_true', help='Output as JSON')
    parser.add_argument('-v', '--verbose', action='store_true', help='Log every decoded tag')

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='[%(levelname)s] %(message)s',
        stream=sys.stderr,
    )

    try:
        config = load_config(args.config)
        payload = bytes.fromhex(''.join(args.payload))
    except (OSError, ValueError) as e:
        print(f"[ERROR] {e}", file=sys.stderr)
        sys.exit(1)

    store = DeviceRecordStore()
    record = store.add(0, DeviceRecord(
        device_type=DeviceType[args.device_type],
        downlink_interval=args.downlink_interval,
    ))

    decoder = UplinkDecoder(store, config=config)
    port = args.port if args.port is not None else config.app_port

    try:
        result = decoder.decode(0, args.fcnt, port, args.confirmed, payload)
    except DecodeError as e:
        print(f"[ERROR] {e}", file=sys.stderr)
        sys.exit(1)

    if args.json:
        output = {
            'summary': result.summary.to_dict(),
            'flags': asdict(result.flags),
            'record': record_to_dict(record),
        }
        print(json.dumps(output, indent=2))
        return

    summary = result.summary
    print(f"Uplink fcnt={summary.fcnt} port={summary.port} events={summary.event_count}")
    for name in summary.values:
        print(f"  {name}: {summary.format(name)}")
    print(f"Flags: interval_resend={result.flags.needs_interval_resend} "
          f"time_sync={result.flags.needs_time_sync} "
          f"clear_voice={result.flags.needs_clear_voice}")


if __name__ == '__main__':
    main()
