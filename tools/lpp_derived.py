#!/usr/bin/env python3
"""
lpp_derived.py - Decisions taken once an uplink has been fully decoded

Three checks run after the tag loop, each driven only by fields present
in the current uplink:

    interval reconciliation  reported heartbeat vs. pending commanded interval
    clock drift              device local time vs. wall clock (+ UTC offset)
    device-type follow-up    clear-voice window for smoke/gas alarms,
                             button press counting for SOS/doorbell/buttons

Results are written to the device record flags. DerivedFlags reports only
the requests raised by the current uplink.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Optional

from lpp_config import DecoderConfig
from lpp_record import (
    BUTTON_DEVICE_TYPES, DeviceRecord, DeviceType, IntervalState, TelemetrySummary,
)


logger = logging.getLogger(__name__)

SOS_TAG = 0x14
BUTTON_TAG = 0x1c

# Record attribute and the summary names that report it in an uplink
ALARM_SOURCES = {
    DeviceType.SMOKE: ('smoke_state', ('smoke_event', 'smoke_state')),
    DeviceType.GAS: ('gas_state', ('gas_state',)),
}

IntervalRequester = Callable[[int, DeviceRecord], None]


@dataclass
class ClearVoiceClock:
    """Process-wide timestamp of the last clear-voice broadcast."""
    last_broadcast: float = 0.0

    def mark(self, when: float) -> None:
        self.last_broadcast = when


@dataclass(frozen=True)
class DerivedFlags:
    """
    Requests raised by one uplink.

    The matching ``send_*_flag`` attributes on the record persist across
    uplinks until the downlink path clears them; these flags only report
    what the current uplink decided.
    """
    needs_interval_resend: bool
    needs_time_sync: bool
    needs_clear_voice: bool
    event_count: int


def reconcile_interval(slot: int, record: DeviceRecord, summary: TelemetrySummary,
                       request_interval_resend: Optional[IntervalRequester] = None) -> bool:
    """
    Compare the reported heartbeat interval with a pending commanded one.

    Returns True when a resend was requested.
    """
    reported = summary.raw('heartbeat_interval', 0)
    if not reported:
        return False

    record.uplink_interval = reported
    if record.downlink_interval <= 0:
        return False

    if record.downlink_interval != reported:
        record.interval_state = IntervalState.CHECKING
        record.send_interval_flag = True
        logger.info("slot %d reports interval %d, commanded %d; resending",
                    slot, reported, record.downlink_interval)
        if request_interval_resend is not None:
            request_interval_resend(slot, record)
        return True

    record.interval_state = IntervalState.OK
    record.send_interval_flag = False
    record.downlink_interval = 0
    logger.info("slot %d interval %d confirmed", slot, reported)
    return False


def check_clock_drift(slot: int, record: DeviceRecord, summary: TelemetrySummary,
                      now: float, config: DecoderConfig) -> bool:
    if 'local_time' not in summary:
        return False

    # A device without a clock reports 0; keep it eligible for sync
    device_time = summary.raw('local_time') or 1
    drift = abs(now + config.utc_offset - device_time)

    record.send_time_flag = drift > config.time_drift_threshold
    if record.send_time_flag:
        logger.info("slot %d clock off by %ds; needs time sync", slot, int(drift))
    return record.send_time_flag


def device_type_followup(slot: int, record: DeviceRecord, summary: TelemetrySummary,
                         now: float, config: DecoderConfig,
                         clear_voice: ClearVoiceClock) -> bool:
    """Returns True when this uplink asks for a clear-voice broadcast."""
    device_type = record.device_type

    if device_type in ALARM_SOURCES:
        attr, names = ALARM_SOURCES[device_type]
        reported = any(name in summary for name in names)
        if reported and getattr(record, attr):
            elapsed = now - clear_voice.last_broadcast
            record.send_clear_flag = elapsed < config.clear_voice_cooldown
            if record.send_clear_flag:
                logger.info("slot %d %s alarm needs clear voice", slot, device_type.name.lower())
            return record.send_clear_flag
        return False

    if device_type in BUTTON_DEVICE_TYPES:
        pressed = summary.raw('button_state', 0) >= 1
        # An SOS tag in the same uplink already counted this press
        if pressed and SOS_TAG not in summary.event_tags:
            summary.count_event(BUTTON_TAG)
    return False


def evaluate(slot: int, record: DeviceRecord, summary: TelemetrySummary,
             config: DecoderConfig, now: float, clear_voice: ClearVoiceClock,
             request_interval_resend: Optional[IntervalRequester] = None) -> DerivedFlags:
    """Run every post-decode check and report what this uplink raised."""
    return DerivedFlags(
        needs_interval_resend=reconcile_interval(slot, record, summary, request_interval_resend),
        needs_time_sync=check_clock_drift(slot, record, summary, now, config),
        needs_clear_voice=device_type_followup(slot, record, summary, now, config, clear_voice),
        event_count=summary.event_count,
    )
