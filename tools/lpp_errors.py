#!/usr/bin/env python3
"""
lpp_errors.py - Decode error kinds for the fPort 210 tag/value dialect

All errors derive from ValueError so callers that already guard payload
decoding with ``except ValueError`` keep working.

Every error raised from inside the tag loop carries the telemetry summary
built so far (``summary``) and the payload offset where decoding stopped
(``offset``). Effects applied to the device record before the abort are not
rolled back.
"""

from typing import Any, Optional


class DecodeError(ValueError):
    """Base class for uplinks the decoder refuses or abandons."""

    def __init__(self, message: str, offset: Optional[int] = None):
        super().__init__(message)
        self.offset = offset
        self.summary: Any = None


class RejectedFrame(DecodeError):
    """Frame failed a precondition (port, length, slot); nothing decoded."""


class UnknownTag(DecodeError):
    """Tag byte has no catalog entry; the rest of the payload is unreadable."""

    def __init__(self, tag: int, offset: int):
        super().__init__(f"Unknown tag 0x{tag:02x} at offset {offset}", offset)
        self.tag = tag


class TruncatedField(DecodeError):
    """Field payload would extend past the end of the buffer."""

    def __init__(self, tag: int, offset: int, needed: int, available: int):
        super().__init__(
            f"Tag 0x{tag:02x} at offset {offset} needs {needed} bytes, "
            f"{available} available",
            offset,
        )
        self.tag = tag
        self.needed = needed
        self.available = available


class OversizedString(DecodeError):
    """String field longer than the destination attribute can hold."""

    def __init__(self, tag: int, offset: int, length: int, capacity: int):
        super().__init__(
            f"String for tag 0x{tag:02x} at offset {offset} is {length} bytes, "
            f"capacity is {capacity}",
            offset,
        )
        self.tag = tag
        self.length = length
        self.capacity = capacity
