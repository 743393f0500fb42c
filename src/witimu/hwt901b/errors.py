from __future__ import annotations

from typing import Optional


class Hwt901bError(Exception):
    """Base class for sensor link and decode failures."""


class LinkOpenFailure(Hwt901bError):
    def __init__(self, port: str, reason: object):
        super().__init__(f"Failed to open {port}: {reason}")
        self.port = port
        self.reason = reason


class LinkIoError(Hwt901bError):
    def __init__(self, port: str, reason: object):
        super().__init__(f"I/O error on {port}: {reason}")
        self.port = port
        self.reason = reason


class DecodeError(Hwt901bError, ValueError):
    """Raised when a dataset buffer cannot be decoded."""


class FrameTooShort(DecodeError):
    def __init__(self, length: int, minimum: int):
        super().__init__(f"Dataset buffer too short ({length} < {minimum} bytes)")
        self.length = length
        self.minimum = minimum


class ChecksumMismatch(DecodeError):
    def __init__(self, record: str, offset: int, expected: int, actual: int):
        super().__init__(
            f"{record} checksum mismatch at offset {offset} "
            f"(expected=0x{expected:02X}, actual=0x{actual:02X})"
        )
        self.record = record
        self.offset = offset
        self.expected = expected
        self.actual = actual


class UnknownSubRecordMarker(DecodeError):
    def __init__(self, record: str, offset: int, expected: int, found: Optional[int]):
        found_txt = "none" if found is None else f"0x{found:04X}"
        super().__init__(
            f"Unexpected marker for {record} at offset {offset} "
            f"(expected=0x{expected:04X}, found={found_txt})"
        )
        self.record = record
        self.offset = offset
        self.expected = expected
        self.found = found
