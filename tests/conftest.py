from __future__ import annotations

import struct
from typing import Callable, Dict, List, Optional

import pytest

TIME_PAYLOAD = struct.pack("<BBBBBBH", 24, 3, 7, 12, 34, 56, 789)
ACC_PAYLOAD = struct.pack("<hhhh", 2048, -2048, 16384, 2500)
GYRO_PAYLOAD = struct.pack("<hhhh", 16384, -8192, 0, 2600)
ANGLE_PAYLOAD = struct.pack("<HHHH", 8192, 0, 16384, 0x1234)
ATMOS_PAYLOAD = struct.pack("<ii", 101325, 12345)
GPS_PAYLOAD = struct.pack("<ii", 1133050000, 221525000)
SPEED_PAYLOAD = struct.pack("<hHI", 1234, 9000, 36000)
QUAT_PAYLOAD = struct.pack("<hhHH", 16384, -16384, 8192, 32768)
SATS_PAYLOAD = struct.pack("<hhHH", 9, 16384, 8192, 4096)

PACKETS = [
    (0x51, ACC_PAYLOAD),
    (0x52, GYRO_PAYLOAD),
    (0x53, ANGLE_PAYLOAD),
    (0x56, ATMOS_PAYLOAD),
    (0x57, GPS_PAYLOAD),
    (0x58, SPEED_PAYLOAD),
    (0x59, QUAT_PAYLOAD),
    (0x5A, SATS_PAYLOAD),
]


def checksum(rtype: int, payload: bytes) -> int:
    return (0x55 + rtype + sum(payload)) & 0xFF


def build_packet(rtype: int, payload: bytes, *, checksum_override: Optional[int] = None) -> bytes:
    value = checksum(rtype, payload) if checksum_override is None else checksum_override
    return bytes([0x55, rtype]) + payload + bytes([value])


def build_dataset() -> bytes:
    """Dataset buffer as delivered by the splitter (leading ``55 50`` stripped)."""
    data = TIME_PAYLOAD + bytes([checksum(0x50, TIME_PAYLOAD)])
    for rtype, payload in PACKETS:
        data += build_packet(rtype, payload)
    return data


@pytest.fixture
def dataset() -> bytes:
    return build_dataset()


@pytest.fixture
def packet() -> Callable[..., bytes]:
    return build_packet


@pytest.fixture
def stream() -> bytes:
    """Two complete datasets as they appear on the wire."""
    marker = b"\x55\x50"
    return marker + build_dataset() + marker + build_dataset() + marker


class ManualClock:
    def __init__(self, start: float = 0.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


class FakeSerialInstance:
    def __init__(self, chunks: List[bytes]):
        self._chunks = chunks
        self.written: List[bytes] = []
        self.is_open = True
        self.fail_read = False
        self.fail_write = False
        self.kwargs: Dict[str, object] = {}

    def read(self, size: int = 1) -> bytes:
        if self.fail_read:
            raise RuntimeError("mock read failure")
        if self._chunks:
            return self._chunks.pop(0)
        return b""

    def write(self, data: bytes) -> int:
        if self.fail_write:
            raise RuntimeError("mock write failure")
        self.written.append(bytes(data))
        return len(data)

    def flush(self) -> None:
        pass

    def close(self) -> None:
        self.is_open = False


class FakeSerialModule:
    def __init__(self):
        self.calls = 0
        self.failures = 0
        self.chunks: List[bytes] = []
        self.instances: List[FakeSerialInstance] = []
        self.SerialException = RuntimeError

    def Serial(self, *args, **kwargs):
        self.calls += 1
        if self.failures:
            self.failures -= 1
            raise self.SerialException("mock open failure")
        instance = FakeSerialInstance(list(self.chunks))
        instance.kwargs = kwargs
        self.instances.append(instance)
        return instance


@pytest.fixture
def fake_serial(monkeypatch) -> FakeSerialModule:
    module = FakeSerialModule()
    monkeypatch.setattr("witimu.hwt901b.connection.serial", module)
    monkeypatch.setattr("witimu.hwt901b.runner.serial", module)
    return module
