"""Configuration command wire format for the WIT serial protocol.

Every command is five bytes: the ``FF AA`` prefix, a register address and a
little-endian 16-bit value. Writes only persist after the unlock sequence and
a subsequent save.
"""

from __future__ import annotations

import enum
from typing import Tuple

OUTPUT_RATES: Tuple[str, ...] = ("0.2Hz", "0.5Hz", "1Hz", "2Hz", "5Hz", "10Hz", "20Hz", "50Hz")

COMMAND_PREFIX = b"\xFF\xAA"
DEFAULT_OUTPUT_MASK = 0x01CF


class Register(enum.IntEnum):
    SAVE = 0x00
    CALSW = 0x01
    RSW = 0x02
    RRATE = 0x03
    KEY = 0x69


class CalibrationMode(enum.IntEnum):
    NORMAL = 0x00
    ACCELEROMETER = 0x01
    ANGLE_REFERENCE = 0x08


def build_command(register: int, value: int) -> bytes:
    if not 0 <= register <= 0xFF:
        raise ValueError(f"Register out of range: {register}")
    if not 0 <= value <= 0xFFFF:
        raise ValueError(f"Register value out of range: {value}")
    return COMMAND_PREFIX + bytes([register]) + value.to_bytes(2, "little")


UNLOCK = build_command(Register.KEY, 0xB588)
SAVE_CONFIG = build_command(Register.SAVE, 0x0000)
CALIBRATION_START = build_command(Register.CALSW, CalibrationMode.ACCELEROMETER)
CALIBRATION_STOP = build_command(Register.CALSW, CalibrationMode.NORMAL)
RESET_ANGLE_REFERENCE = build_command(Register.CALSW, CalibrationMode.ANGLE_REFERENCE)


def rate_index(rate: str) -> int:
    try:
        return OUTPUT_RATES.index(rate)
    except ValueError as exc:
        raise ValueError(f"Unsupported output rate '{rate}'. Expected one of {list(OUTPUT_RATES)}") from exc


def set_output_rate(rate: str) -> bytes:
    return build_command(Register.RRATE, rate_index(rate) + 1)


def select_output_set(mask: int = DEFAULT_OUTPUT_MASK) -> bytes:
    return build_command(Register.RSW, mask)


def describe(command: bytes) -> str:
    return " ".join(f"{byte:02X}" for byte in command)
