from __future__ import annotations

import pytest

from witimu.hwt901b import commands


def test_fixed_commands() -> None:
    assert commands.UNLOCK == bytes.fromhex("FFAA6988B5")
    assert commands.SAVE_CONFIG == bytes.fromhex("FFAA000000")
    assert commands.CALIBRATION_START == bytes.fromhex("FFAA010100")
    assert commands.CALIBRATION_STOP == bytes.fromhex("FFAA010000")
    assert commands.RESET_ANGLE_REFERENCE == bytes.fromhex("FFAA010800")


def test_output_rate_command() -> None:
    assert commands.rate_index("10Hz") == 5
    cmd = commands.set_output_rate("10Hz")
    assert cmd == bytes.fromhex("FFAA030600")
    assert cmd[3] == 6
    assert [commands.set_output_rate(rate)[3] for rate in commands.OUTPUT_RATES] == list(range(1, 9))


def test_unknown_rate() -> None:
    with pytest.raises(ValueError):
        commands.set_output_rate("100Hz")


def test_select_output_set() -> None:
    assert commands.select_output_set() == bytes.fromhex("FFAA02CF01")
    assert commands.select_output_set(0x0008) == bytes.fromhex("FFAA020800")


def test_build_command_bounds() -> None:
    with pytest.raises(ValueError):
        commands.build_command(0x100, 0)
    with pytest.raises(ValueError):
        commands.build_command(0x03, 0x10000)
    assert commands.describe(commands.UNLOCK) == "FF AA 69 88 B5"
