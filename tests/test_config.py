from __future__ import annotations

import json
from pathlib import Path

import pytest

from witimu.hwt901b.config import (
    DeviceConfig,
    ImuConfig,
    clear_one_shot_flags,
    config_from_mapping,
    load_config,
    save_config,
)

SAMPLE = Path(__file__).resolve().parents[1] / "host_pi" / "config.json"


def write_config(tmp_path: Path, data: dict) -> Path:
    path = tmp_path / "config.json"
    path.write_text(json.dumps(data), encoding="utf-8")
    return path


def test_sample_config_loads() -> None:
    cfg = load_config(SAMPLE)
    assert cfg.devices == [DeviceConfig(port="/dev/ttyUSB0")]
    assert cfg.host.baudrate == 9600
    assert cfg.sequencer.output_mask == 0x01CF
    assert cfg.decoder.marker_bytes == b"\x55\x50"
    assert cfg.output_csv is None


def test_overrides_apply_to_nested_keys_and_lists() -> None:
    cfg = load_config(
        SAMPLE,
        [
            "devices.0.rate=10Hz",
            "devices.0.heading_offset=-12.5",
            "host.baudrate=115200",
            "host.reconnect_on_close=true",
            "sequencer.output_mask=0x00FF",
            "decoder.pressure_unit=hPa",
        ],
    )
    assert cfg.devices[0].rate == "10Hz"
    assert cfg.devices[0].heading_offset == -12.5
    assert cfg.devices[0].port == "/dev/ttyUSB0"
    assert cfg.host.baudrate == 115200
    assert cfg.host.reconnect_on_close is True
    assert cfg.sequencer.output_mask == 0xFF
    assert cfg.decoder.pressure_unit == "hPa"


def test_override_can_add_a_device() -> None:
    cfg = load_config(SAMPLE, ['devices.1={"port": "/dev/ttyUSB1", "angle_ref": true}'])
    assert [device.port for device in cfg.devices] == ["/dev/ttyUSB0", "/dev/ttyUSB1"]
    assert cfg.devices[1].angle_ref is True


def test_legacy_device_keys() -> None:
    cfg = config_from_mapping(
        {"devices": [{"usbDevice": "/dev/ttyS1", "freq": "20Hz", "zOffset": 45, "accCal": True}]}
    )
    device = cfg.devices[0]
    assert device == DeviceConfig(port="/dev/ttyS1", rate="20Hz", heading_offset=45.0, acc_cal=True)


@pytest.mark.parametrize(
    "data, message",
    [
        ({"devices": [{"rate": "2Hz"}]}, "port"),
        ({"devices": [{"port": "/dev/ttyS1", "rate": "3Hz"}]}, "rate"),
        ({"devices": [{"port": "/dev/ttyS1", "heading_offset": 200}]}, "heading_offset"),
        ({"host": {"baud": 9600}}, "Unknown HostRuntime keys"),
        ({"decoder": {"pressure_unit": "bar"}}, "pressure_unit"),
        ({"decoder": {"marker": "55"}}, "2 bytes"),
        ({"host": {"baudrate": None}}, "HostRuntime.baudrate may not be null"),
        ({"sequencer": {"output_mask": None}}, "may not be null"),
        ({"devices": [{"port": "/dev/ttyS1", "heading_offset": None}]}, "heading_offset must be a number"),
    ],
)
def test_invalid_config_is_rejected(data: dict, message: str) -> None:
    with pytest.raises(ValueError, match=message):
        config_from_mapping(data)


def test_override_syntax_errors() -> None:
    with pytest.raises(ValueError, match="key=value"):
        load_config(SAMPLE, ["host.baudrate"])
    with pytest.raises(ValueError, match="empty"):
        load_config(SAMPLE, ["=1"])


def test_save_config_round_trip(tmp_path: Path) -> None:
    cfg = load_config(SAMPLE, ["devices.0.acc_cal=true"])
    cfg.devices[0].acc_cal = False
    cfg.output_csv = tmp_path / "out.csv"
    target = tmp_path / "nested" / "saved.json"
    save_config(target, cfg)
    reloaded = load_config(target)
    assert reloaded == cfg
    assert json.loads(target.read_text(encoding="utf-8"))["devices"][0]["acc_cal"] is False


def test_defaults_without_file(tmp_path: Path) -> None:
    path = write_config(tmp_path, {})
    assert load_config(path) == ImuConfig()


def test_clear_one_shot_flags_only_touches_flags(tmp_path: Path) -> None:
    stored = {
        "devices": [
            {"usbDevice": "/dev/ttyA", "freq": "10Hz", "zOffset": 5, "accCal": True, "angleRef": True},
            {"port": "/dev/ttyB", "acc_cal": True},
        ],
        "sequencer": {"output_mask": "0x01CF"},
    }
    path = write_config(tmp_path, stored)

    assert clear_one_shot_flags(path, [1, 7]) is True
    saved = json.loads(path.read_text(encoding="utf-8"))
    assert saved["devices"][0] == stored["devices"][0]
    assert saved["devices"][1] == {"port": "/dev/ttyB", "acc_cal": False}
    assert saved["sequencer"]["output_mask"] == "0x01CF"

    assert clear_one_shot_flags(path) is True
    assert clear_one_shot_flags(path) is False
    saved = json.loads(path.read_text(encoding="utf-8"))
    assert saved["devices"][0] == {
        "usbDevice": "/dev/ttyA",
        "freq": "10Hz",
        "zOffset": 5,
        "accCal": False,
        "angleRef": False,
    }
