from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Sequence

from .commands import DEFAULT_OUTPUT_MASK, OUTPUT_RATES
from .decoder import PRESSURE_UNITS
from .frames import parse_marker


@dataclass
class DeviceConfig:
    port: str = "/dev/ttyUSB0"
    rate: str = "2Hz"
    heading_offset: float = 0.0
    acc_cal: bool = False
    angle_ref: bool = False

    @staticmethod
    def from_mapping(data: Dict[str, Any]) -> "DeviceConfig":
        port = data.get("port") or data.get("usbDevice")
        if not port:
            raise ValueError("device requires a 'port'")
        rate = str(data.get("rate", data.get("freq", "2Hz")))
        if rate not in OUTPUT_RATES:
            raise ValueError(f"device.rate '{rate}' must be one of {list(OUTPUT_RATES)}")
        try:
            heading_offset = float(data.get("heading_offset", data.get("zOffset", 0.0)))
        except (TypeError, ValueError) as exc:
            raise ValueError(f"device.heading_offset must be a number: {exc}") from exc
        if not -180.0 <= heading_offset <= 180.0:
            raise ValueError(f"device.heading_offset {heading_offset} outside -180..180")
        return DeviceConfig(
            port=str(port),
            rate=rate,
            heading_offset=heading_offset,
            acc_cal=bool(data.get("acc_cal", data.get("accCal", False))),
            angle_ref=bool(data.get("angle_ref", data.get("angleRef", False))),
        )


@dataclass
class HostRuntime:
    baudrate: int = 9600
    read_chunk_size: int = 256
    poll_interval_sec: float = 0.01
    reconnect_initial_ms: int = 1000
    reconnect_max_ms: int = 60000
    reconnect_factor: float = 1.5
    reconnect_on_close: bool = False
    stats_log_interval: float = 60.0


@dataclass
class DecoderConfig:
    enforce_checksum: bool = False
    pressure_unit: str = "Pa"
    marker: str = "5550"

    @property
    def marker_bytes(self) -> bytes:
        return parse_marker(self.marker)


@dataclass
class SequencerConfig:
    rate_at_ms: int = 10000
    output_set_at_ms: int = 12000
    calibration_at_ms: int = 14000
    angle_reset_at_ms: int = 20000
    step_gap_ms: int = 200
    calibration_hold_ms: int = 5000
    output_mask: int = DEFAULT_OUTPUT_MASK


@dataclass
class ImuConfig:
    devices: List[DeviceConfig] = field(default_factory=list)
    host: HostRuntime = field(default_factory=HostRuntime)
    decoder: DecoderConfig = field(default_factory=DecoderConfig)
    sequencer: SequencerConfig = field(default_factory=SequencerConfig)
    output_csv: Path | None = None

    def to_mapping(self) -> Dict[str, Any]:
        data = asdict(self)
        data["output_csv"] = str(self.output_csv) if self.output_csv else None
        return data


def _load_json(path: Path) -> Dict[str, Any]:
    with path.open("r", encoding="utf-8") as fh:
        return json.load(fh)


def _merge(base: Any, override: Any) -> Any:
    if isinstance(base, dict) and isinstance(override, dict):
        merged: Dict[str, Any] = {**base}
        for key, value in override.items():
            merged[key] = _merge(base.get(key), value) if key in base else value
        return merged
    if isinstance(base, list) and isinstance(override, dict) and all(k.isdigit() for k in override):
        merged_list = list(base)
        for key, value in override.items():
            idx = int(key)
            while len(merged_list) <= idx:
                merged_list.append({})
            merged_list[idx] = _merge(merged_list[idx], value)
        return merged_list
    return override


def _section(cls: type, data: Dict[str, Any]) -> Any:
    known = cls.__dataclass_fields__  # type: ignore[attr-defined]
    unknown = set(data) - set(known)
    if unknown:
        raise ValueError(f"Unknown {cls.__name__} keys: {sorted(unknown)}")
    defaults = cls()
    values = {}
    for name in known:
        default = getattr(defaults, name)
        raw = data.get(name, default)
        if raw is None and default is not None:
            raise ValueError(f"{cls.__name__}.{name} may not be null")
        values[name] = type(default)(raw) if default is not None and not isinstance(raw, type(default)) else raw
    return cls(**values)


def config_from_mapping(data: Dict[str, Any]) -> ImuConfig:
    devices = [DeviceConfig.from_mapping(item) for item in data.get("devices") or []]
    decoder = _section(DecoderConfig, data.get("decoder") or {})
    if decoder.pressure_unit not in PRESSURE_UNITS:
        raise ValueError(f"decoder.pressure_unit must be one of {list(PRESSURE_UNITS)}")
    parse_marker(decoder.marker)
    sequencer_data = dict(data.get("sequencer") or {})
    mask = sequencer_data.get("output_mask")
    if isinstance(mask, str):
        sequencer_data["output_mask"] = int(mask, 0)
    return ImuConfig(
        devices=devices,
        host=_section(HostRuntime, data.get("host") or {}),
        decoder=decoder,
        sequencer=_section(SequencerConfig, sequencer_data),
        output_csv=Path(data["output_csv"]) if data.get("output_csv") else None,
    )


def load_config(path: Path | str, overrides: Sequence[str] | None = None) -> ImuConfig:
    """
    Load the host configuration from JSON and apply CLI-style overrides.

    Overrides are dotted ``key=value`` pairs; numeric segments index into
    lists, e.g.::

        ["host.baudrate=115200", "devices.0.rate=10Hz"]
    """
    data = _load_json(Path(path))
    override_data: Dict[str, Any] = {}
    for override in overrides or []:
        key, raw_value = _parse_override(override)
        _assign_nested(override_data, key, raw_value)
    return config_from_mapping(_merge(data, override_data))


def _write_json(path: Path, data: Dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as fh:
        json.dump(data, fh, indent=2)
        fh.write("\n")


def save_config(path: Path | str, config: ImuConfig) -> None:
    _write_json(Path(path), config.to_mapping())


ONE_SHOT_KEYS = ("acc_cal", "angle_ref", "accCal", "angleRef")


def clear_one_shot_flags(path: Path | str, indices: Iterable[int] | None = None) -> bool:
    """
    Clear the calibration and angle-reset flags of the devices stored in
    ``path`` (all of them, or only those at ``indices``).

    Only those keys are touched; the rest of the file is written back exactly
    as loaded, so CLI overrides and extra devices never end up in it. Returns
    whether the file changed.
    """
    target = Path(path)
    data = _load_json(target)
    changed = False
    devices = data.get("devices") or []
    selected = range(len(devices)) if indices is None else [i for i in indices if 0 <= i < len(devices)]
    for index in selected:
        item = devices[index]
        for key in ONE_SHOT_KEYS:
            if item.get(key):
                item[key] = False
                changed = True
    if changed:
        _write_json(target, data)
    return changed


def _parse_override(item: str) -> tuple[str, Any]:
    key, sep, raw_value = item.partition("=")
    key = key.strip()
    if not sep:
        raise ValueError(f"Override '{item}' must use key=value syntax")
    if not key:
        raise ValueError("Override key may not be empty")
    return key, _coerce_value(raw_value.strip())


def _coerce_value(raw: str) -> Any:
    lowered = raw.lower()
    if lowered in {"true", "false"}:
        return lowered == "true"
    if lowered in {"null", "none"}:
        return None
    if raw and raw[0] in "[{":
        return json.loads(raw)
    for cast in (int, float):
        try:
            return cast(raw)
        except ValueError:
            continue
    return raw


def _assign_nested(target: Dict[str, Any], dotted_key: str, value: Any) -> None:
    cursor = target
    *parents, leaf = dotted_key.split(".")
    for part in parents:
        cursor = cursor.setdefault(part, {})
    cursor[leaf] = value
