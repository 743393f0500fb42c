from __future__ import annotations

import csv
import json
import math
import sys
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, TextIO

from .decoder import MeasurementSet

Delta = Dict[str, Any]

CSV_FIELDS = [
    "source",
    "datetime",
    "ax",
    "ay",
    "az",
    "wx",
    "wy",
    "wz",
    "roll",
    "pitch",
    "yaw",
    "heading",
    "pressure",
    "altitude",
    "temperature",
    "latitude",
    "longitude",
    "gps_altitude",
    "speed",
    "satellites",
]


def source_label(index: int) -> str:
    return f"WIT.{index + 1}"


def measurement_values(ms: MeasurementSet) -> List[Dict[str, Any]]:
    """Path/value pairs for every sub-record present in ``ms``."""
    values: List[Dict[str, Any]] = []

    def add(path: str, value: Any) -> None:
        values.append({"path": path, "value": value})

    if ms.time is not None:
        add("navigation.datetime", ms.time.isoformat())
    if ms.acceleration is not None:
        add("navigation.acceleration.ax", ms.acceleration.ax)
        add("navigation.acceleration.ay", ms.acceleration.ay)
        add("navigation.acceleration.az", ms.acceleration.az)
    if ms.angular_velocity is not None:
        add("navigation.angular_velocity.wx", ms.angular_velocity.wx)
        add("navigation.angular_velocity.wy", ms.angular_velocity.wy)
        add("navigation.angular_velocity.wz", ms.angular_velocity.wz)
    if ms.atmosphere is not None:
        add("environment.inside.pressure", ms.atmosphere.pressure)
        add("environment.inside.altitude", ms.atmosphere.altitude)
    if ms.temperature is not None:
        add("environment.inside.temperature", ms.temperature)
    if ms.ground_speed is not None:
        add("navigation.speedOverGround", ms.ground_speed.speed_ms)
        add("navigation.courseOverGroundTrue", math.radians(ms.ground_speed.yaw))
    if ms.gps_position is not None:
        position: Dict[str, Any] = {
            "longitude": ms.gps_position.longitude,
            "latitude": ms.gps_position.latitude,
        }
        if ms.ground_speed is not None:
            position["altitude"] = ms.ground_speed.height
        add("navigation.position", position)
    if ms.satellites is not None:
        add("navigation.position.satellite.quantity", ms.satellites.count)
        add("navigation.gnss.positionDilution", ms.satellites.pdop)
        add("navigation.gnss.horizontalDilution", ms.satellites.hdop)
        add("navigation.gnss.verticalDilution", ms.satellites.vdop)
    if ms.angle is not None:
        add("navigation.headingMagnetic", ms.angle.heading)
        add("navigation.attitude", {"roll": ms.angle.roll, "pitch": ms.angle.pitch, "yaw": ms.angle.yaw})
    if ms.quaternion is not None:
        q = ms.quaternion
        add("navigation.attitude.quaternion", {"q0": q.q0, "q1": q.q1, "q2": q.q2, "q3": q.q3})
    return values


def build_delta(ms: MeasurementSet, source: str) -> Delta:
    return {"updates": [{"$source": source, "values": measurement_values(ms)}]}


class JsonLinesPublisher:
    """Writes one delta per line, e.g. to stdout for a downstream bus bridge."""

    def __init__(self, stream: Optional[TextIO] = None):
        self.stream = stream or sys.stdout

    def __call__(self, delta: Delta) -> None:
        self.stream.write(json.dumps(delta) + "\n")
        self.stream.flush()


def measurement_row(source: str, ms: MeasurementSet) -> Dict[str, Any]:
    row: Dict[str, Any] = dict.fromkeys(CSV_FIELDS, "")
    row["source"] = source
    if ms.time is not None:
        row["datetime"] = ms.time.isoformat()
    if ms.acceleration is not None:
        row.update(ax=ms.acceleration.ax, ay=ms.acceleration.ay, az=ms.acceleration.az)
    if ms.angular_velocity is not None:
        row.update(wx=ms.angular_velocity.wx, wy=ms.angular_velocity.wy, wz=ms.angular_velocity.wz)
    if ms.angle is not None:
        row.update(roll=ms.angle.roll, pitch=ms.angle.pitch, yaw=ms.angle.yaw, heading=ms.angle.heading)
    if ms.atmosphere is not None:
        row.update(pressure=ms.atmosphere.pressure, altitude=ms.atmosphere.altitude)
    if ms.temperature is not None:
        row["temperature"] = ms.temperature
    if ms.gps_position is not None:
        row.update(latitude=ms.gps_position.latitude, longitude=ms.gps_position.longitude)
    if ms.ground_speed is not None:
        row.update(gps_altitude=ms.ground_speed.height, speed=ms.ground_speed.speed_ms)
    if ms.satellites is not None:
        row["satellites"] = ms.satellites.count
    return row


class CsvRecorder:
    """
    Lazily creates the CSV file when the first measurement set arrives, so dry
    runs and tests never touch the filesystem.
    """

    def __init__(self, path: Path):
        self.path = path
        self._writer: Optional["csv.DictWriter[str]"] = None
        self._file_handle: Optional[TextIO] = None
        self.rows = 0

    def append(self, source: str, ms: MeasurementSet) -> None:
        if self._writer is None:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._file_handle = self.path.open("w", newline="", encoding="utf-8")
            self._writer = csv.DictWriter(self._file_handle, fieldnames=CSV_FIELDS)
            self._writer.writeheader()
        self._writer.writerow(measurement_row(source, ms))
        self.rows += 1
        if self._file_handle is not None:
            self._file_handle.flush()

    def close(self) -> None:
        if self._file_handle:
            self._file_handle.close()
            self._file_handle = None
            self._writer = None


class TelemetryPublisher:
    """Fans a decoded measurement set out to delta sinks and an optional recorder."""

    def __init__(self, sinks: Optional[List[Callable[[Delta], None]]] = None, recorder: Optional[CsvRecorder] = None):
        self.sinks = list(sinks or [])
        self.recorder = recorder
        self.published = 0

    def publish(self, source: str, ms: MeasurementSet) -> Delta:
        delta = build_delta(ms, source)
        for sink in self.sinks:
            sink(delta)
        if self.recorder is not None:
            self.recorder.append(source, ms)
        self.published += 1
        return delta

    def close(self) -> None:
        if self.recorder is not None:
            self.recorder.close()
