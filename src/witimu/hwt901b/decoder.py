"""
Decoder for HWT901B dataset buffers.

A dataset buffer is the run of bytes between two ``55 50`` markers. The Time
record sits at offset 0 without its two marker bytes (the splitter stripped
them); every following record is a full 11-byte packet::

    0x55 <type> <8 payload bytes> <checksum>

at a fixed offset. Multi-byte fields are little-endian.
"""

from __future__ import annotations

import enum
import logging
import math
import struct
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple

from .errors import ChecksumMismatch, DecodeError, FrameTooShort, UnknownSubRecordMarker

RECORD_HEADER = 0x55
PAYLOAD_SIZE = 8
PACKET_SIZE = PAYLOAD_SIZE + 3
MIN_DATASET_SIZE = PAYLOAD_SIZE + 1

DEGREES_PER_LSB = 180.0 / 32768.0
STANDARD_GRAVITY = 9.8
ACCEL_RANGE_G = 16.0
GYRO_RANGE_DPS = 2000.0
KELVIN_OFFSET = 273.15


class RecordType(enum.IntEnum):
    TIME = 0x50
    ACCELERATION = 0x51
    ANGULAR_VELOCITY = 0x52
    ANGLE = 0x53
    ATMOSPHERIC = 0x56
    GPS_POSITION = 0x57
    GROUND_SPEED = 0x58
    QUATERNION = 0x59
    SATELLITE_ACCURACY = 0x5A


DATASET_OFFSETS: Dict[RecordType, int] = {
    RecordType.TIME: 0,
    RecordType.ACCELERATION: 9,
    RecordType.ANGULAR_VELOCITY: 20,
    RecordType.ANGLE: 31,
    RecordType.ATMOSPHERIC: 42,
    RecordType.GPS_POSITION: 53,
    RecordType.GROUND_SPEED: 64,
    RecordType.QUATERNION: 75,
    RecordType.SATELLITE_ACCURACY: 86,
}

PRESSURE_UNITS = {"Pa": 1.0, "hPa": 100.0}


@dataclass
class TimeRecord:
    year: int
    month: int
    day: int
    hour: int
    minute: int
    second: int
    millisecond: int

    def isoformat(self) -> str:
        return (
            f"{self.year:04d}-{self.month:02d}-{self.day:02d}"
            f"T{self.hour:02d}:{self.minute:02d}:{self.second:02d}.{self.millisecond:03d}Z"
        )


@dataclass
class Acceleration:
    """Linear acceleration in m/s² and chip temperature in kelvin."""

    ax: float
    ay: float
    az: float
    temperature: float


@dataclass
class AngularVelocity:
    """Angular rate in °/s and chip temperature in kelvin."""

    wx: float
    wy: float
    wz: float
    temperature: float


@dataclass
class Angle:
    """Attitude in radians; ``heading`` is the magnetic heading after offset."""

    roll: float
    pitch: float
    yaw: float
    heading: float
    version: int


@dataclass
class Atmosphere:
    pressure: float
    altitude: float
    unit: str = "Pa"


@dataclass
class GpsPosition:
    """Raw ddmm.mmmmm values with the decimal point removed."""

    longitude_raw: int
    latitude_raw: int

    @property
    def longitude(self) -> float:
        return nmea_to_degrees(self.longitude_raw)

    @property
    def latitude(self) -> float:
        return nmea_to_degrees(self.latitude_raw)


@dataclass
class GroundSpeed:
    height: float
    yaw: float
    speed_raw: int

    @property
    def speed_kmh(self) -> float:
        return self.speed_raw / 1000.0

    @property
    def speed_ms(self) -> float:
        return self.speed_raw / 3600.0


@dataclass
class Quaternion:
    q0: float
    q1: float
    q2: float
    q3: float


@dataclass
class SatelliteAccuracy:
    count: int
    pdop: float
    hdop: float
    vdop: float


@dataclass
class MeasurementSet:
    time: Optional[TimeRecord] = None
    acceleration: Optional[Acceleration] = None
    angular_velocity: Optional[AngularVelocity] = None
    angle: Optional[Angle] = None
    atmosphere: Optional[Atmosphere] = None
    gps_position: Optional[GpsPosition] = None
    ground_speed: Optional[GroundSpeed] = None
    quaternion: Optional[Quaternion] = None
    satellites: Optional[SatelliteAccuracy] = None
    rejected: List[DecodeError] = field(default_factory=list)

    @property
    def temperature(self) -> Optional[float]:
        if self.acceleration is not None:
            return self.acceleration.temperature
        if self.angular_velocity is not None:
            return self.angular_velocity.temperature
        return None

    def present(self) -> List[RecordType]:
        return [rtype for rtype, attr in _RECORD_ATTRS.items() if getattr(self, attr) is not None]


_RECORD_ATTRS: Dict[RecordType, str] = {
    RecordType.TIME: "time",
    RecordType.ACCELERATION: "acceleration",
    RecordType.ANGULAR_VELOCITY: "angular_velocity",
    RecordType.ANGLE: "angle",
    RecordType.ATMOSPHERIC: "atmosphere",
    RecordType.GPS_POSITION: "gps_position",
    RecordType.GROUND_SPEED: "ground_speed",
    RecordType.QUATERNION: "quaternion",
    RecordType.SATELLITE_ACCURACY: "satellites",
}


def to_rad(raw: int) -> float:
    """Convert a raw 16-bit angle into radians wrapped into (-pi, pi]."""
    # Strictly above 180: raw 32768 maps to +pi, not -pi
    degrees = raw * DEGREES_PER_LSB
    if degrees > 180.0:
        degrees -= 360.0
    return math.radians(degrees)


def heading_rad(raw_yaw: int, offset_deg: float = 0.0) -> float:
    """
    Magnetic heading from the raw (unwrapped) yaw field.

    The sensor's yaw grows counter-clockwise, so it is mirrored against 360°
    before the configured offset is applied. Only the overflow above 360° is
    folded back; a negative offset can yield a negative heading.
    """
    hdm = 360.0 - raw_yaw * DEGREES_PER_LSB + offset_deg
    if hdm > 360.0:
        hdm -= 360.0
    return math.radians(hdm)


def nmea_to_degrees(raw: int) -> float:
    sign = -1.0 if raw < 0 else 1.0
    raw = abs(raw)
    degrees = raw // 10_000_000
    minutes = (raw % 10_000_000) / 100_000
    return sign * (degrees + minutes / 60.0)


def compute_checksum(rtype: int, payload: bytes) -> int:
    return (RECORD_HEADER + int(rtype) + sum(payload)) & 0xFF


def verify_checksum(rtype: int, payload: bytes, checksum: int) -> bool:
    return compute_checksum(rtype, payload) == checksum


def _decode_time(payload: bytes, ctx: "_Context") -> TimeRecord:
    year, month, day, hour, minute, second, millisecond = struct.unpack("<BBBBBBH", payload)
    return TimeRecord(
        year=2000 + year,
        month=month,
        day=day,
        hour=hour,
        minute=minute,
        second=second,
        millisecond=millisecond,
    )


def _kelvin(raw: int) -> float:
    return raw / 100.0 + KELVIN_OFFSET


def _decode_acceleration(payload: bytes, ctx: "_Context") -> Acceleration:
    ax, ay, az, temp = struct.unpack("<hhhh", payload)
    scale = ACCEL_RANGE_G * STANDARD_GRAVITY / 32768.0
    return Acceleration(ax=ax * scale, ay=ay * scale, az=az * scale, temperature=_kelvin(temp))


def _decode_angular_velocity(payload: bytes, ctx: "_Context") -> AngularVelocity:
    wx, wy, wz, temp = struct.unpack("<hhhh", payload)
    scale = GYRO_RANGE_DPS / 32768.0
    return AngularVelocity(wx=wx * scale, wy=wy * scale, wz=wz * scale, temperature=_kelvin(temp))


def _decode_angle(payload: bytes, ctx: "_Context") -> Angle:
    pitch_raw, roll_raw, yaw_raw, version = struct.unpack("<HHHH", payload)
    return Angle(
        roll=to_rad(roll_raw),
        pitch=to_rad(pitch_raw),
        yaw=to_rad(yaw_raw),
        heading=heading_rad(yaw_raw, ctx.heading_offset),
        version=version,
    )


def _decode_atmosphere(payload: bytes, ctx: "_Context") -> Atmosphere:
    pressure, height = struct.unpack("<ii", payload)
    return Atmosphere(
        pressure=pressure / PRESSURE_UNITS[ctx.pressure_unit],
        altitude=height / 100.0,
        unit=ctx.pressure_unit,
    )


def _decode_gps_position(payload: bytes, ctx: "_Context") -> GpsPosition:
    longitude, latitude = struct.unpack("<ii", payload)
    return GpsPosition(longitude_raw=longitude, latitude_raw=latitude)


def _decode_ground_speed(payload: bytes, ctx: "_Context") -> GroundSpeed:
    height, yaw, speed = struct.unpack("<hHI", payload)
    return GroundSpeed(height=height / 10.0, yaw=yaw / 100.0, speed_raw=speed)


def _decode_quaternion(payload: bytes, ctx: "_Context") -> Quaternion:
    q0, q1, q2, q3 = struct.unpack("<hhHH", payload)
    return Quaternion(q0=q0 / 32768.0, q1=q1 / 32768.0, q2=q2 / 32768.0, q3=q3 / 32768.0)


def _decode_satellites(payload: bytes, ctx: "_Context") -> SatelliteAccuracy:
    count, pdop, hdop, vdop = struct.unpack("<hhHH", payload)
    return SatelliteAccuracy(count=count, pdop=pdop / 32768.0, hdop=hdop / 32768.0, vdop=vdop / 32768.0)


_DECODERS: Dict[RecordType, Callable[[bytes, "_Context"], object]] = {
    RecordType.TIME: _decode_time,
    RecordType.ACCELERATION: _decode_acceleration,
    RecordType.ANGULAR_VELOCITY: _decode_angular_velocity,
    RecordType.ANGLE: _decode_angle,
    RecordType.ATMOSPHERIC: _decode_atmosphere,
    RecordType.GPS_POSITION: _decode_gps_position,
    RecordType.GROUND_SPEED: _decode_ground_speed,
    RecordType.QUATERNION: _decode_quaternion,
    RecordType.SATELLITE_ACCURACY: _decode_satellites,
}


@dataclass
class _Context:
    heading_offset: float
    pressure_unit: str


def _layout(lead: RecordType) -> List[Tuple[RecordType, int, bool]]:
    """(type, offset, is_lead) triples for a buffer that starts with ``lead``."""
    if lead is RecordType.TIME:
        return [(rtype, offset, rtype is lead) for rtype, offset in DATASET_OFFSETS.items()]
    return [(lead, 0, True)]


def decode_dataset(
    buffer: bytes,
    *,
    heading_offset: float = 0.0,
    enforce_checksum: bool = False,
    pressure_unit: str = "Pa",
    lead: RecordType = RecordType.TIME,
) -> MeasurementSet:
    """
    Decode one dataset buffer into a :class:`MeasurementSet`.

    Sub-records that the buffer is too short to contain are left as ``None``.
    A sub-record whose marker does not match its slot is skipped and recorded
    in ``rejected``. With ``enforce_checksum`` a checksum mismatch in any
    present sub-record rejects the whole buffer.
    """
    if len(buffer) < MIN_DATASET_SIZE:
        raise FrameTooShort(len(buffer), MIN_DATASET_SIZE)
    if pressure_unit not in PRESSURE_UNITS:
        raise ValueError(f"Unsupported pressure unit '{pressure_unit}'")
    data = bytes(buffer)
    ctx = _Context(heading_offset=heading_offset, pressure_unit=pressure_unit)
    result = MeasurementSet()
    for rtype, offset, is_lead in _layout(lead):
        start = offset if is_lead else offset + 2
        end = start + PAYLOAD_SIZE + 1
        if len(data) < end:
            continue
        if not is_lead:
            expected = RECORD_HEADER | (int(rtype) << 8)
            (found,) = struct.unpack_from("<H", data, offset)
            if found != expected:
                result.rejected.append(UnknownSubRecordMarker(rtype.name, offset, expected, found))
                continue
        payload = data[start : start + PAYLOAD_SIZE]
        checksum = data[end - 1]
        if enforce_checksum and not verify_checksum(rtype, payload, checksum):
            raise ChecksumMismatch(rtype.name, offset, compute_checksum(rtype, payload), checksum)
        setattr(result, _RECORD_ATTRS[rtype], _DECODERS[rtype](payload, ctx))
    return result


class DatasetDecoder:
    """Stateful wrapper around :func:`decode_dataset` that counts and logs drops."""

    def __init__(
        self,
        *,
        heading_offset: float = 0.0,
        enforce_checksum: bool = False,
        pressure_unit: str = "Pa",
        lead: RecordType = RecordType.TIME,
    ):
        if pressure_unit not in PRESSURE_UNITS:
            raise ValueError(f"Unsupported pressure unit '{pressure_unit}'")
        self.heading_offset = heading_offset
        self.enforce_checksum = enforce_checksum
        self.pressure_unit = pressure_unit
        self.lead = lead
        self._stats: Dict[str, int] = {
            "datasets": 0,
            "too_short": 0,
            "checksum_errors": 0,
            "marker_errors": 0,
        }
        self._log = logging.getLogger(__name__)

    def decode(self, buffer: bytes) -> Optional[MeasurementSet]:
        try:
            result = decode_dataset(
                buffer,
                heading_offset=self.heading_offset,
                enforce_checksum=self.enforce_checksum,
                pressure_unit=self.pressure_unit,
                lead=self.lead,
            )
        except FrameTooShort as exc:
            self._stats["too_short"] += 1
            self._log.debug("Dropping dataset: %s", exc)
            return None
        except ChecksumMismatch as exc:
            self._stats["checksum_errors"] += 1
            self._log.debug("Dropping dataset: %s", exc)
            return None
        for error in result.rejected:
            self._stats["marker_errors"] += 1
            self._log.debug("Skipping sub-record: %s", error)
        self._stats["datasets"] += 1
        return result

    def stats(self) -> Dict[str, int]:
        return dict(self._stats)


def lead_record_for_marker(marker: bytes) -> RecordType:
    """Map a splitter marker (``55 xx``) to the record type it introduces."""
    if len(marker) != 2 or marker[0] != RECORD_HEADER:
        raise ValueError(f"Marker must start with 0x55, got {marker.hex()}")
    try:
        return RecordType(marker[1])
    except ValueError as exc:
        raise ValueError(f"Unknown record type 0x{marker[1]:02X} in marker") from exc
